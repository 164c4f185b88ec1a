"""
Tests for the per-platform circuit breaker and the guarded platform client.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from adpilot.platform_client import CIRCUIT_OPEN, CAMPAIGN, ResourceSpec
from adpilot.services.circuit_breaker import (
    CircuitBreaker, GuardedPlatformClient, InMemoryBreakerStore, RedisBreakerStore, breaker_for,
)

from conftest import FakePlatformClient


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def breaker(clock):
    return CircuitBreaker("google_ads", InMemoryBreakerStore(clock), max_failures=3, cooldown_seconds=60, clock=clock)


@pytest.mark.anyio
async def test_missing_state_means_available(breaker):
    assert await breaker.is_available() is True
    status = await breaker.status()
    assert status["failures"] == 0
    assert status["tripped"] is False


@pytest.mark.anyio
async def test_trips_after_max_failures(breaker):
    await breaker.record_failure()
    await breaker.record_failure()
    assert await breaker.is_available() is True
    await breaker.record_failure()
    assert await breaker.is_available() is False


@pytest.mark.anyio
async def test_cooldown_resets_breaker(breaker, clock):
    for _ in range(3):
        await breaker.record_failure()
    clock.advance(59)
    assert await breaker.is_available() is False
    clock.advance(1)
    assert await breaker.is_available() is True
    status = await breaker.status()
    assert status["failures"] == 0
    assert status["tripped"] is False


@pytest.mark.anyio
async def test_one_failure_after_cooldown_does_not_retrip(breaker, clock):
    for _ in range(3):
        await breaker.record_failure()
    clock.advance(60)
    assert await breaker.is_available() is True
    await breaker.record_failure()
    assert await breaker.is_available() is True


@pytest.mark.anyio
async def test_success_resets_failures(breaker):
    await breaker.record_failure()
    await breaker.record_failure()
    await breaker.record_success()
    await breaker.record_failure()
    await breaker.record_failure()
    assert await breaker.is_available() is True


@pytest.mark.anyio
async def test_sporadic_failures_expire(breaker, clock):
    await breaker.record_failure()
    await breaker.record_failure()
    clock.advance(breaker.ttl)
    await breaker.record_failure()
    assert await breaker.is_available() is True
    assert (await breaker.status())["failures"] == 1


@pytest.mark.anyio
async def test_state_is_keyed_per_service(clock):
    store = InMemoryBreakerStore(clock)
    google = CircuitBreaker("google_ads", store, clock=clock)
    facebook = CircuitBreaker("facebook_ads", store, clock=clock)
    for _ in range(3):
        await google.record_failure()
    assert await google.is_available() is False
    assert await facebook.is_available() is True


@pytest.mark.anyio
async def test_breaker_for_uses_settings(breaker_store):
    breaker = breaker_for("facebook_ads", breaker_store)
    assert breaker.max_failures == 3
    assert breaker.cooldown_seconds == 60
    assert breaker.failures_key == "circuit-breaker:facebook_ads:failures"


@pytest.mark.anyio
async def test_redis_store_incr_sets_expiry():
    pipe = MagicMock()
    pipe.execute = AsyncMock(return_value=[2, True])
    pipe.__aenter__ = AsyncMock(return_value=pipe)
    pipe.__aexit__ = AsyncMock(return_value=False)
    client = MagicMock()
    client.pipeline.return_value = pipe

    store = RedisBreakerStore(client)
    assert await store.incr("circuit-breaker:x:failures", 120) == 2
    pipe.incr.assert_called_once_with("circuit-breaker:x:failures")
    pipe.expire.assert_called_once_with("circuit-breaker:x:failures", 120)


# ── GuardedPlatformClient ─────────────────────────────────────────────

@pytest.mark.anyio
async def test_guard_short_circuits_when_open(breaker):
    inner = FakePlatformClient("google_ads")
    guarded = GuardedPlatformClient(inner, breaker)
    for _ in range(3):
        await breaker.record_failure()

    result = await guarded.find_resource_by_name("123", CAMPAIGN, "Spring")
    assert result.ok is False
    assert result.error.code == CIRCUIT_OPEN
    assert result.error.retryable is True
    assert inner.calls == []


@pytest.mark.anyio
async def test_guard_counts_only_retryable_failures(breaker):
    inner = FakePlatformClient("google_ads")
    inner.fail("create", CAMPAIGN, code="policy_violation", retryable=False, times=5)
    guarded = GuardedPlatformClient(inner, breaker)
    spec = ResourceSpec(CAMPAIGN, "Spring")

    for _ in range(5):
        result = await guarded.create_resource("123", spec)
        assert result.error.code == "policy_violation"
    assert await breaker.is_available() is True


@pytest.mark.anyio
async def test_guard_trips_on_retryable_failures(breaker):
    inner = FakePlatformClient("google_ads")
    inner.fail("create", CAMPAIGN, code="rate_limited", times=3)
    guarded = GuardedPlatformClient(inner, breaker)
    spec = ResourceSpec(CAMPAIGN, "Spring")

    for _ in range(3):
        await guarded.create_resource("123", spec)
    assert await breaker.is_available() is False

    result = await guarded.create_resource("123", spec)
    assert result.error.code == CIRCUIT_OPEN
    assert inner.count("create") == 3


@pytest.mark.anyio
async def test_guard_success_resets_breaker(breaker):
    inner = FakePlatformClient("google_ads")
    inner.fail("find", CAMPAIGN, code="timeout", times=2)
    guarded = GuardedPlatformClient(inner, breaker)

    await guarded.find_resource_by_name("123", CAMPAIGN, "Spring")
    await guarded.find_resource_by_name("123", CAMPAIGN, "Spring")
    result = await guarded.find_resource_by_name("123", CAMPAIGN, "Spring")
    assert result.ok is True
    assert (await breaker.status())["failures"] == 0
