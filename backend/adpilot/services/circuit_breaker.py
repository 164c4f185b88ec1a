"""
Circuit Breaker Service — Isolates failing ad platforms.

After ``max_failures`` retryable failures a platform's breaker trips and every
call is refused locally until ``cooldown_seconds`` have passed, then the breaker
resets and calls flow again. State lives in a TTL key-value store (Redis in
production, in-process for development and tests); missing state means available.
"""

import logging
import time
from functools import lru_cache
from typing import Callable, Optional, Protocol

import redis.asyncio as aioredis

from adpilot.config import Settings, get_settings
from adpilot.platform_client import PlatformClient, PlatformResult, ResourceSpec, CIRCUIT_OPEN

logger = logging.getLogger(__name__)

KEY_PREFIX = "circuit-breaker"


class BreakerStore(Protocol):
    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str, ttl: int) -> None:
        ...

    async def incr(self, key: str, ttl: int) -> int:
        ...

    async def delete(self, *keys: str) -> None:
        ...


class InMemoryBreakerStore:
    """Process-local store with per-key expiry driven by an injectable clock."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self._data: dict[str, tuple[str, float]] = {}

    def _live(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self.clock() >= expires_at:
            del self._data[key]
            return None
        return value

    async def get(self, key: str) -> Optional[str]:
        return self._live(key)

    async def set(self, key: str, value: str, ttl: int) -> None:
        self._data[key] = (value, self.clock() + ttl)

    async def incr(self, key: str, ttl: int) -> int:
        current = int(self._live(key) or 0) + 1
        self._data[key] = (str(current), self.clock() + ttl)
        return current

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._data.pop(key, None)


class RedisBreakerStore:
    """Breaker state shared by every worker through Redis."""

    def __init__(self, client: aioredis.Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisBreakerStore":
        return cls(aioredis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def set(self, key: str, value: str, ttl: int) -> None:
        await self.client.set(key, value, ex=ttl)

    async def incr(self, key: str, ttl: int) -> int:
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            pipe.expire(key, ttl)
            count, _ = await pipe.execute()
        return int(count)

    async def delete(self, *keys: str) -> None:
        if keys:
            await self.client.delete(*keys)


class CircuitBreaker:
    def __init__(
        self,
        service_name: str,
        store: BreakerStore,
        max_failures: int = 3,
        cooldown_seconds: int = 60,
        clock: Callable[[], float] = time.time,
    ):
        self.service_name = service_name
        self.store = store
        self.max_failures = max_failures
        self.cooldown_seconds = cooldown_seconds
        self.clock = clock

    @property
    def failures_key(self) -> str:
        return f"{KEY_PREFIX}:{self.service_name}:failures"

    @property
    def tripped_key(self) -> str:
        return f"{KEY_PREFIX}:{self.service_name}:tripped"

    @property
    def ttl(self) -> int:
        return int(self.cooldown_seconds * 2)

    async def is_available(self) -> bool:
        tripped_at = await self.store.get(self.tripped_key)
        if tripped_at is None:
            return True
        if self.clock() - float(tripped_at) >= self.cooldown_seconds:
            logger.info(f"Circuit breaker for {self.service_name} cooled down, resetting")
            await self.reset()
            return True
        return False

    async def record_failure(self) -> int:
        failures = await self.store.incr(self.failures_key, self.ttl)
        if failures >= self.max_failures:
            await self.store.set(self.tripped_key, str(self.clock()), self.ttl)
            logger.warning(f"Circuit breaker tripped for {self.service_name} after {failures} failures")
        return failures

    async def record_success(self) -> None:
        await self.reset()

    async def reset(self) -> None:
        await self.store.delete(self.failures_key, self.tripped_key)

    async def status(self) -> dict:
        failures = await self.store.get(self.failures_key)
        tripped_at = await self.store.get(self.tripped_key)
        retry_in = None
        if tripped_at is not None:
            retry_in = max(0.0, self.cooldown_seconds - (self.clock() - float(tripped_at)))
        return {
            "service": self.service_name,
            "failures": int(failures or 0),
            "tripped": tripped_at is not None,
            "tripped_at": float(tripped_at) if tripped_at is not None else None,
            "retry_in_seconds": retry_in,
            "max_failures": self.max_failures,
            "cooldown_seconds": self.cooldown_seconds,
        }


class GuardedPlatformClient:
    """
    PlatformClient that routes every call through a circuit breaker.
    Retryable errors count against the breaker, successes reset it and
    non-retryable errors leave it untouched.
    """

    def __init__(self, client: PlatformClient, breaker: CircuitBreaker):
        self.client = client
        self.breaker = breaker
        self.platform = client.platform

    async def _guard(self, operation: str, call) -> PlatformResult:
        if not await self.breaker.is_available():
            logger.warning(f"Circuit open for {self.breaker.service_name}, skipping {operation}")
            return PlatformResult.failure(
                CIRCUIT_OPEN,
                f"{self.breaker.service_name} is unavailable (circuit open)",
                retryable=True,
            )
        result = await call()
        if result.ok:
            await self.breaker.record_success()
        elif result.error.retryable:
            await self.breaker.record_failure()
        return result

    async def find_resource_by_name(self, parent_id: str, kind: str, name: str) -> PlatformResult:
        return await self._guard(
            "find_resource_by_name",
            lambda: self.client.find_resource_by_name(parent_id, kind, name),
        )

    async def create_resource(self, parent_id: str, spec: ResourceSpec) -> PlatformResult:
        return await self._guard(
            "create_resource",
            lambda: self.client.create_resource(parent_id, spec),
        )

    async def upload_asset(self, account_id: str, data: bytes, name: str) -> PlatformResult:
        return await self._guard(
            "upload_asset",
            lambda: self.client.upload_asset(account_id, data, name),
        )


@lru_cache
def get_breaker_store() -> BreakerStore:
    """Shared breaker store: Redis when REDIS_URL is set, otherwise process-local."""
    settings = get_settings()
    if settings.redis_url:
        logger.info("Circuit breaker state stored in Redis")
        return RedisBreakerStore.from_url(settings.redis_url)
    return InMemoryBreakerStore()


def breaker_for(service_name: str, store: Optional[BreakerStore] = None, settings: Optional[Settings] = None) -> CircuitBreaker:
    settings = settings or get_settings()
    return CircuitBreaker(
        service_name,
        store if store is not None else get_breaker_store(),
        max_failures=settings.circuit_breaker_max_failures,
        cooldown_seconds=settings.circuit_breaker_cooldown_seconds,
    )
