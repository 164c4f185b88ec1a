"""
Shared test fixtures: in-memory sqlite database, fake ad platforms and asset storage.
"""

import os

# Must be set before adpilot.database builds its engine
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["ENVIRONMENT"] = "development"
os.environ["API_KEY"] = ""
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["REDIS_URL"] = ""

import itertools
import pytest
from datetime import date
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from adpilot.config import get_settings
from adpilot.database import Base
from adpilot.models import (
    Customer, Campaign, CampaignStatus, Strategy, Platform, CampaignType,
    PerformanceData, AdCopy, ImageCollateral, VideoCollateral,
)
from adpilot.platform_client import PlatformError, PlatformResult, ResourceRef, ResourceSpec, ASSET
from adpilot.services.circuit_breaker import InMemoryBreakerStore
from adpilot.utils import utcnow

get_settings.cache_clear()


@pytest.fixture
def anyio_backend():
    return "asyncio"


# ── Database ──────────────────────────────────────────────────────────

@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# ── Data factory ──────────────────────────────────────────────────────

class Factory:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _save(self, obj):
        self.db.add(obj)
        await self.db.commit()
        return obj

    async def customer(self, **kwargs) -> Customer:
        kwargs.setdefault("name", "Acme Outdoor")
        kwargs.setdefault("total_daily_budget", 1000.0)
        kwargs.setdefault("google_ads_customer_id", "123-456-7890")
        kwargs.setdefault("facebook_ads_account_id", "act_998877")
        kwargs.setdefault("facebook_page_id", "page-42")
        return await self._save(Customer(**kwargs))

    async def campaign(self, customer: Customer, **kwargs) -> Campaign:
        kwargs.setdefault("name", "Spring Sale")
        kwargs.setdefault("status", CampaignStatus.ACTIVE.value)
        kwargs.setdefault("landing_page_url", "https://acme.test/spring")
        kwargs.setdefault("daily_budget", 100.0)
        return await self._save(Campaign(customer_id=customer.id, **kwargs))

    async def strategy(self, campaign: Campaign, active: bool = True, **kwargs) -> Strategy:
        kwargs.setdefault("platform", Platform.GOOGLE_ADS.value)
        kwargs.setdefault("campaign_type", CampaignType.DISPLAY.value)
        kwargs.setdefault("cpa_target_micros", 10_000_000)
        kwargs.setdefault("revenue_cpa_multiple", 1.0)
        if active:
            kwargs.setdefault("signed_off_at", utcnow())
        return await self._save(Strategy(campaign_id=campaign.id, **kwargs))

    async def performance(self, strategy: Strategy, conversions: int, spend: float, **kwargs) -> PerformanceData:
        kwargs.setdefault("impressions", 1000)
        kwargs.setdefault("clicks", 50)
        kwargs.setdefault("window_end", date.today())
        return await self._save(PerformanceData(
            strategy_id=strategy.id, conversions=conversions, spend=spend, **kwargs,
        ))

    async def ad_copy(self, strategy: Strategy, **kwargs) -> AdCopy:
        kwargs.setdefault("headlines", ["Gear Up for Spring", "Trail Ready", "Save 20%"])
        kwargs.setdefault("descriptions", ["Outdoor gear for every adventure.", "Free shipping over $50."])
        return await self._save(AdCopy(strategy_id=strategy.id, platform=strategy.platform, **kwargs))

    async def image(self, strategy: Strategy, path: str = "images/hero.png", **kwargs) -> ImageCollateral:
        return await self._save(ImageCollateral(strategy_id=strategy.id, storage_path=path, **kwargs))

    async def video(self, strategy: Strategy, path: str = "videos/spot.mp4", **kwargs) -> VideoCollateral:
        return await self._save(VideoCollateral(strategy_id=strategy.id, storage_path=path, **kwargs))

    async def deployable(self, campaign: Campaign, **kwargs) -> Strategy:
        """Active strategy with the creative inputs its target needs."""
        strategy = await self.strategy(campaign, **kwargs)
        await self.ad_copy(strategy)
        if strategy.campaign_type == CampaignType.DISPLAY.value:
            await self.image(strategy)
        if strategy.campaign_type == CampaignType.VIDEO.value:
            await self.video(strategy)
        return strategy


@pytest.fixture
def factory(db):
    return Factory(db)


# ── Fake collaborators ────────────────────────────────────────────────

class FakePlatformClient:
    """In-memory ad platform: resources keyed by (parent, kind, name); records every call."""

    def __init__(self, platform: str):
        self.platform = platform
        self.calls: list[tuple] = []
        self.resources: dict[tuple[str, str, str], str] = {}
        self.failures: dict[tuple[str, str], list[PlatformError]] = {}
        self._ids = itertools.count(1)

    def fail(self, operation: str, kind: str, code: str = "server_error", retryable: bool = True, times: int = 1):
        errors = self.failures.setdefault((operation, kind), [])
        errors.extend(PlatformError(code, f"{operation} {kind} failed", retryable) for _ in range(times))

    def _failure(self, operation: str, kind: str):
        errors = self.failures.get((operation, kind))
        if errors:
            return PlatformResult(error=errors.pop(0))
        return None

    def count(self, operation: str, kind: str = None) -> int:
        return sum(1 for c in self.calls if c[0] == operation and (kind is None or c[2] == kind))

    def seed(self, parent_id: str, kind: str, name: str) -> str:
        resource_id = f"{self.platform}-{kind}-existing-{next(self._ids)}"
        self.resources[(parent_id, kind, name)] = resource_id
        return resource_id

    async def find_resource_by_name(self, parent_id: str, kind: str, name: str) -> PlatformResult:
        self.calls.append(("find", parent_id, kind, name))
        failed = self._failure("find", kind)
        if failed:
            return failed
        resource_id = self.resources.get((parent_id, kind, name))
        if resource_id is None:
            return PlatformResult.not_found()
        return PlatformResult.success(ResourceRef(id=resource_id, kind=kind, name=name))

    async def create_resource(self, parent_id: str, spec: ResourceSpec) -> PlatformResult:
        self.calls.append(("create", parent_id, spec.kind, spec.name, spec.attributes))
        failed = self._failure("create", spec.kind)
        if failed:
            return failed
        resource_id = f"{self.platform}-{spec.kind}-{next(self._ids)}"
        self.resources[(parent_id, spec.kind, spec.name)] = resource_id
        return PlatformResult.success(ResourceRef(id=resource_id, kind=spec.kind, name=spec.name))

    async def upload_asset(self, account_id: str, data: bytes, name: str) -> PlatformResult:
        self.calls.append(("upload", account_id, ASSET, name, len(data)))
        failed = self._failure("upload", ASSET)
        if failed:
            return failed
        resource_id = f"{self.platform}-asset-{next(self._ids)}"
        self.resources[(account_id, ASSET, name)] = resource_id
        return PlatformResult.success(ResourceRef(id=resource_id, kind=ASSET, name=name))


class FakeAssetStorage:
    def __init__(self):
        self.reads: list[str] = []

    async def get_object(self, path: str) -> bytes:
        self.reads.append(path)
        return f"bytes:{path}".encode()

    def url_for(self, path: str) -> str:
        return f"https://cdn.test/{path}"


@pytest.fixture
def google_client():
    return FakePlatformClient(Platform.GOOGLE_ADS.value)


@pytest.fixture
def facebook_client():
    return FakePlatformClient(Platform.FACEBOOK_ADS.value)


@pytest.fixture
def clients(google_client, facebook_client):
    return {google_client.platform: google_client, facebook_client.platform: facebook_client}


@pytest.fixture
def storage():
    return FakeAssetStorage()


@pytest.fixture
def breaker_store():
    return InMemoryBreakerStore()
