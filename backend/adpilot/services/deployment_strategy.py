"""
Deployment Strategy — Shared machinery for pushing a strategy to an ad platform.

A deployment is a fixed sequence of steps. Each step:
  1. reuses the external id already stored on the strategy (resume checkpoint),
  2. otherwise looks the resource up by its deterministic name under its parent,
  3. creates it only when absent,
  4. stores and commits the id before the next step runs.
The first failing step aborts the run; resources created so far stay in place
and the next run resumes from the last stored checkpoint.
"""

import enum
import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from adpilot.models import (
    Campaign, Customer, Strategy, Platform, CampaignType,
    AdCopy, ImageCollateral, VideoCollateral,
)
from adpilot.platform_client import PlatformClient, PlatformError, ResourceSpec, ASSET
from adpilot.storage import AssetStorage, StorageError

logger = logging.getLogger(__name__)


class DeploymentTarget(str, enum.Enum):
    GOOGLE_DISPLAY = "google_display"
    GOOGLE_SEARCH = "google_search"
    GOOGLE_VIDEO = "google_video"
    FACEBOOK_DISPLAY = "facebook_display"
    FACEBOOK_VIDEO = "facebook_video"


_TARGETS = {
    (Platform.GOOGLE_ADS.value, CampaignType.DISPLAY.value): DeploymentTarget.GOOGLE_DISPLAY,
    (Platform.GOOGLE_ADS.value, CampaignType.SEARCH.value): DeploymentTarget.GOOGLE_SEARCH,
    (Platform.GOOGLE_ADS.value, CampaignType.VIDEO.value): DeploymentTarget.GOOGLE_VIDEO,
    (Platform.FACEBOOK_ADS.value, CampaignType.DISPLAY.value): DeploymentTarget.FACEBOOK_DISPLAY,
    (Platform.FACEBOOK_ADS.value, CampaignType.VIDEO.value): DeploymentTarget.FACEBOOK_VIDEO,
}


class ValidationFailure(Exception):
    """A precondition for deployment is not met. Fatal, never retried."""
    pass


class DeploymentStepError(Exception):
    """A platform call failed inside a deployment step."""

    def __init__(self, step: str, error: PlatformError):
        super().__init__(f"{step}: {error}")
        self.step = step
        self.error = error


def resolve_target(platform: str, campaign_type: str) -> DeploymentTarget:
    target = _TARGETS.get((platform, campaign_type))
    if target is None:
        raise ValidationFailure(f"Unsupported deployment target: {platform}/{campaign_type}")
    return target


@dataclass
class DeploymentResult:
    strategy_id: Optional[str]
    target: Optional[str]
    success: bool
    resources: dict[str, str] = field(default_factory=dict)
    failed_step: Optional[str] = None
    error_code: Optional[str] = None
    error: Optional[str] = None
    retryable: bool = False

    def __bool__(self) -> bool:
        return self.success

    def to_dict(self) -> dict:
        return {
            "strategy_id": self.strategy_id,
            "target": self.target,
            "success": self.success,
            "resources": self.resources,
            "failed_step": self.failed_step,
            "error_code": self.error_code,
            "error": self.error,
            "retryable": self.retryable,
        }


@dataclass
class CreativeInputs:
    headlines: list[str] = field(default_factory=list)
    descriptions: list[str] = field(default_factory=list)
    images: list[str] = field(default_factory=list)
    videos: list[str] = field(default_factory=list)


class DeploymentStrategy:
    """Base class; subclasses set ``target`` and implement ``validate`` and ``run_steps``."""

    target: DeploymentTarget
    needs_images = False
    needs_videos = False

    def __init__(self, db: AsyncSession, client: PlatformClient, storage: AssetStorage):
        self.db = db
        self.client = client
        self.storage = storage
        self.resources: dict[str, str] = {}

    # ── Inputs & preconditions ────────────────────────────────────────

    async def load_inputs(self, strategy: Strategy) -> CreativeInputs:
        inputs = CreativeInputs()
        result = await self.db.execute(
            select(AdCopy)
            .where(AdCopy.strategy_id == strategy.id, AdCopy.platform == strategy.platform)
            .order_by(AdCopy.created_at.desc())
        )
        ad_copy = result.scalars().first()
        if ad_copy:
            inputs.headlines = [h for h in (ad_copy.headlines or []) if h]
            inputs.descriptions = [d for d in (ad_copy.descriptions or []) if d]
        if self.needs_images:
            result = await self.db.execute(
                select(ImageCollateral.storage_path)
                .where(ImageCollateral.strategy_id == strategy.id, ImageCollateral.is_active.is_(True))
                .order_by(ImageCollateral.created_at)
            )
            inputs.images = list(result.scalars().all())
        if self.needs_videos:
            result = await self.db.execute(
                select(VideoCollateral.storage_path)
                .where(VideoCollateral.strategy_id == strategy.id, VideoCollateral.is_active.is_(True))
                .order_by(VideoCollateral.created_at)
            )
            inputs.videos = list(result.scalars().all())
        return inputs

    def check_inputs(self, campaign: Campaign, inputs: CreativeInputs) -> None:
        if not campaign.landing_page_url:
            raise ValidationFailure(f"Campaign {campaign.id} has no landing page URL")
        if not inputs.headlines or not inputs.descriptions:
            raise ValidationFailure(f"No ad copy available for {self.target.value}")
        if self.needs_images and not inputs.images:
            raise ValidationFailure(f"No active images available for {self.target.value}")
        if self.needs_videos and not inputs.videos:
            raise ValidationFailure(f"No active videos available for {self.target.value}")

    def validate(self, customer: Customer, campaign: Campaign, strategy: Strategy, inputs: CreativeInputs) -> None:
        raise NotImplementedError

    async def run_steps(self, customer: Customer, campaign: Campaign, strategy: Strategy, inputs: CreativeInputs) -> None:
        raise NotImplementedError

    # ── Step runner ───────────────────────────────────────────────────

    @staticmethod
    def resource_name(campaign: Campaign, label: str, strategy: Optional[Strategy] = None) -> str:
        """
        Deterministic name used to find a resource again on a later run.
        Passing ``strategy`` scopes the name to that strategy, so a newly
        activated strategy never finds the resources of the one it replaced.
        """
        key = campaign.id.hex[:8]
        if strategy is not None:
            key = f"{key}/{strategy.id.hex[:8]}"
        return f"{campaign.name} - {label} [{key}]"

    async def ensure_resource(self, step: str, strategy: Strategy, attr: str, parent_id: str, spec: ResourceSpec) -> str:
        existing = getattr(strategy, attr)
        if existing:
            logger.info(f"Deploy {self.target.value}: {step} already done ({existing}), skipping")
            self.resources[step] = existing
            return existing

        found = await self.client.find_resource_by_name(parent_id, spec.kind, spec.name)
        if not found.ok:
            raise DeploymentStepError(step, found.error)
        if found.ref is not None:
            resource_id = found.ref.id
            logger.info(f"Deploy {self.target.value}: {step} found existing {spec.kind} {resource_id}")
        else:
            created = await self.client.create_resource(parent_id, spec)
            if not created.ok:
                raise DeploymentStepError(step, created.error)
            resource_id = created.ref.id
            logger.info(f"Deploy {self.target.value}: {step} created {spec.kind} {resource_id}")

        setattr(strategy, attr, resource_id)
        await self.db.commit()
        self.resources[step] = resource_id
        return resource_id

    async def ensure_assets(self, step: str, strategy: Strategy, account_id: str, paths: list[str], label: str) -> list[str]:
        """Upload each stored asset once; uploaded ids are kept per storage path on the strategy."""
        asset_ids = []
        for index, path in enumerate(paths, start=1):
            known = dict(strategy.asset_ids or {})
            if known.get(path):
                asset_ids.append(known[path])
                continue

            name = f"{strategy.id.hex[:8]} {label} {index}"
            found = await self.client.find_resource_by_name(account_id, ASSET, name)
            if not found.ok:
                raise DeploymentStepError(step, found.error)
            if found.ref is not None:
                asset_id = found.ref.id
            else:
                try:
                    data = await self.storage.get_object(path)
                except StorageError as e:
                    raise DeploymentStepError(step, PlatformError("storage_error", str(e), retryable=True))
                uploaded = await self.client.upload_asset(account_id, data, name)
                if not uploaded.ok:
                    raise DeploymentStepError(step, uploaded.error)
                asset_id = uploaded.ref.id
                logger.info(f"Deploy {self.target.value}: uploaded {label} {index} as {asset_id}")

            known[path] = asset_id
            strategy.asset_ids = known
            await self.db.commit()
            asset_ids.append(asset_id)

        self.resources[step] = ",".join(asset_ids)
        return asset_ids

    # ── Entry point ───────────────────────────────────────────────────

    async def deploy(self, campaign: Campaign, strategy: Strategy) -> DeploymentResult:
        self.resources = {}
        strategy_id = str(strategy.id)
        try:
            customer = await self.db.get(Customer, campaign.customer_id)
            if customer is None:
                raise ValidationFailure(f"Customer {campaign.customer_id} not found")
            inputs = await self.load_inputs(strategy)
            self.validate(customer, campaign, strategy, inputs)
            await self.run_steps(customer, campaign, strategy, inputs)
        except ValidationFailure as e:
            logger.warning(f"Deploy {self.target.value} for strategy {strategy_id} rejected: {e}")
            return DeploymentResult(
                strategy_id=strategy_id, target=self.target.value, success=False,
                resources=dict(self.resources), error_code="validation", error=str(e),
            )
        except DeploymentStepError as e:
            logger.error(f"Deploy {self.target.value} for strategy {strategy_id} failed at {e.step}: {e.error}")
            return DeploymentResult(
                strategy_id=strategy_id, target=self.target.value, success=False,
                resources=dict(self.resources), failed_step=e.step,
                error_code=e.error.code, error=e.error.message, retryable=e.error.retryable,
            )

        logger.info(f"Deploy {self.target.value} for strategy {strategy_id} complete: {self.resources}")
        return DeploymentResult(
            strategy_id=strategy_id, target=self.target.value, success=True, resources=dict(self.resources),
        )
