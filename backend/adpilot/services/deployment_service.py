"""
Deployment Service — Pushes a campaign's active strategies to their ad platforms.

Each (platform, campaign type) pair maps to one DeploymentTarget and one
strategy class. Platform calls go through a per-platform circuit breaker.
Repeated non-retryable failures of a strategy trigger a rollback to the last
snapshot. Retryable errors (rate limits, outages, an open breaker) never do.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from adpilot.config import Settings, get_settings
from adpilot.models import Campaign, Strategy, DeploymentStatus, ActivityLog
from adpilot.platform_client import PlatformClient
from adpilot.storage import AssetStorage
from adpilot.services.circuit_breaker import BreakerStore, GuardedPlatformClient, breaker_for
from adpilot.services.deployment_strategy import (
    DeploymentStrategy, DeploymentTarget, DeploymentResult, ValidationFailure, resolve_target,
)
from adpilot.services.google_ads_deployment import (
    GoogleDisplayDeployment, GoogleSearchDeployment, GoogleVideoDeployment,
)
from adpilot.services.facebook_ads_deployment import FacebookDisplayDeployment, FacebookVideoDeployment
from adpilot.services.version_service import RollbackService, latest_generation
from adpilot.utils import utcnow

logger = logging.getLogger(__name__)


DEPLOYMENT_STRATEGIES: dict[DeploymentTarget, type[DeploymentStrategy]] = {
    DeploymentTarget.GOOGLE_DISPLAY: GoogleDisplayDeployment,
    DeploymentTarget.GOOGLE_SEARCH: GoogleSearchDeployment,
    DeploymentTarget.GOOGLE_VIDEO: GoogleVideoDeployment,
    DeploymentTarget.FACEBOOK_DISPLAY: FacebookDisplayDeployment,
    DeploymentTarget.FACEBOOK_VIDEO: FacebookVideoDeployment,
}


def _check_registry() -> None:
    missing = [t.value for t in DeploymentTarget if t not in DEPLOYMENT_STRATEGIES]
    if missing:
        raise RuntimeError(f"No deployment strategy registered for: {', '.join(missing)}")
    for target, cls in DEPLOYMENT_STRATEGIES.items():
        if cls.target is not target:
            raise RuntimeError(f"{cls.__name__} is registered for {target.value} but targets {cls.target.value}")


_check_registry()


class DeploymentOrchestrator:
    def __init__(
        self,
        db: AsyncSession,
        clients: dict[str, PlatformClient],
        storage: AssetStorage,
        breaker_store: Optional[BreakerStore] = None,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()
        self.db = db
        self.storage = storage
        self.rollback_after_failures = settings.rollback_after_failures
        self.clients: dict[str, PlatformClient] = {
            platform: GuardedPlatformClient(client, breaker_for(platform, breaker_store, settings))
            for platform, client in clients.items()
        }

    def strategy_for(self, strategy: Strategy) -> DeploymentStrategy:
        target = resolve_target(strategy.platform, strategy.campaign_type)
        client = self.clients.get(strategy.platform)
        if client is None:
            raise ValidationFailure(f"No platform client configured for {strategy.platform}")
        return DEPLOYMENT_STRATEGIES[target](self.db, client, self.storage)

    async def deploy(self, campaign: Campaign, strategy: Strategy) -> DeploymentResult:
        """Deploy one strategy and record the outcome on it. Never raises."""
        strategy_id = strategy.id
        campaign_id = campaign.id
        customer_id = campaign.customer_id
        try:
            impl = self.strategy_for(strategy)
        except ValidationFailure as e:
            logger.warning(f"Strategy {strategy_id} cannot be deployed: {e}")
            result = DeploymentResult(
                strategy_id=str(strategy_id), target=None, success=False,
                error_code="validation", error=str(e),
            )
        else:
            strategy.deployment_status = DeploymentStatus.DEPLOYING.value
            await self.db.commit()
            try:
                result = await impl.deploy(campaign, strategy)
            except Exception as e:
                logger.exception(f"Unexpected error deploying strategy {strategy_id}: {e}")
                await self.db.rollback()
                await self.db.refresh(strategy)
                await self.db.refresh(campaign)
                result = DeploymentResult(
                    strategy_id=str(strategy_id), target=impl.target.value, success=False,
                    resources=dict(impl.resources), error_code="internal", error=str(e),
                )

        if result:
            strategy.deployment_status = DeploymentStatus.DEPLOYED.value
            strategy.deployed_at = utcnow()
            strategy.deployment_error = None
            strategy.deployment_failures = 0
        else:
            strategy.deployment_status = DeploymentStatus.FAILED.value
            strategy.deployment_error = result.error
            if not result.retryable:
                strategy.deployment_failures = (strategy.deployment_failures or 0) + 1

        self.db.add(ActivityLog(
            customer_id=customer_id,
            campaign_id=campaign_id,
            action="strategy_deployed" if result else "strategy_deploy_failed",
            category="deployment",
            description=(
                f"Deployed {result.target} strategy" if result
                else f"Deployment of {strategy.platform} strategy failed: {result.error}"
            ),
            entity_type="strategy",
            entity_id=str(strategy_id),
            details=result.to_dict(),
            status="success" if result else "error",
        ))
        await self.db.commit()
        return result

    async def _restored_from_latest(self, campaign_id, strategies: list[Strategy]) -> bool:
        """True when a failing strategy is itself the restore of the newest generation."""
        latest = await latest_generation(self.db, campaign_id)
        return any(
            s.restored_from is not None and s.restored_from == latest
            for s in strategies
            if s.deployment_failures >= self.rollback_after_failures
        )

    async def deploy_campaign(self, campaign: Campaign) -> dict:
        """Deploy every active strategy of the campaign independently; report per platform."""
        campaign_id = campaign.id
        result = await self.db.execute(
            select(Strategy)
            .where(Strategy.campaign_id == campaign_id, Strategy.signed_off_at.is_not(None))
            .order_by(Strategy.platform)
        )
        strategies = result.scalars().all()
        if not strategies:
            logger.warning(f"Campaign {campaign_id} has no active strategies to deploy")
            return {"campaign_id": str(campaign_id), "success": False, "results": {}, "rolled_back": False,
                    "error": "No active strategies"}

        results: dict[str, dict] = {}
        needs_rollback = False
        for strategy in strategies:
            outcome = await self.deploy(campaign, strategy)
            results[strategy.platform] = outcome.to_dict()
            if not outcome and strategy.deployment_failures >= self.rollback_after_failures:
                logger.warning(
                    f"Strategy {strategy.id} failed {strategy.deployment_failures} times in a row, "
                    f"rolling back campaign {campaign_id}"
                )
                needs_rollback = True

        rolled_back = False
        if needs_rollback and await self._restored_from_latest(campaign_id, strategies):
            logger.warning(
                f"Campaign {campaign_id} is already on its newest snapshot, not rolling back again"
            )
            needs_rollback = False
        if needs_rollback:
            rolled_back = await RollbackService(self.db).rollback(campaign)
            if not rolled_back:
                await self.db.refresh(campaign)

        succeeded = sum(1 for r in results.values() if r["success"])
        failed = len(results) - succeeded
        logger.info(f"Campaign {campaign_id} deployment: {succeeded} succeeded, {failed} failed")
        return {
            "campaign_id": str(campaign_id),
            "success": failed == 0,
            "succeeded": succeeded,
            "failed": failed,
            "results": results,
            "rolled_back": rolled_back,
        }
