"""
Version Service — Strategy snapshots and campaign rollback.

A generation is every StrategyVersion of a campaign sharing one versioned_at.
Activating new strategies snapshots the current active set first, so a
rollback always restores the last known configuration before the change.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from adpilot.models import (
    Campaign, Strategy, StrategyVersion, DeploymentStatus,
    AdCopy, ImageCollateral, VideoCollateral, ActivityLog,
    VERSIONED_STRATEGY_FIELDS,
)
from adpilot.utils import utcnow, isoformat

logger = logging.getLogger(__name__)


async def _active_strategies(db: AsyncSession, campaign: Campaign) -> list[Strategy]:
    result = await db.execute(
        select(Strategy)
        .where(Strategy.campaign_id == campaign.id, Strategy.signed_off_at.is_not(None))
        .order_by(Strategy.platform)
    )
    return list(result.scalars().all())


async def latest_generation(db: AsyncSession, campaign_id) -> Optional[datetime]:
    result = await db.execute(
        select(func.max(StrategyVersion.versioned_at)).where(StrategyVersion.campaign_id == campaign_id)
    )
    return result.scalar()


class VersionStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def snapshot(self, campaign: Campaign) -> Optional[datetime]:
        """
        Write one StrategyVersion per active strategy under a shared versioned_at.
        Flushes only; the caller owns the transaction. Returns None when nothing is active.
        """
        strategies = await _active_strategies(self.db, campaign)
        if not strategies:
            return None

        versioned_at = utcnow()
        latest = await latest_generation(self.db, campaign.id)
        if latest is not None and versioned_at <= latest:
            versioned_at = latest + timedelta(microseconds=1)

        for strategy in strategies:
            self.db.add(StrategyVersion(
                strategy_id=strategy.id,
                campaign_id=campaign.id,
                versioned_at=versioned_at,
                **{name: getattr(strategy, name) for name in VERSIONED_STRATEGY_FIELDS},
            ))
        await self.db.flush()
        logger.info(f"Snapshot of {len(strategies)} strategies for campaign {campaign.id} at {versioned_at}")
        return versioned_at

    async def activate(self, campaign: Campaign, strategies: list[Strategy]) -> Optional[datetime]:
        """
        Make ``strategies`` the active ones for their platforms, snapshotting the
        current active generation first. One transaction; returns the snapshot time.
        """
        platforms = [s.platform for s in strategies]
        if len(set(platforms)) != len(platforms):
            raise ValueError("At most one strategy per platform can be activated at once")

        try:
            versioned_at = await self.snapshot(campaign)

            for strategy in strategies:
                strategy.campaign_id = campaign.id
                strategy.signed_off_at = None
                self.db.add(strategy)
            await self.db.flush()

            await self.db.execute(
                update(Strategy)
                .where(
                    Strategy.campaign_id == campaign.id,
                    Strategy.platform.in_(platforms),
                    Strategy.signed_off_at.is_not(None),
                    Strategy.id.not_in([s.id for s in strategies]),
                )
                .values(signed_off_at=None)
            )

            now = utcnow()
            for strategy in strategies:
                strategy.signed_off_at = now

            self.db.add(ActivityLog(
                customer_id=campaign.customer_id,
                campaign_id=campaign.id,
                action="strategies_activated",
                category="deployment",
                description=f"Activated {len(strategies)} strategies for campaign '{campaign.name}'",
                entity_type="campaign",
                entity_id=str(campaign.id),
                details={"platforms": platforms, "snapshot": isoformat(versioned_at)},
            ))
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return versioned_at

    async def history(self, campaign: Campaign) -> list[dict]:
        """Generations of the campaign, newest first."""
        result = await self.db.execute(
            select(StrategyVersion)
            .where(StrategyVersion.campaign_id == campaign.id)
            .order_by(StrategyVersion.versioned_at.desc(), StrategyVersion.platform)
        )
        generations: dict[datetime, list[StrategyVersion]] = {}
        for version in result.scalars().all():
            generations.setdefault(version.versioned_at, []).append(version)
        return [
            {
                "versioned_at": versioned_at.isoformat(),
                "strategies": [
                    {
                        "id": str(v.id),
                        "strategy_id": str(v.strategy_id) if v.strategy_id else None,
                        "platform": v.platform,
                        "campaign_type": v.campaign_type,
                        "daily_budget": v.daily_budget,
                        "platform_campaign_id": v.platform_campaign_id,
                    }
                    for v in versions
                ],
            }
            for versioned_at, versions in generations.items()
        ]


class RollbackService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _clone_creatives(self, source_id, target: Strategy) -> None:
        if source_id is None:
            return
        for model in (AdCopy, ImageCollateral, VideoCollateral):
            result = await self.db.execute(select(model).where(model.strategy_id == source_id))
            for row in result.scalars().all():
                values = {
                    c.key: getattr(row, c.key)
                    for c in model.__table__.columns
                    if c.key not in ("id", "strategy_id", "created_at")
                }
                self.db.add(model(strategy_id=target.id, **values))

    async def rollback(self, campaign: Campaign) -> bool:
        """
        Replace the campaign's active strategies with the latest snapshot generation.
        All or nothing; returns False when there is nothing to restore or anything fails.
        """
        campaign_id = campaign.id
        try:
            versioned_at = await latest_generation(self.db, campaign.id)
            if versioned_at is None:
                logger.warning(f"Rollback of campaign {campaign.id} skipped: no strategy versions")
                return False

            result = await self.db.execute(
                select(StrategyVersion)
                .where(
                    StrategyVersion.campaign_id == campaign.id,
                    StrategyVersion.versioned_at == versioned_at,
                )
                .order_by(StrategyVersion.platform)
            )
            versions = result.scalars().all()

            await self.db.execute(
                update(Strategy)
                .where(Strategy.campaign_id == campaign.id, Strategy.signed_off_at.is_not(None))
                .values(signed_off_at=None)
            )

            now = utcnow()
            restored = []
            for version in versions:
                strategy = Strategy(
                    campaign_id=campaign.id,
                    signed_off_at=now,
                    deployment_status=(
                        DeploymentStatus.DEPLOYED.value if version.ad_id else DeploymentStatus.PENDING.value
                    ),
                    deployment_failures=0,
                    restored_from=versioned_at,
                    **{name: getattr(version, name) for name in VERSIONED_STRATEGY_FIELDS},
                )
                self.db.add(strategy)
                await self.db.flush()
                await self._clone_creatives(version.strategy_id, strategy)
                restored.append(strategy)

            self.db.add(ActivityLog(
                customer_id=campaign.customer_id,
                campaign_id=campaign.id,
                action="campaign_rolled_back",
                category="rollback",
                description=f"Restored {len(restored)} strategies from {versioned_at.isoformat()}",
                entity_type="campaign",
                entity_id=str(campaign.id),
                details={
                    "versioned_at": versioned_at.isoformat(),
                    "strategy_ids": [str(s.id) for s in restored],
                },
            ))
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Rollback of campaign {campaign_id} failed: {e}", exc_info=True)
            return False

        logger.info(f"Campaign {campaign.id} rolled back to generation {versioned_at}")
        return True
