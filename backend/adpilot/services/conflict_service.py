"""
Conflict Service — Gate between recommendations and live campaign state.

Automated changes never reach a campaign directly: every application attempt
records an unresolved Conflict for a human to review and is refused.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from adpilot.models import Campaign, Conflict, ConflictStatus, Recommendation, ActivityLog

logger = logging.getLogger(__name__)


class ConflictGate:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.last_conflict: Optional[Conflict] = None

    async def resolve(self, recommendation: Recommendation, campaign: Campaign) -> bool:
        """Record a Conflict for the recommendation. Returns False: the change may not proceed."""
        conflict = Conflict(
            campaign_id=campaign.id,
            recommendation_id=recommendation.id,
            status=ConflictStatus.UNRESOLVED.value,
            campaign_status=campaign.status,
        )
        self.db.add(conflict)
        self.db.add(ActivityLog(
            customer_id=campaign.customer_id,
            campaign_id=campaign.id,
            action="conflict_created",
            category="conflicts",
            description=f"{recommendation.type} for campaign '{campaign.name}' held for manual review",
            entity_type="recommendation",
            entity_id=str(recommendation.id),
            status="blocked",
        ))
        await self.db.commit()
        self.last_conflict = conflict
        logger.warning(f"Conflict {conflict.id} recorded: {recommendation.type} on campaign {campaign.id} blocked")
        return False


async def list_conflicts(db: AsyncSession, status: Optional[str] = None, campaign_id=None) -> list[Conflict]:
    stmt = select(Conflict).order_by(Conflict.created_at.desc())
    if status:
        stmt = stmt.where(Conflict.status == status)
    if campaign_id:
        stmt = stmt.where(Conflict.campaign_id == campaign_id)
    result = await db.execute(stmt)
    return list(result.scalars().all())
