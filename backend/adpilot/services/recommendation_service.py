"""
Recommendation Service — Human review workflow for optimizer output.

pending -> approved | rejected; approved -> applied only through the
conflict gate or by a human resolving the resulting conflict.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from adpilot.models import (
    Campaign, CampaignStatus, Conflict, ConflictStatus,
    Recommendation, RecommendationStatus, RecommendationType, ActivityLog,
)
from adpilot.services.conflict_service import ConflictGate
from adpilot.utils import utcnow

logger = logging.getLogger(__name__)


class RecommendationStateError(ValueError):
    """The recommendation or conflict is not in a state that allows the action."""
    pass


def apply_change(recommendation: Recommendation, campaign: Campaign) -> dict:
    """Mutate the campaign as the recommendation describes. Returns the before/after values."""
    params = recommendation.parameters or {}
    if recommendation.type == RecommendationType.PAUSE_CAMPAIGN.value:
        before = campaign.status
        campaign.status = params.get("new_status") or CampaignStatus.PAUSED.value
        return {"field": "status", "before": before, "after": campaign.status}
    if recommendation.type == RecommendationType.INCREASE_BUDGET.value:
        before = campaign.daily_budget
        if before is None:
            raise RecommendationStateError(f"Campaign {campaign.id} has no daily budget to increase")
        pct = float(params.get("increase_percentage", 0))
        campaign.daily_budget = before * (1 + pct / 100)
        return {"field": "daily_budget", "before": before, "after": campaign.daily_budget}
    raise RecommendationStateError(f"Unknown recommendation type: {recommendation.type}")


class RecommendationService:
    def __init__(self, db: AsyncSession, gate: Optional[ConflictGate] = None):
        self.db = db
        self.gate = gate or ConflictGate(db)

    async def _review(self, rec: Recommendation, new_status: str, note: Optional[str]) -> Recommendation:
        if rec.status != RecommendationStatus.PENDING.value:
            raise RecommendationStateError(f"Recommendation is already {rec.status}")
        rec.status = new_status
        rec.review_note = note
        rec.reviewed_at = utcnow()
        self.db.add(ActivityLog(
            campaign_id=rec.campaign_id,
            action=f"recommendation_{new_status}",
            category="optimizer",
            description=f"{new_status.title()} {rec.type}",
            entity_type="recommendation",
            entity_id=str(rec.id),
            details={"review_note": note},
        ))
        await self.db.commit()
        return rec

    async def approve(self, rec: Recommendation, note: Optional[str] = None) -> Recommendation:
        return await self._review(rec, RecommendationStatus.APPROVED.value, note)

    async def reject(self, rec: Recommendation, note: Optional[str] = None) -> Recommendation:
        return await self._review(rec, RecommendationStatus.REJECTED.value, note)

    async def apply(self, rec: Recommendation) -> dict:
        """
        Try to apply an approved recommendation. The conflict gate decides;
        a blocked application leaves the recommendation approved and returns the conflict.
        """
        if rec.requires_approval and rec.status != RecommendationStatus.APPROVED.value:
            raise RecommendationStateError(f"Recommendation must be approved before applying (status: {rec.status})")
        if rec.status in (RecommendationStatus.REJECTED.value, RecommendationStatus.APPLIED.value):
            raise RecommendationStateError(f"Recommendation is already {rec.status}")

        campaign = await self.db.get(Campaign, rec.campaign_id)
        if campaign is None:
            raise RecommendationStateError(f"Campaign {rec.campaign_id} not found")

        if not await self.gate.resolve(rec, campaign):
            conflict = self.gate.last_conflict
            return {
                "status": "conflict",
                "recommendation_id": str(rec.id),
                "conflict_id": str(conflict.id) if conflict else None,
            }

        change = self._apply(rec, campaign, reason="gate")
        await self.db.commit()
        return {"status": "applied", "recommendation_id": str(rec.id), "change": change}

    def _apply(self, rec: Recommendation, campaign: Campaign, reason: str) -> dict:
        change = apply_change(rec, campaign)
        rec.status = RecommendationStatus.APPLIED.value
        rec.applied_at = utcnow()
        self.db.add(ActivityLog(
            customer_id=campaign.customer_id,
            campaign_id=campaign.id,
            action="recommendation_applied",
            category="optimizer",
            description=f"Applied {rec.type} to campaign '{campaign.name}'",
            entity_type="recommendation",
            entity_id=str(rec.id),
            details={**change, "via": reason},
        ))
        logger.info(f"Applied {rec.type} to campaign {campaign.id}: {change}")
        return change

    async def resolve_conflict(self, conflict: Conflict, note: Optional[str] = None, apply_change: bool = False) -> dict:
        """
        Human resolution of a conflict. With ``apply_change`` the blocked
        recommendation is applied now; otherwise it is rejected.
        """
        if conflict.status != ConflictStatus.UNRESOLVED.value:
            raise RecommendationStateError("Conflict is already resolved")
        rec = await self.db.get(Recommendation, conflict.recommendation_id)
        campaign = await self.db.get(Campaign, conflict.campaign_id)
        if rec is None or campaign is None:
            raise RecommendationStateError("Conflict refers to a missing recommendation or campaign")

        change = None
        if apply_change:
            if rec.status == RecommendationStatus.APPLIED.value:
                raise RecommendationStateError("Recommendation was already applied")
            change = self._apply(rec, campaign, reason="conflict_resolution")
        elif rec.status in (RecommendationStatus.PENDING.value, RecommendationStatus.APPROVED.value):
            rec.status = RecommendationStatus.REJECTED.value
            rec.reviewed_at = utcnow()
            rec.review_note = note

        conflict.status = ConflictStatus.RESOLVED.value
        conflict.resolution_note = note
        conflict.resolved_at = utcnow()
        self.db.add(ActivityLog(
            customer_id=campaign.customer_id,
            campaign_id=campaign.id,
            action="conflict_resolved",
            category="conflicts",
            description=f"Conflict on {rec.type} resolved ({'applied' if apply_change else 'dismissed'})",
            entity_type="conflict",
            entity_id=str(conflict.id),
            details={"note": note, "applied": apply_change},
        ))
        await self.db.commit()
        return {
            "conflict_id": str(conflict.id),
            "status": conflict.status,
            "recommendation_status": rec.status,
            "change": change,
        }
