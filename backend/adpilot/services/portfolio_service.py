"""
Portfolio Service — Turns campaign ROAS into change recommendations.

Campaigns earning below the pause threshold get a PAUSE_CAMPAIGN
recommendation, campaigns above the scale threshold get INCREASE_BUDGET.
Recommendations always wait for approval; nothing is applied here.
"""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from adpilot.config import Settings, get_settings
from adpilot.models import (
    Customer, Campaign, CampaignStatus,
    Recommendation, RecommendationType, RecommendationStatus, ActivityLog,
)
from adpilot.services.performance_service import PerformanceAggregator, load_active_strategies

logger = logging.getLogger(__name__)


class PortfolioOptimizer:
    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        self.db = db
        self.pause_threshold = settings.roas_pause_threshold
        self.scale_threshold = settings.roas_scale_threshold
        self.increase_percentage = settings.budget_increase_percentage
        self.aggregator = PerformanceAggregator(db, lookback_days=settings.performance_lookback_days)
        self.recommendations: list[Recommendation] = []

    def decide(self, roas: float) -> Optional[tuple[str, dict, str]]:
        """Map a campaign ROAS to (type, parameters, rationale), or None to leave it alone."""
        if roas < self.pause_threshold:
            return (
                RecommendationType.PAUSE_CAMPAIGN.value,
                {"new_status": CampaignStatus.PAUSED.value},
                f"ROAS of {roas:.2f} is below the pause threshold of {self.pause_threshold}.",
            )
        if roas > self.scale_threshold:
            return (
                RecommendationType.INCREASE_BUDGET.value,
                {"increase_percentage": self.increase_percentage},
                f"ROAS of {roas:.2f} is above the scaling threshold of {self.scale_threshold}.",
            )
        return None

    async def _upsert(self, campaign: Campaign, rec_type: str, parameters: dict, rationale: str) -> Recommendation:
        result = await self.db.execute(
            select(Recommendation).where(
                Recommendation.campaign_id == campaign.id,
                Recommendation.type == rec_type,
                Recommendation.status == RecommendationStatus.PENDING.value,
            )
        )
        rec = result.scalar_one_or_none()
        target = {"type": "campaign", "id": str(campaign.id), "name": campaign.name}
        if rec:
            rec.target_entity = target
            rec.parameters = parameters
            rec.rationale = rationale
            rec.requires_approval = True
            return rec

        rec = Recommendation(
            campaign_id=campaign.id,
            type=rec_type,
            target_entity=target,
            parameters=parameters,
            rationale=rationale,
            requires_approval=True,
            status=RecommendationStatus.PENDING.value,
        )
        self.db.add(rec)
        self.db.add(ActivityLog(
            customer_id=campaign.customer_id,
            campaign_id=campaign.id,
            action="recommendation_created",
            category="optimizer",
            description=f"{rec_type} recommended for campaign '{campaign.name}'",
            entity_type="campaign",
            entity_id=str(campaign.id),
            details={"parameters": parameters, "rationale": rationale},
        ))
        return rec

    async def optimize(self, customer: Customer) -> bool:
        """Evaluate every active campaign of the customer and upsert pending recommendations."""
        customer_id = customer.id
        self.recommendations = []
        try:
            result = await self.db.execute(
                select(Campaign)
                .where(Campaign.customer_id == customer.id, Campaign.status == CampaignStatus.ACTIVE.value)
                .order_by(Campaign.created_at)
            )
            campaigns = result.scalars().all()
            strategies = await load_active_strategies(self.db, [c.id for c in campaigns])

            for campaign in campaigns:
                performance = await self.aggregator.campaign_performance(
                    campaign.id, strategies.get(campaign.id, []),
                )
                roas = performance.roas
                if roas is None:
                    logger.info(f"Portfolio: campaign {campaign.id} has no performance reports yet, skipping")
                    continue
                decision = self.decide(roas)
                if decision is None:
                    continue
                rec_type, parameters, rationale = decision
                rec = await self._upsert(campaign, rec_type, parameters, rationale)
                self.recommendations.append(rec)
                logger.info(f"Portfolio: {rec_type} pending for campaign {campaign.id} (ROAS {roas:.2f})")

            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Portfolio optimization failed for customer {customer_id}: {e}", exc_info=True)
            return False

        logger.info(f"Portfolio optimized for customer {customer.id}: {len(self.recommendations)} recommendations")
        return True
