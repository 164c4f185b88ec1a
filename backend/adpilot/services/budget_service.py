"""
Budget Service — Splits a customer's daily budget across their active campaigns.

Every campaign is guaranteed a floor of ``min_budget_share`` of the total; the
remaining pool is divided in proportion to each campaign's mean strategy ROAS.
Only the database is touched. Syncing the new budgets to the ad platforms is
a separate concern; deployment sends a budget only when it first creates it.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from adpilot.config import Settings, get_settings
from adpilot.models import Customer, Campaign, CampaignStatus, ActivityLog
from adpilot.services.performance_service import PerformanceAggregator, load_active_strategies

logger = logging.getLogger(__name__)


class BudgetAllocator:
    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        self.db = db
        self.min_budget_share = settings.min_budget_share
        self.default_roas = settings.default_roas
        self.aggregator = PerformanceAggregator(db, lookback_days=settings.performance_lookback_days)
        self.allocations: dict[uuid.UUID, float] = {}

    def split(self, total_budget: float, weights: dict[uuid.UUID, float]) -> Optional[dict[uuid.UUID, float]]:
        """
        Pure allocation step. Returns None when the floor for every campaign
        does not fit into the total.
        """
        count = len(weights)
        pool = total_budget * (1 - self.min_budget_share * count)
        if pool < 0:
            return None
        total_weight = sum(weights.values())
        if total_weight <= 0:
            even = total_budget / count
            return {campaign_id: even for campaign_id in weights}
        min_budget = total_budget * self.min_budget_share
        return {
            campaign_id: min_budget + pool * weight / total_weight
            for campaign_id, weight in weights.items()
        }

    async def allocate(self, customer: Customer, total_budget: Optional[float] = None) -> bool:
        """Compute and persist ``daily_budget`` for every active campaign of the customer."""
        customer_id = customer.id
        self.allocations = {}
        if total_budget is None:
            total_budget = customer.total_daily_budget
        if not total_budget or total_budget <= 0:
            logger.warning(f"Budget allocation skipped for customer {customer.id}: total budget {total_budget!r} is not positive")
            return False

        try:
            result = await self.db.execute(
                select(Campaign)
                .where(Campaign.customer_id == customer.id, Campaign.status == CampaignStatus.ACTIVE.value)
                .order_by(Campaign.created_at)
            )
            campaigns = result.scalars().all()
            if not campaigns:
                logger.warning(f"Budget allocation skipped for customer {customer.id}: no active campaigns")
                return False

            strategies = await load_active_strategies(self.db, [c.id for c in campaigns])
            weights = {}
            for campaign in campaigns:
                weights[campaign.id] = await self.aggregator.campaign_weight(
                    strategies.get(campaign.id, []), self.default_roas,
                )

            allocations = self.split(total_budget, weights)
            if allocations is None:
                logger.error(
                    f"Budget allocation failed for customer {customer.id}: {len(campaigns)} campaigns "
                    f"at {self.min_budget_share:.0%} minimum exceed the total budget"
                )
                return False

            for campaign in campaigns:
                campaign.daily_budget = allocations[campaign.id]

            self.db.add(ActivityLog(
                customer_id=customer.id,
                action="budget_allocated",
                category="budget",
                description=f"Allocated {total_budget:.2f} across {len(campaigns)} active campaigns",
                entity_type="customer",
                entity_id=str(customer.id),
                details={
                    "total_budget": total_budget,
                    "weights": {str(k): v for k, v in weights.items()},
                    "allocations": {str(k): round(v, 2) for k, v in allocations.items()},
                },
            ))
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Budget allocation failed for customer {customer_id}: {e}", exc_info=True)
            return False

        self.allocations = allocations
        logger.info(f"Budget allocated for customer {customer.id}: {len(allocations)} campaigns, total {total_budget:.2f}")
        return True
