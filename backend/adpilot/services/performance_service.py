"""
Performance Service — Aggregates ingested performance data into per-strategy
and per-campaign return on ad spend (ROAS).

Revenue is estimated from conversions: conversions × CPA target × revenue/CPA multiple.
"""

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, Optional

from sqlalchemy import select, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from adpilot.models import Strategy, PerformanceData
from adpilot.utils import safe_divide

logger = logging.getLogger(__name__)


@dataclass
class StrategyPerformance:
    strategy_id: uuid.UUID
    reports: int = 0
    impressions: int = 0
    clicks: int = 0
    conversions: int = 0
    spend: float = 0.0
    revenue: float = 0.0

    @property
    def roas(self) -> Optional[float]:
        """None until the strategy has recorded spend."""
        if not self.spend:
            return None
        return self.revenue / self.spend


@dataclass
class CampaignPerformance:
    campaign_id: uuid.UUID
    reports: int = 0
    spend: float = 0.0
    revenue: float = 0.0
    conversions: int = 0
    strategies: int = 0

    @property
    def roas(self) -> Optional[float]:
        """
        Spend-weighted ROAS across the campaign's strategies. Reports with no
        spend give 0; None only when nothing has been reported in the window.
        """
        if not self.spend:
            return 0.0 if self.reports else None
        return self.revenue / self.spend


def estimate_revenue(strategy: Strategy, conversions: int) -> float:
    multiple = strategy.revenue_cpa_multiple if strategy.revenue_cpa_multiple is not None else 1.0
    return conversions * strategy.cpa_target * multiple


async def load_active_strategies(db: AsyncSession, campaign_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, list[Strategy]]:
    """Active (signed-off) strategies grouped by campaign id."""
    ids = list(campaign_ids)
    grouped: dict[uuid.UUID, list[Strategy]] = defaultdict(list)
    if not ids:
        return grouped
    result = await db.execute(
        select(Strategy)
        .where(Strategy.campaign_id.in_(ids), Strategy.signed_off_at.is_not(None))
        .order_by(Strategy.platform)
    )
    for strategy in result.scalars().all():
        grouped[strategy.campaign_id].append(strategy)
    return grouped


class PerformanceAggregator:
    """Read-only view over PerformanceData, optionally limited to a lookback window."""

    def __init__(self, db: AsyncSession, lookback_days: Optional[int] = None, today: Optional[date] = None):
        self.db = db
        self.since = None
        if lookback_days:
            self.since = (today or date.today()) - timedelta(days=lookback_days)

    async def _totals(self, strategy_ids: list[uuid.UUID]) -> dict[uuid.UUID, tuple]:
        if not strategy_ids:
            return {}
        stmt = (
            select(
                PerformanceData.strategy_id,
                func.coalesce(func.sum(PerformanceData.impressions), 0),
                func.coalesce(func.sum(PerformanceData.clicks), 0),
                func.coalesce(func.sum(PerformanceData.conversions), 0),
                func.coalesce(func.sum(PerformanceData.spend), 0.0),
                func.count(PerformanceData.id),
            )
            .where(PerformanceData.strategy_id.in_(strategy_ids))
            .group_by(PerformanceData.strategy_id)
        )
        if self.since:
            stmt = stmt.where(or_(
                PerformanceData.window_end.is_(None),
                PerformanceData.window_end >= self.since,
            ))
        result = await self.db.execute(stmt)
        return {row[0]: tuple(row[1:]) for row in result.all()}

    async def strategy_performance(self, strategies: list[Strategy]) -> dict[uuid.UUID, StrategyPerformance]:
        totals = await self._totals([s.id for s in strategies])
        performance = {}
        for strategy in strategies:
            impressions, clicks, conversions, spend, reports = totals.get(strategy.id, (0, 0, 0, 0.0, 0))
            performance[strategy.id] = StrategyPerformance(
                strategy_id=strategy.id,
                reports=int(reports),
                impressions=int(impressions),
                clicks=int(clicks),
                conversions=int(conversions),
                spend=float(spend),
                revenue=estimate_revenue(strategy, int(conversions)),
            )
        return performance

    async def strategy_roas(self, strategy: Strategy) -> Optional[float]:
        performance = await self.strategy_performance([strategy])
        return performance[strategy.id].roas

    async def campaign_weight(self, strategies: list[Strategy], default_roas: float) -> float:
        """
        Mean per-strategy ROAS used by the budget allocator.
        Strategies without spend count as ``default_roas``; no strategies at all gives ``default_roas``.
        """
        if not strategies:
            return default_roas
        performance = await self.strategy_performance(strategies)
        values = []
        for strategy in strategies:
            roas = performance[strategy.id].roas
            values.append(default_roas if roas is None else roas)
        return safe_divide(sum(values), len(values), default_roas)

    async def campaign_performance(self, campaign_id: uuid.UUID, strategies: list[Strategy]) -> CampaignPerformance:
        performance = await self.strategy_performance(strategies)
        summary = CampaignPerformance(campaign_id=campaign_id, strategies=len(strategies))
        for perf in performance.values():
            summary.spend += perf.spend
            summary.revenue += perf.revenue
            summary.conversions += perf.conversions
            summary.reports += perf.reports
        return summary
