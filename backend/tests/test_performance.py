"""
Tests for ROAS aggregation over ingested performance data.
"""

import pytest
from datetime import date, timedelta

from adpilot.models import Platform
from adpilot.services.performance_service import (
    PerformanceAggregator, StrategyPerformance, estimate_revenue, load_active_strategies,
)


def test_roas_is_none_without_spend():
    assert StrategyPerformance(strategy_id=None, conversions=3, spend=0.0).roas is None


@pytest.mark.anyio
async def test_estimate_revenue_uses_cpa_and_multiple(db, factory):
    customer = await factory.customer()
    campaign = await factory.campaign(customer)
    strategy = await factory.strategy(campaign, cpa_target_micros=25_000_000, revenue_cpa_multiple=2.0)
    assert estimate_revenue(strategy, 4) == pytest.approx(200.0)


@pytest.mark.anyio
async def test_strategy_roas_sums_all_rows(db, factory):
    customer = await factory.customer()
    campaign = await factory.campaign(customer)
    strategy = await factory.strategy(campaign)
    await factory.performance(strategy, conversions=10, spend=50.0)
    await factory.performance(strategy, conversions=20, spend=150.0)

    roas = await PerformanceAggregator(db).strategy_roas(strategy)
    # 30 conversions x $10 CPA / $200 spend
    assert roas == pytest.approx(1.5)


@pytest.mark.anyio
async def test_lookback_window_excludes_old_rows(db, factory):
    customer = await factory.customer()
    campaign = await factory.campaign(customer)
    strategy = await factory.strategy(campaign)
    today = date(2026, 6, 30)
    await factory.performance(strategy, conversions=100, spend=10.0, window_end=today - timedelta(days=90))
    await factory.performance(strategy, conversions=5, spend=100.0, window_end=today - timedelta(days=2))

    performance = await PerformanceAggregator(db, lookback_days=30, today=today).strategy_performance([strategy])
    assert performance[strategy.id].conversions == 5
    assert performance[strategy.id].roas == pytest.approx(0.5)


@pytest.mark.anyio
async def test_campaign_weight_defaults_untested_strategies(db, factory):
    customer = await factory.customer()
    campaign = await factory.campaign(customer)
    tested = await factory.strategy(campaign, platform=Platform.GOOGLE_ADS.value)
    untested = await factory.strategy(campaign, platform=Platform.FACEBOOK_ADS.value)
    await factory.performance(tested, conversions=30, spend=100.0)

    weight = await PerformanceAggregator(db).campaign_weight([tested, untested], default_roas=0.5)
    assert weight == pytest.approx((3.0 + 0.5) / 2)


@pytest.mark.anyio
async def test_campaign_weight_without_strategies(db):
    assert await PerformanceAggregator(db).campaign_weight([], default_roas=0.5) == 0.5


@pytest.mark.anyio
async def test_campaign_roas_is_spend_weighted(db, factory):
    customer = await factory.customer()
    campaign = await factory.campaign(customer)
    google = await factory.strategy(campaign, platform=Platform.GOOGLE_ADS.value)
    facebook = await factory.strategy(campaign, platform=Platform.FACEBOOK_ADS.value)
    await factory.performance(google, conversions=90, spend=300.0)   # ROAS 3.0
    await factory.performance(facebook, conversions=10, spend=700.0)  # ROAS ~0.14

    summary = await PerformanceAggregator(db).campaign_performance(campaign.id, [google, facebook])
    assert summary.spend == pytest.approx(1000.0)
    assert summary.roas == pytest.approx(1.0)
    assert summary.strategies == 2


@pytest.mark.anyio
async def test_load_active_strategies_skips_inactive(db, factory):
    customer = await factory.customer()
    campaign = await factory.campaign(customer)
    active = await factory.strategy(campaign)
    await factory.strategy(campaign, active=False)

    grouped = await load_active_strategies(db, [campaign.id])
    assert [s.id for s in grouped[campaign.id]] == [active.id]


@pytest.mark.anyio
async def test_campaign_roas_zero_when_reported_without_spend(db, factory):
    customer = await factory.customer()
    campaign = await factory.campaign(customer)
    strategy = await factory.strategy(campaign)
    aggregator = PerformanceAggregator(db)

    assert (await aggregator.campaign_performance(campaign.id, [strategy])).roas is None

    await factory.performance(strategy, conversions=0, spend=0.0)
    summary = await aggregator.campaign_performance(campaign.id, [strategy])
    assert summary.reports == 1
    assert summary.roas == 0.0
