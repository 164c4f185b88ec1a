"""
Tests for ROAS-threshold recommendations produced by the portfolio optimizer.
"""

import pytest
from sqlalchemy import select

from adpilot.models import (
    Recommendation, RecommendationType, RecommendationStatus, CampaignStatus, Strategy,
)
from adpilot.services.portfolio_service import PortfolioOptimizer


async def _campaign_with_roas(factory, customer, conversions: int, spend: float = 1000.0, name: str = "Spring Sale"):
    """Default CPA target is $10, so ROAS = conversions * 10 / spend."""
    campaign = await factory.campaign(customer, name=name)
    strategy = await factory.strategy(campaign)
    await factory.performance(strategy, conversions=conversions, spend=spend)
    return campaign


async def _pending(db, campaign_id=None):
    stmt = select(Recommendation).where(Recommendation.status == RecommendationStatus.PENDING.value)
    if campaign_id:
        stmt = stmt.where(Recommendation.campaign_id == campaign_id)
    result = await db.execute(stmt)
    return result.scalars().all()


@pytest.mark.anyio
async def test_decide_thresholds(db):
    optimizer = PortfolioOptimizer(db)
    assert optimizer.decide(0.79)[0] == RecommendationType.PAUSE_CAMPAIGN.value
    assert optimizer.decide(0.81) is None
    assert optimizer.decide(2.5) is None
    rec_type, params, _ = optimizer.decide(2.51)
    assert rec_type == RecommendationType.INCREASE_BUDGET.value
    assert params == {"increase_percentage": 20}


@pytest.mark.anyio
async def test_low_roas_creates_pause_recommendation(db, factory):
    customer = await factory.customer()
    campaign = await _campaign_with_roas(factory, customer, conversions=79)

    assert await PortfolioOptimizer(db).optimize(customer) is True
    pending = await _pending(db, campaign.id)
    assert len(pending) == 1
    assert pending[0].type == RecommendationType.PAUSE_CAMPAIGN.value
    assert pending[0].requires_approval is True
    assert pending[0].target_entity["id"] == str(campaign.id)


@pytest.mark.anyio
async def test_roas_between_thresholds_creates_nothing(db, factory):
    customer = await factory.customer()
    await _campaign_with_roas(factory, customer, conversions=81)

    assert await PortfolioOptimizer(db).optimize(customer) is True
    assert await _pending(db) == []


@pytest.mark.anyio
async def test_high_roas_creates_increase_recommendation(db, factory):
    customer = await factory.customer()
    campaign = await _campaign_with_roas(factory, customer, conversions=251)

    optimizer = PortfolioOptimizer(db)
    assert await optimizer.optimize(customer) is True
    pending = await _pending(db, campaign.id)
    assert [r.type for r in pending] == [RecommendationType.INCREASE_BUDGET.value]
    assert pending[0].parameters["increase_percentage"] == 20
    assert optimizer.recommendations[0].id == pending[0].id


@pytest.mark.anyio
async def test_rerun_updates_pending_in_place(db, factory):
    customer = await factory.customer()
    campaign = await _campaign_with_roas(factory, customer, conversions=40)

    optimizer = PortfolioOptimizer(db)
    await optimizer.optimize(customer)
    first = (await _pending(db, campaign.id))[0]
    first_rationale = first.rationale

    # More conversions on the same spend: ROAS 0.4 -> 0.6, still below the pause threshold
    strategy = (await db.execute(select(Strategy).where(Strategy.campaign_id == campaign.id))).scalar_one()
    await factory.performance(strategy, conversions=20, spend=0.0)
    await optimizer.optimize(customer)

    pending = await _pending(db, campaign.id)
    assert len(pending) == 1
    assert pending[0].id == first.id
    assert "0.60" in pending[0].rationale
    assert pending[0].rationale != first_rationale


@pytest.mark.anyio
async def test_reviewed_recommendation_allows_new_pending(db, factory):
    customer = await factory.customer()
    campaign = await _campaign_with_roas(factory, customer, conversions=40)

    optimizer = PortfolioOptimizer(db)
    await optimizer.optimize(customer)
    first = (await _pending(db, campaign.id))[0]
    first.status = RecommendationStatus.REJECTED.value
    await db.commit()

    await optimizer.optimize(customer)
    pending = await _pending(db, campaign.id)
    assert len(pending) == 1
    assert pending[0].id != first.id


@pytest.mark.anyio
async def test_zero_spend_reports_recommend_pause(db, factory):
    customer = await factory.customer()
    idle = await factory.campaign(customer, name="Idle")
    await factory.performance(await factory.strategy(idle), conversions=0, spend=0.0)

    assert await PortfolioOptimizer(db).optimize(customer) is True
    pending = await _pending(db, idle.id)
    assert [r.type for r in pending] == [RecommendationType.PAUSE_CAMPAIGN.value]
    assert "0.00" in pending[0].rationale
    assert pending[0].requires_approval is True


@pytest.mark.anyio
async def test_skips_unreported_and_inactive_campaigns(db, factory):
    customer = await factory.customer()
    untested = await factory.campaign(customer, name="Untested")
    await factory.strategy(untested)
    paused = await factory.campaign(customer, name="Paused", status=CampaignStatus.PAUSED.value)
    strategy = await factory.strategy(paused)
    await factory.performance(strategy, conversions=1, spend=1000.0)

    assert await PortfolioOptimizer(db).optimize(customer) is True
    assert await _pending(db) == []


@pytest.mark.anyio
async def test_never_applies_changes(db, factory):
    customer = await factory.customer()
    campaign = await _campaign_with_roas(factory, customer, conversions=10)

    await PortfolioOptimizer(db).optimize(customer)
    await db.refresh(campaign)
    assert campaign.status == CampaignStatus.ACTIVE.value
    assert campaign.daily_budget == 100.0
