"""
Campaigns Router — Campaign strategies, deployment, versions and rollback.
"""

import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from pydantic import BaseModel, Field

from adpilot.database import get_db
from adpilot.mcp_client import create_platform_clients
from adpilot.models import (
    Campaign, CampaignStatus, Strategy, Platform, CampaignType, ActivityLog,
)
from adpilot.platform_client import PlatformClient
from adpilot.storage import AssetStorage, create_asset_storage
from adpilot.services.circuit_breaker import BreakerStore, get_breaker_store
from adpilot.services.deployment_service import DeploymentOrchestrator
from adpilot.services.version_service import VersionStore, RollbackService
from adpilot.utils import parse_uuid, isoformat

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Dependencies (overridden in tests) ────────────────────────────────

def get_platform_clients() -> dict[str, PlatformClient]:
    return create_platform_clients()


def get_asset_storage() -> AssetStorage:
    return create_asset_storage()


def get_store() -> BreakerStore:
    return get_breaker_store()


# ── Request Models ────────────────────────────────────────────────────

class StrategyRequest(BaseModel):
    platform: Platform
    campaign_type: CampaignType = CampaignType.DISPLAY
    ad_copy_strategy: Optional[str] = None
    imagery_strategy: Optional[str] = None
    video_strategy: Optional[str] = None
    bidding_strategy: Optional[dict] = None
    cpa_target_micros: Optional[int] = Field(None, ge=0)
    revenue_cpa_multiple: float = Field(1.0, gt=0)
    daily_budget: Optional[float] = Field(None, gt=0)


class ActivateStrategiesRequest(BaseModel):
    strategies: list[StrategyRequest] = Field(..., min_length=1)


# ── Helpers ───────────────────────────────────────────────────────────

async def _get_campaign(db: AsyncSession, campaign_id: str) -> Campaign:
    campaign = await db.get(Campaign, parse_uuid(campaign_id, "campaign_id"))
    if not campaign:
        raise HTTPException(status_code=404, detail="Campaign not found")
    return campaign


def _serialize_strategy(s: Strategy) -> dict:
    return {
        "id": str(s.id),
        "campaign_id": str(s.campaign_id),
        "platform": s.platform,
        "campaign_type": s.campaign_type,
        "active": s.is_active,
        "signed_off_at": isoformat(s.signed_off_at),
        "daily_budget": s.daily_budget,
        "cpa_target_micros": s.cpa_target_micros,
        "revenue_cpa_multiple": s.revenue_cpa_multiple,
        "bidding_strategy": s.bidding_strategy,
        "platform_budget_id": s.platform_budget_id,
        "platform_campaign_id": s.platform_campaign_id,
        "ad_group_id": s.ad_group_id,
        "creative_id": s.creative_id,
        "ad_id": s.ad_id,
        "deployment_status": s.deployment_status,
        "deployed_at": isoformat(s.deployed_at),
        "deployment_error": s.deployment_error,
        "deployment_failures": s.deployment_failures,
        "restored_from": isoformat(s.restored_from),
    }


def _serialize_campaign(c: Campaign, strategies: Optional[list[Strategy]] = None) -> dict:
    data = {
        "id": str(c.id),
        "customer_id": str(c.customer_id),
        "name": c.name,
        "status": c.status,
        "landing_page_url": c.landing_page_url,
        "daily_budget": c.daily_budget,
        "total_budget": c.total_budget,
        "google_ads_campaign_id": c.google_ads_campaign_id,
        "facebook_ads_campaign_id": c.facebook_ads_campaign_id,
        "created_at": isoformat(c.created_at),
        "updated_at": isoformat(c.updated_at),
    }
    if strategies is not None:
        data["strategies"] = [_serialize_strategy(s) for s in strategies]
    return data


async def _active_strategies(db: AsyncSession, campaign: Campaign) -> list[Strategy]:
    result = await db.execute(
        select(Strategy)
        .where(Strategy.campaign_id == campaign.id, Strategy.signed_off_at.is_not(None))
        .order_by(Strategy.platform)
    )
    return list(result.scalars().all())


# ── Campaigns ─────────────────────────────────────────────────────────

@router.get("")
async def list_campaigns(
    customer_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
):
    query = select(Campaign).order_by(Campaign.created_at.desc()).limit(limit)
    if customer_id:
        query = query.where(Campaign.customer_id == parse_uuid(customer_id, "customer_id"))
    if status:
        query = query.where(Campaign.status == status)
    result = await db.execute(query)
    return [_serialize_campaign(c) for c in result.scalars().all()]


@router.get("/{campaign_id}")
async def get_campaign(campaign_id: str, db: AsyncSession = Depends(get_db)):
    campaign = await _get_campaign(db, campaign_id)
    return _serialize_campaign(campaign, await _active_strategies(db, campaign))


@router.delete("/{campaign_id}")
async def delete_campaign(campaign_id: str, db: AsyncSession = Depends(get_db)):
    """
    Hard-delete a campaign none of whose strategies ever created a platform
    resource (a failed deploy may leave a budget behind); otherwise mark it removed.
    """
    campaign = await _get_campaign(db, campaign_id)
    result = await db.execute(select(Strategy).where(Strategy.campaign_id == campaign.id))
    strategies = result.scalars().all()
    if campaign.has_external_campaigns or any(s.has_external_resources for s in strategies):
        campaign.status = CampaignStatus.REMOVED.value
        db.add(ActivityLog(
            customer_id=campaign.customer_id,
            campaign_id=campaign.id,
            action="campaign_removed",
            category="campaigns",
            description=f"Campaign '{campaign.name}' marked removed (platform resources exist)",
            entity_type="campaign",
            entity_id=str(campaign.id),
        ))
        return {"id": str(campaign.id), "deleted": False, "status": campaign.status}

    await db.delete(campaign)
    return {"id": campaign_id, "deleted": True}


# ── Strategies & Versions ─────────────────────────────────────────────

@router.post("/{campaign_id}/strategies")
async def activate_strategies(
    campaign_id: str,
    payload: ActivateStrategiesRequest,
    db: AsyncSession = Depends(get_db),
):
    """Sign off new strategies, replacing the active ones on the same platforms."""
    campaign = await _get_campaign(db, campaign_id)
    strategies = [
        Strategy(
            platform=s.platform.value,
            campaign_type=s.campaign_type.value,
            ad_copy_strategy=s.ad_copy_strategy,
            imagery_strategy=s.imagery_strategy,
            video_strategy=s.video_strategy,
            bidding_strategy=s.bidding_strategy,
            cpa_target_micros=s.cpa_target_micros,
            revenue_cpa_multiple=s.revenue_cpa_multiple,
            daily_budget=s.daily_budget,
        )
        for s in payload.strategies
    ]
    try:
        versioned_at = await VersionStore(db).activate(campaign, strategies)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {
        "campaign_id": str(campaign.id),
        "snapshot": isoformat(versioned_at),
        "strategies": [_serialize_strategy(s) for s in strategies],
    }


@router.get("/{campaign_id}/versions")
async def list_versions(campaign_id: str, db: AsyncSession = Depends(get_db)):
    campaign = await _get_campaign(db, campaign_id)
    return await VersionStore(db).history(campaign)


@router.post("/{campaign_id}/snapshot")
async def snapshot_campaign(campaign_id: str, db: AsyncSession = Depends(get_db)):
    campaign = await _get_campaign(db, campaign_id)
    versioned_at = await VersionStore(db).snapshot(campaign)
    if versioned_at is None:
        raise HTTPException(status_code=400, detail="Campaign has no active strategies to snapshot")
    return {"campaign_id": str(campaign.id), "versioned_at": versioned_at.isoformat()}


@router.post("/{campaign_id}/rollback")
async def rollback_campaign(campaign_id: str, db: AsyncSession = Depends(get_db)):
    campaign = await _get_campaign(db, campaign_id)
    if not await RollbackService(db).rollback(campaign):
        raise HTTPException(status_code=409, detail="Rollback failed: no strategy versions to restore")
    return _serialize_campaign(campaign, await _active_strategies(db, campaign))


# ── Deployment ────────────────────────────────────────────────────────

@router.post("/{campaign_id}/deploy")
async def deploy_campaign(
    campaign_id: str,
    db: AsyncSession = Depends(get_db),
    clients: dict[str, PlatformClient] = Depends(get_platform_clients),
    storage: AssetStorage = Depends(get_asset_storage),
    store: BreakerStore = Depends(get_store),
):
    campaign = await _get_campaign(db, campaign_id)
    orchestrator = DeploymentOrchestrator(db, clients, storage, breaker_store=store)
    return await orchestrator.deploy_campaign(campaign)


@router.post("/{campaign_id}/strategies/{strategy_id}/deploy")
async def deploy_strategy(
    campaign_id: str,
    strategy_id: str,
    db: AsyncSession = Depends(get_db),
    clients: dict[str, PlatformClient] = Depends(get_platform_clients),
    storage: AssetStorage = Depends(get_asset_storage),
    store: BreakerStore = Depends(get_store),
):
    campaign = await _get_campaign(db, campaign_id)
    strategy = await db.get(Strategy, parse_uuid(strategy_id, "strategy_id"))
    if not strategy or strategy.campaign_id != campaign.id:
        raise HTTPException(status_code=404, detail="Strategy not found")
    if not strategy.is_active:
        raise HTTPException(status_code=400, detail="Only active strategies can be deployed")
    orchestrator = DeploymentOrchestrator(db, clients, storage, breaker_store=store)
    result = await orchestrator.deploy(campaign, strategy)
    return result.to_dict()
