"""
Cron / Scheduled Jobs — Endpoints for an external scheduler.

Each call verifies CRON_SECRET and dispatches one control-loop tick onto the
worker pool. Send either:
  X-Cron-Secret: <CRON_SECRET>
  Authorization: Bearer <CRON_SECRET>
"""

import logging
from fastapi import APIRouter, Depends, HTTPException

from adpilot.auth import require_cron_secret
from adpilot.worker import run_optimization_tick, run_deployment_tick, rollback_campaign
from adpilot.utils import parse_uuid, safe_error_detail

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["Cron"])


@router.post("/optimize")
async def cron_optimize(_: None = Depends(require_cron_secret)):
    """
    Scheduled budget allocation + portfolio optimization for every customer
    with active campaigns.
    """
    try:
        result = await run_optimization_tick()
    except Exception as e:
        raise HTTPException(500, safe_error_detail(e, "Optimization tick failed"))
    logger.info(f"Cron optimize completed for {result['customers']} customers")
    return {"status": "ok", "result": result}


@router.post("/deploy")
async def cron_deploy(_: None = Depends(require_cron_secret)):
    """Deploy or resume every campaign with undeployed active strategies."""
    try:
        result = await run_deployment_tick()
    except Exception as e:
        raise HTTPException(500, safe_error_detail(e, "Deployment tick failed"))
    logger.info(f"Cron deploy completed for {result['campaigns']} campaigns")
    return {"status": "ok", "result": result}


@router.post("/rollback/{campaign_id}")
async def cron_rollback(campaign_id: str, _: None = Depends(require_cron_secret)):
    outcome = await rollback_campaign(parse_uuid(campaign_id, "campaign_id"))
    if not outcome.get("ok"):
        raise HTTPException(409, outcome.get("error") or "Rollback failed")
    return {"status": "ok", "result": outcome}
