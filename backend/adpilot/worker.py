"""
Worker — Runs control-loop units of work concurrently.

Every unit (one customer or one campaign) gets its own database session and
reports an outcome dict; a failing unit never stops the rest of the batch.
"""

import asyncio
import functools
import logging
import uuid
from typing import Any, Awaitable, Callable, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from adpilot.config import get_settings
from adpilot.database import async_session
from adpilot.mcp_client import create_platform_clients
from adpilot.models import Customer, Campaign, CampaignStatus, Strategy, DeploymentStatus
from adpilot.platform_client import PlatformClient
from adpilot.storage import AssetStorage, create_asset_storage
from adpilot.services.budget_service import BudgetAllocator
from adpilot.services.circuit_breaker import BreakerStore
from adpilot.services.deployment_service import DeploymentOrchestrator
from adpilot.services.portfolio_service import PortfolioOptimizer
from adpilot.services.version_service import RollbackService

logger = logging.getLogger(__name__)

SessionFactory = async_sessionmaker[AsyncSession]
Unit = Callable[[uuid.UUID], Awaitable[dict]]


async def run_units(ids: Iterable[uuid.UUID], unit: Unit, concurrency: Optional[int] = None) -> dict[str, dict]:
    """Run ``unit`` for every id with at most ``concurrency`` in flight. Returns outcomes by id."""
    semaphore = asyncio.Semaphore(concurrency or get_settings().worker_concurrency)
    name = getattr(unit, "__name__", None) or getattr(getattr(unit, "func", None), "__name__", "unit")

    async def _run(unit_id: uuid.UUID) -> tuple[str, dict]:
        async with semaphore:
            try:
                outcome = await unit(unit_id)
            except Exception as e:
                logger.exception(f"Worker: {name} failed for {unit_id}: {e}")
                outcome = {"ok": False, "error": str(e)}
            return str(unit_id), outcome

    pairs = await asyncio.gather(*(_run(unit_id) for unit_id in ids))
    outcomes = dict(pairs)
    failed = sum(1 for o in outcomes.values() if not o.get("ok"))
    logger.info(f"Worker: {name} ran {len(outcomes)} units, {failed} failed")
    return outcomes


# ── Units ─────────────────────────────────────────────────────────────

async def allocate_customer_budget(customer_id: uuid.UUID, session_factory: SessionFactory = async_session) -> dict:
    async with session_factory() as db:
        customer = await db.get(Customer, customer_id)
        if customer is None:
            return {"ok": False, "error": "Customer not found"}
        allocator = BudgetAllocator(db)
        ok = await allocator.allocate(customer)
        return {"ok": ok, "allocations": {str(k): v for k, v in allocator.allocations.items()}}


async def optimize_customer_portfolio(customer_id: uuid.UUID, session_factory: SessionFactory = async_session) -> dict:
    async with session_factory() as db:
        customer = await db.get(Customer, customer_id)
        if customer is None:
            return {"ok": False, "error": "Customer not found"}
        optimizer = PortfolioOptimizer(db)
        ok = await optimizer.optimize(customer)
        return {
            "ok": ok,
            "recommendations": [
                {"id": str(r.id), "campaign_id": str(r.campaign_id), "type": r.type}
                for r in optimizer.recommendations
            ],
        }


async def deploy_campaign(
    campaign_id: uuid.UUID,
    session_factory: SessionFactory = async_session,
    clients: Optional[dict[str, PlatformClient]] = None,
    storage: Optional[AssetStorage] = None,
    breaker_store: Optional[BreakerStore] = None,
) -> dict:
    async with session_factory() as db:
        campaign = await db.get(Campaign, campaign_id)
        if campaign is None:
            return {"ok": False, "error": "Campaign not found"}
        orchestrator = DeploymentOrchestrator(
            db,
            clients if clients is not None else create_platform_clients(),
            storage if storage is not None else create_asset_storage(),
            breaker_store=breaker_store,
        )
        report = await orchestrator.deploy_campaign(campaign)
        return {"ok": report["success"], **report}


async def rollback_campaign(campaign_id: uuid.UUID, session_factory: SessionFactory = async_session) -> dict:
    async with session_factory() as db:
        campaign = await db.get(Campaign, campaign_id)
        if campaign is None:
            return {"ok": False, "error": "Campaign not found"}
        ok = await RollbackService(db).rollback(campaign)
        return {"ok": ok}


# ── Ticks ─────────────────────────────────────────────────────────────

async def customers_with_active_campaigns(session_factory: SessionFactory = async_session) -> list[uuid.UUID]:
    async with session_factory() as db:
        result = await db.execute(
            select(Campaign.customer_id)
            .where(Campaign.status == CampaignStatus.ACTIVE.value)
            .distinct()
        )
        return list(result.scalars().all())


async def run_optimization_tick(
    session_factory: SessionFactory = async_session,
    concurrency: Optional[int] = None,
) -> dict[str, Any]:
    """Budget allocation and portfolio optimization for every customer with active campaigns."""
    customer_ids = await customers_with_active_campaigns(session_factory)
    logger.info(f"Optimization tick: {len(customer_ids)} customers")
    allocations = await run_units(
        customer_ids,
        functools.partial(allocate_customer_budget, session_factory=session_factory),
        concurrency,
    )
    optimizations = await run_units(
        customer_ids,
        functools.partial(optimize_customer_portfolio, session_factory=session_factory),
        concurrency,
    )
    return {
        "customers": len(customer_ids),
        "allocation": allocations,
        "optimization": optimizations,
    }


async def campaigns_pending_deployment(session_factory: SessionFactory = async_session) -> list[uuid.UUID]:
    """Active campaigns with at least one active strategy not yet deployed."""
    async with session_factory() as db:
        result = await db.execute(
            select(Strategy.campaign_id)
            .join(Campaign, Campaign.id == Strategy.campaign_id)
            .where(
                Campaign.status == CampaignStatus.ACTIVE.value,
                Strategy.signed_off_at.is_not(None),
                Strategy.deployment_status != DeploymentStatus.DEPLOYED.value,
            )
            .distinct()
        )
        return list(result.scalars().all())


async def run_deployment_tick(
    session_factory: SessionFactory = async_session,
    concurrency: Optional[int] = None,
    clients: Optional[dict[str, PlatformClient]] = None,
    storage: Optional[AssetStorage] = None,
    breaker_store: Optional[BreakerStore] = None,
) -> dict[str, Any]:
    """Deploy (or resume deploying) every campaign with undeployed active strategies."""
    campaign_ids = await campaigns_pending_deployment(session_factory)
    logger.info(f"Deployment tick: {len(campaign_ids)} campaigns")
    deployments = await run_units(
        campaign_ids,
        functools.partial(
            deploy_campaign,
            session_factory=session_factory,
            clients=clients,
            storage=storage,
            breaker_store=breaker_store,
        ),
        concurrency,
    )
    return {"campaigns": len(campaign_ids), "deployment": deployments}
