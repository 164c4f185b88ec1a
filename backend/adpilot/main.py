"""
Ad Pilot — FastAPI Backend
Autonomous budget allocation, portfolio optimization and multi-platform
campaign deployment. All state persisted to PostgreSQL.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import Depends, FastAPI
from adpilot.config import get_settings
from adpilot.database import init_db, check_db_connection
from adpilot.auth import require_auth
from adpilot.routers import campaigns, recommendations, conflicts, platforms, cron

settings = get_settings()

logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Ad Pilot...")
    try:
        await init_db()
        logger.info("Database initialized — all tables ready.")
    except Exception as e:
        logger.error(f"Startup failed (DB/init): {e}", exc_info=True)
        # Still yield so app can serve /api/health (degraded) and logs are visible
    yield
    logger.info("Shutting down...")


app = FastAPI(
    title="Ad Pilot",
    description="Autonomous optimization and deployment of multi-platform ad campaigns",
    version="1.0.0",
    lifespan=lifespan,
)

# ── Register Routers (all require auth) ──────────────────────────────
_auth = [Depends(require_auth)]
app.include_router(campaigns.router, prefix="/api/campaigns", tags=["Campaigns & Deployment"], dependencies=_auth)
app.include_router(recommendations.router, prefix="/api/recommendations", tags=["Recommendations"], dependencies=_auth)
app.include_router(conflicts.router, prefix="/api/conflicts", tags=["Conflicts"], dependencies=_auth)
app.include_router(platforms.router, prefix="/api/platforms", tags=["Platforms"], dependencies=_auth)
app.include_router(cron.router, prefix="/api")  # No auth — uses CRON_SECRET


@app.get("/api/health")
async def health_check():
    db_ok = await check_db_connection()
    return {
        "status": "healthy" if db_ok else "degraded",
        "service": "Ad Pilot",
        "database": "connected" if db_ok else "disconnected",
    }
