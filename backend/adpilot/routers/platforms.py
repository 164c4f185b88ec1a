"""
Platforms Router — Circuit breaker status per ad platform.
"""

from fastapi import APIRouter, Depends, HTTPException

from adpilot.models import Platform
from adpilot.routers.campaigns import get_platform_clients, get_store
from adpilot.services.circuit_breaker import BreakerStore, breaker_for

router = APIRouter()


def _platform(name: str) -> str:
    try:
        return Platform(name).value
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown platform: {name}")


@router.get("")
async def list_platforms(
    store: BreakerStore = Depends(get_store),
    clients: dict = Depends(get_platform_clients),
):
    platforms = []
    for platform in Platform:
        breaker = breaker_for(platform.value, store)
        platforms.append({
            "platform": platform.value,
            "configured": platform.value in clients,
            "available": await breaker.is_available(),
            "breaker": await breaker.status(),
        })
    return platforms


@router.get("/{platform}/breaker")
async def breaker_status(platform: str, store: BreakerStore = Depends(get_store)):
    return await breaker_for(_platform(platform), store).status()


@router.post("/{platform}/breaker/reset")
async def reset_breaker(platform: str, store: BreakerStore = Depends(get_store)):
    breaker = breaker_for(_platform(platform), store)
    await breaker.reset()
    return await breaker.status()
