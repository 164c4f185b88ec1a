"""
Conflicts Router — Manual resolution of recommendations blocked by the conflict gate.
"""

from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from pydantic import BaseModel

from adpilot.database import get_db
from adpilot.models import Conflict
from adpilot.services.conflict_service import list_conflicts
from adpilot.services.recommendation_service import RecommendationService, RecommendationStateError
from adpilot.utils import parse_uuid, isoformat

router = APIRouter()


class ResolveRequest(BaseModel):
    note: Optional[str] = None
    apply_change: bool = False  # True = apply the blocked recommendation, False = dismiss it


def _serialize_conflict(c: Conflict) -> dict:
    return {
        "id": str(c.id),
        "campaign_id": str(c.campaign_id),
        "recommendation_id": str(c.recommendation_id),
        "status": c.status,
        "campaign_status": c.campaign_status,
        "resolution_note": c.resolution_note,
        "resolved_at": isoformat(c.resolved_at),
        "created_at": isoformat(c.created_at),
    }


async def _get_conflict(db: AsyncSession, conflict_id: str) -> Conflict:
    conflict = await db.get(Conflict, parse_uuid(conflict_id, "conflict_id"))
    if not conflict:
        raise HTTPException(status_code=404, detail="Conflict not found")
    return conflict


@router.get("")
async def get_conflicts(
    status: Optional[str] = Query(None),
    campaign_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    cid = parse_uuid(campaign_id, "campaign_id") if campaign_id else None
    return [_serialize_conflict(c) for c in await list_conflicts(db, status=status, campaign_id=cid)]


@router.get("/{conflict_id}")
async def get_conflict(conflict_id: str, db: AsyncSession = Depends(get_db)):
    return _serialize_conflict(await _get_conflict(db, conflict_id))


@router.post("/{conflict_id}/resolve")
async def resolve_conflict(conflict_id: str, payload: ResolveRequest, db: AsyncSession = Depends(get_db)):
    conflict = await _get_conflict(db, conflict_id)
    try:
        return await RecommendationService(db).resolve_conflict(
            conflict, note=payload.note, apply_change=payload.apply_change,
        )
    except RecommendationStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
