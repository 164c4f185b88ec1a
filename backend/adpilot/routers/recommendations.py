"""
Recommendations Router — Review queue for optimizer recommendations.
Approve or reject pending recommendations; applying one goes through the conflict gate.
"""

from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from pydantic import BaseModel

from adpilot.database import get_db
from adpilot.models import Recommendation
from adpilot.services.recommendation_service import RecommendationService, RecommendationStateError
from adpilot.utils import parse_uuid, isoformat

router = APIRouter()


class ReviewRequest(BaseModel):
    action: str  # approve, reject
    review_note: Optional[str] = None


def _serialize_recommendation(r: Recommendation) -> dict:
    return {
        "id": str(r.id),
        "campaign_id": str(r.campaign_id),
        "type": r.type,
        "target_entity": r.target_entity,
        "parameters": r.parameters,
        "rationale": r.rationale,
        "requires_approval": r.requires_approval,
        "status": r.status,
        "review_note": r.review_note,
        "reviewed_at": isoformat(r.reviewed_at),
        "applied_at": isoformat(r.applied_at),
        "created_at": isoformat(r.created_at),
        "updated_at": isoformat(r.updated_at),
    }


async def _get_recommendation(db: AsyncSession, rec_id: str) -> Recommendation:
    rec = await db.get(Recommendation, parse_uuid(rec_id, "recommendation_id"))
    if not rec:
        raise HTTPException(status_code=404, detail="Recommendation not found")
    return rec


@router.get("")
async def list_recommendations(
    campaign_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    type: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
):
    query = select(Recommendation).order_by(Recommendation.created_at.desc()).limit(limit)
    if campaign_id:
        query = query.where(Recommendation.campaign_id == parse_uuid(campaign_id, "campaign_id"))
    if status:
        query = query.where(Recommendation.status == status)
    if type:
        query = query.where(Recommendation.type == type)
    result = await db.execute(query)
    return [_serialize_recommendation(r) for r in result.scalars().all()]


@router.get("/summary")
async def recommendations_summary(db: AsyncSession = Depends(get_db)):
    result = await db.execute(
        select(Recommendation.status, func.count()).group_by(Recommendation.status)
    )
    return {status: count for status, count in result.all()}


@router.get("/{rec_id}")
async def get_recommendation(rec_id: str, db: AsyncSession = Depends(get_db)):
    return _serialize_recommendation(await _get_recommendation(db, rec_id))


@router.post("/{rec_id}/review")
async def review_recommendation(rec_id: str, payload: ReviewRequest, db: AsyncSession = Depends(get_db)):
    if payload.action not in ("approve", "reject"):
        raise HTTPException(status_code=400, detail="Action must be 'approve' or 'reject'")
    rec = await _get_recommendation(db, rec_id)
    service = RecommendationService(db)
    try:
        if payload.action == "approve":
            rec = await service.approve(rec, payload.review_note)
        else:
            rec = await service.reject(rec, payload.review_note)
    except RecommendationStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return _serialize_recommendation(rec)


@router.post("/{rec_id}/apply")
async def apply_recommendation(rec_id: str, db: AsyncSession = Depends(get_db)):
    """Attempt to apply an approved recommendation. Blocked attempts return the conflict created."""
    rec = await _get_recommendation(db, rec_id)
    try:
        return await RecommendationService(db).apply(rec)
    except RecommendationStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
