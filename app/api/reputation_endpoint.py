"""
GET  /v1/users/{user_id}/reputation   → ledger history + statistics (own, or staff)
POST /v1/users/{user_id}/reputation   → manual adjustment (managers)
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import Principal, current_principal, require
from app.core.errors import PermissionDeniedError
from app.core.permissions import Capability, can
from app.models.database import get_db
from app.schemas.analytics import PageRequest
from app.schemas.reputation import ReputationAdjustment, ReputationEntry, ReputationHistory
from app.services import reputation_ledger

router = APIRouter(prefix="/v1/users", tags=["reputation"])


@router.get("/{user_id}/reputation", response_model=ReputationHistory)
async def reputation_history(
    user_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(current_principal),
    db: AsyncSession = Depends(get_db),
):
    if user_id != principal.user_id and not can(principal.role, Capability.VIEW_ANY_REPUTATION):
        raise PermissionDeniedError("Only staff can view another user's reputation")
    return await reputation_ledger.reputation_history(db, user_id, PageRequest(page=page, limit=limit))


@router.post("/{user_id}/reputation", response_model=ReputationEntry, status_code=201)
async def adjust_reputation(
    user_id: str,
    adjustment: ReputationAdjustment,
    principal: Principal = Depends(require(Capability.ADJUST_REPUTATION)),
    db: AsyncSession = Depends(get_db),
):
    return await reputation_ledger.adjust_reputation(db, user_id, adjustment, actor=principal.user_id)
