"""
Reservations, returns, damage reports and overdue tracking.

  POST  /v1/reservations             → register a reservation from the lending system
  POST  /v1/returns                  → record a return (borrowers: own reservations only)
  GET   /v1/returns/overdue          → outstanding overdue reservations + severity summary
  GET   /v1/returns/analytics        → return volume, overdue rate, penalties, daily trend
  PATCH /v1/returns/{id}             → staff approves or rejects a PENDING return
  POST  /v1/returns/{id}/damage      → report damage on a return
  PATCH /v1/damage/{id}              → review a damage report (approval may hit trust score)
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import Principal, require
from app.core.permissions import Capability, can
from app.models.database import get_db
from app.schemas.analytics import OverdueReport, PageRequest, ReturnAnalytics
from app.schemas.returns import (
    DamageReport,
    DamageReportCreate,
    DamageReview,
    Reservation,
    ReturnCreate,
    ReturnEvent,
    ReturnReview,
)
from app.services import returns_service

router = APIRouter(prefix="/v1", tags=["returns"])


def _borrower_scope(principal: Principal) -> Optional[str]:
    """None for staff; the caller's own id for borrowers."""
    return None if can(principal.role, Capability.ACT_FOR_ANY_BORROWER) else principal.user_id


@router.post("/reservations", response_model=Reservation, status_code=201)
async def register_reservation(
    reservation: Reservation,
    principal: Principal = Depends(require(Capability.REGISTER_RESERVATION)),
    db: AsyncSession = Depends(get_db),
):
    return await returns_service.register_reservation(db, reservation, actor=principal.user_id)


@router.post("/returns", response_model=ReturnEvent, status_code=201)
async def record_return(
    body: ReturnCreate,
    principal: Principal = Depends(require(Capability.RECORD_RETURN)),
    db: AsyncSession = Depends(get_db),
):
    return await returns_service.record_return(
        db, body, actor=principal.user_id, borrower_id=_borrower_scope(principal),
    )


@router.get("/returns/overdue", response_model=OverdueReport)
async def overdue_report(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    principal: Principal = Depends(require(Capability.VIEW_OVERDUE)),
    db: AsyncSession = Depends(get_db),
):
    return await returns_service.overdue_report(db, PageRequest(page=page, limit=limit))


@router.get("/returns/analytics", response_model=ReturnAnalytics)
async def return_analytics(
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    principal: Principal = Depends(require(Capability.VIEW_RETURN_ANALYTICS)),
    db: AsyncSession = Depends(get_db),
):
    return await returns_service.return_analytics(db, date_from=date_from, date_to=date_to)


@router.post("/returns/{return_id}/damage", response_model=DamageReport, status_code=201)
async def report_damage(
    return_id: str,
    body: DamageReportCreate,
    principal: Principal = Depends(require(Capability.REPORT_DAMAGE)),
    db: AsyncSession = Depends(get_db),
):
    return await returns_service.report_damage(
        db, return_id, body, actor=principal.user_id, borrower_id=_borrower_scope(principal),
    )


@router.patch("/damage/{damage_id}", response_model=DamageReport)
async def review_damage(
    damage_id: str,
    review: DamageReview,
    principal: Principal = Depends(require(Capability.REVIEW_DAMAGE)),
    db: AsyncSession = Depends(get_db),
):
    return await returns_service.review_damage(db, damage_id, review, actor=principal.user_id)


@router.patch("/returns/{return_id}", response_model=ReturnEvent)
async def review_return(
    return_id: str,
    review: ReturnReview,
    principal: Principal = Depends(require(Capability.REVIEW_RETURN)),
    db: AsyncSession = Depends(get_db),
):
    return await returns_service.review_return(db, return_id, review, actor=principal.user_id)
