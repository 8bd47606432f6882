"""
Reservations, returns and damage reports.

Every change is an appended envelope; the newest envelope for an entity is
its current state. Damage approval with a penalty hits the borrower's trust
score inside the same atomic unit as the report update.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import as_utc, utcnow
from app.core.config import get_settings
from app.core.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from app.core.metrics import REPUTATION_CHANGES
from app.models.database import atomic
from app.schemas.analytics import OverdueReport, PageInfo, PageRequest, ReturnAnalytics
from app.schemas.events import Action, EntityType
from app.schemas.returns import (
    DAMAGE_TRANSITIONS,
    DamageReport,
    DamageReportCreate,
    DamageReview,
    DamageStatus,
    Reservation,
    ReturnCreate,
    ReturnEvent,
    ReturnReview,
    ReturnStatus,
)
from app.scoring.penalty import calculate_penalty, days_overdue, return_penalty_reason
from app.services import analytics, event_store, reputation_ledger

logger = structlog.get_logger()


def reservation_key(reservation_id: str) -> str:
    return f"reservation:{reservation_id}"


def return_key(reservation_id: str) -> str:
    return f"return:{reservation_id}"


async def get_reservation(session: AsyncSession, reservation_id: str) -> Reservation:
    reservation = await event_store.latest_payload(session, EntityType.RESERVATION, reservation_id)
    if reservation is None:
        raise NotFoundError(f"Reservation {reservation_id} not found")
    return reservation


async def get_return(session: AsyncSession, return_id: str) -> ReturnEvent:
    record = await event_store.latest_payload(session, EntityType.RETURN, return_id)
    if record is None:
        raise NotFoundError(f"Return {return_id} not found")
    return record


async def get_damage_report(session: AsyncSession, damage_id: str) -> DamageReport:
    report = await event_store.latest_payload(session, EntityType.DAMAGE_REPORT, damage_id)
    if report is None:
        raise NotFoundError(f"Damage report {damage_id} not found")
    return report


async def damage_reports_for(session: AsyncSession, return_id: str) -> list[DamageReport]:
    rows = await event_store.current(
        session, EntityType.DAMAGE_REPORT, where=[event_store.payload_field("return_id") == return_id],
    )
    return [event_store.decode(row) for row in rows]


# ═══════════════════════════════════════════════════════════════
# Reservations
# ═══════════════════════════════════════════════════════════════

async def register_reservation(session: AsyncSession, reservation: Reservation, actor: str) -> Reservation:
    if as_utc(reservation.end_date) <= as_utc(reservation.start_date):
        raise ValidationError("Reservation end_date must be after start_date")

    async with atomic(session):
        if await event_store.exists(session, reservation_key(reservation.reservation_id)):
            raise ConflictError(f"Reservation {reservation.reservation_id} is already registered")
        await event_store.append(
            session,
            Action.REGISTER_RESERVATION,
            EntityType.RESERVATION,
            reservation.reservation_id,
            reservation,
            actor=actor,
            dedupe_key=reservation_key(reservation.reservation_id),
        )

    logger.info("reservation_registered", reservation_id=reservation.reservation_id, item_id=reservation.item_id)
    return reservation


# ═══════════════════════════════════════════════════════════════
# Returns
# ═══════════════════════════════════════════════════════════════

async def record_return(
    session: AsyncSession,
    body: ReturnCreate,
    actor: str,
    borrower_id: Optional[str] = None,
    as_of: Optional[datetime] = None,
) -> ReturnEvent:
    """
    Record the physical return of a reserved item.

    `borrower_id` restricts the call to that borrower's own reservations.
    The overdue + degradation penalty is recorded on the return; it reaches
    the trust score only through an approved damage report or an assessment.
    """
    now = as_utc(as_of or utcnow())
    return_date = as_utc(body.return_date)
    if return_date > now:
        raise ValidationError("Return date cannot be in the future")

    async with atomic(session):
        reservation = await get_reservation(session, body.reservation_id)
        if borrower_id is not None and reservation.user_id != borrower_id:
            raise PermissionDeniedError("Borrowers can only return their own reservations")
        if return_date < as_utc(reservation.start_date):
            raise ValidationError("Return date is before the reservation started")
        if await event_store.exists(session, return_key(reservation.reservation_id)):
            raise ConflictError(f"Return process already initiated for reservation {reservation.reservation_id}")

        days = days_overdue(return_date, reservation.end_date)
        penalty = calculate_penalty(
            original_condition=reservation.item_condition,
            final_condition=body.condition_on_return,
            days_late=days,
        )
        degraded = body.condition_on_return.rank < reservation.item_condition.rank

        record = ReturnEvent(
            id=str(uuid.uuid4()),
            reservation_id=reservation.reservation_id,
            item_id=reservation.item_id,
            user_id=reservation.user_id,
            return_date=return_date,
            original_condition=reservation.item_condition,
            condition_on_return=body.condition_on_return,
            is_overdue=days > 0,
            days_overdue=days,
            penalty_amount=penalty.calculated_penalty,
            penalty_reason=return_penalty_reason(days, reservation.item_condition, body.condition_on_return),
            status=ReturnStatus.PENDING if (degraded or days > 0) else ReturnStatus.APPROVED,
            notes=body.notes,
        )
        await event_store.append(
            session,
            Action.INITIATE_RETURN,
            EntityType.RETURN,
            record.id,
            record,
            actor=actor,
            dedupe_key=return_key(reservation.reservation_id),
        )

    logger.info(
        "return_recorded",
        return_id=record.id,
        reservation_id=record.reservation_id,
        days_overdue=days,
        penalty=record.penalty_amount,
        status=record.status.value,
    )
    return record


async def review_return(
    session: AsyncSession,
    return_id: str,
    review: ReturnReview,
    actor: str,
) -> ReturnEvent:
    """
    Staff approval or rejection of a PENDING return.

    Only the return's status and notes change; the recorded penalty and the
    borrower's trust score are left alone.
    """
    async with atomic(session):
        returned = await get_return(session, return_id)
        if returned.status != ReturnStatus.PENDING:
            raise ConflictError(f"Return already processed with status: {returned.status.value}")

        notes = returned.notes or ""
        if review.staff_notes:
            notes = f"{notes}\n\nStaff Notes: {review.staff_notes}"
        updated = returned.model_copy(update={
            "status": review.status,
            "notes": notes.strip() or None,
            "rejection_reason": review.rejection_reason if review.status == ReturnStatus.REJECTED else None,
            "reviewed_by": actor,
            "reviewed_at": utcnow(),
        })
        await event_store.append(
            session, Action.REVIEW_RETURN, EntityType.RETURN, return_id, updated, actor=actor,
        )

    logger.info("return_reviewed", return_id=return_id, status=updated.status.value, reviewed_by=actor)
    return updated


# ═══════════════════════════════════════════════════════════════
# Damage reports
#   REPORTED → UNDER_REVIEW | APPROVED | REJECTED
#   UNDER_REVIEW → APPROVED | REJECTED
#   APPROVED → RESOLVED
# ═══════════════════════════════════════════════════════════════

async def report_damage(
    session: AsyncSession,
    return_id: str,
    body: DamageReportCreate,
    actor: str,
    borrower_id: Optional[str] = None,
) -> DamageReport:
    async with atomic(session):
        returned = await get_return(session, return_id)
        if borrower_id is not None and returned.user_id != borrower_id:
            raise PermissionDeniedError("Borrowers can only report damage on their own returns")

        report = DamageReport(
            **body.model_dump(),
            id=str(uuid.uuid4()),
            return_id=return_id,
            item_id=returned.item_id,
            user_id=returned.user_id,
            status=DamageStatus.REPORTED,
            reported_by=actor,
        )
        await event_store.append(
            session, Action.CREATE_DAMAGE_REPORT, EntityType.DAMAGE_REPORT, report.id, report, actor=actor,
        )

        # an assessed return keeps its status; the report still feeds the floor
        if returned.status != ReturnStatus.ASSESSED:
            await event_store.append(
                session,
                Action.UPDATE_RETURN,
                EntityType.RETURN,
                returned.id,
                returned.model_copy(update={"status": ReturnStatus.DAMAGED}),
                actor=actor,
            )

    logger.info("damage_reported", damage_id=report.id, return_id=return_id, severity=report.severity.value)
    return report


async def review_damage(
    session: AsyncSession,
    damage_id: str,
    review: DamageReview,
    actor: str,
) -> DamageReport:
    async with atomic(session):
        report = await get_damage_report(session, damage_id)
        if review.status not in DAMAGE_TRANSITIONS[report.status]:
            raise ConflictError(
                f"Damage report cannot move from {report.status.value} to {review.status.value}",
            )

        updates = {
            "status": review.status,
            "reviewed_by": actor,
            "reviewed_at": utcnow(),
        }
        for field in ("admin_notes", "repair_cost", "penalty_amount"):
            value = getattr(review, field)
            if value is not None:
                updates[field] = value
        updated = report.model_copy(update=updates)

        await event_store.append(
            session, Action.UPDATE_DAMAGE_REPORT, EntityType.DAMAGE_REPORT, damage_id, updated, actor=actor,
        )

        entry = None
        if review.status == DamageStatus.APPROVED and review.penalty_amount:
            entry = await reputation_ledger.apply_penalty(
                session,
                user_id=report.user_id,
                amount=review.penalty_amount,
                reason=f"Damage penalty: {report.description}",
                source_type=reputation_ledger.SOURCE_DAMAGE_REPORT,
                source_id=damage_id,
                actor=actor,
            )

    if entry is not None:
        REPUTATION_CHANGES.labels(source_type=entry.source_type).inc()

    logger.info(
        "damage_reviewed",
        damage_id=damage_id,
        from_status=report.status.value,
        to_status=updated.status.value,
        penalty=updated.penalty_amount,
    )
    return updated


# ═══════════════════════════════════════════════════════════════
# Overdue tracking + return analytics (read only)
# ═══════════════════════════════════════════════════════════════

async def outstanding_reservations(session: AsyncSession) -> list[Reservation]:
    reservations, _ = event_store.decode_tolerant(await event_store.current(session, EntityType.RESERVATION))
    returns, _ = event_store.decode_tolerant(await event_store.current(session, EntityType.RETURN))
    returned = {r.reservation_id for r in returns}
    return [r for r in reservations if r.reservation_id not in returned]


async def overdue_report(
    session: AsyncSession,
    page: PageRequest,
    as_of: Optional[datetime] = None,
) -> OverdueReport:
    items = analytics.overdue_items(await outstanding_reservations(session), as_utc(as_of or utcnow()))
    return OverdueReport(
        items=items[page.offset:page.offset + page.limit],
        pagination=PageInfo.build(page, len(items)),
        analytics=analytics.overdue_analytics(items),
    )


def _iso_second(ts: datetime) -> str:
    return as_utc(ts).strftime("%Y-%m-%dT%H:%M:%S")


async def return_analytics(
    session: AsyncSession,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
) -> ReturnAnalytics:
    tz = ZoneInfo(get_settings().analytics_timezone)
    # return_date is stored as UTC ISO text, so whole-second bounds compare
    # correctly as strings; the exact window is applied after decoding
    return_date = event_store.payload_field("return_date")
    window = []
    if date_from is not None:
        window.append(return_date >= _iso_second(date_from))
    if date_to is not None:
        window.append(return_date < _iso_second(date_to + timedelta(seconds=1)))

    rows = await event_store.current(session, EntityType.RETURN, where=window)
    returns, skipped = event_store.decode_tolerant(rows)
    if date_from is not None:
        returns = [r for r in returns if as_utc(r.return_date) >= as_utc(date_from)]
    if date_to is not None:
        returns = [r for r in returns if as_utc(r.return_date) <= as_utc(date_to)]
    return analytics.build_return_analytics(returns, tz=tz, skipped_rows=skipped)
