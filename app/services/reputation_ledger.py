"""
Reputation Ledger

Maintains each user's trust score as
  1. an append-only ledger of ReputationEntry events, and
  2. a denormalized running value in user_trust.

Both writes happen inside the caller's atomic unit. The running value is
updated with an optimistic compare-and-swap on user_trust.version, so N
concurrent changes for one user always land as N distinct sequential
entries. A change is keyed by its triggering record; applying it twice is a
ConflictError and writes nothing.

Scores never drop below 0.
"""
from __future__ import annotations

import uuid
from typing import Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import as_utc, utcnow
from app.core.config import get_settings
from app.core.errors import ConflictError, ConsistencyError, ValidationError
from app.core.metrics import REPUTATION_CHANGES
from app.models.database import atomic
from app.models.event_log import UserTrust
from app.schemas.analytics import PageInfo, PageRequest
from app.schemas.events import Action, EntityType
from app.schemas.reputation import (
    ReputationAdjustment,
    ReputationEntry,
    ReputationHistory,
    ReputationStatistics,
)
from app.services import event_store

logger = structlog.get_logger()

SOURCE_DAMAGE_REPORT = "DamageReport"
SOURCE_MANUAL_ADJUSTMENT = "ManualAdjustment"

_UPSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}

_trust = UserTrust.__table__


def ledger_key(source_type: str, source_id: str) -> str:
    return f"reputation:{source_type}:{source_id}"


async def current_score(session: AsyncSession, user_id: str) -> float:
    result = await session.execute(select(_trust.c.trust_score).where(_trust.c.user_id == user_id))
    score = result.scalar_one_or_none()
    return score if score is not None else get_settings().default_trust_score


async def _ensure_trust_row(session: AsyncSession, user_id: str) -> None:
    values = dict(
        user_id=user_id,
        trust_score=get_settings().default_trust_score,
        version=0,
        updated_at=utcnow(),
    )
    dialect = session.get_bind().dialect.name
    upsert = _UPSERTS.get(dialect)
    if upsert is not None:
        await session.execute(upsert(_trust).values(**values).on_conflict_do_nothing(index_elements=["user_id"]))
        return
    exists = await session.execute(select(_trust.c.user_id).where(_trust.c.user_id == user_id))
    if exists.first() is None:
        await session.execute(_trust.insert().values(**values))


async def apply_change(
    session: AsyncSession,
    user_id: str,
    change: float,
    reason: str,
    source_type: str,
    source_id: str,
    actor: Optional[str] = None,
) -> ReputationEntry:
    if not reason:
        raise ValidationError("A reputation change needs a reason")

    key = ledger_key(source_type, source_id)
    if await event_store.exists(session, key):
        raise ConflictError(f"Reputation change for {source_type} {source_id} was already applied")

    await _ensure_trust_row(session, user_id)

    max_attempts = get_settings().ledger_max_retries
    for attempt in range(1, max_attempts + 1):
        current = (await session.execute(
            select(_trust.c.trust_score, _trust.c.version).where(_trust.c.user_id == user_id)
        )).one()
        previous_score = current.trust_score
        new_score = max(0.0, previous_score + change)
        now = utcnow()

        # ── CAS: only succeeds if nobody moved the version since our read ──
        result = await session.execute(
            update(_trust)
            .where(_trust.c.user_id == user_id, _trust.c.version == current.version)
            .values(trust_score=new_score, version=current.version + 1, updated_at=now)
        )
        if result.rowcount == 1:
            break

        logger.info("reputation_cas_retry", user_id=user_id, attempt=attempt, version=current.version)
    else:
        logger.error("reputation_cas_exhausted", user_id=user_id, attempts=max_attempts)
        raise ConsistencyError(f"Trust score for {user_id} kept changing; gave up after {max_attempts} attempts")

    entry = ReputationEntry(
        id=str(uuid.uuid4()),
        user_id=user_id,
        change=change,
        reason=reason,
        previous_score=previous_score,
        new_score=new_score,
        source_type=source_type,
        source_id=source_id,
        created_at=now,
    )
    await event_store.append(
        session,
        Action.APPLY_REPUTATION_CHANGE,
        EntityType.REPUTATION_ENTRY,
        entry.id,
        entry,
        actor=actor,
        dedupe_key=key,
        created_at=now,
    )

    logger.info(
        "reputation_change_applied",
        user_id=user_id,
        change=change,
        previous_score=previous_score,
        new_score=new_score,
        source_type=source_type,
        source_id=source_id,
        attempts=attempt,
    )
    return entry


async def apply_penalty(
    session: AsyncSession,
    user_id: str,
    amount: float,
    reason: str,
    source_type: str,
    source_id: str,
    actor: Optional[str] = None,
) -> Optional[ReputationEntry]:
    """Deduct `amount` points. A zero penalty writes nothing."""
    if amount <= 0:
        return None
    return await apply_change(session, user_id, -amount, reason, source_type, source_id, actor=actor)


# ═══════════════════════════════════════════════════════════════
# History
# ═══════════════════════════════════════════════════════════════

def summarize_entries(entries: list[ReputationEntry], current_trust_score: float) -> ReputationStatistics:
    total_change = sum(e.change for e in entries)
    return ReputationStatistics(
        current_trust_score=current_trust_score,
        total_entries=len(entries),
        average_change=total_change / len(entries) if entries else 0.0,
        total_change=total_change,
        positive_changes=sum(1 for e in entries if e.change > 0),
        negative_changes=sum(1 for e in entries if e.change < 0),
    )


async def reputation_history(session: AsyncSession, user_id: str, page: PageRequest) -> ReputationHistory:
    rows = await event_store.history(
        session, EntityType.REPUTATION_ENTRY, where=[event_store.payload_field("user_id") == user_id],
    )
    decoded, _ = event_store.decode_tolerant(rows)
    entries = sorted(
        decoded,
        key=lambda e: (as_utc(e.created_at), e.id),
        reverse=True,
    )
    return ReputationHistory(
        user_id=user_id,
        entries=entries[page.offset:page.offset + page.limit],
        pagination=PageInfo.build(page, len(entries)),
        statistics=summarize_entries(entries, await current_score(session, user_id)),
    )


async def adjust_reputation(
    session: AsyncSession,
    user_id: str,
    adjustment: ReputationAdjustment,
    actor: str,
) -> ReputationEntry:
    """Manual staff adjustment, either sign. Keyed by source_id when the caller supplies one."""
    if adjustment.change == 0:
        raise ValidationError("A reputation adjustment must change the score")

    async with atomic(session):
        entry = await apply_change(
            session,
            user_id=user_id,
            change=adjustment.change,
            reason=adjustment.reason,
            source_type=SOURCE_MANUAL_ADJUSTMENT,
            source_id=adjustment.source_id or str(uuid.uuid4()),
            actor=actor,
        )

    REPUTATION_CHANGES.labels(source_type=entry.source_type).inc()
    return entry
