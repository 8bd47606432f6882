"""
Event Log Store: append-only persistence for every domain record.

    append()     insert one envelope; a taken dedupe_key is a ConflictError
    latest()     newest envelope for an entity (newer rows supersede older)
    history()    envelopes of one entity type in insertion order
    current()    latest envelope per entity of one type

Both readers take extra `where` clauses, usually built with payload_field(),
so that scoping by a payload attribute happens in SQL. Such clauses must only
test attributes that never change across an entity's envelopes.

Writes never commit on their own; callers wrap them in atomic().
"""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Iterable, Optional

import structlog
from pydantic import BaseModel
from sqlalchemy import ColumnElement, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import as_utc, utcnow
from app.core.errors import ConflictError, ConsistencyError
from app.core.metrics import ANALYTICS_ROWS_SKIPPED
from app.models.event_log import EventLogEntry
from app.schemas.events import (
    CURRENT_SCHEMA_VERSION,
    Action,
    EntityType,
    Payload,
    decode_payload,
    encode_payload,
)

logger = structlog.get_logger()

# pydantic.ValidationError is a ValueError; the others come from upgraders fed
# malformed legacy documents
DECODE_ERRORS = (ValueError, TypeError, KeyError, AttributeError)


async def append(
    session: AsyncSession,
    action: Action,
    entity_type: EntityType,
    entity_id: str,
    payload: BaseModel,
    actor: Optional[str] = None,
    dedupe_key: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> EventLogEntry:
    row = EventLogEntry(
        id=str(uuid.uuid4()),
        action=action.value,
        entity_type=entity_type.value,
        entity_id=entity_id,
        user_id=actor,
        payload=encode_payload(payload),
        schema_version=CURRENT_SCHEMA_VERSION[entity_type],
        dedupe_key=dedupe_key,
        created_at=created_at or utcnow(),
    )
    session.add(row)
    try:
        await session.flush()
    except IntegrityError as e:
        raise ConflictError(
            f"{entity_type.value} {entity_id} was already recorded",
            details=[{"dedupe_key": dedupe_key}] if dedupe_key else None,
        ) from e
    return row


def payload_field(key: str) -> ColumnElement[str]:
    """A top-level payload attribute as text, for use in `where` clauses."""
    return EventLogEntry.payload[key].as_string()


async def exists(session: AsyncSession, dedupe_key: str) -> bool:
    result = await session.execute(
        select(EventLogEntry.seq).where(EventLogEntry.dedupe_key == dedupe_key)
    )
    return result.first() is not None


async def latest(session: AsyncSession, entity_type: EntityType, entity_id: str) -> Optional[EventLogEntry]:
    result = await session.execute(
        select(EventLogEntry)
        .where(EventLogEntry.entity_type == entity_type.value, EventLogEntry.entity_id == entity_id)
        .order_by(EventLogEntry.seq.desc())
        .limit(1)
    )
    return result.scalars().first()


async def history(
    session: AsyncSession,
    entity_type: EntityType,
    actions: Optional[Iterable[Action]] = None,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    where: Iterable[ColumnElement[bool]] = (),
) -> list[EventLogEntry]:
    stmt = select(EventLogEntry).where(EventLogEntry.entity_type == entity_type.value, *where)
    if actions:
        stmt = stmt.where(EventLogEntry.action.in_([a.value for a in actions]))
    if since is not None:
        stmt = stmt.where(EventLogEntry.created_at >= as_utc(since))
    if until is not None:
        stmt = stmt.where(EventLogEntry.created_at <= as_utc(until))
    result = await session.execute(stmt.order_by(EventLogEntry.seq))
    return list(result.scalars().all())


async def current(
    session: AsyncSession,
    entity_type: EntityType,
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    where: Iterable[ColumnElement[bool]] = (),
) -> list[EventLogEntry]:
    """Latest envelope per entity id, in first-seen order."""
    by_entity: dict[str, EventLogEntry] = {}
    for row in await history(session, entity_type, since=since, until=until, where=where):
        by_entity[row.entity_id] = row
    return list(by_entity.values())


# ═══════════════════════════════════════════════════════════════
# Decoding
#   strict:   write paths; an undecodable record aborts the unit
#   tolerant: read/analytics paths; bad rows are skipped and counted
# ═══════════════════════════════════════════════════════════════

def decode(row: EventLogEntry) -> Payload:
    try:
        return decode_payload(row.entity_type, row.payload, row.schema_version, row.entity_id)
    except DECODE_ERRORS as e:
        logger.error(
            "event_payload_undecodable",
            event_id=row.id,
            entity_type=row.entity_type,
            entity_id=row.entity_id,
            error=str(e),
        )
        raise ConsistencyError(f"Stored {row.entity_type} {row.entity_id} could not be decoded") from e


def decode_tolerant(rows: Iterable[EventLogEntry]) -> tuple[list[Payload], int]:
    decoded: list[Payload] = []
    skipped = 0
    for row in rows:
        try:
            decoded.append(decode_payload(row.entity_type, row.payload, row.schema_version, row.entity_id))
        except DECODE_ERRORS as e:
            skipped += 1
            ANALYTICS_ROWS_SKIPPED.labels(entity_type=row.entity_type).inc()
            logger.warning(
                "analytics_row_skipped",
                event_id=row.id,
                entity_type=row.entity_type,
                entity_id=row.entity_id,
                schema_version=row.schema_version,
                error=str(e),
            )
    return decoded, skipped


async def latest_payload(session: AsyncSession, entity_type: EntityType, entity_id: str) -> Optional[Payload]:
    row = await latest(session, entity_type, entity_id)
    return decode(row) if row is not None else None
