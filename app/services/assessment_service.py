"""
Condition assessment submission and history queries.

submit_assessment runs as one atomic unit:

    load return + template + damage reports
      → score → classify → penalize         (app.scoring.engine, pure)
      → append AssessmentRecord             (one per return, dedupe key)
      → append superseding Return           (status ASSESSED)

Either both envelopes land or neither does. Publication and metrics
happen only after the commit.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import as_utc, utcnow
from app.core.config import get_settings
from app.core.errors import ConflictError
from app.core.metrics import ASSESSMENTS_SUBMITTED
from app.models.database import atomic
from app.schemas.analytics import (
    AssessmentFilters,
    AssessmentQueryResult,
    Granularity,
    PageInfo,
    PageRequest,
)
from app.schemas.assessment import AssessmentRecord, SubmitAssessmentRequest
from app.schemas.events import Action, EntityType
from app.schemas.returns import ReturnStatus
from app.scoring.engine import assess
from app.services import analytics, event_store, returns_service, template_service
from app.services.event_publisher import publish_assessment_event

logger = structlog.get_logger()


def assessment_key(return_id: str) -> str:
    return f"assessment:{return_id}"


async def submit_assessment(
    session: AsyncSession,
    request: SubmitAssessmentRequest,
    actor: str,
    as_of: Optional[datetime] = None,
) -> AssessmentRecord:
    """
    Score a returned item against a template and persist the result.

    Raises NotFoundError (return/template), ValidationError (responses),
    ConflictError (already assessed), ConsistencyError (write failed).
    """
    async with atomic(session):
        returned = await returns_service.get_return(session, request.return_id)
        template = await template_service.get_template(session, request.template_id)

        if returned.assessment_id or await event_store.exists(session, assessment_key(returned.id)):
            raise ConflictError(f"Return {returned.id} has already been assessed")

        reports = await returns_service.damage_reports_for(session, returned.id)
        outcome = assess(
            template,
            request.responses,
            original_condition=returned.original_condition,
            days_overdue=returned.days_overdue,
            damage_reports=reports,
            overrides=request.overrides,
        )

        now = as_utc(as_of or utcnow())
        penalty = outcome.penalty
        overrides = request.overrides
        record = AssessmentRecord(
            id=str(uuid.uuid4()),
            return_id=returned.id,
            item_id=returned.item_id,
            user_id=returned.user_id,
            template_id=template.id,
            template_version=template.version,
            template_name=template.name,
            original_condition=returned.original_condition,
            determined_condition=outcome.determined_condition,
            staff_override_condition=outcome.staff_override_condition,
            final_condition=outcome.final_condition,
            penalty_condition=penalty.penalty_condition,
            overall_score=outcome.overall_score,
            detailed_scores=outcome.detailed_scores,
            overdue_penalty=penalty.overdue_penalty,
            condition_penalty=penalty.condition_penalty,
            calculated_penalty=penalty.calculated_penalty,
            staff_penalty_override=overrides.penalty.amount if overrides.penalty else None,
            penalty_override_reason=penalty.override_reason,
            final_penalty=penalty.final_penalty,
            overall_notes=overrides.overall_notes,
            assessed_by=actor,
            assessed_at=now,
        )
        await event_store.append(
            session,
            Action.SUBMIT_CONDITION_ASSESSMENT,
            EntityType.CONDITION_ASSESSMENT,
            record.id,
            record,
            actor=actor,
            dedupe_key=assessment_key(returned.id),
            created_at=now,
        )

        # ── Supersede the return with the assessed outcome ──
        notes = returned.notes
        if overrides.overall_notes:
            notes = f"{returned.notes or ''}\n\nAssessment Notes: {overrides.overall_notes}".strip()
        penalty_reason = None
        if record.final_penalty > 0:
            penalty_reason = f"Condition assessment penalty: {penalty.override_reason or 'Condition degradation'}"
        await event_store.append(
            session,
            Action.UPDATE_RETURN,
            EntityType.RETURN,
            returned.id,
            returned.model_copy(update={
                "status": ReturnStatus.ASSESSED,
                "assessment_id": record.id,
                "condition_on_return": record.final_condition,
                "penalty_amount": record.final_penalty,
                "penalty_reason": penalty_reason,
                "notes": notes,
            }),
            actor=actor,
            created_at=now,
        )

    ASSESSMENTS_SUBMITTED.labels(final_condition=record.final_condition.value).inc()
    logger.info(
        "assessment_submitted",
        assessment_id=record.id,
        return_id=record.return_id,
        template_id=record.template_id,
        template_version=record.template_version,
        score=round(record.overall_score, 2),
        final_condition=record.final_condition.value,
        final_penalty=record.final_penalty,
        assessed_by=actor,
    )

    await publish_assessment_event(record)
    return record


# ═══════════════════════════════════════════════════════════════
# History query
#   action / entity type / date range are filtered in SQL,
#   everything else on the decoded records, then ordered
#   (assessed_at desc, id desc) and paginated.
# ═══════════════════════════════════════════════════════════════

def matches(record: AssessmentRecord, filters: AssessmentFilters) -> bool:
    if filters.return_id and record.return_id != filters.return_id:
        return False
    if filters.item_id and record.item_id != filters.item_id:
        return False
    if filters.user_id and record.user_id != filters.user_id:
        return False
    if filters.staff_id and record.assessed_by != filters.staff_id:
        return False
    if filters.condition and record.final_condition != filters.condition:
        return False
    if filters.template_id and record.template_id != filters.template_id:
        return False
    if filters.date_from and as_utc(record.assessed_at) < as_utc(filters.date_from):
        return False
    if filters.date_to and as_utc(record.assessed_at) > as_utc(filters.date_to):
        return False
    return True


async def query_assessments(
    session: AsyncSession,
    filters: AssessmentFilters,
    page: PageRequest,
    include_analytics: bool = False,
    granularity: Granularity = Granularity.DAY,
) -> AssessmentQueryResult:
    rows = await event_store.history(
        session,
        EntityType.CONDITION_ASSESSMENT,
        actions=[Action.SUBMIT_CONDITION_ASSESSMENT],
        since=filters.date_from,
        until=filters.date_to,
    )
    decoded, skipped = event_store.decode_tolerant(rows)
    filtered = sorted(
        (r for r in decoded if matches(r, filters)),
        key=lambda r: (as_utc(r.assessed_at), r.id),
        reverse=True,
    )

    result = AssessmentQueryResult(
        records=filtered[page.offset:page.offset + page.limit],
        pagination=PageInfo.build(page, len(filtered)),
    )
    if include_analytics:
        result.analytics = analytics.build_assessment_analytics(
            filtered,
            granularity=granularity,
            tz=ZoneInfo(get_settings().analytics_timezone),
            skipped_rows=skipped,
        )
    return result
