"""
POST /v1/assessments   → score a returned item and persist the record
GET  /v1/assessments   → filtered, paginated history (+ analytics for managers)

Domain errors propagate to the handler in app.main.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import Principal, require
from app.core.errors import PermissionDeniedError
from app.core.permissions import Capability, can
from app.models.database import get_db
from app.schemas.analytics import AssessmentFilters, AssessmentQueryResult, Granularity, PageRequest
from app.schemas.assessment import AssessmentRecord, ConditionGrade, SubmitAssessmentRequest
from app.services import assessment_service

logger = structlog.get_logger()
router = APIRouter(prefix="/v1/assessments", tags=["assessments"])


@router.post(
    "",
    response_model=AssessmentRecord,
    status_code=201,
    summary="Submit a condition assessment for a return",
    description="Scores responses against the template, classifies the condition and computes the penalty.",
)
async def submit_assessment(
    request: SubmitAssessmentRequest,
    principal: Principal = Depends(require(Capability.SUBMIT_ASSESSMENT)),
    db: AsyncSession = Depends(get_db),
) -> AssessmentRecord:
    logger.info(
        "assessment_submission_started",
        return_id=request.return_id,
        template_id=request.template_id,
        caller=principal.user_id,
    )
    return await assessment_service.submit_assessment(db, request, actor=principal.user_id)


@router.get(
    "",
    response_model=AssessmentQueryResult,
    summary="Assessment history with optional analytics",
)
async def query_assessments(
    return_id: Optional[str] = None,
    item_id: Optional[str] = None,
    user_id: Optional[str] = None,
    staff_id: Optional[str] = None,
    condition: Optional[ConditionGrade] = None,
    template_id: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    analytics: bool = False,
    group_by: Granularity = Granularity.DAY,
    principal: Principal = Depends(require(Capability.VIEW_ASSESSMENTS)),
    db: AsyncSession = Depends(get_db),
) -> AssessmentQueryResult:
    if analytics and not can(principal.role, Capability.VIEW_ASSESSMENT_ANALYTICS):
        raise PermissionDeniedError("Manager privileges required for assessment analytics")

    filters = AssessmentFilters(
        return_id=return_id,
        item_id=item_id,
        user_id=user_id,
        staff_id=staff_id,
        condition=condition,
        template_id=template_id,
        date_from=date_from,
        date_to=date_to,
    )
    return await assessment_service.query_assessments(
        db,
        filters,
        PageRequest(page=page, limit=limit),
        include_analytics=analytics,
        granularity=group_by,
    )
