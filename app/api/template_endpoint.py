"""
Assessment template management.

  POST /v1/assessments/templates                  → create (version 1)
  GET  /v1/assessments/templates                  → latest version of each template
  GET  /v1/assessments/templates/{id}             → latest, or ?version=N
  POST /v1/assessments/templates/{id}/versions    → revise (appends version N+1)
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import Principal, require
from app.core.permissions import Capability
from app.models.database import get_db
from app.schemas.assessment import AssessmentTemplate, TemplateDraft, TemplateList
from app.services import template_service

router = APIRouter(prefix="/v1/assessments/templates", tags=["templates"])


@router.post("", response_model=AssessmentTemplate, status_code=201)
async def create_template(
    draft: TemplateDraft,
    principal: Principal = Depends(require(Capability.MANAGE_TEMPLATES)),
    db: AsyncSession = Depends(get_db),
):
    return await template_service.create_template(db, draft, actor=principal.user_id)


@router.get("", response_model=TemplateList)
async def list_templates(
    category: Optional[str] = None,
    is_active: Optional[bool] = None,
    search: Optional[str] = None,
    principal: Principal = Depends(require(Capability.VIEW_ASSESSMENTS)),
    db: AsyncSession = Depends(get_db),
):
    return await template_service.list_templates(db, category=category, is_active=is_active, search=search)


@router.get("/{template_id}", response_model=AssessmentTemplate)
async def get_template(
    template_id: str,
    version: Optional[int] = Query(None, ge=1),
    principal: Principal = Depends(require(Capability.VIEW_ASSESSMENTS)),
    db: AsyncSession = Depends(get_db),
):
    return await template_service.get_template(db, template_id, version=version)


@router.post("/{template_id}/versions", response_model=AssessmentTemplate, status_code=201)
async def revise_template(
    template_id: str,
    draft: TemplateDraft,
    principal: Principal = Depends(require(Capability.MANAGE_TEMPLATES)),
    db: AsyncSession = Depends(get_db),
):
    return await template_service.revise_template(db, template_id, draft, actor=principal.user_id)
