"""
Assessment templates.

A template is never edited in place once stored: revising appends a new
version under the same id, and assessments keep the version they were
scored against. Names are unique across template ids.
"""
from __future__ import annotations

import uuid
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.clock import utcnow
from app.core.errors import ConflictError, NotFoundError, TemplateMismatchError, ValidationError
from app.models.database import atomic
from app.schemas.assessment import AssessmentTemplate, TemplateDraft, TemplateList
from app.schemas.events import Action, EntityType
from app.services import event_store

logger = structlog.get_logger()


def version_key(template_id: str, version: int) -> str:
    return f"template:{template_id}:v{version}"


def check_weights(draft: TemplateDraft) -> None:
    """Weights must be positive; a template that cannot divide is rejected here, not at scoring time."""
    if sum(c.weight for c in draft.criteria) <= 0:
        raise TemplateMismatchError("Template criteria weights sum to zero")
    zero = [c.id for c in draft.criteria if c.weight <= 0]
    if zero:
        raise ValidationError(
            "Every criterion needs a positive weight",
            details=[{"type": "non_positive_weight", "criteria_ids": zero}],
        )


async def _latest_templates(session: AsyncSession) -> list[AssessmentTemplate]:
    rows = await event_store.current(session, EntityType.ASSESSMENT_TEMPLATE)
    templates, _ = event_store.decode_tolerant(rows)
    return templates


async def _check_name_free(session: AsyncSession, name: str, template_id: Optional[str] = None) -> None:
    for existing in await _latest_templates(session):
        if existing.name == name and existing.id != template_id:
            raise ConflictError("Assessment template with this name already exists")


async def create_template(session: AsyncSession, draft: TemplateDraft, actor: str) -> AssessmentTemplate:
    check_weights(draft)
    async with atomic(session):
        await _check_name_free(session, draft.name)
        template = AssessmentTemplate(
            **draft.model_dump(),
            id=str(uuid.uuid4()),
            version=1,
            created_by=actor,
            created_at=utcnow(),
        )
        await event_store.append(
            session,
            Action.CREATE_ASSESSMENT_TEMPLATE,
            EntityType.ASSESSMENT_TEMPLATE,
            template.id,
            template,
            actor=actor,
            dedupe_key=version_key(template.id, template.version),
            created_at=template.created_at,
        )

    logger.info("assessment_template_created", template_id=template.id, name=template.name, criteria=len(template.criteria))
    return template


async def revise_template(
    session: AsyncSession,
    template_id: str,
    draft: TemplateDraft,
    actor: str,
) -> AssessmentTemplate:
    check_weights(draft)
    async with atomic(session):
        current = await get_template(session, template_id)
        await _check_name_free(session, draft.name, template_id=template_id)
        template = AssessmentTemplate(
            **draft.model_dump(),
            id=template_id,
            version=current.version + 1,
            created_by=actor,
            created_at=utcnow(),
        )
        # two concurrent revisions of the same version collide on the key
        await event_store.append(
            session,
            Action.REVISE_ASSESSMENT_TEMPLATE,
            EntityType.ASSESSMENT_TEMPLATE,
            template.id,
            template,
            actor=actor,
            dedupe_key=version_key(template.id, template.version),
            created_at=template.created_at,
        )

    logger.info("assessment_template_revised", template_id=template_id, version=template.version)
    return template


async def get_template(
    session: AsyncSession,
    template_id: str,
    version: Optional[int] = None,
) -> AssessmentTemplate:
    if version is None:
        template = await event_store.latest_payload(session, EntityType.ASSESSMENT_TEMPLATE, template_id)
    else:
        rows = await event_store.history(session, EntityType.ASSESSMENT_TEMPLATE)
        matches = [
            t for t in (event_store.decode(r) for r in rows if r.entity_id == template_id)
            if t.version == version
        ]
        template = matches[-1] if matches else None

    if template is None:
        suffix = f" version {version}" if version is not None else ""
        raise NotFoundError(f"Assessment template {template_id}{suffix} not found")
    return template


async def list_templates(
    session: AsyncSession,
    category: Optional[str] = None,
    is_active: Optional[bool] = None,
    search: Optional[str] = None,
) -> TemplateList:
    templates = await _latest_templates(session)
    if category:
        templates = [t for t in templates if t.category == category]
    if is_active is not None:
        templates = [t for t in templates if t.is_active == is_active]
    if search:
        needle = search.lower()
        templates = [
            t for t in templates
            if needle in t.name.lower()
            or needle in (t.description or "").lower()
            or needle in t.category.lower()
        ]

    templates = sorted(templates, key=lambda t: (t.name, t.id))
    return TemplateList(
        templates=templates,
        categories=sorted({t.category for t in templates}),
        total=len(templates),
    )
