"""
Condition Assessment Engine

Orchestrates:
  1. Response validation + weighted score
  2. Condition classification against the template thresholds
  3. Staff condition override (recorded next to the computed grade)
  4. Damage floor + degradation / overdue penalty
  5. Staff penalty override

Pure: no clock, no I/O. The assessment service supplies the template
snapshot, the reservation facts and the damage reports, then persists
the outcome.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Iterable, Optional

import structlog

from app.schemas.assessment import (
    AssessmentOverrides,
    AssessmentResponse,
    AssessmentTemplate,
    ConditionGrade,
    DetailedScore,
)
from app.schemas.returns import DamageReport, DamageSeverity, DamageStatus
from app.scoring.calculator import score_responses
from app.scoring.classifier import classify
from app.scoring.penalty import PenaltyBreakdown, calculate_penalty

logger = structlog.get_logger()


@dataclass(frozen=True)
class AssessmentOutcome:
    overall_score: float
    detailed_scores: list[DetailedScore]
    determined_condition: ConditionGrade
    staff_override_condition: Optional[ConditionGrade]
    final_condition: ConditionGrade
    penalty: PenaltyBreakdown


# ═══════════════════════════════════════════════════════════════
# Damage reports that feed the condition floor
#   affects_usability and not REJECTED
# ═══════════════════════════════════════════════════════════════

def counted_severities(reports: Iterable[DamageReport]) -> list[DamageSeverity]:
    return [
        r.severity for r in reports
        if r.affects_usability and r.status != DamageStatus.REJECTED
    ]


def assess(
    template: AssessmentTemplate,
    responses: list[AssessmentResponse],
    original_condition: ConditionGrade,
    days_overdue: int = 0,
    damage_reports: Iterable[DamageReport] = (),
    overrides: Optional[AssessmentOverrides] = None,
) -> AssessmentOutcome:
    """
    Main assessment entry point.
    """
    t0 = time.perf_counter_ns()
    overrides = overrides or AssessmentOverrides()

    # ── Step 1: Score ──
    scored = score_responses(template.criteria, responses)

    # ── Step 2: Classify ──
    determined = classify(scored.overall_score, template.condition_thresholds)

    # ── Step 3: Staff condition override ──
    final_condition = overrides.condition or determined

    # ── Step 4/5: Penalty ──
    penalty = calculate_penalty(
        original_condition=original_condition,
        final_condition=final_condition,
        days_late=days_overdue,
        damage_severities=counted_severities(damage_reports),
        override=overrides.penalty,
    )

    elapsed_us = int((time.perf_counter_ns() - t0) / 1_000)

    logger.debug(
        "condition_assessment_computed",
        template_id=template.id,
        template_version=template.version,
        score=round(scored.overall_score, 2),
        determined_condition=determined.value,
        final_condition=final_condition.value,
        penalty_condition=penalty.penalty_condition.value,
        final_penalty=penalty.final_penalty,
        overridden=penalty.overridden,
        elapsed_us=elapsed_us,
    )

    return AssessmentOutcome(
        overall_score=scored.overall_score,
        detailed_scores=scored.detailed_scores,
        determined_condition=determined,
        staff_override_condition=overrides.condition,
        final_condition=final_condition,
        penalty=penalty,
    )
