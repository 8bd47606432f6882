"""
Scoring Calculator

Converts weighted per-criterion responses into a single 0-100 score:

    weighted_score = (value / 5) * criterion.weight
    overall_score  = sum(weighted_score) / sum(weight) * 100

Pure function of (template snapshot, responses); no clock, no I/O.
"""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass

from app.core.errors import TemplateMismatchError, ValidationError
from app.schemas.assessment import AssessmentResponse, Criterion, DetailedScore

MAX_OPTION_VALUE = 5


@dataclass(frozen=True)
class ScoreResult:
    overall_score: float
    total_weight: float
    detailed_scores: list[DetailedScore]


def validate_responses(criteria: list[Criterion], responses: list[AssessmentResponse]) -> None:
    """
    Every criterion needs exactly one response whose value is one of the
    criterion's option values. All problems are reported together.
    """
    by_id = {c.id: c for c in criteria}
    counts = Counter(r.criteria_id for r in responses)
    problems: list[dict] = []

    missing = [c.id for c in criteria if c.id not in counts]
    if missing:
        problems.append({"type": "missing_criteria", "criteria_ids": missing})

    duplicated = sorted(cid for cid, n in counts.items() if n > 1)
    if duplicated:
        problems.append({"type": "duplicate_responses", "criteria_ids": duplicated})

    unknown = sorted(cid for cid in counts if cid not in by_id)
    if unknown:
        problems.append({"type": "unknown_criteria", "criteria_ids": unknown})

    invalid = [
        {"criteria_id": r.criteria_id, "value": r.value}
        for r in responses
        if r.criteria_id in by_id and r.value not in {o.value for o in by_id[r.criteria_id].options}
    ]
    if invalid:
        problems.append({"type": "invalid_values", "responses": invalid})

    if problems:
        raise ValidationError("Responses do not match the template criteria", details=problems)


def score_responses(criteria: list[Criterion], responses: list[AssessmentResponse]) -> ScoreResult:
    validate_responses(criteria, responses)

    by_id = {c.id: c for c in criteria}
    total_score = 0.0
    total_weight = 0.0
    detailed: list[DetailedScore] = []

    # template order, so the breakdown is stable regardless of response order
    by_response = {r.criteria_id: r for r in responses}
    for criterion_id in by_id:
        criterion = by_id[criterion_id]
        response = by_response[criterion_id]
        option = next(o for o in criterion.options if o.value == response.value)

        weighted_score = (response.value / MAX_OPTION_VALUE) * criterion.weight
        total_score += weighted_score
        total_weight += criterion.weight

        detailed.append(DetailedScore(
            criteria_id=criterion.id,
            criteria_name=criterion.name,
            value=response.value,
            label=option.label,
            weight=criterion.weight,
            weighted_score=weighted_score,
            condition_impact=option.condition_impact,
            notes=response.notes,
        ))

    if total_weight == 0:
        raise TemplateMismatchError("Template criteria weights sum to zero")

    return ScoreResult(
        overall_score=(total_score / total_weight) * 100,
        total_weight=total_weight,
        detailed_scores=detailed,
    )
