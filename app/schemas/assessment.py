"""
Assessment templates, inspection responses and the persisted AssessmentRecord.

Convention: HIGHER condition rank = BETTER condition (EXCELLENT=5 … DAMAGED=1).
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class ConditionGrade(str, Enum):
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    FAIR = "FAIR"
    POOR = "POOR"
    DAMAGED = "DAMAGED"

    @property
    def rank(self) -> int:
        return CONDITION_RANK[self]


CONDITION_RANK: dict[ConditionGrade, int] = {
    ConditionGrade.EXCELLENT: 5,
    ConditionGrade.GOOD: 4,
    ConditionGrade.FAIR: 3,
    ConditionGrade.POOR: 2,
    ConditionGrade.DAMAGED: 1,
}


def worst_condition(*grades: Optional[ConditionGrade]) -> ConditionGrade:
    """Lowest-ranked grade among the non-None arguments."""
    present = [g for g in grades if g is not None]
    if not present:
        raise ValueError("worst_condition() needs at least one grade")
    return min(present, key=lambda g: g.rank)


# ── Templates ──

class CriterionOption(BaseModel):
    value: int = Field(ge=1, le=5)
    label: str
    description: Optional[str] = None
    condition_impact: ConditionGrade


class Criterion(BaseModel):
    """A single weighted inspection question."""
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: Optional[str] = None
    # zero weights are rejected by the template service, not here, so that
    # historical templates stored before that check still decode
    weight: float = Field(ge=0)
    options: list[CriterionOption] = Field(min_length=1)

    @field_validator("options")
    @classmethod
    def distinct_option_values(cls, v: list[CriterionOption]) -> list[CriterionOption]:
        values = [o.value for o in v]
        if len(values) != len(set(values)):
            raise ValueError("option values must be distinct within a criterion")
        return v


class ConditionThresholds(BaseModel):
    """Lower bounds (inclusive) for each grade. Below `poor` is DAMAGED."""
    excellent: float = Field(90.0, ge=0, le=100)
    good: float = Field(75.0, ge=0, le=100)
    fair: float = Field(55.0, ge=0, le=100)
    poor: float = Field(35.0, ge=0, le=100)

    @model_validator(mode="after")
    def strictly_decreasing(self) -> "ConditionThresholds":
        if not (self.excellent > self.good > self.fair > self.poor):
            raise ValueError("thresholds must be strictly decreasing: excellent > good > fair > poor")
        return self


class TemplateDraft(BaseModel):
    """Body of a template creation or revision request."""
    name: str = Field(min_length=1)
    description: Optional[str] = None
    category: str = Field(min_length=1)
    is_active: bool = True
    criteria: list[Criterion] = Field(min_length=1)
    condition_thresholds: ConditionThresholds = Field(default_factory=ConditionThresholds)

    @field_validator("criteria")
    @classmethod
    def unique_criterion_ids(cls, v: list[Criterion]) -> list[Criterion]:
        ids = [c.id for c in v]
        if len(ids) != len(set(ids)):
            raise ValueError("criterion ids must be unique within a template")
        return v


class AssessmentTemplate(TemplateDraft):
    """
    One immutable template version. Revisions append a new version under
    the same id; assessments record the version they were scored against.
    """
    id: str
    version: int = Field(1, ge=1)
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def total_weight(self) -> float:
        return sum(c.weight for c in self.criteria)


class TemplateList(BaseModel):
    templates: list[AssessmentTemplate]
    categories: list[str]
    total: int


# ── Inspection input ──

class AssessmentResponse(BaseModel):
    criteria_id: str
    value: int = Field(ge=1, le=5)
    notes: Optional[str] = None


class PenaltyOverride(BaseModel):
    amount: float = Field(ge=0, le=100)
    reason: str = Field(min_length=1)


class AssessmentOverrides(BaseModel):
    """Staff judgement recorded next to the computed values, never instead of them."""
    condition: Optional[ConditionGrade] = None
    penalty: Optional[PenaltyOverride] = None
    overall_notes: Optional[str] = None


class SubmitAssessmentRequest(BaseModel):
    return_id: str = Field(min_length=1)
    template_id: str = Field(min_length=1)
    responses: list[AssessmentResponse] = Field(min_length=1)
    overrides: AssessmentOverrides = Field(default_factory=AssessmentOverrides)


# ── Computed output ──

class DetailedScore(BaseModel):
    """Per-criterion contribution to the overall score."""
    criteria_id: str
    criteria_name: Optional[str] = None
    value: int
    label: str
    weight: float
    weighted_score: float
    condition_impact: Optional[ConditionGrade] = None
    notes: Optional[str] = None


class AssessmentRecord(BaseModel):
    """
    Persisted once per return. Immutable.

    final_condition = staff_override_condition ?? determined_condition
    final_penalty   = staff_penalty_override ?? calculated_penalty
    """
    id: str
    return_id: str
    item_id: str
    user_id: Optional[str] = Field(None, description="Borrower whose return was assessed")
    template_id: str
    template_version: int = 1
    template_name: Optional[str] = None

    original_condition: ConditionGrade
    determined_condition: ConditionGrade
    staff_override_condition: Optional[ConditionGrade] = None
    final_condition: ConditionGrade
    penalty_condition: ConditionGrade = Field(description="Final condition folded with any damage floor")

    overall_score: float
    detailed_scores: list[DetailedScore] = []

    overdue_penalty: float = 0.0
    condition_penalty: float = 0.0
    calculated_penalty: float
    staff_penalty_override: Optional[float] = None
    penalty_override_reason: Optional[str] = None
    final_penalty: float

    overall_notes: Optional[str] = None
    assessed_by: str
    assessed_at: datetime
