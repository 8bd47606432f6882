"""
Penalty Calculator

Penalty sources:
  1. Overdue          min(days_overdue * 2, 20)
  2. Degradation      max(0, rank(original) - rank(penalty_condition)) * 5
     where penalty_condition is the final condition pulled down to the
     floor implied by any usability-affecting damage report, so damage and
     degradation are never counted twice.
  3. Value weighting  min(item_value * 0.001, 10), overdue tracking only;
     prospective total capped at 30.

Every component is clamped at 0 before summing. A staff override replaces
the calculated total verbatim.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from app.core.clock import as_utc
from app.schemas.assessment import ConditionGrade, PenaltyOverride, worst_condition
from app.schemas.returns import DamageSeverity

OVERDUE_POINTS_PER_DAY = 2.0
OVERDUE_PENALTY_CAP = 20.0
DEGRADATION_POINTS_PER_RANK = 5.0
VALUE_PENALTY_RATE = 0.001
VALUE_PENALTY_CAP = 10.0
POTENTIAL_PENALTY_CAP = 30.0
MAX_ASSESSMENT_PENALTY = 100.0

DAMAGE_FLOORS: dict[DamageSeverity, Optional[ConditionGrade]] = {
    DamageSeverity.TOTAL_LOSS: ConditionGrade.DAMAGED,
    DamageSeverity.MAJOR: ConditionGrade.POOR,
    DamageSeverity.MODERATE: ConditionGrade.FAIR,
    DamageSeverity.MINOR: None,
}


@dataclass(frozen=True)
class PenaltyBreakdown:
    overdue_penalty: float
    condition_penalty: float
    penalty_condition: ConditionGrade
    calculated_penalty: float
    final_penalty: float
    override_reason: Optional[str] = None

    @property
    def overridden(self) -> bool:
        return self.override_reason is not None


def _non_negative(value: float) -> float:
    if value is None or math.isnan(value) or value < 0:
        return 0.0
    return float(value)


def days_overdue(return_date: datetime, end_date: datetime) -> int:
    """Whole days late, rounded up; 0 when returned on or before end_date."""
    late_by = as_utc(return_date) - as_utc(end_date)
    if late_by <= timedelta(0):
        return 0
    return math.ceil(late_by / timedelta(days=1))


def overdue_penalty(days: int) -> float:
    return min(_non_negative(days) * OVERDUE_POINTS_PER_DAY, OVERDUE_PENALTY_CAP)


def value_penalty(item_value: Optional[float]) -> float:
    if item_value is None:
        return 0.0
    return min(_non_negative(item_value) * VALUE_PENALTY_RATE, VALUE_PENALTY_CAP)


def potential_penalty(days: int, item_value: Optional[float]) -> float:
    """Prospective penalty shown for items that are still out and overdue."""
    return min(overdue_penalty(days) + value_penalty(item_value), POTENTIAL_PENALTY_CAP)


def damage_floor(severities: Iterable[DamageSeverity]) -> Optional[ConditionGrade]:
    """Worst condition floor implied by the given usability-affecting damage severities."""
    floors = [DAMAGE_FLOORS[s] for s in severities if DAMAGE_FLOORS[s] is not None]
    return worst_condition(*floors) if floors else None


def degradation_penalty(original: ConditionGrade, current: ConditionGrade) -> float:
    return max(0, original.rank - current.rank) * DEGRADATION_POINTS_PER_RANK


def calculate_penalty(
    original_condition: ConditionGrade,
    final_condition: ConditionGrade,
    days_late: int = 0,
    damage_severities: Iterable[DamageSeverity] = (),
    override: Optional[PenaltyOverride] = None,
) -> PenaltyBreakdown:
    floor = damage_floor(damage_severities)
    penalty_condition = worst_condition(final_condition, floor)

    overdue = overdue_penalty(days_late)
    condition = _non_negative(degradation_penalty(original_condition, penalty_condition))
    calculated = min(overdue + condition, MAX_ASSESSMENT_PENALTY)

    return PenaltyBreakdown(
        overdue_penalty=overdue,
        condition_penalty=condition,
        penalty_condition=penalty_condition,
        calculated_penalty=calculated,
        final_penalty=override.amount if override is not None else calculated,
        override_reason=override.reason if override is not None else None,
    )


def return_penalty_reason(
    days_late: int,
    original_condition: ConditionGrade,
    return_condition: ConditionGrade,
) -> Optional[str]:
    parts = []
    if days_late > 0:
        parts.append(f"Overdue return ({days_late} days late).")
    if return_condition.rank < original_condition.rank:
        parts.append(f"Condition degraded from {original_condition.value} to {return_condition.value}.")
    return " ".join(parts) or None
