"""
Condition Classifier

Maps a 0-100 score to a grade. Thresholds are lower bounds, inclusive:

    score >= excellent  → EXCELLENT
    score >= good       → GOOD
    score >= fair       → FAIR
    score >= poor       → POOR
    otherwise           → DAMAGED
"""
from __future__ import annotations

from app.schemas.assessment import ConditionGrade, ConditionThresholds


def classify(score: float, thresholds: ConditionThresholds) -> ConditionGrade:
    ladder = [
        (thresholds.excellent, ConditionGrade.EXCELLENT),
        (thresholds.good, ConditionGrade.GOOD),
        (thresholds.fair, ConditionGrade.FAIR),
        (thresholds.poor, ConditionGrade.POOR),
    ]
    for threshold, grade in ladder:
        if score >= threshold:
            return grade
    return ConditionGrade.DAMAGED
