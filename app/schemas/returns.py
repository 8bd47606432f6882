"""
Reservations, return events and damage reports.

Reservations are supplied by the outer lending system; they are persisted
here only so that return creation and overdue tracking can read them.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from app.schemas.assessment import ConditionGrade


class DamageSeverity(str, Enum):
    MINOR = "MINOR"
    MODERATE = "MODERATE"
    MAJOR = "MAJOR"
    TOTAL_LOSS = "TOTAL_LOSS"


class DamageType(str, Enum):
    PHYSICAL = "PHYSICAL"
    FUNCTIONAL = "FUNCTIONAL"
    COSMETIC = "COSMETIC"
    MISSING_PARTS = "MISSING_PARTS"
    OTHER = "OTHER"


class DamageStatus(str, Enum):
    REPORTED = "REPORTED"
    UNDER_REVIEW = "UNDER_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    RESOLVED = "RESOLVED"


DAMAGE_TRANSITIONS: dict[DamageStatus, frozenset[DamageStatus]] = {
    DamageStatus.REPORTED: frozenset({DamageStatus.UNDER_REVIEW, DamageStatus.APPROVED, DamageStatus.REJECTED}),
    DamageStatus.UNDER_REVIEW: frozenset({DamageStatus.APPROVED, DamageStatus.REJECTED}),
    DamageStatus.APPROVED: frozenset({DamageStatus.RESOLVED}),
    DamageStatus.REJECTED: frozenset(),
    DamageStatus.RESOLVED: frozenset(),
}


class ReturnStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    DAMAGED = "DAMAGED"
    ASSESSED = "ASSESSED"


# ── Reservations ──

class Reservation(BaseModel):
    reservation_id: str = Field(min_length=1)
    item_id: str = Field(min_length=1)
    item_name: Optional[str] = None
    item_value: Optional[float] = Field(None, ge=0)
    item_condition: ConditionGrade = Field(description="Condition of the item when it was handed out")
    user_id: str = Field(min_length=1)
    user_name: Optional[str] = None
    start_date: datetime
    end_date: datetime


# ── Returns ──

class ReturnCreate(BaseModel):
    reservation_id: str = Field(min_length=1)
    return_date: datetime
    condition_on_return: ConditionGrade
    notes: Optional[str] = None


class ReturnEvent(BaseModel):
    id: str
    reservation_id: str
    item_id: str
    user_id: str
    return_date: datetime
    original_condition: ConditionGrade
    condition_on_return: ConditionGrade
    is_overdue: bool = False
    days_overdue: int = Field(0, ge=0)
    penalty_amount: float = Field(0.0, ge=0)
    penalty_reason: Optional[str] = None
    status: ReturnStatus = ReturnStatus.PENDING
    assessment_id: Optional[str] = None
    notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None


class ReturnReview(BaseModel):
    """Staff decision on a PENDING return."""
    status: ReturnStatus
    staff_notes: Optional[str] = None
    rejection_reason: Optional[str] = None

    @model_validator(mode="after")
    def check_decision(self) -> "ReturnReview":
        if self.status not in (ReturnStatus.APPROVED, ReturnStatus.REJECTED):
            raise ValueError("A return can only be reviewed to APPROVED or REJECTED")
        if self.status == ReturnStatus.REJECTED and not (self.rejection_reason or "").strip():
            raise ValueError("Rejecting a return needs a rejection_reason")
        return self


# ── Damage ──

class DamageReportCreate(BaseModel):
    damage_type: DamageType
    severity: DamageSeverity
    description: str = Field(min_length=10)
    affects_usability: bool
    is_repairable: Optional[bool] = None
    estimated_repair_cost: Optional[float] = Field(None, ge=0)


class DamageReport(DamageReportCreate):
    id: str
    return_id: str
    item_id: str
    user_id: str
    status: DamageStatus = DamageStatus.REPORTED
    penalty_amount: Optional[float] = Field(None, ge=0)
    repair_cost: Optional[float] = Field(None, ge=0)
    admin_notes: Optional[str] = None
    reported_by: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None


class DamageReview(BaseModel):
    status: DamageStatus
    admin_notes: Optional[str] = None
    repair_cost: Optional[float] = Field(None, ge=0)
    penalty_amount: Optional[float] = Field(None, ge=0)
