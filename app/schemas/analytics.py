"""
Query filters, pagination and analytics payloads.
"""
from __future__ import annotations

import math
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from app.schemas.assessment import AssessmentRecord, ConditionGrade


class Granularity(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


class OverdueSeverity(str, Enum):
    MODERATE = "MODERATE"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


# ── Pagination ──

class PageRequest(BaseModel):
    page: int = Field(1, ge=1)
    limit: int = Field(20, ge=1, le=100)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class PageInfo(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_previous: bool

    @classmethod
    def build(cls, request: PageRequest, total: int) -> "PageInfo":
        total_pages = math.ceil(total / request.limit) if total else 0
        return cls(
            page=request.page,
            limit=request.limit,
            total=total,
            total_pages=total_pages,
            has_next=request.page < total_pages,
            has_previous=request.page > 1,
        )


# ── Assessment analytics ──

class AssessmentFilters(BaseModel):
    return_id: Optional[str] = None
    item_id: Optional[str] = None
    user_id: Optional[str] = Field(None, description="Borrower")
    staff_id: Optional[str] = Field(None, description="Assessor (assessed_by)")
    condition: Optional[ConditionGrade] = Field(None, description="Matches final_condition")
    template_id: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None


class ConditionCount(BaseModel):
    condition: ConditionGrade
    count: int
    percentage: float


class TrendBucket(BaseModel):
    period: str
    count: int
    excellent: int = 0
    good: int = 0
    fair: int = 0
    poor: int = 0
    damaged: int = 0
    average_score: float
    total_penalties: float


class AssessmentSummary(BaseModel):
    total_assessments: int
    average_score: float
    total_penalties: float
    average_penalty: float


class AssessmentAnalytics(BaseModel):
    granularity: Granularity
    summary: AssessmentSummary
    condition_distribution: list[ConditionCount]
    trends: list[TrendBucket]
    skipped_rows: int = 0


class AssessmentQueryResult(BaseModel):
    records: list[AssessmentRecord]
    pagination: PageInfo
    analytics: Optional[AssessmentAnalytics] = None


# ── Overdue tracking ──

class OverdueItem(BaseModel):
    reservation_id: str
    item_id: str
    item_name: Optional[str] = None
    user_id: str
    user_name: Optional[str] = None
    end_date: datetime
    days_overdue: int
    severity: OverdueSeverity
    potential_penalty: float


class OverdueTopItem(BaseModel):
    item_id: str
    item_name: Optional[str] = None
    days_overdue: int
    borrower_name: Optional[str] = None


class OverdueAnalytics(BaseModel):
    total_overdue: int
    by_severity: dict[OverdueSeverity, int]
    average_days_overdue: float
    total_potential_penalty: float
    affected_users: int
    top_overdue_items: list[OverdueTopItem]


class OverdueReport(BaseModel):
    items: list[OverdueItem]
    pagination: PageInfo
    analytics: OverdueAnalytics


# ── Return analytics ──

class ReturnSummary(BaseModel):
    total_returns: int
    overdue_returns: int
    overdue_rate: float
    penalty_count: int
    total_penalties: float
    average_penalty: float


class DailyCount(BaseModel):
    date: str
    count: int


class ReturnAnalytics(BaseModel):
    summary: ReturnSummary
    by_condition: list[ConditionCount]
    daily: list[DailyCount]
    skipped_rows: int = 0
