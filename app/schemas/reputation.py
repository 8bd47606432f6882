"""
Reputation ledger entries and history views.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from app.schemas.analytics import PageInfo


class ReputationEntry(BaseModel):
    """Append-only. new_score = max(0, previous_score + change)."""
    id: str
    user_id: str
    change: float
    reason: str
    previous_score: float = Field(ge=0)
    new_score: float = Field(ge=0)
    source_type: str
    source_id: str
    created_at: datetime


class ReputationAdjustment(BaseModel):
    change: float
    reason: str = Field(min_length=1)
    source_id: Optional[str] = Field(
        None, description="Idempotency key for the adjustment; generated when omitted",
    )


class ReputationStatistics(BaseModel):
    current_trust_score: float
    total_entries: int
    average_change: float
    total_change: float
    positive_changes: int
    negative_changes: int


class ReputationHistory(BaseModel):
    user_id: str
    entries: list[ReputationEntry]
    pagination: PageInfo
    statistics: ReputationStatistics
