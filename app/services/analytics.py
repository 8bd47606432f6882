"""
Analytics Aggregator

Pure read/reduce over decoded history. No writes, no session access:
callers load and decode rows (skipping malformed ones) and pass the
resulting records in.

Buckets are produced by sorting on an explicit key function and grouping
with itertools.groupby:

    day    → local date           "YYYY-MM-DD"
    week   → Sunday of that week  "YYYY-MM-DD"
    month  → local month          "YYYY-MM"

Keys are zero-padded so string order is chronological order. Every bucket
set partitions its input exactly. Empty inputs yield zeros, never NaN.
"""
from __future__ import annotations

from collections import Counter
from datetime import date, datetime, timedelta, timezone, tzinfo
from itertools import groupby
from typing import Callable, Iterable, Sequence, TypeVar

from app.core.clock import as_utc
from app.schemas.analytics import (
    AssessmentAnalytics,
    AssessmentSummary,
    ConditionCount,
    DailyCount,
    Granularity,
    OverdueAnalytics,
    OverdueItem,
    OverdueSeverity,
    OverdueTopItem,
    ReturnAnalytics,
    ReturnSummary,
    TrendBucket,
)
from app.schemas.assessment import AssessmentRecord, ConditionGrade
from app.schemas.returns import Reservation, ReturnEvent
from app.scoring.penalty import days_overdue, potential_penalty

T = TypeVar("T")

TOP_OVERDUE_LIMIT = 5


# ═══════════════════════════════════════════════════════════════
# Bucket keys
# ═══════════════════════════════════════════════════════════════

def local_date(ts: datetime, tz: tzinfo = timezone.utc) -> date:
    return as_utc(ts).astimezone(tz).date()


def bucket_key(ts: datetime, granularity: Granularity, tz: tzinfo = timezone.utc) -> str:
    day = local_date(ts, tz)
    if granularity == Granularity.MONTH:
        return f"{day.year:04d}-{day.month:02d}"
    if granularity == Granularity.WEEK:
        # isoweekday: Mon=1 … Sun=7; weeks start on Sunday
        day = day - timedelta(days=day.isoweekday() % 7)
    return day.isoformat()


def group_by_key(items: Iterable[T], key: Callable[[T], str]) -> list[tuple[str, list[T]]]:
    ordered = sorted(items, key=key)
    return [(k, list(group)) for k, group in groupby(ordered, key=key)]


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


# ═══════════════════════════════════════════════════════════════
# Assessment analytics
# ═══════════════════════════════════════════════════════════════

def condition_distribution(grades: Sequence[ConditionGrade]) -> list[ConditionCount]:
    """Count and percentage for every grade, best first; all zero when empty."""
    counts = Counter(grades)
    total = len(grades)
    return [
        ConditionCount(
            condition=grade,
            count=counts[grade],
            percentage=(counts[grade] / total) * 100 if total else 0.0,
        )
        for grade in ConditionGrade
    ]


def summarize(records: Sequence[AssessmentRecord]) -> AssessmentSummary:
    penalties = [r.final_penalty for r in records]
    return AssessmentSummary(
        total_assessments=len(records),
        average_score=_mean([r.overall_score for r in records]),
        total_penalties=sum(penalties),
        average_penalty=_mean(penalties),
    )


def _trend_bucket(period: str, records: list[AssessmentRecord]) -> TrendBucket:
    counts = Counter(r.final_condition for r in records)
    return TrendBucket(
        period=period,
        count=len(records),
        excellent=counts[ConditionGrade.EXCELLENT],
        good=counts[ConditionGrade.GOOD],
        fair=counts[ConditionGrade.FAIR],
        poor=counts[ConditionGrade.POOR],
        damaged=counts[ConditionGrade.DAMAGED],
        average_score=_mean([r.overall_score for r in records]),
        total_penalties=sum(r.final_penalty for r in records),
    )


def trend_buckets(
    records: Iterable[AssessmentRecord],
    granularity: Granularity,
    tz: tzinfo = timezone.utc,
) -> list[TrendBucket]:
    def key(record: AssessmentRecord) -> str:
        return bucket_key(record.assessed_at, granularity, tz)

    return [_trend_bucket(period, group) for period, group in group_by_key(records, key)]


def build_assessment_analytics(
    records: Sequence[AssessmentRecord],
    granularity: Granularity = Granularity.DAY,
    tz: tzinfo = timezone.utc,
    skipped_rows: int = 0,
) -> AssessmentAnalytics:
    return AssessmentAnalytics(
        granularity=granularity,
        summary=summarize(records),
        condition_distribution=condition_distribution([r.final_condition for r in records]),
        trends=trend_buckets(records, granularity, tz),
        skipped_rows=skipped_rows,
    )


# ═══════════════════════════════════════════════════════════════
# Overdue tracking
#   days <= 3 → MODERATE
#   days <= 7 → HIGH
#   days >  7 → CRITICAL
# ═══════════════════════════════════════════════════════════════

def overdue_severity(days: int) -> OverdueSeverity:
    if days <= 3:
        return OverdueSeverity.MODERATE
    if days <= 7:
        return OverdueSeverity.HIGH
    return OverdueSeverity.CRITICAL


def overdue_items(reservations: Iterable[Reservation], as_of: datetime) -> list[OverdueItem]:
    """Outstanding reservations past their end date, most overdue first."""
    items = []
    for r in reservations:
        days = days_overdue(as_of, r.end_date)
        if days == 0:
            continue
        items.append(OverdueItem(
            reservation_id=r.reservation_id,
            item_id=r.item_id,
            item_name=r.item_name,
            user_id=r.user_id,
            user_name=r.user_name,
            end_date=r.end_date,
            days_overdue=days,
            severity=overdue_severity(days),
            potential_penalty=potential_penalty(days, r.item_value),
        ))
    return sorted(items, key=lambda i: (-i.days_overdue, i.reservation_id))


def overdue_analytics(items: Sequence[OverdueItem]) -> OverdueAnalytics:
    severities = Counter(i.severity for i in items)
    top = sorted(items, key=lambda i: (-i.days_overdue, i.reservation_id))[:TOP_OVERDUE_LIMIT]
    return OverdueAnalytics(
        total_overdue=len(items),
        by_severity={s: severities[s] for s in OverdueSeverity},
        average_days_overdue=_mean([i.days_overdue for i in items]),
        total_potential_penalty=sum(i.potential_penalty for i in items),
        affected_users=len({i.user_id for i in items}),
        top_overdue_items=[
            OverdueTopItem(
                item_id=i.item_id,
                item_name=i.item_name,
                days_overdue=i.days_overdue,
                borrower_name=i.user_name,
            )
            for i in top
        ],
    )


# ═══════════════════════════════════════════════════════════════
# Return analytics
# ═══════════════════════════════════════════════════════════════

def build_return_analytics(
    returns: Sequence[ReturnEvent],
    tz: tzinfo = timezone.utc,
    skipped_rows: int = 0,
) -> ReturnAnalytics:
    overdue = [r for r in returns if r.is_overdue]
    penalties = [r.penalty_amount for r in returns if r.penalty_amount > 0]

    def day(r: ReturnEvent) -> str:
        return bucket_key(r.return_date, Granularity.DAY, tz)

    return ReturnAnalytics(
        summary=ReturnSummary(
            total_returns=len(returns),
            overdue_returns=len(overdue),
            overdue_rate=(len(overdue) / len(returns)) * 100 if returns else 0.0,
            penalty_count=len(penalties),
            total_penalties=sum(penalties),
            average_penalty=_mean(penalties),
        ),
        by_condition=condition_distribution([r.condition_on_return for r in returns]),
        daily=[DailyCount(date=period, count=len(group)) for period, group in group_by_key(returns, day)],
        skipped_rows=skipped_rows,
    )
