"""
Unit tests for the analytics aggregator (pure reducers).
"""
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from app.schemas.analytics import Granularity, OverdueSeverity
from app.schemas.assessment import ConditionGrade
from app.schemas.returns import ReturnEvent
from app.services.analytics import (
    bucket_key,
    build_assessment_analytics,
    build_return_analytics,
    condition_distribution,
    overdue_analytics,
    overdue_items,
    summarize,
    trend_buckets,
)
from builders import NOW, make_record, make_reservation


def _records():
    """Six assessments spread over March 2026 (the 15th is a Sunday)."""
    days = [1, 1, 14, 15, 16, 31]
    grades = [
        ConditionGrade.EXCELLENT, ConditionGrade.GOOD, ConditionGrade.GOOD,
        ConditionGrade.FAIR, ConditionGrade.POOR, ConditionGrade.DAMAGED,
    ]
    return [
        make_record(
            id=f"A-{i}",
            final_condition=g,
            overall_score=100 - i * 10,
            final_penalty=float(i),
            assessed_at=datetime(2026, 3, d, 10, 0, tzinfo=timezone.utc),
        )
        for i, (d, g) in enumerate(zip(days, grades))
    ]


def _make_return(**overrides) -> ReturnEvent:
    kwargs = {
        "id": "R-1",
        "reservation_id": "RES-1",
        "item_id": "ITEM-1",
        "user_id": "borrower-1",
        "return_date": NOW,
        "original_condition": ConditionGrade.EXCELLENT,
        "condition_on_return": ConditionGrade.EXCELLENT,
    }
    kwargs.update(overrides)
    return ReturnEvent(**kwargs)


class TestBucketKey:

    def test_day(self):
        assert bucket_key(datetime(2026, 3, 4, 8, tzinfo=timezone.utc), Granularity.DAY) == "2026-03-04"

    def test_week_starts_sunday(self):
        wednesday = datetime(2026, 3, 18, 8, tzinfo=timezone.utc)
        sunday = datetime(2026, 3, 15, 8, tzinfo=timezone.utc)
        saturday = datetime(2026, 3, 14, 8, tzinfo=timezone.utc)
        assert bucket_key(wednesday, Granularity.WEEK) == "2026-03-15"
        assert bucket_key(sunday, Granularity.WEEK) == "2026-03-15"
        assert bucket_key(saturday, Granularity.WEEK) == "2026-03-08"

    def test_month(self):
        assert bucket_key(datetime(2026, 3, 31, 23, tzinfo=timezone.utc), Granularity.MONTH) == "2026-03"

    def test_local_date_used(self):
        late_utc = datetime(2026, 3, 31, 23, 30, tzinfo=timezone.utc)
        assert bucket_key(late_utc, Granularity.MONTH, ZoneInfo("Europe/Zurich")) == "2026-04"
        assert bucket_key(late_utc, Granularity.DAY, ZoneInfo("America/New_York")) == "2026-03-31"


class TestTrendBuckets:

    @pytest.mark.parametrize("granularity", list(Granularity))
    def test_buckets_partition_the_set(self, granularity):
        records = _records()
        buckets = trend_buckets(records, granularity)
        assert sum(b.count for b in buckets) == len(records)

    def test_sorted_ascending(self):
        periods = [b.period for b in trend_buckets(_records(), Granularity.DAY)]
        assert periods == sorted(periods)
        assert periods == ["2026-03-01", "2026-03-14", "2026-03-15", "2026-03-16", "2026-03-31"]

    def test_weekly_grade_counts(self):
        buckets = {b.period: b for b in trend_buckets(_records(), Granularity.WEEK)}
        assert set(buckets) == {"2026-03-01", "2026-03-08", "2026-03-15", "2026-03-29"}
        week = buckets["2026-03-15"]
        assert (week.count, week.fair, week.poor) == (2, 1, 1)
        assert week.average_score == pytest.approx(65.0)
        assert week.total_penalties == 7.0

    def test_single_month(self):
        [month] = trend_buckets(_records(), Granularity.MONTH)
        assert month.period == "2026-03"
        assert month.count == 6

    def test_empty(self):
        assert trend_buckets([], Granularity.DAY) == []


class TestSummary:

    def test_values(self):
        s = summarize(_records())
        assert s.total_assessments == 6
        assert s.average_score == pytest.approx(75.0)
        assert s.total_penalties == 15.0
        assert s.average_penalty == pytest.approx(2.5)

    def test_empty_is_all_zero(self):
        s = summarize([])
        assert (s.total_assessments, s.average_score, s.total_penalties, s.average_penalty) == (0, 0.0, 0.0, 0.0)

    def test_distribution_covers_every_grade(self):
        dist = {c.condition: c for c in condition_distribution([r.final_condition for r in _records()])}
        assert set(dist) == set(ConditionGrade)
        assert dist[ConditionGrade.GOOD].count == 2
        assert dist[ConditionGrade.GOOD].percentage == pytest.approx(100 / 3)

    def test_empty_distribution(self):
        assert all(c.count == 0 and c.percentage == 0 for c in condition_distribution([]))

    def test_build_reports_skipped_rows(self):
        analytics = build_assessment_analytics([], Granularity.WEEK, skipped_rows=2)
        assert analytics.skipped_rows == 2
        assert analytics.trends == []
        assert analytics.summary.total_assessments == 0


class TestOverdue:

    def _reservations(self):
        return [
            make_reservation("RES-9", user_id="u1", end_date=NOW - timedelta(days=9), item_value=500.0),
            make_reservation("RES-5", user_id="u2", end_date=NOW - timedelta(days=5), item_value=None),
            make_reservation("RES-2", user_id="u1", end_date=NOW - timedelta(days=2), item_value=2_000.0),
            make_reservation("RES-future", user_id="u3", end_date=NOW + timedelta(days=2)),
        ]

    def test_items_exclude_not_yet_due(self):
        items = overdue_items(self._reservations(), NOW)
        assert [i.reservation_id for i in items] == ["RES-9", "RES-5", "RES-2"]
        assert [i.severity for i in items] == [
            OverdueSeverity.CRITICAL, OverdueSeverity.HIGH, OverdueSeverity.MODERATE,
        ]
        assert items[0].potential_penalty == pytest.approx(18.5)

    def test_aggregation(self):
        stats = overdue_analytics(overdue_items(self._reservations(), NOW))
        assert stats.total_overdue == 3
        assert stats.by_severity == {
            OverdueSeverity.MODERATE: 1, OverdueSeverity.HIGH: 1, OverdueSeverity.CRITICAL: 1,
        }
        assert stats.average_days_overdue == pytest.approx(16 / 3)
        assert stats.total_potential_penalty == pytest.approx(18.5 + 10 + 6)
        assert stats.affected_users == 2
        assert stats.top_overdue_items[0].days_overdue == 9

    def test_top_five_only(self):
        reservations = [
            make_reservation(f"RES-{d}", end_date=NOW - timedelta(days=d)) for d in range(1, 9)
        ]
        stats = overdue_analytics(overdue_items(reservations, NOW))
        assert [t.days_overdue for t in stats.top_overdue_items] == [8, 7, 6, 5, 4]

    def test_empty(self):
        stats = overdue_analytics([])
        assert stats.total_overdue == 0
        assert stats.average_days_overdue == 0
        assert all(v == 0 for v in stats.by_severity.values())


class TestReturnAnalytics:

    def test_summary_and_daily(self):
        returns = [
            _make_return(id="R-1", is_overdue=True, days_overdue=2, penalty_amount=4.0),
            _make_return(id="R-2", condition_on_return=ConditionGrade.FAIR, penalty_amount=10.0),
            _make_return(id="R-3", return_date=NOW - timedelta(days=1)),
        ]
        analytics = build_return_analytics(returns)
        assert analytics.summary.total_returns == 3
        assert analytics.summary.overdue_returns == 1
        assert analytics.summary.overdue_rate == pytest.approx(100 / 3)
        assert analytics.summary.penalty_count == 2
        assert analytics.summary.average_penalty == pytest.approx(7.0)
        assert [(d.date, d.count) for d in analytics.daily] == [("2026-03-14", 1), ("2026-03-15", 2)]

    def test_empty(self):
        analytics = build_return_analytics([])
        assert analytics.summary.overdue_rate == 0
        assert analytics.daily == []
