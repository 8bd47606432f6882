"""
Prometheus counters exposed on /metrics.
"""
from prometheus_client import Counter

ASSESSMENTS_SUBMITTED = Counter(
    "condition_assessments_submitted_total",
    "Condition assessments persisted, by final condition grade",
    ["final_condition"],
)

REPUTATION_CHANGES = Counter(
    "reputation_changes_applied_total",
    "Trust-score changes appended to the reputation ledger",
    ["source_type"],
)

ANALYTICS_ROWS_SKIPPED = Counter(
    "analytics_rows_skipped_total",
    "Historical rows excluded from analytics because their payload could not be decoded",
    ["entity_type"],
)
