"""Prometheus metrics for ledger activity, overdue penalties and settlement runs"""

from prometheus_client import Counter, Histogram

# Ledger metrics
transaction_counter = Counter(
    "canteen_transactions_created_total",
    "Transactions created",
    ["kind", "status"],  # purchase|token_topup, Paid|Partial|Credit
)

payment_counter = Counter(
    "canteen_payments_applied_total",
    "Payments applied to deferred balances",
    ["outcome"],  # paid_off | partial
)

payment_conflict_counter = Counter(
    "canteen_payment_conflicts_total",
    "Optimistic-lock conflicts while applying payments",
)

# Loyalty / account metrics
loyalty_deduction_counter = Counter(
    "canteen_loyalty_deductions_total",
    "Overdue loyalty deductions applied",
)

loyalty_points_deducted_counter = Counter(
    "canteen_loyalty_points_deducted_total",
    "Loyalty points removed by overdue penalties",
)

account_status_counter = Counter(
    "canteen_account_status_changes_total",
    "Suspensions and reactivations",
    ["action", "trigger"],  # suspend|reactivate, manual|settlement|payment|expiry
)

# Settlement job
settlement_run_counter = Counter(
    "canteen_settlement_runs_total",
    "Settlement invocations by outcome",
    ["outcome"],  # completed | failed | skipped
)

settlement_duration_histogram = Histogram(
    "canteen_settlement_duration_seconds",
    "Settlement run duration",
    buckets=[0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0],
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_payment(fully_paid: bool) -> None:
    payment_counter.labels(outcome="paid_off" if fully_paid else "partial").inc()


def record_status_change(action: str, trigger: str) -> None:
    account_status_counter.labels(action=action, trigger=trigger).inc()
