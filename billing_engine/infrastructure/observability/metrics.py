"""Prometheus metrics for billing volume, settlements, deposits and notification delivery"""

from decimal import Decimal

from prometheus_client import Counter, Histogram

# Billing metrics
bills_created_counter = Counter(
    "billing_bills_created_total",
    "Bills issued",
    ["kind"],  # regular | final | refund
)

payments_counter = Counter(
    "billing_payments_total",
    "Payments recorded",
    ["method"],
)

settlements_counter = Counter(
    "billing_settlements_total",
    "Bills settled and archived",
    ["reason"],  # settled | final_settled | refund_completed
)

penalty_counter = Counter(
    "billing_penalties_applied_total",
    "Late-payment penalties added to bills",
)

# Deposit metrics
deposit_movements_counter = Counter(
    "billing_deposit_movements_total",
    "Deposit transactions by kind and action",
    ["kind", "action"],  # advance | security ; deposit | use | refund | forfeit
)

deposit_amount_bucket_counter = Counter(
    "billing_deposit_amount_bucket",
    "Deposit movements by amount bucket",
    ["bucket"],  # 0-1000, 1000-5000, 5000+
)

# Departure metrics
departures_counter = Counter(
    "billing_departures_total",
    "Tenant move-outs",
    ["outcome"],  # archived | departing
)

# Concurrency
transaction_conflicts_counter = Counter(
    "billing_transaction_conflicts_total",
    "Lock or serialization conflicts seen by write operations",
    ["operation"],
)

# Notification webhook metrics
notification_latency_histogram = Histogram(
    "notification_latency_seconds",
    "Notification webhook response time",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

notification_failure_counter = Counter(
    "notification_failures_total",
    "Failed notification webhook attempts",
)

notification_dropped_counter = Counter(
    "notification_dropped_total",
    "Notifications given up on after all retries",
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_bill_created(is_final: bool = False, is_refund: bool = False) -> None:
    if is_refund:
        kind = "refund"
    elif is_final:
        kind = "final"
    else:
        kind = "regular"
    bills_created_counter.labels(kind=kind).inc()


def record_payment(method: str, penalty_applied: bool) -> None:
    payments_counter.labels(method=method).inc()
    if penalty_applied:
        penalty_counter.inc()


def record_settlement(reason: str) -> None:
    settlements_counter.labels(reason=reason).inc()


def record_deposit_movement(kind: str, action: str, amount: Decimal) -> None:
    """Record deposit movement and bucket its size for distribution analysis"""
    deposit_movements_counter.labels(kind=kind, action=action).inc()

    amount = abs(amount)
    if amount <= 1000:
        bucket = "0-1000"
    elif amount <= 5000:
        bucket = "1000-5000"
    else:
        bucket = "5000+"

    deposit_amount_bucket_counter.labels(bucket=bucket).inc()


def record_departure(archived: bool) -> None:
    departures_counter.labels(outcome="archived" if archived else "departing").inc()


def record_conflict(operation: str) -> None:
    transaction_conflicts_counter.labels(operation=operation).inc()
