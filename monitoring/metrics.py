"""
Prometheus metrics for payment reconciliation monitoring.

Tracks:
- Webhook deliveries by provider and outcome
- Applied transitions, duplicates and conflicts
- Gateway API calls and errors
- Notification deliveries through the fallback chain
- Stale-order reminders
"""
import time

from prometheus_client import Counter, Gauge, Histogram

# Order metrics
orders_created_total = Counter(
    "orders_created_total",
    "Total number of orders created",
    ["payment_method"],
)

# Webhook metrics
webhook_events_received_total = Counter(
    "webhook_events_received_total",
    "Total webhook deliveries received",
    ["provider"],
)

webhook_events_processed_total = Counter(
    "webhook_events_processed_total",
    "Total webhook deliveries processed",
    ["provider", "outcome"],  # applied, duplicate, conflict, no_op, order_not_found, rejected
)

webhook_processing_duration_seconds = Histogram(
    "webhook_processing_duration_seconds",
    "Webhook processing duration in seconds",
    ["provider"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

# State machine metrics
payment_transitions_total = Counter(
    "payment_transitions_total",
    "Total payment status transitions applied",
    ["provider", "status", "source"],
)

payment_transition_conflicts_total = Counter(
    "payment_transition_conflicts_total",
    "Events discarded because the order already had a different terminal status",
    ["provider"],
)

payment_duplicate_events_total = Counter(
    "payment_duplicate_events_total",
    "Events ignored because the order already had the reported status",
    ["provider"],
)

# Gateway metrics
gateway_requests_total = Counter(
    "gateway_requests_total",
    "Total payment gateway API requests",
    ["provider", "operation", "status"],
)

gateway_errors_total = Counter(
    "gateway_errors_total",
    "Total payment gateway API errors",
    ["provider", "error_type"],  # unavailable, rejected, auth
)

gateway_request_duration_seconds = Histogram(
    "gateway_request_duration_seconds",
    "Payment gateway API call duration in seconds",
    ["provider", "operation"],
    buckets=(0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0, 7.5, 10.0, 15.0),
)

gateway_token_refreshes_total = Counter(
    "gateway_token_refreshes_total",
    "Total gateway credential refreshes",
    ["provider"],
)

# Notification metrics
notifications_total = Counter(
    "notifications_total",
    "Notification delivery attempts by final result",
    ["kind", "result"],  # primary, fallback, failed
)

# Sweeper metrics
stale_order_reminders_total = Counter(
    "stale_order_reminders_total",
    "Total payment_pending_long reminders requested",
)

stale_pending_orders = Gauge(
    "stale_pending_orders",
    "Pending orders older than the stale threshold at the last sweep",
)

sweeper_last_run_timestamp = Gauge(
    "sweeper_last_run_timestamp",
    "Timestamp of last stale-order sweep",
)

status_poll_duration_seconds = Histogram(
    "status_poll_duration_seconds",
    "Background status poll cycle duration in seconds",
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_order_created(payment_method: str) -> None:
        """Record an order insert."""
        orders_created_total.labels(payment_method=payment_method).inc()

    @staticmethod
    def record_webhook_event(provider: str, outcome: str, duration_seconds: float) -> None:
        """Record webhook event processing."""
        webhook_events_received_total.labels(provider=provider).inc()
        webhook_events_processed_total.labels(provider=provider, outcome=outcome).inc()
        webhook_processing_duration_seconds.labels(provider=provider).observe(duration_seconds)

    @staticmethod
    def record_transition(provider: str, status: str, source: str) -> None:
        """Record an applied terminal transition."""
        payment_transitions_total.labels(provider=provider, status=status, source=source).inc()

    @staticmethod
    def record_conflict(provider: str) -> None:
        """Record a discarded conflicting event."""
        payment_transition_conflicts_total.labels(provider=provider).inc()

    @staticmethod
    def record_duplicate(provider: str) -> None:
        """Record an idempotent duplicate event."""
        payment_duplicate_events_total.labels(provider=provider).inc()

    @staticmethod
    def record_gateway_call(
        provider: str, operation: str, status: str, duration_seconds: float
    ) -> None:
        """Record a gateway API call."""
        gateway_requests_total.labels(provider=provider, operation=operation, status=status).inc()
        gateway_request_duration_seconds.labels(provider=provider, operation=operation).observe(
            duration_seconds
        )

    @staticmethod
    def record_gateway_error(provider: str, error_type: str) -> None:
        """Record a gateway API error."""
        gateway_errors_total.labels(provider=provider, error_type=error_type).inc()

    @staticmethod
    def record_token_refresh(provider: str) -> None:
        """Record a credential refresh."""
        gateway_token_refreshes_total.labels(provider=provider).inc()

    @staticmethod
    def record_notification(kind: str, result: str) -> None:
        """Record the final result of one dispatch."""
        notifications_total.labels(kind=kind, result=result).inc()

    @staticmethod
    def set_sweeper_metrics(stale_count: int, reminders_sent: int) -> None:
        """Set stale-order sweep metrics."""
        stale_pending_orders.set(stale_count)
        stale_order_reminders_total.inc(reminders_sent)
        sweeper_last_run_timestamp.set(time.time())

    @staticmethod
    def record_status_poll(duration_seconds: float) -> None:
        """Record a background poll cycle."""
        status_poll_duration_seconds.observe(duration_seconds)


# Export singleton instance
metrics = MetricsCollector()
