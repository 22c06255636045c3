"""
Metrics Collection with Prometheus.

Exposes ledger and HTTP metrics for monitoring.
"""

from enum import StrEnum

from prometheus_client import Counter, Gauge, Histogram, Info

from creditledger.config import settings


class MetricLabels(StrEnum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    OUTCOME = "outcome"
    CURRENCY_KIND = "currency_kind"
    ERROR_TYPE = "error_type"


class LedgerMetrics:
    """
    Centralized metrics for the Credit Ledger API.

    Covers:
    - HTTP requests (rate, duration, in progress)
    - Ledger operations (rate, outcome, duration)
    - Credits moved per operation and currency kind
    - Idempotent replays, serialization retries, corruption detections
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        self.service_info = Info(
            "ledger_service",
            "Service information",
        )
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "ledger_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "ledger_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "ledger_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Ledger Operation Metrics
        # ====================================================================
        self.operations_total = Counter(
            "ledger_operations_total",
            "Ledger operations by outcome",
            [MetricLabels.OPERATION, MetricLabels.OUTCOME],
        )

        self.operation_duration_seconds = Histogram(
            "ledger_operation_duration_seconds",
            "Ledger operation duration in seconds",
            [MetricLabels.OPERATION],
            buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
        )

        self.credits_moved_total = Counter(
            "ledger_credits_moved_total",
            "Credits added (positive operations) or removed (debits) by operation",
            [MetricLabels.OPERATION, MetricLabels.CURRENCY_KIND],
        )

        self.idempotent_replays_total = Counter(
            "ledger_idempotent_replays_total",
            "Payment credits short-circuited by the idempotency guard",
        )

        self.serialization_retries_total = Counter(
            "ledger_serialization_retries_total",
            "Transactions retried after a serialization failure or deadlock",
            [MetricLabels.OPERATION],
        )

        self.corruption_total = Counter(
            "ledger_corruption_total",
            "Aggregate/lot mismatches detected",
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "ledger_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_operation(self, operation: str, outcome: str, duration: float) -> None:
        """Record one ledger operation attempt."""
        self.operations_total.labels(operation=operation, outcome=outcome).inc()
        self.operation_duration_seconds.labels(operation=operation).observe(duration)

    def record_credits(self, operation: str, free_credits: int, paid_credits: int) -> None:
        """Record credits moved by a committed operation."""
        if free_credits:
            self.credits_moved_total.labels(operation=operation, currency_kind="free").inc(
                abs(free_credits)
            )
        if paid_credits:
            self.credits_moved_total.labels(operation=operation, currency_kind="paid").inc(
                abs(paid_credits)
            )

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = LedgerMetrics()
