"""
Metrics Collection with Prometheus.

Exposes ledger, disclosure and HTTP metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from opsconsole.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    KIND = "kind"
    OUTCOME = "outcome"
    ERROR_TYPE = "error_type"


class ConsoleMetrics:
    """
    Centralized metrics for the operator console.

    Covers:
    - HTTP requests (rate, duration, errors)
    - Ledger mutations (rate by kind and outcome, amounts, conflicts, partial writes)
    - Secret disclosure (reveals by outcome, rotations, open dialogs)
    - Typed confirmations (outcomes)
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "opsconsole_service",
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
            "opsconsole_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "opsconsole_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "opsconsole_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Ledger Metrics
        # ====================================================================
        self.ledger_mutations_total = Counter(
            "opsconsole_ledger_mutations_total",
            "Credit mutations by kind and outcome",
            [MetricLabels.KIND, MetricLabels.OUTCOME],
        )

        self.ledger_mutation_amount = Histogram(
            "opsconsole_ledger_mutation_amount",
            "Credit amounts of applied mutations",
            [MetricLabels.KIND],
            buckets=(1, 10, 50, 100, 500, 1000, 5000, 10000, 100000, 1000000),
        )

        self.ledger_mutation_duration_seconds = Histogram(
            "opsconsole_ledger_mutation_duration_seconds",
            "Credit mutation duration in seconds",
            buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
        )

        self.ledger_write_conflicts_total = Counter(
            "opsconsole_ledger_write_conflicts_total",
            "Conditional balance writes that lost a race",
        )

        self.ledger_partial_writes_total = Counter(
            "opsconsole_ledger_partial_writes_total",
            "Ledger units of work that failed after the first write",
        )

        self.db_write_verifications_total = Counter(
            "opsconsole_db_write_verifications_total",
            "Total write verification checks",
            ["success"],
        )

        # ====================================================================
        # Disclosure Metrics
        # ====================================================================
        self.secret_reveals_total = Counter(
            "opsconsole_secret_reveals_total",
            "Secret reveal attempts by outcome",
            [MetricLabels.OUTCOME],
        )

        self.secret_rotations_total = Counter(
            "opsconsole_secret_rotations_total",
            "Provider secrets rotated",
        )

        self.disclosure_dialogs_open = Gauge(
            "opsconsole_disclosure_dialogs_open",
            "Disclosure dialogs currently open",
        )

        # ====================================================================
        # Confirmation Metrics
        # ====================================================================
        self.confirmations_total = Counter(
            "opsconsole_confirmations_total",
            "Typed confirmations by outcome",
            [MetricLabels.OUTCOME],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "opsconsole_errors_total",
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

    def record_mutation(self, kind: str, outcome: str, amount: int, duration: float) -> None:
        """Record a ledger mutation attempt."""
        self.ledger_mutations_total.labels(kind=kind, outcome=outcome).inc()
        if outcome == "applied":
            self.ledger_mutation_amount.labels(kind=kind).observe(amount)
        self.ledger_mutation_duration_seconds.observe(duration)

    def record_reveal(self, outcome: str) -> None:
        """Record a secret reveal attempt."""
        self.secret_reveals_total.labels(outcome=outcome).inc()

    def record_confirmation(self, outcome: str) -> None:
        """Record a typed confirmation outcome."""
        self.confirmations_total.labels(outcome=outcome).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = ConsoleMetrics()
