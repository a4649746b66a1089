"""
Metrics Collection with Prometheus.

Exposes ledger, credential and generation metrics for monitoring.
"""

import time
from enum import Enum
from typing import Callable

from prometheus_client import Counter, Gauge, Histogram, Info

from app.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    TOOL_TYPE = "tool_type"
    OUTCOME = "outcome"
    TRANSACTION_TYPE = "transaction_type"
    ERROR_TYPE = "error_type"


class ToolsMetrics:
    """
    Centralized metrics for the tools API.

    Covers:
    - HTTP requests (rate, duration, in progress)
    - Debits per tool and outcome
    - Credits added per transaction type
    - Profiles created
    - API key validations per outcome
    - Generations per tool and outcome
    - Errors per type
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info("tools_service", "Service information")
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
            "tools_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "tools_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
        )

        self.http_requests_in_progress = Gauge(
            "tools_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Ledger Metrics
        # ====================================================================
        self.debits_total = Counter(
            "tools_debits_total",
            "Debit attempts by tool and outcome",
            [MetricLabels.TOOL_TYPE, MetricLabels.OUTCOME],
        )

        self.credits_debited_total = Counter(
            "tools_credits_debited_total",
            "Credits consumed by tool invocations",
            [MetricLabels.TOOL_TYPE],
        )

        self.credits_added_total = Counter(
            "tools_credits_added_total",
            "Credits added to profiles",
            [MetricLabels.TRANSACTION_TYPE],
        )

        self.profiles_created_total = Counter(
            "tools_profiles_created_total",
            "Total profiles created",
        )

        # ====================================================================
        # Credential Metrics
        # ====================================================================
        self.api_key_validations_total = Counter(
            "tools_api_key_validations_total",
            "API key validations by outcome",
            [MetricLabels.OUTCOME],
        )

        # ====================================================================
        # Generation Metrics
        # ====================================================================
        self.generations_total = Counter(
            "tools_generations_total",
            "Tool invocations by tool and outcome",
            [MetricLabels.TOOL_TYPE, MetricLabels.OUTCOME],
        )

        self.generation_duration_seconds = Histogram(
            "tools_generation_duration_seconds",
            "Upstream generation duration in seconds",
            [MetricLabels.TOOL_TYPE],
            buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0),
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "tools_errors_total",
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

    def record_debit(self, tool_type: str, outcome: str, amount: int = 0) -> None:
        """Record a debit attempt."""
        self.debits_total.labels(tool_type=tool_type, outcome=outcome).inc()
        if outcome == "success":
            self.credits_debited_total.labels(tool_type=tool_type).inc(amount)

    def record_credit_addition(self, transaction_type: str, amount: int) -> None:
        """Record credit addition metrics."""
        self.credits_added_total.labels(transaction_type=transaction_type).inc(amount)

    def record_api_key_validation(self, outcome: str) -> None:
        """Record an API key validation."""
        self.api_key_validations_total.labels(outcome=outcome).inc()

    def record_generation(self, tool_type: str, outcome: str, duration: float) -> None:
        """Record a tool invocation."""
        self.generations_total.labels(tool_type=tool_type, outcome=outcome).inc()
        self.generation_duration_seconds.labels(tool_type=tool_type).observe(duration)

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = ToolsMetrics()


class track_http_request:
    """
    Context manager for tracking HTTP requests.

    Usage:
        with track_http_request("/v1/roadmap", "POST") as tracker:
            # ... process request
            tracker.set_status_code(200)
    """

    def __init__(self, endpoint: str, method: str) -> None:
        self.endpoint = endpoint
        self.method = method
        self.status_code = 200
        self.start_time: float = 0.0

    def set_status_code(self, status_code: int) -> None:
        """Set the response status code."""
        self.status_code = status_code

    def __enter__(self) -> "track_http_request":
        """Start tracking."""
        self.start_time = time.time()
        metrics.http_requests_in_progress.labels(
            endpoint=self.endpoint, method=self.method
        ).inc()
        return self

    def __exit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        """Record metrics."""
        duration = time.time() - self.start_time
        if exc_type is not None:
            self.status_code = 500
        metrics.record_http_request(self.endpoint, self.method, self.status_code, duration)
        metrics.http_requests_in_progress.labels(
            endpoint=self.endpoint, method=self.method
        ).dec()


def get_metrics_handler() -> Callable[[], bytes]:
    """Get Prometheus metrics handler for FastAPI."""
    from prometheus_client import REGISTRY, generate_latest

    def metrics_endpoint() -> bytes:
        return generate_latest(REGISTRY)

    return metrics_endpoint
