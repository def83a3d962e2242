"""
Metrics Collection with Prometheus.

Exposes metering, cache and webhook metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from app.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    ACTION_TYPE = "action_type"
    EVENT_TYPE = "event_type"
    ERROR_TYPE = "error_type"


class UsageMetrics:
    """
    Centralized metrics for the Canvas Billing API.

    Covers:
    - HTTP requests (rate, duration, errors)
    - Usage checks (rate, denials, cache hit ratio)
    - Usage recording (rate, background failures)
    - Billing provider webhooks (rate by event type and outcome)
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "canvas_billing_service",
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
            "canvas_billing_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "canvas_billing_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
        )

        self.http_requests_in_progress = Gauge(
            "canvas_billing_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Usage Metrics
        # ====================================================================
        self.usage_checks_total = Counter(
            "canvas_billing_usage_checks_total",
            "Total usage lookups",
            ["cache_hit"],
        )

        self.usage_denials_total = Counter(
            "canvas_billing_usage_denials_total",
            "Requests denied because the monthly limit was reached",
            ["plan_name"],
        )

        self.usage_events_recorded_total = Counter(
            "canvas_billing_usage_events_recorded_total",
            "Usage events appended to the log",
            [MetricLabels.ACTION_TYPE, "success"],
        )

        self.background_task_failures_total = Counter(
            "canvas_billing_background_task_failures_total",
            "Fire-and-forget tasks that finished with an error",
            [MetricLabels.OPERATION],
        )

        # ====================================================================
        # Cache Metrics
        # ====================================================================
        self.cache_errors_total = Counter(
            "canvas_billing_cache_errors_total",
            "Cache operations that failed and fell back",
            [MetricLabels.OPERATION],
        )

        # ====================================================================
        # Webhook Metrics
        # ====================================================================
        self.webhook_events_total = Counter(
            "canvas_billing_webhook_events_total",
            "Billing provider webhook events processed",
            [MetricLabels.EVENT_TYPE, "outcome"],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "canvas_billing_errors_total",
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

    def record_usage_check(self, cache_hit: bool) -> None:
        """Record a usage lookup."""
        self.usage_checks_total.labels(cache_hit=str(cache_hit)).inc()

    def record_usage_denial(self, plan_name: str) -> None:
        """Record a quota denial."""
        self.usage_denials_total.labels(plan_name=plan_name).inc()

    def record_usage_event(self, action_type: str, success: bool) -> None:
        """Record a usage event insert attempt."""
        self.usage_events_recorded_total.labels(
            action_type=action_type, success=str(success)
        ).inc()

    def record_cache_error(self, operation: str) -> None:
        """Record a swallowed cache failure."""
        self.cache_errors_total.labels(operation=operation).inc()

    def record_background_failure(self, operation: str) -> None:
        """Record a failed fire-and-forget task."""
        self.background_task_failures_total.labels(operation=operation).inc()

    def record_webhook_event(self, event_type: str, outcome: str) -> None:
        """Record a processed webhook event."""
        self.webhook_events_total.labels(event_type=event_type, outcome=outcome).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = UsageMetrics()
