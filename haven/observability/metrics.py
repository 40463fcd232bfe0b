"""
Metrics Collection with Prometheus.

Exposes business and system metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from haven.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    FEATURE = "feature"
    PLAN = "plan"
    EVENT_TYPE = "event_type"
    ERROR_TYPE = "error_type"


class HavenMetrics:
    """
    Centralized metrics for the Haven API.

    Covers:
    - HTTP requests (rate, duration, errors)
    - Credit checks and deductions per feature and plan
    - Stripe webhooks by event type and outcome
    - Mood analyses and LLM latency
    """

    def __init__(self) -> None:
        self.service_info = Info(
            "haven_service",
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
            "haven_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "haven_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "haven_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Credit Metrics
        # ====================================================================
        self.credit_checks_total = Counter(
            "haven_credit_checks_total",
            "Total feature access checks performed",
            [MetricLabels.FEATURE, "allowed"],
        )

        self.credits_deducted_total = Counter(
            "haven_credits_deducted_total",
            "Credits deducted from user pools",
            [MetricLabels.FEATURE, MetricLabels.PLAN],
        )

        self.credit_denials_total = Counter(
            "haven_credit_denials_total",
            "Deductions rejected for insufficient credits or exhausted limits",
            [MetricLabels.FEATURE, "reason"],
        )

        self.credits_granted_total = Counter(
            "haven_credits_granted_total",
            "Top-up and adjustment credits granted",
            [MetricLabels.FEATURE, "source"],
        )

        self.usage_resets_total = Counter(
            "haven_usage_resets_total",
            "Scheduled usage counter resets",
            ["period"],
        )

        # ====================================================================
        # Billing Metrics
        # ====================================================================
        self.webhooks_total = Counter(
            "haven_stripe_webhooks_total",
            "Stripe webhook events processed",
            [MetricLabels.EVENT_TYPE, "outcome"],
        )

        self.checkout_sessions_total = Counter(
            "haven_checkout_sessions_total",
            "Stripe checkout sessions created",
            [MetricLabels.PLAN],
        )

        # ====================================================================
        # Mood / LLM Metrics
        # ====================================================================
        self.mood_analyses_total = Counter(
            "haven_mood_analyses_total",
            "Mood analyses attempted",
            ["outcome"],
        )

        self.llm_request_duration_seconds = Histogram(
            "haven_llm_request_duration_seconds",
            "LLM completion latency in seconds",
            [MetricLabels.OPERATION],
            buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "haven_errors_total",
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

    def record_credit_check(self, feature: str, allowed: bool) -> None:
        self.credit_checks_total.labels(feature=feature, allowed=str(allowed)).inc()

    def record_deduction(self, feature: str, plan: str, credits: int) -> None:
        if credits > 0:
            self.credits_deducted_total.labels(feature=feature, plan=plan).inc(credits)

    def record_denial(self, feature: str, reason: str) -> None:
        self.credit_denials_total.labels(feature=feature, reason=reason).inc()

    def record_grant(self, feature: str, source: str, credits: int) -> None:
        self.credits_granted_total.labels(feature=feature, source=source).inc(credits)

    def record_webhook(self, event_type: str, outcome: str) -> None:
        self.webhooks_total.labels(event_type=event_type, outcome=outcome).inc()

    def record_mood_analysis(self, outcome: str) -> None:
        self.mood_analyses_total.labels(outcome=outcome).inc()

    def record_llm_request(self, operation: str, duration: float) -> None:
        self.llm_request_duration_seconds.labels(operation=operation).observe(duration)

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = HavenMetrics()
