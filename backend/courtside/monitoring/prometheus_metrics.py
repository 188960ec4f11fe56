"""
Prometheus metrics module for Courtside.

Service timings come from the @measure_operation decorator; the domain
counters track holds, lifecycle transitions, reconciliations and sweeps.
"""

import os
from threading import Lock
from time import monotonic
from typing import Optional, cast

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Create a custom registry to avoid conflicts with default metrics
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "courtside_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "courtside_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "courtside_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

# Domain-specific counters
holds_total = Counter(
    "courtside_holds_total",
    "Hold attempts by flow and outcome",
    ["flow", "outcome"],  # flow: quick | payment; outcome: created | conflict | payment_error
    registry=REGISTRY,
)

booking_transitions_total = Counter(
    "courtside_booking_transitions_total",
    "Applied booking lifecycle transitions",
    ["action"],
    registry=REGISTRY,
)

payment_reconciliations_total = Counter(
    "courtside_payment_reconciliations_total",
    "Payment reconciliation outcomes by trigger",
    ["source", "outcome"],
    registry=REGISTRY,
)

sweeper_bookings_total = Counter(
    "courtside_sweeper_bookings_total",
    "Stale holds handled by the expiration sweeper",
    ["outcome"],  # confirmed | cancelled | expired | skipped | failed
    registry=REGISTRY,
)

webhook_signature_failures_total = Counter(
    "courtside_webhook_signature_failures_total",
    "Webhook deliveries rejected for an invalid signature",
    registry=REGISTRY,
)


def _metrics_ttl_seconds() -> float:
    """Return cache TTL seconds based on SITE_MODE."""

    mode = (os.getenv("SITE_MODE") or "").strip().lower()
    if mode in {"ci", "test"}:
        return 0.0
    return 1.0


class PrometheusMetrics:
    """Manages Prometheus metrics collection and exposure."""

    _cache_lock: Lock = Lock()
    _cache_payload: Optional[bytes] = None
    _cache_ts: Optional[float] = None
    _cache_ttl_seconds: float = _metrics_ttl_seconds()

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        """
        Record service operation metrics from @measure_operation decorator.

        Args:
            service: Service name (e.g., 'HoldService')
            operation: Operation/method name (e.g., 'create_hold')
            duration: Operation duration in seconds
            status: Operation status ('success' or 'error')
            error_type: Type of error if status is 'error'
        """
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if status == "error" and error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()
        PrometheusMetrics._invalidate_cache()

    # Domain helpers
    @staticmethod
    def inc_hold(flow: str, outcome: str) -> None:
        holds_total.labels(flow=flow, outcome=outcome).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def inc_booking_transition(action: str) -> None:
        booking_transitions_total.labels(action=action).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def inc_payment_reconciliation(source: str, outcome: str) -> None:
        payment_reconciliations_total.labels(source=source, outcome=outcome).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def inc_sweeper_booking(outcome: str, amount: int = 1) -> None:
        if amount <= 0:
            return
        sweeper_bookings_total.labels(outcome=outcome).inc(amount)
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def inc_webhook_signature_failure() -> None:
        webhook_signature_failures_total.inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def get_metrics() -> bytes:
        """
        Generate Prometheus metrics in exposition format.

        Returns:
            Metrics data in Prometheus text format
        """
        now = monotonic()
        payload = PrometheusMetrics._cache_payload
        ts = PrometheusMetrics._cache_ts
        ttl = PrometheusMetrics._cache_ttl_seconds

        if payload is not None and ts is not None and (now - ts) <= ttl:
            return payload

        with PrometheusMetrics._cache_lock:
            payload = PrometheusMetrics._cache_payload
            ts = PrometheusMetrics._cache_ts
            ttl = PrometheusMetrics._cache_ttl_seconds

            if payload is None or ts is None or (now - ts) > ttl:
                PrometheusMetrics._refresh_cache_locked()
                payload = PrometheusMetrics._cache_payload

        return cast(bytes, payload)

    @staticmethod
    def get_content_type() -> str:
        """Get the content type for Prometheus metrics."""
        return cast(str, CONTENT_TYPE_LATEST)

    @staticmethod
    def _refresh_cache_locked() -> None:
        """Refresh cached metrics payload. Caller must hold lock."""

        PrometheusMetrics._cache_payload = cast(bytes, generate_latest(REGISTRY))
        PrometheusMetrics._cache_ts = monotonic()
        PrometheusMetrics._cache_ttl_seconds = _metrics_ttl_seconds()

    @staticmethod
    def _invalidate_cache() -> None:
        """Invalidate cached metrics so next scrape refreshes."""

        with PrometheusMetrics._cache_lock:
            PrometheusMetrics._cache_ts = None
            PrometheusMetrics._cache_payload = None


# Singleton instance
prometheus_metrics = PrometheusMetrics()
