"""
Prometheus metrics module for CleanConnect.

This module provides Prometheus-compatible metrics by leveraging existing
@measure_operation performance data, plus counters for the booking
lifecycle (transitions, locks, no-show charges, escrow releases).
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
    "cleanconnect_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "cleanconnect_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "cleanconnect_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

booking_lock_total = Counter(
    "cleanconnect_booking_lock_total",
    "Booking mutex operations by outcome",
    ["action", "outcome"],
    registry=REGISTRY,
)

booking_transitions_total = Counter(
    "cleanconnect_booking_transitions_total",
    "Booking status transitions",
    ["from_status", "to_status", "outcome"],
    registry=REGISTRY,
)

no_show_charges_total = Counter(
    "cleanconnect_no_show_charges_total",
    "No-show charge attempts by capture outcome",
    ["outcome"],
    registry=REGISTRY,
)

escrow_releases_total = Counter(
    "cleanconnect_escrow_releases_total",
    "Escrow releases by release type",
    ["release_type"],
    registry=REGISTRY,
)


def _metrics_ttl_seconds() -> float:
    raw = os.getenv("PROMETHEUS_CACHE_TTL_SECONDS", "1.0")
    try:
        return max(0.0, float(raw))
    except ValueError:
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
            service: Service name (e.g., 'BookingStateMachine')
            operation: Operation/method name (e.g., 'accept_booking')
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

    @staticmethod
    def record_booking_lock(action: str, outcome: str) -> None:
        booking_lock_total.labels(action=action, outcome=outcome).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_transition(from_status: str, to_status: str, outcome: str) -> None:
        booking_transitions_total.labels(
            from_status=from_status, to_status=to_status, outcome=outcome
        ).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_no_show_charge(outcome: str) -> None:
        no_show_charges_total.labels(outcome=outcome).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_escrow_release(release_type: str) -> None:
        escrow_releases_total.labels(release_type=release_type).inc()
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
            if PrometheusMetrics._cache_payload is None or PrometheusMetrics._cache_ts is None:
                PrometheusMetrics._cache_payload = cast(bytes, generate_latest(REGISTRY))
                PrometheusMetrics._cache_ts = monotonic()
            payload = PrometheusMetrics._cache_payload

        return cast(bytes, payload)

    @staticmethod
    def get_content_type() -> str:
        """Get the content type for Prometheus metrics."""
        return cast(str, CONTENT_TYPE_LATEST)

    @staticmethod
    def _invalidate_cache() -> None:
        """Invalidate cached metrics so next scrape refreshes."""

        with PrometheusMetrics._cache_lock:
            PrometheusMetrics._cache_ts = None
            PrometheusMetrics._cache_payload = None


# Singleton instance
prometheus_metrics = PrometheusMetrics()
