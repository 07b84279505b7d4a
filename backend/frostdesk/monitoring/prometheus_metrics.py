"""
Prometheus metrics module for the booking engine.

Service durations come from the @measure_operation decorator; the booking
lifecycle counters are recorded directly by the services and adapters.
"""

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
    "frostdesk_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

service_operations_total = Counter(
    "frostdesk_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "frostdesk_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

booking_transitions_total = Counter(
    "frostdesk_booking_transitions_total",
    "Committed booking status transitions",
    ["from_status", "to_status"],
    registry=REGISTRY,
)

booking_conflicts_total = Counter(
    "frostdesk_booking_conflicts_total",
    "Overlap conflicts detected under lock",
    ["operation"],
    registry=REGISTRY,
)

saga_compensations_total = Counter(
    "frostdesk_saga_compensations_total",
    "Compensating actions executed after a failed saga step",
    ["saga", "step", "outcome"],  # outcome: success | error
    registry=REGISTRY,
)

audit_write_failures_total = Counter(
    "frostdesk_audit_write_failures_total",
    "Audit rows that could not be persisted",
    ["new_state"],
    registry=REGISTRY,
)

external_calls_total = Counter(
    "frostdesk_external_calls_total",
    "Calls to calendar and payment providers",
    ["provider", "operation", "outcome"],
    registry=REGISTRY,
)

external_call_duration_seconds = Histogram(
    "frostdesk_external_call_duration_seconds",
    "Calendar and payment provider call latency",
    ["provider", "operation"],
    registry=REGISTRY,
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)


class PrometheusMetrics:
    """Manages Prometheus metrics collection and exposure."""

    _cache_lock: Lock = Lock()
    _cache_payload: Optional[bytes] = None
    _cache_ts: Optional[float] = None
    _cache_ttl_seconds: float = 1.0

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
            service: Service name (e.g., 'BookingService')
            operation: Operation/method name (e.g., 'confirm_booking')
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
    def record_booking_transition(from_status: Optional[str], to_status: str) -> None:
        booking_transitions_total.labels(
            from_status=from_status or "none", to_status=to_status
        ).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_booking_conflict(operation: str) -> None:
        booking_conflicts_total.labels(operation=operation).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_compensation(saga: str, step: str, outcome: str) -> None:
        saga_compensations_total.labels(saga=saga, step=step, outcome=outcome).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_audit_failure(new_state: str) -> None:
        audit_write_failures_total.labels(new_state=new_state).inc()
        PrometheusMetrics._invalidate_cache()

    @staticmethod
    def record_external_call(
        provider: str, operation: str, outcome: str, duration: Optional[float] = None
    ) -> None:
        """Count a provider call; outcome is success | error | timeout."""
        external_calls_total.labels(provider=provider, operation=operation, outcome=outcome).inc()
        if duration is not None:
            external_call_duration_seconds.labels(provider=provider, operation=operation).observe(
                max(duration, 0.0)
            )
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
            if payload is None or ts is None or (now - ts) > ttl:
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
