"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Lock metrics
lock_attempts = Counter(
    'seat_lock_attempts_total',
    'Seat lock acquisition attempts',
    ['result']  # acquired, conflict, rejected
)

lock_latency = Histogram(
    'seat_lock_latency_seconds',
    'Seat lock acquisition latency',
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

lock_transitions = Counter(
    'seat_lock_transitions_total',
    'Lock status transitions',
    ['status']  # released, expired, consumed
)

# Booking metrics
booking_attempts = Counter(
    'booking_attempts_total',
    'Total booking attempts',
    ['status']  # created, replayed, rejected
)

booking_transitions = Counter(
    'booking_transitions_total',
    'Booking status transitions',
    ['status']  # confirmed, cancelled, expired, refunded
)

# Inventory store metrics
cas_conflicts = Counter(
    'seat_cas_conflicts_total',
    'Batch compare-and-swap rejections',
    ['operation']
)

store_retries = Counter(
    'store_retry_attempts_total',
    'Retries caused by store unavailability',
    ['operation']
)

# Sweeper metrics
sweeper_reclaimed = Counter(
    'sweeper_reclaimed_total',
    'Records reclaimed by the expiry sweeper',
    ['kind']  # lock, booking
)

sweeper_errors = Counter(
    'sweeper_errors_total',
    'Expiry sweeper failures'
)

# Cache metrics
cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set, hit/miss
)

# Broadcaster metrics
active_subscribers = Gauge(
    'seat_event_subscribers',
    'Open seat-event subscriptions'
)

published_events = Counter(
    'seat_events_published_total',
    'Seat events published',
    ['type']
)

lagged_subscribers = Counter(
    'seat_event_subscribers_lagged_total',
    'Subscriptions dropped to snapshot re-sync after queue overflow'
)

relayed_events = Counter(
    'seat_events_relayed_total',
    'Seat events exchanged with other instances over Redis',
    ['direction']  # sent, received, dropped
)

# Waitlist metrics
waitlist_notifications = Counter(
    'waitlist_notifications_total',
    'Waitlist entries notified that seats became available'
)

waitlist_errors = Counter(
    'waitlist_notify_errors_total',
    'Waitlist notification passes that failed after a committed transition'
)


def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Usage:
        @app.get("/metrics")
        def metrics():
            return metrics_endpoint()
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


# Convenience functions for instrumentation
def record_lock_attempt(result: str):
    """Record lock attempt. Result: acquired, conflict, rejected"""
    lock_attempts.labels(result=result).inc()


def record_booking_attempt(status: str):
    """Record booking attempt. Status: created, replayed, rejected"""
    booking_attempts.labels(status=status).inc()


def record_cache_operation(operation: str, hit: bool):
    """Record cache operation."""
    result = "hit" if hit else "miss"
    cache_operations.labels(operation=operation, result=result).inc()
