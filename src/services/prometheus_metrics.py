"""
Prometheus metrics for the entitlement service.

This module initializes and exposes Prometheus metrics for monitoring:
- HTTP request metrics (count, duration, status codes)
- Webhook metrics (events by type and reconciliation outcome)
- Database metrics (queries, latency)
- Billing metrics (entitlement writes, promotional schedule failures)
"""

import logging
import time
from contextlib import contextmanager

from prometheus_client import Counter, Histogram, Summary

logger = logging.getLogger(__name__)

# ==================== HTTP Request Metrics ====================
http_request_count = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint and status code",
    ["method", "endpoint", "status_code"],
)

http_request_duration = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds by method and endpoint",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5),
)

# ==================== Webhook Metrics ====================
webhook_events_total = Counter(
    "stripe_webhook_events_total",
    "Billing events processed by event type and reconciliation outcome",
    ["event_type", "outcome"],
)

webhook_processing_duration = Histogram(
    "stripe_webhook_processing_seconds",
    "Time spent reconciling a billing event",
    ["event_type"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
)

# ==================== Database Metrics ====================
database_query_count = Counter(
    "database_queries_total",
    "Total database queries by table and operation",
    ["table", "operation"],
)

database_query_duration = Summary(
    "database_query_duration_seconds",
    "Database query duration in seconds",
    ["table"],
)

# ==================== Billing Metrics ====================
entitlement_writes_total = Counter(
    "entitlement_writes_total",
    "Entitlement record writes by operation and resulting status",
    ["operation", "status"],
)

promotional_schedule_total = Counter(
    "promotional_schedule_total",
    "Promotional subscription schedule attempts by result",
    ["result"],
)

unlinked_checkouts_total = Counter(
    "unlinked_checkouts_total",
    "Completed checkouts that could not be attributed to a user",
)


# ==================== Context Managers & Helpers ====================


def record_http_response(method: str, endpoint: str, status_code: int, duration: float):
    """Record HTTP response metrics."""
    http_request_count.labels(method=method, endpoint=endpoint, status_code=status_code).inc()
    http_request_duration.labels(method=method, endpoint=endpoint).observe(duration)


@contextmanager
def track_webhook_processing(event_type: str):
    """Context manager to time reconciliation of one billing event."""
    start_time = time.time()
    try:
        yield
    finally:
        webhook_processing_duration.labels(event_type=event_type).observe(
            time.time() - start_time
        )


def record_webhook_event(event_type: str, outcome: str):
    """Record the outcome of a processed billing event ("error" when it raised)."""
    webhook_events_total.labels(event_type=event_type, outcome=outcome).inc()


@contextmanager
def track_database_query(table: str, operation: str):
    """Context manager to track database query metrics."""
    start_time = time.time()
    try:
        yield
    finally:
        duration = time.time() - start_time
        database_query_count.labels(table=table, operation=operation).inc()
        database_query_duration.labels(table=table).observe(duration)


def record_entitlement_write(operation: str, status: str):
    entitlement_writes_total.labels(operation=operation, status=status).inc()


def record_schedule_result(result: str):
    """Record a promotional schedule attempt: created, repaired, skipped or failed."""
    promotional_schedule_total.labels(result=result).inc()


def record_unlinked_checkout():
    unlinked_checkouts_total.inc()
