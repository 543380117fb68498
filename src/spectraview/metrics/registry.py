"""
Prometheus metrics for the capture pipeline.
Registered in the global REGISTRY on import.
"""

from prometheus_client import Counter, Histogram


# --- Flush / delivery metrics ---

FLUSH_TOTAL = Counter(
    "spectraview_flush_total",
    "Flush attempts by outcome",
    ["outcome"],  # success | failure | offline | best_effort
)

FLUSH_LATENCY_MS = Histogram(
    "spectraview_flush_latency_ms",
    "Delivery latency of one flush in milliseconds",
    buckets=[5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000],
)

EVENTS_DELIVERED_TOTAL = Counter(
    "spectraview_events_delivered_total",
    "Events acknowledged by the collector",
    ["kind"],  # visual | custom | error
)

# --- Overflow store metrics ---

OVERFLOW_WRITES_TOTAL = Counter(
    "spectraview_overflow_writes_total",
    "Overflow store writes",
    ["kind", "outcome"],  # kind: event | batch ; outcome: ok | error
)

OVERFLOW_EVICTIONS_TOTAL = Counter(
    "spectraview_overflow_evictions_total",
    "Single-event overflow records evicted by the capacity policy",
)

# --- Heartbeat ---

HEARTBEAT_TOTAL = Counter(
    "spectraview_heartbeat_total",
    "Heartbeat pings by outcome",
    ["outcome"],  # ok | error
)


class MetricsRegistry:
    """Centralized access to pipeline metrics."""

    flush_total = FLUSH_TOTAL
    flush_latency_ms = FLUSH_LATENCY_MS
    events_delivered_total = EVENTS_DELIVERED_TOTAL
    overflow_writes_total = OVERFLOW_WRITES_TOTAL
    overflow_evictions_total = OVERFLOW_EVICTIONS_TOTAL
    heartbeat_total = HEARTBEAT_TOTAL


# Singleton instance
metrics_registry = MetricsRegistry()
