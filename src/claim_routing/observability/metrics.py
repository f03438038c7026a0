"""
Prometheus metrics collection for claim-routing

This module provides metrics instrumentation for monitoring routing
outcomes, queue consumption and assignment lifecycle activity.
"""
import os

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# Global registry for metrics
REGISTRY = CollectorRegistry()


# =======================
# ROUTING METRICS
# =======================

# Claims processed, by outcome: assigned, pending, duplicate, no_route
claims_processed_total = Counter(
    name="claim_routing_claims_processed_total",
    documentation="Total number of claim messages processed",
    labelnames=["outcome"],
    registry=REGISTRY,
)

claim_processing_seconds = Histogram(
    name="claim_routing_claim_processing_seconds",
    documentation="Time spent routing a single claim",
    labelnames=["entrypoint"],  # entrypoint: queue, api
    buckets=[0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
    registry=REGISTRY,
)

rules_matched_total = Counter(
    name="claim_routing_rules_matched_total",
    documentation="Winning rules by rule type",
    labelnames=["rule_type"],
    registry=REGISTRY,
)

rule_configuration_errors_total = Counter(
    name="claim_routing_rule_configuration_errors_total",
    documentation="Malformed rules skipped during matching",
    labelnames=["company_id"],
    registry=REGISTRY,
)

rule_cache_requests_total = Counter(
    name="claim_routing_rule_cache_requests_total",
    documentation="Rule cache lookups",
    labelnames=["result"],  # result: hit, miss, stale
    registry=REGISTRY,
)

# =======================
# LIFECYCLE METRICS
# =======================

lifecycle_transitions_total = Counter(
    name="claim_routing_lifecycle_transitions_total",
    documentation="Assignment lifecycle transitions",
    labelnames=["transition", "result"],  # result: applied, noop, rejected, conflict
    registry=REGISTRY,
)

notification_failures_total = Counter(
    name="claim_routing_notification_failures_total",
    documentation="Failed outbound transition notifications",
    labelnames=["transition"],
    registry=REGISTRY,
)

# =======================
# QUEUE METRICS
# =======================

queue_messages_total = Counter(
    name="claim_routing_queue_messages_total",
    documentation="Queue messages by handling decision",
    labelnames=["decision"],  # decision: committed, redelivered, dead_lettered
    registry=REGISTRY,
)

dead_letters_total = Counter(
    name="claim_routing_dead_letters_total",
    documentation="Messages dead-lettered",
    labelnames=["error_type"],
    registry=REGISTRY,
)

supervisor_state = Gauge(
    name="claim_routing_supervisor_state",
    documentation="Current bootstrap supervisor state (1 for the active state)",
    labelnames=["state"],
    registry=REGISTRY,
)

bootstrap_attempts_total = Counter(
    name="claim_routing_bootstrap_attempts_total",
    documentation="Queue connection attempts made by the supervisor",
    labelnames=["result"],  # result: success, failure
    registry=REGISTRY,
)

# =======================
# ERROR METRICS
# =======================

errors_total = Counter(
    name="claim_routing_errors_total",
    documentation="Total number of errors",
    labelnames=["error_type", "component"],
    registry=REGISTRY,
)


# =======================
# HELPER FUNCTIONS
# =======================

def generate_metrics() -> bytes:
    """
    Generate Prometheus metrics in text format

    Returns:
        Metrics in Prometheus text format
    """
    return generate_latest(REGISTRY)


def get_content_type() -> str:
    """Content type for Prometheus exposition"""
    return CONTENT_TYPE_LATEST


def start_metrics_server(port: int | None = None) -> None:
    """
    Start HTTP server for Prometheus metrics

    Args:
        port: Port to listen on (defaults to env var METRICS_PORT or 9100)
    """
    # Lazy import: only the consumer process exposes its own metrics port
    from prometheus_client import start_http_server

    metrics_port = port or int(os.getenv("METRICS_PORT", "9100"))
    start_http_server(metrics_port, registry=REGISTRY)


class track_duration:
    """
    Context manager for tracking operation duration

    Usage:
        with track_duration(claim_processing_seconds, entrypoint="queue"):
            # do work
            pass
    """

    def __init__(self, histogram: Histogram, **labels):
        self.histogram = histogram
        self.labels = labels
        self.timer = None

    def __enter__(self):
        self.timer = self.histogram.labels(**self.labels).time()
        self.timer.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.timer.__exit__(exc_type, exc_val, exc_tb)
        return False


def increment_counter(counter: Counter, value: float = 1.0, **labels) -> None:
    """
    Increment a counter metric

    Args:
        counter: Prometheus Counter metric
        value: Amount to increment (default: 1.0)
        **labels: Label values for the metric
    """
    counter.labels(**labels).inc(value)


def set_supervisor_state(state: str, all_states: list[str]) -> None:
    """
    Flag the current supervisor state in the state gauge

    Args:
        state: Active state
        all_states: Every state the supervisor can be in
    """
    for candidate in all_states:
        supervisor_state.labels(state=candidate).set(1 if candidate == state else 0)


def get_sample_value(sample_name: str, **labels) -> float:
    """
    Read the current value of a sample from the registry

    Args:
        sample_name: Full sample name (e.g. "claim_routing_claims_processed_total")
        **labels: Label values for the sample

    Returns:
        Current value (0.0 if the sample has not been recorded yet)
    """
    value = REGISTRY.get_sample_value(sample_name, labels)
    return value if value is not None else 0.0
