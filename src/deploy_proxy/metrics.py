"""
Prometheus metrics for the deployment proxy.

This module defines the metrics collected while receiving events from the
webhook and pulse sources and while triggering Jenkins jobs.
"""

from prometheus_client import Counter, Histogram
import time


# Event reception metrics
events_received_total = Counter(
    "deploy_proxy_events_received_total",
    "Total number of events received",
    ["source"],  # source = dockerhub|gcr|github|hgmo|taskcluster
)

events_rejected_total = Counter(
    "deploy_proxy_events_rejected_total",
    "Total number of events rejected before a trigger was issued",
    ["source", "error_type"],
)

# Jenkins triggering metrics
jenkins_triggers_total = Counter(
    "deploy_proxy_jenkins_triggers_total",
    "Total number of Jenkins jobs triggered",
    ["source"],
)

jenkins_trigger_errors_total = Counter(
    "deploy_proxy_jenkins_trigger_errors_total",
    "Total number of Jenkins trigger errors",
    ["source", "error_type"],
)

jenkins_trigger_duration_seconds = Histogram(
    "deploy_proxy_jenkins_trigger_duration_seconds",
    "Time spent triggering Jenkins jobs",
    ["source"],
)


class MetricsContext:
    """Context manager for timing operations and handling errors with metrics."""

    def __init__(self, histogram, error_counter, success_counter=None, labels=None):
        self.histogram = histogram
        self.error_counter = error_counter
        self.success_counter = success_counter
        self.labels = labels or []
        self.start_time = None

    def __enter__(self):
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is not None:
            duration = time.time() - self.start_time
            self.histogram.labels(*self.labels).observe(duration)

        if exc_type is not None:
            self.error_counter.labels(*self.labels, exc_type.__name__).inc()
        elif self.success_counter is not None:
            self.success_counter.labels(*self.labels).inc()

        return False  # Don't suppress exceptions


def track_jenkins_trigger(source: str):
    """Context manager for tracking Jenkins trigger metrics."""
    return MetricsContext(
        jenkins_trigger_duration_seconds,
        jenkins_trigger_errors_total,
        success_counter=jenkins_triggers_total,
        labels=[source],
    )


def record_received(source: str):
    events_received_total.labels(source).inc()


def record_rejected(source: str, error: Exception):
    events_rejected_total.labels(source, type(error).__name__).inc()
