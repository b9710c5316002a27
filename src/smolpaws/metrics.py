"""Prometheus metrics for smolpaws.

Metrics Defined:
- smolpaws_webhook_deliveries_total: webhook deliveries by result
  (queued / ignored / rejected)
- smolpaws_messages_processed_total: queue messages by outcome
  (acknowledged / retry_scheduled / malformed)
- smolpaws_message_processing_seconds: time spent per queue message
- smolpaws_sandbox_runs_total: sandbox agent runs by mode (per_pr / per_job)

Both services expose these at ``/metrics``.
"""

from typing import Optional

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Covers sub-second comment posts up to half-hour agent runs
DEFAULT_DURATION_BUCKETS = (
    0.5,
    1.0,
    5.0,
    10.0,
    30.0,
    60.0,
    120.0,
    300.0,
    600.0,
    1800.0,
)


class SmolpawsMetrics:
    """Container for all smolpaws Prometheus metrics.

    Pass a custom registry for testing.

    Attributes:
        registry: The Prometheus registry for these metrics.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or REGISTRY

        self.webhook_deliveries_total = Counter(
            "smolpaws_webhook_deliveries_total",
            "Webhook deliveries received, by result",
            labelnames=["result"],
            registry=self.registry,
        )

        self.messages_processed_total = Counter(
            "smolpaws_messages_processed_total",
            "Queue messages processed, by outcome",
            labelnames=["outcome"],
            registry=self.registry,
        )

        self.message_processing_seconds = Histogram(
            "smolpaws_message_processing_seconds",
            "Time spent processing one queue message in seconds",
            buckets=DEFAULT_DURATION_BUCKETS,
            registry=self.registry,
        )

        self.sandbox_runs_total = Counter(
            "smolpaws_sandbox_runs_total",
            "Agent runs executed in a sandbox, by reuse mode",
            labelnames=["mode"],
            registry=self.registry,
        )

    def record_webhook(self, result: str) -> None:
        self.webhook_deliveries_total.labels(result=result).inc()

    def record_message(self, outcome: str, duration_seconds: float) -> None:
        self.messages_processed_total.labels(outcome=outcome).inc()
        self.message_processing_seconds.observe(duration_seconds)

    def record_sandbox_run(self, mode: str) -> None:
        self.sandbox_runs_total.labels(mode=mode).inc()


_default_metrics: Optional[SmolpawsMetrics] = None


def get_metrics(registry: Optional[CollectorRegistry] = None) -> SmolpawsMetrics:
    """Get the global metrics instance, or a new one for a custom registry."""
    global _default_metrics

    if registry is not None:
        return SmolpawsMetrics(registry=registry)

    if _default_metrics is None:
        _default_metrics = SmolpawsMetrics()

    return _default_metrics


def generate_metrics_output(registry: Optional[CollectorRegistry] = None) -> bytes:
    """Generate Prometheus text output for the /metrics endpoint."""
    return generate_latest(registry or REGISTRY)
