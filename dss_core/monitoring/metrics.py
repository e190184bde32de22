"""
Prometheus metrics for the aggregator and operator nodes.

All metrics live in a dedicated CollectorRegistry owned by MetricsManager,
so tests and multiple app instances in one process never collide with the
global prometheus_client registry.
"""
import threading
from typing import Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)


class MetricsManager:
    """Singleton metrics manager that handles Prometheus registry properly."""

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if getattr(self, "_initialized", False):
            return

        self._initialized = True
        self._registry = None
        self._metrics = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Setup metrics with proper registry management."""
        self._registry = CollectorRegistry()

        self._metrics = {
            # --- Aggregator ---
            "registered_operators": Gauge(
                "dss_registered_operators",
                "Number of operators in the aggregator registry",
                registry=self._registry,
            ),
            "operator_requests_total": Counter(
                "dss_operator_requests_total",
                "Task dispatch requests sent to operators",
                ["status"],
                registry=self._registry,
            ),
            "aggregation_rounds_total": Counter(
                "dss_aggregation_rounds_total",
                "Aggregation rounds by outcome",
                ["outcome"],
                registry=self._registry,
            ),
            "aggregation_duration_seconds": Histogram(
                "dss_aggregation_duration_seconds",
                "Time spent verifying and aggregating one task round",
                registry=self._registry,
            ),
            "task_submissions_total": Counter(
                "dss_task_submissions_total",
                "submitTaskResponse transactions by status",
                ["status"],
                registry=self._registry,
            ),
            "checkpoint_block": Gauge(
                "dss_checkpoint_block",
                "Next block the event watcher will read from",
                registry=self._registry,
            ),
            # --- Operator ---
            "operator_registered_on_chain": Gauge(
                "dss_operator_registered_on_chain",
                "1 if this operator is registered with the DSS on-chain",
                registry=self._registry,
            ),
            "operator_registered_with_aggregator": Gauge(
                "dss_operator_registered_with_aggregator",
                "1 if the aggregator reported this operator as registered",
                registry=self._registry,
            ),
            "tasks_handled_total": Counter(
                "dss_tasks_handled_total",
                "Tasks computed by this operator by status",
                ["status"],
                registry=self._registry,
            ),
        }

    def get_registry(self) -> CollectorRegistry:
        """Get the metrics registry."""
        return self._registry

    def reset_metrics(self):
        """Reset all metrics - useful for testing."""
        with self._lock:
            self._setup_metrics()

    def render_latest(self) -> bytes:
        """Exposition-format dump of every metric in the registry."""
        return generate_latest(self._registry)

    # --- Aggregator ---

    def update_registered_operators(self, count: int):
        self._metrics["registered_operators"].set(count)

    def record_operator_request(self, status: str):
        """Record one dispatch request: success, timeout, http_error or invalid."""
        self._metrics["operator_requests_total"].labels(status=status).inc()

    def record_aggregation_round(self, outcome: str, duration: Optional[float] = None):
        self._metrics["aggregation_rounds_total"].labels(outcome=outcome).inc()
        if duration is not None:
            self._metrics["aggregation_duration_seconds"].observe(duration)

    def record_task_submission(self, success: bool):
        status = "success" if success else "failure"
        self._metrics["task_submissions_total"].labels(status=status).inc()

    def update_checkpoint_block(self, block_number: int):
        self._metrics["checkpoint_block"].set(block_number)

    # --- Operator ---

    def set_registered_on_chain(self, registered: bool):
        self._metrics["operator_registered_on_chain"].set(1 if registered else 0)

    def set_registered_with_aggregator(self, registered: bool):
        self._metrics["operator_registered_with_aggregator"].set(1 if registered else 0)

    def record_task_handled(self, success: bool):
        status = "success" if success else "failure"
        self._metrics["tasks_handled_total"].labels(status=status).inc()


# Global instance
metrics_manager = MetricsManager()

METRICS_CONTENT_TYPE = CONTENT_TYPE_LATEST


def get_metrics_manager() -> MetricsManager:
    """Get the global metrics manager instance."""
    return metrics_manager


def reset_metrics():
    """Reset all metrics - useful for testing."""
    metrics_manager.reset_metrics()
