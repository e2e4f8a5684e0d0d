"""
Prometheus metrics collection.
"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from jobrelay.constants import (
    METRIC_JOB_DURATION,
    METRIC_JOBS_CANCELED,
    METRIC_JOBS_COMPLETED,
    METRIC_JOBS_EXPIRED,
    METRIC_JOBS_SUBMITTED,
    METRIC_PENDING_DEPTH,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the job relay.

    Collects metrics for:
    - Pending queue depth
    - Job submissions and completions
    - Job execution duration
    - Expired and canceled jobs
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.pending_depth = Gauge(
            METRIC_PENDING_DEPTH,
            "Number of jobs waiting for a listener",
            ["name"],
            registry=self._registry,
        )

        self.jobs_submitted = Counter(
            METRIC_JOBS_SUBMITTED,
            "Total number of jobs submitted",
            ["name"],
            registry=self._registry,
        )

        self.jobs_completed = Counter(
            METRIC_JOBS_COMPLETED,
            "Total number of jobs that reached a terminal status",
            ["name", "status"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Time from submission to terminal status in seconds",
            ["name", "status"],
            buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0, 60.0, 300.0),
            registry=self._registry,
        )

        self.jobs_expired = Counter(
            METRIC_JOBS_EXPIRED,
            "Total number of jobs expired due to inactivity",
            ["name"],
            registry=self._registry,
        )

        self.jobs_canceled = Counter(
            METRIC_JOBS_CANCELED,
            "Total number of jobs canceled",
            ["name"],
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def record_job_submitted(self, name: str) -> None:
        """Record a job submission."""
        self.jobs_submitted.labels(name=name).inc()

    def record_job_completed(
        self,
        name: str,
        status: str,
        duration_seconds: float,
    ) -> None:
        """Record a job reaching a terminal status."""
        self.jobs_completed.labels(name=name, status=status).inc()
        self.job_duration.labels(name=name, status=status).observe(
            duration_seconds
        )

    def record_job_expired(self, name: str) -> None:
        """Record an inactivity expiry."""
        self.jobs_expired.labels(name=name).inc()

    def record_job_canceled(self, name: str) -> None:
        """Record a cancellation."""
        self.jobs_canceled.labels(name=name).inc()

    def update_pending_depth(self, name: str, depth: int) -> None:
        """Update pending queue depth for a job name."""
        self.pending_depth.labels(name=name).set(depth)

    def render(self) -> bytes:
        """Get all metrics in Prometheus exposition format."""
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for a metrics response."""
        return CONTENT_TYPE_LATEST


def setup_metrics() -> MetricsCollector:
    """
    Set up and return the process-wide metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the process-wide metrics collector, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
