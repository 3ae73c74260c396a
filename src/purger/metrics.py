"""Prometheus metrics for monitoring purge runs."""

import time
from typing import Optional

import structlog
from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from utils.logging import get_logger


class PurgerMetrics:
    """Prometheus metrics for the purger."""

    def __init__(
        self,
        logger: Optional[structlog.BoundLogger] = None,
        registry: Optional[CollectorRegistry] = None,
    ) -> None:
        """Initialize metrics.

        Args:
            logger: Optional logger instance
            registry: Optional Prometheus registry (defaults to global REGISTRY)
        """
        self.logger = logger or get_logger("metrics")
        self.registry = registry or REGISTRY

        self.rows_staged_total = Counter(
            "purger_rows_staged_total",
            "Total number of rows downloaded into the staging store",
            registry=self.registry,
        )

        self.rows_deleted_total = Counter(
            "purger_rows_deleted_total",
            "Total number of rows removed from staging after a completed remote delete",
            registry=self.registry,
        )

        self.delete_batches_total = Counter(
            "purger_delete_batches_total",
            "Total number of batch delete transactions",
            ["outcome"],  # success, not_found, failure
            registry=self.registry,
        )

        self.targets_total = Counter(
            "purger_targets_total",
            "Total number of (account, table) targets processed",
            ["status"],  # success, failure
            registry=self.registry,
        )

        self.runs_total = Counter(
            "purger_runs_total",
            "Total number of purge runs",
            ["status"],  # success, failure, partial
            registry=self.registry,
        )

        self.duration_seconds = Histogram(
            "purger_duration_seconds",
            "Duration of operations in seconds",
            ["phase"],  # download, process, target
            buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 25.0, 50.0, 100.0, 250.0, 500.0, 1000.0],
            registry=self.registry,
        )

        self.staging_rows = Gauge(
            "purger_staging_rows",
            "Rows currently held in the staging store of the active target",
            registry=self.registry,
        )

        self.last_success_timestamp = Gauge(
            "purger_last_success_timestamp",
            "Unix timestamp of last successful purge run",
            registry=self.registry,
        )

    def record_rows_staged(self, count: int) -> None:
        """Record rows inserted into staging."""
        self.rows_staged_total.inc(count)

    def record_rows_deleted(self, count: int) -> None:
        """Record rows removed from staging."""
        self.rows_deleted_total.inc(count)

    def record_delete_batch(self, outcome: str) -> None:
        """Record one batch delete transaction.

        Args:
            outcome: DeleteOutcome value (success, not_found, failure)
        """
        self.delete_batches_total.labels(outcome=outcome).inc()

    def record_duration(self, phase: str, duration_seconds: float) -> None:
        """Record duration for a specific phase."""
        self.duration_seconds.labels(phase=phase).observe(duration_seconds)

    def set_staging_rows(self, count: int) -> None:
        """Set the current staging store size."""
        self.staging_rows.set(count)

    def record_target_status(self, status: str) -> None:
        """Record the outcome of one target."""
        self.targets_total.labels(status=status).inc()

    def record_run_status(self, status: str) -> None:
        """Record run status.

        Args:
            status: Run status (success, failure, partial)
        """
        self.runs_total.labels(status=status).inc()
        if status == "success":
            self.last_success_timestamp.set(time.time())

    def start_metrics_server(self, port: int = 8000) -> None:
        """Start Prometheus metrics HTTP server.

        Args:
            port: Port to listen on
        """
        start_http_server(port, registry=self.registry)
        self.logger.info("Metrics server started", port=port)
