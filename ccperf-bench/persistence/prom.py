"""
Prometheus metrics exporter for the coordinator's commit observation.
"""

import logging
from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, start_http_server

logger = logging.getLogger(__name__)


class CommitMetricsExporter:
    """Live commit metrics on a private registry."""

    def __init__(self, port: Optional[int] = None):
        self.port = port
        self.server_started = False
        self.registry = CollectorRegistry()

        # Define metrics
        self.blocks_total = Counter(
            "ccperf_blocks_observed_total", "Blocks observed by the commit monitor", registry=self.registry
        )
        self.committed_total = Counter(
            "ccperf_committed_transactions_total", "Committed transactions",
            ["validation_code"], registry=self.registry,
        )
        self.block_tps = Gauge(
            "ccperf_commit_tps", "Commit throughput of the last observed block", registry=self.registry
        )
        self.records = Gauge(
            "ccperf_transaction_records", "Transaction records collected from workers", registry=self.registry
        )

    def start_server(self) -> None:
        """Start the Prometheus HTTP server."""
        if self.server_started or self.port is None:
            return
        try:
            start_http_server(self.port, registry=self.registry)
            self.server_started = True
            logger.info(f"Prometheus server started on port {self.port}")
        except OSError as e:
            logger.error(f"Failed to start Prometheus server on port {self.port}: {e}")

    def record_block(self, txset, tps: float) -> None:
        """Count one block and its transactions by validation code."""
        self.blocks_total.inc()
        for codes in txset.values():
            for code, ids in codes.items():
                self.committed_total.labels(validation_code=code).inc(len(ids))
        self.block_tps.set(tps)

    def update_records(self, count: int) -> None:
        self.records.set(count)
