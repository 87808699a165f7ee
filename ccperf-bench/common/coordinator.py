"""
Coordinator of one benchmark run.

Population, start-time agreement, the optional Grafana annotation and commit
observation happen here; load is generated by the worker processes. Once every
worker has exited the merged records are bucketed into the report.
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from algorithms.population import Populator
from common.errors import ConfigurationError, LedgerError
from common.ledger_factory import create_ledger_client
from common.metrics_utils import now_ms
from common.process_pool import ProcessPool
from common.run_config import RunConfig
from configuration import BLOCKS_LOG_FILENAME, MS_PER_SECOND, REQUESTS_LOG_TEMPLATE
from observability.commit_observer import CommitObserver
from observability.grafana import GrafanaAnnotator
from persistence.metrics_aggregator import BucketStats, MetricsAggregator, format_report, merge_commit_times
from persistence.parquet import ParquetPersistence
from persistence.prom import CommitMetricsExporter
from persistence.record import BlockRecord
from persistence.trace_log import open_trace_log

logger = logging.getLogger(__name__)


@dataclass
class RunReport:
    """Outcome of a run: the report windows plus any worker failures."""

    buckets: List[BucketStats] = field(default_factory=list)
    failures: List[str] = field(default_factory=list)
    record_count: int = 0
    block_count: int = 0
    parquet_file: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.failures

    def format(self) -> str:
        return format_report(self.buckets)


class Coordinator:
    """Runs one benchmark described by a RunConfig."""

    def __init__(
        self,
        config: RunConfig,
        pool_factory: Callable[..., ProcessPool] = ProcessPool,
        clock: Callable[[], float] = now_ms,
    ):
        self.config = config
        self.pool_factory = pool_factory
        self._clock = clock
        self.exporter: Optional[CommitMetricsExporter] = None
        if config.metrics_port is not None:
            self.exporter = CommitMetricsExporter(config.metrics_port)

    def _check_trace_paths(self) -> None:
        """Fail before population when a request or block trace would collide with an earlier run."""
        if not self.config.logdir:
            return
        names = [REQUESTS_LOG_TEMPLATE.format(worker_id=i) for i in range(self.config.processes)]
        if self.config.committing_peer:
            names.append(BLOCKS_LOG_FILENAME)
        for name in names:
            path = os.path.join(self.config.logdir, name)
            if os.path.exists(path):
                raise ConfigurationError(f"{path}: trace file already exists")

    async def _annotate(self, start_ms: float) -> None:
        annotator = GrafanaAnnotator(self.config.grafana)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None, annotator.annotate, start_ms, self.config.duration_ms, self.config.describe()
        )

    async def _start_observer(self, client, start_ms: float) -> Optional[CommitObserver]:
        """Subscribe to the committing peer, or return None when its monitor is unavailable."""
        config = self.config
        blocks_log = open_trace_log(config.logdir, BLOCKS_LOG_FILENAME)
        observer = CommitObserver(
            client.commit_monitor(config.committing_peer),
            start_ms,
            config.first_block_policy,
            blocks_log=blocks_log,
            exporter=self.exporter,
        )
        try:
            await observer.start()
        except LedgerError as e:
            logger.error(
                f"Commit monitor on {config.committing_peer} unavailable, running without commit data: {e}"
            )
            if blocks_log is not None:
                blocks_log.close()
            return None
        return observer

    async def run_benchmark(self) -> RunReport:
        """Execute the run and build its report.

        Raises:
            ConfigurationError: If a trace file already exists or the ledger backend is invalid
            PopulationError: If the population transaction fails
            AnnotationError: If the Grafana annotation is rejected
        """
        config = self.config
        logger.info(f"Starting benchmark: {config.describe()}")
        self._check_trace_paths()
        if self.exporter is not None:
            self.exporter.start_server()

        observer: Optional[CommitObserver] = None
        async with create_ledger_client(config) as client:
            if config.population:
                await Populator(client, config.population, config.size).populate()

            start_ms = self._clock() + config.warmup_ms

            if config.grafana:
                await self._annotate(start_ms)

            order_feed = None
            if config.committing_peer:
                observer = await self._start_observer(client, start_ms)
                if observer is not None:
                    order_feed = client.host_order_feed()

            try:
                pool = self.pool_factory(config, start_ms, order_feed)
                result = await pool.run()
                if observer is not None:
                    # Let commit notifications still in flight arrive
                    await asyncio.sleep(config.settle_ms / MS_PER_SECOND)
            finally:
                if observer is not None:
                    await observer.stop()

        blocks: Dict[int, BlockRecord] = observer.blocks if observer is not None else {}
        if self.exporter is not None:
            self.exporter.update_records(len(result.records))

        merged = merge_commit_times(result.records, blocks)
        buckets = MetricsAggregator(config.period_ms).report_for(merged)

        parquet_file = None
        if config.logdir and merged:
            parquet_file = ParquetPersistence(config.logdir).save_records(merged)
            logger.info(f"Detailed results saved to: {parquet_file}")

        report = RunReport(
            buckets=buckets,
            failures=list(result.failures),
            record_count=len(merged),
            block_count=len(blocks),
            parquet_file=parquet_file,
        )
        if report.ok:
            logger.info(f"Benchmark complete: {report.record_count} transactions, {report.block_count} blocks")
        else:
            logger.error(f"Benchmark finished with {len(report.failures)} worker failures")
        return report
