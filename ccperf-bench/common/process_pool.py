"""
Process pool that spawns one worker process per configured process.

Architecture:
- Each worker is a separate OS process (spawn context) running its own uvloop event loop
- The parent sends the run configuration over a one-way control pipe after start
- Workers report ``{"type": "tx_stats", "worker_id": i, "records": {...}}`` on a shared queue
- The parent polls the queue while waiting so large reports never block a worker's exit
- A worker that exits abnormally or without a report is recorded as a failure, the run continues
"""

import asyncio
import logging
import multiprocessing as mp
import queue
import sys
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set

import uvloop

from common.ledger_factory import create_ledger_client
from common.run_config import RunConfig
from common.worker import TransactionWorker
from configuration import LOG_LEVEL, PROCESS_POLL_INTERVAL_SECONDS, REQUESTS_LOG_TEMPLATE
from persistence.trace_log import open_trace_log

logger = logging.getLogger(__name__)

# Workers only finish after their drain, so the last report can trail the exit check
FINAL_REPORT_TIMEOUT_SECONDS = 5.0


def _run_worker_process(worker_id: int, control_conn, result_queue, order_feed=None) -> None:
    """Worker process function. Runs in a separate process.

    Args:
        worker_id: Index of this worker (0 to processes-1)
        control_conn: Receiving end of the control pipe carrying ``{"config": RunConfig}``
        result_queue: Queue for sending the tx_stats report to the parent
        order_feed: Queue of the coordinator client's network, or None
    """
    # Suppress verbose logging in child processes
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s - %(processName)s - %(levelname)s - %(message)s",
        force=True,
    )
    logging.getLogger("urllib3").setLevel(logging.CRITICAL)

    # Process-specific logger
    process_logger = logging.getLogger(f"worker_{worker_id}")
    process_logger.setLevel(LOG_LEVEL)

    try:
        message = control_conn.recv()
    except EOFError:
        process_logger.error(f"Worker {worker_id}: control channel closed before a configuration arrived")
        sys.exit(1)
    finally:
        control_conn.close()

    config: RunConfig = message["config"]
    process_logger.info(f"Worker {worker_id}: starting with delay {config.delay_ms:.0f}ms")

    try:
        records = uvloop.run(_async_worker_process(worker_id, config, order_feed))
    except Exception as e:
        process_logger.error(f"Worker {worker_id}: Error: {e}", exc_info=True)
        raise

    if order_feed is not None:
        # Ordered transactions reach the coordinator before the report does
        order_feed.close()
        order_feed.join_thread()
    result_queue.put({"type": "tx_stats", "worker_id": worker_id, "records": records})
    # Flush the report before the process exits
    result_queue.close()
    result_queue.join_thread()
    process_logger.info(f"Worker {worker_id}: reported {len(records)} transactions")


async def _async_worker_process(worker_id: int, config: RunConfig, order_feed=None) -> Dict[str, List[float]]:
    """Async worker process task."""
    client = create_ledger_client(config, order_feed)
    requests_log = open_trace_log(config.logdir, REQUESTS_LOG_TEMPLATE.format(worker_id=worker_id))
    try:
        async with client:
            worker = TransactionWorker(client, config, worker_id, requests_log)
            return await worker.run()
    finally:
        if requests_log is not None:
            requests_log.close()


@dataclass
class PoolResult:
    """Merged worker reports. ``records`` maps txid to ``[t1, t2, t3]``."""

    records: Dict[str, List[float]] = field(default_factory=dict)
    reported: Set[int] = field(default_factory=set)
    failures: List[str] = field(default_factory=list)


class ProcessPool:
    """Spawns the worker processes of one run and collects their reports."""

    def __init__(
        self,
        config: RunConfig,
        start_ms: float,
        order_feed=None,
        target: Callable = _run_worker_process,
    ):
        """Initialize process pool.

        Args:
            config: Validated run configuration
            start_ms: Shared epoch-millisecond start time of every worker
            order_feed: Ledger order feed handed to every worker, see ``LedgerClient.host_order_feed``
            target: Process entry point, ``target(worker_id, control_conn, result_queue, order_feed)``
        """
        self.config = config
        self.start_ms = start_ms
        self.order_feed = order_feed
        self.target = target

        # Multiprocessing
        self.mp_ctx = mp.get_context("spawn")
        self.result_queue = self.mp_ctx.Queue(maxsize=0)
        self.processes: List = []

        logger.info(f"ProcessPool: Configured for {config.processes} processes")

    def start(self) -> None:
        """Spawn every worker and hand it its configuration."""
        self.processes = []
        for i in range(self.config.processes):
            recv_conn, send_conn = self.mp_ctx.Pipe(duplex=False)
            process = self.mp_ctx.Process(
                target=self.target,
                args=(i, recv_conn, self.result_queue, self.order_feed),
                name=f"worker-{i}",
            )
            process.start()
            recv_conn.close()
            try:
                send_conn.send({"config": self.config.for_worker(i, self.start_ms)})
            except OSError as e:
                # The exit status check reports this worker
                logger.error(f"Worker {i}: could not send configuration: {e}")
            finally:
                send_conn.close()
            self.processes.append(process)

        logger.info(f"All {len(self.processes)} workers started, first request at {self.start_ms:.0f}")

    def _collect(self, result: PoolResult, block_seconds: Optional[float] = None) -> int:
        """Move queued reports into ``result``. Returns the number of reports read."""
        collected = 0
        while True:
            try:
                if block_seconds is None:
                    msg = self.result_queue.get_nowait()
                else:
                    msg = self.result_queue.get(timeout=block_seconds)
            except queue.Empty:
                return collected
            if msg.get("type") != "tx_stats":
                logger.warning(f"Ignoring unexpected worker message type {msg.get('type')!r}")
                continue
            worker_id = msg["worker_id"]
            result.reported.add(worker_id)
            result.records.update(msg["records"])
            collected += 1
            logger.info(f"Worker {worker_id} reported {len(msg['records'])} transactions")

    async def run(self) -> PoolResult:
        """Start the workers and wait for all of them to exit.

        Returns:
            Merged records plus one failure message per worker that crashed or never reported
        """
        result = PoolResult()
        self.start()
        try:
            while any(p.exitcode is None for p in self.processes):
                self._collect(result)
                await asyncio.sleep(PROCESS_POLL_INTERVAL_SECONDS)
        except BaseException:
            self.terminate()
            raise

        self._collect(result)
        clean_exits = {i for i, p in enumerate(self.processes) if p.exitcode == 0}
        while not clean_exits <= result.reported:
            if self._collect(result, block_seconds=FINAL_REPORT_TIMEOUT_SECONDS) == 0:
                break

        for i, process in enumerate(self.processes):
            process.join()
            if process.exitcode < 0:
                result.failures.append(f"Worker {i} was killed by signal {-process.exitcode}")
            elif process.exitcode > 0:
                result.failures.append(f"Worker {i} exited with status {process.exitcode}")
            elif i not in result.reported:
                result.failures.append(f"Worker {i} exited without reporting its transactions")

        for failure in result.failures:
            logger.error(failure)
        logger.info(
            f"ProcessPool complete: {len(result.reported)}/{len(self.processes)} workers reported "
            f"{len(result.records)} transactions"
        )
        return result

    def terminate(self) -> None:
        """Stop every worker still running."""
        for i, process in enumerate(self.processes):
            if process.is_alive():
                logger.warning(f"Process {i} still running, terminating")
                process.terminate()
                process.join()
