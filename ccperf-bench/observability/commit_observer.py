"""
Run-long commit observation on the designated committing peer.

Every observed block is timestamped on arrival and grouped by transaction
type and validation code. The block timestamps become the ``t4`` of the
transactions they contain.
"""

import logging
from typing import Callable, Dict, Optional

from common.metrics_utils import calculate_tps, now_ms
from common.run_config import FirstBlockPolicy
from ledger.base import CommitMonitor, FilteredBlock
from persistence.prom import CommitMetricsExporter
from persistence.record import BlockRecord, ms_to_iso
from persistence.trace_log import JsonArrayLog

logger = logging.getLogger(__name__)


def group_transactions(block: FilteredBlock) -> Dict[str, Dict[str, list]]:
    """txid lists keyed by transaction type, then validation code."""
    txset: Dict[str, Dict[str, list]] = {}
    for tx in block.filtered_transactions:
        txset.setdefault(tx.type, {}).setdefault(tx.tx_validation_code, []).append(tx.txid)
    return txset


class CommitObserver:
    """Subscribes to a commit monitor for the whole run and keeps a BlockRecord per block."""

    def __init__(
        self,
        monitor: CommitMonitor,
        start_ms: float,
        policy: FirstBlockPolicy = FirstBlockPolicy.FIRST,
        blocks_log: Optional[JsonArrayLog] = None,
        exporter: Optional[CommitMetricsExporter] = None,
        clock: Callable[[], float] = now_ms,
    ):
        self.monitor = monitor
        self.start_ms = start_ms
        self.policy = policy
        self.blocks_log = blocks_log
        self.exporter = exporter
        self._clock = clock

        self.blocks: Dict[int, BlockRecord] = {}
        self.prev_t: Optional[float] = None
        self.discarded = 0
        self.errors = 0
        self._handle: Optional[int] = None

    async def start(self) -> None:
        await self.monitor.connect()
        self._handle = self.monitor.subscribe(self.on_block, self.on_error)
        logger.info(f"Observing commits on {self.monitor.peer_name} ({self.policy.value} block policy)")

    async def stop(self) -> None:
        if self._handle is not None:
            self.monitor.unsubscribe(self._handle)
            self._handle = None
        await self.monitor.disconnect()
        if self.blocks_log is not None:
            self.blocks_log.close()
        logger.info(
            f"Commit observation stopped: {len(self.blocks)} blocks kept, "
            f"{self.discarded} discarded, {self.errors} monitor errors"
        )

    def _accept(self, now: float) -> bool:
        if self.policy is FirstBlockPolicy.FIRST and self.prev_t is None:
            # The first callback only establishes the rate reference
            self.prev_t = self.start_ms
            return False
        if self.policy is FirstBlockPolicy.BEFORE_START and now < self.start_ms:
            return False
        if self.prev_t is None:
            self.prev_t = self.start_ms
        return True

    def on_block(self, block: FilteredBlock) -> None:
        now = self._clock()
        if not self._accept(now):
            self.discarded += 1
            logger.debug(f"Discarded block {block.number} observed before measurement")
            return

        txset = group_transactions(block)
        self.blocks[block.number] = BlockRecord(block.number, now, txset)

        count = len(block.filtered_transactions)
        elapsed = now - self.prev_t
        tps = calculate_tps(count, elapsed) if elapsed > 0 else 0.0
        logger.info(f"Block {block.number} contains {count} transaction(s). TPS is {tps:.2f}")

        if self.blocks_log is not None:
            self.blocks_log.append({"timestamp": ms_to_iso(now), "block": block.to_dict()})
        if self.exporter is not None:
            self.exporter.record_block(txset, tps)

        self.prev_t = now

    def on_error(self, error: Exception) -> None:
        self.errors += 1
        logger.error(f"Commit monitor error on {self.monitor.peer_name}: {error}")
