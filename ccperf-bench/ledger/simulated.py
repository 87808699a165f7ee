"""
In-process simulated ledger network.

Proposals and order submissions complete after configurable latencies, ordered
transactions are cut into blocks the way a Fabric orderer does (max message
count or batch timeout, whichever comes first), and each block is delivered to
the commit monitors of the same client after a commit latency.

The network lives inside one client. Clients in worker processes are created
with the coordinator client's order feed and forward every ordered transaction
to it, so the coordinator's commit monitors see the whole run.

Options (``--ledger-option key=value``):
    endorse_latency_ms, order_latency_ms, commit_latency_ms,
    batch_timeout_ms, max_message_count,
    endorsement_failure_rate, ordering_failure_rate, seed
"""

import asyncio
import logging
import multiprocessing as mp
import queue
import random
from typing import List, Mapping, Optional, Sequence, Tuple

from common.errors import ConfigurationError, OrderingError
from common.profile import ConnectionProfile
from configuration import (
    ENDORSEMENT_SUCCESS_STATUS,
    MS_PER_SECOND,
    SIM_BATCH_TIMEOUT_MS,
    SIM_COMMIT_LATENCY_MS,
    SIM_ENDORSE_LATENCY_MS,
    SIM_MAX_MESSAGE_COUNT,
    SIM_ORDER_FEED_POLL_SECONDS,
    SIM_ORDER_LATENCY_MS,
)
from ledger.base import (
    CommitMonitor,
    FilteredBlock,
    FilteredTransaction,
    LedgerClient,
    OrderAck,
    Proposal,
    ProposalRequest,
    ProposalResponse,
)

logger = logging.getLogger(__name__)

ENDORSEMENT_FAILURE_STATUS = 500


class SimulatedNetwork:
    """Block cutter and block fan-out for one channel."""

    def __init__(
        self,
        channel_id: str,
        commit_latency_ms: float,
        batch_timeout_ms: float,
        max_message_count: int,
    ):
        self.channel_id = channel_id
        self.commit_latency_ms = commit_latency_ms
        self.batch_timeout_ms = batch_timeout_ms
        self.max_message_count = max_message_count
        self.height = 1
        self._pending: List[FilteredTransaction] = []
        self._timer: Optional[asyncio.TimerHandle] = None
        self._deliveries: List[asyncio.TimerHandle] = []
        self._monitors: List["SimulatedCommitMonitor"] = []

    def attach(self, monitor: "SimulatedCommitMonitor") -> None:
        if monitor not in self._monitors:
            self._monitors.append(monitor)

    def detach(self, monitor: "SimulatedCommitMonitor") -> None:
        if monitor in self._monitors:
            self._monitors.remove(monitor)

    def enqueue(self, tx: FilteredTransaction) -> None:
        self._pending.append(tx)
        if len(self._pending) >= self.max_message_count:
            self.cut_block()
        elif self._timer is None:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(self.batch_timeout_ms / MS_PER_SECOND, self.cut_block)

    def cut_block(self) -> Optional[FilteredBlock]:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if not self._pending:
            return None
        block = FilteredBlock(self.channel_id, self.height, tuple(self._pending))
        self.height += 1
        self._pending = []
        loop = asyncio.get_running_loop()
        self._deliveries.append(
            loop.call_later(self.commit_latency_ms / MS_PER_SECOND, self._commit, block)
        )
        return block

    def _commit(self, block: FilteredBlock) -> None:
        self._deliveries = [handle for handle in self._deliveries if not handle.cancelled()]
        logger.debug(f"Simulated block {block.number} committed with {len(block.filtered_transactions)} transactions")
        for monitor in list(self._monitors):
            if monitor.connected:
                monitor._deliver(block)

    def close(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        for handle in self._deliveries:
            handle.cancel()
        self._deliveries = []
        self._pending = []


class SimulatedCommitMonitor(CommitMonitor):
    """Commit monitor fed by a SimulatedNetwork."""

    def __init__(self, peer_name: str, network: SimulatedNetwork):
        super().__init__(peer_name)
        self.network = network

    async def connect(self) -> None:
        await super().connect()
        self.network.attach(self)

    async def disconnect(self) -> None:
        self.network.detach(self)
        await super().disconnect()


class SimulatedLedgerClient(LedgerClient):
    """Ledger client backed by an in-process simulated network."""

    def __init__(
        self,
        profile: ConnectionProfile,
        channel_id: str,
        org_name: str,
        options: Optional[Mapping[str, str]] = None,
        order_feed=None,
    ):
        super().__init__(profile, channel_id, org_name, options, order_feed)
        self._feed_task: Optional[asyncio.Task] = None
        self.endorse_latency_ms = self._float_option("endorse_latency_ms", SIM_ENDORSE_LATENCY_MS)
        self.order_latency_ms = self._float_option("order_latency_ms", SIM_ORDER_LATENCY_MS)
        self.endorsement_failure_rate = self._float_option("endorsement_failure_rate", 0.0)
        self.ordering_failure_rate = self._float_option("ordering_failure_rate", 0.0)
        seed = self.options.get("seed")
        self._random = random.Random(int(seed) if seed is not None else None)

        self.network = SimulatedNetwork(
            channel_id,
            commit_latency_ms=self._float_option("commit_latency_ms", SIM_COMMIT_LATENCY_MS),
            batch_timeout_ms=self._float_option("batch_timeout_ms", SIM_BATCH_TIMEOUT_MS),
            max_message_count=int(self._float_option("max_message_count", SIM_MAX_MESSAGE_COUNT)),
        )
        if self.network.max_message_count < 1:
            raise ConfigurationError("max_message_count must be at least 1")

        # Counters
        self._metrics = {
            "proposals": 0,
            "endorsement_failures": 0,
            "orders": 0,
            "ordering_failures": 0,
        }

        logger.debug(
            f"Initialized simulated ledger for {channel_id}/{org_name}: "
            f"endorse={self.endorse_latency_ms}ms order={self.order_latency_ms}ms"
        )

    def _float_option(self, name: str, default: float) -> float:
        value = self.options.get(name)
        if value is None:
            return float(default)
        try:
            return float(value)
        except ValueError:
            raise ConfigurationError(f"Invalid ledger option {name}={value!r}") from None

    async def close(self) -> None:
        if self._feed_task is not None:
            self._feed_task.cancel()
            await asyncio.gather(self._feed_task, return_exceptions=True)
        self.network.close()

    def host_order_feed(self):
        """Start feeding transactions ordered by worker-process clients into this client's network.

        Must be called from within the running event loop.
        """
        if self._feed_task is None:
            self.order_feed = mp.get_context("spawn").Queue()
            self._feed_task = asyncio.get_running_loop().create_task(self._consume_order_feed())
            logger.debug(f"Hosting simulated order feed for {self.channel_id}")
        return self.order_feed

    async def _consume_order_feed(self) -> None:
        while True:
            try:
                while True:
                    self.network.enqueue(FilteredTransaction(self.order_feed.get_nowait()))
            except queue.Empty:
                pass
            await asyncio.sleep(SIM_ORDER_FEED_POLL_SECONDS)

    async def submit_proposal(
        self, request: ProposalRequest
    ) -> Tuple[List[ProposalResponse], Proposal]:
        self._metrics["proposals"] += 1
        targets = request.targets or tuple(self.default_peers)
        await asyncio.sleep(self.endorse_latency_ms / MS_PER_SECOND)

        channel_peers = self.channel.peer_names
        responses = []
        for peer in targets:
            if peer not in channel_peers:
                responses.append(ProposalResponse(peer, ENDORSEMENT_FAILURE_STATUS, f"{peer} is not joined to {self.channel_id}"))
            elif self._random.random() < self.endorsement_failure_rate:
                self._metrics["endorsement_failures"] += 1
                responses.append(ProposalResponse(peer, ENDORSEMENT_FAILURE_STATUS, "simulated endorsement failure"))
            else:
                responses.append(ProposalResponse(peer, ENDORSEMENT_SUCCESS_STATUS))
        return responses, Proposal(request.tx_id, request)

    async def submit_order(
        self,
        proposal: Proposal,
        responses: Sequence[ProposalResponse],
        orderer: Optional[str] = None,
    ) -> OrderAck:
        orderer = orderer or self.default_orderer
        if orderer not in self.channel.orderers:
            raise OrderingError(f"{orderer}: not an orderer of {self.channel_id}")
        self._metrics["orders"] += 1
        await asyncio.sleep(self.order_latency_ms / MS_PER_SECOND)
        if self._random.random() < self.ordering_failure_rate:
            self._metrics["ordering_failures"] += 1
            raise OrderingError(f"{orderer}: simulated ordering failure for {proposal.tx_id}")
        if self.order_feed is not None and self._feed_task is None:
            # Ordered on the coordinator's network
            self.order_feed.put(proposal.tx_id)
        else:
            self.network.enqueue(FilteredTransaction(proposal.tx_id))
        return OrderAck(proposal.tx_id, orderer)

    def commit_monitor(self, peer_name: str) -> SimulatedCommitMonitor:
        if peer_name not in self.channel.peer_names:
            raise ConfigurationError(f"{peer_name}: not a peer of channel {self.channel_id}")
        return SimulatedCommitMonitor(peer_name, self.network)

    def get_metrics(self):
        return dict(self._metrics)
