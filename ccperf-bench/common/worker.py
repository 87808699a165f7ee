"""
Transaction worker: paced, overlapping proposal/order submissions with per-stage timestamps.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple

from algorithms.pacing import RatePacer
from common.errors import ConfigurationError
from common.metrics_utils import now_ms
from common.run_config import RunConfig, Selection
from configuration import CHAINCODE_ID, DRAIN_TIMEOUT_SECONDS, MS_PER_SECOND
from ledger.base import LedgerClient, ProposalRequest, check_endorsement
from persistence.record import TransactionRecord
from persistence.trace_log import JsonArrayLog

logger = logging.getLogger(__name__)


def select_endorsing_peers(config: RunConfig, worker_id: int) -> Optional[Tuple[str, ...]]:
    """Endorsement targets of one worker, or None for the client's default target.

    An explicit endorsing-org list picks one endorsing peer per organization;
    otherwise ``balance`` spreads workers over the channel's endorsing peers.
    """
    channel = config.profile.channel(config.channel_id)
    endorsing = channel.endorsing_peers

    if config.endorsing_orgs:
        peers = []
        for org in config.endorsing_orgs:
            org_peers = [name for name in config.profile.peers_for_org(org, config.channel_id) if name in endorsing]
            if not org_peers:
                raise ConfigurationError(f"{org}: no endorsing peer on {config.channel_id}")
            peers.append(org_peers[worker_id % len(org_peers)])
        return tuple(peers)

    if config.peer_selection is Selection.BALANCE:
        if not endorsing:
            raise ConfigurationError(f"No endorsing peer on {config.channel_id}")
        return (endorsing[worker_id % len(endorsing)],)

    return None


def select_orderer(config: RunConfig, worker_id: int) -> Optional[str]:
    """Orderer of one worker, or None for the client's default orderer."""
    if config.orderer_selection is Selection.BALANCE:
        orderers = config.profile.channel(config.channel_id).orderers
        return orderers[worker_id % len(orderers)]
    return None


class TransactionWorker:
    """Issues transactions at a fixed rate and keeps the stage timestamps of successful ones."""

    def __init__(
        self,
        client: LedgerClient,
        config: RunConfig,
        worker_id: int,
        requests_log: Optional[JsonArrayLog] = None,
        clock: Callable[[], float] = now_ms,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
    ):
        """
        Args:
            client: Connected ledger client
            config: Run configuration with this worker's start and delay
            worker_id: Index of this worker in the pool
            requests_log: Optional trace of completed requests
            clock: Millisecond wall clock
            sleep: Coroutine function sleeping for a number of seconds
        """
        self.client = client
        self.config = config
        self.worker_id = worker_id
        self.requests_log = requests_log
        self._clock = clock
        self._sleep = sleep

        # Resolved once: workload variant and targets
        self.workload = config.workload
        self.peers = select_endorsing_peers(config, worker_id)
        self.orderer = select_orderer(config, worker_id)

        # txid -> [t1, t2, t3]
        self.tx_stats: Dict[str, List[float]] = {}
        self.in_flight: Set[asyncio.Task] = set()
        self.issued = 0
        self.endorsement_failures = 0
        self.ordering_failures = 0

        logger.debug(
            f"Worker {worker_id}: workload={self.workload.value} peers={self.peers or 'default'} "
            f"orderer={self.orderer or 'default'} interval={config.interval_ms:.2f}ms"
        )

    def _key(self, index: int) -> str:
        """``key_<channel>_<org>_0_<worker>_<n>`` with the organization name lower-cased."""
        return f"key_{self.config.channel_id}_{self.config.org_name.lower()}_0_{self.worker_id}_{index}"

    def build_request(self) -> ProposalRequest:
        args = self.workload.build_args(
            self._key(self.issued), self.config.num, self.config.size, self.config.population
        )
        return ProposalRequest(
            tx_id=self.client.new_transaction_id(),
            chaincode_id=CHAINCODE_ID,
            fcn=self.workload.value,
            args=tuple(args),
            targets=self.peers,
        )

    def issue(self) -> None:
        """Start one request without waiting for it."""
        request = self.build_request()
        self.issued += 1
        task = asyncio.get_running_loop().create_task(self.execute(request))
        self.in_flight.add(task)
        task.add_done_callback(self.in_flight.discard)

    async def execute(self, request: ProposalRequest) -> Optional[TransactionRecord]:
        """Endorse and order one transaction. Failed attempts are logged and dropped, never retried."""
        t1 = self._clock()
        try:
            responses, proposal = await self.client.submit_proposal(request)
            t2 = self._clock()
            check_endorsement(responses)
        except Exception as e:
            self.endorsement_failures += 1
            logger.error(f"Worker {self.worker_id}: Endorsement failure: {e}")
            return None

        try:
            await self.client.submit_order(proposal, responses, self.orderer)
        except Exception as e:
            self.ordering_failures += 1
            logger.error(f"Worker {self.worker_id}: Ordering failure: {e}")
            return None
        t3 = self._clock()

        record = TransactionRecord(request.tx_id, t1, t2, t3)
        self.tx_stats[record.txid] = record.to_stats()
        if self.requests_log is not None:
            self.requests_log.append(record.to_trace())
        return record

    async def run(self) -> Dict[str, List[float]]:
        """Wait for this worker's start, pace requests for the run duration, then drain.

        Returns:
            Mapping of transaction id to ``[t1, t2, t3]``
        """
        if self.config.start_ms is not None:
            wait = self.config.start_ms + self.config.delay_ms - self._clock()
            if wait > 0:
                await self._sleep(wait / MS_PER_SECOND)

        end = self._clock() + self.config.duration_ms
        pacer = RatePacer(self.config.interval_ms, self._clock, self._sleep)
        iterations = await pacer.run(self.issue, end)

        await self.drain()

        logger.info(
            f"Worker {self.worker_id}: {iterations} issued, {len(self.tx_stats)} completed, "
            f"{self.endorsement_failures} endorsement failures, {self.ordering_failures} ordering failures"
        )
        return self.tx_stats

    async def drain(self, timeout: float = DRAIN_TIMEOUT_SECONDS) -> None:
        """Wait for in-flight requests, cancelling those still pending after ``timeout`` seconds."""
        if not self.in_flight:
            return
        done, pending = await asyncio.wait(set(self.in_flight), timeout=timeout)
        if pending:
            logger.warning(f"Worker {self.worker_id}: cancelling {len(pending)} requests still in flight")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
