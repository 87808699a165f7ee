"""
Async base classes for ledger clients and commit monitors.

A ledger backend submits a transaction in two round-trips (proposal to the
endorsing peers, then the endorsed proposal to the ordering service) and
exposes a commit monitor that streams filtered blocks from a peer.
"""

import asyncio
import hashlib
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from common.errors import CommitMonitorError, EndorsementError
from common.profile import ConnectionProfile
from configuration import ENDORSEMENT_SUCCESS_STATUS

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProposalRequest:
    tx_id: str
    chaincode_id: str
    fcn: str
    args: Tuple[str, ...]
    targets: Optional[Tuple[str, ...]] = None


@dataclass(frozen=True)
class ProposalResponse:
    peer: str
    status: int
    message: str = ""
    payload: bytes = b""


@dataclass(frozen=True)
class Proposal:
    """Opaque handle tying the endorsed responses back to their request."""

    tx_id: str
    request: ProposalRequest


@dataclass(frozen=True)
class OrderAck:
    tx_id: str
    orderer: str
    status: str = "SUCCESS"


@dataclass(frozen=True)
class FilteredTransaction:
    txid: str
    type: str = "ENDORSER_TRANSACTION"
    tx_validation_code: str = "VALID"


@dataclass(frozen=True)
class FilteredBlock:
    channel_id: str
    number: int
    filtered_transactions: Tuple[FilteredTransaction, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict:
        return {
            "channel_id": self.channel_id,
            "number": str(self.number),
            "filtered_transactions": [
                {"txid": tx.txid, "type": tx.type, "tx_validation_code": tx.tx_validation_code}
                for tx in self.filtered_transactions
            ],
        }


BlockCallback = Callable[[FilteredBlock], None]
ErrorCallback = Callable[[Exception], None]


def check_endorsement(responses: Sequence[ProposalResponse]) -> None:
    """Raise unless every endorsing peer returned a success status.

    Raises:
        EndorsementError: If there is no response or any response failed
    """
    if len(responses) == 0:
        raise EndorsementError("Proposal response is empty")
    for response in responses:
        if response.status != ENDORSEMENT_SUCCESS_STATUS:
            raise EndorsementError(
                f"{response.peer} returned status {response.status}: {response.message}"
            )


class CommitMonitor:
    """Block event stream from one peer, fanned out to subscribers."""

    def __init__(self, peer_name: str):
        self.peer_name = peer_name
        self.connected = False
        self._subscriptions: Dict[int, Tuple[BlockCallback, Optional[ErrorCallback]]] = {}
        self._next_handle = 0

    async def connect(self) -> None:
        self.connected = True
        logger.debug(f"Commit monitor connected to {self.peer_name}")

    async def disconnect(self) -> None:
        self.connected = False
        self._subscriptions.clear()
        logger.debug(f"Commit monitor disconnected from {self.peer_name}")

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()

    def subscribe(self, on_block: BlockCallback, on_error: Optional[ErrorCallback] = None) -> int:
        """Register callbacks for every block and stream error. Returns a handle."""
        handle = self._next_handle
        self._next_handle += 1
        self._subscriptions[handle] = (on_block, on_error)
        return handle

    def unsubscribe(self, handle: int) -> None:
        self._subscriptions.pop(handle, None)

    def wait_for_transaction(self, tx_id: str) -> "asyncio.Future[str]":
        """One-shot subscription resolving to the validation code of ``tx_id``.

        Must be called from within the running event loop, before the
        transaction is submitted, so its block cannot be missed.
        """
        future = asyncio.get_running_loop().create_future()

        def on_block(block: FilteredBlock) -> None:
            for tx in block.filtered_transactions:
                if tx.txid == tx_id:
                    self.unsubscribe(handle)
                    if not future.done():
                        future.set_result(tx.tx_validation_code)
                    return

        def on_error(error: Exception) -> None:
            self.unsubscribe(handle)
            if not future.done():
                future.set_exception(CommitMonitorError(f"{self.peer_name}: {error}"))

        handle = self.subscribe(on_block, on_error)
        return future

    def _deliver(self, block: FilteredBlock) -> None:
        for on_block, _ in list(self._subscriptions.values()):
            on_block(block)

    def _fail(self, error: Exception) -> None:
        logger.warning(f"Commit monitor {self.peer_name} error: {error}")
        for _, on_error in list(self._subscriptions.values()):
            if on_error is not None:
                on_error(error)


class LedgerClient(ABC):
    """Async ledger client bound to one channel and one organization's admin identity.

    ``order_feed`` is the queue returned by the coordinator client's
    ``host_order_feed``, handed to clients running in worker processes.
    """

    def __init__(
        self,
        profile: ConnectionProfile,
        channel_id: str,
        org_name: str,
        options: Optional[Mapping[str, str]] = None,
        order_feed=None,
    ):
        self.profile = profile
        self.channel_id = channel_id
        self.org_name = org_name
        self.options = dict(options or {})
        self.order_feed = order_feed
        self.organization = profile.organization(org_name)
        self.channel = profile.channel(channel_id)

    async def connect(self) -> None:
        """Open connections. Subclasses override when they hold network resources."""

    async def close(self) -> None:
        """Release connections."""

    def host_order_feed(self):
        """Queue through which worker-process clients report ordered transactions.

        Backends whose peers already see every client's transactions return None.
        """
        return None

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def new_transaction_id(self) -> str:
        """Transaction id derived from a fresh nonce and the creator identity."""
        nonce = os.urandom(24)
        creator = self.organization.mspid.encode()
        return hashlib.sha256(nonce + creator).hexdigest()

    @property
    def default_peers(self) -> List[str]:
        """Endorsement targets used when a request names none."""
        peers = [name for name in self.profile.peers_for_org(self.org_name, self.channel_id)
                 if name in self.channel.endorsing_peers]
        return peers[:1] or self.channel.endorsing_peers[:1]

    @property
    def default_orderer(self) -> str:
        return self.channel.orderers[0]

    @abstractmethod
    async def submit_proposal(
        self, request: ProposalRequest
    ) -> Tuple[List[ProposalResponse], Proposal]:
        """Send a proposal to the endorsing peers and return their responses."""

    @abstractmethod
    async def submit_order(
        self,
        proposal: Proposal,
        responses: Sequence[ProposalResponse],
        orderer: Optional[str] = None,
    ) -> OrderAck:
        """Send an endorsed proposal to the ordering service.

        Raises:
            OrderingError: If the ordering service rejects the transaction
        """

    @abstractmethod
    def commit_monitor(self, peer_name: str) -> CommitMonitor:
        """Commit monitor streaming filtered blocks from ``peer_name``."""
