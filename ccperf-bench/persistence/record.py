"""
Data structures for per-transaction stage timestamps and observed blocks.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from configuration import MS_PER_SECOND


def ms_to_iso(timestamp_ms: float) -> str:
    """Render an epoch-millisecond timestamp as ISO-8601 UTC."""
    return datetime.fromtimestamp(timestamp_ms / MS_PER_SECOND, tz=timezone.utc).isoformat()


@dataclass
class TransactionRecord:
    """Stage timestamps of one transaction, in epoch milliseconds.

    t1: proposal submitted
    t2: proposal responses received
    t3: ordering service acknowledged
    t4: containing block observed by the commit monitor (optional)
    """

    txid: str
    t1: float
    t2: float
    t3: float
    t4: Optional[float] = None

    @classmethod
    def from_stats(cls, txid: str, stamps: Sequence[float]) -> "TransactionRecord":
        """Build a record from the ``[t1, t2, t3]`` list a worker reports."""
        t4 = stamps[3] if len(stamps) > 3 else None
        return cls(txid, float(stamps[0]), float(stamps[1]), float(stamps[2]), t4)

    def to_stats(self) -> List[float]:
        stamps = [self.t1, self.t2, self.t3]
        if self.t4 is not None:
            stamps.append(self.t4)
        return stamps

    @property
    def proposal_latency(self) -> float:
        return self.t2 - self.t1

    @property
    def ordering_latency(self) -> float:
        return self.t3 - self.t2

    @property
    def commit_latency(self) -> Optional[float]:
        if self.t4 is None:
            return None
        return self.t4 - self.t3

    def to_trace(self) -> Dict:
        """Element written to the per-worker request trace."""
        return {
            "txid": self.txid,
            "peer": [{"submission": ms_to_iso(self.t1), "response": ms_to_iso(self.t2)}],
            "orderer": {"submission": ms_to_iso(self.t2), "response": ms_to_iso(self.t3)},
        }


@dataclass(frozen=True)
class BlockRecord:
    """A committed block as seen by the commit monitor.

    ``txset`` groups transaction ids by transaction type, then by validation code.
    """

    number: int
    timestamp: float
    txset: Dict[str, Dict[str, List[str]]] = field(default_factory=dict)

    @property
    def transaction_count(self) -> int:
        return sum(len(ids) for codes in self.txset.values() for ids in codes.values())

    def transaction_ids(self):
        for codes in self.txset.values():
            for ids in codes.values():
                yield from ids
