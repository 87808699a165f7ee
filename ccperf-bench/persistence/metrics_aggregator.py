"""
Metrics aggregator for time-bucketed stage statistics.

Merged transaction records are bucketed by the end time of each stage into
fixed windows spanning the run. Per window and per stage the report carries
throughput, mean latency and nearest-rank percentile latency.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence

import pandas as pd

from common.metrics_utils import average, calculate_tps, percentile, round_down, round_up
from configuration import LATENCY_PERCENTILE, MS_PER_SECOND, REPORT_PERIOD_MS
from persistence.record import BlockRecord, TransactionRecord

logger = logging.getLogger(__name__)

REPORT_HEADER = (
    " elapsed peer.tps orderer.tps commit.tps peer.avg orderer.avg commit.avg "
    "peer.pctl orderer.pctl commit.pctl"
)
REPORT_ROW_FORMAT = "%8d %8.2f %11.2f %10.2f %8.2f %11.2f %10.2f %9.2f %12.2f %11.2f"

# stage -> (start column, end column)
STAGES = {
    "peer": ("t1", "t2"),
    "orderer": ("t2", "t3"),
    "commit": ("t3", "t4"),
}


@dataclass(frozen=True)
class StageStats:
    count: int = 0
    tps: float = 0.0
    avg: float = 0.0
    pctl: float = 0.0


@dataclass(frozen=True)
class BucketStats:
    """Statistics of one report window. ``elapsed`` is in seconds since the first window."""

    index: int
    elapsed: float
    peer: StageStats
    orderer: StageStats
    commit: StageStats

    def row(self) -> str:
        return REPORT_ROW_FORMAT % (
            self.elapsed,
            self.peer.tps, self.orderer.tps, self.commit.tps,
            self.peer.avg, self.orderer.avg, self.commit.avg,
            self.peer.pctl, self.orderer.pctl, self.commit.pctl,
        )


def merge_commit_times(
    records: Mapping[str, Sequence[float]],
    blocks: Mapping[int, BlockRecord],
) -> Dict[str, TransactionRecord]:
    """Attach each block's observation time as ``t4`` of the transactions it contains.

    Transactions absent from ``records`` (population, other clients) are ignored.
    When a transaction id appears in several blocks the earliest observation wins.
    """
    merged = {txid: TransactionRecord.from_stats(txid, stamps) for txid, stamps in records.items()}
    for block in sorted(blocks.values(), key=lambda b: b.timestamp):
        for txid in block.transaction_ids():
            record = merged.get(txid)
            if record is None:
                continue
            if record.t4 is None:
                record.t4 = block.timestamp
            else:
                logger.warning(f"Transaction {txid} seen again in block {block.number}, keeping first commit time")
    return merged


def records_to_dataframe(records: Mapping[str, TransactionRecord]) -> pd.DataFrame:
    """One row per transaction with columns txid, t1, t2, t3, t4 (NaN when not committed)."""
    rows = [
        {"txid": r.txid, "t1": r.t1, "t2": r.t2, "t3": r.t3, "t4": r.t4}
        for r in records.values()
    ]
    df = pd.DataFrame(rows, columns=["txid", "t1", "t2", "t3", "t4"])
    return df.astype({"t1": float, "t2": float, "t3": float, "t4": float})


class MetricsAggregator:
    """Builds the per-window report from merged transaction records."""

    def __init__(self, period_ms: float = REPORT_PERIOD_MS, rank: float = LATENCY_PERCENTILE):
        if period_ms <= 0:
            raise ValueError(f"period_ms must be positive, got {period_ms}")
        self.period_ms = period_ms
        self.rank = rank

    def span(self, df: pd.DataFrame):
        """First window start and last window end covering every stage timestamp."""
        ends = df[["t2", "t3", "t4"]].max().max()
        min_t = round_down(df["t1"].min(), self.period_ms)
        max_t = round_up(ends, self.period_ms)
        return min_t, max_t

    def _stage_samples(self, df: pd.DataFrame, stage: str, min_t: float, buckets: int) -> Dict[int, List[float]]:
        start_col, end_col = STAGES[stage]
        stage_df = df.loc[df[end_col].notna(), [start_col, end_col]]
        if stage_df.empty:
            return {}

        latency = stage_df[end_col] - stage_df[start_col]
        index = ((stage_df[end_col] - min_t) // self.period_ms).astype(int)
        in_range = (index >= 0) & (index < buckets)
        dropped = int((~in_range).sum())
        if dropped:
            logger.warning(f"Dropped {dropped} {stage} samples outside the report window")

        samples = pd.DataFrame({"bucket": index[in_range], "latency": latency[in_range]})
        grouped = samples.groupby("bucket")["latency"].agg(list)
        return {int(bucket): values for bucket, values in grouped.items()}

    def _stage_stats(self, values: List[float]) -> StageStats:
        return StageStats(
            count=len(values),
            tps=calculate_tps(len(values), self.period_ms),
            avg=average(values),
            pctl=percentile(values, self.rank),
        )

    def build_report(
        self,
        records: Mapping[str, Sequence[float]],
        blocks: Optional[Mapping[int, BlockRecord]] = None,
    ) -> List[BucketStats]:
        """Bucket the records and compute per-stage statistics.

        Args:
            records: Mapping of txid to ``[t1, t2, t3]`` as reported by the workers
            blocks: Observed blocks keyed by block number, supplying ``t4``

        Returns:
            Bucket statistics in chronological order, empty when there are no records
        """
        return self.report_for(merge_commit_times(records, blocks or {}))

    def report_for(self, merged: Mapping[str, TransactionRecord]) -> List[BucketStats]:
        """Same as ``build_report`` for records that already carry their ``t4``."""
        if not merged:
            logger.warning("No transaction records to report")
            return []

        df = records_to_dataframe(merged)
        min_t, max_t = self.span(df)
        buckets = int(round((max_t - min_t) / self.period_ms))

        samples = {stage: self._stage_samples(df, stage, min_t, buckets) for stage in STAGES}

        report = []
        for i in range(buckets):
            stats = {stage: self._stage_stats(samples[stage].get(i, [])) for stage in STAGES}
            report.append(BucketStats(
                index=i,
                elapsed=i * self.period_ms / MS_PER_SECOND,
                peer=stats["peer"],
                orderer=stats["orderer"],
                commit=stats["commit"],
            ))

        committed = int(df["t4"].notna().sum())
        logger.info(
            f"Report: {len(df)} transactions ({committed} with commit time) in {buckets} windows "
            f"of {self.period_ms:.0f}ms"
        )
        return report


def format_report(buckets: Sequence[BucketStats]) -> str:
    """Fixed-width table: the header line then one line per window."""
    lines = [REPORT_HEADER]
    lines.extend(bucket.row() for bucket in buckets)
    return "\n".join(lines)
