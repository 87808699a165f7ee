"""
End-to-end tests for the spawned worker processes.

Workers run against the simulated ledger in real child processes, so these
tests take a few seconds each.
"""

import asyncio
import json
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from common.coordinator import Coordinator
from common.metrics_utils import now_ms
from common.process_pool import ProcessPool, _run_worker_process
from common.run_config import FirstBlockPolicy
from persistence.metrics_aggregator import MetricsAggregator
from helpers import make_config

LEDGER_OPTIONS = {
    "endorse_latency_ms": "50",
    "order_latency_ms": "100",
    "commit_latency_ms": "0",
}


def crashing_target(worker_id, control_conn, result_queue, order_feed=None):
    """Worker 1 dies right after receiving its configuration."""
    if worker_id == 1:
        control_conn.recv()
        os._exit(3)
    _run_worker_process(worker_id, control_conn, result_queue, order_feed)


def run_pool(config, **kwargs):
    start = now_ms() + config.warmup_ms
    return asyncio.run(ProcessPool(config, start, **kwargs).run())


def pool_config(**overrides):
    params = dict(
        processes=2,
        target=10,
        duration_seconds=2,
        period_ms=1000,
        warmup_ms=1500,
        ledger_options=LEDGER_OPTIONS,
    )
    params.update(overrides)
    return make_config(**params)


class TestProcessPool:
    def test_two_workers_report(self, tmp_path):
        config = pool_config(logdir=str(tmp_path))
        result = run_pool(config)

        assert result.failures == []
        assert result.reported == {0, 1}
        assert 15 <= len(result.records) <= 26
        for stamps in result.records.values():
            assert len(stamps) == 3
            assert stamps[0] <= stamps[1] <= stamps[2]

        # Every issued transaction is traced by the worker that issued it
        traced = []
        for i in range(2):
            traced.extend(json.loads((tmp_path / f"requests-{i}.json").read_text()))
        assert sorted(t["txid"] for t in traced) == sorted(result.records)

        report = MetricsAggregator(config.period_ms).build_report(result.records)
        assert sum(b.peer.count for b in report) == len(result.records)
        assert sum(b.orderer.count for b in report) == len(result.records)
        assert sum(b.commit.count for b in report) == 0

    def test_crashed_worker_is_reported(self):
        config = pool_config()
        result = run_pool(config, target=crashing_target)

        assert result.failures == ["Worker 1 exited with status 3"]
        assert result.reported == {0}
        # Only worker 0's share of the target rate
        assert 7 <= len(result.records) <= 13


class TestCommitMeasurement:
    def test_worker_transactions_committed(self, tmp_path):
        options = dict(LEDGER_OPTIONS, batch_timeout_ms="100")
        config = pool_config(
            ledger_options=options,
            committing_peer="peer0.org1",
            first_block_policy=FirstBlockPolicy.NONE,
            settle_ms=1000,
            logdir=str(tmp_path),
        )

        report = asyncio.run(Coordinator(config).run_benchmark())

        assert report.ok
        assert report.block_count > 0
        commits = sum(b.commit.count for b in report.buckets)
        assert commits > 0
        assert commits == report.record_count

        logged = json.loads((tmp_path / "blocks.json").read_text())
        assert len(logged) == report.block_count
