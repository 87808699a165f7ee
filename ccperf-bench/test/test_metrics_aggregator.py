"""Test suite for time-bucketed report aggregation."""

import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from persistence.metrics_aggregator import (
    REPORT_HEADER,
    MetricsAggregator,
    format_report,
    merge_commit_times,
)
from persistence.record import BlockRecord

TX = "ENDORSER_TRANSACTION"


def sample_records():
    return {
        "a": [1000.0, 1050.0, 1150.0],
        "b": [1500.0, 1600.0, 2100.0],
        "c": [2200.0, 2250.0, 2300.0],
    }


def sample_blocks():
    return {
        1: BlockRecord(1, 2500.0, {TX: {"VALID": ["a", "b"]}}),
        2: BlockRecord(2, 3000.0, {TX: {"VALID": ["c", "not-ours"]}}),
    }


class TestMergeCommitTimes:
    def test_attaches_block_time(self):
        merged = merge_commit_times(sample_records(), sample_blocks())
        assert merged["a"].t4 == 2500.0
        assert merged["c"].t4 == 3000.0
        assert "not-ours" not in merged

    def test_earliest_block_wins(self):
        blocks = sample_blocks()
        blocks[3] = BlockRecord(3, 2800.0, {TX: {"MVCC_READ_CONFLICT": ["c"]}})
        merged = merge_commit_times(sample_records(), blocks)
        assert merged["c"].t4 == 2800.0

    def test_without_blocks(self):
        merged = merge_commit_times(sample_records(), {})
        assert all(record.t4 is None for record in merged.values())


class TestBuildReport:
    def test_bucket_span(self):
        report = MetricsAggregator(period_ms=1000).build_report(sample_records(), sample_blocks())
        # floor(1000) .. round_up(3000) = 4000
        assert len(report) == 3
        assert [bucket.elapsed for bucket in report] == [0.0, 1.0, 2.0]

    def test_stage_statistics(self):
        report = MetricsAggregator(period_ms=1000).build_report(sample_records(), sample_blocks())

        first, second, third = report
        assert first.peer.count == 2
        assert first.peer.tps == pytest.approx(2.0)
        assert first.peer.avg == pytest.approx(75.0)
        assert first.peer.pctl == 100.0

        assert second.orderer.count == 2
        assert second.orderer.avg == pytest.approx(275.0)
        assert second.orderer.pctl == 500.0

        assert second.commit.count == 2
        assert second.commit.avg == pytest.approx(875.0)
        assert second.commit.pctl == 1350.0
        assert third.commit.count == 1
        assert third.commit.avg == pytest.approx(700.0)

    def test_counts_sum_to_populated_stages(self):
        records = sample_records()
        report = MetricsAggregator(period_ms=1000).build_report(records, sample_blocks())
        assert sum(bucket.peer.count for bucket in report) == len(records)
        assert sum(bucket.orderer.count for bucket in report) == len(records)
        assert sum(bucket.commit.count for bucket in report) == 3

    def test_missing_commit_time(self):
        report = MetricsAggregator(period_ms=1000).build_report(sample_records(), {})
        assert len(report) == 2
        assert sum(bucket.peer.count for bucket in report) == 3
        for bucket in report:
            assert bucket.commit.count == 0
            assert bucket.commit.tps == 0.0
            assert bucket.commit.avg == 0.0
            assert bucket.commit.pctl == 0.0

    def test_partial_commit(self):
        blocks = {1: BlockRecord(1, 2500.0, {TX: {"VALID": ["a"]}})}
        report = MetricsAggregator(period_ms=1000).build_report(sample_records(), blocks)
        assert sum(bucket.commit.count for bucket in report) == 1
        assert sum(bucket.peer.count for bucket in report) == 3

    def test_commit_before_window_dropped(self):
        blocks = {1: BlockRecord(1, 500.0, {TX: {"VALID": ["a"]}})}
        report = MetricsAggregator(period_ms=1000).build_report(sample_records(), blocks)
        assert sum(bucket.commit.count for bucket in report) == 0

    def test_empty(self):
        assert MetricsAggregator().build_report({}) == []

    def test_invalid_period(self):
        with pytest.raises(ValueError):
            MetricsAggregator(period_ms=0)


class TestFormatReport:
    def test_header(self):
        assert REPORT_HEADER == (
            " elapsed peer.tps orderer.tps commit.tps peer.avg orderer.avg commit.avg "
            "peer.pctl orderer.pctl commit.pctl"
        )

    def test_rows(self):
        report = MetricsAggregator(period_ms=1000).build_report(sample_records(), sample_blocks())
        lines = format_report(report).split("\n")
        assert lines[0] == REPORT_HEADER
        assert len(lines) == 4

        first = lines[1].split()
        assert len(first) == 10
        assert first[0] == "0"
        assert first[1] == "2.00"
        assert lines[2].split()[0] == "1"

    def test_row_widths(self):
        report = MetricsAggregator(period_ms=5000).build_report({"a": [0.0, 50.0, 150.0]})
        row = format_report(report).split("\n")[1]
        assert row == "       0     0.20        0.20       0.00    50.00      100.00       0.00     50.00       100.00        0.00"
