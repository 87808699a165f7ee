"""Test suite for run configuration building and workloads."""

import pickle
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from common.errors import ConfigurationError
from common.run_config import (
    FirstBlockPolicy,
    Selection,
    Workload,
    parse_ledger_options,
)
from helpers import make_config


class TestWorkload:
    def test_putstate(self):
        assert Workload.PUTSTATE.build_args("k", 2, 16, None) == ["2", "16", "k"]

    def test_getstate(self):
        assert Workload.GETSTATE.build_args("k", 2, 16, 1000) == ["2", "1000", "k"]

    @pytest.mark.parametrize("workload", [Workload.MIX, Workload.JSON])
    def test_mixed(self, workload):
        assert workload.build_args("k", 1, 8, 50) == ["1", "8", "k", "50"]

    def test_function_names(self):
        assert [w.value for w in Workload] == ["putstate", "getstate", "mix", "json"]


class TestBuildRunConfig:
    def test_interval_and_default_rampup(self):
        config = make_config(target=10, processes=2)
        assert config.tps_per_process == 5
        assert config.interval_ms == 200
        assert config.rampup_ms == 200
        assert config.duration_ms == 60000

    def test_staggered_delays(self):
        config = make_config(target=10, processes=4, rampup_seconds=2)
        assert [config.worker_delay_ms(i) for i in range(4)] == [0, 500, 1000, 1500]

    def test_for_worker_only_changes_timing(self):
        config = make_config(target=10, processes=2, rampup_seconds=1)
        worker = config.for_worker(1, 12345.0)
        assert worker.start_ms == 12345.0
        assert worker.delay_ms == 500
        assert worker.target == config.target
        assert worker.profile is config.profile
        assert config.start_ms is None

    def test_enums_parsed(self):
        config = make_config(
            workload="getstate", peer_selection="balance",
            orderer_selection="balance", first_block_policy="before-start",
        )
        assert config.workload is Workload.GETSTATE
        assert config.peer_selection is Selection.BALANCE
        assert config.orderer_selection is Selection.BALANCE
        assert config.first_block_policy is FirstBlockPolicy.BEFORE_START

    def test_describe(self):
        config = make_config(target=10, processes=2, duration_seconds=30, workload="mix", num=3, size=64)
        assert config.describe() == "Target:10 Processes:2 Duration:30000 Type:mix Num:3 Size:64"

    def test_picklable(self):
        config = make_config(ledger_options={"seed": "1"})
        assert pickle.loads(pickle.dumps(config.for_worker(0, 1.0))) == config.for_worker(0, 1.0)

    @pytest.mark.parametrize("overrides", [
        {"processes": 0},
        {"target": 0},
        {"duration_seconds": -1},
        {"rampup_seconds": -1},
        {"num": 0},
        {"size": -1},
        {"population": -5},
        {"period_ms": 0},
        {"workload": "deletestate"},
        {"peer_selection": "random"},
        {"first_block_policy": "last"},
        {"committing_peer": "peer9.org9"},
    ])
    def test_invalid(self, overrides):
        with pytest.raises(ConfigurationError):
            make_config(**overrides)

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            make_config(processes=0)


class TestLedgerOptions:
    def test_pairs(self):
        assert parse_ledger_options(["a=1", "b = 2", "url=http://x?y=z"]) == {
            "a": "1", "b": "2", "url": "http://x?y=z",
        }

    def test_empty(self):
        assert parse_ledger_options(None) == {}

    def test_invalid(self):
        with pytest.raises(ConfigurationError):
            parse_ledger_options(["novalue"])
