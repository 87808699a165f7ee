"""Test suite for the report statistics primitives."""

import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from common.metrics_utils import average, calculate_tps, percentile, round_down, round_up


class TestAverage:
    def test_empty(self):
        assert average([]) == 0.0

    def test_values(self):
        assert average([50, 100, 150]) == 100.0


class TestPercentile:
    def test_empty(self):
        assert percentile([], 0.9) == 0.0
        assert percentile([], 0.0) == 0.0

    def test_single_value(self):
        assert percentile([42.0], 0.9) == 42.0

    def test_nearest_rank_without_interpolation(self):
        values = list(range(1, 11))
        # floor(10 * 0.9) = 9 -> tenth smallest
        assert percentile(values, 0.9) == 10
        assert percentile(values, 0.5) == 6
        assert percentile(values, 0.0) == 1

    def test_order_invariant(self):
        ordered = [10, 20, 30, 40, 50]
        shuffled = [40, 10, 50, 30, 20]
        assert percentile(shuffled, 0.9) == percentile(ordered, 0.9) == 50

    def test_input_not_modified(self):
        values = [3, 1, 2]
        percentile(values, 0.9)
        assert values == [3, 1, 2]

    def test_rank_one_clamped_to_last(self):
        assert percentile([1, 2, 3], 1.0) == 3


class TestRounding:
    @pytest.mark.parametrize("value", [0, 1, 999, 1000, 1001, 4999.5, -1, -1000, -1500])
    def test_round_down_bounds(self, value):
        base = 1000
        assert round_down(value, base) <= value < round_down(value, base) + base

    @pytest.mark.parametrize("value", [0, 1, 999, 1000, 1001, 4999.5, -1, -1500])
    def test_round_up_bounds(self, value):
        base = 1000
        assert round_up(value, base) - base <= value <= round_up(value, base)

    def test_boundary_moves_up_a_full_period(self):
        assert round_down(5000, 5000) == 5000
        assert round_up(5000, 5000) == 10000

    def test_negative(self):
        assert round_down(-1, 1000) == -1000


class TestThroughput:
    def test_tps(self):
        assert calculate_tps(10, 5000) == 2.0
        assert calculate_tps(0, 1000) == 0.0

    def test_non_positive_period(self):
        assert calculate_tps(5, 0) == 0.0
