# -*- coding: utf-8 -*-
"""
核心组件单元测试

覆盖:
- 热度梯子：增量公式、显式热度校验、交换与 rank 映射、不变量
- 链 → 进程分配：P < N、P = N、P > N
- 交换判据：lnR 符号、-100 截断、N=2 场景（lnR = -1，阈值 e^-1）
- 交换对选择：neighbor 按 rank 相邻，random 两端不同
- 热度调节：间隔缩放、尝试次数门槛、下界几何插值
- 交换统计与调参快照兼容性
"""

from __future__ import annotations

import math
import sys
import unittest
from pathlib import Path

import numpy as np

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT / "src") not in sys.path:
    sys.path.insert(0, str(ROOT / "src"))

from mc3.analysis.swap_statistics import SwapStatistics
from mc3.core.assignment import assign_processes, chains_for_process, primary_owner_map
from mc3.core.chain import (
    TuningMismatchError,
    TuningRecord,
    check_snapshots_compatible,
    swap_tuning_snapshots,
)
from mc3.core.exchange import (
    MIN_LOG_RATIO,
    accept_swap,
    select_neighbor_pair,
    select_random_pair,
    swap_log_ratio,
)
from mc3.core.heat_tuning import adjust_gap, tune_heats
from mc3.core.ladder import HeatLadder, compute_heat


class _FixedUniform:
    """只提供 random() 的假 RNG，用于控制接受判据。"""

    def __init__(self, u: float) -> None:
        self.u = u
        self.calls = 0

    def random(self) -> float:
        self.calls += 1
        return self.u


# ---------------------------------------------------------------------
# 热度梯子
# ---------------------------------------------------------------------
class TestHeatLadder(unittest.TestCase):
    def test_incremental_heats(self):
        ladder = HeatLadder.from_delta(4, 0.2)
        np.testing.assert_allclose(ladder.heats, [1.0, 1 / 1.2, 1 / 1.4, 1 / 1.6])
        self.assertEqual(ladder.heat_ranks.tolist(), [0, 1, 2, 3])
        self.assertEqual(ladder.cold_chain(), 0)
        self.assertAlmostEqual(compute_heat(0.2, 3), 0.625)

    def test_explicit_heats_validated(self):
        with self.assertRaises(ValueError):
            HeatLadder([1.0, 1.0, 0.5])          # 两条冷链
        with self.assertRaises(ValueError):
            HeatLadder([0.9, 0.5])               # 没有冷链
        with self.assertRaises(ValueError):
            HeatLadder([1.0, 0.5, 0.7])          # 非单调
        with self.assertRaises(ValueError):
            HeatLadder([1.0, 0.0])               # 越界
        with self.assertRaises(ValueError):
            HeatLadder.from_config(3, heats=[1.0, 0.5])

    def test_swap_updates_ranks_and_cold_chain(self):
        ladder = HeatLadder.from_delta(4, 0.2)
        ladder.swap(0, 1)
        self.assertEqual(ladder.cold_chain(), 1)
        self.assertEqual(ladder.heat_ranks.tolist(), [1, 0, 2, 3])
        self.assertEqual(ladder.rank_of(0), 1)
        self.assertEqual(int(np.count_nonzero(ladder.active_flags())), 1)
        ladder.check_invariants()

    def test_same_swap_twice_is_identity(self):
        ladder = HeatLadder.from_delta(5, 0.3)
        original = ladder.copy()
        ladder.swap(2, 4)
        self.assertNotEqual(ladder, original)
        ladder.swap(2, 4)
        self.assertEqual(ladder, original)

    def test_ranks_stay_permutation_under_random_swaps(self):
        ladder = HeatLadder.from_delta(6, 0.1)
        rng = np.random.default_rng(0)
        for _ in range(200):
            j, k = select_random_pair(6, rng)
            ladder.swap(j, k)
            self.assertEqual(sorted(ladder.heat_ranks.tolist()), list(range(6)))
            self.assertEqual(int(np.count_nonzero(ladder.heats == 1.0)), 1)
            self.assertEqual(ladder.heats[ladder.cold_chain()], 1.0)
        ladder.check_invariants()

    def test_replace_rejects_bad_rank_map(self):
        ladder = HeatLadder.from_delta(3, 0.2)
        with self.assertRaises(ValueError):
            ladder.replace(ladder.heats, [0, 0, 1])

    def test_dict_roundtrip_keeps_rank_map(self):
        ladder = HeatLadder.from_delta(4, 0.2)
        ladder.swap(0, 2)
        self.assertEqual(HeatLadder.from_dict(ladder.to_dict()), ladder)


# ---------------------------------------------------------------------
# 进程分配
# ---------------------------------------------------------------------
class TestAssignment(unittest.TestCase):
    def test_fewer_processes_than_chains(self):
        ranges = assign_processes(4, 2)
        self.assertEqual([(r.first, r.count) for r in ranges], [(0, 1), (0, 1), (1, 1), (1, 1)])
        self.assertEqual(chains_for_process(ranges, 0), [0, 1])
        self.assertEqual(chains_for_process(ranges, 1), [2, 3])

    def test_more_processes_than_chains(self):
        ranges = assign_processes(2, 4)
        self.assertEqual([(r.first, r.count) for r in ranges], [(0, 2), (2, 2)])
        self.assertEqual(primary_owner_map(ranges), {0: 0, 1: 2})
        self.assertEqual(chains_for_process(ranges, 1), [0])
        self.assertEqual(chains_for_process(ranges, 3), [1])

    def test_every_chain_owned_and_count_positive(self):
        for n in range(1, 9):
            for p in range(1, 11):
                ranges = assign_processes(n, p)
                self.assertEqual(len(ranges), n)
                for r in ranges:
                    self.assertGreaterEqual(r.count, 1)
                    self.assertTrue(0 <= r.first < p)
                owned = set()
                for rank in range(p):
                    owned.update(chains_for_process(ranges, rank))
                self.assertEqual(owned, set(range(n)))

    def test_single_process_owns_everything(self):
        ranges = assign_processes(5, 1)
        self.assertTrue(all(r.first == 0 and r.count == 1 for r in ranges))

    def test_invalid_arguments(self):
        with self.assertRaises(ValueError):
            assign_processes(0, 1)
        with self.assertRaises(ValueError):
            assign_processes(3, 0)


# ---------------------------------------------------------------------
# 交换判据
# ---------------------------------------------------------------------
class TestExchange(unittest.TestCase):
    def test_non_negative_ratio_always_accepted(self):
        rng = _FixedUniform(0.999)
        self.assertTrue(accept_swap(0.0, rng))
        self.assertTrue(accept_swap(3.5, rng))
        self.assertEqual(rng.calls, 0)

    def test_very_negative_ratio_always_rejected(self):
        rng = _FixedUniform(0.0)
        self.assertFalse(accept_swap(MIN_LOG_RATIO - 1e-9, rng))
        self.assertFalse(accept_swap(-1e6, rng))
        self.assertFalse(accept_swap(float("nan"), rng))
        self.assertEqual(rng.calls, 0)

    def test_two_chain_scenario(self):
        # heats [1.0, 0.5], lnP [0, -2] ⇒ lnR = (1 - 0.5) * (-2 - 0) = -1
        ln_r = swap_log_ratio(1.0, 0.5, 0.0, -2.0)
        self.assertAlmostEqual(ln_r, -1.0)
        threshold = math.exp(-1.0)
        self.assertTrue(accept_swap(ln_r, _FixedUniform(threshold - 1e-6)))
        self.assertFalse(accept_swap(ln_r, _FixedUniform(threshold + 1e-6)))

    def test_ratio_is_antisymmetric_in_values(self):
        a = swap_log_ratio(1.0, 0.7, -3.0, -1.0)
        b = swap_log_ratio(1.0, 0.7, -1.0, -3.0)
        self.assertAlmostEqual(a, -b)
        self.assertAlmostEqual(swap_log_ratio(0.7, 1.0, -3.0, -1.0), -a)

    def test_neighbor_pair_follows_rank_map(self):
        ladder = HeatLadder.from_delta(3, 0.5)
        ladder.swap(0, 2)               # ranks: [2, 1, 0]
        rng = np.random.default_rng(1)
        for _ in range(50):
            j, k = select_neighbor_pair(ladder, rng)
            self.assertEqual(ladder.rank_of(k), ladder.rank_of(j) + 1)

    def test_pair_selection_no_op_for_single_chain(self):
        rng = np.random.default_rng(0)
        self.assertIsNone(select_neighbor_pair(HeatLadder([1.0]), rng))
        self.assertIsNone(select_random_pair(1, rng))

    def test_random_pair_distinct(self):
        rng = np.random.default_rng(3)
        for _ in range(100):
            j, k = select_random_pair(2, rng)
            self.assertNotEqual(j, k)


# ---------------------------------------------------------------------
# 热度调节
# ---------------------------------------------------------------------
class TestHeatTuning(unittest.TestCase):
    def test_adjust_gap(self):
        self.assertAlmostEqual(adjust_gap(0.2, 0.5), 0.2 * (1 + 0.27 / 0.77))
        self.assertAlmostEqual(adjust_gap(0.2, 0.5), 0.27013, places=4)
        self.assertAlmostEqual(adjust_gap(0.2, 0.0), 0.1)
        self.assertAlmostEqual(adjust_gap(0.2, 0.23), 0.2)

    def test_gap_widens_with_high_acceptance(self):
        ladder = HeatLadder([1.0, 0.8])
        stats = SwapStatistics(2)
        for _ in range(10):
            stats.record_attempt(0, 1)
        for _ in range(5):
            stats.record_accept(0, 1)
        result = tune_heats(ladder, stats)
        self.assertAlmostEqual(ladder.heat_at_rank(1), 1.0 - 0.2 * (1 + 0.27 / 0.77))
        self.assertAlmostEqual(result.rates[0], 0.5)
        self.assertTrue(result.changed)
        # 统计不在这里清零
        self.assertEqual(stats.total_attempted, 10)

    def test_too_few_attempts_leave_gap_unchanged(self):
        ladder = HeatLadder([1.0, 0.8, 0.6])
        stats = SwapStatistics(3)
        stats.record_attempt(0, 1)
        stats.record_attempt(1, 0)
        stats.record_accept(1, 0)
        tune_heats(ladder, stats)
        np.testing.assert_allclose(ladder.heats_by_rank(), [1.0, 0.8, 0.6])

    def test_both_directions_are_combined(self):
        ladder = HeatLadder([1.0, 0.8])
        stats = SwapStatistics(2)
        stats.record_attempt(0, 1)
        stats.record_attempt(0, 1)
        stats.record_attempt(1, 0)
        self.assertEqual(stats.pair_counts(1), (3, 0))
        tune_heats(ladder, stats)
        self.assertAlmostEqual(ladder.heat_at_rank(1), 0.9)

    def test_floor_interpolation(self):
        ladder = HeatLadder([1.0, 0.5, 0.2, 0.1])
        stats = SwapStatistics(4)
        for r in range(1, 4):
            for _ in range(10):
                stats.record_attempt(r - 1, r)
                stats.record_accept(r - 1, r)
        result = tune_heats(ladder, stats, floor=0.01)
        hb = ladder.heats_by_rank()
        self.assertEqual(result.floor_rank, 1)
        self.assertEqual(hb[0], 1.0)
        self.assertAlmostEqual(hb[-1], 0.01)
        self.assertTrue(np.all(np.diff(hb) < 0.0))
        rho = (1.0 / 0.01) ** (1.0 / 3.0)
        np.testing.assert_allclose(hb[1:], [1 / rho, 1 / rho ** 2, 1 / rho ** 3])
        ladder.check_invariants()

    def test_heat_landing_on_floor_keeps_ladder_strict(self):
        # 无统计时间隔不变：rank 2 恰好算出 0.25 == floor
        ladder = HeatLadder([1.0, 0.5, 0.25, 0.125])
        result = tune_heats(ladder, SwapStatistics(4), floor=0.25)
        hb = ladder.heats_by_rank()
        self.assertEqual(result.floor_rank, 2)
        self.assertTrue(np.all(np.diff(hb) < 0.0))
        self.assertAlmostEqual(hb[-1], 0.25)
        np.testing.assert_allclose(hb, [1.0, 0.5, 0.5 / math.sqrt(2.0), 0.25])
        ladder.check_invariants()

    def test_hottest_heat_may_equal_floor(self):
        ladder = HeatLadder([1.0, 0.5, 0.25])
        result = tune_heats(ladder, SwapStatistics(3), floor=0.25)
        self.assertIsNone(result.floor_rank)
        self.assertFalse(result.changed)

    def test_tuning_respects_rank_map(self):
        ladder = HeatLadder([1.0, 0.8])
        ladder.swap(0, 1)               # 链 1 变冷
        stats = SwapStatistics(2)
        for _ in range(10):
            stats.record_attempt(0, 1)
        tune_heats(ladder, stats)
        self.assertEqual(ladder.heats[1], 1.0)
        self.assertAlmostEqual(ladder.heats[0], 0.9)


# ---------------------------------------------------------------------
# 交换统计
# ---------------------------------------------------------------------
class TestSwapStatistics(unittest.TestCase):
    def test_ratio_and_reset(self):
        stats = SwapStatistics(3)
        stats.record_attempt(0, 1)
        stats.record_attempt(0, 1)
        stats.record_accept(0, 1)
        self.assertAlmostEqual(stats.acceptance_ratio(0, 1), 0.5)
        self.assertEqual(stats.acceptance_ratio(1, 0), 0.0)
        stats.reset()
        self.assertEqual(stats.acceptance_ratio(0, 1), 0.0)
        self.assertEqual(stats.total_attempted, 0)

    def test_neighbor_rates_and_matrix(self):
        stats = SwapStatistics(3)
        for _ in range(4):
            stats.record_attempt(1, 2)
        stats.record_accept(2, 1)
        stats.record_attempt(2, 1)
        np.testing.assert_allclose(stats.neighbor_rates(), [0.0, 0.2])
        m = stats.rate_matrix()
        self.assertEqual(m[0, 1], 0.0)
        self.assertEqual(m[2, 1], 1.0)

    def test_from_arrays_validates(self):
        with self.assertRaises(ValueError):
            SwapStatistics.from_arrays([[0, 1], [0, 0]], [[0, 2], [0, 0]])
        with self.assertRaises(ValueError):
            SwapStatistics.from_arrays([[0, 1]], [[0, 1]])
        stats = SwapStatistics.from_arrays([[0, 3], [2, 0]], [[0, 1], [2, 0]])
        self.assertEqual(stats.pair_counts(1), (5, 3))


# ---------------------------------------------------------------------
# 调参快照
# ---------------------------------------------------------------------
class TestTuningSnapshots(unittest.TestCase):
    def _snap(self, *names, nan_last=False):
        recs = [TuningRecord(n, 10, 4, 0.5) for n in names]
        if nan_last:
            recs[-1] = TuningRecord(names[-1], 10, 4)
        return recs

    def test_swap_exchanges_records(self):
        a = [TuningRecord("slide", 10, 3, 0.5)]
        b = [TuningRecord("slide", 20, 9, 2.0)]
        new_a, new_b = swap_tuning_snapshots(a, b)
        self.assertEqual(new_a[0].tuning_parameter, 2.0)
        self.assertEqual(new_b[0].num_accepted, 3)

    def test_name_mismatch(self):
        with self.assertRaises(TuningMismatchError):
            check_snapshots_compatible(self._snap("slide", "scale"), self._snap("slide", "mirror"))

    def test_length_mismatch(self):
        with self.assertRaises(TuningMismatchError):
            swap_tuning_snapshots(self._snap("slide"), self._snap("slide", "scale"))

    def test_nan_mismatch(self):
        with self.assertRaises(TuningMismatchError):
            check_snapshots_compatible(self._snap("slide", "scale"), self._snap("slide", "scale", nan_last=True))

    def test_nan_on_both_sides_is_fine(self):
        a = self._snap("slide", "jitter", nan_last=True)
        b = self._snap("slide", "jitter", nan_last=True)
        check_snapshots_compatible(a, b)
        self.assertFalse(a[-1].has_tuning_parameter)

    def test_tuple_roundtrip_keeps_nan(self):
        rec = TuningRecord("jitter", 3, 1)
        back = TuningRecord.from_tuple(rec.to_tuple())
        self.assertEqual(back.move_name, "jitter")
        self.assertTrue(math.isnan(back.tuning_parameter))


if __name__ == "__main__":
    unittest.main()
