# -*- coding: utf-8 -*-
"""
数据层单元测试：

1. TraceMonitor：内存记录、HDF5 流式写入（跨 flush 批次）、幂等的 open/close、replicate 后缀；ScreenMonitor
2. merge_traces：多文件合并后按 generation 排序，缺失文件跳过
3. checkpoint：保存 → 在新协调器上恢复后继续运行，与不中断的运行逐位一致
"""

from __future__ import annotations

import copy
import sys
import tempfile
import unittest
from pathlib import Path

import h5py
import numpy as np

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT / "src") not in sys.path:
    sys.path.insert(0, str(ROOT / "src"))

from mc3.core.metropolis_chain import make_gaussian_chain
from mc3.data.checkpoint import CHECKPOINT_GROUP, load_checkpoint, restore_checkpoint, save_checkpoint
from mc3.data.trace import ScreenMonitor, TraceMonitor, load_trace, merge_traces
from mc3.simulation.coordinator import MC3Coordinator
from mc3.simulation.runner import run_mc3


def _coordinator(**kw):
    params = dict(num_chains=4, swap_method="both", swap_interval=1, swap_interval2=2, seed=21)
    params.update(kw)
    return MC3Coordinator(make_gaussian_chain(dim=2, seed=8), **params)


class _TmpDirCase(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()


class TestTraceMonitor(_TmpDirCase):
    def test_streaming_to_hdf5(self):
        path = self.tmp / "trace.h5"
        trace = TraceMonitor(path, flush_every=3)
        coord = _coordinator()
        run_mc3(coord, generations=10, monitors=[trace], progress=False)

        data = load_trace(path)
        self.assertEqual(data["generation"].tolist(), list(range(11)))
        self.assertEqual(data["state"].shape, (11, 2))
        self.assertEqual(data["meta"]["dim"], 2)
        np.testing.assert_allclose(data["ln_posterior"], trace.to_arrays()["ln_posterior"])
        # 每条记录都来自当时的冷链
        self.assertTrue(set(data["chain"].tolist()) <= set(range(4)))
        self.assertEqual(int(data["chain"][-1]), coord.cold_chain_index())

    def test_open_and_close_are_idempotent(self):
        trace = TraceMonitor(self.tmp / "t.h5")
        chain = make_gaussian_chain(dim=3, seed=1)
        trace.write_header(chain)
        trace.open(5)
        trace.open(5)
        trace.record(0, chain)
        trace.close()
        trace.close()
        self.assertEqual(len(trace), 1)
        with self.assertRaises(RuntimeError):
            trace.record(1, chain)
        with h5py.File(self.tmp / "t.h5", "r") as fh:
            self.assertEqual(fh["state"].shape, (1, 3))

    def test_replicate_file_extension_and_count(self):
        trace = TraceMonitor(self.tmp / "trace.h5")
        trace.add_file_extension("_run_1")
        trace.add_file_extension("_run_3")
        chain = make_gaussian_chain(dim=1, seed=2)
        trace.open(1)
        trace.record(0, chain)
        with self.assertRaises(RuntimeError):
            trace.add_file_extension("_late")
        trace.close(3)
        self.assertFalse((self.tmp / "trace.h5").exists())
        data = load_trace(self.tmp / "trace_run_3.h5")
        self.assertEqual(data["num_replicates"], 3)
        self.assertEqual(data["generation"].tolist(), [0])

    def test_screen_monitor_logs_until_disabled(self):
        chain = make_gaussian_chain(dim=1, seed=2)
        screen = ScreenMonitor(print_every=2)
        screen.open(4)
        with self.assertLogs("mc3.data.trace", level="INFO") as cm:
            for g in range(5):
                screen.record(g, chain)
        self.assertEqual(screen.lines, 3)
        self.assertIn("gen 4/4", cm.output[-1])
        screen.enabled = False
        screen.record(6, chain)
        self.assertEqual(screen.lines, 3)

    def test_dimension_change_rejected(self):
        trace = TraceMonitor()
        trace.record(0, make_gaussian_chain(dim=2))
        with self.assertRaises(ValueError):
            trace.record(1, make_gaussian_chain(dim=3))


class TestMergeTraces(_TmpDirCase):
    def _write(self, name, generations, chain_index):
        chain = make_gaussian_chain(dim=1, seed=chain_index)
        chain.set_chain_index(chain_index)
        trace = TraceMonitor(self.tmp / name)
        trace.open(len(generations))
        for g in generations:
            trace.record(g, chain)
        trace.close()
        return self.tmp / name

    def test_merge_sorts_by_generation(self):
        a = self._write("trace_rank0.h5", [0, 1, 4], 0)
        b = self._write("trace_rank1.h5", [2, 3], 2)
        out = merge_traces([a, b, self.tmp / "missing.h5"], self.tmp / "merged.h5")
        data = load_trace(out)
        self.assertEqual(data["generation"].tolist(), [0, 1, 2, 3, 4])
        self.assertEqual(data["chain"].tolist(), [0, 0, 2, 2, 0])
        self.assertEqual(data["state"].shape, (5, 1))

    def test_merge_requires_some_input(self):
        with self.assertRaises(FileNotFoundError):
            merge_traces([self.tmp / "nope.h5"], self.tmp / "merged.h5")


class TestCheckpoint(_TmpDirCase):
    def test_save_and_load(self):
        coord = _coordinator()
        for _ in range(15):
            coord.next_cycle()
        path = save_checkpoint(coord, self.tmp / "ckpt.h5")
        data = load_checkpoint(path)
        self.assertEqual(data["generation"], 15)
        self.assertEqual(data["heat_ranks"].tolist(), coord.ladder.heat_ranks.tolist())
        np.testing.assert_array_equal(data["attempted"], coord.stats.attempted)
        self.assertEqual(data["config"]["swap_method"], "both")
        self.assertEqual(len(data["tuning"]), 4)
        self.assertIsNotNone(data["swap_rng_state"])
        with h5py.File(path, "r") as fh:
            self.assertIn(CHECKPOINT_GROUP, fh)

    def test_restore_reproduces_swap_stream(self):
        reference = _coordinator()
        for _ in range(10):
            reference.next_cycle()
        path = save_checkpoint(reference, self.tmp / "ckpt.h5")

        restored = _coordinator()
        restore_checkpoint(restored, path)
        self.assertEqual(restored.ladder, reference.ladder)
        self.assertEqual(restored.generation, 10)
        for i in range(4):
            self.assertEqual(restored.chain(i).get_heat(), reference.ladder.heats[i])
            self.assertEqual(restored.chain(i).is_active(), i == reference.cold_chain_index())

        # 链状态不在 checkpoint 中：把链换成 reference 的副本后，swap RNG 应给出同样的决策
        for i in range(4):
            restored.slots[i].chain = copy.deepcopy(reference.chain(i))
        ref_decisions = [d.to_tuple() for _ in range(5) for d in reference.next_cycle()]
        new_decisions = [d.to_tuple() for _ in range(5) for d in restored.next_cycle()]
        self.assertEqual(ref_decisions, new_decisions)

    def test_restore_rejects_wrong_size(self):
        path = save_checkpoint(_coordinator(), self.tmp / "ckpt.h5")
        with self.assertRaises(ValueError):
            restore_checkpoint(_coordinator(num_chains=3), path)

    def test_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            load_checkpoint(self.tmp / "absent.h5")


if __name__ == "__main__":
    unittest.main()
