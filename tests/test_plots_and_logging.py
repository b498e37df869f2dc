# -*- coding: utf-8 -*-
"""
绘图与日志工具的冒烟测试（Agg 后端，不弹窗）。
"""

from __future__ import annotations

import logging
import sys
import tempfile
import unittest
from pathlib import Path

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt  # noqa: E402

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT / "src") not in sys.path:
    sys.path.insert(0, str(ROOT / "src"))

from mc3.core.metropolis_chain import make_gaussian_chain  # noqa: E402
from mc3.data.trace import TraceMonitor  # noqa: E402
from mc3.simulation.coordinator import MC3Coordinator  # noqa: E402
from mc3.simulation.runner import run_mc3  # noqa: E402
from mc3.utils.logger import ProgressLogger, setup_logger, stop_queue_listener  # noqa: E402
from mc3.visualization.plots import (  # noqa: E402
    plot_heat_ladder,
    plot_swap_acceptance,
    plot_trace,
    save_figure,
)


class TestPlots(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.coord = MC3Coordinator(make_gaussian_chain(dim=2, seed=2), num_chains=4, swap_method="both",
                                   swap_interval=1, swap_interval2=3, tune_heat=True, seed=9)
        cls.trace = TraceMonitor()
        run_mc3(cls.coord, generations=60, burnin=40, tuning_interval=20, monitors=[cls.trace], progress=False)

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)

    def tearDown(self):
        plt.close("all")
        self._tmp.cleanup()

    def test_swap_acceptance_from_stats_and_dict(self):
        fig = plot_swap_acceptance(self.coord.stats, save_path=str(self.tmp / "acc.png"))
        self.assertTrue((self.tmp / "acc.png").exists())
        self.assertIsNotNone(fig)
        plot_swap_acceptance(self.coord.summary())
        with self.assertRaises(ValueError):
            plot_swap_acceptance({"attempted": [[1, 2]], "accepted": [[0, 1]]})

    def test_heat_ladder(self):
        fig = plot_heat_ladder(self.coord.ladder.heats_by_rank(), self.coord.stats.neighbor_rates(),
                               heats_before=[1.0, 0.8, 0.6, 0.5])
        self.assertEqual(len(fig.axes), 2)
        with self.assertRaises(ValueError):
            plot_heat_ladder([1.0, 0.5], neighbor_rates=[0.1, 0.2])

    def test_trace(self):
        fig = plot_trace(self.trace.to_arrays(), parameter=1)
        self.assertEqual(len(fig.axes), 2)
        with self.assertRaises(KeyError):
            plot_trace({"generation": [0, 1]})

    def test_save_figure_multiple_formats(self):
        fig = plot_heat_ladder([1.0, 0.7])
        saved = save_figure(fig, self.tmp / "ladder", formats=["png", "svg"])
        self.assertEqual(len(saved), 2)
        for p in saved:
            self.assertTrue(Path(p).exists())
        with self.assertRaises(ValueError):
            save_figure(fig, None)


class TestLogging(unittest.TestCase):
    def test_rank_tag_and_file_output(self):
        with tempfile.TemporaryDirectory() as tmp:
            log_file = Path(tmp) / "run.log"
            lg = setup_logger("mc3.test", level=logging.INFO, log_file=str(log_file), use_color=False,
                              process_rank=1, process_count=4)
            lg.info("hello %d", 7)
            for h in lg.handlers:
                h.flush()
            text = log_file.read_text(encoding="utf-8")
            self.assertIn("[rank 1/4]", text)
            self.assertIn("hello 7", text)
            for h in list(lg.handlers):
                lg.removeHandler(h)
                h.close()

    def test_queue_listener_lifecycle(self):
        lg = setup_logger("mc3.test.mp", level=logging.INFO, use_color=False, mp_safe=True)
        lg.info("via queue")
        self.assertTrue(stop_queue_listener("mc3.test.mp"))
        self.assertFalse(stop_queue_listener("mc3.test.mp"))

    def test_progress_logger(self):
        lg = logging.getLogger("mc3.test.progress")
        with self.assertLogs(lg, level="INFO") as cm:
            pl = ProgressLogger(4, desc="burn-in", logger=lg, log_every_n=2)
            for _ in range(4):
                pl.update()
            pl.finish()
        self.assertEqual(sum("burn-in:" in m for m in cm.output), 2)
        self.assertIn("gen/s", cm.output[-1])


if __name__ == "__main__":
    unittest.main()
