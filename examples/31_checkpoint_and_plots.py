# examples/31_checkpoint_and_plots.py
"""
checkpoint 与诊断图：

1. 跑一段 burn-in（带热度调节）并保存 checkpoint
2. 新建协调器、恢复 checkpoint 后继续采样
   （checkpoint 只含梯子/统计/调节参数/交换 RNG，链参数从模板初值重新出发）
3. 画交换接受率热图、热度梯子（调节前后对比）和冷链 trace
"""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
for p in (ROOT, ROOT / "src"):
    s = str(p)
    if s not in sys.path:
        sys.path.insert(0, s)

import matplotlib

matplotlib.use("Agg")

from mc3.core.metropolis_chain import make_gaussian_chain
from mc3.data.checkpoint import restore_checkpoint, save_checkpoint
from mc3.data.trace import TraceMonitor, load_trace
from mc3.simulation.coordinator import MC3Coordinator
from mc3.simulation.runner import run_burnin, run_mc3
from mc3.visualization.plots import plot_heat_ladder, plot_swap_acceptance, plot_trace


def _coordinator():
    return MC3Coordinator(
        make_gaussian_chain(dim=1, seed=3, bimodal=True, separation=10.0),
        num_chains=6,
        swap_method="both",
        swap_interval=1,
        swap_interval2=10,
        tune_heat=True,
        seed=2024,
    )


def main():
    out_dir = ROOT / "runs" / "checkpoint_demo"

    coord = _coordinator()
    heats_before = coord.ladder.heats_by_rank().tolist()
    run_burnin(coord, burnin=2000, tuning_interval=100, progress=False)
    ckpt = save_checkpoint(coord, out_dir / "after_burnin.h5")
    print("checkpoint saved:", ckpt)

    resumed = _coordinator()
    restore_checkpoint(resumed, ckpt)
    trace = TraceMonitor(out_dir / "trace.h5")
    summary = run_mc3(resumed, generations=5000, monitor_interval=2, monitors=[trace], progress=False)
    print(resumed.summary_table())

    plot_swap_acceptance(resumed.stats, save_path=str(out_dir / "swap_acceptance.png"))
    plot_heat_ladder(summary["heats_by_rank"], summary["neighbor_rates"], heats_before=heats_before,
                     save_path=str(out_dir / "heat_ladder.png"))
    plot_trace(load_trace(out_dir / "trace.h5"), save_path=str(out_dir / "trace.png"))
    print("figures written to", out_dir)


if __name__ == "__main__":
    main()
