# examples/13_run_with_from_args.py
"""
使用 from_args() + 命令行 --preset / --config / --set / ENV 来驱动 MC3。

例：
    python examples/13_run_with_from_args.py --preset quick --set sampler.swap_method=both \
        --set sampler.swap_interval2=5
    MC3__sampler__num_chains=6 python examples/13_run_with_from_args.py
"""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
for p in (ROOT, ROOT / "src"):
    s = str(p)
    if s not in sys.path:
        sys.path.insert(0, s)

from mc3.core.metropolis_chain import make_gaussian_chain
from mc3.simulation.coordinator import MC3Coordinator
from mc3.simulation.runner import run_mc3
from mc3.utils.config import from_args, validate_config


def main():
    cfg = from_args()
    _, warning_list = validate_config(cfg)
    for w in warning_list:
        print("[config warning]", w)

    coord = MC3Coordinator.from_config(make_gaussian_chain(dim=1, seed=0, bimodal=True), cfg)
    summary = run_mc3(
        coord,
        generations=cfg.run.generations,
        burnin=cfg.run.burnin,
        tuning_interval=cfg.run.tuning_interval,
        monitor_interval=cfg.run.monitor_interval,
        progress=cfg.verbose,
    )

    print(coord.summary_table())
    print("swaps accepted / attempted:", summary["total_accepted"], "/", summary["total_attempted"])


if __name__ == "__main__":
    main()
