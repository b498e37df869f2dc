# examples/22_mpi_run.py
"""
MPI 版本（需要可选依赖 mpi4py）：

    mpiexec -n 4 python examples/22_mpi_run.py

链数少于进程数时，多出的进程作为同一条链的副本进程参与（只有主进程写 monitor）。
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
for p in (ROOT, ROOT / "src"):
    s = str(p)
    if s not in sys.path:
        sys.path.insert(0, s)

from mc3.core.metropolis_chain import make_gaussian_chain
from mc3.data.trace import TraceMonitor, merge_traces
from mc3.simulation.coordinator import MC3Coordinator
from mc3.simulation.runner import run_mc3
from mc3.simulation.sync import make_process_group
from mc3.utils.config import MC3Config
from mc3.utils.logger import setup_logger


def main():
    group = make_process_group("mpi", leader=0)
    setup_logger("mc3", level=logging.INFO if group.is_leader else logging.WARNING,
                 process_rank=group.rank, process_count=group.size)

    cfg = MC3Config(num_chains=4, swap_method="both", swap_interval=1, swap_interval2=5,
                    tune_heat=True, seed=11)
    coord = MC3Coordinator.from_config(make_gaussian_chain(dim=2, seed=5, bimodal=True), cfg, group=group)

    out_dir = ROOT / "runs" / "mpi_demo"
    out_dir.mkdir(parents=True, exist_ok=True)
    trace_path = out_dir / f"trace_rank{group.rank}.h5"
    run_mc3(coord, generations=4000, burnin=1000, tuning_interval=100, monitor_interval=4,
            monitors=[TraceMonitor(trace_path)], progress=group.is_leader)

    # 所有进程写完后由 leader 合并
    group.barrier()
    if group.is_leader:
        print(coord.summary_table())
        merge_traces([out_dir / f"trace_rank{r}.h5" for r in range(group.size)], out_dir / "trace.h5")


if __name__ == "__main__":
    main()
