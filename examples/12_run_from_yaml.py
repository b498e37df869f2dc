# examples/12_run_from_yaml.py
"""
从 YAML 配置驱动一次 MC3 运行。

若 configs/mc3_standard.yaml 不存在，先用 'standard' 预设生成一份，可手动编辑后再运行。
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
from mc3.data.checkpoint import save_checkpoint
from mc3.data.trace import TraceMonitor
from mc3.simulation.coordinator import MC3Coordinator
from mc3.simulation.runner import run_mc3
from mc3.utils.config import get_preset_config, load_config, save_config, validate_config
from mc3.utils.logger import setup_logger


def main():
    cfg_path = ROOT / "configs" / "mc3_standard.yaml"
    if not cfg_path.exists():
        save_config(get_preset_config("standard"), str(cfg_path))
        print("wrote default config:", cfg_path)

    # 1. 读取 YAML 配置并做一致性检查
    cfg = load_config(str(cfg_path)).add_path_root(ROOT)
    ok, warnings = validate_config(cfg)
    for w in warnings:
        print("[config warning]", w)

    out_dir = Path(cfg.run.output_dir) / "from_yaml"
    setup_logger("mc3", log_file=str(out_dir / "run.log"), use_color=True)

    # 2. 构造协调器（串行；多进程见 21_parallel_run.py）
    template = make_gaussian_chain(dim=2, seed=cfg.sampler.seed or 0, bimodal=True)
    coord = MC3Coordinator.from_config(template, cfg)

    # 3. 运行并把冷链 trace 流式写入 HDF5
    trace = TraceMonitor(out_dir / "trace.h5", flush_every=500)
    run_mc3(
        coord,
        generations=cfg.run.generations,
        burnin=cfg.run.burnin,
        tuning_interval=cfg.run.tuning_interval,
        monitor_interval=cfg.run.monitor_interval,
        monitors=[trace],
        progress=cfg.verbose,
    )

    if cfg.run.checkpoint:
        save_checkpoint(coord, out_dir / "checkpoint.h5")
    print(coord.summary_table())


if __name__ == "__main__":
    main()
