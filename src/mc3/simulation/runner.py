# -*- coding: utf-8 -*-
"""
    MC3 主循环驱动

实现功能：
    - burn-in：next_cycle(post_burnin=False)，每 tuning_interval 代调用一次 coordinator.tune()；
      结束后 coordinator.reset() 清零交换统计与 move 计数
    - 采样：写 monitor 表头 → 记录第 0 代 → next_cycle(post_burnin=True)，
      每 monitor_interval 代记录一次冷链
    - 只有 leader 打印进度（ProgressLogger）
    - 返回 coordinator.summary()

注意：run_mc3 是集合操作，进程组内每个进程都必须以相同参数调用。
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Sequence

from ..utils.logger import ProgressLogger
from .coordinator import MC3Coordinator

logger = logging.getLogger(__name__)

__all__ = ["run_burnin", "run_sampling", "run_mc3"]


def _progress(coordinator: MC3Coordinator, total: int, desc: str, enabled: bool) -> Optional[ProgressLogger]:
    if not enabled or total <= 0 or not coordinator.group.is_leader:
        return None
    return ProgressLogger(total, desc=desc, logger=logger, log_every_n=max(1, total // 10))


def run_burnin(
    coordinator: MC3Coordinator,
    burnin: int,
    tuning_interval: int = 100,
    progress: bool = True,
) -> None:
    """burn-in 阶段；tuning_interval=0 表示不调节。"""
    burnin = int(burnin)
    tuning_interval = int(tuning_interval)
    if burnin < 0 or tuning_interval < 0:
        raise ValueError("burnin and tuning_interval must be non-negative")

    pl = _progress(coordinator, burnin, "burn-in", progress)
    for g in range(1, burnin + 1):
        coordinator.next_cycle(post_burnin=False)
        if tuning_interval > 0 and g % tuning_interval == 0:
            coordinator.tune()
        if pl is not None:
            pl.update()
    if pl is not None:
        pl.finish()
    if burnin > 0:
        coordinator.reset()


def run_sampling(
    coordinator: MC3Coordinator,
    generations: int,
    monitor_interval: int = 1,
    progress: bool = True,
) -> None:
    generations = int(generations)
    monitor_interval = int(monitor_interval)
    if generations < 0:
        raise ValueError("generations must be non-negative")
    if monitor_interval < 1:
        raise ValueError("monitor_interval must be >= 1")

    coordinator.write_monitor_headers()
    coordinator.start_monitors(generations)
    coordinator.monitor(coordinator.generation)

    pl = _progress(coordinator, generations, "sampling", progress)
    try:
        for _ in range(generations):
            coordinator.next_cycle(post_burnin=True)
            if coordinator.generation % monitor_interval == 0:
                coordinator.monitor(coordinator.generation)
            if pl is not None:
                pl.update()
    finally:
        coordinator.finish_monitors()
    if pl is not None:
        pl.finish()


def run_mc3(
    coordinator: MC3Coordinator,
    generations: int,
    burnin: int = 0,
    tuning_interval: int = 100,
    monitor_interval: int = 1,
    monitors: Optional[Sequence[Any]] = None,
    progress: bool = True,
) -> Dict[str, Any]:
    """
    burn-in + 采样的完整一次运行。

    Parameters
    ----------
    monitors : 追加给冷链所在主进程的 monitor（例如 TraceMonitor）
    """
    for m in monitors or ():
        coordinator.add_monitor(m)

    if coordinator.group.is_leader:
        logger.info("MC3 run: %d chains, swap=%s, burnin=%d, generations=%d, processes=%d",
                    coordinator.num_chains, coordinator.swap_method, int(burnin), int(generations),
                    coordinator.group.size)
        for line in coordinator.strategy_description().splitlines():
            logger.debug(line)

    run_burnin(coordinator, burnin, tuning_interval=tuning_interval, progress=progress)
    run_sampling(coordinator, generations, monitor_interval=monitor_interval, progress=progress)

    if coordinator.group.is_leader:
        logger.info("cold chain after sampling: %d; neighbour swap rates %s",
                    coordinator.cold_chain_index(),
                    [round(float(x), 4) for x in coordinator.stats.neighbor_rates()])
    return coordinator.summary()
