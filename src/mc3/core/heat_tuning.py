# -*- coding: utf-8 -*-
"""
    热度自动调节（基于相邻 rank 的交换接受率）

对每对相邻 rank (r-1, r)：
    - 合计两个方向的尝试/接受次数；尝试次数 <= 2 时该间隔不变
    - rate > target:  gap *= 1 + (rate - target) / (1 - target)
    - 否则:           gap /= 2 - rate / target

然后从冷链 (rank 0, heat 1.0) 出发依次 heat_r = heat_{r-1} - gap_{r-1}。
若某个 rank j 的热度低于下界 floor（或非最热链恰好等于 floor），则 j 及更热的链改为在 [floor, heat_{j-1}) 上几何插值：

    rho    = (heat_{j-1} / floor) ** (1 / (N - j))
    heat_k = heat_{j-1} / rho ** (k + 1 - j),   k = j .. N-1

最热的链恰好等于 floor，且整条梯子严格递减。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from .ladder import HeatLadder

logger = logging.getLogger(__name__)

__all__ = ["DEFAULT_TARGET", "HEAT_FLOOR", "MIN_PAIR_ATTEMPTS", "HeatTuningResult", "adjust_gap", "tune_heats"]

DEFAULT_TARGET = 0.23
HEAT_FLOOR = 0.01
# 合计尝试次数必须严格大于此值才调节
MIN_PAIR_ATTEMPTS = 2


@dataclass
class HeatTuningResult:
    heats_before: np.ndarray          # 按 rank
    heats_after: np.ndarray           # 按 rank
    rates: np.ndarray                 # 长度 N-1；未调节的间隔为 NaN
    floor_rank: Optional[int] = None  # 触发下界插值的第一个 rank
    notes: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return not np.array_equal(self.heats_before, self.heats_after)


def adjust_gap(gap: float, rate: float, target: float = DEFAULT_TARGET) -> float:
    """按接受率缩放单个热度间隔。"""
    if rate > target:
        return gap * (1.0 + (rate - target) / (1.0 - target))
    return gap / (2.0 - rate / target)


def tune_heats(
    ladder: HeatLadder,
    stats,
    target: float = DEFAULT_TARGET,
    floor: float = HEAT_FLOOR,
) -> HeatTuningResult:
    """
    原地更新 ladder 的热度（rank 映射不变）并返回调节记录。
    stats 为 SwapStatistics（或任何提供 pair_counts(rank) 的对象）；本函数不清零统计。
    """
    if not (0.0 < target < 1.0):
        raise ValueError("target must be in (0, 1)")
    if not (0.0 < floor < 1.0):
        raise ValueError("floor must be in (0, 1)")

    n = ladder.num_chains
    before = ladder.heats_by_rank()
    rates = np.full(max(0, n - 1), np.nan, dtype=np.float64)
    if n < 2:
        return HeatTuningResult(heats_before=before, heats_after=before.copy(), rates=rates)

    gaps = before[:-1] - before[1:]
    for r in range(1, n):
        tried, acc = stats.pair_counts(r)
        if tried > MIN_PAIR_ATTEMPTS:
            rate = acc / tried
            rates[r - 1] = rate
            gaps[r - 1] = adjust_gap(float(gaps[r - 1]), rate, target)

    after = before.copy()
    floor_rank: Optional[int] = None
    for r in range(1, n):
        after[r] = after[r - 1] - gaps[r - 1]
        # 只有最热的链可以恰好落在下界上
        if after[r] < floor or (after[r] == floor and r < n - 1):
            floor_rank = r
            break

    notes: List[str] = []
    if floor_rank is not None:
        last_valid = float(after[floor_rank - 1])
        rho = (last_valid / floor) ** (1.0 / (n - floor_rank))
        for k in range(floor_rank, n):
            after[k] = last_valid / rho ** (k + 1 - floor_rank)
        notes.append(f"rank {floor_rank} fell below heat floor {floor}; "
                     f"ranks {floor_rank}..{n - 1} interpolated geometrically")

    ladder.set_heats_by_rank(after)
    logger.debug("heat tuning: rates=%s heats %s -> %s", np.round(rates, 4).tolist(),
                 np.round(before, 4).tolist(), np.round(after, 4).tolist())
    return HeatTuningResult(heats_before=before, heats_after=after, rates=rates,
                            floor_rank=floor_rank, notes=notes)
