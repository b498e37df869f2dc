# -*- coding: utf-8 -*-
"""
    交换摘要（文本表格 + JSON 友好的字典）

表格每行对应一个有序 rank 对 "a to b"（rank 从 1 开始编号）：
    - 只用 neighbor：相邻 rank 的两个方向
    - random / both：所有有序 rank 对
"""

from __future__ import annotations

from typing import Any, Dict, Iterator, List, Optional, Tuple

import numpy as np

from ..core.ladder import HeatLadder
from .swap_statistics import SwapStatistics

__all__ = ["summary_pairs", "format_swap_summary", "swap_summary_dict"]

_RULE = "=" * 127


def summary_pairs(num_chains: int, use_neighbor: bool = True, use_random: bool = False) -> Iterator[Tuple[int, int]]:
    """按表格顺序生成 (rank_from, rank_to)。"""
    n = int(num_chains)
    if use_random:
        for i in range(n - 1):
            for j in range(i + 1, n):
                yield i, j
                yield j, i
    elif use_neighbor:
        for i in range(n - 1):
            yield i, i + 1
        for i in range(1, n):
            yield i, i - 1


def format_swap_summary(
    stats: SwapStatistics,
    ladder: HeatLadder,
    use_neighbor: bool = True,
    use_random: bool = False,
    swap_interval: int = 1,
    swap_interval2: Optional[int] = None,
) -> str:
    both = use_neighbor and use_random
    if both:
        header = ("MCMCMC chains swapping between|swapIntervalNeighbor|swapIntervalRandom"
                  "| Tried | Accepted | Acc. Ratio |  HeatFrom  |  HeatTo   ")
    else:
        header = ("MCMCMC chains swapping between|              swapInterval             "
                  "| Tried | Accepted | Acc. Ratio |  HeatFrom  |  HeatTo   ")
    lines: List[str] = [header, _RULE]

    heats = ladder.heats_by_rank()
    for a, b in summary_pairs(stats.num_chains, use_neighbor, use_random):
        label = f"{a + 1} to {b + 1}"
        if both:
            interval = f"{swap_interval:>19d} {swap_interval2 if swap_interval2 is not None else swap_interval:>17d}"
        else:
            interval = f"{swap_interval2 if (use_random and swap_interval2) else swap_interval:>37d}"
        tried = int(stats.attempted[a, b])
        acc = int(stats.accepted[a, b])
        ratio = stats.acceptance_ratio(a, b)
        lines.append(f"{label:<31s}{interval} {tried:>7d} {acc:>10d} {ratio:>12.4f} "
                     f"{heats[a]:>12.4f} {heats[b]:>11.4f}")
    return "\n".join(lines)


def swap_summary_dict(stats: SwapStatistics, ladder: HeatLadder) -> Dict[str, Any]:
    """交换统计与热度梯子的字典形式（可直接写 JSON / YAML）。"""
    rates = stats.neighbor_rates()
    return {
        "num_chains": int(stats.num_chains),
        "heats": ladder.heats.tolist(),
        "heat_ranks": ladder.heat_ranks.tolist(),
        "heats_by_rank": ladder.heats_by_rank().tolist(),
        "cold_chain": ladder.cold_chain(),
        "attempted": stats.attempted.tolist(),
        "accepted": stats.accepted.tolist(),
        "total_attempted": stats.total_attempted,
        "total_accepted": stats.total_accepted,
        "neighbor_rates": [float(x) for x in np.asarray(rates)],
    }
