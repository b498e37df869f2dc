# -*- coding: utf-8 -*-
"""
    链 → 进程分配

把 N 条链映射到 P 个进程（rank 0..P-1）上：

    ppc   = P / N
    first = floor(i * ppc)
    count = max(1, floor((i + 1) * ppc) - first)

- P >= N：每条链占据一段连续、互不重叠的进程区间，区间之并为 [0, P)
- P <  N：多条链共享同一个进程（count 被强制为 1）

区间的第一个进程为该链的主进程：只有它在 gather 时贡献该链的数值，并负责 monitor 输出。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List

__all__ = ["ProcessRange", "assign_processes", "chains_for_process", "primary_owner_map"]


@dataclass(frozen=True)
class ProcessRange:
    first: int
    count: int

    def contains(self, rank: int) -> bool:
        return self.first <= int(rank) < self.first + self.count

    @property
    def primary(self) -> int:
        return self.first


def assign_processes(num_chains: int, num_processes: int) -> List[ProcessRange]:
    """返回按链编号排列的进程区间列表。"""
    n = int(num_chains)
    p = int(num_processes)
    if n < 1:
        raise ValueError("num_chains must be >= 1")
    if p < 1:
        raise ValueError("num_processes must be >= 1")
    out: List[ProcessRange] = []
    for i in range(n):
        # floor(i * P / N)，整数运算避免浮点误差
        first = (i * p) // n
        count = ((i + 1) * p) // n - first
        out.append(ProcessRange(first=first, count=max(1, count)))
    return out


def chains_for_process(ranges: List[ProcessRange], rank: int) -> List[int]:
    """rank 进程需要实例化的链编号。"""
    return [i for i, r in enumerate(ranges) if r.contains(rank)]


def primary_owner_map(ranges: List[ProcessRange]) -> Dict[int, int]:
    """链编号 → 主进程 rank。"""
    return {i: r.primary for i, r in enumerate(ranges)}
