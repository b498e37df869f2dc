# -*- coding: utf-8 -*-
"""
    热度交换：交换对选择与 Metropolis 接受判据

接受判据（链 j、k，热度 h，未加热对数后验 lnP）：

    lnR = h_j (lnP_k - lnP_j) + h_k (lnP_j - lnP_k)
        = (h_j - h_k) (lnP_k - lnP_j)

    lnR >= 0      → 接受（不抽随机数）
    lnR <  -100   → 拒绝（不抽随机数）
    其它          → 抽一次 u ~ U(0,1)，u < exp(lnR) 时接受

交换对：
    - neighbor: 抽 r ~ U{0..N-2}，交换 heat_ranks[r] 与 heat_ranks[r+1]（按 rank 相邻，而非按编号相邻）
    - random:   抽 j ~ U{0..N-1}，再拒绝采样 k 直到 k != j

所有随机数只来自 leader 的 Generator；N < 2 时不抽随机数，直接返回 None。
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np

from .ladder import HeatLadder

__all__ = [
    "MIN_LOG_RATIO",
    "SwapDecision",
    "swap_log_ratio",
    "accept_swap",
    "select_neighbor_pair",
    "select_random_pair",
]

# lnR 低于此值直接拒绝（exp(-100) ≈ 3.7e-44）
MIN_LOG_RATIO = -100.0


@dataclass(frozen=True)
class SwapDecision:
    """leader 做出的单次交换决策；其它进程按原样重放。"""
    kind: str            # 'neighbor' | 'random'
    j: int
    k: int
    accepted: bool
    ln_ratio: float = math.nan

    def to_tuple(self) -> Tuple[str, int, int, bool, float]:
        return (self.kind, int(self.j), int(self.k), bool(self.accepted), float(self.ln_ratio))

    @classmethod
    def from_tuple(cls, t) -> "SwapDecision":
        kind, j, k, accepted, ln_ratio = t
        return cls(str(kind), int(j), int(k), bool(accepted), float(ln_ratio))


def swap_log_ratio(heat_j: float, heat_k: float, lnp_j: float, lnp_k: float) -> float:
    """交换 j、k 热度的对数接受比。"""
    # 因式形式：lnP 之一为 -inf 时不会出现 inf - inf
    return (float(heat_j) - float(heat_k)) * (float(lnp_k) - float(lnp_j))


def accept_swap(ln_ratio: float, rng: np.random.Generator) -> bool:
    """Metropolis 判据；仅在 MIN_LOG_RATIO <= lnR < 0 时消耗一个 uniform。"""
    if ln_ratio >= 0.0:
        return True
    if not (ln_ratio >= MIN_LOG_RATIO):
        # lnR < -100 或 NaN
        return False
    u = rng.random()
    return bool(u < math.exp(ln_ratio))


def select_neighbor_pair(ladder: HeatLadder, rng: np.random.Generator) -> Optional[Tuple[int, int]]:
    """按 rank 相邻选一对链；返回 (j, k)，j 为较冷一侧。"""
    n = ladder.num_chains
    if n < 2:
        return None
    r = int(rng.integers(0, n - 1))
    return ladder.chain_at(r), ladder.chain_at(r + 1)


def select_random_pair(num_chains: int, rng: np.random.Generator) -> Optional[Tuple[int, int]]:
    """任意两条不同的链。"""
    n = int(num_chains)
    if n < 2:
        return None
    j = int(rng.integers(0, n))
    k = j
    while k == j:
        k = int(rng.integers(0, n))
    return j, k
