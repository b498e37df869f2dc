# -*- coding: utf-8 -*-
"""
    交换统计（按温度 rank 索引的 N×N 计数矩阵）

attempted[a][b] / accepted[a][b]：从 rank a 的链与 rank b 的链发起的交换次数与接受次数，
rank 取交换发生“之前”的值。矩阵在热度调节后或显式 reset() 时清零。
"""

from __future__ import annotations

from typing import Any, Dict, Tuple

import numpy as np

__all__ = ["SwapStatistics"]


class SwapStatistics:
    def __init__(self, num_chains: int) -> None:
        n = int(num_chains)
        if n < 1:
            raise ValueError("num_chains must be >= 1")
        self.num_chains = n
        self.attempted = np.zeros((n, n), dtype=np.uint64)
        self.accepted = np.zeros((n, n), dtype=np.uint64)

    def record_attempt(self, rank_from: int, rank_to: int) -> None:
        self.attempted[int(rank_from), int(rank_to)] += 1

    def record_accept(self, rank_from: int, rank_to: int) -> None:
        self.accepted[int(rank_from), int(rank_to)] += 1

    def reset(self) -> None:
        self.attempted.fill(0)
        self.accepted.fill(0)

    def acceptance_ratio(self, rank_from: int, rank_to: int) -> float:
        """accepted / attempted；从未尝试时返回 0.0。"""
        tried = int(self.attempted[int(rank_from), int(rank_to)])
        if tried == 0:
            return 0.0
        return int(self.accepted[int(rank_from), int(rank_to)]) / tried

    def pair_counts(self, rank: int) -> Tuple[int, int]:
        """相邻 rank (rank-1, rank) 双向合计的 (attempted, accepted)。"""
        a, b = int(rank) - 1, int(rank)
        if a < 0 or b >= self.num_chains:
            raise IndexError(f"rank {rank} has no lower neighbour in a ladder of {self.num_chains}")
        tried = int(self.attempted[a, b]) + int(self.attempted[b, a])
        acc = int(self.accepted[a, b]) + int(self.accepted[b, a])
        return tried, acc

    def neighbor_rates(self) -> np.ndarray:
        """长度 N-1：相邻 rank 对的合计接受率（未尝试为 0）。"""
        out = np.zeros(max(0, self.num_chains - 1), dtype=np.float64)
        for r in range(1, self.num_chains):
            tried, acc = self.pair_counts(r)
            out[r - 1] = acc / tried if tried > 0 else 0.0
        return out

    def rate_matrix(self) -> np.ndarray:
        att = self.attempted.astype(np.float64)
        out = np.zeros_like(att)
        np.divide(self.accepted.astype(np.float64), att, out=out, where=att > 0)
        return out

    @property
    def total_attempted(self) -> int:
        return int(self.attempted.sum())

    @property
    def total_accepted(self) -> int:
        return int(self.accepted.sum())

    def copy(self) -> "SwapStatistics":
        out = SwapStatistics(self.num_chains)
        out.attempted[:] = self.attempted
        out.accepted[:] = self.accepted
        return out

    def to_dict(self) -> Dict[str, Any]:
        return {"attempted": self.attempted.tolist(), "accepted": self.accepted.tolist()}

    @classmethod
    def from_arrays(cls, attempted: Any, accepted: Any) -> "SwapStatistics":
        att = np.asarray(attempted, dtype=np.uint64)
        acc = np.asarray(accepted, dtype=np.uint64)
        if att.ndim != 2 or att.shape[0] != att.shape[1] or att.shape != acc.shape:
            raise ValueError(f"attempted/accepted must be matching square matrices, got {att.shape} / {acc.shape}")
        if np.any(acc > att):
            raise ValueError("accepted exceeds attempted for some pair")
        out = cls(att.shape[0])
        out.attempted[:] = att
        out.accepted[:] = acc
        return out
