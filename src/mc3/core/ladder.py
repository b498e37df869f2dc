# -*- coding: utf-8 -*-
"""
    热度梯子（HeatLadder）与 rank 映射

实现功能：
    - 初始化：显式热度向量，或 heat_i = 1 / (1 + delta * i)
    - ``heat_ranks[r]`` = 处于第 r 档热度（0 为最冷）的链编号，始终是 [0, N) 的一个排列
    - ``swap(j, k)``: 交换两条链的热度与 rank 映射项（接受交换时调用，两次交换即恢复原状）
    - ``set_heats_by_rank``: 热度调节器按 rank 顺序写回新热度
    - ``check_invariants``: 恰有一条冷链（heat == 1.0）且 rank 映射为排列

注意：
    heats 按“链编号”索引，而不是按 rank；冷链编号随交换而变化。
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence

import numpy as np

__all__ = ["compute_heat", "HeatLadder"]


def compute_heat(delta: float, index: int) -> float:
    """增量热度公式：1 / (1 + delta * index)。"""
    return 1.0 / (1.0 + float(delta) * int(index))


class HeatLadder:
    """
    N 条链的热度与 rank 映射。

    Parameters
    ----------
    heats : 按链编号排列的初始热度，必须单调不增、每个值在 (0, 1]、恰有一个 1.0。
    heat_ranks : 可选的 rank → 链编号 映射（默认恒等；restore 时使用）。
    """

    def __init__(self, heats: Sequence[float], heat_ranks: Optional[Sequence[int]] = None) -> None:
        h = np.asarray(heats, dtype=np.float64).copy()
        if h.ndim != 1 or h.size < 1:
            raise ValueError("heats must be a non-empty 1D sequence")
        if not np.all((h > 0.0) & (h <= 1.0)):
            raise ValueError(f"every heat must lie in (0, 1], got {h.tolist()}")
        if int(np.count_nonzero(h == 1.0)) != 1:
            raise ValueError(f"exactly one heat must equal 1.0 (the cold chain), got {h.tolist()}")

        if heat_ranks is None:
            if np.any(np.diff(h) > 0.0):
                raise ValueError(f"initial heats must be non-increasing, got {h.tolist()}")
            ranks = np.arange(h.size, dtype=np.int64)
        else:
            ranks = np.asarray(heat_ranks, dtype=np.int64).copy()

        self.heats: np.ndarray = h
        self.heat_ranks: np.ndarray = ranks
        self._rank_of = np.empty_like(ranks)
        self._rebuild_rank_index()
        self.check_invariants()

    # -------------------------
    # 构造
    # -------------------------
    @classmethod
    def from_delta(cls, num_chains: int, delta: float) -> "HeatLadder":
        n = int(num_chains)
        if n < 1:
            raise ValueError("num_chains must be >= 1")
        if not (float(delta) > 0.0) and n > 1:
            raise ValueError(f"delta must be positive, got {delta}")
        return cls([compute_heat(delta, i) for i in range(n)])

    @classmethod
    def from_config(cls, num_chains: int, delta: float = 0.2, heats: Optional[Sequence[float]] = None) -> "HeatLadder":
        """显式 heats 优先；否则按 delta 生成。"""
        if heats is not None:
            if len(heats) != int(num_chains):
                raise ValueError(f"heats length ({len(heats)}) must equal num_chains ({num_chains})")
            return cls(heats)
        return cls.from_delta(num_chains, delta)

    def copy(self) -> "HeatLadder":
        return HeatLadder(self.heats, heat_ranks=self.heat_ranks)

    # -------------------------
    # 查询
    # -------------------------
    @property
    def num_chains(self) -> int:
        return int(self.heats.size)

    def rank_of(self, chain: int) -> int:
        return int(self._rank_of[int(chain)])

    def chain_at(self, rank: int) -> int:
        return int(self.heat_ranks[int(rank)])

    def heat_at_rank(self, rank: int) -> float:
        return float(self.heats[self.heat_ranks[int(rank)]])

    def heats_by_rank(self) -> np.ndarray:
        return self.heats[self.heat_ranks].copy()

    def cold_chain(self) -> int:
        """当前冷链（heat == 1.0）的链编号。"""
        return int(self.heat_ranks[0])

    def active_flags(self) -> np.ndarray:
        return self.heats == 1.0

    # -------------------------
    # 修改
    # -------------------------
    def swap(self, j: int, k: int) -> None:
        """交换链 j 与 k 的热度及其在 rank 映射中的位置。"""
        j, k = int(j), int(k)
        if j == k:
            return
        rj, rk = self._rank_of[j], self._rank_of[k]
        self.heats[j], self.heats[k] = self.heats[k], self.heats[j]
        self.heat_ranks[rj], self.heat_ranks[rk] = k, j
        self._rank_of[j], self._rank_of[k] = rk, rj

    def set_heats_by_rank(self, heats_by_rank: Sequence[float]) -> None:
        """按 rank 顺序写入热度（rank 映射不变）。"""
        hb = np.asarray(heats_by_rank, dtype=np.float64)
        if hb.shape != self.heats.shape:
            raise ValueError(f"expected {self.num_chains} heats, got {hb.size}")
        self.heats[self.heat_ranks] = hb

    def replace(self, heats: Sequence[float], heat_ranks: Sequence[int]) -> None:
        """整体替换为同步得到的热度与 rank 映射（逐元素校验）。"""
        h = np.asarray(heats, dtype=np.float64)
        r = np.asarray(heat_ranks, dtype=np.int64)
        if h.shape != self.heats.shape or r.shape != self.heat_ranks.shape:
            raise ValueError("replacement ladder has a different number of chains")
        self.heats[:] = h
        self.heat_ranks[:] = r
        self._rebuild_rank_index()
        self.check_invariants()

    def _rebuild_rank_index(self) -> None:
        if sorted(self.heat_ranks.tolist()) != list(range(self.heat_ranks.size)):
            raise ValueError(f"heat_ranks must be a permutation of 0..{self.heat_ranks.size - 1}, "
                             f"got {self.heat_ranks.tolist()}")
        self._rank_of[self.heat_ranks] = np.arange(self.heat_ranks.size, dtype=np.int64)

    # -------------------------
    # 不变量
    # -------------------------
    def check_invariants(self) -> None:
        """恰有一条冷链、rank 映射是排列、且按 rank 热度单调不增。"""
        if int(np.count_nonzero(self.heats == 1.0)) != 1:
            raise AssertionError(f"expected exactly one cold chain, heats={self.heats.tolist()}")
        if sorted(self.heat_ranks.tolist()) != list(range(self.num_chains)):
            raise AssertionError(f"heat_ranks is not a permutation: {self.heat_ranks.tolist()}")
        if self.heats[self.heat_ranks[0]] != 1.0:
            raise AssertionError("rank 0 must hold the cold chain")
        if np.any(np.diff(self.heats_by_rank()) > 0.0):
            raise AssertionError(f"heats are not non-increasing by rank: {self.heats_by_rank().tolist()}")

    # -------------------------
    # 序列化
    # -------------------------
    def to_dict(self) -> Dict[str, Any]:
        return {"heats": self.heats.tolist(), "heat_ranks": self.heat_ranks.tolist()}

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "HeatLadder":
        return cls(d["heats"], heat_ranks=d["heat_ranks"])

    def __repr__(self) -> str:
        hb = ", ".join(f"{h:.4f}" for h in self.heats_by_rank())
        return f"HeatLadder(n={self.num_chains}, by_rank=[{hb}], cold={self.cold_chain()})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, HeatLadder):
            return NotImplemented
        return bool(np.array_equal(self.heats, other.heats) and np.array_equal(self.heat_ranks, other.heat_ranks))

    __hash__ = None  # type: ignore[assignment]
