# -*- coding: utf-8 -*-
"""
绘图封装（MC3 诊断）

实现功能：
    - 交换接受率热图（按温度 rank 的有序对）
    - 热度梯子：当前热度（按 rank）+ 可选的调节前对比，及相邻接受率
    - 冷链 trace：lnP 曲线与参数边缘直方图，冷链编号变化处标记
    - 支持多格式保存（png/pdf/svg）
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import matplotlib.pyplot as plt
import numpy as np

__all__ = ["save_figure", "plot_swap_acceptance", "plot_heat_ladder", "plot_trace"]

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# 保存工具
# -----------------------------------------------------------------------------
def save_figure(
    fig: Optional[plt.Figure] = None,
    path: str | os.PathLike | None = None,
    *,
    dpi: int = 150,
    tight: bool = True,
    formats: Optional[Sequence[str]] = None,
) -> str | List[str]:
    """
    若 path 带后缀，则只按该后缀保存；否则按 formats（默认 png）保存多个文件。
    """
    if path is None:
        raise ValueError("save_figure: 需要提供保存路径 path。")
    fig = fig if fig is not None else plt.gcf()
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    if formats is None:
        formats = [path.suffix.lstrip(".").lower()] if path.suffix else ["png"]
    else:
        formats = [f.lstrip(".").lower() for f in formats]
    stem = path.with_suffix("")

    if tight:
        fig.tight_layout()

    saved: List[str] = []
    for ext in formats:
        out_path = stem.with_suffix("." + ext)
        fig.savefig(out_path, dpi=dpi, bbox_inches="tight" if tight else None, facecolor=fig.get_facecolor())
        saved.append(str(out_path))
    logger.info("figure saved: %s", saved)
    return saved[0] if len(saved) == 1 else saved


def _maybe_save(fig: plt.Figure, save_path: Optional[str], dpi: int):
    if not save_path:
        return None
    return save_figure(fig=fig, path=save_path, dpi=dpi)


def _as_stats_arrays(stats: Any) -> Tuple[np.ndarray, np.ndarray]:
    """接受 SwapStatistics 或 summary() 字典。"""
    if isinstance(stats, dict):
        return np.asarray(stats["attempted"], dtype=np.float64), np.asarray(stats["accepted"], dtype=np.float64)
    return np.asarray(stats.attempted, dtype=np.float64), np.asarray(stats.accepted, dtype=np.float64)


# -----------------------------------------------------------------------------
# 1) 交换接受率
# -----------------------------------------------------------------------------
def plot_swap_acceptance(
    stats: Any,
    save_path: Optional[str] = None,
    dpi: int = 150,
    annotate: bool = True,
):
    """
    rank × rank 接受率热图；从未尝试的格子留白。
    stats: SwapStatistics 或带 'attempted'/'accepted' 的字典。
    """
    att, acc = _as_stats_arrays(stats)
    if att.ndim != 2 or att.shape != acc.shape or att.shape[0] != att.shape[1]:
        raise ValueError(f"attempted/accepted must be matching square matrices, got {att.shape} / {acc.shape}")
    n = att.shape[0]
    rates = np.full_like(att, np.nan)
    np.divide(acc, att, out=rates, where=att > 0)

    fig, ax = plt.subplots(figsize=(1.0 + 0.8 * n, 0.6 + 0.8 * n))
    im = ax.imshow(np.ma.masked_invalid(rates), vmin=0.0, vmax=1.0, cmap="viridis", origin="upper")
    fig.colorbar(im, ax=ax, label="acceptance ratio")
    ticks = np.arange(n)
    ax.set_xticks(ticks)
    ax.set_yticks(ticks)
    ax.set_xticklabels([str(i + 1) for i in ticks])
    ax.set_yticklabels([str(i + 1) for i in ticks])
    ax.set_xlabel("to rank")
    ax.set_ylabel("from rank")
    ax.set_title("MCMCMC swap acceptance")

    if annotate and n <= 12:
        for i in range(n):
            for j in range(n):
                if att[i, j] > 0:
                    ax.text(j, i, f"{rates[i, j]:.2f}\n({int(att[i, j])})", ha="center", va="center",
                            fontsize=7, color="white" if rates[i, j] < 0.5 else "black")

    _maybe_save(fig, save_path, dpi)
    return fig


# -----------------------------------------------------------------------------
# 2) 热度梯子
# -----------------------------------------------------------------------------
def plot_heat_ladder(
    heats_by_rank: Sequence[float],
    neighbor_rates: Optional[Sequence[float]] = None,
    heats_before: Optional[Sequence[float]] = None,
    target: Optional[float] = 0.23,
    save_path: Optional[str] = None,
    dpi: int = 150,
):
    """左：各 rank 的热度（可叠加调节前的热度）；右：相邻 rank 接受率与目标值。"""
    hb = np.asarray(heats_by_rank, dtype=np.float64).ravel()
    n = hb.size
    ranks = np.arange(n)
    ncols = 2 if neighbor_rates is not None else 1
    fig, axes = plt.subplots(1, ncols, figsize=(5.5 * ncols, 4.0))
    axes = np.atleast_1d(axes)

    ax = axes[0]
    if heats_before is not None:
        before = np.asarray(heats_before, dtype=np.float64).ravel()
        ax.plot(ranks, before, "o--", color="0.6", label="before tuning")
    ax.plot(ranks, hb, "o-", color="C0", label="current")
    ax.set_xlabel("rank")
    ax.set_ylabel("heat")
    ax.set_ylim(0.0, 1.05)
    ax.set_xticks(ranks)
    ax.set_title("Heat ladder")
    ax.legend(loc="upper right")

    if neighbor_rates is not None:
        rates = np.asarray(neighbor_rates, dtype=np.float64).ravel()
        if rates.size != max(0, n - 1):
            raise ValueError(f"expected {n - 1} neighbour rates, got {rates.size}")
        ax2 = axes[1]
        labels = [f"{r}-{r + 1}" for r in range(1, n)]
        ax2.bar(np.arange(rates.size), rates, color="C1")
        if target is not None:
            ax2.axhline(target, color="k", linestyle="--", linewidth=1.0, label=f"target {target:g}")
            ax2.legend(loc="upper right")
        ax2.set_xticks(np.arange(rates.size))
        ax2.set_xticklabels(labels)
        ax2.set_ylim(0.0, 1.0)
        ax2.set_xlabel("rank pair")
        ax2.set_ylabel("acceptance ratio")
        ax2.set_title("Neighbour swap acceptance")

    _maybe_save(fig, save_path, dpi)
    return fig


# -----------------------------------------------------------------------------
# 3) 冷链 trace
# -----------------------------------------------------------------------------
def plot_trace(
    trace: Dict[str, Any],
    parameter: int = 0,
    bins: int = 50,
    save_path: Optional[str] = None,
    dpi: int = 150,
):
    """trace: TraceMonitor.to_arrays() 或 load_trace() 的结果。"""
    for key in ("generation", "ln_posterior"):
        if key not in trace:
            raise KeyError(f"trace 需包含 {key!r}")
    gen = np.asarray(trace["generation"])
    lnp = np.asarray(trace["ln_posterior"], dtype=np.float64)
    state = np.asarray(trace.get("state", np.zeros((gen.size, 0))), dtype=np.float64)
    has_param = state.ndim == 2 and state.shape[1] > parameter

    fig, axes = plt.subplots(1, 2 if has_param else 1, figsize=(11.0 if has_param else 6.0, 3.8))
    axes = np.atleast_1d(axes)

    ax = axes[0]
    ax.plot(gen, lnp, lw=0.8, color="C0")
    if "chain" in trace and gen.size > 1:
        chain = np.asarray(trace["chain"])
        for g in gen[1:][np.diff(chain) != 0]:
            ax.axvline(g, color="C3", alpha=0.15, lw=0.8)
    ax.set_xlabel("generation")
    ax.set_ylabel("ln posterior (cold chain)")
    ax.set_title("Cold-chain trace")

    if has_param:
        ax2 = axes[1]
        ax2.hist(state[:, parameter], bins=bins, density=True, color="C2", alpha=0.8)
        ax2.set_xlabel(f"x[{parameter}]")
        ax2.set_ylabel("density")
        ax2.set_title("Marginal")

    _maybe_save(fig, save_path, dpi)
    return fig
