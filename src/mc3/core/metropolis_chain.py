# -*- coding: utf-8 -*-
"""
    参考单链实现：随机游走 Metropolis（实现 ChainHandle 协议）

实现功能：
    - 连续参数向量 x ∈ R^d，目标 ∝ exp(heat * (lnPrior(x) + likelihood_heat * lnL(x)))
    - 若干 ``RandomWalkMove``（高斯滑动，可只作用于部分坐标），各自带可调步长与计数
    - move 调度：'random'（按权重抽取，每轮总权重次）、'sequential'（按顺序）、'single'（每轮一次）
    - slot-bound RNG：每条链持有自己的 Philox Generator，种子由 (seed, chain_index) 派生，
      与该链被哪个进程持有无关，保证多进程运行可复现
    - monitor 挂载：本进程内所有链共享同一组 monitor 对象，只有冷链写入

``make_gaussian_chain`` 是顶层工厂函数（spawn 进程可 pickle），用于示例与测试。
"""

from __future__ import annotations

import copy
import logging
import math
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, List, Optional, Sequence

import numpy as np

from .chain import TuningRecord, check_snapshots_compatible

logger = logging.getLogger(__name__)

__all__ = [
    "RandomWalkMove",
    "MetropolisChain",
    "make_gaussian_chain",
    "gaussian_log_density",
    "bimodal_log_density",
]

LogDensity = Callable[[np.ndarray], float]

# 单个 move 的步长自适应目标（与热度调节使用同一缩放规则）
_MOVE_TARGET_RATE = 0.44
_SCHEDULE_TYPES = ("random", "sequential", "single")


def _make_generator(seed_seq: np.random.SeedSequence) -> np.random.Generator:
    return np.random.Generator(np.random.Philox(seed_seq))


# -----------------------------------------------------------------------------
# Move
# -----------------------------------------------------------------------------
@dataclass
class RandomWalkMove:
    name: str
    indices: Optional[Sequence[int]] = None   # None ⇒ 全部坐标
    scale: float = 1.0                        # 可调参数；tunable=False 时对外报告 NaN
    weight: float = 1.0
    tunable: bool = True
    target_rate: float = _MOVE_TARGET_RATE
    num_tried: int = 0
    num_accepted: int = 0

    def propose(self, x: np.ndarray, rng: np.random.Generator) -> np.ndarray:
        y = x.copy()
        if self.indices is None:
            y += rng.normal(0.0, self.scale, size=x.shape)
        else:
            idx = np.asarray(self.indices, dtype=np.int64)
            y[idx] += rng.normal(0.0, self.scale, size=idx.size)
        return y

    def tune(self) -> None:
        if not self.tunable or self.num_tried == 0:
            return
        rate = self.num_accepted / self.num_tried
        if rate > self.target_rate:
            self.scale *= 1.0 + (rate - self.target_rate) / (1.0 - self.target_rate)
        else:
            self.scale /= 2.0 - rate / self.target_rate

    def reset_counters(self) -> None:
        self.num_tried = 0
        self.num_accepted = 0

    def snapshot(self) -> TuningRecord:
        return TuningRecord(
            move_name=self.name,
            num_tried=int(self.num_tried),
            num_accepted=int(self.num_accepted),
            tuning_parameter=float(self.scale) if self.tunable else math.nan,
        )

    def restore(self, rec: TuningRecord) -> None:
        self.num_tried = int(rec.num_tried)
        self.num_accepted = int(rec.num_accepted)
        if self.tunable:
            self.scale = float(rec.tuning_parameter)


# -----------------------------------------------------------------------------
# Chain
# -----------------------------------------------------------------------------
class MetropolisChain:
    """
    随机游走 Metropolis 链。

    Parameters
    ----------
    log_prior, log_likelihood : x → float（未加热的对数密度）
    initial : 初始参数向量
    moves : RandomWalkMove 列表；None ⇒ 单个全坐标 move
    seed : 根种子；实际 RNG 由 (seed, chain_index) 派生
    start_sampler : rng → x，用于 redraw_starting_values；None ⇒ 在 initial 附近抖动
    """

    def __init__(
        self,
        log_prior: LogDensity,
        log_likelihood: LogDensity,
        initial: Sequence[float],
        moves: Optional[List[RandomWalkMove]] = None,
        seed: int = 0,
        schedule_type: str = "random",
        start_sampler: Optional[Callable[[np.random.Generator], np.ndarray]] = None,
    ) -> None:
        self.log_prior = log_prior
        self.log_likelihood = log_likelihood
        self.initial = np.asarray(initial, dtype=np.float64).copy()
        self.x = self.initial.copy()
        self.moves: List[RandomWalkMove] = moves if moves is not None else [RandomWalkMove("slide_all")]
        self.seed = int(seed)
        self.start_sampler = start_sampler
        self.set_schedule_type(schedule_type)

        self.heat = 1.0
        self.likelihood_heat = 1.0
        self.active = True
        self.prior_only = False
        self.chain_index = 0
        self.process_range = (0, 1)
        self.generation = 0

        self.monitors: List[Any] = []
        self.rng = _make_generator(np.random.SeedSequence(self.seed))
        self._refresh()

    # -------------------------
    # 内部
    # -------------------------
    def _refresh(self) -> None:
        self._ln_prior = float(self.log_prior(self.x))
        self._ln_lik = float(self.log_likelihood(self.x))

    def _tempered(self, ln_prior: float, ln_lik: float) -> float:
        lik = 0.0 if self.prior_only else self.likelihood_heat * ln_lik
        return self.heat * (ln_prior + lik)

    def _schedule(self) -> List[RandomWalkMove]:
        weights = np.asarray([m.weight for m in self.moves], dtype=np.float64)
        if self.schedule_type == "sequential":
            out: List[RandomWalkMove] = []
            for m in self.moves:
                out.extend([m] * max(1, int(round(m.weight))))
            return out
        probs = weights / weights.sum()
        n_draws = 1 if self.schedule_type == "single" else max(1, int(round(weights.sum())))
        picks = self.rng.choice(len(self.moves), size=n_draws, p=probs)
        return [self.moves[int(i)] for i in picks]

    def _step(self, move: RandomWalkMove) -> None:
        y = move.propose(self.x, self.rng)
        lp_y = float(self.log_prior(y))
        move.num_tried += 1
        if not math.isfinite(lp_y):
            return
        ll_y = float(self.log_likelihood(y))
        ln_a = self._tempered(lp_y, ll_y) - self._tempered(self._ln_prior, self._ln_lik)
        if ln_a >= 0.0 or self.rng.random() < math.exp(max(ln_a, -700.0)):
            self.x = y
            self._ln_prior, self._ln_lik = lp_y, ll_y
            move.num_accepted += 1

    # -------------------------
    # ChainHandle: 推进与读取
    # -------------------------
    def advance_one_cycle(self, post_burnin: bool) -> None:
        for move in self._schedule():
            self._step(move)
        self.generation += 1

    def get_log_probability(self, likelihood_only: bool = False) -> float:
        """未乘 heat 的能量，与 _tempered 采样的目标一致（prior_only / likelihood_heat 均计入）。"""
        lik = 0.0 if self.prior_only else self.likelihood_heat * self._ln_lik
        if likelihood_only:
            return lik
        return self._ln_prior + lik

    # -------------------------
    # 热度
    # -------------------------
    def get_heat(self) -> float:
        return self.heat

    def set_heat(self, heat: float) -> None:
        h = float(heat)
        if not (0.0 < h <= 1.0):
            raise ValueError(f"heat must lie in (0, 1], got {h}")
        self.heat = h

    def set_likelihood_heat(self, heat: float) -> None:
        self.likelihood_heat = float(heat)

    def set_active(self, active: bool) -> None:
        self.active = bool(active)

    def is_active(self) -> bool:
        return self.active

    # -------------------------
    # 调参
    # -------------------------
    def get_tuning_snapshot(self) -> List[TuningRecord]:
        return [m.snapshot() for m in self.moves]

    def set_tuning_snapshot(self, records: Sequence[TuningRecord]) -> None:
        check_snapshots_compatible(self.get_tuning_snapshot(), records)
        for m, rec in zip(self.moves, records):
            m.restore(rec)

    def tune(self) -> None:
        for m in self.moves:
            m.tune()

    def reset_counters(self) -> None:
        for m in self.moves:
            m.reset_counters()

    # -------------------------
    # 复制与放置
    # -------------------------
    def clone(self) -> "MetropolisChain":
        other = copy.copy(self)
        other.x = self.x.copy()
        other.initial = self.initial.copy()
        other.moves = [copy.copy(m) for m in self.moves]
        other.monitors = list(self.monitors)
        other.rng = _make_generator(np.random.SeedSequence(self.seed, spawn_key=(self.chain_index,)))
        return other

    def set_chain_index(self, index: int) -> None:
        self.chain_index = int(index)
        self.rng = _make_generator(np.random.SeedSequence(self.seed, spawn_key=(self.chain_index,)))

    def set_process_range(self, first: int, count: int) -> None:
        self.process_range = (int(first), int(count))

    def set_schedule_type(self, schedule_type: str) -> None:
        if schedule_type not in _SCHEDULE_TYPES:
            raise ValueError(f"schedule_type must be one of {_SCHEDULE_TYPES}, got {schedule_type!r}")
        self.schedule_type = schedule_type

    # -------------------------
    # 生命周期
    # -------------------------
    def initialize(self, prior_only: bool = False) -> None:
        self.prior_only = bool(prior_only)
        self.generation = 0
        self._refresh()

    def redraw_starting_values(self) -> None:
        if self.start_sampler is not None:
            self.x = np.asarray(self.start_sampler(self.rng), dtype=np.float64).copy()
        else:
            self.x = self.initial + self.rng.normal(0.0, 1.0, size=self.initial.shape)
        self._refresh()

    def add_monitor(self, monitor: Any) -> None:
        self.monitors.append(monitor)

    def remove_monitors(self) -> None:
        self.monitors = []

    def start_monitors(self, num_cycles: int) -> None:
        for m in self.monitors:
            m.open(num_cycles)

    def monitor(self, generation: int) -> None:
        if not self.active:
            return
        for m in self.monitors:
            m.record(generation, self)

    def write_monitor_headers(self) -> None:
        for m in self.monitors:
            m.write_header(self)

    def finish_monitors(self, n_reps: Optional[int] = None) -> None:
        for m in self.monitors:
            if n_reps is None:
                m.close()
            else:
                m.close(n_reps)

    def add_file_monitor_extension(self, extension: str, directory: bool = False) -> None:
        for m in self.monitors:
            add = getattr(m, "add_file_extension", None)
            if add is not None:
                add(extension, directory)

    def disable_screen_monitor(self, all_chains: bool, replicate: int) -> None:
        """第 0 个 replicate 保留屏幕输出，除非 all_chains=True。"""
        if not all_chains and int(replicate) == 0:
            return
        for m in self.monitors:
            if getattr(m, "is_screen_monitor", False):
                m.enabled = False

    # -------------------------
    # 报告
    # -------------------------
    def strategy_description(self) -> str:
        names = ", ".join(m.name for m in self.moves)
        return f"Random-walk Metropolis with {len(self.moves)} move(s) [{names}], schedule '{self.schedule_type}'."

    def operator_summary(self) -> str:
        lines = [f"chain {self.chain_index} (heat={self.heat:.4f})",
                 f"{'move':<20s} {'tried':>10s} {'accepted':>10s} {'ratio':>8s} {'scale':>10s}"]
        for m in self.moves:
            scale = f"{m.scale:10.4f}" if m.tunable else f"{'-':>10s}"
            rate = m.num_accepted / m.num_tried if m.num_tried else 0.0
            lines.append(f"{m.name:<20s} {m.num_tried:>10d} {m.num_accepted:>10d} {rate:>8.4f} {scale}")
        return "\n".join(lines)

    @property
    def state(self) -> np.ndarray:
        return self.x.copy()


# -----------------------------------------------------------------------------
# 示例目标密度 & 工厂
# -----------------------------------------------------------------------------
def gaussian_log_density(x: np.ndarray, mean: float = 0.0, sd: float = 1.0) -> float:
    z = (np.asarray(x, dtype=np.float64) - mean) / sd
    return float(-0.5 * np.dot(z, z) - z.size * (math.log(sd) + 0.5 * math.log(2.0 * math.pi)))


def bimodal_log_density(x: np.ndarray, separation: float = 8.0, sd: float = 0.5) -> float:
    """两个等权高斯峰（位于 ±separation/2），冷链单独很难跨越。"""
    a = gaussian_log_density(x, mean=-0.5 * separation, sd=sd)
    b = gaussian_log_density(x, mean=0.5 * separation, sd=sd)
    m = max(a, b)
    return float(m + math.log(0.5 * math.exp(a - m) + 0.5 * math.exp(b - m)))


def _flat_log_prior(x: np.ndarray, bound: float) -> float:
    return 0.0 if bool(np.all(np.abs(x) <= bound)) else -math.inf


def make_gaussian_chain(
    dim: int = 1,
    seed: int = 0,
    bimodal: bool = False,
    separation: float = 8.0,
    bound: float = 50.0,
    scale: float = 1.0,
    schedule_type: str = "random",
) -> MetropolisChain:
    """构造一条一维/多维（可选双峰）高斯目标的模板链；全部由顶层函数组成，可被 pickle。"""
    lik = partial(bimodal_log_density, separation=separation) if bimodal else gaussian_log_density
    moves = [RandomWalkMove("slide_all", scale=scale)]
    if dim > 1:
        moves += [RandomWalkMove(f"slide_{i}", indices=[i], scale=scale) for i in range(dim)]
    moves.append(RandomWalkMove("jitter", scale=0.01, weight=0.5, tunable=False))
    return MetropolisChain(
        log_prior=partial(_flat_log_prior, bound=bound),
        log_likelihood=lik,
        initial=np.zeros(int(dim)),
        moves=moves,
        seed=seed,
        schedule_type=schedule_type,
    )
