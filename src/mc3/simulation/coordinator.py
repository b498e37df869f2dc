# -*- coding: utf-8 -*-
"""
    MC3 协调器（Metropolis-coupled MCMC / parallel tempering）

N 条链以不同热度采样同一目标；每代推进本进程持有的链，并按周期尝试交换热度。

实现功能：
    - 链 → 进程分配（assign_processes），不持有的链槽为 ``Absent``，永不解引用
    - 同步：本进程主链的 (lnP, heat, tuning) 经 gather 汇集到 leader，再 broadcast 给所有进程
    - 交换：只有 leader 持有 swap RNG；leader 选对、判定并把决策序列广播，其它进程原样重放
      · neighbor：g % swap_interval  == 0 时尝试 1 次 rank 相邻交换
      · random：  g % swap_interval2 == 0 时尝试 N 次随机对交换
      两者独立触发，可在同一代都发生
    - 接受交换：交换热度、rank 映射、调参快照，重算冷链标记，并推送给本进程持有的链
    - 热度调节：tune() 按相邻 rank 接受率调整热度间隔，推送后调用每条链的 tune()，清零统计
    - 诊断：交换摘要表、策略描述、各链 move 摘要、summary() 字典
    - monitor 扇出：只作用于本进程的主链；支持重复运行的文件后缀、屏幕输出关闭与 n_reps 收尾

burn-in 与采样阶段使用各自独立的代计数器（均从 0 开始）；每次 next_cycle() 恰好推进一代。
"""

from __future__ import annotations

import copy
import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional

import numpy as np

from ..analysis.summary import format_swap_summary, swap_summary_dict
from ..analysis.swap_statistics import SwapStatistics
from ..core.assignment import ProcessRange, assign_processes
from ..core.chain import (
    Absent,
    ChainHandle,
    ChainSlot,
    Owned,
    TuningMismatchError,
    TuningRecord,
    owned_chains,
    slot_chain,
    swap_tuning_snapshots,
)
from ..core.exchange import (
    SwapDecision,
    accept_swap,
    select_neighbor_pair,
    select_random_pair,
    swap_log_ratio,
)
from ..core.heat_tuning import HEAT_FLOOR, HeatTuningResult, tune_heats
from ..core.ladder import HeatLadder
from ..utils.config import MC3Config
from .sync import ProcessGroup, SerialGroup, SynchronizationError

logger = logging.getLogger(__name__)

__all__ = ["MC3Coordinator", "make_swap_rng"]


def make_swap_rng(seed: Optional[int]) -> np.random.Generator:
    """leader 的 swap RNG（Philox）；seed=None 时取系统熵。"""
    return np.random.Generator(np.random.Philox(np.random.SeedSequence(seed)))


class MC3Coordinator:
    """
    Parameters
    ----------
    template : 模板链（ChainHandle）；每条链由 template.clone() 构造
    config : MC3Config；也可直接以关键字参数给出字段（覆盖 config 中的同名字段）
    group : 进程组；None ⇒ SerialGroup（单进程）
    """

    def __init__(
        self,
        template: ChainHandle,
        config: Optional[MC3Config] = None,
        group: Optional[ProcessGroup] = None,
        **overrides: Any,
    ) -> None:
        if config is None:
            config = MC3Config(**overrides)
        elif overrides:
            config = replace(config, **overrides)
        self.config = config
        self.template = template

        self.num_chains = int(config.num_chains)
        self.use_neighbor_swapping = config.swap_method in ("neighbor", "both")
        self.use_random_swapping = config.swap_method in ("random", "both")
        self.swap_interval = int(config.swap_interval)
        self.swap_interval2 = int(config.random_interval)
        self.tune_heat = bool(config.tune_heat)
        self.tune_heat_target = float(config.tune_heat_target)
        self.schedule_type = config.schedule_type

        self.group: ProcessGroup = group if group is not None else SerialGroup()
        if self.group.leader != int(config.leader):
            raise ValueError(f"process group leader ({self.group.leader}) differs from configured "
                             f"leader ({config.leader})")
        self.rng: Optional[np.random.Generator] = make_swap_rng(config.seed) if self.group.is_leader else None

        self.generation = 0
        self.burnin_generation = 0
        self.stats = SwapStatistics(self.num_chains)
        self.last_tuning: Optional[HeatTuningResult] = None

        self.ranges: List[ProcessRange] = []
        self.slots: List[ChainSlot] = []
        self.ladder: HeatLadder = HeatLadder.from_config(self.num_chains, config.delta, config.heats)
        self.chain_values = np.zeros(self.num_chains, dtype=np.float64)
        self.tuning: List[List[TuningRecord]] = []
        self.initialize_chains()

    # -------------------------------------------------------------------------
    # 构造 / 拓扑
    # -------------------------------------------------------------------------
    @classmethod
    def from_config(cls, template: ChainHandle, config, group: Optional[ProcessGroup] = None) -> "MC3Coordinator":
        """接受 MC3Config 或完整 Config（取其 sampler 块）。"""
        sampler = getattr(config, "sampler", config)
        return cls(template, config=sampler, group=group)

    def initialize_chains(self) -> None:
        """按当前进程组重新分配链并从模板重建本进程持有的链（集合操作）。"""
        self.ladder = HeatLadder.from_config(self.num_chains, self.config.delta, self.config.heats)
        self.ranges = assign_processes(self.num_chains, self.group.size)
        rank = self.group.rank

        slots: List[ChainSlot] = []
        for i, rng_i in enumerate(self.ranges):
            if not rng_i.contains(rank):
                slots.append(Absent(index=i, owner=rng_i.primary))
                continue
            chain = self.template.clone()
            chain.set_chain_index(i)
            chain.set_process_range(rng_i.first, rng_i.count)
            chain.set_schedule_type(self.schedule_type)
            heat = float(self.ladder.heats[i])
            chain.set_heat(heat)
            chain.set_active(heat == 1.0)
            slots.append(Owned(index=i, chain=chain, primary=(rank == rng_i.primary)))
        self.slots = slots

        base = self.template.get_tuning_snapshot()
        self.tuning = [list(base) for _ in range(self.num_chains)]
        self.chain_values = np.zeros(self.num_chains, dtype=np.float64)

        owned = [s.index for s in owned_chains(self.slots)]
        logger.debug("rank %d/%d owns chains %s", rank, self.group.size, owned)
        self.synchronize()

    def set_process_group(self, group: ProcessGroup) -> None:
        """拓扑变化：丢弃全部链句柄并按新进程组重建（统计与代计数保留）。"""
        if group.leader != int(self.config.leader):
            raise ValueError(f"process group leader ({group.leader}) differs from configured "
                             f"leader ({self.config.leader})")
        was_leader = self.group.is_leader
        self.group = group
        if group.is_leader and not was_leader:
            self.rng = make_swap_rng(self.config.seed)
        elif not group.is_leader:
            self.rng = None
        self.initialize_chains()

    @property
    def pid_per_chain(self) -> List[int]:
        return [r.primary for r in self.ranges]

    def owned_indices(self) -> List[int]:
        return [s.index for s in owned_chains(self.slots)]

    def chain(self, index: int) -> Optional[ChainHandle]:
        """本进程持有第 index 条链时返回它，否则 None。"""
        return slot_chain(self.slots, index)

    # -------------------------------------------------------------------------
    # 同步
    # -------------------------------------------------------------------------
    def _gather_broadcast(self, local: Dict[int, Any], what: str) -> Dict[int, Any]:
        merged = self.group.gather(local)
        if self.group.is_leader:
            missing = [i for i in range(self.num_chains) if i not in merged]
            if missing:
                raise SynchronizationError(f"{what}: no contribution for chains {missing}")
        return self.group.broadcast(merged)

    def synchronize(self, likelihood_only: bool = False) -> None:
        """
        主进程提交 (lnP, heat, tuning) → leader 汇集 → 广播；
        所有进程据此更新 chain_values、热度梯子与调参快照。
        """
        local: Dict[int, Any] = {}
        for slot in owned_chains(self.slots, primary_only=True):
            c = slot.chain
            local[slot.index] = (
                float(c.get_log_probability(likelihood_only)),
                float(c.get_heat()),
                [r.to_tuple() for r in c.get_tuning_snapshot()],
            )
        payload = {"chains": local}
        if self.group.is_leader:
            payload["heat_ranks"] = self.ladder.heat_ranks.tolist()
        merged = self.group.gather({self.group.rank: payload})
        out = None
        if self.group.is_leader:
            chains: Dict[int, Any] = {}
            for part in merged.values():
                chains.update(part["chains"])
            missing = [i for i in range(self.num_chains) if i not in chains]
            if missing:
                raise SynchronizationError(f"synchronize: no contribution for chains {missing}")
            out = {
                "values": [chains[i][0] for i in range(self.num_chains)],
                "heats": [chains[i][1] for i in range(self.num_chains)],
                "tuning": [chains[i][2] for i in range(self.num_chains)],
                "heat_ranks": merged[self.group.rank]["heat_ranks"],
            }
        out = self.group.broadcast(out)

        self.chain_values = np.asarray(out["values"], dtype=np.float64)
        self.ladder.replace(out["heats"], out["heat_ranks"])
        self.tuning = [[TuningRecord.from_tuple(t) for t in recs] for recs in out["tuning"]]
        self._push_active_flags()

    def _gather_values(self, likelihood_only: bool) -> np.ndarray:
        local = {s.index: float(s.chain.get_log_probability(likelihood_only))
                 for s in owned_chains(self.slots, primary_only=True)}
        merged = self._gather_broadcast(local, "values")
        return np.asarray([merged[i] for i in range(self.num_chains)], dtype=np.float64)

    def get_model_ln_probability(self, likelihood_only: bool = False) -> float:
        """冷链的对数概率（集合操作；不改动交换所用的 chain_values）。"""
        values = self._gather_values(likelihood_only)
        return float(values[self.ladder.cold_chain()])

    # -------------------------------------------------------------------------
    # 主循环：一代
    # -------------------------------------------------------------------------
    def next_cycle(self, post_burnin: bool = True) -> List[SwapDecision]:
        for slot in owned_chains(self.slots):
            slot.chain.advance_one_cycle(post_burnin)

        if post_burnin:
            self.generation += 1
            g = self.generation
        else:
            self.burnin_generation += 1
            g = self.burnin_generation

        decisions: List[SwapDecision] = []
        if self.use_neighbor_swapping and g % self.swap_interval == 0:
            decisions += self.swap_chains("neighbor")
        if self.use_random_swapping and g % self.swap_interval2 == 0:
            decisions += self.swap_chains("random")
        return decisions

    # -------------------------------------------------------------------------
    # 交换
    # -------------------------------------------------------------------------
    def swap_chains(self, method: str = "neighbor") -> List[SwapDecision]:
        """一轮交换：neighbor 尝试 1 次，random 尝试 N 次（集合操作）。"""
        if method == "neighbor":
            return self._swap_round("neighbor", 1)
        if method == "random":
            return self._swap_round("random", self.num_chains)
        raise ValueError(f"method must be 'neighbor' or 'random', got {method!r}")

    def _swap_round(self, kind: str, attempts: int) -> List[SwapDecision]:
        if self.num_chains < 2:
            return []
        self.synchronize()

        if self.group.is_leader:
            decisions: List[SwapDecision] = []
            error: Optional[str] = None
            try:
                for _ in range(attempts):
                    d = self._decide(kind)
                    decisions.append(d)
                    self._apply_decision(d)
            except TuningMismatchError as exc:
                error = str(exc)
                self.group.broadcast({"decisions": [d.to_tuple() for d in decisions], "error": error})
                raise
            self.group.broadcast({"decisions": [d.to_tuple() for d in decisions], "error": None})
            return decisions

        msg = self.group.broadcast(None)
        decisions = [SwapDecision.from_tuple(t) for t in msg["decisions"]]
        for n, d in enumerate(decisions):
            if msg["error"] is not None and n == len(decisions) - 1:
                # leader 在最后一个决策上失败；本地重放会抛出同样的错误
                self._apply_decision(d)
                raise TuningMismatchError(msg["error"])
            self._apply_decision(d)
        return decisions

    def _decide(self, kind: str) -> SwapDecision:
        """leader 专用：选对 + 接受判据。"""
        if self.rng is None:
            raise RuntimeError("only the leader process draws swap decisions")
        if kind == "neighbor":
            pair = select_neighbor_pair(self.ladder, self.rng)
        else:
            pair = select_random_pair(self.num_chains, self.rng)
        j, k = pair  # num_chains >= 2 已在 _swap_round 中保证
        heats = self.ladder.heats
        ln_r = swap_log_ratio(heats[j], heats[k], self.chain_values[j], self.chain_values[k])
        accepted = accept_swap(ln_r, self.rng)
        return SwapDecision(kind=kind, j=j, k=k, accepted=accepted, ln_ratio=ln_r)

    def _apply_decision(self, d: SwapDecision) -> None:
        rj, rk = self.ladder.rank_of(d.j), self.ladder.rank_of(d.k)
        self.stats.record_attempt(rj, rk)
        if not d.accepted:
            logger.debug("%s swap %d<->%d (ranks %d,%d) rejected, lnR=%.4f", d.kind, d.j, d.k, rj, rk, d.ln_ratio)
            return
        # 快照不匹配时在此抛出，接受计数不能先于它
        new_j, new_k = swap_tuning_snapshots(self.tuning[d.j], self.tuning[d.k])
        self.stats.record_accept(rj, rk)
        self.tuning[d.j], self.tuning[d.k] = new_j, new_k
        self.ladder.swap(d.j, d.k)
        logger.debug("%s swap %d<->%d (ranks %d,%d) accepted, lnR=%.4f, cold chain now %d",
                     d.kind, d.j, d.k, rj, rk, d.ln_ratio, self.ladder.cold_chain())
        self._push_chain_state(d.j)
        self._push_chain_state(d.k)

    def _push_chain_state(self, index: int) -> None:
        c = self.chain(index)
        if c is None:
            return
        heat = float(self.ladder.heats[index])
        c.set_heat(heat)
        c.set_active(heat == 1.0)
        c.set_tuning_snapshot(self.tuning[index])

    def _push_active_flags(self) -> None:
        for slot in owned_chains(self.slots):
            heat = float(self.ladder.heats[slot.index])
            slot.chain.set_heat(heat)
            slot.chain.set_active(heat == 1.0)

    # -------------------------------------------------------------------------
    # 热度调节 / 计数
    # -------------------------------------------------------------------------
    def tune(self) -> Optional[HeatTuningResult]:
        """
        tune_heat=True 时按相邻 rank 接受率调整热度并清零交换统计；
        无论是否调节热度，都把热度推送给本进程的链并调用其 tune()。
        """
        result: Optional[HeatTuningResult] = None
        if self.tune_heat and self.num_chains > 1:
            result = tune_heats(self.ladder, self.stats, target=self.tune_heat_target, floor=HEAT_FLOOR)
            self.last_tuning = result
            self.reset_counters()
            for note in result.notes:
                logger.warning("heat tuning: %s", note)
            logger.info("heat tuning: heats by rank %s", np.round(result.heats_after, 4).tolist())

        for slot in owned_chains(self.slots):
            heat = float(self.ladder.heats[slot.index])
            slot.chain.set_heat(heat)
            slot.chain.set_active(heat == 1.0)
            slot.chain.tune()
        return result

    def reset_counters(self) -> None:
        self.stats.reset()

    def reset(self) -> None:
        """清零交换统计与各链 move 计数。"""
        self.reset_counters()
        for slot in owned_chains(self.slots):
            slot.chain.reset_counters()

    # -------------------------------------------------------------------------
    # 生命周期扇出（仅本进程持有的链）
    # -------------------------------------------------------------------------
    def initialize_sampler(self, prior_only: bool = False) -> None:
        for slot in owned_chains(self.slots):
            slot.chain.initialize(prior_only)
        self.synchronize()

    def redraw_starting_values(self) -> None:
        for slot in owned_chains(self.slots):
            slot.chain.redraw_starting_values()
        self.synchronize()

    def set_likelihood_heat(self, heat: float) -> None:
        for slot in owned_chains(self.slots):
            setter = getattr(slot.chain, "set_likelihood_heat", None)
            if setter is None:
                raise TypeError(f"{type(slot.chain).__name__} does not support set_likelihood_heat")
            setter(heat)

    def add_monitor(self, monitor: Any) -> None:
        for slot in owned_chains(self.slots, primary_only=True):
            slot.chain.add_monitor(monitor)

    def remove_monitors(self) -> None:
        for slot in owned_chains(self.slots):
            slot.chain.remove_monitors()

    def start_monitors(self, num_cycles: int) -> None:
        for slot in owned_chains(self.slots, primary_only=True):
            slot.chain.start_monitors(num_cycles)

    def write_monitor_headers(self) -> None:
        for slot in owned_chains(self.slots, primary_only=True):
            slot.chain.write_monitor_headers()

    def monitor(self, generation: int) -> None:
        """只有冷链（且只由其主进程）写 monitor。"""
        for slot in owned_chains(self.slots, primary_only=True):
            if slot.chain.is_active():
                slot.chain.monitor(generation)

    def finish_monitors(self, n_reps: Optional[int] = None) -> None:
        for slot in owned_chains(self.slots, primary_only=True):
            if n_reps is None:
                slot.chain.finish_monitors()
            else:
                slot.chain.finish_monitors(n_reps)

    def _monitor_hook(self, name: str) -> List[Any]:
        hooks = []
        for slot in owned_chains(self.slots, primary_only=True):
            hook = getattr(slot.chain, name, None)
            if hook is None:
                raise TypeError(f"{type(slot.chain).__name__} does not support {name}")
            hooks.append(hook)
        return hooks

    def add_file_monitor_extension(self, extension: str, directory: bool = False) -> None:
        """给文件 monitor 的输出路径加上 replicate 后缀（在 start_monitors 之前调用）。"""
        for hook in self._monitor_hook("add_file_monitor_extension"):
            hook(extension, directory)

    def disable_screen_monitor(self, all_chains: bool, replicate: int) -> None:
        for hook in self._monitor_hook("disable_screen_monitor"):
            hook(all_chains, replicate)

    # -------------------------------------------------------------------------
    # 报告
    # -------------------------------------------------------------------------
    @property
    def swap_method(self) -> str:
        return self.config.swap_method

    def cold_chain_index(self) -> int:
        return self.ladder.cold_chain()

    def strategy_description(self) -> str:
        text = f"The MCMCMC simulator runs 1 cold chain and {self.num_chains - 1} heated chains.\n"
        if self.use_neighbor_swapping:
            text += f"Neighbouring chains attempt one heat swap every {self.swap_interval} generation(s).\n"
        if self.use_random_swapping:
            text += f"Random pairs attempt {self.num_chains} heat swaps every {self.swap_interval2} generation(s).\n"
        first = next(owned_chains(self.slots), None)
        describe = getattr(first.chain, "strategy_description", None) if first is not None else None
        if describe is not None:
            text += "Each chain uses the following strategy:\n" + describe()
        return text

    def summary_table(self) -> str:
        return format_swap_summary(
            self.stats, self.ladder,
            use_neighbor=self.use_neighbor_swapping,
            use_random=self.use_random_swapping,
            swap_interval=self.swap_interval,
            swap_interval2=self.swap_interval2 if self.use_random_swapping else None,
        )

    def operator_summary(self) -> str:
        """本进程主链的 move 摘要（按 rank 顺序），leader 额外附上交换摘要表。"""
        parts: List[str] = []
        for r in range(self.num_chains):
            i = self.ladder.chain_at(r)
            slot = self.slots[i]
            if isinstance(slot, Owned) and slot.primary:
                describe = getattr(slot.chain, "operator_summary", None)
                if describe is not None:
                    parts.append(describe())
        if self.group.is_leader:
            parts.append(self.summary_table())
        return "\n\n".join(parts)

    def summary(self) -> Dict[str, Any]:
        out = swap_summary_dict(self.stats, self.ladder)
        out.update({
            "rank": self.group.rank,
            "num_processes": self.group.size,
            "owned_chains": self.owned_indices(),
            "pid_per_chain": self.pid_per_chain,
            "generation": int(self.generation),
            "burnin_generation": int(self.burnin_generation),
            "chain_values": self.chain_values.tolist(),
            "swap_method": self.swap_method,
        })
        if self.last_tuning is not None:
            out["last_tuning_rates"] = [None if np.isnan(x) else float(x) for x in self.last_tuning.rates]
        return out

    # -------------------------------------------------------------------------
    # 复制
    # -------------------------------------------------------------------------
    def clone(self) -> "MC3Coordinator":
        """深拷贝（链句柄经 clone() 复制，进程组共享引用）。"""
        other = copy.copy(self)
        other.ladder = self.ladder.copy()
        other.stats = self.stats.copy()
        other.chain_values = self.chain_values.copy()
        other.tuning = [list(t) for t in self.tuning]
        other.rng = copy.deepcopy(self.rng)
        other.slots = []
        for slot in self.slots:
            if isinstance(slot, Owned):
                c = slot.chain.clone()
                other.slots.append(Owned(index=slot.index, chain=c, primary=slot.primary))
            else:
                other.slots.append(slot)
        return other

    def __repr__(self) -> str:
        return (f"MC3Coordinator(num_chains={self.num_chains}, swap_method={self.swap_method!r}, "
                f"group={self.group.describe()}, cold_chain={self.cold_chain_index()})")
