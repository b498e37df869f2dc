# -*- coding: utf-8 -*-
"""
    单链协议与链槽（ChainHandle / TuningRecord / Owned / Absent）

协调器把每条链当作黑盒：只通过 ``ChainHandle`` 协议推进、读取对数概率、
设置热度并交换调参状态。

实现功能：
    - ``ChainHandle``: 协调器要求单链实现的最小接口（typing.Protocol，结构化子类型）
    - ``TuningRecord``: 单个 move 的调参快照 (move_name, num_tried, num_accepted, tuning_parameter)，
      无可调参数的 move 用 NaN 表示
    - ``Owned`` / ``Absent``: 每个链槽的显式两态；本进程不持有的链永远不会被解引用
    - ``swap_tuning_snapshots``: 交换被接受时互换两条链的调参快照，结构不一致立即抛错
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Any, Iterator, List, Optional, Protocol, Sequence, Tuple, Union, runtime_checkable

__all__ = [
    "TuningMismatchError",
    "TuningRecord",
    "ChainHandle",
    "Owned",
    "Absent",
    "ChainSlot",
    "owned_chains",
    "slot_chain",
    "check_snapshots_compatible",
    "swap_tuning_snapshots",
]


class TuningMismatchError(RuntimeError):
    """两条链的 move 列表结构不一致，无法交换调参状态（致命配置错误）。"""


# -----------------------------------------------------------------------------
# 调参快照
# -----------------------------------------------------------------------------
@dataclass(frozen=True)
class TuningRecord:
    move_name: str
    num_tried: int = 0
    num_accepted: int = 0
    tuning_parameter: float = math.nan

    @property
    def has_tuning_parameter(self) -> bool:
        return not math.isnan(self.tuning_parameter)

    @property
    def acceptance_rate(self) -> float:
        return self.num_accepted / self.num_tried if self.num_tried > 0 else 0.0

    def to_tuple(self) -> Tuple[str, int, int, float]:
        return (self.move_name, int(self.num_tried), int(self.num_accepted), float(self.tuning_parameter))

    @classmethod
    def from_tuple(cls, t: Sequence[Any]) -> "TuningRecord":
        name, tried, accepted, param = t
        return cls(str(name), int(tried), int(accepted), float(param))


def check_snapshots_compatible(a: Sequence[TuningRecord], b: Sequence[TuningRecord]) -> None:
    """
    检查两份调参快照是否可以互换：长度一致、同位置 move 名相同、
    tuning_parameter 同为 NaN 或同为有限值。否则抛 TuningMismatchError。
    """
    if len(a) != len(b):
        raise TuningMismatchError(
            f"cannot swap tuning state: move lists differ in length ({len(a)} vs {len(b)})"
        )
    for pos, (ra, rb) in enumerate(zip(a, b)):
        if ra.move_name != rb.move_name:
            raise TuningMismatchError(
                f"cannot swap tuning state: move #{pos} is {ra.move_name!r} on one chain "
                f"and {rb.move_name!r} on the other"
            )
        if ra.has_tuning_parameter != rb.has_tuning_parameter:
            raise TuningMismatchError(
                f"cannot swap tuning state: move #{pos} ({ra.move_name!r}) has a tuning parameter "
                f"on only one of the two chains"
            )


def swap_tuning_snapshots(
    a: Sequence[TuningRecord], b: Sequence[TuningRecord]
) -> Tuple[List[TuningRecord], List[TuningRecord]]:
    """校验后返回互换后的 (new_a, new_b)。"""
    check_snapshots_compatible(a, b)
    return [replace(r) for r in b], [replace(r) for r in a]


# -----------------------------------------------------------------------------
# 单链协议
# -----------------------------------------------------------------------------
@runtime_checkable
class ChainHandle(Protocol):
    """
    协调器对单链的全部要求。热度 (heat) 作用在后验上：链的平稳分布 ∝ p(x)^heat。

    生命周期（由协调器扇出到本进程持有的链）：
        initialize / redraw_starting_values / add_monitor / remove_monitors /
        start_monitors / monitor / write_monitor_headers / finish_monitors
    """

    # --- 推进与读取 ---
    def advance_one_cycle(self, post_burnin: bool) -> None: ...
    def get_log_probability(self, likelihood_only: bool = False) -> float: ...

    # --- 热度与冷链标记 ---
    def get_heat(self) -> float: ...
    def set_heat(self, heat: float) -> None: ...
    def set_active(self, active: bool) -> None: ...
    def is_active(self) -> bool: ...

    # --- 调参状态 ---
    def get_tuning_snapshot(self) -> List[TuningRecord]: ...
    def set_tuning_snapshot(self, records: Sequence[TuningRecord]) -> None: ...
    def tune(self) -> None: ...
    def reset_counters(self) -> None: ...

    # --- 复制与放置 ---
    def clone(self) -> "ChainHandle": ...
    def set_chain_index(self, index: int) -> None: ...
    def set_process_range(self, first: int, count: int) -> None: ...
    def set_schedule_type(self, schedule_type: str) -> None: ...

    # --- 生命周期 ---
    def initialize(self, prior_only: bool = False) -> None: ...
    def redraw_starting_values(self) -> None: ...
    def add_monitor(self, monitor: Any) -> None: ...
    def remove_monitors(self) -> None: ...
    def start_monitors(self, num_cycles: int) -> None: ...
    def monitor(self, generation: int) -> None: ...
    def write_monitor_headers(self) -> None: ...
    def finish_monitors(self, n_reps: Optional[int] = None) -> None: ...


# -----------------------------------------------------------------------------
# 链槽：本进程持有 / 不持有
# -----------------------------------------------------------------------------
@dataclass
class Owned:
    index: int
    chain: ChainHandle
    primary: bool = True      # 是否为该链的主进程（负责 gather 贡献与 monitor 输出）


@dataclass(frozen=True)
class Absent:
    index: int
    owner: int                # 该链主进程的 rank


ChainSlot = Union[Owned, Absent]


def owned_chains(slots: Sequence[ChainSlot], primary_only: bool = False) -> Iterator[Owned]:
    """按链编号顺序遍历本进程持有的链槽。"""
    for slot in slots:
        if isinstance(slot, Owned) and (slot.primary or not primary_only):
            yield slot


def slot_chain(slots: Sequence[ChainSlot], index: int) -> Optional[ChainHandle]:
    """本进程持有第 index 条链时返回它，否则 None。"""
    slot = slots[index]
    return slot.chain if isinstance(slot, Owned) else None
