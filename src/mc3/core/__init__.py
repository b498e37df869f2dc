# -*- coding: utf-8 -*-
"""
核心层
======

与进程/通信无关的纯逻辑：链协议、热度梯子、进程分配、交换判据与热度调节。

子模块
------
- chain: ChainHandle 协议、TuningRecord、Owned/Absent 链槽
- metropolis_chain: 参考实现（随机游走 Metropolis 链）
- ladder: 热度梯子与 rank 映射
- assignment: 链 → 进程区间分配
- exchange: 交换对选择与 Metropolis 接受判据
- heat_tuning: 基于接受率的热度自动调节

示例
----
>>> from mc3.core.ladder import HeatLadder
>>> ladder = HeatLadder.from_delta(4, 0.2)
>>> ladder.heats
array([1.        , 0.83333333, 0.71428571, 0.625     ])
"""


# mc3/core/__init__.py
from importlib import import_module
from typing import TYPE_CHECKING

__all__ = ["chain", "metropolis_chain", "ladder", "assignment", "exchange", "heat_tuning"]

_lazy = {
    "chain": ".chain",
    "metropolis_chain": ".metropolis_chain",
    "ladder": ".ladder",
    "assignment": ".assignment",
    "exchange": ".exchange",
    "heat_tuning": ".heat_tuning",
}

def __getattr__(name: str):
    if name in _lazy:
        mod = import_module(_lazy[name], __name__)
        globals()[name] = mod
        return mod
    raise AttributeError(f"{__name__} has no attribute {name!r}")

def __dir__():
    return sorted(list(__all__))

if TYPE_CHECKING:
    from . import chain, metropolis_chain, ladder, assignment, exchange, heat_tuning
