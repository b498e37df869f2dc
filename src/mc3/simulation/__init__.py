# -*- coding: utf-8 -*-
"""
模拟层
======

提供进程组同步层、MC3 协调器、运行循环与多进程启动器。

子模块
------
- sync: 进程组抽象（Serial / multiprocessing Queue / MPI，MPI 需要 mpi4py）
- coordinator: MC3Coordinator 主控
- runner: burn-in + 采样主循环
- parallel: spawn 多进程启动与结果汇总

示例
----
>>> from mc3.simulation.coordinator import MC3Coordinator
>>> from mc3.core.metropolis_chain import make_gaussian_chain
>>> coord = MC3Coordinator(make_gaussian_chain(dim=2, seed=3), num_chains=4, seed=11)
>>> for g in range(100):
...     coord.next_cycle(post_burnin=True)
"""

# mc3/simulation/__init__.py
from importlib import import_module
from typing import TYPE_CHECKING

__all__ = ["sync", "coordinator", "runner", "parallel"]

_lazy = {
    "sync": ".sync",
    "coordinator": ".coordinator",
    "runner": ".runner",
    "parallel": ".parallel",
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
    from . import sync, coordinator, runner, parallel
