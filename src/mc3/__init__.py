# -*- coding: utf-8 -*-
"""
MC3: Metropolis-coupled MCMC (parallel tempering) coordinator
==============================================================

在多个进程之间调度 N 条不同“热度”(heat) 的马尔可夫链，周期性地提出
交换热度的 Metropolis 检验，并根据交换接受率自适应地调整热度梯子。

主要功能
--------
- 链到进程的分配（进程数可多于或少于链数）
- 由 leader 进程统一抽取随机数并广播交换决策（gather → broadcast）
- 邻接 / 随机 两种交换策略，可同时启用
- 基于邻接 rank 接受率的热度自动调节（目标 0.23）
- N×N 交换统计、摘要表、HDF5 checkpoint、冷链 trace 记录

快速开始
--------
>>> from mc3.core.metropolis_chain import make_gaussian_chain
>>> from mc3.simulation.coordinator import MC3Coordinator
>>> from mc3.simulation.runner import run_mc3
>>> coord = MC3Coordinator(make_gaussian_chain(dim=2, seed=1), num_chains=4, delta=0.2, seed=7)
>>> run_mc3(coord, generations=2000, burnin=500, tuning_interval=100)
>>> print(coord.summary_table())

模块组织
--------
- core: 链协议、热度梯子、进程分配、交换判据、热度调节
- simulation: 同步层、协调器、运行循环与多进程启动
- analysis: 交换统计与摘要
- data: trace 记录与 checkpoint
- visualization: 诊断绘图
- utils: 日志与配置工具
"""

# mc3/__init__.py
from importlib import import_module, util as _import_util
from importlib.metadata import PackageNotFoundError, version as _pkg_version
from typing import TYPE_CHECKING

# ---- version ----
try:
    __version__ = _pkg_version("mc3")
except PackageNotFoundError:
    __version__ = "0.1.0"

__all__ = [
    "core",
    "simulation",
    "analysis",
    "data",
    "visualization",
    "utils",
    "HAS_MPI4PY",
    "HAS_H5PY",
    "__version__",
]

def _has_module(name: str) -> bool:
    try:
        return _import_util.find_spec(name) is not None
    except (ImportError, ValueError):
        return False

HAS_MPI4PY = _has_module("mpi4py")
HAS_H5PY = _has_module("h5py")

_lazy_subpackages = {
    "core": ".core",
    "simulation": ".simulation",
    "analysis": ".analysis",
    "data": ".data",
    "visualization": ".visualization",
    "utils": ".utils",
}

def __getattr__(name: str):
    if name in _lazy_subpackages:
        mod = import_module(_lazy_subpackages[name], __name__)
        globals()[name] = mod  # cache
        return mod
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

def __dir__():
    return sorted(list(__all__))

if TYPE_CHECKING:  # for IDE/static type checkers only
    from . import core, simulation, analysis, data, visualization, utils
