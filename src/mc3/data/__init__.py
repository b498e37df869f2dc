# -*- coding: utf-8 -*-
"""
数据层
======

子模块
------
- trace: 冷链样本记录（内存缓冲 + 可选 HDF5 流式写入、多进程文件合并）
- checkpoint: 协调器状态的 HDF5 checkpoint / restore
"""

# mc3/data/__init__.py
from importlib import import_module
from typing import TYPE_CHECKING

__all__ = ["trace", "checkpoint"]

_lazy = {
    "trace": ".trace",
    "checkpoint": ".checkpoint",
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
    from . import trace, checkpoint
