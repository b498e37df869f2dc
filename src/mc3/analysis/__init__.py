# -*- coding: utf-8 -*-
"""
分析层
======

子模块
------
- swap_statistics: N×N 交换尝试/接受计数（按温度 rank 索引）
- summary: 交换摘要表（文本）与 JSON 友好字典
"""

# mc3/analysis/__init__.py
from importlib import import_module
from typing import TYPE_CHECKING

__all__ = ["swap_statistics", "summary"]

_lazy = {
    "swap_statistics": ".swap_statistics",
    "summary": ".summary",
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
    from . import swap_statistics, summary
