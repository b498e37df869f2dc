# -*- coding: utf-8 -*-
"""
工具层
======

提供日志配置与全局配置管理。

子模块
------
- logger: 日志工具（彩色控制台、rank 标记、多进程 QueueListener）
- config: 全局配置（预设 / YAML / 环境变量 / CLI 覆盖）

示例
----
>>> from mc3.utils.logger import setup_logger
>>> from mc3.utils.config import get_preset_config
>>> logger = setup_logger('mc3')
>>> cfg = get_preset_config('quick')
"""


# mc3/utils/__init__.py
from importlib import import_module
from typing import TYPE_CHECKING

__all__ = ["logger", "config"]

_lazy = {
    "logger": ".logger",
    "config": ".config",
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
    from . import logger, config
