# -*- coding: utf-8 -*-
"""
日志记录器

实现功能：
    - 格式化: 控制台输出支持彩色高亮，文件输出保持纯文本结构化格式。
    - 进程标记: 多进程运行时在每条记录前加上进程 rank（``[rank 2/4]``），便于区分各 worker。
    - 多进程安全: 可选集成 `QueueListener`，在多进程环境下安全地聚合日志流。
    - 进度: `ProgressLogger` 按步数/时间间隔打印 burn-in 与采样进度。
"""

from __future__ import annotations

import logging
import sys
import time
import atexit
import threading
from pathlib import Path
from typing import Optional, Dict, Any
import multiprocessing as mp

from logging.handlers import (
    RotatingFileHandler,
    TimedRotatingFileHandler,
    QueueHandler,
    QueueListener,
)

__all__ = ['setup_logger', 'get_logger', 'stop_queue_listener', 'ProgressLogger']

# -----------------------------------------------------------------------------
# Colored terminal formatter (only affects console handler)
# -----------------------------------------------------------------------------
class ColoredFormatter(logging.Formatter):
    """
    控制台彩色格式化器：仅临时包装 levelname 字段以添加颜色码，
    并在返回前恢复，避免对 record 做持久性修改。
    """
    COLORS = {
        'DEBUG': '\033[36m',    # cyan
        'INFO': '\033[32m',     # green
        'WARNING': '\033[33m',  # yellow
        'ERROR': '\033[31m',    # red
        'CRITICAL': '\033[35m', # magenta
    }
    RESET = '\033[0m'

    def format(self, record: logging.LogRecord) -> str:
        orig_levelname = record.levelname
        try:
            color = self.COLORS.get(orig_levelname)
            if color:
                record.levelname = f"{color}{orig_levelname}{self.RESET}"
            return super().format(record)
        finally:
            record.levelname = orig_levelname  # restore

# -----------------------------------------------------------------------------
# Handler 工厂
# -----------------------------------------------------------------------------
def _rank_tag(process_rank: Optional[int], process_count: Optional[int]) -> str:
    if process_rank is None:
        return ''
    if process_count is None:
        return f'[rank {int(process_rank)}] '
    return f'[rank {int(process_rank)}/{int(process_count)}] '

def _make_console_handler(level: int, use_color: bool, utc: bool, tag: str) -> logging.Handler:
    datefmt = '%Y-%m-%d %H:%M:%S'
    if use_color:
        fmt = '%(asctime)s | %(levelname)s | ' + tag + '%(message)s'
        formatter = ColoredFormatter(fmt, datefmt=datefmt)
    else:
        fmt = '%(asctime)s | %(levelname)-8s | ' + tag + '%(message)s'
        formatter = logging.Formatter(fmt, datefmt=datefmt)
    if utc:
        formatter.converter = time.gmtime  # type: ignore
    ch = logging.StreamHandler(sys.stdout)
    ch.setLevel(level)
    ch.setFormatter(formatter)
    return ch

def _make_file_handler(log_path: Path, rotate: Optional[Dict[str, Any]], utc: bool, tag: str) -> logging.Handler:
    log_path.parent.mkdir(parents=True, exist_ok=True)
    datefmt = '%Y-%m-%d %H:%M:%S'
    fmt = '%(asctime)s | %(levelname)-8s | %(name)s | ' + tag + '%(message)s'
    if rotate:
        if 'when' in rotate:
            fh = TimedRotatingFileHandler(
                str(log_path),
                when=rotate.get('when', 'D'),
                interval=int(rotate.get('interval', 1)),
                backupCount=int(rotate.get('backupCount', 14)),
                encoding='utf-8',
                utc=utc
            )
        else:
            fh = RotatingFileHandler(
                str(log_path),
                maxBytes=int(rotate.get('maxBytes', 10_000_000)),
                backupCount=int(rotate.get('backupCount', 5)),
                encoding='utf-8'
            )
    else:
        fh = logging.FileHandler(str(log_path), mode='a', encoding='utf-8')
    fh.setLevel(logging.DEBUG)  # keep detailed records; logger.level controls emission
    formatter = logging.Formatter(fmt, datefmt=datefmt)
    if utc:
        formatter.converter = time.gmtime  # type: ignore
    fh.setFormatter(formatter)
    return fh

# -----------------------------------------------------------------------------
# 全局：跟踪启动的 QueueListener（按 logger.name 存储），便于重复 setup 时清理
# -----------------------------------------------------------------------------
_QUEUE_LISTENERS: Dict[str, QueueListener] = {}
_QUEUE_LOCK = threading.Lock()

def stop_queue_listener(name: str = 'mc3') -> bool:
    """停止并移除与 name 关联的 QueueListener；返回是否存在。"""
    with _QUEUE_LOCK:
        listener = _QUEUE_LISTENERS.pop(name, None)
    if listener is None:
        return False
    try:
        listener.stop()
    except Exception:
        # 已停止（例如 atexit 已执行）
        pass
    return True

# -----------------------------------------------------------------------------
# setup_logger / get_logger
# -----------------------------------------------------------------------------
def setup_logger(
    name: str = 'mc3',
    level: int = logging.INFO,
    log_file: Optional[str] = None,
    use_color: bool = True,
    utc: bool = False,
    rotate: Optional[Dict[str, Any]] = None,
    mp_safe: bool = False,
    process_rank: Optional[int] = None,
    process_count: Optional[int] = None,
) -> logging.Logger:
    """
    配置并返回 logger。重复调用会覆盖同名 logger 的 handlers，并停止旧 listener（若存在）。

    mp_safe=True 时使用 QueueHandler + QueueListener 以便多进程日志聚合。
    process_rank/process_count 给定时，每条消息前加 ``[rank r/P]`` 标记。
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    stop_queue_listener(name)

    # 移除并关闭现有 handlers（避免重复输出）
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()
    logger.propagate = False

    # 仅在真实终端时启用颜色
    use_color = bool(use_color and hasattr(sys.stdout, "isatty") and sys.stdout.isatty())
    tag = _rank_tag(process_rank, process_count)

    console_handler = _make_console_handler(level, use_color, utc, tag)
    file_handler = _make_file_handler(Path(log_file), rotate, utc, tag) if log_file else None

    if mp_safe:
        queue = mp.get_context().Queue(-1)
        qh = QueueHandler(queue)
        qh.setLevel(level)
        logger.addHandler(qh)

        # QueueListener 将实际写入控制台 + 文件（按 handlers 列表）
        handlers = [console_handler]
        if file_handler is not None:
            handlers.append(file_handler)
        listener = QueueListener(queue, *handlers, respect_handler_level=True)
        listener.start()

        with _QUEUE_LOCK:
            _QUEUE_LISTENERS[name] = listener
        atexit.register(stop_queue_listener, name)
    else:
        logger.addHandler(console_handler)
        if file_handler is not None:
            logger.addHandler(file_handler)

    return logger

def get_logger(name: str = 'mc3') -> logging.Logger:
    """获取 logger（若未 setup，返回同名 logger 对象，但不自动配置 handlers）。"""
    return logging.getLogger(name)

# -----------------------------------------------------------------------------
# ProgressLogger
# -----------------------------------------------------------------------------
class ProgressLogger:
    """按步数或时间间隔打印进度的简单工具。"""
    def __init__(self, total: int, desc: str = "Progress",
                 logger: Optional[logging.Logger] = None,
                 log_every_n: int = 10,
                 log_every_seconds: Optional[float] = None):
        self.total = int(total)
        self.desc = desc
        self.logger = logger or get_logger()
        self.log_every_n = max(1, int(log_every_n))
        self.log_every_seconds = float(log_every_seconds) if log_every_seconds is not None else None

        self.current = 0
        self.start_time = time.time()
        self.last_log_time = self.start_time

    def update(self, n: int = 1):
        self.current = min(self.total, self.current + int(n))
        now = time.time()
        should = (self.current % self.log_every_n == 0) or (self.current >= self.total)
        if self.log_every_seconds is not None:
            should = should or ((now - self.last_log_time) >= self.log_every_seconds)
        if should:
            self._log_progress(now)
            self.last_log_time = now

    def _log_progress(self, now: Optional[float] = None):
        if now is None:
            now = time.time()
        elapsed = max(1e-9, now - self.start_time)
        percent = 100.0 * self.current / max(1, self.total)
        speed = self.current / elapsed
        remaining = max(0, self.total - self.current)
        eta = remaining / max(speed, 1e-9)
        self.logger.info(
            "%s: %d/%d (%.1f%%) | %.2f gen/s | ETA: %.1fs",
            self.desc, self.current, self.total, percent, speed, eta
        )

    def finish(self):
        elapsed = max(1e-9, time.time() - self.start_time)
        speed = self.total / elapsed
        self.logger.info(
            "%s 完成! 总计: %d | 耗时: %.2fs | 速度: %.2f gen/s",
            self.desc, self.total, elapsed, speed
        )
