# -*- coding: utf-8 -*-
"""
    单机多进程 MC3 启动器

实现功能：
    - 强制使用 ``multiprocessing.get_context("spawn")``，无 fork 死锁
    - 每个 worker 一个 QueueGroup（共享 inbox 列表），各自构造协调器并运行 run_mc3
    - 可选：每个 worker 把冷链 trace 写到 ``trace_dir/trace_rank{r}.h5``，结束后由父进程合并
    - worker 异常以结构化错误（error + traceback）返回，父进程统一抛 RuntimeError

template_factory 必须可被 pickle（顶层函数或 functools.partial），在 worker 内调用以构造模板链。
"""

from __future__ import annotations

import logging
import os
import queue as _queue
import sys
import traceback
from multiprocessing import get_context
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from ..utils.config import Config
from .sync import QueueGroup, make_queue_inboxes

logger = logging.getLogger(__name__)

__all__ = ["run_parallel"]


def _worker(
    rank: int,
    size: int,
    inboxes: List[Any],
    results: Any,
    config_dict: Dict[str, Any],
    template_factory: Callable[[], Any],
    timeout: Optional[float],
    trace_dir: Optional[str],
    log_level: int,
) -> None:
    """worker 入口（spawn 子进程内执行）。"""
    try:
        from ..data.trace import TraceMonitor
        from ..utils.logger import setup_logger
        from .coordinator import MC3Coordinator
        from .runner import run_mc3

        setup_logger("mc3", level=log_level, use_color=False, process_rank=rank, process_count=size)
        cfg = Config.from_dict(config_dict)
        group = QueueGroup(rank, size, inboxes, leader=cfg.sampler.leader, timeout=timeout)
        coordinator = MC3Coordinator.from_config(template_factory(), cfg, group=group)

        monitors = []
        trace_path = None
        if trace_dir is not None:
            trace_path = str(Path(trace_dir) / f"trace_rank{rank}.h5")
            monitors.append(TraceMonitor(trace_path))

        summary = run_mc3(
            coordinator,
            generations=cfg.run.generations,
            burnin=cfg.run.burnin,
            tuning_interval=cfg.run.tuning_interval,
            monitor_interval=cfg.run.monitor_interval,
            monitors=monitors,
            progress=cfg.verbose,
        )
        payload: Dict[str, Any] = {"summary": summary, "trace": trace_path, "pid": os.getpid()}
        if group.is_leader:
            payload["table"] = coordinator.summary_table()
        results.put((rank, payload))
    except Exception as e:
        tb = traceback.format_exc()
        sys.stderr.write(f"[worker pid={os.getpid()}] ERROR rank={rank}: {e}\n{tb}\n")
        results.put((rank, {"error": f"{type(e).__name__}: {e}", "traceback": tb}))


def run_parallel(
    config: Config,
    template_factory: Callable[[], Any],
    num_processes: Optional[int] = None,
    timeout: Optional[float] = None,
    trace_dir: Optional[Union[str, Path]] = None,
    merged_trace: Optional[Union[str, Path]] = None,
    log_level: int = logging.WARNING,
) -> Dict[int, Dict[str, Any]]:
    """
    启动 num_processes 个 worker 组成一个进程组并完整运行一次 MC3。

    Parameters
    ----------
    num_processes : None ⇒ config.run.num_processes
    timeout : 每次同步接收的超时（秒）；None ⇒ config.run.sync_timeout
    trace_dir : 每个 worker 写 trace 的目录；None 表示不写
    merged_trace : 若给出且 trace_dir 不为空，则把各 worker 的 trace 合并到该文件

    Returns
    -------
    {rank: {"summary": ..., "trace": path|None, "pid": ..., ["table": ...]}}
    """
    size = int(num_processes if num_processes is not None else config.run.num_processes)
    if size < 1:
        raise ValueError("num_processes must be >= 1")
    if config.sampler.leader >= size:
        raise ValueError(f"leader ({config.sampler.leader}) must be < num_processes ({size})")
    if timeout is None:
        timeout = config.run.sync_timeout
    if trace_dir is not None:
        Path(trace_dir).mkdir(parents=True, exist_ok=True)

    ctx = get_context("spawn")
    inboxes = make_queue_inboxes(size, ctx)
    results = ctx.Queue()
    config_dict = config.to_dict()

    procs = []
    for rank in range(size):
        p = ctx.Process(
            target=_worker,
            args=(rank, size, inboxes, results, config_dict, template_factory, timeout,
                  None if trace_dir is None else str(trace_dir), log_level),
            name=f"mc3-worker-{rank}",
        )
        p.start()
        procs.append(p)
    logger.info("started %d MC3 worker process(es)", size)

    out: Dict[int, Dict[str, Any]] = {}
    errors: Dict[int, Dict[str, Any]] = {}
    try:
        while len(out) + len(errors) < size:
            try:
                rank, payload = results.get(timeout=timeout)
            except _queue.Empty:
                dead = [p.name for p in procs if not p.is_alive() and p.exitcode not in (0, None)]
                raise RuntimeError(f"run_parallel: timed out waiting for workers (crashed: {dead})")
            if "error" in payload:
                errors[rank] = payload
                # 其余 worker 会在同步时超时或阻塞，不再等待
                break
            out[rank] = payload
    finally:
        for p in procs:
            p.join(timeout=1.0 if errors else None)
            if p.is_alive():
                logger.warning("terminating worker %s", p.name)
                p.terminate()
                p.join()

    if errors:
        rank, err = sorted(errors.items())[0]
        raise RuntimeError(f"MC3 worker rank {rank} failed: {err['error']}\n{err['traceback']}")

    if merged_trace is not None and trace_dir is not None:
        from ..data.trace import merge_traces
        merge_traces([out[r]["trace"] for r in sorted(out) if out[r].get("trace")], merged_trace)
    return out
