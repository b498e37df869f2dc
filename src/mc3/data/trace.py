# -*- coding: utf-8 -*-
"""
    冷链 trace 记录

``TraceMonitor`` 满足链的 monitor 协议（open / write_header / record / close）：
每次 record 记录 (generation, 链编号, lnP, 参数向量)。同一个 monitor 会被挂到本进程所有
主链上，冷链交换后记录自动跟随新的冷链，因此 open / write_header / close 都是幂等的。

实现功能：
    - 内存缓冲（to_arrays）
    - ScreenMonitor：按间隔用 logging 输出冷链 lnP，可在重复运行中关闭
    - 可选 HDF5 流式写入（可扩展数据集，按 flush_every 批量落盘）
    - load_trace：读回单个 trace 文件
    - merge_traces：合并多个进程的 trace 文件，按 generation 排序
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

import h5py
import numpy as np

logger = logging.getLogger(__name__)

__all__ = ["TraceMonitor", "ScreenMonitor", "load_trace", "merge_traces"]

_SCALAR_FIELDS = ("generation", "chain", "ln_posterior", "ln_likelihood")


class TraceMonitor:
    """
    Parameters
    ----------
    path : HDF5 输出路径；None 表示只保留在内存
    flush_every : 每积累多少条记录落盘一次
    """

    def __init__(self, path: Optional[Union[str, Path]] = None, flush_every: int = 100) -> None:
        self.path = Path(path) if path is not None else None
        self.base_path = self.path
        self.num_replicates: Optional[int] = None
        self.flush_every = max(1, int(flush_every))
        self.num_cycles: Optional[int] = None
        self.dim: Optional[int] = None
        self.meta: Dict[str, Any] = {}

        self._rows: Dict[str, List[Any]] = {k: [] for k in _SCALAR_FIELDS}
        self._states: List[np.ndarray] = []
        self._pending = 0
        self._fh: Optional[h5py.File] = None
        self._opened = False
        self._closed = False

    # -------------------------
    # monitor 协议
    # -------------------------
    def open(self, num_cycles: int) -> None:
        if self._opened:
            return
        self._opened = True
        self.num_cycles = int(num_cycles)
        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = h5py.File(str(self.path), "w")
            for name, dtype in (("generation", np.int64), ("chain", np.int32),
                                ("ln_posterior", np.float64), ("ln_likelihood", np.float64)):
                self._fh.create_dataset(name, shape=(0,), maxshape=(None,), dtype=dtype, chunks=True)
            self._fh.attrs["num_cycles"] = self.num_cycles
            self._fh.attrs["pid"] = os.getpid()
            self._write_meta()
            logger.debug("trace file opened: %s", self.path)

    def write_header(self, chain: Any) -> None:
        if self.meta:
            return
        state = np.asarray(getattr(chain, "state", ()), dtype=np.float64).ravel()
        self.dim = int(state.size)
        self.meta = {
            "dim": self.dim,
            "parameters": [f"x[{i}]" for i in range(self.dim)],
            "chain_type": type(chain).__name__,
        }
        self._write_meta()

    def _write_meta(self) -> None:
        # 表头可能先于 open() 写入
        if self._fh is None or not self.meta or "state" in self._fh:
            return
        self._fh.attrs["meta"] = json.dumps(self.meta)
        self._fh.create_dataset("state", shape=(0, self.dim), maxshape=(None, self.dim),
                                dtype=np.float64, chunks=True)

    def record(self, generation: int, chain: Any) -> None:
        if self._closed:
            raise RuntimeError("TraceMonitor.record() called after close()")
        if not self.meta:
            self.write_header(chain)
        state = np.asarray(getattr(chain, "state", ()), dtype=np.float64).ravel()
        if state.size != self.dim:
            raise ValueError(f"state has {state.size} entries, trace expects {self.dim}")
        self._rows["generation"].append(int(generation))
        self._rows["chain"].append(int(getattr(chain, "chain_index", -1)))
        self._rows["ln_posterior"].append(float(chain.get_log_probability(False)))
        self._rows["ln_likelihood"].append(float(chain.get_log_probability(True)))
        self._states.append(state)
        self._pending += 1
        if self._fh is not None and self._pending >= self.flush_every:
            self.flush()

    def add_file_extension(self, extension: str, directory: bool = False) -> None:
        """
        重复运行 (replicate) 时区分输出文件：directory=False 时 trace.h5 -> trace<ext>.h5，
        否则 trace.h5 -> <ext>/trace.h5。总是相对构造时的路径计算，重复调用不会叠加。
        """
        if self._opened:
            raise RuntimeError("add_file_extension() must be called before open()")
        if self.base_path is None:
            return
        base = self.base_path
        if directory:
            self.path = base.parent / str(extension) / base.name
        else:
            self.path = base.with_name(f"{base.stem}{extension}{base.suffix}")

    def close(self, num_replicates: Optional[int] = None) -> None:
        if self._closed or not self._opened:
            return
        self.flush()
        if num_replicates is not None:
            self.num_replicates = int(num_replicates)
            if self._fh is not None:
                self._fh.attrs["num_replicates"] = self.num_replicates
        if self._fh is not None:
            self._fh.close()
            self._fh = None
            logger.debug("trace file closed: %s (%d rows)", self.path, len(self))
        self._closed = True

    # -------------------------
    # 落盘 / 读取
    # -------------------------
    def flush(self) -> None:
        if self._fh is None or self._pending == 0:
            self._pending = 0
            return
        n_old = self._fh["generation"].shape[0]
        n_new = len(self._rows["generation"])
        for name in _SCALAR_FIELDS:
            ds = self._fh[name]
            ds.resize((n_new,))
            ds[n_old:n_new] = np.asarray(self._rows[name][n_old:n_new])
        if "state" in self._fh:
            ds = self._fh["state"]
            ds.resize((n_new, self.dim))
            ds[n_old:n_new] = np.vstack(self._states[n_old:n_new])
        self._fh.flush()
        self._pending = 0

    def to_arrays(self) -> Dict[str, np.ndarray]:
        out: Dict[str, np.ndarray] = {
            "generation": np.asarray(self._rows["generation"], dtype=np.int64),
            "chain": np.asarray(self._rows["chain"], dtype=np.int32),
            "ln_posterior": np.asarray(self._rows["ln_posterior"], dtype=np.float64),
            "ln_likelihood": np.asarray(self._rows["ln_likelihood"], dtype=np.float64),
        }
        dim = self.dim or 0
        out["state"] = np.vstack(self._states) if self._states else np.zeros((0, dim), dtype=np.float64)
        return out

    def __len__(self) -> int:
        return len(self._rows["generation"])


class ScreenMonitor:
    """
    屏幕（日志）monitor：每 print_every 代以 INFO 级别输出冷链的 lnP。
    enabled=False 时 record 不输出；重复运行时通常只保留第一个 replicate 的屏幕输出。
    """

    is_screen_monitor = True

    def __init__(self, print_every: int = 100, log: Optional[logging.Logger] = None) -> None:
        self.print_every = max(1, int(print_every))
        self.logger = log or logger
        self.enabled = True
        self.num_cycles: Optional[int] = None
        self.lines = 0

    def open(self, num_cycles: int) -> None:
        self.num_cycles = int(num_cycles)

    def write_header(self, chain: Any) -> None:
        pass

    def record(self, generation: int, chain: Any) -> None:
        if not self.enabled or int(generation) % self.print_every != 0:
            return
        self.logger.info("gen %d/%s  chain %d  lnP=%.4f  lnL=%.4f", int(generation), self.num_cycles,
                         int(getattr(chain, "chain_index", -1)),
                         chain.get_log_probability(False), chain.get_log_probability(True))
        self.lines += 1

    def close(self, num_replicates: Optional[int] = None) -> None:
        if self.enabled and num_replicates is not None:
            self.logger.info("monitors finished (%d replicates)", int(num_replicates))


def load_trace(path: Union[str, Path]) -> Dict[str, Any]:
    """读取一个 trace 文件；返回各数据集的 ndarray 以及 'meta' 字典。"""
    out: Dict[str, Any] = {}
    with h5py.File(str(path), "r") as fh:
        for name in _SCALAR_FIELDS + ("state",):
            if name in fh:
                out[name] = fh[name][...]
        raw = fh.attrs.get("meta", "{}")
        if isinstance(raw, (bytes, bytearray, np.bytes_)):
            raw = raw.decode("utf-8")
        out["meta"] = json.loads(raw)
        if "num_replicates" in fh.attrs:
            out["num_replicates"] = int(fh.attrs["num_replicates"])
    return out


def merge_traces(paths: Iterable[Union[str, Path]], out_path: Union[str, Path]) -> Path:
    """
    合并多个进程写出的 trace 文件（不存在的文件跳过），按 generation 稳定排序后写入 out_path。
    各文件参数维度必须一致。
    """
    parts: List[Dict[str, Any]] = []
    sources: List[str] = []
    for p in paths:
        pth = Path(p)
        if not pth.exists():
            logger.warning("trace file missing, skipped: %s", pth)
            continue
        parts.append(load_trace(pth))
        sources.append(str(pth))
    if not parts:
        raise FileNotFoundError("merge_traces: none of the given trace files exist")

    dims = {int(part["meta"].get("dim", 0)) for part in parts if part["meta"]}
    if len(dims) > 1:
        raise ValueError(f"merge_traces: inconsistent parameter dimensions {sorted(dims)}")
    dim = dims.pop() if dims else 0

    merged: Dict[str, np.ndarray] = {}
    for name in _SCALAR_FIELDS:
        merged[name] = np.concatenate([np.asarray(part.get(name, [])) for part in parts])
    states = [np.asarray(part["state"]).reshape(-1, dim) for part in parts if "state" in part]
    merged["state"] = np.vstack(states) if states else np.zeros((0, dim), dtype=np.float64)

    order = np.argsort(merged["generation"], kind="stable")
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with h5py.File(str(out_path), "w") as fh:
        for name, arr in merged.items():
            fh.create_dataset(name, data=arr[order] if arr.shape[0] == order.size else arr)
        meta = next((part["meta"] for part in parts if part["meta"]), {"dim": dim})
        fh.attrs["meta"] = json.dumps(meta)
        fh.attrs["merged_from"] = json.dumps(sources, ensure_ascii=False)
    logger.info("merged %d trace file(s) into %s (%d rows)", len(sources), out_path, order.size)
    return out_path
