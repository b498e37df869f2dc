# -*- coding: utf-8 -*-
"""
    进程组同步层（gather → leader，leader → broadcast）

协调器所有跨进程通信都归结为两个集合操作：
    - ``gather(local)``: 各进程提交 {链编号: 数据}，leader 得到合并后的字典，其它进程得到 None
    - ``broadcast(obj)``: leader 的对象原样送达每个进程

实现功能：
    - ``SerialGroup``: 单进程；gather / broadcast 退化为本地拷贝
    - ``QueueGroup``: multiprocessing 队列实现（spawn 上下文），每个进程一个 inbox；
      每条消息携带操作序号，丢失/乱序/超时一律抛 ``SynchronizationError``（致命，不重试）
    - ``MPIGroup``: mpi4py 实现（comm.gather / comm.bcast），适用于集群

注意：
    gather / broadcast 是集合操作，组内每个进程必须以相同顺序调用。
"""

from __future__ import annotations

import logging
import queue as _queue
from multiprocessing import get_context
from typing import Any, Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

__all__ = [
    "SynchronizationError",
    "ProcessGroup",
    "SerialGroup",
    "QueueGroup",
    "MPIGroup",
    "make_queue_inboxes",
    "make_process_group",
]


class SynchronizationError(RuntimeError):
    """跨进程通信失败（超时、通道关闭、消息乱序或数据缺失）。"""


# -----------------------------------------------------------------------------
# 抽象基类
# -----------------------------------------------------------------------------
class ProcessGroup:
    rank: int = 0
    size: int = 1
    leader: int = 0

    @property
    def is_leader(self) -> bool:
        return self.rank == self.leader

    def gather(self, local: Dict[int, Any]) -> Optional[Dict[int, Any]]:
        raise NotImplementedError

    def broadcast(self, obj: Any = None) -> Any:
        raise NotImplementedError

    def barrier(self) -> None:
        self.gather({})
        self.broadcast(None)

    def close(self) -> None:
        pass

    def describe(self) -> str:
        return f"{type(self).__name__}(rank={self.rank}, size={self.size}, leader={self.leader})"

    def __repr__(self) -> str:
        return self.describe()


def _merge_contributions(parts: Sequence[Tuple[int, Dict[int, Any]]]) -> Dict[int, Any]:
    merged: Dict[int, Any] = {}
    for src, part in parts:
        for key, value in part.items():
            if key in merged:
                raise SynchronizationError(f"chain {key} contributed twice (second time by rank {src})")
            merged[key] = value
    return merged


# -----------------------------------------------------------------------------
# 单进程
# -----------------------------------------------------------------------------
class SerialGroup(ProcessGroup):
    def __init__(self) -> None:
        self.rank = 0
        self.size = 1
        self.leader = 0

    def gather(self, local: Dict[int, Any]) -> Optional[Dict[int, Any]]:
        return dict(local)

    def broadcast(self, obj: Any = None) -> Any:
        return obj

    def barrier(self) -> None:
        return None


# -----------------------------------------------------------------------------
# multiprocessing 队列
# -----------------------------------------------------------------------------
def make_queue_inboxes(size: int, ctx=None) -> List[Any]:
    """为 size 个进程各建一个 inbox（默认 spawn 上下文）。"""
    ctx = ctx or get_context("spawn")
    return [ctx.Queue() for _ in range(int(size))]


class QueueGroup(ProcessGroup):
    """
    单机多进程进程组。inboxes[r] 是 rank r 的接收队列，所有进程共享同一份 inboxes 列表。

    Parameters
    ----------
    timeout : 每次阻塞接收的超时（秒）；None 表示永久等待。
    """

    def __init__(self, rank: int, size: int, inboxes: Sequence[Any], leader: int = 0,
                 timeout: Optional[float] = None) -> None:
        if not (0 <= int(rank) < int(size)):
            raise ValueError(f"rank must be in [0, {size}), got {rank}")
        if not (0 <= int(leader) < int(size)):
            raise ValueError(f"leader must be in [0, {size}), got {leader}")
        if len(inboxes) != int(size):
            raise ValueError(f"expected {size} inboxes, got {len(inboxes)}")
        self.rank = int(rank)
        self.size = int(size)
        self.leader = int(leader)
        self.inboxes = list(inboxes)
        self.timeout = timeout
        self._op = 0
        # leader 收到的“未来”操作的消息（某个进程跑得更快时）
        self._early: Dict[int, List[Tuple[str, int, Any]]] = {}

    # -------------------------
    # 底层收发
    # -------------------------
    def _send(self, dest: int, kind: str, payload: Any) -> None:
        try:
            self.inboxes[dest].put((kind, self._op, self.rank, payload))
        except (OSError, ValueError) as exc:
            raise SynchronizationError(f"rank {self.rank}: send to rank {dest} failed: {exc}") from exc

    def _recv(self, kind: str) -> Tuple[int, Any]:
        early = self._early.get(self._op)
        if early:
            k, src, payload = early.pop(0)
            if k != kind:
                raise SynchronizationError(f"rank {self.rank}: expected {kind!r} for op {self._op}, got {k!r}")
            return src, payload
        while True:
            try:
                k, op, src, payload = self.inboxes[self.rank].get(timeout=self.timeout)
            except _queue.Empty as exc:
                logger.error("rank %d: no %s message within %ss (op %d)", self.rank, kind, self.timeout, self._op)
                raise SynchronizationError(
                    f"rank {self.rank}: timed out after {self.timeout}s waiting for {kind!r} (op {self._op})"
                ) from exc
            except (OSError, EOFError, ValueError) as exc:
                raise SynchronizationError(f"rank {self.rank}: inbox closed: {exc}") from exc
            if op == self._op:
                if k != kind:
                    raise SynchronizationError(f"rank {self.rank}: expected {kind!r} for op {op}, got {k!r}")
                return src, payload
            if op > self._op:
                self._early.setdefault(op, []).append((k, src, payload))
                continue
            raise SynchronizationError(f"rank {self.rank}: stale message for op {op} (current op {self._op})")

    # -------------------------
    # 集合操作
    # -------------------------
    def gather(self, local: Dict[int, Any]) -> Optional[Dict[int, Any]]:
        self._op += 1
        if not self.is_leader:
            self._send(self.leader, "gather", dict(local))
            return None
        parts: List[Tuple[int, Dict[int, Any]]] = [(self.rank, dict(local))]
        for _ in range(self.size - 1):
            parts.append(self._recv("gather"))
        self._early.pop(self._op, None)
        return _merge_contributions(parts)

    def broadcast(self, obj: Any = None) -> Any:
        self._op += 1
        if self.is_leader:
            for dest in range(self.size):
                if dest != self.rank:
                    self._send(dest, "bcast", obj)
            return obj
        src, payload = self._recv("bcast")
        if src != self.leader:
            raise SynchronizationError(f"rank {self.rank}: broadcast from rank {src}, expected leader {self.leader}")
        return payload


# -----------------------------------------------------------------------------
# MPI（mpi4py）
# -----------------------------------------------------------------------------
class MPIGroup(ProcessGroup):
    """基于 mpi4py 通信子的进程组；comm=None 时使用 MPI.COMM_WORLD。"""

    def __init__(self, comm=None, leader: int = 0) -> None:
        try:
            from mpi4py import MPI
        except ImportError as exc:
            raise ImportError("MPIGroup 需要可选依赖 `mpi4py`。请先安装：pip install mpi4py") from exc
        self._MPI = MPI
        self.comm = comm if comm is not None else MPI.COMM_WORLD
        self.rank = int(self.comm.Get_rank())
        self.size = int(self.comm.Get_size())
        if not (0 <= int(leader) < self.size):
            raise ValueError(f"leader must be in [0, {self.size}), got {leader}")
        self.leader = int(leader)

    def gather(self, local: Dict[int, Any]) -> Optional[Dict[int, Any]]:
        try:
            parts = self.comm.gather(dict(local), root=self.leader)
        except self._MPI.Exception as exc:
            raise SynchronizationError(f"rank {self.rank}: MPI gather failed: {exc}") from exc
        if not self.is_leader:
            return None
        return _merge_contributions(list(enumerate(parts)))

    def broadcast(self, obj: Any = None) -> Any:
        try:
            return self.comm.bcast(obj, root=self.leader)
        except self._MPI.Exception as exc:
            raise SynchronizationError(f"rank {self.rank}: MPI broadcast failed: {exc}") from exc

    def barrier(self) -> None:
        try:
            self.comm.Barrier()
        except self._MPI.Exception as exc:
            raise SynchronizationError(f"rank {self.rank}: MPI barrier failed: {exc}") from exc


# -----------------------------------------------------------------------------
# 工厂
# -----------------------------------------------------------------------------
def make_process_group(backend: str = "serial", **kwargs) -> ProcessGroup:
    """
    backend:
        'serial'          → SerialGroup()
        'multiprocessing' → QueueGroup(rank=, size=, inboxes=, leader=, timeout=)
        'mpi'             → MPIGroup(comm=, leader=)
    """
    b = str(backend).strip().lower()
    if b == "serial":
        return SerialGroup()
    if b in ("multiprocessing", "mp", "queue"):
        return QueueGroup(**kwargs)
    if b == "mpi":
        return MPIGroup(**kwargs)
    raise ValueError(f"Unknown backend: {backend!r}. Use 'serial', 'multiprocessing' or 'mpi'.")
