# -*- coding: utf-8 -*-
"""
    协调器状态的 HDF5 checkpoint

组 ``mc3_checkpoint`` 下保存：
    attrs:    num_chains / swap_method / generation / burnin_generation /
              config(JSON) / tuning(JSON) / swap_rng_state(JSON，仅 leader 有)
    datasets: heats / heat_ranks / attempted / accepted / chain_values

链自身的参数状态不在此保存（属于链的实现）；恢复时各链的热度、冷链标记与调参快照
由协调器重新推送。
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Union

import h5py
import numpy as np

from ..analysis.swap_statistics import SwapStatistics
from ..core.chain import TuningRecord, owned_chains

logger = logging.getLogger(__name__)

__all__ = ["CHECKPOINT_GROUP", "save_checkpoint", "load_checkpoint", "restore_checkpoint"]

CHECKPOINT_GROUP = "mc3_checkpoint"
_FORMAT_VERSION = 1


def _jsonable(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {str(k): _jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_jsonable(v) for v in obj]
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    return obj


def _rng_state_from_json(d: Dict[str, Any]) -> Dict[str, Any]:
    """把 JSON 里的列表还原为 bit_generator.state 需要的 uint64 数组。"""
    out = dict(d)
    if isinstance(out.get("state"), dict):
        out["state"] = {k: (np.asarray(v, dtype=np.uint64) if isinstance(v, list) else v)
                        for k, v in out["state"].items()}
    if isinstance(out.get("buffer"), list):
        out["buffer"] = np.asarray(out["buffer"], dtype=np.uint64)
    return out


def _decode_attr(raw: Any) -> str:
    if isinstance(raw, (bytes, bytearray, np.bytes_)):
        return raw.decode("utf-8")
    return str(raw)


def save_checkpoint(coordinator, path: Union[str, Path]) -> Path:
    """写出协调器状态（覆盖同名组）。多进程运行时通常只由 leader 调用。"""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        fh = h5py.File(str(path), "a")
    except OSError as exc:
        raise RuntimeError(f"save_checkpoint: cannot open {path}: {exc}") from exc

    with fh:
        if CHECKPOINT_GROUP in fh:
            del fh[CHECKPOINT_GROUP]
        grp = fh.create_group(CHECKPOINT_GROUP)
        grp.attrs["format_version"] = _FORMAT_VERSION
        grp.attrs["num_chains"] = int(coordinator.num_chains)
        grp.attrs["swap_method"] = str(coordinator.swap_method)
        grp.attrs["generation"] = int(coordinator.generation)
        grp.attrs["burnin_generation"] = int(coordinator.burnin_generation)
        grp.attrs["config"] = json.dumps(_jsonable(asdict(coordinator.config)))
        grp.attrs["tuning"] = json.dumps([[r.to_tuple() for r in recs] for recs in coordinator.tuning])
        if coordinator.rng is not None:
            grp.attrs["swap_rng_state"] = json.dumps(_jsonable(coordinator.rng.bit_generator.state))

        grp.create_dataset("heats", data=np.asarray(coordinator.ladder.heats, dtype=np.float64))
        grp.create_dataset("heat_ranks", data=np.asarray(coordinator.ladder.heat_ranks, dtype=np.int64))
        grp.create_dataset("attempted", data=coordinator.stats.attempted)
        grp.create_dataset("accepted", data=coordinator.stats.accepted)
        grp.create_dataset("chain_values", data=np.asarray(coordinator.chain_values, dtype=np.float64))

    logger.info("checkpoint saved: %s (generation %d, burn-in %d)",
                path, coordinator.generation, coordinator.burnin_generation)
    return path


def load_checkpoint(path: Union[str, Path]) -> Dict[str, Any]:
    """读回 checkpoint 为普通字典（不需要协调器实例）。"""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"checkpoint not found: {path}")
    with h5py.File(str(path), "r") as fh:
        if CHECKPOINT_GROUP not in fh:
            raise KeyError(f"{path} has no {CHECKPOINT_GROUP!r} group")
        grp = fh[CHECKPOINT_GROUP]
        version = int(grp.attrs.get("format_version", 0))
        if version != _FORMAT_VERSION:
            raise ValueError(f"unsupported checkpoint format version {version}")
        out: Dict[str, Any] = {
            "num_chains": int(grp.attrs["num_chains"]),
            "swap_method": _decode_attr(grp.attrs["swap_method"]),
            "generation": int(grp.attrs["generation"]),
            "burnin_generation": int(grp.attrs["burnin_generation"]),
            "config": json.loads(_decode_attr(grp.attrs["config"])),
            "tuning": [[TuningRecord.from_tuple(t) for t in recs]
                       for recs in json.loads(_decode_attr(grp.attrs["tuning"]))],
            "swap_rng_state": None,
        }
        if "swap_rng_state" in grp.attrs:
            out["swap_rng_state"] = _rng_state_from_json(json.loads(_decode_attr(grp.attrs["swap_rng_state"])))
        for name in ("heats", "heat_ranks", "attempted", "accepted", "chain_values"):
            out[name] = grp[name][...]
    return out


def restore_checkpoint(coordinator, path: Union[str, Path]) -> Dict[str, Any]:
    """
    把 checkpoint 写回协调器：热度梯子、rank 映射、交换统计、代计数、调参快照，
    以及（leader 上）swap RNG 状态；随后推送给本进程持有的链。返回读到的字典。
    """
    data = load_checkpoint(path)
    if data["num_chains"] != coordinator.num_chains:
        raise ValueError(f"checkpoint has {data['num_chains']} chains, coordinator has {coordinator.num_chains}")

    coordinator.ladder.replace(data["heats"], data["heat_ranks"])
    coordinator.stats = SwapStatistics.from_arrays(data["attempted"], data["accepted"])
    coordinator.generation = data["generation"]
    coordinator.burnin_generation = data["burnin_generation"]
    coordinator.chain_values = np.asarray(data["chain_values"], dtype=np.float64)
    coordinator.tuning = [list(recs) for recs in data["tuning"]]

    if coordinator.rng is not None:
        if data["swap_rng_state"] is None:
            logger.warning("checkpoint %s carries no swap RNG state; leader keeps its current stream", path)
        else:
            coordinator.rng.bit_generator.state = data["swap_rng_state"]

    for slot in owned_chains(coordinator.slots):
        heat = float(coordinator.ladder.heats[slot.index])
        slot.chain.set_heat(heat)
        slot.chain.set_active(heat == 1.0)
        slot.chain.set_tuning_snapshot(coordinator.tuning[slot.index])

    logger.info("checkpoint restored: %s (cold chain %d)", path, coordinator.cold_chain_index())
    return data
