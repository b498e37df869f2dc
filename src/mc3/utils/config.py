# -*- coding: utf-8 -*-
"""
统一配置管理系统（支持预设、分层覆盖、交换策略一致性检查）

实现功能：
    - 交换策略名标准化（"neighbour" → "neighbor"，"all" → "both"）
    - 硬性约束（构造即抛 ValueError）：
         heats 显式给出时长度必须等于 num_chains，且每个值在 (0, 1]
         swap_interval / swap_interval2 必须为正整数
         leader 必须小于 num_processes
    - 完整验证函数 validate_config() 返回 warnings 列表
    - ENV/CLI/YAML 合并，优先级：默认/预设 < 文件 < 环境变量 < CLI --set

示例：
    MC3__sampler__num_chains=8  →  {'sampler': {'num_chains': 8}}
    --set run.generations=20000 →  {'run': {'generations': 20000}}
"""

from __future__ import annotations

import os
import sys
import json
import ast
import copy
from dataclasses import dataclass, asdict, field, replace
from pathlib import Path
from typing import Optional, List, Dict, Any, Tuple

import numpy as np

# 可选 YAML
try:
    import yaml
except ImportError:
    yaml = None  # type: ignore

__all__ = [
    'Config', 'MC3Config', 'RunConfig',
    'load_config', 'load_config_dict', 'save_config', 'get_preset_config',
    'load_from_env', 'merge_configs', 'validate_config', 'from_args'
]

# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
_SWAP_METHODS = ('neighbor', 'random', 'both')
_SCHEDULE_TYPES = ('random', 'sequential', 'single')
_SUPPORTED_BACKENDS = ('serial', 'multiprocessing', 'mpi')

def _to_serializable(obj: Any):
    """将对象递归转换为 JSON/YAML 友好格式。"""
    if isinstance(obj, tuple):
        return [_to_serializable(v) for v in obj]
    if isinstance(obj, list):
        return [_to_serializable(v) for v in obj]
    if isinstance(obj, dict):
        return {k: _to_serializable(v) for k, v in obj.items()}
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, np.generic):
        return obj.item()
    return obj

def _deep_merge(d1: Dict[str, Any], d2: Dict[str, Any]) -> Dict[str, Any]:
    """将 d2 深度合并到 d1（原地修改 d1 并返回它）。"""
    for k, v in (d2 or {}).items():
        if k in d1 and isinstance(d1[k], dict) and isinstance(v, dict):
            _deep_merge(d1[k], v)
        else:
            d1[k] = v
    return d1

def _set_by_path(d: Dict[str, Any], path: List[str], value: Any):
    """按照 path（list）在嵌套 dict 中设置 value。"""
    cur = d
    for key in path[:-1]:
        if key not in cur or not isinstance(cur[key], dict):
            cur[key] = {}
        cur = cur[key]
    cur[path[-1]] = value

def _parse_env_value(s: str):
    """将环境变量字符串解析为 Python 值（literal_eval 优先，兼容 true/false/none）。"""
    if s is None:
        return None
    try:
        return ast.literal_eval(s)
    except (ValueError, SyntaxError):
        sl = s.strip()
        sl_l = sl.lower()
        if sl_l == 'true':
            return True
        if sl_l == 'false':
            return False
        if sl_l in ('none', 'null'):
            return None
        return sl

def normalize_swap_method(name: str) -> str:
    """将各种同义交换策略名归一化。"""
    s = str(name).strip().lower().replace('-', '_').replace(' ', '_')
    if s in ('neighbor', 'neighbour', 'adjacent', 'nearest'):
        return 'neighbor'
    if s in ('random', 'any', 'random_pair'):
        return 'random'
    if s in ('both', 'all', 'neighbor_random', 'neighbour_random'):
        return 'both'
    return s

# -----------------------------------------------------------------------------
# Dataclasses
# -----------------------------------------------------------------------------
@dataclass
class MC3Config:
    # 链与热度梯子
    num_chains: int = 4
    delta: float = 0.2                      # heat_i = 1 / (1 + delta * i)
    heats: Optional[List[float]] = None     # 显式热度（优先于 delta）

    # 交换策略
    swap_method: str = 'neighbor'           # 'neighbor' | 'random' | 'both'（同义词会归一化）
    swap_interval: int = 10                 # 邻接交换周期（代）
    swap_interval2: Optional[int] = None    # 随机交换周期；None ⇒ 与 swap_interval 相同

    # 热度自动调节
    tune_heat: bool = False
    tune_heat_target: float = 0.23

    # 透传给单链的 move 调度方式
    schedule_type: str = 'random'           # 'random' | 'sequential' | 'single'

    # leader 进程与随机种子
    leader: int = 0
    seed: Optional[int] = None

    def __post_init__(self):
        if not (isinstance(self.num_chains, int) and self.num_chains >= 1):
            raise ValueError(f"num_chains must be a positive integer, got {self.num_chains}")

        self.swap_method = normalize_swap_method(self.swap_method)
        if self.swap_method not in _SWAP_METHODS:
            raise ValueError(f"Unknown swap_method: {self.swap_method!r}. "
                             f"Use one of {_SWAP_METHODS} (synonyms accepted).")

        if not (isinstance(self.swap_interval, int) and self.swap_interval >= 1):
            raise ValueError(f"swap_interval must be a positive integer (got {self.swap_interval})")
        if self.swap_interval2 is not None and not (isinstance(self.swap_interval2, int) and self.swap_interval2 >= 1):
            raise ValueError(f"swap_interval2 must be a positive integer or None (got {self.swap_interval2})")

        if self.heats is not None:
            heats = [float(h) for h in self.heats]
            if len(heats) != self.num_chains:
                raise ValueError(f"heats length ({len(heats)}) must equal num_chains ({self.num_chains})")
            for h in heats:
                if not (0.0 < h <= 1.0):
                    raise ValueError(f"every heat must lie in (0, 1], got {h}")
            self.heats = heats
        elif not (float(self.delta) > 0.0):
            raise ValueError(f"delta must be positive, got {self.delta}")

        if not (0.0 < float(self.tune_heat_target) < 1.0):
            raise ValueError("tune_heat_target must be in (0, 1)")
        if self.schedule_type not in _SCHEDULE_TYPES:
            raise ValueError(f"schedule_type must be one of {_SCHEDULE_TYPES}, got {self.schedule_type!r}")
        if not (isinstance(self.leader, int) and self.leader >= 0):
            raise ValueError("leader must be a non-negative int")
        if self.seed is not None and not isinstance(self.seed, int):
            raise ValueError("seed must be an int or None")

    @property
    def random_interval(self) -> int:
        """随机交换实际使用的周期。"""
        return int(self.swap_interval2) if self.swap_interval2 is not None else int(self.swap_interval)

@dataclass
class RunConfig:
    burnin: int = 1000
    generations: int = 10000
    tuning_interval: int = 100       # burn-in 期间每隔多少代调一次；0 关闭
    monitor_interval: int = 10       # trace 记录间隔

    # 资源
    backend: str = 'serial'          # 'serial' | 'multiprocessing' | 'mpi'
    num_processes: int = 1
    sync_timeout: Optional[float] = None

    # 输出
    output_dir: str = 'runs'
    checkpoint: bool = True

    def __post_init__(self):
        for name in ('burnin', 'generations', 'tuning_interval'):
            v = getattr(self, name)
            if not (isinstance(v, int) and v >= 0):
                raise ValueError(f"{name} must be a non-negative integer (got {v})")
        if not (isinstance(self.monitor_interval, int) and self.monitor_interval >= 1):
            raise ValueError("monitor_interval must be a positive integer")
        if self.backend not in _SUPPORTED_BACKENDS:
            raise ValueError(f"backend must be one of {_SUPPORTED_BACKENDS}, got {self.backend}")
        if not (isinstance(self.num_processes, int) and self.num_processes >= 1):
            raise ValueError("num_processes must be a positive int")
        if self.sync_timeout is not None and float(self.sync_timeout) <= 0:
            raise ValueError("sync_timeout must be positive or None")

@dataclass
class Config:
    sampler: MC3Config = field(default_factory=MC3Config)
    run: RunConfig = field(default_factory=RunConfig)

    project_name: str = 'mc3'
    verbose: bool = True
    debug: bool = False
    version: int = 1

    def __post_init__(self):
        if self.sampler.leader >= self.run.num_processes:
            raise ValueError(f"sampler.leader ({self.sampler.leader}) must be < run.num_processes "
                             f"({self.run.num_processes})")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sampler': asdict(self.sampler),
            'run': asdict(self.run),
            'project_name': self.project_name,
            'verbose': self.verbose,
            'debug': self.debug,
            'version': self.version,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'Config':
        d = d or {}
        sampler = MC3Config(**(d.get('sampler', {}) or {}))
        run = RunConfig(**(d.get('run', {}) or {}))
        return cls(
            sampler=sampler,
            run=run,
            project_name=d.get('project_name', 'mc3'),
            verbose=bool(d.get('verbose', True)),
            debug=bool(d.get('debug', False)),
            version=int(d.get('version', 1)),
        )

    def add_path_root(self, root: str | Path) -> 'Config':
        """将相对输出路径绑定到项目根（返回新 Config，不修改原对象）。"""
        if root is None:
            return self
        root_p = Path(os.path.expandvars(os.path.expanduser(str(root)))).resolve()
        pp = Path(os.path.expandvars(os.path.expanduser(str(self.run.output_dir))))
        out = str(pp.resolve()) if pp.is_absolute() else str((root_p / pp).resolve())
        return replace(self, run=replace(self.run, output_dir=out))

# -----------------------------------------------------------------------------
# I/O
# -----------------------------------------------------------------------------
def load_config_dict(filepath: str) -> Dict[str, Any]:
    """读取 YAML 或 JSON 文件，返回其中原样的嵌套 dict（不补默认值）。"""
    p = Path(filepath)
    if not p.exists():
        raise FileNotFoundError(f"Config file not found: {filepath}")
    suf = p.suffix.lower()
    if suf in ('.yaml', '.yml'):
        if yaml is None:
            raise RuntimeError("PyYAML not installed; cannot load YAML config")
        with open(p, 'r', encoding='utf-8') as f:
            cfg = yaml.safe_load(f) or {}
    elif suf == '.json':
        with open(p, 'r', encoding='utf-8') as f:
            cfg = json.load(f) or {}
    else:
        raise ValueError(f"Unsupported config file extension: {suf}")
    if not isinstance(cfg, dict):
        raise ValueError(f"Config file must contain a mapping at top level: {filepath}")
    return cfg

def load_config(filepath: str) -> Config:
    """从 YAML 或 JSON 文件加载配置并返回 Config 对象。"""
    return Config.from_dict(load_config_dict(filepath))

def save_config(config: Config, filepath: str, format: Optional[str] = None) -> Path:
    """将 Config 保存为 YAML 或 JSON。默认根据后缀判断格式。"""
    p = Path(filepath)
    p.parent.mkdir(parents=True, exist_ok=True)
    data = _to_serializable(config.to_dict())
    fmt = format
    if fmt is None:
        fmt = 'json' if p.suffix.lower() == '.json' else 'yaml'

    if fmt == 'yaml':
        if yaml is None:
            raise RuntimeError("PyYAML not installed; cannot save YAML")
        with open(p, 'w', encoding='utf-8') as f:
            yaml.safe_dump(data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)
    elif fmt == 'json':
        with open(p, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
    else:
        raise ValueError(f"Unsupported format: {fmt}")
    return p

# -----------------------------------------------------------------------------
# Presets
# -----------------------------------------------------------------------------
def get_preset_config(name: str) -> Config:
    """返回内置预设配置的副本（deepcopy）。"""
    presets: Dict[str, Config] = {
        'quick': Config(
            sampler=MC3Config(num_chains=4, delta=0.2, swap_method='neighbor', swap_interval=5),
            run=RunConfig(burnin=200, generations=1000, tuning_interval=50)
        ),
        'standard': Config(
            sampler=MC3Config(num_chains=8, delta=0.1, swap_method='both', swap_interval=10,
                              swap_interval2=50, tune_heat=True),
            run=RunConfig(burnin=5000, generations=20000, tuning_interval=200)
        ),
        'parallel': Config(
            sampler=MC3Config(num_chains=8, delta=0.1, swap_method='both', swap_interval=10,
                              tune_heat=True, seed=2024),
            run=RunConfig(burnin=2000, generations=10000, tuning_interval=100,
                          backend='multiprocessing', num_processes=4, sync_timeout=60.0)
        ),
    }
    if name not in presets:
        raise ValueError(f"Unknown preset: {name}. Available: {list(presets.keys())}")
    return copy.deepcopy(presets[name])

# -----------------------------------------------------------------------------
# Environment variables (nested via sep, e.g., MC3__sampler__num_chains=8)
# -----------------------------------------------------------------------------
def load_from_env(prefix: str = 'MC3', sep: str = '__') -> Dict[str, Any]:
    """
    从环境变量读取以 prefix 开头、用 sep 分层的键，返回嵌套 dict。
    例： MC3__sampler__num_chains=8  → {'sampler': {'num_chains': 8}}
    """
    out: Dict[str, Any] = {}
    pfx = prefix + sep
    for k, v in os.environ.items():
        if not k.startswith(pfx):
            continue
        parts = [p for p in k[len(pfx):].split(sep) if p]
        if not parts:
            continue
        _set_by_path(out, parts, _parse_env_value(v))
    return out

# -----------------------------------------------------------------------------
# Merge & validate
# -----------------------------------------------------------------------------
def merge_configs(base: Config, override: Dict[str, Any]) -> Config:
    """将 override（nested dict）深度合并到 base Config 的字典表示上，并返回新的 Config。"""
    base_dict = base.to_dict()
    _deep_merge(base_dict, override or {})
    return Config.from_dict(base_dict)

def validate_config(cfg: Config) -> Tuple[bool, List[str]]:
    """
    跨块一致性检查（仅返回 issues，不抛错；构造阶段的硬约束已在 __post_init__ 完成）。
    """
    issues: List[str] = []
    s, r = cfg.sampler, cfg.run

    if s.num_chains < 2:
        issues.append("sampler.num_chains < 2 -- 不会发生任何交换")
    if s.swap_method == 'neighbor' and s.swap_interval2 is not None:
        issues.append("sampler.swap_interval2 在 swap_method='neighbor' 时被忽略")
    if s.heats is not None:
        n_cold = sum(1 for h in s.heats if h == 1.0)
        if n_cold != 1:
            issues.append(f"sampler.heats 中应恰有一个 1.0（冷链），当前 {n_cold} 个")
        if any(a < b for a, b in zip(s.heats, s.heats[1:])):
            issues.append("sampler.heats 应单调不增")
    if s.tune_heat and (r.tuning_interval == 0 or r.burnin == 0):
        issues.append("sampler.tune_heat=True 但 run.burnin 或 run.tuning_interval 为 0 -- 不会调节热度")
    if r.backend == 'serial' and r.num_processes > 1:
        issues.append("run.backend='serial' 但 run.num_processes > 1 -- 仅使用单进程")
    if r.backend != 'serial' and r.num_processes > 1 and r.sync_timeout is None:
        issues.append("多进程运行未设置 run.sync_timeout -- 某个 worker 崩溃时其它进程将永久阻塞")

    ok = len(issues) == 0
    return ok, issues

# -----------------------------------------------------------------------------
# CLI helpers
# -----------------------------------------------------------------------------
def _parse_cli_overrides(kv_list: List[str]) -> Dict[str, Any]:
    """
    解析 --set key=value（点分路径）列表，返回 nested dict。
    例：--set sampler.num_chains=8 → {'sampler': {'num_chains': 8}}
    """
    out: Dict[str, Any] = {}
    for kv in (kv_list or []):
        if '=' not in kv:
            raise ValueError(f"--set expects key=value pairs, got: {kv}")
        key, val = kv.split('=', 1)
        path = [p.strip() for p in key.split('.') if p.strip()]
        if not path:
            continue
        _set_by_path(out, path, _parse_env_value(val))
    return out

def from_args(args: Optional[List[str]] = None, env_prefix: str = 'MC3') -> Config:
    """
    从命令行加载并合并配置（优先级从低到高）:
      默认/预设 <- 文件 (--config) <- 环境变量 (--env-prefix) <- CLI --set
    支持参数:
      --preset NAME
      --config FILE
      --env-prefix PREFIX
      --set k=v   (可重复)
      --root PATH (绑定输出目录到 PATH)
    """
    import argparse
    ap = argparse.ArgumentParser(description="Load & merge MC3 configuration")
    ap.add_argument('--preset', type=str, choices=['quick', 'standard', 'parallel'], help='preset name')
    ap.add_argument('--config', type=str, help='config file (yaml|json)')
    ap.add_argument('--env-prefix', type=str, default=env_prefix, help='environment variable prefix (default MC3)')
    ap.add_argument('--set', dest='sets', action='append', default=[], help='override key=value (dot notation, can repeat)')
    ap.add_argument('--root', type=str, default=None, help='project root to bind output dirs')
    ns = ap.parse_args(args=args)

    # base config: preset 或默认
    cfg = get_preset_config(ns.preset) if ns.preset else Config()

    # 文件覆盖
    if ns.config:
        cfg = merge_configs(cfg, load_config_dict(ns.config))

    # 环境变量覆盖
    env_over = load_from_env(prefix=ns.env_prefix)
    if env_over:
        cfg = merge_configs(cfg, env_over)

    # CLI --set（最高优先）
    cli_over = _parse_cli_overrides(ns.sets)
    if cli_over:
        cfg = merge_configs(cfg, cli_over)

    if ns.root:
        cfg = cfg.add_path_root(ns.root)

    # 最终验证：仅打印 warnings
    ok, issues = validate_config(cfg)
    if not ok:
        print("⚠ Config validation warnings:", file=sys.stderr)
        for it in issues:
            print("  -", it, file=sys.stderr)
    return cfg
