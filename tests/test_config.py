# -*- coding: utf-8 -*-
"""
配置层单元测试：构造校验、交换策略同义词、YAML/JSON 读写、预设、环境变量与 CLI 覆盖。
"""

from __future__ import annotations

import os
import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT / "src") not in sys.path:
    sys.path.insert(0, str(ROOT / "src"))

from mc3.utils.config import (
    Config,
    MC3Config,
    RunConfig,
    from_args,
    get_preset_config,
    load_config,
    load_config_dict,
    load_from_env,
    merge_configs,
    save_config,
    validate_config,
)


class TestMC3Config(unittest.TestCase):
    def test_defaults(self):
        cfg = MC3Config()
        self.assertEqual(cfg.num_chains, 4)
        self.assertEqual(cfg.swap_method, "neighbor")
        self.assertEqual(cfg.random_interval, cfg.swap_interval)

    def test_swap_method_synonyms(self):
        self.assertEqual(MC3Config(swap_method="Neighbour").swap_method, "neighbor")
        self.assertEqual(MC3Config(swap_method="all").swap_method, "both")
        with self.assertRaises(ValueError):
            MC3Config(swap_method="sideways")

    def test_hard_constraints(self):
        with self.assertRaises(ValueError):
            MC3Config(num_chains=0)
        with self.assertRaises(ValueError):
            MC3Config(swap_interval=0)
        with self.assertRaises(ValueError):
            MC3Config(swap_interval2=-3)
        with self.assertRaises(ValueError):
            MC3Config(num_chains=3, heats=[1.0, 0.5])
        with self.assertRaises(ValueError):
            MC3Config(num_chains=2, heats=[1.0, 1.5])
        with self.assertRaises(ValueError):
            MC3Config(schedule_type="shuffled")
        with self.assertRaises(ValueError):
            MC3Config(tune_heat_target=1.0)

    def test_explicit_random_interval(self):
        self.assertEqual(MC3Config(swap_method="both", swap_interval=3, swap_interval2=7).random_interval, 7)

    def test_leader_must_be_inside_process_group(self):
        with self.assertRaises(ValueError):
            Config(sampler=MC3Config(leader=2), run=RunConfig(num_processes=2))

    def test_run_config_checks(self):
        with self.assertRaises(ValueError):
            RunConfig(backend="threads")
        with self.assertRaises(ValueError):
            RunConfig(monitor_interval=0)
        with self.assertRaises(ValueError):
            RunConfig(sync_timeout=0)


class TestConfigIO(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    def test_yaml_and_json_roundtrip(self):
        cfg = Config(sampler=MC3Config(num_chains=6, heats=[1.0, 0.9, 0.8, 0.7, 0.6, 0.5], seed=4),
                     run=RunConfig(generations=123))
        for name in ("cfg.yaml", "cfg.json"):
            path = save_config(cfg, str(self.tmp / name))
            back = load_config(str(path))
            self.assertEqual(back.to_dict(), cfg.to_dict())

    def test_unknown_extension(self):
        p = self.tmp / "cfg.toml"
        p.write_text("x = 1")
        with self.assertRaises(ValueError):
            load_config(str(p))

    def test_presets_are_copies(self):
        a = get_preset_config("quick")
        a.sampler.num_chains = 99
        self.assertEqual(get_preset_config("quick").sampler.num_chains, 4)
        self.assertEqual(get_preset_config("parallel").run.backend, "multiprocessing")
        with self.assertRaises(ValueError):
            get_preset_config("huge")

    def test_env_overrides(self):
        env = {"MC3T__sampler__num_chains": "8", "MC3T__sampler__tune_heat": "true", "OTHER": "1"}
        with mock.patch.dict(os.environ, env, clear=False):
            over = load_from_env(prefix="MC3T")
        self.assertEqual(over, {"sampler": {"num_chains": 8, "tune_heat": True}})
        cfg = merge_configs(Config(), over)
        self.assertEqual(cfg.sampler.num_chains, 8)
        self.assertTrue(cfg.sampler.tune_heat)

    def test_from_args_priority(self):
        path = save_config(Config(run=RunConfig(generations=500)), str(self.tmp / "base.yaml"))
        cfg = from_args(["--preset", "quick", "--config", str(path), "--env-prefix", "MC3_NO_SUCH_PREFIX",
                         "--set", "run.generations=42", "--set", "sampler.swap_method=random"])
        self.assertEqual(cfg.run.generations, 42)
        self.assertEqual(cfg.sampler.swap_method, "random")

    def test_partial_file_keeps_preset_values(self):
        path = self.tmp / "partial.yaml"
        path.write_text("run:\n  generations: 123\n", encoding="utf-8")
        self.assertEqual(load_config_dict(str(path)), {"run": {"generations": 123}})

        cfg = from_args(["--preset", "standard", "--config", str(path), "--env-prefix", "MC3_NO_SUCH_PREFIX"])
        self.assertEqual(cfg.run.generations, 123)
        self.assertEqual(cfg.sampler.num_chains, 8)
        self.assertEqual(cfg.sampler.swap_method, "both")
        self.assertEqual(cfg.sampler.swap_interval2, 50)
        self.assertEqual(cfg.run.burnin, 5000)

    def test_non_mapping_file_rejected(self):
        path = self.tmp / "list.json"
        path.write_text("[1, 2]", encoding="utf-8")
        with self.assertRaises(ValueError):
            load_config_dict(str(path))

    def test_add_path_root(self):
        cfg = Config(run=RunConfig(output_dir="out"))
        bound = cfg.add_path_root(self.tmp)
        self.assertEqual(Path(bound.run.output_dir), (self.tmp / "out").resolve())
        self.assertEqual(cfg.run.output_dir, "out")


class TestValidateConfig(unittest.TestCase):
    def test_clean_config(self):
        ok, issues = validate_config(Config())
        self.assertTrue(ok, issues)

    def test_reports_cross_field_issues(self):
        cfg = Config(sampler=MC3Config(num_chains=1, swap_interval2=5, tune_heat=True),
                     run=RunConfig(burnin=0, backend="multiprocessing", num_processes=2))
        ok, issues = validate_config(cfg)
        self.assertFalse(ok)
        self.assertEqual(len(issues), 4)


if __name__ == "__main__":
    unittest.main()
