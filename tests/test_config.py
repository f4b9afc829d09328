"""
wavesched — Config Loader Tests

Tests the three-tier hierarchy:
  - base YAML file
  - config/{env}.yaml overlay
  - WS_* environment variable overrides
"""

import os
import shutil
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

import yaml

_project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from infra.config import (
    _load_env_overrides,
    deep_merge,
    load_config,
)


class TestDeepMerge(unittest.TestCase):

    def test_nested_merge(self):
        base = {"timing": {"gap_ms": 200, "lead_ms": 3000}, "target": "a"}
        overlay = {"timing": {"gap_ms": 100}}
        result = deep_merge(base, overlay)
        self.assertEqual(result, {"timing": {"gap_ms": 100, "lead_ms": 3000}, "target": "a"})

    def test_overlay_replaces_list(self):
        self.assertEqual(deep_merge({"a": [1, 2]}, {"a": [3]}), {"a": [3]})

    def test_immutability(self):
        base = {"a": {"x": 1}}
        overlay = {"a": {"y": 2}}
        deep_merge(base, overlay)
        self.assertEqual(base, {"a": {"x": 1}})
        self.assertEqual(overlay, {"a": {"y": 2}})


class TestEnvOverrides(unittest.TestCase):

    def test_nested_keys_and_yaml_values(self):
        env = {
            "WS_TIMING__GAP_MS": "250",
            "WS_BATCHING__MODE": "fixed",
            "WS_CAPACITY__HOST_RESERVES": "{home: 16}",
            "WS_TARGET": "n00dles",
        }
        with patch.dict(os.environ, env, clear=True):
            overrides = _load_env_overrides()
        self.assertEqual(overrides["timing"]["gap_ms"], 250)
        self.assertEqual(overrides["batching"]["mode"], "fixed")
        self.assertEqual(overrides["capacity"]["host_reserves"], {"home": 16})
        self.assertEqual(overrides["target"], "n00dles")

    def test_meta_keys_skipped(self):
        env = {"WS_ENV": "prod", "WS_CONFIG_DIR": "/tmp", "WS_VERSION": "1.0", "OTHER": "x"}
        with patch.dict(os.environ, env, clear=True):
            self.assertEqual(_load_env_overrides(), {})

    def test_unparseable_value_kept_as_string(self):
        with patch.dict(os.environ, {"WS_TARGET": "a: b: c"}, clear=True):
            self.assertEqual(_load_env_overrides()["target"], "a: b: c")


class TestLoadConfig(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.base = os.path.join(self.tmpdir, "wavesched.yaml")
        self._write(self.base, {
            "target": "n00dles",
            "timing": {"gap_ms": 200, "lead_ms": 3000},
        })

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def _write(self, path, data):
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.dump(data, f)

    def test_base_only(self):
        with patch.dict(os.environ, {}, clear=True):
            cfg = load_config(self.base)
        self.assertEqual(cfg["timing"]["gap_ms"], 200)
        self.assertEqual(cfg["_active_env"], "default")
        self.assertEqual(cfg["_config_source"], self.base)

    def test_missing_base_is_empty(self):
        with patch.dict(os.environ, {}, clear=True):
            cfg = load_config(os.path.join(self.tmpdir, "missing.yaml"))
        self.assertNotIn("timing", cfg)

    def test_overlay_then_env_precedence(self):
        config_dir = os.path.join(self.tmpdir, "config")
        self._write(os.path.join(config_dir, "sim.yaml"), {
            "timing": {"gap_ms": 100, "lead_ms": 1000},
        })
        with patch.dict(os.environ, {"WS_TIMING__LEAD_MS": "1500"}, clear=True):
            cfg = load_config(self.base, env="sim", config_dir=config_dir)
        self.assertEqual(cfg["timing"]["gap_ms"], 100)
        self.assertEqual(cfg["timing"]["lead_ms"], 1500)
        self.assertEqual(cfg["target"], "n00dles")
        self.assertEqual(cfg["_active_env"], "sim")

    def test_overlay_found_next_to_base(self):
        self._write(os.path.join(self.tmpdir, "config", "prod.yaml"), {"target": "joesguns"})
        with patch.dict(os.environ, {}, clear=True):
            cfg = load_config(self.base, env="prod", config_dir=os.path.join(self.tmpdir, "nope"))
        self.assertEqual(cfg["target"], "joesguns")

    def test_env_vars_can_be_disabled(self):
        with patch.dict(os.environ, {"WS_TARGET": "joesguns"}, clear=True):
            cfg = load_config(self.base, include_env_vars=False)
        self.assertEqual(cfg["target"], "n00dles")


if __name__ == "__main__":
    unittest.main()
