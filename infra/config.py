"""
wavesched — Environment Config Loader

Three-tier configuration loading:
  1. Base YAML file (wavesched.yaml)
  2. Per-environment overlay files (config/{WS_ENV}.yaml merged over base)
  3. Environment variable overrides (WS_ prefixed)

Usage:
    from infra.config import load_config

    cfg = load_config(base_path="wavesched.yaml", env="prod")

Environment variables:
    WS_ENV          — active profile (dev, sim, prod)
    WS_CONFIG_DIR   — directory for overlay files (default: config/)
    WS_*            — nested overrides, "__" separates levels
                      (e.g., WS_TIMING__GAP_MS=250 → timing.gap_ms)
"""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger("wavesched.config")

_META_KEYS = {"WS_ENV", "WS_CONFIG_DIR", "WS_VERSION"}


# ═══════════════════════════════════════════════════════════════════
# Deep Merge
# ═══════════════════════════════════════════════════════════════════

def deep_merge(base: dict, overlay: dict) -> dict:
    """
    Deep-merge overlay into base. Overlay values win.
    Lists are replaced (not appended). Dicts are recursed.
    """
    result = copy.deepcopy(base)
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def _set_nested(d: dict, keys: list[str], value: str):
    """Set a nested dict value from a list of keys, parsing the value as YAML."""
    for key in keys[:-1]:
        d = d.setdefault(key, {})
    try:
        d[keys[-1]] = yaml.safe_load(value)
    except yaml.YAMLError:
        d[keys[-1]] = value


# ═══════════════════════════════════════════════════════════════════
# Tier 2: Overlay Files
# ═══════════════════════════════════════════════════════════════════

def _load_overlay_file(
    base_path: str,
    env: str = "",
    config_dir: str = "",
) -> dict[str, Any]:
    """
    Load per-environment overlay file.
    Looks for config/{env}.yaml or {config_dir}/{env}.yaml.
    Returns empty dict if not found.
    """
    env = env or os.environ.get("WS_ENV", "")
    if not env:
        return {}

    config_dir = config_dir or os.environ.get("WS_CONFIG_DIR", "config")

    candidates = [
        Path(config_dir) / f"{env}.yaml",
        Path(config_dir) / f"{env}.yml",
        Path(os.path.dirname(base_path)) / "config" / f"{env}.yaml",
    ]

    for path in candidates:
        if path.exists():
            try:
                with open(path) as f:
                    overlay = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                logger.warning("Failed to load overlay %s: %s", path, e)
                continue
            logger.info("Loaded config overlay: %s (%d keys)", path, len(overlay))
            return overlay

    logger.debug("No config overlay found for env=%s", env)
    return {}


# ═══════════════════════════════════════════════════════════════════
# Tier 3: Environment Variable Overrides
# ═══════════════════════════════════════════════════════════════════

def _load_env_overrides(prefix: str = "WS_") -> dict[str, Any]:
    """
    Load WS_ prefixed environment variables as config overrides.

    Naming convention:
      WS_SECTION__KEY=value → {"section": {"key": value}}

    Values are parsed as YAML scalars (numbers, booleans, lists).
    WS_ENV, WS_CONFIG_DIR and WS_VERSION are meta config and skipped.
    """
    overrides: dict[str, Any] = {}

    for key, value in os.environ.items():
        if not key.startswith(prefix) or key in _META_KEYS:
            continue
        path = key[len(prefix):].lower().split("__")
        _set_nested(overrides, path, value)

    if overrides:
        logger.debug("Loaded %d env var overrides", len(overrides))
    return overrides


# ═══════════════════════════════════════════════════════════════════
# Main Loader
# ═══════════════════════════════════════════════════════════════════

def load_config(
    base_path: str = "wavesched.yaml",
    env: str = "",
    config_dir: str = "",
    include_env_vars: bool = True,
) -> dict[str, Any]:
    """
    Load configuration with three-tier merging.

    Priority (highest wins):
      1. Environment variable overrides (WS_*)
      2. Per-environment overlay file (config/{env}.yaml)
      3. Base config file (wavesched.yaml)

    Returns:
        Merged configuration dict
    """
    config: dict[str, Any] = {}
    if os.path.exists(base_path):
        with open(base_path) as f:
            config = yaml.safe_load(f) or {}
        logger.debug("Loaded base config: %s", base_path)

    overlay = _load_overlay_file(base_path, env=env, config_dir=config_dir)
    if overlay:
        config = deep_merge(config, overlay)

    if include_env_vars:
        env_overrides = _load_env_overrides()
        if env_overrides:
            config = deep_merge(config, env_overrides)

    config["_active_env"] = env or os.environ.get("WS_ENV", "default")
    config["_config_source"] = base_path

    return config
