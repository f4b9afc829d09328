"""
wavesched — Scheduler Settings

Typed view of the ``wavesched.yaml`` configuration (after infra.config
has merged overlays and WS_* overrides):

    target: n00dles            # optional; ranked pick when empty
    batching:  {mode: auto, fraction: 0.05, max_batches: 64}
    timing:    {gap_ms: 200, lead_ms: 3000, min_cadence_ms: 0,
                idle_sleep_ms: 200, max_sleep_ms: 1000, release_margin_ms: 100}
    autotune:  {f_min: 0.002, f_max: 0.20, iterations: 18,
                target_utilization: 0.95, fallback_fraction: 0.05}
    capacity:  {reserve: 4, host_reserves: {home: 32}, packer: largest_free_first,
                job_costs: {hack: 1.7, grow: 1.75, weaken: 1.75}}
    drift:     {tolerance: 0.001, settle_margin_ms: 500}
    effects:   {hack_fraction_per_thread: 0.002, ...}

Missing sections fall back to defaults. Invalid values raise ConfigError.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, fields
from typing import Any

from wavesched.effects import EffectConstants
from wavesched.ledger import PACKERS
from wavesched.planner import DEFAULT_JOB_COSTS
from wavesched.types import JobType

log = logging.getLogger("wavesched.settings")

MODES = ("fixed", "auto")


class ConfigError(ValueError):
    """Invalid scheduler configuration."""
    pass


def clamp_fraction(value: Any) -> float:
    """
    Sanitise a user-supplied extraction fraction.

    Non-numeric, non-finite or non-positive → 0.001; ≥ 1 → 0.5;
    the result is then clamped to [0.0001, 0.9].
    """
    try:
        f = float(value)
    except (TypeError, ValueError):
        f = 0.001
    if not math.isfinite(f) or f <= 0:
        f = 0.001
    elif f >= 1:
        f = 0.5
    return min(0.9, max(0.0001, f))


# ═══════════════════════════════════════════════════════════════════
# SECTIONS
# ═══════════════════════════════════════════════════════════════════

@dataclass
class BatchingConfig:
    mode: str = "auto"
    fraction: float = 0.05
    max_batches: int | None = None


@dataclass
class TimingConfig:
    gap_ms: float = 200.0
    lead_ms: float = 3000.0
    min_cadence_ms: float = 0.0
    idle_sleep_ms: float = 200.0
    max_sleep_ms: float = 1000.0
    release_margin_ms: float = 100.0


@dataclass
class AutotuneConfig:
    f_min: float = 0.002
    f_max: float = 0.20
    iterations: int = 18
    target_utilization: float = 0.95
    fallback_fraction: float = 0.05


@dataclass
class CapacityConfig:
    reserve: float = 4.0
    host_reserves: dict[str, float] = field(default_factory=dict)
    packer: str = "largest_free_first"
    job_costs: dict[JobType, float] = field(
        default_factory=lambda: dict(DEFAULT_JOB_COSTS)
    )


@dataclass
class DriftConfig:
    tolerance: float = 0.001
    settle_margin_ms: float = 500.0


@dataclass
class SchedulerConfig:
    target: str = ""
    skill_level: int | None = None
    batching: BatchingConfig = field(default_factory=BatchingConfig)
    timing: TimingConfig = field(default_factory=TimingConfig)
    autotune: AutotuneConfig = field(default_factory=AutotuneConfig)
    capacity: CapacityConfig = field(default_factory=CapacityConfig)
    drift: DriftConfig = field(default_factory=DriftConfig)
    effects: EffectConstants = field(default_factory=EffectConstants)


# ═══════════════════════════════════════════════════════════════════
# PARSING
# ═══════════════════════════════════════════════════════════════════

def _number(section: dict[str, Any], key: str, default: float, name: str) -> float:
    raw = section.get(key, default)
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ConfigError(f"{name}.{key} must be a number, got {raw!r}")
    if not math.isfinite(value):
        raise ConfigError(f"{name}.{key} must be finite, got {raw!r}")
    return value


def _positive(section: dict[str, Any], key: str, default: float, name: str) -> float:
    value = _number(section, key, default, name)
    if value <= 0:
        raise ConfigError(f"{name}.{key} must be positive, got {value}")
    return value


def _non_negative(section: dict[str, Any], key: str, default: float, name: str) -> float:
    value = _number(section, key, default, name)
    if value < 0:
        raise ConfigError(f"{name}.{key} must not be negative, got {value}")
    return value


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    section = raw.get(name) or {}
    if not isinstance(section, dict):
        raise ConfigError(f"Section '{name}' must be a mapping")
    return section


def _parse_batching(section: dict[str, Any]) -> BatchingConfig:
    mode = str(section.get("mode", "auto")).lower()
    if mode not in MODES:
        raise ConfigError(f"batching.mode must be one of {MODES}, got {mode!r}")
    max_batches = section.get("max_batches")
    if max_batches is not None:
        max_batches = int(_positive(section, "max_batches", 1, "batching"))
    return BatchingConfig(
        mode=mode,
        fraction=clamp_fraction(section.get("fraction", 0.05)),
        max_batches=max_batches,
    )


def _parse_timing(section: dict[str, Any]) -> TimingConfig:
    timing = TimingConfig(
        gap_ms=_positive(section, "gap_ms", 200.0, "timing"),
        lead_ms=_non_negative(section, "lead_ms", 3000.0, "timing"),
        min_cadence_ms=_non_negative(section, "min_cadence_ms", 0.0, "timing"),
        idle_sleep_ms=_positive(section, "idle_sleep_ms", 200.0, "timing"),
        max_sleep_ms=_positive(section, "max_sleep_ms", 1000.0, "timing"),
        release_margin_ms=_non_negative(section, "release_margin_ms", 100.0, "timing"),
    )
    # The first job of a batch starts 3 gaps ahead of the longest one.
    floor = 3 * timing.gap_ms
    if timing.lead_ms < floor:
        log.warning(
            "timing.lead_ms %.0f is below 3 x gap_ms; raising to %.0f",
            timing.lead_ms, floor,
        )
        timing.lead_ms = floor
    return timing


def _parse_autotune(section: dict[str, Any]) -> AutotuneConfig:
    cfg = AutotuneConfig(
        f_min=_positive(section, "f_min", 0.002, "autotune"),
        f_max=_positive(section, "f_max", 0.20, "autotune"),
        iterations=int(_positive(section, "iterations", 18, "autotune")),
        target_utilization=_positive(section, "target_utilization", 0.95, "autotune"),
        fallback_fraction=clamp_fraction(section.get("fallback_fraction", 0.05)),
    )
    if not cfg.f_min < cfg.f_max < 1:
        raise ConfigError(
            f"autotune bounds must satisfy 0 < f_min < f_max < 1, "
            f"got [{cfg.f_min}, {cfg.f_max}]"
        )
    if cfg.target_utilization > 1:
        raise ConfigError(
            f"autotune.target_utilization must be at most 1, got {cfg.target_utilization}"
        )
    return cfg


def _parse_capacity(section: dict[str, Any]) -> CapacityConfig:
    packer = str(section.get("packer", "largest_free_first"))
    if packer not in PACKERS:
        raise ConfigError(f"capacity.packer must be one of {sorted(PACKERS)}, got {packer!r}")

    host_reserves_raw = section.get("host_reserves") or {}
    host_reserves = {
        str(host): _non_negative(host_reserves_raw, host, 0.0, "capacity.host_reserves")
        for host in host_reserves_raw
    }

    costs_raw = section.get("job_costs") or {}
    job_costs = dict(DEFAULT_JOB_COSTS)
    for key in costs_raw:
        try:
            job = JobType(str(key).lower())
        except ValueError:
            raise ConfigError(f"capacity.job_costs: unknown job type {key!r}")
        job_costs[job] = _positive(costs_raw, key, 1.0, "capacity.job_costs")

    return CapacityConfig(
        reserve=_non_negative(section, "reserve", 4.0, "capacity"),
        host_reserves=host_reserves,
        packer=packer,
        job_costs=job_costs,
    )


def _parse_drift(section: dict[str, Any]) -> DriftConfig:
    return DriftConfig(
        tolerance=_non_negative(section, "tolerance", 0.001, "drift"),
        settle_margin_ms=_non_negative(section, "settle_margin_ms", 500.0, "drift"),
    )


def _parse_effects(section: dict[str, Any]) -> EffectConstants:
    known = {f.name: f.default for f in fields(EffectConstants)}
    unknown = set(section) - set(known)
    if unknown:
        raise ConfigError(f"effects: unknown constant(s) {sorted(unknown)}")
    values = {}
    for name, default in known.items():
        if name == "grow_margin":
            values[name] = _non_negative(section, name, default, "effects")
        else:
            values[name] = _positive(section, name, default, "effects")
    return EffectConstants(**values)


def parse_scheduler_config(raw: dict[str, Any] | None) -> SchedulerConfig:
    """Build a SchedulerConfig from a merged config dict."""
    if not raw:
        return SchedulerConfig(timing=_parse_timing({}))

    skill = raw.get("skill_level")
    return SchedulerConfig(
        target=str(raw.get("target") or ""),
        skill_level=int(skill) if skill is not None else None,
        batching=_parse_batching(_section(raw, "batching")),
        timing=_parse_timing(_section(raw, "timing")),
        autotune=_parse_autotune(_section(raw, "autotune")),
        capacity=_parse_capacity(_section(raw, "capacity")),
        drift=_parse_drift(_section(raw, "drift")),
        effects=_parse_effects(_section(raw, "effects")),
    )
