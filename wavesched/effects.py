"""
wavesched — Effect Model

Pure estimators that translate a desired effect on a target into thread
counts per job type, and estimate how much a job perturbs the target's
defense metric.

Every estimator returns an Estimate. A precise oracle (usually supplied
by the execution environment) is consulted first; if it is missing,
raises, or answers with a non-finite or non-positive number, the
documented fallback constant is substituted and ``fallback_used`` is
set. Estimators never raise.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Protocol, runtime_checkable

from wavesched.types import Estimate, JobType, TargetState

log = logging.getLogger("wavesched.effects")

# Float noise tolerance for ceilings: 0.10 / 0.002 must be 50, not 51.
_CEIL_EPSILON = 1e-9

MAX_REMOVED_FRACTION = 0.99


@runtime_checkable
class EffectOracle(Protocol):
    """Precise effect queries. Any method may be absent or fail."""

    def hack_fraction_per_thread(self, target: str) -> float: ...

    def growth_threads(self, target: str, multiplier: float) -> float: ...

    def hack_security(self, threads: int) -> float: ...

    def grow_security(self, threads: int) -> float: ...

    def weaken_per_thread(self) -> float: ...


@dataclass(frozen=True)
class EffectConstants:
    """Fallback constants used when the oracle cannot answer."""
    hack_fraction_per_thread: float = 0.002
    grow_fraction_per_thread: float = 0.01
    grow_margin: float = 0.03
    hack_security_per_thread: float = 0.002
    grow_security_per_thread: float = 0.004
    weaken_per_thread: float = 0.05


DEFAULT_CONSTANTS = EffectConstants()


def ceil_threads(x: float) -> int:
    """Ceiling that ignores float noise below 1e-9."""
    return int(math.ceil(x - _CEIL_EPSILON))


def _ask(
    oracle: Any,
    method: str,
    *args: Any,
) -> tuple[float | None, str]:
    """
    Query one oracle method. Returns (value, "") on a usable answer,
    (None, reason) otherwise.
    """
    if oracle is None:
        return None, "no_oracle"
    fn: Callable[..., float] | None = getattr(oracle, method, None)
    if fn is None:
        return None, f"{method}_unavailable"
    try:
        value = float(fn(*args))
    except Exception as e:
        log.warning("Estimator %s failed: %s", method, e)
        return None, f"{method}_error"
    if not math.isfinite(value) or value <= 0:
        return None, f"{method}_non_positive"
    return value, ""


# ═══════════════════════════════════════════════════════════════════
# Thread Estimators
# ═══════════════════════════════════════════════════════════════════

def hack_fraction_per_thread(
    state: TargetState,
    oracle: EffectOracle | None = None,
    constants: EffectConstants = DEFAULT_CONSTANTS,
) -> Estimate:
    """Fraction of the target's value one hack thread removes."""
    value, reason = _ask(oracle, "hack_fraction_per_thread", state.target)
    if value is None:
        return Estimate(constants.hack_fraction_per_thread, True, reason)
    return Estimate(value)


def hack_threads(
    state: TargetState,
    fraction: float,
    oracle: EffectOracle | None = None,
    constants: EffectConstants = DEFAULT_CONSTANTS,
) -> Estimate:
    """
    Minimum threads whose combined effect removes at least
    ``fraction × max_value``. Always at least 1.
    """
    per_thread = hack_fraction_per_thread(state, oracle, constants)
    threads = max(1, ceil_threads(fraction / per_thread.value))
    return Estimate(float(threads), per_thread.fallback_used, per_thread.reason)


def hack_removed_fraction(
    state: TargetState,
    threads: int,
    oracle: EffectOracle | None = None,
    constants: EffectConstants = DEFAULT_CONSTANTS,
) -> Estimate:
    """Fraction of current value removed by ``threads`` hack threads (≤ 0.99)."""
    per_thread = hack_fraction_per_thread(state, oracle, constants)
    removed = min(MAX_REMOVED_FRACTION, threads * per_thread.value)
    return Estimate(removed, per_thread.fallback_used, per_thread.reason)


def grow_threads(
    state: TargetState,
    multiplier: float,
    oracle: EffectOracle | None = None,
    constants: EffectConstants = DEFAULT_CONSTANTS,
) -> Estimate:
    """
    Threads needed to multiply current value by ``multiplier``,
    over-provisioned by ``constants.grow_margin``. Zero when no growth
    is needed, otherwise at least 1.
    """
    if not math.isfinite(multiplier) or multiplier <= 1.0:
        return Estimate(0.0)

    raw, reason = _ask(oracle, "growth_threads", state.target, multiplier)
    fallback = raw is None
    if fallback:
        raw = (multiplier - 1.0) / constants.grow_fraction_per_thread

    threads = max(1, ceil_threads(raw * (1.0 + constants.grow_margin)))
    return Estimate(float(threads), fallback, reason)


# ═══════════════════════════════════════════════════════════════════
# Defense Estimators
# ═══════════════════════════════════════════════════════════════════

def defense_delta(
    job: JobType,
    threads: int,
    oracle: EffectOracle | None = None,
    constants: EffectConstants = DEFAULT_CONSTANTS,
) -> Estimate:
    """Linear estimate of the defense increase caused by ``threads`` of ``job``."""
    if threads <= 0 or job == JobType.WEAKEN:
        return Estimate(0.0)

    if job == JobType.HACK:
        value, reason = _ask(oracle, "hack_security", threads)
        slope = constants.hack_security_per_thread
    else:
        value, reason = _ask(oracle, "grow_security", threads)
        slope = constants.grow_security_per_thread

    if value is None:
        return Estimate(slope * threads, True, reason)
    return Estimate(value)


def weaken_per_thread(
    oracle: EffectOracle | None = None,
    constants: EffectConstants = DEFAULT_CONSTANTS,
) -> Estimate:
    """Defense reduction achieved by one counter thread."""
    value, reason = _ask(oracle, "weaken_per_thread")
    if value is None:
        return Estimate(constants.weaken_per_thread, True, reason)
    return Estimate(value)


def counter_threads(
    delta: float,
    oracle: EffectOracle | None = None,
    constants: EffectConstants = DEFAULT_CONSTANTS,
) -> Estimate:
    """
    ``ceil(delta / per_thread)`` counter threads; at least 1 when
    ``delta > 0``, else 0.
    """
    if not math.isfinite(delta) or delta <= 0:
        return Estimate(0.0)
    per_thread = weaken_per_thread(oracle, constants)
    threads = max(1, ceil_threads(delta / per_thread.value))
    return Estimate(float(threads), per_thread.fallback_used, per_thread.reason)
