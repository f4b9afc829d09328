"""
wavesched — Batch Planner

Turns a target snapshot and a desired extraction fraction into a
four-stage BatchPlan:

  1. hack threads for the fraction
  2. value removed by those threads (worst case, after rounding up)
  3. grow threads to restore the post-hack value to maximum
  4. counter threads for the defense added by hack and by grow

Planning is pure: it reads the effect model and per-thread capacity
costs and never touches the ledger.
"""

from __future__ import annotations

import logging
import math

from wavesched.effects import (
    DEFAULT_CONSTANTS,
    EffectConstants,
    EffectOracle,
    counter_threads,
    defense_delta,
    grow_threads,
    hack_removed_fraction,
    hack_threads,
)
from wavesched.types import BatchPlan, JobType, TargetState

log = logging.getLogger("wavesched.planner")

DEFAULT_JOB_COSTS: dict[JobType, float] = {
    JobType.HACK: 1.7,
    JobType.GROW: 1.75,
    JobType.WEAKEN: 1.75,
}


def plan_cost(
    hack: int,
    hack_weaken: int,
    grow: int,
    grow_weaken: int,
    job_costs: dict[JobType, float],
) -> float:
    """Σ threads × capacity-per-thread over the four stages."""
    return (
        hack * job_costs[JobType.HACK]
        + grow * job_costs[JobType.GROW]
        + (hack_weaken + grow_weaken) * job_costs[JobType.WEAKEN]
    )


class BatchPlanner:
    """Produces BatchPlans from the effect model."""

    def __init__(
        self,
        job_costs: dict[JobType, float] | None = None,
        oracle: EffectOracle | None = None,
        constants: EffectConstants = DEFAULT_CONSTANTS,
    ):
        self.job_costs = dict(DEFAULT_JOB_COSTS)
        if job_costs:
            self.job_costs.update(job_costs)
        self.oracle = oracle
        self.constants = constants

    def cost_per_thread(self, job: JobType) -> float:
        return self.job_costs[job]

    def plan(self, state: TargetState, fraction: float) -> BatchPlan | None:
        """
        Plan one batch against ``state`` taking ``fraction`` of max value.

        Returns None when the resulting cost is non-positive or
        non-finite; the caller must not schedule anything for it.
        """
        if not math.isfinite(fraction) or fraction <= 0:
            log.warning("Rejecting plan for %s: invalid fraction %r", state.target, fraction)
            return None

        oracle, constants = self.oracle, self.constants

        hack = hack_threads(state, fraction, oracle, constants)
        n_hack = hack.as_int

        # Grow sizing uses the worst-case post-hack value: every hack
        # thread lands, including the ones added by rounding up.
        removed = hack_removed_fraction(state, n_hack, oracle, constants)
        post_hack = max(1.0, state.value * (1.0 - removed.value))
        multiplier = state.max_value / post_hack if state.max_value > 0 else 1.0
        grow = grow_threads(state, multiplier, oracle, constants)
        n_grow = grow.as_int

        hack_delta = defense_delta(JobType.HACK, n_hack, oracle, constants)
        grow_delta = defense_delta(JobType.GROW, n_grow, oracle, constants)
        hack_weaken = counter_threads(hack_delta.value, oracle, constants)
        grow_weaken = counter_threads(grow_delta.value, oracle, constants)

        fallback_used = any(e.fallback_used for e in (
            hack, removed, grow, hack_delta, grow_delta, hack_weaken, grow_weaken,
        ))

        plan = BatchPlan(
            fraction=fraction,
            hack_threads=n_hack,
            hack_weaken_threads=hack_weaken.as_int,
            grow_threads=n_grow,
            grow_weaken_threads=grow_weaken.as_int,
            costs=dict(self.job_costs),
            fallback_used=fallback_used,
        )

        if not plan.is_valid:
            log.warning(
                "Rejecting plan for %s at fraction %.5f: total cost %r",
                state.target, fraction, plan.total_cost,
            )
            return None
        return plan
