"""
wavesched — Autotuner

Chooses the extraction fraction (and therefore the batch size) that
fills currently free capacity as close to a target utilization as
possible.

Fraction and batch count trade off against each other: a smaller
fraction gives a cheaper batch and more of them fit. Utilization as a
function of fraction is roughly unimodal, so a bounded bisection over
the scalar fraction with a derived batch count is enough; no 2-D
search is needed.

Bisection rule (fixed, so results are deterministic):
  - nothing fits, or utilization above the ceiling → search lower
  - otherwise                                       → search higher
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass

from wavesched.planner import BatchPlanner
from wavesched.types import BatchPlan, TargetState

log = logging.getLogger("wavesched.autotune")

HARD_UTILIZATION_CEILING = 0.98


@dataclass
class AutotuneResult:
    fraction: float
    plan: BatchPlan | None
    batch_count: int
    utilization: float
    iterations: int = 0
    fallback_used: bool = False

    @property
    def schedulable(self) -> bool:
        return self.plan is not None and self.batch_count > 0


class Autotuner:
    """Bounded bisection over the extraction fraction."""

    def __init__(
        self,
        planner: BatchPlanner,
        f_min: float = 0.002,
        f_max: float = 0.20,
        iterations: int = 18,
        target_utilization: float = 0.95,
        hard_ceiling: float = HARD_UTILIZATION_CEILING,
        fallback_fraction: float = 0.05,
        max_batches: int | None = None,
    ):
        if not 0 < f_min < f_max < 1:
            raise ValueError(f"Invalid fraction bounds [{f_min}, {f_max}]")
        self.planner = planner
        self.f_min = f_min
        self.f_max = f_max
        self.iterations = max(1, iterations)
        self.target_utilization = target_utilization
        self.hard_ceiling = min(hard_ceiling, HARD_UTILIZATION_CEILING)
        self.fallback_fraction = fallback_fraction
        self.max_batches = max_batches

    @property
    def ceiling(self) -> float:
        return min(self.target_utilization, self.hard_ceiling)

    def _cap(self, batches: int) -> int:
        if self.max_batches is not None:
            batches = min(batches, self.max_batches)
        return max(0, batches)

    def fit(self, plan: BatchPlan, free_capacity: float) -> tuple[int, float]:
        """Whole batches of ``plan`` that fit, and the resulting utilization."""
        if free_capacity <= 0 or not plan.is_valid:
            return 0, 0.0
        cost = plan.total_cost
        batches = self._cap(int(math.floor(free_capacity / cost)))
        return batches, batches * cost / free_capacity

    def tune(self, state: TargetState, free_capacity: float) -> AutotuneResult:
        lo, hi = self.f_min, self.f_max
        ceiling = self.ceiling
        best: AutotuneResult | None = None

        for _ in range(self.iterations):
            mid = (lo + hi) / 2.0
            plan = self.planner.plan(state, mid)
            if plan is None:
                hi = mid
                continue

            batches, util = self.fit(plan, free_capacity)
            if batches == 0 or util > ceiling:
                hi = mid
                continue

            if (best is None or util > best.utilization
                    or (util == best.utilization and mid > best.fraction)):
                best = AutotuneResult(
                    fraction=mid,
                    plan=plan,
                    batch_count=batches,
                    utilization=util,
                    iterations=self.iterations,
                )
            lo = mid

        if best is not None:
            return best

        return self._fallback(state, free_capacity)

    def _fallback(self, state: TargetState, free_capacity: float) -> AutotuneResult:
        fraction = self.fallback_fraction
        plan = self.planner.plan(state, fraction)
        batches = 0
        util = 0.0
        if plan is not None and free_capacity > 0:
            batches = self._cap(int(math.floor(free_capacity * self.ceiling / plan.total_cost)))
            util = batches * plan.total_cost / free_capacity
        log.info(
            "Autotune for %s found no valid midpoint; fallback fraction %.4f → %d batch(es)",
            state.target, fraction, batches,
        )
        return AutotuneResult(
            fraction=fraction,
            plan=plan,
            batch_count=batches,
            utilization=util,
            iterations=self.iterations,
            fallback_used=True,
        )
