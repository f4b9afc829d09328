"""
wavesched — Batch Planner Tests

Tests:
  - four-stage thread counts and capacity cost
  - worst-case grow sizing after hack rounding
  - rejection of invalid fractions and costs
"""

import math
import os
import sys
import unittest

_project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from wavesched.planner import DEFAULT_JOB_COSTS, BatchPlanner, plan_cost
from wavesched.types import BatchStage, JobType, TargetState


def make_state(value=1_000_000.0, max_value=1_000_000.0):
    return TargetState(
        target="n00dles",
        value=value,
        max_value=max_value,
        defense=1.0,
        min_defense=1.0,
        durations={JobType.HACK: 1000, JobType.GROW: 3200, JobType.WEAKEN: 4000},
    )


class ScriptedOracle:
    """Answers chosen so a 10% batch is 50 / 2 / 20 / 4 threads."""

    def hack_fraction_per_thread(self, target):
        return 0.002

    def growth_threads(self, target, multiplier):
        return 19.4

    def hack_security(self, threads):
        return 0.1

    def grow_security(self, threads):
        return 0.2

    def weaken_per_thread(self):
        return 0.05


class TestPlanCost(unittest.TestCase):

    def test_documented_cost(self):
        cost = plan_cost(50, 2, 20, 4, DEFAULT_JOB_COSTS)
        self.assertAlmostEqual(cost, 130.5)

    def test_zero_threads_cost_nothing(self):
        self.assertEqual(plan_cost(0, 0, 0, 0, DEFAULT_JOB_COSTS), 0)


class TestBatchPlanner(unittest.TestCase):

    def test_fifty_hack_threads_at_ten_percent(self):
        plan = BatchPlanner().plan(make_state(), 0.10)
        self.assertIsNotNone(plan)
        self.assertEqual(plan.hack_threads, 50)
        self.assertTrue(plan.fallback_used)

    def test_fallback_plan_shape(self):
        # 50 hack threads remove 10%; grow 1/0.9 → ceil(11.11 × 1.03) = 12;
        # counters: 0.1 / 0.05 = 2, 0.048 / 0.05 → 1
        plan = BatchPlanner().plan(make_state(), 0.10)
        self.assertEqual(plan.as_dict(), {
            "hack": 50, "hack_weaken": 2, "grow": 12, "grow_weaken": 1,
        })
        self.assertAlmostEqual(plan.total_cost, 50 * 1.7 + 12 * 1.75 + 3 * 1.75)

    def test_oracle_plan_matches_documented_cost(self):
        plan = BatchPlanner(oracle=ScriptedOracle()).plan(make_state(), 0.10)
        self.assertEqual(plan.threads(BatchStage.HACK), 50)
        self.assertEqual(plan.threads(BatchStage.HACK_WEAKEN), 2)
        self.assertEqual(plan.threads(BatchStage.GROW), 20)
        self.assertEqual(plan.threads(BatchStage.GROW_WEAKEN), 4)
        self.assertAlmostEqual(plan.total_cost, 130.5)
        self.assertFalse(plan.fallback_used)

    def test_grow_covers_rounded_hack(self):
        # 0.0101 / 0.002 rounds up to 6 threads, which remove 1.2%, not 1.01%
        plan = BatchPlanner().plan(make_state(), 0.0101)
        self.assertEqual(plan.hack_threads, 6)
        needed = (1 / (1 - 6 * 0.002) - 1) / 0.01
        self.assertGreaterEqual(plan.grow_threads, math.ceil(needed))

    def test_job_cost_override(self):
        planner = BatchPlanner(job_costs={JobType.HACK: 2.0})
        self.assertEqual(planner.cost_per_thread(JobType.HACK), 2.0)
        self.assertEqual(planner.cost_per_thread(JobType.GROW), 1.75)

    def test_invalid_fraction_rejected(self):
        planner = BatchPlanner()
        self.assertIsNone(planner.plan(make_state(), 0.0))
        self.assertIsNone(planner.plan(make_state(), -0.1))
        self.assertIsNone(planner.plan(make_state(), float("nan")))

    def test_non_finite_cost_rejected(self):
        planner = BatchPlanner(job_costs={JobType.HACK: float("inf")})
        self.assertIsNone(planner.plan(make_state(), 0.10))

    def test_zero_cost_rejected(self):
        planner = BatchPlanner(job_costs={
            JobType.HACK: 0.0, JobType.GROW: 0.0, JobType.WEAKEN: 0.0,
        })
        self.assertIsNone(planner.plan(make_state(), 0.10))

    def test_plans_are_independent_of_ledger(self):
        planner = BatchPlanner()
        a = planner.plan(make_state(), 0.05)
        b = planner.plan(make_state(), 0.05)
        self.assertEqual(a, b)


if __name__ == "__main__":
    unittest.main()
