"""
wavesched — Autotuner Tests

Tests:
  - utilization stays at or below the ceiling
  - deterministic results for identical inputs
  - fallback when no fraction in range fits
  - batch caps and bound validation
"""

import os
import sys
import unittest

_project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from wavesched.autotune import HARD_UTILIZATION_CEILING, Autotuner
from wavesched.planner import BatchPlanner
from wavesched.types import JobType, TargetState


def make_state():
    return TargetState(
        target="n00dles",
        value=1_000_000.0,
        max_value=1_000_000.0,
        defense=1.0,
        min_defense=1.0,
        durations={JobType.HACK: 1000, JobType.GROW: 3200, JobType.WEAKEN: 4000},
    )


class TestAutotuner(unittest.TestCase):

    def setUp(self):
        self.planner = BatchPlanner()
        self.tuner = Autotuner(self.planner)

    def test_fills_capacity_below_ceiling(self):
        free = 1000.0
        result = self.tuner.tune(make_state(), free)
        self.assertTrue(result.schedulable)
        self.assertFalse(result.fallback_used)
        self.assertGreater(result.batch_count, 0)
        self.assertLessEqual(result.utilization, 0.95 + 1e-9)
        self.assertLessEqual(result.batch_count * result.plan.total_cost, free * 0.95 + 1e-9)
        self.assertGreaterEqual(result.fraction, self.tuner.f_min)
        self.assertLessEqual(result.fraction, self.tuner.f_max)

    def test_deterministic(self):
        a = self.tuner.tune(make_state(), 731.0)
        b = Autotuner(BatchPlanner()).tune(make_state(), 731.0)
        self.assertEqual(a.fraction, b.fraction)
        self.assertEqual(a.batch_count, b.batch_count)
        self.assertEqual(a.plan, b.plan)

    def test_iterations_reported(self):
        result = Autotuner(self.planner, iterations=7).tune(make_state(), 500.0)
        self.assertEqual(result.iterations, 7)

    def test_fallback_when_nothing_fits(self):
        # The cheapest plan (1 thread per stage) costs 6.95
        result = self.tuner.tune(make_state(), 5.0)
        self.assertTrue(result.fallback_used)
        self.assertEqual(result.fraction, 0.05)
        self.assertEqual(result.batch_count, 0)
        self.assertFalse(result.schedulable)

    def test_fallback_with_no_capacity(self):
        result = self.tuner.tune(make_state(), 0.0)
        self.assertTrue(result.fallback_used)
        self.assertEqual(result.batch_count, 0)

    def test_max_batches_cap(self):
        tuner = Autotuner(self.planner, max_batches=2)
        result = tuner.tune(make_state(), 10_000.0)
        self.assertEqual(result.batch_count, 2)
        self.assertLessEqual(result.utilization, 0.95 + 1e-9)

    def test_ceiling_never_above_hard_limit(self):
        tuner = Autotuner(self.planner, target_utilization=0.999)
        self.assertEqual(tuner.ceiling, HARD_UTILIZATION_CEILING)

    def test_fit(self):
        plan = self.planner.plan(make_state(), 0.002)
        self.assertAlmostEqual(plan.total_cost, 6.95)
        batches, util = self.tuner.fit(plan, 34.0)
        self.assertEqual(batches, 4)
        self.assertAlmostEqual(util, 4 * 6.95 / 34.0)
        self.assertEqual(self.tuner.fit(plan, 0.0), (0, 0.0))

    def test_invalid_bounds(self):
        with self.assertRaises(ValueError):
            Autotuner(self.planner, f_min=0.3, f_max=0.2)
        with self.assertRaises(ValueError):
            Autotuner(self.planner, f_min=0.0, f_max=0.2)
        with self.assertRaises(ValueError):
            Autotuner(self.planner, f_min=0.1, f_max=1.0)


if __name__ == "__main__":
    unittest.main()
