"""
wavesched — Effect Model Tests

Tests:
  - thread estimators with and without a precise oracle
  - fallback constants and reasons when the oracle is missing or fails
  - defense deltas and counter-thread sizing
"""

import math
import os
import sys
import unittest

_project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from wavesched.effects import (
    DEFAULT_CONSTANTS,
    EffectConstants,
    ceil_threads,
    counter_threads,
    defense_delta,
    grow_threads,
    hack_removed_fraction,
    hack_threads,
    weaken_per_thread,
)
from wavesched.types import JobType, TargetState


def make_state(value=1_000_000.0, max_value=1_000_000.0, defense=1.0, min_defense=1.0):
    return TargetState(
        target="n00dles",
        value=value,
        max_value=max_value,
        defense=defense,
        min_defense=min_defense,
        durations={JobType.HACK: 1000, JobType.GROW: 3200, JobType.WEAKEN: 4000},
    )


class PreciseOracle:
    def hack_fraction_per_thread(self, target):
        return 0.004

    def growth_threads(self, target, multiplier):
        return 10.0

    def hack_security(self, threads):
        return threads * 0.01

    def grow_security(self, threads):
        return threads * 0.02

    def weaken_per_thread(self):
        return 0.1


class BrokenOracle:
    def hack_fraction_per_thread(self, target):
        raise RuntimeError("formulas unavailable")

    def growth_threads(self, target, multiplier):
        return float("nan")

    def weaken_per_thread(self):
        return 0.0


class TestCeilThreads(unittest.TestCase):

    def test_ignores_float_noise(self):
        self.assertEqual(ceil_threads(0.10 / 0.002), 50)
        self.assertEqual(ceil_threads((5 - 2) / 0.05), 60)

    def test_rounds_up_real_fractions(self):
        self.assertEqual(ceil_threads(11.2), 12)
        self.assertEqual(ceil_threads(1.0001), 2)


class TestHackThreads(unittest.TestCase):

    def test_fallback_constant(self):
        est = hack_threads(make_state(), 0.10)
        self.assertEqual(est.as_int, 50)
        self.assertTrue(est.fallback_used)
        self.assertEqual(est.reason, "no_oracle")

    def test_precise_oracle(self):
        est = hack_threads(make_state(), 0.10, oracle=PreciseOracle())
        self.assertEqual(est.as_int, 25)
        self.assertFalse(est.fallback_used)

    def test_oracle_error_falls_back(self):
        est = hack_threads(make_state(), 0.10, oracle=BrokenOracle())
        self.assertEqual(est.as_int, 50)
        self.assertTrue(est.fallback_used)
        self.assertEqual(est.reason, "hack_fraction_per_thread_error")

    def test_missing_method_falls_back(self):
        est = hack_threads(make_state(), 0.10, oracle=object())
        self.assertTrue(est.fallback_used)
        self.assertEqual(est.reason, "hack_fraction_per_thread_unavailable")

    def test_at_least_one_thread(self):
        est = hack_threads(make_state(), 0.0000001)
        self.assertEqual(est.as_int, 1)

    def test_removed_fraction_is_capped(self):
        est = hack_removed_fraction(make_state(), 10_000)
        self.assertEqual(est.value, 0.99)

    def test_custom_constants(self):
        constants = EffectConstants(hack_fraction_per_thread=0.01)
        est = hack_threads(make_state(), 0.10, constants=constants)
        self.assertEqual(est.as_int, 10)


class TestGrowThreads(unittest.TestCase):

    def test_no_growth_needed(self):
        self.assertEqual(grow_threads(make_state(), 1.0).as_int, 0)
        self.assertEqual(grow_threads(make_state(), 0.5).as_int, 0)

    def test_fallback_includes_margin(self):
        # (2 - 1) / 0.01 = 100 threads, +3%
        est = grow_threads(make_state(), 2.0)
        self.assertEqual(est.as_int, 103)
        self.assertTrue(est.fallback_used)

    def test_precise_oracle_includes_margin(self):
        est = grow_threads(make_state(), 2.0, oracle=PreciseOracle())
        self.assertEqual(est.as_int, 11)
        self.assertFalse(est.fallback_used)

    def test_non_finite_oracle_answer_falls_back(self):
        est = grow_threads(make_state(), 2.0, oracle=BrokenOracle())
        self.assertEqual(est.as_int, 103)
        self.assertEqual(est.reason, "growth_threads_non_positive")

    def test_tiny_growth_is_one_thread(self):
        self.assertEqual(grow_threads(make_state(), 1.000001).as_int, 1)


class TestDefense(unittest.TestCase):

    def test_weaken_adds_nothing(self):
        self.assertEqual(defense_delta(JobType.WEAKEN, 100).value, 0.0)

    def test_zero_threads_add_nothing(self):
        self.assertEqual(defense_delta(JobType.HACK, 0).value, 0.0)

    def test_linear_fallback(self):
        self.assertAlmostEqual(defense_delta(JobType.HACK, 50).value, 0.1)
        self.assertAlmostEqual(defense_delta(JobType.GROW, 100).value, 0.4)

    def test_oracle_delta(self):
        est = defense_delta(JobType.GROW, 10, oracle=PreciseOracle())
        self.assertAlmostEqual(est.value, 0.2)
        self.assertFalse(est.fallback_used)

    def test_weaken_per_thread_fallback(self):
        est = weaken_per_thread(oracle=BrokenOracle())
        self.assertEqual(est.value, DEFAULT_CONSTANTS.weaken_per_thread)
        self.assertTrue(est.fallback_used)

    def test_counter_threads(self):
        self.assertEqual(counter_threads(0.0).as_int, 0)
        self.assertEqual(counter_threads(-1.0).as_int, 0)
        self.assertEqual(counter_threads(math.inf).as_int, 0)
        self.assertEqual(counter_threads(0.001).as_int, 1)
        self.assertEqual(counter_threads(0.1).as_int, 2)
        self.assertEqual(counter_threads(3.0).as_int, 60)

    def test_counter_threads_with_oracle(self):
        self.assertEqual(counter_threads(3.0, oracle=PreciseOracle()).as_int, 30)


if __name__ == "__main__":
    unittest.main()
