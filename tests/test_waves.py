"""
wavesched — Wave Scheduler Tests

Tests:
  - finish order hack < hack_weaken < grow < grow_weaken, one gap apart
  - first completion and cadence
  - batches never overlap and delays are never negative
"""

import os
import sys
import unittest

_project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from wavesched.planner import BatchPlanner
from wavesched.types import STAGE_ORDER, BatchStage, JobType, TargetState
from wavesched.waves import WaveScheduler


def make_state(hack=1000.0, grow=3200.0, weaken=4000.0):
    return TargetState(
        target="n00dles",
        value=1_000_000.0,
        max_value=1_000_000.0,
        defense=1.0,
        min_defense=1.0,
        durations={JobType.HACK: hack, JobType.GROW: grow, JobType.WEAKEN: weaken},
    )


class TestWaveScheduler(unittest.TestCase):

    def setUp(self):
        self.state = make_state()
        self.plan = BatchPlanner().plan(self.state, 0.05)
        self.scheduler = WaveScheduler(gap_ms=200, lead_ms=3000)

    def test_first_batch_timing(self):
        wave = self.scheduler.schedule(self.plan, self.state, 1, now=0.0)
        batch = wave.batches[0]
        # T0 = now + lead + max duration
        self.assertEqual(batch.completion_at, 7000.0)

        hack = batch.stage(BatchStage.HACK)
        self.assertEqual(hack.finish_at, 6400.0)
        self.assertEqual(hack.start_at, 5400.0)
        self.assertEqual(hack.delay, 5400.0)
        self.assertEqual(hack.threads, self.plan.hack_threads)

        hw = batch.stage(BatchStage.HACK_WEAKEN)
        self.assertEqual(hw.job, JobType.WEAKEN)
        self.assertEqual(hw.finish_at, 6600.0)
        self.assertEqual(hw.start_at, 2600.0)

        grow = batch.stage(BatchStage.GROW)
        self.assertEqual(grow.finish_at, 6800.0)
        self.assertEqual(grow.start_at, 3600.0)

        gw = batch.stage(BatchStage.GROW_WEAKEN)
        self.assertEqual(gw.finish_at, 7000.0)
        self.assertEqual(batch.effect_window_start, 2600.0)

    def test_finish_gaps_are_exact(self):
        wave = self.scheduler.schedule(self.plan, self.state, 5, now=123.0)
        for batch in wave.batches:
            finishes = [batch.stage(s).finish_at for s in STAGE_ORDER]
            gaps = [b - a for a, b in zip(finishes, finishes[1:])]
            self.assertEqual(gaps, [200.0, 200.0, 200.0])

    def test_cadence(self):
        self.assertEqual(self.scheduler.cadence(self.state), 4600.0)
        wave = self.scheduler.schedule(self.plan, self.state, 3, now=0.0)
        completions = [b.completion_at for b in wave.batches]
        self.assertEqual(completions, [7000.0, 11600.0, 16200.0])
        self.assertEqual(wave.completion_at, 16200.0)
        self.assertEqual(wave.drift_check_at(500), 16700.0)

    def test_min_cadence(self):
        scheduler = WaveScheduler(gap_ms=200, lead_ms=3000, min_cadence_ms=10_000)
        self.assertEqual(scheduler.cadence(self.state), 10_000)

    def test_batches_do_not_overlap(self):
        for durations in [(1000, 3200, 4000), (5000, 100, 300), (10, 10, 10)]:
            state = make_state(*durations)
            wave = self.scheduler.schedule(self.plan, state, 6, now=0.0)
            for prev, nxt in zip(wave.batches, wave.batches[1:]):
                self.assertGreaterEqual(nxt.effect_window_start, prev.completion_at)

    def test_delays_never_negative(self):
        for durations in [(1000, 3200, 4000), (5000, 100, 300), (0, 0, 0)]:
            state = make_state(*durations)
            wave = self.scheduler.schedule(self.plan, state, 3, now=50.0)
            for batch in wave.batches:
                for timing in batch.stages:
                    self.assertGreaterEqual(timing.delay, 0.0)
                    self.assertGreaterEqual(timing.start_at, 50.0)

    def test_zero_batches(self):
        wave = self.scheduler.schedule(self.plan, self.state, 0, now=10.0)
        self.assertEqual(wave.batches, [])
        self.assertEqual(wave.completion_at, 10.0)

    def test_gap_must_be_positive(self):
        with self.assertRaises(ValueError):
            WaveScheduler(gap_ms=0)


if __name__ == "__main__":
    unittest.main()
