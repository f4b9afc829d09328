"""
wavesched — Drift Monitor

After a wave finishes, re-reads the target and decides whether it is
still prepared (defense at minimum, value at maximum, within tolerance).
If not, it corrects:

  1. cancel every reservation and queued event for the target
  2. counter wave sized ceil(defense_gap / weaken_per_thread), launched
     immediately on whatever capacity exists; wait until it finishes
  3. if value is short, a grow wave plus its counter wave, timed so the
     grow finishes one gap before the counter; wait until both finish
  4. re-check

Correction waves may be partial (a smaller counter wave still helps).
They are launched directly rather than queued, and held under ``prep``
reservations that do not count as in-flight batches.

Correction blocks the caller while it waits. With the documented
concurrency policy the only other work for the target has just been
cancelled, so nothing is lost by blocking.
"""

from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from infra.logging import WaveEventLogger
from wavesched.dispatcher import Dispatcher
from wavesched.effects import counter_threads, defense_delta, grow_threads
from wavesched.ledger import ResourceLedger
from wavesched.planner import BatchPlanner
from wavesched.types import Allocation, JobType, ReservationKind, TargetState

log = logging.getLogger("wavesched.drift")


class CorrectionStatus(str, enum.Enum):
    PREPARED = "prepared"
    NOT_PREPARED = "not_prepared"
    NO_CAPACITY = "no_capacity"


@dataclass
class DriftVerdict:
    target: str
    prepared: bool
    state: TargetState
    reason: str = ""


@dataclass
class CorrectionResult:
    target: str
    status: CorrectionStatus
    waves: int = 0
    state: TargetState | None = None


class DriftMonitor:

    def __init__(
        self,
        ledger: ResourceLedger,
        dispatcher: Dispatcher,
        environment: Any,
        planner: BatchPlanner,
        now_fn: Callable[[], float] | None = None,
        sleep_fn: Callable[[float], None] = time.sleep,
        tolerance: float = 0.001,
        settle_margin_ms: float = 500.0,
        gap_ms: float = 200.0,
        events: WaveEventLogger | None = None,
    ):
        self.ledger = ledger
        self.dispatcher = dispatcher
        self._env = environment
        self.planner = planner
        self._now = now_fn or (lambda: time.time() * 1000.0)
        self._sleep = sleep_fn
        self.tolerance = tolerance
        self.settle_margin_ms = settle_margin_ms
        self.gap_ms = gap_ms
        self._events = events

        ledger.add_cancel_listener(dispatcher.cancel_target)

    # ─── Verdict ─────────────────────────────────────────────────

    def check(self, target: str) -> DriftVerdict:
        state = self._env.target_state(target)
        reason = ""
        if state.defense > state.min_defense + self.tolerance:
            reason = f"defense {state.defense:.3f} above minimum {state.min_defense:.3f}"
        elif state.value_gap > state.max_value * self.tolerance:
            reason = (
                f"value {state.value:.1f} below maximum {state.max_value:.1f} "
                f"by {state.value_gap:.1f}"
            )

        verdict = DriftVerdict(target, prepared=not reason, state=state, reason=reason)
        if self._events:
            self._events.on_drift(target, verdict.prepared, reason)
        return verdict

    # ─── Sizing ──────────────────────────────────────────────────

    def counter_wave_size(self, state: TargetState) -> int:
        """Counter threads needed to bring defense back to its minimum."""
        return counter_threads(
            state.defense_gap, self.planner.oracle, self.planner.constants,
        ).as_int

    def grow_wave_size(self, state: TargetState) -> int:
        """Grow threads needed to bring value back to its maximum."""
        if state.max_value <= 0:
            return 0
        multiplier = state.max_value / max(1.0, state.value)
        return grow_threads(
            state, multiplier, self.planner.oracle, self.planner.constants,
        ).as_int

    # ─── Correction ──────────────────────────────────────────────

    def correct(self, target: str) -> CorrectionResult:
        self.ledger.cancel(target)
        self.ledger.refresh()

        waves = 0
        state = self._env.target_state(target)

        if state.defense > state.min_defense + self.tolerance:
            placed = self._counter_wave(state)
            if placed == 0:
                return self._finish(target, CorrectionStatus.NO_CAPACITY, waves, state)
            waves += 1
            state = self._env.target_state(target)

        if state.value_gap > state.max_value * self.tolerance:
            placed = self._grow_wave(state)
            if placed == 0:
                return self._finish(target, CorrectionStatus.NO_CAPACITY, waves, state)
            waves += 1
            state = self._env.target_state(target)

        status = (
            CorrectionStatus.PREPARED
            if state.is_prepared(self.tolerance)
            else CorrectionStatus.NOT_PREPARED
        )
        return self._finish(target, status, waves, state)

    def _finish(
        self,
        target: str,
        status: CorrectionStatus,
        waves: int,
        state: TargetState,
    ) -> CorrectionResult:
        if status == CorrectionStatus.NO_CAPACITY:
            log.error("No capacity to correct %s; skipping it this cycle", target)
        else:
            log.info("Correction of %s: %s after %d wave(s)", target, status.value, waves)
        if self._events:
            self._events.on_correction(target, status.value, waves)
        return CorrectionResult(target, status, waves, state)

    def _counter_wave(self, state: TargetState) -> int:
        threads = self.counter_wave_size(state)
        view = self.ledger.free_view()
        result = self.ledger.allocate(
            threads, self.planner.cost_per_thread(JobType.WEAKEN), view,
        )
        if not result.allocations:
            return 0
        if result.remainder:
            log.warning(
                "Partial counter wave for %s: %d of %d thread(s)",
                state.target, result.allocated_threads, threads,
            )

        now = self._now()
        done_at = now + state.duration(JobType.WEAKEN)
        self.ledger.commit(
            result.allocations, done_at + self.settle_margin_ms,
            state.target, ReservationKind.PREP,
        )
        placed = self._launch(JobType.WEAKEN, state.target, result.allocations, 0.0)
        self._wait_until(done_at + self.settle_margin_ms)
        return placed

    def _grow_wave(self, state: TargetState) -> int:
        oracle, constants = self.planner.oracle, self.planner.constants
        wanted = self.grow_wave_size(state)
        view = self.ledger.free_view()
        grow = self.ledger.allocate(
            wanted, self.planner.cost_per_thread(JobType.GROW), view,
        )
        if not grow.allocations:
            return 0

        delta = defense_delta(JobType.GROW, grow.allocated_threads, oracle, constants)
        counter_wanted = counter_threads(delta.value, oracle, constants).as_int
        counter = self.ledger.allocate(
            counter_wanted, self.planner.cost_per_thread(JobType.WEAKEN), view,
        )
        if grow.remainder or counter.remainder:
            log.warning(
                "Partial grow wave for %s: grow %d/%d, counter %d/%d",
                state.target, grow.allocated_threads, wanted,
                counter.allocated_threads, counter_wanted,
            )

        # Counter finishes at F; grow finishes one gap earlier.
        now = self._now()
        grow_time = state.duration(JobType.GROW)
        weaken_time = state.duration(JobType.WEAKEN)
        finish = now + max(weaken_time, grow_time + self.gap_ms)
        grow_delay = max(0.0, finish - self.gap_ms - grow_time - now)
        counter_delay = max(0.0, finish - weaken_time - now)

        self.ledger.commit(
            grow.allocations + counter.allocations,
            finish + self.settle_margin_ms,
            state.target, ReservationKind.PREP,
        )
        placed = self._launch(JobType.GROW, state.target, grow.allocations, grow_delay)
        self._launch(JobType.WEAKEN, state.target, counter.allocations, counter_delay)
        self._wait_until(finish + self.settle_margin_ms)
        return placed

    def _launch(
        self,
        job: JobType,
        target: str,
        allocations: list[Allocation],
        delay_ms: float,
    ) -> int:
        launched = 0
        for alloc in allocations:
            try:
                ok = bool(self._env.launch(job, alloc.host_id, alloc.threads, target, delay_ms))
            except Exception as e:
                log.warning("Correction launch on %s raised: %s", alloc.host_id, e)
                ok = False
            if ok:
                launched += alloc.threads
            else:
                log.warning(
                    "Correction launch failed: %s x%d on %s against %s",
                    job.value, alloc.threads, alloc.host_id, target,
                )
        return launched

    def _wait_until(self, deadline: float) -> None:
        remaining = deadline - self._now()
        if remaining > 0:
            self._sleep(remaining / 1000.0)
        self.ledger.reclaim_expired(self._now())
