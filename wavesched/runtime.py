"""
wavesched — Batch Coordinator

Wires one ledger, planner, autotuner, wave scheduler, dispatcher and
drift monitor into the scheduling loop. Every dispatcher iteration calls
tick(now):

  1. reclaim expired reservations, refresh host capacity
  2. per target:
       - skip while batches are in flight or its wave has not settled
       - drift check (corrects an unprepared target, blocking)
       - choose fraction and batch count (fixed or autotuned)
       - schedule the wave; per batch allocate all four stages on a
         scratch view, abandon the batch on any shortfall, otherwise
         commit one reservation and queue four launch events

A new wave for a target is scheduled only after the previous one has
fully drained, so every wave starts from a freshly verified state.

A correction for one target blocks the loop. Queued stages of other
targets that come due meanwhile would launch late and out of order, so
the dispatcher drops any batch reached more than one gap past its fire
time and the ledger releases its reservation.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from infra.logging import WaveEventLogger
from wavesched.autotune import Autotuner
from wavesched.dispatcher import Dispatcher
from wavesched.drift import CorrectionStatus, DriftMonitor
from wavesched.effects import EffectOracle
from wavesched.ledger import PACKERS, LedgerError, ResourceLedger
from wavesched.planner import BatchPlanner
from wavesched.settings import SchedulerConfig
from wavesched.targets import pick_target
from wavesched.types import (
    Allocation,
    BatchPlan,
    ScheduledEvent,
    TargetState,
)
from wavesched.waves import BatchTiming, StageTiming, Wave, WaveScheduler

log = logging.getLogger("wavesched.runtime")


class BatchCoordinator:

    def __init__(
        self,
        config: SchedulerConfig,
        environment: Any,
        targets: list[str] | None = None,
        now_fn: Callable[[], float] | None = None,
        sleep_fn: Callable[[float], None] = time.sleep,
        oracle: EffectOracle | None = None,
        run_id: str | None = None,
    ):
        self.config = config
        self._env = environment
        self._now = now_fn or (lambda: time.time() * 1000.0)
        self.events = WaveEventLogger(run_id)

        if oracle is None and isinstance(environment, EffectOracle):
            oracle = environment

        capacity, timing = config.capacity, config.timing
        self.ledger = ResourceLedger(
            environment,
            reserve=capacity.reserve,
            host_reserves=capacity.host_reserves,
            packer=PACKERS[capacity.packer](),
            now_fn=self._now,
        )
        self.planner = BatchPlanner(
            job_costs=capacity.job_costs,
            oracle=oracle,
            constants=config.effects,
        )
        self.autotuner = Autotuner(
            self.planner,
            f_min=config.autotune.f_min,
            f_max=config.autotune.f_max,
            iterations=config.autotune.iterations,
            target_utilization=config.autotune.target_utilization,
            fallback_fraction=config.autotune.fallback_fraction,
            max_batches=config.batching.max_batches,
        )
        self.scheduler = WaveScheduler(
            gap_ms=timing.gap_ms,
            lead_ms=timing.lead_ms,
            min_cadence_ms=timing.min_cadence_ms,
        )
        self.dispatcher = Dispatcher(
            environment,
            now_fn=self._now,
            sleep_fn=sleep_fn,
            idle_sleep_ms=timing.idle_sleep_ms,
            max_sleep_ms=timing.max_sleep_ms,
            late_tolerance_ms=timing.gap_ms,
            events=self.events,
        )
        self.dispatcher.add_stale_listener(self.ledger.release)
        self.drift = DriftMonitor(
            self.ledger,
            self.dispatcher,
            environment,
            self.planner,
            now_fn=self._now,
            sleep_fn=sleep_fn,
            tolerance=config.drift.tolerance,
            settle_margin_ms=config.drift.settle_margin_ms,
            gap_ms=timing.gap_ms,
            events=self.events,
        )

        self.targets = list(targets) if targets else self._select_targets()
        self._waves: dict[str, Wave] = {}
        self.counters = {
            "ticks": 0,
            "waves": 0,
            "batches": 0,
            "abandoned": 0,
            "corrections": 0,
            "no_capacity": 0,
        }

    def _select_targets(self) -> list[str]:
        if self.config.target:
            return [self.config.target]
        skill = self.config.skill_level
        if skill is None:
            skill = int(getattr(self._env, "skill_level", 0))
        picked = pick_target(self._env.candidates(), skill)
        if picked is None:
            log.warning("No usable target at skill level %d", skill)
            return []
        log.info("Selected target %s", picked)
        return [picked]

    # ─── Loop ────────────────────────────────────────────────────

    def tick(self, now: float | None = None) -> None:
        now = self._now() if now is None else now
        self.counters["ticks"] += 1

        expired = self.ledger.reclaim_expired(now)
        if expired:
            self.events.on_reclaim(len(expired), sum(r.amount for r in expired))
        self.ledger.refresh()

        for target in self.targets:
            try:
                self._tick_target(target, now)
            except LedgerError as e:
                log.error("Ledger refused work for %s: %s", target, e)

    def run(
        self,
        max_iterations: int | None = None,
        should_stop: Callable[[], bool] | None = None,
    ) -> int:
        log.info("Scheduling %s", ", ".join(self.targets) or "nothing")
        return self.dispatcher.run(self.tick, should_stop, max_iterations)

    def _tick_target(self, target: str, now: float) -> None:
        if self.ledger.inflight(target) > 0:
            return
        wave = self._waves.get(target)
        if wave is not None:
            if now < wave.drift_check_at(self.config.drift.settle_margin_ms):
                return
            del self._waves[target]

        verdict = self.drift.check(target)
        state = verdict.state
        if not verdict.prepared:
            self.counters["corrections"] += 1
            result = self.drift.correct(target)
            if result.status == CorrectionStatus.NO_CAPACITY:
                self.counters["no_capacity"] += 1
            if result.status != CorrectionStatus.PREPARED:
                return
            self.ledger.refresh()
            now = self._now()
            state = result.state or self._env.target_state(target)

        self._schedule_wave(state, now)

    # ─── Waves ───────────────────────────────────────────────────

    def _choose(self, state: TargetState) -> tuple[BatchPlan | None, int]:
        free = self.ledger.total_free()
        if self.config.batching.mode == "auto":
            result = self.autotuner.tune(state, free)
            self.events.on_autotune(
                state.target, result.fraction, result.batch_count,
                result.utilization, result.fallback_used,
            )
            return result.plan, result.batch_count

        plan = self.planner.plan(state, self.config.batching.fraction)
        if plan is None:
            return None, 0
        batches, _ = self.autotuner.fit(plan, free)
        return plan, batches

    def _schedule_wave(self, state: TargetState, now: float) -> Wave | None:
        target = state.target
        plan, count = self._choose(state)
        if plan is None or count <= 0:
            log.info("Nothing schedulable for %s this cycle", target)
            return None

        self.events.on_plan(
            target, plan.fraction, plan.as_dict(), plan.total_cost, plan.fallback_used,
        )
        wave = self.scheduler.schedule(plan, state, count, now)

        committed: list[BatchTiming] = []
        for batch in wave.batches:
            if self._commit_batch(target, batch):
                committed.append(batch)
        abandoned = len(wave.batches) - len(committed)
        wave.batches = committed

        self.counters["abandoned"] += abandoned
        self.events.on_wave_scheduled(
            target, len(committed), plan.fraction, wave.completion_at, abandoned,
        )
        if not committed:
            return None

        self._waves[target] = wave
        self.counters["waves"] += 1
        self.counters["batches"] += len(committed)
        return wave

    def _commit_batch(self, target: str, batch: BatchTiming) -> bool:
        """All four stages or nothing."""
        view = self.ledger.free_view()
        placed: list[tuple[StageTiming, list[Allocation]]] = []
        for timing in batch.stages:
            if timing.threads <= 0:
                continue
            result = self.ledger.allocate(
                timing.threads, self.planner.cost_per_thread(timing.job), view,
            )
            if not result.satisfied:
                log.warning(
                    "Abandoning batch %d for %s: %d %s thread(s) unplaced",
                    batch.index, target, result.remainder, timing.stage.value,
                )
                self.events.on_batch_abandoned(
                    target, batch.index, timing.stage.value, result.remainder,
                )
                return False
            placed.append((timing, result.allocations))

        if not placed:
            return False

        rsv = self.ledger.commit(
            [a for _, allocs in placed for a in allocs],
            batch.completion_at + self.config.timing.release_margin_ms,
            target,
        )
        self.dispatcher.schedule([
            ScheduledEvent.create(
                job=timing.job,
                target=target,
                allocations=allocs,
                fire_at=timing.start_at,
                stage=timing.stage,
                batch_index=batch.index,
                reservation_id=rsv.reservation_id,
            )
            for timing, allocs in placed
        ])
        return True

    # ─── Stats ───────────────────────────────────────────────────

    def wave_for(self, target: str) -> Wave | None:
        return self._waves.get(target)

    def stats(self) -> dict[str, Any]:
        snap = self.ledger.snapshot()
        return {
            **self.counters,
            "events_fired": self.dispatcher.total_fired,
            "launch_failures": self.dispatcher.total_failed,
            "stale_events": self.dispatcher.total_stale,
            "pending_events": len(self.dispatcher),
            "active_reservations": snap.active_reservations,
            "inflight": snap.inflight,
            "free_capacity": round(snap.total_free, 3),
            "utilization": round(snap.utilization, 4),
        }
