"""
wavesched — Wave Scheduler

Computes absolute start times for every job of every batch in a wave.

Within batch i (completion instant T_i, gap g):

    finish(hack)        = T_i − 3g
    finish(hack_weaken) = T_i − 2g
    finish(grow)        = T_i − g
    finish(grow_weaken) = T_i

    start = finish − duration(job)      delay = max(0, start − now)

Across batches:

    T_0     = now + lead + max(durations)
    T_i     = T_0 + i × cadence
    cadence = max(min_cadence, max(durations) + 3g)

With that cadence every job of batch i+1 starts at or after T_i, so a
batch never begins acting on the target before the previous batch's
last job has finished. Ordering inside a batch holds by construction,
not by runtime synchronization.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from wavesched.types import STAGE_ORDER, BatchPlan, BatchStage, JobType, TargetState

log = logging.getLogger("wavesched.waves")


@dataclass(frozen=True)
class StageTiming:
    stage: BatchStage
    job: JobType
    threads: int
    start_at: float
    finish_at: float
    delay: float


@dataclass
class BatchTiming:
    index: int
    completion_at: float
    stages: list[StageTiming] = field(default_factory=list)

    def stage(self, stage: BatchStage) -> StageTiming:
        for timing in self.stages:
            if timing.stage == stage:
                return timing
        raise KeyError(stage)

    @property
    def effect_window_start(self) -> float:
        """Earliest instant any job of this batch starts running."""
        return min(s.start_at for s in self.stages)


@dataclass
class Wave:
    target: str
    plan: BatchPlan
    created_at: float
    gap_ms: float
    cadence_ms: float
    batches: list[BatchTiming] = field(default_factory=list)

    @property
    def completion_at(self) -> float:
        if not self.batches:
            return self.created_at
        return self.batches[-1].completion_at

    def drift_check_at(self, margin_ms: float) -> float:
        return self.completion_at + margin_ms


class WaveScheduler:
    """Turns a BatchPlan and a batch count into a timed Wave."""

    def __init__(
        self,
        gap_ms: float = 200.0,
        lead_ms: float = 3000.0,
        min_cadence_ms: float = 0.0,
    ):
        if gap_ms <= 0:
            raise ValueError(f"gap_ms must be positive, got {gap_ms}")
        self.gap_ms = gap_ms
        self.lead_ms = lead_ms
        self.min_cadence_ms = min_cadence_ms

    def cadence(self, state: TargetState) -> float:
        return max(self.min_cadence_ms, state.max_duration + 3 * self.gap_ms)

    def first_completion(self, state: TargetState, now: float) -> float:
        return now + self.lead_ms + state.max_duration

    def schedule(
        self,
        plan: BatchPlan,
        state: TargetState,
        batch_count: int,
        now: float,
    ) -> Wave:
        cadence = self.cadence(state)
        first = self.first_completion(state, now)
        wave = Wave(
            target=state.target,
            plan=plan,
            created_at=now,
            gap_ms=self.gap_ms,
            cadence_ms=cadence,
        )

        for i in range(max(0, batch_count)):
            completion = first + i * cadence
            batch = BatchTiming(index=i, completion_at=completion)
            for stage in STAGE_ORDER:
                job = stage.job
                finish = completion - stage.offset * self.gap_ms
                start = finish - state.duration(job)
                batch.stages.append(StageTiming(
                    stage=stage,
                    job=job,
                    threads=plan.threads(stage),
                    start_at=start,
                    finish_at=finish,
                    delay=max(0.0, start - now),
                ))
            wave.batches.append(batch)

        log.debug(
            "Wave for %s: %d batch(es), cadence %.0fms, completes at %.0f",
            state.target, len(wave.batches), cadence, wave.completion_at,
        )
        return wave
