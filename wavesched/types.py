"""
wavesched — Type Definitions

Data structures shared by the planner, ledger, wave scheduler,
dispatcher and drift monitor. All times are milliseconds; all
capacities are abstract units consumed per thread.
"""

from __future__ import annotations

import enum
import math
import uuid
from dataclasses import dataclass, field


# ─── Job Types ───────────────────────────────────────────────────────

class JobType(str, enum.Enum):
    """The three worker programs. WEAKEN is the counter job."""
    HACK = "hack"
    GROW = "grow"
    WEAKEN = "weaken"


class BatchStage(str, enum.Enum):
    """
    The four stages of one batch, in finish order.

    Each stage runs one JobType and finishes ``offset`` gaps before
    the batch completion instant.
    """
    HACK = "hack"
    HACK_WEAKEN = "hack_weaken"
    GROW = "grow"
    GROW_WEAKEN = "grow_weaken"

    @property
    def job(self) -> JobType:
        return _STAGE_JOBS[self]

    @property
    def offset(self) -> int:
        return _STAGE_OFFSETS[self]


_STAGE_JOBS: dict[BatchStage, JobType] = {
    BatchStage.HACK:        JobType.HACK,
    BatchStage.HACK_WEAKEN: JobType.WEAKEN,
    BatchStage.GROW:        JobType.GROW,
    BatchStage.GROW_WEAKEN: JobType.WEAKEN,
}

_STAGE_OFFSETS: dict[BatchStage, int] = {
    BatchStage.HACK:        3,
    BatchStage.HACK_WEAKEN: 2,
    BatchStage.GROW:        1,
    BatchStage.GROW_WEAKEN: 0,
}

STAGE_ORDER: tuple[BatchStage, ...] = (
    BatchStage.HACK,
    BatchStage.HACK_WEAKEN,
    BatchStage.GROW,
    BatchStage.GROW_WEAKEN,
)


# ─── Estimates ───────────────────────────────────────────────────────

@dataclass(frozen=True)
class Estimate:
    """
    Result of an effect-model query.

    ``fallback_used`` is True when the precise estimator was missing,
    raised, or returned a non-finite/non-positive answer and the
    documented constant was substituted.
    """
    value: float
    fallback_used: bool = False
    reason: str = ""

    @property
    def as_int(self) -> int:
        return int(self.value)


# ─── Hosts & Targets ─────────────────────────────────────────────────

@dataclass
class Host:
    """A compute host as last observed in the environment."""
    host_id: str
    total: float
    used: float = 0.0
    reserve: float = 0.0

    @property
    def free(self) -> float:
        return max(0.0, self.total - self.used - self.reserve)


@dataclass
class TargetState:
    """
    Read-only snapshot of a remote target, refreshed every cycle.

    ``durations`` holds the current run time of each job type
    against this target.
    """
    target: str
    value: float
    max_value: float
    defense: float
    min_defense: float
    durations: dict[JobType, float] = field(default_factory=dict)

    def duration(self, job: JobType) -> float:
        return float(self.durations.get(job, 0.0))

    @property
    def max_duration(self) -> float:
        return max((self.duration(j) for j in JobType), default=0.0)

    @property
    def defense_gap(self) -> float:
        return max(0.0, self.defense - self.min_defense)

    @property
    def value_gap(self) -> float:
        return max(0.0, self.max_value - self.value)

    def is_prepared(self, tolerance: float) -> bool:
        """Defense at minimum and value at maximum, within tolerance."""
        if self.defense > self.min_defense + tolerance:
            return False
        return self.value_gap <= self.max_value * tolerance


# ─── Plans ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class BatchPlan:
    """
    Thread counts for one batch and their capacity cost.
    Immutable; recomputed every cycle.
    """
    fraction: float
    hack_threads: int
    hack_weaken_threads: int
    grow_threads: int
    grow_weaken_threads: int
    costs: dict[JobType, float] = field(default_factory=dict)
    fallback_used: bool = False

    def threads(self, stage: BatchStage) -> int:
        if stage == BatchStage.HACK:
            return self.hack_threads
        if stage == BatchStage.HACK_WEAKEN:
            return self.hack_weaken_threads
        if stage == BatchStage.GROW:
            return self.grow_threads
        return self.grow_weaken_threads

    def stage_cost(self, stage: BatchStage) -> float:
        return self.threads(stage) * self.costs.get(stage.job, 0.0)

    @property
    def total_threads(self) -> int:
        return sum(self.threads(s) for s in STAGE_ORDER)

    @property
    def total_cost(self) -> float:
        return sum(self.stage_cost(s) for s in STAGE_ORDER)

    @property
    def is_valid(self) -> bool:
        cost = self.total_cost
        return math.isfinite(cost) and cost > 0

    def as_dict(self) -> dict[str, int]:
        return {s.value: self.threads(s) for s in STAGE_ORDER}


# ─── Allocation & Reservations ───────────────────────────────────────

@dataclass(frozen=True)
class Allocation:
    """Threads of one job placed on one host."""
    host_id: str
    threads: int
    capacity_per_thread: float

    @property
    def amount(self) -> float:
        return self.threads * self.capacity_per_thread


class ReservationKind(str, enum.Enum):
    PREP = "prep"
    BATCH = "batch"


class ReservationStatus(str, enum.Enum):
    ACTIVE = "active"
    RELEASED = "released"
    CANCELLED = "cancelled"


@dataclass
class Reservation:
    """
    A committed claim on host capacity until ``release_at``.

    Lifecycle: ACTIVE → RELEASED  (release time reached)
               ACTIVE → CANCELLED (drift correction for the target)
    """
    reservation_id: str
    target: str
    kind: ReservationKind
    allocations: list[Allocation]
    release_at: float
    created_at: float = 0.0
    status: ReservationStatus = ReservationStatus.ACTIVE

    @staticmethod
    def create(
        target: str,
        kind: ReservationKind,
        allocations: list[Allocation],
        release_at: float,
        created_at: float = 0.0,
    ) -> Reservation:
        return Reservation(
            reservation_id=f"rsv_{uuid.uuid4().hex[:12]}",
            target=target,
            kind=kind,
            allocations=list(allocations),
            release_at=release_at,
            created_at=created_at,
        )

    @property
    def amount(self) -> float:
        return sum(a.amount for a in self.allocations)

    @property
    def is_active(self) -> bool:
        return self.status == ReservationStatus.ACTIVE

    def per_host(self) -> dict[str, float]:
        totals: dict[str, float] = {}
        for a in self.allocations:
            totals[a.host_id] = totals.get(a.host_id, 0.0) + a.amount
        return totals


# ─── Events ──────────────────────────────────────────────────────────

@dataclass
class ScheduledEvent:
    """
    One job launch waiting in the dispatcher queue.
    Fired exactly once when ``fire_at`` elapses; never re-queued.
    """
    event_id: str
    job: JobType
    target: str
    threads: int
    allocations: list[Allocation]
    fire_at: float
    stage: BatchStage | None = None
    batch_index: int = 0
    reservation_id: str = ""

    @staticmethod
    def create(
        job: JobType,
        target: str,
        allocations: list[Allocation],
        fire_at: float,
        stage: BatchStage | None = None,
        batch_index: int = 0,
        reservation_id: str = "",
    ) -> ScheduledEvent:
        return ScheduledEvent(
            event_id=f"ev_{uuid.uuid4().hex[:12]}",
            job=job,
            target=target,
            threads=sum(a.threads for a in allocations),
            allocations=list(allocations),
            fire_at=fire_at,
            stage=stage,
            batch_index=batch_index,
            reservation_id=reservation_id,
        )
