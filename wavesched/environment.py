"""
wavesched — Execution Environment

The scheduler's only view of the outside world:

  hosts()                     host identifiers available for jobs
  host_capacity(host)         (total, used) capacity
  launch(job, host, threads, target, delay_ms) → bool
  target_state(target)        TargetState snapshot
  candidates()                TargetCandidate list for target selection

An environment may additionally implement the EffectOracle methods
(see effects.py) to give the planner precise estimates.

SimulatedEnvironment is a deterministic in-memory implementation used
by the CLI dry run and the tests. Launched jobs change the simulated
target when they finish: hack removes value and adds defense, grow
multiplies value and adds defense, weaken removes defense. Host "used"
capacity is static unless set with set_host_used().
"""

from __future__ import annotations

import copy
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Protocol

import yaml

from wavesched.targets import TargetCandidate
from wavesched.types import JobType, TargetState

log = logging.getLogger("wavesched.environment")


class ExecutionEnvironment(Protocol):

    def hosts(self) -> list[str]: ...

    def host_capacity(self, host: str) -> tuple[float, float]: ...

    def launch(
        self,
        job: JobType,
        host: str,
        threads: int,
        target: str,
        delay_ms: float,
    ) -> bool: ...

    def target_state(self, target: str) -> TargetState: ...

    def candidates(self) -> list[TargetCandidate]: ...


# ═══════════════════════════════════════════════════════════════════
# SIMULATION
# ═══════════════════════════════════════════════════════════════════

class SimulatedClock:
    """Manual clock: ``sleep`` advances time instead of blocking."""

    def __init__(self, start_ms: float = 0.0):
        self._now = float(start_ms)

    def now(self) -> float:
        return self._now

    # Whole nanoseconds; float ms → s → ms conversions must not drift.
    def sleep(self, seconds: float) -> None:
        self._now += round(max(0.0, seconds) * 1000.0, 6)

    def advance(self, ms: float) -> None:
        self._now += round(max(0.0, ms), 6)


@dataclass
class SimRates:
    """Per-thread effect rates used by the simulated oracle and physics."""
    hack_fraction_per_thread: float = 0.002
    grow_fraction_per_thread: float = 0.01
    hack_security_per_thread: float = 0.002
    grow_security_per_thread: float = 0.004
    weaken_per_thread: float = 0.05


@dataclass
class LaunchRecord:
    job: JobType
    host: str
    threads: int
    target: str
    delay_ms: float
    launched_at: float
    finishes_at: float
    applied: bool = False


@dataclass
class SimHost:
    total: float
    used: float = 0.0


class SimulatedEnvironment:
    """In-memory hosts and targets with deterministic job effects."""

    def __init__(
        self,
        hosts: dict[str, SimHost],
        targets: dict[str, TargetState],
        candidates: list[TargetCandidate] | None = None,
        rates: SimRates | None = None,
        now_fn: Callable[[], float] | None = None,
        skill_level: int = 0,
    ):
        self._hosts = dict(hosts)
        self._targets = {name: copy.deepcopy(s) for name, s in targets.items()}
        self._candidates = list(candidates or [])
        self.rates = rates or SimRates()
        self._now = now_fn or (lambda: time.time() * 1000.0)
        self.skill_level = skill_level
        self.launches: list[LaunchRecord] = []
        self.failing_hosts: set[str] = set()
        self.unreachable_hosts: set[str] = set()

    # ─── ExecutionEnvironment ────────────────────────────────────

    def hosts(self) -> list[str]:
        return sorted(self._hosts)

    def host_capacity(self, host: str) -> tuple[float, float]:
        if host in self.unreachable_hosts:
            raise ConnectionError(f"host {host} unreachable")
        h = self._hosts[host]
        return h.total, h.used

    def launch(
        self,
        job: JobType,
        host: str,
        threads: int,
        target: str,
        delay_ms: float,
    ) -> bool:
        if host in self.failing_hosts or host not in self._hosts or threads <= 0:
            return False
        now = self._now()
        state = self._targets[target]
        self.launches.append(LaunchRecord(
            job=job,
            host=host,
            threads=threads,
            target=target,
            delay_ms=delay_ms,
            launched_at=now,
            finishes_at=now + max(0.0, delay_ms) + state.duration(job),
        ))
        return True

    def target_state(self, target: str) -> TargetState:
        self._apply_finished()
        return copy.deepcopy(self._targets[target])

    def candidates(self) -> list[TargetCandidate]:
        return list(self._candidates)

    # ─── EffectOracle ────────────────────────────────────────────

    def hack_fraction_per_thread(self, target: str) -> float:
        return self.rates.hack_fraction_per_thread

    def growth_threads(self, target: str, multiplier: float) -> float:
        return (multiplier - 1.0) / self.rates.grow_fraction_per_thread

    def hack_security(self, threads: int) -> float:
        return threads * self.rates.hack_security_per_thread

    def grow_security(self, threads: int) -> float:
        return threads * self.rates.grow_security_per_thread

    def weaken_per_thread(self) -> float:
        return self.rates.weaken_per_thread

    # ─── Simulation controls ─────────────────────────────────────

    def set_host_used(self, host: str, used: float) -> None:
        self._hosts[host].used = used

    def set_target_state(self, state: TargetState) -> None:
        self._targets[state.target] = copy.deepcopy(state)

    def launches_for(self, target: str, job: JobType | None = None) -> list[LaunchRecord]:
        return [
            r for r in self.launches
            if r.target == target and (job is None or r.job == job)
        ]

    def _apply_finished(self) -> None:
        now = self._now()
        finished = sorted(
            (r for r in self.launches if not r.applied and r.finishes_at <= now),
            key=lambda r: r.finishes_at,
        )
        for record in finished:
            self._apply(record)
            record.applied = True

    def _apply(self, record: LaunchRecord) -> None:
        state = self._targets[record.target]
        rates = self.rates
        if record.job == JobType.HACK:
            removed = min(0.99, record.threads * rates.hack_fraction_per_thread)
            state.value = state.value * (1.0 - removed)
            state.defense += record.threads * rates.hack_security_per_thread
        elif record.job == JobType.GROW:
            grown = state.value * (1.0 + record.threads * rates.grow_fraction_per_thread)
            state.value = min(state.max_value, max(grown, state.value + record.threads))
            state.defense += record.threads * rates.grow_security_per_thread
        else:
            state.defense = max(
                state.min_defense,
                state.defense - record.threads * rates.weaken_per_thread,
            )

    # ─── Scenario files ──────────────────────────────────────────

    @staticmethod
    def from_scenario(
        scenario: dict[str, Any],
        now_fn: Callable[[], float] | None = None,
    ) -> SimulatedEnvironment:
        """
        Build an environment from a scenario dict:

            hosts:   {name: {total: 64, used: 0}}
            targets: {name: {value, max_value, defense, min_defense,
                             durations: {hack, grow, weaken},
                             required_level, rooted}}
            rates:   {hack_fraction_per_thread: 0.002, ...}
            skill_level: 100
        """
        hosts = {
            name: SimHost(total=float(entry.get("total", 0)), used=float(entry.get("used", 0)))
            for name, entry in (scenario.get("hosts") or {}).items()
        }
        targets: dict[str, TargetState] = {}
        candidates: list[TargetCandidate] = []
        for name, entry in (scenario.get("targets") or {}).items():
            durations = entry.get("durations") or {}
            max_value = float(entry.get("max_value", 0))
            targets[name] = TargetState(
                target=name,
                value=float(entry.get("value", max_value)),
                max_value=max_value,
                defense=float(entry.get("defense", entry.get("min_defense", 1))),
                min_defense=float(entry.get("min_defense", 1)),
                durations={JobType(k): float(v) for k, v in durations.items()},
            )
            candidates.append(TargetCandidate(
                name=name,
                max_value=max_value,
                required_level=int(entry.get("required_level", 0)),
                rooted=bool(entry.get("rooted", True)),
            ))
        rates = SimRates(**(scenario.get("rates") or {}))
        return SimulatedEnvironment(
            hosts=hosts,
            targets=targets,
            candidates=candidates,
            rates=rates,
            now_fn=now_fn,
            skill_level=int(scenario.get("skill_level", 0)),
        )

    @staticmethod
    def load(path: str | Path, now_fn: Callable[[], float] | None = None) -> SimulatedEnvironment:
        with open(path) as f:
            scenario = yaml.safe_load(f) or {}
        log.info("Loaded scenario %s", path)
        return SimulatedEnvironment.from_scenario(scenario, now_fn=now_fn)
