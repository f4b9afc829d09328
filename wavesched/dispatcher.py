"""
wavesched — Dispatcher

Single-threaded event loop and the only place jobs are started.

Holds a time-ordered heap of ScheduledEvents. Each loop iteration:

  1. on_tick(now)   — reclaim, refresh and (re)populate the queue
  2. queue empty    → sleep idle_sleep_ms
     otherwise      → sleep until the earliest fire time (capped at
                      max_sleep_ms so planning keeps running), then
                      fire every event whose time has come

Every event is popped and executed exactly once. A host that rejects a
launch gets a logged warning and that piece is dropped, never retried:
a late retry would break the fixed finish order of its batch. The
reservation behind it still expires on schedule.

With ``late_tolerance_ms`` set, an event reached more than that long
after its fire time (the loop was blocked elsewhere) is not launched.
Its whole batch is dropped: every pending event sharing its reservation
is removed and stale listeners get the reservation id to release it.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from infra.logging import WaveEventLogger
from wavesched.types import ScheduledEvent

log = logging.getLogger("wavesched.dispatcher")


@dataclass
class DispatchReport:
    fired: int = 0
    launched_threads: int = 0
    failed_launches: int = 0
    stale: int = 0
    events: list[ScheduledEvent] = field(default_factory=list)


class Dispatcher:

    def __init__(
        self,
        environment: Any,
        now_fn: Callable[[], float] | None = None,
        sleep_fn: Callable[[float], None] = time.sleep,
        idle_sleep_ms: float = 200.0,
        max_sleep_ms: float = 1000.0,
        late_tolerance_ms: float | None = None,
        events: WaveEventLogger | None = None,
    ):
        self._env = environment
        self._now = now_fn or (lambda: time.time() * 1000.0)
        self._sleep = sleep_fn
        self.idle_sleep_ms = idle_sleep_ms
        self.max_sleep_ms = max_sleep_ms
        self.late_tolerance_ms = late_tolerance_ms
        self._events = events
        self._heap: list[tuple[float, int, ScheduledEvent]] = []
        self._seq = itertools.count()
        self._stale_listeners: list[Callable[[str], Any]] = []
        self.total_fired = 0
        self.total_failed = 0
        self.total_stale = 0

    # ─── Queue ───────────────────────────────────────────────────

    def schedule(self, events: list[ScheduledEvent]) -> None:
        for event in events:
            heapq.heappush(self._heap, (event.fire_at, next(self._seq), event))

    def pending(self, target: str | None = None) -> list[ScheduledEvent]:
        return [
            ev for _, _, ev in sorted(self._heap)
            if target is None or ev.target == target
        ]

    def next_fire_at(self) -> float | None:
        return self._heap[0][0] if self._heap else None

    def __len__(self) -> int:
        return len(self._heap)

    def cancel_target(self, target: str) -> int:
        """Drop every not-yet-fired event for ``target``."""
        kept = [entry for entry in self._heap if entry[2].target != target]
        dropped = len(self._heap) - len(kept)
        if dropped:
            heapq.heapify(kept)
            self._heap = kept
            log.info("Dropped %d pending event(s) for %s", dropped, target)
        return dropped

    def add_stale_listener(self, listener: Callable[[str], Any]) -> None:
        self._stale_listeners.append(listener)

    # ─── Firing ──────────────────────────────────────────────────

    def fire_due(self, now: float | None = None) -> DispatchReport:
        """
        Launch every event with ``fire_at <= now``, each exactly once.
        Events past the late tolerance are dropped with their batch.
        """
        now = self._now() if now is None else now
        report = DispatchReport()
        while self._heap and self._heap[0][0] <= now:
            _, _, event = heapq.heappop(self._heap)
            if self._is_stale(event, now):
                report.stale += self._drop_stale(event, now)
                continue
            self._launch(event, now, report)
            report.fired += 1
            report.events.append(event)
        self.total_fired += report.fired
        self.total_failed += report.failed_launches
        self.total_stale += report.stale
        return report

    def _is_stale(self, event: ScheduledEvent, now: float) -> bool:
        if self.late_tolerance_ms is None:
            return False
        return now - event.fire_at > self.late_tolerance_ms

    def _drop_stale(self, event: ScheduledEvent, now: float) -> int:
        dropped = 1
        if event.reservation_id:
            kept = [e for e in self._heap if e[2].reservation_id != event.reservation_id]
            dropped += len(self._heap) - len(kept)
            heapq.heapify(kept)
            self._heap = kept

        log.warning(
            "Event %s for %s batch %d is %.0fms late; dropped %d event(s) of the batch",
            event.job.value, event.target, event.batch_index,
            now - event.fire_at, dropped,
        )
        if self._events:
            self._events.on_batch_dropped(
                event.target, event.batch_index, now - event.fire_at, dropped,
            )
        if event.reservation_id:
            for listener in self._stale_listeners:
                listener(event.reservation_id)
        return dropped

    def _launch(self, event: ScheduledEvent, now: float, report: DispatchReport) -> None:
        delay = max(0.0, event.fire_at - now)
        for alloc in event.allocations:
            error = ""
            try:
                ok = bool(self._env.launch(
                    event.job, alloc.host_id, alloc.threads, event.target, delay,
                ))
            except Exception as e:
                ok = False
                error = str(e)

            if ok:
                report.launched_threads += alloc.threads
                if self._events:
                    self._events.on_launch(
                        event.target, event.job.value, alloc.host_id,
                        alloc.threads, delay,
                    )
                continue

            report.failed_launches += 1
            log.warning(
                "Launch failed: %s x%d on %s against %s%s; dropping",
                event.job.value, alloc.threads, alloc.host_id, event.target,
                f" ({error})" if error else "",
            )
            if self._events:
                self._events.on_launch_failed(
                    event.target, event.job.value, alloc.host_id,
                    alloc.threads, error,
                )

    # ─── Loop ────────────────────────────────────────────────────

    def run(
        self,
        on_tick: Callable[[float], Any] | None = None,
        should_stop: Callable[[], bool] | None = None,
        max_iterations: int | None = None,
    ) -> int:
        """
        Run the dispatch loop until ``should_stop()`` is true or
        ``max_iterations`` is reached. Returns the iteration count.
        Errors raised by ``on_tick`` are logged and the loop carries on.
        """
        iterations = 0
        while True:
            if should_stop and should_stop():
                break
            if max_iterations is not None and iterations >= max_iterations:
                break
            iterations += 1

            now = self._now()
            if on_tick:
                try:
                    on_tick(now)
                except Exception:
                    log.exception("Scheduling tick failed; continuing")

            now = self._now()
            next_at = self.next_fire_at()
            if next_at is None:
                self._sleep(self.idle_sleep_ms / 1000.0)
                continue

            wait = min(max(0.0, next_at - now), self.max_sleep_ms)
            if wait > 0:
                self._sleep(wait / 1000.0)
            self.fire_due()

        return iterations
