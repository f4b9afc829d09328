"""
wavesched — Resource Ledger

The only mutable shared state in the scheduler. Tracks per-host free
capacity and a set of time-bounded reservations:

  refresh()          re-read host capacity, then subtract active reservations
  allocate()         bin-pack threads onto a scratch view (pluggable Packer)
  commit()           deduct capacity and record a Reservation
  reclaim_expired()  release reservations whose release time has passed
  cancel()           release every reservation for a target immediately

Invariant: for every host, the sum of active reservations never exceeds
``total − reserve``. commit() refuses any allocation that would push a
host's live free capacity below zero.

One ledger is created per process and passed explicitly to the planner,
dispatcher and drift monitor.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from wavesched.types import (
    Allocation,
    Host,
    Reservation,
    ReservationKind,
    ReservationStatus,
)

log = logging.getLogger("wavesched.ledger")

_CAPACITY_EPSILON = 1e-9


class LedgerError(Exception):
    """Raised when a commit would break the capacity invariant."""
    pass


# ═══════════════════════════════════════════════════════════════════
# ALLOCATION (bin packing)
# ═══════════════════════════════════════════════════════════════════

@dataclass
class AllocationResult:
    """Assignments for one job plus whatever could not be placed."""
    allocations: list[Allocation] = field(default_factory=list)
    remainder: int = 0

    @property
    def allocated_threads(self) -> int:
        return sum(a.threads for a in self.allocations)

    @property
    def satisfied(self) -> bool:
        return self.remainder == 0


class Packer(Protocol):
    """Strategy that places ``threads`` onto hosts in ``hosts_view``."""

    def pack(
        self,
        threads: int,
        capacity_per_thread: float,
        hosts_view: dict[str, float],
    ) -> AllocationResult: ...


def _fit(free: float, capacity_per_thread: float) -> int:
    if capacity_per_thread <= 0:
        return 0
    return max(0, int(math.floor((free + _CAPACITY_EPSILON) / capacity_per_thread)))


def _place(
    order: list[str],
    threads: int,
    capacity_per_thread: float,
    hosts_view: dict[str, float],
) -> AllocationResult:
    left = threads
    allocations: list[Allocation] = []
    for host_id in order:
        if left <= 0:
            break
        can = _fit(hosts_view[host_id], capacity_per_thread)
        if can <= 0:
            continue
        take = min(can, left)
        allocations.append(Allocation(host_id, take, capacity_per_thread))
        hosts_view[host_id] = max(0.0, hosts_view[host_id] - take * capacity_per_thread)
        left -= take
    return AllocationResult(allocations=allocations, remainder=left)


class LargestFreeFirst:
    """
    Greedy packer: hosts sorted by descending free capacity, each filled
    as far as it will go. Simple, not optimal.
    """

    def pack(
        self,
        threads: int,
        capacity_per_thread: float,
        hosts_view: dict[str, float],
    ) -> AllocationResult:
        if threads <= 0:
            return AllocationResult()
        order = sorted(hosts_view, key=lambda h: (-hosts_view[h], h))
        return _place(order, threads, capacity_per_thread, hosts_view)


class BestFitPacker:
    """
    Place the whole job on the smallest host that can hold it; if no
    single host can, fall back to largest-free-first splitting.
    """

    def pack(
        self,
        threads: int,
        capacity_per_thread: float,
        hosts_view: dict[str, float],
    ) -> AllocationResult:
        if threads <= 0:
            return AllocationResult()
        fitting = [
            h for h in hosts_view
            if _fit(hosts_view[h], capacity_per_thread) >= threads
        ]
        if fitting:
            best = min(fitting, key=lambda h: (hosts_view[h], h))
            return _place([best], threads, capacity_per_thread, hosts_view)
        return LargestFreeFirst().pack(threads, capacity_per_thread, hosts_view)


PACKERS: dict[str, type] = {
    "largest_free_first": LargestFreeFirst,
    "best_fit": BestFitPacker,
}


# ═══════════════════════════════════════════════════════════════════
# SNAPSHOTS
# ═══════════════════════════════════════════════════════════════════

@dataclass
class HostUsage:
    host_id: str
    total: float
    used: float
    reserve: float
    reserved: float
    free: float


@dataclass
class LedgerSnapshot:
    hosts: list[HostUsage]
    active_reservations: int
    inflight: dict[str, int]

    @property
    def total_capacity(self) -> float:
        return sum(h.total for h in self.hosts)

    @property
    def total_reserved(self) -> float:
        return sum(h.reserved for h in self.hosts)

    @property
    def total_free(self) -> float:
        return sum(h.free for h in self.hosts)

    @property
    def utilization(self) -> float:
        usable = sum(max(0.0, h.total - h.reserve) for h in self.hosts)
        if usable <= 0:
            return 0.0
        return sum(h.used + h.reserved for h in self.hosts) / usable


# ═══════════════════════════════════════════════════════════════════
# LEDGER
# ═══════════════════════════════════════════════════════════════════

class ResourceLedger:
    """
    Host capacity and reservations for one scheduler process.

    ``environment`` must provide ``hosts()`` and
    ``host_capacity(host) -> (total, used)``.
    """

    def __init__(
        self,
        environment: Any,
        reserve: float = 0.0,
        host_reserves: dict[str, float] | None = None,
        packer: Packer | None = None,
        now_fn: Callable[[], float] | None = None,
    ):
        self._env = environment
        self._reserve = reserve
        self._host_reserves = dict(host_reserves or {})
        self._packer = packer or LargestFreeFirst()
        self._now = now_fn or (lambda: time.time() * 1000.0)

        self._hosts: dict[str, Host] = {}
        self._free: dict[str, float] = {}
        self._reservations: dict[str, Reservation] = {}
        self._inflight: dict[str, int] = {}
        self._cancel_listeners: list[Callable[[str], Any]] = []

    # ─── Host view ───────────────────────────────────────────────

    def refresh(self) -> None:
        """
        Rebuild the host view from the environment, then subtract all
        active reservations. The environment's "used" figure does not
        yet reflect reservations whose jobs have not started.
        """
        hosts: dict[str, Host] = {}
        for host_id in self._env.hosts():
            try:
                total, used = self._env.host_capacity(host_id)
            except Exception as e:
                log.warning("Could not query host %s: %s", host_id, e)
                continue
            reserve = self._host_reserves.get(host_id, self._reserve)
            hosts[host_id] = Host(host_id, float(total), float(used), reserve)

        self._hosts = hosts
        self._free = {}
        for host_id in hosts:
            self._recompute(host_id)

    def _recompute(self, host_id: str) -> None:
        host = self._hosts.get(host_id)
        if host is None:
            self._free.pop(host_id, None)
            return
        self._free[host_id] = max(0.0, host.free - self.reserved_on(host_id))

    def free_view(self) -> dict[str, float]:
        """Scratch copy of live free capacity per host."""
        return dict(self._free)

    def total_free(self) -> float:
        return sum(self._free.values())

    def free_on(self, host_id: str) -> float:
        return self._free.get(host_id, 0.0)

    def reserved_on(self, host_id: str) -> float:
        return sum(
            rsv.per_host().get(host_id, 0.0)
            for rsv in self._reservations.values()
            if rsv.is_active
        )

    @property
    def hosts(self) -> list[Host]:
        return list(self._hosts.values())

    # ─── Allocation ──────────────────────────────────────────────

    def allocate(
        self,
        threads: int,
        capacity_per_thread: float,
        hosts_view: dict[str, float] | None = None,
    ) -> AllocationResult:
        """
        Place ``threads`` onto ``hosts_view`` (a scratch view from
        free_view(); defaults to a fresh one). The view is deducted in
        place so chained allocations see earlier claims. Live state is
        untouched until commit(). A nonzero remainder means
        "insufficient capacity now".
        """
        view = hosts_view if hosts_view is not None else self.free_view()
        return self._packer.pack(threads, capacity_per_thread, view)

    # ─── Reservations ────────────────────────────────────────────

    def commit(
        self,
        allocations: list[Allocation],
        release_at: float,
        target: str,
        kind: ReservationKind = ReservationKind.BATCH,
    ) -> Reservation:
        """
        Deduct allocated capacity from the live view and record a
        Reservation. Raises LedgerError if any host lacks the capacity.
        """
        if not allocations:
            raise LedgerError(f"Refusing empty {kind.value} reservation for {target}")

        rsv = Reservation.create(
            target=target,
            kind=kind,
            allocations=allocations,
            release_at=release_at,
            created_at=self._now(),
        )
        per_host = rsv.per_host()
        for host_id, amount in per_host.items():
            free = self._free.get(host_id)
            if free is None:
                raise LedgerError(f"Unknown host {host_id} in reservation for {target}")
            if amount > free + _CAPACITY_EPSILON:
                raise LedgerError(
                    f"Host {host_id}: reservation of {amount:.3f} exceeds "
                    f"free capacity {free:.3f}"
                )

        for host_id, amount in per_host.items():
            self._free[host_id] = max(0.0, self._free[host_id] - amount)
        self._reservations[rsv.reservation_id] = rsv
        if kind == ReservationKind.BATCH:
            self._inflight[target] = self._inflight.get(target, 0) + 1

        log.debug(
            "Committed %s %s for %s: %.3f on %d host(s), release at %.0f",
            kind.value, rsv.reservation_id, target, rsv.amount,
            len(per_host), release_at,
        )
        return rsv

    def _close(self, rsv: Reservation, status: ReservationStatus) -> None:
        rsv.status = status
        self._reservations.pop(rsv.reservation_id, None)
        if rsv.kind == ReservationKind.BATCH:
            self._inflight[rsv.target] = max(0, self._inflight.get(rsv.target, 0) - 1)
        for host_id in rsv.per_host():
            self._recompute(host_id)

    def reclaim_expired(self, now: float | None = None) -> list[Reservation]:
        """
        Release every active reservation whose release time has passed.
        Idempotent: a second call at the same instant changes nothing.
        """
        now = self._now() if now is None else now
        expired = [
            rsv for rsv in self._reservations.values()
            if rsv.is_active and now >= rsv.release_at
        ]
        for rsv in expired:
            self._close(rsv, ReservationStatus.RELEASED)
        if expired:
            log.debug(
                "Reclaimed %d reservation(s), %.3f capacity",
                len(expired), sum(r.amount for r in expired),
            )
        return expired

    def cancel(self, target: str) -> list[Reservation]:
        """
        Release every reservation for ``target`` regardless of release
        time, then tell cancel listeners (the dispatcher) to drop the
        target's pending events.
        """
        cancelled = [
            rsv for rsv in self._reservations.values()
            if rsv.is_active and rsv.target == target
        ]
        for rsv in cancelled:
            self._close(rsv, ReservationStatus.CANCELLED)
        self._inflight[target] = 0

        for listener in self._cancel_listeners:
            listener(target)

        log.info("Cancelled %d reservation(s) for %s", len(cancelled), target)
        return cancelled

    def release(self, reservation_id: str) -> Reservation | None:
        """Cancel one reservation ahead of its release time."""
        rsv = self._reservations.get(reservation_id)
        if rsv is None or not rsv.is_active:
            return None
        self._close(rsv, ReservationStatus.CANCELLED)
        log.info(
            "Released %s %s for %s early: %.3f capacity",
            rsv.kind.value, reservation_id, rsv.target, rsv.amount,
        )
        return rsv

    def add_cancel_listener(self, listener: Callable[[str], Any]) -> None:
        self._cancel_listeners.append(listener)

    # ─── Queries ─────────────────────────────────────────────────

    def inflight(self, target: str) -> int:
        return self._inflight.get(target, 0)

    def active_reservations(self, target: str | None = None) -> list[Reservation]:
        return [
            rsv for rsv in self._reservations.values()
            if rsv.is_active and (target is None or rsv.target == target)
        ]

    @property
    def reservation_count(self) -> int:
        return len(self.active_reservations())

    def snapshot(self) -> LedgerSnapshot:
        hosts = [
            HostUsage(
                host_id=h.host_id,
                total=h.total,
                used=h.used,
                reserve=h.reserve,
                reserved=self.reserved_on(h.host_id),
                free=self._free.get(h.host_id, 0.0),
            )
            for h in sorted(self._hosts.values(), key=lambda h: h.host_id)
        ]
        return LedgerSnapshot(
            hosts=hosts,
            active_reservations=self.reservation_count,
            inflight={t: n for t, n in self._inflight.items() if n > 0},
        )
