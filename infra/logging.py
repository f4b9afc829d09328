"""
wavesched — Structured Logging with Run IDs

Emits structured JSON log lines for every scheduling event so a whole run
(plans, waves, launches, reclaims, drift corrections) can be correlated
by a single run_id.

Design decisions:
  - Transport: Python logging with JSON formatter
  - Schema: flat JSON, one object per line (run_id, target, action, ...)
  - Configurable log level: DEBUG (per-launch detail), INFO (waves), WARNING (faults)

Usage:
    from infra.logging import WaveEventLogger, configure_logging

    configure_logging(level="INFO")
    events = WaveEventLogger()
    events.on_wave_scheduled("n00dles", batches=4, fraction=0.05, completion_at=...)
"""

from __future__ import annotations

import json
import logging
import os
import sys
import uuid
from datetime import datetime, timezone
from typing import Any


# ═══════════════════════════════════════════════════════════════════
# JSON Formatter
# ═══════════════════════════════════════════════════════════════════

class JSONFormatter(logging.Formatter):
    """
    Formats log records as JSON lines.

    Fields:
      - timestamp, level, logger, message
      - service.name: "wavesched"
      - service.version: from WS_VERSION env
      - anything attached as ``record.structured``
    """

    def __init__(self, service_name: str = "wavesched"):
        super().__init__()
        self.service_name = service_name
        self.service_version = os.environ.get("WS_VERSION", "0.1.0")

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service.name": self.service_name,
            "service.version": self.service_version,
        }

        if hasattr(record, "structured"):
            entry.update(record.structured)

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception.type"] = record.exc_info[0].__name__
            entry["exception.message"] = str(record.exc_info[1])

        return json.dumps(entry, default=str)


# ═══════════════════════════════════════════════════════════════════
# Log Configuration
# ═══════════════════════════════════════════════════════════════════


def configure_logging(
    level: str = "INFO",
    stream: Any = None,
    service_name: str = "wavesched",
) -> logging.Logger:
    """
    Configure the wavesched logger with JSON output.

    Args:
        level: DEBUG, INFO, WARNING, ERROR
        stream: Output stream (default: sys.stderr)
        service_name: Service name in log entries

    Returns:
        The configured root logger for wavesched
    """
    logger = logging.getLogger("wavesched")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Avoid duplicate handlers on reconfigure
    logger.handlers.clear()

    for name in list(logging.Logger.manager.loggerDict.keys()):
        if name.startswith("wavesched."):
            child = logging.getLogger(name)
            child.handlers.clear()
            child.setLevel(logging.NOTSET)  # Inherit from parent

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JSONFormatter(service_name=service_name))
    handler.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.addHandler(handler)

    logger.propagate = False

    return logger


def get_logger(name: str = "") -> logging.Logger:
    """Get a child logger under the wavesched namespace."""
    if name:
        return logging.getLogger(f"wavesched.{name}")
    return logging.getLogger("wavesched")


def generate_run_id() -> str:
    """Generate a run ID (32 hex chars)."""
    return uuid.uuid4().hex


# ═══════════════════════════════════════════════════════════════════
# Wave Event Logger
# ═══════════════════════════════════════════════════════════════════

class WaveEventLogger:
    """
    Structured event logger for the scheduling loop.

    Every entry carries the run_id so one scheduler process can be
    followed end to end.
    """

    def __init__(self, run_id: str | None = None):
        self.run_id = run_id or generate_run_id()
        self._logger = get_logger("events")

    def _emit(self, level: int, action: str, **fields):
        if not self._logger.isEnabledFor(level):
            return
        structured = {"run_id": self.run_id, "action": action, **fields}
        record = self._logger.makeRecord(
            name=self._logger.name,
            level=level,
            fn="", lno=0, msg=action,
            args=(), exc_info=None,
        )
        record.structured = structured
        self._logger.handle(record)

    # ── Planning ────────────────────────────────────────────────

    def on_plan(self, target: str, fraction: float, threads: dict[str, int],
                cost: float, fallback_used: bool) -> None:
        self._emit(
            logging.DEBUG, "plan",
            target=target,
            fraction=round(fraction, 6),
            threads=threads,
            cost=round(cost, 3),
            fallback_used=fallback_used,
        )

    def on_autotune(self, target: str, fraction: float, batches: int,
                    utilization: float, fallback_used: bool) -> None:
        self._emit(
            logging.INFO, "autotune",
            target=target,
            fraction=round(fraction, 6),
            batches=batches,
            utilization=round(utilization, 4),
            fallback_used=fallback_used,
        )

    def on_wave_scheduled(self, target: str, batches: int, fraction: float,
                          completion_at: float, abandoned: int = 0) -> None:
        self._emit(
            logging.INFO, "wave_scheduled",
            target=target,
            batches=batches,
            abandoned=abandoned,
            fraction=round(fraction, 6),
            completion_at=round(completion_at, 1),
        )

    def on_batch_abandoned(self, target: str, batch_index: int,
                           stage: str, remainder: int) -> None:
        self._emit(
            logging.WARNING, "batch_abandoned",
            target=target,
            batch_index=batch_index,
            stage=stage,
            remainder=remainder,
        )

    def on_batch_dropped(self, target: str, batch_index: int,
                         late_ms: float, events: int) -> None:
        self._emit(
            logging.WARNING, "batch_dropped",
            target=target,
            batch_index=batch_index,
            late_ms=round(late_ms, 1),
            events=events,
        )

    # ── Dispatch ────────────────────────────────────────────────

    def on_launch(self, target: str, job: str, host: str, threads: int,
                  delay_ms: float) -> None:
        self._emit(
            logging.DEBUG, "launch",
            target=target,
            job=job,
            host=host,
            threads=threads,
            delay_ms=round(delay_ms, 1),
        )

    def on_launch_failed(self, target: str, job: str, host: str,
                         threads: int, error: str = "") -> None:
        self._emit(
            logging.WARNING, "launch_failed",
            target=target,
            job=job,
            host=host,
            threads=threads,
            error=error[:500],
        )

    # ── Ledger / Drift ──────────────────────────────────────────

    def on_reclaim(self, count: int, amount: float) -> None:
        self._emit(
            logging.DEBUG, "reclaim",
            reservations=count,
            amount=round(amount, 3),
        )

    def on_drift(self, target: str, prepared: bool, reason: str = "") -> None:
        self._emit(
            logging.INFO if prepared else logging.WARNING, "drift",
            target=target,
            prepared=prepared,
            reason=reason,
        )

    def on_correction(self, target: str, status: str, waves: int) -> None:
        self._emit(
            logging.INFO, "correction",
            target=target,
            status=status,
            waves=waves,
        )
