"""
wavesched — Batch Wave Scheduler

Schedules repeating waves of four-stage batches (hack, counter, grow,
counter) against a pool of hosts so that each batch's jobs finish in a
fixed order separated by a fixed gap, without overcommitting capacity.

Usage:
    from wavesched import BatchCoordinator, SimulatedEnvironment, parse_scheduler_config

    config = parse_scheduler_config(load_config("wavesched.yaml"))
    coord = BatchCoordinator(config, SimulatedEnvironment.load("scenarios/sim.yaml"))
    coord.run(max_iterations=100)
"""

from wavesched.types import (
    JobType,
    BatchStage,
    Estimate,
    Host,
    TargetState,
    BatchPlan,
    Allocation,
    Reservation,
    ReservationKind,
    ReservationStatus,
    ScheduledEvent,
)
from wavesched.effects import EffectConstants, EffectOracle
from wavesched.ledger import (
    ResourceLedger,
    LedgerError,
    AllocationResult,
    LargestFreeFirst,
    BestFitPacker,
)
from wavesched.planner import BatchPlanner
from wavesched.autotune import Autotuner, AutotuneResult
from wavesched.waves import WaveScheduler, Wave
from wavesched.dispatcher import Dispatcher, DispatchReport
from wavesched.drift import DriftMonitor, DriftVerdict, CorrectionResult, CorrectionStatus
from wavesched.environment import ExecutionEnvironment, SimulatedEnvironment, SimulatedClock
from wavesched.settings import SchedulerConfig, ConfigError, parse_scheduler_config
from wavesched.runtime import BatchCoordinator

__all__ = [
    "BatchCoordinator",
    "JobType",
    "BatchStage",
    "Estimate",
    "Host",
    "TargetState",
    "BatchPlan",
    "Allocation",
    "Reservation",
    "ReservationKind",
    "ReservationStatus",
    "ScheduledEvent",
    "EffectConstants",
    "EffectOracle",
    "ResourceLedger",
    "LedgerError",
    "AllocationResult",
    "LargestFreeFirst",
    "BestFitPacker",
    "BatchPlanner",
    "Autotuner",
    "AutotuneResult",
    "WaveScheduler",
    "Wave",
    "Dispatcher",
    "DispatchReport",
    "DriftMonitor",
    "DriftVerdict",
    "CorrectionResult",
    "CorrectionStatus",
    "ExecutionEnvironment",
    "SimulatedEnvironment",
    "SimulatedClock",
    "SchedulerConfig",
    "ConfigError",
    "parse_scheduler_config",
]
