"""
wavesched — CLI

Dry-run the scheduler against a simulated scenario.

Usage:
    # Run the scheduling loop on a simulated clock
    python -m wavesched.cli run --scenario scenarios/sim.yaml \\
        [--target n00dles] [--mode auto] [--iterations 200]

    # Show the plan (fixed fraction) or the autotuned plan for a target
    python -m wavesched.cli plan --scenario scenarios/sim.yaml [--fraction 0.05]

    # Show host capacity as the ledger sees it
    python -m wavesched.cli status --scenario scenarios/sim.yaml
"""

import argparse
import json
import sys
import time
from dataclasses import asdict

from infra.config import load_config
from infra.logging import configure_logging
from wavesched.environment import SimulatedClock, SimulatedEnvironment
from wavesched.runtime import BatchCoordinator
from wavesched.settings import ConfigError, clamp_fraction, parse_scheduler_config


def _build(args) -> tuple[BatchCoordinator, SimulatedEnvironment, SimulatedClock]:
    raw = load_config(base_path=args.config, env=args.env)
    if getattr(args, "mode", None):
        raw.setdefault("batching", {})["mode"] = args.mode
    if getattr(args, "target", None):
        raw["target"] = args.target
    config = parse_scheduler_config(raw)

    clock = SimulatedClock()
    env = SimulatedEnvironment.load(args.scenario, now_fn=clock.now)
    known = {c.name for c in env.candidates()}
    if config.target and config.target not in known:
        raise ConfigError(
            f"Unknown target '{config.target}' (scenario has: {', '.join(sorted(known))})"
        )
    coord = BatchCoordinator(config, env, now_fn=clock.now, sleep_fn=clock.sleep)
    return coord, env, clock


def cmd_run(args, coord: BatchCoordinator, env: SimulatedEnvironment, clock: SimulatedClock):
    """Run the scheduling loop on the simulated clock."""
    print(f"\n{'═' * 70}", file=sys.stderr)
    print(f"  WAVESCHED DRY RUN: {', '.join(coord.targets) or '(no target)'}", file=sys.stderr)
    print(f"{'═' * 70}", file=sys.stderr, flush=True)

    start = time.time()
    try:
        iterations = coord.run(max_iterations=args.iterations)
    except KeyboardInterrupt:
        print("\n  Interrupted", file=sys.stderr)
        iterations = coord.counters["ticks"]
    elapsed = time.time() - start

    s = coord.stats()
    print(f"\n{'═' * 70}", file=sys.stderr)
    print(f"  SUMMARY", file=sys.stderr)
    print(f"{'─' * 70}", file=sys.stderr)
    print(f"  iterations:   {iterations}", file=sys.stderr)
    print(f"  simulated:    {clock.now() / 1000.0:.1f}s", file=sys.stderr)
    print(f"  waves:        {s['waves']}", file=sys.stderr)
    print(f"  batches:      {s['batches']} ({s['abandoned']} abandoned)", file=sys.stderr)
    print(f"  corrections:  {s['corrections']}", file=sys.stderr)
    print(f"  launches:     {len(env.launches)} ({s['launch_failures']} failed)", file=sys.stderr)
    print(f"  late drops:   {s['stale_events']} event(s)", file=sys.stderr)
    print(f"  elapsed:      {elapsed:.2f}s", file=sys.stderr)

    for target in coord.targets:
        state = env.target_state(target)
        print(f"\n  {target}: value {state.value:.1f}/{state.max_value:.1f}, "
              f"defense {state.defense:.3f}/{state.min_defense:.3f}", file=sys.stderr)
    print(f"{'═' * 70}\n", file=sys.stderr)

    if args.verbose:
        print(json.dumps(s, indent=2, default=str))


def cmd_plan(args, coord: BatchCoordinator, env: SimulatedEnvironment, clock: SimulatedClock):
    """Print the batch plan for each target."""
    coord.ledger.refresh()
    free = coord.ledger.total_free()
    out = []
    for target in coord.targets:
        state = env.target_state(target)
        if args.fraction is not None:
            plan = coord.planner.plan(state, clamp_fraction(args.fraction))
            batches = coord.autotuner.fit(plan, free)[0] if plan else 0
            fallback = False
        else:
            result = coord.autotuner.tune(state, free)
            plan, batches, fallback = result.plan, result.batch_count, result.fallback_used
        out.append({
            "target": target,
            "free_capacity": round(free, 3),
            "fraction": plan.fraction if plan else None,
            "threads": plan.as_dict() if plan else {},
            "total_threads": plan.total_threads if plan else 0,
            "batch_cost": round(plan.total_cost, 3) if plan else None,
            "batches": batches,
            "autotune_fallback": fallback,
            "estimate_fallback": plan.fallback_used if plan else None,
        })
    print(json.dumps(out, indent=2))


def cmd_status(args, coord: BatchCoordinator, env: SimulatedEnvironment, clock: SimulatedClock):
    """Show the ledger's view of host capacity."""
    coord.ledger.refresh()
    snap = coord.ledger.snapshot()
    print(f"\nHosts ({len(snap.hosts)})")
    print(f"{'─' * 70}")
    for h in snap.hosts:
        print(f"  {h.host_id:20s} total {h.total:8.2f}  used {h.used:8.2f}  "
              f"reserve {h.reserve:6.2f}  free {h.free:8.2f}")
    print(f"{'─' * 70}")
    print(f"  capacity {snap.total_capacity:.2f}, free {snap.total_free:.2f}, "
          f"utilization {snap.utilization:.1%}")
    if args.verbose:
        print(json.dumps([asdict(h) for h in snap.hosts], indent=2))


def main():
    parser = argparse.ArgumentParser(
        description="wavesched — batch wave scheduler (simulated dry run)",
    )
    parser.add_argument(
        "--config", default="wavesched.yaml",
        help="Base config file (default: wavesched.yaml)",
    )
    parser.add_argument("--env", default="", help="Config overlay profile (WS_ENV)")
    parser.add_argument("--log-level", default="WARNING", help="DEBUG, INFO, WARNING, ERROR")

    subs = parser.add_subparsers(dest="command")

    # run
    run_p = subs.add_parser("run", help="Run the scheduling loop on a simulated clock")
    run_p.add_argument("--scenario", "-s", required=True, help="Scenario YAML file")
    run_p.add_argument("--target", "-t", help="Target name (default: best ranked)")
    run_p.add_argument("--mode", "-m", choices=["fixed", "auto"])
    run_p.add_argument("--iterations", "-n", type=int, default=200)
    run_p.add_argument("--verbose", "-v", action="store_true")

    # plan
    plan_p = subs.add_parser("plan", help="Show the batch plan for a target")
    plan_p.add_argument("--scenario", "-s", required=True, help="Scenario YAML file")
    plan_p.add_argument("--target", "-t", help="Target name (default: best ranked)")
    plan_p.add_argument("--fraction", "-f", type=float, help="Fixed fraction (default: autotune)")

    # status
    status_p = subs.add_parser("status", help="Show host capacity")
    status_p.add_argument("--scenario", "-s", required=True, help="Scenario YAML file")
    status_p.add_argument("--verbose", "-v", action="store_true")

    args = parser.parse_args()
    if not args.command:
        parser.print_help()
        sys.exit(1)

    configure_logging(level=args.log_level)

    try:
        coord, env, clock = _build(args)
    except (ConfigError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.command == "run":
        cmd_run(args, coord, env, clock)
    elif args.command == "plan":
        cmd_plan(args, coord, env, clock)
    elif args.command == "status":
        cmd_status(args, coord, env, clock)


if __name__ == "__main__":
    main()
