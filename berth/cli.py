#!/usr/bin/env python3
"""CLI for the bead executor."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from .errors import BerthError, ScheduleError
from .events import EventType, StreamEvent

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_ERROR = 2


def print_event(event: StreamEvent) -> None:
    if event.type == EventType.BEAD_INIT:
        print(f"[{event.bead_id}] started ({event.content})")
    elif event.type == EventType.OUTPUT:
        stream = sys.stderr if event.is_stderr else sys.stdout
        print(f"[{event.bead_id}] {event.content}", file=stream)
    elif event.type == EventType.BEAD_COMPLETE:
        status = event.status.value if event.status else "complete"
        print(f"[{event.bead_id}] {status}")
    elif event.type == EventType.ERROR:
        print(f"[{event.bead_id}] failed: {event.content}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="berth",
        description="Execute an approved bead plan with one coding agent per bead",
    )
    parser.add_argument(
        "plan",
        help="Path to a YAML or JSON bead list",
    )
    parser.add_argument(
        "--project-root",
        "-p",
        default=".",
        help="Project root directory (default: current directory)",
    )
    parser.add_argument(
        "--run-dir",
        "-r",
        default=None,
        help="Run directory for checkpoint and logs (default: <project-root>/.berth/run)",
    )
    parser.add_argument(
        "--max-parallel",
        "-c",
        type=int,
        default=None,
        help="Maximum concurrent agents (default: from config, 4)",
    )
    parser.add_argument(
        "--dry-run",
        "-n",
        action="store_true",
        help="Show the execution groups without executing",
    )
    parser.add_argument(
        "--fresh",
        action="store_true",
        help="Ignore any checkpoint and start from the first group",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Debug logging",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
    )

    from .config import load_config
    from .executor import dry_run, execute_plan
    from .parser import load_beads

    project_root = Path(args.project_root).resolve()
    if not project_root.is_dir():
        print(f"Error: Project root not found: {project_root}", file=sys.stderr)
        return EXIT_ERROR

    try:
        beads = load_beads(args.plan)
        if args.dry_run:
            dry_run(beads)
            return EXIT_OK

        config = load_config(str(project_root))
        if args.max_parallel is not None:
            config.execution.max_parallel = args.max_parallel

        result = asyncio.run(
            execute_plan(
                beads,
                str(project_root),
                config=config,
                run_dir=args.run_dir,
                on_event=print_event,
                fresh=args.fresh,
                handle_signals=True,
            )
        )
    except ScheduleError as e:
        print(f"Error: invalid plan schedule: {e}", file=sys.stderr)
        return EXIT_ERROR
    except BerthError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_ERROR

    print(
        f"\nExecution complete: {len(result.completed)} completed, "
        f"{len(result.failed)} failed, {len(result.skipped)} skipped "
        f"out of {len(result.statuses)}"
    )
    if result.missing_commits:
        print(f"Warning: verified but not committed: {', '.join(result.missing_commits)}")
    if result.cancelled:
        print("Run cancelled; re-run the same command to resume.")
    if result.stopped:
        print("Circuit breaker tripped: too many consecutive failures. Fix them and re-run to resume.")

    return EXIT_OK if result.ok else EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
