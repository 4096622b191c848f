"""Main bead executor - wires config, orchestrator, event listener and status report."""

import asyncio
import logging
import signal
from pathlib import Path
from typing import Awaitable, Callable

from .config import Config, load_config
from .events import StreamEvent
from .models import Bead
from .orchestrator import BreakerFn, Orchestrator, RunResult
from .scheduler import ExecutionGroup, compute_groups
from .status import update_execution_status

log = logging.getLogger(__name__)


async def execute_plan(
    beads: list[Bead],
    project_root: str,
    config: Config | None = None,
    run_dir: str | None = None,
    on_event: Callable[[StreamEvent], Awaitable[None] | None] | None = None,
    fresh: bool = False,
    handle_signals: bool = False,
    on_breaker: BreakerFn | None = None,
) -> RunResult:
    """Execute an approved bead plan.

    Args:
        beads: Beads in plan order.
        project_root: Git working tree the agents edit.
        config: Defaults to .berth/config.yaml (or built-in defaults).
        run_dir: Where checkpoint, log and status report go.
        on_event: Called for every published StreamEvent, in order.
        fresh: Discard any checkpoint instead of resuming it.
        handle_signals: Cancel the run on SIGINT/SIGTERM.
        on_breaker: Called when the circuit breaker trips. Defaults to
            stopping the run, since nothing here can resume a pause.

    Returns:
        RunResult with the final status of every bead.

    Raises:
        Exception: Whatever on_event raised. The run is cancelled first and
            the status report is still written.
    """
    if config is None:
        config = load_config(project_root)
    run_dir = run_dir or str(Path(project_root) / ".berth" / "run")

    orchestrator = Orchestrator(
        beads, config, project_root, run_dir, on_breaker=on_breaker or Orchestrator.stop
    )
    if fresh:
        orchestrator.store.clear()

    loop = asyncio.get_running_loop()
    if handle_signals:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, orchestrator.cancel)

    listener_error: list[Exception] = []

    async def listen():
        async for event in orchestrator.events:
            if on_event is None or listener_error:
                continue
            try:
                maybe = on_event(event)
                if asyncio.iscoroutine(maybe):
                    await maybe
            except Exception as e:
                log.exception("Event listener failed; cancelling run")
                listener_error.append(e)
                orchestrator.cancel()

    listener = asyncio.create_task(listen())
    try:
        result = await orchestrator.run()
    finally:
        await listener
        if handle_signals:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)

    status_file = update_execution_status(run_dir, result)
    log.info("Status written to %s", status_file)
    if listener_error:
        raise listener_error[0]
    return result


def dry_run(beads: list[Bead]) -> list[ExecutionGroup]:
    """Compute and print the schedule without executing - useful for preview."""
    groups = compute_groups(beads)
    bead_map = {b.id: b for b in beads}

    print(f"Beads: {len(beads)}")
    print("\nExecution Plan (beads in the same group run in parallel):")
    for group in groups:
        bead_info = [f"{bead_id} ({bead_map[bead_id].title})" for bead_id in group.bead_ids]
        marker = " [parallel]" if group.parallel else ""
        print(f"  Group {group.index}{marker}: {', '.join(bead_info)}")

    print("\nDependency Map:")
    for bead in beads:
        if bead.depends_on:
            print(f"  {bead.id} depends on: {', '.join(bead.depends_on)}")

    return groups
