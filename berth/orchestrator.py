"""Execution orchestrator - drives the group schedule to completion."""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable

from .breaker import CircuitBreaker
from .checkpoint import CheckpointStore, FileCheckpointStore
from .config import Config
from .errors import AgentError, CheckpointError, GitError
from .events import EventChannel, EventType, StreamEvent
from .git import commit_bead
from .models import Bead, BeadStatus
from .prompt import build_task_prompt, read_system_prompt
from .runlog import (
    CIRCUIT_BREAKER,
    COMMIT_MISSING,
    RUN_COMPLETE,
    RUN_STARTED,
    TASK_COMPLETED,
    TASK_FAILED,
    TASK_SKIPPED,
    TASK_STARTED,
    VERIFY_FAILED,
    VERIFY_PASSED,
    RunLog,
)
from .scheduler import ExecutionGroup, compute_groups
from .spawner import AgentHandle, SpawnOptions, spawn_claude
from .state import BeadResult, RunState, apply_event, transition
from .verify import VerifyResult, build_pipeline, run_verification

log = logging.getLogger(__name__)

SpawnFn = Callable[[Config, str, str, str, SpawnOptions], AgentHandle]
VerifyFn = Callable[[Config, Bead, str], Awaitable[VerifyResult]]
CommitFn = Callable[[str, str, str], "str | None"]
BreakerFn = Callable[["Orchestrator"], None]

CANCELLED = "cancelled"


@dataclass
class RunResult:
    run_id: str
    statuses: dict[str, BeadStatus]
    results: dict[str, BeadResult] = field(default_factory=dict)
    missing_commits: list[str] = field(default_factory=list)
    cancelled: bool = False
    stopped: bool = False  # ended early by stop(), e.g. from the circuit breaker

    def with_status(self, status: BeadStatus) -> list[str]:
        return [bead_id for bead_id, s in self.statuses.items() if s == status]

    @property
    def completed(self) -> list[str]:
        return self.with_status(BeadStatus.SUCCESS)

    @property
    def failed(self) -> list[str]:
        return self.with_status(BeadStatus.FAILED)

    @property
    def skipped(self) -> list[str]:
        return self.with_status(BeadStatus.SKIPPED)

    @property
    def ok(self) -> bool:
        return not self.cancelled and not self.stopped and all(
            s in (BeadStatus.SUCCESS, BeadStatus.SKIPPED) for s in self.statuses.values()
        )


def new_run_id() -> str:
    return f"run-{datetime.now(timezone.utc).strftime('%Y%m%d-%H%M%S')}-{uuid.uuid4().hex[:6]}"


def prepare_run_dir(run_dir: str) -> None:
    """Create the run directory and keep it out of `git add -A`."""
    path = Path(run_dir)
    try:
        path.mkdir(parents=True, exist_ok=True)
        ignore = path / ".gitignore"
        if not ignore.exists():
            ignore.write_text("*\n")
    except OSError as e:
        log.warning("Cannot prepare run directory %s: %s", run_dir, e)


class Orchestrator:
    """Runs an approved bead plan group by group.

    The orchestrator is the only writer of bead status. Agent handles report
    through their event streams; listeners read `events` and `snapshot()`.
    `events` must be drained while `run()` is in progress, since the channel
    is bounded and a full channel holds the run back.
    """

    def __init__(
        self,
        beads: list[Bead],
        config: Config,
        project_root: str,
        run_dir: str | None = None,
        *,
        store: CheckpointStore | None = None,
        run_log: RunLog | None = None,
        spawn_fn: SpawnFn = spawn_claude,
        verify_fn: VerifyFn = run_verification,
        commit_fn: CommitFn = commit_bead,
        system_prompt: str | None = None,
        on_breaker: BreakerFn | None = None,
    ):
        self.config = config
        self.project_root = str(project_root)
        self.run_dir = str(run_dir or Path(project_root) / ".berth" / "run")
        self.store = store if store is not None else FileCheckpointStore(self.run_dir)
        self.run_log = run_log if run_log is not None else RunLog(self.run_dir)
        self.spawn_fn = spawn_fn
        self.verify_fn = verify_fn
        self.commit_fn = commit_fn
        self.system_prompt = system_prompt if system_prompt is not None else read_system_prompt(self.project_root)
        self.on_breaker = on_breaker

        # Own copies: callers' bead objects are never mutated.
        self._plan = [Bead.from_dict(b.to_dict()) for b in beads]
        self.state = RunState(run_id=new_run_id(), beads={b.id: b for b in self._plan})
        self.events = EventChannel(config.execution.event_buffer)

        self._gate = asyncio.Event()
        self._gate.set()
        self._paused = False
        self._cancelled = False
        self._stopped = False
        self._skip_requests: set[str] = set()
        self._handles: dict[str, AgentHandle] = {}
        self._slots = asyncio.Semaphore(max(1, config.execution.max_parallel))
        self._git_lock = asyncio.Lock()
        self.breaker = CircuitBreaker(config.execution.circuit_breaker_threshold)

    # ── Controls ──────────────────────────────────────────────────────

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def stopped(self) -> bool:
        return self._stopped

    def pause(self) -> None:
        """Stop dispatching new beads; running beads finish."""
        if self._cancelled or self._stopped:
            return
        self._paused = True
        self._gate.clear()
        log.info("Execution paused")

    def resume(self) -> None:
        if self.breaker.tripped:
            self.breaker.reset()
        self._paused = False
        self._gate.set()
        log.info("Execution resumed")

    def skip(self, bead_id: str) -> bool:
        """Request that a not-yet-dispatched bead be skipped.

        Returns False for unknown, running or finished beads.
        """
        bead = self.state.beads.get(bead_id)
        if bead is None or bead.status not in (BeadStatus.PENDING, BeadStatus.BLOCKED):
            return False
        self._skip_requests.add(bead_id)
        log.info("[BEAD] Skip requested: %s", bead_id)
        return True

    def cancel(self) -> None:
        """Stop dispatching and kill running agents."""
        self._cancelled = True
        self._gate.set()
        for handle in list(self._handles.values()):
            handle.cancel()
        log.info("Execution cancelled")

    def stop(self) -> None:
        """Finish running beads, dispatch nothing more. Undispatched beads stay blocked."""
        if self._cancelled:
            return
        self._stopped = True
        self._paused = False
        self._gate.set()
        log.info("Execution stopping")

    def snapshot(self) -> dict[str, BeadStatus]:
        return {bead_id: bead.status for bead_id, bead in self.state.beads.items()}

    # ── Run ───────────────────────────────────────────────────────────

    async def run(self) -> RunResult:
        """Execute the plan. Schedule errors are raised before anything runs."""
        try:
            groups = compute_groups(self._plan)
            self._start(groups)

            for group in groups:
                if self._cancelled or self._stopped:
                    break
                if all(self.state.status(b).terminal for b in group.bead_ids):
                    continue
                self.state.current_group = group.index
                self._save()
                log.info(
                    "Group %d: %s%s",
                    group.index, ", ".join(group.bead_ids), " (parallel)" if group.parallel else "",
                )
                await self._run_group(group)

            return self._finish()
        except asyncio.CancelledError:
            self.cancel()
            raise
        finally:
            self.events.close()

    def _start(self, groups: list[ExecutionGroup]) -> None:
        self.state.groups = groups
        prepare_run_dir(self.run_dir)
        self._restore()

        for bead in self.state.beads.values():
            if bead.status == BeadStatus.PENDING:
                transition(self.state, bead.id, BeadStatus.BLOCKED)
        self._save()

        self.run_log.append(
            RUN_STARTED,
            run_id=self.state.run_id,
            beads=len(self.state.beads),
            groups=[list(g.bead_ids) for g in groups],
        )
        log.info("Run %s: %d beads in %d groups", self.state.run_id, len(self.state.beads), len(groups))

    def _restore(self) -> None:
        try:
            saved = self.store.load()
        except CheckpointError as e:
            log.warning("Ignoring unreadable checkpoint: %s", e)
            return
        if saved is None:
            return
        if saved.bead_ids() != list(self.state.beads):
            log.warning("Checkpoint %s is for a different plan; starting fresh", saved.run_id)
            return

        self.state.run_id = saved.run_id
        self.breaker.consecutive_failures = saved.consecutive_failures
        if self.breaker.tripped:
            # Re-running after a trip is the retry.
            self.breaker.reset()
        for saved_bead in saved.beads:
            status = saved_bead.status
            dependency_skip = status == BeadStatus.SKIPPED and saved_bead.id in saved.dependency_skipped
            if status in (BeadStatus.SUCCESS, BeadStatus.SKIPPED) and not dependency_skip:
                self.state.beads[saved_bead.id].status = status
            # Everything else is re-run.
        done = sum(1 for b in self.state.beads.values() if b.status.terminal)
        log.info("Resuming run %s at group %d (%d beads already done)", saved.run_id, saved.current_group, done)

    def _finish(self) -> RunResult:
        result = RunResult(
            run_id=self.state.run_id,
            statuses=self.snapshot(),
            results=dict(self.state.results),
            missing_commits=list(self.state.missing_commits),
            cancelled=self._cancelled,
            stopped=self._stopped,
        )
        self.run_log.append(
            RUN_COMPLETE,
            completed=len(result.completed),
            failed=len(result.failed),
            skipped=len(result.skipped),
            total=len(result.statuses),
            cancelled=result.cancelled or None,
            stopped=result.stopped or None,
        )

        if result.ok:
            try:
                self.store.clear()
            except CheckpointError as e:
                log.warning("Failed to clear checkpoint: %s", e)

        log.info(
            "Execution complete: %d completed, %d failed, %d skipped out of %d total",
            len(result.completed), len(result.failed), len(result.skipped), len(result.statuses),
        )
        return result

    async def _run_group(self, group: ExecutionGroup) -> None:
        await self._apply_skip_requests()
        handles: dict[str, AgentHandle] = {}
        drains = []

        for bead_id in group.bead_ids:
            if self.state.status(bead_id).terminal:
                continue

            await self._gate.wait()
            if self._cancelled or self._stopped:
                break
            await self._apply_skip_requests()
            if self.state.status(bead_id).terminal:
                continue

            bead = self.state.beads[bead_id]
            blocker = self._failed_dependency(bead)
            if blocker:
                await self._skip(bead, f"dependency {blocker} did not complete", dependency=True)
                continue

            await self._slots.acquire()
            if self._cancelled or self._stopped:
                self._slots.release()
                break

            handle = await self._dispatch(bead)
            if handle is None:
                self._slots.release()
                continue
            handles[bead_id] = handle
            drains.append(asyncio.create_task(self._drain(bead_id, handle)))

        if drains:
            await asyncio.gather(*drains)

        # Verify and commit in declared order, one at a time.
        for bead_id in group.bead_ids:
            if bead_id in handles:
                await self._finalize(self.state.beads[bead_id], handles[bead_id])

    def _failed_dependency(self, bead: Bead) -> str | None:
        unsatisfied = self.state.unsatisfied()
        for dep in bead.depends_on:
            if dep in unsatisfied:
                return dep
        return None

    async def _apply_skip_requests(self) -> None:
        for bead in self._plan:
            if bead.id not in self._skip_requests:
                continue
            self._skip_requests.discard(bead.id)
            if bead.status in (BeadStatus.PENDING, BeadStatus.BLOCKED):
                await self._skip(bead, "skipped by user")

    async def _dispatch(self, bead: Bead) -> AgentHandle | None:
        self._set_status(bead, BeadStatus.RUNNING)
        self.run_log.append(TASK_STARTED, bead=bead.id, title=bead.title)
        log.info("[BEAD] Started: %s - %s", bead.id, bead.title)

        completed_deps = [
            self.state.beads[d] for d in bead.depends_on
            if self.state.status(d) == BeadStatus.SUCCESS
        ]
        task_prompt = build_task_prompt(bead, completed_deps, build_pipeline(self.config, bead))
        options = SpawnOptions(bead_id=bead.id, buffer=self.config.execution.event_buffer)

        try:
            handle = self.spawn_fn(self.config, self.system_prompt, task_prompt, self.project_root, options)
        except (OSError, AgentError) as e:
            await self._fail(bead, f"failed to spawn agent: {e}")
            return None

        self._handles[bead.id] = handle
        if self._cancelled:
            handle.cancel()
        return handle

    async def _drain(self, bead_id: str, handle: AgentHandle) -> None:
        """Forward agent events; terminal events are replaced by the final verdict."""
        try:
            async for event in handle.events():
                apply_event(self.state, event)
                if event.terminal:
                    continue
                if not self.events.closed:
                    await self.events.send(event)
            await handle.wait()
        except asyncio.CancelledError:
            handle.cancel()
            raise
        finally:
            self._handles.pop(bead_id, None)
            self._slots.release()

    async def _finalize(self, bead: Bead, handle: AgentHandle) -> None:
        output = handle.result
        if output is None:
            await self._fail(bead, handle.error or "agent failed")
            return
        if self._cancelled:
            await self._fail(bead, f"{CANCELLED} before verification", agent_output=output.result)
            return

        try:
            verify = await self.verify_fn(self.config, bead, self.project_root)
        except Exception as e:
            await self._fail(bead, f"verification error: {type(e).__name__}: {e}", agent_output=output.result)
            return

        if not verify.passed:
            self.run_log.append(VERIFY_FAILED, bead=bead.id, step=verify.failed_step)
            await self._fail(
                bead,
                f"verification failed at: {verify.failed_step}\n{verify.output}".rstrip(),
                agent_output=output.result,
                verify_output=verify.all_output,
            )
            return
        self.run_log.append(VERIFY_PASSED, bead=bead.id)

        commit = None
        if self.config.execution.auto_commit:
            commit = await self._commit(bead)

        self.breaker.record_success()
        self._set_status(bead, BeadStatus.SUCCESS)
        self.state.results[bead.id] = BeadResult(
            bead_id=bead.id,
            status=BeadStatus.SUCCESS,
            agent_output=output.result,
            verify_output=verify.all_output,
            commit=commit,
            cost_usd=output.cost_usd,
            tokens=self.state.tokens.get(bead.id, 0),
        )
        self.run_log.append(
            TASK_COMPLETED, bead=bead.id, commit=commit,
            cost_usd=output.cost_usd, duration_ms=output.duration_ms,
        )
        log.info("[BEAD] Completed: %s - %s", bead.id, bead.title)
        await self.events.send(StreamEvent(
            type=EventType.BEAD_COMPLETE,
            bead_id=bead.id,
            content=output.result,
            tokens=self.state.tokens.get(bead.id, 0),
            status=BeadStatus.SUCCESS,
        ))

    async def _commit(self, bead: Bead) -> str | None:
        loop = asyncio.get_running_loop()
        async with self._git_lock:
            try:
                return await loop.run_in_executor(
                    None, self.commit_fn, self.project_root, bead.id, bead.title
                )
            except GitError as e:
                log.warning("[BEAD] Commit failed for %s: %s", bead.id, e)
                self.state.missing_commits.append(bead.id)
                self.run_log.append(COMMIT_MISSING, bead=bead.id, error=str(e))
                return None

    # ── Transitions ───────────────────────────────────────────────────

    def _set_status(self, bead: Bead, status: BeadStatus) -> None:
        transition(self.state, bead.id, status)
        self._save()

    def _save(self) -> None:
        try:
            checkpoint = self.state.to_checkpoint()
            checkpoint.consecutive_failures = self.breaker.consecutive_failures
            self.store.save(checkpoint)
        except CheckpointError as e:
            log.warning("Failed to save checkpoint: %s", e)

    async def _fail(self, bead: Bead, error: str, agent_output: str = "", verify_output: str = "") -> None:
        self.state.last_error = error
        if not self._cancelled:
            self.breaker.record_failure()
        self._set_status(bead, BeadStatus.FAILED)
        self.state.results[bead.id] = BeadResult(
            bead_id=bead.id,
            status=BeadStatus.FAILED,
            agent_output=agent_output,
            verify_output=verify_output,
            tokens=self.state.tokens.get(bead.id, 0),
            error=error,
        )
        self.run_log.append(TASK_FAILED, bead=bead.id, error=error)
        log.error("[BEAD] Failed: %s - %s: %s", bead.id, bead.title, error.splitlines()[0] if error else "")
        await self.events.send(StreamEvent(
            type=EventType.ERROR,
            bead_id=bead.id,
            content=error,
            tokens=self.state.tokens.get(bead.id, 0),
        ))
        if self.breaker.tripped:
            self._trip_breaker()

    def _trip_breaker(self) -> None:
        if self._paused or self._stopped or self._cancelled:
            return
        failures = self.breaker.consecutive_failures
        log.warning("Circuit breaker tripped after %d consecutive failures", failures)
        self.run_log.append(CIRCUIT_BREAKER, consecutive_failures=failures)
        if self.on_breaker is not None:
            self.on_breaker(self)
        else:
            self.pause()

    async def _skip(self, bead: Bead, reason: str, dependency: bool = False) -> None:
        if dependency:
            self.state.dependency_skipped.add(bead.id)
        self._set_status(bead, BeadStatus.SKIPPED)
        self.state.results[bead.id] = BeadResult(bead_id=bead.id, status=BeadStatus.SKIPPED, error=reason)
        self.run_log.append(TASK_SKIPPED, bead=bead.id, reason=reason)
        log.info("[BEAD] Skipped: %s - %s: %s", bead.id, bead.title, reason)
        await self.events.send(StreamEvent(
            type=EventType.BEAD_COMPLETE,
            bead_id=bead.id,
            content=reason,
            status=BeadStatus.SKIPPED,
        ))
