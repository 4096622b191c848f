"""Agent process spawner - one external coding-agent subprocess per bead."""

import asyncio
import json
import logging
import os
import signal
from collections import deque
from dataclasses import dataclass, field
from typing import AsyncIterator

from .config import Config
from .errors import AgentError
from .events import EventType, StreamEvent

log = logging.getLogger(__name__)

DEFAULT_ALLOWED_TOOLS = "Read,Write,Edit,Bash,Grep,Glob"
STREAM_LIMIT = 16 * 1024 * 1024  # stream-json lines carry whole tool results
STDERR_TAIL = 20

_DONE = object()


@dataclass
class ClaudeOutput:
    result: str = ""
    cost_usd: float = 0.0
    duration_ms: int = 0
    session_id: str = ""
    is_error: bool = False
    num_turns: int = 0


@dataclass
class SpawnOptions:
    bead_id: str
    timeout: int | None = None  # seconds; falls back to execution.timeout_per_bead
    allowed_tools: str = DEFAULT_ALLOWED_TOOLS
    extra_args: list[str] = field(default_factory=list)
    buffer: int = 256


def parse_claude_output(raw) -> ClaudeOutput:
    """Parse the final `result` envelope printed by the agent CLI.

    Args:
        raw: The envelope as a JSON string/bytes or an already decoded dict.

    Raises:
        AgentError: The envelope is empty, not JSON, or not a result.
    """
    if isinstance(raw, (str, bytes)):
        if not raw.strip():
            raise AgentError("empty agent output")
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise AgentError(f"parsing agent output: {e}") from e

    if not isinstance(raw, dict):
        raise AgentError("agent output is not a JSON object")
    if raw.get("type") != "result":
        raise AgentError(f'unexpected agent output type: {raw.get("type")!r} (expected "result")')

    cost = raw.get("total_cost_usd") or raw.get("cost_usd") or 0.0
    try:
        return ClaudeOutput(
            result=str(raw.get("result") or ""),
            cost_usd=float(cost),
            duration_ms=int(raw.get("duration_ms") or 0),
            session_id=str(raw.get("session_id") or ""),
            is_error=bool(raw.get("is_error", False)),
            num_turns=int(raw.get("num_turns") or 0),
        )
    except (TypeError, ValueError) as e:
        raise AgentError(f"malformed result envelope: {e}") from e


def _token_count(usage) -> int:
    """input + output tokens from a usage block; malformed values count as 0."""
    if not isinstance(usage, dict):
        return 0
    total = 0
    for key in ("input_tokens", "output_tokens"):
        try:
            total += int(usage.get(key) or 0)
        except (TypeError, ValueError):
            continue
    return total


def build_claude_args(
    config: Config,
    system_prompt: str,
    task_prompt: str,
    options: SpawnOptions,
) -> list[str]:
    args = [
        *config.execution.claude_command,
        "-p", task_prompt,
        "--append-system-prompt", system_prompt,
        "--allowedTools", options.allowed_tools,
        "--output-format", "stream-json",
        "--verbose",
        "--dangerously-skip-permissions",
        "--model", config.model,
    ]
    args.extend(options.extra_args)
    return args


class AgentHandle:
    """A running agent subprocess for one bead.

    Events are produced as output arrives and always end with exactly one
    bead_complete or error event. The owner must drain events(); the
    internal queue is bounded, so an undrained handle stalls its reader.
    """

    def __init__(self, bead_id: str, args: list[str], cwd: str, timeout: float, buffer: int = 256):
        self.bead_id = bead_id
        self.args = args
        self.cwd = cwd
        self.timeout = timeout
        self.result: ClaudeOutput | None = None
        self.error: str | None = None
        self.tokens = 0

        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max(1, buffer))
        self._proc: asyncio.subprocess.Process | None = None
        self._task: asyncio.Task | None = None
        self._cancelled = False
        self._finished = False  # terminal event emitted
        self._envelope: dict | None = None
        self._stderr_tail: deque[str] = deque(maxlen=STDERR_TAIL)

    def start(self) -> "AgentHandle":
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=f"agent-{self.bead_id}")
        return self

    def cancel(self) -> None:
        """Kill the subprocess; the handle then finishes with an error event."""
        self._cancelled = True
        self._kill()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def events(self) -> AsyncIterator[StreamEvent]:
        while True:
            item = await self._queue.get()
            if item is _DONE:
                return
            yield item

    async def wait(self) -> ClaudeOutput | None:
        if self._task is not None:
            await self._task
        return self.result

    async def _emit(self, type_: EventType, **kwargs) -> None:
        await self._queue.put(StreamEvent(type=type_, bead_id=self.bead_id, **kwargs))

    def _kill(self) -> None:
        proc = self._proc
        if proc is None or proc.returncode is not None:
            return
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        except PermissionError:
            proc.kill()

    async def _run(self) -> None:
        try:
            await self._execute()
        except Exception as e:
            log.exception("[BEAD] Agent handler crashed for %s", self.bead_id)
            self._kill()
            if not self._finished:
                await self._fail(f"agent handler error: {type(e).__name__}: {e}")
        finally:
            await self._queue.put(_DONE)

    async def _execute(self) -> None:
        if self._cancelled:
            await self._fail("agent cancelled before start")
            return

        try:
            self._proc = await asyncio.create_subprocess_exec(
                *self.args,
                cwd=self.cwd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LIMIT,
                start_new_session=True,
            )
        except OSError as e:
            await self._fail(f"failed to start agent {self.args[0]!r}: {e}")
            return

        log.info("[BEAD] Agent started for %s (pid %d)", self.bead_id, self._proc.pid)
        await self._emit(EventType.BEAD_INIT, content=f"agent pid {self._proc.pid}")

        if self._cancelled:
            self._kill()

        try:
            await asyncio.wait_for(
                asyncio.gather(
                    self._read_stdout(self._proc.stdout),
                    self._read_stderr(self._proc.stderr),
                    self._proc.wait(),
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            self._kill()
            await self._proc.wait()
            await self._fail(f"agent timed out after {self.timeout:g}s")
            return

        await self._finish(self._proc.returncode)

    async def _finish(self, returncode: int) -> None:
        if self._cancelled:
            await self._fail("agent cancelled")
            return
        if returncode != 0:
            detail = "\n".join(self._stderr_tail)
            message = f"agent exited with code {returncode}"
            await self._fail(f"{message}\nstderr: {detail}" if detail else message)
            return
        if self._envelope is None:
            await self._fail("agent produced no result envelope")
            return

        try:
            output = parse_claude_output(self._envelope)
        except AgentError as e:
            await self._fail(str(e))
            return

        if output.is_error:
            await self._fail(f"agent reported an error: {output.result}")
            return

        self.result = output
        log.info(
            "[BEAD] Agent finished %s (%d turns, $%.4f)",
            self.bead_id, output.num_turns, output.cost_usd,
        )
        self._finished = True
        await self._emit(EventType.BEAD_COMPLETE, content=output.result, tokens=self.tokens)

    async def _fail(self, message: str) -> None:
        self._finished = True
        self.error = message
        log.warning("[BEAD] Agent failed for %s: %s", self.bead_id, message)
        await self._emit(EventType.ERROR, content=message, tokens=self.tokens)

    async def _read_stdout(self, stream: asyncio.StreamReader) -> None:
        async for raw in stream:
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            if line.strip():
                await self._handle_stdout_line(line)

    async def _read_stderr(self, stream: asyncio.StreamReader) -> None:
        async for raw in stream:
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            if not line:
                continue
            self._stderr_tail.append(line)
            await self._emit(EventType.OUTPUT, content=line, is_stderr=True)

    async def _handle_stdout_line(self, line: str) -> None:
        try:
            message = json.loads(line)
        except json.JSONDecodeError:
            await self._emit(EventType.OUTPUT, content=line)
            return

        if not isinstance(message, dict):
            await self._emit(EventType.OUTPUT, content=line)
            return

        kind = message.get("type")
        if kind == "result":
            self._envelope = message
            return
        if kind != "assistant":
            return

        body = message.get("message")
        if not isinstance(body, dict):
            await self._emit(EventType.OUTPUT, content=line)
            return

        content = body.get("content")
        if isinstance(content, str):
            content = [{"type": "text", "text": content}]
        elif not isinstance(content, list):
            content = []
        for block in content:
            if not isinstance(block, dict):
                if isinstance(block, str) and block:
                    await self._emit(EventType.OUTPUT, content=block)
                continue
            if block.get("type") == "text" and block.get("text"):
                await self._emit(EventType.OUTPUT, content=str(block["text"]))
            elif block.get("type") == "tool_use":
                await self._emit(EventType.OUTPUT, content=f"-> {block.get('name', 'tool')}")

        used = _token_count(body.get("usage"))
        if used:
            self.tokens += used
            await self._emit(EventType.TOKEN_UPDATE, tokens=self.tokens)


def spawn_claude(
    config: Config,
    system_prompt: str,
    task_prompt: str,
    project_root: str,
    options: SpawnOptions,
) -> AgentHandle:
    """Launch the agent for one bead and return its running handle.

    Must be called from inside a running event loop.
    """
    timeout = options.timeout or config.execution.timeout_per_bead
    if timeout <= 0:
        timeout = 600
    args = build_claude_args(config, system_prompt, task_prompt, options)
    handle = AgentHandle(options.bead_id, args, project_root, timeout, buffer=options.buffer)
    return handle.start()
