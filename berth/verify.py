"""Verification gate: the command pipeline that decides whether a bead's change is accepted."""

import asyncio
import logging
import os
import signal
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import TypedDict

from langgraph.graph import StateGraph, END

from .config import Config
from .models import Bead

log = logging.getLogger(__name__)

NO_COMMANDS = "(no verification commands configured)"


@dataclass
class VerifyResult:
    passed: bool
    failed_step: str = ""
    output: str = ""  # output of the failed step, empty when passed
    all_output: str = ""
    missing_files: list[str] = field(default_factory=list)


class VerifyState(TypedDict):
    """State for the verification graph."""

    bead: Bead
    project_root: str
    pipeline: list[str]
    timeout: int
    step: int
    missing_files: list[str]
    outputs: list[str]
    failed_step: str
    failed_output: str


def build_pipeline(config: Config, bead: Bead) -> list[str]:
    """Default pipeline, then the bead's extras, then the security scan."""
    pipeline = list(config.verify_pipeline)
    pipeline.extend(bead.verify_extra)
    if config.verify.security:
        pipeline.append(config.verify.security)
    return pipeline


def _run_step(command: str, cwd: str, timeout: int) -> tuple[bool, str]:
    """Run one shell command with combined stdout/stderr."""
    try:
        proc = subprocess.Popen(
            command,
            shell=True,
            cwd=cwd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            encoding="utf-8",
            errors="replace",
            start_new_session=True,
        )
    except OSError as e:
        return False, f"Error starting command: {e}"

    with proc:
        try:
            output, _ = proc.communicate(timeout=timeout)
        except subprocess.TimeoutExpired:
            try:
                os.killpg(proc.pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
            output, _ = proc.communicate()
            return False, f"{output or ''}\n[timed out after {timeout}s]"

    return proc.returncode == 0, output or ""


async def check_files_exist(state: VerifyState) -> dict:
    """Note expected files that are absent. Advisory only."""
    root = Path(state["project_root"])
    missing = [f for f in state["bead"].files if not (root / f).exists()]
    if missing:
        log.info("Bead %s: expected files not present: %s", state["bead"].id, ", ".join(missing))
    return {"missing_files": missing}


async def run_step(state: VerifyState) -> dict:
    """Run the next pipeline command; record its output and any failure."""
    command = state["pipeline"][state["step"]]

    loop = asyncio.get_running_loop()
    ok, output = await loop.run_in_executor(
        None, _run_step, command, state["project_root"], state["timeout"]
    )

    update = {
        "step": state["step"] + 1,
        "outputs": state["outputs"] + [f"=== {command} ===\n{output}\n"],
    }
    if not ok:
        log.info("Bead %s: verification step failed: %s", state["bead"].id, command)
        update["failed_step"] = command
        update["failed_output"] = output
    return update


def next_step(state: VerifyState) -> str:
    if state["failed_step"] or state["step"] >= len(state["pipeline"]):
        return END
    return "run_step"


def create_verify_agent():
    """Create the verification graph."""
    builder = StateGraph(VerifyState)

    builder.add_node("check_files", check_files_exist)
    builder.add_node("run_step", run_step)

    builder.set_entry_point("check_files")
    builder.add_conditional_edges("check_files", next_step)
    builder.add_conditional_edges("run_step", next_step)

    return builder.compile()


async def run_verification(config: Config, bead: Bead, project_root: str) -> VerifyResult:
    """Run the verification pipeline for a bead, stopping at the first failure.

    Args:
        config: Supplies the default pipeline, security scan and step timeout.
        bead: Supplies verify_extra commands and the advisory file list.
        project_root: Working directory for every command.

    Returns:
        VerifyResult; passed is True only if every command exited 0.
    """
    pipeline = build_pipeline(config, bead)
    timeout = config.execution.verify_timeout if config.execution.verify_timeout > 0 else 300

    agent = create_verify_agent()
    initial_state: VerifyState = {
        "bead": bead,
        "project_root": project_root,
        "pipeline": pipeline,
        "timeout": timeout,
        "step": 0,
        "missing_files": [],
        "outputs": [],
        "failed_step": "",
        "failed_output": "",
    }

    result = await agent.ainvoke(initial_state, config={"recursion_limit": len(pipeline) + 5})

    if not pipeline:
        return VerifyResult(passed=True, all_output=NO_COMMANDS, missing_files=result["missing_files"])

    return VerifyResult(
        passed=not result["failed_step"],
        failed_step=result["failed_step"],
        output=result["failed_output"],
        all_output="".join(result["outputs"]),
        missing_files=result["missing_files"],
    )
