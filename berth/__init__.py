"""Berth - bead execution engine: schedule, run, verify and commit agent work."""

from .models import Bead, BeadStatus
from .parser import load_beads
from .scheduler import compute_groups, dependents_of, ExecutionGroup
from .errors import BerthError, CycleError, UnknownDependencyError, DuplicateBeadError
from .events import EventChannel, EventType, StreamEvent
from .spawner import spawn_claude, AgentHandle, ClaudeOutput, SpawnOptions
from .verify import run_verification, VerifyResult
from .git import commit_bead, commit_files, has_changes
from .breaker import CircuitBreaker
from .checkpoint import ExecutionState, FileCheckpointStore, MemoryCheckpointStore
from .orchestrator import Orchestrator, RunResult
from .executor import execute_plan, dry_run
from .config import Config, load_config

__all__ = [
    "Bead",
    "BeadStatus",
    "load_beads",
    "compute_groups",
    "dependents_of",
    "ExecutionGroup",
    "BerthError",
    "CycleError",
    "UnknownDependencyError",
    "DuplicateBeadError",
    "EventChannel",
    "EventType",
    "StreamEvent",
    "spawn_claude",
    "AgentHandle",
    "ClaudeOutput",
    "SpawnOptions",
    "run_verification",
    "VerifyResult",
    "commit_bead",
    "commit_files",
    "has_changes",
    "CircuitBreaker",
    "ExecutionState",
    "FileCheckpointStore",
    "MemoryCheckpointStore",
    "Orchestrator",
    "RunResult",
    "execute_plan",
    "dry_run",
    "Config",
    "load_config",
]
