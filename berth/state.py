"""Run state owned by the orchestrator, and the functions allowed to change it."""

from dataclasses import dataclass, field

from .checkpoint import ExecutionState
from .events import EventType, StreamEvent
from .models import Bead, BeadStatus
from .scheduler import ExecutionGroup

ALLOWED_TRANSITIONS = {
    BeadStatus.PENDING: {BeadStatus.BLOCKED, BeadStatus.SKIPPED},
    BeadStatus.BLOCKED: {BeadStatus.RUNNING, BeadStatus.SKIPPED},
    BeadStatus.RUNNING: {BeadStatus.SUCCESS, BeadStatus.FAILED},
    BeadStatus.SUCCESS: set(),
    BeadStatus.FAILED: set(),
    BeadStatus.SKIPPED: set(),
}


@dataclass
class BeadResult:
    bead_id: str
    status: BeadStatus
    agent_output: str = ""
    verify_output: str = ""
    commit: str | None = None
    cost_usd: float = 0.0
    tokens: int = 0
    error: str = ""


@dataclass
class RunState:
    run_id: str
    beads: dict[str, Bead]  # plan order
    groups: list[ExecutionGroup] = field(default_factory=list)
    current_group: int = 0
    dependency_skipped: set[str] = field(default_factory=set)
    tokens: dict[str, int] = field(default_factory=dict)
    last_output: dict[str, str] = field(default_factory=dict)
    results: dict[str, BeadResult] = field(default_factory=dict)
    missing_commits: list[str] = field(default_factory=list)
    last_error: str = ""

    def status(self, bead_id: str) -> BeadStatus:
        return self.beads[bead_id].status

    def unsatisfied(self) -> set[str]:
        """Beads whose dependents must not run."""
        failed = {b.id for b in self.beads.values() if b.status == BeadStatus.FAILED}
        return failed | self.dependency_skipped

    def to_checkpoint(self) -> ExecutionState:
        return ExecutionState(
            run_id=self.run_id,
            beads=[Bead.from_dict(b.to_dict()) for b in self.beads.values()],
            groups=list(self.groups),
            current_group=self.current_group,
            dependency_skipped=sorted(self.dependency_skipped),
            last_error=self.last_error,
        )


def transition(state: RunState, bead_id: str, status: BeadStatus) -> None:
    bead = state.beads[bead_id]
    if status not in ALLOWED_TRANSITIONS[bead.status]:
        raise ValueError(f"bead {bead_id}: illegal transition {bead.status.value} -> {status.value}")
    bead.status = status


def _reduce_init(state: RunState, event: StreamEvent) -> None:
    state.tokens.setdefault(event.bead_id, 0)


def _reduce_output(state: RunState, event: StreamEvent) -> None:
    if event.content:
        state.last_output[event.bead_id] = event.content


def _reduce_tokens(state: RunState, event: StreamEvent) -> None:
    state.tokens[event.bead_id] = max(event.tokens, state.tokens.get(event.bead_id, 0))


def _reduce_terminal(state: RunState, event: StreamEvent) -> None:
    _reduce_tokens(state, event)
    if event.type == EventType.ERROR and event.content:
        state.last_error = event.content


_REDUCERS = {
    EventType.BEAD_INIT: _reduce_init,
    EventType.OUTPUT: _reduce_output,
    EventType.TOKEN_UPDATE: _reduce_tokens,
    EventType.BEAD_COMPLETE: _reduce_terminal,
    EventType.ERROR: _reduce_terminal,
}


def apply_event(state: RunState, event: StreamEvent) -> None:
    """Fold one agent event into the run state. Never changes bead status."""
    _REDUCERS[event.type](state, event)
