"""Resumable execution checkpoint and the stores that persist it."""

import json
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from .errors import CheckpointError
from .models import Bead
from .scheduler import ExecutionGroup

CHECKPOINT_FILE = "checkpoint.json"


@dataclass
class ExecutionState:
    run_id: str
    beads: list[Bead]
    groups: list[ExecutionGroup]
    current_group: int = 0
    dependency_skipped: list[str] = field(default_factory=list)  # skipped because a dependency failed
    consecutive_failures: int = 0
    last_error: str = ""
    timestamp: str = ""

    def bead_ids(self) -> list[str]:
        return [b.id for b in self.beads]

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "beads": [b.to_dict() for b in self.beads],
            "groups": [g.to_dict() for g in self.groups],
            "current_group": self.current_group,
            "dependency_skipped": list(self.dependency_skipped),
            "consecutive_failures": self.consecutive_failures,
            "last_error": self.last_error,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ExecutionState":
        return cls(
            run_id=data.get("run_id", ""),
            beads=[Bead.from_dict(b) for b in data.get("beads", [])],
            groups=[
                ExecutionGroup(index=g["index"], bead_ids=tuple(g["bead_ids"]))
                for g in data.get("groups", [])
            ],
            current_group=int(data.get("current_group", 0)),
            dependency_skipped=list(data.get("dependency_skipped", [])),
            consecutive_failures=int(data.get("consecutive_failures", 0)),
            last_error=data.get("last_error", ""),
            timestamp=data.get("timestamp", ""),
        )


class CheckpointStore(Protocol):
    def save(self, state: ExecutionState) -> None: ...

    def load(self) -> ExecutionState | None: ...

    def clear(self) -> None: ...


class FileCheckpointStore:
    """Stores the checkpoint as <run_dir>/checkpoint.json."""

    def __init__(self, run_dir: str):
        self.path = Path(run_dir) / CHECKPOINT_FILE

    def save(self, state: ExecutionState) -> None:
        state.timestamp = datetime.now(timezone.utc).isoformat()
        tmp = self.path.with_suffix(".json.tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(state.to_dict(), indent=2))
            os.replace(tmp, self.path)
        except OSError as e:
            raise CheckpointError(f"writing checkpoint {self.path}: {e}") from e

    def load(self) -> ExecutionState | None:
        """Returns None if no checkpoint exists."""
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text())
            return ExecutionState.from_dict(data)
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise CheckpointError(f"reading checkpoint {self.path}: {e}") from e

    def clear(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            raise CheckpointError(f"removing checkpoint {self.path}: {e}") from e


class MemoryCheckpointStore:
    """In-process store; keeps a serialized copy so later mutation cannot leak in."""

    def __init__(self):
        self._data: dict | None = None
        self.saves = 0

    def save(self, state: ExecutionState) -> None:
        state.timestamp = datetime.now(timezone.utc).isoformat()
        self._data = json.loads(json.dumps(state.to_dict()))
        self.saves += 1

    def load(self) -> ExecutionState | None:
        if self._data is None:
            return None
        return ExecutionState.from_dict(self._data)

    def clear(self) -> None:
        self._data = None
