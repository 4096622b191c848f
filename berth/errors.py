"""Exception hierarchy for the bead execution engine."""


class BerthError(Exception):
    """Base class for all berth errors."""


class ConfigError(BerthError):
    """Raised when .berth/config.yaml is malformed."""


class PlanError(BerthError):
    """Raised when a bead list cannot be loaded."""


class ScheduleError(BerthError):
    """Raised when a bead set cannot be turned into execution groups."""


class CycleError(ScheduleError):
    def __init__(self, bead_ids: list[str]):
        self.bead_ids = list(bead_ids)
        super().__init__(
            f"Circular dependency detected involving beads: {', '.join(self.bead_ids)}"
        )


class UnknownDependencyError(ScheduleError):
    def __init__(self, bead_id: str, missing: list[str]):
        self.bead_id = bead_id
        self.missing = list(missing)
        super().__init__(
            f"Bead {bead_id} depends on unknown bead(s): {', '.join(self.missing)}"
        )


class DuplicateBeadError(ScheduleError):
    def __init__(self, bead_id: str):
        self.bead_id = bead_id
        super().__init__(f"Bead ID {bead_id} appears more than once in the plan")


class GitError(BerthError):
    """Raised when a git command fails."""


class CheckpointError(BerthError):
    """Raised when a checkpoint file cannot be read or written."""


class AgentError(BerthError):
    """Raised when the agent output envelope is missing or malformed."""
