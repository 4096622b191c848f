from collections import defaultdict, deque
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .errors import CycleError, DuplicateBeadError, UnknownDependencyError

if TYPE_CHECKING:
    from .models import Bead


@dataclass(frozen=True)
class ExecutionGroup:
    index: int
    bead_ids: tuple[str, ...]  # plan order within the level

    @property
    def parallel(self) -> bool:
        return len(self.bead_ids) > 1

    def to_dict(self) -> dict:
        return {"index": self.index, "bead_ids": list(self.bead_ids), "parallel": self.parallel}


def validate_beads(beads: list["Bead"]) -> None:
    """Reject duplicate IDs and dependencies on beads outside the plan."""
    seen = set()
    for bead in beads:
        if bead.id in seen:
            raise DuplicateBeadError(bead.id)
        seen.add(bead.id)

    for bead in beads:
        missing = [dep for dep in bead.depends_on if dep not in seen]
        if missing:
            raise UnknownDependencyError(bead.id, missing)


def build_dependency_graph(beads: list["Bead"]) -> dict[str, list[str]]:
    """Build adjacency list: bead_id -> [beads that depend on it]"""
    graph = defaultdict(list)
    for bead in beads:
        for dep_id in dict.fromkeys(bead.depends_on):
            graph[dep_id].append(bead.id)
    return dict(graph)


def build_in_degree(beads: list["Bead"]) -> dict[str, int]:
    """Count distinct incoming edges for each bead."""
    return {bead.id: len(set(bead.depends_on)) for bead in beads}


def compute_groups(beads: list["Bead"]) -> list[ExecutionGroup]:
    """Level beads with Kahn's algorithm; each level becomes one execution group.

    A bead's level is 0 without dependencies, otherwise one more than its
    deepest dependency. Beads keep their plan order inside a level, so the
    same plan always yields the same schedule.

    Raises:
        DuplicateBeadError: two beads share an ID.
        UnknownDependencyError: a dependency names a bead outside the plan.
        CycleError: some beads can never be levelled.
    """
    if not beads:
        return []

    validate_beads(beads)

    position = {bead.id: i for i, bead in enumerate(beads)}
    graph = build_dependency_graph(beads)
    in_degree = build_in_degree(beads)

    queue = deque(bead.id for bead in beads if in_degree[bead.id] == 0)

    groups = []
    placed = 0

    while queue:
        current_level = sorted(queue, key=position.__getitem__)
        groups.append(ExecutionGroup(index=len(groups), bead_ids=tuple(current_level)))
        placed += len(current_level)

        next_queue = deque()
        for bead_id in current_level:
            for dependent in graph.get(bead_id, []):
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    next_queue.append(dependent)

        queue = next_queue

    if placed != len(beads):
        stuck = [bead.id for bead in beads if in_degree[bead.id] > 0]
        raise CycleError(stuck)

    return groups


def dependents_of(beads: list["Bead"], bead_id: str) -> list[str]:
    """All beads that depend on bead_id, directly or transitively, in plan order."""
    graph = build_dependency_graph(beads)
    found = set()
    stack = [bead_id]
    while stack:
        for dependent in graph.get(stack.pop(), []):
            if dependent not in found:
                found.add(dependent)
                stack.append(dependent)
    return [bead.id for bead in beads if bead.id in found]
