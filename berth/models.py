from dataclasses import dataclass, field
from enum import Enum


class BeadStatus(str, Enum):
    PENDING = "pending"
    BLOCKED = "blocked"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (BeadStatus.SUCCESS, BeadStatus.FAILED, BeadStatus.SKIPPED)


@dataclass
class Bead:
    id: str
    title: str
    description: str = ""
    files: list[str] = field(default_factory=list)
    depends_on: list[str] = field(default_factory=list)
    verify_extra: list[str] = field(default_factory=list)
    status: BeadStatus = BeadStatus.PENDING

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "files": list(self.files),
            "depends_on": list(self.depends_on),
            "verify_extra": list(self.verify_extra),
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Bead":
        return cls(
            id=str(data["id"]),
            title=str(data.get("title", "")),
            description=str(data.get("description") or ""),
            files=[str(f) for f in data.get("files") or []],
            depends_on=[str(d) for d in data.get("depends_on") or []],
            verify_extra=[str(c) for c in data.get("verify_extra") or []],
            status=BeadStatus(data.get("status", BeadStatus.PENDING.value)),
        )
