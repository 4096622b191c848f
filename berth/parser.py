import json
from pathlib import Path

import yaml

from .errors import PlanError
from .models import Bead


def parse_bead(entry: dict, position: int) -> Bead:
    if not isinstance(entry, dict):
        raise PlanError(f"Bead #{position} is not a mapping")
    if not entry.get("id"):
        raise PlanError(f"Bead #{position} has no id")

    return Bead(
        id=str(entry["id"]).strip(),
        title=str(entry.get("title") or entry["id"]).strip(),
        description=str(entry.get("description") or "").strip(),
        files=extract_list(entry, "files"),
        depends_on=extract_list(entry, "depends_on"),
        verify_extra=extract_list(entry, "verify_extra"),
    )


def extract_list(entry: dict, key: str) -> list[str]:
    """Accept either a YAML list or a comma separated string."""
    value = entry.get(key)
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, list):
        return [str(item).strip() for item in value if str(item).strip()]
    raise PlanError(f"Bead {entry.get('id')}: '{key}' must be a list or string")


def parse_beads(data) -> list[Bead]:
    if isinstance(data, dict):
        data = data.get("beads")
    if not isinstance(data, list):
        raise PlanError("Plan must be a list of beads or a mapping with a 'beads' list")
    return [parse_bead(entry, i) for i, entry in enumerate(data, start=1)]


def load_beads(path: str) -> list[Bead]:
    """Load an approved bead list from a YAML or JSON file, keeping plan order."""
    plan_file = Path(path)
    try:
        content = plan_file.read_text()
    except OSError as e:
        raise PlanError(f"Cannot read plan file {plan_file}: {e}") from e

    try:
        if plan_file.suffix.lower() == ".json":
            data = json.loads(content)
        else:
            data = yaml.safe_load(content)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise PlanError(f"Cannot parse plan file {plan_file}: {e}") from e

    return parse_beads(data)
