from pathlib import Path
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from .models import BeadStatus

if TYPE_CHECKING:
    from .orchestrator import RunResult

ICONS = {
    BeadStatus.SUCCESS: "✅",
    BeadStatus.FAILED: "❌",
    BeadStatus.SKIPPED: "⏭",
}


def update_execution_status(run_dir: str, result: "RunResult") -> Path:
    """Write execution-status.md for the finished (or cancelled) run."""
    status_file = Path(run_dir) / "execution-status.md"

    total = len(result.statuses)
    completed = len(result.completed)
    failed = len(result.failed)
    skipped = len(result.skipped)
    unfinished = total - completed - failed - skipped

    content = f"""---
run_id: {result.run_id}
updated: {datetime.now(timezone.utc).isoformat()}
total_beads: {total}
completed: {completed}
failed: {failed}
skipped: {skipped}
unfinished: {unfinished}
cancelled: {str(result.cancelled).lower()}
stopped: {str(result.stopped).lower()}
---

# Execution Status

## Summary
- **Completed**: {completed}/{total}
- **Failed**: {failed}
- **Skipped**: {skipped}
- **Not run**: {unfinished}

## Bead Results

"""

    for bead_id, status in result.statuses.items():
        icon = ICONS.get(status, "⏸")
        content += f"### {bead_id} {icon} {status.value}\n"
        bead_result = result.results.get(bead_id)
        if bead_result:
            if bead_result.commit:
                content += f"Commit: {bead_result.commit}\n"
            if bead_result.cost_usd:
                content += f"Cost: ${bead_result.cost_usd:.4f}\n"
            if bead_result.error:
                content += f"Error: {bead_result.error.splitlines()[0]}\n"
        if bead_id in result.missing_commits:
            content += "Warning: verified but not committed\n"
        content += "\n"

    status_file.parent.mkdir(parents=True, exist_ok=True)
    status_file.write_text(content)
    return status_file
