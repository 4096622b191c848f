"""Append-only JSONL log of run lifecycle events (<run_dir>/log.jsonl)."""

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path

log = logging.getLogger(__name__)

RUN_STARTED = "run_started"
TASK_STARTED = "task_started"
VERIFY_PASSED = "verify_passed"
VERIFY_FAILED = "verify_failed"
TASK_COMPLETED = "task_completed"
TASK_FAILED = "task_failed"
TASK_SKIPPED = "task_skipped"
COMMIT_MISSING = "commit_missing"
CIRCUIT_BREAKER = "circuit_breaker"
RUN_COMPLETE = "run_complete"


class RunLog:
    def __init__(self, run_dir: str):
        self.path = Path(run_dir) / "log.jsonl"
        self._lock = threading.Lock()

    def append(self, event: str, **fields) -> None:
        """Write one event line. Failures are logged, never raised."""
        record = {"time": datetime.now(timezone.utc).isoformat(), "event": event}
        record.update({k: v for k, v in fields.items() if v not in (None, "", [], {})})
        line = json.dumps(record, default=str)

        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
            except OSError as e:
                log.warning("Failed to write run log %s: %s", self.path, e)

    def read_all(self) -> list[dict]:
        """All events in order; malformed lines are skipped."""
        if not self.path.exists():
            return []
        events = []
        with open(self.path, encoding="utf-8") as f:
            for line_num, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(json.loads(line))
                except json.JSONDecodeError:
                    log.warning("Skipping malformed line %d in %s", line_num, self.path)
        return events
