"""
JsonlEventLogger — append-only JSON-lines store for processed events.

One record per line (EventRecord.to_dict()). The file rotates to
events.jsonl.1 once it passes max_bytes; only one previous generation
is kept.
"""

import json
import threading
from pathlib import Path

from .config import log, EVENT_LOG_FILE
from .constants import EVENT_LOG_MAX_BYTES


class JsonlEventLogger:
    def __init__(self, path=EVENT_LOG_FILE, max_bytes=EVENT_LOG_MAX_BYTES):
        self.path = Path(path)
        self.max_bytes = max_bytes
        self._lock = threading.Lock()

    @property
    def rotated_path(self):
        return self.path.with_name(self.path.name + ".1")

    def __call__(self, record):
        self.log_event(record)

    def log_event(self, record):
        """Append one record. OSError propagates so the aggregator can report it."""
        line = json.dumps(record.to_dict(), ensure_ascii=False)
        with self._lock:
            self._rotate_if_needed()
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")

    def _rotate_if_needed(self):
        try:
            if not self.path.exists() or self.path.stat().st_size < self.max_bytes:
                return
        except OSError:
            return
        self.path.replace(self.rotated_path)
        log.info("Rotated event log to %s", self.rotated_path.name)

    def read_recent(self, limit=100):
        """Last `limit` records from the current file, oldest first. Corrupt lines are skipped."""
        with self._lock:
            if not self.path.exists():
                return []
            lines = self.path.read_text(encoding="utf-8").splitlines()
        out = []
        for line in lines[-limit:] if limit else lines:
            if not line.strip():
                continue
            try:
                out.append(json.loads(line))
            except json.JSONDecodeError:
                log.warning("Skipping corrupt event log line")
        return out
