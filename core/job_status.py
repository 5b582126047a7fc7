# job_status.py
"""
Per-session "is a cycle running?" flag.

This is the only guard between overlapping scheduler ticks, so `acquire` must
be an atomic compare-and-set. The file-backed store keeps the flag on disk so
a restarted process sees a cycle that was still marked running (and the stall
watchdog can clear it).
"""

import json
import logging
import os
import threading
import time
from typing import Callable, Dict, Optional

PENDING = "pending"
RUNNING = "running"
STALLED = "stalled"


class JobStatusStore:
    def status(self, session_id: str) -> Optional[str]:
        raise NotImplementedError

    def set_status(self, session_id: str, status: str) -> None:
        raise NotImplementedError

    def acquire(self, session_id: str) -> bool:
        """Flip the session to `running` unless it already is. True when this caller won."""
        raise NotImplementedError

    def running_since(self, session_id: str) -> Optional[float]:
        """When the current `running` flag was set, or None if not running."""
        raise NotImplementedError

    def is_running(self, session_id: str) -> bool:
        return self.status(session_id) == RUNNING


class InMemoryJobStatusStore(JobStatusStore):
    def __init__(self, clock: Callable[[], float] = time.time):
        self._lock = threading.Lock()
        self._entries: Dict[str, Dict[str, object]] = {}
        self.clock = clock

    def status(self, session_id):
        with self._lock:
            entry = self._entries.get(session_id)
            return entry["status"] if entry else None

    def set_status(self, session_id, status):
        with self._lock:
            self._entries[session_id] = {"status": status, "updated_at": self.clock()}

    def acquire(self, session_id):
        with self._lock:
            entry = self._entries.get(session_id)
            if entry and entry["status"] == RUNNING:
                return False
            self._entries[session_id] = {"status": RUNNING, "updated_at": self.clock()}
            return True

    def running_since(self, session_id):
        with self._lock:
            entry = self._entries.get(session_id)
            if entry and entry["status"] == RUNNING:
                return float(entry["updated_at"])
        return None


class FileJobStatusStore(JobStatusStore):
    """JSON file of {session_id: {"status": ..., "updated_at": ...}}, rewritten atomically."""

    def __init__(self, path: str = "job_status.json", clock: Callable[[], float] = time.time):
        self.logger = logging.getLogger(__name__)
        self.path = path
        self.clock = clock
        self._lock = threading.Lock()
        directory = os.path.dirname(os.path.abspath(path))
        os.makedirs(directory, exist_ok=True)

    def _load(self) -> Dict[str, Dict[str, object]]:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "r") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                self.logger.error(f"Job status file {self.path} is corrupt, starting empty: {e}")
                return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: Dict[str, Dict[str, object]]) -> None:
        tmp = f"{self.path}.tmp"
        with open(tmp, "w") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp, self.path)

    def status(self, session_id):
        with self._lock:
            entry = self._load().get(session_id)
        return entry.get("status") if entry else None

    def set_status(self, session_id, status):
        with self._lock:
            data = self._load()
            data[session_id] = {"status": status, "updated_at": self.clock()}
            self._save(data)

    def acquire(self, session_id):
        with self._lock:
            data = self._load()
            entry = data.get(session_id)
            if entry and entry.get("status") == RUNNING:
                return False
            data[session_id] = {"status": RUNNING, "updated_at": self.clock()}
            self._save(data)
            return True

    def running_since(self, session_id):
        with self._lock:
            entry = self._load().get(session_id)
        if entry and entry.get("status") == RUNNING:
            return float(entry.get("updated_at", 0.0))
        return None
