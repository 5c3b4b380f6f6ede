"""
Persistent dedup state for processed ready markers.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional

STATE_VERSION = 1


class DedupStore:
    """Map of marker path to the last committed change token.

    Mutators are guarded by a single lock so parallel delivery tasks can
    commit tokens. ``save`` is expected to run once, after all tasks finish.
    """

    def __init__(self, path: Optional[Path], logger: Optional[logging.Logger] = None) -> None:
        self.path = Path(path) if path else None
        self.logger = logger or logging.getLogger("ready_sync.state")
        self.files: dict[str, int] = {}
        self.last_run: Optional[datetime] = None
        self._dirty = False
        self._lock = threading.Lock()

    @property
    def dirty(self) -> bool:
        with self._lock:
            return self._dirty

    def load(self) -> None:
        """Read the state file; missing or unrecognised content leaves the store empty."""
        if self.path is None:
            return
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            return
        try:
            data = json.loads(raw.decode("utf-8"))
        except ValueError:
            self.logger.warning("Ignoring unparseable state file: %s", self.path)
            return
        if not isinstance(data, dict) or data.get("version") != STATE_VERSION:
            self.logger.warning("Ignoring state file with unknown version: %s", self.path)
            return
        files = data.get("files")
        if not isinstance(files, dict):
            return
        tokens = {
            str(key): value
            for key, value in files.items()
            if isinstance(value, int) and not isinstance(value, bool)
        }
        with self._lock:
            self.files.update(tokens)
            self.last_run = _parse_timestamp(data.get("last_run"))

    def get(self, key: str) -> Optional[int]:
        """Return the stored token for a marker path, or None."""
        with self._lock:
            return self.files.get(key)

    def set(self, key: str, token: int) -> None:
        """Store a token, marking the store dirty only when it changed."""
        with self._lock:
            if self.files.get(key) != token:
                self.files[key] = token
                self._dirty = True

    def set_last_run(self, timestamp: datetime) -> None:
        with self._lock:
            self.last_run = timestamp
            self._dirty = True

    def save(self) -> None:
        """Write the state atomically via a temporary file and rename."""
        if self.path is None:
            return
        with self._lock:
            if not self._dirty:
                return
            payload = {
                "version": STATE_VERSION,
                "last_run": self.last_run.isoformat() if self.last_run else None,
                "files": dict(self.files),
            }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.write_text(json.dumps(payload), encoding="utf-8")
        os.replace(tmp_path, self.path)
        with self._lock:
            self._dirty = False


def _parse_timestamp(value: object) -> Optional[datetime]:
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None
