"""
Data records produced by the ready-file scanner.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


@dataclass(frozen=True)
class FolderEntry:
    """Immediate child of a companion folder."""

    name: str
    size: int
    modified: datetime
    path: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "size": self.size,
            "modTime": self.modified.isoformat(),
            "path": self.path,
        }


@dataclass
class ReadyMatch:
    """A marker file paired with its same-named sibling folder."""

    ready_file: str
    folder: Optional[str] = None
    missing_folder: bool = False
    entries: list[FolderEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Return the report representation, omitting absent folder data."""
        data: dict[str, Any] = {"readyFile": self.ready_file}
        if self.folder:
            data["folder"] = self.folder
        data["missingFolder"] = self.missing_folder
        if self.entries:
            data["folderEntries"] = [entry.to_dict() for entry in self.entries]
        return data
