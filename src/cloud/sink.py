"""
Delivery sink contract and the records it exchanges with the orchestrator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Protocol, Sequence

from discovery.models import FolderEntry
from orchestrator.task_queue import CancelScope


class DeliveryError(RuntimeError):
    """Raised when a folder's files cannot be delivered."""


@dataclass(frozen=True)
class DeliveredFile:
    """Metadata for one file accepted by a sink."""

    name: str
    size: int
    checksum: str
    path: str

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "size": self.size, "checksum": self.checksum, "path": self.path}


@dataclass
class FolderRecord:
    """Metadata document stored once per delivered folder."""

    folder_path: str
    uploaded_at: datetime
    files: list[DeliveredFile] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "folderPath": self.folder_path,
            "uploadedAt": self.uploaded_at,
            "files": [item.to_dict() for item in self.files],
        }


class Sink(Protocol):
    """External delivery target used by the orchestrator."""

    def deliver(
        self,
        entries: Sequence[FolderEntry],
        object_prefix: str,
        scope: Optional[CancelScope] = None,
    ) -> list[DeliveredFile]:
        ...


    def record_metadata(self, collection: str, record: FolderRecord) -> None:
        ...

    def close(self) -> None:
        ...
