"""
Local directory sink, mirroring the object layout of the GCS sink.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
from pathlib import Path
from typing import Optional, Sequence

from cloud.delivery import deliver_entries
from cloud.sink import DeliveredFile, DeliveryError, FolderRecord
from discovery.models import FolderEntry
from hashing.hasher import document_id
from orchestrator.task_queue import CancelScope

METADATA_DIR = "_metadata"


class LocalDirectorySink:
    """Copy folder files under a destination directory.

    Folder records are written as ``_metadata/<collection>/<id>.json`` so a
    repeated delivery replaces the previous record.
    """

    def __init__(
        self,
        destination: Path,
        file_concurrency: int = 0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.destination = Path(destination)
        self.file_concurrency = file_concurrency
        self.logger = logger or logging.getLogger("ready_sync.cloud")

    def deliver(
        self,
        entries: Sequence[FolderEntry],
        object_prefix: str,
        scope: Optional[CancelScope] = None,
    ) -> list[DeliveredFile]:
        return deliver_entries(
            entries,
            object_prefix,
            self._copy_file,
            concurrency=self.file_concurrency,
            logger=self.logger,
            parent=scope,
        )

    def record_metadata(self, collection: str, record: FolderRecord) -> None:
        if not collection:
            raise DeliveryError("Metadata collection required")
        target_dir = self.destination / METADATA_DIR / collection
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / f"{document_id(record.folder_path)}.json"
        payload = record.to_dict()
        payload["uploadedAt"] = record.uploaded_at.isoformat()
        tmp_path = target.with_name(target.name + ".tmp")
        tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        os.replace(tmp_path, target)

    def close(self) -> None:
        return None

    def _copy_file(self, local_path: str, object_name: str) -> None:
        target = self.destination.joinpath(*object_name.split("/"))
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(local_path, target)
        self.logger.debug("Copied %s to %s", local_path, target)
