"""
Shared folder delivery routine used by every sink.
"""

from __future__ import annotations

import logging
import os
import stat
import threading
from typing import Callable, Optional, Sequence

from cloud.sink import DeliveredFile, DeliveryError
from discovery.models import FolderEntry
from discovery.scanner import MARKER_SUFFIX
from hashing.hasher import sha256_file
from orchestrator.task_queue import CancelScope, Task, run_parallel

FileUpload = Callable[[str, str], None]


def object_name_for(object_prefix: str, local_path: str) -> str:
    """Return ``<prefix>/<folder basename>/<file name>`` for a local file."""
    folder = os.path.basename(os.path.dirname(local_path))
    name = os.path.basename(local_path)
    prefix = object_prefix.strip("/")
    if prefix:
        return f"{prefix}/{folder}/{name}"
    return f"{folder}/{name}"


def is_deliverable(entry: FolderEntry) -> bool:
    """True for regular files that are not marker files."""
    if not entry.path:
        return False
    if entry.name.casefold().endswith(MARKER_SUFFIX.casefold()):
        return False
    try:
        mode = os.lstat(entry.path).st_mode
    except OSError:
        return False
    return stat.S_ISREG(mode)


def deliver_entries(
    entries: Sequence[FolderEntry],
    object_prefix: str,
    upload: FileUpload,
    concurrency: int = 0,
    logger: Optional[logging.Logger] = None,
    parent: Optional[CancelScope] = None,
) -> list[DeliveredFile]:
    """Checksum and upload a folder's immediate files on a dedicated worker pool.

    Subdirectories, symlinks, marker files and entries that vanished since the
    scan are skipped. The first failing file cancels the remaining uploads of
    this folder only and is reported as a DeliveryError. Cancelling ``parent``
    stops queued uploads; a folder left incomplete that way is a DeliveryError.
    """
    logger = logger or logging.getLogger("ready_sync.delivery")
    delivered: list[DeliveredFile] = []
    delivered_lock = threading.Lock()
    tasks: list[Task] = []

    for entry in entries:
        if not is_deliverable(entry):
            logger.debug("Skipping non-deliverable entry: %s", entry.path)
            continue
        tasks.append(_file_task(entry, object_prefix, upload, delivered, delivered_lock))

    if not tasks:
        return []
    try:
        run_parallel(tasks, concurrency, parent=parent, logger=logger)
    except Exception as exc:
        raise DeliveryError(f"Delivery failed: {exc}") from exc
    if len(delivered) < len(tasks):
        raise DeliveryError(f"Delivery cancelled after {len(delivered)} of {len(tasks)} file(s)")
    return sorted(delivered, key=lambda item: item.name)


def _file_task(
    entry: FolderEntry,
    object_prefix: str,
    upload: FileUpload,
    delivered: list[DeliveredFile],
    delivered_lock: threading.Lock,
) -> Task:
    object_name = object_name_for(object_prefix, entry.path)

    def task(scope: CancelScope) -> None:
        size = os.stat(entry.path).st_size
        checksum = sha256_file(entry.path)
        upload(entry.path, object_name)
        with delivered_lock:
            delivered.append(DeliveredFile(name=entry.name, size=size, checksum=checksum, path=object_name))

    return task
