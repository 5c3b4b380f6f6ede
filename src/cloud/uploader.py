"""
Google Cloud Storage delivery with Firestore folder records.
"""

from __future__ import annotations

import logging
import mimetypes
from typing import Any, Optional, Sequence

from google.cloud import firestore, storage

from cloud.delivery import deliver_entries
from cloud.sink import DeliveredFile, DeliveryError, FolderRecord
from discovery.models import FolderEntry
from hashing.hasher import document_id
from orchestrator.task_queue import CancelScope

UPLOAD_TIMEOUT_SECONDS = 120


def content_type_for(path: str) -> str:
    content_type, _ = mimetypes.guess_type(path)
    return content_type or "application/octet-stream"


class GcsSink:
    """Upload folder files to a GCS bucket and store folder records in Firestore."""

    def __init__(
        self,
        bucket_name: str,
        file_concurrency: int = 0,
        firestore_project: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
        storage_client: Optional[Any] = None,
        firestore_client: Optional[Any] = None,
    ) -> None:
        if not bucket_name:
            raise DeliveryError("GCS bucket not configured")
        self.bucket_name = bucket_name
        self.file_concurrency = file_concurrency
        self.logger = logger or logging.getLogger("ready_sync.cloud")
        self.storage_client = storage_client or storage.Client()
        self.bucket = self.storage_client.bucket(bucket_name)
        self.firestore_client = firestore_client
        if self.firestore_client is None and firestore_project:
            self.firestore_client = firestore.Client(project=firestore_project)

    def deliver(
        self,
        entries: Sequence[FolderEntry],
        object_prefix: str,
        scope: Optional[CancelScope] = None,
    ) -> list[DeliveredFile]:
        return deliver_entries(
            entries,
            object_prefix,
            self._upload_file,
            concurrency=self.file_concurrency,
            logger=self.logger,
            parent=scope,
        )

    def record_metadata(self, collection: str, record: FolderRecord) -> None:
        if not collection:
            raise DeliveryError("Firestore collection required")
        if self.firestore_client is None:
            raise DeliveryError("Firestore client not configured")
        doc_id = document_id(record.folder_path)
        self.firestore_client.collection(collection).document(doc_id).set(record.to_dict())
        self.logger.debug("Recorded folder %s as %s/%s", record.folder_path, collection, doc_id)

    def close(self) -> None:
        for client in (self.storage_client, self.firestore_client):
            close = getattr(client, "close", None)
            if close is not None:
                close()

    def _upload_file(self, local_path: str, object_name: str) -> None:
        blob = self.bucket.blob(object_name)
        blob.upload_from_filename(
            local_path,
            content_type=content_type_for(local_path),
            timeout=UPLOAD_TIMEOUT_SECONDS,
        )
        self.logger.debug("Uploaded %s to gs://%s/%s", local_path, self.bucket_name, object_name)
