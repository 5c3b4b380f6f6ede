import hashlib
import json
import os
import threading
from datetime import datetime, timezone
from pathlib import Path

import pytest

from cloud import DeliveryError, FolderRecord, LocalDirectorySink
from cloud.delivery import deliver_entries, object_name_for
from cloud.uploader import GcsSink, content_type_for
from discovery import FolderEntry, ReadyScanner
from hashing.hasher import document_id
from orchestrator.task_queue import CancelScope


def build_folder(root: Path) -> list[FolderEntry]:
    (root / "ORDER1.RDY").write_text("ready", encoding="utf-8")
    folder = root / "ORDER1"
    folder.mkdir()
    (folder / "b.txt").write_text("bravo", encoding="utf-8")
    (folder / "a.csv").write_text("alpha", encoding="utf-8")
    (folder / "nested").mkdir()
    (folder / "nested" / "deep.txt").write_text("deep", encoding="utf-8")
    (folder / "inner.rdy").write_text("marker", encoding="utf-8")
    os.symlink(folder / "a.csv", folder / "link.csv")
    [match] = ReadyScanner().scan(root)
    return match.entries


class RecordingUpload:
    def __init__(self, fail_on: str | None = None) -> None:
        self.fail_on = fail_on
        self.calls: list[tuple[str, str]] = []
        self.lock = threading.Lock()

    def __call__(self, local_path: str, object_name: str) -> None:
        if self.fail_on and local_path.endswith(self.fail_on):
            raise OSError(f"upload failed for {object_name}")
        with self.lock:
            self.calls.append((local_path, object_name))


def test_object_name_uses_folder_basename() -> None:
    assert object_name_for("", "/data/ORDER1/a.txt") == "ORDER1/a.txt"
    assert object_name_for("incoming/", "/data/ORDER1/a.txt") == "incoming/ORDER1/a.txt"


def test_deliver_entries_uploads_regular_files_only(tmp_path: Path) -> None:
    entries = build_folder(tmp_path)
    upload = RecordingUpload()

    delivered = deliver_entries(entries, "drop", upload, concurrency=2)

    assert sorted(name for _, name in upload.calls) == ["drop/ORDER1/a.csv", "drop/ORDER1/b.txt"]
    assert [item.name for item in delivered] == ["a.csv", "b.txt"]
    assert delivered[0].checksum == hashlib.sha256(b"alpha").hexdigest()
    assert delivered[0].size == 5
    assert delivered[0].path == "drop/ORDER1/a.csv"


def test_deliver_entries_skips_vanished_files(tmp_path: Path) -> None:
    entries = build_folder(tmp_path)
    (tmp_path / "ORDER1" / "b.txt").unlink()
    upload = RecordingUpload()

    delivered = deliver_entries(entries, "", upload)

    assert [item.name for item in delivered] == ["a.csv"]


def test_deliver_entries_reports_failure(tmp_path: Path) -> None:
    entries = build_folder(tmp_path)
    upload = RecordingUpload(fail_on="b.txt")

    with pytest.raises(DeliveryError, match="b.txt"):
        deliver_entries(entries, "", upload, concurrency=1)


def test_empty_folder_delivers_nothing(tmp_path: Path) -> None:
    upload = RecordingUpload()

    assert deliver_entries([], "", upload) == []
    assert upload.calls == []


def test_local_sink_copies_and_records(tmp_path: Path) -> None:
    source = tmp_path / "source"
    source.mkdir()
    entries = build_folder(source)
    destination = tmp_path / "dest"
    sink = LocalDirectorySink(destination, file_concurrency=2)

    delivered = sink.deliver(entries, "batches")
    record = FolderRecord(
        folder_path="ORDER1",
        uploaded_at=datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc),
        files=delivered,
    )
    sink.record_metadata("folders", record)
    sink.record_metadata("folders", record)
    sink.close()

    assert (destination / "batches" / "ORDER1" / "a.csv").read_text(encoding="utf-8") == "alpha"
    assert not (destination / "batches" / "ORDER1" / "nested").exists()
    records = list((destination / "_metadata" / "folders").iterdir())
    assert [path.name for path in records] == [f"{document_id('ORDER1')}.json"]
    data = json.loads(records[0].read_text(encoding="utf-8"))
    assert data["folderPath"] == "ORDER1"
    assert data["uploadedAt"] == "2024-01-02T03:04:05+00:00"
    assert [item["name"] for item in data["files"]] == ["a.csv", "b.txt"]


class FakeBlob:
    def __init__(self, bucket: "FakeBucket", name: str) -> None:
        self.bucket = bucket
        self.name = name

    def upload_from_filename(self, filename: str, content_type: str, timeout: int) -> None:
        with self.bucket.lock:
            self.bucket.uploads[self.name] = (Path(filename).read_bytes(), content_type)


class FakeBucket:
    def __init__(self, name: str) -> None:
        self.name = name
        self.uploads: dict[str, tuple[bytes, str]] = {}
        self.lock = threading.Lock()

    def blob(self, name: str) -> FakeBlob:
        return FakeBlob(self, name)


class FakeStorageClient:
    def __init__(self) -> None:
        self.buckets: dict[str, FakeBucket] = {}
        self.closed = False

    def bucket(self, name: str) -> FakeBucket:
        return self.buckets.setdefault(name, FakeBucket(name))

    def close(self) -> None:
        self.closed = True


class FakeDocument:
    def __init__(self, store: dict, key: tuple[str, str]) -> None:
        self.store = store
        self.key = key

    def set(self, data: dict) -> None:
        self.store[self.key] = data


class FakeCollection:
    def __init__(self, store: dict, name: str) -> None:
        self.store = store
        self.name = name

    def document(self, doc_id: str) -> FakeDocument:
        return FakeDocument(self.store, (self.name, doc_id))


class FakeFirestore:
    def __init__(self) -> None:
        self.documents: dict[tuple[str, str], dict] = {}

    def collection(self, name: str) -> FakeCollection:
        return FakeCollection(self.documents, name)


def test_gcs_sink_uploads_and_writes_documents(tmp_path: Path) -> None:
    entries = build_folder(tmp_path)
    storage_client = FakeStorageClient()
    firestore_client = FakeFirestore()
    sink = GcsSink(
        "scans",
        file_concurrency=2,
        storage_client=storage_client,
        firestore_client=firestore_client,
    )

    delivered = sink.deliver(entries, "")
    record = FolderRecord(folder_path="ORDER1", uploaded_at=datetime.now(timezone.utc), files=delivered)
    sink.record_metadata("folders", record)
    sink.record_metadata("folders", record)
    sink.close()

    uploads = storage_client.buckets["scans"].uploads
    assert sorted(uploads) == ["ORDER1/a.csv", "ORDER1/b.txt"]
    assert uploads["ORDER1/b.txt"] == (b"bravo", "text/plain")
    assert list(firestore_client.documents) == [("folders", document_id("ORDER1"))]
    assert firestore_client.documents[("folders", document_id("ORDER1"))]["files"][1]["name"] == "b.txt"
    assert storage_client.closed is True


def test_gcs_sink_requires_firestore_for_metadata(tmp_path: Path) -> None:
    sink = GcsSink("scans", storage_client=FakeStorageClient())
    record = FolderRecord(folder_path="ORDER1", uploaded_at=datetime.now(timezone.utc))

    with pytest.raises(DeliveryError):
        sink.record_metadata("folders", record)


def test_content_type_falls_back_to_octet_stream() -> None:
    assert content_type_for("scan.pdf") == "application/pdf"
    assert content_type_for("blob.unknownext") == "application/octet-stream"


def test_cancelled_parent_scope_fails_folder_delivery(tmp_path: Path) -> None:
    entries = build_folder(tmp_path)
    upload = RecordingUpload()
    outer = CancelScope()
    outer.cancel()

    with pytest.raises(DeliveryError, match="cancelled"):
        deliver_entries(entries, "", upload, concurrency=2, parent=outer)

    assert upload.calls == []


def test_local_sink_passes_scope_to_file_pool(tmp_path: Path) -> None:
    source = tmp_path / "source"
    source.mkdir()
    entries = build_folder(source)
    sink = LocalDirectorySink(tmp_path / "dest", file_concurrency=2)
    outer = CancelScope()

    delivered = sink.deliver(entries, "", scope=outer.child())

    assert [item.name for item in delivered] == ["a.csv", "b.txt"]
