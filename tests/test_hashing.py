import hashlib
from pathlib import Path

from hashing.hasher import document_id, sha256_file


def test_sha256_matches_hashlib(tmp_path: Path) -> None:
    path = tmp_path / "small.txt"
    content = b"hash me"
    path.write_bytes(content)

    assert sha256_file(path) == hashlib.sha256(content).hexdigest()


def test_sha256_streams_in_chunks(tmp_path: Path) -> None:
    path = tmp_path / "large.bin"
    content = bytes(range(256)) * 50
    path.write_bytes(content)

    assert sha256_file(path, chunk_size=7) == hashlib.sha256(content).hexdigest()


def test_document_id_is_stable_and_url_safe() -> None:
    first = document_id("batch/ORDER100")
    second = document_id("batch/ORDER100")

    assert first == second
    assert len(first) == 20
    assert "+" not in first and "/" not in first and "=" not in first
    assert document_id("batch/ORDER200") != first
