"""
Content checksums for delivered files.
"""

from __future__ import annotations

import base64
import hashlib
from pathlib import Path

CHUNK_SIZE = 4 * 1024 * 1024


def sha256_file(path: Path | str, chunk_size: int = CHUNK_SIZE) -> str:
    """Compute a full SHA-256 hash in streaming mode."""
    hasher = hashlib.sha256()
    with Path(path).open("rb") as handle:
        for chunk in iter(lambda: handle.read(chunk_size), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def document_id(folder_path: str) -> str:
    """Return a stable 20-character URL-safe id for a relative folder path.

    Uses the first 15 bytes of the SHA-256 digest, base64url-encoded without
    padding.
    """
    digest = hashlib.sha256(folder_path.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest[:15]).decode("ascii").rstrip("=")
