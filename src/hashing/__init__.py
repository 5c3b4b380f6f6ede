"""
Checksum helpers.
"""

from .hasher import document_id, sha256_file

__all__ = ["document_id", "sha256_file"]
