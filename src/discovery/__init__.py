"""
Ready-marker discovery.
"""

from .models import FolderEntry, ReadyMatch
from .scanner import MARKER_SUFFIX, ReadyScanner, ScanError

__all__ = ["FolderEntry", "MARKER_SUFFIX", "ReadyMatch", "ReadyScanner", "ScanError"]
