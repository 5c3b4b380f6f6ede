"""
Ready-marker discovery and companion folder listing.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, Optional

from config import SyncSettings
from discovery.models import EPOCH, FolderEntry, ReadyMatch

MARKER_SUFFIX = ".RDY"


class ScanError(RuntimeError):
    """Raised when the scan root cannot be traversed."""


class ReadyScanner:
    """Find marker files and pair each with its sibling folder."""

    def __init__(
        self,
        recursive: bool = False,
        follow_symlinks: bool = False,
        suffix: str = MARKER_SUFFIX,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.recursive = recursive
        self.follow_symlinks = follow_symlinks
        self.suffix = suffix
        self._folded_suffix = suffix.casefold()
        self.logger = logger or logging.getLogger("ready_sync.discovery")

    @classmethod
    def from_settings(cls, settings: SyncSettings, logger: Optional[logging.Logger] = None) -> "ReadyScanner":
        return cls(
            recursive=settings.recursive,
            follow_symlinks=settings.follow_symlinks,
            logger=logger,
        )

    def scan(self, root: Path | str) -> list[ReadyMatch]:
        """Scan a root directory and return matches sorted by marker path."""
        root_path = os.path.abspath(os.fspath(root))
        if not os.path.isdir(root_path):
            if os.path.exists(root_path):
                raise ScanError(f"Scan root is not a directory: {root_path}")
            raise ScanError(f"Scan root does not exist: {root_path}")

        if self.recursive:
            markers = list(self._walk_markers(root_path))
        else:
            markers = list(self._list_markers(root_path))
        markers.sort()

        matches = [self._build_match(marker) for marker in markers]
        self.logger.debug("Scanned %s: %s marker(s)", root_path, len(matches))
        return matches

    def is_marker(self, name: str) -> bool:
        """Return True when the name ends with the marker suffix, ignoring case."""
        return name.casefold().endswith(self._folded_suffix)

    def folder_name_for(self, marker_name: str) -> str:
        """Return the companion folder name for a marker, preserving case."""
        return marker_name[: len(marker_name) - len(self.suffix)]

    def _list_markers(self, root: str) -> Iterator[str]:
        try:
            with os.scandir(root) as entries:
                for entry in entries:
                    if entry.is_dir():
                        continue
                    if self.is_marker(entry.name):
                        yield os.path.join(root, entry.name)
        except OSError as exc:
            raise ScanError(f"Cannot list scan root {root}: {exc}") from exc

    def _walk_markers(self, root: str) -> Iterator[str]:
        def on_error(error: OSError) -> None:
            raise ScanError(f"Walk error at {error.filename}: {error}") from error

        for dirpath, dirnames, filenames in os.walk(
            root, topdown=True, onerror=on_error, followlinks=self.follow_symlinks
        ):
            dirnames.sort()
            for filename in filenames:
                if self.is_marker(filename):
                    yield os.path.join(dirpath, filename)

    def _build_match(self, marker: str) -> ReadyMatch:
        match = ReadyMatch(ready_file=marker)
        folder_name = self.folder_name_for(os.path.basename(marker))
        if not folder_name:
            match.missing_folder = True
            return match
        candidate = os.path.join(os.path.dirname(marker), folder_name)
        try:
            is_dir = os.path.isdir(candidate)
        except OSError:
            is_dir = False
        if not is_dir:
            self.logger.debug("No companion folder for %s", marker)
            match.missing_folder = True
            return match

        match.folder = candidate
        try:
            match.entries = self._list_entries(candidate)
        except OSError as exc:
            self.logger.warning("Cannot list folder %s: %s", candidate, exc)
            match.missing_folder = True
        return match

    def _list_entries(self, folder: str) -> list[FolderEntry]:
        entries: list[FolderEntry] = []
        with os.scandir(folder) as children:
            for child in children:
                try:
                    stat = child.stat(follow_symlinks=False)
                    size = stat.st_size
                    modified = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
                except OSError:
                    size = 0
                    modified = EPOCH
                entries.append(
                    FolderEntry(
                        name=child.name,
                        size=size,
                        modified=modified,
                        path=os.path.join(folder, child.name),
                    )
                )
        entries.sort(key=lambda entry: entry.name)
        return entries
