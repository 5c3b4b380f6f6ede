"""
Run orchestration and command-line entry point for ready-sync.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional, Sequence, TextIO

import yaml

from cloud import FolderRecord, LocalDirectorySink, Sink
from cloud.uploader import GcsSink
from config import AppConfig, ConfigError, SyncSettings, default_lock_path
from discovery import ReadyMatch, ReadyScanner, ScanError
from orchestrator import __version__
from orchestrator.task_queue import CancelScope, Task, run_parallel
from state import DedupStore
from utils import InstanceLockError, acquire_process_lock, setup_logging
from utils.instance_guard import utcnow

UNREADABLE_TOKEN = 1
EXIT_OK = 0
EXIT_SETUP_FAILURE = 2


@dataclass
class RunSummary:
    """Counts reported at the end of every run."""

    scanned: int = 0
    eligible: int = 0
    skipped: int = 0
    delivered: int = 0
    failed: int = 0
    lock_acquired: bool = True


def marker_token(path: str) -> int:
    """Return the marker's modification time in nanoseconds, or the sentinel."""
    try:
        return os.stat(path).st_mtime_ns
    except OSError:
        return UNREADABLE_TOKEN


class SyncOrchestrator:
    """Lock, scan, filter and then report or deliver ready folders."""

    def __init__(
        self,
        settings: SyncSettings,
        sink: Optional[Sink] = None,
        stdout: Optional[TextIO] = None,
        logger: Optional[logging.Logger] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.settings = settings
        self.sink = sink
        self.stdout = stdout if stdout is not None else sys.stdout
        self.logger = logger or logging.getLogger("ready_sync")
        self.clock = clock or utcnow
        self.scanner = ReadyScanner.from_settings(settings, logger=self.logger.getChild("discovery"))

    def run(self) -> RunSummary:
        """Execute one run. Lock contention returns an empty summary."""
        lock_path = self.settings.lock_path or default_lock_path(Path(self.settings.root).resolve())
        lock = acquire_process_lock(lock_path, ttl=self.settings.lock_ttl, clock=self.clock)
        if not lock.acquired:
            self.logger.info("Another ready-sync process holds lock %s; skipping run", lock_path)
            return RunSummary(lock_acquired=False)
        with lock:
            return self._run_locked()

    def _run_locked(self) -> RunSummary:
        store = self._load_state()
        matches = self.scanner.scan(self.settings.root)
        summary = RunSummary(scanned=len(matches))

        eligible: list[tuple[ReadyMatch, Optional[int]]] = []
        for match in matches:
            if match.missing_folder or not match.folder:
                self.logger.info("skip (missing folder): %s", match.ready_file)
                summary.skipped += 1
                continue
            if store is None:
                self.logger.info("emit (stateless): %s", match.ready_file)
                eligible.append((match, None))
                continue
            token = marker_token(match.ready_file)
            previous = store.get(match.ready_file)
            if previous == token:
                self.logger.info("skip (unchanged): %s", match.ready_file)
                summary.skipped += 1
                continue
            self.logger.info(
                "emit (%s): %s", "new" if previous is None else "changed", match.ready_file
            )
            eligible.append((match, token))
        summary.eligible = len(eligible)

        if self.sink is None:
            self._emit_report([match for match, _ in eligible])
            if store is not None:
                for match, token in eligible:
                    store.set(match.ready_file, token)
        else:
            self._deliver_all(eligible, store, summary)

        if store is not None:
            store.set_last_run(self.clock())
            try:
                store.save()
            except OSError as exc:
                self.logger.warning("State save warning: %s", exc)

        self._log_summary(summary)
        return summary

    def _load_state(self) -> Optional[DedupStore]:
        if not self.settings.use_state:
            self.logger.info("State disabled: every ready folder is eligible")
            return None
        self.logger.info("Using state file: %s", self.settings.state_path)
        store = DedupStore(self.settings.state_path, logger=self.logger.getChild("state"))
        try:
            store.load()
        except OSError as exc:
            self.logger.warning("State load warning: %s", exc)
        return store

    def _emit_report(self, matches: Sequence[ReadyMatch]) -> None:
        if not matches:
            return
        payload = json.dumps([match.to_dict() for match in matches], separators=(",", ":"))
        self.stdout.write(payload + "\n")
        self.stdout.flush()

    def _deliver_all(
        self,
        eligible: Sequence[tuple[ReadyMatch, Optional[int]]],
        store: Optional[DedupStore],
        summary: RunSummary,
    ) -> None:
        counter_lock = threading.Lock()
        tasks = [
            self._delivery_task(match, token, store, summary, counter_lock)
            for match, token in eligible
        ]
        try:
            run_parallel(tasks, self.settings.folder_concurrency, logger=self.logger)
        except Exception as exc:
            self.logger.warning("Folder delivery warning: %s", exc)

    def _delivery_task(
        self,
        match: ReadyMatch,
        token: Optional[int],
        store: Optional[DedupStore],
        summary: RunSummary,
        counter_lock: threading.Lock,
    ) -> Task:
        def task(scope: CancelScope) -> None:
            folder = match.folder or ""
            try:
                files = self.sink.deliver(match.entries, self.settings.object_prefix, scope=scope)
                if self.settings.metadata_collection:
                    record = FolderRecord(
                        folder_path=self.relative_folder(folder),
                        uploaded_at=self.clock(),
                        files=files,
                    )
                    self.sink.record_metadata(self.settings.metadata_collection, record)
            except Exception as exc:
                self.logger.warning("Delivery warning: folder=%s err=%s", folder, exc)
                with counter_lock:
                    summary.failed += 1
                return
            if store is not None and token is not None:
                store.set(match.ready_file, token)
            with counter_lock:
                summary.delivered += 1
            self.logger.info("Delivered %s (%s file(s))", folder, len(files))

        return task

    def relative_folder(self, folder: str) -> str:
        """Folder path relative to the scan root, POSIX separators."""
        try:
            relative = os.path.relpath(folder, self.settings.root)
        except ValueError:
            return Path(folder).as_posix()
        if relative in ("", ".") or relative.startswith(".."):
            return Path(folder).as_posix()
        return Path(relative).as_posix()

    def _log_summary(self, summary: RunSummary) -> None:
        if self.sink is None:
            self.logger.info(
                "summary: scanned=%s eligible=%s skipped=%s",
                summary.scanned,
                summary.eligible,
                summary.skipped,
            )
            return
        self.logger.info(
            "summary: scanned=%s eligible=%s skipped=%s delivered=%s failed=%s",
            summary.scanned,
            summary.eligible,
            summary.skipped,
            summary.delivered,
            summary.failed,
        )


def build_sink(settings: SyncSettings, logger: Optional[logging.Logger] = None) -> Optional[Sink]:
    """Create the configured delivery sink, or None for report mode."""
    if not settings.delivery_enabled:
        return None
    if settings.gcs_bucket:
        return GcsSink(
            settings.gcs_bucket,
            file_concurrency=settings.file_concurrency,
            firestore_project=settings.firestore_project,
            logger=logger,
        )
    return LocalDirectorySink(
        settings.local_sink_path,
        file_concurrency=settings.file_concurrency,
        logger=logger,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ready-sync",
        description="Report or deliver folders announced by *.RDY marker files.",
    )
    parser.add_argument("--config", default=None, help="YAML config path (default: ready-sync.yaml if present)")
    parser.add_argument("--dir", dest="root", default=None, help="Directory to scan (default: .)")
    parser.add_argument("--recursive", action="store_true", default=None, help="Recursively scan for *.RDY files")
    parser.add_argument(
        "--follow-symlinks", action="store_true", default=None, help="Follow directory symlinks when recursive"
    )
    parser.add_argument(
        "--state-file", dest="state_path", default=None, help="State file (default: <dir>/.ready-sync_state.json)"
    )
    parser.add_argument("--no-state", action="store_true", default=None, help="Disable state entirely")
    parser.add_argument(
        "--lock-file", dest="lock_path", default=None, help="Lock file (default: per-directory file in temp dir)"
    )
    parser.add_argument("--lock-ttl-minutes", type=float, default=None, help="Age after which a lock is stale")
    parser.add_argument("--gcs-bucket", default=None, help="Upload eligible folders to this GCS bucket")
    parser.add_argument(
        "--local-sink", dest="local_sink_path", default=None, help="Copy eligible folders under this directory"
    )
    parser.add_argument("--object-prefix", default=None, help="Prefix for delivered object names")
    parser.add_argument(
        "--firestore", default=None, help="PROJECT_ID:COLLECTION for folder records (requires --gcs-bucket)"
    )
    parser.add_argument(
        "--metadata-collection", default=None, help="Collection name for folder records of the local sink"
    )
    parser.add_argument("--folder-concurrency", type=int, default=None, help="Concurrent folders (0=auto)")
    parser.add_argument("--file-concurrency", type=int, default=None, help="Concurrent files per folder (0=auto)")
    parser.add_argument("--log-dir", default=None, help="Directory for dated log files")
    parser.add_argument("--verbose", action="store_true", default=None, help="Enable debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    overrides = vars(args)
    config_path = overrides.pop("config")
    try:
        config = AppConfig.load(Path(config_path) if config_path else None)
        settings = SyncSettings.from_sources(config, overrides)
    except (ConfigError, FileNotFoundError, yaml.YAMLError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_SETUP_FAILURE

    logger = setup_logging(settings.log_dir, settings.verbose)
    logger.info("ready-sync version=%s", __version__)

    try:
        sink = build_sink(settings, logger=logger.getChild("cloud"))
    except Exception as exc:
        logger.error("Sink initialisation failed: %s", exc)
        return EXIT_SETUP_FAILURE

    try:
        SyncOrchestrator(settings, sink=sink, logger=logger).run()
    except (ScanError, InstanceLockError) as exc:
        logger.error("fatal: %s", exc)
        return EXIT_SETUP_FAILURE
    except OSError as exc:
        logger.error("Report output failed: %s", exc)
        return EXIT_SETUP_FAILURE
    finally:
        if sink is not None:
            sink.close()
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
