"""
Bounded-concurrency task runner with first-error cancellation.
"""

from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, Optional

import psutil

MIN_AUTO_CONCURRENCY = 2
MAX_AUTO_CONCURRENCY = 8


class CancelScope:
    """Cooperative cancellation flag, optionally nested under a parent scope."""

    def __init__(self, parent: Optional["CancelScope"] = None) -> None:
        self.parent = parent
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self.parent is not None and self.parent.cancelled

    def child(self) -> "CancelScope":
        return CancelScope(parent=self)


Task = Callable[[CancelScope], None]


def default_concurrency() -> int:
    """Worker count derived from logical CPUs, clamped to [2, 8]."""
    count = psutil.cpu_count(logical=True) or MIN_AUTO_CONCURRENCY
    return max(min(count, MAX_AUTO_CONCURRENCY), MIN_AUTO_CONCURRENCY)


def resolve_concurrency(concurrency: int, task_count: int) -> int:
    if concurrency <= 0:
        concurrency = default_concurrency()
    return min(concurrency, task_count)


def run_parallel(
    tasks: Iterable[Task],
    concurrency: int = 0,
    parent: Optional[CancelScope] = None,
    logger: Optional[logging.Logger] = None,
) -> None:
    """Run tasks on at most ``concurrency`` workers pulling from a shared queue.

    The first task that raises cancels the shared scope and its exception is
    re-raised once all workers have stopped. Workers do not start queued tasks
    after cancellation; running tasks are left to finish. Later errors are
    discarded.
    """
    task_list = list(tasks)
    if not task_list:
        return
    logger = logger or logging.getLogger("ready_sync.tasks")
    workers = resolve_concurrency(concurrency, len(task_list))
    scope = CancelScope(parent)

    pending: "queue.Queue[int]" = queue.Queue()
    for index in range(len(task_list)):
        pending.put(index)

    first_error: list[Exception] = []
    error_lock = threading.Lock()

    def worker() -> None:
        while not scope.cancelled:
            try:
                index = pending.get_nowait()
            except queue.Empty:
                return
            try:
                task_list[index](scope)
            except Exception as exc:
                with error_lock:
                    if first_error:
                        logger.debug("Discarding task error after first failure: %s", exc)
                    else:
                        first_error.append(exc)
                        scope.cancel()
                return

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ready-sync-worker") as executor:
        futures = [executor.submit(worker) for _ in range(workers)]
        for future in futures:
            future.result()

    if first_error:
        raise first_error[0]
