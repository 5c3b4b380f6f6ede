import threading
import time

import pytest

from orchestrator import task_queue
from orchestrator.task_queue import CancelScope, default_concurrency, resolve_concurrency, run_parallel


def counting_tasks(count: int, done: list[int], lock: threading.Lock, delay: float = 0.0) -> list:
    def make(index: int):
        def task(scope: CancelScope) -> None:
            if delay:
                time.sleep(delay)
            with lock:
                done.append(index)

        return task

    return [make(index) for index in range(count)]


@pytest.mark.parametrize("concurrency", [1, 2, 5, 10])
def test_all_tasks_complete(concurrency: int) -> None:
    done: list[int] = []
    lock = threading.Lock()

    run_parallel(counting_tasks(10, done, lock), concurrency)

    assert sorted(done) == list(range(10))


def test_concurrency_is_bounded() -> None:
    active = 0
    peak = 0
    lock = threading.Lock()

    def task(scope: CancelScope) -> None:
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        time.sleep(0.02)
        with lock:
            active -= 1

    run_parallel([task] * 12, concurrency=3)

    assert 1 <= peak <= 3


def test_first_error_is_raised_and_stops_queue() -> None:
    done: list[int] = []
    lock = threading.Lock()

    def failing(scope: CancelScope) -> None:
        raise ValueError("boom")

    tasks = [failing] + counting_tasks(9, done, lock, delay=0.05)

    with pytest.raises(ValueError, match="boom"):
        run_parallel(tasks, concurrency=2)

    assert len(done) < len(tasks) - 1


def test_single_worker_runs_nothing_after_failure() -> None:
    done: list[int] = []
    lock = threading.Lock()

    def failing(scope: CancelScope) -> None:
        raise RuntimeError("first")

    with pytest.raises(RuntimeError, match="first"):
        run_parallel([failing] + counting_tasks(5, done, lock), concurrency=1)

    assert done == []


def test_only_first_of_several_errors_is_reported() -> None:
    barrier = threading.Barrier(2)

    def fast_failure(scope: CancelScope) -> None:
        barrier.wait()
        raise ValueError("fast")

    def slow_failure(scope: CancelScope) -> None:
        barrier.wait()
        time.sleep(0.1)
        raise KeyError("slow")

    with pytest.raises(ValueError, match="fast"):
        run_parallel([fast_failure, slow_failure], concurrency=2)


def test_in_flight_task_sees_cancellation() -> None:
    observed: list[bool] = []
    started = threading.Event()

    def failing(scope: CancelScope) -> None:
        started.wait(timeout=1)
        raise RuntimeError("stop")

    def long_running(scope: CancelScope) -> None:
        started.set()
        deadline = time.monotonic() + 2
        while not scope.cancelled and time.monotonic() < deadline:
            time.sleep(0.01)
        observed.append(scope.cancelled)

    with pytest.raises(RuntimeError):
        run_parallel([long_running, failing], concurrency=2)

    assert observed == [True]


def test_empty_input_returns_immediately() -> None:
    assert run_parallel([], concurrency=4) is None


def test_cancelled_parent_prevents_new_tasks() -> None:
    parent = CancelScope()
    parent.cancel()
    done: list[int] = []

    run_parallel(counting_tasks(3, done, threading.Lock()), concurrency=2, parent=parent)

    assert done == []


def test_child_scope_follows_parent_only() -> None:
    parent = CancelScope()
    child = parent.child()

    child.cancel()
    assert child.cancelled is True
    assert parent.cancelled is False

    other = parent.child()
    parent.cancel()
    assert other.cancelled is True


@pytest.mark.parametrize("cpus,expected", [(1, 2), (4, 4), (64, 8), (None, 2)])
def test_default_concurrency_is_clamped(monkeypatch: pytest.MonkeyPatch, cpus, expected: int) -> None:
    monkeypatch.setattr(task_queue.psutil, "cpu_count", lambda logical=True: cpus)

    assert default_concurrency() == expected


def test_concurrency_is_clamped_to_task_count(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(task_queue.psutil, "cpu_count", lambda logical=True: 16)

    assert resolve_concurrency(10, 3) == 3
    assert resolve_concurrency(0, 20) == 8
    assert resolve_concurrency(-1, 1) == 1
