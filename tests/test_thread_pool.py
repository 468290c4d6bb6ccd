"""Tests for the bounded connection worker pool."""

import threading
import time

from thread_pool import ThreadPool


def test_thread_pool_starts_fixed_worker_count() -> None:
    pool = ThreadPool(worker_count=3, queue_size=4, handler=lambda _sock, _addr: None)
    pool.start()

    try:
        assert pool.worker_count == 3
        assert len(pool.threads) == 3
        assert all(thread.is_alive() for thread in pool.threads)
    finally:
        pool.shutdown()

    assert not any(thread.is_alive() for thread in pool.threads)


def test_thread_pool_rejects_non_positive_sizes() -> None:
    for kwargs in ({"worker_count": 0, "queue_size": 1}, {"worker_count": 1, "queue_size": 0}):
        try:
            ThreadPool(handler=lambda _sock, _addr: None, **kwargs)
        except ValueError as exc:
            assert "must be positive" in str(exc)
        else:
            raise AssertionError("Expected ValueError for non-positive pool size")


def test_thread_pool_submit_returns_false_when_full() -> None:
    pool = ThreadPool(worker_count=1, queue_size=1, handler=lambda _sock, _addr: None)

    assert pool.submit(object(), ("127.0.0.1", 0)) is True
    assert pool.submit(object(), ("127.0.0.1", 1)) is False
    assert pool.pending_jobs == 1


def test_graceful_shutdown_waits_for_running_jobs() -> None:
    finished = threading.Event()

    def slow_handler(_sock: object, _addr: tuple[str, int]) -> None:
        time.sleep(0.3)
        finished.set()

    pool = ThreadPool(worker_count=1, queue_size=2, handler=slow_handler)
    pool.start()
    assert pool.submit(object(), ("127.0.0.1", 0)) is True

    pool.shutdown(graceful=True, timeout=2.0)

    assert finished.is_set()
    assert pool.pending_jobs == 0


def test_submit_after_shutdown_is_refused() -> None:
    pool = ThreadPool(worker_count=1, queue_size=2, handler=lambda _sock, _addr: None)
    pool.start()
    pool.shutdown(graceful=True, timeout=1.0)

    assert pool.submit(object(), ("127.0.0.1", 0)) is False


def test_handler_errors_do_not_kill_workers() -> None:
    served: list[int] = []

    def flaky_handler(_sock: object, addr: tuple[str, int]) -> None:
        if addr[1] == 0:
            raise RuntimeError("boom")
        served.append(addr[1])

    pool = ThreadPool(worker_count=1, queue_size=4, handler=flaky_handler)
    pool.start()
    pool.submit(object(), ("127.0.0.1", 0))
    pool.submit(object(), ("127.0.0.1", 1))

    assert pool.wait_for_drain(timeout=2.0) is True
    pool.shutdown()

    assert served == [1]


def test_drain_times_out_while_job_is_running() -> None:
    release = threading.Event()

    pool = ThreadPool(worker_count=1, queue_size=1, handler=lambda _sock, _addr: release.wait(2))
    pool.start()
    pool.submit(object(), ("127.0.0.1", 0))

    try:
        assert pool.wait_for_drain(timeout=0.1) is False
    finally:
        release.set()
        pool.shutdown(graceful=True, timeout=2.0)


def test_shutdown_does_not_hang_when_queue_stays_full() -> None:
    started = threading.Event()
    release = threading.Event()

    def blocking_handler(_sock: object, _addr: tuple[str, int]) -> None:
        started.set()
        release.wait(5)

    pool = ThreadPool(worker_count=1, queue_size=1, handler=blocking_handler)
    pool.start()
    assert pool.submit(object(), ("127.0.0.1", 0)) is True
    assert started.wait(2)
    assert pool.submit(object(), ("127.0.0.1", 1)) is True

    began = time.monotonic()
    try:
        pool.shutdown(graceful=True, timeout=0.1)
        assert time.monotonic() - began < 1.0
    finally:
        release.set()
