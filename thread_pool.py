"""Bounded worker pool for accepted client connections."""

from __future__ import annotations

import logging
import queue
import socket
import threading
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)

ClientAddress = tuple[str, int]
ConnectionJob = tuple[socket.socket, ClientAddress]
ConnectionHandler = Callable[[socket.socket, ClientAddress], None]


class ThreadPool:
    """Fixed-size pool of worker threads fed from a bounded queue.

    Each accepted connection is one job. ``shutdown(graceful=True)`` stops
    taking new jobs and waits for queued and running ones to finish.
    """

    def __init__(
        self,
        worker_count: int,
        queue_size: int,
        handler: ConnectionHandler,
    ) -> None:
        if worker_count <= 0:
            raise ValueError("worker_count must be positive")
        if queue_size <= 0:
            raise ValueError("queue_size must be positive")

        self._handler = handler
        self._worker_count = worker_count
        self._jobs: queue.Queue[ConnectionJob | None] = queue.Queue(maxsize=queue_size)
        self._threads: list[threading.Thread] = []
        self._accepting = threading.Event()
        self._accepting.set()
        self._pending_jobs = 0
        self._drained = threading.Condition()
        self._shutdown_lock = threading.Lock()
        self._shutdown_started = False

    @property
    def worker_count(self) -> int:
        return self._worker_count

    @property
    def threads(self) -> tuple[threading.Thread, ...]:
        return tuple(self._threads)

    @property
    def pending_jobs(self) -> int:
        """Connections queued or being served."""
        with self._drained:
            return self._pending_jobs

    def start(self) -> None:
        for index in range(self._worker_count):
            worker = threading.Thread(
                target=self._worker_loop,
                name=f"static-worker-{index}",
                daemon=True,
            )
            self._threads.append(worker)
            worker.start()

    def submit(self, client_socket: socket.socket, address: ClientAddress) -> bool:
        """Queue a connection; False when the pool is full or shutting down."""
        if not self._accepting.is_set():
            return False
        with self._drained:
            self._pending_jobs += 1
        try:
            self._jobs.put_nowait((client_socket, address))
        except queue.Full:
            self._finish_job()
            return False
        return True

    def wait_for_drain(self, timeout: float | None = None) -> bool:
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._drained:
            while self._pending_jobs:
                if deadline is None:
                    self._drained.wait(timeout=0.1)
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._drained.wait(timeout=min(remaining, 0.1))
        return True

    def shutdown(self, *, graceful: bool = False, timeout: float | None = None) -> None:
        with self._shutdown_lock:
            if self._shutdown_started:
                return
            self._shutdown_started = True

        self._accepting.clear()
        if graceful and not self.wait_for_drain(timeout=timeout):
            logger.warning("Drain timed out with %s connection(s) still active", self.pending_jobs)

        for _ in self._threads:
            try:
                self._jobs.put_nowait(None)
            except queue.Full:
                # Workers are daemons; the ones still busy die with the process.
                logger.warning("Job queue still full, not waiting for workers to exit")
                return
        for thread in self._threads:
            thread.join(timeout=1.0)

    def _worker_loop(self) -> None:
        while True:
            job = self._jobs.get()
            if job is None:
                self._jobs.task_done()
                return

            client_socket, address = job
            try:
                self._handler(client_socket, address)
            except Exception:
                logger.exception("Unhandled error while serving %s", address[0])
            finally:
                self._finish_job()
                self._jobs.task_done()

    def _finish_job(self) -> None:
        with self._drained:
            self._pending_jobs -= 1
            self._drained.notify_all()
