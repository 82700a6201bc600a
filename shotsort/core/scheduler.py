"""Serial processing queue with timer-scheduled continuations."""

import heapq
import itertools
import logging
import threading
import time
from typing import Callable

logger = logging.getLogger(__name__)


class SerialQueue:
    """Run work items one at a time on a single worker thread.

    Items can be scheduled to run after a delay. Delayed items wait in a
    heap instead of sleeping on the worker, so several files can be waiting
    at once while other work proceeds.
    """

    def __init__(self, name: str = "shotsort-processing") -> None:
        """Initialize serial queue.

        Args:
            name: Worker thread name.
        """
        self._name = name
        self._heap: list[tuple[float, int, Callable[[], None]]] = []
        self._counter = itertools.count()
        self._cond = threading.Condition()
        self._running = False
        self._busy = False
        self._worker: threading.Thread | None = None

    def start(self) -> None:
        """Start the worker thread. Starting twice is a no-op."""
        with self._cond:
            if self._running:
                return
            self._running = True
            self._worker = threading.Thread(target=self._run, name=self._name, daemon=True)
            self._worker.start()

    @property
    def is_running(self) -> bool:
        with self._cond:
            return self._running

    def on_worker_thread(self) -> bool:
        """Check whether the caller is the queue's worker thread."""
        return threading.current_thread() is self._worker

    def submit(self, fn: Callable[[], None]) -> None:
        """Queue a work item to run as soon as possible."""
        self.submit_after(0.0, fn)

    def submit_after(self, delay: float, fn: Callable[[], None]) -> None:
        """Queue a work item to run no earlier than ``delay`` seconds from now.

        Items with the same due time run in submission order.
        """
        due = time.monotonic() + max(0.0, delay)
        with self._cond:
            heapq.heappush(self._heap, (due, next(self._counter), fn))
            self._cond.notify_all()

    def pending_count(self) -> int:
        """Number of queued items, including ones waiting on a timer."""
        with self._cond:
            return len(self._heap)

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until nothing is queued or running.

        Args:
            timeout: Maximum seconds to wait; None waits forever.

        Returns:
            True if the queue drained, False on timeout.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while self._heap or self._busy:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._cond.wait(remaining)
            return True

    def shutdown(self, wait: bool = True, timeout: float | None = None) -> None:
        """Stop the worker.

        Args:
            wait: Let already-scheduled items finish before stopping.
            timeout: Upper bound on the wait.
        """
        if wait:
            self.wait_idle(timeout)
        with self._cond:
            self._running = False
            self._cond.notify_all()
        if self._worker and not self.on_worker_thread():
            self._worker.join(timeout=2.0)

    def _run(self) -> None:
        while True:
            with self._cond:
                while self._running:
                    if not self._heap:
                        self._cond.wait()
                        continue
                    wait_for = self._heap[0][0] - time.monotonic()
                    if wait_for <= 0:
                        break
                    self._cond.wait(wait_for)
                if not self._running:
                    return
                _, _, fn = heapq.heappop(self._heap)
                self._busy = True

            try:
                fn()
            except Exception as e:
                logger.exception(f"Work item failed: {e}")
            finally:
                with self._cond:
                    self._busy = False
                    self._cond.notify_all()
