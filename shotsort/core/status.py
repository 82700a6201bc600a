"""Watch status published to display code as immutable snapshots."""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MovedFile:
    """A screenshot that was placed into the organized tree."""
    original_name: str
    destination_path: str
    moved_at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class WatchStatus:
    """Point-in-time view of the service state."""
    is_watching: bool = False
    moved_count: int = 0
    recent_files: tuple[MovedFile, ...] = ()

    @property
    def last_moved(self) -> Optional[MovedFile]:
        return self.recent_files[0] if self.recent_files else None


class StatusBoard:
    """Hold the current WatchStatus and apply every change on one thread.

    Mutations are handed to a single designated thread, so readers only
    ever see whole snapshots.
    """

    MAX_RECENT_FILES: int = 10

    def __init__(self, dispatcher: ThreadPoolExecutor | None = None) -> None:
        """Initialize status board.

        Args:
            dispatcher: Executor standing in for the display thread. A
                private single-thread executor is created if None.
        """
        self._owns_dispatcher = dispatcher is None
        self._dispatcher = dispatcher or ThreadPoolExecutor(max_workers=1, thread_name_prefix="shotsort-status")
        self._status = WatchStatus()
        self._lock = threading.Lock()
        self._listeners: list[Callable[[WatchStatus], None]] = []

    def snapshot(self) -> WatchStatus:
        """Get the current status."""
        with self._lock:
            return self._status

    def subscribe(self, listener: Callable[[WatchStatus], None]) -> None:
        """Register a callback invoked on the status thread after each change."""
        self._listeners.append(listener)

    def set_watching(self, is_watching: bool) -> Future:
        return self._dispatch(lambda status: replace(status, is_watching=is_watching))

    def record_moved(self, moved: MovedFile) -> Future:
        def apply(status: WatchStatus) -> WatchStatus:
            recent = (moved,) + status.recent_files
            return replace(
                status,
                moved_count=status.moved_count + 1,
                recent_files=recent[:self.MAX_RECENT_FILES],
            )
        return self._dispatch(apply)

    def record_reorganized(self, count: int) -> Future:
        return self._dispatch(lambda status: replace(status, moved_count=status.moved_count + count))

    def close(self) -> None:
        if self._owns_dispatcher:
            self._dispatcher.shutdown(wait=True)

    def _dispatch(self, update: Callable[[WatchStatus], WatchStatus]) -> Future:
        return self._dispatcher.submit(self._apply, update)

    def _apply(self, update: Callable[[WatchStatus], WatchStatus]) -> WatchStatus:
        with self._lock:
            self._status = update(self._status)
            status = self._status
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception as e:
                logger.warning(f"Status listener failed: {e}")
        return status
