"""Directory Change Monitor component for watching capture folders."""

import logging
import os
import queue
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CaptureEvent:
    """A file that may be a finished screenshot."""
    path: Path
    kind: str  # 'created', 'modified' or 'renamed'
    detected_at: datetime = field(default_factory=datetime.now)


class DirectoryChangeMonitor(FileSystemEventHandler):
    """Watch directories and publish debounced capture events.

    Raw filesystem notifications are coalesced per path until
    ``DEBOUNCE_WINDOW`` seconds pass without a new event, then published
    as CaptureEvent values on an internal queue that consumers read with
    :meth:`get_event` or :meth:`events`.
    """

    DEBOUNCE_WINDOW: float = 0.5  # seconds
    POLL_INTERVAL: float = 0.1

    def __init__(self, directories: list[Path] | None = None) -> None:
        """Initialize directory change monitor.

        Args:
            directories: Directories to watch (non-recursively).
        """
        super().__init__()
        self._directories = [Path(d) for d in directories or []]
        self._pending: dict[str, tuple[float, str]] = {}  # path -> (last_seen, kind)
        self._events: queue.Queue[CaptureEvent] = queue.Queue()
        self._lock = threading.Lock()
        self._running = False
        self._observer: Optional[Observer] = None
        self._debounce_thread: threading.Thread | None = None
        self._watched: list[Path] = []
        self._reported_failures: set[str] = set()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def watched_directories(self) -> list[Path]:
        """Directories that were attached successfully."""
        return list(self._watched)

    def start(self) -> None:
        """Attach to every directory and start the debounce worker.

        Directories that are missing or cannot be watched are reported once
        and skipped. Starting twice is a no-op.
        """
        if self._running:
            return

        observer = Observer()
        self._watched = []
        for directory in self._directories:
            if not directory.is_dir():
                self._report_failure(directory, "directory does not exist")
                continue
            try:
                observer.schedule(self, str(directory), recursive=False)
            except OSError as e:
                self._report_failure(directory, str(e))
                continue
            self._watched.append(directory)
            logger.info(f"Monitoring: {directory}")

        try:
            observer.start()
        except OSError as e:
            logger.error(f"Could not start filesystem observer: {e}")
            return

        self._observer = observer
        self._running = True
        self._debounce_thread = threading.Thread(
            target=self._debounce_worker, name="shotsort-debounce", daemon=True
        )
        self._debounce_thread.start()

    def stop(self) -> None:
        """Stop watching. Stopping an unstarted monitor is a no-op."""
        if not self._running:
            return

        self._running = False
        if self._observer:
            self._observer.stop()
            self._observer.join(timeout=5.0)
            self._observer = None
        if self._debounce_thread:
            self._debounce_thread.join(timeout=2.0)
            self._debounce_thread = None

    def on_created(self, event: FileSystemEvent) -> None:
        """Handle file creation event.

        Args:
            event: File system event from watchdog.
        """
        if not event.is_directory:
            self._note(os.fsdecode(event.src_path), 'created')

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._note(os.fsdecode(event.src_path), 'modified')

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._note(os.fsdecode(event.dest_path), 'renamed')

    def get_event(self, timeout: float | None = None) -> Optional[CaptureEvent]:
        """Take the next capture event, or None if none arrives in time."""
        try:
            return self._events.get(timeout=timeout)
        except queue.Empty:
            return None

    def events(self, poll_interval: float = 0.25) -> Iterator[CaptureEvent]:
        """Iterate over capture events while the monitor is running."""
        while self._running or not self._events.empty():
            event = self.get_event(timeout=poll_interval)
            if event is not None:
                yield event

    def get_pending_count(self) -> int:
        """Get count of paths still inside the debounce window."""
        with self._lock:
            return len(self._pending)

    def flush(self, now: float | None = None) -> list[CaptureEvent]:
        """Publish every pending path whose debounce window has elapsed.

        Args:
            now: Current time; defaults to ``time.time()``.

        Returns:
            The events published by this call.
        """
        current_time = time.time() if now is None else now
        released: list[tuple[str, str]] = []

        with self._lock:
            for filepath, (last_seen, kind) in list(self._pending.items()):
                if current_time - last_seen >= self.DEBOUNCE_WINDOW:
                    del self._pending[filepath]
                    released.append((filepath, kind))

        published = []
        for filepath, kind in released:
            # Only regular files are surfaced; vanished paths are dropped
            if not os.path.isfile(filepath):
                continue
            capture = CaptureEvent(path=Path(filepath), kind=kind)
            self._events.put(capture)
            published.append(capture)
            logger.debug(f"Capture event: {kind} {filepath}")
        return published

    def _note(self, filepath: str, kind: str) -> None:
        if self._is_temporary_file(Path(filepath).name):
            return
        with self._lock:
            previous = self._pending.get(filepath)
            if previous is None:
                logger.debug(f"Detected file event: {filepath}")
            # The window restarts on every event; the first kind is kept
            self._pending[filepath] = (time.time(), previous[1] if previous else kind)

    def _is_temporary_file(self, filename: str) -> bool:
        """Check if filename indicates a temporary file.

        Args:
            filename: Name of the file.

        Returns:
            True if file should be ignored.
        """
        return filename.startswith('~') or filename.startswith('.')

    def _report_failure(self, directory: Path, reason: str) -> None:
        key = str(directory)
        if key in self._reported_failures:
            return
        self._reported_failures.add(key)
        logger.warning(f"Cannot watch {directory}: {reason}")

    def _debounce_worker(self) -> None:
        """Worker thread that releases pending paths after the debounce window."""
        while self._running:
            try:
                self.flush()
            except Exception as e:
                logger.error(f"Debounce pass failed: {e}")
            time.sleep(self.POLL_INTERVAL)
