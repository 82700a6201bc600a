"""Screenshot service wiring the watcher, pipeline and reorganizer together."""

import logging
import threading
from concurrent.futures import Future
from pathlib import Path
from typing import Callable, Optional

from .classifier import CaptureClassifier
from .config import OrganizationPolicy, SettingsStore
from .metadata import ProvenanceMetadataCodec
from .organizer import DestinationResolver
from .pipeline import FileState, IngestPipeline, PipelineTimings
from .reorganizer import BulkReorganizer
from .scheduler import SerialQueue
from .status import StatusBoard, WatchStatus
from .system import Notifier, SystemProbe
from .validator import ImageSignatureValidator
from .watcher import DirectoryChangeMonitor

logger = logging.getLogger(__name__)


class ScreenshotService:
    """Own the long-lived components and expose the control surface."""

    def __init__(
        self,
        settings: SettingsStore,
        probe: SystemProbe | None = None,
        notifier: Notifier | None = None,
        timings: PipelineTimings | None = None,
        pipeline_hook: Optional[Callable[[Path, FileState], None]] = None,
    ) -> None:
        """Initialize screenshot service.

        Args:
            settings: Settings store holding the live configuration.
            probe: Frontmost app and display collaborator.
            notifier: User notification collaborator.
            timings: Pipeline delays.
            pipeline_hook: Optional ``on_complete`` hook for the pipeline.
        """
        self._settings = settings
        config = settings.config

        self.queue = SerialQueue()
        self.status = StatusBoard()
        self.validator = ImageSignatureValidator()
        self.codec = ProvenanceMetadataCodec()
        self.notifier = notifier or Notifier()
        self.resolver = DestinationResolver(persist_counter=settings.persist_sequential_counter)
        self.classifier = CaptureClassifier(probe or SystemProbe(config.displays))
        self.pipeline = IngestPipeline(
            settings=settings,
            work_queue=self.queue,
            classifier=self.classifier,
            resolver=self.resolver,
            codec=self.codec,
            notifier=self.notifier,
            status=self.status,
            validator=self.validator,
            timings=timings,
            on_complete=pipeline_hook,
        )
        self.reorganizer = BulkReorganizer(
            resolver=self.resolver,
            codec=self.codec,
            validator=self.validator,
            on_moved=lambda old, new: self.pipeline.mark_placed(new),
        )

        self._monitor: Optional[DirectoryChangeMonitor] = None
        self._forwarder: threading.Thread | None = None
        self.queue.start()

    def snapshot(self) -> WatchStatus:
        """Current watch status."""
        return self.status.snapshot()

    def start_watching(self, paths: list[Path] | None = None, process_existing: bool = True) -> None:
        """Start monitoring folders. Starting twice is a no-op.

        Args:
            paths: Folders to watch; defaults to the configured ones.
            process_existing: Also submit files already in those folders.
        """
        if self._monitor is not None:
            return

        config = self._settings.config
        directories = [Path(p) for p in paths] if paths else config.watched_dirs
        try:
            config.destination_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.warning(f"Cannot create destination folder {config.destination_dir}: {e}")

        monitor = DirectoryChangeMonitor(directories)
        monitor.start()
        if not monitor.is_running:
            return

        self._monitor = monitor
        self._forwarder = threading.Thread(
            target=self._forward_events, args=(monitor,), name="shotsort-events", daemon=True
        )
        self._forwarder.start()
        self.status.set_watching(True)
        logger.info(f"Destination folder: {config.destination_dir}")

        if process_existing:
            self.pipeline.process_existing(monitor.watched_directories)

    def stop_watching(self) -> None:
        """Stop new detections; work already scheduled is allowed to finish."""
        monitor = self._monitor
        if monitor is None:
            return
        self._monitor = None
        monitor.stop()
        if self._forwarder:
            self._forwarder.join(timeout=2.0)
            self._forwarder = None
        self.status.set_watching(False)

    def scan(self, paths: list[Path] | None = None, timeout: float | None = None) -> int:
        """Push files already in the watched folders through the pipeline once.

        Returns:
            Number of files submitted.
        """
        directories = [Path(p) for p in paths] if paths else self._settings.config.watched_dirs
        count = self.pipeline.process_existing(directories)
        self.queue.wait_idle(timeout)
        return count

    def reorganize_now(self, policy: OrganizationPolicy | None = None, timeout: float | None = None) -> int:
        """Re-sort the destination tree on the processing queue and wait.

        Args:
            policy: Policy to apply; defaults to the current one.
            timeout: Maximum seconds to wait for the result.

        Returns:
            Number of files moved.
        """
        return self.schedule_reorganize(policy).result(timeout=timeout)

    def schedule_reorganize(self, policy: OrganizationPolicy | None = None) -> Future:
        """Queue a reorganization and return a Future for the moved count."""
        future: Future = Future()
        root = self._settings.config.destination_dir

        def run() -> None:
            if not future.set_running_or_notify_cancel():
                return
            try:
                snapshot = policy or self._settings.read_current_policy()
                count = self.reorganizer.reorganize(root, snapshot)
            except Exception as e:
                future.set_exception(e)
                return
            if count:
                self.status.record_reorganized(count)
                self._announce_reorganized(count)
            future.set_result(count)

        if self.queue.on_worker_thread():
            run()
        else:
            self.queue.submit(run)
        return future

    def update_policy(self, policy: OrganizationPolicy) -> Optional[Future]:
        """Apply a new policy; schedules a reorganization if files must move."""
        if self._settings.update_policy(policy):
            return self.schedule_reorganize()
        return None

    def close(self) -> None:
        """Stop watching, drain the queue and release threads."""
        self.stop_watching()
        self.queue.shutdown(wait=True)
        self.status.close()

    def _forward_events(self, monitor: DirectoryChangeMonitor) -> None:
        for event in monitor.events():
            self.pipeline.submit(event)

    def _announce_reorganized(self, count: int) -> None:
        if not self._settings.config.show_notifications:
            return
        body = f"{count} file{'' if count == 1 else 's'} moved into the current layout"
        try:
            self.notifier.notify_user("Screenshots Reorganized", body)
        except Exception as e:
            logger.debug(f"Notification failed: {e}")
