"""Ingest Pipeline component for orchestrating screenshot placement."""

import logging
import os
import shutil
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from .classifier import CaptureClassifier, Classification
from .config import SettingsStore
from .metadata import ProvenanceMetadata, ProvenanceMetadataCodec
from .organizer import DestinationResolver, file_capture_date, unique_destination
from .scheduler import SerialQueue
from .status import MovedFile, StatusBoard
from .system import Notifier
from .validator import ImageSignatureValidator
from .watcher import CaptureEvent

logger = logging.getLogger(__name__)


class FileState(Enum):
    """Where a file is in the ingest state machine."""
    DETECTED = "detected"
    STABILITY_CHECK = "stability_check"
    CLASSIFICATION_CAPTURED = "classification_captured"
    DELAYED = "delayed"
    MOVED = "moved"
    METADATA_WRITTEN = "metadata_written"
    NOTIFIED = "notified"
    # Terminal failures
    SKIPPED = "skipped"
    ABANDONED = "abandoned"
    SOURCE_VANISHED = "source_vanished"
    FAILED = "failed"


@dataclass
class PipelineTimings:
    """Delays used by the ingest pipeline, in seconds."""
    stability_interval: float = 0.2
    retry_delay: float = 0.5
    max_retries: int = 3
    quick_delay: float = 1.0
    safe_delay: float = 4.0
    placed_grace: float = 30.0


class IngestPipeline:
    """Move finished screenshots into the organized tree.

    All work runs on a SerialQueue. Waits are scheduled as delayed work
    items, so files waiting on their own timers never hold up each other.
    """

    def __init__(
        self,
        settings: SettingsStore,
        work_queue: SerialQueue,
        classifier: CaptureClassifier,
        resolver: DestinationResolver,
        codec: ProvenanceMetadataCodec,
        notifier: Notifier,
        status: StatusBoard | None = None,
        validator: ImageSignatureValidator | None = None,
        timings: PipelineTimings | None = None,
        on_complete: Optional[Callable[[Path, FileState], None]] = None,
    ) -> None:
        """Initialize ingest pipeline.

        Args:
            settings: Source of configuration and policy snapshots.
            work_queue: Serial queue that owns all processing.
            classifier: Capture classifier.
            resolver: Destination resolver.
            codec: Provenance metadata codec.
            notifier: User notification collaborator.
            status: Status board updated after each move.
            validator: Image signature validator.
            timings: Delay configuration.
            on_complete: Called with the final state of every file.
        """
        self._settings = settings
        self._queue = work_queue
        self._classifier = classifier
        self._resolver = resolver
        self._codec = codec
        self._notifier = notifier
        self._status = status
        self._validator = validator or ImageSignatureValidator()
        self._timings = timings or PipelineTimings()
        self._on_complete = on_complete

        # Only touched from the queue worker
        self._pending: set[str] = set()
        self._checking: set[str] = set()
        self._placed: dict[str, float] = {}

    def submit(self, item: CaptureEvent | Path | str) -> None:
        """Hand a detected file to the pipeline without blocking."""
        path = Path(item.path if isinstance(item, CaptureEvent) else item)
        self._queue.submit(lambda: self._detected(path))

    def process_existing(self, directories: list[Path]) -> int:
        """Submit files already sitting in the given directories.

        Args:
            directories: Directories to sweep (non-recursively).

        Returns:
            Number of files submitted.
        """
        count = 0
        for directory in directories:
            directory = Path(directory)
            try:
                entries = sorted(directory.iterdir())
            except OSError as e:
                logger.warning(f"Failed to read directory contents for {directory}: {e}")
                continue

            logger.info(f"Processing existing files in: {directory}")
            for filepath in entries:
                if filepath.name.startswith('.') or not filepath.is_file():
                    continue
                self.submit(filepath)
                count += 1
        return count

    def mark_placed(self, path: Path) -> None:
        """Remember a path the tool itself just wrote so its events are ignored."""
        self._placed[str(path)] = time.monotonic()

    # Detected

    def _detected(self, path: Path) -> None:
        filename = path.name
        self._transition(path, FileState.DETECTED)

        if filename in self._pending or filename in self._checking:
            logger.debug(f"Skipping {filename} - already being processed")
            return

        policy = self._settings.read_current_policy()
        if not policy.matches_prefix(filename):
            logger.debug(f"Skipping {filename} - doesn't match prefixes")
            self._finish(path, FileState.SKIPPED)
            return

        if self._recently_placed(path):
            logger.debug(f"Skipping {filename} - placed by us")
            self._finish(path, FileState.SKIPPED)
            return

        if not path.exists():
            logger.debug(f"Skipping {filename} - file doesn't exist")
            self._finish(path, FileState.SOURCE_VANISHED)
            return

        if self._already_organized(path):
            logger.debug(f"Skipping {filename} - already organized")
            self._finish(path, FileState.SKIPPED)
            return

        self._checking.add(filename)
        self._begin_stability_check(path, 0)

    # StabilityCheck

    def _begin_stability_check(self, path: Path, attempt: int) -> None:
        self._transition(path, FileState.STABILITY_CHECK)
        first_size = self._file_size(path)
        self._queue.submit_after(
            self._timings.stability_interval,
            lambda: self._finish_stability_check(path, attempt, first_size),
        )

    def _finish_stability_check(self, path: Path, attempt: int, first_size: Optional[int]) -> None:
        second_size = self._file_size(path)

        if second_size is None and not path.exists():
            logger.info(f"{path.name} disappeared before it could be moved")
            self._checking.discard(path.name)
            self._finish(path, FileState.SOURCE_VANISHED)
            return

        if first_size is None or first_size != second_size or first_size <= 0:
            self._retry(path, attempt, "not stable yet")
            return

        if not self._validator.is_valid_image(path):
            self._retry(path, attempt, "failed validation")
            return

        self._checking.discard(path.name)
        self._capture_classification(path)

    def _retry(self, path: Path, attempt: int, reason: str) -> None:
        max_retries = self._timings.max_retries
        if attempt < max_retries:
            logger.debug(f"File {path.name} {reason}, retry {attempt + 1}/{max_retries}")
            self._queue.submit_after(
                self._timings.retry_delay,
                lambda: self._begin_stability_check(path, attempt + 1),
            )
            return

        logger.info(f"Giving up on {path.name}: {reason} after {max_retries} retries")
        self._checking.discard(path.name)
        self._finish(path, FileState.ABANDONED)

    # ClassificationCaptured / Delayed

    def _capture_classification(self, path: Path) -> None:
        self._pending.add(path.name)

        # Frontmost app must be read now; it may change during the delay
        app_name = self._classifier.capture_app_name()
        self._transition(path, FileState.CLASSIFICATION_CAPTURED)
        logger.info(f"Processing {path.name} (app: {app_name or 'unknown'})")

        config = self._settings.config
        delay = self._timings.quick_delay if config.quick_move else self._timings.safe_delay
        self._transition(path, FileState.DELAYED)
        self._queue.submit_after(delay, lambda: self._move(path, app_name))

    # Moved

    def _move(self, path: Path, app_name: Optional[str]) -> None:
        original_name = path.name
        try:
            if not path.exists():
                logger.info(f"Source file no longer exists: {original_name}")
                self._finish(path, FileState.SOURCE_VANISHED)
                return

            config = self._settings.config
            policy = self._settings.read_current_policy()
            capture_date = file_capture_date(path)
            classification = Classification(
                app_name=app_name,
                visual_type=self._classifier.visual_type(path),
            )

            folder = self._resolver.folder_for(config.destination_dir, capture_date, classification, policy)
            # Sorted files keep their name across sweeps of the destination
            in_place = (
                self._same_directory(folder, path.parent)
                and self._resolver.matches_naming(original_name, capture_date, policy)
            )

            if in_place:
                destination = path
                logger.debug(f"{original_name} is already in place")
            else:
                folder = self._resolver.resolve(config.destination_dir, capture_date, classification, policy)
                new_name = self._resolver.generate_filename(original_name, capture_date, policy)
                destination = unique_destination(folder, new_name)
                shutil.move(str(path), str(destination))
                logger.info(f"Moved: {original_name} -> {destination}")
        except OSError as e:
            logger.error(f"Failed to move {original_name}: {e}")
            self._finish(path, FileState.FAILED)
            return
        finally:
            self._pending.discard(original_name)

        self.mark_placed(destination)
        self._transition(destination, FileState.MOVED)

        if not in_place and self._status is not None:
            self._status.record_moved(MovedFile(original_name=original_name, destination_path=str(destination)))

        metadata = ProvenanceMetadata(
            app_name=classification.app_name,
            visual_type=classification.visual_type.value,
            capture_date=capture_date,
        )
        self._queue.submit(
            lambda: self._write_metadata(destination, metadata, original_name, notify=not in_place)
        )

    # MetadataWritten / Notified

    def _write_metadata(self, destination: Path, metadata: ProvenanceMetadata, original_name: str, notify: bool) -> None:
        if self._codec.supports(destination):
            if self._codec.write(metadata, destination):
                self.mark_placed(destination)
                self._transition(destination, FileState.METADATA_WRITTEN)
            else:
                logger.warning(f"Metadata not written for {destination.name}; move kept")

        if notify and self._settings.config.show_notifications:
            try:
                self._notifier.notify_user("Screenshot Organized", f"{original_name} → {destination.name}")
            except Exception as e:
                logger.debug(f"Notification failed: {e}")

        self._finish(destination, FileState.NOTIFIED)

    # Helpers

    def _transition(self, path: Path, state: FileState) -> None:
        logger.debug(f"{path.name}: {state.value}")

    def _finish(self, path: Path, state: FileState) -> None:
        self._transition(path, state)
        if self._on_complete is not None:
            try:
                self._on_complete(path, state)
            except Exception as e:
                logger.warning(f"Completion hook failed: {e}")

    def _recently_placed(self, path: Path) -> bool:
        now = time.monotonic()
        grace = self._timings.placed_grace
        for key, placed_at in list(self._placed.items()):
            if now - placed_at > grace:
                del self._placed[key]
        return str(path) in self._placed

    def _already_organized(self, path: Path) -> bool:
        destination_root = self._settings.config.destination_dir
        try:
            path.resolve().relative_to(Path(destination_root).resolve())
        except (ValueError, OSError):
            return False
        return self._codec.read(path) is not None

    @staticmethod
    def _same_directory(a: Path, b: Path) -> bool:
        try:
            return os.path.samefile(a, b)
        except OSError:
            return Path(a).absolute() == Path(b).absolute()

    @staticmethod
    def _file_size(path: Path) -> Optional[int]:
        try:
            return path.stat().st_size
        except OSError:
            return None
