"""Bulk Reorganizer component for re-sorting an organized tree."""

import logging
import re
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from .classifier import Classification, VisualType
from .config import OrganizationPolicy
from .metadata import ProvenanceMetadataCodec
from .organizer import DestinationResolver, file_capture_date, unique_destination
from .validator import ImageSignatureValidator

logger = logging.getLogger(__name__)

_DATE_SEGMENT_PATTERNS = (
    re.compile(r'^\d{4}$'),
    re.compile(r'^\d{2}$'),
    re.compile(r'^\d{4}-\d{2}-\d{2}$'),
)


def is_date_segment(segment: str) -> bool:
    """Check whether a folder name looks like part of a date layout."""
    return any(pattern.match(segment) for pattern in _DATE_SEGMENT_PATTERNS)


@dataclass
class PlacementInfo:
    """What is known about an organized file."""
    classification: Classification
    capture_date: datetime
    from_metadata: bool


class BulkReorganizer:
    """Move already-organized files to where the current policy puts them."""

    def __init__(
        self,
        resolver: DestinationResolver,
        codec: ProvenanceMetadataCodec,
        validator: ImageSignatureValidator | None = None,
        on_moved: Optional[Callable[[Path, Path], None]] = None,
    ) -> None:
        """Initialize bulk reorganizer.

        Args:
            resolver: Destination resolver shared with the ingest pipeline.
            codec: Provenance metadata codec.
            validator: Image signature validator.
            on_moved: Called with (old_path, new_path) after each move.
        """
        self._resolver = resolver
        self._codec = codec
        self._validator = validator or ImageSignatureValidator()
        self._on_moved = on_moved

    def reorganize(self, root: Path, policy: OrganizationPolicy) -> int:
        """Re-sort every image under ``root`` according to ``policy``.

        Safe to interrupt and re-run; a tree that is already sorted is left
        alone.

        Args:
            root: Destination root.
            policy: Organization policy snapshot.

        Returns:
            Number of files moved.
        """
        root = Path(root)
        if not root.is_dir():
            logger.warning(f"Destination folder does not exist: {root}")
            return 0

        moved = 0
        for filepath in self.find_images(root):
            try:
                if self._relocate(root, filepath, policy):
                    moved += 1
            except OSError as e:
                logger.error(f"Failed to reorganize {filepath}: {e}")

        removed = self.prune_empty_directories(root)
        logger.info(f"Reorganized {moved} file(s), removed {removed} empty folder(s)")
        return moved

    def find_images(self, root: Path) -> list[Path]:
        """List validated, non-hidden image files under ``root``."""
        images = []
        for filepath in sorted(Path(root).rglob('*')):
            relative = filepath.relative_to(root)
            if any(part.startswith('.') for part in relative.parts):
                continue
            if filepath.is_file() and self._validator.is_valid_image(filepath):
                images.append(filepath)
        return images

    def placement_for(self, root: Path, filepath: Path) -> PlacementInfo:
        """Work out a file's classification and capture date.

        Embedded metadata wins; otherwise the current folder path is read
        back with :meth:`infer_classification`.
        """
        metadata = self._codec.read(filepath)
        if metadata is not None:
            return PlacementInfo(
                classification=Classification(
                    app_name=metadata.app_name,
                    visual_type=VisualType.from_value(metadata.visual_type),
                ),
                capture_date=metadata.capture_date,
                from_metadata=True,
            )

        return PlacementInfo(
            classification=self.infer_classification(root, filepath),
            capture_date=file_capture_date(filepath),
            from_metadata=False,
        )

    def infer_classification(self, root: Path, filepath: Path) -> Classification:
        """Guess classification from folder names for files without metadata.

        Date-shaped segments and type folder names are recognised; the first
        remaining segment is taken as the app folder. This is a heuristic:
        an app whose folder name looks like a date or a type folder cannot be
        told apart from those levels.
        """
        segments = Path(filepath).parent.relative_to(root).parts

        app_name = None
        visual_type = VisualType.UNKNOWN
        for segment in segments:
            if is_date_segment(segment):
                continue
            folder_type = VisualType.from_folder_name(segment)
            if folder_type is not None:
                if visual_type is VisualType.UNKNOWN:
                    visual_type = folder_type
                continue
            if app_name is None:
                app_name = segment

        return Classification(app_name=app_name, visual_type=visual_type)

    def prune_empty_directories(self, root: Path) -> int:
        """Delete empty directories below ``root`` (never ``root`` itself).

        Returns:
            Number of directories removed.
        """
        root = Path(root)
        removed = 0
        directories = sorted(
            (p for p in root.rglob('*') if p.is_dir() and not p.is_symlink()),
            key=lambda p: len(p.parts),
            reverse=True,
        )
        for directory in directories:
            try:
                next(directory.iterdir())
            except StopIteration:
                try:
                    directory.rmdir()
                    removed += 1
                    logger.debug(f"Removed empty folder: {directory}")
                except OSError as e:
                    logger.warning(f"Could not remove {directory}: {e}")
            except OSError as e:
                logger.warning(f"Could not list {directory}: {e}")
        return removed

    def _relocate(self, root: Path, filepath: Path, policy: OrganizationPolicy) -> bool:
        info = self.placement_for(root, filepath)
        target_folder = self._resolver.folder_for(root, info.capture_date, info.classification, policy)

        if target_folder == filepath.parent:
            return False

        target_folder.mkdir(parents=True, exist_ok=True)
        destination = unique_destination(target_folder, filepath.name)
        shutil.move(str(filepath), str(destination))
        logger.info(f"Reorganized: {filepath.relative_to(root)} -> {destination.relative_to(root)}")

        if self._on_moved is not None:
            self._on_moved(filepath, destination)
        return True
