"""Destination Resolver component for folder layout and filename generation."""

import logging
import os
import re
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from .classifier import Classification, VisualType
from .config import NamingMode, OrganizationPolicy

logger = logging.getLogger(__name__)

_FOLDER_HOSTILE = re.compile(r'[:/\\?%*|"<>]')


def sanitize_folder_name(name: str) -> str:
    """Strip path-hostile characters and surrounding whitespace.

    Args:
        name: Raw name, e.g. an application name.

    Returns:
        A name safe to use as a single folder component (may be empty).
    """
    cleaned = _FOLDER_HOSTILE.sub('', name).strip()
    if cleaned in ('.', '..'):
        return ''
    return cleaned


def unique_destination(folder: Path, filename: str) -> Path:
    """Pick a free path in ``folder``, appending ``_1``, ``_2``... to the stem.

    Args:
        folder: Target directory.
        filename: Desired filename.

    Returns:
        A path in ``folder`` that does not exist yet.
    """
    candidate = Path(folder) / filename
    if not candidate.exists():
        return candidate

    stem = candidate.stem
    suffix = candidate.suffix
    counter = 1
    while True:
        candidate = Path(folder) / f"{stem}_{counter}{suffix}"
        if not candidate.exists():
            return candidate
        counter += 1


def file_capture_date(path: Path | str) -> datetime:
    """Best guess at when a file was captured: birth time, else mtime."""
    try:
        stat = os.stat(path)
    except OSError:
        return datetime.now()
    timestamp = getattr(stat, 'st_birthtime', None) or stat.st_mtime
    return datetime.fromtimestamp(timestamp)


class DestinationResolver:
    """Compose destination folders and filenames from an organization policy."""

    TIMESTAMP_FORMAT: str = "%Y-%m-%d_%H%M%S"

    def __init__(self, persist_counter: Optional[Callable[[int], None]] = None) -> None:
        """Initialize destination resolver.

        Args:
            persist_counter: Called with the new sequential counter each time
                a sequential name is generated.
        """
        self._persist_counter = persist_counter

    def folder_for(
        self,
        base_folder: Path,
        date: datetime,
        classification: Classification,
        policy: OrganizationPolicy
    ) -> Path:
        """Compute the destination folder without touching the filesystem.

        Layout is base/[app]/[type]/[date], each level optional.

        Args:
            base_folder: Root of the organized tree.
            date: Capture timestamp.
            classification: App name and visual type of the capture.
            policy: Organization policy snapshot.

        Returns:
            Absolute folder path.
        """
        folder = Path(base_folder)

        app_name = classification.app_name
        if policy.app_sorting_enabled and app_name and not policy.is_app_blacklisted(app_name):
            app_folder = sanitize_folder_name(app_name)
            if app_folder:
                folder = folder / app_folder

        if policy.type_sorting_enabled and classification.visual_type is not VisualType.UNKNOWN:
            folder = folder / classification.visual_type.folder_name

        subpath = policy.date_folder_mode.subpath(date)
        if subpath:
            folder = folder / subpath

        return folder

    def resolve(
        self,
        base_folder: Path,
        date: datetime,
        classification: Classification,
        policy: OrganizationPolicy
    ) -> Path:
        """Compute the destination folder and make sure it exists.

        Raises:
            OSError: If the folder cannot be created.
        """
        folder = self.folder_for(base_folder, date, classification, policy)
        folder.mkdir(parents=True, exist_ok=True)
        return folder

    def generate_filename(self, original: str, date: datetime, policy: OrganizationPolicy) -> str:
        """Generate the new filename for a capture.

        Sequential mode bumps ``policy.sequential_counter`` and persists it
        before returning. Collisions are left to the caller.

        Args:
            original: Original filename.
            date: Capture timestamp.
            policy: Organization policy snapshot.

        Returns:
            Generated filename string.
        """
        ext = Path(original).suffix

        if policy.naming_mode is NamingMode.COMPACT:
            return f"{date.strftime(self.TIMESTAMP_FORMAT)}{ext}"

        if policy.naming_mode is NamingMode.SEQUENTIAL:
            policy.sequential_counter += 1
            if self._persist_counter is not None:
                self._persist_counter(policy.sequential_counter)
            return f"{policy.custom_prefix}_{policy.sequential_counter:03d}{ext}"

        if policy.naming_mode is NamingMode.CUSTOM:
            return f"{policy.custom_prefix}_{date.strftime(self.TIMESTAMP_FORMAT)}{ext}"

        return original

    def matches_naming(self, filename: str, date: datetime, policy: OrganizationPolicy) -> bool:
        """Check whether a filename already has the shape the policy produces.

        A ``_N`` collision suffix is accepted. Sequential names match on
        shape only, so checking never consumes a counter value.

        Args:
            filename: Current filename.
            date: Capture timestamp.
            policy: Organization policy snapshot.

        Returns:
            True if renaming the file would not change its naming scheme.
        """
        if policy.naming_mode is NamingMode.ORIGINAL:
            return True

        path = Path(filename)
        if policy.naming_mode is NamingMode.SEQUENTIAL:
            expected = re.escape(policy.custom_prefix) + r'_\d{3,}'
        else:
            expected = re.escape(Path(self.generate_filename(filename, date, policy)).stem)
        return re.fullmatch(expected + r'(_\d+)?', path.stem) is not None
