"""Capture Classifier component for screenshot attribution and visual type."""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from PIL import Image, UnidentifiedImageError

from .system import SystemProbe

logger = logging.getLogger(__name__)


class VisualType(Enum):
    """What kind of capture produced an image."""
    FULL_SCREEN = "Full Screen"
    WINDOW = "Window"
    SELECTION = "Selection"
    RECORDING = "Recording"
    UNKNOWN = "Unknown"

    @property
    def folder_name(self) -> str:
        """Name of the subfolder used when sorting by type."""
        return _FOLDER_NAMES[self]

    @classmethod
    def from_value(cls, value: Optional[str]) -> "VisualType":
        """Parse a stored type string, falling back to UNKNOWN."""
        if not value:
            return cls.UNKNOWN
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN

    @classmethod
    def from_folder_name(cls, name: str) -> Optional["VisualType"]:
        """Reverse lookup of :attr:`folder_name`."""
        for member, folder in _FOLDER_NAMES.items():
            if folder == name:
                return member
        return None


_FOLDER_NAMES: dict[VisualType, str] = {
    VisualType.FULL_SCREEN: "Full Screen",
    VisualType.WINDOW: "Windows",
    VisualType.SELECTION: "Selections",
    VisualType.RECORDING: "Recordings",
    VisualType.UNKNOWN: "Other",
}


@dataclass
class Classification:
    """Result of classifying a capture."""
    app_name: Optional[str] = None
    visual_type: VisualType = VisualType.UNKNOWN


class CaptureClassifier:
    """Attribute screenshots to an application and a capture type."""

    RECORDING_MARKER: str = "screen recording"
    VIDEO_EXTENSIONS: set[str] = {'.mov', '.mp4'}
    SIZE_TOLERANCE: int = 10  # pixels
    MIN_WINDOW_WIDTH: int = 400
    MAX_WINDOW_WIDTH: int = 2500
    MIN_ASPECT_RATIO: float = 0.5
    MAX_ASPECT_RATIO: float = 3.0
    ALPHA_MODES: set[str] = {'RGBA', 'LA', 'PA', 'RGBa', 'La'}

    def __init__(self, probe: SystemProbe) -> None:
        """Initialize capture classifier.

        Args:
            probe: Source of frontmost application and display information.
        """
        self._probe = probe

    def capture_app_name(self) -> Optional[str]:
        """Ask for the frontmost application right now.

        Must be called as soon as a capture is detected; the frontmost
        application can change while the file waits to be moved.
        """
        try:
            name = self._probe.get_frontmost_application_name()
        except Exception as e:
            logger.warning(f"Frontmost application lookup failed: {e}")
            return None
        if name is not None:
            name = name.strip() or None
        return name

    def visual_type(self, path: Path | str) -> VisualType:
        """Detect the capture type from the filename and image header.

        Rules are applied in order and the first match wins: recording,
        undecodable, full screen, window, selection.

        Args:
            path: Path to the capture.

        Returns:
            The detected VisualType.
        """
        path = Path(path)

        if self.RECORDING_MARKER in path.name.lower() or path.suffix.lower() in self.VIDEO_EXTENSIONS:
            return VisualType.RECORDING

        header = self._read_header(path)
        if header is None:
            return VisualType.UNKNOWN

        (width, height), has_alpha = header

        try:
            displays = self._probe.list_connected_display_pixel_sizes()
        except Exception as e:
            logger.warning(f"Display query failed: {e}")
            displays = []

        for display in displays:
            if self._matches_display((width, height), display):
                return VisualType.FULL_SCREEN

        if has_alpha or self._is_window_shaped(width, height):
            return VisualType.WINDOW

        return VisualType.SELECTION

    def classify(self, path: Path | str, app_name: Optional[str] = None) -> Classification:
        """Build a full Classification with a previously captured app name."""
        return Classification(app_name=app_name, visual_type=self.visual_type(path))

    def _read_header(self, path: Path) -> Optional[tuple[tuple[int, int], bool]]:
        """Read pixel size and alpha presence without decoding pixel data."""
        try:
            with Image.open(path) as image:
                has_alpha = image.mode in self.ALPHA_MODES or 'transparency' in image.info
                return image.size, has_alpha
        except (OSError, UnidentifiedImageError, Image.DecompressionBombError, ValueError) as e:
            logger.debug(f"Could not read image header for {path}: {e}")
            return None

    def _matches_display(self, size: tuple[int, int], display: tuple[int, int]) -> bool:
        return (
            abs(size[0] - display[0]) <= self.SIZE_TOLERANCE
            and abs(size[1] - display[1]) <= self.SIZE_TOLERANCE
        )

    def _is_window_shaped(self, width: int, height: int) -> bool:
        if width < self.MIN_WINDOW_WIDTH or width > self.MAX_WINDOW_WIDTH or height <= 0:
            return False
        aspect_ratio = width / height
        return self.MIN_ASPECT_RATIO < aspect_ratio < self.MAX_ASPECT_RATIO
