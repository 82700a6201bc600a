"""Image signature validation for candidate screenshot files."""

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


class ImageSignatureValidator:
    """Check that a file both looks and is shaped like an image."""

    VALID_EXTENSIONS: set[str] = {
        '.png', '.jpg', '.jpeg', '.gif', '.bmp', '.webp', '.tiff', '.tif', '.heic', '.heif'
    }
    HEADER_SIZE: int = 12

    SIGNATURES: list[tuple[str, bytes]] = [
        ('png', b'\x89PNG\r\n\x1a\n'),
        ('jpeg', b'\xff\xd8\xff'),
        ('gif', b'GIF8'),
        ('bmp', b'BM'),
        ('riff', b'RIFF'),
        ('tiff', b'II*\x00'),
        ('tiff', b'MM\x00*'),
    ]
    FTYP_MARKER: bytes = b'ftyp'

    def is_valid_image(self, path: Path | str) -> bool:
        """Validate extension and magic bytes.

        Args:
            path: Path to the candidate file.

        Returns:
            True only if the extension is allow-listed and the header matches
            a known image container. Never raises.
        """
        path = Path(path)

        if path.suffix.lower() not in self.VALID_EXTENSIONS:
            return False

        try:
            with open(path, 'rb') as f:
                header = f.read(self.HEADER_SIZE)
        except OSError as e:
            logger.debug(f"Cannot read header of {path}: {e}")
            return False

        return self.matches_signature(header)

    def matches_signature(self, header: bytes) -> bool:
        """Check a file header against the known image signatures."""
        if len(header) < 2:
            return False

        for _, signature in self.SIGNATURES:
            if header.startswith(signature):
                return True

        # HEIC/HEIF: ISO base media 'ftyp' box at offset 4
        return len(header) >= self.HEADER_SIZE and header[4:8] == self.FTYP_MARKER


_default_validator = ImageSignatureValidator()


def is_valid_image(path: Path | str) -> bool:
    """Module-level shortcut for :meth:`ImageSignatureValidator.is_valid_image`."""
    return _default_validator.is_valid_image(path)
