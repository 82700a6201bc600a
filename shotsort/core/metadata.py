"""Provenance Metadata codec for embedding classification inside PNG files.

Metadata lives in PNG ``iTXt`` chunks placed before the first ``IDAT``
chunk. Writing splices chunks at the byte level, so image data is copied
verbatim and never re-encoded. Reading goes through Pillow's text chunk
parser.
"""

import logging
import os
import shutil
import struct
import tempfile
import zlib
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from PIL import Image, UnidentifiedImageError

from .organizer import file_capture_date

logger = logging.getLogger(__name__)

PNG_SIGNATURE = b'\x89PNG\r\n\x1a\n'
TEXT_CHUNK_TYPES = {b'tEXt', b'iTXt', b'zTXt'}


class MetadataKeys:
    """PNG text keywords used for provenance fields."""
    APP_NAME = "SnapSort:AppName"
    VISUAL_TYPE = "SnapSort:ScreenshotType"
    CAPTURE_DATE = "SnapSort:CaptureDate"
    VERSION = "SnapSort:MetadataVersion"

    ALL = (APP_NAME, VISUAL_TYPE, CAPTURE_DATE, VERSION)


CURRENT_SCHEMA_VERSION = 1


@dataclass(frozen=True)
class ProvenanceMetadata:
    """Classification recorded inside an organized screenshot."""
    app_name: Optional[str]
    visual_type: Optional[str]
    capture_date: datetime
    schema_version: int = CURRENT_SCHEMA_VERSION


class PNGFormatError(ValueError):
    """Raised when a file is not a well-formed PNG chunk stream."""
    pass


def _iter_chunks(data: bytes):
    """Yield (chunk_type, chunk_data, raw_bytes) for every chunk."""
    if not data.startswith(PNG_SIGNATURE):
        raise PNGFormatError("Missing PNG signature")

    offset = len(PNG_SIGNATURE)
    while offset < len(data):
        if offset + 8 > len(data):
            raise PNGFormatError("Truncated chunk header")
        length, chunk_type = struct.unpack('>I4s', data[offset:offset + 8])
        end = offset + 12 + length
        if end > len(data):
            raise PNGFormatError(f"Truncated {chunk_type!r} chunk")
        yield chunk_type, data[offset + 8:offset + 8 + length], data[offset:end]
        offset = end
        if chunk_type == b'IEND':
            break


def _text_keyword(chunk_data: bytes) -> str:
    return chunk_data.split(b'\x00', 1)[0].decode('latin-1')


def _build_itxt_chunk(keyword: str, text: str) -> bytes:
    # keyword, null, compression flag, compression method, language, null,
    # translated keyword, null, UTF-8 text
    payload = (
        keyword.encode('latin-1') + b'\x00'
        + b'\x00\x00'
        + b'\x00'
        + b'\x00'
        + text.encode('utf-8')
    )
    crc = zlib.crc32(b'iTXt' + payload) & 0xFFFFFFFF
    return struct.pack('>I', len(payload)) + b'iTXt' + payload + struct.pack('>I', crc)


def _format_date(date: datetime) -> str:
    return date.astimezone().isoformat(timespec='seconds')


def _parse_date(value: str) -> Optional[datetime]:
    value = value.strip()
    if value.endswith('Z'):
        value = value[:-1] + '+00:00'
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


class ProvenanceMetadataCodec:
    """Read and write provenance metadata without touching pixel data."""

    SUPPORTED_EXTENSIONS: set[str] = {'.png'}

    def supports(self, path: Path | str) -> bool:
        """Check whether metadata can be embedded in this file type."""
        return Path(path).suffix.lower() in self.SUPPORTED_EXTENSIONS

    def write(self, metadata: ProvenanceMetadata, path: Path | str) -> bool:
        """Embed metadata into an image, replacing the file atomically.

        The rewritten file is assembled next to the original and swapped in
        with ``os.replace``. On failure the original is left untouched.

        Args:
            metadata: Provenance to embed.
            path: Image file to update.

        Returns:
            True if the metadata was written.
        """
        path = Path(path)

        if not self.supports(path):
            logger.debug(f"Skipping metadata write for unsupported file: {path.name}")
            return False

        try:
            rewritten = self._rewrite(path.read_bytes(), metadata)
        except (OSError, PNGFormatError) as e:
            logger.warning(f"Cannot embed metadata in {path.name}: {e}")
            return False

        tmp_path = None
        try:
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix='.', suffix='.shotsort.tmp')
            tmp_path = Path(tmp_name)
            with os.fdopen(fd, 'wb') as f:
                f.write(rewritten)
            stat = path.stat()
            shutil.copymode(path, tmp_path)
            os.utime(tmp_path, ns=(stat.st_atime_ns, stat.st_mtime_ns))
            os.replace(tmp_path, path)
        except OSError as e:
            logger.warning(f"Failed to replace {path.name} with tagged copy: {e}")
            if tmp_path is not None:
                try:
                    tmp_path.unlink()
                except FileNotFoundError:
                    pass
                except OSError as cleanup_error:
                    logger.warning(f"Could not remove temporary file {tmp_path}: {cleanup_error}")
            return False

        logger.debug(f"Wrote provenance metadata to {path.name}")
        return True

    def read(self, path: Path | str) -> Optional[ProvenanceMetadata]:
        """Read embedded metadata.

        Args:
            path: Image file to inspect.

        Returns:
            The stored metadata, or None for files without a schema version
            (legacy or foreign files) and files that cannot be opened.
        """
        path = Path(path)

        if not self.supports(path):
            return None

        try:
            with Image.open(path) as image:
                text = dict(getattr(image, 'text', {}) or {})
        except (OSError, UnidentifiedImageError, Image.DecompressionBombError, ValueError, SyntaxError) as e:
            logger.debug(f"Could not read metadata from {path}: {e}")
            return None

        version_text = text.get(MetadataKeys.VERSION)
        if version_text is None:
            return None
        try:
            version = int(str(version_text).strip())
        except ValueError:
            return None

        app_name = str(text.get(MetadataKeys.APP_NAME, '')) or None
        visual_type = str(text.get(MetadataKeys.VISUAL_TYPE, '')) or None

        capture_date = _parse_date(str(text.get(MetadataKeys.CAPTURE_DATE, '')))
        if capture_date is None:
            capture_date = file_capture_date(path)

        return ProvenanceMetadata(
            app_name=app_name,
            visual_type=visual_type,
            capture_date=capture_date,
            schema_version=version,
        )

    def _rewrite(self, data: bytes, metadata: ProvenanceMetadata) -> bytes:
        fields = {
            MetadataKeys.APP_NAME: metadata.app_name or '',
            MetadataKeys.VISUAL_TYPE: metadata.visual_type or '',
            MetadataKeys.CAPTURE_DATE: _format_date(metadata.capture_date),
            MetadataKeys.VERSION: str(metadata.schema_version),
        }

        out = bytearray(PNG_SIGNATURE)
        inserted = False
        seen_iend = False

        for chunk_type, chunk_data, raw in _iter_chunks(data):
            if chunk_type in TEXT_CHUNK_TYPES and _text_keyword(chunk_data) in MetadataKeys.ALL:
                continue
            if chunk_type == b'IDAT' and not inserted:
                for keyword, value in fields.items():
                    out += _build_itxt_chunk(keyword, value)
                inserted = True
            if chunk_type == b'IEND':
                seen_iend = True
            out += raw

        if not inserted or not seen_iend:
            raise PNGFormatError("No image data found")

        return bytes(out)
