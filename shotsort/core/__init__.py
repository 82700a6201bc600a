"""Core components for shotsort."""

from .validator import ImageSignatureValidator, is_valid_image
from .classifier import CaptureClassifier, Classification, VisualType
from .config import (
    Config,
    ConfigError,
    DateFolderMode,
    NamingMode,
    OrganizationPolicy,
    SettingsStore,
    load_config,
    save_config,
)
from .organizer import DestinationResolver, sanitize_folder_name, unique_destination
from .metadata import ProvenanceMetadata, ProvenanceMetadataCodec
from .scheduler import SerialQueue
from .status import MovedFile, StatusBoard, WatchStatus
from .system import Notifier, SystemProbe
from .watcher import CaptureEvent, DirectoryChangeMonitor
from .pipeline import FileState, IngestPipeline, PipelineTimings
from .reorganizer import BulkReorganizer
from .service import ScreenshotService

__all__ = [
    "ImageSignatureValidator",
    "is_valid_image",
    "CaptureClassifier",
    "Classification",
    "VisualType",
    "Config",
    "ConfigError",
    "DateFolderMode",
    "NamingMode",
    "OrganizationPolicy",
    "SettingsStore",
    "load_config",
    "save_config",
    "DestinationResolver",
    "sanitize_folder_name",
    "unique_destination",
    "ProvenanceMetadata",
    "ProvenanceMetadataCodec",
    "SerialQueue",
    "MovedFile",
    "StatusBoard",
    "WatchStatus",
    "Notifier",
    "SystemProbe",
    "CaptureEvent",
    "DirectoryChangeMonitor",
    "FileState",
    "IngestPipeline",
    "PipelineTimings",
    "BulkReorganizer",
    "ScreenshotService",
]
