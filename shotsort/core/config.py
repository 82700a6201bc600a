"""Configuration Manager component."""

import copy
import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

import yaml
from dotenv import load_dotenv

# Load .env file from current directory or parent directories
load_dotenv()

logger = logging.getLogger(__name__)


class DateFolderMode(Enum):
    """How capture dates map onto subfolders."""
    FLAT = "flat"
    YEAR_MONTH_DAY = "yearMonthDay"
    YEAR_MONTH = "yearMonth"
    YEAR_MONTH_DAY_FLAT = "yearMonthDayFlat"

    def subpath(self, date: datetime) -> str:
        """Return the relative date folder for a timestamp ('' for flat)."""
        if self is DateFolderMode.YEAR_MONTH_DAY:
            return f"{date.year:04d}/{date.month:02d}/{date.day:02d}"
        if self is DateFolderMode.YEAR_MONTH:
            return f"{date.year:04d}/{date.month:02d}"
        if self is DateFolderMode.YEAR_MONTH_DAY_FLAT:
            return f"{date.year:04d}-{date.month:02d}-{date.day:02d}"
        return ""


class NamingMode(Enum):
    """Renaming policy applied when a screenshot is moved."""
    ORIGINAL = "original"
    COMPACT = "compact"
    SEQUENTIAL = "sequential"
    CUSTOM = "custom"


DEFAULT_FILE_PREFIXES: list[str] = ["Screenshot", "Screen Shot", "Screen Recording", "mac_"]
DEFAULT_APP_BLACKLIST: list[str] = ["Finder", "SnapSort"]


@dataclass
class OrganizationPolicy:
    """Folder layout and naming rules for organized screenshots."""
    date_folder_mode: DateFolderMode = DateFolderMode.FLAT
    naming_mode: NamingMode = NamingMode.ORIGINAL
    custom_prefix: str = "Screenshot"
    sequential_counter: int = 0
    app_sorting_enabled: bool = False
    app_blacklist: set[str] = field(default_factory=lambda: set(DEFAULT_APP_BLACKLIST))
    type_sorting_enabled: bool = False
    file_prefixes: set[str] = field(default_factory=lambda: set(DEFAULT_FILE_PREFIXES))

    def matches_prefix(self, filename: str) -> bool:
        """Check whether a filename starts with any configured prefix."""
        return any(filename.startswith(prefix) for prefix in self.file_prefixes)

    def is_app_blacklisted(self, app_name: str) -> bool:
        """Case-insensitive blacklist lookup."""
        lowered = app_name.lower()
        return any(entry.lower() == lowered for entry in self.app_blacklist)

    def is_material_change(self, other: "OrganizationPolicy") -> bool:
        """Check whether switching to ``other`` changes where files belong.

        Naming and prefix settings only affect new captures, so they never
        require existing files to move.
        """
        return (
            self.date_folder_mode != other.date_folder_mode
            or self.app_sorting_enabled != other.app_sorting_enabled
            or self.type_sorting_enabled != other.type_sorting_enabled
            or {a.lower() for a in self.app_blacklist} != {a.lower() for a in other.app_blacklist}
        )


@dataclass
class Config:
    """Application configuration."""
    monitored_dirs: list[Path] = field(default_factory=list)
    destination_dir: Path = field(default_factory=lambda: Path.home() / "Documents" / "Screenshots")
    quick_move: bool = False
    show_notifications: bool = True
    displays: list[tuple[int, int]] = field(default_factory=list)
    policy: OrganizationPolicy = field(default_factory=OrganizationPolicy)

    @property
    def watched_dirs(self) -> list[Path]:
        """Destination folder first, then any extra monitored folders."""
        dirs = [self.destination_dir]
        for directory in self.monitored_dirs:
            if directory not in dirs:
                dirs.append(directory)
        return dirs


DEFAULT_CONFIG_PATH = Path(
    os.environ.get('SHOTSORT_CONFIG', Path.home() / ".shotsort" / "config.yaml")
).expanduser()


class ConfigError(Exception):
    """Exception raised for configuration errors."""
    pass


def _parse_enum(enum_cls, value, key: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ConfigError(f"Invalid value for {key}: {value!r} (expected one of: {allowed})")


def _apply_organization(policy: OrganizationPolicy, data: dict) -> None:
    if 'date_folder_mode' in data:
        policy.date_folder_mode = _parse_enum(DateFolderMode, data['date_folder_mode'], 'date_folder_mode')
    if 'naming_mode' in data:
        policy.naming_mode = _parse_enum(NamingMode, data['naming_mode'], 'naming_mode')
    if 'custom_prefix' in data:
        policy.custom_prefix = str(data['custom_prefix'])
    if 'sequential_counter' in data:
        policy.sequential_counter = int(data['sequential_counter'])
    if 'app_sorting' in data:
        policy.app_sorting_enabled = bool(data['app_sorting'])
    if 'app_blacklist' in data:
        policy.app_blacklist = set(data['app_blacklist'] or [])
    if 'type_sorting' in data:
        policy.type_sorting_enabled = bool(data['type_sorting'])
    if 'file_prefixes' in data:
        policy.file_prefixes = set(data['file_prefixes'] or [])


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from file and environment.

    Args:
        config_path: Path to config file. Uses default if None.

    Returns:
        Config object with loaded settings.

    Raises:
        ConfigError: If the file is not valid YAML or holds invalid values.
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    config = Config()

    # Load from file if exists
    if path.exists():
        try:
            with open(path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Could not parse {path}: {e}")

        if not isinstance(data, dict):
            raise ConfigError(f"Expected a mapping at the top of {path}")

        if 'monitored_dirs' in data:
            config.monitored_dirs = [Path(d).expanduser() for d in data['monitored_dirs'] or []]
        if 'destination_dir' in data:
            config.destination_dir = Path(data['destination_dir']).expanduser()
        if 'quick_move' in data:
            config.quick_move = bool(data['quick_move'])
        if 'show_notifications' in data:
            config.show_notifications = bool(data['show_notifications'])
        if 'displays' in data:
            try:
                config.displays = [(int(w), int(h)) for w, h in data['displays'] or []]
            except (TypeError, ValueError):
                raise ConfigError("displays must be a list of [width, height] pairs")

        try:
            _apply_organization(config.policy, data.get('organization') or {})
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid organization settings: {e}")

    # Environment override for the destination folder
    destination = os.environ.get('SHOTSORT_DESTINATION', '')
    if destination:
        config.destination_dir = Path(destination).expanduser()

    # Set default monitored dirs if none specified
    if not config.monitored_dirs:
        config.monitored_dirs = [Path.home() / "Desktop"]

    return config


def save_config(config: Config, config_path: Path | None = None) -> None:
    """Save configuration to file.

    Args:
        config: Config object to save.
        config_path: Path to save config. Uses default if None.
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    # Ensure parent directory exists
    path.parent.mkdir(parents=True, exist_ok=True)

    policy = config.policy
    data = {
        'monitored_dirs': [str(d) for d in config.monitored_dirs],
        'destination_dir': str(config.destination_dir),
        'quick_move': config.quick_move,
        'show_notifications': config.show_notifications,
        'displays': [[w, h] for w, h in config.displays],
        'organization': {
            'date_folder_mode': policy.date_folder_mode.value,
            'naming_mode': policy.naming_mode.value,
            'custom_prefix': policy.custom_prefix,
            'sequential_counter': policy.sequential_counter,
            'app_sorting': policy.app_sorting_enabled,
            'app_blacklist': sorted(policy.app_blacklist),
            'type_sorting': policy.type_sorting_enabled,
            'file_prefixes': sorted(policy.file_prefixes),
        },
    }

    with open(path, 'w') as f:
        yaml.dump(data, f, default_flow_style=False)


class SettingsStore:
    """Owns the live configuration and hands out policy snapshots."""

    def __init__(self, config: Config, config_path: Path | None = None, persist: bool = True) -> None:
        """Initialize settings store.

        Args:
            config: Loaded configuration.
            config_path: Where to persist changes. Uses default if None.
            persist: Write changes back to disk when True.
        """
        self._config = config
        self._path = config_path
        self._persist = persist
        self._lock = threading.Lock()

    @property
    def config(self) -> Config:
        return self._config

    def read_current_policy(self) -> OrganizationPolicy:
        """Return a snapshot of the organization policy."""
        with self._lock:
            return copy.deepcopy(self._config.policy)

    def persist_sequential_counter(self, value: int) -> None:
        """Record the last sequential number handed out.

        The stored counter never goes backwards.
        """
        with self._lock:
            if value <= self._config.policy.sequential_counter:
                return
            self._config.policy.sequential_counter = value
            self._save_locked()

    def update_policy(self, policy: OrganizationPolicy) -> bool:
        """Replace the policy and report whether existing files must move.

        Args:
            policy: New organization policy.

        Returns:
            True if the change affects where already-sorted files belong.
        """
        with self._lock:
            current = self._config.policy
            material = current.is_material_change(policy)
            updated = copy.deepcopy(policy)
            updated.sequential_counter = max(updated.sequential_counter, current.sequential_counter)
            self._config.policy = updated
            self._save_locked()
        if material:
            logger.info("Organization policy changed; existing files need reorganizing")
        return material

    def save(self) -> None:
        with self._lock:
            self._save_locked()

    def _save_locked(self) -> None:
        if not self._persist:
            return
        try:
            save_config(self._config, self._path)
        except OSError as e:
            logger.error(f"Failed to save configuration: {e}")
