"""CLI entry point for shotsort."""

import argparse
import copy
import logging
import signal
import sys
import threading
from pathlib import Path

from shotsort.core.classifier import CaptureClassifier
from shotsort.core.config import (
    Config,
    ConfigError,
    DateFolderMode,
    NamingMode,
    SettingsStore,
    load_config,
    save_config,
)
from shotsort.core.metadata import ProvenanceMetadataCodec
from shotsort.core.service import ScreenshotService
from shotsort.core.system import SystemProbe
from shotsort.core.validator import is_valid_image


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for CLI."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def _load(args: argparse.Namespace) -> Config | None:
    try:
        return load_config(args.config)
    except ConfigError as e:
        print(f"Configuration error: {e}")
        return None


def cmd_start(args: argparse.Namespace) -> int:
    """Start background monitoring service."""
    config = _load(args)
    if config is None:
        return 1

    print("Starting shotsort monitoring service...")
    service = ScreenshotService(SettingsStore(config, args.config))
    stop_event = threading.Event()

    # Handle graceful shutdown
    def signal_handler(sig, frame):
        print("\nShutting down...")
        stop_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    service.start_watching()

    print(f"Monitoring {len(config.watched_dirs)} directories:")
    for d in config.watched_dirs:
        print(f"  - {d}")
    print(f"Destination: {config.destination_dir}")
    print("\nPress Ctrl+C to stop.")

    stop_event.wait()
    service.close()
    return 0


def cmd_scan(args: argparse.Namespace) -> int:
    """Process screenshots already sitting in the watched directories."""
    config = _load(args)
    if config is None:
        return 1

    directories = [Path(d).expanduser() for d in args.directories] or None
    if directories:
        for directory in directories:
            if not directory.is_dir():
                print(f"Not a directory: {directory}")
                return 1

    service = ScreenshotService(SettingsStore(config, args.config))
    try:
        count = service.scan(directories)
    finally:
        service.close()

    # Status updates land on their own thread; read after close() drained it
    moved = service.snapshot().moved_count
    print(f"Checked {count} file(s), organized {moved} screenshot(s)")
    return 0


def cmd_reorganize(args: argparse.Namespace) -> int:
    """Re-sort the destination folder using the current settings."""
    config = _load(args)
    if config is None:
        return 1

    if not config.destination_dir.is_dir():
        print(f"Destination folder not found: {config.destination_dir}")
        return 1

    service = ScreenshotService(SettingsStore(config, args.config))
    try:
        count = service.reorganize_now()
        print(f"Reorganized {count} file(s) in {config.destination_dir}")
        return 0
    finally:
        service.close()


def cmd_inspect(args: argparse.Namespace) -> int:
    """Show how a file would be classified and what provenance it carries."""
    config = _load(args)
    if config is None:
        return 1

    path = Path(args.file).expanduser()
    if not path.is_file():
        print(f"File not found: {path}")
        return 1

    classifier = CaptureClassifier(SystemProbe(config.displays))
    metadata = ProvenanceMetadataCodec().read(path)

    print(f"File: {path}")
    print(f"  Valid image: {'yes' if is_valid_image(path) else 'no'}")
    print(f"  Visual type: {classifier.visual_type(path).value}")
    if metadata is None:
        print("  Provenance: none")
    else:
        print(f"  App: {metadata.app_name or '-'}")
        print(f"  Type: {metadata.visual_type or '-'}")
        print(f"  Captured: {metadata.capture_date.isoformat(timespec='seconds')}")
        print(f"  Schema version: {metadata.schema_version}")
    return 0


def _apply_setting(config: Config, key: str, value: str) -> None:
    """Apply one ``--set KEY=VALUE`` to the organization policy."""
    policy = config.policy
    flag = value.strip().lower() in ('1', 'true', 'yes', 'on')

    if key == 'date_folder_mode':
        policy.date_folder_mode = DateFolderMode(value)
    elif key == 'naming_mode':
        policy.naming_mode = NamingMode(value)
    elif key == 'custom_prefix':
        policy.custom_prefix = value
    elif key == 'app_sorting':
        policy.app_sorting_enabled = flag
    elif key == 'type_sorting':
        policy.type_sorting_enabled = flag
    elif key == 'app_blacklist':
        policy.app_blacklist = {v.strip() for v in value.split(',') if v.strip()}
    elif key == 'file_prefixes':
        policy.file_prefixes = {v.strip() for v in value.split(',') if v.strip()}
    elif key == 'quick_move':
        config.quick_move = flag
    elif key == 'show_notifications':
        config.show_notifications = flag
    elif key == 'destination_dir':
        config.destination_dir = Path(value).expanduser()
    else:
        raise KeyError(key)


def cmd_config(args: argparse.Namespace) -> int:
    """Manage configuration."""
    config = _load(args)
    if config is None:
        return 1

    if args.add_dir:
        new_dir = Path(args.add_dir).expanduser().resolve()

        if not new_dir.exists():
            print(f"Directory not found: {new_dir}")
            return 1

        if new_dir in config.monitored_dirs:
            print(f"Directory already monitored: {new_dir}")
            return 0

        config.monitored_dirs.append(new_dir)
        save_config(config, args.config)
        print(f"Added monitored directory: {new_dir}")
        return 0

    if args.remove_dir:
        remove_dir = Path(args.remove_dir).expanduser().resolve()

        if remove_dir not in config.monitored_dirs:
            print(f"Directory not in monitored list: {remove_dir}")
            return 1

        config.monitored_dirs.remove(remove_dir)
        save_config(config, args.config)
        print(f"Removed monitored directory: {remove_dir}")
        return 0

    if args.set:
        previous = copy.deepcopy(config.policy)
        for assignment in args.set:
            key, sep, value = assignment.partition('=')
            if not sep:
                print(f"Expected KEY=VALUE, got: {assignment}")
                return 1
            try:
                _apply_setting(config, key.strip(), value.strip())
            except KeyError:
                print(f"Unknown setting: {key}")
                return 1
            except ValueError as e:
                print(f"Invalid value for {key}: {e}")
                return 1

        save_config(config, args.config)
        print("Configuration saved")
        if previous.is_material_change(config.policy):
            print("Folder layout changed; run `shotsort reorganize` to re-sort existing files")
        return 0

    policy = config.policy
    print("shotsort Configuration")
    print("=" * 40)
    print(f"Destination directory: {config.destination_dir}")
    print(f"Quick move: {config.quick_move}")
    print(f"Notifications: {config.show_notifications}")
    print(f"Date folders: {policy.date_folder_mode.value}")
    print(f"Naming: {policy.naming_mode.value} (prefix: {policy.custom_prefix}, counter: {policy.sequential_counter})")
    print(f"App sorting: {policy.app_sorting_enabled} (blacklist: {', '.join(sorted(policy.app_blacklist)) or '-'})")
    print(f"Type sorting: {policy.type_sorting_enabled}")
    print(f"File prefixes: {', '.join(sorted(policy.file_prefixes))}")
    print("\nMonitored directories:")
    for d in config.watched_dirs:
        print(f"  - {d}")
    return 0


def main() -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog='shotsort',
        description='shotsort: screenshots, sorted as they land'
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable verbose output')
    parser.add_argument('-c', '--config', type=Path, default=None, help='Path to config file')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # start command
    start_parser = subparsers.add_parser('start', help='Start background monitoring service')
    start_parser.set_defaults(func=cmd_start)

    # scan command
    scan_parser = subparsers.add_parser('scan', help='Organize screenshots already in watched folders')
    scan_parser.add_argument('directories', nargs='*', help='Directories to scan (default: watched folders)')
    scan_parser.set_defaults(func=cmd_scan)

    # reorganize command
    reorganize_parser = subparsers.add_parser('reorganize', help='Re-sort the destination folder')
    reorganize_parser.set_defaults(func=cmd_reorganize)

    # inspect command
    inspect_parser = subparsers.add_parser('inspect', help='Show classification and provenance of a file')
    inspect_parser.add_argument('file', help='Image file')
    inspect_parser.set_defaults(func=cmd_inspect)

    # config command
    config_parser = subparsers.add_parser('config', help='Manage configuration')
    config_parser.add_argument('--add-dir', help='Add monitored directory')
    config_parser.add_argument('--remove-dir', help='Remove monitored directory')
    config_parser.add_argument('--set', action='append', metavar='KEY=VALUE', help='Change a setting')
    config_parser.add_argument('--show', action='store_true', help='Show current config')
    config_parser.set_defaults(func=cmd_config)

    args = parser.parse_args()

    setup_logging(args.verbose)

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == '__main__':
    sys.exit(main())
