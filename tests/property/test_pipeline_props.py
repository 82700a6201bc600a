"""Property-based tests for the Ingest Pipeline.

Feature: shotsort, Property: Only stable, valid screenshots are moved
Feature: shotsort, Property: Moves never overwrite existing files
Feature: shotsort, Property: App attribution is captured at detection time
Feature: shotsort, Property: Files the tool placed itself are not reprocessed
"""

import os
import tempfile
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from hypothesis import given, strategies as st, settings
from PIL import Image

from shotsort.core.classifier import CaptureClassifier
from shotsort.core.config import Config, NamingMode, OrganizationPolicy, SettingsStore, load_config
from shotsort.core.metadata import ProvenanceMetadata, ProvenanceMetadataCodec
from shotsort.core.organizer import DestinationResolver
from shotsort.core.pipeline import FileState, IngestPipeline, PipelineTimings
from shotsort.core.scheduler import SerialQueue
from shotsort.core.status import StatusBoard


SCREENSHOT = "Screenshot 2026-02-01 at 9.45.32 AM.png"


def fast_timings(**overrides) -> PipelineTimings:
    values = dict(
        stability_interval=0.01,
        retry_delay=0.01,
        max_retries=1,
        quick_delay=0.01,
        safe_delay=0.01,
    )
    values.update(overrides)
    return PipelineTimings(**values)


def make_png(path: Path, size: tuple[int, int] = (100, 50)) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new('RGB', size, (30, 60, 90)).save(path, format='PNG')
    return path


class Harness:
    """A pipeline wired to a real queue with a mocked desktop session."""

    def __init__(
        self,
        root: Path,
        policy: OrganizationPolicy | None = None,
        app_names=("Safari",),
        timings: PipelineTimings | None = None,
        config_path: Path | None = None,
        status: StatusBoard | None = None,
    ):
        self.desktop = root / "Desktop"
        self.desktop.mkdir(parents=True, exist_ok=True)
        self.destination = root / "Screenshots"
        self.config = Config(
            monitored_dirs=[self.desktop],
            destination_dir=self.destination,
            quick_move=True,
            policy=policy or OrganizationPolicy(),
        )
        self.settings = SettingsStore(self.config, config_path, persist=config_path is not None)

        self.probe = MagicMock()
        self.probe.get_frontmost_application_name.side_effect = list(app_names)
        self.probe.list_connected_display_pixel_sizes.return_value = []
        self.notifier = MagicMock()
        self.codec = ProvenanceMetadataCodec()
        self.results: list[tuple[Path, FileState]] = []

        self.queue = SerialQueue()
        self.queue.start()
        self.pipeline = IngestPipeline(
            settings=self.settings,
            work_queue=self.queue,
            classifier=CaptureClassifier(self.probe),
            resolver=DestinationResolver(persist_counter=self.settings.persist_sequential_counter),
            codec=self.codec,
            notifier=self.notifier,
            status=status,
            timings=timings or fast_timings(),
            on_complete=lambda path, state: self.results.append((path, state)),
        )

    def run(self, *paths: Path) -> list[tuple[Path, FileState]]:
        for path in paths:
            self.pipeline.submit(path)
        assert self.queue.wait_idle(timeout=10.0)
        return self.results

    def states(self) -> list[FileState]:
        return [state for _, state in self.results]

    def close(self) -> None:
        self.queue.shutdown()


class TestHappyPath:
    """A finished screenshot ends up moved, tagged and announced."""

    def test_screenshot_moved_with_metadata(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            harness = Harness(Path(tmpdir))
            try:
                source = make_png(harness.desktop / SCREENSHOT)

                results = harness.run(source)

                destination = harness.destination / SCREENSHOT
                assert results == [(destination, FileState.NOTIFIED)]
                assert not source.exists()
                assert destination.exists()

                metadata = harness.codec.read(destination)
                assert metadata is not None
                assert metadata.app_name == "Safari"
                assert metadata.visual_type == "Selection"

                harness.notifier.notify_user.assert_called_once()
                title, body = harness.notifier.notify_user.call_args[0]
                assert title == "Screenshot Organized"
                assert SCREENSHOT in body
            finally:
                harness.close()

    @given(st.sampled_from(list(NamingMode)))
    @settings(max_examples=8, deadline=None)
    def test_every_naming_mode_moves_exactly_one_file(self, naming_mode: NamingMode):
        with tempfile.TemporaryDirectory() as tmpdir:
            harness = Harness(Path(tmpdir), policy=OrganizationPolicy(naming_mode=naming_mode))
            try:
                source = make_png(harness.desktop / SCREENSHOT)

                harness.run(source)

                assert harness.states() == [FileState.NOTIFIED]
                assert not source.exists()
                assert len([p for p in harness.destination.iterdir() if p.is_file()]) == 1
            finally:
                harness.close()

    def test_duplicate_detection_processed_once(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            harness = Harness(Path(tmpdir))
            try:
                source = make_png(harness.desktop / SCREENSHOT)

                harness.run(source, source, source)

                assert harness.states() == [FileState.NOTIFIED]
                assert harness.probe.get_frontmost_application_name.call_count == 1
            finally:
                harness.close()

    def test_status_records_move(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            status = StatusBoard()
            harness = Harness(Path(tmpdir), status=status)
            try:
                harness.run(make_png(harness.desktop / SCREENSHOT))
            finally:
                harness.close()
                status.close()

            snapshot = status.snapshot()
            assert snapshot.moved_count == 1
            assert snapshot.last_moved.original_name == SCREENSHOT
            assert snapshot.last_moved.destination_path == str(harness.destination / SCREENSHOT)


class TestRejection:
    """Files that are not finished screenshots are never moved."""

    def test_text_file_with_screenshot_name_abandoned(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            harness = Harness(Path(tmpdir))
            try:
                source = harness.desktop / "Screenshot.txt"
                source.write_text("not an image")

                results = harness.run(source)

                assert results == [(source, FileState.ABANDONED)]
                assert source.exists()
                assert not harness.destination.exists()
            finally:
                harness.close()

    @given(st.sampled_from(["holiday.png", "IMG_0001.png", "notes.png"]))
    @settings(max_examples=5, deadline=None)
    def test_prefix_mismatch_skipped(self, filename: str):
        with tempfile.TemporaryDirectory() as tmpdir:
            harness = Harness(Path(tmpdir))
            try:
                source = make_png(harness.desktop / filename)

                results = harness.run(source)

                assert results == [(source, FileState.SKIPPED)]
                assert source.exists()
            finally:
                harness.close()

    def test_missing_source_reported_vanished(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            harness = Harness(Path(tmpdir))
            try:
                source = harness.desktop / SCREENSHOT

                assert harness.run(source) == [(source, FileState.SOURCE_VANISHED)]
            finally:
                harness.close()

    def test_empty_file_abandoned(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            harness = Harness(Path(tmpdir))
            try:
                source = harness.desktop / SCREENSHOT
                source.write_bytes(b'')

                assert harness.run(source) == [(source, FileState.ABANDONED)]
                assert source.exists()
            finally:
                harness.close()


class TestStability:
    """A size change between the two samples postpones the move."""

    def test_size_change_schedules_retry(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            harness = Harness(Path(tmpdir), timings=fast_timings(retry_delay=0.2))
            try:
                source = make_png(harness.desktop / SCREENSHOT)

                harness.pipeline._finish_stability_check(source, 0, first_size=1)

                assert source.exists()
                assert harness.results == []

                assert harness.queue.wait_idle(timeout=10.0)
                assert harness.states() == [FileState.NOTIFIED]
                assert not source.exists()
            finally:
                harness.close()

    def test_size_change_on_last_attempt_abandons(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            timings = fast_timings(max_retries=2)
            harness = Harness(Path(tmpdir), timings=timings)
            try:
                source = make_png(harness.desktop / SCREENSHOT)

                harness.pipeline._finish_stability_check(source, timings.max_retries, first_size=1)

                assert harness.results == [(source, FileState.ABANDONED)]
                assert source.exists()
            finally:
                harness.close()


class TestNaming:
    """Sequential names are unique and the counter survives restarts."""

    def test_sequential_pair(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            config_path = root / "config.yaml"
            policy = OrganizationPolicy(naming_mode=NamingMode.SEQUENTIAL, custom_prefix="Screenshot")
            harness = Harness(root, policy=policy, app_names=("Safari", "Safari"), config_path=config_path)
            try:
                first = make_png(harness.desktop / "Screenshot A.png")
                second = make_png(harness.desktop / "Screenshot B.png")

                harness.run(first, second)

                names = sorted(p.name for p in harness.destination.iterdir())
                assert names == ["Screenshot_001.png", "Screenshot_002.png"]
                assert harness.settings.read_current_policy().sequential_counter == 2
                assert load_config(config_path).policy.sequential_counter == 2
            finally:
                harness.close()

    def test_same_name_from_two_folders_never_overwrites(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            harness = Harness(root, app_names=("Safari", "Safari"))
            try:
                first = make_png(harness.desktop / "Screenshot.png", size=(120, 60))
                second = make_png(root / "Downloads" / "Screenshot.png", size=(80, 40))

                harness.run(first)
                harness.run(second)

                kept = harness.destination / "Screenshot.png"
                renamed = harness.destination / "Screenshot_1.png"
                assert harness.states() == [FileState.NOTIFIED, FileState.NOTIFIED]
                with Image.open(kept) as image:
                    assert image.size == (120, 60)
                with Image.open(renamed) as image:
                    assert image.size == (80, 40)
            finally:
                harness.close()


class TestAttribution:
    """The app folder reflects the frontmost app at detection time."""

    def test_app_name_read_once_before_delay(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            policy = OrganizationPolicy(app_sorting_enabled=True)
            harness = Harness(Path(tmpdir), policy=policy, app_names=("Safari", "Xcode"))
            try:
                harness.run(make_png(harness.desktop / SCREENSHOT))

                assert (harness.destination / "Safari" / SCREENSHOT).exists()
                assert harness.probe.get_frontmost_application_name.call_count == 1
            finally:
                harness.close()

    def test_blacklisted_app_goes_to_root(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            policy = OrganizationPolicy(app_sorting_enabled=True)
            harness = Harness(Path(tmpdir), policy=policy, app_names=("finder",))
            try:
                harness.run(make_png(harness.desktop / SCREENSHOT))

                destination = harness.destination / SCREENSHOT
                assert destination.exists()
                assert harness.codec.read(destination).app_name == "finder"
            finally:
                harness.close()


class TestSideEffects:
    """Notification problems never undo a move."""

    def test_notifier_failure_swallowed(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            harness = Harness(Path(tmpdir))
            harness.notifier.notify_user.side_effect = RuntimeError("no notification center")
            try:
                source = make_png(harness.desktop / SCREENSHOT)

                harness.run(source)

                assert harness.states() == [FileState.NOTIFIED]
                assert (harness.destination / SCREENSHOT).exists()
            finally:
                harness.close()

    def test_notifications_disabled(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            harness = Harness(Path(tmpdir))
            harness.config.show_notifications = False
            try:
                harness.run(make_png(harness.desktop / SCREENSHOT))

                harness.notifier.notify_user.assert_not_called()
            finally:
                harness.close()


class TestLoopAvoidance:
    """Events caused by the tool's own writes are ignored."""

    def test_placed_file_resubmission_skipped(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            harness = Harness(Path(tmpdir), app_names=("Safari", "Safari"))
            try:
                harness.run(make_png(harness.desktop / SCREENSHOT))
                destination = harness.destination / SCREENSHOT

                harness.run(destination)

                assert harness.states() == [FileState.NOTIFIED, FileState.SKIPPED]
                assert destination.exists()
            finally:
                harness.close()

    def test_organized_file_with_metadata_skipped(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            harness = Harness(Path(tmpdir))
            try:
                existing = make_png(harness.destination / SCREENSHOT)
                harness.codec.write(
                    ProvenanceMetadata(app_name="Safari", visual_type="Window", capture_date=datetime(2026, 2, 1, 12, 0, 0)),
                    existing,
                )

                assert harness.run(existing) == [(existing, FileState.SKIPPED)]
                harness.probe.get_frontmost_application_name.assert_not_called()
            finally:
                harness.close()

    def test_untagged_file_already_in_place_gets_metadata_only(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            harness = Harness(Path(tmpdir))
            try:
                existing = make_png(harness.destination / SCREENSHOT)

                results = harness.run(existing)

                assert results == [(existing, FileState.NOTIFIED)]
                assert existing.exists()
                assert harness.codec.read(existing) is not None
                assert [p.name for p in harness.destination.iterdir()] == [SCREENSHOT]
                harness.notifier.notify_user.assert_not_called()
            finally:
                harness.close()

    def test_sequential_file_in_destination_never_renumbered(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            root = Path(tmpdir)
            policy = OrganizationPolicy(naming_mode=NamingMode.SEQUENTIAL, custom_prefix="Screenshot")
            existing = root / "Screenshots" / "Screenshot_001.jpg"
            existing.parent.mkdir(parents=True)
            Image.new('RGB', (64, 32), (30, 60, 90)).save(existing, format='JPEG')

            # Each harness is a fresh process sweeping the same destination
            for _ in range(2):
                harness = Harness(root, policy=OrganizationPolicy(**vars(policy)))
                try:
                    harness.pipeline.process_existing([harness.destination])
                    assert harness.queue.wait_idle(timeout=10.0)

                    assert harness.states() == [FileState.NOTIFIED]
                    assert [p.name for p in harness.destination.iterdir()] == ["Screenshot_001.jpg"]
                    assert harness.settings.read_current_policy().sequential_counter == 0
                    harness.notifier.notify_user.assert_not_called()
                finally:
                    harness.close()

    def test_raw_capture_in_destination_gets_sequential_name(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            policy = OrganizationPolicy(naming_mode=NamingMode.SEQUENTIAL, custom_prefix="Screenshot")
            harness = Harness(Path(tmpdir), policy=policy)
            try:
                make_png(harness.destination / SCREENSHOT)

                harness.pipeline.process_existing([harness.destination])
                assert harness.queue.wait_idle(timeout=10.0)

                assert [p.name for p in harness.destination.iterdir()] == ["Screenshot_001.png"]
            finally:
                harness.close()

    @pytest.mark.skipif(hasattr(os.stat(__file__), 'st_birthtime'), reason="capture date comes from birth time")
    def test_custom_name_with_collision_suffix_kept(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            harness = Harness(Path(tmpdir), policy=OrganizationPolicy(naming_mode=NamingMode.CUSTOM))
            try:
                existing = make_png(harness.destination / "Screenshot_2026-02-01_094532_1.png")
                captured = datetime(2026, 2, 1, 9, 45, 32).timestamp()
                os.utime(existing, (captured, captured))

                harness.run(existing)

                assert harness.states() == [FileState.NOTIFIED]
                assert [p.name for p in harness.destination.iterdir()] == ["Screenshot_2026-02-01_094532_1.png"]
            finally:
                harness.close()


class TestOversizedImages:
    """Images Pillow refuses to open are still filed."""

    def test_decompression_limit_does_not_stall_file(self, monkeypatch):
        with tempfile.TemporaryDirectory() as tmpdir:
            harness = Harness(Path(tmpdir))
            try:
                source = make_png(harness.desktop / SCREENSHOT)
                monkeypatch.setattr(Image, 'MAX_IMAGE_PIXELS', 100)

                harness.run(source)

                assert harness.states() == [FileState.NOTIFIED]
                assert (harness.destination / SCREENSHOT).exists()
            finally:
                harness.close()


class TestProcessExisting:
    """Startup sweep submits visible regular files only."""

    def test_counts_regular_visible_files(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            harness = Harness(Path(tmpdir), app_names=("Safari",) * 5)
            try:
                make_png(harness.desktop / SCREENSHOT)
                make_png(harness.desktop / ".hidden Screenshot.png")
                (harness.desktop / "Screenshot folder").mkdir()
                (harness.desktop / "notes.txt").write_text("x")

                count = harness.pipeline.process_existing([harness.desktop, Path(tmpdir) / "missing"])
                assert harness.queue.wait_idle(timeout=10.0)

                assert count == 2
                assert sorted(state.value for state in harness.states()) == ["notified", "skipped"]
                assert (harness.desktop / ".hidden Screenshot.png").exists()
            finally:
                harness.close()
