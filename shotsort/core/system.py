"""Operating system collaborators: frontmost app, displays, notifications."""

import logging
import subprocess
import sys
from typing import Optional

logger = logging.getLogger(__name__)


class SystemProbe:
    """Answer questions about the desktop session at capture time."""

    FRONTMOST_APP_SCRIPT = (
        'tell application "System Events" to get name of first application process '
        'whose frontmost is true'
    )
    QUERY_TIMEOUT: float = 2.0

    def __init__(self, displays: list[tuple[int, int]] | None = None) -> None:
        """Initialize system probe.

        Args:
            displays: Physical pixel sizes of the connected displays.
        """
        self._displays = list(displays or [])

    def get_frontmost_application_name(self) -> Optional[str]:
        """Get the name of the application currently in front, if known."""
        if sys.platform != 'darwin':
            return None

        try:
            result = subprocess.run(
                ['osascript', '-e', self.FRONTMOST_APP_SCRIPT],
                capture_output=True,
                text=True,
                timeout=self.QUERY_TIMEOUT,
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.debug(f"Frontmost application query failed: {e}")
            return None

        name = result.stdout.strip()
        return name or None

    def list_connected_display_pixel_sizes(self) -> list[tuple[int, int]]:
        """Get (width, height) in physical pixels for each display."""
        return list(self._displays)


class Notifier:
    """Fire-and-forget user notifications."""

    def notify_user(self, title: str, body: str) -> None:
        """Show a notification; failures are logged and dropped."""
        logger.info(f"{title}: {body}")

        if sys.platform != 'darwin':
            return

        script = f'display notification {_quote(body)} with title {_quote(title)}'
        try:
            subprocess.Popen(
                ['osascript', '-e', script],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError as e:
            logger.debug(f"Notification failed: {e}")


def _quote(text: str) -> str:
    return '"' + text.replace('\\', '\\\\').replace('"', '\\"') + '"'
