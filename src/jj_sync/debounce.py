import asyncio
import logging
import os
from collections.abc import Callable
from pathlib import Path

from .constants import APP_NAME, IDLE_DELAY_SECONDS, METADATA_DIR
from .state import FolderSyncState

logger = logging.getLogger(APP_NAME)


def is_ignored_path(root: Path, target: Path) -> bool:
    """Checks whether a file event is irrelevant to the folder rooted at `root`.

    Paths outside the root and paths inside the root's `.jj` metadata directory
    are irrelevant.

    Args:
        root (Path): The folder root.
        target (Path): The path reported by the watcher.

    Returns:
        bool: True if the event must be ignored.
    """
    relative = os.path.relpath(os.path.abspath(target), os.path.abspath(root))
    if relative == os.pardir or relative.startswith(os.pardir + os.sep):
        return True
    if os.path.isabs(relative):
        return True
    return relative == METADATA_DIR or relative.startswith(METADATA_DIR + os.sep)


class ActivityDebouncer:
    """Turns bursts of file activity into one idle callback per quiet period.

    Each qualifying event clears the folder's activity-gated block and re-arms a
    single deadline; `on_idle` runs once the deadline expires without further
    qualifying events.

    Attributes:
        loop (asyncio.AbstractEventLoop): The loop owning the deadline timers.
        on_idle (Callable[[FolderSyncState], None]): Called when a deadline expires.
        delay (float): The quiet period in seconds.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        on_idle: Callable[[FolderSyncState], None],
        delay: float = IDLE_DELAY_SECONDS,
    ):
        self.loop = loop
        self.on_idle = on_idle
        self.delay = delay

    def on_event(self, state: FolderSyncState, path: Path | str) -> bool:
        """Handles one create/change/delete/rename event.

        Returns:
            bool: True if the event qualified and the deadline was re-armed.
        """
        if not state.active:
            return False
        if is_ignored_path(state.folder.path, Path(path)):
            return False

        state.blocked_until_activity = False
        self.rearm(state)
        return True

    def rearm(self, state: FolderSyncState) -> None:
        self.cancel(state)
        state.idle_deadline = self.loop.call_later(self.delay, self._expire, state)

    def cancel(self, state: FolderSyncState) -> None:
        if state.idle_deadline is not None:
            state.idle_deadline.cancel()
            state.idle_deadline = None

    def _expire(self, state: FolderSyncState) -> None:
        state.idle_deadline = None
        logger.debug(f"IDLE {state.folder.name}: Quiet period elapsed.")
        self.on_idle(state)
