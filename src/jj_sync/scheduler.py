import asyncio
from collections.abc import Callable

from .constants import PULL_INTERVAL_SECONDS
from .state import FolderSyncState


class PullScheduler:
    """Fires `on_tick` for a folder every `interval` seconds while it is armed."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        on_tick: Callable[[FolderSyncState], None],
        interval: float = PULL_INTERVAL_SECONDS,
    ):
        self.loop = loop
        self.on_tick = on_tick
        self.interval = interval

    def start(self, state: FolderSyncState) -> None:
        if state.pull_interval is None:
            self._schedule(state)

    def stop(self, state: FolderSyncState) -> None:
        if state.pull_interval is not None:
            state.pull_interval.cancel()
            state.pull_interval = None

    def _schedule(self, state: FolderSyncState) -> None:
        state.pull_interval = self.loop.call_later(self.interval, self._tick, state)

    def _tick(self, state: FolderSyncState) -> None:
        # Re-arm first so a failing tick never stops the interval.
        self._schedule(state)
        self.on_tick(state)
