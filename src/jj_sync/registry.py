import asyncio
import logging
from collections.abc import Callable, Coroutine, Iterable, Iterator
from pathlib import Path
from typing import Any

from .config import Settings
from .constants import APP_NAME, IDLE_DELAY_SECONDS, PULL_INTERVAL_SECONDS
from .debounce import ActivityDebouncer
from .gate import ConsentGate
from .orchestrator import SyncOrchestrator
from .scheduler import PullScheduler
from .state import Folder, FolderSyncState, Subscription
from .watcher import FolderWatcher

logger = logging.getLogger(APP_NAME)

WatchFactory = Callable[[Path, Callable[[Path], object]], Subscription]


class WorkspaceRegistry:
    """Owns one FolderSyncState per tracked folder and its activation lifecycle.

    Folders enter through `ensure` (or `sync_folders` for a whole list) and leave
    through `dispose`. Every activation decision goes through `refresh`: the
    folder must be enabled in its configuration and pass the consent gate, after
    which its file watcher, pull interval and a startup pull are started. Any
    other outcome stops synchronization and leaves the record dormant.

    Attributes:
        gate (ConsentGate): The consent policy.
        orchestrator (SyncOrchestrator): Runs version-control command sequences.
        settings (Settings): Source of the per-folder enable flag.
        debouncer (ActivityDebouncer): Turns file activity into idle cycles.
        scheduler (PullScheduler): Triggers interval pulls.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        gate: ConsentGate,
        orchestrator: SyncOrchestrator,
        settings: Settings | None = None,
        watch_factory: WatchFactory = FolderWatcher.subscribe,
        idle_delay: float = IDLE_DELAY_SECONDS,
        pull_interval: float = PULL_INTERVAL_SECONDS,
    ):
        self.loop = loop
        self.gate = gate
        self.orchestrator = orchestrator
        self.settings = settings or Settings()
        self.watch_factory = watch_factory
        self.debouncer = ActivityDebouncer(loop, self._on_idle, idle_delay)
        self.scheduler = PullScheduler(loop, self._on_tick, pull_interval)
        self._states: dict[str, FolderSyncState] = {}
        self._tasks: set[asyncio.Task] = set()

    # --- Lookup ---

    def __len__(self) -> int:
        return len(self._states)

    def __iter__(self) -> Iterator[FolderSyncState]:
        return iter(list(self._states.values()))

    def get(self, path: Path) -> FolderSyncState | None:
        return self._states.get(Folder.from_path(path).key)

    def owner_of(self, path: Path) -> FolderSyncState | None:
        """Finds the tracked folder containing `path` (the innermost one wins)."""
        target = Path(path).expanduser().resolve()
        best = None
        for state in self._states.values():
            root = state.folder.path
            if target == root or root in target.parents:
                if best is None or len(root.parts) > len(best.folder.path.parts):
                    best = state
        return best

    # --- Task bookkeeping ---

    def spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Runs a coroutine in the background, keeping a reference until it ends."""
        task = self.loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        if exc := task.exception():
            logger.error(f"TASK ERROR: {exc!r}", exc_info=exc)

    def _on_idle(self, state: FolderSyncState) -> None:
        self.spawn(self.orchestrator.handle_idle(state))

    def _on_tick(self, state: FolderSyncState) -> None:
        self.spawn(self.orchestrator.run_pull(state, "interval"))

    # --- Lifecycle ---

    async def ensure(self, folder: Folder) -> FolderSyncState:
        """Gets or creates the state for a folder and re-evaluates activation.

        Args:
            folder (Folder): The folder that became known.

        Returns:
            FolderSyncState: The folder's state record.
        """
        state = self._states.get(folder.key)
        if state is None:
            state = FolderSyncState(folder=folder)
            self._states[folder.key] = state
            logger.info(f"TRACKING {folder.name}: {folder.path}")
        state.folder = folder
        self.gate.load_approval(state)
        await self.refresh(state)
        return state

    def dispose(self, folder: Folder) -> None:
        """Stops synchronization for a folder and forgets its state."""
        state = self._states.pop(folder.key, None)
        if state is None:
            return
        self.stop_sync(state)
        logger.info(f"UNTRACKED {folder.name}")

    async def sync_folders(self, folders: Iterable[Folder]) -> None:
        """Reconciles the tracked set with a complete list of open folders."""
        wanted = {folder.key: folder for folder in folders}
        for key, state in list(self._states.items()):
            if key not in wanted:
                self.dispose(state.folder)
        await asyncio.gather(*(self.ensure(folder) for folder in wanted.values()))

    async def on_configuration_changed(self) -> None:
        """Re-evaluates activation for every tracked folder."""
        await asyncio.gather(*(self.refresh(state) for state in self))

    def on_files_renamed(self, renames: Iterable[tuple[Path, Path]]) -> None:
        """Routes rename notifications to the owning folder as file activity.

        Args:
            renames (Iterable[tuple[Path, Path]]): (old_path, new_path) pairs.
        """
        for old_path, new_path in renames:
            state = self.owner_of(new_path) or self.owner_of(old_path)
            if state is None or not state.is_syncing:
                continue
            self.debouncer.on_event(state, new_path)

    async def refresh(self, state: FolderSyncState) -> None:
        """Starts or stops synchronization according to configuration and consent."""
        state.active = self.settings.is_enabled(state.folder.path)
        if not state.active:
            self.stop_sync(state)
            return

        if not await self.gate.allow(state):
            self.stop_sync(state)
            return

        # The folder may have been removed or disabled while the gate prompted.
        if self._states.get(state.folder.key) is not state or not state.active:
            return
        self.start_sync(state)

    def start_sync(self, state: FolderSyncState) -> None:
        if state.watch_subscription is None:
            state.watch_subscription = self.watch_factory(
                state.folder.path,
                lambda path: self.debouncer.on_event(state, path),
            )
            logger.info(f"WATCHING {state.folder.name}")
        self.scheduler.start(state)
        self.spawn(self.orchestrator.run_pull(state, "startup"))

    def stop_sync(self, state: FolderSyncState) -> None:
        if state.watch_subscription is not None:
            state.watch_subscription.dispose()
            state.watch_subscription = None
            logger.info(f"STOPPED {state.folder.name}")
        self.debouncer.cancel(state)
        self.scheduler.stop(state)
        state.invalidate()

    def close(self) -> None:
        """Stops every folder and clears the registry (process shutdown)."""
        for state in list(self._states.values()):
            self.stop_sync(state)
        self._states.clear()
