import asyncio
import atexit
import logging
import os
import signal
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from watchfiles import awatch

from .config import Config, Settings
from .constants import (
    APP_NAME,
    CONFIG_DIR,
    CONFIG_FILE,
    CONSENT_FILE,
    LOCAL_CONFIG_NAME,
    LOG_FILE,
    PID_FILE,
    REGISTRY_FILE,
)
from .gate import ConsentGate
from .orchestrator import SyncOrchestrator
from .registry import WorkspaceRegistry
from .state import Folder, FolderSyncState
from .store import ConsentStore
from .system import SystemStrategy, get_registered_folders, get_system

logger = logging.getLogger(APP_NAME)
logger.setLevel(logging.INFO)

console = Console()


def load_folders(registry_file: Path = REGISTRY_FILE) -> list[Folder]:
    """Reads the folder registry, skipping entries that no longer exist.

    Args:
        registry_file (Path): The registry file to read.

    Returns:
        list[Folder]: The folders to track.
    """
    folders = []
    for path in get_registered_folders(registry_file):
        if not path.is_dir():
            logger.warning(f"SKIPPED {path}: Path missing.")
            continue
        folders.append(Folder.from_path(path))
    return folders


class Daemon:
    """Long-running process wiring the registry to its external event sources.

    Folder additions and removals come from the registry file maintained by the
    CLI; configuration changes come from the global config file and each folder's
    local config; consent granted from the CLI comes from the consent store.

    Attributes:
        registry (WorkspaceRegistry): The per-folder state owner.
        registry_file (Path): The folder registry file.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        system: SystemStrategy,
        store: ConsentStore | None = None,
        registry_file: Path = REGISTRY_FILE,
    ):
        self.store = store or ConsentStore()
        self.registry_file = registry_file
        settings = Settings()
        timing = Config.load().sync
        gate = ConsentGate(self.store, system)
        orchestrator = SyncOrchestrator(gate, system, settings)
        self.registry = WorkspaceRegistry(
            loop,
            gate,
            orchestrator,
            settings,
            idle_delay=timing.idle_delay,
            pull_interval=timing.pull_interval,
        )
        self._stop = asyncio.Event()

    def stop(self) -> None:
        self._stop.set()

    def _watched_files(self) -> set[Path]:
        files = {self.registry_file, CONFIG_FILE, self.store.path}
        for state in self.registry:
            files.add(state.folder.path / LOCAL_CONFIG_NAME)
            files.add(state.folder.path / "pyproject.toml")
        return files

    async def reload_folders(self) -> None:
        await self.registry.sync_folders(load_folders(self.registry_file))
        logger.info(f"REGISTRY: Tracking {len(self.registry)} folder(s).")

    async def reload_settings(self, changed: set[Path]) -> None:
        if CONFIG_FILE in changed:
            self.registry.settings.reload()
        if self.store.path in changed:
            for state in self.registry:
                self.registry.gate.load_approval(state)
        await self.registry.on_configuration_changed()

    async def _watch_settings(self) -> None:
        """Reacts to registry, configuration and consent changes until stopped.

        The set of watched directories depends on the tracked folders, so the
        watch restarts whenever the folder registry changes.
        """
        while not self._stop.is_set():
            targets = self._watched_files()
            roots = sorted({p.parent for p in targets if p.parent.is_dir()})
            folders_changed = False

            async for changes in awatch(
                *roots,
                watch_filter=lambda _change, path: Path(path) in targets,
                stop_event=self._stop,
                recursive=False,
            ):
                changed = {Path(path) for _change, path in changes}
                if self.registry_file in changed:
                    folders_changed = True
                    break
                logger.info("CONFIG: Change detected, re-evaluating folders.")
                self.registry.spawn(self.reload_settings(changed))

            if folders_changed:
                await self.reload_folders()

    async def run(self) -> None:
        """Tracks every registered folder until `stop()` is called."""
        CONFIG_DIR.mkdir(parents=True, exist_ok=True)
        self.registry.spawn(self.reload_folders())
        watch_task = asyncio.create_task(self._watch_settings())
        try:
            await self._stop.wait()
        finally:
            logger.info("SHUTDOWN: Releasing watchers and timers.")
            self.registry.close()
            watch_task.cancel()


async def serve(interactive: bool = False) -> None:
    """Runs the daemon on the current event loop, stopping on SIGINT/SIGTERM."""
    loop = asyncio.get_running_loop()
    daemon = Daemon(loop, get_system(interactive))
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, daemon.stop)
        except (NotImplementedError, RuntimeError):
            pass  # Not supported on this platform; Ctrl+C still interrupts.
    await daemon.run()


async def sync_once(path: Path, system: SystemStrategy) -> FolderSyncState | None:
    """Runs a single pull, check, commit and push cycle for one folder.

    The consent gate still applies; the enable setting and the activity block do
    not.

    Args:
        path (Path): The folder root.
        system (SystemStrategy): The notification surface.

    Returns:
        FolderSyncState | None: The resulting state (see `last_error`), or None if
        the folder has neither a .gitignore nor an approval.
    """
    store = ConsentStore()
    gate = ConsentGate(store, system)
    orchestrator = SyncOrchestrator(gate, system)
    state = FolderSyncState(folder=Folder.from_path(path), active=True)
    gate.load_approval(state)
    if not await gate.allow(state):
        logger.warning(f"SKIPPED {state.folder.name}: Sync not permitted.")
        return None
    await orchestrator.handle_idle(state)
    return state


def setup_logging(interactive: bool) -> None:
    """Configures the logging subsystem.

    Args:
        interactive (bool): If True, logs to stdout. If False, logs to file/stderr
                            with rotation enabled.
    """
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )

    # Always log to stderr (captured by systemd/launchd).
    stream_handler = logging.StreamHandler(
        sys.stderr if not interactive else sys.stdout
    )
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if not interactive:
        # In daemon mode, rotate logs to file.
        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=Config.load().limits.max_log_size,
            backupCount=5,
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)


def main(interactive: bool = False) -> None:
    """Entry point of the background daemon.

    Args:
        interactive (bool, optional): Whether to run in the foreground, answering
                                      consent prompts on the terminal.
                                      Defaults to False.
    """
    setup_logging(interactive)

    # PID File Management.
    if not interactive:
        try:
            with open(PID_FILE, "w") as f:
                f.write(str(os.getpid()))

            # Ensure cleanup on exit.
            atexit.register(lambda: PID_FILE.unlink(missing_ok=True))
        except OSError as e:
            logger.warning(f"Could not write PID file: {e}")

    if not REGISTRY_FILE.exists():
        logger.info("Registry empty. Run 'jj-sync' in a folder to register it.")

    try:
        asyncio.run(serve(interactive))
    except KeyboardInterrupt:
        if interactive:
            console.print("\nStopped.", style="dim")


if __name__ == "__main__":
    main()
