import asyncio
import logging
import os
from collections.abc import Callable
from pathlib import Path

from watchfiles import DefaultFilter, awatch

from .constants import APP_NAME, METADATA_DIR

logger = logging.getLogger(APP_NAME)


def metadata_filter(root: Path) -> DefaultFilter:
    """Builds a watch filter that drops only paths under `root/.jj` and `root/.git`."""
    return DefaultFilter(
        ignore_dirs=(),
        ignore_entity_patterns=(),
        ignore_paths=tuple(f"{root / name}{os.sep}" for name in (METADATA_DIR, ".git")),
    )


class FolderWatcher:
    """Recursive file watch over one folder, delivering each changed path.

    The watch runs as a task on the current event loop and stops when
    `dispose()` is called. Only the `.jj` and `.git` internals of the root are
    filtered out; editor swap files, build output and dependency directories
    all count as activity.

    Attributes:
        root (Path): The watched folder root.
        on_change (Callable[[Path], object]): Called for every created, modified
            or deleted path (renames arrive as a deletion plus a creation).
    """

    def __init__(self, root: Path, on_change: Callable[[Path], object]):
        self.root = root
        self.watch_filter = metadata_filter(root)
        self.on_change = on_change
        self._stop = asyncio.Event()
        self._task: asyncio.Task | None = None

    @classmethod
    def subscribe(
        cls, root: Path, on_change: Callable[[Path], object]
    ) -> "FolderWatcher":
        """Creates a watcher and starts it on the running loop."""
        watcher = cls(root, on_change)
        watcher._task = asyncio.get_running_loop().create_task(
            watcher._run(), name=f"watch:{root}"
        )
        return watcher

    async def _run(self) -> None:
        try:
            async for changes in awatch(
                self.root,
                watch_filter=self.watch_filter,
                stop_event=self._stop,
                recursive=True,
            ):
                for _change, path_str in changes:
                    self.on_change(Path(path_str))
        except FileNotFoundError:
            logger.error(f"WATCH ERROR {self.root.name}: Folder no longer exists.")
        except Exception:
            logger.exception(f"WATCH ERROR {self.root.name}")

    def dispose(self) -> None:
        self._stop.set()
