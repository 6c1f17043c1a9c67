"""Shared fixtures: a deterministic timer clock and fake collaborators."""

import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest

from jj_sync.config import Config
from jj_sync.gate import ConsentGate
from jj_sync.state import Folder, FolderSyncState
from jj_sync.store import MemoryStore
from jj_sync.system import SystemStrategy


class FakeHandle:
    """Timer handle returned by FakeLoop.call_later."""

    def __init__(self, when: float, callback: Callable[..., Any], args: tuple):
        self.when = when
        self.callback = callback
        self.args = args
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled


class FakeLoop:
    """Timer half of an event loop driven by `advance()` instead of wall time.

    Tasks are delegated to the real running loop so that spawned coroutines
    still execute.
    """

    def __init__(self) -> None:
        self.now = 0.0
        self.handles: list[FakeHandle] = []

    def time(self) -> float:
        return self.now

    def call_later(
        self, delay: float, callback: Callable[..., Any], *args: Any
    ) -> FakeHandle:
        handle = FakeHandle(self.now + delay, callback, args)
        self.handles.append(handle)
        return handle

    def create_task(self, coro: Any) -> asyncio.Task:
        return asyncio.get_running_loop().create_task(coro)

    @property
    def pending(self) -> list[FakeHandle]:
        return [h for h in self.handles if not h.cancelled()]

    def advance(self, seconds: float) -> None:
        """Moves the clock forward, firing due callbacks in deadline order."""
        target = self.now + seconds
        while True:
            due = [h for h in self.pending if h.when <= target]
            if not due:
                break
            handle = min(due, key=lambda h: h.when)
            self.handles.remove(handle)
            self.now = handle.when
            handle.callback(*handle.args)
        self.now = target


class StaticSettings:
    """Settings stand-in with a per-folder enable switch."""

    def __init__(self, enabled: bool = True, config: Config | None = None):
        self.enabled = enabled
        self.overrides: dict[Path, bool] = {}
        self.config = config or Config()

    def is_enabled(self, folder_path: Path) -> bool:
        return self.overrides.get(folder_path, self.enabled)

    def for_folder(self, folder_path: Path) -> Config:
        return self.config

    def reload(self) -> None:
        pass


@pytest.fixture
def fake_loop() -> FakeLoop:
    return FakeLoop()


@pytest.fixture
def settings() -> StaticSettings:
    return StaticSettings()


@pytest.fixture
def system(mocker: MagicMock) -> MagicMock:
    """A notification surface that records calls and dismisses prompts."""
    strategy = mocker.MagicMock(spec=SystemStrategy)
    strategy.ask.return_value = False
    return strategy


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def gate(store: MemoryStore, system: MagicMock) -> ConsentGate:
    return ConsentGate(store, system)


@pytest.fixture
def folder(tmp_path: Path) -> Folder:
    """A working copy root with a .gitignore and a .jj directory."""
    root = tmp_path / "project"
    root.mkdir()
    (root / ".jj").mkdir()
    (root / ".gitignore").write_text("*.log\n")
    return Folder.from_path(root)


@pytest.fixture
def state(folder: Folder) -> FolderSyncState:
    return FolderSyncState(folder=folder, active=True)


@pytest.fixture
def repo(mocker: MagicMock) -> MagicMock:
    """Replaces JjRepo in the orchestrator with an AsyncMock instance."""
    instance = mocker.AsyncMock()
    instance.has_pending_changes.return_value = True
    mocker.patch("jj_sync.orchestrator.JjRepo", return_value=instance)
    return instance


@pytest.fixture
def drain() -> Callable[[Any], Any]:
    """Returns a coroutine function awaiting every task a registry spawned."""

    async def _drain(registry: Any) -> None:
        while registry._tasks:
            await asyncio.gather(*list(registry._tasks), return_exceptions=True)

    return _drain
