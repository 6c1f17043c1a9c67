"""Per-folder synchronization state and its single-flight bookkeeping."""

import asyncio
import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol


class Subscription(Protocol):
    """A releasable handle, such as a running file watcher."""

    def dispose(self) -> None: ...


@dataclass(frozen=True)
class Folder:
    """Identity and display name of a tracked working copy root.

    Attributes:
        path (Path): The resolved absolute root path.
        name (str): The name shown in notifications.
    """

    path: Path
    name: str

    @classmethod
    def from_path(cls, path: Path) -> "Folder":
        resolved = Path(path).expanduser().resolve()
        return cls(resolved, resolved.name or str(resolved))

    @property
    def key(self) -> str:
        return str(self.path)


class Phase(enum.Enum):
    """What a folder is currently doing; anything but IDLE holds the folder lock."""

    IDLE = "idle"
    PULLING = "pulling"
    CHECKING = "checking"
    COMMITTING = "committing"
    PUSHING = "pushing"


@dataclass
class FolderSyncState:
    """Mutable synchronization record owned by the WorkspaceRegistry.

    The subscription and the interval timer exist exactly while the folder is
    active and consented; the idle deadline additionally requires a qualifying
    file event since activation.

    `generation` identifies the current activation. Stopping a folder bumps it,
    so an operation that was in flight at the time can recognise its results as
    stale and drop them instead of clobbering the fresh state.
    """

    folder: Folder
    watch_subscription: Subscription | None = None
    idle_deadline: asyncio.TimerHandle | None = None
    pull_interval: asyncio.TimerHandle | None = None
    phase: Phase = Phase.IDLE
    generation: int = 0
    blocked_until_activity: bool = False
    pull_failure_notified: bool = False
    missing_consent_notified: bool = False
    consent_approved: bool = False
    active: bool = False
    last_error: str | None = field(default=None, compare=False)

    @property
    def operation_in_flight(self) -> bool:
        return self.phase is not Phase.IDLE

    @property
    def is_syncing(self) -> bool:
        """True while the watcher and interval timer are armed."""
        return self.watch_subscription is not None

    @property
    def status(self) -> str:
        """One of Dormant, Watching, Blocked or Busy."""
        if not self.active:
            return "Dormant"
        if self.operation_in_flight:
            return "Busy"
        if self.blocked_until_activity:
            return "Blocked"
        return "Watching"

    def begin(self, phase: Phase) -> int | None:
        """Acquires the folder lock.

        Returns:
            int | None: A token for the current generation, or None if another
            operation already holds the lock.
        """
        if self.operation_in_flight:
            return None
        self.phase = phase
        return self.generation

    def is_current(self, token: int) -> bool:
        return token == self.generation

    def advance(self, token: int, phase: Phase) -> bool:
        """Moves a running operation to its next phase, unless it went stale."""
        if not self.is_current(token):
            return False
        self.phase = phase
        return True

    def finish(self, token: int) -> None:
        """Releases the folder lock held by the operation owning `token`."""
        if self.is_current(token):
            self.phase = Phase.IDLE

    def invalidate(self) -> None:
        """Forgets any in-flight operation and resets the volatile flags."""
        self.generation += 1
        self.phase = Phase.IDLE
        self.blocked_until_activity = False
