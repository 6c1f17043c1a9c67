import asyncio
import logging
from typing import Protocol

from .constants import APP_NAME, ENABLE_SYNC_ACTION, IGNORE_FILE
from .state import FolderSyncState
from .store import approval_key
from .system import SystemStrategy

logger = logging.getLogger(APP_NAME)


class KeyValueStore(Protocol):
    def get(self, key: str, default: bool = False) -> bool: ...

    def update(self, key: str, value: bool) -> None: ...


def has_ignore_file(state: FolderSyncState) -> bool:
    return (state.folder.path / IGNORE_FILE).exists()


class ConsentGate:
    """Decides whether a folder may be synchronized at all.

    A folder with a `.gitignore` at its root is always allowed. Without one, the
    user must have approved the folder once; the approval is persisted per folder
    path. The approval prompt is shown at most once per folder for the lifetime
    of the process, however often the gate is consulted.

    Attributes:
        store (KeyValueStore): Persistent storage for approvals.
        system (SystemStrategy): The notification surface used for the prompt.
    """

    def __init__(self, store: KeyValueStore, system: SystemStrategy):
        self.store = store
        self.system = system

    def load_approval(self, state: FolderSyncState) -> None:
        """Refreshes the persisted approval flag of a folder from the store."""
        state.consent_approved = self.store.get(approval_key(state.folder.path), False)

    async def allow(self, state: FolderSyncState) -> bool:
        """Evaluates the consent policy for a folder, prompting if needed.

        Args:
            state (FolderSyncState): The folder being evaluated.

        Returns:
            bool: True if synchronization may run.
        """
        if has_ignore_file(state):
            return True
        if state.consent_approved:
            return True
        if state.missing_consent_notified:
            return False

        state.missing_consent_notified = True
        logger.info(f"CONSENT {state.folder.name}: No {IGNORE_FILE}, asking user.")
        message = (
            f"No {IGNORE_FILE} found in {state.folder.name}. "
            "Click to enable sync anyway."
        )
        chosen = await asyncio.to_thread(
            self.system.ask, APP_NAME, message, ENABLE_SYNC_ACTION
        )
        if not chosen:
            logger.info(f"CONSENT {state.folder.name}: Declined.")
            return False

        state.consent_approved = True
        self.store.update(approval_key(state.folder.path), True)
        logger.info(f"CONSENT {state.folder.name}: Approved.")
        return True
