import asyncio
import logging
from collections.abc import Callable

from .config import Settings
from .constants import APP_NAME
from .gate import ConsentGate
from .jj_wrapper import JjRepo, format_error
from .state import FolderSyncState, Phase
from .system import SystemStrategy, get_commit_message

logger = logging.getLogger(APP_NAME)


class SyncOrchestrator:
    """Runs the version-control command sequences for every folder.

    Two entry points share one per-folder lock (`FolderSyncState.begin`):

    * `run_pull` is the scheduled, pull-only path (startup and interval). Its
      failures are reported once until the next success and never propagate.
    * `handle_idle` runs after a quiet period: pull, check for pending changes,
      then commit and push. It holds the lock for the whole cycle and calls the
      lock-free `_pull` step directly. Any failure blocks the folder until new
      file activity arrives.

    A concurrent trigger finding the lock taken is dropped, never queued.

    Attributes:
        gate (ConsentGate): Consulted again before every idle cycle.
        system (SystemStrategy): The notification surface.
        settings (Settings): Resolves per-folder binary and target branch.
        commit_message (Callable[[], str]): Produces the automatic commit message.
    """

    def __init__(
        self,
        gate: ConsentGate,
        system: SystemStrategy,
        settings: Settings | None = None,
        commit_message: Callable[[], str] = get_commit_message,
    ):
        self.gate = gate
        self.system = system
        self.settings = settings or Settings()
        self.commit_message = commit_message

    def _repo(self, state: FolderSyncState) -> tuple[JjRepo, str]:
        config = self.settings.for_folder(state.folder.path)
        return JjRepo(state.folder.path, config.core.jj_binary), config.core.target_branch

    async def _notify(self, message: str) -> None:
        try:
            await asyncio.to_thread(self.system.notify, APP_NAME, message)
        except Exception as e:
            logger.warning(f"Notification failed: {e}")

    async def _pull(self, state: FolderSyncState, token: int, repo: JjRepo) -> None:
        """Fetches and imports remote changes. The caller must hold the lock.

        Raises:
            Exception: The fetch or import failure, after it has been reported.
        """
        name = state.folder.name
        try:
            await repo.git_fetch()
            await repo.git_import()
        except Exception as e:
            if state.is_current(token):
                message = format_error(e)
                state.last_error = message
                logger.error(f"PULL ERROR {name}: {message}")
                if not state.pull_failure_notified:
                    state.pull_failure_notified = True
                    await self._notify(f"jj-sync pull failed in {name}: {message}")
            raise

        if state.is_current(token):
            state.pull_failure_notified = False
            state.last_error = None
            logger.debug(f"PULLED {name}")

    async def run_pull(self, state: FolderSyncState, reason: str = "interval") -> None:
        """Runs a scheduled pull unless another operation holds the folder lock.

        Args:
            state (FolderSyncState): The folder to pull.
            reason (str): Either 'startup' or 'interval', for logging.
        """
        token = state.begin(Phase.PULLING)
        if token is None:
            logger.debug(f"SKIPPED {state.folder.name}: {reason} pull, busy.")
            return

        try:
            repo, _ = self._repo(state)
            await self._pull(state, token, repo)
        except Exception:
            # Already reported by _pull; the next trigger retries.
            return
        finally:
            state.finish(token)

    async def handle_idle(self, state: FolderSyncState) -> None:
        """Runs one pull, check, commit and push cycle after a quiet period.

        Args:
            state (FolderSyncState): The folder whose idle deadline expired.
        """
        if (
            not state.active
            or state.operation_in_flight
            or state.blocked_until_activity
        ):
            return

        if not await self.gate.allow(state):
            return

        # The consent prompt may have taken a while; re-check before locking.
        if not state.active:
            return
        token = state.begin(Phase.PULLING)
        if token is None:
            return

        name = state.folder.name
        try:
            repo, branch = self._repo(state)
            await self._pull(state, token, repo)

            if not state.advance(token, Phase.CHECKING):
                return
            if not await repo.has_pending_changes():
                logger.debug(f"SKIPPED {name}: No pending changes.")
                return

            if not state.advance(token, Phase.COMMITTING):
                return
            await repo.commit(self.commit_message())

            if not state.advance(token, Phase.PUSHING):
                return
            await repo.git_push(branch)

            logger.info(f"SYNCED {name}: Committed and pushed to {branch}.")
        except Exception as e:
            if not state.is_current(token):
                return
            message = format_error(e)
            state.blocked_until_activity = True
            state.last_error = message
            logger.error(f"SYNC ERROR {name}: {message}")
            await self._notify(f"jj-sync failed in {name}: {message}")
        finally:
            state.finish(token)
