import asyncio
import logging
from pathlib import Path

from .constants import APP_NAME, DEFAULT_BRANCH

logger = logging.getLogger(APP_NAME)


class JjError(RuntimeError):
    """Raised when a `jj` invocation fails.

    The message is the command's own error text where available, otherwise a
    generic description of the failure.
    """


def format_error(error: BaseException) -> str:
    """Normalizes an exception into a human-readable notification message."""
    message = str(error).strip()
    return message or type(error).__name__


class JjRepo:
    """An async wrapper around the Jujutsu command-line interface for one folder.

    Every method runs a single `jj` subcommand with the folder root as the working
    directory. Commands run as subprocesses on the event loop, so awaiting them
    never blocks other folders.

    Attributes:
        path (Path): The file system path to the working copy root.
        binary (str): The `jj` executable to invoke.
    """

    def __init__(self, path: Path, binary: str = "jj"):
        self.path = path
        self.binary = binary

    async def _run(self, args: list[str]) -> str:
        """Executes a `jj` command within the working copy.

        Args:
            args (list[str]): A list of arguments to pass to the jj command.

        Returns:
            str: The decoded stdout of the command.

        Raises:
            JjError: If the command cannot be started or exits non-zero.
        """
        logger.debug(f"RUN {self.path.name}: {self.binary} {' '.join(args)}")
        try:
            proc = await asyncio.create_subprocess_exec(
                self.binary,
                *args,
                cwd=self.path,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await proc.communicate()
        except FileNotFoundError:
            raise JjError(f"'{self.binary}' executable not found") from None
        except OSError as e:
            raise JjError(f"Failed to run {self.binary}: {e}") from e

        if proc.returncode != 0:
            detail = stderr.decode(errors="replace").strip()
            raise JjError(
                detail
                or f"{self.binary} {' '.join(args)} exited with status {proc.returncode}"
            )
        return stdout.decode(errors="replace")

    async def git_fetch(self) -> None:
        """Fetches remote updates into the backing git repository."""
        await self._run(["git", "fetch"])

    async def git_import(self) -> None:
        """Imports fetched git refs into the Jujutsu view."""
        await self._run(["git", "import"])

    async def diff_summary(self) -> list[str]:
        """Returns the summary of pending working-copy changes, one line per path."""
        output = await self._run(["--color=never", "diff", "--summary"])
        return [line for line in output.splitlines() if line.strip()]

    async def has_pending_changes(self) -> bool:
        """Checks whether the working copy has changes that are not yet committed.

        An empty summary (after stripping whitespace) means nothing is pending.
        """
        return bool(await self.diff_summary())

    async def commit(self, message: str) -> None:
        """Commits all pending changes of the working copy.

        Args:
            message (str): The commit description.
        """
        await self._run(["commit", "-m", message])

    async def git_push(self, branch: str = DEFAULT_BRANCH) -> None:
        """Pushes the bookmark for the fixed target branch to the remote.

        Args:
            branch (str): The target branch name.
        """
        await self._run(["git", "push", "-b", branch])
