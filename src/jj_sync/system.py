import logging
import socket
import subprocess
import sys
from pathlib import Path

from rich.console import Console
from rich.prompt import Confirm

from .constants import APP_NAME, DEFAULT_COMMIT_MESSAGE, REGISTRY_FILE

console = Console()
logger = logging.getLogger(APP_NAME)


def get_registered_folders(registry_file: Path | None = None) -> list[Path]:
    """Reads the registry file and returns the list of tracked folder paths."""
    registry_file = registry_file or REGISTRY_FILE
    if not registry_file.exists():
        return []
    with open(registry_file, "r") as f:
        return [Path(line.strip()) for line in f if line.strip()]


def get_commit_message() -> str:
    """Returns the commit message for automatic commits: the local hostname.

    Falls back to a fixed literal when the hostname is unavailable.
    """
    try:
        name = socket.gethostname().strip()
    except OSError as e:
        logger.debug(f"Hostname lookup failed: {e}")
        name = ""
    return name or DEFAULT_COMMIT_MESSAGE


class SystemStrategy:
    """Base class defining the notification surface used by the daemon.

    Both methods are blocking; the daemon calls them off the event loop.
    """

    def notify(self, title: str, message: str) -> None:
        """Sends a fire-and-forget desktop notification.

        Args:
            title (str): The notification title.
            message (str): The notification body text.
        """
        logger.info(f"NOTIFY {title}: {message}")

    def ask(self, title: str, message: str, action: str) -> bool:
        """Shows a warning offering a single action.

        Args:
            title (str): The dialog title.
            message (str): The warning text.
            action (str): The label of the only actionable choice.

        Returns:
            bool: True if the user chose the action, False if they dismissed it.
        """
        logger.warning(f"PROMPT {title}: {message} (no dialog available)")
        return False


class MacOSStrategy(SystemStrategy):
    """System strategy implementation for macOS."""

    def notify(self, title: str, message: str) -> None:
        """Sends a notification using AppleScript."""
        # Sanitize quotes to prevent AppleScript syntax errors.
        clean_msg = message.replace('"', "'")
        script = f'display notification "{clean_msg}" with title "{title}"'
        try:
            subprocess.run(["osascript", "-e", script], stderr=subprocess.DEVNULL)
        except OSError as e:
            logger.debug(f"osascript notification failed: {e}")

    def ask(self, title: str, message: str, action: str) -> bool:
        """Shows a modal AppleScript dialog with a dismiss button and the action."""
        clean_msg = message.replace('"', "'")
        script = (
            f'display dialog "{clean_msg}" with title "{title}" '
            f'buttons {{"Dismiss", "{action}"}} default button "Dismiss" '
            "with icon caution"
        )
        try:
            res = subprocess.run(
                ["osascript", "-e", script],
                capture_output=True,
                text=True,
            )
        except OSError as e:
            logger.warning(f"Consent dialog failed: {e}")
            return False
        return f"button returned:{action}" in res.stdout


class LinuxStrategy(SystemStrategy):
    """System strategy implementation for Linux."""

    def notify(self, title: str, message: str) -> None:
        """Sends a notification using `notify-send`."""
        try:
            subprocess.run(["notify-send", title, message], stderr=subprocess.DEVNULL)
        except FileNotFoundError:
            logger.info(f"NOTIFY {title}: {message}")

    def ask(self, title: str, message: str, action: str) -> bool:
        """Shows an actionable notification and waits for the user's choice.

        Requires a `notify-send` supporting `--action` (libnotify 0.7.10+); the
        chosen action key is printed on stdout.
        """
        try:
            res = subprocess.run(
                [
                    "notify-send",
                    "--urgency=critical",
                    f"--action=enable={action}",
                    "--wait",
                    title,
                    message,
                ],
                capture_output=True,
                text=True,
            )
        except FileNotFoundError:
            logger.warning(f"PROMPT {title}: {message} (notify-send not installed)")
            return False
        return res.stdout.strip() == "enable"


class ConsoleStrategy(SystemStrategy):
    """Interactive strategy used when the daemon runs in the foreground."""

    def notify(self, title: str, message: str) -> None:
        console.print(f"[bold red]{title}:[/bold red] {message}")

    def ask(self, title: str, message: str, action: str) -> bool:
        console.print(f"[bold yellow]WARNING:[/bold yellow] {message}")
        return Confirm.ask(f"   {action}?", default=False)


def get_system(interactive: bool = False) -> SystemStrategy:
    """Factory function to retrieve the platform-specific system strategy.

    Args:
        interactive (bool): Whether a terminal is attached to answer prompts.

    Returns:
        SystemStrategy: An instance of ConsoleStrategy, MacOSStrategy,
        LinuxStrategy, or the log-only base strategy.
    """
    if interactive:
        return ConsoleStrategy()
    if sys.platform == "darwin":
        return MacOSStrategy()
    elif sys.platform.startswith("linux"):
        return LinuxStrategy()
    else:
        return SystemStrategy()
