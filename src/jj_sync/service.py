import plistlib
import shutil
import subprocess
import sys
from pathlib import Path

from rich.console import Console

from .constants import APP_LABEL, LOG_FILE

console = Console()


def get_executable() -> str:
    """Locates the installed daemon executable in the system path.

    Returns:
        str: The absolute path to the 'jj-sync-daemon' executable.

    Raises:
        SystemExit: If the executable is not found in the PATH.
    """
    exe = shutil.which("jj-sync-daemon")
    if not exe:
        console.print(
            "[bold red]ERROR:[/bold red] Could not find 'jj-sync-daemon'. "
            "Ensure the package is installed."
        )
        sys.exit(1)
    return exe


def get_paths() -> tuple[Path, Path]:
    """Resolves the service definition and log file paths for the current OS.

    Returns:
        tuple[Path, Path]: A tuple containing (service_unit_path, log_file_path).

    Raises:
        NotImplementedError: On platforms without a supported service manager.
    """
    home = Path.home()
    if sys.platform.startswith("linux"):
        return home / f".config/systemd/user/{APP_LABEL}.service", LOG_FILE
    if sys.platform == "darwin":
        return home / f"Library/LaunchAgents/{APP_LABEL}.plist", LOG_FILE

    raise NotImplementedError(f"Service installation is not supported on {sys.platform}.")


def install_linux(unit_path: Path, executable: str) -> None:
    """Configures and enables a systemd user service for Linux.

    The daemon is long-running, so the unit restarts it if it ever exits with an
    error instead of scheduling it on a timer.

    Args:
        unit_path (Path): The target path for the .service file.
        executable (str): The path to the daemon executable.
    """
    unit_path.parent.mkdir(parents=True, exist_ok=True)

    service_content = f"""[Unit]
Description=jj-sync Working Copy Synchronization Daemon

[Service]
ExecStart={executable}
Restart=on-failure
RestartSec=30

[Install]
WantedBy=default.target
"""

    with open(unit_path, "w") as f:
        f.write(service_content)

    subprocess.run(["systemctl", "--user", "daemon-reload"], check=True)
    subprocess.run(
        ["systemctl", "--user", "enable", "--now", f"{APP_LABEL}.service"], check=True
    )
    console.print(
        f"[bold green]SUCCESS:[/bold green] jj-sync systemd service active (Linux).\n"
        f"Check status: systemctl --user status {APP_LABEL}.service"
    )


def install_macos(plist_path: Path, log_path: Path, executable: str) -> None:
    """Writes and loads a launchd agent that keeps the daemon running.

    Args:
        plist_path (Path): The target path for the agent plist.
        log_path (Path): File receiving the daemon's stderr.
        executable (str): The path to the daemon executable.
    """
    plist_path.parent.mkdir(parents=True, exist_ok=True)
    agent = {
        "Label": APP_LABEL,
        "ProgramArguments": [executable],
        "RunAtLoad": True,
        "KeepAlive": {"SuccessfulExit": False},
        "StandardErrorPath": str(log_path.with_suffix(".stderr")),
    }
    with open(plist_path, "wb") as f:
        plistlib.dump(agent, f)

    subprocess.run(["launchctl", "load", "-w", str(plist_path)], check=True)
    console.print(
        f"[bold green]SUCCESS:[/bold green] jj-sync launchd agent loaded (macOS).\n"
        f"Check status: launchctl list {APP_LABEL}"
    )


def install() -> None:
    """Installs the background daemon service for the current OS."""
    exe = get_executable()
    path, log = get_paths()

    console.print("Installing background service...")
    if sys.platform.startswith("linux"):
        install_linux(path, exe)
    elif sys.platform == "darwin":
        install_macos(path, log, exe)


def uninstall() -> None:
    """Stops and removes the background daemon service."""
    path, _ = get_paths()

    if sys.platform.startswith("linux"):
        subprocess.run(
            ["systemctl", "--user", "disable", "--now", f"{APP_LABEL}.service"],
            stderr=subprocess.DEVNULL,
        )
        if path.exists():
            path.unlink()
        subprocess.run(["systemctl", "--user", "daemon-reload"])

    elif sys.platform == "darwin":
        if path.exists():
            subprocess.run(
                ["launchctl", "unload", "-w", str(path)], stderr=subprocess.DEVNULL
            )
            path.unlink()

    console.print("[bold green]SUCCESS:[/bold green] Service uninstalled.")


def is_service_enabled() -> bool:
    """Checks whether the background service is registered with the OS."""
    try:
        path, _ = get_paths()
    except NotImplementedError:
        return False
    if not path.exists():
        return False

    if sys.platform.startswith("linux"):
        try:
            res = subprocess.run(
                ["systemctl", "--user", "is-enabled", f"{APP_LABEL}.service"],
                capture_output=True,
                text=True,
            )
        except FileNotFoundError:
            return False
        return res.stdout.strip() == "enabled"
    return True
