import argparse
import asyncio
import logging
import os
import subprocess
import sys
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from . import daemon, service, system
from .config import CONFIG_FILE, Config, write_local_enabled
from .constants import (
    APP_NAME,
    IGNORE_FILE,
    LOG_FILE,
    METADATA_DIR,
    PID_FILE,
    REGISTRY_FILE,
)
from .store import ConsentStore, approval_key

logger = logging.getLogger(APP_NAME)
console = Console()


def _require_working_copy() -> Path:
    """Returns the current folder, exiting if it is not a jj working copy."""
    cwd = Path.cwd()
    if not (cwd / METADATA_DIR).exists():
        console.print("[bold red]Not a jj working copy.[/bold red]")
        sys.exit(1)
    return cwd


def _daemon_running() -> bool:
    if not PID_FILE.exists():
        return False
    try:
        with open(PID_FILE) as f:
            pid = int(f.read().strip())
        os.kill(pid, 0)
        return True
    except (ValueError, OSError):
        return False


def setup_folder(registry_path: Path = REGISTRY_FILE) -> None:
    """Registers the current working copy with the daemon.

    Args:
        registry_path (Path, optional): Path to the registry file.
                                        Defaults to REGISTRY_FILE.
    """
    cwd = _require_working_copy()
    config = Config.load(cwd)

    if not (cwd / IGNORE_FILE).exists():
        console.print(
            f"[bold yellow]WARNING:[/bold yellow] No {IGNORE_FILE} in "
            f"[cyan]{cwd.name}[/cyan]. Every file will be committed and pushed.\n"
            "   Add one, or run [bold cyan]jj-sync approve[/bold cyan] to sync anyway."
        )

    console.print("Registering path...", style="dim")
    registry_path.parent.mkdir(parents=True, exist_ok=True)
    if not registry_path.exists():
        registry_path.touch()

    registered = [str(p) for p in system.get_registered_folders(registry_path)]
    if str(cwd) in registered:
        console.print("Already registered.", style="dim")
    else:
        with open(registry_path, "a") as f:
            f.write(f"{cwd}\n")
        console.print(f"Registered: [cyan]{cwd}[/cyan]", style="green")

    if config.sync.enabled:
        console.print("\n[bold green]✔ jj-sync Active.[/bold green]")
    else:
        console.print(
            "\nSync is disabled for this folder. "
            "Run [bold cyan]jj-sync enable[/bold cyan] to turn it on."
        )


def unregister_folder(registry_path: Path = REGISTRY_FILE) -> None:
    """Removes the current working directory from the registry."""
    cwd = str(Path.cwd())
    if not registry_path.exists():
        console.print("Registry is empty.", style="yellow")
        return

    current_paths = [str(p) for p in system.get_registered_folders(registry_path)]
    if cwd not in current_paths:
        console.print(
            f"Current path not registered: [cyan]{cwd}[/cyan]", style="yellow"
        )
        return

    with open(registry_path, "w") as f:
        for path in current_paths:
            if path != cwd:
                f.write(f"{path}\n")
    console.print(f"✔ Unregistered: [cyan]{cwd}[/cyan]", style="green")


def set_enabled(enabled: bool) -> None:
    """Writes the folder-level enable flag for the current working copy."""
    cwd = _require_working_copy()
    target = write_local_enabled(cwd, enabled)
    if enabled:
        console.print(f"Sync enabled in [cyan]{target.name}[/cyan].", style="bold green")
    else:
        console.print(
            f"Sync disabled in [cyan]{target.name}[/cyan].", style="bold yellow"
        )


def approve_folder(store: ConsentStore | None = None) -> None:
    """Records consent to sync the current folder without an ignore-file."""
    cwd = _require_working_copy()
    store = store or ConsentStore()
    store.update(approval_key(cwd.resolve()), True)
    console.print(
        f"✔ Approved syncing [cyan]{cwd.name}[/cyan] without {IGNORE_FILE}.",
        style="green",
    )


def _folder_row(path: Path, store: ConsentStore) -> tuple[str, str, str]:
    if not path.exists():
        return "[red]Missing[/red]", "-", "-"
    enabled = Config.load(path).sync.enabled
    sync_text = "[green]Enabled[/green]" if enabled else "[yellow]Disabled[/yellow]"
    if (path / IGNORE_FILE).exists():
        consent = IGNORE_FILE
    elif store.get(approval_key(path.resolve())):
        consent = "Approved"
    else:
        consent = "[yellow]Pending[/yellow]"
    return sync_text, consent, "yes" if (path / METADATA_DIR).exists() else "[red]no[/red]"


def list_folders(store: ConsentStore | None = None) -> None:
    """Lists every registered folder with its sync and consent status."""
    if not REGISTRY_FILE.exists():
        console.print("[yellow]Registry is empty.[/yellow]")
        return

    store = store or ConsentStore()
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Folder", style="cyan")
    table.add_column("Sync")
    table.add_column("Consent")
    table.add_column("jj", justify="right", style="dim")

    for path in system.get_registered_folders():
        display_path = str(path).replace(str(Path.home()), "~")
        table.add_row(display_path, *_folder_row(path, store))

    console.print(table)


def show_status(store: ConsentStore | None = None) -> None:
    """Displays the daemon status and the state of the current folder."""
    running = _daemon_running()
    enabled = service.is_service_enabled()

    if running:
        status_text, status_style = "Active (Running)", "bold green"
    elif enabled:
        status_text, status_style = "Installed (Not Running)", "yellow"
    else:
        status_text, status_style = "Stopped", "bold red"

    system_content = Text()
    system_content.append("Daemon: ", style="bold")
    system_content.append(status_text, style=status_style)
    console.print(Panel(system_content, title="System Status", expand=False))

    cwd = Path.cwd()
    if not (cwd / METADATA_DIR).exists():
        if REGISTRY_FILE.exists():
            count = len(system.get_registered_folders())
            console.print(f"[dim]Watching {count} folder(s).[/dim]")
        return

    if cwd not in system.get_registered_folders():
        console.print(
            Panel(
                "This folder is not tracked by jj-sync.\n"
                "Run [bold cyan]jj-sync[/bold cyan] to register it.",
                title="Folder Status",
                expand=False,
                border_style="yellow",
            )
        )
        return

    config = Config.load(cwd)
    sync_text, consent, _ = _folder_row(cwd, store or ConsentStore())
    folder_content = Text.from_markup(
        f"Sync:    {sync_text}\n"
        f"Consent: {consent}\n"
        f"Branch:  {config.core.target_branch}\n"
        f"Idle:    {int(config.sync.idle_delay)}s, "
        f"pull every {int(config.sync.pull_interval)}s"
    )
    console.print(Panel(folder_content, title="Folder Status", expand=False))


def sync_now() -> None:
    """Runs one sync cycle for the current folder in the foreground.

    Refuses to run while the daemon is syncing the same folder, since the two
    processes do not share a lock.
    """
    cwd = _require_working_copy()
    if (
        _daemon_running()
        and cwd in system.get_registered_folders()
        and Config.load(cwd).sync.enabled
    ):
        console.print(
            "[bold red]ERROR:[/bold red] The daemon is already syncing this folder. "
            "Wait for its next cycle, or disable sync here first."
        )
        sys.exit(1)

    state = asyncio.run(daemon.sync_once(cwd, system.get_system(interactive=True)))
    if state is None:
        console.print(
            f"[bold red]ERROR:[/bold red] Sync not permitted: no {IGNORE_FILE} in "
            f"{cwd.name}. Run 'jj-sync approve' to allow it."
        )
        sys.exit(1)
    if state.last_error:
        console.print(f"[bold red]ERROR:[/bold red] {state.last_error}")
        sys.exit(1)
    console.print("[bold green]✔ Sync cycle complete.[/bold green]")


def tail_log() -> None:
    """Follows the daemon log file in real-time."""
    if not LOG_FILE.exists():
        console.print(f"[red]No log file found yet at {LOG_FILE}.[/red]")
        return

    console.print(f"Tailing [bold cyan]{LOG_FILE}[/bold cyan] (Ctrl+C to stop)...")
    try:
        subprocess.run(["tail", "-n", "1000", "-f", str(LOG_FILE)])
    except KeyboardInterrupt:
        console.print("\nStopped.", style="dim")


def open_config() -> None:
    """Opens the global configuration file in the system default editor."""
    if not CONFIG_FILE.exists():
        CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
        with open(CONFIG_FILE, "w") as f:
            f.write(
                "# jj-sync Configuration\n\n"
                "[sync]\n"
                "# enabled = false\n"
                '# idle_delay = "3m"\n'
                '# pull_interval = "60s"\n'
            )

    editor = os.environ.get("EDITOR")
    if not editor:
        editor = "open" if sys.platform == "darwin" else "nano"

    console.print(f"Opening [cyan]{CONFIG_FILE}[/cyan]...")

    try:
        subprocess.run([editor, str(CONFIG_FILE)])
    except OSError as e:
        console.print(f"[red]Could not open editor: {e}[/red]")


def show_config_reference() -> None:
    """Displays a formatted table of all available configuration options."""
    table = Table(title="jj-sync Configuration Schema", show_lines=True)
    table.add_column("Section", style="cyan", justify="right")
    table.add_column("Key", style="green")
    table.add_column("Type", style="dim")
    table.add_column("Default", style="yellow")
    table.add_column("Description")

    table.add_row(
        "core",
        "target_branch",
        "str",
        '"main"',
        "The remote branch that synchronized changes are pushed to.",
    )
    table.add_row("", "jj_binary", "str", '"jj"', "The jj executable to run.")
    table.add_row(
        "sync",
        "enabled",
        "bool",
        "false",
        "Turns synchronization on. Usually set per folder in jj-sync.toml.",
    )
    table.add_row(
        "",
        "idle_delay",
        "int | str",
        '"3m"',
        "Quiet period before committing and pushing (global only).",
    )
    table.add_row(
        "",
        "pull_interval",
        "int | str",
        '"60s"',
        "Time between background pulls (global only).",
    )
    table.add_row(
        "limits",
        "max_log_size",
        "int | str",
        '"5mb"',
        "Max size for log files before rotation (e.g., '5mb', '1gb').",
    )

    console.print(table)


class SyncHelpFormatter(argparse.HelpFormatter):
    """Groups the subcommands into labelled clusters in the help output."""

    groups = {
        "Folder Control": ["enable", "disable", "approve", "remove", "status", "list"],
        "Sync": ["now", "run"],
        "Maintenance": ["config", "log"],
        "Service": ["install-service", "uninstall-service"],
        "General": ["help"],
    }

    def _format_action(self, action: argparse.Action) -> str:
        if isinstance(action, argparse._SubParsersAction):
            parts = []
            subactions = list(self._iter_indented_subactions(action))

            for group_name, commands in self.groups.items():
                group_actions = [a for a in subactions if a.dest in commands]
                if not group_actions:
                    continue

                parts.append(f"\n  {group_name}:\n")
                self._indent()
                for subaction in group_actions:
                    parts.append(self._format_action(subaction))
                self._dedent()

            return self._join_parts(parts)

        return super()._format_action(action)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        usage=argparse.SUPPRESS,
        description="Run without a command to register the current jj working copy.",
        formatter_class=SyncHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("enable", help="Enable sync for the current folder")
    subparsers.add_parser("disable", help="Disable sync for the current folder")
    subparsers.add_parser(
        "approve", help="Allow syncing the current folder without a .gitignore"
    )
    subparsers.add_parser("remove", help="Stop tracking the current folder")
    subparsers.add_parser("status", help="Show daemon and folder status")
    subparsers.add_parser("list", help="List registered folders")
    subparsers.add_parser("now", help="Pull, commit and push the current folder once")
    subparsers.add_parser("run", help="Run the daemon in the foreground")
    subparsers.add_parser("log", help="Tail the daemon log file")

    config_parser = subparsers.add_parser(
        "config", help="Open global config file or view options"
    )
    config_parser.add_argument(
        "--list",
        "-l",
        action="store_true",
        help="List all available configuration options and their descriptions",
    )

    subparsers.add_parser("install-service", help="Install the background daemon")
    subparsers.add_parser("uninstall-service", help="Uninstall the background daemon")
    subparsers.add_parser("help", help="Show this help message")
    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the jj-sync CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "help":
        parser.print_help()
    elif args.command == "enable":
        set_enabled(True)
    elif args.command == "disable":
        set_enabled(False)
    elif args.command == "approve":
        approve_folder()
    elif args.command == "remove":
        unregister_folder()
    elif args.command == "status":
        show_status()
    elif args.command == "list":
        list_folders()
    elif args.command == "now":
        sync_now()
    elif args.command == "run":
        daemon.main(interactive=True)
    elif args.command == "log":
        tail_log()
    elif args.command == "config":
        if args.list:
            show_config_reference()
        else:
            open_config()
    elif args.command == "install-service":
        with console.status("Installing background service...", spinner="dots"):
            service.install()
        console.print("[bold green]✔ Service installed.[/bold green]")
    elif args.command == "uninstall-service":
        with console.status("Uninstalling service...", spinner="dots"):
            service.uninstall()
        console.print("[bold green]✔ Service uninstalled.[/bold green]")
    else:
        setup_folder()


if __name__ == "__main__":
    main()
