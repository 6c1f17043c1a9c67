from pathlib import Path
from unittest.mock import MagicMock

import pytest

from jj_sync import system


def test_get_commit_message_uses_hostname(mocker: MagicMock) -> None:
    """Verifies that automatic commits are described by the machine's hostname.

    Args:
        mocker (MagicMock): Pytest fixture for mocking.
    """
    mocker.patch("socket.gethostname", return_value="devbox.local\n")

    assert system.get_commit_message() == "devbox.local"


@pytest.mark.parametrize("failure", [{"return_value": "  "}, {"side_effect": OSError}])
def test_get_commit_message_fallback(mocker: MagicMock, failure: dict) -> None:
    """Verifies the fixed message is used when the hostname is unavailable."""
    mocker.patch("socket.gethostname", **failure)

    assert system.get_commit_message() == "jj-sync"


def test_get_registered_folders(tmp_path: Path) -> None:
    registry = tmp_path / "registry"
    registry.write_text("/work/a\n\n  /work/b  \n")

    assert system.get_registered_folders(registry) == [Path("/work/a"), Path("/work/b")]
    assert system.get_registered_folders(tmp_path / "missing") == []


def test_get_system_selects_strategy(mocker: MagicMock) -> None:
    """Verifies the factory picks the console strategy when a terminal is attached."""
    mocker.patch("sys.platform", "darwin")
    assert isinstance(system.get_system(), system.MacOSStrategy)
    assert isinstance(system.get_system(interactive=True), system.ConsoleStrategy)

    mocker.patch("sys.platform", "linux")
    assert isinstance(system.get_system(), system.LinuxStrategy)

    mocker.patch("sys.platform", "win32")
    assert type(system.get_system()) is system.SystemStrategy


def test_base_strategy_never_consents(caplog: pytest.LogCaptureFixture) -> None:
    """Verifies the log-only strategy treats an unanswerable prompt as dismissed."""
    assert system.SystemStrategy().ask("jj-sync", "No .gitignore", "Enable") is False
    assert "no dialog available" in caplog.text


def test_macos_notify_sanitizes_quotes(mocker: MagicMock) -> None:
    """Verifies that double quotes are replaced so the AppleScript stays valid."""
    mock_run = mocker.patch("subprocess.run")

    system.MacOSStrategy().notify("jj-sync", 'failed: "main" rejected')

    args = mock_run.call_args.args[0]
    assert args[:2] == ["osascript", "-e"]
    assert "failed: 'main' rejected" in args[2]


@pytest.mark.parametrize(
    ("stdout", "expected"),
    [
        ("button returned:Enable Sync\n", True),
        ("button returned:Dismiss\n", False),
        ("", False),
    ],
)
def test_macos_ask(mocker: MagicMock, stdout: str, expected: bool) -> None:
    mock_run = mocker.patch("subprocess.run")
    mock_run.return_value = MagicMock(returncode=0, stdout=stdout)

    assert system.MacOSStrategy().ask("jj-sync", "msg", "Enable Sync") is expected
    assert '{"Dismiss", "Enable Sync"}' in mock_run.call_args.args[0][2]


@pytest.mark.parametrize(("stdout", "expected"), [("enable\n", True), ("\n", False)])
def test_linux_ask(mocker: MagicMock, stdout: str, expected: bool) -> None:
    """Verifies the actionable notification reports the chosen action key."""
    mock_run = mocker.patch("subprocess.run")
    mock_run.return_value = MagicMock(returncode=0, stdout=stdout)

    assert system.LinuxStrategy().ask("jj-sync", "msg", "Enable Sync") is expected
    assert "--action=enable=Enable Sync" in mock_run.call_args.args[0]


def test_linux_without_notify_send(
    mocker: MagicMock, caplog: pytest.LogCaptureFixture
) -> None:
    """Verifies a missing notify-send degrades to logging instead of raising."""
    mocker.patch("subprocess.run", side_effect=FileNotFoundError)
    strategy = system.LinuxStrategy()

    strategy.notify("jj-sync", "jj-sync failed in notes: offline")
    assert strategy.ask("jj-sync", "msg", "Enable Sync") is False
    assert "notify-send not installed" in caplog.text


def test_console_ask(mocker: MagicMock) -> None:
    mocker.patch("jj_sync.system.console")
    mock_confirm = mocker.patch("jj_sync.system.Confirm.ask", return_value=True)

    assert system.ConsoleStrategy().ask("jj-sync", "msg", "Enable Sync") is True
    mock_confirm.assert_called_once()
