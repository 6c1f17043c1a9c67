"""Tests for the background daemon process and its event sources."""

import asyncio
import logging
import logging.handlers
from collections.abc import Callable
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from jj_sync import daemon
from jj_sync.config import Config
from jj_sync.jj_wrapper import JjError
from jj_sync.store import ConsentStore, approval_key


@pytest.fixture(autouse=True)
def isolated_config(tmp_path: Path, mocker: MagicMock) -> Path:
    """Points the global config at an empty temporary location."""
    config_file = tmp_path / "config" / "config.toml"
    mocker.patch("jj_sync.config.CONFIG_FILE", config_file)
    mocker.patch("jj_sync.daemon.CONFIG_FILE", config_file)
    mocker.patch("jj_sync.daemon.CONFIG_DIR", config_file.parent)
    Config.reset_cache()
    yield config_file
    Config.reset_cache()


@pytest.fixture
def registry_file(tmp_path: Path) -> Path:
    return tmp_path / "registry"


@pytest.fixture
def make_daemon(
    tmp_path: Path, registry_file: Path, system: MagicMock
) -> Callable[[], daemon.Daemon]:
    """Builds a daemon whose folder watchers are recorded instead of started."""

    def _make() -> daemon.Daemon:
        instance = daemon.Daemon(
            asyncio.get_running_loop(),
            system,
            store=ConsentStore(tmp_path / "consent.json"),
            registry_file=registry_file,
        )
        instance.registry.watch_factory = MagicMock()
        return instance

    return _make


def test_load_folders_skips_missing(
    tmp_path: Path, registry_file: Path, caplog: pytest.LogCaptureFixture
) -> None:
    """Verifies that deleted folders are skipped with a warning, not fatal."""
    present = tmp_path / "notes"
    present.mkdir()
    registry_file.write_text(f"{present}\n{tmp_path / 'gone'}\n")

    folders = daemon.load_folders(registry_file)

    assert [f.path for f in folders] == [present.resolve()]
    assert "Path missing" in caplog.text


async def test_reload_folders_tracks_registry(
    make_daemon, registry_file: Path, folder, drain
) -> None:
    """Verifies registered folders are tracked, but stay dormant until enabled."""
    registry_file.write_text(f"{folder.path}\n")
    instance = make_daemon()

    await instance.reload_folders()
    await drain(instance.registry)

    state = instance.registry.get(folder.path)
    assert state is not None
    assert state.status == "Dormant"
    instance.registry.watch_factory.assert_not_called()


async def test_local_enable_starts_sync(
    make_daemon, registry_file: Path, folder, repo: MagicMock, drain
) -> None:
    """Verifies that a changed folder config activates the folder."""
    registry_file.write_text(f"{folder.path}\n")
    instance = make_daemon()
    await instance.reload_folders()

    (folder.path / "jj-sync.toml").write_text("[sync]\nenabled = true\n")
    await instance.reload_settings({folder.path / "jj-sync.toml"})
    await drain(instance.registry)

    state = instance.registry.get(folder.path)
    assert state.is_syncing is True
    repo.git_fetch.assert_awaited_once()
    instance.registry.close()


async def test_global_config_change_reloads_cache(
    make_daemon,
    registry_file: Path,
    folder,
    repo: MagicMock,
    isolated_config: Path,
    drain,
) -> None:
    registry_file.write_text(f"{folder.path}\n")
    instance = make_daemon()
    await instance.reload_folders()

    isolated_config.parent.mkdir(parents=True)
    isolated_config.write_text("[sync]\nenabled = true\n")
    await instance.reload_settings({isolated_config})
    await drain(instance.registry)

    assert instance.registry.get(folder.path).is_syncing is True
    instance.registry.close()


async def test_consent_from_cli_is_picked_up(
    make_daemon,
    registry_file: Path,
    folder,
    system: MagicMock,
    repo: MagicMock,
    isolated_config: Path,
    drain,
) -> None:
    """Verifies an approval written by another process activates the folder."""
    (folder.path / ".gitignore").unlink()
    (folder.path / "jj-sync.toml").write_text("[sync]\nenabled = true\n")
    registry_file.write_text(f"{folder.path}\n")
    instance = make_daemon()
    await instance.reload_folders()
    assert instance.registry.get(folder.path).is_syncing is False

    ConsentStore(instance.store.path).update(approval_key(folder.path), True)
    await instance.reload_settings({instance.store.path})
    await drain(instance.registry)

    system.ask.assert_called_once()
    assert instance.registry.get(folder.path).is_syncing is True
    instance.registry.close()


async def test_watched_files(make_daemon, registry_file: Path, folder) -> None:
    registry_file.write_text(f"{folder.path}\n")
    instance = make_daemon()
    await instance.reload_folders()

    watched = instance._watched_files()

    assert registry_file in watched
    assert instance.store.path in watched
    assert folder.path / "jj-sync.toml" in watched
    assert folder.path / "pyproject.toml" in watched


async def test_run_stops_cleanly(
    make_daemon, registry_file: Path, folder, mocker: MagicMock
) -> None:
    """Verifies that stop() releases every folder and ends the run loop."""

    async def fake_awatch(*_args, stop_event: asyncio.Event, **_kwargs):
        await stop_event.wait()
        return
        yield  # pragma: no cover

    mocker.patch("jj_sync.daemon.awatch", fake_awatch)
    registry_file.write_text(f"{folder.path}\n")
    instance = make_daemon()

    task = asyncio.create_task(instance.run())
    await asyncio.sleep(0.05)
    instance.stop()
    await asyncio.wait_for(task, 1)

    assert len(instance.registry) == 0


async def test_sync_once_commits_and_pushes(
    folder, system: MagicMock, repo: MagicMock, mocker: MagicMock, tmp_path: Path
) -> None:
    """Verifies the one-shot cycle runs regardless of the enable flag."""
    mocker.patch("jj_sync.daemon.ConsentStore", return_value=ConsentStore(tmp_path / "c"))

    state = await daemon.sync_once(folder.path, system)

    repo.commit.assert_awaited_once()
    repo.git_push.assert_awaited_once_with("main")
    assert state.last_error is None


async def test_sync_once_reports_failure(
    folder, system: MagicMock, repo: MagicMock, mocker: MagicMock, tmp_path: Path
) -> None:
    mocker.patch("jj_sync.daemon.ConsentStore", return_value=ConsentStore(tmp_path / "c"))
    repo.git_push.side_effect = JjError("rejected")

    state = await daemon.sync_once(folder.path, system)

    assert state.last_error == "rejected"
    assert state.blocked_until_activity is True


async def test_sync_once_denied_without_consent(
    folder, system: MagicMock, repo: MagicMock, mocker: MagicMock, tmp_path: Path
) -> None:
    """Verifies a dismissed prompt in a folder without .gitignore runs nothing."""
    mocker.patch("jj_sync.daemon.ConsentStore", return_value=ConsentStore(tmp_path / "c"))
    (folder.path / ".gitignore").unlink()

    state = await daemon.sync_once(folder.path, system)

    assert state is None
    system.ask.assert_called_once()
    assert repo.mock_calls == []


def test_setup_logging_interactive(mocker: MagicMock) -> None:
    """Verifies foreground mode logs to stdout only, without a rotating file."""
    mock_logger = mocker.patch("jj_sync.daemon.logger")

    daemon.setup_logging(interactive=True)

    handlers = [c.args[0] for c in mock_logger.addHandler.call_args_list]
    assert len(handlers) == 1
    assert isinstance(handlers[0], logging.StreamHandler)


def test_setup_logging_daemon(mocker: MagicMock, tmp_path: Path) -> None:
    mock_logger = mocker.patch("jj_sync.daemon.logger")
    mocker.patch("jj_sync.daemon.LOG_FILE", tmp_path / "daemon.log")

    daemon.setup_logging(interactive=False)

    handlers = [c.args[0] for c in mock_logger.addHandler.call_args_list]
    assert any(isinstance(h, logging.handlers.RotatingFileHandler) for h in handlers)
