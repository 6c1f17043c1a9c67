import logging
import re
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .constants import (
    APP_NAME,
    CONFIG_FILE,
    DEFAULT_BRANCH,
    IDLE_DELAY_SECONDS,
    LOCAL_CONFIG_NAME,
    PULL_INTERVAL_SECONDS,
)

logger = logging.getLogger(APP_NAME)


def parse_size(value: int | str) -> int:
    """Converts human-readable size strings (e.g., '100MB') to bytes."""
    if isinstance(value, int):
        return value
    match = re.match(r"^(\d+(?:\.\d+)?)\s*([kmg]b?)$", str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid size format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "k": 1024,
        "kb": 1024,
        "m": 1024**2,
        "mb": 1024**2,
        "g": 1024**3,
        "gb": 1024**3,
    }
    return int(num * multiplier[unit])


def parse_time(value: int | float | str) -> float:
    """Converts human-readable time strings (e.g., '3m', '60s') to seconds."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid time format '{value}'")
    if isinstance(value, (int, float)):
        return float(value)
    match = re.match(
        r"^(\d+(?:\.\d+)?)\s*(ms|s|sec|m|min|h|hr)s?$", str(value).strip().lower()
    )
    if not match:
        raise ValueError(f"Invalid time format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "ms": 0.001,
        "s": 1,
        "sec": 1,
        "m": 60,
        "min": 60,
        "h": 3600,
        "hr": 3600,
    }
    return num * multiplier[unit]


@dataclass
class CoreConfig:
    """Core application settings.

    Attributes:
        target_branch (str): The remote branch that local changes are pushed to.
        jj_binary (str): The executable used for version-control commands.
    """

    target_branch: str = DEFAULT_BRANCH
    jj_binary: str = "jj"


@dataclass
class SyncConfig:
    """Synchronization settings.

    Attributes:
        enabled (bool): Whether synchronization runs for the folder.
        idle_delay (float): Seconds of quiet before a commit/push cycle.
        pull_interval (float): Seconds between background pulls.
    """

    enabled: bool = False
    idle_delay: float = IDLE_DELAY_SECONDS
    pull_interval: float = PULL_INTERVAL_SECONDS


@dataclass
class LimitsConfig:
    """Resource limitation settings.

    Attributes:
        max_log_size (int): Max bytes for log files before rotation.
    """

    max_log_size: int = 5 * 1024 * 1024


@dataclass
class Config:
    """Global configuration aggregator.

    Attributes:
        core (CoreConfig): Core settings.
        sync (SyncConfig): Synchronization behavior settings.
        limits (LimitsConfig): Resource limits.
    """

    core: CoreConfig = field(default_factory=CoreConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)

    # Cache for the base global configuration
    _global_cache: "Config | None" = None

    @classmethod
    def load(cls, folder_path: Path | None = None) -> "Config":
        """Loads and merges configuration from defaults, global, and local sources.

        Args:
            folder_path (Path | None): The folder root to search for local config.

        Returns:
            Config: The fully merged configuration object.
        """
        # 1. Load or Retrieve Global Config
        if cls._global_cache is None:
            instance = cls()
            if CONFIG_FILE.exists():
                instance._merge_from_file(CONFIG_FILE)
            cls._global_cache = instance

        # Copy each section so local overrides never leak into the cache
        cached = cls._global_cache
        instance = cls(
            core=replace(cached.core),
            sync=replace(cached.sync),
            limits=replace(cached.limits),
        )

        # 2. Load Local Config (if applicable)
        if folder_path:
            local_toml = folder_path / LOCAL_CONFIG_NAME
            pyproject = folder_path / "pyproject.toml"

            if local_toml.exists():
                instance._merge_from_file(local_toml)
            elif pyproject.exists():
                instance._merge_from_file(pyproject, section=f"tool.{APP_NAME}")

        return instance

    @classmethod
    def reset_cache(cls) -> None:
        """Drops the cached global layer so the next load re-reads it from disk."""
        cls._global_cache = None

    def _merge_from_file(self, path: Path, section: str | None = None) -> None:
        """Parses a TOML file and merges it into the current instance.

        Args:
            path (Path): Path to the TOML file.
            section (str | None): Dot-separated section path (e.g., 'tool.jj-sync').
        """
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)

            if section:
                for key in section.split("."):
                    data = data.get(key, {})

            if not data:
                return

            if "core" in data:
                self.core = self._update_dataclass("core", self.core, data["core"])
            if "sync" in data:
                self.sync = self._update_dataclass("sync", self.sync, data["sync"])
            if "limits" in data:
                self.limits = self._update_dataclass(
                    "limits", self.limits, data["limits"]
                )

        except tomllib.TOMLDecodeError as e:
            logger.error(f"Config syntax error in {path}: {e}")
        except Exception as e:
            logger.warning(f"Failed to load config from {path}: {e}")

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: dict) -> Any:
        """Updates a dataclass, warning on invalid keys and parsing human-readable formats."""
        valid_keys = instance.__dataclass_fields__.keys()
        filtered_updates = {}

        # 1. Catch and warn about typos / unknown keys
        invalid_keys = set(updates.keys()) - set(valid_keys)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: {', '.join(sorted(invalid_keys))}. Ignoring."
            )

        # 2. Process valid keys
        for k, v in updates.items():
            if k not in valid_keys:
                continue

            try:
                if k == "max_log_size":
                    filtered_updates[k] = parse_size(v)
                elif k in ["idle_delay", "pull_interval"]:
                    filtered_updates[k] = parse_time(v)
                elif k == "enabled":
                    if not isinstance(v, bool):
                        raise ValueError(f"Expected true or false, got '{v}'")
                    filtered_updates[k] = v
                else:
                    filtered_updates[k] = v
            except ValueError as e:
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. Falling back to default."
                )

        return replace(instance, **filtered_updates)


class Settings:
    """Resource-scoped view of the configuration consumed by the registry."""

    def is_enabled(self, folder_path: Path) -> bool:
        """Returns the `[sync] enabled` flag as resolved for a single folder."""
        return Config.load(folder_path).sync.enabled

    def for_folder(self, folder_path: Path) -> Config:
        return Config.load(folder_path)

    def reload(self) -> None:
        Config.reset_cache()


def write_local_enabled(folder_path: Path, enabled: bool) -> Path:
    """Sets `[sync] enabled` in the folder's local config file.

    Existing lines are preserved; only the `enabled` key of the `[sync]` table is
    rewritten or inserted.

    Args:
        folder_path (Path): The folder root.
        enabled (bool): The new value.

    Returns:
        Path: The local configuration file that was written.
    """
    target = folder_path / LOCAL_CONFIG_NAME
    value = "true" if enabled else "false"
    lines = target.read_text().splitlines() if target.exists() else []

    in_sync = False
    sync_header = None
    for i, line in enumerate(lines):
        stripped = line.strip()
        if stripped.startswith("["):
            in_sync = stripped == "[sync]"
            if in_sync:
                sync_header = i
            continue
        if in_sync and re.match(r"^enabled\s*=", stripped):
            lines[i] = f"enabled = {value}"
            break
    else:
        if sync_header is None:
            if lines and lines[-1].strip():
                lines.append("")
            lines.extend(["[sync]", f"enabled = {value}"])
        else:
            lines.insert(sync_header + 1, f"enabled = {value}")

    target.write_text("\n".join(lines) + "\n")
    return target
