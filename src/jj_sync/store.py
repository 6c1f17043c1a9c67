"""Persistent key-value storage for per-folder consent decisions."""

import contextlib
import json
import logging
import os
from pathlib import Path

from .constants import APP_NAME, CONSENT_FILE

logger = logging.getLogger(APP_NAME)


def approval_key(folder_path: Path) -> str:
    """Returns the store key recording consent for a folder without an ignore-file."""
    return f"ignore_approved:{folder_path}"


class ConsentStore:
    """A JSON-file backed boolean store that survives daemon restarts.

    Reads go to disk every time so that approvals granted from the CLI are seen by
    a running daemon. Writes replace the file atomically.

    Attributes:
        path (Path): The JSON file holding the store.
    """

    def __init__(self, path: Path = CONSENT_FILE):
        self.path = path

    def _read(self) -> dict[str, bool]:
        if not self.path.exists():
            return {}
        try:
            content = self.path.read_text().strip()
            if not content:
                return {}
            data = json.loads(content)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to read consent store {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring malformed consent store {self.path}")
            return {}
        return {str(k): bool(v) for k, v in data.items()}

    def get(self, key: str, default: bool = False) -> bool:
        return self._read().get(key, default)

    def update(self, key: str, value: bool) -> None:
        """Persists a single value to disk atomically.

        Args:
            key (str): The store key.
            value (bool): The value to record.
        """
        data = self._read()
        data[key] = value
        tmp_file = self.path.with_suffix(".tmp")

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_file, "w") as f:
                json.dump(data, f, indent=2, sort_keys=True)
                f.flush()
                os.fsync(f.fileno())  # Force hardware write

            # Atomic pointer swap at the filesystem level
            os.replace(tmp_file, self.path)
        except OSError as e:
            logger.error(f"Failed to write consent store {self.path}: {e}")
            if tmp_file.exists():
                with contextlib.suppress(OSError):
                    tmp_file.unlink()


class MemoryStore:
    """In-process store with the same interface as ConsentStore."""

    def __init__(self, data: dict[str, bool] | None = None):
        self.data = dict(data or {})

    def get(self, key: str, default: bool = False) -> bool:
        return self.data.get(key, default)

    def update(self, key: str, value: bool) -> None:
        self.data[key] = value
