import os
from pathlib import Path

"""Global constants and path definitions for jj-sync.

This module defines the filesystem layout (adhering to XDG standards where applicable),
application identifiers, timing defaults and the fixed names of the Jujutsu working
copy that the daemon relies on.
"""

# --- Identity ---
APP_NAME = "jj-sync"
"""str: The human-readable application name."""

APP_LABEL = "dev.jj-sync.daemon"
"""str: The reverse-DNS style application identifier."""

DEFAULT_COMMIT_MESSAGE = "jj-sync"
"""str: Commit message used when the hostname cannot be resolved."""

# --- Paths ---
_XDG_STATE = os.environ.get("XDG_STATE_HOME")
_BASE_STATE = Path(_XDG_STATE) if _XDG_STATE else Path.home() / ".local/state"

STATE_DIR = _BASE_STATE / "jj-sync"
"""Path: The directory for runtime state data (logs, registry, consent)."""

# Ensure state directory exists immediately upon module import.
STATE_DIR.mkdir(parents=True, exist_ok=True)

REGISTRY_FILE = STATE_DIR / "registry"
"""Path: The file path storing the list of tracked folders."""

CONSENT_FILE = STATE_DIR / "consent.json"
"""Path: The key-value store remembering folders approved without an ignore-file."""

LOG_FILE = STATE_DIR / "daemon.log"
"""Path: The file path for the daemon process logs."""

PID_FILE = STATE_DIR / "daemon.pid"
"""Path: The file path storing the daemon's process ID."""

# --- Configuration Paths ---
CONFIG_DIR: Path = Path.home() / ".config/jj-sync"
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = CONFIG_DIR / "config.toml"
"""Path: The main configuration file path."""

LOCAL_CONFIG_NAME = "jj-sync.toml"
"""str: Per-folder configuration file overriding the global settings."""

# --- Working Copy Layout ---
METADATA_DIR = ".jj"
"""str: The private metadata directory of a Jujutsu working copy."""

IGNORE_FILE = ".gitignore"
"""str: The ignore-file whose presence grants consent without prompting."""

DEFAULT_BRANCH = "main"
"""str: The fixed remote branch that synchronized changes are pushed to."""

# --- Timing ---
IDLE_DELAY_SECONDS = 3 * 60
"""int: Quiet period after the last file event before a sync cycle runs."""

PULL_INTERVAL_SECONDS = 60
"""int: Interval between background pulls while a folder is active."""

# --- Consent ---
ENABLE_SYNC_ACTION = "Enable Sync"
"""str: Label of the single action offered when a folder has no ignore-file."""
