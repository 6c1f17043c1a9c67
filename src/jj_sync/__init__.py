"""jj-sync: Automatic background synchronization for Jujutsu working copies.

This package provides the command-line interface, the background daemon, and the
per-folder state machine that pulls remote changes on an interval and commits and
pushes local changes after a quiet period of file activity.
"""

from . import (
    cli,
    config,
    constants,
    daemon,
    debounce,
    gate,
    jj_wrapper,
    orchestrator,
    registry,
    scheduler,
    service,
    state,
    store,
    system,
    watcher,
)

__all__ = [
    "cli",
    "config",
    "constants",
    "daemon",
    "debounce",
    "gate",
    "jj_wrapper",
    "orchestrator",
    "registry",
    "scheduler",
    "service",
    "state",
    "store",
    "system",
    "watcher",
]
