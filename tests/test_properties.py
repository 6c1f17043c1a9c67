from pathlib import Path
from unittest.mock import MagicMock

from hypothesis import given
from hypothesis import strategies as st

from jj_sync.debounce import ActivityDebouncer, is_ignored_path
from jj_sync.state import Folder, FolderSyncState, Phase

from conftest import FakeLoop

ROOT = Path("/work/notes")

# Strategy: gaps (in seconds) between consecutive file events.
gaps_strategy = st.lists(
    st.floats(min_value=0, max_value=600, allow_nan=False), min_size=1, max_size=30
)


@given(gaps=gaps_strategy)
def test_idle_fires_once_per_quiet_period(gaps: list[float]) -> None:
    """
    Property: The idle callback fires exactly once for every gap of at least the
    delay between events, plus once after the final event, and never earlier than
    the delay after the event that armed it.
    """
    loop = FakeLoop()
    fired: list[float] = []
    debouncer = ActivityDebouncer(loop, lambda _s: fired.append(loop.now), delay=180)
    state = FolderSyncState(folder=Folder(ROOT, "notes"), active=True)

    event_times = []
    for gap in gaps:
        loop.advance(gap)
        event_times.append(loop.now)
        debouncer.on_event(state, ROOT / "file.txt")
    loop.advance(180)

    quiet_gaps = sum(1 for gap in gaps[1:] if gap >= 180)
    assert len(fired) == quiet_gaps + 1

    # Every firing happens exactly `delay` after some event.
    for moment in fired:
        assert any(abs(moment - (t + 180)) < 1e-6 for t in event_times)


@given(parts=st.lists(st.sampled_from(["a", "src", ".jj", ".."]), max_size=6))
def test_ignored_paths_are_outside_or_metadata(parts: list[str]) -> None:
    """
    Property: A path is accepted only if it stays inside the root and its first
    component below the root is not the metadata directory.
    """
    stack: list[str] = []
    escaped = False
    for part in parts:
        if part != "..":
            stack.append(part)
        elif stack:
            stack.pop()
        else:
            # Above the root; no sampled name leads back into "notes".
            escaped = True
    metadata = bool(stack) and stack[0] == ".jj"

    assert is_ignored_path(ROOT, ROOT.joinpath(*parts)) is (escaped or metadata)


@given(steps=st.lists(st.sampled_from(["begin", "finish", "invalidate"]), max_size=20))
def test_lock_is_single_flight(steps: list[str]) -> None:
    """
    Property: At most one token is current and holding the lock at any moment,
    and invalidation always releases it.
    """
    state = FolderSyncState(folder=Folder(ROOT, "notes"), active=True)
    held: int | None = None

    for step in steps:
        if step == "begin":
            token = state.begin(Phase.PULLING)
            if held is not None and state.is_current(held):
                assert token is None
            else:
                assert token is not None
                held = token
        elif step == "finish" and held is not None:
            state.finish(held)
            assert state.phase is Phase.IDLE
            held = None
        elif step == "invalidate":
            state.invalidate()
            assert not state.operation_in_flight
            if held is not None:
                assert not state.is_current(held)
            held = None


def test_debouncer_rejects_inactive_state() -> None:
    loop = FakeLoop()
    on_idle = MagicMock()
    debouncer = ActivityDebouncer(loop, on_idle)
    state = FolderSyncState(folder=Folder(ROOT, "notes"))

    assert debouncer.on_event(state, ROOT / "a") is False
    assert loop.pending == []
