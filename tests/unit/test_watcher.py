"""Unit tests for the workspace file watcher."""

import logging
import threading

import pytest
from watchdog.events import (
    DirCreatedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from context_engine.indexer.watcher import WorkspaceWatcher


class FakeObserver:
    def __init__(self):
        self.scheduled = []
        self.started = False
        self.stopped = False
        self.joined = False

    def schedule(self, handler, path, recursive=False):
        self.scheduled.append((handler, path, recursive))

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def join(self, timeout=None):
        self.joined = True


@pytest.fixture
def batches():
    return []


@pytest.fixture
def watcher(tmp_path, batches):
    # Long debounce so tests deliver batches explicitly with flush()
    watcher = WorkspaceWatcher(
        tmp_path,
        batches.append,
        accept=lambda rel: rel.endswith(".ts"),
        debounce=60.0,
        observer_factory=FakeObserver,
    )
    yield watcher
    watcher.stop()


class TestLifecycle:
    """Tests for starting and stopping the observer."""

    def test_start_schedules_recursive_watch(self, watcher, tmp_path):
        """Test that start schedules the handler on the workspace root."""
        watcher.start()

        observer = watcher._observer
        assert watcher.is_running
        assert observer.started
        assert observer.scheduled == [(watcher.handler, str(tmp_path), True)]

    def test_start_twice_keeps_observer(self, watcher):
        """Test that a second start is a no-op."""
        watcher.start()
        first = watcher._observer
        watcher.start()

        assert watcher._observer is first

    def test_stop(self, watcher):
        """Test that stop halts the observer and drops pending paths."""
        watcher.start()
        observer = watcher._observer
        watcher.handler.dispatch(FileModifiedEvent(str(watcher.root / "a.ts")))

        watcher.stop()

        assert not watcher.is_running
        assert observer.stopped and observer.joined
        assert watcher.flush() == []

    def test_stop_without_start(self, watcher):
        """Test that stopping an idle watcher is harmless."""
        watcher.stop()
        assert not watcher.is_running


class TestEvents:
    """Tests for event filtering and batching."""

    def test_file_events_batched(self, watcher, batches):
        """Test that created, modified and deleted files form one deduplicated batch."""
        root = watcher.root
        watcher.handler.dispatch(FileCreatedEvent(str(root / "src" / "new.ts")))
        watcher.handler.dispatch(FileModifiedEvent(str(root / "src" / "new.ts")))
        watcher.handler.dispatch(FileDeletedEvent(str(root / "old.ts")))

        delivered = watcher.flush()

        assert delivered == ["src/new.ts", "old.ts"]
        assert batches == [["src/new.ts", "old.ts"]]

    def test_move_reports_both_paths(self, watcher, batches):
        """Test that a rename reports the old and the new path."""
        root = watcher.root
        watcher.handler.dispatch(FileMovedEvent(str(root / "a.ts"), str(root / "b.ts")))

        assert watcher.flush() == ["a.ts", "b.ts"]

    def test_directory_events_ignored(self, watcher):
        """Test that directory events never reach the batch."""
        watcher.handler.dispatch(DirCreatedEvent(str(watcher.root / "pkg.ts")))

        assert watcher.flush() == []

    def test_rejected_and_outside_paths_ignored(self, watcher, tmp_path):
        """Test that filtered paths and paths outside the root are dropped."""
        watcher.notify(str(watcher.root / "notes.txt"))
        watcher.notify(str(tmp_path.parent / "elsewhere.ts"))
        watcher.notify(str(watcher.root))

        assert watcher.flush() == []

    def test_bytes_paths(self, watcher):
        """Test that byte paths from the observer are decoded."""
        watcher.notify(str(watcher.root / "src" / "b.ts").encode())

        assert watcher.flush() == ["src/b.ts"]

    def test_empty_flush_skips_callback(self, watcher, batches):
        """Test that no callback runs without pending paths."""
        assert watcher.flush() == []
        assert batches == []

    def test_callback_error_is_logged(self, tmp_path, caplog):
        """Test that a failing callback is logged and the watcher keeps going."""

        def fail(paths):
            raise RuntimeError("boom")

        watcher = WorkspaceWatcher(tmp_path, fail, debounce=60.0, observer_factory=FakeObserver)
        watcher.notify(str(tmp_path / "a.py"))

        with caplog.at_level(logging.ERROR, logger="context_engine.indexer.watcher"):
            assert watcher.flush() == ["a.py"]

        assert "Reindex after file change failed" in caplog.text
        watcher.stop()


class TestDebounce:
    """Tests for the debounce timer."""

    def test_burst_delivers_single_batch(self, tmp_path):
        """Test that a burst of events is delivered once after the quiet period."""
        delivered = []
        done = threading.Event()

        def on_change(paths):
            delivered.append(paths)
            done.set()

        watcher = WorkspaceWatcher(tmp_path, on_change, debounce=0.3, observer_factory=FakeObserver)
        for _ in range(5):
            watcher.notify(str(tmp_path / "a.py"))
        watcher.notify(str(tmp_path / "b.py"))

        assert done.wait(timeout=5.0)
        assert delivered == [["a.py", "b.py"]]
        watcher.stop()
