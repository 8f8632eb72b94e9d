"""File watcher for real-time reindexing.

Filesystem events are filtered to indexable, non-excluded paths, collected
while events keep arriving, and handed to a callback as one batch once the
workspace has been quiet for the debounce interval.
"""

import logging
import os
import threading
from collections.abc import Callable
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)

DEBOUNCE_SECONDS = 1.0
STOP_TIMEOUT = 5.0


class WorkspaceEventHandler(FileSystemEventHandler):
    """Forwards file events (never directory events) to the watcher."""

    def __init__(self, watcher: "WorkspaceWatcher"):
        self.watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.watcher.notify(event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.watcher.notify(event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.watcher.notify(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.watcher.notify(event.src_path)
            self.watcher.notify(event.dest_path)


class WorkspaceWatcher:
    """Watches a workspace and reports changed relative paths in debounced batches.

    Example:
        watcher = WorkspaceWatcher(root, lambda paths: engine.index(include=paths))
        watcher.start()
        ...
        watcher.stop()
    """

    def __init__(
        self,
        root: Path,
        on_change: Callable[[list[str]], object],
        accept: Callable[[str], bool] | None = None,
        debounce: float = DEBOUNCE_SECONDS,
        observer_factory: Callable[[], object] | None = None,
    ):
        """Initialize watcher.

        Args:
            root: Workspace root to watch recursively
            on_change: Called with the batch of changed workspace-relative paths
            accept: Filter for workspace-relative paths (all accepted when omitted)
            debounce: Quiet period in seconds before a batch is delivered
            observer_factory: Builds the watchdog observer (native ``Observer`` by default)
        """
        self.root = Path(root)
        self.on_change = on_change
        self.accept = accept or (lambda rel: True)
        self.debounce = debounce
        self.observer_factory = observer_factory or Observer
        self.handler = WorkspaceEventHandler(self)
        self._observer = None
        self._pending: dict[str, None] = {}
        self._timer: threading.Timer | None = None
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        if self._observer is not None:
            logger.info("File watcher already running")
            return
        observer = self.observer_factory()
        observer.schedule(self.handler, str(self.root), recursive=True)
        observer.start()
        self._observer = observer
        logger.info(f"File watcher started for {self.root}")

    def stop(self) -> None:
        """Stop watching; batches not yet delivered are dropped."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._pending.clear()
            observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.stop()
        observer.join(timeout=STOP_TIMEOUT)
        logger.info(f"File watcher stopped for {self.root}")

    def relative(self, path: str | bytes) -> str | None:
        """Workspace-relative forward-slash path, or None outside the root."""
        rel = os.path.relpath(os.fsdecode(path), self.root)
        if rel == "." or rel == ".." or rel.startswith(".." + os.sep):
            return None
        return Path(rel).as_posix()

    def notify(self, path: str | bytes) -> None:
        """Record a changed path and restart the debounce timer."""
        rel = self.relative(path)
        if rel is None or not self.accept(rel):
            return
        with self._lock:
            self._pending[rel] = None
            if self._timer is not None:
                self._timer.cancel()
            self._timer = threading.Timer(self.debounce, self.flush)
            self._timer.daemon = True
            self._timer.start()
        logger.debug(f"File event: {rel}")

    def flush(self) -> list[str]:
        """Deliver the pending batch now; returns the paths delivered."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            batch = list(self._pending)
            self._pending.clear()
        if not batch:
            return []
        logger.info(f"Reindexing {len(batch)} changed files")
        try:
            self.on_change(batch)
        except Exception:
            logger.exception("Reindex after file change failed")
        return batch
