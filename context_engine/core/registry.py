"""Process-wide registry of per-workspace handles."""

import threading
from collections.abc import Callable
from pathlib import Path
from typing import Generic, TypeVar

T = TypeVar("T")


def canonical_root(root: str | Path) -> str:
    """Registry key for a workspace root."""
    return str(Path(root).expanduser().resolve())


class WorkspaceRegistry(Generic[T]):
    """Lazily constructs one handle per canonical workspace root.

    Example:
        engines = WorkspaceRegistry(ContextEngine)
        engine = engines.get("/repo")  # same object for "/repo/." or a symlink to it
    """

    def __init__(self, factory: Callable[[Path], T]):
        self._factory = factory
        self._items: dict[str, T] = {}
        self._lock = threading.Lock()

    def get(self, root: str | Path, factory: Callable[[Path], T] | None = None) -> T:
        """Handle for ``root``; ``factory`` overrides the default only when one is created."""
        key = canonical_root(root)
        with self._lock:
            if key not in self._items:
                self._items[key] = (factory or self._factory)(Path(key))
            return self._items[key]

    def discard(self, root: str | Path) -> None:
        with self._lock:
            self._items.pop(canonical_root(root), None)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __contains__(self, root: object) -> bool:
        if not isinstance(root, (str, Path)):
            return False
        return canonical_root(root) in self._items

    def __len__(self) -> int:
        return len(self._items)
