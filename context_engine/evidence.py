"""Evidence store: findings and imported documents recorded per workspace."""

import json
import logging
import secrets
import threading
import time
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


class EvidenceItem(BaseModel):
    """One recorded finding or imported document."""

    id: str
    source: str
    timestamp: int
    data: Any = Field(default_factory=dict)
    meta: dict[str, Any] | None = None
    title: str | None = None
    snippet: str | None = None
    uri: str | None = None
    score: float | None = None
    tags: list[str] | None = None
    group: str | None = None
    raw: Any = None

    def data_text(self) -> str:
        return json.dumps(self.data, default=str)


def _now_ms() -> int:
    return int(time.time() * 1000)


def new_evidence_id(source: str) -> str:
    """``<source>_<epoch ms>_<9 random chars>``"""
    return f"{source}_{_now_ms()}_{secrets.token_hex(5)[:9]}"


class EvidenceStore:
    """In-memory evidence map mirrored to ``<dir>/<id>.json``.

    Persistence failures are logged and do not fail the call; the item stays
    available in memory for the life of the process.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self._items: dict[str, EvidenceItem] = {}
        self._lock = threading.Lock()

    def add(self, source: str, data: Any, meta: dict[str, Any] | None = None, **fields: Any) -> str:
        """Record a new item and return its id.

        Args:
            source: Producer of the evidence (e.g. "web", "context7")
            data: JSON-serializable payload
            meta: Free-form metadata
            **fields: Optional title, snippet, uri, score, tags, group or raw
        """
        item = EvidenceItem(
            id=new_evidence_id(source), source=source, timestamp=_now_ms(), data=data, meta=meta, **fields
        )
        with self._lock:
            self._items[item.id] = item
        self._persist(item)
        return item.id

    def get(self, item_id: str) -> EvidenceItem | None:
        return self._items.get(item_id)

    def get_by_source(self, source: str) -> list[EvidenceItem]:
        return [item for item in self.get_all() if item.source == source]

    def get_all(self) -> list[EvidenceItem]:
        with self._lock:
            return list(self._items.values())

    def upsert(self, item_id: str, **fields: Any) -> str:
        """Merge ``fields`` into an existing item or create one under ``item_id``."""
        with self._lock:
            existing = self._items.get(item_id)
            if existing is not None:
                merged = existing.model_copy(update={**fields, "id": item_id, "timestamp": _now_ms()})
            else:
                fields.setdefault("source", "unknown")
                fields.setdefault("data", {})
                fields.pop("id", None)
                fields.pop("timestamp", None)
                merged = EvidenceItem(id=item_id, timestamp=_now_ms(), **fields)
            self._items[item_id] = merged
        self._persist(merged)
        return item_id

    def find(
        self,
        source: str | None = None,
        group: str | None = None,
        tag: str | None = None,
        text: str | None = None,
    ) -> list[EvidenceItem]:
        """Filter items; ``text`` matches title, snippet or serialized data, case-insensitively."""
        needle = text.lower() if text else None
        matches = []
        for item in self.get_all():
            if source and item.source != source:
                continue
            if group and item.group != group:
                continue
            if tag and tag not in (item.tags or []):
                continue
            if needle:
                haystacks = (item.title or "", item.snippet or "", item.data_text())
                if not any(needle in h.lower() for h in haystacks):
                    continue
            matches.append(item)
        return matches

    def clear(self) -> None:
        """Forget in-memory items; files on disk are kept."""
        with self._lock:
            self._items.clear()

    def _persist(self, item: EvidenceItem) -> None:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            (self.directory / f"{item.id}.json").write_text(item.model_dump_json(indent=2))
        except OSError as e:
            logger.error(f"Failed to persist evidence {item.id}: {e}")

    def load(self) -> int:
        """Read every ``*.json`` item from disk; unreadable files are logged and skipped."""
        if not self.directory.is_dir():
            return 0
        loaded = 0
        for path in sorted(self.directory.glob("*.json")):
            try:
                item = EvidenceItem.model_validate_json(path.read_text())
            except (OSError, ValidationError) as e:
                logger.warning(f"Failed to load evidence {path.name}: {e}")
                continue
            with self._lock:
                self._items[item.id] = item
            loaded += 1
        return loaded
