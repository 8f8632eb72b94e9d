"""Versioned per-workspace memory document (style, architecture, usage)."""

import json
import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

MEMORY_VERSION = 1
MEMORY_FILE = "memory.json"


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class _MemoryModel(BaseModel):
    # camelCase on disk, snake_case in Python
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StyleMemory(_MemoryModel):
    naming_preference: str = "unknown"  # camelCase, snake_case, pascalCase, kebab-case, mixed
    naming_confidence: float = 0.0
    identifier_examples: list[str] = Field(default_factory=list)
    indent_style: str = "mixed"  # spaces, tabs, mixed
    indent_size: int | None = None
    quote_style: str = "unknown"  # single, double, mixed, unknown
    import_style: str | None = None  # relative, absolute, mixed
    keywords: list[str] = Field(default_factory=list)
    updated_at: str = Field(default_factory=utcnow_iso)


class ArchitecturalPattern(_MemoryModel):
    name: str
    description: str = ""
    files: list[str] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    tags: list[str] = Field(default_factory=list)
    detected_at: str = Field(default_factory=utcnow_iso)


class UsageRecord(_MemoryModel):
    count: int = 0
    last_accessed: str = "1970-01-01T00:00:00+00:00"


class MemoryData(_MemoryModel):
    version: int = MEMORY_VERSION
    updated_at: str = Field(default_factory=utcnow_iso)
    style: StyleMemory | None = None
    architecture: list[ArchitecturalPattern] = Field(default_factory=list)
    usage: dict[str, UsageRecord] = Field(default_factory=dict)


def migrate(raw: Any) -> MemoryData:
    """Upgrade a stored document of any older version to the current schema.

    Missing sections are defaulted. Sections that fail validation are dropped
    individually so one bad pattern does not discard the usage history.
    """
    if not isinstance(raw, dict):
        return MemoryData()

    data = MemoryData()
    style = raw.get("style")
    if isinstance(style, dict):
        try:
            data.style = StyleMemory.model_validate(style)
        except ValidationError as e:
            logger.warning(f"Dropping invalid style memory: {e.error_count()} errors")

    for item in raw.get("architecture") or []:
        try:
            data.architecture.append(ArchitecturalPattern.model_validate(item))
        except ValidationError:
            logger.debug(f"Dropping invalid architecture pattern: {item!r:.80}")

    usage = raw.get("usage")
    if isinstance(usage, dict):
        for key, record in usage.items():
            try:
                data.usage[str(key).lower()] = UsageRecord.model_validate(record)
            except ValidationError:
                continue

    if raw.get("updatedAt"):
        data.updated_at = str(raw["updatedAt"])
    return data


class MemoryStore:
    """Reads and writes ``memory.json`` for one workspace.

    Every mutation rewrites the whole document through a temp file, so a
    crash leaves either the old or the new version on disk.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self.path = self.directory / MEMORY_FILE
        self._lock = threading.RLock()
        self.data = self._read()

    def _read(self) -> MemoryData:
        if not self.path.exists():
            return MemoryData()
        try:
            with open(self.path, encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to parse {self.path}, resetting memory: {e}")
            return MemoryData()

        version = raw.get("version") if isinstance(raw, dict) else None
        if isinstance(version, int) and version >= MEMORY_VERSION:
            try:
                return MemoryData.model_validate(raw)
            except ValidationError as e:
                logger.warning(f"Memory document failed validation, migrating: {e.error_count()} errors")
        elif version is not None:
            logger.info(f"Upgrading memory document from version {version} to {MEMORY_VERSION}")
        return migrate(raw)

    def _flush(self) -> None:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_suffix(".json.tmp")
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(self.data.model_dump(by_alias=True), f, indent=2)
            os.replace(tmp, self.path)
        except OSError as e:
            logger.warning(f"Failed to persist memory file {self.path}: {e}")

    def _touch(self) -> None:
        self.data.updated_at = utcnow_iso()
        self._flush()

    def reload(self) -> None:
        with self._lock:
            self.data = self._read()

    def get_style(self) -> StyleMemory | None:
        return self.data.style

    def set_style(self, style: StyleMemory | None) -> None:
        with self._lock:
            self.data.style = style
            self._touch()

    def get_architecture(self) -> list[ArchitecturalPattern]:
        return list(self.data.architecture)

    def set_architecture(self, patterns: list[ArchitecturalPattern]) -> None:
        with self._lock:
            self.data.architecture = list(patterns)
            self._touch()

    def get_usage(self, key: str) -> UsageRecord | None:
        return self.data.usage.get(key.lower())

    def increment_usage(self, key: str) -> UsageRecord:
        with self._lock:
            key = key.lower()
            existing = self.data.usage.get(key) or UsageRecord()
            record = UsageRecord(count=existing.count + 1, last_accessed=utcnow_iso())
            self.data.usage[key] = record
            self._touch()
            return record

    def usage_map(self) -> dict[str, UsageRecord]:
        return dict(self.data.usage)

    def clear(self) -> None:
        with self._lock:
            self.data = MemoryData()
            self._flush()
