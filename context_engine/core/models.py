"""Data models for chunks, embeddings, index bookkeeping and search results."""

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass
class ChunkSpan:
    """A line range produced by the chunker (1-indexed, inclusive)."""

    start: int
    end: int
    text: str


@dataclass
class Chunk:
    """A persisted slice of a file, the unit of embedding and retrieval."""

    id: str
    file: str
    start_line: int
    end_line: int
    text: str
    content_hash: str
    source: str = "code"  # "code", "doc" or "web"
    title: str = ""
    meta: dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def make_id(file: str, start_line: int, end_line: int) -> str:
        return f"{file}#{start_line}-{end_line}"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Chunk":
        return cls(
            id=data["id"],
            file=data["file"],
            start_line=int(data.get("start_line", 1)),
            end_line=int(data.get("end_line", 1)),
            text=data.get("text", ""),
            content_hash=data.get("content_hash", ""),
            source=data.get("source", "code"),
            title=data.get("title", ""),
            meta=data.get("meta") or {},
        )


@dataclass
class EmbeddingRecord:
    """Vector owned by exactly one chunk."""

    chunk_id: str
    vector: list[float]
    model: str
    dims: int
    provider: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EmbeddingRecord":
        vector = [float(v) for v in data.get("vector", [])]
        return cls(
            chunk_id=data["chunk_id"],
            vector=vector,
            model=data.get("model", ""),
            dims=int(data.get("dims", len(vector))),
            provider=data.get("provider", ""),
        )


@dataclass
class FileMapEntry:
    """Bookkeeping for one indexed file."""

    path: str
    mtime_ms: float
    size: int
    last_indexed_revision: str | None = None
    content_sha: str = ""
    chunk_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FileMapEntry":
        return cls(
            path=data["path"],
            mtime_ms=float(data.get("mtime_ms", 0)),
            size=int(data.get("size", 0)),
            last_indexed_revision=data.get("last_indexed_revision"),
            content_sha=data.get("content_sha", ""),
            chunk_ids=list(data.get("chunk_ids", [])),
        )


@dataclass
class IndexStats:
    """Singleton summary of the persisted index."""

    chunks: int = 0
    embeddings: int = 0
    files: int = 0
    revision_head: str | None = None
    indexed_at: str | None = None
    updated_at: str | None = None
    storage_mb: float = 0.0
    compression: str = "none"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IndexStats":
        known = {k: data[k] for k in cls.__dataclass_fields__ if k in data}
        return cls(**known)


@dataclass
class DocTask:
    text: str
    done: bool = False


@dataclass
class DocLink:
    kind: str  # "code", "issue" or "url"
    target: str


@dataclass
class DocRecord:
    """Metadata extracted from a documentation-like file."""

    id: str
    uri: str
    title: str
    type: str = "other"
    status: str = "unknown"
    version: str | None = None
    date: str | None = None
    summary: str = ""
    tags: list[str] = field(default_factory=list)
    tasks: list[DocTask] = field(default_factory=list)
    links: list[DocLink] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DocRecord":
        return cls(
            id=data["id"],
            uri=data["uri"],
            title=data.get("title", ""),
            type=data.get("type", "other"),
            status=data.get("status", "unknown"),
            version=data.get("version"),
            date=data.get("date"),
            summary=data.get("summary", ""),
            tags=list(data.get("tags", [])),
            tasks=[DocTask(**t) for t in data.get("tasks", [])],
            links=[DocLink(**link) for link in data.get("links", [])],
        )


@dataclass
class Symbol:
    """A declared name found in a source file."""

    name: str
    type: str  # function, class, interface, type, const, enum
    file: str
    line: int
    is_public: bool = False
    is_exported: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ChangeSet:
    """Relative forward-slash paths that changed since the last indexed revision."""

    added: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    untracked: list[str] = field(default_factory=list)
    head: str | None = None
    method: str = "fs"  # "git" or "fs"

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.modified or self.deleted or self.untracked)


@dataclass
class IndexResult:
    """Outcome of one indexing run. Always returned, never raised."""

    ok: bool = True
    chunks: int = 0
    embeddings: int = 0
    files: int = 0
    added: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    pending: list[str] = field(default_factory=list)
    partial: bool = False
    skipped: bool = False
    reason: str | None = None
    took_ms: int = 0
    storage_mb: float = 0.0
    error: str | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def changed(self) -> list[str]:
        """Files re-indexed in this run."""
        return self.added + self.modified

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @classmethod
    def failure(cls, error: str) -> "IndexResult":
        return cls(ok=False, error=error)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["changed"] = len(self.changed)
        data["error_count"] = self.error_count
        return data


@dataclass
class Hit:
    """A ranked search result."""

    uri: str
    title: str
    snippet: str
    score: float
    source: str = "local"
    meta: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
