"""JSONL-backed storage for chunks, embeddings, docs, file map and stats."""

import base64
import gzip
import hashlib
import json
import logging
import os
import re
import shutil
import threading
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

from ..core.models import Chunk, DocRecord, EmbeddingRecord, FileMapEntry, IndexStats

logger = logging.getLogger(__name__)

CHUNKS_FILE = "chunks.jsonl"
EMBEDDINGS_FILE = "embeddings.jsonl"
DOCS_FILE = "docs.jsonl"
FILE_MAP_FILE = "files.json"
STATS_FILE = "stats.json"
EMBED_CACHE_DIR = "embed-cache"


def sha1(text: str) -> str:
    """Content hash used for chunk dedup and the embedding cache."""
    return hashlib.sha1(text.encode("utf-8", errors="replace")).hexdigest()


def _compress(text: str) -> str:
    return base64.b64encode(gzip.compress(text.encode("utf-8"))).decode("ascii")


def _decompress(payload: str) -> str:
    return gzip.decompress(base64.b64decode(payload)).decode("utf-8")


class CachedEmbedding:
    """An embedding-cache entry keyed by content hash."""

    __slots__ = ("vector", "model", "provider")

    def __init__(self, vector: list[float], model: str, provider: str):
        self.vector = vector
        self.model = model
        self.provider = provider


class ContextStore:
    """Durable on-disk persistence for one workspace index.

    Layout under ``context_dir``::

        chunks.jsonl        one chunk per line (text optionally gzip+base64)
        embeddings.jsonl    one embedding record per line
        docs.jsonl          extracted documentation records
        files.json          path -> file map entry
        stats.json          index stats singleton
        embed-cache/        <model>.jsonl content-hash keyed vectors

    Appends go straight to the JSONL files. Deletes rewrite the file through a
    temp file and ``os.replace`` so readers never see a torn file.
    """

    def __init__(
        self,
        context_dir: Path,
        compression_enabled: bool = True,
        cache_namespace: str = "default",
    ):
        """Initialize store.

        Args:
            context_dir: Directory holding the index files
            compression_enabled: Gzip chunk text on write
            cache_namespace: Embedding cache partition (usually the model name)
        """
        self.context_dir = Path(context_dir)
        self.compression_enabled = compression_enabled
        self.cache_namespace = cache_namespace
        self._lock = threading.RLock()
        self._cache: dict[str, CachedEmbedding] | None = None
        self.context_dir.mkdir(parents=True, exist_ok=True)

    # ----- paths -----

    @property
    def chunks_path(self) -> Path:
        return self.context_dir / CHUNKS_FILE

    @property
    def embeddings_path(self) -> Path:
        return self.context_dir / EMBEDDINGS_FILE

    @property
    def docs_path(self) -> Path:
        return self.context_dir / DOCS_FILE

    @property
    def file_map_path(self) -> Path:
        return self.context_dir / FILE_MAP_FILE

    @property
    def stats_path(self) -> Path:
        return self.context_dir / STATS_FILE

    @property
    def embed_cache_dir(self) -> Path:
        return self.context_dir / EMBED_CACHE_DIR

    @property
    def embed_cache_path(self) -> Path:
        return self._cache_path(self.cache_namespace)

    def _cache_path(self, namespace: str) -> Path:
        safe = re.sub(r"[^A-Za-z0-9._-]+", "_", namespace) or "default"
        return self.embed_cache_dir / f"{safe}.jsonl"

    # ----- low-level JSONL helpers -----

    def _read_jsonl(self, path: Path) -> Iterator[dict[str, Any]]:
        if not path.exists():
            return
        with open(path, encoding="utf-8") as f:
            for line_no, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    yield json.loads(line)
                except json.JSONDecodeError:
                    logger.warning(f"Skipping corrupt line {line_no} in {path.name}")

    def _append_jsonl(self, path: Path, rows: Iterable[dict[str, Any]]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a", encoding="utf-8") as f:
            for row in rows:
                f.write(json.dumps(row, separators=(",", ":")) + "\n")

    def _rewrite_jsonl(self, path: Path, rows: Iterable[dict[str, Any]]) -> None:
        tmp = path.with_suffix(path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            for row in rows:
                f.write(json.dumps(row, separators=(",", ":")) + "\n")
        os.replace(tmp, path)

    def _write_json(self, path: Path, data: Any) -> None:
        tmp = path.with_suffix(path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp, path)

    def _read_json(self, path: Path) -> Any:
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                return json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Could not read {path.name}: {e}")
            return None

    # ----- chunks -----

    def _encode_chunk(self, chunk: Chunk) -> dict[str, Any]:
        row = chunk.to_dict()
        if self.compression_enabled:
            row["original_bytes"] = len(chunk.text.encode("utf-8"))
            row["text"] = _compress(chunk.text)
            row["compressed"] = True
            row["encoding"] = "gzip"
        return row

    @staticmethod
    def materialize_chunk(row: dict[str, Any]) -> Chunk:
        """Build a Chunk from a stored row, decompressing its text if needed."""
        if row.get("compressed") and row.get("encoding") == "gzip":
            row = dict(row)
            row["text"] = _decompress(row.get("text", ""))
        return Chunk.from_dict(row)

    def save_chunk(self, chunk: Chunk) -> None:
        self.save_chunks([chunk])

    def save_chunks(self, chunks: list[Chunk]) -> None:
        if not chunks:
            return
        with self._lock:
            self._append_jsonl(self.chunks_path, (self._encode_chunk(c) for c in chunks))

    def iter_chunks(self) -> Iterator[Chunk]:
        for row in self._read_jsonl(self.chunks_path):
            try:
                yield self.materialize_chunk(row)
            except (OSError, ValueError, KeyError) as e:
                logger.warning(f"Skipping unreadable chunk {row.get('id')}: {e}")

    def load_chunks(self) -> list[Chunk]:
        with self._lock:
            return list(self.iter_chunks())

    def count_chunks(self) -> int:
        with self._lock:
            return len({row.get("id") for row in self._read_jsonl(self.chunks_path)})

    def chunk_files(self) -> set[str]:
        """Distinct file paths that currently own chunks."""
        with self._lock:
            return {row.get("file") for row in self._read_jsonl(self.chunks_path)}

    def delete_chunks_for_file(self, path: str) -> int:
        """Delete every chunk (and its embedding) owned by a file."""
        return self.delete_chunks_for_files([path])

    def delete_chunks_for_files(self, paths: Iterable[str]) -> int:
        """Delete chunks and embeddings for several files in one rewrite.

        Returns:
            Number of chunks removed
        """
        targets = set(paths)
        if not targets:
            return 0
        with self._lock:
            if not self.chunks_path.exists():
                return 0
            kept: list[dict[str, Any]] = []
            removed_ids: set[str] = set()
            for row in self._read_jsonl(self.chunks_path):
                if row.get("file") in targets:
                    removed_ids.add(row.get("id"))
                else:
                    kept.append(row)
            if not removed_ids:
                return 0
            self._rewrite_jsonl(self.chunks_path, kept)
            if self.embeddings_path.exists():
                embeddings = [
                    row
                    for row in self._read_jsonl(self.embeddings_path)
                    if row.get("chunk_id") not in removed_ids
                ]
                self._rewrite_jsonl(self.embeddings_path, embeddings)
            logger.debug(f"Deleted {len(removed_ids)} chunks for {len(targets)} files")
            return len(removed_ids)

    # ----- embeddings -----

    def save_embedding(self, record: EmbeddingRecord) -> None:
        self.save_embeddings([record])

    def save_embeddings(self, records: list[EmbeddingRecord]) -> None:
        if not records:
            return
        with self._lock:
            self._append_jsonl(self.embeddings_path, (r.to_dict() for r in records))

    def load_embeddings(self) -> dict[str, EmbeddingRecord]:
        """Chunk id -> embedding record (last write wins)."""
        with self._lock:
            records = {}
            for row in self._read_jsonl(self.embeddings_path):
                if "chunk_id" in row:
                    records[row["chunk_id"]] = EmbeddingRecord.from_dict(row)
            return records

    def count_embeddings(self) -> int:
        with self._lock:
            return len(
                {row.get("chunk_id") for row in self._read_jsonl(self.embeddings_path)}
            )

    # ----- embedding cache -----

    def _load_cache(self) -> dict[str, CachedEmbedding]:
        if self._cache is None:
            cache: dict[str, CachedEmbedding] = {}
            for row in self._read_jsonl(self.embed_cache_path):
                key = row.get("key")
                if key and isinstance(row.get("vector"), list):
                    cache[key] = CachedEmbedding(
                        row["vector"], row.get("model", ""), row.get("provider", "")
                    )
            self._cache = cache
        return self._cache

    def cache_get(self, content_hash: str) -> CachedEmbedding | None:
        with self._lock:
            return self._load_cache().get(content_hash)

    def cache_put(self, content_hash: str, vector: list[float], model: str, provider: str) -> None:
        self.cache_put_many([(content_hash, vector, model, provider)])

    def cache_put_many(self, entries: list[tuple[str, list[float], str, str]], namespace: str | None = None) -> None:
        """Append new cache entries.

        Args:
            entries: (content hash, vector, model, provider) tuples
            namespace: Partition to write; entries for a partition other than
                ``cache_namespace`` are persisted but never served by :meth:`cache_get`
        """
        if not entries:
            return
        with self._lock:
            if namespace and namespace != self.cache_namespace:
                self._append_jsonl(self._cache_path(namespace), (self._cache_row(*e) for e in entries))
                return
            cache = self._load_cache()
            rows = []
            for key, vector, model, provider in entries:
                if key in cache:
                    continue
                cache[key] = CachedEmbedding(vector, model, provider)
                rows.append(self._cache_row(key, vector, model, provider))
            self._append_jsonl(self.embed_cache_path, rows)

    @staticmethod
    def _cache_row(key: str, vector: list[float], model: str, provider: str) -> dict[str, Any]:
        return {"key": key, "vector": vector, "model": model, "provider": provider, "dims": len(vector)}

    def prune_embed_cache(self) -> None:
        """Remove the embedding cache, leaving the primary index untouched."""
        with self._lock:
            shutil.rmtree(self.embed_cache_dir, ignore_errors=True)
            self.embed_cache_dir.mkdir(parents=True, exist_ok=True)
            self._cache = None

    # ----- docs -----

    def save_docs(self, docs: list[DocRecord]) -> None:
        """Replace doc records for the files in ``docs`` and append the new ones."""
        if not docs:
            return
        with self._lock:
            uris = {d.uri for d in docs}
            ids = {d.id for d in docs}
            kept = [
                row
                for row in self._read_jsonl(self.docs_path)
                if row.get("uri") not in uris and row.get("id") not in ids
            ]
            kept.extend(d.to_dict() for d in docs)
            self._rewrite_jsonl(self.docs_path, kept)

    def delete_docs_for_files(self, paths: Iterable[str]) -> None:
        targets = set(paths)
        if not targets or not self.docs_path.exists():
            return
        with self._lock:
            kept = [row for row in self._read_jsonl(self.docs_path) if row.get("uri") not in targets]
            self._rewrite_jsonl(self.docs_path, kept)

    def load_docs(self) -> list[DocRecord]:
        with self._lock:
            docs = []
            for row in self._read_jsonl(self.docs_path):
                try:
                    docs.append(DocRecord.from_dict(row))
                except (KeyError, TypeError) as e:
                    logger.warning(f"Skipping malformed doc record: {e}")
            return docs

    # ----- file map -----

    def load_file_map(self) -> dict[str, FileMapEntry]:
        with self._lock:
            data = self._read_json(self.file_map_path) or {}
            return {path: FileMapEntry.from_dict({**entry, "path": path}) for path, entry in data.items()}

    def save_file_map(self, file_map: dict[str, FileMapEntry]) -> None:
        with self._lock:
            self._write_json(
                self.file_map_path, {path: entry.to_dict() for path, entry in sorted(file_map.items())}
            )

    # ----- stats -----

    def save_stats(self, stats: IndexStats) -> None:
        with self._lock:
            self._write_json(self.stats_path, stats.to_dict())

    def get_stats(self) -> IndexStats | None:
        with self._lock:
            data = self._read_json(self.stats_path)
            return IndexStats.from_dict(data) if data else None

    # ----- housekeeping -----

    def disk_usage_bytes(self) -> int:
        total = 0
        for root, _dirs, files in os.walk(self.context_dir):
            for name in files:
                try:
                    total += os.path.getsize(os.path.join(root, name))
                except OSError:
                    continue
        return total

    def disk_usage_mb(self) -> float:
        return round(self.disk_usage_bytes() / (1024 * 1024), 3)

    def enforce_storage_budget(self, max_mb: float, auto_cleanup: bool = True) -> dict[str, Any]:
        """Soft storage cap: prune the embedding cache when over budget.

        Args:
            max_mb: Ceiling for the whole context directory
            auto_cleanup: Prune the cache (otherwise only warn)

        Returns:
            Dict with before/after sizes and whether pruning happened
        """
        before = self.disk_usage_mb()
        result = {"before_mb": before, "after_mb": before, "limit_mb": max_mb, "pruned": False}
        if max_mb <= 0 or before <= max_mb:
            return result

        if not auto_cleanup:
            logger.warning(
                f"Context storage at {before:.1f}MB exceeds {max_mb}MB; auto cleanup disabled"
            )
            return result

        self.prune_embed_cache()
        after = self.disk_usage_mb()
        result.update(after_mb=after, pruned=True)
        logger.warning(
            f"Context storage at {before:.1f}MB exceeded {max_mb}MB; "
            f"pruned embedding cache, now {after:.1f}MB"
        )
        return result

    def clear(self) -> None:
        """Remove every index file."""
        with self._lock:
            shutil.rmtree(self.context_dir, ignore_errors=True)
            self.context_dir.mkdir(parents=True, exist_ok=True)
            self._cache = None
