"""Indexing coordinator - orchestrates scan → chunk → embed → persist."""

import logging
import os
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

import pathspec

from ..config import CONFIG_DIR_NAME, Config, ConfigurationError
from ..core.languages import is_code, is_doc, is_indexable, language_for
from ..core.models import Chunk, ChangeSet, DocRecord, EmbeddingRecord, FileMapEntry, IndexResult, IndexStats
from ..embedding.content import detect_content_type
from ..embedding.gateway import EmbeddingGateway
from ..memory.architecture import ArchitectureMemory
from ..memory.behavior import BehaviorMemory
from ..memory.store import utcnow_iso
from ..memory.style import StyleLearner
from ..parser.chunker import chunk_file
from ..parser.docs import extract_doc_record
from ..parser.graph import build_import_graph
from ..parser.symbols import default_extractor, symbols_in_range
from ..search.cache import QueryCache
from ..storage.store import ContextStore, sha1
from .changes import current_head, detect_changes, file_signature

logger = logging.getLogger(__name__)

BINARY_SNIFF_BYTES = 8192


@dataclass
class _FileWork:
    """Chunks and bookkeeping prepared for one changed file."""

    path: str
    chunks: list[Chunk]
    doc: DocRecord | None
    entry: FileMapEntry
    failed_hashes: set[str] = field(default_factory=set)


def is_binary(path: Path) -> bool:
    """A NUL byte in the first 8 KiB marks a file as binary."""
    try:
        with open(path, "rb") as f:
            return b"\0" in f.read(BINARY_SNIFF_BYTES)
    except OSError:
        return True


def age_minutes(timestamp: str | None) -> float | None:
    if not timestamp:
        return None
    try:
        then = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
    except ValueError:
        return None
    if then.tzinfo is None:
        then = then.replace(tzinfo=timezone.utc)
    return (datetime.now(timezone.utc) - then).total_seconds() / 60


class IndexingCoordinator:
    """Coordinates the indexing process for one workspace.

    A run moves through ``scanning``, ``chunking``, ``embedding`` and
    ``persisting`` before returning to ``idle``. Recoverable failures (an
    unreadable file, a failed embedding batch) are counted in the result; only
    failures before any work is possible produce ``ok=False``.
    """

    def __init__(
        self,
        root: Path,
        config: Config,
        store: ContextStore,
        gateway: EmbeddingGateway,
        behavior: BehaviorMemory | None = None,
        cache: QueryCache | None = None,
    ):
        """Initialize coordinator.

        Args:
            root: Workspace root
            config: Engine configuration
            store: Index storage
            gateway: Embedding gateway
            behavior: Behavior memory fed by style and architecture learning
            cache: Query cache invalidated after every completed run
        """
        self.root = Path(root)
        self.config = config
        self.store = store
        self.gateway = gateway
        self.behavior = behavior
        self.cache = cache
        self.extractor = default_extractor()
        self.state = "idle"

    def _set_state(self, state: str) -> None:
        self.state = state
        logger.debug(f"Indexer state: {state}")

    # ----- discovery -----

    def exclude_spec(self) -> pathspec.PathSpec:
        patterns = list(self.config.indexing.exclude_patterns)
        for own in (CONFIG_DIR_NAME, self._context_dir_pattern()):
            if own and f"{own}/" not in patterns:
                patterns.append(f"{own}/")
        return pathspec.PathSpec.from_lines("gitwildmatch", patterns)

    def _context_dir_pattern(self) -> str | None:
        """Anchored root-relative pattern for an index directory placed inside the workspace."""
        try:
            rel = self.store.context_dir.resolve().relative_to(self.root.resolve())
        except ValueError:
            return None
        rel_posix = rel.as_posix()
        return None if rel_posix == "." else f"/{rel_posix}"

    def is_candidate(self, rel_path: str, spec: pathspec.PathSpec | None = None) -> bool:
        """Indexable and not excluded; checks the path only, so deleted files qualify."""
        spec = spec or self.exclude_spec()
        return is_indexable(rel_path) and not spec.match_file(rel_path)

    def _accept(self, rel_path: str, spec: pathspec.PathSpec) -> bool:
        if not is_indexable(rel_path) or spec.match_file(rel_path):
            return False
        path = self.root / rel_path
        try:
            if not path.is_file() or path.stat().st_size > self.config.indexing.max_file_size_mb * 1024 * 1024:
                return False
        except OSError:
            return False
        return not is_binary(path)

    def discover_files(self) -> list[str]:
        """Workspace-relative forward-slash paths of every indexable file, sorted."""
        spec = self.exclude_spec()
        files = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            rel_dir = Path(dirpath).relative_to(self.root).as_posix()
            prefix = "" if rel_dir == "." else f"{rel_dir}/"
            dirnames[:] = [d for d in dirnames if not spec.match_file(f"{prefix}{d}/")]
            for name in filenames:
                rel = f"{prefix}{name}"
                if self._accept(rel, spec):
                    files.append(rel)
        files.sort()
        logger.debug(f"Discovered {len(files)} indexable files under {self.root}")
        return files

    def _normalize_target(self, target: str) -> str:
        path = Path(target)
        if path.is_absolute():
            try:
                path = path.relative_to(self.root)
            except ValueError:
                return Path(target).as_posix()
        return path.as_posix()

    # ----- change sets -----

    def _forced_changes(self, files: list[str], file_map: dict[str, FileMapEntry]) -> ChangeSet:
        present = set(files)
        return ChangeSet(
            added=[f for f in files if f not in file_map],
            modified=[f for f in files if f in file_map],
            deleted=sorted(p for p in file_map if p not in present),
            head=current_head(self.root),
        )

    def _targeted_changes(self, include: list[str], file_map: dict[str, FileMapEntry]) -> ChangeSet:
        spec = self.exclude_spec()
        changes = ChangeSet()
        for rel in dict.fromkeys(self._normalize_target(t) for t in include):
            if (self.root / rel).exists():
                if self._accept(rel, spec):
                    (changes.modified if rel in file_map else changes.added).append(rel)
            elif rel in file_map:
                changes.deleted.append(rel)
        return changes

    # ----- per-file work -----

    def _prepare_file(self, rel: str, head: str | None) -> _FileWork:
        path = self.root / rel
        text = path.read_text(encoding="utf-8", errors="replace")
        mtime_ms, size = file_signature(path)

        symbols = self.extractor.extract(rel, text) if is_code(rel) else []
        lang = language_for(rel)
        source = "doc" if is_doc(rel) else "code"

        chunks: list[Chunk] = []
        seen_hashes: set[str] = set()
        for span in chunk_file(rel, text):
            content_hash = sha1(span.text)
            if content_hash in seen_hashes:
                continue
            seen_hashes.add(content_hash)
            chunks.append(
                Chunk(
                    id=Chunk.make_id(rel, span.start, span.end),
                    file=rel,
                    start_line=span.start,
                    end_line=span.end,
                    text=span.text,
                    content_hash=content_hash,
                    source=source,
                    title=rel,
                    meta={
                        "symbols": symbols_in_range(symbols, span.start, span.end),
                        "lang": lang,
                        "lines": span.end - span.start + 1,
                    },
                )
            )

        doc = extract_doc_record(rel, text) if is_doc(rel) else None
        entry = FileMapEntry(
            path=rel,
            mtime_ms=mtime_ms,
            size=size,
            last_indexed_revision=head,
            content_sha=sha1(text),
            chunk_ids=[c.id for c in chunks],
        )
        return _FileWork(rel, chunks, doc, entry)

    def _embed_missing(self, work: list[_FileWork], errors: list[str]) -> dict[str, tuple[list[float], str, str]]:
        """Vectors by content hash for every chunk, embedding cache misses in batches.

        Identical text across the whole run is embedded once. A failed batch is
        logged and its hashes are left out of the returned map.
        """
        vectors: dict[str, tuple[list[float], str, str]] = {}
        misses: dict[str, dict[str, str]] = defaultdict(dict)  # content type -> hash -> text
        hits = 0
        for item in work:
            for chunk in item.chunks:
                h = chunk.content_hash
                if h in vectors or any(h in group for group in misses.values()):
                    continue
                cached = self.store.cache_get(h)
                if cached is not None:
                    vectors[h] = (cached.vector, cached.model, cached.provider)
                    hits += 1
                else:
                    misses[detect_content_type(chunk.file, chunk.text)][h] = chunk.text

        batch_size = max(1, self.config.embedding.batch_size)
        embedded = 0
        for content_type, pending in misses.items():
            hashes = list(pending)
            for offset in range(0, len(hashes), batch_size):
                batch = hashes[offset : offset + batch_size]
                try:
                    result = self.gateway.embed([pending[h] for h in batch], content_type=content_type)
                except ConfigurationError:
                    raise
                except Exception as e:
                    logger.error(f"Embedding batch of {len(batch)} {content_type} chunks failed: {e}")
                    errors.append(f"embedding batch ({content_type}, {len(batch)} chunks): {e}")
                    continue
                entries = []
                for h, vector in zip(batch, result.vectors):
                    vectors[h] = (vector, result.model, result.provider)
                    entries.append((h, vector, result.model, result.provider))
                # Fallback vectors go to their own partition so a recovered provider re-embeds
                self.store.cache_put_many(entries, namespace=result.model if result.degraded else None)
                embedded += len(entries)

        logger.debug(f"Embedding cache: {hits} hits, {embedded} embedded")
        return vectors

    # ----- main entry point -----

    def index(self, quick: bool = False, force: bool = False, include: list[str] | None = None) -> IndexResult:
        """Run one indexing pass.

        Args:
            quick: Bound the run by the quick file budget, deferring the rest
            force: Reindex every discovered file regardless of change state
            include: Only consider these paths (relative or absolute)

        Returns:
            IndexResult; never raises
        """
        started = time.monotonic()
        try:
            return self._index(quick, force, include, started)
        except Exception as e:
            logger.exception(f"Indexing failed for {self.root}")
            return IndexResult.failure(str(e))
        finally:
            self._set_state("idle")

    def _index(self, quick: bool, force: bool, include: list[str] | None, started: float) -> IndexResult:
        cfg = self.config
        prev = self.store.get_stats()

        if quick and not force and not include and prev is not None:
            age = age_minutes(prev.updated_at)
            if age is not None and age < cfg.indexing.ttl_minutes:
                logger.info(f"Index updated {age:.1f} min ago (TTL {cfg.indexing.ttl_minutes}), skipping run")
                return IndexResult(
                    chunks=prev.chunks,
                    embeddings=prev.embeddings,
                    files=prev.files,
                    skipped=True,
                    reason="ttl",
                    took_ms=int((time.monotonic() - started) * 1000),
                    storage_mb=prev.storage_mb,
                )

        self._set_state("scanning")
        file_map = self.store.load_file_map()
        if include:
            changes = self._targeted_changes(include, file_map)
        else:
            files = self.discover_files()
            if force:
                changes = self._forced_changes(files, file_map)
            else:
                changes = detect_changes(self.root, prev.revision_head if prev else None, files, file_map)

        changed = list(dict.fromkeys(changes.added + changes.untracked + changes.modified))
        limit = max(0, cfg.indexing.max_changed_files)
        if quick:
            limit = min(limit, max(0, cfg.indexing.quick_file_limit))
        batch, pending = changed[:limit], changed[limit:]
        if pending:
            logger.info(f"Deferring {len(pending)} of {len(changed)} changed files to a later run")

        self._set_state("chunking")
        errors: list[str] = []
        work: list[_FileWork] = []
        for rel in batch:
            try:
                work.append(self._prepare_file(rel, changes.head))
            except (OSError, UnicodeError, ValueError) as e:
                logger.error(f"{rel}: {e}")
                errors.append(f"{rel}: {e}")

        self._set_state("embedding")
        vectors = self._embed_missing(work, errors)

        self._set_state("persisting")
        stored_files = self.store.chunk_files()
        removed = [p for p in changes.deleted if p in file_map or p in stored_files]
        self.store.delete_chunks_for_files(removed + [w.path for w in work])
        self.store.delete_docs_for_files(removed)
        for rel in removed:
            file_map.pop(rel, None)

        chunks: list[Chunk] = []
        records: list[EmbeddingRecord] = []
        docs: list[DocRecord] = []
        for item in work:
            for chunk in item.chunks:
                chunks.append(chunk)
                hit = vectors.get(chunk.content_hash)
                if hit is None:
                    item.failed_hashes.add(chunk.content_hash)
                    continue
                vector, model, provider = hit
                records.append(EmbeddingRecord(chunk.id, vector, model, len(vector), provider))
            if item.doc is not None:
                docs.append(item.doc)
            if item.failed_hashes:
                # No entry means the next run sees the file as added and retries it
                file_map.pop(item.path, None)
            else:
                file_map[item.path] = item.entry

        self.store.save_chunks(chunks)
        self.store.save_embeddings(records)
        self.store.save_docs(docs)
        self.store.save_file_map(file_map)

        now = utcnow_iso()
        partial = bool(pending)
        stats = IndexStats(
            chunks=self.store.count_chunks(),
            embeddings=self.store.count_embeddings(),
            files=len(file_map),
            revision_head=(prev.revision_head if prev else None) if partial or include else changes.head,
            indexed_at=now if force or prev is None or not prev.indexed_at else prev.indexed_at,
            updated_at=now,
            compression="gzip" if self.store.compression_enabled else "none",
        )

        self.store.enforce_storage_budget(cfg.storage.max_disk_usage_mb, cfg.storage.auto_cleanup)
        stats.storage_mb = self.store.disk_usage_mb()
        self.store.save_stats(stats)

        if work or removed or force:
            self._learn(list(file_map), errors)

        if self.cache is not None:
            self.cache.invalidate()

        took_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"Indexed {len(work)} files ({len(chunks)} chunks, {len(records)} embeddings), "
            f"removed {len(removed)}, pending {len(pending)} in {took_ms}ms"
        )
        return IndexResult(
            ok=True,
            chunks=stats.chunks,
            embeddings=stats.embeddings,
            files=stats.files,
            added=[w.path for w in work if w.path in changes.added or w.path in changes.untracked],
            modified=[w.path for w in work if w.path in changes.modified],
            removed=removed,
            pending=pending,
            partial=partial,
            took_ms=took_ms,
            storage_mb=stats.storage_mb,
            errors=errors,
        )

    def _learn(self, files: list[str], errors: list[str]) -> None:
        if self.behavior is None:
            return
        learning = self.config.learning
        if learning.architecture_enabled:
            try:
                edges = build_import_graph(self.root, files)
                ArchitectureMemory(self.root, self.behavior).analyze(files, edges)
            except Exception as e:
                logger.warning(f"Architecture learning failed: {e}")
                errors.append(f"architecture learning: {e}")
        if learning.style_enabled:
            try:
                StyleLearner(self.behavior, learning.style_sample_size).analyze(self.root, files)
            except Exception as e:
                logger.warning(f"Style learning failed: {e}")
                errors.append(f"style learning: {e}")
