"""ContextEngine facade: one per workspace root, owning index, memory and search."""

import logging
import queue
import threading
import time
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .config import CONFIG_DIR_NAME, Config, resolve_workspace_root
from .core.models import Hit, IndexResult, IndexStats, Symbol
from .core.registry import WorkspaceRegistry
from .embedding.gateway import EmbeddingGateway, EmbeddingProvider
from .evidence import EvidenceStore
from .indexer.coordinator import IndexingCoordinator, age_minutes
from .indexer.watcher import DEBOUNCE_SECONDS, WorkspaceWatcher
from .memory.behavior import BehaviorMemory
from .memory.store import MemoryStore
from .parser.symbol_index import CallSite, Neighborhood, SymbolIndex
from .search.blended import BlendedSearcher
from .search.cache import QueryCache
from .search.code_first import RankCandidate, rerank_code_first
from .search.cross_encoder import CrossEncoder
from .search.doc_first import doc_hit, doc_hints, rerank_docs
from .search.hybrid import hybrid_query
from .search.quick import QuickSearch
from .storage.store import ContextStore
from .web import WebIngestor

logger = logging.getLogger(__name__)

STALE_CHECK_SECONDS = 15
MIN_SHORTLIST = 300


@dataclass
class _BackgroundTask:
    include: list[str] | None = None
    force: bool = False
    reason: str = ""


class ContextEngine:
    """Index, search and memory for a single workspace.

    Use :func:`get_engine` rather than constructing engines directly so each
    workspace root maps to exactly one instance.

    Example:
        engine = get_engine("/path/to/repo")
        engine.ensure_indexed()
        for hit in engine.search("where are tokens refreshed", k=5):
            print(hit.uri, hit.score)
    """

    def __init__(
        self,
        root: Path,
        config: Config | None = None,
        environ: Mapping[str, str] | None = None,
        providers: Mapping[str, EmbeddingProvider] | None = None,
        cross_encoder: CrossEncoder | None = None,
    ):
        self.root = Path(root)
        self.config = config or Config.for_workspace(self.root, environ)
        self.gateway = EmbeddingGateway(self.config.embedding, environ=environ, providers=providers)
        context_dir = self.config.context_dir(self.root)
        self.store = ContextStore(
            context_dir,
            compression_enabled=self.config.storage.compression_enabled,
            cache_namespace=self.gateway.model_namespace,
        )
        self.memory = MemoryStore(self.root / CONFIG_DIR_NAME)
        self.behavior = BehaviorMemory(self.root, self.memory)
        self.cache = QueryCache(self.config.cache.max_size, self.config.cache.ttl_minutes)
        self.coordinator = IndexingCoordinator(
            self.root, self.config, self.store, self.gateway, self.behavior, self.cache
        )
        self.cross_encoder = cross_encoder or CrossEncoder(environ=environ)

        self._evidence = EvidenceStore(self.config.evidence_dir(self.root))
        self._evidence.load()
        self._blended = BlendedSearcher(
            self.search,
            self._evidence,
            sources=self.config.search.imported_sources,
            timeout=self.config.search.blend_timeout,
            snippet_chars=self.config.search.snippet_chars,
        )
        self._quick: QuickSearch | None = None

        self._indexed = False
        self._index_lock = threading.Lock()
        self._bootstrap_lock = threading.Lock()
        self._queue: queue.Queue[_BackgroundTask] = queue.Queue()
        self._worker: threading.Thread | None = None
        self._worker_lock = threading.Lock()
        self._last_stale_check: float | None = None
        self._symbols: SymbolIndex | None = None
        self._symbols_lock = threading.Lock()
        self._watcher: WorkspaceWatcher | None = None

    @property
    def evidence(self) -> EvidenceStore:
        return self._evidence

    # ----- indexing -----

    def index(
        self,
        quick: bool = False,
        force: bool = False,
        include: list[str] | None = None,
        background: bool = True,
    ) -> IndexResult:
        """Run one indexing pass; runs are serialized per engine.

        Args:
            quick: Bound the run by the quick file budget
            force: Reindex every file
            include: Restrict the run to these paths
            background: Queue deferred files for the background worker
        """
        with self._index_lock:
            result = self.coordinator.index(quick=quick, force=force, include=include)
        if result.ok:
            self._indexed = True
            if not result.skipped:
                self._symbols = None
            if result.pending and background and self.config.indexing.background_indexing:
                self._enqueue(_BackgroundTask(include=result.pending, reason="deferred files"))
        return result

    def ensure_indexed(self) -> None:
        """Bootstrap the index on first use, then check staleness."""
        if not self._indexed:
            with self._bootstrap_lock:
                if not self._indexed:
                    self._bootstrap()
        self.maybe_refresh()

    def _bootstrap(self) -> None:
        stats = self.store.get_stats()
        if stats is not None and stats.chunks > 0:
            logger.info(f"Already indexed: {stats.chunks} chunks")
            self._indexed = True
            return
        if self.config.indexing.lazy_indexing:
            logger.info("Performing quick bootstrap indexing")
            result = self.index(quick=True)
        else:
            logger.info("Performing full bootstrap indexing")
            result = self.index(force=True)
        if not result.ok:
            logger.error(f"Bootstrap indexing failed: {result.error}")

    def maybe_refresh(self) -> bool:
        """Queue a background refresh when the index is older than its TTL.

        Checks at most once every 15 seconds.

        Returns:
            True if a refresh was queued
        """
        now = time.monotonic()
        if self._last_stale_check is not None and now - self._last_stale_check < STALE_CHECK_SECONDS:
            return False
        self._last_stale_check = now

        indexing = self.config.indexing
        if not indexing.background_indexing or indexing.ttl_minutes <= 0:
            return False
        stats = self.store.get_stats()
        age = age_minutes(stats.updated_at) if stats else None
        if age is None or age <= indexing.ttl_minutes:
            return False
        logger.info(f"Index is stale ({age:.1f} min old), scheduling background refresh")
        self._enqueue(_BackgroundTask(reason="ttl refresh"))
        return True

    def _enqueue(self, task: _BackgroundTask) -> None:
        with self._worker_lock:
            self._queue.put(task)
            if self._worker is None or not self._worker.is_alive():
                self._worker = threading.Thread(
                    target=self._run_background, name="ctx-background-index", daemon=True
                )
                self._worker.start()

    def _run_background(self) -> None:
        while True:
            try:
                task = self._queue.get(timeout=1.0)
            except queue.Empty:
                with self._worker_lock:
                    if self._queue.empty():
                        self._worker = None
                        return
                continue
            try:
                logger.info(f"Background indexing ({task.reason})")
                self.index(include=task.include, force=task.force)
            except Exception:
                logger.exception("Background indexing failed")
            finally:
                self._queue.task_done()

    def wait_for_background(self) -> None:
        """Block until every queued background run has finished."""
        self._queue.join()

    # ----- search -----

    def search(self, query: str, k: int | None = None) -> list[Hit]:
        """Ranked hits for a query; failures are logged and yield an empty list."""
        k = k or self.config.search.default_limit
        try:
            self.ensure_indexed()
            hits = self.cache.get(query, k)
            if hits is None:
                hits = self._search(query, k)
                self.cache.set(query, k, hits)
        except Exception:
            logger.exception(f"Search failed for {query!r}")
            return []

        for hit in hits:
            if hit.source != "web":
                self.record_usage(hit.uri)
        return hits

    def _search(self, query: str, k: int) -> list[Hit]:
        if doc_hints(query).wants_docs:
            docs = self.store.load_docs()
            if docs:
                return [doc_hit(d) for d in rerank_docs(query, docs, k * 2)[:k]]

        query_vector = self.gateway.embed_query(query).vectors[0]
        results = hybrid_query(self.store, query, query_vector, top_k=max(MIN_SHORTLIST, k * 25))
        if not results:
            return []

        candidates = [
            RankCandidate(
                uri=r.chunk.file,
                title=r.chunk.title or r.chunk.file,
                text=r.chunk.text,
                vector=r.vector,
                lex_score=r.score,
                meta={
                    **r.chunk.meta,
                    "source": r.chunk.source,
                    "start_line": r.chunk.start_line,
                    "end_line": r.chunk.end_line,
                },
                boosts=self._boosts(r.chunk.file, r.chunk.text),
                start_line=r.chunk.start_line,
            )
            for r in results
        ]
        ranked = rerank_code_first(query, candidates, query_vector)[: self.config.search.rerank_top_n]

        order = self.cross_encoder.rerank(query, [c.text for c in ranked])
        if order:
            picked = [i for i, _ in order]
            rest = [c for i, c in enumerate(ranked) if i not in set(picked)]
            ranked = [ranked[i] for i in picked] + rest

        chars = self.config.search.snippet_chars
        return [
            Hit(
                uri=c.uri,
                title=c.title,
                snippet=c.text[:chars],
                score=c.score,
                source="web" if c.meta.get("source") == "web" else "local",
                meta=c.meta,
            )
            for c in ranked[:k]
        ]

    def _boosts(self, file: str, text: str) -> dict[str, float]:
        learning = self.config.learning
        boosts = {}
        if learning.usage_enabled:
            boosts["usage"] = self.behavior.usage_boost(file)
        if learning.architecture_enabled:
            boosts["architecture"] = self.behavior.architecture_boost(file)[0]
        if learning.style_enabled:
            boosts["style"] = self.behavior.style_boost(text)
        return boosts

    def blended_search(self, query: str, k: int | None = None, mode: str | None = None) -> list[Hit]:
        """Local hits interleaved with imported evidence according to the ranking mode."""
        k = k or self.config.search.default_limit
        try:
            return self._blended.search(query, k, mode or self.config.search.ranking_mode)
        except Exception:
            logger.exception(f"Blended search failed for {query!r}")
            return []

    def quick_scan(self, query: str, limit: int = 8) -> list[Hit]:
        """Lexical scan that works before any index exists."""
        limit = max(1, min(50, int(limit or 8)))
        if self._quick is None:
            self._quick = QuickSearch(self.root)
        try:
            return self._quick.search(query, limit)
        except Exception as e:
            logger.warning(f"Quick scan failed: {e}")
            return []

    # ----- symbol navigation -----

    def symbol_index(self) -> SymbolIndex:
        """Symbol index over the indexed files, rebuilt after any completed run."""
        self.ensure_indexed()
        with self._symbols_lock:
            if self._symbols is None:
                self._symbols = SymbolIndex.build(
                    self.root, sorted(self.store.load_file_map()), self.coordinator.extractor
                )
            return self._symbols

    def find_symbol(self, name: str) -> Symbol | None:
        return self.symbol_index().find_symbol(name)

    def find_callers(self, name: str) -> list[CallSite]:
        return self.symbol_index().find_callers(name)

    def neighborhood(self, file: str) -> Neighborhood:
        return self.symbol_index().neighborhood(file)

    def dependents(self, file: str, max_depth: int = 10) -> list[str]:
        return self.symbol_index().dependents(file, max_depth)

    def dependencies(self, file: str, max_depth: int = 10) -> list[str]:
        return self.symbol_index().dependencies(file, max_depth)

    # ----- file watcher -----

    def start_watcher(self, debounce: float = DEBOUNCE_SECONDS, observer_factory=None) -> None:
        """Reindex changed files as they are saved, until :meth:`stop_watcher`."""
        if self._watcher is not None and self._watcher.is_running:
            logger.info("File watcher already running")
            return
        spec = self.coordinator.exclude_spec()
        self._watcher = WorkspaceWatcher(
            self.root,
            self._on_files_changed,
            accept=lambda rel: self.coordinator.is_candidate(rel, spec),
            debounce=debounce,
            observer_factory=observer_factory,
        )
        self._watcher.start()

    def stop_watcher(self) -> None:
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None

    @property
    def watcher_running(self) -> bool:
        return self._watcher is not None and self._watcher.is_running

    def _on_files_changed(self, paths: list[str]) -> None:
        result = self.index(include=paths, background=False)
        if result.ok:
            logger.info(
                f"Watcher reindex: +{len(result.added)} ~{len(result.modified)} -{len(result.removed)}"
            )
        else:
            logger.error(f"Watcher reindex failed: {result.error}")

    # ----- memory, stats, maintenance -----

    def record_usage(self, path: str) -> None:
        if self.config.learning.usage_enabled:
            self.behavior.record_usage(path)

    def stats(self) -> IndexStats:
        return self.store.get_stats() or IndexStats()

    def cache_stats(self) -> dict[str, Any]:
        return self.cache.stats()

    def reset(self) -> None:
        """Drop the persisted index; learned memory and evidence are kept."""
        with self._index_lock:
            while True:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    break
                self._queue.task_done()
            self.store.clear()
            self.cache.invalidate()
            self._quick = None
            self._symbols = None
            self._indexed = False
        logger.info(f"Index reset for {self.root} (will re-index on next search)")

    def ingest_urls(self, urls: list[str], tags: list[str] | None = None) -> dict[str, Any]:
        """Fetch, chunk, embed and store web pages."""
        result = WebIngestor(self.store, self.gateway, self._evidence).ingest(urls, tags)
        self.cache.invalidate()
        return result

    def close(self) -> None:
        self.stop_watcher()
        self.gateway.close()


_engines: WorkspaceRegistry[ContextEngine] = WorkspaceRegistry(ContextEngine)


def get_engine(root: str | Path | None = None, environ: Mapping[str, str] | None = None) -> ContextEngine:
    """Engine for the resolved workspace root, created on first use.

    ``environ`` resolves the root and, for a newly created engine, supplies
    configuration overrides and provider credentials.

    Raises:
        ConfigurationError: If the workspace root cannot be resolved
    """
    return _engines.get(
        resolve_workspace_root(root, environ),
        lambda path: ContextEngine(path, environ=environ),
    )


def reset_engines() -> None:
    """Forget every cached engine (used by tests)."""
    _engines.clear()
