"""Blend local index hits with imported evidence under a ranking mode."""

import dataclasses
import logging
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout

from ..core.models import Hit
from ..evidence import EvidenceItem, EvidenceStore

logger = logging.getLogger(__name__)

RANKING_MODES = ("local", "imported", "blend")
MIN_LOCAL_K = 12


def _data_field(data, name: str):
    return data.get(name) if isinstance(data, dict) else None


def imported_hit(item: EvidenceItem, rank: int, snippet_chars: int = 620) -> Hit:
    """Normalize an evidence item; unscored items get ``1 / (rank + 1)``."""
    data = item.data
    snippet = (
        item.snippet
        or _data_field(data, "snippet")
        or _data_field(data, "summary")
        or _data_field(data, "content")
        or item.data_text()[:snippet_chars]
    )
    if item.score is not None:
        score = float(item.score)
    elif isinstance(_data_field(data, "score"), (int, float)):
        score = float(data["score"])
    else:
        score = 1.0 / (rank + 1)
    return Hit(
        uri=item.uri or _data_field(data, "uri") or _data_field(data, "path") or "",
        title=item.title or _data_field(data, "title") or item.source,
        snippet=str(snippet)[:snippet_chars],
        score=score,
        source=item.source,
        meta={"origin": "imported", "evidence_id": item.id, "tags": item.tags or []},
    )


def interleave(local: list[Hit], imported: list[Hit], k: int) -> list[Hit]:
    """Strict one-for-one alternation, local first, skipping repeated URIs."""
    out: list[Hit] = []
    seen: set[str] = set()

    def take(hit: Hit) -> None:
        if hit.uri and hit.uri in seen:
            return
        if hit.uri:
            seen.add(hit.uri)
        out.append(hit)

    li = ii = 0
    while (li < len(local) or ii < len(imported)) and len(out) < k:
        if li < len(local):
            take(local[li])
            li += 1
        if ii < len(imported) and len(out) < k:
            take(imported[ii])
            ii += 1
    return out


class BlendedSearcher:
    """Runs the local and imported searches side by side, each under its own timeout.

    A side that raises or times out contributes no hits.
    """

    def __init__(
        self,
        local_search: Callable[[str, int], list[Hit]],
        evidence: EvidenceStore,
        sources: Iterable[str] = ("context7", "web"),
        timeout: float = 30.0,
        snippet_chars: int = 620,
    ):
        self.local_search = local_search
        self.evidence = evidence
        self.sources = list(sources)
        self.timeout = timeout
        self.snippet_chars = snippet_chars

    def _imported(self, query: str) -> list[EvidenceItem]:
        items: list[EvidenceItem] = []
        for source in self.sources:
            items.extend(self.evidence.find(source=source, text=query))
        return items

    def search(self, query: str, k: int = 12, mode: str = "blend") -> list[Hit]:
        if mode not in RANKING_MODES:
            logger.warning(f"Unknown ranking mode {mode!r}, using blend")
            mode = "blend"

        executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="ctx-blend")
        try:
            local_future = executor.submit(self.local_search, query, max(k, MIN_LOCAL_K))
            imported_future = executor.submit(self._imported, query)
            local_raw = self._result(local_future, "local")
            imported_raw = self._result(imported_future, "imported")
        finally:
            # A hung side keeps its worker thread but no longer blocks the caller
            executor.shutdown(wait=False, cancel_futures=True)

        # Local hits may be shared with the query cache, so tag copies
        local = [
            dataclasses.replace(hit, meta={**hit.meta, "origin": "local"})
            for hit in sorted(local_raw, key=lambda h: -h.score)
        ]
        imported = sorted(
            (imported_hit(item, rank, self.snippet_chars) for rank, item in enumerate(imported_raw[: k * 3])),
            key=lambda h: -h.score,
        )

        if mode == "local":
            return local[:k]
        if mode == "imported":
            return imported[:k]
        return interleave(local, imported, k)

    def _result(self, future, label: str) -> list:
        try:
            return future.result(timeout=self.timeout) or []
        except FutureTimeout:
            logger.warning(f"Blended search: {label} side timed out after {self.timeout}s")
        except Exception as e:
            logger.error(f"Blended search: {label} side failed: {e}")
        return []
