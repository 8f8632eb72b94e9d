"""First-stage retrieval: dense cosine blended with a lexical term count."""

import logging
import re
from dataclasses import dataclass

import numpy as np

from ..core.models import Chunk
from ..storage.store import ContextStore

logger = logging.getLogger(__name__)

DENSE_WEIGHT = 0.8
LEXICAL_WEIGHT = 0.2

_TERM_SPLIT = re.compile(r"\W+")


def query_terms(query: str) -> list[str]:
    return [t for t in _TERM_SPLIT.split(query.lower()) if t]


def lexical_rank(query: str, text: str) -> int:
    """Total substring occurrences of each query term in the text."""
    haystack = text.lower()
    return sum(haystack.count(term) for term in query_terms(query))


def cosine(a, b) -> float:
    """Cosine similarity; 0 for empty, zero-norm or mismatched vectors."""
    if a is None or b is None:
        return 0.0
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.size == 0 or va.shape != vb.shape:
        return 0.0
    denom = np.linalg.norm(va) * np.linalg.norm(vb)
    if denom == 0:
        return 0.0
    return float(np.dot(va, vb) / denom)


@dataclass
class Candidate:
    """A chunk scored by the first stage, carried into reranking."""

    chunk: Chunk
    vector: list[float] | None
    score: float
    lexical: int = 0
    dense: float = 0.0


def hybrid_query(
    store: ContextStore,
    query: str,
    query_vector: list[float] | None,
    top_k: int = 8,
) -> list[Candidate]:
    """Score every stored chunk and keep the best ``top_k``.

    score = 0.8 * cosine(query, chunk) + 0.2 * lexical_rank(query, chunk)
    """
    embeddings = store.load_embeddings()
    scored: list[Candidate] = []
    for chunk in store.iter_chunks():
        record = embeddings.get(chunk.id)
        vector = record.vector if record else None
        dense = cosine(query_vector, vector) if query_vector is not None else 0.0
        lexical = lexical_rank(query, chunk.text)
        scored.append(
            Candidate(
                chunk=chunk,
                vector=vector,
                score=DENSE_WEIGHT * dense + LEXICAL_WEIGHT * lexical,
                lexical=lexical,
                dense=dense,
            )
        )

    # Stable ordering for ties keeps results deterministic across runs
    scored.sort(key=lambda c: (-c.score, c.chunk.file, c.chunk.start_line))
    logger.debug(f"Hybrid query scored {len(scored)} chunks for {query!r}")
    return scored[:top_k]
