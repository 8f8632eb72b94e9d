"""Code-first reranking: fuse lexical, dense, path priors and intent signals.

Every signal is a pure function of the query, the candidate and the memory
snapshot passed in, so a fixed input always yields the same ordering.
"""

import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any

from .hybrid import cosine

WEIGHTS = {
    "base": 0.45,
    "dense": 0.18,
    "prior": 0.12,
    "proximity": 0.05,
    "exact": 0.04,
    "intent": 0.08,
    "style": 0.04,
    "architecture": 0.04,
    "usage": 0.03,
}

_IMPL_WORDS = re.compile(r"\b(impl(ementation)?|method|function|class|generate|handler|execute|builder|client)\b")
_CALL_FORM = re.compile(r"\w+\s*\(")
_METHOD_NAME = re.compile(r"([a-zA-Z_][a-zA-Z0-9_]*)\s*\(")
_CAPITALIZED = re.compile(r"\b([A-Z][A-Za-z0-9]+)\b")
_CAMEL_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_WORD = re.compile(r"[a-z_][a-z0-9_]*")

CODE_PRIOR_EXTS = {".ts", ".tsx", ".js", ".jsx", ".py", ".go", ".java", ".rs"}
DOC_PRIOR_EXTS = {".md", ".mdx", ".rst"}


@dataclass
class QueryHints:
    wants_impl: bool
    method_names: list[str]
    class_or_interface: str | None = None


@dataclass
class RankCandidate:
    uri: str
    title: str
    text: str
    vector: list[float] | None = None
    lex_score: float = 0.0
    meta: dict[str, Any] = field(default_factory=dict)
    boosts: dict[str, float] = field(default_factory=dict)
    score: float = 0.0
    start_line: int = 0


def derive_hints(query: str) -> QueryHints:
    lowered = query.lower()
    wants_impl = bool(_IMPL_WORDS.search(lowered) or _CALL_FORM.search(lowered))
    method_names = []
    for name in _METHOD_NAME.findall(lowered):
        if len(name) > 2 and name not in method_names:
            method_names.append(name)
    match = _CAPITALIZED.search(query)
    return QueryHints(wants_impl, method_names, match.group(1) if match else None)


def split_idents(text: str) -> list[str]:
    """Lowercase words with camelCase and snake_case split apart."""
    return [t for t in _NON_ALNUM.split(_CAMEL_BOUNDARY.sub(r"\1 \2", text).lower()) if t]


def ext_prior(uri: str) -> float:
    ext = PurePosixPath(uri).suffix.lower()
    if ext in CODE_PRIOR_EXTS:
        return 1.0
    if ext in DOC_PRIOR_EXTS:
        return -0.8
    return -0.2


def path_prior(uri: str) -> float:
    path = "/" + uri.lower().lstrip("/")
    weight = 0.0
    if "/src/" in path:
        weight += 0.6
    if "/lib/" in path or "/client" in path or "/server" in path:
        weight += 0.3
    if "/docs/" in path or "/examples/" in path:
        weight -= 0.7
    return weight


def presence_of_signature(methods: list[str], text: str) -> float:
    for name in methods:
        m = re.escape(name)
        pattern = (
            rf"\b(function\s+{m}\b|{m}\s*\(|\.{m}\s*=\s*\(|\b{m}\s*=\s*\(|\b{m}\s*:\s*\(|\b{m}\s*<[^>]*>\s*\()"
        )
        if re.search(pattern, text, re.IGNORECASE):
            return 1.0
    return 0.0


def class_or_interface_hint(name: str | None, text: str) -> float:
    if not name:
        return 0.0
    return 0.6 if re.search(rf"\b(class|interface)\s+{re.escape(name)}\b", text) else 0.0


def proximity_boost(terms: list[str], text: str) -> float:
    """0.6 when two query terms first occur within 60 chars, 0.25 within 160."""
    lowered = text.lower()
    positions = [pos for pos in (lowered.find(t) for t in dict.fromkeys(terms)) if pos >= 0]
    if len(positions) < 2:
        return 0.0
    positions.sort()
    best = min(b - a for a, b in zip(positions, positions[1:]))
    if best < 60:
        return 0.6
    if best < 160:
        return 0.25
    return 0.0


def exact_symbol_boost(methods: list[str], title: str, text: str) -> float:
    haystack = f"{title}\n{text}".lower()
    return min(1.0, sum(0.25 for name in methods if name.lower() in haystack))


def candidate_methods(hints: QueryHints, query: str, candidate: RankCandidate) -> list[str]:
    """Explicit ``name(`` forms plus query words naming one of the candidate's symbols."""
    symbols = {str(s).lower() for s in candidate.meta.get("symbols") or []}
    methods = list(hints.method_names)
    for word in _WORD.findall(query.lower()):
        if len(word) > 2 and word in symbols and word not in methods:
            methods.append(word)
    return methods


def score_candidate(
    query: str,
    hints: QueryHints,
    terms: list[str],
    candidate: RankCandidate,
    max_lex: float,
    query_vector: list[float] | None,
) -> tuple[float, dict[str, float]]:
    methods = candidate_methods(hints, query, candidate)
    features = {
        "base": candidate.lex_score / max_lex,
        "dense": max(0.0, cosine(query_vector, candidate.vector)),
        "prior": ext_prior(candidate.uri) + path_prior(candidate.uri),
        "proximity": proximity_boost(terms, candidate.text),
        "exact": exact_symbol_boost(methods, candidate.title, candidate.text),
        "intent": (
            presence_of_signature(methods, candidate.text)
            + class_or_interface_hint(hints.class_or_interface, candidate.text)
            if hints.wants_impl
            else 0.0
        ),
        "style": min(1.0, candidate.boosts.get("style", 0.0)),
        "architecture": min(1.0, candidate.boosts.get("architecture", 0.0)),
        "usage": min(1.0, candidate.boosts.get("usage", 0.0)),
    }
    return sum(WEIGHTS[name] * value for name, value in features.items()), features


def rerank_code_first(
    query: str, candidates: list[RankCandidate], query_vector: list[float] | None = None
) -> list[RankCandidate]:
    """Rescore candidates in place and return them best first.

    Ties break on uri and start line.
    """
    hints = derive_hints(query)
    terms = split_idents(query)
    max_lex = max([1e-9] + [c.lex_score for c in candidates])
    for candidate in candidates:
        candidate.score, _ = score_candidate(query, hints, terms, candidate, max_lex, query_vector)
    return sorted(candidates, key=lambda c: (-c.score, c.uri, c.start_line))
