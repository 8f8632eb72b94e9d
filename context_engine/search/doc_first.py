"""Document-first ranking for plan, RFC, decision and status-report queries."""

import re
from dataclasses import dataclass
from datetime import datetime, timezone

from ..core.models import DocRecord, Hit

_WANTS_DOCS = re.compile(
    r"\b(doc|docs|documentation|plan|design|rfc|decision|postmortem|retro|status|report|summary"
    r"|completion|spec|roadmap|okrs?)\b"
)
_ANALYSIS = re.compile(r"analy[sz]e|audit|cross[-\s]?reference|compare")
_PREFER_RECENT = re.compile(r"\b(recent|latest|current|now|as of|today)\b")

TYPE_WEIGHTS = {
    "plan": 1.0,
    "design": 1.0,
    "rfc": 0.9,
    "decision": 1.1,
    "completion": 1.2,
    "postmortem": 0.8,
    "retro": 0.6,
    "changelog": 0.7,
    "spec": 0.9,
    "readme": 0.6,
    "status": 0.8,
    "other": 0.4,
}
STATUS_WEIGHTS = {
    "approved": 0.8,
    "done": 1.0,
    "in-progress": 0.4,
    "draft": 0.2,
    "deprecated": -0.8,
    "unknown": 0.0,
}

RECENCY_WINDOW_MONTHS = 18
DAYS_PER_MONTH = 30


@dataclass
class DocHints:
    wants_docs: bool
    prefer_recent: bool


def doc_hints(query: str) -> DocHints:
    lowered = query.lower()
    return DocHints(
        wants_docs=bool(_WANTS_DOCS.search(lowered) or _ANALYSIS.search(lowered)),
        prefer_recent=bool(_PREFER_RECENT.search(lowered)),
    )


def _parse_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def recency(date: str | None, now: datetime) -> float:
    """1.0 for today fading linearly to 0 over 18 thirty-day months."""
    parsed = _parse_date(date)
    if parsed is None:
        return 0.0
    months = max(0.0, (now - parsed).total_seconds() / (86400 * DAYS_PER_MONTH))
    return max(0.0, 1.0 - min(months / RECENCY_WINDOW_MONTHS, 1.0))


def score_doc(query: str, doc: DocRecord, now: datetime | None = None) -> float:
    now = now or datetime.now(timezone.utc)
    needle = query.lower()
    score = 0.0
    if needle in (doc.title or "").lower():
        score += 2.5
    if needle in (doc.summary or "").lower():
        score += 1.0
    score += TYPE_WEIGHTS.get(doc.type, 0.5)
    score += STATUS_WEIGHTS.get(doc.status or "unknown", 0.0)
    score += 0.8 * recency(doc.date, now)
    score += min(0.6, len(doc.tasks) * 0.05)
    score += min(0.4, len(doc.links) * 0.03)
    return score


def rerank_docs(query: str, docs: list[DocRecord], k: int = 24, now: datetime | None = None) -> list[DocRecord]:
    now = now or datetime.now(timezone.utc)
    scored = sorted(docs, key=lambda d: (-score_doc(query, d, now), d.uri))
    return scored[:k]


def doc_hit(doc: DocRecord) -> Hit:
    return Hit(
        uri=doc.uri,
        title=f"{doc.type.upper()}: {doc.title}",
        snippet=doc.summary or "",
        score=1.0,
        source="doc",
        meta={
            "type": doc.type,
            "status": doc.status,
            "date": doc.date,
            "tasks": len(doc.tasks),
            "links": len(doc.links),
        },
    )
