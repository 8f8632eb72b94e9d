"""Metadata extraction for documentation-like files (plans, RFCs, status reports)."""

import hashlib
import re
from pathlib import PurePosixPath

from ..core.models import DocLink, DocRecord, DocTask

DOC_TYPES = (
    "plan",
    "design",
    "rfc",
    "decision",
    "completion",
    "postmortem",
    "retro",
    "changelog",
    "spec",
    "readme",
    "status",
    "other",
)

DOC_STATUSES = ("draft", "approved", "in-progress", "done", "deprecated", "unknown")

# First match wins, so more specific labels come before broad ones
TYPE_PATTERNS: list[tuple[str, re.Pattern]] = [
    ("plan", re.compile(r"(plan|planning|roadmap|proposal)", re.I)),
    ("design", re.compile(r"(design|architecture|adr)", re.I)),
    ("rfc", re.compile(r"\brfc\b", re.I)),
    ("decision", re.compile(r"(decision\s*record|adr)", re.I)),
    ("completion", re.compile(r"(completion|final\s*report|wrap[-\s]*up|deliverables)", re.I)),
    ("postmortem", re.compile(r"(post[-\s]*mortem|incident|lessons? learned|root cause)", re.I)),
    ("retro", re.compile(r"(retrospective|retro)", re.I)),
    ("changelog", re.compile(r"(changelog|release\s*notes)", re.I)),
    ("spec", re.compile(r"\b(spec|specification|contract|api)\b", re.I)),
    ("readme", re.compile(r"\breadme\b", re.I)),
    ("status", re.compile(r"(status\s*report|progress|weekly|daily)", re.I)),
]

_FRONTMATTER = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---", re.S)
_FRONTMATTER_LINE = re.compile(r"^\s*([A-Za-z0-9_-]+)\s*:\s*(.+?)\s*$")
_HEADING = re.compile(r"^\s*#\s+(.+)$", re.M)
_STATUS = re.compile(r"status\s*[:\-]\s*(draft|approved|in[-\s]?progress|done|deprecated)", re.I)
_VERSION = re.compile(r"\b(v(?:ersion)?\s*[:\-]?\s*)(\d+\.\d+(?:\.\d+)?)", re.I)
_DATE = re.compile(r"\b(20\d{2}[-/.](?:0?[1-9]|1[0-2])[-/.](?:0?[1-9]|[12]\d|3[01]))\b")
_TASK = re.compile(r"^[ \t]*[-*]\s+\[( |x|X)\]\s+(.+)$", re.M)
_CODE_REF = re.compile(
    r"`([^`]+?\.(?:ts|tsx|js|jsx|py|go|java|rs))`"
    r"|(?:^|[\s(])([^\s`'\"()]+?\.(?:ts|tsx|js|jsx|py|go|java|rs))\b",
    re.M | re.I,
)
_ISSUE_REF = re.compile(r"(?<![\w/])#\d{2,6}\b|https?://github\.com/[^/\s]+/[^/\s]+/issues/\d+", re.I)
_URL = re.compile(r"https?://[^\s)>\]]+", re.I)

SUMMARY_MIN_CHARS = 40
SUMMARY_MAX_CHARS = 800


def parse_frontmatter(text: str) -> dict[str, str]:
    """Flat ``key: value`` pairs between leading ``---`` fences (keys lowercased)."""
    match = _FRONTMATTER.match(text)
    if not match:
        return {}
    fields = {}
    for line in match.group(1).splitlines():
        pair = _FRONTMATTER_LINE.match(line)
        if pair:
            fields[pair.group(1).lower()] = pair.group(2).strip().strip("'\"")
    return fields


def _strip_frontmatter(text: str) -> str:
    match = _FRONTMATTER.match(text)
    return text[match.end():] if match else text


def first_heading(text: str) -> str:
    match = _HEADING.search(_strip_frontmatter(text))
    return match.group(1).strip() if match else ""


def first_paragraph(text: str) -> str:
    body = _strip_frontmatter(text).strip()
    for block in re.split(r"\n\s*\n", body):
        block = block.strip()
        if len(block) > SUMMARY_MIN_CHARS and not block.startswith("#"):
            return block[:SUMMARY_MAX_CHARS]
    return ""


def _label(text: str) -> str | None:
    for doc_type, pattern in TYPE_PATTERNS:
        if pattern.search(text):
            return doc_type
    return None


def detect_status(text: str) -> str:
    match = _STATUS.search(text)
    if not match:
        return "unknown"
    status = re.sub(r"[\s-]+", "-", match.group(1).lower())
    if status.startswith("in-") or status == "inprogress":
        return "in-progress"
    return status if status in DOC_STATUSES else "unknown"


def detect_version(text: str) -> str | None:
    match = _VERSION.search(text)
    return match.group(2) if match else None


def detect_date(text: str) -> str | None:
    match = _DATE.search(text)
    return re.sub(r"[/.]", "-", match.group(1)) if match else None


def extract_tasks(text: str) -> list[DocTask]:
    return [
        DocTask(text=m.group(2).strip(), done=m.group(1).lower() == "x")
        for m in _TASK.finditer(text)
    ]


def extract_links(text: str) -> list[DocLink]:
    """Code paths, issue references and URLs mentioned in a document."""
    links: list[DocLink] = []
    seen: set[tuple[str, str]] = set()

    def add(kind: str, target: str) -> None:
        target = target.strip()
        if target and (kind, target) not in seen:
            seen.add((kind, target))
            links.append(DocLink(kind=kind, target=target))

    for match in _CODE_REF.finditer(text):
        ref = match.group(1) or match.group(2) or ""
        if "://" not in ref:
            add("code", ref)
    for match in _ISSUE_REF.finditer(text):
        add("issue", match.group(0))
    for match in _URL.finditer(text):
        add("url", match.group(0).rstrip(".,;"))
    return links


def _normalize_type(value: str | None) -> str | None:
    if not value:
        return None
    value = value.strip().lower()
    return value if value in DOC_TYPES else _label(value)


def _normalize_status(value: str | None, text: str) -> str:
    if value:
        normalized = re.sub(r"[\s_]+", "-", value.strip().lower())
        if normalized in DOC_STATUSES:
            return normalized
    return detect_status(text)


def extract_doc_record(rel_path: str, text: str) -> DocRecord:
    """Build a DocRecord for a documentation file.

    Title, summary, type, status, version and date prefer frontmatter values and
    fall back to heuristics over the body.

    Args:
        rel_path: Workspace-relative path, used as the record URI
        text: File contents

    Returns:
        DocRecord keyed by sha1(path + ":" + title)
    """
    fm = parse_frontmatter(text)
    name = PurePosixPath(rel_path).name
    title = fm.get("title") or first_heading(text) or name
    summary = (fm.get("summary") or first_paragraph(text))[:SUMMARY_MAX_CHARS]
    doc_type = (
        _normalize_type(fm.get("type"))
        or _label(name.lower())
        or _label(f"{title}\n{summary}")
        or "other"
    )
    tags = [t.strip() for t in fm.get("tags", "").strip("[]").split(",") if t.strip()]
    record_id = hashlib.sha1(f"{rel_path}:{title}".encode()).hexdigest()

    return DocRecord(
        id=record_id,
        uri=rel_path,
        title=title,
        type=doc_type,
        status=_normalize_status(fm.get("status"), text),
        version=fm.get("version") or detect_version(text),
        date=fm.get("date") or detect_date(text),
        summary=summary,
        tags=tags,
        tasks=extract_tasks(text),
        links=extract_links(text),
    )
