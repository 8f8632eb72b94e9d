"""Embedding-free lexical scan used before an index exists."""

import logging
import os
import re
import time
from collections.abc import Callable, Iterable
from pathlib import Path

import pathspec

from ..core.models import Hit
from .hybrid import lexical_rank

logger = logging.getLogger(__name__)

QUICK_EXTENSIONS = frozenset(
    {".ts", ".tsx", ".js", ".jsx", ".py", ".go", ".java", ".rs", ".cpp", ".c", ".h", ".cs", ".rb", ".php"}
)
QUICK_EXCLUDES = [
    "node_modules/",
    ".git/",
    "dist/",
    "build/",
    ".next/",
    ".turbo/",
    "vendor/",
    ".venv*/",
    "venv/",
    "__pycache__/",
    ".idea/",
    ".context-engine/",
]
MAX_FILES = 400
SCAN_FILES = 200
SCAN_CHARS = 16000
LIST_TTL_SECONDS = 300

_QUERY_SPLIT = re.compile(r"[^a-z0-9]+")


def highlight(text: str, term: str) -> str:
    """120 characters before the first match of ``term`` and 180 after it."""
    idx = text.lower().find(term.lower())
    if idx == -1:
        return text[:320]
    return text[max(0, idx - 120) : min(len(text), idx + len(term) + 180)]


class QuickSearch:
    """Greps a bounded, periodically refreshed list of source files."""

    def __init__(
        self,
        root: Path,
        exclude_patterns: Iterable[str] | None = None,
        max_files: int = MAX_FILES,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.root = Path(root)
        self.spec = pathspec.PathSpec.from_lines("gitwildmatch", list(exclude_patterns or QUICK_EXCLUDES))
        self.max_files = max_files
        self._clock = clock
        self._files: list[str] = []
        self._listed_at: float | None = None

    def _refresh_if_needed(self) -> None:
        now = self._clock()
        if self._files and self._listed_at is not None and now - self._listed_at < LIST_TTL_SECONDS:
            return
        files: list[str] = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            rel_dir = Path(dirpath).relative_to(self.root).as_posix()
            prefix = "" if rel_dir == "." else f"{rel_dir}/"
            dirnames[:] = sorted(d for d in dirnames if not self.spec.match_file(f"{prefix}{d}/"))
            for name in sorted(filenames):
                rel = f"{prefix}{name}"
                if Path(name).suffix.lower() in QUICK_EXTENSIONS and not self.spec.match_file(rel):
                    files.append(rel)
                    if len(files) >= self.max_files:
                        break
            if len(files) >= self.max_files:
                break
        self._files = files
        self._listed_at = now
        logger.debug(f"Quick scan file list refreshed: {len(files)} files")

    def search(self, query: str, limit: int = 8) -> list[Hit]:
        terms = [t for t in _QUERY_SPLIT.split(query.lower()) if t]
        if not terms:
            return []
        self._refresh_if_needed()
        if not self._files:
            return []

        # Files whose path mentions a term are read first
        prioritized = [f for f in self._files if any(t in f.lower() for t in terms)] + self._files
        budget = min(self.max_files, SCAN_FILES)
        seen: set[str] = set()
        hits: list[Hit] = []
        for rel in prioritized:
            if rel in seen:
                continue
            seen.add(rel)
            if len(seen) > budget:
                break
            try:
                text = (self.root / rel).read_text(encoding="utf-8", errors="replace")
            except OSError as e:
                logger.debug(f"Quick scan skipped {rel}: {e}")
                continue
            score = lexical_rank(query, text[:SCAN_CHARS])
            if score <= 0:
                continue
            lowered = text.lower()
            best = max(terms, key=lowered.count)
            hits.append(
                Hit(
                    uri=rel,
                    title=Path(rel).name,
                    snippet=highlight(text, best),
                    score=float(score),
                    source="quick",
                    meta={"fallback": True, "source": "quick", "title": Path(rel).name},
                )
            )
            if len(hits) >= limit * 2:
                break

        hits.sort(key=lambda h: (-h.score, h.uri))
        for hit in hits:
            hit.score = max(0.05, hit.score)
        return hits[:limit]
