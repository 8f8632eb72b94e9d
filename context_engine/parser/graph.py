"""Relative import edges between workspace files."""

import logging
import posixpath
import re
from dataclasses import dataclass
from pathlib import Path

from ..core.languages import normalize_extension

logger = logging.getLogger(__name__)

_JS_IMPORT = re.compile(r"""import[^;]*?from\s*['"]([^'"]+)['"]|require\(\s*['"]([^'"]+)['"]\s*\)""")
_PY_FROM_IMPORT = re.compile(r"^\s*from\s+(\.+[\w.]*)\s+import\s+", re.M)

_RESOLVE_SUFFIXES = ("", ".ts", ".tsx", ".js", ".jsx", ".mjs", ".mts", ".cts", ".py")


@dataclass(frozen=True)
class ImportEdge:
    source: str
    target: str


def _resolve(candidate: str, known: set[str]) -> str | None:
    """Match a relative module path to an indexed file, trying extensions and index files."""
    candidate = posixpath.normpath(candidate)
    if candidate.startswith("../"):
        return None
    for suffix in _RESOLVE_SUFFIXES:
        if candidate + suffix in known:
            return candidate + suffix
    for suffix in _RESOLVE_SUFFIXES[1:]:
        index = posixpath.join(candidate, "index" + suffix)
        if index in known:
            return index
    init = posixpath.join(candidate, "__init__.py")
    return init if init in known else None


def _python_target(source: str, spec: str) -> str:
    dots = len(spec) - len(spec.lstrip("."))
    remainder = spec[dots:].replace(".", "/")
    base = posixpath.dirname(source)
    for _ in range(dots - 1):
        base = posixpath.dirname(base)
    return posixpath.join(base, remainder) if remainder else base


def edges_for_file(rel_path: str, text: str, known: set[str]) -> list[ImportEdge]:
    ext = normalize_extension(rel_path)
    edges = []
    if ext in (".ts", ".js"):
        for match in _JS_IMPORT.finditer(text):
            spec = match.group(1) or match.group(2)
            if not spec.startswith("."):
                continue
            target = _resolve(posixpath.join(posixpath.dirname(rel_path), spec), known)
            if target:
                edges.append(ImportEdge(rel_path, target))
    elif ext == ".py":
        for match in _PY_FROM_IMPORT.finditer(text):
            target = _resolve(_python_target(rel_path, match.group(1)), known)
            if target:
                edges.append(ImportEdge(rel_path, target))
    return edges


def build_import_graph(root: Path, files: list[str]) -> list[ImportEdge]:
    """Collect resolved relative imports among ``files`` (workspace-relative paths).

    Files that cannot be read are logged and skipped.
    """
    known = set(files)
    edges: list[ImportEdge] = []
    for rel_path in files:
        if normalize_extension(rel_path) not in (".ts", ".js", ".py"):
            continue
        try:
            text = (Path(root) / rel_path).read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.debug(f"Skipping import scan for {rel_path}: {e}")
            continue
        edges.extend(edges_for_file(rel_path, text, known))
    logger.debug(f"Import graph: {len(edges)} edges across {len(files)} files")
    return edges
