"""Workspace symbol index: definitions by name and file, call sites and import neighborhoods."""

import logging
import re
from collections import defaultdict, deque
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from ..core.languages import is_code
from ..core.models import Symbol
from .graph import ImportEdge, build_import_graph
from .symbols import SymbolExtractor, default_extractor

logger = logging.getLogger(__name__)

MAX_CALLERS = 500
MAX_DEPTH = 10


@dataclass
class CallSite:
    """A line that calls a symbol by name."""

    file: str
    line: int
    context: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Neighborhood:
    """Symbols declared in a file plus the files it imports and is imported by."""

    file: str
    symbols: list[Symbol] = field(default_factory=list)
    imports: list[str] = field(default_factory=list)
    imported_by: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "file": self.file,
            "symbols": [s.to_dict() for s in self.symbols],
            "imports": self.imports,
            "imported_by": self.imported_by,
        }


class SymbolIndex:
    """In-memory symbol table over a set of workspace files.

    Built from the same extractor the indexer uses for chunk metadata, plus
    the relative import graph for neighborhood and dependency queries.
    """

    def __init__(self, root: Path, symbols: list[Symbol], files: list[str], edges: list[ImportEdge]):
        self.root = Path(root)
        self.symbols = symbols
        self.files = files
        self.edges = edges
        self.by_name: dict[str, list[Symbol]] = defaultdict(list)
        self.by_file: dict[str, list[Symbol]] = defaultdict(list)
        for symbol in symbols:
            self.by_name[symbol.name].append(symbol)
            self.by_file[symbol.file].append(symbol)
        self._imports: dict[str, list[str]] = defaultdict(list)
        self._importers: dict[str, list[str]] = defaultdict(list)
        for edge in edges:
            self._imports[edge.source].append(edge.target)
            self._importers[edge.target].append(edge.source)

    @classmethod
    def build(cls, root: Path, files: list[str], extractor: SymbolExtractor | None = None) -> "SymbolIndex":
        """Extract symbols from every code file in ``files``.

        Unreadable files are skipped with a debug log.
        """
        root = Path(root)
        extractor = extractor or default_extractor()
        code_files = sorted(f for f in files if is_code(f))
        symbols: list[Symbol] = []
        for rel in code_files:
            try:
                text = (root / rel).read_text(encoding="utf-8", errors="replace")
            except OSError as e:
                logger.debug(f"Skipping {rel} in symbol index: {e}")
                continue
            symbols.extend(extractor.extract(rel, text))
        edges = build_import_graph(root, code_files)
        logger.info(f"Symbol index built: {len(symbols)} symbols from {len(code_files)} files")
        return cls(root, symbols, code_files, edges)

    def find_symbol(self, name: str) -> Symbol | None:
        """Definition for ``name``, preferring an exported declaration."""
        matches = self.by_name.get(name)
        if not matches:
            return None
        return next((s for s in matches if s.is_exported), matches[0])

    def file_symbols(self, file: str) -> list[Symbol]:
        return list(self.by_file.get(file, []))

    def find_callers(self, name: str, limit: int = MAX_CALLERS) -> list[CallSite]:
        """Lines containing ``name(`` across indexed files, definitions excluded."""
        pattern = re.compile(rf"(?<![\w$]){re.escape(name)}\s*\(")
        definitions = {(s.file, s.line) for s in self.by_name.get(name, [])}
        callers: list[CallSite] = []
        for rel in self.files:
            try:
                lines = (self.root / rel).read_text(encoding="utf-8", errors="replace").splitlines()
            except OSError:
                continue
            for line_no, line in enumerate(lines, 1):
                if (rel, line_no) in definitions or not pattern.search(line):
                    continue
                callers.append(CallSite(rel, line_no, line.strip()))
                if len(callers) >= limit:
                    return callers
        return callers

    def neighborhood(self, file: str) -> Neighborhood:
        return Neighborhood(
            file=file,
            symbols=self.file_symbols(file),
            imports=sorted(set(self._imports.get(file, []))),
            imported_by=sorted(set(self._importers.get(file, []))),
        )

    def dependencies(self, file: str, max_depth: int = MAX_DEPTH) -> list[str]:
        """Files reachable by following imports from ``file``."""
        return self._walk(file, self._imports, max_depth)

    def dependents(self, file: str, max_depth: int = MAX_DEPTH) -> list[str]:
        """Files that import ``file`` directly or transitively."""
        return self._walk(file, self._importers, max_depth)

    @staticmethod
    def _walk(start: str, adjacency: dict[str, list[str]], max_depth: int) -> list[str]:
        seen = {start}
        queue = deque([(start, 0)])
        while queue:
            current, depth = queue.popleft()
            if depth >= max_depth:
                continue
            for neighbor in adjacency.get(current, []):
                if neighbor not in seen:
                    seen.add(neighbor)
                    queue.append((neighbor, depth + 1))
        seen.discard(start)
        return sorted(seen)
