"""Ranking signals derived from learned memory."""

import math
import os
import re
from pathlib import Path

from .store import ArchitecturalPattern, MemoryStore, StyleMemory

CAMEL_CASE = re.compile(r"[a-z][a-z0-9]*[A-Z][A-Za-z0-9]*")
SNAKE_CASE = re.compile(r"[a-z0-9]+_[a-z0-9]+")
PASCAL_CASE = re.compile(r"[A-Z][a-z0-9]+[A-Z][A-Za-z0-9]*")

_SPACE_INDENT = re.compile(r"^ +\S")
_TAB_INDENT = re.compile(r"^\t+\S")

USAGE_BOOST_CAP = 0.5


class BehaviorMemory:
    """Usage, architecture and style boosts for one workspace.

    Example:
        behavior = BehaviorMemory(root, MemoryStore(root / ".context-engine"))
        behavior.record_usage("src/api/users.ts")
        behavior.usage_boost("src/api/users.ts")  # log1p(1) / 4
    """

    def __init__(self, root: Path, store: MemoryStore):
        self.root = Path(root)
        self.store = store

    def normalize(self, file: str) -> str:
        """Lowercase forward-slash path relative to the workspace root."""
        path = Path(file)
        if path.is_absolute():
            try:
                path = path.relative_to(self.root)
            except ValueError:
                pass
        return os.path.normpath(str(path)).replace("\\", "/").lower()

    def get_style(self) -> StyleMemory | None:
        return self.store.get_style()

    def update_style(self, style: StyleMemory | None) -> None:
        self.store.set_style(style)

    def get_architecture(self) -> list[ArchitecturalPattern]:
        return self.store.get_architecture()

    def update_architecture(self, patterns: list[ArchitecturalPattern]) -> None:
        self.store.set_architecture(patterns)

    def record_usage(self, file: str) -> None:
        self.store.increment_usage(self.normalize(file))

    def usage_boost(self, file: str) -> float:
        record = self.store.get_usage(self.normalize(file))
        if record is None:
            return 0.0
        return min(USAGE_BOOST_CAP, math.log1p(record.count) / 4)

    def architecture_boost(self, file: str) -> tuple[float, list[str]]:
        """Confidence-weighted pattern membership: 0.9 for an exact file match, 0.6 for a prefix."""
        norm = self.normalize(file)
        score = 0.0
        tags: list[str] = []
        for pattern in self.store.get_architecture():
            members = [self.normalize(f) for f in pattern.files]
            exact = norm in members
            if exact or any(norm.startswith(m) for m in members):
                score += pattern.confidence * (0.9 if exact else 0.6)
                if pattern.name not in tags:
                    tags.append(pattern.name)
        return min(1.0, score), tags

    def style_boost(self, snippet: str) -> float:
        style = self.store.get_style()
        if style is None:
            return 0.0

        text = snippet or ""
        score = 0.0
        naming = style.naming_preference
        if naming == "camelCase" and CAMEL_CASE.search(text):
            score += 0.6 * style.naming_confidence
        elif naming == "snake_case" and SNAKE_CASE.search(text):
            score += 0.6 * style.naming_confidence
        elif naming == "pascalCase" and PASCAL_CASE.search(text):
            score += 0.6 * style.naming_confidence
        elif naming == "kebab-case" and "-" in text:
            score += 0.4 * style.naming_confidence

        lines = [line for line in text.splitlines() if line.strip()]
        if lines:
            if style.indent_style == "spaces":
                spaced = sum(1 for line in lines if _SPACE_INDENT.match(line))
                score += 0.2 * min(1.0, spaced / len(lines))
                if style.indent_size:
                    prefix = " " * style.indent_size
                    exact = sum(1 for line in lines if line.startswith(prefix))
                    score += 0.1 * min(1.0, exact / len(lines))
            elif style.indent_style == "tabs":
                tabbed = sum(1 for line in lines if _TAB_INDENT.match(line))
                score += 0.25 * min(1.0, tabbed / len(lines))

        singles, doubles = text.count("'"), text.count('"')
        if style.quote_style == "single" and singles > doubles:
            score += 0.1
        elif style.quote_style == "double" and doubles >= singles:
            score += 0.1

        return min(1.0, score)
