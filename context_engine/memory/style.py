"""Learn naming, indentation, quoting and import conventions from workspace files."""

import logging
import re
from collections import Counter
from pathlib import Path

from .behavior import BehaviorMemory
from .store import StyleMemory

logger = logging.getLogger(__name__)

IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_-]{3,}")
_LEADING_WS = re.compile(r"^[\t ]+")
_IMPORT_LINE = re.compile(r"\bimport\b|require\(|from\s+['\".]")
_PY_RELATIVE = re.compile(r"from\s+\.")

HEAD_CHARS = 8000
IDENTIFIERS_PER_FILE = 60
LINES_PER_FILE = 220
MAX_EXAMPLES = 12
MIN_NAMING_CONFIDENCE = 0.35

NAMING_LABELS = {
    "camel": "camelCase",
    "snake": "snake_case",
    "pascal": "pascalCase",
    "kebab": "kebab-case",
}


def classify_identifier(identifier: str) -> str | None:
    """Naming class of an identifier, or None when it fits none."""
    if re.fullmatch(r"[a-z]+[A-Za-z0-9]*", identifier) and re.search(r"[A-Z]", identifier):
        return "camel"
    if re.fullmatch(r"[a-z0-9]+(_[a-z0-9]+)+", identifier):
        return "snake"
    if re.fullmatch(r"[A-Z][A-Za-z0-9]+", identifier) and re.search(r"[a-z]", identifier):
        return "pascal"
    if re.fullmatch(r"[a-z0-9]+(-[a-z0-9]+)+", identifier):
        return "kebab"
    return None


def _ratio_verdict(a: int, b: int, margin: float, labels: tuple[str, str, str]) -> str:
    if a > b * margin:
        return labels[0]
    if b > a * margin:
        return labels[1]
    return labels[2]


class StyleLearner:
    """Samples recently changed files and records the dominant conventions."""

    def __init__(self, behavior: BehaviorMemory, sample_size: int = 180):
        self.behavior = behavior
        self.sample_size = sample_size

    def _sample(self, root: Path, files: list[str]) -> list[Path]:
        paths = []
        for rel in files:
            path = root / rel
            try:
                paths.append((path.stat().st_mtime, path))
            except OSError:
                continue
        paths.sort(key=lambda item: item[0], reverse=True)
        return [path for _, path in paths[: self.sample_size]]

    def analyze(self, root: Path, files: list[str]) -> StyleMemory | None:
        """Analyze up to ``sample_size`` files and overwrite the stored style.

        Returns:
            The new StyleMemory, or None when there is nothing to sample
        """
        sample = self._sample(Path(root), files)
        if not sample:
            return None

        counts: Counter[str] = Counter()
        examples: dict[str, list[str]] = {key: [] for key in NAMING_LABELS}
        single_quotes = double_quotes = 0
        tab_indents = space_indents = 0
        indent_sizes: Counter[int] = Counter()
        relative_imports = absolute_imports = 0

        for path in sample:
            try:
                head = path.read_text(encoding="utf-8", errors="replace")[:HEAD_CHARS]
            except OSError as e:
                logger.debug(f"Style sample skipped {path}: {e}")
                continue

            for identifier in IDENTIFIER.findall(head)[:IDENTIFIERS_PER_FILE]:
                kind = classify_identifier(identifier)
                if kind is None:
                    continue
                counts[kind] += 1
                if len(examples[kind]) < MAX_EXAMPLES and identifier not in examples[kind]:
                    examples[kind].append(identifier)

            single_quotes += head.count("'")
            double_quotes += head.count('"')

            for line in head.splitlines()[:LINES_PER_FILE]:
                leading = _LEADING_WS.match(line)
                if leading:
                    if "\t" in leading.group(0):
                        tab_indents += 1
                    else:
                        space_indents += 1
                        size = len(leading.group(0))
                        if 0 < size <= 8:
                            indent_sizes[size] += 1

                if _IMPORT_LINE.search(line):
                    stripped = line.lstrip()
                    if "./" in line or "../" in line or _PY_RELATIVE.match(stripped):
                        relative_imports += 1
                    elif (
                        "'@" in line
                        or '"@' in line
                        or " from " in line
                        or stripped.startswith(("from ", "import "))
                    ):
                        absolute_imports += 1

        naming, confidence, identifier_examples = "unknown", 0.0, []
        total = sum(counts.values())
        if total:
            top, top_count = counts.most_common(1)[0]
            confidence = top_count / total
            naming = NAMING_LABELS[top] if confidence >= MIN_NAMING_CONFIDENCE else "mixed"
            identifier_examples = examples[top][:8]

        if tab_indents > space_indents * 1.2:
            indent_style = "tabs"
        elif space_indents >= tab_indents and space_indents > 0:
            indent_style = "spaces"
        else:
            indent_style = "mixed"
        indent_size = indent_sizes.most_common(1)[0][0] if indent_style == "spaces" and indent_sizes else None

        if single_quotes == 0 and double_quotes == 0:
            quote_style = "unknown"
        else:
            quote_style = _ratio_verdict(single_quotes, double_quotes, 1.1, ("single", "double", "mixed"))

        import_style = None
        if relative_imports or absolute_imports:
            import_style = _ratio_verdict(
                relative_imports, absolute_imports, 1.2, ("relative", "absolute", "mixed")
            )

        style = StyleMemory(
            naming_preference=naming,
            naming_confidence=confidence,
            identifier_examples=identifier_examples,
            indent_style=indent_style,
            indent_size=indent_size,
            quote_style=quote_style,
            import_style=import_style,
            keywords=identifier_examples[:6],
        )
        self.behavior.update_style(style)
        logger.info(
            f"Learned style from {len(sample)} files: {naming} naming, "
            f"{quote_style} quotes, {indent_style} indentation"
        )
        return style
