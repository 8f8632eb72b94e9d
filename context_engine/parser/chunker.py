"""Line-oriented chunking that keeps declarations and their bodies together.

Three small state machines share one buffer/flush protocol:

- ``BraceChunker`` tracks ``{``/``}`` depth and only cuts between top-level blocks.
- ``IndentChunker`` treats non-blank lines at column 0 as top-level boundaries.
- ``PlainCodeChunker`` cuts on declarations and blank lines (shell, PowerShell).

``KeywordBlockChunker`` is the brace machine with ``def``/``end`` style depth (Ruby).
Documentation is split on paragraphs and any other text is windowed.

Every machine honors a hard line ceiling. When the ceiling is reached while the
buffer holds lines that precede the current top-level block, the buffer is cut
at the block start instead, so a block shorter than the ceiling stays whole.
"""

import re
from dataclasses import dataclass
from pathlib import PurePosixPath

from ..core.languages import (
    BRACE_LANGUAGES,
    CODE_EXTENSIONS,
    DOC_EXTENSIONS,
    INDENT_LANGUAGES,
    normalize_extension,
)
from ..core.models import ChunkSpan

MAX_CHUNK_CHARS = 1200

_IDENT = r"[A-Za-z_][A-Za-z0-9_]*"

DECLARATION_PATTERNS: dict[str, list[str]] = {
    ".ts": [
        rf"\bfunction\s+{_IDENT}",
        rf"\bclass\s+{_IDENT}",
        rf"\binterface\s+{_IDENT}",
        rf"\btype\s+{_IDENT}",
        rf"\b(?:enum|namespace)\s+{_IDENT}",
        rf"(?:const|let)\s+{_IDENT}\s*=\s*(?:async\s*)?(?:\(|{_IDENT}\s*=>)",
    ],
    ".js": [
        rf"\bfunction\s+{_IDENT}",
        rf"\bclass\s+{_IDENT}",
        rf"(?:const|let|var)\s+{_IDENT}\s*=\s*(?:async\s*)?(?:\(|{_IDENT}\s*=>)",
        r"module\.exports\s*=",
    ],
    ".py": [rf"^\s*(?:async\s+)?def\s+{_IDENT}", rf"^\s*class\s+{_IDENT}", r"^\s*@\w"],
    ".go": [rf"^\s*func\s+", rf"^\s*type\s+{_IDENT}", rf"^\s*(?:var|const)\s+{_IDENT}"],
    ".java": [
        rf"\b(?:class|interface|enum)\s+{_IDENT}",
        rf"\b(?:public|protected|private|static|final|abstract|synchronized)\b.*\b{_IDENT}\s*\(",
    ],
    ".kt": [rf"\b(?:class|object|interface|fun)\s+{_IDENT}"],
    ".kts": [rf"\bfun\s+{_IDENT}", r"\btask\s+\w+\s*\{"],
    ".rs": [rf"\b(?:pub\s+)?(?:fn|struct|enum|trait|mod|impl)\s+{_IDENT}"],
    ".cpp": [
        rf"\b(?:class|struct)\s+{_IDENT}",
        r"\btemplate\s*<[^>]+>",
        rf"^[A-Za-z_][\w:\*<>,\s]*\s+{_IDENT}\s*\(",
    ],
    ".c": [rf"^[A-Za-z_][\w\*\s]*\s+{_IDENT}\s*\(", r"^\s*typedef\b", r"^\s*struct\b"],
    ".cs": [
        rf"\b(?:class|interface|enum)\s+{_IDENT}",
        rf"\b(?:public|private|protected|internal|static|async|sealed|abstract)\b.*\b{_IDENT}\s*\(",
    ],
    ".rb": [r"^\s*(?:class|module|def)\s+[A-Za-z_][A-Za-z0-9_!?]*"],
    ".php": [
        rf"\bclass\s+{_IDENT}",
        rf"\b(?:public|protected|private|static)?\s*function\s+{_IDENT}",
    ],
    ".swift": [rf"\b(?:class|struct|enum|protocol|extension|func)\s+{_IDENT}"],
    ".scala": [rf"\b(?:class|trait|object|case\s+class|def)\s+{_IDENT}"],
    ".m": [rf"@(?:interface|implementation)\s+{_IDENT}", rf"^[-+]\s*\([^)]+\)\s*{_IDENT}"],
    ".hs": [
        r"^[A-Za-z_][A-Za-z0-9_']*\s*::",
        r"^\s*(?:data|newtype)\s+[A-Za-z_][A-Za-z0-9_']*",
    ],
    ".vue": [r"<script", r"export\s+default"],
    ".svelte": [r"<script", rf"export\s+let\s+{_IDENT}"],
    ".sh": [rf"^\s*(?:function\s+)?{_IDENT}\s*\(\)\s*\{{?", rf"^\s*function\s+{_IDENT}"],
    ".ps1": [rf"^\s*function\s+[A-Za-z_][\w-]*"],
}

_COMPILED = {
    ext: [re.compile(p) for p in patterns] for ext, patterns in DECLARATION_PATTERNS.items()
}

# Strings and line comments are stripped before counting braces
_STRING_OR_COMMENT = re.compile(r"\"(?:\\.|[^\"\\])*\"|'(?:\\.|[^'\\])*'|`[^`]*`|//.*$|#.*$")

_RUBY_OPEN = re.compile(
    r"^\s*(?:class|module|def|begin|case|if|unless|while|until|for)\b|\bdo\s*(?:\|[^|]*\|)?\s*$"
)
_RUBY_CLOSE = re.compile(r"^\s*end\b")


def is_declaration(ext: str, line: str) -> bool:
    """Whether a line starts a declaration in the given (normalized) extension."""
    return any(p.search(line) for p in _COMPILED.get(ext, ()))


@dataclass(frozen=True)
class ChunkThresholds:
    """Named line-count thresholds for one language class.

    Attributes:
        soft_limit: Cut at the next top-level boundary once the buffer is this long
        hard_limit: Always cut once the buffer is this long
        declaration_min: A new declaration starts a chunk once the buffer has this many lines
        blank_min: A blank-line boundary starts a chunk once the buffer has this many lines
    """

    soft_limit: int
    hard_limit: int
    declaration_min: int
    blank_min: int | None = None


BRACE_THRESHOLDS = ChunkThresholds(soft_limit=140, hard_limit=220, declaration_min=20)
INDENT_THRESHOLDS = ChunkThresholds(
    soft_limit=100, hard_limit=200, declaration_min=10, blank_min=24
)
PLAIN_THRESHOLDS = ChunkThresholds(
    soft_limit=220, hard_limit=220, declaration_min=16, blank_min=32
)


class _LineBuffer:
    """Accumulates lines and emits spans."""

    def __init__(self):
        self.lines: list[str] = []
        self.start = 1
        self.block_start = 0  # Offset in ``lines`` where the current top-level block began
        self.spans: list[ChunkSpan] = []

    def __len__(self) -> int:
        return len(self.lines)

    def add(self, line_no: int, line: str) -> None:
        if not self.lines:
            self.start = line_no
        self.lines.append(line)

    def mark_block_start(self) -> None:
        self.block_start = len(self.lines)

    def flush(self) -> None:
        if self.lines:
            self._emit(self.lines)
        self.lines = []
        self.block_start = 0

    def cut_at_block_start(self) -> bool:
        """Emit the lines before the current block and keep the block buffered."""
        if 0 < self.block_start < len(self.lines):
            head = self.lines[: self.block_start]
            self._emit(head)
            self.lines = self.lines[self.block_start :]
            self.start += len(head)
            self.block_start = 0
            return True
        return False

    def enforce_hard_limit(self, hard_limit: int) -> None:
        if len(self.lines) >= hard_limit and not self.cut_at_block_start():
            self.flush()

    def _emit(self, lines: list[str]) -> None:
        text = "\n".join(lines)
        if text.strip():
            self.spans.append(ChunkSpan(self.start, self.start + len(lines) - 1, text))


class BraceChunker:
    """Chunker for brace-delimited languages."""

    thresholds = BRACE_THRESHOLDS

    def __init__(self, ext: str, thresholds: ChunkThresholds | None = None):
        self.ext = ext
        if thresholds is not None:
            self.thresholds = thresholds

    def depth_delta(self, line: str) -> int:
        code = _STRING_OR_COMMENT.sub("", line) if self.ext != ".php" else line
        return code.count("{") - code.count("}")

    def chunk(self, lines: list[str]) -> list[ChunkSpan]:
        t = self.thresholds
        buf = _LineBuffer()
        depth = 0

        for line_no, line in enumerate(lines, 1):
            at_top = depth == 0
            decl = is_declaration(self.ext, line)

            if at_top and decl and len(buf) >= t.declaration_min:
                buf.flush()
            if at_top and line.strip():
                buf.mark_block_start()
            buf.add(line_no, line)

            depth = max(0, depth + self.depth_delta(line))

            if len(buf) >= t.hard_limit:
                buf.enforce_hard_limit(t.hard_limit)
            elif depth == 0 and len(buf) >= t.soft_limit:
                buf.flush()

        buf.flush()
        return buf.spans


class KeywordBlockChunker(BraceChunker):
    """Brace machine whose depth comes from ``def ... end`` keywords."""

    thresholds = INDENT_THRESHOLDS

    def depth_delta(self, line: str) -> int:
        delta = 0
        if _RUBY_OPEN.search(line):
            delta += 1
        if _RUBY_CLOSE.search(line):
            delta -= 1
        return delta


class IndentChunker:
    """Chunker for indentation-significant languages."""

    thresholds = INDENT_THRESHOLDS

    def __init__(self, ext: str, thresholds: ChunkThresholds | None = None):
        self.ext = ext
        if thresholds is not None:
            self.thresholds = thresholds

    def chunk(self, lines: list[str]) -> list[ChunkSpan]:
        t = self.thresholds
        buf = _LineBuffer()
        base_indent: int | None = None
        after_blank = False
        prev_decorator = False

        for line_no, line in enumerate(lines, 1):
            stripped = line.strip()
            if not stripped:
                if buf.lines:
                    buf.add(line_no, line)
                    after_blank = True
                continue

            indent = len(line) - len(line.lstrip())
            decl = is_declaration(self.ext, line)
            top_level = indent == 0
            decorated = prev_decorator and decl

            if buf.lines and not decorated:
                sibling_decl = decl and base_indent is not None and indent <= base_indent
                if (
                    (sibling_decl and len(buf) >= t.declaration_min)
                    or (top_level and after_blank and t.blank_min and len(buf) >= t.blank_min)
                    or (top_level and len(buf) >= t.soft_limit)
                ):
                    buf.flush()

            if not buf.lines:
                base_indent = indent
            if top_level and not decorated:
                buf.mark_block_start()
            buf.add(line_no, line)
            after_blank = False
            prev_decorator = stripped.startswith("@")

            if len(buf) >= t.hard_limit:
                buf.enforce_hard_limit(t.hard_limit)
                if buf.lines:
                    first = next((ln for ln in buf.lines if ln.strip()), "")
                    base_indent = len(first) - len(first.lstrip())

        buf.flush()
        return buf.spans


class PlainCodeChunker:
    """Chunker for code without reliable block structure."""

    thresholds = PLAIN_THRESHOLDS

    def __init__(self, ext: str, thresholds: ChunkThresholds | None = None):
        self.ext = ext
        if thresholds is not None:
            self.thresholds = thresholds

    def chunk(self, lines: list[str]) -> list[ChunkSpan]:
        t = self.thresholds
        buf = _LineBuffer()
        for line_no, line in enumerate(lines, 1):
            if is_declaration(self.ext, line) and len(buf) >= t.declaration_min:
                buf.flush()
            buf.add(line_no, line)
            if not line.strip() and t.blank_min and len(buf) >= t.blank_min:
                buf.flush()
            elif len(buf) >= t.hard_limit:
                buf.flush()
        buf.flush()
        return buf.spans


def _paragraphs(lines: list[str]) -> list[tuple[int, str]]:
    """(first line number, text) for each run of non-blank lines."""
    paragraphs = []
    current: list[str] = []
    start = 1
    for line_no, line in enumerate(lines, 1):
        if line.strip():
            if not current:
                start = line_no
            current.append(line)
        elif current:
            paragraphs.append((start, "\n".join(current)))
            current = []
    if current:
        paragraphs.append((start, "\n".join(current)))
    return paragraphs


def chunk_document(text: str, max_chars: int = MAX_CHUNK_CHARS) -> list[ChunkSpan]:
    """Split on blank-line paragraphs, windowing paragraphs longer than ``max_chars``."""
    spans = []
    for para_start, para in _paragraphs(text.split("\n")):
        for offset in range(0, len(para), max_chars):
            window = para[offset : offset + max_chars]
            if not window.strip():
                continue
            start = para_start + para.count("\n", 0, offset)
            spans.append(ChunkSpan(start, start + window.count("\n"), window))
    return spans


def chunk_windows(text: str, max_chars: int = MAX_CHUNK_CHARS) -> list[ChunkSpan]:
    """Single pass over lines, cutting whenever a window would exceed ``max_chars``."""
    spans: list[ChunkSpan] = []
    buf: list[str] = []
    size = 0
    start = 1

    def emit(end_line: int) -> None:
        body = "\n".join(buf)
        if body.strip():
            spans.append(ChunkSpan(start, end_line, body))

    for line_no, line in enumerate(text.split("\n"), 1):
        if len(line) > max_chars:
            if buf:
                emit(line_no - 1)
            for offset in range(0, len(line), max_chars):
                piece = line[offset : offset + max_chars]
                if piece.strip():
                    spans.append(ChunkSpan(line_no, line_no, piece))
            buf, size, start = [], 0, line_no + 1
            continue
        if buf and size + len(line) + 1 > max_chars:
            emit(line_no - 1)
            buf, size, start = [], 0, line_no
        if not buf:
            start = line_no
        buf.append(line)
        size += len(line) + 1

    if buf:
        emit(start + len(buf) - 1)
    return spans


def chunker_for(ext: str):
    """Pick the state machine for a normalized extension (None for non-code)."""
    if ext == ".rb":
        return KeywordBlockChunker(ext)
    if ext in INDENT_LANGUAGES:
        return IndentChunker(ext)
    if ext in BRACE_LANGUAGES:
        return BraceChunker(ext)
    if ext in CODE_EXTENSIONS:
        return PlainCodeChunker(ext)
    return None


def chunk_file(file_path: str, text: str, max_chars: int = MAX_CHUNK_CHARS) -> list[ChunkSpan]:
    """Split a file's text into non-empty, 1-indexed line spans.

    Args:
        file_path: Path used only for its extension
        text: File contents
        max_chars: Window size for documents and unrecognized text

    Returns:
        Spans in file order
    """
    text = text.replace("\r\n", "\n")
    ext = normalize_extension(file_path)
    machine = chunker_for(ext)
    if machine is not None:
        return machine.chunk(text.split("\n"))
    if ext in DOC_EXTENSIONS or PurePosixPath(file_path).suffix == "":
        return chunk_document(text, max_chars)
    return chunk_windows(text, max_chars)
