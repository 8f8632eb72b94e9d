"""Symbol extraction: tree-sitter grammars with a per-language regex fallback."""

import importlib
import logging
import re
from pathlib import Path, PurePosixPath
from typing import Protocol

try:
    from tree_sitter import Language, Parser

    TREE_SITTER_AVAILABLE = True
except ImportError:
    TREE_SITTER_AVAILABLE = False
    Language = None
    Parser = None

from ..core.languages import normalize_extension
from ..core.models import Symbol

logger = logging.getLogger(__name__)

MAX_SYMBOLS_PER_FILE = 200

# Raw suffix -> (binding module, language function)
GRAMMAR_BINDINGS = {
    ".py": ("tree_sitter_python", "language"),
    ".js": ("tree_sitter_javascript", "language"),
    ".jsx": ("tree_sitter_javascript", "language"),
    ".mjs": ("tree_sitter_javascript", "language"),
    ".cjs": ("tree_sitter_javascript", "language"),
    ".ts": ("tree_sitter_typescript", "language_typescript"),
    ".mts": ("tree_sitter_typescript", "language_typescript"),
    ".cts": ("tree_sitter_typescript", "language_typescript"),
    ".tsx": ("tree_sitter_typescript", "language_tsx"),
    ".go": ("tree_sitter_go", "language"),
    ".java": ("tree_sitter_java", "language"),
    ".rs": ("tree_sitter_rust", "language"),
}


class SymbolExtractor(Protocol):
    def extract(self, rel_path: str, text: str) -> list[Symbol]: ...


def _visibility(ext: str, name: str, modifiers: str, top_level: bool) -> tuple[bool, bool]:
    """(is_public, is_exported) for a declaration."""
    mods = modifiers or ""
    if ext == ".go":
        public = name[:1].isupper()
        return public, public
    if ext == ".py":
        public = not name.startswith("_")
        return public, public and top_level
    if ext == ".rs":
        exported = bool(re.search(r"\bpub\b", mods))
        return exported, exported
    if ext in {".java", ".cs", ".kt", ".kts", ".swift", ".php", ".scala"}:
        exported = bool(re.search(r"\b(?:public|protected|open)\b", mods))
        private = bool(re.search(r"\b(?:private|internal|fileprivate)\b", mods))
        return exported or (not private and ext in {".kt", ".kts", ".scala"}), exported
    exported = bool(re.search(r"\bexport\b", mods))
    return exported or name[:1].isupper(), exported


# ----- regex fallback -----

_ID = r"[A-Za-z_$][A-Za-z0-9_$]*"
_WORD = r"[A-Za-z_][A-Za-z0-9_]*"

_TS_JS_COMMON = [
    (rf"^(?P<mod>export\s+(?:default\s+)?)?(?:async\s+)?function\*?\s+(?P<name>{_ID})", "function"),
    (rf"^(?P<mod>export\s+(?:default\s+)?)?(?:abstract\s+)?class\s+(?P<name>{_ID})", "class"),
]

REGEX_PATTERNS: dict[str, list[tuple[str, str]]] = {
    ".ts": _TS_JS_COMMON
    + [
        (
            rf"^(?P<mod>export\s+)?const\s+(?P<name>{_ID})\s*(?::[^=]+)?=\s*(?:async\s*)?(?:\(|{_ID}\s*=>)",
            "const",
        ),
        (rf"^(?P<mod>export\s+)?interface\s+(?P<name>{_ID})", "interface"),
        (rf"^(?P<mod>export\s+)?type\s+(?P<name>{_ID})\s*(?:<[^>]*>)?\s*=", "type"),
        (rf"^(?P<mod>export\s+)?(?:const\s+)?enum\s+(?P<name>{_ID})", "enum"),
    ],
    ".js": _TS_JS_COMMON
    + [
        (
            rf"^(?P<mod>export\s+)?(?:const|let|var)\s+(?P<name>{_ID})\s*=\s*(?:async\s*)?(?:\(|{_ID}\s*=>|function)",
            "const",
        ),
    ],
    ".py": [
        (rf"^(?P<indent>[ \t]*)(?:async\s+)?def\s+(?P<name>{_WORD})\s*\(", "function"),
        (rf"^(?P<indent>[ \t]*)class\s+(?P<name>{_WORD})", "class"),
    ],
    ".go": [
        (rf"^func\s+(?:\([^)]*\)\s*)?(?P<name>{_WORD})\s*[\[(]", "function"),
        (rf"^type\s+(?P<name>{_WORD})\s+interface\b", "interface"),
        (rf"^type\s+(?P<name>{_WORD})\s+struct\b", "class"),
        (rf"^type\s+(?P<name>{_WORD})\b", "type"),
    ],
    ".java": [
        (
            rf"^\s*(?P<mod>(?:(?:public|protected|private|static|final|abstract|sealed)\s+)*)class\s+(?P<name>{_WORD})",
            "class",
        ),
        (
            rf"^\s*(?P<mod>(?:(?:public|protected|private|static|abstract)\s+)*)interface\s+(?P<name>{_WORD})",
            "interface",
        ),
        (rf"^\s*(?P<mod>(?:(?:public|protected|private|static)\s+)*)enum\s+(?P<name>{_WORD})", "enum"),
        (
            rf"^\s*(?P<mod>(?:(?:public|protected|private|static|final|abstract|synchronized|native|default)\s+)+)[\w<>\[\], \t]+?\s+(?P<name>{_WORD})\s*\(",
            "function",
        ),
    ],
    ".kt": [
        (
            rf"^\s*(?P<mod>(?:(?:public|internal|private|protected|abstract|data|sealed|open|inline|value|enum)\s+)*)class\s+(?P<name>{_WORD})",
            "class",
        ),
        (rf"^\s*(?P<mod>(?:(?:public|internal|private|protected)\s+)*)interface\s+(?P<name>{_WORD})", "interface"),
        (
            rf"^\s*(?P<mod>(?:(?:public|internal|private|protected|override|suspend|inline|operator|infix|tailrec)\s+)*)fun\s+(?:<[^>]+>\s*)?(?:{_WORD}\.)?(?P<name>{_WORD})",
            "function",
        ),
    ],
    ".kts": [(rf"^\s*(?P<mod>(?:(?:private|internal|suspend|inline)\s+)*)fun\s+(?P<name>{_WORD})", "function")],
    ".rs": [
        (rf"^\s*(?P<mod>pub(?:\([^)]*\))?\s+)?(?:async\s+)?(?:unsafe\s+)?fn\s+(?P<name>{_WORD})", "function"),
        (rf"^\s*(?P<mod>pub(?:\([^)]*\))?\s+)?struct\s+(?P<name>{_WORD})", "class"),
        (rf"^\s*(?P<mod>pub(?:\([^)]*\))?\s+)?enum\s+(?P<name>{_WORD})", "enum"),
        (rf"^\s*(?P<mod>pub(?:\([^)]*\))?\s+)?trait\s+(?P<name>{_WORD})", "interface"),
        (rf"^\s*(?P<mod>pub(?:\([^)]*\))?\s+)?type\s+(?P<name>{_WORD})", "type"),
    ],
    ".cpp": [
        (rf"^(?:template\s*<[^>]+>\s*)?(?:class|struct)\s+(?P<name>{_WORD})", "class"),
        (
            rf"^(?:inline\s+)?(?:static\s+)?(?:constexpr\s+)?[A-Za-z_][\w:\*&<>, \t]*\s+[\*&]?(?P<name>{_WORD})\s*\([^;\n]*$",
            "function",
        ),
    ],
    ".c": [
        (rf"^(?:static\s+)?[A-Za-z_][\w\* \t]*\s+\**(?P<name>{_WORD})\s*\([^;\n]*$", "function"),
        (rf"^typedef\s+struct\s+(?P<name>{_WORD})", "type"),
    ],
    ".cs": [
        (
            rf"^\s*(?P<mod>(?:(?:public|private|protected|internal|static|abstract|sealed|partial)\s+)*)class\s+(?P<name>{_WORD})",
            "class",
        ),
        (
            rf"^\s*(?P<mod>(?:(?:public|private|protected|internal|partial)\s+)*)interface\s+(?P<name>{_WORD})",
            "interface",
        ),
        (
            rf"^\s*(?P<mod>(?:(?:public|private|protected|internal|static|async|override|virtual|sealed)\s+)+)[\w<>\[\],?]+\s+(?P<name>{_WORD})\s*\(",
            "function",
        ),
    ],
    ".rb": [
        (r"^\s*(?:class|module)\s+(?P<name>[A-Za-z_][A-Za-z0-9_!?]*)", "class"),
        (r"^\s*def\s+(?:self\.)?(?P<name>[A-Za-z_][A-Za-z0-9_!?]*)", "function"),
    ],
    ".php": [
        (rf"^\s*(?P<mod>(?:abstract\s+|final\s+)?)class\s+(?P<name>{_WORD})", "class"),
        (rf"^\s*interface\s+(?P<name>{_WORD})", "interface"),
        (
            rf"^\s*(?P<mod>(?:(?:public|protected|private|static|final|abstract)\s+)*)function\s+(?P<name>{_WORD})\s*\(",
            "function",
        ),
    ],
    ".swift": [
        (
            rf"^\s*(?P<mod>(?:(?:public|internal|private|open|fileprivate|final)\s+)*)(?:class|struct|enum|protocol|extension)\s+(?P<name>{_WORD})",
            "class",
        ),
        (
            rf"^\s*(?P<mod>(?:(?:public|internal|private|open|fileprivate|static|mutating|override)\s+)*)func\s+(?P<name>{_WORD})",
            "function",
        ),
    ],
    ".scala": [
        (rf"^\s*(?P<mod>(?:(?:final|sealed|abstract|case|private|protected)\s+)*)class\s+(?P<name>{_WORD})", "class"),
        (rf"^\s*(?P<mod>(?:(?:sealed|private|protected)\s+)*)(?:trait|object)\s+(?P<name>{_WORD})", "interface"),
        (rf"^\s*(?P<mod>(?:(?:override|private|protected)\s+)*)def\s+(?P<name>{_WORD})", "function"),
    ],
    ".m": [
        (rf"^@(?:interface|implementation)\s+(?P<name>{_WORD})", "class"),
        (rf"^[-+]\s*\([^)]+\)\s*(?P<name>{_WORD})", "function"),
    ],
    ".hs": [
        (r"^(?P<name>[a-z_][A-Za-z0-9_']*)\s*::", "function"),
        (r"^(?:data|newtype)\s+(?P<name>[A-Z][A-Za-z0-9_']*)", "type"),
        (r"^class\s+(?:\([^)]*\)\s*=>\s*)?(?P<name>[A-Z][A-Za-z0-9_']*)", "interface"),
    ],
    ".vue": [
        (r"name:\s*['\"](?P<name>[A-Za-z_][A-Za-z0-9_-]*)['\"]", "class"),
        (rf"^\s*(?P<name>{_WORD})\s*\([^)]*\)\s*\{{", "function"),
    ],
    ".svelte": [
        (rf"(?P<mod>export\s+)let\s+(?P<name>{_WORD})", "const"),
        (rf"function\s+(?P<name>{_WORD})\s*\(", "function"),
    ],
}

_REGEX_COMPILED = {
    ext: [(re.compile(p, re.MULTILINE), kind) for p, kind in patterns]
    for ext, patterns in REGEX_PATTERNS.items()
}

# Language keywords the C-family function patterns would otherwise pick up
_NOT_NAMES = {"if", "for", "while", "switch", "return", "catch", "sizeof", "else", "new", "delete"}

# Used when a language has no table
_GENERIC_CALLABLE = re.compile(rf"^\s*(?:def|func|function|fn|sub|proc)\s+(?P<name>{_WORD})", re.MULTILINE)


class RegexSymbolExtractor:
    """Line-oriented regular expressions per language family."""

    def extract(self, rel_path: str, text: str) -> list[Symbol]:
        ext = normalize_extension(rel_path)
        patterns = _REGEX_COMPILED.get(ext)
        if patterns is None:
            patterns = [(_GENERIC_CALLABLE, "function")]

        line_starts = _line_starts(text)
        symbols = []
        for regex, kind in patterns:
            for match in regex.finditer(text):
                name = match.group("name")
                if not name or name in _NOT_NAMES:
                    continue
                groups = match.groupdict()
                indent = groups.get("indent")
                top_level = indent is None or indent == ""
                is_public, is_exported = _visibility(ext, name, groups.get("mod") or "", top_level)
                symbols.append(
                    Symbol(
                        name=name,
                        type=kind,
                        file=rel_path,
                        line=_line_for_offset(line_starts, match.start("name")),
                        is_public=is_public,
                        is_exported=is_exported,
                    )
                )
        return symbols


def _line_starts(text: str) -> list[int]:
    starts = [0]
    for i, ch in enumerate(text):
        if ch == "\n":
            starts.append(i + 1)
    return starts


def _line_for_offset(starts: list[int], offset: int) -> int:
    lo, hi = 0, len(starts) - 1
    while lo < hi:
        mid = (lo + hi + 1) // 2
        if starts[mid] <= offset:
            lo = mid
        else:
            hi = mid - 1
    return lo + 1


# ----- tree-sitter -----

# Node type -> symbol type, per grammar family
_TS_NODE_TYPES = {
    "python": {"function_definition": "function", "class_definition": "class"},
    "javascript": {
        "function_declaration": "function",
        "generator_function_declaration": "function",
        "class_declaration": "class",
        "method_definition": "function",
        "variable_declarator": "const",
    },
    "typescript": {
        "function_declaration": "function",
        "generator_function_declaration": "function",
        "class_declaration": "class",
        "abstract_class_declaration": "class",
        "method_definition": "function",
        "interface_declaration": "interface",
        "type_alias_declaration": "type",
        "enum_declaration": "enum",
        "variable_declarator": "const",
    },
    "go": {
        "function_declaration": "function",
        "method_declaration": "function",
        "type_spec": "type",
    },
    "java": {
        "class_declaration": "class",
        "interface_declaration": "interface",
        "enum_declaration": "enum",
        "record_declaration": "class",
        "method_declaration": "function",
    },
    "rust": {
        "function_item": "function",
        "struct_item": "class",
        "enum_item": "enum",
        "trait_item": "interface",
        "type_item": "type",
    },
}

_FAMILY = {
    "tree_sitter_python": "python",
    "tree_sitter_javascript": "javascript",
    "tree_sitter_typescript": "typescript",
    "tree_sitter_go": "go",
    "tree_sitter_java": "java",
    "tree_sitter_rust": "rust",
}


class TreeSitterSymbolExtractor:
    """Grammar-backed extraction for languages with an installed binding."""

    def __init__(self):
        if not TREE_SITTER_AVAILABLE:
            raise ImportError("tree-sitter packages not available")
        self._parsers: dict[str, Parser] = {}
        self._missing: set[str] = set()

    def supports(self, rel_path: str) -> bool:
        return self._parser_for(PurePosixPath(rel_path).suffix.lower()) is not None

    def _parser_for(self, suffix: str):
        if suffix in self._parsers:
            return self._parsers[suffix]
        binding = GRAMMAR_BINDINGS.get(suffix)
        if binding is None or suffix in self._missing:
            return None
        module_name, func_name = binding
        try:
            module = importlib.import_module(module_name)
            parser = Parser(Language(getattr(module, func_name)()))
        except Exception as e:
            logger.debug(f"No grammar for {suffix}: {e}")
            self._missing.add(suffix)
            return None
        self._parsers[suffix] = parser
        return parser

    def extract(self, rel_path: str, text: str) -> list[Symbol]:
        suffix = PurePosixPath(rel_path).suffix.lower()
        parser = self._parser_for(suffix)
        if parser is None:
            return []
        source = text.encode("utf-8")
        tree = parser.parse(source)
        family = _FAMILY[GRAMMAR_BINDINGS[suffix][0]]
        node_types = _TS_NODE_TYPES[family]
        ext = normalize_extension(rel_path)

        symbols: list[Symbol] = []

        def text_of(node) -> str:
            return source[node.start_byte : node.end_byte].decode("utf-8", errors="replace")

        def traverse(node, depth: int) -> None:
            kind = node_types.get(node.type)
            if kind:
                symbol = self._symbol_for(node, kind, family, ext, rel_path, depth, text_of)
                if symbol is not None:
                    symbols.append(symbol)
            for child in node.children:
                traverse(child, depth + (1 if kind else 0))

        traverse(tree.root_node, 0)
        return symbols

    def _symbol_for(self, node, kind, family, ext, rel_path, depth, text_of) -> Symbol | None:
        if node.type == "variable_declarator":
            value = node.child_by_field_name("value")
            if value is None or value.type not in {"arrow_function", "function", "function_expression"}:
                return None
        name_node = node.child_by_field_name("name")
        if name_node is None:
            return None
        name = text_of(name_node)

        modifiers = ""
        parent = node.parent
        if family in {"javascript", "typescript"}:
            # export_statement > lexical_declaration > variable_declarator
            anchor = parent if node.type == "variable_declarator" else node
            if anchor is not None and anchor.parent is not None and anchor.parent.type == "export_statement":
                modifiers = "export"
            if node.type == "method_definition":
                modifiers = " ".join(
                    text_of(c) for c in node.children if c.type == "accessibility_modifier"
                )
                if name.startswith("#") or "private" in modifiers:
                    return Symbol(name, kind, rel_path, node.start_point[0] + 1, False, False)
                return Symbol(name, kind, rel_path, node.start_point[0] + 1, True, False)
        elif family == "java":
            modifiers = " ".join(text_of(c) for c in node.children if c.type == "modifiers")
        elif family == "rust":
            modifiers = " ".join(
                text_of(c) for c in node.children if c.type == "visibility_modifier"
            )

        top_level = depth == 0 and (parent is None or parent.type in {"module", "decorated_definition"})
        is_public, is_exported = _visibility(ext, name, modifiers, top_level)
        return Symbol(name, kind, rel_path, node.start_point[0] + 1, is_public, is_exported)


class CompositeSymbolExtractor:
    """Tries each extractor in order, moving on when one raises or finds nothing."""

    def __init__(self, extractors: list[SymbolExtractor]):
        self.extractors = extractors

    def extract(self, rel_path: str, text: str) -> list[Symbol]:
        for extractor in self.extractors:
            try:
                found = extractor.extract(rel_path, text)
            except Exception as e:
                logger.debug(f"{type(extractor).__name__} failed on {rel_path}: {e}")
                continue
            if found:
                return _dedupe(found)
        return []


def _dedupe(symbols: list[Symbol]) -> list[Symbol]:
    seen: set[tuple[str, str, int]] = set()
    unique = []
    for symbol in sorted(symbols, key=lambda s: (s.line, s.name)):
        key = (symbol.file, symbol.name, symbol.line)
        if key in seen:
            continue
        seen.add(key)
        unique.append(symbol)
        if len(unique) >= MAX_SYMBOLS_PER_FILE:
            break
    return unique


def default_extractor() -> CompositeSymbolExtractor:
    """Grammar-backed extraction first when tree-sitter is installed, regex otherwise."""
    extractors: list[SymbolExtractor] = []
    if TREE_SITTER_AVAILABLE:
        extractors.append(TreeSitterSymbolExtractor())
    extractors.append(RegexSymbolExtractor())
    return CompositeSymbolExtractor(extractors)


def extract_symbols(file_path: Path | str, root: Path | str | None = None) -> list[Symbol]:
    """Read a file and return its declared symbols.

    Args:
        file_path: File to read
        root: Workspace root used to make ``Symbol.file`` relative

    Returns:
        Symbols sorted by line, deduplicated by (file, name, line)
    """
    path = Path(file_path)
    rel = path.relative_to(root).as_posix() if root else path.as_posix()
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.warning(f"Could not read {path}: {e}")
        return []
    return default_extractor().extract(rel, text)


def symbols_in_range(symbols: list[Symbol], start: int, end: int) -> list[str]:
    """Names declared within a chunk's line range, in order."""
    names = []
    for symbol in symbols:
        if start <= symbol.line <= end and symbol.name not in names:
            names.append(symbol.name)
    return names
