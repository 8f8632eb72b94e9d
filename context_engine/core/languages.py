"""File extension tables shared by the chunker, symbol extractor and rankers."""

from pathlib import PurePosixPath

EXTENSION_ALIASES = {
    ".tsx": ".ts",
    ".cts": ".ts",
    ".mts": ".ts",
    ".jsx": ".js",
    ".mjs": ".js",
    ".cjs": ".js",
    ".hpp": ".cpp",
    ".hxx": ".cpp",
    ".hh": ".cpp",
    ".ipp": ".cpp",
    ".cc": ".cpp",
    ".cxx": ".cpp",
    ".h": ".c",
    ".mm": ".m",
}

# Canonical (post-alias) code extensions
CODE_EXTENSIONS = frozenset(
    {
        ".ts", ".js", ".py", ".go", ".java", ".kt", ".kts", ".rs", ".cpp", ".c",
        ".cs", ".rb", ".php", ".swift", ".scala", ".m", ".hs", ".ps1", ".sh",
        ".vue", ".svelte",
    }
)  # fmt: skip

INDENT_LANGUAGES = frozenset({".py", ".rb", ".hs"})
BRACE_LANGUAGES = CODE_EXTENSIONS - INDENT_LANGUAGES - {".ps1", ".sh"}

DOC_EXTENSIONS = frozenset({".md", ".mdx", ".rst", ".txt", ".adoc"})
CONFIG_EXTENSIONS = frozenset({".json", ".yml", ".yaml", ".toml", ".ini", ".sql"})

INDEXABLE_EXTENSIONS = (
    CODE_EXTENSIONS | DOC_EXTENSIONS | CONFIG_EXTENSIONS | frozenset(EXTENSION_ALIASES)
)

LANGUAGE_NAMES = {
    ".ts": "typescript",
    ".js": "javascript",
    ".py": "python",
    ".go": "go",
    ".java": "java",
    ".kt": "kotlin",
    ".kts": "kotlin",
    ".rs": "rust",
    ".cpp": "cpp",
    ".c": "c",
    ".cs": "csharp",
    ".rb": "ruby",
    ".php": "php",
    ".swift": "swift",
    ".scala": "scala",
    ".m": "objc",
    ".hs": "haskell",
    ".ps1": "powershell",
    ".sh": "shell",
    ".vue": "vue",
    ".svelte": "svelte",
}


def normalize_extension(path: str) -> str:
    """Lowercased extension of a path with aliases folded (".tsx" -> ".ts")."""
    ext = PurePosixPath(path).suffix.lower()
    return EXTENSION_ALIASES.get(ext, ext)


def language_for(path: str) -> str:
    """Language label stored in chunk metadata."""
    ext = normalize_extension(path)
    if ext in LANGUAGE_NAMES:
        return LANGUAGE_NAMES[ext]
    if ext in DOC_EXTENSIONS:
        return "markdown" if ext in {".md", ".mdx"} else "text"
    return ext.lstrip(".") or "text"


def is_code(path: str) -> bool:
    return normalize_extension(path) in CODE_EXTENSIONS


def is_doc(path: str) -> bool:
    return normalize_extension(path) in DOC_EXTENSIONS


def is_indexable(path: str) -> bool:
    return PurePosixPath(path).suffix.lower() in INDEXABLE_EXTENSIONS
