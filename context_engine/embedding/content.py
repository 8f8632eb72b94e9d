"""Content-type detection and per-type model selection."""

import os
import re
from collections.abc import Mapping
from pathlib import PurePosixPath

CONTENT_TYPES = ("code", "docs", "finance", "legal", "general")

_CODE_EXTS = {
    ".ts", ".tsx", ".js", ".jsx", ".py", ".go", ".java", ".rs",
    ".cpp", ".c", ".h", ".sql", ".sh", ".ps1",
}  # fmt: skip
_DOC_EXTS = {".md", ".mdx", ".txt", ".rst"}
_CONFIG_EXTS = {".json", ".yml", ".yaml", ".toml", ".ini"}

_LEGAL = re.compile(
    r"\b(gdpr|hipaa|pci|sox|compliance|regulation|legal|contract|terms|privacy policy|license agreement)\b",
    re.I,
)
_FINANCE = re.compile(
    r"\b(revenue|profit|earnings|financial|fiscal|quarter|balance sheet|income statement|cash flow)\b",
    re.I,
)

# Query-side detection is looser: a single word is enough to pick a type
_QUERY_CODE = re.compile(
    r"\b(function|class|method|variable|import|export|async|await|const|let|var|interface|type)\b",
    re.I,
)
_QUERY_FINANCE = re.compile(r"\b(revenue|profit|earnings|financial|fiscal|quarter|balance|income)\b", re.I)
_QUERY_LEGAL = re.compile(r"\b(gdpr|hipaa|pci|sox|compliance|regulation|legal|contract|terms)\b", re.I)
_QUERY_DOCS = re.compile(r"\b(how to|what is|explain|guide|tutorial|documentation)\b", re.I)

VOYAGE_MODELS = {
    "code": ("CTX_EMBED_CODE_MODEL", "voyage-code-3"),
    "finance": ("CTX_EMBED_FINANCE_MODEL", "voyage-finance-2"),
    "legal": ("CTX_EMBED_LEGAL_MODEL", "voyage-law-2"),
    "docs": ("CTX_EMBED_DOCS_MODEL", "voyage-3-large"),
    "general": ("CTX_EMBED_GENERAL_MODEL", "voyage-3.5"),
}


def detect_content_type(file_path: str, content: str = "") -> str:
    """Classify a file as code, docs, legal, finance or general.

    Documentation is scanned for legal keywords first, then finance keywords.
    """
    ext = PurePosixPath(file_path).suffix.lower()
    if ext in _CODE_EXTS or ext in _CONFIG_EXTS:
        return "code"
    if ext in _DOC_EXTS:
        if _LEGAL.search(content):
            return "legal"
        if _FINANCE.search(content):
            return "finance"
        return "docs"
    return "general"


def detect_query_content_type(query: str) -> str:
    if _QUERY_CODE.search(query):
        return "code"
    if _QUERY_FINANCE.search(query):
        return "finance"
    if _QUERY_LEGAL.search(query):
        return "legal"
    if _QUERY_DOCS.search(query):
        return "docs"
    return "general"


def select_voyage_model(content_type: str, environ: Mapping[str, str] | None = None) -> str:
    env = os.environ if environ is None else environ
    var, default = VOYAGE_MODELS.get(content_type, VOYAGE_MODELS["general"])
    return env.get(var) or default
