"""Configuration management for the context engine."""

import json
import os
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, Field

CONFIG_DIR_NAME = ".context-engine"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}

# Checked in order when no explicit root is given
WORKSPACE_ENV_VARS = ("WORKSPACE_ROOT", "VSCODE_WORKSPACE", "INIT_CWD")


class ConfigurationError(ValueError):
    """Raised when a setting or credential needed at the point of use is missing or invalid."""


class EmbeddingConfig(BaseModel):
    """Embedding configuration.

    Providers:
    - "voyage": specialized models per content type - requires VOYAGE_API_KEY (or ANTHROPIC_API_KEY)
    - "openai": text-embedding-3-small - requires OPENAI_API_KEY
    - "ollama": local server, nomic-embed-text by default
    - "lexical": deterministic hashed embeddings, no network
    - "auto": content-type aware chain over the above
    """

    provider: str = "auto"
    model: str = "nomic-embed-text"  # Cache namespace and Ollama model
    openai_model: str = "text-embedding-3-small"
    voyage_dimensions: int = 1024
    fallback_dimensions: int = 384
    batch_size: int = 128
    ollama_base_url: str = "http://127.0.0.1:11434"
    ollama_concurrency: int = 10
    ollama_auto_start: bool = False
    ollama_start_timeout: int = 120
    request_timeout: float = 30.0
    max_retries: int = 3


class IndexingConfig(BaseModel):
    """Indexing configuration."""

    ttl_minutes: int = 20
    max_changed_files: int = 1000
    quick_file_limit: int = 240
    lazy_indexing: bool = True
    background_indexing: bool = True
    exclude_patterns: list[str] = Field(
        default_factory=lambda: [
            "node_modules/",
            ".git/",
            "dist/",
            "build/",
            ".next/",
            ".turbo/",
            ".venv*/",
            "venv/",
            "__pycache__/",
            ".pytest_cache/",
            "site-packages/",
            "coverage/",
            f"{CONFIG_DIR_NAME}/",
            "*.db",
            "*.min.js",
            "package-lock.json",
            "yarn.lock",
            "pnpm-lock.yaml",
        ]
    )
    max_file_size_mb: float = 2.0


class StorageConfig(BaseModel):
    """On-disk storage configuration."""

    context_dir: str | None = None  # Defaults to <root>/.context-engine/context
    compression_enabled: bool = True
    max_disk_usage_mb: int = 2048
    auto_cleanup: bool = True


class LearningConfig(BaseModel):
    """Behavior memory toggles."""

    style_enabled: bool = True
    architecture_enabled: bool = True
    usage_enabled: bool = True
    style_sample_size: int = 180


class CacheConfig(BaseModel):
    """Query cache configuration."""

    max_size: int = 100
    ttl_minutes: float = 30.0


class SearchConfig(BaseModel):
    """Search configuration."""

    default_limit: int = 12
    ranking_mode: str = "blend"  # "local", "imported" or "blend"
    blend_timeout: float = 30.0
    imported_sources: list[str] = Field(default_factory=lambda: ["context7", "web"])
    rerank_top_n: int = 50
    snippet_chars: int = 620


class Config(BaseModel):
    """Main context engine configuration."""

    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    indexing: IndexingConfig = Field(default_factory=IndexingConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    learning: LearningConfig = Field(default_factory=LearningConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)

    @classmethod
    def load(cls, path: Path) -> "Config":
        """Load configuration from JSON file."""
        if not path.exists():
            return cls()
        with open(path) as f:
            data = json.load(f)
        return cls(**data)

    def save(self, path: Path) -> None:
        """Save configuration to JSON file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.model_dump(), f, indent=2)

    @classmethod
    def get_default_config_path(cls, root: Path | None = None) -> Path:
        """Get default configuration file path."""
        base = Path(root) if root else Path(".")
        return base / CONFIG_DIR_NAME / "config.json"

    @classmethod
    def for_workspace(cls, root: Path, environ: Mapping[str, str] | None = None) -> "Config":
        """Load the workspace config file and layer environment overrides on top."""
        return cls.load(cls.get_default_config_path(root)).apply_env(environ)

    def apply_env(self, environ: Mapping[str, str] | None = None) -> "Config":
        """Return a copy with environment overrides applied.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Returns:
            New Config instance
        """
        env = os.environ if environ is None else environ
        cfg = self.model_copy(deep=True)

        emb = cfg.embedding
        emb.provider = (env.get("CTX_EMBED_PROVIDER") or emb.provider).strip().lower()
        emb.model = env.get("CTX_EMBED_MODEL") or env.get("OLLAMA_EMBED_MODEL") or emb.model
        emb.fallback_dimensions = _env_int(env, "CTX_FALLBACK_EMBED_DIMS", emb.fallback_dimensions)
        emb.batch_size = _env_int(env, "CTX_EMBED_BATCH_SIZE", emb.batch_size)
        emb.ollama_concurrency = _env_int(env, "OLLAMA_EMBED_CONCURRENCY", emb.ollama_concurrency)
        emb.ollama_base_url = env.get("OLLAMA_BASE_URL") or emb.ollama_base_url
        emb.ollama_auto_start = _env_toggle(env, "CTX_OLLAMA_AUTOSTART", emb.ollama_auto_start)
        emb.ollama_start_timeout = _env_int(env, "OLLAMA_START_TIMEOUT", emb.ollama_start_timeout)

        idx = cfg.indexing
        idx.ttl_minutes = _env_int(env, "CTX_INDEX_TTL_MINUTES", idx.ttl_minutes)
        idx.max_changed_files = _env_int(env, "CTX_MAX_CHANGED_PER_RUN", idx.max_changed_files)
        idx.quick_file_limit = _env_int(env, "CTX_QUICK_FILE_LIMIT", idx.quick_file_limit)
        idx.lazy_indexing = _env_toggle(env, "CTX_LAZY_INDEXING", idx.lazy_indexing)
        idx.background_indexing = _env_toggle(
            env, "CTX_BACKGROUND_INDEXING", idx.background_indexing
        )
        ignore = env.get("CTX_IGNORE")
        if ignore:
            idx.exclude_patterns = [p.strip() for p in ignore.split(",") if p.strip()]

        st = cfg.storage
        st.context_dir = env.get("CTX_ROOT") or st.context_dir
        st.compression_enabled = _env_toggle(env, "CTX_STORAGE_COMPRESS", st.compression_enabled)
        st.max_disk_usage_mb = _env_int(env, "CTX_STORAGE_LIMIT_MB", st.max_disk_usage_mb)
        st.auto_cleanup = _env_toggle(env, "CTX_STORAGE_AUTOCLEAN", st.auto_cleanup)

        ln = cfg.learning
        ln.style_enabled = _env_toggle(env, "CTX_STYLE_LEARNING", ln.style_enabled)
        ln.architecture_enabled = _env_toggle(env, "CTX_ARCH_LEARNING", ln.architecture_enabled)
        ln.usage_enabled = _env_toggle(env, "CTX_BEHAVIOR_LEARNING", ln.usage_enabled)
        ln.style_sample_size = _env_int(env, "CTX_STYLE_SAMPLE", ln.style_sample_size)

        cfg.cache.max_size = _env_int(env, "CTX_CACHE_SIZE", cfg.cache.max_size)
        cfg.cache.ttl_minutes = _env_int(env, "CTX_CACHE_TTL_MINUTES", int(cfg.cache.ttl_minutes))

        cfg.search.ranking_mode = (env.get("CTX_RANKING") or cfg.search.ranking_mode).lower()
        cfg.search.blend_timeout = _env_int(env, "CTX_BLEND_TIMEOUT", int(cfg.search.blend_timeout))
        return cfg

    def context_dir(self, root: Path) -> Path:
        """Directory holding the index for a workspace root."""
        if not self.storage.context_dir:
            return Path(root) / CONFIG_DIR_NAME / "context"
        configured = Path(self.storage.context_dir).expanduser()
        if not configured.is_absolute():
            configured = Path(root) / configured
        return configured.resolve()

    def evidence_dir(self, root: Path) -> Path:
        """Directory holding evidence items for a workspace root."""
        return Path(root) / CONFIG_DIR_NAME / "evidence"


def _env_toggle(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    return default


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def resolve_workspace_root(
    root: str | Path | None = None, environ: Mapping[str, str] | None = None
) -> Path:
    """Resolve the workspace root.

    Priority: explicit argument, then WORKSPACE_ROOT / VSCODE_WORKSPACE / INIT_CWD,
    then the process working directory.

    Raises:
        ConfigurationError: If the resolved path is not an existing directory
    """
    env = os.environ if environ is None else environ
    candidate: str | Path | None = root
    if candidate is None:
        for name in WORKSPACE_ENV_VARS:
            if env.get(name):
                candidate = env[name]
                break
    if candidate is None:
        candidate = Path.cwd()

    path = Path(candidate).expanduser()
    if not path.is_dir():
        raise ConfigurationError(
            f"Workspace root {path} is not a directory. Pass an explicit root or set "
            f"one of {', '.join(WORKSPACE_ENV_VARS)} to an existing directory."
        )
    return path.resolve()
