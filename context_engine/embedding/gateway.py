"""Embedding gateway: content-aware provider chains with a deterministic fallback."""

import hashlib
import logging
import os
import re
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Protocol

import httpx
import numpy as np

from ..config import ConfigurationError, EmbeddingConfig
from .content import detect_content_type, detect_query_content_type, select_voyage_model
from .ollama import OllamaManager
from .providers import (
    OllamaProvider,
    OpenAIProvider,
    ProviderError,
    VoyageProvider,
    build_http_client,
    openai_key,
    voyage_key,
)

logger = logging.getLogger(__name__)

LEXICAL_PROVIDER = "lexical"
NETWORK_PROVIDERS = ("voyage", "openai", "ollama")

_TOKEN_SPLIT = re.compile(r"\W+")

_fallback_logged = False
_fallback_lock = threading.Lock()


class EmbeddingProvider(Protocol):
    name: str

    def embed(self, texts: list[str], model: str, input_type: str = "document") -> list[list[float]]: ...


@dataclass
class ProviderFailure:
    provider: str
    error: str


@dataclass
class EmbeddingResult:
    vectors: list[list[float]]
    provider: str
    model: str
    failures: list[ProviderFailure] = field(default_factory=list)

    @property
    def dims(self) -> int:
        return len(self.vectors[0]) if self.vectors else 0

    @property
    def degraded(self) -> bool:
        return self.provider == LEXICAL_PROVIDER


def hashed_embedding(text: str, dims: int) -> list[float]:
    """Signed bag-of-words hash vector, L2-normalized.

    Each lowercase ``\\W+`` token adds +1 or -1 to bucket
    ``((d[0] << 8) | d[1]) % dims`` where ``d`` is the token's SHA-1 digest
    and the sign comes from the low bit of ``d[2]``.
    """
    vec = np.zeros(dims, dtype=np.float64)
    for token in _TOKEN_SPLIT.split(text.lower()):
        if not token:
            continue
        digest = hashlib.sha1(token.encode("utf-8")).digest()
        index = ((digest[0] << 8) | digest[1]) % dims
        vec[index] += 1.0 if (digest[2] & 1) == 0 else -1.0
    norm = np.linalg.norm(vec)
    if norm > 0:
        vec /= norm
    return vec.tolist()


def _log_fallback_once(dims: int, failures: list[ProviderFailure]) -> None:
    global _fallback_logged
    with _fallback_lock:
        if _fallback_logged:
            return
        _fallback_logged = True
    reasons = "; ".join(f"{f.provider}: {f.error}" for f in failures) or "no network provider configured"
    logger.warning(
        f"Embedding providers unavailable ({reasons}). Using deterministic lexical "
        f"embeddings with {dims} dimensions; ranking relies on lexical scoring until "
        f"a vector provider is available."
    )


def reset_fallback_warning() -> None:
    """Re-arm the once-per-process degradation warning."""
    global _fallback_logged
    with _fallback_lock:
        _fallback_logged = False


class EmbeddingGateway:
    """Turns texts into vectors, trying providers in content-type order.

    Chains in ``auto`` mode:
        code, finance, legal: voyage -> openai -> ollama
        docs, general:        openai -> voyage -> ollama

    Providers whose credential is missing are left out of ``auto`` chains. A
    forced provider with a missing credential raises ConfigurationError. When
    every provider in the chain fails, texts are embedded with
    :func:`hashed_embedding`.
    """

    def __init__(
        self,
        config: EmbeddingConfig | None = None,
        client: httpx.Client | None = None,
        environ: Mapping[str, str] | None = None,
        providers: Mapping[str, EmbeddingProvider] | None = None,
        ollama_manager: OllamaManager | None = None,
    ):
        """Initialize gateway.

        Args:
            config: Embedding configuration
            client: Shared HTTP client (built from config when omitted)
            environ: Environment for credentials (defaults to os.environ)
            providers: Pre-built providers by name, replacing the HTTP ones
            ollama_manager: Used to auto-start Ollama when enabled
        """
        self.config = config or EmbeddingConfig()
        self.environ = os.environ if environ is None else environ
        self._client = client
        self._providers: dict[str, EmbeddingProvider] = dict(providers or {})
        self._injected = providers is not None
        self._ollama_manager = ollama_manager
        self._lock = threading.Lock()

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = build_http_client(self.config)
        return self._client

    @property
    def fallback_dims(self) -> int:
        return max(8, self.config.fallback_dimensions)

    @property
    def model_namespace(self) -> str:
        """Embedding-cache partition for this configuration."""
        if self.config.provider == LEXICAL_PROVIDER:
            return f"lexical-{self.fallback_dims}"
        return self.config.model

    def has_credential(self, name: str) -> bool:
        if self._injected:
            return name in self._providers
        if name == "voyage":
            return voyage_key(self.environ) is not None
        if name == "openai":
            return openai_key(self.environ) is not None
        return name == "ollama"

    def provider_chain(self, content_type: str) -> list[str]:
        mode = self.config.provider
        if mode == LEXICAL_PROVIDER:
            return []
        if mode != "auto":
            return [mode]

        if content_type in ("code", "finance", "legal"):
            order = ["voyage", "openai", "ollama"]
        else:
            order = ["openai", "voyage", "ollama"]
        return [name for name in order if self.has_credential(name)]

    def _provider(self, name: str) -> EmbeddingProvider:
        with self._lock:
            if name in self._providers:
                return self._providers[name]
            if self._injected:
                raise ConfigurationError(f"Embedding provider '{name}' is not configured")
            if name == "voyage":
                provider = VoyageProvider(
                    voyage_key(self.environ),
                    self.client,
                    dimensions=self.config.voyage_dimensions,
                    max_retries=self.config.max_retries,
                )
            elif name == "openai":
                provider = OpenAIProvider(openai_key(self.environ), self.client, self.config.openai_model)
            elif name == "ollama":
                ensure = None
                if self.config.ollama_auto_start:
                    if self._ollama_manager is None:
                        self._ollama_manager = OllamaManager(
                            self.config.ollama_base_url, self.config.ollama_start_timeout
                        )
                    ensure = self._ollama_manager.ensure_running
                provider = OllamaProvider(
                    self.client,
                    base_url=self.config.ollama_base_url,
                    model=self.config.model,
                    concurrency=self.config.ollama_concurrency,
                    ensure_running=ensure,
                )
            else:
                raise ConfigurationError(
                    f"Unknown embedding provider '{name}'. "
                    f"Use auto, lexical or one of {', '.join(NETWORK_PROVIDERS)} (CTX_EMBED_PROVIDER)."
                )
            self._providers[name] = provider
            return provider

    def _model_for(self, name: str, content_type: str) -> str:
        if name == "voyage":
            return select_voyage_model(content_type, self.environ)
        if name == "openai":
            return self.config.openai_model
        return self.config.model

    def embed(
        self,
        texts: list[str],
        content_type: str = "general",
        file_path: str | None = None,
        input_type: str = "document",
    ) -> EmbeddingResult:
        """Embed texts, reporting which provider answered and what failed on the way.

        Raises:
            ConfigurationError: If a forced provider is unknown or lacks its credential
        """
        if not texts:
            return EmbeddingResult([], LEXICAL_PROVIDER, "")
        if file_path and content_type == "general":
            content_type = detect_content_type(file_path, texts[0])

        chain = self.provider_chain(content_type)
        forced = self.config.provider not in ("auto", LEXICAL_PROVIDER)
        failures: list[ProviderFailure] = []
        logger.debug(f"Embedding {len(texts)} texts ({content_type}) via {' -> '.join(chain) or 'lexical'}")

        for name in chain:
            try:
                provider = self._provider(name)
            except ConfigurationError:
                if forced:
                    raise
                continue
            model = self._model_for(name, content_type)
            try:
                vectors = provider.embed(texts, model, input_type)
                self._validate(name, texts, vectors)
                return EmbeddingResult(vectors, name, model, failures)
            except (ProviderError, httpx.HTTPError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Embedding provider {name} failed ({e}), trying next provider")
                failures.append(ProviderFailure(name, str(e)))

        _log_fallback_once(self.fallback_dims, failures)
        vectors = [hashed_embedding(text, self.fallback_dims) for text in texts]
        return EmbeddingResult(vectors, LEXICAL_PROVIDER, f"lexical-{self.fallback_dims}", failures)

    @staticmethod
    def _validate(name: str, texts: list[str], vectors: list[list[float]]) -> None:
        if len(vectors) != len(texts):
            raise ProviderError(name, f"returned {len(vectors)} vectors for {len(texts)} texts")
        dims = {len(v) for v in vectors}
        if len(dims) != 1 or 0 in dims:
            raise ProviderError(name, f"inconsistent vector dimensions {sorted(dims)}")

    def embed_batch(
        self,
        texts: list[str],
        content_type: str = "general",
        file_path: str | None = None,
        input_type: str = "document",
    ) -> list[list[float]]:
        """Vectors only, in input order."""
        return self.embed(texts, content_type, file_path, input_type).vectors

    def embed_query(self, query: str) -> EmbeddingResult:
        return self.embed([query], detect_query_content_type(query), input_type="query")

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
