"""HTTP embedding providers: Voyage, OpenAI and a local Ollama server."""

import logging
import os
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor

import httpx
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..config import ConfigurationError, EmbeddingConfig

logger = logging.getLogger(__name__)

VOYAGE_URL = "https://api.voyageai.com/v1/embeddings"
OPENAI_URL = "https://api.openai.com/v1/embeddings"


class ProviderError(RuntimeError):
    """An embedding provider call failed."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class RateLimitError(ProviderError):
    """The provider answered 429."""


def voyage_key(environ: Mapping[str, str] | None = None) -> str | None:
    env = os.environ if environ is None else environ
    return env.get("VOYAGE_API_KEY") or env.get("ANTHROPIC_API_KEY") or None


def openai_key(environ: Mapping[str, str] | None = None) -> str | None:
    env = os.environ if environ is None else environ
    return env.get("OPENAI_API_KEY") or None


def _check_response(provider: str, response: httpx.Response) -> dict:
    if response.status_code == 429:
        raise RateLimitError(provider, "rate limited (429)")
    if response.status_code >= 400:
        raise ProviderError(provider, f"HTTP {response.status_code}: {response.text[:200]}")
    try:
        return response.json()
    except ValueError as e:
        raise ProviderError(provider, f"invalid JSON response: {e}") from e


class VoyageProvider:
    """Voyage AI embeddings with specialized models per content type.

    429 responses and transport errors are retried with exponential backoff
    up to ``max_retries`` times before the error escapes to the gateway.
    """

    name = "voyage"

    def __init__(
        self,
        api_key: str | None,
        client: httpx.Client,
        dimensions: int = 1024,
        max_retries: int = 3,
        wait=None,
    ):
        if not api_key:
            raise ConfigurationError(
                "Voyage embeddings need VOYAGE_API_KEY (or ANTHROPIC_API_KEY) in the environment."
            )
        self.api_key = api_key
        self.client = client
        self.dimensions = dimensions
        self.max_retries = max_retries
        self.wait = wait or wait_exponential(multiplier=1, min=1, max=8)

    def _post(self, payload: dict) -> dict:
        response = self.client.post(
            VOYAGE_URL,
            json=payload,
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        return _check_response(self.name, response)

    def embed(self, texts: list[str], model: str, input_type: str = "document") -> list[list[float]]:
        payload = {
            "model": model,
            "input": texts,
            "input_type": input_type,
            "output_dimension": self.dimensions,
            "output_dtype": "float",
        }
        retrying = Retrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=self.wait,
            retry=retry_if_exception_type((RateLimitError, httpx.TransportError)),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            data = retrying(self._post, payload)
        except httpx.HTTPError as e:
            raise ProviderError(self.name, f"network error after retries: {e}") from e

        rows = data.get("data")
        if not isinstance(rows, list):
            raise ProviderError(self.name, f"unexpected response: {str(data)[:200]}")
        return [row["embedding"] for row in rows]


class OpenAIProvider:
    name = "openai"

    def __init__(self, api_key: str | None, client: httpx.Client, model: str = "text-embedding-3-small"):
        if not api_key:
            raise ConfigurationError("OpenAI embeddings need OPENAI_API_KEY in the environment.")
        self.api_key = api_key
        self.client = client
        self.model = model

    def embed(self, texts: list[str], model: str | None = None, input_type: str = "document") -> list[list[float]]:
        try:
            response = self.client.post(
                OPENAI_URL,
                json={"model": self.model, "input": texts},
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        except httpx.HTTPError as e:
            raise ProviderError(self.name, str(e)) from e
        data = _check_response(self.name, response)
        rows = data.get("data")
        if not isinstance(rows, list):
            raise ProviderError(self.name, f"unexpected response: {str(data)[:200]}")
        return [row["embedding"] for row in sorted(rows, key=lambda r: r.get("index", 0))]


class OllamaProvider:
    """Local Ollama server, one request per text with bounded concurrency.

    Results come back in input order regardless of completion order.
    """

    name = "ollama"

    def __init__(
        self,
        client: httpx.Client,
        base_url: str = "http://127.0.0.1:11434",
        model: str = "nomic-embed-text",
        concurrency: int = 10,
        ensure_running: Callable[[], None] | None = None,
    ):
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.concurrency = max(1, concurrency)
        self.ensure_running = ensure_running

    def _embed_one(self, text: str) -> list[float]:
        try:
            response = self.client.post(
                f"{self.base_url}/api/embeddings",
                json={"model": self.model, "prompt": text},
            )
        except httpx.HTTPError as e:
            raise ProviderError(self.name, str(e)) from e
        data = _check_response(self.name, response)
        embedding = data.get("embedding")
        if not isinstance(embedding, list) or not embedding:
            raise ProviderError(self.name, "response missing 'embedding'")
        return embedding

    def embed(self, texts: list[str], model: str | None = None, input_type: str = "document") -> list[list[float]]:
        if self.ensure_running is not None:
            try:
                self.ensure_running()
            except RuntimeError as e:
                raise ProviderError(self.name, str(e)) from e
        if len(texts) == 1:
            return [self._embed_one(texts[0])]
        with ThreadPoolExecutor(max_workers=min(self.concurrency, len(texts))) as executor:
            return list(executor.map(self._embed_one, texts))


def build_http_client(config: EmbeddingConfig, transport: httpx.BaseTransport | None = None) -> httpx.Client:
    """Shared client for every provider (``transport`` lets tests fake the network)."""
    return httpx.Client(
        timeout=config.request_timeout,
        transport=transport,
        headers={"Content-Type": "application/json"},
    )
