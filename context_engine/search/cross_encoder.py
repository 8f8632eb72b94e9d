"""Optional cross-encoder rerank through the Cohere rerank API."""

import logging
import os
from collections.abc import Mapping

import httpx

logger = logging.getLogger(__name__)

COHERE_RERANK_URL = "https://api.cohere.ai/v1/rerank"
COHERE_RERANK_MODEL = "rerank-english-v3.0"


class CrossEncoder:
    """Scores (query, document) pairs with a hosted cross-encoder.

    Disabled when ``COHERE_API_KEY`` is not set; :meth:`rerank` then returns
    None and callers keep their own ordering.
    """

    def __init__(
        self,
        client: httpx.Client | None = None,
        environ: Mapping[str, str] | None = None,
        model: str = COHERE_RERANK_MODEL,
        timeout: float = 20.0,
    ):
        env = os.environ if environ is None else environ
        self.api_key = env.get("COHERE_API_KEY") or None
        self.model = model
        self._client = client
        self._timeout = timeout

    @property
    def enabled(self) -> bool:
        return self.api_key is not None

    def rerank(self, query: str, documents: list[str], top_n: int | None = None) -> list[tuple[int, float]] | None:
        """Return ``(index, relevance_score)`` pairs best first, or None when unavailable."""
        if not self.enabled or not documents:
            return None
        payload = {
            "model": self.model,
            "query": query,
            "documents": documents,
            "top_n": top_n or len(documents),
        }
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        try:
            if self._client is not None:
                response = self._client.post(COHERE_RERANK_URL, json=payload, headers=headers)
            else:
                response = httpx.post(COHERE_RERANK_URL, json=payload, headers=headers, timeout=self._timeout)
            response.raise_for_status()
            results = response.json()["results"]
            ranked = [(int(r["index"]), float(r["relevance_score"])) for r in results]
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Cross-encoder rerank failed, keeping first-stage order: {e}")
            return None
        return [(i, score) for i, score in ranked if 0 <= i < len(documents)]
