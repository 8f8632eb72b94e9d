"""URL ingestion: fetch pages, extract the article, chunk, embed and persist."""

import logging
import os
from typing import Any

import httpx
import trafilatura

from .core.models import Chunk, EmbeddingRecord
from .embedding.gateway import EmbeddingGateway
from .evidence import EvidenceStore
from .memory.store import utcnow_iso
from .storage.store import ContextStore, sha1

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0 Safari/537.36"
)
MAX_CHARS_PER_CHUNK = 1200


def split_words(text: str, max_chars: int = MAX_CHARS_PER_CHUNK) -> list[tuple[int, int, str]]:
    """Greedy word packing into ``(first word, end word, text)`` pieces of about ``max_chars``."""
    pieces: list[tuple[int, int, str]] = []
    buf: list[str] = []
    length = 0
    start = 0
    for word in text.split():
        buf.append(word)
        length += len(word) + (1 if len(buf) > 1 else 0)
        if length >= max_chars:
            pieces.append((start, start + len(buf), " ".join(buf)))
            start += len(buf)
            buf, length = [], 0
    if buf:
        pieces.append((start, start + len(buf), " ".join(buf)))
    return pieces


def extract_article(html: str, url: str) -> tuple[str, str]:
    """Return ``(title, text)``; text is empty when nothing readable was found."""
    text = trafilatura.extract(html, url=url, include_comments=False, include_tables=True) or ""
    metadata = trafilatura.extract_metadata(html, default_url=url)
    title = (metadata.title if metadata is not None else None) or ""
    return title.strip(), text.strip()


class WebIngestor:
    """Adds web pages to a workspace index as ``source="web"`` chunks."""

    def __init__(
        self,
        store: ContextStore,
        gateway: EmbeddingGateway,
        evidence: EvidenceStore | None = None,
        client: httpx.Client | None = None,
        max_chars: int | None = None,
    ):
        self.store = store
        self.gateway = gateway
        self.evidence = evidence
        self._client = client
        self.max_chars = max_chars or int(os.environ.get("CTX_MAX_CHARS_PER_CHUNK", MAX_CHARS_PER_CHUNK))
        self.user_agent = os.environ.get("CTX_WEB_USER_AGENT", DEFAULT_USER_AGENT)

    def fetch_html(self, url: str) -> str:
        headers = {"User-Agent": self.user_agent}
        if self._client is not None:
            response = self._client.get(url, headers=headers, follow_redirects=True)
        else:
            response = httpx.get(url, headers=headers, follow_redirects=True, timeout=30.0)
        response.raise_for_status()
        return response.text

    def ingest_url(self, url: str, tags: list[str] | None = None) -> int:
        """Ingest one page, replacing chunks from an earlier ingest of the same URL.

        Returns:
            Number of chunks written (0 when no article text was found)
        """
        html = self.fetch_html(url)
        title, text = extract_article(html, url)
        if not text:
            logger.info(f"No article text extracted from {url}")
            return 0

        id_base = sha1(f"{url}:{title}")
        pieces = split_words(text, self.max_chars)
        chunks = [
            Chunk(
                id=sha1(f"{id_base}:{i}"),
                file=url,
                start_line=start,
                end_line=end,
                text=piece,
                content_hash=sha1(piece),
                source="web",
                title=title or url,
                meta={"tags": list(tags or []), "url": url},
            )
            for i, (start, end, piece) in enumerate(pieces)
        ]
        result = self.gateway.embed([c.text for c in chunks], content_type="docs")

        self.store.delete_chunks_for_file(url)
        self.store.save_chunks(chunks)
        self.store.save_embeddings(
            [
                EmbeddingRecord(c.id, vector, result.model, len(vector), result.provider)
                for c, vector in zip(chunks, result.vectors)
            ]
        )
        if self.evidence is not None:
            self.evidence.add(
                "web",
                {"url": url, "title": title, "chunks": len(chunks), "summary": text[:620]},
                meta={"provider": result.provider},
                title=title or url,
                snippet=text[:620],
                uri=url,
                tags=list(tags or []),
            )
        logger.info(f"Ingested {url}: {len(chunks)} chunks")
        return len(chunks)

    def ingest(self, urls: list[str], tags: list[str] | None = None) -> dict[str, Any]:
        """Ingest every URL; per-URL failures are collected, not raised."""
        ingested = 0
        total_chunks = 0
        errors: list[str] = []
        for url in urls:
            try:
                count = self.ingest_url(url, tags)
            except (httpx.HTTPError, OSError, ValueError) as e:
                logger.error(f"Failed to ingest {url}: {e}")
                errors.append(f"{url}: {e}")
                continue
            if count:
                ingested += 1
                total_chunks += count

        if total_chunks:
            stats = self.store.get_stats()
            if stats is not None:
                stats.chunks = self.store.count_chunks()
                stats.embeddings = self.store.count_embeddings()
                stats.updated_at = utcnow_iso()
                self.store.save_stats(stats)
        return {"ok": not errors or ingested > 0, "ingested": ingested, "chunks": total_chunks, "errors": errors}
