"""Embedding providers and the fallback gateway."""

from .gateway import EmbeddingGateway, EmbeddingResult, hashed_embedding

__all__ = ["EmbeddingGateway", "EmbeddingResult", "hashed_embedding"]
