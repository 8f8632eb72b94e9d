"""Retrieval, reranking, caching and blended search."""
