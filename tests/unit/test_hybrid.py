"""Unit tests for first-stage hybrid retrieval."""

import pytest

from context_engine.core.models import Chunk, EmbeddingRecord
from context_engine.search.hybrid import cosine, hybrid_query, lexical_rank, query_terms
from context_engine.storage.store import ContextStore, sha1


def add_chunk(store, file, text, vector=None, start=1):
    chunk = Chunk(
        id=Chunk.make_id(file, start, start + 1),
        file=file,
        start_line=start,
        end_line=start + 1,
        text=text,
        content_hash=sha1(text),
        title=file,
    )
    store.save_chunk(chunk)
    if vector is not None:
        store.save_embedding(EmbeddingRecord(chunk.id, vector, "m", len(vector), "test"))
    return chunk


@pytest.fixture
def store(tmp_path):
    return ContextStore(tmp_path / "context")


class TestScoring:
    """Tests for the scoring primitives."""

    def test_query_terms(self):
        """Test tokenization of queries."""
        assert query_terms("Refresh-token  flow!") == ["refresh", "token", "flow"]

    def test_lexical_rank_counts_substrings(self):
        """Test that every substring occurrence counts."""
        assert lexical_rank("token", "Token tokens TOKENIZER") == 3
        assert lexical_rank("auth token", "auth only") == 1
        assert lexical_rank("", "anything") == 0

    def test_cosine(self):
        """Test cosine edge cases."""
        assert cosine([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
        assert cosine([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
        assert cosine([1.0, 0.0], [1.0, 0.0, 0.0]) == 0.0
        assert cosine([0.0, 0.0], [1.0, 1.0]) == 0.0
        assert cosine(None, [1.0]) == 0.0


class TestHybridQuery:
    """Tests for hybrid_query."""

    def test_dense_and_lexical_blend(self, store):
        """Test that score is 0.8 dense plus 0.2 lexical."""
        add_chunk(store, "a.py", "token token", vector=[1.0, 0.0])
        add_chunk(store, "b.py", "nothing here", vector=[0.0, 1.0])

        results = hybrid_query(store, "token", [1.0, 0.0], top_k=5)

        assert [r.chunk.file for r in results] == ["a.py", "b.py"]
        assert results[0].score == pytest.approx(0.8 * 1.0 + 0.2 * 2)
        assert results[0].lexical == 2
        assert results[1].score == pytest.approx(0.0)

    def test_chunk_without_embedding_scored_lexically(self, store):
        """Test that chunks missing a vector still compete on terms."""
        add_chunk(store, "a.py", "parse parse parse")
        results = hybrid_query(store, "parse", [1.0, 0.0])
        assert results[0].dense == 0.0
        assert results[0].score == pytest.approx(0.6)

    def test_ties_are_deterministic(self, store):
        """Test that equal scores order by file then start line."""
        add_chunk(store, "b.py", "same", start=1)
        add_chunk(store, "a.py", "same", start=9)
        add_chunk(store, "a.py", "same", start=3)

        results = hybrid_query(store, "same", None, top_k=3)

        assert [(r.chunk.file, r.chunk.start_line) for r in results] == [("a.py", 3), ("a.py", 9), ("b.py", 1)]

    def test_top_k(self, store):
        """Test that only top_k candidates are kept."""
        for i in range(5):
            add_chunk(store, f"f{i}.py", "x" * i, start=1)
        assert len(hybrid_query(store, "x", None, top_k=2)) == 2
