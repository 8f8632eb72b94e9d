"""Unit tests for blended local/imported search."""

import threading

import pytest

from context_engine.core.models import Hit
from context_engine.evidence import EvidenceStore
from context_engine.search.blended import BlendedSearcher, imported_hit, interleave


def local_hits(*uris):
    return [Hit(uri=u, title=u, snippet="", score=1.0 - i * 0.1) for i, u in enumerate(uris)]


@pytest.fixture
def evidence(tmp_path):
    store = EvidenceStore(tmp_path / "evidence")
    store.add("web", {"content": "token refresh guide"}, title="Guide", uri="https://docs/guide", score=0.9)
    store.add("context7", {"content": "token api reference"}, title="Ref", uri="https://docs/ref", score=0.5)
    store.add("manual", {"content": "token notes"}, uri="notes")
    return store


class TestImportedHit:
    """Tests for evidence normalization."""

    def test_fallbacks(self, evidence):
        """Test that missing fields fall back to data, source and rank."""
        item_id = evidence.add("web", {"summary": "A summary", "path": "docs/a.md"})
        hit = imported_hit(evidence.get(item_id), rank=3)

        assert hit.uri == "docs/a.md"
        assert hit.title == "web"
        assert hit.snippet == "A summary"
        assert hit.score == pytest.approx(0.25)
        assert hit.meta["origin"] == "imported"
        assert hit.meta["evidence_id"] == item_id

    def test_data_score_used(self, evidence):
        """Test that a numeric score inside data is honored."""
        item_id = evidence.add("web", {"score": 0.7, "content": "x" * 1000})
        hit = imported_hit(evidence.get(item_id), rank=0, snippet_chars=50)
        assert hit.score == 0.7
        assert len(hit.snippet) == 50


class TestInterleave:
    """Tests for strict alternation."""

    def test_alternates_local_first(self):
        """Test one-for-one alternation with the remainder appended."""
        local = local_hits("a", "b", "c")
        imported = local_hits("x")
        assert [h.uri for h in interleave(local, imported, 10)] == ["a", "x", "b", "c"]

    def test_skips_repeated_uri(self):
        """Test that an imported hit with a local URI is dropped."""
        local = local_hits("a", "b")
        imported = local_hits("a", "y")
        assert [h.uri for h in interleave(local, imported, 10)] == ["a", "b", "y"]

    def test_respects_k(self):
        """Test that the output stops at k."""
        assert len(interleave(local_hits("a", "b", "c"), local_hits("x", "y"), 3)) == 3


class TestBlendedSearcher:
    """Tests for BlendedSearcher.search."""

    def test_modes(self, evidence):
        """Test local, imported and blend modes."""
        searcher = BlendedSearcher(lambda q, k: local_hits("src/a.ts", "src/b.ts"), evidence)

        local = searcher.search("token", k=5, mode="local")
        assert [h.uri for h in local] == ["src/a.ts", "src/b.ts"]
        assert all(h.meta["origin"] == "local" for h in local)

        imported = searcher.search("token", k=5, mode="imported")
        assert [h.uri for h in imported] == ["https://docs/guide", "https://docs/ref"]

        blended = searcher.search("token", k=5, mode="blend")
        assert [h.uri for h in blended] == ["src/a.ts", "https://docs/guide", "src/b.ts", "https://docs/ref"]

    def test_local_hits_not_mutated(self, evidence):
        """Test that tagging local hits leaves the caller's objects untouched."""
        cached = local_hits("src/a.ts")
        searcher = BlendedSearcher(lambda q, k: cached, evidence)

        blended = searcher.search("token", k=5, mode="blend")

        assert blended[0].meta["origin"] == "local"
        assert blended[0] is not cached[0]
        assert cached[0].meta == {}

    def test_unknown_mode_blends(self, evidence):
        """Test that an unknown mode falls back to blend."""
        searcher = BlendedSearcher(lambda q, k: local_hits("src/a.ts"), evidence)
        assert len(searcher.search("token", mode="weird")) == 3

    def test_local_asked_for_at_least_twelve(self, evidence):
        """Test the minimum local k."""
        asked = []
        searcher = BlendedSearcher(lambda q, k: asked.append(k) or [], evidence)
        searcher.search("token", k=3)
        assert asked == [12]

    def test_local_failure_contributes_nothing(self, evidence):
        """Test that a raising local side leaves the imported hits."""

        def broken(query, k):
            raise RuntimeError("index unavailable")

        searcher = BlendedSearcher(broken, evidence)
        assert [h.uri for h in searcher.search("token")] == ["https://docs/guide", "https://docs/ref"]

    def test_local_timeout(self, evidence):
        """Test that a hung local side is abandoned after the timeout."""
        release = threading.Event()

        def hung(query, k):
            release.wait(5)
            return local_hits("late.ts")

        searcher = BlendedSearcher(hung, evidence, timeout=0.1)
        try:
            hits = searcher.search("token")
        finally:
            release.set()

        assert "late.ts" not in [h.uri for h in hits]
        assert len(hits) == 2
