"""Unit tests for ContextStore."""

import json

import pytest

from context_engine.core.models import Chunk, DocRecord, EmbeddingRecord, FileMapEntry, IndexStats
from context_engine.storage.store import ContextStore, sha1


def make_chunk(file: str, start: int = 1, end: int = 3, text: str = "def f():\n    return 1") -> Chunk:
    return Chunk(
        id=Chunk.make_id(file, start, end),
        file=file,
        start_line=start,
        end_line=end,
        text=text,
        content_hash=sha1(text),
        title=file,
    )


@pytest.fixture
def store(tmp_path):
    """Create a store with compression enabled."""
    return ContextStore(tmp_path / "context", compression_enabled=True, cache_namespace="nomic-embed-text")


class TestChunks:
    """Tests for chunk persistence."""

    def test_compressed_round_trip(self, store):
        """Test that compressed chunks are stored encoded and read back as text."""
        chunk = make_chunk("a.py")
        store.save_chunks([chunk])

        raw = json.loads(store.chunks_path.read_text().splitlines()[0])
        assert raw["compressed"] is True
        assert raw["encoding"] == "gzip"
        assert raw["text"] != chunk.text
        assert raw["original_bytes"] == len(chunk.text.encode())

        assert store.load_chunks()[0].text == chunk.text

    def test_uncompressed(self, tmp_path):
        """Test that compression can be turned off."""
        store = ContextStore(tmp_path / "ctx", compression_enabled=False)
        store.save_chunk(make_chunk("a.py"))
        raw = json.loads(store.chunks_path.read_text().splitlines()[0])
        assert "compressed" not in raw
        assert raw["text"].startswith("def f")

    def test_delete_removes_embeddings(self, store):
        """Test that deleting a file's chunks also deletes their embeddings."""
        a, b = make_chunk("a.py"), make_chunk("b.py")
        store.save_chunks([a, b])
        store.save_embeddings(
            [
                EmbeddingRecord(a.id, [1.0, 0.0], "m", 2, "lexical"),
                EmbeddingRecord(b.id, [0.0, 1.0], "m", 2, "lexical"),
            ]
        )

        removed = store.delete_chunks_for_file("a.py")

        assert removed == 1
        assert store.chunk_files() == {"b.py"}
        assert set(store.load_embeddings()) == {b.id}
        assert store.count_chunks() == 1
        assert store.count_embeddings() == 1

    def test_delete_unknown_file(self, store):
        """Test that deleting a file without chunks is a no-op."""
        store.save_chunk(make_chunk("a.py"))
        assert store.delete_chunks_for_files(["zzz.py"]) == 0
        assert store.count_chunks() == 1

    def test_corrupt_line_skipped(self, store):
        """Test that a torn line does not hide the rest of the file."""
        store.save_chunk(make_chunk("a.py"))
        with open(store.chunks_path, "a") as f:
            f.write("{not json\n")
        store.save_chunk(make_chunk("b.py"))

        assert {c.file for c in store.iter_chunks()} == {"a.py", "b.py"}

    def test_last_embedding_wins(self, store):
        """Test that a rewritten embedding replaces the earlier one."""
        store.save_embedding(EmbeddingRecord("x", [1.0], "m", 1, "p"))
        store.save_embedding(EmbeddingRecord("x", [2.0], "m", 1, "p"))
        assert store.load_embeddings()["x"].vector == [2.0]


class TestEmbeddingCache:
    """Tests for the content-hash embedding cache."""

    def test_put_and_get(self, store):
        """Test cache round trip and namespace file name."""
        store.cache_put("h1", [0.5, 0.5], "nomic-embed-text", "ollama")

        cached = store.cache_get("h1")
        assert cached.vector == [0.5, 0.5]
        assert cached.provider == "ollama"
        assert store.embed_cache_path.name == "nomic-embed-text.jsonl"

    def test_existing_keys_not_rewritten(self, store):
        """Test that a hash already cached is not appended again."""
        store.cache_put_many([("h1", [1.0], "m", "p"), ("h1", [2.0], "m", "p")])
        store.cache_put("h1", [3.0], "m", "p")

        assert len(store.embed_cache_path.read_text().splitlines()) == 1
        assert store.cache_get("h1").vector == [1.0]

    def test_cache_survives_reopen(self, store, tmp_path):
        """Test that a new store instance reads the persisted cache."""
        store.cache_put("h1", [1.0], "m", "p")
        reopened = ContextStore(tmp_path / "context", cache_namespace="nomic-embed-text")
        assert reopened.cache_get("h1") is not None

    def test_other_namespace_is_not_served(self, store, tmp_path):
        """Test that entries written to another partition never shadow this one."""
        store.cache_put_many([("h1", [0.1] * 8, "lexical-8", "lexical")], namespace="lexical-8")

        assert store.cache_get("h1") is None
        assert (store.embed_cache_dir / "lexical-8.jsonl").exists()
        assert not store.embed_cache_path.exists()

        lexical = ContextStore(tmp_path / "context", cache_namespace="lexical-8")
        assert lexical.cache_get("h1").provider == "lexical"


class TestDocsAndBookkeeping:
    """Tests for docs, file map and stats."""

    def test_save_docs_replaces_by_uri(self, store):
        """Test that saving a doc replaces the earlier record for the same file."""
        store.save_docs([DocRecord(id="1", uri="PLAN.md", title="Old")])
        store.save_docs([DocRecord(id="2", uri="PLAN.md", title="New")])

        docs = store.load_docs()
        assert [d.title for d in docs] == ["New"]

        store.delete_docs_for_files(["PLAN.md"])
        assert store.load_docs() == []

    def test_file_map_round_trip(self, store):
        """Test that the file map is keyed by path."""
        entry = FileMapEntry("src/a.ts", 123.5, 40, "abc", "sha", ["src/a.ts#1-3"])
        store.save_file_map({"src/a.ts": entry})
        assert store.load_file_map() == {"src/a.ts": entry}

    def test_stats_missing(self, store):
        """Test that stats are None before the first run."""
        assert store.get_stats() is None
        store.save_stats(IndexStats(chunks=2, revision_head="abc"))
        assert store.get_stats().revision_head == "abc"


class TestHousekeeping:
    """Tests for storage budget and clearing."""

    def test_budget_prunes_embed_cache(self, store):
        """Test that exceeding the budget prunes only the embedding cache."""
        store.save_chunk(make_chunk("a.py"))
        store.cache_put("h", [0.1] * 10, "m", "p")
        with open(store.embed_cache_path, "a") as f:
            f.write("x" * (2 * 1024 * 1024))

        result = store.enforce_storage_budget(1)

        assert result["pruned"] is True
        assert result["after_mb"] < result["before_mb"]
        assert store.chunks_path.exists()
        assert store.cache_get("h") is None

    def test_budget_without_cleanup(self, store):
        """Test that auto_cleanup=False only reports."""
        store.embed_cache_dir.mkdir(parents=True, exist_ok=True)
        (store.embed_cache_dir / "big.jsonl").write_text("x" * (2 * 1024 * 1024))

        result = store.enforce_storage_budget(1, auto_cleanup=False)

        assert result["pruned"] is False
        assert (store.embed_cache_dir / "big.jsonl").exists()

    def test_zero_budget_disables_check(self, store):
        """Test that a non-positive limit never prunes."""
        store.cache_put("h", [1.0], "m", "p")
        assert store.enforce_storage_budget(0)["pruned"] is False
        assert store.cache_get("h") is not None

    def test_clear(self, store):
        """Test that clear removes every index file but keeps the directory."""
        store.save_chunk(make_chunk("a.py"))
        store.save_stats(IndexStats(chunks=1))
        store.clear()

        assert store.context_dir.exists()
        assert store.count_chunks() == 0
        assert store.get_stats() is None
