"""Unit tests for data models, extension tables and the workspace registry."""

from context_engine.core.languages import is_code, is_doc, is_indexable, language_for, normalize_extension
from context_engine.core.models import Chunk, ChangeSet, DocRecord, DocTask, IndexResult, IndexStats
from context_engine.core.registry import WorkspaceRegistry, canonical_root


class TestModels:
    """Tests for model helpers."""

    def test_chunk_id_format(self):
        """Test that chunk ids combine path and line range."""
        assert Chunk.make_id("src/a.ts", 3, 9) == "src/a.ts#3-9"

    def test_index_result_changed(self):
        """Test that changed covers added and modified files."""
        result = IndexResult(added=["a.py"], modified=["b.py"], errors=["x"])
        assert result.changed == ["a.py", "b.py"]
        data = result.to_dict()
        assert data["changed"] == 2
        assert data["error_count"] == 1

    def test_failure(self):
        """Test that failure results carry the error."""
        result = IndexResult.failure("boom")
        assert not result.ok
        assert result.error == "boom"

    def test_change_set_empty(self):
        """Test ChangeSet.is_empty."""
        assert ChangeSet().is_empty
        assert not ChangeSet(untracked=["x.py"]).is_empty

    def test_stats_ignores_unknown_keys(self):
        """Test that stats written by a newer version still load."""
        stats = IndexStats.from_dict({"chunks": 4, "future_field": True})
        assert stats.chunks == 4

    def test_doc_record_from_dict(self):
        """Test that nested tasks and links are rebuilt."""
        record = DocRecord(id="1", uri="PLAN.md", title="Plan", tasks=[DocTask("ship", True)])
        restored = DocRecord.from_dict(record.to_dict())
        assert restored.tasks[0].done is True
        assert restored.type == "other"


class TestLanguages:
    """Tests for extension tables."""

    def test_aliases(self):
        """Test that aliases fold into canonical extensions."""
        assert normalize_extension("App.TSX") == ".ts"
        assert normalize_extension("x.hpp") == ".cpp"
        assert normalize_extension("Makefile") == ""

    def test_classification(self):
        """Test code/doc/indexable classification."""
        assert is_code("a.py")
        assert is_doc("README.md")
        assert is_indexable("config.yaml")
        assert not is_indexable("image.png")

    def test_language_labels(self):
        """Test the language label stored in chunk metadata."""
        assert language_for("a.tsx") == "typescript"
        assert language_for("notes.md") == "markdown"
        assert language_for("notes.txt") == "text"
        assert language_for("data.json") == "json"


class TestWorkspaceRegistry:
    """Tests for WorkspaceRegistry."""

    def test_same_handle_for_equivalent_paths(self, tmp_path):
        """Test that equivalent spellings of a root share one handle."""
        created = []
        registry = WorkspaceRegistry(lambda root: created.append(root) or object())

        first = registry.get(tmp_path)
        second = registry.get(f"{tmp_path}/.")

        assert first is second
        assert len(created) == 1
        assert tmp_path in registry

    def test_discard_and_clear(self, tmp_path):
        """Test that discarded roots are rebuilt on next access."""
        registry = WorkspaceRegistry(lambda root: object())
        first = registry.get(tmp_path)
        registry.discard(tmp_path)
        assert registry.get(tmp_path) is not first
        registry.clear()
        assert len(registry) == 0

    def test_factory_used_only_on_creation(self, tmp_path):
        """Test that a per-call factory builds a missing handle and is ignored afterwards."""
        registry = WorkspaceRegistry(lambda root: "default")

        first = registry.get(tmp_path, lambda root: ("custom", root))
        second = registry.get(tmp_path, lambda root: "other")

        assert first == ("custom", tmp_path.resolve())
        assert second is first

    def test_canonical_root(self, tmp_path):
        """Test that the key is the resolved path."""
        assert canonical_root(tmp_path / "a" / "..") == str(tmp_path.resolve())
