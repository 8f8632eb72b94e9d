"""Unit tests for the workspace symbol index."""

import pytest

from context_engine.parser.symbol_index import CallSite, SymbolIndex
from context_engine.parser.symbols import RegexSymbolExtractor

FILES = {
    "src/math.ts": "export function add(a: number, b: number): number {\n  return a + b;\n}\n",
    "src/legacy.js": "function add(a, b) { return a + b; }\n",
    "src/app.ts": (
        'import { add } from "./math";\n'
        "\n"
        "export function main() {\n"
        "  return add(1, 2) + add(3, 4);\n"
        "}\n"
    ),
    "src/cli.ts": 'import { main } from "./app";\n\nmain();\n',
    "README.md": "Call add(1, 2) to sum.\n",
}


@pytest.fixture
def index(tmp_path):
    for rel, text in FILES.items():
        path = tmp_path / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text)
    return SymbolIndex.build(tmp_path, list(FILES), RegexSymbolExtractor())


class TestFindSymbol:
    """Tests for definition lookup."""

    def test_prefers_exported_definition(self, index):
        """Test that an exported declaration wins over a local one with the same name."""
        symbol = index.find_symbol("add")

        assert symbol.file == "src/math.ts"
        assert symbol.line == 1
        assert symbol.is_exported
        assert {s.file for s in index.by_name["add"]} == {"src/math.ts", "src/legacy.js"}

    def test_missing_symbol(self, index):
        """Test that an unknown name yields None."""
        assert index.find_symbol("subtract") is None

    def test_non_code_files_skipped(self, index):
        """Test that documentation files are not part of the index."""
        assert "README.md" not in index.files
        assert index.file_symbols("README.md") == []

    def test_file_symbols(self, index):
        """Test that symbols are grouped by declaring file."""
        assert [s.name for s in index.file_symbols("src/app.ts")] == ["main"]


class TestFindCallers:
    """Tests for call site search."""

    def test_call_sites_exclude_definitions(self, index):
        """Test that declarations are not reported as calls."""
        callers = index.find_callers("add")

        assert callers == [CallSite("src/app.ts", 4, "return add(1, 2) + add(3, 4);")]

    def test_statement_call(self, index):
        """Test that a bare call statement is found."""
        assert [(c.file, c.line) for c in index.find_callers("main")] == [("src/cli.ts", 3)]

    def test_prefix_names_do_not_match(self, index):
        """Test that a longer identifier ending in the name is not a call."""
        assert index.find_callers("ain") == []

    def test_limit(self, index):
        """Test that results stop at the limit."""
        assert len(index.find_callers("add", limit=1)) == 1

    def test_to_dict(self, index):
        """Test that call sites serialize to plain dicts."""
        assert index.find_callers("main")[0].to_dict() == {"file": "src/cli.ts", "line": 3, "context": "main();"}


class TestNeighborhood:
    """Tests for import neighborhoods and dependency walks."""

    def test_neighborhood(self, index):
        """Test that a file reports its symbols, imports and importers."""
        hood = index.neighborhood("src/app.ts")

        assert [s.name for s in hood.symbols] == ["main"]
        assert hood.imports == ["src/math.ts"]
        assert hood.imported_by == ["src/cli.ts"]
        assert hood.to_dict()["imported_by"] == ["src/cli.ts"]

    def test_leaf_neighborhood(self, index):
        """Test that a file with no edges has empty neighbor lists."""
        hood = index.neighborhood("src/legacy.js")

        assert hood.imports == []
        assert hood.imported_by == []

    def test_transitive_dependents(self, index):
        """Test that dependents follow importers transitively."""
        assert index.dependents("src/math.ts") == ["src/app.ts", "src/cli.ts"]

    def test_depth_limit(self, index):
        """Test that the walk stops at max_depth."""
        assert index.dependents("src/math.ts", max_depth=1) == ["src/app.ts"]

    def test_dependencies(self, index):
        """Test that dependencies follow imports transitively."""
        assert index.dependencies("src/cli.ts") == ["src/app.ts", "src/math.ts"]
        assert index.dependencies("src/math.ts") == []
