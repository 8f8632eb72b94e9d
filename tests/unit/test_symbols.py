"""Unit tests for symbol extraction."""

import pytest

from context_engine.core.models import Symbol
from context_engine.parser.symbols import (
    CompositeSymbolExtractor,
    RegexSymbolExtractor,
    default_extractor,
    extract_symbols,
    symbols_in_range,
)


@pytest.fixture
def regex():
    return RegexSymbolExtractor()


class TestRegexSymbolExtractor:
    """Tests for the regex fallback."""

    def test_typescript(self, regex):
        """Test TypeScript functions, interfaces and exports."""
        text = (
            "export function add(a: number, b: number) {\n"
            "  return a + b;\n"
            "}\n"
            "interface Options {\n"
            "  verbose: boolean;\n"
            "}\n"
            "export const handler = async (req) => {};\n"
        )
        symbols = {s.name: s for s in regex.extract("src/math.ts", text)}

        assert symbols["add"].type == "function"
        assert symbols["add"].is_exported
        assert symbols["add"].line == 1
        assert symbols["Options"].type == "interface"
        assert not symbols["Options"].is_exported
        assert symbols["handler"].type == "const"
        assert symbols["handler"].line == 7

    def test_python_visibility(self, regex):
        """Test that underscore names are private and nested defs are not exported."""
        text = "class Service:\n    def run(self):\n        pass\n\ndef _helper():\n    pass\n"
        symbols = {s.name: s for s in regex.extract("svc.py", text)}

        assert symbols["Service"].is_exported
        assert symbols["run"].is_public
        assert not symbols["run"].is_exported
        assert not symbols["_helper"].is_public

    def test_go_capitalization(self, regex):
        """Test Go exports follow capitalization."""
        text = "func Serve() {}\nfunc helper() {}\ntype Store struct {}\n"
        found = regex.extract("main.go", text)
        symbols = {s.name: s for s in found}

        assert symbols["Serve"].is_exported
        assert not symbols["helper"].is_exported
        assert any(s.name == "Store" and s.type == "class" for s in found)

    def test_keywords_are_not_names(self, regex):
        """Test that control-flow keywords are never reported as functions."""
        text = "int main(void) {\n  if (x) {\n  }\n}\n"
        names = [s.name for s in regex.extract("main.c", text)]
        assert "main" in names
        assert "if" not in names

    def test_unknown_language_generic(self, regex):
        """Test the generic callable pattern for unknown extensions."""
        symbols = regex.extract("build.gradle", "def compile() {}\n")
        assert [s.name for s in symbols] == ["compile"]


class TestCompositeExtractor:
    """Tests for extractor chaining."""

    def test_falls_through_on_error(self):
        """Test that a raising extractor is skipped."""

        class Broken:
            def extract(self, rel_path, text):
                raise RuntimeError("grammar crashed")

        composite = CompositeSymbolExtractor([Broken(), RegexSymbolExtractor()])
        assert [s.name for s in composite.extract("a.py", "def go():\n    pass\n")] == ["go"]

    def test_default_extractor_finds_function(self):
        """Test the default chain on TypeScript."""
        names = [s.name for s in default_extractor().extract("src/math.ts", "export function add(a, b) { return a + b; }\n")]
        assert "add" in names

    def test_extract_symbols_relative(self, tmp_path):
        """Test that file paths are made relative to the root."""
        (tmp_path / "pkg").mkdir()
        (tmp_path / "pkg" / "mod.py").write_text("def hello():\n    return 1\n")

        symbols = extract_symbols(tmp_path / "pkg" / "mod.py", tmp_path)

        assert symbols[0].file == "pkg/mod.py"
        assert symbols[0].name == "hello"


class TestSymbolsInRange:
    """Tests for chunk symbol lookup."""

    def test_in_range(self):
        """Test that only symbols within the range are returned, once each."""
        symbols = [
            Symbol("a", "function", "x.py", 1),
            Symbol("b", "function", "x.py", 5),
            Symbol("b", "function", "x.py", 6),
            Symbol("c", "function", "x.py", 20),
        ]
        assert symbols_in_range(symbols, 1, 10) == ["a", "b"]
