"""Unit tests for line-oriented chunking."""

from context_engine.parser.chunker import (
    BraceChunker,
    ChunkThresholds,
    chunk_document,
    chunk_file,
    chunk_windows,
    is_declaration,
)


def spans_as_ranges(spans):
    return [(s.start, s.end) for s in spans]


class TestBraceChunker:
    """Tests for brace-delimited languages."""

    def test_small_file_is_one_chunk(self):
        """Test that a short file produces one chunk."""
        text = "export function add(a: number, b: number) {\n  return a + b;\n}\n"
        spans = chunk_file("src/math.ts", text)
        assert len(spans) == 1
        assert spans[0].start == 1
        assert "return a + b" in spans[0].text

    def test_hard_limit_cuts_before_block(self):
        """Test that the ceiling cuts at the block start, keeping the block whole."""
        lines = [f"// note {i}" for i in range(15)]
        lines.append("function big() {")
        lines.extend(f"  step{i}();" for i in range(208))
        lines.append("}")

        spans = chunk_file("big.ts", "\n".join(lines))

        assert spans_as_ranges(spans) == [(1, 15), (16, 225)]
        assert spans[1].text.startswith("function big() {")

    def test_long_function_below_ceiling_stays_whole(self):
        """Test that a function past the soft limit but under the ceiling is one chunk."""
        lines = ["function big() {"]
        lines.extend(f"  step{i}();" for i in range(178))
        lines.append("}")

        spans = chunk_file("big.ts", "\n".join(lines))

        assert spans_as_ranges(spans) == [(1, 180)]

    def test_declaration_starts_new_chunk(self):
        """Test that a top-level declaration after enough lines opens a new chunk."""
        chunker = BraceChunker(".ts", ChunkThresholds(soft_limit=100, hard_limit=200, declaration_min=3))
        lines = [
            "function a() {",
            "  one();",
            "  two();",
            "}",
            "function b() {",
            "  three();",
            "}",
        ]
        spans = chunker.chunk(lines)
        assert spans_as_ranges(spans) == [(1, 4), (5, 7)]

    def test_braces_in_strings_ignored(self):
        """Test that braces inside string literals do not change depth."""
        chunker = BraceChunker(".js")
        assert chunker.depth_delta('const s = "{{{";') == 0
        assert chunker.depth_delta("if (x) { // }") == 1


class TestIndentChunker:
    """Tests for indentation-significant languages."""

    def test_decorator_stays_with_function(self):
        """Test that a decorator and the function it decorates share a chunk."""
        lines = ["def a():"] + ["    x = 1"] * 11 + ["", "@decorator", "def b():", "    return 2"]
        spans = chunk_file("mod.py", "\n".join(lines))

        assert len(spans) == 2
        assert spans[1].start == 14
        assert spans[1].text.startswith("@decorator\ndef b():")


class TestDocumentsAndWindows:
    """Tests for documentation and fallback windowing."""

    def test_paragraphs(self):
        """Test that documentation splits on blank lines."""
        text = "# Title\n\nFirst paragraph\ncontinues here.\n\nSecond paragraph."
        spans = chunk_document(text)
        assert spans_as_ranges(spans) == [(1, 1), (3, 4), (6, 6)]

    def test_long_line_windowed(self):
        """Test that a line longer than the window is split into pieces."""
        spans = chunk_windows("a" * 120, max_chars=50)
        assert [len(s.text) for s in spans] == [50, 50, 20]
        assert all(s.start == s.end == 1 for s in spans)

    def test_unknown_extension_uses_windows(self):
        """Test that config files are windowed."""
        text = "\n".join(f'"key{i}": {i},' for i in range(200))
        spans = chunk_file("data.json", text)
        assert len(spans) > 1
        assert all(len(s.text) <= 1200 for s in spans)
        assert spans[0].start == 1

    def test_crlf_normalized(self):
        """Test that CRLF line endings do not leak into chunk text."""
        spans = chunk_file("a.md", "Line one\r\nLine two\r\n")
        assert "\r" not in spans[0].text

    def test_empty_file(self):
        """Test that whitespace-only files produce no chunks."""
        assert chunk_file("a.py", "\n\n   \n") == []
        assert chunk_file("a.md", "") == []


class TestDeclarations:
    """Tests for declaration detection."""

    def test_patterns(self):
        """Test declaration patterns across languages."""
        assert is_declaration(".ts", "export const handler = async (req) => {")
        assert is_declaration(".go", "func (s *Server) Start() error {")
        assert is_declaration(".rs", "pub fn parse(input: &str) -> Result<()> {")
        assert not is_declaration(".ts", "const limit = 10;")
