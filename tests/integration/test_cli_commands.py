"""Integration tests for the ctx CLI."""

import json
from unittest.mock import patch

import pytest
from click.testing import CliRunner
from conftest import MATH_TS, README_MD, write
from watchdog.observers.polling import PollingObserver

from context_engine.cli import main
from context_engine.engine import reset_engines

OFFLINE_ENV = {
    "CTX_EMBED_PROVIDER": "lexical",
    "CTX_BACKGROUND_INDEXING": "0",
    "COHERE_API_KEY": "",
}


@pytest.fixture
def project(tmp_path):
    write(tmp_path, "src/math.ts", MATH_TS)
    write(tmp_path, "README.md", README_MD)
    return tmp_path


@pytest.fixture
def run(project):
    runner = CliRunner(env=OFFLINE_ENV)
    reset_engines()

    def invoke(*args, **kwargs):
        return runner.invoke(main, ["--root", str(project), *args], **kwargs)

    yield invoke
    reset_engines()


class TestCliCommands:
    """Tests for the CLI surface."""

    def test_init_writes_config(self, project, run):
        """Test that init creates the config file once."""
        result = run("init")
        assert result.exit_code == 0
        assert (project / ".context-engine" / "config.json").exists()

        again = run("init")
        assert again.exit_code == 0
        assert "Already initialized" in again.output

    def test_index_reports_counts(self, run):
        """Test that index prints a summary."""
        result = run("index")

        assert result.exit_code == 0, result.output
        assert "Indexing complete" in result.output
        assert "Files: 2" in result.output

    def test_search_json(self, run):
        """Test machine-readable search output."""
        run("index")

        result = run("search", "add function", "--json", "-k", "3")

        assert result.exit_code == 0, result.output
        payload = json.loads(result.output)
        assert payload["query"] == "add function"
        assert payload["results"][0]["uri"] == "src/math.ts"

    def test_search_table(self, run):
        """Test the human-readable search output."""
        result = run("search", "subtract")
        assert result.exit_code == 0
        assert "math.ts" in result.output

    def test_quick_scan(self, run):
        """Test the index-free scan command."""
        result = run("quick", "subtract")
        assert result.exit_code == 0
        assert "math.ts" in result.output

    def test_stats(self, run):
        """Test that stats renders after indexing."""
        run("index")
        result = run("stats")
        assert result.exit_code == 0
        assert "Index Statistics" in result.output
        assert "lexical" in result.output

    def test_evidence_add_and_find(self, run):
        """Test recording and finding evidence."""
        added = run("evidence", "add", "web", '{"content": "hello"}', "--title", "Greeting")
        assert added.exit_code == 0
        assert "web_" in added.output

        found = run("evidence", "find", "--source", "web")
        assert found.exit_code == 0
        assert "Greeting" in found.output

        missing = run("evidence", "find", "--source", "context7")
        assert "No evidence found" in missing.output

    def test_evidence_add_rejects_bad_json(self, run):
        """Test that DATA must be JSON."""
        result = run("evidence", "add", "web", "{not json")
        assert result.exit_code == 1
        assert "not valid JSON" in result.output

    def test_reset(self, project, run):
        """Test that reset clears the index after confirmation."""
        run("index")
        result = run("reset", "--yes")

        assert result.exit_code == 0
        assert "Index cleared" in result.output
        assert not any((project / ".context-engine" / "context").glob("*.jsonl"))

    def test_bad_root_exits(self, tmp_path):
        """Test that a root that is not a directory is reported."""
        result = CliRunner(env=OFFLINE_ENV).invoke(main, ["--root", str(tmp_path / "missing"), "stats"])
        assert result.exit_code == 1
        assert "Error" in result.output


class TestNavigationCommands:
    """Tests for symbol, neighbors and watch."""

    def test_symbol_with_callers(self, project, run):
        """Test that a definition and its call sites are printed."""
        write(project, "src/app.ts", 'import { add } from "./math";\n\nexport const sum = add(1, 2);\n')

        result = run("symbol", "add", "--callers")

        assert result.exit_code == 0, result.output
        assert "src/math.ts:1" in result.output
        assert "Callers of add" in result.output
        assert "src/app.ts:3" in result.output

    def test_symbol_not_found(self, run):
        """Test that an unknown symbol exits non-zero."""
        result = run("symbol", "does_not_exist")

        assert result.exit_code == 1
        assert "Symbol not found" in result.output

    def test_neighbors(self, run):
        """Test that a file's symbols and import edges are printed."""
        result = run("neighbors", "src/math.ts")

        assert result.exit_code == 0, result.output
        assert "add" in result.output
        assert "subtract" in result.output
        assert "Imported by:" in result.output

    def test_watch_stops_on_interrupt(self, run):
        """Test that watch starts the watcher and shuts it down on Ctrl+C."""
        with (
            patch("context_engine.indexer.watcher.Observer", PollingObserver),
            patch("context_engine.cli.time") as clock,
        ):
            clock.sleep.side_effect = KeyboardInterrupt
            result = run("watch", "--debounce", "0.1")

        assert result.exit_code == 0, result.output
        assert "Watching" in result.output
        assert "Watcher stopped" in result.output
