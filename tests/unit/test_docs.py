"""Unit tests for documentation metadata extraction."""

import hashlib

from context_engine.parser.docs import (
    detect_date,
    detect_status,
    extract_doc_record,
    extract_links,
    extract_tasks,
    parse_frontmatter,
)


class TestFrontmatter:
    """Tests for frontmatter-driven records."""

    def test_frontmatter_wins(self):
        """Test that frontmatter values take precedence over heuristics."""
        text = (
            "---\n"
            "title: Search Revamp\n"
            "type: rfc\n"
            "status: approved\n"
            "date: 2024-03-01\n"
            "tags: [search, ranking]\n"
            "---\n"
            "# Ignored heading\n\n"
            "Status: draft\n"
        )
        record = extract_doc_record("docs/search.md", text)

        assert record.title == "Search Revamp"
        assert record.type == "rfc"
        assert record.status == "approved"
        assert record.date == "2024-03-01"
        assert record.tags == ["search", "ranking"]
        assert record.id == hashlib.sha1(b"docs/search.md:Search Revamp").hexdigest()

    def test_parse_frontmatter_lowercases_keys(self):
        """Test that keys are lowercased and quotes stripped."""
        assert parse_frontmatter("---\nTitle: 'Hello'\n---\nbody") == {"title": "Hello"}
        assert parse_frontmatter("no fences here") == {}


class TestHeuristics:
    """Tests for body heuristics."""

    def test_heading_summary_and_type(self):
        """Test title from heading, summary from first paragraph, type from the file name."""
        text = (
            "# Q3 Roadmap\n\n"
            "This roadmap covers the indexing and search milestones for the quarter.\n\n"
            "Status: In Progress\n\n"
            "- [x] Ship quick scan\n"
            "- [ ] Ship blended search\n"
        )
        record = extract_doc_record("ROADMAP.md", text)

        assert record.title == "Q3 Roadmap"
        assert record.summary.startswith("This roadmap covers")
        assert record.type == "plan"
        assert record.status == "in-progress"
        assert [(t.text, t.done) for t in record.tasks] == [
            ("Ship quick scan", True),
            ("Ship blended search", False),
        ]

    def test_file_name_fallback(self):
        """Test that the file name is the title of last resort."""
        record = extract_doc_record("notes/misc.txt", "short")
        assert record.title == "misc.txt"
        assert record.type == "other"
        assert record.status == "unknown"

    def test_status_and_date(self):
        """Test status and date normalization."""
        assert detect_status("STATUS - done") == "done"
        assert detect_status("nothing here") == "unknown"
        assert detect_date("Updated 2024/7/15 by ops") == "2024-7-15"
        assert detect_date("no date") is None

    def test_tasks_with_star_bullets(self):
        """Test that star bullets are tasks too."""
        tasks = extract_tasks("* [X] done thing\n* not a task\n")
        assert len(tasks) == 1 and tasks[0].done


class TestLinks:
    """Tests for link extraction."""

    def test_code_issue_and_url(self):
        """Test that code paths, issues and URLs are all found."""
        text = "See `src/auth.ts` and lib/session.py, fixes #123. Docs at https://example.com/x."
        links = {(link.kind, link.target) for link in extract_links(text)}

        assert ("code", "src/auth.ts") in links
        assert ("code", "lib/session.py") in links
        assert ("issue", "#123") in links
        assert ("url", "https://example.com/x") in links

    def test_duplicates_collapsed(self):
        """Test that repeated references are reported once."""
        links = extract_links("`a.py` and `a.py`")
        assert [(link.kind, link.target) for link in links] == [("code", "a.py")]
