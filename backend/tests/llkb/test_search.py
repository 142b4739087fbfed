"""
Unit tests for search, export and the status report.
"""

import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "app"))

from llkb.models import AppProfile, ApplicationInfo, ComponentSource, ComponentsFile, LessonsFile
from llkb.search import (
    ExportOptions,
    SearchQuery,
    calculate_text_relevance,
    export_lessons_to_csv,
    export_llkb,
    export_to_file,
    find_components,
    find_lessons_by_pattern,
    generate_report,
    get_components_for_journey,
    get_lessons_for_journey,
    search,
    search_lessons,
)


@pytest.fixture
def store(llkb_root, write_json, make_lesson, make_component):
    lessons = LessonsFile(lessons=[
        make_lesson("L001"),
        make_lesson(
            "L002",
            title="Close toast",
            pattern="click('[data-testid=toast-close]')",
            trigger="dismiss notification",
            category="ui-interaction",
            scope="app-specific",
            journey_ids=["JRN-002"],
        ),
        make_lesson("L003", archived=True),
    ])
    components = ComponentsFile(components=[
        make_component("COMP001"),
        make_component(
            "COMP002",
            name="openMenu",
            description="Open the main navigation menu",
            category="navigation",
            source=ComponentSource(extracted_from="JRN-002"),
        ),
    ])
    write_json(llkb_root / "lessons.json", lessons.to_json_dict())
    write_json(llkb_root / "components.json", components.to_json_dict())
    return llkb_root


class TestTextRelevance:
    """Test the text relevance measure."""

    def test_empty_query_matches_everything(self):
        """Test that empty or one-letter queries always match."""
        assert calculate_text_relevance("anything", "") == 1.0
        assert calculate_text_relevance("anything", "x") == 1.0

    def test_substring_and_word_share(self):
        """Test full substring hits and partial word overlap."""
        assert calculate_text_relevance("Wait for GRID rows", "grid rows") == 1.0
        assert calculate_text_relevance("grid row", "grid cell") == 0.5


class TestSearch:
    """Test combined search."""

    def test_text_search(self, store):
        """Test that only matching, non-archived items are returned."""
        assert [r.id for r in search(store, SearchQuery(text="grid"))] == ["L001"]

    def test_sorted_by_relevance(self, store):
        """Test that results from both kinds are ordered by relevance."""
        results = search(store, SearchQuery(text="toast form"))

        assert [(r.type, r.id) for r in results] == [("component", "COMP001"), ("lesson", "L002")]
        assert results[1].relevance == 0.5

    def test_category_filter_and_limit(self, store):
        """Test category filtering and result limits."""
        assert [r.id for r in search(store, SearchQuery(category="navigation"))] == ["COMP002"]
        assert len(search(store, SearchQuery(limit=2))) == 2

    def test_archived_on_request(self, store):
        """Test that archived lessons are searchable when asked for."""
        ids = [r.id for r in search(store, SearchQuery(text="grid", include_archived=True))]

        assert ids == ["L001", "L003"]

    def test_lesson_journey_filter(self, make_lesson):
        """Test the journey id filter on lessons."""
        lessons = [make_lesson("L001"), make_lesson("L002", journey_ids=["JRN-002"])]

        assert [r.id for r in search_lessons(lessons, SearchQuery(journey_id="JRN-002"))] == ["L002"]


class TestLookups:
    """Test simple lookups."""

    def test_by_pattern_and_name(self, store):
        """Test substring lookups on patterns and component text."""
        assert [l.id for l in find_lessons_by_pattern(store, "AG-ROW")] == ["L001"]
        assert [c.id for c in find_components(store, "menu")] == ["COMP002"]

    def test_by_journey(self, store):
        """Test journey lookups."""
        assert [l.id for l in get_lessons_for_journey(store, "JRN-002")] == ["L002"]
        assert [c.id for c in get_components_for_journey(store, "JRN-002")] == ["COMP002"]


class TestExport:
    """Test exports."""

    def test_json_export(self, store):
        """Test the default JSON export."""
        data = json.loads(export_llkb(store))

        assert [l["id"] for l in data["lessons"]] == ["L001", "L002"]
        assert len(data["components"]) == 2
        assert data["exported"].endswith("Z")

    def test_json_export_with_archived(self, store):
        """Test that archived lessons are exported on request."""
        data = json.loads(export_llkb(store, ExportOptions(include_archived=True)))

        assert len(data["lessons"]) == 3

    def test_category_filter(self, store):
        """Test that category filters apply to both kinds."""
        data = json.loads(export_llkb(store, ExportOptions(categories=["navigation"])))

        assert data["lessons"] == []
        assert [c["id"] for c in data["components"]] == ["COMP002"]

    def test_markdown_export(self, store):
        """Test category grouping and optional sections."""
        text = export_llkb(store, ExportOptions(format="markdown", include_metrics=True, include_source=True))

        assert text.startswith("# Lessons")
        assert "## Timing" in text
        assert "### L001: Wait for grid to load" in text
        assert "- Success Rate: 90.0%" in text
        assert "**Original Code:**" in text

    def test_csv_export(self, store):
        """Test that both sections are present with headers."""
        lines = export_llkb(store, ExportOptions(format="csv")).split("\n")

        assert lines[0] == "# Lessons"
        assert lines[1].startswith("ID,Title,Category")
        assert "# Components" in lines
        assert lines[2].endswith(",5,0.900,0.800")

    def test_csv_quotes_commas(self, make_lesson):
        """Test that values containing commas are quoted."""
        text = export_lessons_to_csv([make_lesson(title="Save, then close")])

        assert '"Save, then close"' in text

    def test_unknown_format(self, store):
        """Test that unsupported formats are rejected."""
        with pytest.raises(ValueError):
            export_llkb(store, ExportOptions(format="xml"))

    def test_export_to_file(self, store, tmp_path):
        """Test that parent directories are created."""
        path = export_to_file(store, tmp_path / "out" / "llkb.json")

        assert json.loads(path.read_text(encoding="utf-8"))["lessons"]


class TestReport:
    """Test the status report."""

    def test_overview_and_top_items(self, store):
        """Test the overview table and top lists."""
        report = generate_report(store)

        assert report.startswith("# LLKB Status Report")
        assert "| Active Lessons | 2 |" in report
        assert "| Archived Lessons | 1 |" in report
        assert "## Top Lessons (by Confidence)" in report
        assert "- **COMP001** - submitForm (4 uses)" in report
        assert "Application Profile" not in report

    def test_profile_section(self, store, write_json):
        """Test that the app profile is summarised when present."""
        profile = AppProfile(application=ApplicationInfo(framework="react", data_grid="ag-grid"))
        write_json(store / "app-profile.json", profile.to_json_dict())

        assert "- **Framework:** react" in generate_report(store)
