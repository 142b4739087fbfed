"""
Unit tests for store loaders and analytics aggregation.
"""

import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "app"))

from llkb.analytics import (
    calculate_component_stats,
    calculate_lesson_stats,
    calculate_needs_review,
    calculate_overview,
    calculate_top_performers,
    get_analytics_summary,
    update_analytics,
)
from llkb.errors import DocumentValidationError
from llkb.loaders import (
    ComponentFilter,
    LessonFilter,
    get_pattern_file_names,
    load_components,
    load_document,
    load_lessons,
    load_llkb_data,
    load_patterns,
    validate_document,
)
from llkb.models import (
    ComponentMetrics,
    ComponentSource,
    ComponentsFile,
    LessonMetrics,
    LessonsFile,
)


@pytest.fixture
def lessons(make_lesson):
    return LessonsFile(lessons=[
        make_lesson("L001", tags=["grid"]),
        make_lesson("L002", category="selector", scope="universal",
                    metrics=LessonMetrics(occurrences=2, success_rate=0.5, confidence=0.3)),
        make_lesson("L003", archived=True),
    ])


@pytest.fixture
def components(make_component):
    old = (datetime.now(timezone.utc) - timedelta(days=60)).isoformat()
    return ComponentsFile(components=[
        make_component("COMP001"),
        make_component("COMP002", name="openMenu", category="navigation",
                       metrics=ComponentMetrics(total_uses=1, success_rate=0.5),
                       source=ComponentSource(extracted_at=old)),
        make_component("COMP003", archived=True),
    ])


@pytest.fixture
def store(llkb_root, write_json, lessons, components):
    write_json(llkb_root / "lessons.json", lessons.to_json_dict())
    write_json(llkb_root / "components.json", components.to_json_dict())
    return llkb_root


class TestLoadDocument:
    """Test validated document loading."""

    def test_missing_document(self, tmp_path):
        """Test that an absent document is None."""
        assert load_document(tmp_path / "lessons.json", LessonsFile) is None

    def test_invalid_document_is_none(self, tmp_path, write_json):
        """Test that a schema violation is logged and treated as absent."""
        path = write_json(tmp_path / "lessons.json", {"lessons": [{"title": "no id"}]})

        assert load_document(path, LessonsFile) is None

    def test_validate_document_raises(self):
        """Test that strict validation raises DocumentValidationError."""
        with pytest.raises(DocumentValidationError) as exc:
            validate_document({"lessons": "nope"}, LessonsFile, "lessons.json")

        assert exc.value.path == "lessons.json"

    def test_missing_fields_backfilled(self, tmp_path, write_json):
        """Test that optional fields get defaults on load."""
        path = write_json(tmp_path / "lessons.json", {"version": "1.0.0", "lessons": [{"id": "L001"}]})

        document = load_document(path, LessonsFile)

        assert document.lessons[0].metrics.success_rate == 0.5
        assert document.lessons[0].validation.human_reviewed is False

    def test_unsupported_version_not_trusted(self, llkb_root, write_json, lessons):
        """Test that a document older than the supported minimum loads as nothing."""
        data = lessons.to_json_dict()
        data["version"] = "0.0.1"
        path = write_json(llkb_root / "lessons.json", data)
        before = path.read_text(encoding="utf-8")

        assert load_document(path, LessonsFile) is None
        assert load_lessons(llkb_root) == []
        assert path.read_text(encoding="utf-8") == before

    def test_old_version_migrated_on_load(self, tmp_path, write_json):
        """Test that a supported 0.x document is migrated on disk before use."""
        path = write_json(tmp_path / "lessons.json", {
            "version": "0.5.0",
            "lessons": [{"id": "L001", "created": "2026-01-01T00:00:00Z", "confidence": 0.7}],
        })

        document = load_document(path, LessonsFile)

        assert document.version == "1.0.0"
        assert document.lessons[0].metrics.confidence == 0.7
        assert document.lessons[0].metrics.first_seen == "2026-01-01T00:00:00Z"
        assert json.loads(path.read_text(encoding="utf-8"))["version"] == "1.0.0"


class TestLoadFiltered:
    """Test lesson and component filters."""

    def test_archived_excluded_by_default(self, store):
        """Test that archived lessons are hidden unless requested."""
        assert [l.id for l in load_lessons(store)] == ["L001", "L002"]
        assert len(load_lessons(store, LessonFilter(include_archived=True))) == 3

    def test_lesson_filters(self, store):
        """Test category, scope, confidence and tag filters."""
        assert [l.id for l in load_lessons(store, LessonFilter(category="selector"))] == ["L002"]
        assert [l.id for l in load_lessons(store, LessonFilter(scope=["universal", "app-specific"]))] == ["L002"]
        assert [l.id for l in load_lessons(store, LessonFilter(min_confidence=0.5))] == ["L001"]
        assert [l.id for l in load_lessons(store, LessonFilter(tags=["grid"]))] == ["L001"]

    def test_component_filters(self, store):
        """Test that component min_confidence compares the success rate."""
        assert [c.id for c in load_components(store, ComponentFilter(min_confidence=0.9))] == ["COMP001"]
        assert [c.id for c in load_components(store, ComponentFilter(category="navigation"))] == ["COMP002"]

    def test_empty_store(self, llkb_root):
        """Test that a store without documents loads as empty."""
        data = load_llkb_data(llkb_root)

        assert data.lessons.lessons == []
        assert data.components.components == []
        assert data.app_profile is None
        assert data.config.enabled


class TestPatternBanks:
    """Test pattern bank loading."""

    def test_loads_known_banks(self, llkb_root, write_json):
        """Test that known bank files are attached by name."""
        write_json(llkb_root / "patterns" / "selectors.json", {"version": "1.0.0", "selectorPatterns": []})
        write_json(llkb_root / "patterns" / "custom.json", {})

        patterns = load_patterns(llkb_root)

        assert patterns.selectors == {"version": "1.0.0", "selectorPatterns": []}
        assert patterns.timing is None
        assert get_pattern_file_names(llkb_root) == ["custom", "selectors"]


class TestAggregates:
    """Test analytics aggregates."""

    def test_overview(self, lessons, components):
        """Test active/archived counts."""
        overview = calculate_overview(lessons, components)

        assert overview.total_lessons == 3
        assert overview.active_lessons == 2
        assert overview.active_components == 2
        assert overview.archived_components == 1

    def test_lesson_stats(self, lessons):
        """Test per-category counts and averages over active lessons."""
        stats = calculate_lesson_stats(lessons)

        assert stats.by_category["timing"] == 1
        assert stats.by_category["selector"] == 1
        assert stats.avg_confidence == 0.55
        assert stats.avg_success_rate == 0.7

    def test_component_stats(self, components):
        """Test reuse totals over active components."""
        stats = calculate_component_stats(components)

        assert stats.total_reuses == 5
        assert stats.avg_reuses_per_component == 2.5
        assert stats.by_scope["app-specific"] == 2

    def test_top_performers(self, lessons, components):
        """Test ranking by success rate x occurrences and by uses."""
        top = calculate_top_performers(lessons, components)

        assert [t.id for t in top.lessons] == ["L001", "L002"]
        assert top.lessons[0].score == 4.5
        assert top.components[0].id == "COMP001"

    def test_needs_review(self, lessons, components):
        """Test low confidence and stale low-usage detection."""
        review = calculate_needs_review(lessons, components)

        assert review.low_confidence_lessons == ["L002"]
        assert review.low_usage_components == ["COMP002"]


class TestUpdateAnalytics:
    """Test analytics persistence."""

    def test_writes_analytics(self, store):
        """Test that analytics.json is recomputed from the documents."""
        assert update_analytics(store)

        data = json.loads((store / "analytics.json").read_text(encoding="utf-8"))
        assert data["overview"]["totalLessons"] == 3
        assert data["componentStats"]["totalReuses"] == 5

    def test_impact_section_preserved(self, store, write_json):
        """Test that externally owned impact metrics survive a recompute."""
        write_json(store / "analytics.json", {"version": "1.0.0", "impact": {"verifyIterationsSaved": 12}})

        update_analytics(store)

        data = json.loads((store / "analytics.json").read_text(encoding="utf-8"))
        assert data["impact"]["verifyIterationsSaved"] == 12

    def test_missing_documents(self, llkb_root):
        """Test that analytics need both documents."""
        assert update_analytics(llkb_root) is False

    def test_summary(self, store):
        """Test the human-readable summary."""
        assert get_analytics_summary(store) == "Analytics not available"

        update_analytics(store)
        summary = get_analytics_summary(store)

        assert "Lessons: 2 active, 0 archived" in summary
        assert "Total Reuses: 5" in summary
