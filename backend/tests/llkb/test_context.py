"""
Unit tests for journey context ranking and prompt formatting.
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "app"))

from llkb.context import (
    ContextOptions,
    JourneyContext,
    calculate_component_relevance,
    calculate_lesson_relevance,
    extract_keywords,
    format_context_for_prompt,
    get_relevant_context,
    get_relevant_scopes,
    rank_for_journey,
)
from llkb.loaders import LLKBPatterns
from llkb.models import (
    AppProfile,
    ApplicationInfo,
    ComponentsFile,
    LessonMetrics,
    LessonsFile,
)


@pytest.fixture
def journey():
    return JourneyContext(
        id="JRN-001",
        title="Load the grid data",
        scope="grid",
        routes=["/reports/grid"],
        categories=["timing"],
    )


@pytest.fixture
def profile():
    return AppProfile(application=ApplicationInfo(framework="react", data_grid="ag-grid", ui_library="mui"))


class TestKeywords:
    """Test keyword derivation."""

    def test_title_scope_and_routes(self, journey):
        """Test that short words are dropped and duplicates collapse."""
        assert extract_keywords(journey) == ["load", "grid", "data", "reports"]


class TestLessonRelevance:
    """Test lesson scoring."""

    def test_additive_score(self, make_lesson, journey):
        """Test each contributing signal."""
        score, reasons = calculate_lesson_relevance(make_lesson(), journey)

        assert score == pytest.approx(0.89)
        assert reasons == ["same journey", "category: timing", "trigger match: load, grid", "high success rate"]

    def test_framework_scope_and_recency(self, make_lesson, journey):
        """Test framework scope matching and the recent-success bonus."""
        now = datetime(2026, 6, 1, tzinfo=timezone.utc)
        lesson = make_lesson(
            scope="framework:react",
            journey_ids=[],
            metrics=LessonMetrics(
                confidence=0.5,
                success_rate=0.5,
                last_success=(now - timedelta(days=2)).isoformat(),
            ),
        )
        profile = AppProfile(application=ApplicationInfo(framework="react"))

        score, reasons = calculate_lesson_relevance(lesson, journey, profile, now)

        assert "framework match: react" in reasons
        assert "recently successful" in reasons
        assert score == pytest.approx(0.15 + 0.25 + 0.15 + 0.15 + 0.1)

    def test_score_capped(self, make_lesson, journey):
        """Test that relevance never exceeds 1.0."""
        lesson = make_lesson(
            scope="universal",
            tags=["grid", "data", "load"],
            metrics=LessonMetrics(confidence=1.0, success_rate=1.0),
        )

        score, _ = calculate_lesson_relevance(lesson, journey)

        assert score == 1.0


class TestComponentRelevance:
    """Test component scoring."""

    def test_usage_and_reliability(self, make_component, journey):
        """Test usage volume and reliability bonuses."""
        score, reasons = calculate_component_relevance(make_component(), journey)

        assert score == pytest.approx(0.485)
        assert reasons == ["commonly used", "high reliability"]

    def test_data_grid_scope(self, make_component, journey, profile):
        """Test that components scoped to the app's data grid match."""
        score, reasons = calculate_component_relevance(
            make_component(scope="framework:ag-grid"), journey, profile,
        )

        assert "data grid match: ag-grid" in reasons
        assert score == pytest.approx(0.735)


class TestRankForJourney:
    """Test ranking and supporting context."""

    def _lessons(self, make_lesson):
        return [
            make_lesson("L001"),
            make_lesson("L002", scope="app-specific", journey_ids=["JRN-999"], category="selector",
                        trigger="modal", metrics=LessonMetrics(confidence=0.1, success_rate=0.2)),
            make_lesson("L003", archived=True),
            make_lesson("L004", journey_ids=[], category="selector", trigger="x",
                        metrics=LessonMetrics(confidence=0.95, success_rate=0.5)),
        ]

    def test_filters_and_confidence_ordering(self, make_lesson, make_component, journey):
        """Test that weak and archived entries drop out and confidence leads."""
        context = rank_for_journey(journey, self._lessons(make_lesson), [make_component()])

        assert [s.lesson.id for s in context.lessons] == ["L004", "L001"]
        assert [s.component.id for s in context.components] == ["COMP001"]
        assert context.summary.total_lessons == 2
        assert context.summary.avg_lesson_confidence == pytest.approx(0.875)

    def test_relevance_ordering(self, make_lesson, journey):
        """Test ordering by relevance when confidence priority is off."""
        context = rank_for_journey(
            journey, self._lessons(make_lesson), [],
            options=ContextOptions(prioritize_by_confidence=False, max_lessons=1),
        )

        assert [s.lesson.id for s in context.lessons] == ["L001"]

    def test_quirks_selected_by_keywords(self, make_lesson, journey):
        """Test that quirk lessons touching the journey are surfaced."""
        lessons = [
            make_lesson("Q001", category="quirk", journey_ids=[], trigger="grid flickers on sort",
                        pattern="await page.waitForTimeout(100)"),
            make_lesson("Q002", category="quirk", journey_ids=[], trigger="modal closes", pattern="noop"),
        ]

        context = rank_for_journey(journey, lessons, [])

        assert [q.id for q in context.quirks] == ["Q001"]
        assert context.quirks[0].quirk == "grid flickers on sort"
        assert context.quirks[0].impact == "Confidence: 80%"

    def test_pattern_banks(self, journey):
        """Test selector and timing bank filtering."""
        patterns = LLKBPatterns(
            selectors={"selectorPatterns": [
                {"id": "S1", "applicableTo": ["ag-grid"], "confidence": 0.5},
                {"id": "S2", "applicableTo": ["vue"], "confidence": 0.5},
                {"id": "S3", "applicableTo": [], "confidence": 0.95},
            ]},
            timing={"asyncPatterns": [
                {"id": "T1", "context": "grid data refresh"},
                {"id": "T2", "context": "modal animation"},
            ]},
        )

        context = rank_for_journey(journey, [], [], patterns=patterns)

        assert [p["id"] for p in context.selector_patterns] == ["S1", "S3"]
        assert [p["id"] for p in context.timing_patterns] == ["T1"]

    def test_caller_journey_unchanged(self, journey):
        """Test that derived keywords are not written back to the caller's journey."""
        patterns = LLKBPatterns(timing={"asyncPatterns": [{"id": "T1", "context": "grid data refresh"}]})

        context = rank_for_journey(journey, [], [], patterns=patterns)

        assert [p["id"] for p in context.timing_patterns] == ["T1"]
        assert journey.keywords == []


class TestGetRelevantContext:
    """Test loading from the store."""

    def test_loads_documents(self, llkb_root, write_json, make_lesson, make_component, journey):
        """Test that stored lessons and components are ranked."""
        write_json(llkb_root / "lessons.json", LessonsFile(lessons=[make_lesson()]).to_json_dict())
        write_json(llkb_root / "components.json", ComponentsFile(components=[make_component()]).to_json_dict())

        context = get_relevant_context(journey, llkb_root)

        assert context.lessons[0].lesson.id == "L001"
        assert context.components[0].component.id == "COMP001"

    def test_disabled_store_is_empty(self, llkb_root, write_json, make_lesson, journey):
        """Test that a disabled store contributes nothing."""
        (llkb_root / "config.yml").write_text("enabled: false\n", encoding="utf-8")
        write_json(llkb_root / "lessons.json", LessonsFile(lessons=[make_lesson()]).to_json_dict())

        context = get_relevant_context(journey, llkb_root)

        assert context.lessons == []
        assert context.summary.total_lessons == 0


class TestFormatting:
    """Test prompt rendering."""

    def test_components_and_lessons(self, make_lesson, make_component, journey):
        """Test the component table, import example and lesson list."""
        context = rank_for_journey(journey, [make_lesson()], [make_component()])

        text = format_context_for_prompt(context, journey)

        assert text.startswith("## LLKB Context (Auto-Injected for JRN-001)")
        assert "| submitForm | src/modules/forms/submit.ts | 95% |" in text
        assert "import { submitForm } from './src/modules/forms/submit';" in text
        assert "1. **[HIGH] L001: Wait for grid to load**" in text
        assert text.endswith("---")

    def test_empty_context(self, journey):
        """Test that an empty context renders only the frame."""
        text = format_context_for_prompt(rank_for_journey(journey, [], []), journey)

        assert "Available Components" not in text
        assert "Relevant Lessons" not in text


class TestScopes:
    """Test applicable scope listing."""

    def test_profile_scopes(self, profile):
        """Test that framework, grid and UI library scopes are added."""
        assert get_relevant_scopes(profile) == [
            "universal", "app-specific", "framework:react", "framework:ag-grid", "framework:mui",
        ]

    def test_without_profile(self):
        """Test the base scopes."""
        assert get_relevant_scopes() == ["universal", "app-specific"]
