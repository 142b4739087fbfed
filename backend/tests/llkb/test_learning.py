"""
Unit tests for the learning loop.

Outcome reports update lesson/component metrics under the document lock,
append to history and refresh analytics.
"""

import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "app"))

from llkb.history import read_today_history
from llkb.learning import (
    ComponentUsedInput,
    LearningKind,
    LearningResult,
    LessonAppliedInput,
    PatternLearnedInput,
    calculate_new_success_rate,
    find_matching_lesson,
    format_learning_result,
    record_component_used,
    record_learning,
    record_lesson_applied,
    record_pattern_learned,
)
from llkb.models import ComponentsFile, LessonMetrics, LessonsFile


@pytest.fixture
def store(llkb_root, write_json, make_lesson, make_component):
    """A store with two lessons and one component."""
    lessons = LessonsFile(lessons=[
        make_lesson("L001"),
        make_lesson(
            "L002",
            title="Close toast",
            pattern="await page.click('[data-testid=toast-close]')",
            trigger="dismiss notification toast",
            category="ui-interaction",
        ),
    ])
    components = ComponentsFile(components=[make_component("COMP001")])
    write_json(llkb_root / "lessons.json", lessons.to_json_dict())
    write_json(llkb_root / "components.json", components.to_json_dict())
    return llkb_root


def read_lesson(root: Path, lesson_id: str) -> dict:
    data = json.loads((root / "lessons.json").read_text(encoding="utf-8"))
    return next(l for l in data["lessons"] if l["id"] == lesson_id)


class TestSuccessRate:
    """Test the running success rate."""

    def test_success_and_failure(self):
        """Test that one outcome shifts the running mean."""
        assert calculate_new_success_rate(0.9, 5, True) == 0.92
        assert calculate_new_success_rate(0.9, 5, False) == 0.75

    def test_first_outcome(self):
        """Test that the first outcome sets the rate outright."""
        assert calculate_new_success_rate(0.5, 0, True) == 1.0
        assert calculate_new_success_rate(0.5, 0, False) == 0.0


class TestFindMatchingLesson:
    """Test the fuzzy fallback match."""

    def test_selector_in_pattern_first(self, make_lesson):
        """Test that a selector found in a pattern wins."""
        lessons = [make_lesson("L001"), make_lesson("L002", pattern="click('[data-testid=save]')")]

        assert find_matching_lesson(lessons, "data-testid=save", "anything").id == "L002"

    def test_step_in_trigger(self, make_lesson):
        """Test the case-insensitive trigger fallback."""
        lessons = [make_lesson("L001", trigger="Wait for AG-Grid rows")]

        assert find_matching_lesson(lessons, "", "ag-grid rows").id == "L001"

    def test_archived_and_empty_never_match(self, make_lesson):
        """Test that archived lessons and empty evidence are ignored."""
        lessons = [make_lesson("L001", archived=True)]

        assert find_matching_lesson(lessons, ".ag-row", "") is None
        assert find_matching_lesson([make_lesson("L002")], "", "   ") is None


class TestRecordLessonApplied:
    """Test lesson outcome recording."""

    def test_success_updates_metrics(self, store):
        """Test that a success bumps occurrences, rate and lastSuccess."""
        result = record_lesson_applied(LessonAppliedInput(
            journey_id="JRN-002", lesson_id="L001", success=True, llkb_root=str(store),
        ))

        assert result.success
        assert result.entity_id == "L001"
        assert result.metrics["occurrences"] == 6
        assert result.metrics["success_rate"] == 0.92

        lesson = read_lesson(store, "L001")
        assert lesson["metrics"]["occurrences"] == 6
        assert lesson["metrics"]["lastSuccess"]
        assert lesson["metrics"]["confidenceHistory"][-1]["value"] == result.metrics["confidence"]
        assert "JRN-002" in lesson["journeyIds"]

    def test_failure_leaves_last_success(self, store):
        """Test that a failure lowers the rate without touching lastSuccess."""
        result = record_lesson_applied(LessonAppliedInput(
            journey_id="JRN-001", lesson_id="L001", success=False, llkb_root=str(store),
        ))

        assert result.success
        assert result.metrics["success_rate"] == 0.75
        assert read_lesson(store, "L001")["metrics"]["lastSuccess"] is None

    def test_saturating_occurrences(self, llkb_root, write_json, make_lesson):
        """Test that the tenth success of a perfect lesson raises confidence to the ceiling."""
        metrics = LessonMetrics(occurrences=9, success_rate=1.0, confidence=0.8, first_seen="2026-01-01T00:00:00.000Z")
        write_json(llkb_root / "lessons.json", LessonsFile(lessons=[make_lesson(metrics=metrics)]).to_json_dict())

        result = record_lesson_applied(LessonAppliedInput(
            journey_id="JRN-001", lesson_id="L001", success=True, llkb_root=str(llkb_root),
        ))

        assert result.success
        assert result.metrics["occurrences"] == 10
        assert result.metrics["success_rate"] == 1.0
        assert result.metrics["confidence"] == 1.0
        assert read_lesson(llkb_root, "L001")["metrics"]["confidence"] == 1.0

    def test_unknown_lesson_is_failure(self, store):
        """Test that an unknown id fails and creates nothing."""
        before = (store / "lessons.json").read_text(encoding="utf-8")

        result = record_lesson_applied(LessonAppliedInput(
            journey_id="JRN-001", lesson_id="L999", llkb_root=str(store),
        ))

        assert not result.success
        assert "L999" in result.error
        assert (store / "lessons.json").read_text(encoding="utf-8") == before
        assert read_today_history(store) == []

    def test_missing_document_is_failure(self, llkb_root):
        """Test that a store without lessons.json fails cleanly."""
        result = record_lesson_applied(LessonAppliedInput(
            journey_id="JRN-001", lesson_id="L001", llkb_root=str(llkb_root),
        ))

        assert not result.success

    def test_history_and_analytics_written(self, store):
        """Test that success appends history and refreshes analytics."""
        record_lesson_applied(LessonAppliedInput(journey_id="JRN-001", lesson_id="L002", llkb_root=str(store)))

        events = read_today_history(store)
        assert events[-1]["event"] == "lesson_applied"
        assert events[-1]["lessonId"] == "L002"
        analytics = json.loads((store / "analytics.json").read_text(encoding="utf-8"))
        assert analytics["overview"]["activeLessons"] == 2


class TestRecordPatternLearned:
    """Test fuzzy pattern outcome recording."""

    def test_matches_by_selector(self, store):
        """Test that the selector evidence locates the lesson."""
        result = record_pattern_learned(PatternLearnedInput(
            journey_id="JRN-001",
            selector_value="toast-close",
            step_text="",
            llkb_root=str(store),
        ))

        assert result.success
        assert result.entity_id == "L002"
        assert read_today_history(store)[-1]["matchedBy"] == "fuzzy"

    def test_no_match_is_explicit_failure(self, store):
        """Test that an unmatched pattern report fails."""
        result = record_pattern_learned(PatternLearnedInput(
            journey_id="JRN-001",
            selector_value="nothing-like-this",
            step_text="nor this",
            llkb_root=str(store),
        ))

        assert not result.success
        assert "not found" in result.error


class TestRecordComponentUsed:
    """Test component usage recording."""

    def test_usage_counted(self, store):
        """Test that uses and success rate are updated."""
        result = record_component_used(ComponentUsedInput(
            journey_id="JRN-001", component_id="COMP001", success=False, llkb_root=str(store),
        ))

        assert result.success
        assert result.metrics == {"total_uses": 5, "success_rate": 0.76}
        data = json.loads((store / "components.json").read_text(encoding="utf-8"))
        assert data["components"][0]["metrics"]["lastUsed"]
        assert read_today_history(store)[-1]["event"] == "component_used"

    def test_archived_component_not_found(self, llkb_root, write_json, make_component):
        """Test that archived components cannot receive outcomes."""
        write_json(
            llkb_root / "components.json",
            ComponentsFile(components=[make_component("COMP001", archived=True)]).to_json_dict(),
        )

        result = record_component_used(ComponentUsedInput(
            journey_id="JRN-001", component_id="COMP001", llkb_root=str(llkb_root),
        ))

        assert not result.success


class TestRecordLearning:
    """Test the dispatcher."""

    def test_unknown_kind(self, store):
        """Test that an unknown kind is rejected."""
        result = record_learning("telepathy", "JRN-001", True, llkb_root=store)

        assert not result.success
        assert "Unknown learning type" in result.error

    def test_component_requires_id(self, store):
        """Test that component reports need an id."""
        assert not record_learning(LearningKind.COMPONENT, "JRN-001", True, llkb_root=store).success

    def test_pattern_with_id_is_lesson_report(self, store):
        """Test that a pattern report carrying an id updates that lesson."""
        result = record_learning("pattern", "JRN-001", True, entity_id="L001", llkb_root=store)

        assert result.success
        assert result.entity_id == "L001"

    def test_component_dispatch(self, store):
        """Test that component reports reach the component document."""
        result = record_learning("component", "JRN-001", True, entity_id="COMP001", llkb_root=store)

        assert result.success
        assert result.metrics["total_uses"] == 5


class TestFormatLearningResult:
    """Test result formatting."""

    def test_success_lists_metrics(self):
        """Test that recorded metrics are listed with labels."""
        text = format_learning_result(LearningResult(
            success=True, entity_id="L001", metrics={"confidence": 0.8, "occurrences": 3},
        ))

        assert "Entity: L001" in text
        assert "Confidence: 0.8" in text
        assert "Occurrences: 3" in text

    def test_failure_shows_error(self):
        """Test that failures carry their error."""
        text = format_learning_result(LearningResult(success=False, error="Lesson not found: L9"))

        assert text.startswith("Learning recording failed")
        assert "Lesson not found: L9" in text


class TestDocumentVersions:
    """Test that outcomes are only recorded against supported documents."""

    def test_unsupported_lessons_version(self, llkb_root, write_json, make_lesson):
        """Test that a pre-0.1.0 lessons document is refused and left as is."""
        data = LessonsFile(lessons=[make_lesson()]).to_json_dict()
        data["version"] = "0.0.1"
        path = write_json(llkb_root / "lessons.json", data)
        before = path.read_text(encoding="utf-8")

        result = record_lesson_applied(LessonAppliedInput(
            journey_id="JRN-001", lesson_id="L001", llkb_root=str(llkb_root),
        ))

        assert not result.success
        assert "0.0.1 is not supported" in result.error
        assert path.read_text(encoding="utf-8") == before
        assert read_today_history(llkb_root) == []

    def test_unsupported_components_version(self, llkb_root, write_json):
        """Test that a pre-0.1.0 components document is refused."""
        write_json(llkb_root / "components.json", {"version": "0.0.1", "components": [{"id": "COMP001"}]})

        result = record_component_used(ComponentUsedInput(
            journey_id="JRN-001", component_id="COMP001", llkb_root=str(llkb_root),
        ))

        assert not result.success
        assert "not supported" in result.error

    def test_old_lessons_migrated_on_write(self, llkb_root, write_json):
        """Test that a 0.x lessons document is upgraded before the outcome is applied."""
        write_json(llkb_root / "lessons.json", {
            "version": "0.5.0",
            "lessons": [{"id": "L001", "title": "x", "created": "2026-01-01T00:00:00Z", "occurrences": 2}],
        })

        result = record_lesson_applied(LessonAppliedInput(
            journey_id="JRN-001", lesson_id="L001", llkb_root=str(llkb_root),
        ))

        assert result.success
        assert result.metrics["occurrences"] == 3
        data = json.loads((llkb_root / "lessons.json").read_text(encoding="utf-8"))
        assert data["version"] == "1.0.0"
        assert "created" not in data["lessons"][0]
