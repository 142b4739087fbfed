"""
Unit tests for health checks, statistics and pruning.
"""

import json
import sys
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "app"))

from llkb.config import save_llkb_config
from llkb.history import append_to_history, get_history_file_path
from llkb.maintenance import (
    check_json_file,
    format_health_check,
    format_prune_result,
    format_stats,
    get_stats,
    prune,
    run_health_check,
)
from llkb.models import (
    AnalyticsFile,
    ComponentMetrics,
    ComponentsFile,
    LessonMetrics,
    LessonsFile,
    UpdateResult,
)


def days_ago(days: int) -> str:
    return (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()


@pytest.fixture
def store(llkb_root, write_json, make_lesson, make_component):
    save_llkb_config(llkb_root)
    write_json(llkb_root / "lessons.json", LessonsFile(lessons=[
        make_lesson("L001", metrics=LessonMetrics(
            occurrences=5, success_rate=0.9, confidence=0.8, last_success=days_ago(400),
        )),
        make_lesson("L002", metrics=LessonMetrics(occurrences=1, success_rate=0.5, confidence=0.3)),
    ]).to_json_dict())
    write_json(llkb_root / "components.json", ComponentsFile(components=[
        make_component("COMP001", metrics=ComponentMetrics(total_uses=4, success_rate=0.95, last_used=days_ago(1))),
        make_component("COMP002", archived=True, metrics=ComponentMetrics(total_uses=10)),
    ]).to_json_dict())
    write_json(llkb_root / "analytics.json", AnalyticsFile().to_json_dict())
    append_to_history({"event": "lesson_applied", "lessonId": "L001"}, llkb_root)
    return llkb_root


class TestHealthCheck:
    """Test the read-only health check."""

    def test_json_file_states(self, tmp_path):
        """Test missing, invalid and valid documents."""
        path = tmp_path / "lessons.json"
        assert check_json_file(path, "lessons.json").status == "warn"

        path.write_text("{broken", encoding="utf-8")
        invalid = check_json_file(path, "lessons.json")
        assert invalid.status == "fail"
        assert invalid.details

        path.write_text("{}", encoding="utf-8")
        assert check_json_file(path, "lessons.json").status == "pass"

    def test_low_confidence_lesson_warns(self, store):
        """Test that lessons needing review produce a warning."""
        result = run_health_check(store)

        assert result.status == "warning"
        assert result.success
        lesson_check = next(c for c in result.checks if c.name == "Lesson health")
        assert lesson_check.message == "1 low confidence, 0 declining"
        assert "Low confidence: L002 (0.3)" in lesson_check.details

    def test_healthy_store(self, store, write_json, make_lesson):
        """Test a store where every check passes."""
        write_json(store / "lessons.json", LessonsFile(lessons=[make_lesson()]).to_json_dict())

        result = run_health_check(store)

        assert result.status == "healthy"
        assert result.summary == "LLKB is healthy"

    def test_invalid_document_is_error(self, store):
        """Test that corrupt JSON fails the check."""
        (store / "components.json").write_text("nope", encoding="utf-8")

        result = run_health_check(store)

        assert result.status == "error"
        assert not result.success
        assert result.summary == "LLKB has errors: 1 failed checks"

    def test_missing_directory(self, tmp_path):
        """Test that a missing store is an error."""
        assert run_health_check(tmp_path / "missing").status == "error"

    def test_format(self, store):
        """Test the rendered report."""
        text = format_health_check(run_health_check(store))

        assert text.startswith("! LLKB Health Check: WARNING")
        assert "OK Config file: config.yml found" in text


class TestStats:
    """Test statistics."""

    def test_counts_and_averages(self, store):
        """Test lesson, component and history figures."""
        stats = get_stats(store)

        assert stats["lessons"]["active"] == 2
        assert stats["lessons"]["avg_confidence"] == 0.55
        assert stats["lessons"]["avg_success_rate"] == 0.7
        assert stats["lessons"]["needs_review"] == 1
        assert stats["components"] == {
            "total": 2,
            "active": 1,
            "archived": 1,
            "total_reuses": 4,
            "avg_reuses_per_component": 4.0,
        }
        assert stats["history"]["today_events"] == 1
        assert stats["history"]["history_files"] == 1

    def test_empty_store(self, llkb_root):
        """Test that an empty store reports zeros."""
        stats = get_stats(llkb_root)

        assert stats["lessons"]["total"] == 0
        assert stats["components"]["avg_reuses_per_component"] == 0.0
        assert stats["history"]["oldest_file"] is None

    def test_format(self, store):
        """Test the rendered statistics."""
        text = format_stats(get_stats(store))

        assert "Total: 2 (2 active, 0 archived)" in text
        assert "Date Range:" in text


class TestPrune:
    """Test history retention and archiving."""

    def test_history_retention(self, store):
        """Test that expired day files are deleted."""
        old = get_history_file_path(date.today() - timedelta(days=400), store)
        old.write_text('{"event": "x"}\n', encoding="utf-8")

        result = prune(store)

        assert result.success
        assert result.history_files_deleted == 1
        assert not old.exists()

    def test_archives_inactive_lessons(self, store):
        """Test that only lessons with stale activity are archived."""
        result = prune(store, archive_inactive_lessons=True)

        assert result.archived_lessons == 1
        lessons = json.loads((store / "lessons.json").read_text(encoding="utf-8"))["lessons"]
        assert [l["archived"] for l in lessons] == [True, False]

    def test_recent_components_kept(self, store):
        """Test that recently used components stay active."""
        result = prune(store, archive_inactive_components=True)

        assert result.archived_components == 0

    def test_analytics_refreshed(self, store):
        """Test that analytics are recomputed after pruning."""
        prune(store, archive_inactive_lessons=True)

        analytics = json.loads((store / "analytics.json").read_text(encoding="utf-8"))
        assert analytics["overview"]["activeLessons"] == 1

    def test_lock_failure_reported(self, store):
        """Test that a failed locked update becomes an error entry."""
        failure = UpdateResult(success=False, error="Could not acquire lock within 5000ms")
        with patch("llkb.maintenance.update_json_with_lock", return_value=failure):
            result = prune(store, archive_inactive_lessons=True)

        assert not result.success
        assert result.errors == ["Failed to archive lessons: Could not acquire lock within 5000ms"]

    def test_format(self, store):
        """Test the rendered prune result."""
        text = format_prune_result(prune(store, archive_inactive_lessons=True))

        assert "History files deleted: 0" in text
        assert "Lessons archived: 1" in text
