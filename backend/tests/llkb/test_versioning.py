"""
Unit tests for test-file version stamps and update checks.
"""

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "app"))

from llkb.models import AnalyticsFile, ComponentSource, ComponentsFile, LessonMetrics, LessonsFile
from llkb.versioning import (
    VersionComparison,
    check_updates,
    compare_versions,
    count_new_entries_since,
    extract_llkb_entries_from_test,
    extract_llkb_version_from_test,
    find_test_files,
    format_update_check_result,
    format_version_comparison,
    get_current_llkb_version,
    update_test_llkb_version,
)

CURRENT = "2026-03-01T00:00:00.000Z"
NOW = datetime(2026, 3, 5, tzinfo=timezone.utc)


def header(version: str = "2026-02-01T00:00:00.000Z", entries: int = 12) -> str:
    return (
        "/**\n"
        " * @journey JRN-001\n"
        " * @timestamp 2026-01-15T10:00:00Z\n"
        f" * @llkb-version {version}\n"
        f" * @llkb-entries {entries}\n"
        " */\n"
        "test('login', async ({ page }) => {});\n"
    )


@pytest.fixture
def store(llkb_root, write_json, make_lesson, make_component):
    """Six lessons and one component added after 2026-02-01."""
    lessons = [
        make_lesson(f"L00{i}", metrics=LessonMetrics(first_seen="2026-02-15T00:00:00.000Z"))
        for i in range(1, 7)
    ]
    write_json(llkb_root / "lessons.json", LessonsFile(lessons=lessons).to_json_dict())
    write_json(llkb_root / "components.json", ComponentsFile(components=[
        make_component(source=ComponentSource(extracted_at="2026-02-20T00:00:00.000Z")),
    ]).to_json_dict())
    write_json(llkb_root / "analytics.json", AnalyticsFile(last_updated=CURRENT).to_json_dict())
    return llkb_root


class TestHeaderTags:
    """Test reading and stamping header tags."""

    def test_extract(self):
        """Test that version and entry count are read from the header."""
        content = header()

        assert extract_llkb_version_from_test(content) == "2026-02-01T00:00:00.000Z"
        assert extract_llkb_entries_from_test(content) == 12
        assert extract_llkb_version_from_test("test()") is None

    def test_rewrite_existing_tags(self):
        """Test that existing tags are rewritten in place."""
        updated = update_test_llkb_version(header(), CURRENT, 20)

        assert extract_llkb_version_from_test(updated) == CURRENT
        assert extract_llkb_entries_from_test(updated) == 20
        assert updated.count("@llkb-version") == 1

    def test_insert_after_timestamp(self):
        """Test that missing tags are inserted after @timestamp."""
        content = "/**\n * @timestamp 2026-01-15T10:00:00Z\n */"

        updated = update_test_llkb_version(content, CURRENT, 3)

        assert updated == (
            "/**\n * @timestamp 2026-01-15T10:00:00Z\n"
            f" * @llkb-version {CURRENT}\n"
            " * @llkb-entries 3\n */"
        )

    def test_no_anchor_unchanged(self):
        """Test that content without any anchor is left alone."""
        assert update_test_llkb_version("test()", CURRENT, 3) == "test()"


class TestStoreVersion:
    """Test store-side version lookups."""

    def test_current_version_from_analytics(self, store):
        """Test that analytics lastUpdated is the store version."""
        assert get_current_llkb_version(store) == CURRENT

    def test_current_version_without_analytics(self, llkb_root):
        """Test the fallback to now."""
        assert get_current_llkb_version(llkb_root).endswith("Z")

    def test_count_new_entries(self, store):
        """Test strict after-comparison and the unstamped case."""
        assert count_new_entries_since("2026-02-01T00:00:00Z", "lessons", store) == 6
        assert count_new_entries_since("2026-02-20T00:00:00Z", "components", store) == 0
        assert count_new_entries_since(None, "lessons", store) == 0


class TestCompareVersions:
    """Test per-file recommendations."""

    def test_many_new_lessons_recommends_update(self, store, tmp_path):
        """Test the update recommendation."""
        path = tmp_path / "login.spec.ts"
        path.write_text(header(), encoding="utf-8")

        comparison = compare_versions(path, store, NOW)

        assert comparison.is_outdated
        assert comparison.days_since_update == 32
        assert comparison.new_patterns_available == 6
        assert comparison.new_components_available == 1
        assert comparison.recommendation == "update"

    def test_current_stamp_skips(self, store, tmp_path):
        """Test that a test stamped at the current version is skipped."""
        path = tmp_path / "login.spec.ts"
        path.write_text(header(CURRENT), encoding="utf-8")

        comparison = compare_versions(path, store, NOW)

        assert not comparison.is_outdated
        assert comparison.recommendation == "skip"

    def test_unstamped_needs_review(self, store, tmp_path):
        """Test that a never-stamped test is outdated with unknown age."""
        path = tmp_path / "login.spec.ts"
        path.write_text("test('x', () => {});", encoding="utf-8")

        comparison = compare_versions(path, store, NOW)

        assert comparison.is_outdated
        assert comparison.days_since_update is None
        assert comparison.recommendation == "review"


class TestCheckUpdates:
    """Test directory-wide checks."""

    def _tests_dir(self, tmp_path) -> Path:
        tests_dir = tmp_path / "tests"
        (tests_dir / "journeys").mkdir(parents=True)
        (tests_dir / "node_modules").mkdir()
        (tests_dir / "journeys" / "old.spec.ts").write_text(header(), encoding="utf-8")
        (tests_dir / "journeys" / "new.spec.ts").write_text(header(CURRENT), encoding="utf-8")
        (tests_dir / "journeys" / "notes.txt").write_text("x", encoding="utf-8")
        (tests_dir / "node_modules" / "dep.spec.ts").write_text(header(), encoding="utf-8")
        return tests_dir

    def test_find_test_files(self, tmp_path):
        """Test glob matching with dependency folders skipped."""
        found = find_test_files(self._tests_dir(tmp_path))

        assert [p.name for p in found] == ["new.spec.ts", "old.spec.ts"]

    def test_summary(self, store, tmp_path):
        """Test outdated and up-to-date partitioning."""
        result = check_updates(self._tests_dir(tmp_path), store)

        assert result.summary.total == 2
        assert [e.test_file.name for e in result.outdated] == ["old.spec.ts"]
        assert result.summary.up_to_date == 1
        assert result.summary.recommendation == "1 test should be updated"

    def test_unreadable_file_counted_as_error(self, store, tmp_path):
        """Test that undecodable files are collected as errors."""
        tests_dir = self._tests_dir(tmp_path)
        (tests_dir / "journeys" / "broken.spec.ts").write_bytes(b"\xff\xfe\xfa")

        result = check_updates(tests_dir, store)

        assert result.summary.errors == 1
        assert result.errors[0][0].name == "broken.spec.ts"
        assert "Errors:" in format_update_check_result(result)

    def test_missing_directory(self, store, tmp_path):
        """Test that a missing directory yields an empty result."""
        assert check_updates(tmp_path / "nope", store).summary.total == 0


class TestFormatting:
    """Test text rendering."""

    def test_comparison_line(self):
        """Test the per-file line with available additions."""
        comparison = VersionComparison(
            test_llkb_version="2026-02-01T00:00:00.000Z",
            current_llkb_version=CURRENT,
            is_outdated=True,
            days_since_update=32,
            new_patterns_available=6,
            new_components_available=0,
            recommendation="update",
        )

        line = format_version_comparison("tests/login.spec.ts", comparison)

        assert line == "! login.spec.ts (LLKB: 2026-02-01, current: 2026-03-01, +6 patterns)"

    def test_result_report(self, store, tmp_path):
        """Test the full report layout."""
        tests_dir = tmp_path / "tests"
        tests_dir.mkdir()
        (tests_dir / "a.spec.ts").write_text(header(), encoding="utf-8")
        (tests_dir / "b.spec.ts").write_text(header(CURRENT), encoding="utf-8")

        text = format_update_check_result(check_updates(tests_dir, store))

        assert "Tests needing LLKB update:" in text
        assert "Up to date: 1 tests" in text
        assert "Total: 2 tests" in text
