"""
Test versioning

Generated test files carry the LLKB snapshot they were written against in
their header comment:

    * @llkb-version 2026-01-15T10:00:00.000Z
    * @llkb-entries 42

The current version is analytics.json's lastUpdated. Comparing the two tells
whether lessons or components added since could improve the test.
"""

import fnmatch
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from .config import resolve_llkb_root
from .loaders import load_document
from .models import AnalyticsFile, ComponentsFile, LessonsFile, now_iso, parse_iso

logger = logging.getLogger(__name__)

VERSION_TAG_RE = re.compile(r"@llkb-version\s+(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d+)?Z?)")
ENTRIES_TAG_RE = re.compile(r"@llkb-entries\s+(\d+)")
VERSION_VALUE_RE = re.compile(r"(@llkb-version\s+)\S+")
ENTRIES_VALUE_RE = re.compile(r"(@llkb-entries\s+)\d+")
TIMESTAMP_TAG_RE = re.compile(r"(@timestamp\s+\S+)")
VERSION_LINE_RE = re.compile(r"(@llkb-version\s+\S+)")

UPDATE_LESSON_THRESHOLD = 5
UPDATE_COMPONENT_THRESHOLD = 2
REVIEW_AGE_DAYS = 30
DEFAULT_TEST_PATTERN = "*.spec.ts"
RULE_WIDTH = 50


@dataclass
class VersionComparison:
    test_llkb_version: Optional[str]
    current_llkb_version: str
    is_outdated: bool
    # None when the test was never stamped
    days_since_update: Optional[int]
    new_patterns_available: int
    new_components_available: int
    # update | review | skip
    recommendation: str


@dataclass
class ComparedTestFile:
    test_file: Path
    comparison: VersionComparison


@dataclass
class UpdateCheckSummary:
    total: int = 0
    outdated: int = 0
    up_to_date: int = 0
    errors: int = 0
    recommendation: str = ""


@dataclass
class UpdateCheckResult:
    outdated: List[ComparedTestFile] = field(default_factory=list)
    up_to_date: List[ComparedTestFile] = field(default_factory=list)
    errors: List[tuple] = field(default_factory=list)
    summary: UpdateCheckSummary = field(default_factory=UpdateCheckSummary)


# ==================== Header tags ====================

def extract_llkb_version_from_test(content: str) -> Optional[str]:
    match = VERSION_TAG_RE.search(content)
    return match.group(1) if match else None


def extract_llkb_entries_from_test(content: str) -> Optional[int]:
    match = ENTRIES_TAG_RE.search(content)
    return int(match.group(1)) if match else None


def update_test_llkb_version(content: str, new_version: str, entry_count: Optional[int] = None) -> str:
    """
    Stamp a test header with a new version (and optionally entry count).

    An existing tag is rewritten in place; otherwise the version goes after
    @timestamp and the entry count after @llkb-version. Content with neither
    anchor is returned unchanged.
    """
    result = content
    if VERSION_VALUE_RE.search(result):
        result = VERSION_VALUE_RE.sub(lambda m: m.group(1) + new_version, result, count=1)
    elif TIMESTAMP_TAG_RE.search(result):
        result = TIMESTAMP_TAG_RE.sub(lambda m: f"{m.group(1)}\n * @llkb-version {new_version}", result, count=1)

    if entry_count is not None:
        if ENTRIES_VALUE_RE.search(result):
            result = ENTRIES_VALUE_RE.sub(lambda m: f"{m.group(1)}{entry_count}", result, count=1)
        elif VERSION_LINE_RE.search(result):
            result = VERSION_LINE_RE.sub(lambda m: f"{m.group(1)}\n * @llkb-entries {entry_count}", result, count=1)
    return result


# ==================== Store side ====================

def get_current_llkb_version(llkb_root=None) -> str:
    analytics = load_document(resolve_llkb_root(llkb_root) / "analytics.json", AnalyticsFile)
    if analytics is not None and analytics.last_updated:
        return analytics.last_updated
    return now_iso()


def count_new_entries_since(since: Optional[str], entry_type: str, llkb_root=None) -> int:
    """
    Lessons first seen (or components extracted) strictly after `since`.

    Args:
        entry_type: lessons | components
    """
    since_dt = parse_iso(since)
    if since_dt is None:
        return 0
    root = resolve_llkb_root(llkb_root)

    if entry_type == "lessons":
        lessons = load_document(root / "lessons.json", LessonsFile)
        stamps = [l.metrics.first_seen for l in lessons.lessons] if lessons else []
    else:
        components = load_document(root / "components.json", ComponentsFile)
        stamps = [c.source.extracted_at for c in components.components] if components else []

    count = 0
    for stamp in stamps:
        parsed = parse_iso(stamp)
        if parsed is not None and parsed > since_dt:
            count += 1
    return count


def compare_versions(test_file_path, llkb_root=None, now: Optional[datetime] = None) -> VersionComparison:
    """Compare one test file's stamp against the store. Raises OSError if the file cannot be read."""
    now = now or datetime.now(timezone.utc)
    content = Path(test_file_path).read_text(encoding="utf-8")
    test_version = extract_llkb_version_from_test(content)
    current_version = get_current_llkb_version(llkb_root)

    test_dt = parse_iso(test_version)
    current_dt = parse_iso(current_version)
    is_outdated = test_dt is None or (current_dt is not None and test_dt < current_dt)
    days_since = int((now - test_dt).total_seconds() // 86400) if test_dt else None

    new_lessons = count_new_entries_since(test_version, "lessons", llkb_root)
    new_components = count_new_entries_since(test_version, "components", llkb_root)

    if is_outdated and (new_lessons > UPDATE_LESSON_THRESHOLD or new_components > UPDATE_COMPONENT_THRESHOLD):
        recommendation = "update"
    elif is_outdated and (days_since is None or days_since > REVIEW_AGE_DAYS):
        recommendation = "review"
    elif new_lessons > 0 or new_components > 0:
        recommendation = "review"
    else:
        recommendation = "skip"

    return VersionComparison(
        test_llkb_version=test_version,
        current_llkb_version=current_version,
        is_outdated=is_outdated,
        days_since_update=days_since,
        new_patterns_available=new_lessons,
        new_components_available=new_components,
        recommendation=recommendation,
    )


def find_test_files(tests_dir, pattern: str = DEFAULT_TEST_PATTERN) -> List[Path]:
    found = []
    for current, dirs, files in os.walk(tests_dir):
        dirs[:] = sorted(d for d in dirs if not d.startswith(".") and d != "node_modules")
        for name in sorted(files):
            if fnmatch.fnmatchcase(name, pattern):
                found.append(Path(current) / name)
    return found


def check_updates(tests_dir, llkb_root=None, pattern: str = DEFAULT_TEST_PATTERN) -> UpdateCheckResult:
    result = UpdateCheckResult()
    if not Path(tests_dir).is_dir():
        return result

    test_files = find_test_files(tests_dir, pattern)
    result.summary.total = len(test_files)

    for test_file in test_files:
        try:
            comparison = compare_versions(test_file, llkb_root)
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Could not check {test_file}: {e}")
            result.errors.append((test_file, str(e)))
            result.summary.errors += 1
            continue

        entry = ComparedTestFile(test_file, comparison)
        if comparison.is_outdated:
            result.outdated.append(entry)
            result.summary.outdated += 1
        else:
            result.up_to_date.append(entry)
            result.summary.up_to_date += 1

    outdated = result.summary.outdated
    if outdated == 0:
        result.summary.recommendation = "All tests are up to date"
    elif outdated == 1:
        result.summary.recommendation = "1 test should be updated"
    else:
        result.summary.recommendation = f"{outdated} tests should be updated"
    return result


# ==================== Formatting ====================

def format_version_comparison(test_file, comparison: VersionComparison) -> str:
    status = "!" if comparison.is_outdated else "OK"
    test_day = comparison.test_llkb_version.split("T")[0] if comparison.test_llkb_version else "none"
    current_day = comparison.current_llkb_version.split("T")[0]

    info = f"{status} {Path(test_file).name} (LLKB: {test_day}, current: {current_day}"
    extras = []
    if comparison.new_patterns_available > 0:
        extras.append(f"+{comparison.new_patterns_available} patterns")
    if comparison.new_components_available > 0:
        extras.append(f"+{comparison.new_components_available} components")
    if extras:
        info += ", " + ", ".join(extras)
    return info + ")"


def format_update_check_result(result: UpdateCheckResult) -> str:
    lines = ["LLKB Version Check", "-" * RULE_WIDTH, ""]

    if result.outdated:
        lines.append("Tests needing LLKB update:")
        lines += [f"  {format_version_comparison(e.test_file, e.comparison)}" for e in result.outdated]
        lines.append("")

    if result.up_to_date and not result.outdated:
        lines += ["All tests are up to date", ""]
    elif result.up_to_date:
        lines += [f"Up to date: {len(result.up_to_date)} tests", ""]

    if result.errors:
        lines.append("Errors:")
        lines += [f"  x {Path(f).name}: {error}" for f, error in result.errors]
        lines.append("")

    lines += ["-" * RULE_WIDTH, f"Total: {result.summary.total} tests", result.summary.recommendation]
    return "\n".join(lines)
