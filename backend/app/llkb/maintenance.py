"""
Maintenance - health check, statistics and pruning

run_health_check() inspects the store without modifying it. prune() removes
history day files past retention and, on request, soft-archives lessons and
components that have not been used within `inactive_days`. Archiving goes
through the same locked update as every other document write.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from .analytics import update_analytics
from .confidence import detect_declining_confidence, needs_confidence_review
from .config import CONFIG_FILENAME, resolve_llkb_root
from .file_utils import update_json_with_lock
from .history import cleanup_old_history_files, get_history_dir, read_today_history
from .loaders import load_document
from .migration import upgrade_document
from .models import ComponentsFile, LessonsFile, now_iso, parse_iso

logger = logging.getLogger(__name__)

DEFAULT_INACTIVE_DAYS = 180
DEFAULT_HISTORY_RETENTION_DAYS = 365
RULE_WIDTH = 50

STATUS_ICONS = {"pass": "OK", "warn": "!", "fail": "x"}
HEALTH_ICONS = {"healthy": "OK", "warning": "!", "error": "x"}


@dataclass
class HealthCheck:
    name: str
    # pass | warn | fail
    status: str
    message: str
    details: Optional[str] = None


@dataclass
class HealthCheckResult:
    # healthy | warning | error
    status: str
    checks: List[HealthCheck] = field(default_factory=list)
    summary: str = ""

    @property
    def success(self) -> bool:
        return self.status != "error"


@dataclass
class PruneResult:
    history_files_deleted: int = 0
    deleted_files: List[Path] = field(default_factory=list)
    archived_lessons: int = 0
    archived_components: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


# ==================== Health check ====================

def check_json_file(file_path: Path, label: str) -> HealthCheck:
    if not file_path.exists():
        return HealthCheck(label, "warn", f"{label} not found")
    try:
        json.loads(file_path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        return HealthCheck(label, "fail", f"{label} is invalid JSON", details=str(e))
    return HealthCheck(label, "pass", f"{label} is valid JSON")


def _lesson_health(lessons_path: Path) -> Optional[HealthCheck]:
    document = load_document(lessons_path, LessonsFile)
    if document is None:
        return None

    active = [l for l in document.lessons if not l.archived]
    low = [l for l in active if needs_confidence_review(l)]
    declining = [l for l in active if detect_declining_confidence(l)]
    if not low and not declining:
        return HealthCheck("Lesson health", "pass", "All lessons healthy")

    details = [f"Low confidence: {l.id} ({l.metrics.confidence})" for l in low]
    details += [f"Declining: {l.id}" for l in declining]
    return HealthCheck(
        "Lesson health",
        "warn",
        f"{len(low)} low confidence, {len(declining)} declining",
        details=", ".join(details),
    )


def run_health_check(llkb_root=None) -> HealthCheckResult:
    root = resolve_llkb_root(llkb_root)
    checks = []

    if root.is_dir():
        checks.append(HealthCheck("Directory exists", "pass", f"LLKB directory found at {root}"))
    else:
        checks.append(HealthCheck("Directory exists", "fail", f"LLKB directory not found at {root}"))

    if (root / CONFIG_FILENAME).exists():
        checks.append(HealthCheck("Config file", "pass", "config.yml found"))
    else:
        checks.append(HealthCheck("Config file", "warn", "config.yml not found - using defaults"))

    document_checks = {}
    for name in ("lessons.json", "components.json", "analytics.json"):
        document_checks[name] = check_json_file(root / name, name)
        checks.append(document_checks[name])

    history_dir = get_history_dir(root)
    if history_dir.is_dir():
        count = len(list(history_dir.glob("*.jsonl")))
        checks.append(HealthCheck("History directory", "pass", f"History directory found with {count} files"))
    else:
        checks.append(HealthCheck(
            "History directory", "warn", "History directory not found - will be created on first event",
        ))

    if document_checks["lessons.json"].status == "pass":
        lesson_check = _lesson_health(root / "lessons.json")
        if lesson_check is not None:
            checks.append(lesson_check)

    failed = [c for c in checks if c.status == "fail"]
    warned = [c for c in checks if c.status == "warn"]
    if failed:
        result = HealthCheckResult("error", checks, f"LLKB has errors: {len(failed)} failed checks")
    elif warned:
        result = HealthCheckResult("warning", checks, f"LLKB has warnings: {len(warned)} warnings")
    else:
        result = HealthCheckResult("healthy", checks, "LLKB is healthy")

    logger.debug(f"Health check for {root}: {result.status}")
    return result


# ==================== Statistics ====================

def get_stats(llkb_root=None) -> Dict[str, Dict[str, Any]]:
    """Counts and averages for lessons, components and the history log (snake_case keys)."""
    root = resolve_llkb_root(llkb_root)
    lessons = load_document(root / "lessons.json", LessonsFile) or LessonsFile()
    components = load_document(root / "components.json", ComponentsFile) or ComponentsFile()

    active_lessons = [l for l in lessons.lessons if not l.archived]
    lesson_stats = {
        "total": len(lessons.lessons) + len(lessons.archived),
        "active": len(active_lessons),
        "archived": len(lessons.archived),
        "avg_confidence": 0.0,
        "avg_success_rate": 0.0,
        "needs_review": 0,
    }
    if active_lessons:
        lesson_stats["avg_confidence"] = round(
            sum(l.metrics.confidence for l in active_lessons) / len(active_lessons), 2
        )
        lesson_stats["avg_success_rate"] = round(
            sum(l.metrics.success_rate for l in active_lessons) / len(active_lessons), 2
        )
        lesson_stats["needs_review"] = sum(
            1 for l in active_lessons if needs_confidence_review(l) or detect_declining_confidence(l)
        )

    active_components = [c for c in components.components if not c.archived]
    total_reuses = sum(c.metrics.total_uses for c in active_components)
    component_stats = {
        "total": len(components.components),
        "active": len(active_components),
        "archived": len(components.components) - len(active_components),
        "total_reuses": total_reuses,
        "avg_reuses_per_component": round(total_reuses / len(active_components), 2) if active_components else 0.0,
    }

    history_stats = {"today_events": 0, "history_files": 0, "oldest_file": None, "newest_file": None}
    history_dir = get_history_dir(root)
    if history_dir.is_dir():
        files = sorted(p.name for p in history_dir.glob("*.jsonl"))
        history_stats["history_files"] = len(files)
        if files:
            history_stats["oldest_file"] = files[0]
            history_stats["newest_file"] = files[-1]
        history_stats["today_events"] = len(read_today_history(root))

    return {"lessons": lesson_stats, "components": component_stats, "history": history_stats}


# ==================== Pruning ====================

def _last_activity(item: Dict[str, Any]) -> Optional[datetime]:
    metrics = item.get("metrics") or {}
    return parse_iso(metrics.get("lastSuccess") or metrics.get("lastUsed"))


def archive_inactive_items(file_path: Path, items_key: str, inactive_days: int) -> int:
    """
    Soft-archive items whose last success/use is older than inactive_days.
    Items with no recorded activity are left alone.

    Raises:
        OSError: the locked update failed (lock timeout, unreadable or unwritable file)
    """
    if not file_path.exists():
        return 0

    cutoff = datetime.now(timezone.utc) - timedelta(days=inactive_days)
    archived = []

    def transform(data):
        data, _ = upgrade_document(data)
        items = data.get(items_key)
        if not isinstance(items, list):
            return data
        for item in items:
            if item.get("archived"):
                continue
            last = _last_activity(item)
            if last is not None and last < cutoff:
                item["archived"] = True
                archived.append(item.get("id"))
        if archived:
            data["lastUpdated"] = now_iso()
        return data

    update = update_json_with_lock(file_path, transform)
    if not update.success:
        raise OSError(update.error)
    return len(archived)


def prune(
    llkb_root=None,
    history_retention_days: int = DEFAULT_HISTORY_RETENTION_DAYS,
    archive_inactive_lessons: bool = False,
    archive_inactive_components: bool = False,
    inactive_days: int = DEFAULT_INACTIVE_DAYS,
) -> PruneResult:
    root = resolve_llkb_root(llkb_root)
    result = PruneResult()

    deleted = cleanup_old_history_files(history_retention_days, root)
    result.history_files_deleted = len(deleted)
    result.deleted_files = deleted

    if archive_inactive_lessons:
        try:
            result.archived_lessons = archive_inactive_items(root / "lessons.json", "lessons", inactive_days)
        except OSError as e:
            result.errors.append(f"Failed to archive lessons: {e}")

    if archive_inactive_components:
        try:
            result.archived_components = archive_inactive_items(
                root / "components.json", "components", inactive_days
            )
        except OSError as e:
            result.errors.append(f"Failed to archive components: {e}")

    if (root / "lessons.json").exists() and (root / "components.json").exists():
        if not update_analytics(root):
            result.errors.append("Failed to update analytics")

    for error in result.errors:
        logger.error(error)
    return result


# ==================== Formatting ====================

def format_health_check(result: HealthCheckResult) -> str:
    lines = [f"{HEALTH_ICONS[result.status]} LLKB Health Check: {result.status.upper()}", "-" * RULE_WIDTH]
    for check in result.checks:
        lines.append(f"{STATUS_ICONS[check.status]} {check.name}: {check.message}")
        if check.details:
            lines.append(f"  {check.details}")
    lines += ["-" * RULE_WIDTH, result.summary]
    return "\n".join(lines)


def format_stats(stats: Dict[str, Dict[str, Any]]) -> str:
    lessons, components, history = stats["lessons"], stats["components"], stats["history"]
    lines = [
        "LLKB Statistics",
        "-" * RULE_WIDTH,
        "",
        "Lessons:",
        f"  Total: {lessons['total']} ({lessons['active']} active, {lessons['archived']} archived)",
        f"  Avg Confidence: {lessons['avg_confidence']}",
        f"  Avg Success Rate: {lessons['avg_success_rate']}",
        f"  Needs Review: {lessons['needs_review']}",
        "",
        "Components:",
        f"  Total: {components['total']} ({components['active']} active, {components['archived']} archived)",
        f"  Total Reuses: {components['total_reuses']}",
        f"  Avg Reuses/Component: {components['avg_reuses_per_component']}",
        "",
        "History:",
        f"  Today's Events: {history['today_events']}",
        f"  History Files: {history['history_files']}",
    ]
    if history["oldest_file"]:
        lines.append(f"  Date Range: {history['oldest_file']} to {history['newest_file']}")
    return "\n".join(lines)


def format_prune_result(result: PruneResult) -> str:
    lines = ["LLKB Prune Results", "-" * RULE_WIDTH, f"History files deleted: {result.history_files_deleted}"]
    if result.archived_lessons:
        lines.append(f"Lessons archived: {result.archived_lessons}")
    if result.archived_components:
        lines.append(f"Components archived: {result.archived_components}")
    if result.errors:
        lines += ["", "Errors:"]
        lines += [f"  x {e}" for e in result.errors]
    return "\n".join(lines)
