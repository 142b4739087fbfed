"""
Analytics - deterministic aggregates over lessons.json and components.json

Recomputed wholesale after every learning event and persisted as
analytics.json. The `impact` section is owned by external reporting and is
carried over untouched.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from .confidence import days_between, detect_declining_confidence
from .config import resolve_llkb_root
from .file_utils import save_json_atomic
from .loaders import load_document
from .models import (
    COMPONENT_CATEGORIES,
    LESSON_CATEGORIES,
    SCOPES,
    AnalyticsFile,
    AnalyticsOverview,
    ComponentStats,
    ComponentsFile,
    LessonStats,
    LessonsFile,
    NeedsReview,
    TopPerformerComponent,
    TopPerformerLesson,
    TopPerformers,
    now_iso,
    parse_iso,
)

logger = logging.getLogger(__name__)

ANALYTICS_FILENAME = "analytics.json"
TOP_PERFORMER_COUNT = 5
LOW_CONFIDENCE_THRESHOLD = 0.4
LOW_USAGE_THRESHOLD = 2
LOW_USAGE_MIN_AGE_DAYS = 30


def create_empty_analytics() -> AnalyticsFile:
    return AnalyticsFile()


# ==================== Aggregates ====================

def calculate_overview(lessons: LessonsFile, components: ComponentsFile) -> AnalyticsOverview:
    return AnalyticsOverview(
        total_lessons=len(lessons.lessons),
        active_lessons=sum(1 for l in lessons.lessons if not l.archived),
        archived_lessons=len(lessons.archived),
        total_components=len(components.components),
        active_components=sum(1 for c in components.components if not c.archived),
        archived_components=sum(1 for c in components.components if c.archived),
    )


def calculate_lesson_stats(lessons: LessonsFile) -> LessonStats:
    active = [l for l in lessons.lessons if not l.archived]

    by_category = {c: 0 for c in LESSON_CATEGORIES}
    for lesson in active:
        if lesson.category in by_category:
            by_category[lesson.category] += 1

    stats = LessonStats(by_category=by_category)
    if active:
        stats.avg_confidence = round(sum(l.metrics.confidence for l in active) / len(active), 2)
        stats.avg_success_rate = round(sum(l.metrics.success_rate for l in active) / len(active), 2)
    return stats


def calculate_component_stats(components: ComponentsFile) -> ComponentStats:
    active = [c for c in components.components if not c.archived]

    by_category = {c: 0 for c in COMPONENT_CATEGORIES}
    by_scope = {s: 0 for s in SCOPES}
    for component in active:
        if component.category in by_category:
            by_category[component.category] += 1
        if component.scope in by_scope:
            by_scope[component.scope] += 1

    stats = ComponentStats(by_category=by_category, by_scope=by_scope)
    if active:
        stats.total_reuses = sum(c.metrics.total_uses for c in active)
        stats.avg_reuses_per_component = round(stats.total_reuses / len(active), 2)
    return stats


def calculate_top_performers(lessons: LessonsFile, components: ComponentsFile) -> TopPerformers:
    top_lessons = sorted(
        (
            TopPerformerLesson(
                id=l.id,
                title=l.title,
                score=round(l.metrics.success_rate * l.metrics.occurrences, 2),
            )
            for l in lessons.lessons if not l.archived
        ),
        key=lambda t: t.score,
        reverse=True,
    )
    top_components = sorted(
        (
            TopPerformerComponent(id=c.id, name=c.name, uses=c.metrics.total_uses)
            for c in components.components if not c.archived
        ),
        key=lambda t: t.uses,
        reverse=True,
    )
    return TopPerformers(
        lessons=top_lessons[:TOP_PERFORMER_COUNT],
        components=top_components[:TOP_PERFORMER_COUNT],
    )


def calculate_needs_review(
    lessons: LessonsFile,
    components: ComponentsFile,
    now: Optional[datetime] = None,
) -> NeedsReview:
    now = now or datetime.now(timezone.utc)
    active_lessons = [l for l in lessons.lessons if not l.archived]

    low_usage = []
    for component in components.components:
        if component.archived or component.metrics.total_uses >= LOW_USAGE_THRESHOLD:
            continue
        extracted_at = parse_iso(component.source.extracted_at)
        if extracted_at is not None and days_between(now, extracted_at) > LOW_USAGE_MIN_AGE_DAYS:
            low_usage.append(component.id)

    return NeedsReview(
        low_confidence_lessons=[l.id for l in active_lessons if l.metrics.confidence < LOW_CONFIDENCE_THRESHOLD],
        low_usage_components=low_usage,
        declining_success_rate=[l.id for l in active_lessons if detect_declining_confidence(l)],
    )


def _recompute(analytics: AnalyticsFile, lessons: LessonsFile, components: ComponentsFile) -> AnalyticsFile:
    return analytics.model_copy(update={
        "overview": calculate_overview(lessons, components),
        "lesson_stats": calculate_lesson_stats(lessons),
        "component_stats": calculate_component_stats(components),
        "top_performers": calculate_top_performers(lessons, components),
        "needs_review": calculate_needs_review(lessons, components),
        "last_updated": now_iso(),
    })


# ==================== Persistence ====================

def update_analytics_with_data(lessons: LessonsFile, components: ComponentsFile, analytics_path) -> bool:
    """Recompute from documents already in memory (used right after a locked update)."""
    current = load_document(analytics_path, AnalyticsFile) or create_empty_analytics()
    result = save_json_atomic(analytics_path, _recompute(current, lessons, components).to_json_dict())
    if not result.success:
        logger.error(f"Failed to update analytics: {result.error}")
    return result.success


def update_analytics(llkb_root=None) -> bool:
    root = resolve_llkb_root(llkb_root)
    lessons = load_document(root / "lessons.json", LessonsFile)
    components = load_document(root / "components.json", ComponentsFile)

    if lessons is None or components is None:
        logger.warning("Cannot update analytics: lessons or components not found")
        return False

    return update_analytics_with_data(lessons, components, root / ANALYTICS_FILENAME)


def get_analytics_summary(llkb_root=None) -> str:
    analytics = load_document(Path(resolve_llkb_root(llkb_root)) / ANALYTICS_FILENAME, AnalyticsFile)
    if analytics is None:
        return "Analytics not available"

    o = analytics.overview
    l = analytics.lesson_stats
    c = analytics.component_stats
    review = analytics.needs_review
    review_count = (
        len(review.low_confidence_lessons)
        + len(review.low_usage_components)
        + len(review.declining_success_rate)
    )

    return "\n".join([
        f"LLKB Analytics ({analytics.last_updated})",
        "-" * 50,
        f"Lessons: {o.active_lessons} active, {o.archived_lessons} archived",
        f"  Avg Confidence: {l.avg_confidence}",
        f"  Avg Success Rate: {l.avg_success_rate}",
        f"Components: {o.active_components} active, {o.archived_components} archived",
        f"  Total Reuses: {c.total_reuses}",
        f"  Avg Reuses/Component: {c.avg_reuses_per_component}",
        f"Items Needing Review: {review_count}",
    ])
