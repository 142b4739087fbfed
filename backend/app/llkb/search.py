"""
Search and Export

Free-text search over lessons and components, plus JSON / Markdown / CSV
exports and the human-readable status report.
"""

import csv
import io
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Union

from .config import load_llkb_config, resolve_llkb_root
from .loaders import ComponentFilter, LessonFilter, load_app_profile, load_components, load_lessons
from .models import Component, Lesson, now_iso

logger = logging.getLogger(__name__)

MIN_TEXT_RELEVANCE = 0.1
EXPORT_FORMATS = ("json", "markdown", "csv")


@dataclass
class SearchQuery:
    text: str = ""
    category: Optional[str] = None
    scope: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    min_confidence: Optional[float] = None
    journey_id: Optional[str] = None
    include_archived: bool = False
    limit: Optional[int] = None


@dataclass
class SearchResult:
    # lesson | component
    type: str
    id: str
    title: str
    description: str
    category: str
    scope: str
    relevance: float
    item: Union[Lesson, Component]


@dataclass
class ExportOptions:
    # json | markdown | csv
    format: str = "json"
    include_archived: bool = False
    include_metrics: bool = False
    include_source: bool = False
    categories: Optional[List[str]] = None
    scopes: Optional[List[str]] = None


def calculate_text_relevance(text: str, query: str) -> float:
    """1.0 for a full substring hit (or an empty query), else the share of query words found."""
    if not query:
        return 1.0
    lowered = text.lower()
    lowered_query = query.lower()
    words = [w for w in lowered_query.split() if len(w) > 1]
    if not words:
        return 1.0
    if lowered_query in lowered:
        return 1.0
    return sum(1 for w in words if w in lowered) / len(words)


# ==================== Search ====================

def _lesson_passes(lesson: Lesson, query: SearchQuery) -> bool:
    if lesson.archived and not query.include_archived:
        return False
    if query.category and lesson.category != query.category:
        return False
    if query.scope and lesson.scope != query.scope:
        return False
    if query.tags and not set(query.tags).intersection(lesson.tags):
        return False
    if query.min_confidence is not None and lesson.metrics.confidence < query.min_confidence:
        return False
    if query.journey_id and query.journey_id not in lesson.journey_ids:
        return False
    return True


def search_lessons(lessons: List[Lesson], query: SearchQuery) -> List[SearchResult]:
    results = []
    for lesson in lessons:
        if not _lesson_passes(lesson, query):
            continue
        relevance = calculate_text_relevance(f"{lesson.title} {lesson.pattern} {lesson.trigger}", query.text)
        if relevance > MIN_TEXT_RELEVANCE:
            results.append(SearchResult(
                type="lesson",
                id=lesson.id,
                title=lesson.title,
                description=lesson.pattern,
                category=lesson.category,
                scope=lesson.scope,
                relevance=relevance,
                item=lesson,
            ))
    return results


def search_components(components: List[Component], query: SearchQuery) -> List[SearchResult]:
    results = []
    for component in components:
        if component.archived and not query.include_archived:
            continue
        if query.category and component.category != query.category:
            continue
        if query.scope and component.scope != query.scope:
            continue
        relevance = calculate_text_relevance(f"{component.name} {component.description}", query.text)
        if relevance > MIN_TEXT_RELEVANCE:
            results.append(SearchResult(
                type="component",
                id=component.id,
                title=component.name,
                description=component.description,
                category=component.category,
                scope=component.scope,
                relevance=relevance,
                item=component,
            ))
    return results


def search(llkb_root=None, query: Optional[SearchQuery] = None) -> List[SearchResult]:
    """Search both lessons and components, most relevant first."""
    query = query or SearchQuery()
    lessons = load_lessons(llkb_root, LessonFilter(include_archived=query.include_archived))
    components = load_components(llkb_root, ComponentFilter(include_archived=query.include_archived))

    results = search_lessons(lessons, query) + search_components(components, query)
    results.sort(key=lambda r: r.relevance, reverse=True)
    if query.limit and query.limit > 0:
        return results[:query.limit]
    return results


def find_lessons_by_pattern(llkb_root, pattern: str) -> List[Lesson]:
    needle = pattern.lower()
    return [
        l for l in load_lessons(llkb_root)
        if needle in l.pattern.lower() or needle in l.trigger.lower()
    ]


def find_components(llkb_root, search_term: str) -> List[Component]:
    needle = search_term.lower()
    return [
        c for c in load_components(llkb_root)
        if needle in c.name.lower() or needle in c.description.lower()
    ]


def get_lessons_for_journey(llkb_root, journey_id: str) -> List[Lesson]:
    return [l for l in load_lessons(llkb_root) if journey_id in l.journey_ids]


def get_components_for_journey(llkb_root, journey_id: str) -> List[Component]:
    return [c for c in load_components(llkb_root) if c.source.extracted_from == journey_id]


# ==================== Export ====================

def _heading(category: str) -> str:
    return category[:1].upper() + category[1:]


def _group_by_category(items):
    groups = {}
    for item in items:
        groups.setdefault(item.category, []).append(item)
    return groups


def export_lessons_to_markdown(lessons: List[Lesson], include_metrics: bool = False) -> str:
    parts = ["# Lessons\n\n"]
    for category, group in _group_by_category(lessons).items():
        parts.append(f"## {_heading(category)}\n\n")
        for lesson in group:
            parts.append(f"### {lesson.id}: {lesson.title}\n\n")
            parts.append(f"**Trigger:** {lesson.trigger}\n\n")
            parts.append(f"**Pattern:** {lesson.pattern}\n\n")
            parts.append(f"**Scope:** {lesson.scope}\n\n")
            if include_metrics:
                m = lesson.metrics
                parts.append("**Metrics:**\n")
                parts.append(f"- Occurrences: {m.occurrences}\n")
                parts.append(f"- Success Rate: {m.success_rate * 100:.1f}%\n")
                parts.append(f"- Confidence: {m.confidence * 100:.1f}%\n")
                parts.append("\n")
            parts.append("---\n\n")
    return "".join(parts)


def export_components_to_markdown(
    components: List[Component],
    include_metrics: bool = False,
    include_source: bool = False,
) -> str:
    parts = ["# Components\n\n"]
    for category, group in _group_by_category(components).items():
        parts.append(f"## {_heading(category)}\n\n")
        for component in group:
            parts.append(f"### {component.id}: {component.name}\n\n")
            parts.append(f"{component.description}\n\n")
            parts.append(f"**File:** `{component.file_path}`\n\n")
            parts.append(f"**Scope:** {component.scope}\n\n")
            if include_metrics:
                parts.append("**Metrics:**\n")
                parts.append(f"- Total Uses: {component.metrics.total_uses}\n")
                parts.append(f"- Success Rate: {component.metrics.success_rate * 100:.1f}%\n")
                parts.append("\n")
            if include_source and component.source.original_code:
                parts.append("**Original Code:**\n\n```typescript\n")
                parts.append(component.source.original_code)
                parts.append("\n```\n\n")
            parts.append("---\n\n")
    return "".join(parts)


def _csv(header: List[str], rows: List[List[str]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(header)
    writer.writerows(rows)
    return buffer.getvalue().rstrip("\n")


def export_lessons_to_csv(lessons: List[Lesson]) -> str:
    header = ["ID", "Title", "Category", "Scope", "Trigger", "Pattern", "Occurrences", "Success Rate", "Confidence"]
    rows = [
        [
            l.id, l.title, l.category, l.scope, l.trigger, l.pattern,
            str(l.metrics.occurrences), f"{l.metrics.success_rate:.3f}", f"{l.metrics.confidence:.3f}",
        ]
        for l in lessons
    ]
    return _csv(header, rows)


def export_components_to_csv(components: List[Component]) -> str:
    header = ["ID", "Name", "Category", "Scope", "File Path", "Description", "Total Uses", "Success Rate", "Extracted From"]
    rows = [
        [
            c.id, c.name, c.category, c.scope, c.file_path, c.description,
            str(c.metrics.total_uses), f"{c.metrics.success_rate:.3f}", c.source.extracted_from,
        ]
        for c in components
    ]
    return _csv(header, rows)


def export_llkb(llkb_root=None, options: Optional[ExportOptions] = None) -> str:
    options = options or ExportOptions()
    if options.format not in EXPORT_FORMATS:
        raise ValueError(f"Unsupported export format: {options.format}")

    lessons = load_lessons(llkb_root, LessonFilter(
        include_archived=options.include_archived,
        category=options.categories,
        scope=options.scopes,
    ))
    components = load_components(llkb_root, ComponentFilter(
        include_archived=options.include_archived,
        category=options.categories,
        scope=options.scopes,
    ))

    if options.format == "markdown":
        return "\n\n".join([
            export_lessons_to_markdown(lessons, options.include_metrics),
            export_components_to_markdown(components, options.include_metrics, options.include_source),
        ])

    if options.format == "csv":
        return "\n".join([
            "# Lessons",
            export_lessons_to_csv(lessons),
            "",
            "# Components",
            export_components_to_csv(components),
        ])

    return json.dumps(
        {
            "exported": now_iso(),
            "lessons": [l.to_json_dict() for l in lessons],
            "components": [c.to_json_dict() for c in components],
        },
        indent=2,
    )


def export_to_file(llkb_root, output_path, options: Optional[ExportOptions] = None) -> Path:
    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(export_llkb(llkb_root, options), encoding="utf-8")
    logger.info(f"Exported LLKB to {path}")
    return path


def _count_by_category(items) -> dict:
    counts = {}
    for item in items:
        counts[item.category] = counts.get(item.category, 0) + 1
    return counts


def generate_report(llkb_root=None) -> str:
    """Markdown status report: overview, per-category counts, top items and review list."""
    root = resolve_llkb_root(llkb_root)
    load_llkb_config(root)
    lessons = load_lessons(root)
    components = load_components(root)
    app_profile = load_app_profile(root)

    archived_lessons = sum(1 for l in load_lessons(root, LessonFilter(include_archived=True)) if l.archived)
    archived_components = sum(
        1 for c in load_components(root, ComponentFilter(include_archived=True)) if c.archived
    )

    avg_confidence = sum(l.metrics.confidence for l in lessons) / len(lessons) if lessons else 0.0
    avg_success = sum(l.metrics.success_rate for l in lessons) / len(lessons) if lessons else 0.0
    total_uses = sum(c.metrics.total_uses for c in components)

    lines = ["# LLKB Status Report", "", f"**Generated:** {now_iso()}", ""]

    if app_profile:
        application = app_profile.application
        lines += [
            "## Application Profile",
            "",
            f"- **Framework:** {application.framework}",
            f"- **UI Library:** {application.ui_library}",
            f"- **Data Grid:** {application.data_grid}",
            "",
        ]

    lines += [
        "## Overview",
        "",
        "| Metric | Value |",
        "|--------|-------|",
        f"| Active Lessons | {len(lessons)} |",
        f"| Archived Lessons | {archived_lessons} |",
        f"| Active Components | {len(components)} |",
        f"| Archived Components | {archived_components} |",
        f"| Avg. Lesson Confidence | {avg_confidence * 100:.1f}% |",
        f"| Avg. Lesson Success Rate | {avg_success * 100:.1f}% |",
        f"| Total Component Uses | {total_uses} |",
        "",
    ]

    for title, items in (("Lessons by Category", lessons), ("Components by Category", components)):
        lines += [f"## {title}", "", "| Category | Count |", "|----------|-------|"]
        lines += [f"| {category} | {count} |" for category, count in _count_by_category(items).items()]
        lines.append("")

    top_lessons = sorted(lessons, key=lambda l: l.metrics.confidence, reverse=True)[:5]
    if top_lessons:
        lines += ["## Top Lessons (by Confidence)", ""]
        lines += [f"- **{l.id}** - {l.title} ({l.metrics.confidence * 100:.0f}%)" for l in top_lessons]
        lines.append("")

    top_components = sorted(components, key=lambda c: c.metrics.total_uses, reverse=True)[:5]
    if top_components:
        lines += ["## Most Used Components", ""]
        lines += [f"- **{c.id}** - {c.name} ({c.metrics.total_uses} uses)" for c in top_components]
        lines.append("")

    low_confidence = [l for l in lessons if l.metrics.confidence < 0.4]
    if low_confidence:
        lines += ["## Needs Review (Low Confidence)", ""]
        lines += [f"- **{l.id}** - {l.title} ({l.metrics.confidence * 100:.0f}%)" for l in low_confidence[:5]]
        lines.append("")

    return "\n".join(lines) + "\n"
