"""
Context Assembly

Ranks stored lessons and components against a journey description and
assembles the context block handed to test generation.

Scoring is additive and capped at 1.0. Lessons score on confidence, scope,
tag overlap, journey history, category, trigger keywords and recency;
components on success rate, scope, category, description keywords and
usage volume.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from .config import LLKBConfig, load_llkb_config, resolve_llkb_root
from .loaders import LLKBPatterns, load_app_profile, load_components, load_lessons, load_patterns
from .matching import tokenize
from .models import AppProfile, Component, Lesson, parse_iso

logger = logging.getLogger(__name__)

DEFAULT_MAX_LESSONS = 10
DEFAULT_MAX_COMPONENTS = 10
MIN_RELEVANCE = 0.2
MAX_QUIRKS = 5
MAX_SELECTOR_PATTERNS = 5
MAX_TIMING_PATTERNS = 5


@dataclass
class JourneyContext:
    """What the caller is about to write a test for."""
    id: str
    title: str
    scope: str
    routes: List[str] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)
    # Derived from title/scope/routes when empty
    keywords: List[str] = field(default_factory=list)


@dataclass
class ScoredLesson:
    lesson: Lesson
    relevance_score: float
    match_reasons: List[str] = field(default_factory=list)


@dataclass
class ScoredComponent:
    component: Component
    relevance_score: float
    match_reasons: List[str] = field(default_factory=list)


@dataclass
class QuirkSummary:
    id: str
    component: str
    location: str
    quirk: str
    impact: str
    workaround: str


@dataclass
class ContextSummary:
    total_lessons: int = 0
    total_components: int = 0
    total_quirks: int = 0
    avg_lesson_confidence: float = 0.0
    avg_component_success_rate: float = 0.0
    top_categories: List[str] = field(default_factory=list)


@dataclass
class RelevantContext:
    lessons: List[ScoredLesson] = field(default_factory=list)
    components: List[ScoredComponent] = field(default_factory=list)
    quirks: List[QuirkSummary] = field(default_factory=list)
    selector_patterns: List[Dict[str, Any]] = field(default_factory=list)
    timing_patterns: List[Dict[str, Any]] = field(default_factory=list)
    summary: ContextSummary = field(default_factory=ContextSummary)


@dataclass
class ContextOptions:
    max_lessons: int = DEFAULT_MAX_LESSONS
    max_components: int = DEFAULT_MAX_COMPONENTS
    # Overrides injection.prioritizeByConfidence from config.yml when set
    prioritize_by_confidence: Optional[bool] = None


def extract_keywords(journey: JourneyContext) -> List[str]:
    keywords = [w for w in journey.title.lower().split() if len(w) > 3]
    keywords.append(journey.scope.lower())
    for route in journey.routes:
        keywords.extend(p.lower() for p in route.split("/") if len(p) > 2)
    return list(dict.fromkeys(keywords))


def _keywords(journey: JourneyContext) -> List[str]:
    return journey.keywords or extract_keywords(journey)


def _keyword_hits(keywords: List[str], text: str) -> List[str]:
    """Keywords contained in any token of text."""
    tokens = [t.lower() for t in tokenize(text)]
    return [kw for kw in keywords if any(kw.lower() in t for t in tokens)]


def _days_since(value: Optional[str], now: datetime) -> Optional[int]:
    parsed = parse_iso(value)
    if parsed is None:
        return None
    return int((now - parsed).total_seconds() // 86400)


# ==================== Relevance ====================

def calculate_lesson_relevance(
    lesson: Lesson,
    journey: JourneyContext,
    app_profile: Optional[AppProfile] = None,
    now: Optional[datetime] = None,
) -> Tuple[float, List[str]]:
    now = now or datetime.now(timezone.utc)
    score = lesson.metrics.confidence * 0.3
    reasons = []

    framework = app_profile.application.framework if app_profile else None
    if lesson.scope == "universal":
        score += 0.2
        reasons.append("universal scope")
    elif framework and lesson.scope == f"framework:{framework}":
        score += 0.25
        reasons.append(f"framework match: {framework}")
    elif lesson.scope == "app-specific":
        score += 0.15
        reasons.append("app-specific")

    keywords = _keywords(journey)
    matching_tags = [t for t in lesson.tags if any(kw.lower() in t.lower() for kw in keywords)]
    if matching_tags:
        score += min(len(matching_tags) * 0.1, 0.3)
        reasons.append(f"tags: {', '.join(matching_tags)}")

    if lesson.journey_ids:
        if journey.id in lesson.journey_ids:
            score += 0.25
            reasons.append("same journey")
        else:
            scope = journey.scope.lower()
            similar = [j for j in lesson.journey_ids if scope in j.lower()]
            if similar:
                score += 0.15
                reasons.append(f"similar journeys: {len(similar)}")

    if lesson.category in journey.categories:
        score += 0.15
        reasons.append(f"category: {lesson.category}")

    trigger_hits = _keyword_hits(keywords, lesson.trigger)
    if trigger_hits:
        score += min(len(trigger_hits) * 0.05, 0.15)
        reasons.append(f"trigger match: {', '.join(trigger_hits[:2])}")

    since_success = _days_since(lesson.metrics.last_success, now)
    if since_success is not None:
        if since_success < 7:
            score += 0.1
            reasons.append("recently successful")
        elif since_success < 30:
            score += 0.05

    if lesson.metrics.success_rate >= 0.9:
        score += 0.1
        reasons.append("high success rate")

    return min(score, 1.0), reasons


def calculate_component_relevance(
    component: Component,
    journey: JourneyContext,
    app_profile: Optional[AppProfile] = None,
) -> Tuple[float, List[str]]:
    score = component.metrics.success_rate * 0.3
    reasons = []

    application = app_profile.application if app_profile else None
    if component.scope == "universal":
        score += 0.2
        reasons.append("universal scope")
    elif application and component.scope == f"framework:{application.framework}":
        score += 0.25
        reasons.append(f"framework match: {application.framework}")
    elif (
        application
        and application.data_grid != "none"
        and component.scope == f"framework:{application.data_grid}"
    ):
        score += 0.25
        reasons.append(f"data grid match: {application.data_grid}")

    if component.category in journey.categories:
        score += 0.2
        reasons.append(f"category: {component.category}")

    context_hits = _keyword_hits(_keywords(journey), component.description)
    if context_hits:
        score += min(len(context_hits) * 0.05, 0.2)
        reasons.append(f"context match: {', '.join(context_hits[:3])}")

    if component.metrics.total_uses > 10:
        score += 0.15
        reasons.append("widely used")
    elif component.metrics.total_uses > 3:
        score += 0.1
        reasons.append("commonly used")

    if component.metrics.success_rate >= 0.95:
        score += 0.1
        reasons.append("high reliability")

    return min(score, 1.0), reasons


# ==================== Supporting context ====================

def extract_relevant_quirks(lessons: List[Lesson], journey: JourneyContext) -> List[QuirkSummary]:
    keywords = _keywords(journey)
    scope = journey.scope.lower()
    quirks = []

    for lesson in lessons:
        if lesson.category != "quirk" or lesson.archived:
            continue
        journey_ids = [j.lower() for j in lesson.journey_ids]
        matches = (
            any(j in scope or scope in j for j in journey_ids)
            or bool(_keyword_hits(keywords, lesson.trigger))
            or bool(_keyword_hits(keywords, lesson.pattern))
            or any(j in route.lower() for route in journey.routes for j in journey_ids)
        )
        if matches:
            quirks.append(QuirkSummary(
                id=lesson.id,
                component=lesson.title,
                location=", ".join(lesson.journey_ids) or lesson.scope,
                quirk=lesson.trigger,
                impact=f"Confidence: {round(lesson.metrics.confidence * 100)}%",
                workaround=lesson.pattern,
            ))
    return quirks[:MAX_QUIRKS]


def extract_relevant_selector_patterns(
    selector_bank: Optional[Dict[str, Any]],
    journey: JourneyContext,
    app_profile: Optional[AppProfile] = None,
) -> List[Dict[str, Any]]:
    if not selector_bank:
        return []

    app_names = set()
    if app_profile:
        application = app_profile.application
        app_names = {application.framework, application.data_grid, application.ui_library}

    keywords = [kw.lower() for kw in journey.keywords]
    relevant = []
    for pattern in selector_bank.get("selectorPatterns", []):
        applicable = pattern.get("applicableTo", [])
        matches_app = any(app in app_names for app in applicable)
        matches_keywords = any(kw in app.lower() for app in applicable for kw in keywords)
        if matches_app or matches_keywords or pattern.get("confidence", 0) >= 0.9:
            relevant.append({
                "id": pattern.get("id"),
                "name": pattern.get("name"),
                "template": pattern.get("template"),
                "confidence": pattern.get("confidence"),
            })
    return relevant[:MAX_SELECTOR_PATTERNS]


def extract_relevant_timing_patterns(
    timing_bank: Optional[Dict[str, Any]],
    journey: JourneyContext,
) -> List[Dict[str, Any]]:
    if not timing_bank:
        return []

    relevant = []
    for pattern in timing_bank.get("asyncPatterns", []):
        if _keyword_hits(journey.keywords, pattern.get("context", "")):
            relevant.append({
                "id": pattern.get("id"),
                "name": pattern.get("name"),
                "pattern": pattern.get("pattern"),
                "recommendation": pattern.get("recommendation"),
            })
    return relevant[:MAX_TIMING_PATTERNS]


def calculate_summary(
    lessons: List[ScoredLesson],
    components: List[ScoredComponent],
    quirks: List[QuirkSummary],
) -> ContextSummary:
    summary = ContextSummary(
        total_lessons=len(lessons),
        total_components=len(components),
        total_quirks=len(quirks),
    )
    if lessons:
        summary.avg_lesson_confidence = sum(s.lesson.metrics.confidence for s in lessons) / len(lessons)
    if components:
        summary.avg_component_success_rate = (
            sum(s.component.metrics.success_rate for s in components) / len(components)
        )

    counts: Dict[str, int] = {}
    for category in [s.lesson.category for s in lessons] + [s.component.category for s in components]:
        counts[category] = counts.get(category, 0) + 1
    summary.top_categories = [c for c, _ in sorted(counts.items(), key=lambda kv: kv[1], reverse=True)[:3]]
    return summary


# ==================== Assembly ====================

def rank_for_journey(
    journey: JourneyContext,
    lessons: List[Lesson],
    components: List[Component],
    config: Optional[LLKBConfig] = None,
    app_profile: Optional[AppProfile] = None,
    patterns: Optional[LLKBPatterns] = None,
    options: Optional[ContextOptions] = None,
) -> RelevantContext:
    """Rank already-loaded lessons and components for one journey."""
    config = config or LLKBConfig()
    options = options or ContextOptions()
    patterns = patterns or LLKBPatterns()
    by_confidence = options.prioritize_by_confidence
    if by_confidence is None:
        by_confidence = config.injection.prioritize_by_confidence

    # Rank against a copy so the caller's journey keeps its keywords
    if not journey.keywords:
        journey = replace(journey, keywords=extract_keywords(journey))

    scored_lessons = []
    for lesson in lessons:
        if lesson.archived:
            continue
        score, reasons = calculate_lesson_relevance(lesson, journey, app_profile)
        if score > MIN_RELEVANCE:
            scored_lessons.append(ScoredLesson(lesson, score, reasons))

    scored_components = []
    for component in components:
        if component.archived:
            continue
        score, reasons = calculate_component_relevance(component, journey, app_profile)
        if score > MIN_RELEVANCE:
            scored_components.append(ScoredComponent(component, score, reasons))

    if by_confidence:
        scored_lessons.sort(key=lambda s: (s.lesson.metrics.confidence, s.relevance_score), reverse=True)
        scored_components.sort(key=lambda s: (s.component.metrics.success_rate, s.relevance_score), reverse=True)
    else:
        scored_lessons.sort(key=lambda s: s.relevance_score, reverse=True)
        scored_components.sort(key=lambda s: s.relevance_score, reverse=True)

    scored_lessons = scored_lessons[:options.max_lessons]
    scored_components = scored_components[:options.max_components]
    quirks = extract_relevant_quirks(lessons, journey)

    return RelevantContext(
        lessons=scored_lessons,
        components=scored_components,
        quirks=quirks,
        selector_patterns=extract_relevant_selector_patterns(patterns.selectors, journey, app_profile),
        timing_patterns=extract_relevant_timing_patterns(patterns.timing, journey),
        summary=calculate_summary(scored_lessons, scored_components, quirks),
    )


def get_relevant_context(
    journey: JourneyContext,
    llkb_root=None,
    options: Optional[ContextOptions] = None,
) -> RelevantContext:
    """Load the store and rank it for a journey. A disabled store yields an empty context."""
    root = resolve_llkb_root(llkb_root)
    config = load_llkb_config(root)
    if not config.enabled:
        logger.debug("LLKB disabled, returning empty context")
        return RelevantContext()

    context = rank_for_journey(
        journey,
        load_lessons(root),
        load_components(root),
        config=config,
        app_profile=load_app_profile(root),
        patterns=load_patterns(root),
        options=options,
    )
    logger.debug(
        f"Context for {journey.id}: {len(context.lessons)} lessons, "
        f"{len(context.components)} components, {len(context.quirks)} quirks"
    )
    return context


def _confidence_label(confidence: float) -> str:
    if confidence >= 0.8:
        return "HIGH"
    if confidence >= 0.5:
        return "MEDIUM"
    return "LOW"


def _truncate(text: str, limit: int) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


def format_context_for_prompt(context: RelevantContext, journey: JourneyContext) -> str:
    lines = [f"## LLKB Context (Auto-Injected for {journey.id})", ""]

    if context.components:
        lines.append(f"### Available Components (Top {len(context.components)} for this scope)")
        lines.append("")
        lines.append("| Component | File | Success Rate | Description |")
        lines.append("|-----------|------|--------------|-------------|")
        by_path: Dict[str, List[str]] = {}
        for scored in context.components:
            comp = scored.component
            rate = round(comp.metrics.success_rate * 100)
            lines.append(f"| {comp.name} | {comp.file_path} | {rate}% | {_truncate(comp.description, 50)} |")
            import_path = comp.file_path
            if import_path.endswith(".ts"):
                import_path = import_path[:-3]
            if import_path.startswith("./"):
                import_path = import_path[2:]
            by_path.setdefault(import_path, []).append(comp.name)

        lines.append("")
        lines.append("**Import Example:**")
        lines.append("```typescript")
        for import_path, names in by_path.items():
            lines.append(f"import {{ {', '.join(names)} }} from './{import_path}';")
        lines.append("```")
        lines.append("")

    if context.lessons:
        lines.append(f"### Relevant Lessons (Top {len(context.lessons)})")
        lines.append("")
        for i, scored in enumerate(context.lessons, 1):
            lesson = scored.lesson
            lines.append(f"{i}. **[{_confidence_label(lesson.metrics.confidence)}] {lesson.id}: {lesson.title}**")
            lines.append(f"   - Trigger: {lesson.trigger}")
            lines.append(f"   - Pattern: `{_truncate(lesson.pattern, 100)}`")
            lines.append("")

    if context.quirks:
        lines.append("### Known Quirks for This Scope")
        lines.append("")
        for quirk in context.quirks:
            lines.append(f"- **{quirk.id} ({quirk.component})**: {quirk.quirk}")
            if quirk.workaround:
                lines.append(f"  - Workaround: {quirk.workaround}")
        lines.append("")

    lines.append("---")
    return "\n".join(lines)


def get_relevant_scopes(app_profile: Optional[AppProfile] = None) -> List[str]:
    scopes = ["universal", "app-specific"]
    if app_profile:
        application = app_profile.application
        if application.framework != "other":
            scopes.append(f"framework:{application.framework}")
        if application.data_grid != "none":
            scopes.append(f"framework:{application.data_grid}")
        if application.ui_library not in ("custom", "none"):
            scopes.append(f"framework:{application.ui_library}")
    return scopes
