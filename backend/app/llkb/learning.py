"""
Learning Loop

Turns outcome reports from test runs into metric updates on stored lessons
and components:

1. Locate the lesson/component (exact id; pattern reports without an id use
   the fuzzy fallback in find_matching_lesson)
2. Bump occurrences/uses, recompute the running success rate
3. Recompute lesson confidence and record it in the confidence history
4. Append a history event and refresh analytics

An unknown id is an explicit failure; nothing is ever created here.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from .analytics import update_analytics
from .confidence import calculate_confidence, update_confidence_history
from .config import resolve_llkb_root
from .file_utils import update_json_with_lock
from .history import append_to_history
from .migration import upgrade_document
from .models import ComponentsFile, Lesson, LessonsFile, now_iso

logger = logging.getLogger(__name__)


class LearningKind(Enum):
    PATTERN = "pattern"
    COMPONENT = "component"
    LESSON = "lesson"


@dataclass
class LearningInput:
    journey_id: str
    test_file: str = "unknown"
    # journey-implement | journey-verify
    prompt: str = "journey-verify"
    llkb_root: Optional[str] = None


@dataclass
class PatternLearnedInput(LearningInput):
    step_text: str = ""
    selector_strategy: str = "unknown"
    selector_value: str = ""
    success: bool = True


@dataclass
class ComponentUsedInput(LearningInput):
    component_id: str = ""
    success: bool = True


@dataclass
class LessonAppliedInput(LearningInput):
    lesson_id: str = ""
    success: bool = True
    context: Optional[str] = None


@dataclass
class LearningResult:
    success: bool
    error: Optional[str] = None
    # confidence / success_rate / occurrences / total_uses
    metrics: Dict[str, Any] = field(default_factory=dict)
    entity_id: Optional[str] = None


def calculate_new_success_rate(current_rate: float, current_count: int, success: bool) -> float:
    successes = current_rate * current_count + (1 if success else 0)
    return round(successes / (current_count + 1), 2)


def find_matching_lesson(lessons: List[Lesson], selector_value: str, step_text: str) -> Optional[Lesson]:
    """
    Fuzzy fallback for pattern reports that carry no lesson id.

    First active lesson whose pattern contains the selector value, then the
    first whose trigger contains the step text. Empty inputs never match.
    """
    active = [l for l in lessons if not l.archived]

    if selector_value:
        for lesson in active:
            if selector_value in lesson.pattern:
                return lesson

    step = step_text.lower().strip()
    if step:
        for lesson in active:
            if step in lesson.trigger.lower():
                return lesson
    return None


def _apply_lesson_outcome(lesson: Lesson, journey_id: str, success: bool) -> Dict[str, Any]:
    metrics = lesson.metrics
    timestamp = now_iso()

    previous = metrics.occurrences
    metrics.occurrences = previous + 1
    metrics.last_applied = timestamp
    if success:
        metrics.last_success = timestamp
    metrics.success_rate = calculate_new_success_rate(metrics.success_rate, previous, success)
    metrics.confidence = calculate_confidence(lesson)
    metrics.confidence_history = update_confidence_history(lesson)

    if journey_id not in lesson.journey_ids:
        lesson.journey_ids.append(journey_id)

    return {
        "confidence": metrics.confidence,
        "success_rate": metrics.success_rate,
        "occurrences": metrics.occurrences,
    }


def _update_lesson(
    root: Path,
    journey_id: str,
    success: bool,
    lesson_id: Optional[str] = None,
    selector_value: str = "",
    step_text: str = "",
) -> LearningResult:
    """Locked update of lessons.json. Exact id when given, fuzzy match otherwise."""
    lessons_path = root / "lessons.json"
    if not lessons_path.exists():
        return LearningResult(success=False, error=f"Lesson not found: {lesson_id or selector_value or step_text}")
    outcome: Dict[str, Any] = {}

    def transform(data):
        data, _ = upgrade_document(data)
        document = LessonsFile.model_validate(data)
        if lesson_id is not None:
            lesson = next((l for l in document.lessons if l.id == lesson_id and not l.archived), None)
        else:
            lesson = find_matching_lesson(document.lessons, selector_value, step_text)

        if lesson is None:
            return data
        outcome["id"] = lesson.id
        outcome["metrics"] = _apply_lesson_outcome(lesson, journey_id, success)
        document.last_updated = now_iso()
        return document.to_json_dict()

    update = update_json_with_lock(lessons_path, transform)

    if not update.success:
        return LearningResult(success=False, error=update.error)
    if "id" not in outcome:
        missing = lesson_id if lesson_id is not None else (selector_value or step_text)
        return LearningResult(success=False, error=f"Lesson not found: {missing}")
    return LearningResult(success=True, metrics=outcome["metrics"], entity_id=outcome["id"])


def _after_success(root: Path, event: Dict[str, Any]) -> None:
    append_to_history(event, root)
    update_analytics(root)


# ==================== Recording ====================

def record_pattern_learned(data: PatternLearnedInput) -> LearningResult:
    root = resolve_llkb_root(data.llkb_root)
    result = _update_lesson(
        root,
        data.journey_id,
        data.success,
        selector_value=data.selector_value,
        step_text=data.step_text,
    )
    if result.success:
        _after_success(root, {
            "event": "lesson_applied",
            "journeyId": data.journey_id,
            "prompt": data.prompt,
            "lessonId": result.entity_id,
            "success": data.success,
            "context": data.step_text,
            "matchedBy": "fuzzy",
        })
    else:
        logger.warning(f"Pattern outcome not recorded: {result.error}")
    return result


def record_lesson_applied(data: LessonAppliedInput) -> LearningResult:
    root = resolve_llkb_root(data.llkb_root)
    result = _update_lesson(root, data.journey_id, data.success, lesson_id=data.lesson_id)
    if result.success:
        _after_success(root, {
            "event": "lesson_applied",
            "journeyId": data.journey_id,
            "prompt": data.prompt,
            "lessonId": data.lesson_id,
            "success": data.success,
            "context": data.context,
        })
    else:
        logger.warning(f"Lesson outcome not recorded: {result.error}")
    return result


def record_component_used(data: ComponentUsedInput) -> LearningResult:
    root = resolve_llkb_root(data.llkb_root)
    components_path = root / "components.json"
    if not components_path.exists():
        return LearningResult(success=False, error=f"Component not found: {data.component_id}")
    outcome: Dict[str, Any] = {}

    def transform(raw):
        raw, _ = upgrade_document(raw)
        document = ComponentsFile.model_validate(raw)
        component = next(
            (c for c in document.components if c.id == data.component_id and not c.archived),
            None,
        )
        if component is None:
            return raw

        metrics = component.metrics
        previous = metrics.total_uses
        metrics.total_uses = previous + 1
        metrics.last_used = now_iso()
        metrics.success_rate = calculate_new_success_rate(metrics.success_rate, previous, data.success)
        outcome["metrics"] = {"total_uses": metrics.total_uses, "success_rate": metrics.success_rate}

        document.last_updated = now_iso()
        return document.to_json_dict()

    update = update_json_with_lock(components_path, transform)

    if not update.success:
        return LearningResult(success=False, error=update.error)
    if "metrics" not in outcome:
        logger.warning(f"Component outcome not recorded: {data.component_id} not found")
        return LearningResult(success=False, error=f"Component not found: {data.component_id}")

    _after_success(root, {
        "event": "component_used",
        "journeyId": data.journey_id,
        "prompt": data.prompt,
        "componentId": data.component_id,
        "success": data.success,
    })
    return LearningResult(success=True, metrics=outcome["metrics"], entity_id=data.component_id)


def record_learning(
    kind,
    journey_id: str,
    success: bool,
    entity_id: Optional[str] = None,
    test_file: str = "unknown",
    prompt: str = "journey-verify",
    context: Optional[str] = None,
    step_text: Optional[str] = None,
    selector_strategy: Optional[str] = None,
    selector_value: Optional[str] = None,
    llkb_root=None,
) -> LearningResult:
    """
    Dispatch an outcome report.

    Args:
        kind: LearningKind or its value (pattern | component | lesson)
        journey_id: Journey the outcome was observed in
        success: Whether the lesson/component/pattern worked
        entity_id: Lesson or component id; required for lesson and component.
                   A pattern report with an id is treated as a lesson report.
        step_text / selector_*: Evidence for the fuzzy pattern match
    """
    try:
        kind = LearningKind(kind)
    except ValueError:
        return LearningResult(success=False, error=f"Unknown learning type: {kind}")

    root = str(llkb_root) if llkb_root is not None else None
    base = {"journey_id": journey_id, "test_file": test_file, "prompt": prompt, "llkb_root": root}

    if kind is LearningKind.COMPONENT:
        if not entity_id:
            return LearningResult(success=False, error="Component ID is required for component learning")
        return record_component_used(ComponentUsedInput(component_id=entity_id, success=success, **base))

    if kind is LearningKind.LESSON or entity_id:
        if not entity_id:
            return LearningResult(success=False, error="Lesson ID is required for lesson learning")
        return record_lesson_applied(
            LessonAppliedInput(lesson_id=entity_id, success=success, context=context or step_text, **base)
        )

    return record_pattern_learned(PatternLearnedInput(
        step_text=step_text or context or "",
        selector_strategy=selector_strategy or "unknown",
        selector_value=selector_value or "",
        success=success,
        **base,
    ))


def format_learning_result(result: LearningResult) -> str:
    if not result.success:
        lines = ["Learning recording failed"]
        if result.error:
            lines.append(f"  Error: {result.error}")
        return "\n".join(lines)

    lines = ["Learning recorded successfully"]
    if result.entity_id:
        lines.append(f"  Entity: {result.entity_id}")
    labels = [
        ("confidence", "Confidence"),
        ("success_rate", "Success Rate"),
        ("occurrences", "Occurrences"),
        ("total_uses", "Total Uses"),
    ]
    shown = [(label, result.metrics[key]) for key, label in labels if key in result.metrics]
    if shown:
        lines.append("  Updated metrics:")
        lines.extend(f"    - {label}: {value}" for label, value in shown)
    return "\n".join(lines)
