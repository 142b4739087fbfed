"""
Export bundle for downstream test generators

Turns high-confidence lessons and components into:

- autogen-llkb.config.yml (or .json): additional step patterns, selector
  overrides, timing hints and module mappings
- llkb-glossary.json: phrase -> structured action entries

Only non-archived items at or above min_confidence are exported.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .config import llkb_exists, load_llkb_config, resolve_llkb_root
from .loaders import ComponentFilter, LessonFilter, load_components, load_lessons
from .models import CURRENT_VERSION, Component, Lesson, now_iso

logger = logging.getLogger(__name__)

DEFAULT_MIN_CONFIDENCE = 0.7
# Lessons below this never become patterns, whatever min_confidence says
PATTERN_CONFIDENCE_FLOOR = 0.5

CONFIG_YAML_FILENAME = "autogen-llkb.config.yml"
CONFIG_JSON_FILENAME = "autogen-llkb.config.json"
GLOSSARY_FILENAME = "llkb-glossary.json"

ANIMATION_WAIT_MS = 300
LOAD_WAIT_MS = 1000
NETWORK_WAIT_MS = 2000

PATTERN_CATEGORIES = ("selector", "timing", "navigation", "ui-interaction")
GLOSSARY_CATEGORIES = ("navigation", "ui-interaction", "assertion")
ARTICLES = ("the", "a", "an")

PRIMITIVE_BY_CATEGORY = {
    "navigation": "navigate",
    "timing": "wait",
    "assertion": "assert",
    "selector": "click",
    "ui-interaction": "click",
}

MODULE_BY_CATEGORY = {
    "selector": "selectors",
    "timing": "timing",
    "auth": "auth",
    "data": "data",
    "assertion": "assertions",
    "navigation": "navigation",
    "ui-interaction": "ui",
}

TESTID_RE = re.compile(r"data-testid[=:]\s*[\"']?([^\"'\s]+)[\"']?", re.I)
ROLE_RE = re.compile(r"role[=:]\s*[\"']?([^\"'\s]+)[\"']?", re.I)
ARIA_LABEL_RE = re.compile(r"aria-label[=:]\s*[\"']?([^\"'\s]+)[\"']?", re.I)

WAIT_MS_RES = [
    re.compile(r"wait\s*(?:for\s*)?\s*(\d+)\s*(?:ms|milliseconds?)?", re.I),
    re.compile(r"timeout\s*(?:of\s*)?\s*(\d+)\s*(?:ms|milliseconds?)?", re.I),
    re.compile(r"delay\s*(?:of\s*)?\s*(\d+)\s*(?:ms|milliseconds?)?", re.I),
]

CAMEL_BOUNDARY_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


@dataclass
class ExportStats:
    patterns_exported: int = 0
    selectors_exported: int = 0
    timing_hints_exported: int = 0
    modules_exported: int = 0
    glossary_entries_exported: int = 0
    lessons_skipped: int = 0
    components_skipped: int = 0


@dataclass
class ExportResult:
    config_path: Optional[Path] = None
    glossary_path: Optional[Path] = None
    stats: ExportStats = field(default_factory=ExportStats)
    warnings: List[str] = field(default_factory=list)
    exported_at: str = field(default_factory=now_iso)

    @property
    def success(self) -> bool:
        return self.config_path is not None or self.glossary_path is not None


@dataclass
class GlossaryEntry:
    phrase: str
    primitive: Dict[str, Any]
    source_id: str
    confidence: float


# ==================== Transforms ====================

def category_to_primitive_type(category: str) -> str:
    return PRIMITIVE_BY_CATEGORY.get(category, "callModule")


def infer_module_from_category(category: str) -> str:
    return MODULE_BY_CATEGORY.get(category, "helpers")


def trigger_to_regex(trigger: str) -> Optional[str]:
    """
    Case-insensitive regex for a lesson trigger. Words are escaped, runs of
    whitespace become \\s+ and leading articles are optional, so
    "click the Save button" also matches "click save button".
    """
    words = trigger.split()
    if not words:
        return None

    parts = []
    for i, word in enumerate(words):
        last = i == len(words) - 1
        if word.lower() in ARTICLES and not last:
            parts.append(f"(?:{re.escape(word)}\\s+)?")
        else:
            parts.append(re.escape(word) + ("" if last else "\\s+"))
    return "(?i)" + "".join(parts)


def _split_camel(name: str) -> str:
    return CAMEL_BOUNDARY_RE.sub(" ", name).lower().strip()


def component_name_to_trigger(name: str) -> str:
    words = []
    for word in _split_camel(name).split():
        words.append("(?:ag-?)?grid" if word in ("ag", "aggrid") else re.escape(word))
    return "(?:" + "\\s+".join(words) + ")"


def generate_name_variations(name: str) -> List[str]:
    words = " ".join(_split_camel(name).split())
    variations = [words, f"the {words}"]
    if "grid" in words:
        variations.append(words.replace("grid", "ag-grid"))
        variations.append(words.replace("grid", "ag grid"))
    if "wait for" in words:
        target = words.replace("wait for ", "").replace(" to load", "")
        variations.append(f"{target} loads")
        variations.append(f"{target} is loaded")
    return list(dict.fromkeys(variations))


def _lesson_source(lesson: Lesson) -> Dict[str, Any]:
    return {
        "lessonId": lesson.id,
        "confidence": lesson.metrics.confidence,
        "occurrences": lesson.metrics.occurrences,
    }


def lesson_to_pattern(lesson: Lesson) -> Optional[Dict[str, Any]]:
    if lesson.category not in PATTERN_CATEGORIES:
        return None
    if lesson.metrics.confidence < PATTERN_CONFIDENCE_FLOOR:
        return None
    regex = trigger_to_regex(lesson.trigger)
    if regex is None:
        return None
    return {
        "name": f"llkb-{lesson.id.lower()}",
        "regex": regex,
        "primitiveType": category_to_primitive_type(lesson.category),
        "source": _lesson_source(lesson),
    }


def lesson_to_selector_override(lesson: Lesson) -> Optional[Dict[str, Any]]:
    if lesson.category != "selector":
        return None

    for strategy, pattern in (("testid", TESTID_RE), ("role", ROLE_RE), ("label", ARIA_LABEL_RE)):
        match = pattern.search(lesson.pattern)
        if match:
            return {
                "pattern": lesson.trigger,
                "override": {"strategy": strategy, "value": match.group(1)},
                "source": _lesson_source(lesson),
            }
    return None


def lesson_to_timing_hint(lesson: Lesson) -> Optional[Dict[str, Any]]:
    if lesson.category != "timing":
        return None

    wait_ms = 0
    for pattern in WAIT_MS_RES:
        match = pattern.search(lesson.pattern)
        if match:
            wait_ms = int(match.group(1))
            break

    if wait_ms == 0:
        lowered = lesson.pattern.lower()
        if "animation" in lowered:
            wait_ms = ANIMATION_WAIT_MS
        elif "load" in lowered:
            wait_ms = LOAD_WAIT_MS
        elif "network" in lowered:
            wait_ms = NETWORK_WAIT_MS
        else:
            return None

    return {"trigger": lesson.trigger, "waitMs": wait_ms, "source": _lesson_source(lesson)}


def component_to_module(component: Component) -> Dict[str, Any]:
    return {
        "name": component.name,
        "trigger": component_name_to_trigger(component.name),
        "componentId": component.id,
        "importPath": component.file_path,
        "confidence": component.metrics.success_rate,
    }


def component_to_glossary_entries(component: Component) -> List[GlossaryEntry]:
    primitive = {
        "type": "callModule",
        "module": infer_module_from_category(component.category),
        "method": component.name,
    }
    return [
        GlossaryEntry(phrase, primitive, component.id, component.metrics.success_rate)
        for phrase in generate_name_variations(component.name)
    ]


def lesson_to_glossary_entries(lesson: Lesson) -> List[GlossaryEntry]:
    if lesson.category not in GLOSSARY_CATEGORIES:
        return []
    phrase = lesson.trigger.lower().strip()
    if not phrase:
        return []
    primitive = {"type": category_to_primitive_type(lesson.category)}
    return [GlossaryEntry(phrase, primitive, lesson.id, lesson.metrics.confidence)]


# ==================== Writers ====================

CONFIG_HEADER = (
    "# Generated by LLKB Adapter - DO NOT EDIT MANUALLY\n"
    "# Regenerate by exporting the LLKB for autogen\n\n"
)


def generate_yaml(config: Dict[str, Any]) -> str:
    return CONFIG_HEADER + yaml.safe_dump(config, sort_keys=False, default_flow_style=False, allow_unicode=True)


def generate_glossary(entries: List[GlossaryEntry], meta: Dict[str, Any]) -> Dict[str, Any]:
    """Glossary document: entries grouped by source, phrase order preserved."""
    by_source: Dict[str, List[GlossaryEntry]] = {}
    for entry in entries:
        by_source.setdefault(entry.source_id, []).append(entry)

    return {
        "meta": meta,
        "sources": [
            {
                "sourceId": source_id,
                "confidence": round(group[0].confidence, 2),
                "entries": [{"phrase": e.phrase, "primitive": e.primitive} for e in group],
            }
            for source_id, group in by_source.items()
        ],
    }


# ==================== Export ====================

def export_for_autogen(
    output_dir,
    llkb_root=None,
    min_confidence: float = DEFAULT_MIN_CONFIDENCE,
    include_categories: Optional[List[str]] = None,
    include_scopes: Optional[List[str]] = None,
    generate_glossary_file: bool = True,
    generate_config: bool = True,
    config_format: str = "yaml",
) -> ExportResult:
    """
    Write the export bundle into output_dir.

    Args:
        output_dir: Destination directory (created when missing)
        llkb_root: Store root, default resolved from LLKB_ROOT
        min_confidence: Lesson confidence / component success-rate floor
        config_format: yaml | json
    """
    root = resolve_llkb_root(llkb_root)
    result = ExportResult()

    if not llkb_exists(root):
        result.warnings.append(f"LLKB not found at {root}. Run discovery first.")
        return result
    if not load_llkb_config(root).enabled:
        result.warnings.append("LLKB is disabled in config.yml. Enable it to export.")
        return result

    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)

    lessons = load_lessons(root, LessonFilter(
        category=include_categories, scope=include_scopes, min_confidence=min_confidence,
    ))
    components = load_components(root, ComponentFilter(
        category=include_categories, scope=include_scopes, min_confidence=min_confidence,
    ))
    stats = result.stats
    stats.lessons_skipped = len(load_lessons(root)) - len(lessons)
    stats.components_skipped = len(load_components(root)) - len(components)

    patterns, selector_overrides, timing_hints = [], [], []
    for lesson in lessons:
        for transform, bucket in (
            (lesson_to_pattern, patterns),
            (lesson_to_selector_override, selector_overrides),
            (lesson_to_timing_hint, timing_hints),
        ):
            item = transform(lesson)
            if item is not None:
                bucket.append(item)

    modules = [component_to_module(c) for c in components]

    glossary_entries: List[GlossaryEntry] = []
    source_lessons: List[str] = []
    if generate_glossary_file:
        for component in components:
            glossary_entries.extend(component_to_glossary_entries(component))
        for lesson in lessons:
            entries = lesson_to_glossary_entries(lesson)
            if entries:
                glossary_entries.extend(entries)
                source_lessons.append(lesson.id)

    stats.patterns_exported = len(patterns)
    stats.selectors_exported = len(selector_overrides)
    stats.timing_hints_exported = len(timing_hints)
    stats.modules_exported = len(modules)
    stats.glossary_entries_exported = len(glossary_entries)

    if generate_config:
        autogen_config = {
            "version": 1,
            "exportedAt": result.exported_at,
            "llkbVersion": CURRENT_VERSION,
            "minConfidence": min_confidence,
            "additionalPatterns": patterns,
            "selectorOverrides": selector_overrides,
            "timingHints": timing_hints,
            "modules": modules,
        }
        if config_format == "yaml":
            result.config_path = out / CONFIG_YAML_FILENAME
            result.config_path.write_text(generate_yaml(autogen_config), encoding="utf-8")
        else:
            result.config_path = out / CONFIG_JSON_FILENAME
            result.config_path.write_text(json.dumps(autogen_config, indent=2), encoding="utf-8")

    if glossary_entries:
        meta = {
            "exportedAt": result.exported_at,
            "minConfidence": min_confidence,
            "entryCount": len(glossary_entries),
            "sourceComponents": list(dict.fromkeys(c.id for c in components)),
            "sourceLessons": list(dict.fromkeys(source_lessons)),
        }
        result.glossary_path = out / GLOSSARY_FILENAME
        result.glossary_path.write_text(
            json.dumps(generate_glossary(glossary_entries, meta), indent=2),
            encoding="utf-8",
        )

    if stats.patterns_exported == 0 and stats.modules_exported == 0:
        result.warnings.append("No patterns or modules were exported. Consider lowering minConfidence.")

    logger.info(
        f"Exported {stats.patterns_exported} patterns, {stats.modules_exported} modules, "
        f"{stats.glossary_entries_exported} glossary entries"
    )
    return result


def format_export_result(result: ExportResult) -> str:
    stats = result.stats
    lines = [
        "LLKB Export for AutoGen",
        "========================",
        f"Exported patterns: {stats.patterns_exported}",
        f"Exported selector overrides: {stats.selectors_exported}",
        f"Exported timing hints: {stats.timing_hints_exported}",
        f"Exported modules: {stats.modules_exported}",
        f"Generated glossary entries: {stats.glossary_entries_exported}",
        "",
    ]
    if stats.lessons_skipped > 0 or stats.components_skipped > 0:
        lines += [
            "Skipped (low confidence):",
            f"  Lessons: {stats.lessons_skipped}",
            f"  Components: {stats.components_skipped}",
            "",
        ]

    lines.append("Output files:")
    for path in (result.config_path, result.glossary_path):
        if path:
            lines.append(f"  - {path}")

    if result.warnings:
        lines += ["", "Warnings:"]
        lines += [f"  ! {w}" for w in result.warnings]

    lines += ["", f"Export completed at: {result.exported_at}"]
    return "\n".join(lines)
