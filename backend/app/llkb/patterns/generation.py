"""
Discovery Pattern Generation

Seeds patterns straight from the app profile (auth, navigation and
UI-library interactions), and reads/writes discovered-patterns.json.
"""

import logging
import re
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError

from ..file_utils import ensure_dir, load_json, save_json_atomic
from ..models import (
    AuthHints,
    DiscoveredPattern,
    DiscoveredPatternsFile,
    DiscoveredProfile,
    LearnedPattern,
    PatternsMetadata,
    SelectorHint,
    SelectorSignals,
    create_pattern,
    now_iso,
)

logger = logging.getLogger(__name__)

PATTERNS_FILENAME = "discovered-patterns.json"

HIGH_CONFIDENCE_AUTH = 0.85
MEDIUM_CONFIDENCE_AUTH = 0.70
NAVIGATION_PATTERN_CONFIDENCE = 0.70
FRAMEWORK_PATTERN_CONFIDENCE = 0.60
MAX_UI_PATTERN_CONFIDENCE = 0.75


# (text, primitive, auth selector key)
AUTH_PATTERN_TEMPLATES = [
    ("click login button", "click", "submitButton"),
    ("click sign in button", "click", "submitButton"),
    ("enter username", "fill", "usernameField"),
    ("enter email", "fill", "usernameField"),
    ("enter password", "fill", "passwordField"),
    ("submit login form", "click", "submitButton"),
    ("click logout button", "click", None),
    ("click sign out button", "click", None),
    ("verify logged in", "assert", None),
    ("verify logged out", "assert", None),
]

NAVIGATION_PATTERN_TEMPLATES = [
    ("navigate to {route}", "navigate"),
    ("go to {route}", "navigate"),
    ("open {route} page", "navigate"),
    ("click {item} in navigation", "click"),
    ("click {item} in sidebar", "click"),
    ("click {item} in menu", "click"),
    ("return to home", "navigate"),
    ("go back", "navigate"),
]

# (text, primitive, component)
UI_LIBRARY_PATTERNS: Dict[str, List[tuple]] = {
    "mui": [
        ("click MUI button", "click", "Button"),
        ("open MUI dialog", "click", "Dialog"),
        ("close MUI dialog", "click", "Dialog"),
        ("select MUI option", "click", "Select"),
        ("fill MUI text field", "fill", "TextField"),
        ("open MUI menu", "click", "Menu"),
        ("click MUI tab", "click", "Tabs"),
        ("toggle MUI switch", "click", "Switch"),
        ("check MUI checkbox", "check", "Checkbox"),
        ("dismiss MUI snackbar", "click", "Snackbar"),
    ],
    "antd": [
        ("click Ant button", "click", "Button"),
        ("open Ant modal", "click", "Modal"),
        ("close Ant modal", "click", "Modal"),
        ("select Ant option", "click", "Select"),
        ("fill Ant input", "fill", "Input"),
        ("click Ant table row", "click", "Table"),
        ("sort Ant table column", "click", "Table"),
        ("dismiss Ant message", "click", "Message"),
    ],
    "chakra": [
        ("click Chakra button", "click", "Button"),
        ("open Chakra modal", "click", "Modal"),
        ("close Chakra modal", "click", "Modal"),
        ("fill Chakra input", "fill", "Input"),
        ("dismiss Chakra toast", "click", "Toast"),
    ],
    "ag-grid": [
        ("click AG Grid row", "click", "agGrid"),
        ("select AG Grid row", "click", "agGrid"),
        ("sort AG Grid column", "click", "agGrid"),
        ("filter AG Grid column", "fill", "agGrid"),
        ("expand AG Grid row", "click", "agGrid"),
        ("collapse AG Grid row", "click", "agGrid"),
        ("edit AG Grid cell", "fill", "agGrid"),
        ("clear AG Grid filter", "click", "agGrid"),
    ],
}


def component_to_kebab(component: str) -> str:
    return re.sub(r"([A-Z])", r"-\1", component).lower().lstrip("-")


def generate_auth_patterns(auth: AuthHints, signals: SelectorSignals) -> List[DiscoveredPattern]:
    patterns = []
    for text, primitive, selector_key in AUTH_PATTERN_TEMPLATES:
        selector_value = auth.selectors.get(selector_key) if selector_key else None
        hints = []
        if selector_value:
            hints.append(SelectorHint(
                strategy=signals.primary_attribute,
                value=selector_value,
                confidence=HIGH_CONFIDENCE_AUTH,
            ))
        patterns.append(create_pattern(
            text,
            primitive,
            HIGH_CONFIDENCE_AUTH if selector_value else MEDIUM_CONFIDENCE_AUTH,
            category="auth",
            template_source="auth",
            selector_hints=hints,
        ))
    return patterns


def generate_profile_navigation_patterns() -> List[DiscoveredPattern]:
    return [
        create_pattern(text, primitive, NAVIGATION_PATTERN_CONFIDENCE, category="navigation", template_source="navigation")
        for text, primitive in NAVIGATION_PATTERN_TEMPLATES
    ]


def generate_ui_library_patterns(
    library: str,
    signals: SelectorSignals,
    library_confidence: float,
) -> List[DiscoveredPattern]:
    patterns = []
    for text, primitive, component in UI_LIBRARY_PATTERNS.get(library, []):
        hints = [SelectorHint(
            strategy=signals.primary_attribute,
            value=component_to_kebab(component),
            confidence=FRAMEWORK_PATTERN_CONFIDENCE,
        )]
        patterns.append(create_pattern(
            text,
            primitive,
            min(library_confidence, MAX_UI_PATTERN_CONFIDENCE),
            category="ui-interaction",
            selector_hints=hints,
            layer="framework",
        ))
    return patterns


def generate_patterns(profile: DiscoveredProfile, signals: Optional[SelectorSignals] = None) -> List[DiscoveredPattern]:
    """Discovery-derived patterns: auth (if detected), navigation, and known UI libraries."""
    signals = signals or profile.selector_signals
    patterns: List[DiscoveredPattern] = []

    if profile.auth.detected:
        patterns.extend(generate_auth_patterns(profile.auth, signals))

    patterns.extend(generate_profile_navigation_patterns())

    for library in profile.ui_libraries:
        if library.name in UI_LIBRARY_PATTERNS:
            patterns.extend(generate_ui_library_patterns(library.name, signals, library.confidence))

    return patterns


# ==================== Merge with learned patterns ====================

def _learned_from(pattern: DiscoveredPattern) -> LearnedPattern:
    return LearnedPattern(
        normalized_text=pattern.normalized_text,
        original_text=pattern.original_text,
        ir_primitive=pattern.mapped_action,
        confidence=pattern.confidence,
        success_count=pattern.success_count,
        fail_count=pattern.fail_count,
        source_journeys=list(pattern.source_journeys),
        last_updated=now_iso(),
    )


def merge_discovered_patterns(
    existing: List[LearnedPattern],
    discovered: List[DiscoveredPattern],
) -> List[LearnedPattern]:
    """
    Non-destructive merge: the input list is not modified. New (text, action)
    pairs are appended; an existing pair is replaced only when the discovered
    pattern has strictly higher confidence.
    """
    merged = list(existing)
    index: Dict[str, int] = {}
    for i, learned in enumerate(merged):
        index.setdefault(f"{learned.normalized_text.lower()}:{learned.ir_primitive}", i)

    for pattern in discovered:
        key = f"{pattern.normalized_text.lower()}:{pattern.mapped_action}"
        position = index.get(key)
        if position is None:
            index[key] = len(merged)
            merged.append(_learned_from(pattern))
        elif pattern.confidence > merged[position].confidence:
            merged[position] = _learned_from(pattern)

    return merged


# ==================== Persistence ====================

def create_discovered_patterns_file(
    patterns: List[DiscoveredPattern],
    profile: DiscoveredProfile,
    duration_ms: Optional[int] = None,
) -> DiscoveredPatternsFile:
    by_category: Dict[str, int] = {}
    by_template: Dict[str, int] = {}
    for pattern in patterns:
        if pattern.category:
            by_category[pattern.category] = by_category.get(pattern.category, 0) + 1
        if pattern.template_source:
            by_template[pattern.template_source] = by_template.get(pattern.template_source, 0) + 1

    average = sum(p.confidence for p in patterns) / len(patterns) if patterns else 0.0

    return DiscoveredPatternsFile(
        version="1.0",
        generated_at=now_iso(),
        source="discover-foundation:F12",
        patterns=patterns,
        metadata=PatternsMetadata(
            frameworks=[f.name for f in profile.frameworks],
            ui_libraries=[u.name for u in profile.ui_libraries],
            total_patterns=len(patterns),
            by_category=by_category,
            by_template=by_template,
            average_confidence=round(average, 2),
            discovery_duration=duration_ms,
        ),
    )


def save_discovered_patterns(patterns_file: DiscoveredPatternsFile, output_dir) -> None:
    ensure_dir(output_dir)
    result = save_json_atomic(Path(output_dir) / PATTERNS_FILENAME, patterns_file.to_json_dict())
    if not result.success:
        raise OSError(result.error)


def load_discovered_patterns(llkb_dir) -> Optional[DiscoveredPatternsFile]:
    patterns_path = Path(llkb_dir) / PATTERNS_FILENAME
    try:
        data = load_json(patterns_path)
    except (OSError, ValueError) as e:
        logger.warning(f"Failed to load discovered patterns from {patterns_path}: {e}")
        return None
    if data is None:
        return None

    if (
        not isinstance(data, dict)
        or not isinstance(data.get("patterns"), list)
        or not isinstance(data.get("version"), str)
    ):
        logger.warning(f"Invalid discovered patterns shape in {patterns_path}")
        return None

    try:
        return DiscoveredPatternsFile.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Invalid discovered patterns in {patterns_path}: {e}")
        return None
