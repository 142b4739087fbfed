"""
Quality Controls for discovered patterns

Stages, always in this order:
1. Cross-source boost   - same text seen from 2+ sources gets +0.1
2. Deduplication        - merge by (normalized text, action)
3. Threshold filtering  - drop anything under the minimum confidence
4. Signal weighting     - raise to the strong/medium/weak tier floor (optional)
5. Staleness pruning    - drop tried-but-unused patterns (optional)

Boost runs before dedup so the source diversity is still visible; dedup then
carries the boosted confidence into the merged pattern.
"""

import logging
import time
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional, Tuple

from ..models import DiscoveredPattern, SelectorHint

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE_THRESHOLD = 0.7
DEFAULT_MAX_AGE_DAYS = 90
CROSS_SOURCE_BOOST = 0.1
MAX_CONFIDENCE = 0.95
SECONDS_PER_DAY = 24 * 60 * 60

SIGNAL_CONFIDENCES = {
    "strong": 0.85,
    "medium": 0.75,
    "weak": 0.60,
}


@dataclass
class PatternUsage:
    last_used: float  # epoch seconds
    use_count: int = 0


@dataclass
class UsageStats:
    pattern_usage: Dict[str, PatternUsage] = field(default_factory=dict)


@dataclass
class QualityControlResult:
    input_count: int = 0
    output_count: int = 0
    deduplicated: int = 0
    threshold_filtered: int = 0
    cross_source_boosted: int = 0
    signal_weighted: int = 0
    pruned: int = 0

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


# ==================== Deduplication ====================

def _dedup_key(pattern: DiscoveredPattern) -> str:
    # "::" separator is safe with CSS selectors in the text
    return f"{pattern.normalized_text.lower()}::{pattern.mapped_action}"


def merge_selector_hints(first: List[SelectorHint], second: List[SelectorHint]) -> List[SelectorHint]:
    """Union by (strategy, value); the higher-confidence hint wins a collision."""
    merged: Dict[str, SelectorHint] = {}
    for hint in list(first) + list(second):
        key = f"{hint.strategy}:{hint.value}"
        existing = merged.get(key)
        if existing is None or (
            hint.confidence is not None
            and (existing.confidence is None or hint.confidence > existing.confidence)
        ):
            merged[key] = hint
    return list(merged.values())


def deduplicate_patterns(patterns: List[DiscoveredPattern]) -> List[DiscoveredPattern]:
    """
    Merge patterns sharing (normalized text, action).

    The first occurrence keeps its id, template source and entity name;
    confidence is the max, counters are summed, journeys and hints unioned.
    """
    seen: Dict[str, DiscoveredPattern] = {}

    for pattern in patterns:
        key = _dedup_key(pattern)
        existing = seen.get(key)
        if existing is None:
            seen[key] = pattern.model_copy()
            continue

        journeys = list(dict.fromkeys(existing.source_journeys + pattern.source_journeys))
        seen[key] = existing.model_copy(update={
            "confidence": max(existing.confidence, pattern.confidence),
            "success_count": existing.success_count + pattern.success_count,
            "fail_count": existing.fail_count + pattern.fail_count,
            "source_journeys": journeys,
            "selector_hints": merge_selector_hints(existing.selector_hints, pattern.selector_hints),
        })

    return list(seen.values())


# ==================== Threshold ====================

def apply_confidence_threshold(
    patterns: List[DiscoveredPattern],
    threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
) -> List[DiscoveredPattern]:
    return [p for p in patterns if p.confidence >= threshold]


# ==================== Cross-source boost ====================

def count_distinct_sources(group: List[DiscoveredPattern]) -> int:
    template_sources = {p.template_source for p in group if p.template_source}
    entity_names = {p.entity_name for p in group if p.entity_name}
    journeys = {j for p in group for j in p.source_journeys}
    return max(len(template_sources), len(entity_names), len(journeys))


def boost_cross_source_patterns(patterns: List[DiscoveredPattern]) -> List[DiscoveredPattern]:
    """
    Boost every member of a normalized-text group with evidence from 2+ distinct
    sources. The boost stops at MAX_CONFIDENCE and never lowers a pattern that
    is already above it.
    """
    groups: Dict[str, List[DiscoveredPattern]] = {}
    for pattern in patterns:
        groups.setdefault(pattern.normalized_text, []).append(pattern)

    boosted: List[DiscoveredPattern] = []
    for group in groups.values():
        if len(group) > 1 and count_distinct_sources(group) >= 2:
            for pattern in group:
                raised = min(pattern.confidence + CROSS_SOURCE_BOOST, MAX_CONFIDENCE)
                boosted.append(pattern.model_copy(update={"confidence": max(pattern.confidence, raised)}))
        else:
            boosted.extend(p.model_copy() for p in group)
    return boosted


# ==================== Signal weighting ====================

def apply_signal_weighting(
    patterns: List[DiscoveredPattern],
    signal_strengths: Dict[str, str],
) -> List[DiscoveredPattern]:
    """
    Raise confidence to the tier floor of its signal strength, never lower it.
    Patterns without a tier are left as they are.
    """
    weighted = []
    for pattern in patterns:
        strength = signal_strengths.get(pattern.id)
        floor = SIGNAL_CONFIDENCES.get(strength) if strength else None
        if floor is None:
            weighted.append(pattern.model_copy())
            continue
        weighted.append(pattern.model_copy(update={
            "confidence": max(pattern.confidence, min(floor, MAX_CONFIDENCE)),
        }))
    return weighted


# ==================== Pruning ====================

def prune_unused_patterns(
    patterns: List[DiscoveredPattern],
    usage_stats: UsageStats,
    max_age_days: int = DEFAULT_MAX_AGE_DAYS,
    now: Optional[float] = None,
) -> List[DiscoveredPattern]:
    """
    Drop patterns that have been tried at least once but not used within
    max_age_days. Untried patterns and patterns without usage data stay.
    """
    now = time.time() if now is None else now
    max_age = max_age_days * SECONDS_PER_DAY

    kept = []
    for pattern in patterns:
        if pattern.success_count + pattern.fail_count == 0:
            kept.append(pattern)
            continue
        usage = usage_stats.pattern_usage.get(pattern.id)
        if usage is None or now - usage.last_used <= max_age:
            kept.append(pattern)
    return kept


# ==================== Combined ====================

def apply_all_quality_controls(
    patterns: List[DiscoveredPattern],
    threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
    signal_strengths: Optional[Dict[str, str]] = None,
    usage_stats: Optional[UsageStats] = None,
    max_age_days: int = DEFAULT_MAX_AGE_DAYS,
) -> Tuple[List[DiscoveredPattern], QualityControlResult]:
    result = QualityControlResult(input_count=len(patterns))

    before = {p.id: p.confidence for p in patterns}
    after_boost = boost_cross_source_patterns(patterns)
    result.cross_source_boosted = sum(
        1 for p in after_boost if p.id in before and p.confidence > before[p.id]
    )

    after_dedup = deduplicate_patterns(after_boost)
    result.deduplicated = len(after_boost) - len(after_dedup)

    after_threshold = apply_confidence_threshold(after_dedup, threshold)
    result.threshold_filtered = len(after_dedup) - len(after_threshold)

    after_weighting = after_threshold
    if signal_strengths:
        weighted_before = {p.id: p.confidence for p in after_threshold}
        after_weighting = apply_signal_weighting(after_threshold, signal_strengths)
        result.signal_weighted = sum(1 for p in after_weighting if p.confidence > weighted_before[p.id])

    output = after_weighting
    if usage_stats is not None:
        output = prune_unused_patterns(after_weighting, usage_stats, max_age_days)
        result.pruned = len(after_weighting) - len(output)

    result.output_count = len(output)
    logger.info(
        f"Quality controls: {result.input_count} -> {result.output_count} "
        f"(boosted {result.cross_source_boosted}, merged {result.deduplicated}, "
        f"below threshold {result.threshold_filtered}, pruned {result.pruned})"
    )
    return output, result
