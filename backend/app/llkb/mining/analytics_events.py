"""
Analytics Event Mining - tracked events as a passive pattern signal

Supports GA4/gtag, ReactGA, Mixpanel, Segment, Amplitude and ad-hoc
trackEvent/logEvent/sendEvent helpers.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from ..models import DiscoveredPattern, create_pattern
from .cache import MiningCache, ScannedFile, scan_all_source_directories
from .extractors import Extractor, bounded_finditer, field_name_to_label, run_extractors

logger = logging.getLogger(__name__)

ANALYTICS_PATTERN_CONFIDENCE = 0.70
PROPERTY_LOOKAHEAD_CHARS = 200

CUSTOM_EVENT_CALL_RE = re.compile(r"(?:trackEvent|logEvent|sendEvent)\s*\(")

ANALYTICS_PROVIDER_PATTERNS = {
    "ga4": re.compile(r"gtag\s*\(\s*['\"]event['\"]|ReactGA\.event\(|window\.gtag\("),
    "mixpanel": re.compile(r"mixpanel\.track\(|import.*mixpanel|from\s+['\"]mixpanel['\"]"),
    "segment": re.compile(r"analytics\.track\(|window\.analytics\.track\(|import.*@segment"),
    "amplitude": re.compile(r"amplitude\.logEvent\(|import.*@amplitude|Amplitude\.getInstance\(\)"),
    "custom": CUSTOM_EVENT_CALL_RE,
}

EVENT_PROPERTIES_RE = re.compile(r"\{\s*([^}]+)\s*\}")
PROPERTY_NAME_RE = re.compile(r"(\w+)\s*:")


@dataclass
class AnalyticsEvent:
    name: str
    provider: str
    source: str
    properties: List[str] = field(default_factory=list)


@dataclass
class AnalyticsMiningResult:
    provider: str = "unknown"
    events: List[AnalyticsEvent] = field(default_factory=list)


@dataclass
class _EventCollector:
    content: str = ""
    events: List[AnalyticsEvent] = field(default_factory=list)
    seen: Set[str] = field(default_factory=set)


def extract_event_properties(content: str, match_index: int) -> List[str]:
    """Property names of the first object literal within 200 chars of the call."""
    snippet = content[match_index:match_index + PROPERTY_LOOKAHEAD_CHARS]
    props_match = EVENT_PROPERTIES_RE.search(snippet)
    if not props_match:
        return []
    return [m.group(1) for m in bounded_finditer(PROPERTY_NAME_RE, props_match.group(1))]


def _event_handler(provider: str):
    def handler(match, source, collector: _EventCollector):
        name = match.group(1)
        if not name:
            return
        event_id = f"{name}:{source}"
        if event_id in collector.seen:
            return
        collector.seen.add(event_id)
        collector.events.append(AnalyticsEvent(
            name=name,
            provider=provider,
            source=source,
            properties=extract_event_properties(collector.content, match.start()),
        ))
    return handler


ANALYTICS_EVENT_EXTRACTORS: List[Extractor] = [
    Extractor("ga4Gtag", re.compile(r"gtag\s*\(\s*['\"]event['\"]\s*,\s*['\"]([^'\"]+)['\"]"), _event_handler("ga4")),
    Extractor("reactGa", re.compile(r"ReactGA\.event\s*\(\s*\{[^}]*action\s*:\s*['\"]([^'\"]+)['\"]"), _event_handler("ga4")),
    Extractor("mixpanel", re.compile(r"mixpanel\.track\s*\(\s*['\"]([^'\"]+)['\"]"), _event_handler("mixpanel")),
    Extractor("segment", re.compile(r"analytics\.track\s*\(\s*['\"]([^'\"]+)['\"]"), _event_handler("segment")),
    Extractor("amplitude", re.compile(r"amplitude\.logEvent\s*\(\s*['\"]([^'\"]+)['\"]"), _event_handler("amplitude")),
    Extractor("custom", re.compile(r"(?:trackEvent|logEvent|sendEvent)\s*\(\s*['\"]([^'\"]+)['\"]"), _event_handler("custom")),
]


def detect_analytics_provider(files: List[ScannedFile]) -> str:
    scores: Dict[str, int] = {name: 0 for name in ANALYTICS_PROVIDER_PATTERNS}
    for scanned in files:
        for name, pattern in ANALYTICS_PROVIDER_PATTERNS.items():
            if pattern.search(scanned.content):
                scores[name] += 1

    best, best_score = "unknown", 0
    for name, score in scores.items():
        if score > best_score:
            best, best_score = name, score
    return best


def extract_analytics_events(files: List[ScannedFile]) -> List[AnalyticsEvent]:
    events: List[AnalyticsEvent] = []
    seen: Set[str] = set()
    for scanned in files:
        collector = _EventCollector(content=scanned.content, events=events, seen=seen)
        run_extractors(ANALYTICS_EVENT_EXTRACTORS, scanned.content, scanned.path, collector)
    return events


def mine_analytics_events_sync(project_root, cache: MiningCache) -> AnalyticsMiningResult:
    files = scan_all_source_directories(project_root, cache)
    result = AnalyticsMiningResult(
        provider=detect_analytics_provider(files),
        events=extract_analytics_events(files),
    )
    logger.debug(f"analytics: {len(result.events)} events ({result.provider})")
    return result


async def mine_analytics_events(project_root, cache: Optional[MiningCache] = None) -> AnalyticsMiningResult:
    owns_cache = cache is None
    cache = cache or MiningCache()
    try:
        return await asyncio.to_thread(mine_analytics_events_sync, project_root, cache)
    finally:
        if owns_cache:
            cache.clear()


def generate_analytics_patterns(result: AnalyticsMiningResult) -> List[DiscoveredPattern]:
    patterns: List[DiscoveredPattern] = []
    seen: Set[str] = set()

    for event in result.events:
        label = field_name_to_label(event.name)
        for text, action, category in (
            (f"verify {label} tracked", "assert", "assertion"),
            (f"trigger {label} event", "click", "ui-interaction"),
        ):
            dedup_key = f"{text}:{action}"
            if dedup_key in seen:
                continue
            seen.add(dedup_key)
            patterns.append(create_pattern(
                text,
                action,
                ANALYTICS_PATTERN_CONFIDENCE,
                category=category,
                template_source="static",
            ))

    return patterns
