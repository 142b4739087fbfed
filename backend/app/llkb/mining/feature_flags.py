"""
Feature Flag Mining - flag checks as a passive pattern signal

Supports LaunchDarkly, Split, Flagsmith, Unleash, ad-hoc featureFlags
helpers and FEATURE_* environment variables.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from ..models import DiscoveredPattern, create_pattern
from .cache import MiningCache, ScannedFile, scan_all_source_directories
from .extractors import Extractor, field_name_to_label, run_extractors

logger = logging.getLogger(__name__)

FEATURE_FLAG_PATTERN_CONFIDENCE = 0.70

FEATURE_FLAG_PROVIDER_PATTERNS = {
    "launchdarkly": re.compile(
        r"useFlags\s*\(|ldClient\.variation\(|useLDClient\(|import.*launchdarkly|from\s+['\"]launchdarkly['\"]"
    ),
    "split": re.compile(r"splitClient\.getTreatment\(|import.*@splitsoftware|from\s+['\"]@splitsoftware['\"]"),
    "flagsmith": re.compile(
        r"flagsmith\.hasFeature\(|flagsmith\.getValue\(|import.*flagsmith|from\s+['\"]flagsmith['\"]"
    ),
    "unleash": re.compile(r"useFlag\s*\(|unleash\.isEnabled\(|import.*unleash-proxy|from\s+['\"]unleash-proxy['\"]"),
    "custom": re.compile(r"(?:featureFlags|isFeatureEnabled)\s*[.(]"),
}


@dataclass
class FeatureFlag:
    name: str
    provider: str
    source: str
    default_value: Optional[bool] = None


@dataclass
class FeatureFlagMiningResult:
    provider: str = "unknown"
    flags: List[FeatureFlag] = field(default_factory=list)


@dataclass
class _FlagCollector:
    flags: List[FeatureFlag] = field(default_factory=list)
    seen: Set[str] = field(default_factory=set)


def _flag_handler(provider: str, reads_default: bool = False):
    def handler(match, source, collector: _FlagCollector):
        name = match.group(1)
        if not name:
            return
        flag_id = f"{name}:{source}"
        if flag_id in collector.seen:
            return
        collector.seen.add(flag_id)

        default_value = None
        if reads_default and match.group(2) is not None:
            default_value = match.group(2) == "true"
        collector.flags.append(FeatureFlag(name=name, provider=provider, source=source, default_value=default_value))
    return handler


FEATURE_FLAG_EXTRACTORS: List[Extractor] = [
    Extractor(
        "launchDarklyVariation",
        re.compile(r"ldClient\??\.variation\s*\(\s*['\"]([^'\"]+)['\"]\s*(?:,\s*(true|false))?\)"),
        _flag_handler("launchdarkly", reads_default=True),
    ),
    Extractor("launchDarklyUseFlags", re.compile(r"flags\[['\"]([^'\"]+)['\"]\]"), _flag_handler("launchdarkly")),
    Extractor("split", re.compile(r"getTreatment\s*\(\s*['\"]([^'\"]+)['\"]"), _flag_handler("split")),
    Extractor("flagsmith", re.compile(r"(?:hasFeature|getValue)\s*\(\s*['\"]([^'\"]+)['\"]"), _flag_handler("flagsmith")),
    Extractor("unleash", re.compile(r"(?:useFlag|isEnabled)\s*\(\s*['\"]([^'\"]+)['\"]"), _flag_handler("unleash")),
    Extractor(
        "custom",
        re.compile(r"(?:featureFlags|features)\.(?:isEnabled|enabled|has)\s*\(\s*['\"]([^'\"]+)['\"]"),
        _flag_handler("custom"),
    ),
    Extractor("customFunction", re.compile(r"isFeatureEnabled\s*\(\s*['\"]([^'\"]+)['\"]"), _flag_handler("custom")),
    Extractor("envVar", re.compile(r"(?:process\.env|import\.meta\.env)\.FEATURE_(\w+)"), _flag_handler("custom")),
]


def detect_feature_flag_provider(files: List[ScannedFile]) -> str:
    scores: Dict[str, int] = {name: 0 for name in FEATURE_FLAG_PROVIDER_PATTERNS}
    for scanned in files:
        for name, pattern in FEATURE_FLAG_PROVIDER_PATTERNS.items():
            if pattern.search(scanned.content):
                scores[name] += 1

    best, best_score = "unknown", 0
    for name, score in scores.items():
        if score > best_score:
            best, best_score = name, score
    return best


def extract_feature_flags(files: List[ScannedFile]) -> List[FeatureFlag]:
    collector = _FlagCollector()
    for scanned in files:
        run_extractors(FEATURE_FLAG_EXTRACTORS, scanned.content, scanned.path, collector)
    return collector.flags


def mine_feature_flags_sync(project_root, cache: MiningCache) -> FeatureFlagMiningResult:
    files = scan_all_source_directories(project_root, cache)
    result = FeatureFlagMiningResult(
        provider=detect_feature_flag_provider(files),
        flags=extract_feature_flags(files),
    )
    logger.debug(f"feature flags: {len(result.flags)} flags ({result.provider})")
    return result


async def mine_feature_flags(project_root, cache: Optional[MiningCache] = None) -> FeatureFlagMiningResult:
    owns_cache = cache is None
    cache = cache or MiningCache()
    try:
        return await asyncio.to_thread(mine_feature_flags_sync, project_root, cache)
    finally:
        if owns_cache:
            cache.clear()


def generate_feature_flag_patterns(result: FeatureFlagMiningResult) -> List[DiscoveredPattern]:
    patterns: List[DiscoveredPattern] = []
    seen: Set[str] = set()

    for flag in result.flags:
        label = field_name_to_label(flag.name)
        for text, action, category in (
            (f"ensure {label} visible", "assert", "assertion"),
            (f"verify {label} enabled", "assert", "assertion"),
            (f"test with {label} disabled", "navigate", "navigation"),
        ):
            dedup_key = f"{text}:{action}"
            if dedup_key in seen:
                continue
            seen.add(dedup_key)
            patterns.append(create_pattern(
                text,
                action,
                FEATURE_FLAG_PATTERN_CONFIDENCE,
                category=category,
                template_source="static",
            ))

    return patterns
