"""
i18n Mining - translation keys as a passive pattern signal

Each translation key found in source becomes "verify {Label} text" and
"verify {Label} is visible" assertions, with the key's default value (or
the key itself) as a text selector hint.
"""

import asyncio
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from ..models import DiscoveredPattern, SelectorHint, create_pattern
from .cache import MiningCache, ScannedFile, scan_all_source_directories
from .extractors import Extractor, field_name_to_label, first_group, run_extractors

logger = logging.getLogger(__name__)

I18N_PATTERN_CONFIDENCE = 0.75
LOCALE_DIRECTORIES = ["locales", "i18n", "translations", "lang", "public/locales"]
LOCALE_MAX_DEPTH = 5

I18N_LIBRARY_PATTERNS = {
    "react-i18next": re.compile(r"(?:import|from)\s+['\"]react-i18next['\"]|useTranslation\("),
    "angular-translate": re.compile(r"\$translate\.get\(|translate\s+filter|\|\s*translate"),
    "vue-i18n": re.compile(r"(?:import|from)\s+['\"]vue-i18n['\"]|createI18n\(|\$t\("),
    "next-intl": re.compile(r"(?:import|from)\s+['\"]next-intl['\"]|useTranslations\("),
}


@dataclass
class I18nKey:
    key: str
    source: str
    namespace: Optional[str] = None
    default_value: Optional[str] = None


@dataclass
class I18nMiningResult:
    library: str = "unknown"
    keys: List[I18nKey] = field(default_factory=list)
    locale_files: List[str] = field(default_factory=list)


@dataclass
class _KeyCollector:
    keys: List[I18nKey] = field(default_factory=list)
    seen: Set[str] = field(default_factory=set)


def _collect_key(raw_key: Optional[str], source: str, collector: _KeyCollector, default_value: Optional[str] = None) -> None:
    if not raw_key:
        return
    key_id = f"{raw_key}:{source}"
    if key_id in collector.seen:
        return
    collector.seen.add(key_id)

    namespace = None
    clean_key = raw_key
    if ":" in raw_key:
        parts = raw_key.split(":")
        if len(parts) == 2:
            namespace, clean_key = parts
    elif "." in raw_key:
        # login.title -> title
        clean_key = raw_key.split(".")[-1]

    collector.keys.append(I18nKey(key=clean_key, source=source, namespace=namespace, default_value=default_value))


def _t_call_with_default(match, source, collector):
    _collect_key(match.group(1), source, collector, default_value=match.group(2))


def _any_group(match, source, collector):
    _collect_key(first_group(match), source, collector)


I18N_KEY_EXTRACTORS: List[Extractor] = [
    # t('key'), t('ns:key'), t('key', { defaultValue: '...' })
    Extractor(
        "reactI18next",
        re.compile(
            r"\bt\s*\(\s*['\"`]([^'\"`]+)['\"`]\s*"
            r"(?:,\s*\{[^}]*defaultValue\s*:\s*['\"`]([^'\"`]+)['\"`][^}]*\})?\)"
        ),
        _t_call_with_default,
    ),
    Extractor("transComponent", re.compile(r"<Trans\s+i18nKey\s*=\s*['\"`]([^'\"`]+)['\"`]"), _any_group),
    Extractor(
        "angularTranslate",
        re.compile(
            r"(?:\{\{\s*['\"`]([^'\"`]+)['\"`]\s*\|\s*translate\s*\}\}"
            r"|\$translate\.get\s*\(\s*['\"`]([^'\"`]+)['\"`]\))"
        ),
        _any_group,
    ),
    Extractor(
        "vueI18n",
        re.compile(r"\$t\s*\(\s*['\"`]([^'\"`]+)['\"`]\)|(?:^|[^\w])t\s*\(\s*['\"`]([^'\"`]+)['\"`]\)", re.M),
        _any_group,
    ),
    Extractor("nextIntl", re.compile(r"\bt\s*\(\s*['\"`]([^'\"`]+)['\"`]\)"), _any_group),
]


def detect_i18n_library(files: List[ScannedFile]) -> str:
    """Library matched by the most files, or 'unknown'."""
    scores: Dict[str, int] = {name: 0 for name in I18N_LIBRARY_PATTERNS}
    for scanned in files:
        for name, pattern in I18N_LIBRARY_PATTERNS.items():
            if pattern.search(scanned.content):
                scores[name] += 1

    best, best_score = "unknown", 0
    for name, score in scores.items():
        if score > best_score:
            best, best_score = name, score
    return best


def extract_i18n_keys(files: List[ScannedFile]) -> List[I18nKey]:
    # The detected library is only a hint; all key patterns run on every file
    collector = _KeyCollector()
    for scanned in files:
        run_extractors(I18N_KEY_EXTRACTORS, scanned.content, scanned.path, collector)
    return collector.keys


def _json_files(directory: str, depth: int = 0) -> List[str]:
    if depth > LOCALE_MAX_DEPTH:
        return []
    found: List[str] = []
    try:
        entries = sorted(os.scandir(directory), key=lambda e: e.name)
    except OSError:
        return found
    for entry in entries:
        if entry.is_symlink():
            continue
        if entry.is_dir(follow_symlinks=False):
            found.extend(_json_files(entry.path, depth + 1))
        elif entry.is_file(follow_symlinks=False) and entry.name.endswith(".json"):
            found.append(entry.path)
    return found


def find_locale_files(project_root) -> List[str]:
    root = os.path.realpath(project_root)
    files: List[str] = []
    for name in LOCALE_DIRECTORIES:
        full_path = os.path.join(root, name)
        if os.path.islink(full_path) or not os.path.isdir(full_path):
            continue
        files.extend(_json_files(full_path))
    return files


def mine_i18n_keys_sync(project_root, cache: MiningCache) -> I18nMiningResult:
    files = scan_all_source_directories(project_root, cache)
    result = I18nMiningResult(
        library=detect_i18n_library(files),
        keys=extract_i18n_keys(files),
        locale_files=find_locale_files(project_root),
    )
    logger.debug(f"i18n: {len(result.keys)} keys ({result.library}), {len(result.locale_files)} locale files")
    return result


async def mine_i18n_keys(project_root, cache: Optional[MiningCache] = None) -> I18nMiningResult:
    owns_cache = cache is None
    cache = cache or MiningCache()
    try:
        return await asyncio.to_thread(mine_i18n_keys_sync, project_root, cache)
    finally:
        if owns_cache:
            cache.clear()


def generate_i18n_patterns(result: I18nMiningResult) -> List[DiscoveredPattern]:
    patterns: List[DiscoveredPattern] = []
    seen: Set[str] = set()

    for i18n_key in result.keys:
        label = field_name_to_label(i18n_key.key)
        hint_value = i18n_key.default_value or i18n_key.key

        for text in (f"verify {label} text", f"verify {label} is visible"):
            dedup_key = f"{text}:assert"
            if dedup_key in seen:
                continue
            seen.add(dedup_key)
            patterns.append(create_pattern(
                text,
                "assert",
                I18N_PATTERN_CONFIDENCE,
                category="assertion",
                template_source="static",
                selector_hints=[SelectorHint(strategy="text", value=hint_value, confidence=I18N_PATTERN_CONFIDENCE)],
            ))

    return patterns
