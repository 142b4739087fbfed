"""
Code matching - normalisation, similarity, category inference and
step-to-component matching

normalize_code() turns a snippet into a structural fingerprint: literals
become <STRING>/<NUMBER>, declared names become <VAR>. Similarity is token
Jaccard over the fingerprint (80%) blended with line-count similarity (20%).
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from .config import LLKBConfig
from .models import COMPONENT_CATEGORIES, LESSON_CATEGORIES, Component

logger = logging.getLogger(__name__)

USE_THRESHOLD = 0.7
SUGGEST_THRESHOLD = 0.4


# ==================== Normalisation ====================

STRING_LITERAL_RES = [re.compile(r"'[^']*'"), re.compile(r'"[^"]*"'), re.compile(r"`[^`]*`")]
NUMBER_RE = re.compile(r"\b\d+(?:\.\d+)?\b")
DECLARATION_RE = re.compile(r"\b(const|let|var)\s+\w+")
WHITESPACE_RE = re.compile(r"\s+")
TOKEN_SPLIT_RE = re.compile(r"[\s.,;:(){}\[\]<>]+")


def normalize_code(code: str) -> str:
    normalized = code
    for literal_re in STRING_LITERAL_RES:
        normalized = literal_re.sub("<STRING>", normalized)
    normalized = NUMBER_RE.sub("<NUMBER>", normalized)
    normalized = DECLARATION_RE.sub(r"\1 <VAR>", normalized)
    return WHITESPACE_RE.sub(" ", normalized).strip()


def hash_code(text: str) -> str:
    """djb2, as unsigned 32-bit hex. Stable across runs, not cryptographic."""
    value = 5381
    for char in text:
        value = ((value << 5) + value + ord(char)) & 0xFFFFFFFF
    return format(value, "x")


def tokenize(code: str) -> Set[str]:
    return {token for token in TOKEN_SPLIT_RE.split(code) if token}


def count_lines(code: str) -> int:
    if not code:
        return 0
    return len(code.split("\n"))


# ==================== Similarity ====================

def jaccard_similarity(set_a: Set[str], set_b: Set[str]) -> float:
    if not set_a and not set_b:
        return 1.0
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / len(set_a | set_b)


def line_count_similarity(lines_a: int, lines_b: int) -> float:
    if lines_a == 0 and lines_b == 0:
        return 1.0
    return 1 - abs(lines_a - lines_b) / max(lines_a, lines_b)


def calculate_similarity(code_a: str, code_b: str) -> float:
    norm_a, norm_b = normalize_code(code_a), normalize_code(code_b)
    if norm_a == norm_b:
        return 1.0

    jaccard = jaccard_similarity(tokenize(norm_a), tokenize(norm_b))
    lines = line_count_similarity(count_lines(code_a), count_lines(code_b))
    return round(jaccard * 0.8 + lines * 0.2, 2)


def is_near_duplicate(code_a: str, code_b: str, threshold: float = 0.8) -> bool:
    return calculate_similarity(code_a, code_b) >= threshold


def find_near_duplicates(pattern: str, candidates: List[str], threshold: float = 0.8) -> List[int]:
    return [i for i, candidate in enumerate(candidates) if is_near_duplicate(pattern, candidate, threshold)]


@dataclass
class SimilarPattern:
    pattern: str
    similarity: float
    index: int


def find_similar_patterns(target: str, patterns: List[str], threshold: float = 0.8) -> List[SimilarPattern]:
    results = []
    for i, pattern in enumerate(patterns):
        similarity = calculate_similarity(target, pattern)
        if similarity >= threshold:
            results.append(SimilarPattern(pattern=pattern, similarity=similarity, index=i))
    results.sort(key=lambda r: r.similarity, reverse=True)
    return results


# ==================== Category inference ====================

# Plain substring keywords, matched case-insensitively
CATEGORY_KEYWORDS: Dict[str, List[str]] = {
    "navigation": [
        "goto", "navigate", "route", "url", "path", "sidebar", "menu",
        "breadcrumb", "nav", "link", "href", "router",
    ],
    "auth": [
        "login", "logout", "auth", "password", "credential", "session", "token",
        "user", "signin", "signout", "authenticate", "authorization",
    ],
    "assertion": [
        "expect", "assert", "verify", "should", "tobevisible", "tohavetext", "tobehidden",
        "tocontain", "tohaveattribute", "tobeenabled", "tobedisabled", "tohavevalue",
    ],
    "data": [
        "api", "fetch", "response", "request", "json", "payload", "data", "post",
        "get", "put", "delete", "endpoint", "graphql", "rest",
    ],
    "selector": [
        "locator", "getby", "selector", "testid", "data-testid", "queryselector",
        "findby", "getbyrole", "getbylabel", "getbytext", "getbyplaceholder",
    ],
    "timing": [
        "wait", "timeout", "delay", "sleep", "settimeout", "poll", "retry",
        "interval", "waitfor", "waituntil",
    ],
    "ui-interaction": [
        "click", "fill", "type", "select", "check", "uncheck", "upload", "drag",
        "drop", "hover", "focus", "blur", "press", "scroll", "dblclick",
    ],
}

# First category with any keyword hit wins
CATEGORY_PRIORITY = ["auth", "navigation", "assertion", "data", "timing", "selector", "ui-interaction"]

DEFAULT_CATEGORY = "ui-interaction"


@dataclass
class CategoryInference:
    category: str
    confidence: float
    match_count: int


def infer_category(code: str) -> str:
    lowered = code.lower()
    for category in CATEGORY_PRIORITY:
        if any(keyword in lowered for keyword in CATEGORY_KEYWORDS[category]):
            return category
    return DEFAULT_CATEGORY


def infer_category_with_confidence(code: str) -> CategoryInference:
    """Category with the most keyword hits; confidence saturates at 5 hits."""
    lowered = code.lower()
    best_category, best_count = DEFAULT_CATEGORY, 0
    for category, keywords in CATEGORY_KEYWORDS.items():
        count = sum(1 for keyword in keywords if keyword in lowered)
        if count > best_count:
            best_category, best_count = category, count

    confidence = min(best_count / min(len(CATEGORY_KEYWORDS[best_category]), 5), 1.0)
    return CategoryInference(category=best_category, confidence=round(confidence, 2), match_count=best_count)


def is_component_category(category: str) -> bool:
    return category in COMPONENT_CATEGORIES


def get_all_categories() -> List[str]:
    return list(LESSON_CATEGORIES)


def get_component_categories() -> List[str]:
    return list(COMPONENT_CATEGORIES)


# ==================== Step matching ====================

ACTION_KEYWORDS = [
    "verify", "check", "assert", "expect", "navigate", "goto", "click", "fill", "type",
    "select", "wait", "load", "submit", "upload", "download", "hover", "drag", "drop",
    "scroll", "resize", "close", "open", "toggle", "expand", "collapse", "search",
    "filter", "sort", "create", "delete", "update", "edit", "save", "cancel", "confirm",
    "login", "logout", "authenticate",
]

UI_ELEMENT_RE = re.compile(
    r"\b(button|link|input|field|table|grid|form|modal|dialog|toast|sidebar|menu|dropdown|checkbox|radio)\b",
    re.I,
)

# (pattern, category) for snippets worth extracting even on first sight
REUSABLE_PATTERNS = [
    (re.compile(r"navigation|sidebar|menu|breadcrumb", re.I), "navigation"),
    (re.compile(r"form|input|submit|validation", re.I), "ui-interaction"),
    (re.compile(r"table|grid|row|cell|column", re.I), "data"),
    (re.compile(r"modal|dialog|popup|overlay", re.I), "ui-interaction"),
    (re.compile(r"toast|alert|notification|message", re.I), "assertion"),
    (re.compile(r"login|auth|logout|session", re.I), "auth"),
    (re.compile(r"loading|spinner|skeleton|progress", re.I), "timing"),
    (re.compile(r"select|dropdown|picker|autocomplete", re.I), "ui-interaction"),
    (re.compile(r"tab|accordion|panel|collapse", re.I), "ui-interaction"),
    (re.compile(r"search|filter|sort|pagination", re.I), "data"),
]


@dataclass
class JourneyStep:
    name: str
    description: str = ""
    keywords: List[str] = field(default_factory=list)
    scope: Optional[str] = None
    code: Optional[str] = None


@dataclass
class StepMatchResult:
    step: JourneyStep
    component: Optional[Component]
    score: float
    # USE | SUGGEST | NONE
    recommendation: str
    reason: str


def _step_text(step: JourneyStep) -> str:
    return f"{step.name} {step.description or ''}".lower()


def extract_step_keywords(step: JourneyStep) -> List[str]:
    text = _step_text(step)
    keywords = [k for k in ACTION_KEYWORDS if k in text]
    keywords.extend(k.lower() for k in step.keywords)
    keywords.extend(m.lower() for m in UI_ELEMENT_RE.findall(text))
    return list(dict.fromkeys(keywords))


def calculate_step_component_similarity(
    step: JourneyStep,
    component: Component,
    step_keywords: Optional[List[str]] = None,
) -> float:
    """
    Weighted blend in [0, 1]:
        0.3  inferred category of the step's code equals the component's
        0.4  share of step keywords found in the component's name/description/category
        0.3  share of step words (> 2 chars) that also appear in the component text
    """
    if step_keywords is None:
        step_keywords = extract_step_keywords(step)

    score = 0.0
    if step.code and infer_category(step.code) == component.category:
        score += 0.3

    component_keywords = [component.category, component.name.lower()]
    component_keywords.extend(component.description.lower().split())
    overlap = sum(
        1 for k in step_keywords
        if any(ck in k or k in ck for ck in component_keywords if ck)
    )
    score += min(overlap / max(len(step_keywords), 1), 1.0) * 0.4

    step_words = {w for w in _step_text(step).split() if len(w) > 2}
    component_words = {w for w in f"{component.name} {component.description}".lower().split() if len(w) > 2}
    score += (len(step_words & component_words) / max(len(step_words), 1)) * 0.3

    return score


def _scope_matches(component_scope: str, app_framework: Optional[str]) -> bool:
    if component_scope.startswith("framework:"):
        return component_scope.split(":", 1)[1] == app_framework
    return component_scope in ("universal", "app-specific")


def match_steps_to_components(
    steps: List[JourneyStep],
    components: List[Component],
    use_threshold: float = USE_THRESHOLD,
    suggest_threshold: float = SUGGEST_THRESHOLD,
    app_framework: Optional[str] = None,
    categories: Optional[List[str]] = None,
) -> List[StepMatchResult]:
    candidates = [
        c for c in components
        if not c.archived and (not categories or c.category in categories)
    ]

    results = []
    for step in steps:
        keywords = extract_step_keywords(step)
        best: Optional[Component] = None
        best_score = 0.0
        for component in candidates:
            if not _scope_matches(component.scope, app_framework):
                continue
            score = calculate_step_component_similarity(step, component, keywords)
            if score > best_score:
                best, best_score = component, score

        percent = f"{best_score * 100:.0f}%"
        if best is not None and best_score >= use_threshold:
            results.append(StepMatchResult(step, best, best_score, "USE",
                                           f"High confidence match ({percent}) - use {best.name} component"))
        elif best is not None and best_score >= suggest_threshold:
            results.append(StepMatchResult(step, best, best_score, "SUGGEST",
                                           f"Moderate match ({percent}) - consider {best.name} component"))
        else:
            reason = f"Low match score ({percent}) - write inline code" if best else "No matching components found"
            results.append(StepMatchResult(step, None, best_score, "NONE", reason))
    return results


# ==================== Extraction decisions ====================

@dataclass
class PatternOccurrence:
    file: str
    journey_id: str
    step_name: str
    line_start: int = 0
    line_end: int = 0


@dataclass
class ExtractionCheckResult:
    should_extract: bool
    confidence: float
    reason: str
    suggested_category: Optional[str] = None
    suggested_path: Optional[str] = None


@dataclass
class CodeSnippet:
    code: str
    file: str
    journey_id: str
    step_name: str
    line_start: int = 0
    line_end: int = 0


@dataclass
class ExtractionCandidate:
    pattern: str
    original_code: str
    occurrences: int
    journeys: List[str]
    files: List[str]
    category: str
    score: float
    # EXTRACT_NOW | CONSIDER | SKIP
    recommendation: str


def _reusable_category(code: str) -> Optional[str]:
    for pattern, category in REUSABLE_PATTERNS:
        if pattern.search(code):
            return category
    return None


def suggest_module_path(category: str, scope: str) -> str:
    if scope == "universal":
        return f"@artk/core/{category}"
    if scope.startswith("framework:"):
        return f"@artk/core/{scope.split(':', 1)[1]}/{category}"
    return f"modules/foundation/{category}"


def should_extract_as_component(
    code: str,
    occurrences: List[PatternOccurrence],
    config: LLKBConfig,
    existing_components: Optional[List[Component]] = None,
) -> ExtractionCheckResult:
    extraction = config.extraction

    line_count = count_lines(code)
    if line_count < extraction.min_lines_for_extraction:
        return ExtractionCheckResult(
            should_extract=False,
            confidence=0.0,
            reason=f"Code too short ({line_count} lines < {extraction.min_lines_for_extraction} minimum)",
        )

    normalized = normalize_code(code)
    for component in existing_components or []:
        if component.archived:
            continue
        similarity = calculate_similarity(normalized, normalize_code(component.source.original_code))
        if similarity >= extraction.similarity_threshold:
            return ExtractionCheckResult(
                should_extract=False,
                confidence=1.0,
                reason=f"Similar component already exists: {component.name} ({similarity * 100:.0f}% similar)",
            )

    category = infer_category(code)
    reusable = _reusable_category(code)
    unique_journeys = len({o.journey_id for o in occurrences})

    if len(occurrences) >= extraction.min_occurrences:
        suggested = reusable or category
        return ExtractionCheckResult(
            should_extract=True,
            confidence=min(0.7 + unique_journeys * 0.1, 0.95),
            reason=(
                f"Pattern appears {len(occurrences)} times across {unique_journeys} journey(s) "
                f"(>= {extraction.min_occurrences} threshold)"
            ),
            suggested_category=suggested,
            suggested_path=suggest_module_path(suggested, "app-specific"),
        )

    if extraction.predictive_extraction and reusable:
        return ExtractionCheckResult(
            should_extract=True,
            confidence=0.6,
            reason=f"Predictive extraction: matches common {reusable} pattern",
            suggested_category=reusable,
            suggested_path=suggest_module_path(reusable, "app-specific"),
        )

    if len(occurrences) == 1 and not reusable:
        return ExtractionCheckResult(
            should_extract=False,
            confidence=0.3,
            reason="Single occurrence, not a common pattern - keep inline",
            suggested_category=category,
        )

    return ExtractionCheckResult(
        should_extract=False,
        confidence=0.4,
        reason=(
            f"Not enough occurrences ({len(occurrences)} < {extraction.min_occurrences}) "
            "and no common pattern match"
        ),
        suggested_category=category,
    )


def find_extraction_candidates(
    snippets: List[CodeSnippet],
    config: LLKBConfig,
    existing_components: Optional[List[Component]] = None,
) -> List[ExtractionCandidate]:
    """Group near-duplicate snippets and rank each group as an extraction candidate."""
    threshold = config.extraction.similarity_threshold
    groups: Dict[str, List[CodeSnippet]] = {}
    fingerprints: Dict[str, str] = {}

    for snippet in snippets:
        normalized = normalize_code(snippet.code)
        group_key = next(
            (key for key, existing in fingerprints.items() if calculate_similarity(normalized, existing) >= threshold),
            None,
        )
        if group_key is None:
            group_key = hash_code(normalized)
            fingerprints[group_key] = normalized
        groups.setdefault(group_key, []).append(snippet)

    candidates = []
    for key, members in groups.items():
        occurrences = [
            PatternOccurrence(s.file, s.journey_id, s.step_name, s.line_start, s.line_end) for s in members
        ]
        original = members[0].code
        check = should_extract_as_component(original, occurrences, config, existing_components)

        journeys = list(dict.fromkeys(s.journey_id for s in members))
        score = len(members) * 0.3 + len(journeys) * 0.4 + check.confidence * 0.3

        if check.should_extract and score >= 0.7:
            recommendation = "EXTRACT_NOW"
        elif check.should_extract or score >= 0.5:
            recommendation = "CONSIDER"
        else:
            recommendation = "SKIP"

        candidates.append(ExtractionCandidate(
            pattern=fingerprints[key],
            original_code=original,
            occurrences=len(members),
            journeys=journeys,
            files=list(dict.fromkeys(s.file for s in members)),
            category=check.suggested_category or infer_category(original),
            score=score,
            recommendation=recommendation,
        ))

    candidates.sort(key=lambda c: c.score, reverse=True)
    return candidates
