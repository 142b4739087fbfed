"""
Knowledge Store Models

Versioned document types persisted under the LLKB root. Every document is
validated (and missing optional fields backfilled) once at load time, so the
rest of the package can rely on the shapes declared here.

JSON on disk uses camelCase keys; Python code uses snake_case attributes.
"""

import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional, Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


CURRENT_VERSION = "1.0.0"


# ==================== Vocabulary ====================

LESSON_CATEGORIES = [
    "selector",
    "timing",
    "quirk",
    "auth",
    "data",
    "assertion",
    "navigation",
    "ui-interaction",
]

# Components can't be quirks
COMPONENT_CATEGORIES = [c for c in LESSON_CATEGORIES if c != "quirk"]

SCOPES = [
    "universal",
    "framework:angular",
    "framework:react",
    "framework:vue",
    "framework:ag-grid",
    "app-specific",
]

PATTERN_CATEGORIES = ["auth", "navigation", "ui-interaction", "data", "assertion", "timing"]

TEMPLATE_SOURCES = ["crud", "form", "table", "modal", "navigation", "auth", "static"]


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string with a trailing Z."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO timestamp; naive values are taken as UTC. Returns None if unparseable."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class LLKBModel(BaseModel):
    """Base model: camelCase on disk, snake_case in code, unknown keys kept."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


# ==================== Lessons ====================

class ConfidenceHistoryEntry(LLKBModel):
    date: str
    value: float


class LessonMetrics(LLKBModel):
    occurrences: int = 0
    success_rate: float = 0.5
    confidence: float = 0.5
    first_seen: str = Field(default_factory=now_iso)
    last_success: Optional[str] = None
    last_applied: Optional[str] = None
    confidence_history: List[ConfidenceHistoryEntry] = Field(default_factory=list)


class LessonValidation(LLKBModel):
    human_reviewed: bool = False
    reviewed_at: Optional[str] = None
    reviewed_by: Optional[str] = None


class Lesson(LLKBModel):
    """A persisted, confidence-scored behavioural rule."""
    id: str
    title: str = ""
    pattern: str = ""
    trigger: str = ""
    category: str = "selector"
    scope: str = "app-specific"
    journey_ids: List[str] = Field(default_factory=list)
    metrics: LessonMetrics = Field(default_factory=LessonMetrics)
    validation: LessonValidation = Field(default_factory=LessonValidation)
    tags: List[str] = Field(default_factory=list)
    archived: bool = False


class GlobalRule(LLKBModel):
    id: str
    description: str = ""
    trigger: str = ""
    action: str = ""


class AppQuirk(LLKBModel):
    id: str
    description: str = ""
    trigger: str = ""
    workaround: str = ""
    component: Optional[str] = None


class LessonsFile(LLKBModel):
    version: str = CURRENT_VERSION
    last_updated: str = Field(default_factory=now_iso)
    lessons: List[Lesson] = Field(default_factory=list)
    archived: List[Lesson] = Field(default_factory=list)
    global_rules: List[GlobalRule] = Field(default_factory=list)
    app_quirks: List[AppQuirk] = Field(default_factory=list)


# ==================== Components ====================

class ComponentMetrics(LLKBModel):
    total_uses: int = 0
    success_rate: float = 1.0
    last_used: Optional[str] = None


class ComponentSource(LLKBModel):
    original_code: str = ""
    extracted_from: str = "unknown"
    extracted_by: str = "journey-verify"
    extracted_at: str = Field(default_factory=now_iso)


class Component(LLKBModel):
    """A persisted descriptor of a reusable extracted code unit."""
    id: str
    name: str
    description: str = ""
    category: str = "ui-interaction"
    scope: str = "app-specific"
    file_path: str = ""
    metrics: ComponentMetrics = Field(default_factory=ComponentMetrics)
    source: ComponentSource = Field(default_factory=ComponentSource)
    archived: bool = False


def _empty_by_category() -> Dict[str, List[str]]:
    return {c: [] for c in COMPONENT_CATEGORIES}


def _empty_by_scope() -> Dict[str, List[str]]:
    return {s: [] for s in SCOPES}


class ComponentsFile(LLKBModel):
    version: str = CURRENT_VERSION
    last_updated: str = Field(default_factory=now_iso)
    components: List[Component] = Field(default_factory=list)
    # Keys are category / scope names, not python identifiers
    components_by_category: Dict[str, List[str]] = Field(default_factory=_empty_by_category)
    components_by_scope: Dict[str, List[str]] = Field(default_factory=_empty_by_scope)


# ==================== Analytics ====================

class AnalyticsOverview(LLKBModel):
    total_lessons: int = 0
    active_lessons: int = 0
    archived_lessons: int = 0
    total_components: int = 0
    active_components: int = 0
    archived_components: int = 0


class LessonStats(LLKBModel):
    by_category: Dict[str, int] = Field(default_factory=lambda: {c: 0 for c in LESSON_CATEGORIES})
    avg_confidence: float = 0.0
    avg_success_rate: float = 0.0


class ComponentStats(LLKBModel):
    by_category: Dict[str, int] = Field(default_factory=lambda: {c: 0 for c in COMPONENT_CATEGORIES})
    by_scope: Dict[str, int] = Field(default_factory=lambda: {s: 0 for s in SCOPES})
    total_reuses: int = 0
    avg_reuses_per_component: float = 0.0


class ImpactMetrics(LLKBModel):
    verify_iterations_saved: int = 0
    avg_iterations_before_llkb: float = 0.0
    avg_iterations_after_llkb: float = 0.0
    code_deduplication_rate: float = 0.0
    estimated_hours_saved: float = 0.0


class TopPerformerLesson(LLKBModel):
    id: str
    title: str
    score: float


class TopPerformerComponent(LLKBModel):
    id: str
    name: str
    uses: int


class TopPerformers(LLKBModel):
    lessons: List[TopPerformerLesson] = Field(default_factory=list)
    components: List[TopPerformerComponent] = Field(default_factory=list)


class NeedsReview(LLKBModel):
    low_confidence_lessons: List[str] = Field(default_factory=list)
    low_usage_components: List[str] = Field(default_factory=list)
    declining_success_rate: List[str] = Field(default_factory=list)


class AnalyticsFile(LLKBModel):
    version: str = CURRENT_VERSION
    last_updated: str = Field(default_factory=now_iso)
    overview: AnalyticsOverview = Field(default_factory=AnalyticsOverview)
    lesson_stats: LessonStats = Field(default_factory=LessonStats)
    component_stats: ComponentStats = Field(default_factory=ComponentStats)
    impact: ImpactMetrics = Field(default_factory=ImpactMetrics)
    top_performers: TopPerformers = Field(default_factory=TopPerformers)
    needs_review: NeedsReview = Field(default_factory=NeedsReview)


# ==================== Discovered patterns ====================

class SelectorHint(LLKBModel):
    # data-testid | data-cy | data-test | role | aria-label | css | xpath | text
    strategy: str
    value: str
    name: Optional[str] = None
    confidence: Optional[float] = None


class DiscoveredPattern(LLKBModel):
    """Candidate phrase-to-action mapping produced by pattern generation."""
    id: str
    normalized_text: str
    original_text: str
    mapped_action: str
    selector_hints: List[SelectorHint] = Field(default_factory=list)
    confidence: float = 0.5
    layer: str = "app-specific"
    category: Optional[str] = None
    source_journeys: List[str] = Field(default_factory=list)
    success_count: int = 0
    fail_count: int = 0
    template_source: Optional[str] = None
    entity_name: Optional[str] = None


PATTERN_CONFIDENCE_CEILING = 0.95


def new_pattern_id() -> str:
    return f"DP-{uuid.uuid4().hex[:8]}"


def create_pattern(
    text: str,
    mapped_action: str,
    confidence: float,
    category: Optional[str] = None,
    template_source: Optional[str] = None,
    entity_name: Optional[str] = None,
    selector_hints: Optional[List[SelectorHint]] = None,
    layer: str = "app-specific",
) -> DiscoveredPattern:
    """Build a fresh candidate pattern; confidence is capped below 1.0 to leave room for boosting."""
    return DiscoveredPattern(
        id=new_pattern_id(),
        normalized_text=text.lower(),
        original_text=text,
        mapped_action=mapped_action,
        selector_hints=selector_hints or [],
        confidence=min(confidence, PATTERN_CONFIDENCE_CEILING),
        layer=layer,
        category=category,
        template_source=template_source,
        entity_name=entity_name,
    )


class LearnedPattern(LLKBModel):
    """A pattern already promoted into the downstream generator's store."""
    normalized_text: str
    original_text: str
    ir_primitive: str
    confidence: float
    success_count: int = 0
    fail_count: int = 0
    source_journeys: List[str] = Field(default_factory=list)
    last_updated: Optional[str] = None


class PatternsMetadata(LLKBModel):
    frameworks: List[str] = Field(default_factory=list)
    ui_libraries: List[str] = Field(default_factory=list)
    total_patterns: int = 0
    by_category: Dict[str, int] = Field(default_factory=dict)
    by_template: Dict[str, int] = Field(default_factory=dict)
    average_confidence: float = 0.0
    discovery_duration: Optional[int] = None


class DiscoveredPatternsFile(LLKBModel):
    version: str = "1.0"
    generated_at: str = Field(default_factory=now_iso)
    source: str = "discover-foundation"
    patterns: List[DiscoveredPattern] = Field(default_factory=list)
    metadata: PatternsMetadata = Field(default_factory=PatternsMetadata)


# ==================== Discovered profile ====================

class FrameworkInfo(LLKBModel):
    name: str
    version: Optional[str] = None
    confidence: float = 0.0
    evidence: List[str] = Field(default_factory=list)


class UILibraryInfo(LLKBModel):
    name: str
    version: Optional[str] = None
    confidence: float = 0.0
    has_enterprise: bool = False
    evidence: List[str] = Field(default_factory=list)


class SelectorSignals(LLKBModel):
    primary_attribute: str = "data-testid"
    naming_convention: str = "kebab-case"
    coverage: Dict[str, float] = Field(default_factory=dict)
    total_components_analyzed: int = 0
    sample_selectors: List[str] = Field(default_factory=list)


class AuthHints(LLKBModel):
    detected: bool = False
    type: Optional[str] = None
    login_route: Optional[str] = None
    selectors: Dict[str, str] = Field(default_factory=dict)
    bypass_available: bool = False
    bypass_method: Optional[str] = None


class DiscoveredProfile(LLKBModel):
    version: str = "1.0"
    generated_at: str = Field(default_factory=now_iso)
    project_root: str = ""
    frameworks: List[FrameworkInfo] = Field(default_factory=list)
    ui_libraries: List[UILibraryInfo] = Field(default_factory=list)
    selector_signals: SelectorSignals = Field(default_factory=SelectorSignals)
    auth: AuthHints = Field(default_factory=AuthHints)


# ==================== App profile ====================

class ApplicationInfo(LLKBModel):
    name: str = ""
    framework: str = "other"
    ui_library: str = "none"
    data_grid: str = "none"
    auth_provider: str = "none"
    state_management: str = "none"


class AppTestability(LLKBModel):
    test_id_attribute: str = "data-testid"
    test_id_coverage: str = "low"
    aria_coverage: str = "low"
    async_complexity: str = "medium"


class AuthBypass(LLKBModel):
    available: bool = False
    method: str = "none"


class EnvironmentInfo(LLKBModel):
    base_urls: Dict[str, str] = Field(default_factory=dict)
    auth_bypass: AuthBypass = Field(default_factory=AuthBypass)


class AppProfile(LLKBModel):
    """Hand-maintained app description (app-profile.json), used for scope matching."""
    version: str = CURRENT_VERSION
    created_by: str = ""
    last_updated: str = Field(default_factory=now_iso)
    application: ApplicationInfo = Field(default_factory=ApplicationInfo)
    testability: AppTestability = Field(default_factory=AppTestability)
    environment: EnvironmentInfo = Field(default_factory=EnvironmentInfo)


# ==================== Module registry ====================

class ModuleExport(LLKBModel):
    name: str
    # function | class | const | type
    type: str = "function"
    component_id: Optional[str] = None
    signature: str = ""
    description: str = ""


class ModuleEntry(LLKBModel):
    name: str
    path: str
    description: str = ""
    exports: List[ModuleExport] = Field(default_factory=list)
    dependencies: List[str] = Field(default_factory=list)
    peer_dependencies: List[str] = Field(default_factory=list)
    last_updated: str = Field(default_factory=now_iso)


class ModuleRegistry(LLKBModel):
    """src/modules/registry.json; the two index maps are derived from `modules`."""
    version: str = CURRENT_VERSION
    last_updated: str = Field(default_factory=now_iso)
    modules: List[ModuleEntry] = Field(default_factory=list)
    component_to_module: Dict[str, str] = Field(default_factory=dict)
    export_to_module: Dict[str, str] = Field(default_factory=dict)


# ==================== Results ====================

class SaveResult(LLKBModel):
    success: bool
    error: Optional[str] = None


class UpdateResult(LLKBModel):
    success: bool
    error: Optional[str] = None
    retries_needed: int = 0
