"""
LLKB - Lessons Learned Knowledge Base

A local, file-backed knowledge store for test-authoring patterns:
- Mines a project's source tree for entities, routes, forms, tables and modals
- Generates, weights and quality-controls test-step patterns from them
- Persists lessons and components as versioned, lock-protected JSON documents
- Ranks stored knowledge for a journey and feeds outcomes back into confidence
- Exports the curated knowledge for downstream test generators
"""

from .errors import LLKBError, LockTimeoutError, MigrationError, DocumentValidationError, ConfigurationError
from .config import LLKBConfig, configure_logging, load_llkb_config, resolve_llkb_root, is_llkb_enabled
from .models import (
    Lesson,
    LessonsFile,
    Component,
    ComponentsFile,
    AnalyticsFile,
    DiscoveredPattern,
    DiscoveredPatternsFile,
    DiscoveredProfile,
    ModuleRegistry,
    SaveResult,
    UpdateResult,
)
from .file_utils import load_json, save_json_atomic, update_json_with_lock
from .migration import MigrationResult, initialize_llkb, migrate_llkb, validate_llkb_installation
from .history import append_to_history, read_today_history, cleanup_old_history_files
from .confidence import calculate_confidence, detect_declining_confidence, needs_confidence_review
from .learning import LearningResult, record_learning, record_pattern_learned, record_lesson_applied, record_component_used
from .analytics import update_analytics, get_analytics_summary
from .loaders import LLKBData, load_llkb_data, load_lessons, load_components
from .context import JourneyContext, RelevantContext, get_relevant_context, format_context_for_prompt
from .matching import (
    calculate_similarity,
    infer_category,
    match_steps_to_components,
    should_extract_as_component,
)
from .search import SearchQuery, search, export_llkb, generate_report
from .adapter import ExportResult, export_for_autogen
from .registry import add_component_to_registry, get_import_path, load_registry
from .versioning import check_updates, compare_versions as compare_test_versions
from .maintenance import run_health_check, get_stats, prune
from .discovery import DiscoveryResult, run_discovery
from .mining import MiningCache, mine_elements
from .patterns import QualityControlResult, apply_all_quality_controls, generate_all_patterns
from .pipeline import PipelineOptions, PipelineResult, RunContext, run_full_discovery_pipeline

__all__ = [
    # Errors
    "LLKBError",
    "LockTimeoutError",
    "MigrationError",
    "DocumentValidationError",
    "ConfigurationError",
    # Config
    "LLKBConfig",
    "configure_logging",
    "load_llkb_config",
    "resolve_llkb_root",
    "is_llkb_enabled",
    # Models
    "Lesson",
    "LessonsFile",
    "Component",
    "ComponentsFile",
    "AnalyticsFile",
    "DiscoveredPattern",
    "DiscoveredPatternsFile",
    "DiscoveredProfile",
    "ModuleRegistry",
    "SaveResult",
    "UpdateResult",
    # Store
    "load_json",
    "save_json_atomic",
    "update_json_with_lock",
    "MigrationResult",
    "initialize_llkb",
    "migrate_llkb",
    "validate_llkb_installation",
    "append_to_history",
    "read_today_history",
    "cleanup_old_history_files",
    # Feedback
    "calculate_confidence",
    "detect_declining_confidence",
    "needs_confidence_review",
    "LearningResult",
    "record_learning",
    "record_pattern_learned",
    "record_lesson_applied",
    "record_component_used",
    "update_analytics",
    "get_analytics_summary",
    # Retrieval
    "LLKBData",
    "load_llkb_data",
    "load_lessons",
    "load_components",
    "JourneyContext",
    "RelevantContext",
    "get_relevant_context",
    "format_context_for_prompt",
    "calculate_similarity",
    "infer_category",
    "match_steps_to_components",
    "should_extract_as_component",
    "SearchQuery",
    "search",
    "export_llkb",
    "generate_report",
    # Downstream
    "ExportResult",
    "export_for_autogen",
    "add_component_to_registry",
    "get_import_path",
    "load_registry",
    "check_updates",
    "compare_test_versions",
    # Maintenance
    "run_health_check",
    "get_stats",
    "prune",
    # Discovery
    "DiscoveryResult",
    "run_discovery",
    "MiningCache",
    "mine_elements",
    "QualityControlResult",
    "apply_all_quality_controls",
    "generate_all_patterns",
    "PipelineOptions",
    "PipelineResult",
    "RunContext",
    "run_full_discovery_pipeline",
]

__version__ = "1.0.0"
