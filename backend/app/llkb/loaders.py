"""
LLKB Loaders

Read-side access to the store. Documents are validated into their models
once here; a missing document yields an empty default, a corrupt one is
logged and treated the same way.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

from pydantic import ValidationError

from .config import LLKBConfig, is_llkb_enabled, llkb_exists, load_llkb_config, resolve_llkb_root
from .errors import DocumentValidationError
from .file_utils import load_json
from .migration import VERSIONED_MODELS, is_version_supported, migrate_file, needs_migration
from .models import (
    AppProfile,
    Component,
    ComponentsFile,
    Lesson,
    LessonsFile,
    LLKBModel,
)

logger = logging.getLogger(__name__)

APP_PROFILE_FILENAME = "app-profile.json"
LESSONS_FILENAME = "lessons.json"
COMPONENTS_FILENAME = "components.json"

PATTERN_BANKS = {
    "selectors": "selectors.json",
    "timing": "timing.json",
    "assertions": "assertions.json",
    "data": "data.json",
    "auth": "auth.json",
}

ModelT = TypeVar("ModelT", bound=LLKBModel)
OneOrMany = Union[str, List[str], None]


@dataclass
class LessonFilter:
    category: OneOrMany = None
    scope: OneOrMany = None
    min_confidence: Optional[float] = None
    tags: Optional[List[str]] = None
    include_archived: bool = False


@dataclass
class ComponentFilter:
    category: OneOrMany = None
    scope: OneOrMany = None
    # Compared against successRate
    min_confidence: Optional[float] = None
    include_archived: bool = False


@dataclass
class LLKBPatterns:
    """Per-category pattern banks from patterns/*.json, kept as plain dicts."""
    selectors: Optional[Dict[str, Any]] = None
    timing: Optional[Dict[str, Any]] = None
    assertions: Optional[Dict[str, Any]] = None
    data: Optional[Dict[str, Any]] = None
    auth: Optional[Dict[str, Any]] = None


@dataclass
class LLKBData:
    config: LLKBConfig
    app_profile: Optional[AppProfile]
    lessons: LessonsFile
    components: ComponentsFile
    patterns: LLKBPatterns = field(default_factory=LLKBPatterns)


def _as_list(value: OneOrMany) -> Optional[List[str]]:
    if value is None:
        return None
    return [value] if isinstance(value, str) else list(value)


def validate_document(data: Any, model: Type[ModelT], file_path: Union[str, Path]) -> ModelT:
    """
    Validate already-loaded JSON into `model`.

    Raises:
        DocumentValidationError: data does not match the model
    """
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise DocumentValidationError(str(file_path), f"{e.error_count()} validation errors") from e


def load_document(file_path: Union[str, Path], model: Type[ModelT]) -> Optional[ModelT]:
    """
    Validate a JSON document into `model`. None when missing, unreadable or invalid.

    Store documents older than the current schema are migrated on disk first;
    a version below the supported minimum is never trusted and loads as None.
    """
    try:
        data = load_json(file_path)
    except (OSError, ValueError) as e:
        logger.warning(f"Could not read {file_path}: {e}")
        return None
    if data is None:
        return None

    if model in VERSIONED_MODELS and isinstance(data, dict):
        version = data.get("version") or "0.0.0"
        if not is_version_supported(version):
            logger.warning(f"Refusing {file_path}: version {version} is not supported")
            return None
        if needs_migration(version):
            migrated = migrate_file(file_path)
            if not migrated.success:
                logger.warning(f"Could not migrate {file_path}: {migrated.error}")
                return None
            try:
                data = load_json(file_path)
            except (OSError, ValueError) as e:
                logger.warning(f"Could not read {file_path}: {e}")
                return None

    try:
        return validate_document(data, model, file_path)
    except DocumentValidationError as e:
        logger.warning(str(e))
        return None


# ==================== Documents ====================

def load_app_profile(llkb_root=None) -> Optional[AppProfile]:
    return load_document(resolve_llkb_root(llkb_root) / APP_PROFILE_FILENAME, AppProfile)


def load_lessons_file(llkb_root=None) -> LessonsFile:
    return load_document(resolve_llkb_root(llkb_root) / LESSONS_FILENAME, LessonsFile) or LessonsFile()


def load_components_file(llkb_root=None) -> ComponentsFile:
    return load_document(resolve_llkb_root(llkb_root) / COMPONENTS_FILENAME, ComponentsFile) or ComponentsFile()


def load_lessons(llkb_root=None, filters: Optional[LessonFilter] = None) -> List[Lesson]:
    filters = filters or LessonFilter()
    lessons = list(load_lessons_file(llkb_root).lessons)

    if not filters.include_archived:
        lessons = [l for l in lessons if not l.archived]

    categories = _as_list(filters.category)
    if categories:
        lessons = [l for l in lessons if l.category in categories]

    scopes = _as_list(filters.scope)
    if scopes:
        lessons = [l for l in lessons if l.scope in scopes]

    if filters.min_confidence is not None:
        lessons = [l for l in lessons if l.metrics.confidence >= filters.min_confidence]

    if filters.tags:
        wanted = set(filters.tags)
        lessons = [l for l in lessons if wanted.intersection(l.tags)]

    return lessons


def load_components(llkb_root=None, filters: Optional[ComponentFilter] = None) -> List[Component]:
    filters = filters or ComponentFilter()
    components = list(load_components_file(llkb_root).components)

    if not filters.include_archived:
        components = [c for c in components if not c.archived]

    categories = _as_list(filters.category)
    if categories:
        components = [c for c in components if c.category in categories]

    scopes = _as_list(filters.scope)
    if scopes:
        components = [c for c in components if c.scope in scopes]

    if filters.min_confidence is not None:
        components = [c for c in components if c.metrics.success_rate >= filters.min_confidence]

    return components


# ==================== Pattern banks ====================

def load_pattern_file(llkb_root, pattern_name: str) -> Optional[Dict[str, Any]]:
    path = resolve_llkb_root(llkb_root) / "patterns" / f"{pattern_name}.json"
    try:
        data = load_json(path)
    except (OSError, ValueError) as e:
        logger.warning(f"Could not read pattern file {path}: {e}")
        return None
    return data if isinstance(data, dict) else None


def load_patterns(llkb_root=None) -> LLKBPatterns:
    patterns_dir = resolve_llkb_root(llkb_root) / "patterns"
    patterns = LLKBPatterns()
    if not patterns_dir.is_dir():
        return patterns

    for attribute, filename in PATTERN_BANKS.items():
        setattr(patterns, attribute, load_pattern_file(llkb_root, Path(filename).stem))
    return patterns


def get_pattern_file_names(llkb_root=None) -> List[str]:
    patterns_dir = resolve_llkb_root(llkb_root) / "patterns"
    if not patterns_dir.is_dir():
        return []
    return sorted(p.stem for p in patterns_dir.glob("*.json"))


def load_llkb_data(llkb_root=None) -> LLKBData:
    root = resolve_llkb_root(llkb_root)
    return LLKBData(
        config=load_llkb_config(root),
        app_profile=load_app_profile(root),
        lessons=load_lessons_file(root),
        components=load_components_file(root),
        patterns=load_patterns(root),
    )


__all__ = [
    "LessonFilter",
    "ComponentFilter",
    "LLKBPatterns",
    "LLKBData",
    "validate_document",
    "load_document",
    "load_app_profile",
    "load_lessons_file",
    "load_components_file",
    "load_lessons",
    "load_components",
    "load_pattern_file",
    "load_patterns",
    "get_pattern_file_names",
    "load_llkb_data",
    "load_llkb_config",
    "is_llkb_enabled",
    "llkb_exists",
]
