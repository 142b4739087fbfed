"""
Store migration and installation

Every top-level document carries a semver `version`. Documents older than
CURRENT_VERSION are migrated field-by-field before use; anything older than
MIN_SUPPORTED_VERSION fails closed. The original file is backed up first and
restored if the migration cannot be saved.
"""

import logging
import re
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Tuple

from pydantic import ValidationError

from .config import CONFIG_FILENAME, save_llkb_config
from .errors import MigrationError
from .file_utils import ensure_dir, load_json, save_json_atomic
from .models import (
    CURRENT_VERSION,
    AnalyticsFile,
    ComponentsFile,
    LessonsFile,
    ModuleRegistry,
    SaveResult,
    now_iso,
)

logger = logging.getLogger(__name__)

MIN_SUPPORTED_VERSION = "0.1.0"

STORE_DOCUMENTS = ["lessons.json", "components.json", "analytics.json"]
PATTERN_FILES = ["selectors.json", "timing.json", "assertions.json", "auth.json", "data.json"]

DOCUMENT_MODELS = {
    "lessons.json": LessonsFile,
    "components.json": ComponentsFile,
    "analytics.json": AnalyticsFile,
}

# Models whose documents are version-gated and migrated on every read and locked write
VERSIONED_MODELS = tuple(DOCUMENT_MODELS.values()) + (ModuleRegistry,)

VERSION_RE = re.compile(r"^(\d+)\.(\d+)\.(\d+)")


class VersionInfo(NamedTuple):
    major: int
    minor: int
    patch: int

    @property
    def full(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


@dataclass
class MigrationResult:
    success: bool = True
    migrated_files: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    from_version: str = "0.0.0"
    to_version: str = CURRENT_VERSION


@dataclass
class FileMigrationResult:
    success: bool
    warnings: List[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class InstallationReport:
    valid: bool = True
    missing_files: List[str] = field(default_factory=list)
    invalid_files: List[str] = field(default_factory=list)
    version: str = CURRENT_VERSION


# ==================== Versions ====================

def parse_version(version: Optional[str]) -> VersionInfo:
    match = VERSION_RE.match(version or "")
    if not match:
        return VersionInfo(0, 0, 0)
    return VersionInfo(int(match.group(1)), int(match.group(2)), int(match.group(3)))


def compare_versions(a: Optional[str], b: Optional[str]) -> int:
    """-1 if a < b, 0 if equal, 1 if a > b."""
    va, vb = parse_version(a), parse_version(b)
    return (va > vb) - (va < vb)


def is_version_supported(version: Optional[str]) -> bool:
    return compare_versions(version, MIN_SUPPORTED_VERSION) >= 0


def needs_migration(version: Optional[str]) -> bool:
    return compare_versions(version, CURRENT_VERSION) < 0


# ==================== Migrations ====================

def _migrate_0x_to_1(data: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
    warnings: List[str] = []

    for lesson in data.get("lessons") or []:
        if not isinstance(lesson, dict):
            continue
        if not lesson.get("metrics"):
            lesson["metrics"] = {
                "occurrences": lesson.get("occurrences") or 0,
                "successRate": lesson.get("successRate") or 0.5,
                "confidence": lesson.get("confidence") or 0.5,
                "firstSeen": lesson.get("created") or lesson.get("createdAt") or now_iso(),
                "lastSuccess": None,
                "lastApplied": None,
            }
            warnings.append(f"Added missing metrics to lesson {lesson.get('id')}")
        elif lesson.get("created") and not lesson["metrics"].get("firstSeen"):
            lesson["metrics"]["firstSeen"] = lesson["created"]
        lesson.pop("created", None)

        if not lesson.get("validation"):
            lesson["validation"] = {"humanReviewed": False}

    for component in data.get("components") or []:
        if not isinstance(component, dict):
            continue
        if not component.get("metrics"):
            component["metrics"] = {
                "totalUses": component.pop("uses", 0) or 0,
                "successRate": 1.0,
                "lastUsed": None,
            }
            warnings.append(f"Added missing metrics to component {component.get('id')}")
        if not component.get("source"):
            component["source"] = {
                "originalCode": component.pop("code", "") or "",
                "extractedFrom": component.pop("journeyId", None) or "unknown",
                "extractedBy": "journey-verify",
                "extractedAt": component.get("createdAt") or now_iso(),
            }
            warnings.append(f"Added missing source info to component {component.get('id')}")

    data["version"] = "1.0.0"
    data["lastUpdated"] = now_iso()
    return data, warnings


MIGRATIONS: Dict[str, Callable[[Dict[str, Any]], Tuple[Dict[str, Any], List[str]]]] = {
    "0.x->1.0.0": _migrate_0x_to_1,
}


def get_migration_path(from_version: str, to_version: str) -> List[str]:
    source, target = parse_version(from_version), parse_version(to_version)
    path = []
    if source.major == 0 and target.major >= 1:
        path.append("0.x->1.0.0")
    return path


def upgrade_document(data: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
    """
    Bring an in-memory document up to CURRENT_VERSION.

    A document without a version counts as 0.0.0. Raises MigrationError when
    the version is older than MIN_SUPPORTED_VERSION; documents at or above
    CURRENT_VERSION come back unchanged.
    """
    version = data.get("version") or "0.0.0"
    if not is_version_supported(version):
        raise MigrationError(f"Version {version} is not supported (min: {MIN_SUPPORTED_VERSION})")

    warnings: List[str] = []
    for key in get_migration_path(version, CURRENT_VERSION):
        data, step_warnings = MIGRATIONS[key](data)
        warnings.extend(step_warnings)
    return data, warnings


def _validate_migrated(file_path: Path, data: Dict[str, Any]) -> Dict[str, Any]:
    """Backfill defaults through the document model; raises MigrationError on a bad shape."""
    model = DOCUMENT_MODELS.get(file_path.name)
    if model is None:
        return data
    try:
        return model.model_validate(data).to_json_dict()
    except ValidationError as e:
        raise MigrationError(f"Migrated {file_path.name} is invalid: {e}") from e


def migrate_file(file_path) -> FileMigrationResult:
    path = Path(file_path)
    try:
        data = load_json(path)
    except (OSError, ValueError) as e:
        return FileMigrationResult(success=False, error=f"Could not read {path}: {e}")
    if not isinstance(data, dict):
        return FileMigrationResult(success=False, error=f"Could not read {path}")

    current_version = data.get("version") or "0.0.0"
    if not needs_migration(current_version):
        return FileMigrationResult(success=True, warnings=["Already at current version"])
    if not is_version_supported(current_version):
        return FileMigrationResult(
            success=False,
            error=f"Version {current_version} is not supported (min: {MIN_SUPPORTED_VERSION})",
        )

    backup_path = path.with_name(f"{path.name}.backup.{int(time.time() * 1000)}")
    shutil.copyfile(path, backup_path)

    warnings: List[str] = []
    try:
        migrated, warnings = upgrade_document(data)
        migrated = _validate_migrated(path, migrated)

        saved = save_json_atomic(path, migrated)
        if not saved.success:
            raise MigrationError(saved.error or "save failed")
    except (MigrationError, OSError, ValueError, TypeError) as e:
        logger.error(f"Migration of {path.name} failed, restoring backup: {e}")
        shutil.copyfile(backup_path, path)
        backup_path.unlink()
        return FileMigrationResult(success=False, warnings=warnings, error=str(e))

    backup_path.unlink()
    logger.info(f"Migrated {path.name} from {current_version} to {CURRENT_VERSION}")
    return FileMigrationResult(success=True, warnings=warnings)


def _document_version(file_path: Path) -> str:
    try:
        data = load_json(file_path)
    except (OSError, ValueError):
        return "0.0.0"
    if not isinstance(data, dict):
        return "0.0.0"
    return data.get("version") or "0.0.0"


def migrate_llkb(llkb_root) -> MigrationResult:
    root = Path(llkb_root)
    result = MigrationResult()

    lessons_path = root / "lessons.json"
    if lessons_path.exists():
        result.from_version = _document_version(lessons_path)

    for name in STORE_DOCUMENTS:
        file_path = root / name
        if not file_path.exists():
            result.warnings.append(f"File not found: {file_path}")
            continue

        file_result = migrate_file(file_path)
        if file_result.success:
            result.migrated_files.append(str(file_path))
        else:
            result.success = False
            if file_result.error:
                result.errors.append(f"{file_path}: {file_result.error}")
        result.warnings.extend(f"{name}: {w}" for w in file_result.warnings)

    return result


def check_migration_needed(llkb_root) -> Dict[str, Any]:
    lessons_path = Path(llkb_root) / "lessons.json"
    if not lessons_path.exists():
        return {
            "needs_migration": False,
            "current_version": CURRENT_VERSION,
            "target_version": CURRENT_VERSION,
            "supported": True,
        }

    current_version = _document_version(lessons_path)
    return {
        "needs_migration": needs_migration(current_version),
        "current_version": current_version,
        "target_version": CURRENT_VERSION,
        "supported": is_version_supported(current_version),
    }


# ==================== Installation ====================

def initialize_llkb(llkb_root) -> SaveResult:
    """Create the store layout; existing files are left untouched."""
    root = Path(llkb_root)
    try:
        ensure_dir(root)
        ensure_dir(root / "patterns")
        ensure_dir(root / "history")

        if not (root / CONFIG_FILENAME).exists():
            save_llkb_config(root)

        defaults = {
            "lessons.json": lambda: LessonsFile().to_json_dict(),
            "components.json": lambda: ComponentsFile().to_json_dict(),
            "analytics.json": lambda: AnalyticsFile().to_json_dict(),
        }
        for name, factory in defaults.items():
            if not (root / name).exists():
                saved = save_json_atomic(root / name, factory())
                if not saved.success:
                    return saved

        for name in PATTERN_FILES:
            pattern_path = root / "patterns" / name
            if not pattern_path.exists():
                saved = save_json_atomic(pattern_path, {"version": CURRENT_VERSION, "patterns": []})
                if not saved.success:
                    return saved
    except OSError as e:
        logger.error(f"Could not initialize LLKB at {root}: {e}")
        return SaveResult(success=False, error=str(e))

    logger.info(f"Initialized LLKB at {root}")
    return SaveResult(success=True)


def validate_llkb_installation(llkb_root) -> InstallationReport:
    root = Path(llkb_root)
    report = InstallationReport()

    for name in [CONFIG_FILENAME] + STORE_DOCUMENTS:
        file_path = root / name
        if not file_path.exists():
            report.missing_files.append(name)
            report.valid = False
            continue
        if not name.endswith(".json"):
            continue
        try:
            data = load_json(file_path)
        except (OSError, ValueError):
            data = None
        if not isinstance(data, dict) or not data.get("version"):
            report.invalid_files.append(name)
            report.valid = False
        elif name == "lessons.json":
            report.version = data["version"]

    if not (root / "patterns").is_dir():
        report.missing_files.append("patterns/")
        report.valid = False

    return report
