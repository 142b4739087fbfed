"""
Module Registry

Maps extracted components to the harness module that exports them, so
generated tests can import them:

    {harness_root}/src/modules/registry.json

componentToModule and exportToModule are rebuilt from `modules` on every
write and never edited directly.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .file_utils import update_json_with_lock
from .loaders import load_document
from .migration import upgrade_document
from .models import Component, ModuleEntry, ModuleExport, ModuleRegistry, UpdateResult, now_iso

logger = logging.getLogger(__name__)

REGISTRY_FILENAME = "registry.json"
DEFAULT_MODULES_DIR = "src/modules"
DEFAULT_PEER_DEPENDENCIES = ["@playwright/test"]


@dataclass
class ExportDetails:
    name: str
    type: str = "function"
    signature: str = ""
    description: str = ""


@dataclass
class RegistryAddOptions:
    module_name: str
    module_path: str
    export_details: ExportDetails
    module_description: Optional[str] = None
    dependencies: List[str] = field(default_factory=list)
    peer_dependencies: Optional[List[str]] = None


@dataclass
class PathMismatch:
    component_id: str
    registry_path: str
    component_path: str


@dataclass
class RegistryValidation:
    valid: bool = True
    missing_in_registry: List[str] = field(default_factory=list)
    missing_in_components: List[str] = field(default_factory=list)
    path_mismatches: List[PathMismatch] = field(default_factory=list)


@dataclass
class RegistrySyncResult:
    success: bool
    error: Optional[str] = None
    removed: int = 0
    # Active components with no export entry; they need add_component_to_registry
    unregistered: List[str] = field(default_factory=list)


def get_registry_path(harness_root) -> Path:
    return Path(harness_root) / DEFAULT_MODULES_DIR / REGISTRY_FILENAME


def create_empty_registry() -> ModuleRegistry:
    return ModuleRegistry()


def load_registry(harness_root) -> Optional[ModuleRegistry]:
    """Empty registry when the file is absent, None when it is unreadable."""
    path = get_registry_path(harness_root)
    if not path.exists():
        return create_empty_registry()
    return load_document(path, ModuleRegistry)


def rebuild_indexes(registry: ModuleRegistry) -> None:
    registry.component_to_module = {}
    registry.export_to_module = {}
    for module in registry.modules:
        for export in module.exports:
            if export.component_id:
                registry.component_to_module[export.component_id] = module.path
            registry.export_to_module[export.name] = module.path


def _update_registry(harness_root, mutate) -> UpdateResult:
    """Locked read-modify-write; mutate(registry) may return an error string to abort."""
    path = get_registry_path(harness_root)
    errors: List[str] = []

    def transform(data):
        if data:
            data, _ = upgrade_document(data)
        registry = ModuleRegistry.model_validate(data) if data else create_empty_registry()
        error = mutate(registry)
        if error:
            errors.append(error)
            return data
        rebuild_indexes(registry)
        registry.last_updated = now_iso()
        return registry.to_json_dict()

    result = update_json_with_lock(path, transform)
    if result.success and errors:
        return UpdateResult(success=False, error=errors[0], retries_needed=result.retries_needed)
    return result


def save_registry(harness_root, registry: ModuleRegistry) -> UpdateResult:
    """Replace the registry wholesale (indexes are rebuilt first)."""
    def replace(current: ModuleRegistry):
        current.modules = registry.modules
        current.version = registry.version

    return _update_registry(harness_root, replace)


# ==================== Mutations ====================

def add_component_to_registry(harness_root, component: Component, options: RegistryAddOptions) -> UpdateResult:
    """Register (or re-point) the export for a component, creating its module entry if needed."""
    details = options.export_details

    def add(registry: ModuleRegistry):
        module = next((m for m in registry.modules if m.path == options.module_path), None)
        if module is None:
            module = ModuleEntry(
                name=options.module_name,
                path=options.module_path,
                description=options.module_description or f"{options.module_name} utilities",
                dependencies=list(options.dependencies),
                peer_dependencies=list(options.peer_dependencies or DEFAULT_PEER_DEPENDENCIES),
            )
            registry.modules.append(module)

        existing = next((e for e in module.exports if e.name == details.name), None)
        if existing is not None:
            existing.component_id = component.id
            existing.signature = details.signature
            existing.description = details.description
        else:
            module.exports.append(ModuleExport(
                name=details.name,
                type=details.type,
                component_id=component.id,
                signature=details.signature,
                description=details.description,
            ))
        module.last_updated = now_iso()

    result = _update_registry(harness_root, add)
    if result.success:
        logger.info(f"Registered {component.id} as {details.name} in {options.module_path}")
    return result


def _find_export(registry: ModuleRegistry, component_id: str) -> Optional[Tuple[ModuleEntry, ModuleExport]]:
    for module in registry.modules:
        for export in module.exports:
            if export.component_id == component_id:
                return module, export
    return None


def remove_component_from_registry(harness_root, component_id: str) -> UpdateResult:
    if not get_registry_path(harness_root).exists():
        return UpdateResult(success=False, error="Registry not found")

    def remove(registry: ModuleRegistry):
        found = _find_export(registry, component_id)
        if found is None:
            return f"Component {component_id} not found in registry"
        module, export = found
        module.exports.remove(export)
        module.last_updated = now_iso()

    return _update_registry(harness_root, remove)


def update_component_in_registry(harness_root, component_id: str, updates: Dict[str, Any]) -> UpdateResult:
    """
    Update an export's signature / description / type in place.

    Args:
        updates: Any of "signature", "description", "type"; other keys are ignored
    """
    if not get_registry_path(harness_root).exists():
        return UpdateResult(success=False, error="Registry not found")

    def update(registry: ModuleRegistry):
        found = _find_export(registry, component_id)
        if found is None:
            return f"Component {component_id} not found in registry"
        module, export = found
        for key in ("signature", "description", "type"):
            if key in updates:
                setattr(export, key, updates[key])
        module.last_updated = now_iso()

    return _update_registry(harness_root, update)


# ==================== Queries ====================

def get_module_for_component(harness_root, component_id: str) -> Optional[Tuple[ModuleEntry, ModuleExport]]:
    registry = load_registry(harness_root)
    if registry is None:
        return None
    module_path = registry.component_to_module.get(component_id)
    if not module_path:
        return None
    module = next((m for m in registry.modules if m.path == module_path), None)
    if module is None:
        return None
    export = next((e for e in module.exports if e.component_id == component_id), None)
    if export is None:
        return None
    return module, export


def get_import_path(harness_root, component_id: str) -> Optional[str]:
    found = get_module_for_component(harness_root, component_id)
    if found is None:
        return None
    module, export = found
    return f"import {{ {export.name} }} from '@modules/{module.path}';"


def list_modules(harness_root) -> List[ModuleEntry]:
    registry = load_registry(harness_root)
    return registry.modules if registry else []


def find_modules_by_category(harness_root, category: str) -> List[ModuleEntry]:
    return [m for m in list_modules(harness_root) if category in m.path or category in m.name]


# ==================== Consistency ====================

def validate_registry_consistency(harness_root, components: List[Component]) -> RegistryValidation:
    """Cross-check registry exports against the components document."""
    registry = load_registry(harness_root)
    result = RegistryValidation()

    if registry is None:
        result.valid = False
        result.missing_in_registry = [c.id for c in components if not c.archived]
        return result

    registered = {
        export.component_id
        for module in registry.modules
        for export in module.exports
        if export.component_id
    }

    for component in components:
        if component.archived:
            continue
        if component.id not in registered:
            result.missing_in_registry.append(component.id)
            continue
        module_path = registry.component_to_module.get(component.id)
        if module_path and module_path not in component.file_path:
            result.path_mismatches.append(PathMismatch(component.id, module_path, component.file_path))

    known = {c.id for c in components}
    result.missing_in_components = sorted(registered - known)

    result.valid = not (result.missing_in_registry or result.missing_in_components or result.path_mismatches)
    return result


def sync_registry_with_components(harness_root, components: List[Component]) -> RegistrySyncResult:
    """
    Drop exports whose component no longer exists (and modules left empty).
    Components missing from the registry are reported, not invented: their
    module placement is a caller decision.
    """
    validation = validate_registry_consistency(harness_root, components)
    stale = set(validation.missing_in_components)
    removed = []

    def prune(registry: ModuleRegistry):
        for module in registry.modules:
            kept = [e for e in module.exports if e.component_id not in stale]
            removed.append(len(module.exports) - len(kept))
            module.exports = kept
        registry.modules = [m for m in registry.modules if m.exports]

    update = _update_registry(harness_root, prune)
    if update.success and sum(removed):
        logger.info(f"Removed {sum(removed)} stale registry exports")
    return RegistrySyncResult(
        success=update.success,
        error=update.error,
        removed=sum(removed),
        unregistered=validation.missing_in_registry,
    )
