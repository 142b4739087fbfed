"""
Unit tests for the harness module registry.
"""

import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "app"))

from llkb.registry import (
    ExportDetails,
    RegistryAddOptions,
    add_component_to_registry,
    find_modules_by_category,
    get_import_path,
    get_module_for_component,
    get_registry_path,
    list_modules,
    load_registry,
    remove_component_from_registry,
    sync_registry_with_components,
    update_component_in_registry,
    validate_registry_consistency,
)


@pytest.fixture
def harness(tmp_path):
    return tmp_path / "harness"


def forms_options(export_name: str = "submitForm", module_path: str = "forms/submit") -> RegistryAddOptions:
    return RegistryAddOptions(
        module_name="forms",
        module_path=module_path,
        export_details=ExportDetails(name=export_name, signature=f"{export_name}(page: Page): Promise<void>"),
    )


def read_registry(harness: Path) -> dict:
    return json.loads(get_registry_path(harness).read_text(encoding="utf-8"))


class TestLoad:
    """Test registry loading."""

    def test_missing_registry_is_empty(self, harness):
        """Test that no file means an empty registry."""
        registry = load_registry(harness)

        assert registry.modules == []
        assert list_modules(harness) == []

    def test_unreadable_registry_is_none(self, harness):
        """Test that a corrupt registry is reported as None."""
        path = get_registry_path(harness)
        path.parent.mkdir(parents=True)
        path.write_text("not json", encoding="utf-8")

        assert load_registry(harness) is None
        assert get_import_path(harness, "COMP001") is None


class TestAdd:
    """Test registering components."""

    def test_creates_module_and_indexes(self, harness, make_component):
        """Test that the module entry and both indexes are written."""
        result = add_component_to_registry(harness, make_component(), forms_options())

        assert result.success
        data = read_registry(harness)
        assert data["componentToModule"] == {"COMP001": "forms/submit"}
        assert data["exportToModule"] == {"submitForm": "forms/submit"}
        module = data["modules"][0]
        assert module["description"] == "forms utilities"
        assert module["peerDependencies"] == ["@playwright/test"]
        assert module["exports"][0]["signature"] == "submitForm(page: Page): Promise<void>"

    def test_existing_export_repointed(self, harness, make_component):
        """Test that re-registering an export name updates it in place."""
        add_component_to_registry(harness, make_component("COMP001"), forms_options())
        add_component_to_registry(harness, make_component("COMP002"), forms_options())

        data = read_registry(harness)
        assert len(data["modules"][0]["exports"]) == 1
        assert data["componentToModule"] == {"COMP002": "forms/submit"}

    def test_import_statement(self, harness, make_component):
        """Test the generated import line."""
        add_component_to_registry(harness, make_component(), forms_options())

        assert get_import_path(harness, "COMP001") == "import { submitForm } from '@modules/forms/submit';"
        module, export = get_module_for_component(harness, "COMP001")
        assert module.name == "forms"
        assert export.name == "submitForm"
        assert get_import_path(harness, "COMP404") is None

    def test_find_by_category(self, harness, make_component):
        """Test module lookup by path or name fragment."""
        add_component_to_registry(harness, make_component(), forms_options())

        assert [m.path for m in find_modules_by_category(harness, "forms")] == ["forms/submit"]
        assert find_modules_by_category(harness, "auth") == []


class TestUpdateAndRemove:
    """Test in-place updates and removal."""

    def test_update_known_fields_only(self, harness, make_component):
        """Test that only signature, description and type are updated."""
        add_component_to_registry(harness, make_component(), forms_options())

        result = update_component_in_registry(harness, "COMP001", {"description": "Submit it", "name": "nope"})

        assert result.success
        export = read_registry(harness)["modules"][0]["exports"][0]
        assert export["description"] == "Submit it"
        assert export["name"] == "submitForm"

    def test_update_unknown_component(self, harness, make_component):
        """Test that an unknown component fails and leaves the file unchanged."""
        add_component_to_registry(harness, make_component(), forms_options())
        before = get_registry_path(harness).read_text(encoding="utf-8")

        result = update_component_in_registry(harness, "COMP404", {"description": "x"})

        assert not result.success
        assert result.error == "Component COMP404 not found in registry"
        assert get_registry_path(harness).read_text(encoding="utf-8") == before

    def test_remove(self, harness, make_component):
        """Test that removal clears the export and the indexes."""
        add_component_to_registry(harness, make_component(), forms_options())

        assert remove_component_from_registry(harness, "COMP001").success
        data = read_registry(harness)
        assert data["modules"][0]["exports"] == []
        assert data["componentToModule"] == {}

    def test_unsupported_registry_version(self, harness, make_component):
        """Test that a registry older than the supported minimum is neither loaded nor rewritten."""
        add_component_to_registry(harness, make_component(), forms_options())
        path = get_registry_path(harness)
        data = read_registry(harness)
        data["version"] = "0.0.1"
        path.write_text(json.dumps(data), encoding="utf-8")
        before = path.read_text(encoding="utf-8")

        result = update_component_in_registry(harness, "COMP001", {"description": "x"})

        assert not result.success
        assert "not supported" in result.error
        assert path.read_text(encoding="utf-8") == before
        assert load_registry(harness) is None

    def test_missing_registry(self, harness):
        """Test that mutations need an existing registry."""
        assert remove_component_from_registry(harness, "COMP001").error == "Registry not found"
        assert update_component_in_registry(harness, "COMP001", {}).error == "Registry not found"


class TestConsistency:
    """Test cross-checks against the components document."""

    def test_validation_findings(self, harness, make_component):
        """Test missing entries on either side and path mismatches."""
        add_component_to_registry(harness, make_component("COMP001"), forms_options())
        add_component_to_registry(harness, make_component("COMP003"), forms_options("openMenu", "nav/menu"))
        add_component_to_registry(harness, make_component("COMP999"), forms_options("gone", "old/gone"))
        components = [
            make_component("COMP001"),
            make_component("COMP002"),
            make_component("COMP003", file_path="src/other.ts"),
        ]

        validation = validate_registry_consistency(harness, components)

        assert not validation.valid
        assert validation.missing_in_registry == ["COMP002"]
        assert validation.missing_in_components == ["COMP999"]
        assert [m.component_id for m in validation.path_mismatches] == ["COMP003"]

    def test_consistent_registry(self, harness, make_component):
        """Test a registry that matches its components."""
        add_component_to_registry(harness, make_component(), forms_options())

        assert validate_registry_consistency(harness, [make_component()]).valid

    def test_sync_drops_stale_exports(self, harness, make_component):
        """Test that stale exports and empty modules are removed."""
        add_component_to_registry(harness, make_component("COMP001"), forms_options())
        add_component_to_registry(harness, make_component("COMP999"), forms_options("gone", "old/gone"))

        result = sync_registry_with_components(harness, [make_component("COMP001"), make_component("COMP002")])

        assert result.success
        assert result.removed == 1
        assert result.unregistered == ["COMP002"]
        assert [m["path"] for m in read_registry(harness)["modules"]] == ["forms/submit"]
        assert "gone" not in read_registry(harness)["exportToModule"]
