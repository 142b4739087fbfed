"""
Pytest configuration and shared fixtures for LLKB tests.
"""

import json
import sys
from pathlib import Path

import pytest

# Add backend app to path
sys.path.insert(0, str(Path(__file__).parent.parent / "app"))

from llkb.models import Component, ComponentMetrics, ComponentSource, Lesson, LessonMetrics


# ==================== Store Fixtures ====================

@pytest.fixture
def llkb_root(tmp_path, monkeypatch):
    """An empty store root; LLKB_* variables from the host are cleared."""
    for name in ("LLKB_ROOT", "LLKB_ENABLED", "LLKB_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    # Keep a stray .env in the working directory out of the tests
    monkeypatch.chdir(tmp_path)
    root = tmp_path / ".artk" / "llkb"
    root.mkdir(parents=True)
    return root


@pytest.fixture
def write_json():
    """Write a JSON document and return its path."""
    def _write(path: Path, data) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        return path
    return _write


# ==================== Sample Data Fixtures ====================

@pytest.fixture
def make_lesson():
    """Factory for lessons with sensible metrics."""
    def _make(lesson_id: str = "L001", **overrides) -> Lesson:
        metrics = overrides.pop("metrics", None) or LessonMetrics(
            occurrences=5,
            success_rate=0.9,
            confidence=0.8,
            first_seen="2026-01-01T00:00:00.000Z",
        )
        data = {
            "id": lesson_id,
            "title": "Wait for grid to load",
            "pattern": "await page.waitForSelector('.ag-row')",
            "trigger": "ag-grid data loading",
            "category": "timing",
            "scope": "framework:ag-grid",
            "journey_ids": ["JRN-001"],
            "metrics": metrics,
        }
        data.update(overrides)
        return Lesson(**data)
    return _make


@pytest.fixture
def make_component():
    """Factory for components with sensible metrics."""
    def _make(component_id: str = "COMP001", **overrides) -> Component:
        data = {
            "id": component_id,
            "name": "submitForm",
            "description": "Submit the active form and wait for the toast",
            "category": "ui-interaction",
            "scope": "app-specific",
            "file_path": "src/modules/forms/submit.ts",
            "metrics": ComponentMetrics(total_uses=4, success_rate=0.95),
            "source": ComponentSource(
                original_code="await page.click('[data-testid=submit]');",
                extracted_from="JRN-001",
                extracted_at="2026-01-01T00:00:00.000Z",
            ),
        }
        data.update(overrides)
        return Component(**data)
    return _make


@pytest.fixture
def sample_project(tmp_path):
    """A small React project tree for discovery and mining tests."""
    root = tmp_path / "app"
    (root / "src" / "components").mkdir(parents=True)
    (root / "src" / "pages").mkdir(parents=True)
    (root / "package.json").write_text(json.dumps({
        "name": "sample-app",
        "dependencies": {"react": "^18.2.0", "react-dom": "^18.2.0", "@mui/material": "^5.14.0"},
    }), encoding="utf-8")
    (root / "src" / "components" / "LoginForm.tsx").write_text(
        "export function LoginForm() {\n"
        "  return (\n"
        "    <form data-testid=\"login-form\">\n"
        "      <input name=\"email\" type=\"email\" data-testid=\"email-input\" />\n"
        "      <input name=\"password\" type=\"password\" data-testid=\"password-input\" />\n"
        "      <button data-testid=\"login-button\">Sign in</button>\n"
        "    </form>\n"
        "  );\n"
        "}\n",
        encoding="utf-8",
    )
    (root / "src" / "pages" / "routes.tsx").write_text(
        "const routes = [\n"
        "  { path: '/login', element: <Login /> },\n"
        "  { path: '/users', element: <UserList /> },\n"
        "  { path: '/users/:id', element: <UserDetail /> },\n"
        "];\n"
        "interface User { id: string; name: string; }\n",
        encoding="utf-8",
    )
    return root
