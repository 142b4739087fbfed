"""
Unit tests for the mining cache, element extraction and passive signal miners.
"""

import os
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "app"))

from llkb.mining import (
    MiningCache,
    ScannedFile,
    extract_elements,
    generate_analytics_patterns,
    generate_feature_flag_patterns,
    generate_i18n_patterns,
    mine_analytics_events,
    mine_elements,
    mine_feature_flags,
    mine_i18n_keys,
    scan_all_source_directories,
    scan_directory,
)
from llkb.mining.analytics_events import detect_analytics_provider, extract_analytics_events
from llkb.mining.cache import create_cache_from_files
from llkb.mining.elements import (
    extract_forms_from_content,
    extract_modals_from_content,
    extract_route_params,
    extract_tables_from_content,
    path_to_name,
)
from llkb.mining.extractors import field_name_to_label
from llkb.mining.feature_flags import detect_feature_flag_provider, extract_feature_flags
from llkb.mining.i18n import I18nMiningResult, detect_i18n_library, extract_i18n_keys, find_locale_files

I18N_SOURCE = (
    "import { useTranslation } from 'react-i18next';\n"
    "const { t } = useTranslation();\n"
    "t('login.title');\n"
    "t('common:save', { defaultValue: 'Save changes' });\n"
)

ANALYTICS_SOURCE = (
    "gtag('event', 'sign_up', { method: 'email', plan: 'pro' });\n"
    "mixpanel.track('Checkout Started');\n"
    "trackEvent('signup_clicked');\n"
)

FLAGS_SOURCE = (
    "const on = ldClient.variation('new-checkout', false);\n"
    "if (isFeatureEnabled('darkMode')) {}\n"
    "const beta = process.env.FEATURE_BETA_UI;\n"
)


def write(path: Path, content: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


# ==================== Cache ====================

class TestMiningCache:
    """Test the bounded content cache."""

    def test_read_through_and_hit(self, tmp_path):
        """Test that a second read is served from the cache."""
        path = write(tmp_path / "a.ts", "const a = 1;")
        cache = MiningCache()

        assert cache.get_content(path) == "const a = 1;"
        assert cache.get_content(path) == "const a = 1;"

        stats = cache.get_stats()
        assert (stats.hits, stats.misses) == (1, 1)
        assert cache.get_hit_rate() == 50
        assert cache.memory_usage == len("const a = 1;") * 2

    def test_mtime_change_invalidates(self, tmp_path):
        """Test that a modified file is re-read."""
        path = write(tmp_path / "a.ts", "old")
        cache = MiningCache()
        cache.get_content(path)

        path.write_text("new", encoding="utf-8")
        st = os.stat(path)
        os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + 1_000_000_000))

        assert cache.get_content(path) == "new"
        assert cache.get_stats().invalidations == 1

    def test_skips_oversized_missing_and_symlinks(self, tmp_path):
        """Test the files that are never cached."""
        big = write(tmp_path / "big.ts", "x" * 20)
        link = tmp_path / "link.ts"
        link.symlink_to(big)
        cache = MiningCache(max_file_size=10)

        assert cache.get_content(big) is None
        assert cache.get_content(link) is None
        assert cache.get_content(tmp_path / "missing.ts") is None
        assert cache.get_stats().skipped == 1
        assert cache.size == 0

    def test_lru_eviction_by_count(self, tmp_path):
        """Test that the least recently used entry is evicted first."""
        a, b, c = (write(tmp_path / f"{n}.ts", n) for n in "abc")
        cache = MiningCache(max_files=2)
        cache.get_content(a)
        cache.get_content(b)
        cache.get_content(a)

        cache.get_content(c)

        assert cache.has(a)
        assert not cache.has(b)
        assert cache.has(c)
        assert cache.get_stats().evictions == 1

    def test_eviction_by_memory(self, tmp_path):
        """Test that the memory ceiling evicts old entries."""
        a, b, c = (write(tmp_path / f"{n}.ts", n * 5) for n in "abc")
        cache = MiningCache(max_memory=20)
        for path in (a, b, c):
            cache.get_content(path)

        assert not cache.has(a)
        assert cache.memory_usage == 20

    def test_invalidate_and_clear(self, tmp_path):
        """Test explicit invalidation and clearing."""
        path = write(tmp_path / "a.ts", "a")
        cache = MiningCache()
        cache.get_content(path)

        assert cache.invalidate(path)
        assert not cache.invalidate(path)

        cache.get_content(path)
        cache.clear()
        assert cache.size == 0
        assert cache.get_stats().misses == 0

    def test_warm_up_without_disk(self, tmp_path):
        """Test pre-seeded entries served without touching the filesystem."""
        cache = create_cache_from_files([ScannedFile(path=str(tmp_path / "ghost.ts"), content="seeded")])

        assert cache.get_content(tmp_path / "ghost.ts") == "seeded"


class TestScanning:
    """Test directory walking."""

    def test_scan_directory_filters(self, sample_project):
        """Test extension filtering and skipped directories."""
        write(sample_project / "src" / "node_modules" / "dep.ts", "x")
        write(sample_project / "src" / ".hidden" / "h.ts", "x")
        write(sample_project / "src" / "styles.css", "x")

        files = scan_directory(sample_project / "src", MiningCache())

        assert [Path(f.path).name for f in files] == ["LoginForm.tsx", "routes.tsx"]

    def test_max_files(self, sample_project):
        """Test that the file cap truncates the walk."""
        assert len(scan_directory(sample_project / "src", MiningCache(), max_files=1)) == 1

    def test_all_source_directories(self, sample_project):
        """Test that conventional directories are found and deduplicated."""
        write(sample_project / "lib" / "util.ts", "export const x = 1;")

        files = scan_all_source_directories(sample_project, MiningCache())

        assert sorted(Path(f.path).name for f in files) == ["LoginForm.tsx", "routes.tsx", "util.ts"]


# ==================== Elements ====================

class TestElementExtractors:
    """Test individual element extractors."""

    def test_route_helpers(self):
        """Test route naming and parameter extraction."""
        assert path_to_name("/") == "Home"
        assert path_to_name("/users/:id") == "Users"
        assert path_to_name("/user-settings") == "User Settings"
        assert extract_route_params("/orgs/:orgId/users/:id") == ["orgId", "id"]

    def test_field_labels(self):
        """Test label derivation from identifiers."""
        assert field_name_to_label("firstName") == "First Name"
        assert field_name_to_label("last_name") == "Last Name"

    def test_zod_form(self):
        """Test that zod schema fields are typed."""
        content = (
            "const signupSchema = z.object({\n"
            "  email: z.string().email(),\n"
            "  age: z.number().min(18),\n"
            "  terms: z.boolean(),\n"
            "});\n"
        )
        forms = {}

        extract_forms_from_content(content, "src/forms/SignupForm.ts", forms)

        form = forms["signup"]
        assert form.name == "Signup"
        assert [(f.name, f.type) for f in form.fields] == [("email", "text"), ("age", "number"), ("terms", "checkbox")]
        assert form.fields[0].label == "Email"

    def test_ag_grid_table(self):
        """Test columnDefs extraction."""
        content = (
            "const columnDefs = [{ field: 'name' }, { field: 'email' }];\n"
            "<AgGridReact columnDefs={columnDefs} />\n"
        )
        tables = {}

        extract_tables_from_content(content, "src/grids/UserGrid.tsx", tables)

        assert tables["user"].columns == ["name", "email"]

    def test_mui_dialog(self):
        """Test modal detection and title extraction."""
        content = "<Dialog open={open} onClose={close}><DialogTitle>Delete user</DialogTitle></Dialog>"
        modals = {}

        extract_modals_from_content(content, "src/modals/ConfirmDialog.tsx", modals)

        assert modals["confirm"].name == "Delete user"

    def test_entities_and_api_resources(self, tmp_path):
        """Test declared types, API resources and utility exclusions."""
        content = (
            "export interface OrderModel {\n  id: string\n}\n"
            "export interface ButtonProps { label: string }\n"
            "fetch('/api/invoices').then(r => r.json());\n"
        )

        elements = extract_elements([ScannedFile(path=str(tmp_path / "api.ts"), content=content)], tmp_path)

        by_name = {e.name: e for e in elements.entities}
        assert set(by_name) == {"order", "invoice"}
        assert by_name["invoice"].endpoint == "/api/invoices"
        assert by_name["invoice"].plural == "invoices"

    def test_nextjs_route_trees(self, tmp_path):
        """Test pages/ and app/ router conventions."""
        write(tmp_path / "pages" / "index.tsx", "")
        write(tmp_path / "pages" / "_app.tsx", "")
        write(tmp_path / "pages" / "users" / "[id].tsx", "")
        write(tmp_path / "app" / "(marketing)" / "about" / "page.tsx", "")

        elements = extract_elements([], tmp_path)

        by_path = {r.path: r for r in elements.routes}
        assert set(by_path) == {"/", "/users/:id", "/about"}
        assert by_path["/users/:id"].params == ["id"]


class TestMineElements:
    """Test whole-project element mining."""

    @pytest.mark.asyncio
    async def test_sample_project(self, sample_project):
        """Test routes, forms and entities found in the sample app."""
        result = await mine_elements(sample_project)

        elements = result.elements
        assert [r.path for r in elements.routes] == ["/login", "/users", "/users/:id"]
        assert [e.name for e in elements.entities] == ["user"]
        assert [(f.name, f.type) for f in elements.forms[0].fields] == [("email", "email"), ("password", "password")]
        assert result.stats["files_scanned"] == 2
        assert result.stats["total_elements"] == elements.total

    @pytest.mark.asyncio
    async def test_shared_cache_left_populated(self, sample_project):
        """Test that a caller-owned cache is not cleared."""
        cache = MiningCache()

        await mine_elements(sample_project, cache=cache)

        assert cache.size == 2


# ==================== Passive signals ====================

class TestI18nMining:
    """Test translation key mining."""

    def _files(self):
        return [ScannedFile(path="src/Login.tsx", content=I18N_SOURCE)]

    def test_library_and_keys(self):
        """Test library detection, namespaces and default values."""
        files = self._files()
        keys = extract_i18n_keys(files)

        assert detect_i18n_library(files) == "react-i18next"
        assert [(k.key, k.namespace, k.default_value) for k in keys] == [
            ("title", None, None),
            ("save", "common", "Save changes"),
        ]

    def test_patterns(self):
        """Test the two assertion patterns per key."""
        files = self._files()
        patterns = generate_i18n_patterns(I18nMiningResult(keys=extract_i18n_keys(files)))

        assert [p.original_text for p in patterns] == [
            "verify Title text",
            "verify Title is visible",
            "verify Save text",
            "verify Save is visible",
        ]
        assert patterns[2].selector_hints[0].value == "Save changes"
        assert all(p.confidence == 0.75 and p.mapped_action == "assert" for p in patterns)

    def test_locale_files(self, tmp_path):
        """Test locale directory discovery."""
        write(tmp_path / "public" / "locales" / "en" / "common.json", "{}")
        write(tmp_path / "locales" / "fr.json", "{}")

        names = sorted(Path(p).name for p in find_locale_files(tmp_path))

        assert names == ["common.json", "fr.json"]

    @pytest.mark.asyncio
    async def test_mine_project(self, tmp_path):
        """Test the async entry point over a project tree."""
        write(tmp_path / "src" / "Login.tsx", I18N_SOURCE)

        result = await mine_i18n_keys(tmp_path)

        assert result.library == "react-i18next"
        assert len(result.keys) == 2


class TestAnalyticsMining:
    """Test analytics event mining."""

    def test_events_and_properties(self):
        """Test provider detection and event extraction."""
        files = [ScannedFile(path="src/track.ts", content=ANALYTICS_SOURCE)]
        events = extract_analytics_events(files)

        assert detect_analytics_provider(files) == "ga4"
        assert [(e.name, e.provider) for e in events] == [
            ("sign_up", "ga4"),
            ("Checkout Started", "mixpanel"),
            ("signup_clicked", "custom"),
        ]
        assert events[0].properties == ["method", "plan"]

    @pytest.mark.asyncio
    async def test_patterns(self, tmp_path):
        """Test that each event yields a tracked and a trigger pattern."""
        write(tmp_path / "src" / "track.ts", ANALYTICS_SOURCE)

        patterns = generate_analytics_patterns(await mine_analytics_events(tmp_path))

        assert len(patterns) == 6
        assert patterns[0].original_text == "verify Sign Up tracked"
        assert patterns[1].original_text == "trigger Sign Up event"
        assert patterns[1].mapped_action == "click"


class TestFeatureFlagMining:
    """Test feature flag mining."""

    def test_flags(self):
        """Test provider detection, defaults and env flags."""
        files = [ScannedFile(path="src/flags.ts", content=FLAGS_SOURCE)]
        flags = extract_feature_flags(files)

        assert detect_feature_flag_provider(files) == "launchdarkly"
        assert [f.name for f in flags] == ["new-checkout", "darkMode", "BETA_UI"]
        assert flags[0].default_value is False
        assert flags[1].default_value is None

    @pytest.mark.asyncio
    async def test_patterns(self, tmp_path):
        """Test three patterns per flag."""
        write(tmp_path / "src" / "flags.ts", FLAGS_SOURCE)

        patterns = generate_feature_flag_patterns(await mine_feature_flags(tmp_path))

        assert len(patterns) == 9
        assert patterns[0].original_text == "ensure New Checkout visible"
        assert patterns[2].category == "navigation"
