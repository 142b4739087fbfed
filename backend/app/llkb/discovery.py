"""
Project Discovery - build the app profile used to seed patterns

Detects:
1. Frameworks (react, angular, vue, nextjs, svelte) from package.json and indicator files
2. UI libraries (mui, antd, chakra, ag-grid, tailwind, bootstrap), including enterprise editions
3. Selector conventions (data-testid, data-cy, aria-label, role, ...)
4. Authentication hints (.artk/discovery.json, else a source scan)

Detection works like a manual tester skimming the repo: each signature that
matches adds evidence and confidence, capped per framework.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Any

from pydantic import ValidationError

from .file_utils import ensure_dir, load_json, save_json_atomic
from .mining.cache import MiningCache
from .models import (
    AuthHints,
    DiscoveredProfile,
    FrameworkInfo,
    SelectorSignals,
    UILibraryInfo,
)

logger = logging.getLogger(__name__)

PROFILE_FILENAME = "discovered-profile.json"

PACKAGE_CONFIDENCE_BOOST = 0.3
FILE_CONFIDENCE_BOOST = 0.2
UI_PACKAGE_CONFIDENCE_BOOST = 0.25
UI_ENTERPRISE_BOOST = 0.15

MAX_SAMPLE_SELECTORS = 50
KEPT_SAMPLE_SELECTORS = 10
MAX_SCAN_DEPTH = 20
MAX_FILES_TO_SCAN = 5000

SELECTOR_SCAN_EXTENSIONS = (".tsx", ".jsx", ".vue", ".html", ".ts", ".js")
COUNTED_EXTENSIONS = (".tsx", ".jsx", ".vue", ".ts", ".js")


# ==================== Signature tables ====================

FRAMEWORK_SIGNATURES: Dict[str, Dict[str, Any]] = {
    "react": {
        "packages": ["react", "react-dom"],
        "files": ["src/App.tsx", "src/App.jsx", "src/index.tsx", "src/index.jsx"],
        "max_confidence": 0.95,
    },
    "angular": {
        "packages": ["@angular/core", "@angular/common"],
        "files": ["angular.json", "src/app/app.module.ts", "src/app/app.component.ts"],
        "max_confidence": 0.95,
    },
    "vue": {
        "packages": ["vue"],
        "files": ["src/App.vue", "src/main.ts", "vue.config.js", "vite.config.ts"],
        "max_confidence": 0.90,
    },
    "nextjs": {
        "packages": ["next"],
        "files": ["next.config.js", "next.config.mjs", "next.config.ts", "src/app/page.tsx", "pages/_app.tsx"],
        "max_confidence": 0.95,
    },
    "svelte": {
        "packages": ["svelte"],
        "files": ["svelte.config.js", "src/App.svelte"],
        "max_confidence": 0.90,
    },
}

UI_LIBRARY_SIGNATURES: Dict[str, Dict[str, Any]] = {
    "mui": {
        "packages": ["@mui/material", "@mui/core", "@emotion/react", "@emotion/styled"],
        "enterprise_packages": ["@mui/x-data-grid-pro", "@mui/x-data-grid-premium"],
        "max_confidence": 0.85,
    },
    "antd": {
        "packages": ["antd", "@ant-design/icons"],
        "enterprise_packages": ["@ant-design/pro-components", "@ant-design/pro-layout"],
        "max_confidence": 0.85,
    },
    "chakra": {
        "packages": ["@chakra-ui/react", "@chakra-ui/core"],
        "max_confidence": 0.85,
    },
    "ag-grid": {
        "packages": ["ag-grid-community", "ag-grid-react", "ag-grid-angular", "ag-grid-vue"],
        "enterprise_packages": ["ag-grid-enterprise", "@ag-grid-enterprise/core"],
        "max_confidence": 0.90,
    },
    "tailwind": {
        "packages": ["tailwindcss"],
        "max_confidence": 0.80,
    },
    "bootstrap": {
        "packages": ["bootstrap", "react-bootstrap", "ng-bootstrap", "bootstrap-vue"],
        "max_confidence": 0.80,
    },
}

SELECTOR_ATTRIBUTE_PATTERNS: Dict[str, "re.Pattern[str]"] = {
    attr: re.compile(rf"{attr}=['\"]([^'\"]+)['\"]")
    for attr in ("data-testid", "data-cy", "data-test", "data-test-id", "aria-label", "role")
}

AUTH_FILE_PATTERNS = [re.compile(p, re.I) for p in (r"auth", r"login", r"signin", r"oauth", r"sso")]

# First matching type wins
AUTH_CODE_PATTERNS: Dict[str, List["re.Pattern[str]"]] = {
    "oidc": [re.compile(p, re.I) for p in (r"oidc", r"openid", r"id_token", r"authorization_code")],
    "oauth": [re.compile(p, re.I) for p in (r"oauth", r"access_token", r"refresh_token")],
    "form": [re.compile(p, re.I) for p in (r"login.*form", r"username.*password", r"signin")],
    "sso": [re.compile(p, re.I) for p in (r"sso", r"saml", r"federation")],
}

LOGIN_ROUTE_RE = re.compile(r"['\"](/login|/signin|/auth)['\"]", re.I)
VERSION_PREFIX_RE = re.compile(r"[\^~>=<]")


@dataclass
class DiscoveryResult:
    success: bool
    profile: Optional[DiscoveredProfile]
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


# ==================== Package detection ====================

def _read_dependencies(project_root: Path) -> Optional[Dict[str, str]]:
    """dependencies + devDependencies from package.json; None when missing or unreadable."""
    try:
        package_json = load_json(project_root / "package.json")
    except (OSError, ValueError):
        return None
    if not isinstance(package_json, dict):
        return None

    deps: Dict[str, str] = {}
    for key in ("dependencies", "devDependencies"):
        section = package_json.get(key)
        if isinstance(section, dict):
            deps.update({str(k): str(v) for k, v in section.items()})
    return deps


def detect_frameworks(project_root) -> List[FrameworkInfo]:
    root = Path(project_root)
    deps = _read_dependencies(root)
    if deps is None:
        return []

    signals = []
    for name, signature in FRAMEWORK_SIGNATURES.items():
        evidence = []
        confidence = 0.0

        for package in signature["packages"]:
            if deps.get(package):
                evidence.append(f"package.json:{package}@{deps[package]}")
                confidence += PACKAGE_CONFIDENCE_BOOST

        for indicator in signature["files"]:
            if (root / indicator).exists():
                evidence.append(f"file:{indicator}")
                confidence += FILE_CONFIDENCE_BOOST

        if evidence:
            primary = signature["packages"][0]
            version = VERSION_PREFIX_RE.sub("", deps[primary], count=1) if deps.get(primary) else None
            signals.append(FrameworkInfo(
                name=name,
                version=version,
                confidence=round(min(confidence, signature["max_confidence"]), 2),
                evidence=evidence,
            ))

    return sorted(signals, key=lambda s: s.confidence, reverse=True)


def detect_ui_libraries(project_root) -> List[UILibraryInfo]:
    deps = _read_dependencies(Path(project_root))
    if deps is None:
        return []

    signals = []
    for name, signature in UI_LIBRARY_SIGNATURES.items():
        evidence = []
        confidence = 0.0
        has_enterprise = False

        for package in signature["packages"]:
            if deps.get(package):
                evidence.append(f"package.json:{package}")
                confidence += UI_PACKAGE_CONFIDENCE_BOOST

        for package in signature.get("enterprise_packages", []):
            if deps.get(package):
                evidence.append(f"package.json:{package} (enterprise)")
                has_enterprise = True
                confidence += UI_ENTERPRISE_BOOST

        if evidence:
            signals.append(UILibraryInfo(
                name=name,
                confidence=round(min(confidence, signature["max_confidence"]), 2),
                has_enterprise=has_enterprise,
                evidence=evidence,
            ))

    return sorted(signals, key=lambda s: s.confidence, reverse=True)


# ==================== Selector signals ====================

def _walk_source_files(directory: str, extensions, max_depth: int = MAX_SCAN_DEPTH, max_files: int = MAX_FILES_TO_SCAN):
    """Yield source files under directory, skipping hidden dirs, node_modules and symlinks."""
    yielded = 0
    stack = [(directory, 0)]
    while stack:
        current, depth = stack.pop()
        if depth > max_depth:
            continue
        try:
            entries = sorted(os.scandir(current), key=lambda e: e.name)
        except OSError:
            continue

        subdirs = []
        for entry in entries:
            if entry.is_symlink():
                continue
            if entry.is_dir():
                if entry.name != "node_modules" and not entry.name.startswith("."):
                    subdirs.append((entry.path, depth + 1))
            elif entry.is_file() and (extensions is None or entry.name.endswith(extensions)):
                if yielded >= max_files:
                    return
                yielded += 1
                yield entry.path
        stack.extend(reversed(subdirs))


def _read_source(file_path: str, cache: Optional[MiningCache]) -> Optional[str]:
    if cache is not None:
        return cache.get_content(file_path)
    try:
        with open(file_path, "r", encoding="utf-8", errors="replace") as f:
            return f.read()
    except OSError as e:
        logger.debug(f"Skipping unreadable file {file_path}: {e}")
        return None


def detect_naming_convention(samples: List[str]) -> str:
    if not samples:
        return "kebab-case"

    kebab = sum(1 for s in samples if "-" in s)
    camel = sum(1 for s in samples if re.search(r"[a-z][A-Z]", s))
    snake = sum(1 for s in samples if "_" in s)
    best = max(kebab, camel, snake)

    if best == 0:
        return "kebab-case"
    winners = [name for name, count in (("kebab-case", kebab), ("camelCase", camel), ("snake_case", snake)) if count == best]
    return winners[0] if len(winners) == 1 else "mixed"


def analyze_selector_signals(project_root, cache: Optional[MiningCache] = None) -> SelectorSignals:
    counts = {attr: 0 for attr in SELECTOR_ATTRIBUTE_PATTERNS}
    samples: List[str] = []
    total_files = 0

    src_dir = os.path.join(str(project_root), "src")
    if os.path.isdir(src_dir):
        for file_path in _walk_source_files(src_dir, SELECTOR_SCAN_EXTENSIONS):
            if file_path.endswith(COUNTED_EXTENSIONS):
                total_files += 1
            content = _read_source(file_path, cache)
            if content is None:
                continue
            for attr, pattern in SELECTOR_ATTRIBUTE_PATTERNS.items():
                for match in pattern.finditer(content):
                    counts[attr] += 1
                    if len(samples) < MAX_SAMPLE_SELECTORS:
                        samples.append(match.group(1))

    total = sum(counts.values())
    coverage = {attr: (count / total if total else 0.0) for attr, count in counts.items()}
    # Ties keep declaration order, so an empty scan reports data-testid
    primary = max(counts, key=lambda attr: counts[attr]) if total else "data-testid"

    return SelectorSignals(
        primary_attribute=primary,
        naming_convention=detect_naming_convention(samples),
        coverage=coverage,
        total_components_analyzed=total_files,
        sample_selectors=samples[:KEPT_SAMPLE_SELECTORS],
    )


# ==================== Auth hints ====================

def _auth_from_discovery_file(project_root: Path) -> Optional[AuthHints]:
    try:
        discovery = load_json(project_root / ".artk" / "discovery.json")
    except (OSError, ValueError) as e:
        logger.debug(f"Ignoring unreadable discovery.json: {e}")
        return None
    if not isinstance(discovery, dict) or not isinstance(discovery.get("auth"), dict):
        return None

    auth = discovery["auth"]
    return AuthHints(
        detected=True,
        type=auth.get("type"),
        login_route=auth.get("loginRoute"),
        selectors=auth.get("selectors") or {},
        bypass_available=bool(auth.get("bypassAvailable", False)),
        bypass_method=auth.get("bypassMethod"),
    )


def scan_for_auth_patterns(src_dir: str, cache: Optional[MiningCache] = None) -> AuthHints:
    hints = AuthHints(detected=False)

    for file_path in _walk_source_files(src_dir, None):
        name = os.path.basename(file_path)
        if not any(p.search(name) for p in AUTH_FILE_PATTERNS):
            continue
        hints.detected = True

        content = _read_source(file_path, cache)
        if content is None:
            continue
        if hints.type is None:
            for auth_type, patterns in AUTH_CODE_PATTERNS.items():
                if any(p.search(content) for p in patterns):
                    hints.type = auth_type
                    break
        if hints.login_route is None:
            route = LOGIN_ROUTE_RE.search(content)
            if route:
                hints.login_route = route.group(1)

    return hints


def extract_auth_hints(project_root, cache: Optional[MiningCache] = None) -> AuthHints:
    root = Path(project_root)
    from_file = _auth_from_discovery_file(root)
    if from_file:
        return from_file

    src_dir = root / "src"
    if not src_dir.is_dir():
        return AuthHints(detected=False)
    return scan_for_auth_patterns(str(src_dir), cache)


# ==================== Discovery run ====================

def run_discovery(project_root, cache: Optional[MiningCache] = None) -> DiscoveryResult:
    """
    Run every detector and assemble a DiscoveredProfile.

    Framework detection failure is an error; the other detectors degrade to
    defaults with a warning.
    """
    root = Path(project_root)
    if not root.exists():
        return DiscoveryResult(
            success=False,
            profile=None,
            errors=[f"Project root does not exist: {project_root}"],
        )

    errors: List[str] = []
    warnings: List[str] = []

    frameworks: List[FrameworkInfo] = []
    try:
        frameworks = detect_frameworks(root)
        if not frameworks:
            warnings.append("No frameworks detected")
    except (OSError, ValueError) as e:
        errors.append(f"Framework detection failed: {e}")

    ui_libraries: List[UILibraryInfo] = []
    try:
        ui_libraries = detect_ui_libraries(root)
    except (OSError, ValueError) as e:
        warnings.append(f"UI library detection failed: {e}")

    try:
        selector_signals = analyze_selector_signals(root, cache)
    except (OSError, ValueError) as e:
        warnings.append(f"Selector analysis failed: {e}")
        selector_signals = SelectorSignals()

    try:
        auth = extract_auth_hints(root, cache)
    except (OSError, ValueError) as e:
        warnings.append(f"Auth hint extraction failed: {e}")
        auth = AuthHints(detected=False)

    profile = DiscoveredProfile(
        project_root=str(root),
        frameworks=frameworks,
        ui_libraries=ui_libraries,
        selector_signals=selector_signals,
        auth=auth,
    )
    logger.info(
        f"Discovery: frameworks={[f.name for f in frameworks]} "
        f"ui={[u.name for u in ui_libraries]} auth={auth.detected}"
    )
    return DiscoveryResult(success=not errors, profile=profile, errors=errors, warnings=warnings)


def save_discovered_profile(profile: DiscoveredProfile, output_dir) -> None:
    """Persist the profile with the absolute project root and auth selector values redacted."""
    ensure_dir(output_dir)
    data = profile.to_json_dict()
    data["projectRoot"] = os.path.basename(os.path.normpath(profile.project_root))
    if profile.auth.selectors:
        data["auth"]["selectors"] = {key: "[REDACTED]" for key in profile.auth.selectors}

    result = save_json_atomic(Path(output_dir) / PROFILE_FILENAME, data)
    if not result.success:
        raise OSError(result.error)


def load_discovered_profile(llkb_dir) -> Optional[DiscoveredProfile]:
    try:
        data = load_json(Path(llkb_dir) / PROFILE_FILENAME)
    except (OSError, ValueError) as e:
        logger.warning(f"Could not read {PROFILE_FILENAME}: {e}")
        return None
    if not isinstance(data, dict) or not data.get("version") or not isinstance(data.get("frameworks"), list):
        return None
    try:
        return DiscoveredProfile.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Invalid {PROFILE_FILENAME}: {e}")
        return None
