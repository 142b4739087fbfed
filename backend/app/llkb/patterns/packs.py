"""
Framework Packs - pre-seeded patterns for frameworks and UI libraries

"Day 0" knowledge that works before anything has been mined or learned.
A pack is only loaded when its framework or library was detected in the
target project.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from ..models import DiscoveredPattern, SelectorHint, create_pattern

PACK_DEFAULT_CONFIDENCE = 0.70


@dataclass
class PackPattern:
    text: str
    primitive: str
    category: str
    selector_hints: List[SelectorHint] = field(default_factory=list)
    confidence: Optional[float] = None


@dataclass
class FrameworkPack:
    name: str
    framework: str
    version: str
    description: str
    patterns: List[PackPattern]


@dataclass
class PackRegistryEntry:
    name: str
    frameworks: List[str]
    loader: Callable[[], FrameworkPack]


def _p(text: str, primitive: str, category: str, hints: Tuple[Tuple[str, str], ...] = (), confidence: Optional[float] = None) -> PackPattern:
    return PackPattern(
        text=text,
        primitive=primitive,
        category=category,
        selector_hints=[SelectorHint(strategy=s, value=v) for s, v in hints],
        confidence=confidence,
    )


# ============================================================
# REACT
# ============================================================

def get_react_pack() -> FrameworkPack:
    return FrameworkPack(
        name="react",
        framework="react",
        version="1.0.0",
        description="React component, hook and router interactions",
        patterns=[
            # hooks / rendering
            _p("wait for useEffect to complete", "waitForNetworkIdle", "timing"),
            _p("wait for useState update", "waitForVisible", "timing"),
            _p("wait for component to render", "waitForVisible", "timing"),
            _p("wait for suspense fallback to disappear", "waitForHidden", "timing"),
            _p("wait for lazy component to load", "waitForVisible", "timing"),
            _p("wait for loading spinner to disappear", "waitForHidden", "timing", (("role", "progressbar"),)),
            _p("wait for data to load", "waitForNetworkIdle", "timing"),
            # router
            _p("navigate with react router link", "click", "navigation", (("css", "a[href]"),)),
            _p("click router link", "click", "navigation", (("css", "a[href]"),)),
            _p("verify route changed", "assert", "assertion"),
            _p("verify url contains route param", "assert", "assertion"),
            _p("go back in browser history", "navigate", "navigation"),
            _p("verify redirect to login", "assert", "assertion"),
            # forms
            _p("fill controlled input", "fill", "data"),
            _p("clear controlled input", "clear", "data"),
            _p("select option from dropdown", "select", "data", (("role", "combobox"),)),
            _p("toggle checkbox", "check", "ui-interaction", (("role", "checkbox"),)),
            _p("select radio option", "check", "ui-interaction", (("role", "radio"),)),
            _p("submit form", "click", "data", (("css", "button[type='submit']"),)),
            _p("verify form validation error", "assert", "assertion", (("role", "alert"),)),
            _p("verify input has value", "assert", "assertion"),
            _p("verify submit button is disabled", "assert", "assertion", (("css", "button[type='submit']:disabled"),)),
            # components
            _p("open portal dialog", "click", "ui-interaction", (("role", "dialog"),)),
            _p("close portal dialog", "click", "ui-interaction", (("role", "dialog"),)),
            _p("click button by text", "click", "ui-interaction", (("role", "button"),)),
            _p("hover over tooltip trigger", "hover", "ui-interaction"),
            _p("verify tooltip is visible", "assert", "assertion", (("role", "tooltip"),)),
            _p("expand accordion section", "click", "ui-interaction"),
            _p("switch tab", "click", "ui-interaction", (("role", "tab"),)),
            _p("verify error boundary message", "assert", "assertion"),
            _p("verify list renders items", "assert", "assertion", (("role", "listitem"),)),
            _p("scroll to load more items", "scroll", "ui-interaction"),
        ],
    )


# ============================================================
# ANGULAR
# ============================================================

def get_angular_pack() -> FrameworkPack:
    return FrameworkPack(
        name="angular",
        framework="angular",
        version="1.0.0",
        description="Angular directives, router, forms and Material interactions",
        patterns=[
            # directives
            _p("verify ngIf element is visible", "assert", "assertion"),
            _p("verify ngIf element is hidden", "assert", "assertion"),
            _p("verify ngFor renders rows", "assert", "assertion"),
            _p("click ngFor item", "click", "ui-interaction"),
            _p("verify ngClass applied", "assert", "assertion"),
            _p("wait for change detection", "waitForVisible", "timing"),
            _p("wait for async pipe to resolve", "waitForNetworkIdle", "timing"),
            _p("wait for http request to finish", "waitForNetworkIdle", "timing"),
            # router
            _p("click routerLink", "click", "navigation", (("css", "[routerLink]"),)),
            _p("navigate to route", "navigate", "navigation"),
            _p("verify active route link", "assert", "assertion", (("css", ".active[routerLink]"),)),
            _p("verify route guard redirect", "assert", "assertion"),
            _p("wait for lazy route module", "waitForVisible", "timing"),
            _p("verify route params in url", "assert", "assertion"),
            # reactive forms
            _p("fill formControlName input", "fill", "data", (("css", "[formControlName]"),)),
            _p("fill ngModel input", "fill", "data", (("css", "[ngModel]"),)),
            _p("select option in mat-select", "select", "data", (("css", "mat-select"),)),
            _p("check mat-checkbox", "check", "ui-interaction", (("css", "mat-checkbox"),)),
            _p("toggle mat-slide-toggle", "click", "ui-interaction", (("css", "mat-slide-toggle"),)),
            _p("select mat-radio-button", "check", "ui-interaction", (("css", "mat-radio-button"),)),
            _p("submit reactive form", "click", "data", (("css", "button[type='submit']"),)),
            _p("verify mat-error message", "assert", "assertion", (("css", "mat-error"),)),
            _p("verify form is invalid", "assert", "assertion", (("css", "form.ng-invalid"),)),
            _p("verify field is touched", "assert", "assertion", (("css", ".ng-touched"),)),
            # material components
            _p("open mat-dialog", "click", "ui-interaction", (("css", "mat-dialog-container"),)),
            _p("close mat-dialog", "click", "ui-interaction", (("css", "mat-dialog-container"),)),
            _p("dismiss mat-snack-bar", "click", "ui-interaction", (("css", "mat-snack-bar-container"),)),
            _p("click mat-tab", "click", "ui-interaction", (("role", "tab"),)),
            _p("open mat-menu", "click", "ui-interaction", (("css", ".mat-mdc-menu-trigger"),)),
            _p("sort mat-table column", "click", "ui-interaction", (("css", "th[mat-sort-header]"),)),
            _p("go to next page in mat-paginator", "click", "ui-interaction", (("css", ".mat-mdc-paginator-navigation-next"),)),
            _p("expand mat-expansion-panel", "click", "ui-interaction", (("css", "mat-expansion-panel-header"),)),
        ],
    )


# ============================================================
# MATERIAL UI (MUI)
# ============================================================

def get_mui_pack() -> FrameworkPack:
    return FrameworkPack(
        name="mui",
        framework="mui",
        version="1.0.0",
        description="Material UI v5 components and DataGrid",
        patterns=[
            _p("click MUI contained button", "click", "ui-interaction", (("css", ".MuiButton-contained"),)),
            _p("click MUI icon button", "click", "ui-interaction", (("css", ".MuiIconButton-root"),)),
            _p("fill MUI TextField", "fill", "data", (("css", ".MuiTextField-root input"),)),
            _p("clear MUI TextField", "clear", "data", (("css", ".MuiTextField-root input"),)),
            _p("open MUI Select", "click", "ui-interaction", (("css", ".MuiSelect-select"),)),
            _p("choose MUI MenuItem", "click", "ui-interaction", (("css", ".MuiMenuItem-root"),)),
            _p("type in MUI Autocomplete", "fill", "data", (("css", ".MuiAutocomplete-input"),)),
            _p("choose MUI Autocomplete option", "click", "ui-interaction", (("css", ".MuiAutocomplete-option"),)),
            _p("check MUI Checkbox", "check", "ui-interaction", (("css", ".MuiCheckbox-root input"),)),
            _p("toggle MUI Switch", "click", "ui-interaction", (("css", ".MuiSwitch-input"),)),
            _p("select MUI Radio", "check", "ui-interaction", (("css", ".MuiRadio-root input"),)),
            _p("open MUI Dialog", "click", "ui-interaction", (("css", ".MuiDialog-root"),)),
            _p("close MUI Dialog", "click", "ui-interaction", (("css", ".MuiDialog-root"),)),
            _p("verify MUI Dialog title", "assert", "assertion", (("css", ".MuiDialogTitle-root"),)),
            _p("verify MUI Snackbar message", "assert", "assertion", (("css", ".MuiSnackbarContent-message"),)),
            _p("dismiss MUI Alert", "click", "ui-interaction", (("css", ".MuiAlert-action button"),)),
            _p("click MUI Tab", "click", "ui-interaction", (("css", ".MuiTab-root"),)),
            _p("expand MUI Accordion", "click", "ui-interaction", (("css", ".MuiAccordionSummary-root"),)),
            _p("open MUI Drawer", "click", "navigation", (("css", ".MuiDrawer-root"),)),
            _p("pick date in MUI DatePicker", "fill", "data", (("css", ".MuiPickersDay-root"),)),
            _p("wait for MUI CircularProgress to disappear", "waitForHidden", "timing", (("css", ".MuiCircularProgress-root"),)),
            _p("click DataGrid row", "click", "ui-interaction", (("css", ".MuiDataGrid-row"),)),
            _p("sort DataGrid column", "click", "ui-interaction", (("css", ".MuiDataGrid-columnHeader"),)),
            _p("filter DataGrid column", "fill", "ui-interaction", (("css", ".MuiDataGrid-filterForm input"),)),
            _p("select DataGrid row checkbox", "check", "ui-interaction", (("css", ".MuiDataGrid-cellCheckbox input"),)),
            _p("edit DataGrid cell", "dblclick", "data", (("css", ".MuiDataGrid-cell"),)),
            _p("go to next DataGrid page", "click", "ui-interaction", (("css", ".MuiTablePagination-actions button:last-child"),)),
            _p("verify DataGrid row count", "assert", "assertion", (("css", ".MuiDataGrid-row"),)),
        ],
    )


# ============================================================
# ANT DESIGN
# ============================================================

def get_antd_pack() -> FrameworkPack:
    return FrameworkPack(
        name="antd",
        framework="antd",
        version="1.0.0",
        description="Ant Design components, Table and Form",
        patterns=[
            _p("click Ant primary button", "click", "ui-interaction", (("css", ".ant-btn-primary"),)),
            _p("fill Ant Input", "fill", "data", (("css", ".ant-input"),)),
            _p("fill Ant password input", "fill", "data", (("css", ".ant-input-password input"),)),
            _p("open Ant Select", "click", "ui-interaction", (("css", ".ant-select-selector"),)),
            _p("choose Ant Select option", "click", "ui-interaction", (("css", ".ant-select-item-option"),)),
            _p("check Ant Checkbox", "check", "ui-interaction", (("css", ".ant-checkbox-input"),)),
            _p("toggle Ant Switch", "click", "ui-interaction", (("css", ".ant-switch"),)),
            _p("select Ant Radio", "check", "ui-interaction", (("css", ".ant-radio-input"),)),
            _p("pick date in Ant DatePicker", "fill", "data", (("css", ".ant-picker-input input"),)),
            _p("upload file with Ant Upload", "upload", "data", (("css", ".ant-upload input[type='file']"),)),
            _p("open Ant Modal", "click", "ui-interaction", (("css", ".ant-modal"),)),
            _p("confirm Ant Modal", "click", "ui-interaction", (("css", ".ant-modal-footer .ant-btn-primary"),)),
            _p("cancel Ant Modal", "click", "ui-interaction", (("css", ".ant-modal-footer .ant-btn-default"),)),
            _p("confirm Ant Popconfirm", "click", "ui-interaction", (("css", ".ant-popconfirm-buttons .ant-btn-primary"),)),
            _p("verify Ant message notice", "assert", "assertion", (("css", ".ant-message-notice"),)),
            _p("close Ant notification", "click", "ui-interaction", (("css", ".ant-notification-notice-close"),)),
            _p("verify Ant Form item error", "assert", "assertion", (("css", ".ant-form-item-explain-error"),)),
            _p("click Ant Tabs tab", "click", "ui-interaction", (("css", ".ant-tabs-tab"),)),
            _p("open Ant Dropdown", "hover", "ui-interaction", (("css", ".ant-dropdown-trigger"),)),
            _p("click Ant Menu item", "click", "navigation", (("css", ".ant-menu-item"),)),
            _p("click Ant Table row", "click", "ui-interaction", (("css", ".ant-table-row"),)),
            _p("sort Ant Table column", "click", "ui-interaction", (("css", ".ant-table-column-sorters"),)),
            _p("filter Ant Table column", "click", "ui-interaction", (("css", ".ant-table-filter-trigger"),)),
            _p("select Ant Table row checkbox", "check", "ui-interaction", (("css", ".ant-table-selection-column input"),)),
            _p("expand Ant Table row", "click", "ui-interaction", (("css", ".ant-table-row-expand-icon"),)),
            _p("go to next Ant Table page", "click", "ui-interaction", (("css", ".ant-pagination-next"),)),
            _p("wait for Ant Spin to disappear", "waitForHidden", "timing", (("css", ".ant-spin-spinning"),)),
        ],
    )


# ============================================================
# CHAKRA UI
# ============================================================

def get_chakra_pack() -> FrameworkPack:
    return FrameworkPack(
        name="chakra",
        framework="chakra",
        version="1.0.0",
        description="Chakra UI components",
        patterns=[
            _p("click Chakra Button", "click", "ui-interaction", (("css", ".chakra-button"),)),
            _p("fill Chakra Input", "fill", "data", (("css", ".chakra-input"),)),
            _p("fill Chakra Textarea", "fill", "data", (("css", ".chakra-textarea"),)),
            _p("choose Chakra Select option", "select", "data", (("css", ".chakra-select"),)),
            _p("check Chakra Checkbox", "check", "ui-interaction", (("css", ".chakra-checkbox__input"),)),
            _p("toggle Chakra Switch", "click", "ui-interaction", (("css", ".chakra-switch__input"),)),
            _p("select Chakra Radio", "check", "ui-interaction", (("css", ".chakra-radio__input"),)),
            _p("set Chakra NumberInput value", "fill", "data", (("css", ".chakra-numberinput__field"),)),
            _p("drag Chakra Slider thumb", "drag", "ui-interaction", (("css", ".chakra-slider__thumb"),)),
            _p("open Chakra modal", "click", "ui-interaction", (("css", ".chakra-modal__content"),)),
            _p("close Chakra modal", "click", "ui-interaction", (("css", ".chakra-modal__close-btn"),)),
            _p("verify Chakra modal header", "assert", "assertion", (("css", ".chakra-modal__header"),)),
            _p("open Chakra Drawer", "click", "navigation", (("css", ".chakra-modal__content"),)),
            _p("close Chakra Drawer", "click", "navigation", (("css", ".chakra-modal__close-btn"),)),
            _p("verify Chakra toast message", "assert", "assertion", (("css", ".chakra-toast"),)),
            _p("close Chakra toast", "click", "ui-interaction", (("css", ".chakra-toast button[aria-label='Close']"),)),
            _p("verify Chakra Alert", "assert", "assertion", (("css", ".chakra-alert"),)),
            _p("open Chakra Menu", "click", "ui-interaction", (("css", ".chakra-menu__menu-button"),)),
            _p("choose Chakra MenuItem", "click", "ui-interaction", (("css", ".chakra-menu__menuitem"),)),
            _p("click Chakra Tab", "click", "ui-interaction", (("css", ".chakra-tabs__tab"),)),
            _p("expand Chakra Accordion item", "click", "ui-interaction", (("css", ".chakra-accordion__button"),)),
            _p("open Chakra Popover", "click", "ui-interaction", (("css", ".chakra-popover__popper"),)),
            _p("hover Chakra Tooltip trigger", "hover", "ui-interaction", (("css", ".chakra-tooltip"),)),
            _p("verify Chakra FormErrorMessage", "assert", "assertion", (("css", ".chakra-form__error-message"),)),
            _p("wait for Chakra Spinner to disappear", "waitForHidden", "timing", (("css", ".chakra-spinner"),)),
        ],
    )


# ==================== Registry ====================

PACK_REGISTRY: List[PackRegistryEntry] = [
    PackRegistryEntry(name="react", frameworks=["react", "nextjs"], loader=get_react_pack),
    PackRegistryEntry(name="angular", frameworks=["angular"], loader=get_angular_pack),
    PackRegistryEntry(name="mui", frameworks=["mui"], loader=get_mui_pack),
    PackRegistryEntry(name="antd", frameworks=["antd"], loader=get_antd_pack),
    PackRegistryEntry(name="chakra", frameworks=["chakra"], loader=get_chakra_pack),
]


def get_pack_registry() -> List[PackRegistryEntry]:
    return list(PACK_REGISTRY)


def load_packs_for_frameworks(framework_names: List[str]) -> List[FrameworkPack]:
    """Packs for the given names, case-insensitive; each pack at most once."""
    wanted = {name.lower() for name in framework_names}
    return [entry.loader() for entry in PACK_REGISTRY if wanted.intersection(entry.frameworks)]


def pack_patterns_to_discovered(pack: FrameworkPack) -> List[DiscoveredPattern]:
    return [
        create_pattern(
            p.text,
            p.primitive,
            p.confidence if p.confidence is not None else PACK_DEFAULT_CONFIDENCE,
            category=p.category,
            template_source="static",
            entity_name=pack.name,
            selector_hints=[h.model_copy() for h in p.selector_hints],
            layer="framework",
        )
        for p in pack.patterns
    ]


def load_discovered_patterns_for_frameworks(framework_names: List[str]) -> List[DiscoveredPattern]:
    """Convert every matching pack; patterns with the same normalized text keep the first."""
    patterns: List[DiscoveredPattern] = []
    seen = set()
    for pack in load_packs_for_frameworks(framework_names):
        for pattern in pack_patterns_to_discovered(pack):
            if pattern.normalized_text in seen:
                continue
            seen.add(pattern.normalized_text)
            patterns.append(pattern)
    return patterns
