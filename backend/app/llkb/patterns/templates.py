"""
Template Generators - expand mined elements into candidate patterns

Each mined entity, form, table, modal and route is substituted into a fixed
catalogue of phrase templates ("create new {entity}", "sort {column} column
in {table}", ...). Selector hints are attached where the element carries a
known selector.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from ..mining.elements import Entity, Form, FormField, MinedElements, Modal, Route, Table
from ..models import DiscoveredPattern, SelectorHint, create_pattern
from ..pluralization import pluralize, singularize

logger = logging.getLogger(__name__)

DEFAULT_GENERATED_CONFIDENCE = 0.70
SELECTOR_CONFIDENCE_BOOST = 0.15
MAX_CONFIDENCE = 0.95
MAX_GENERATED_PATTERNS = 2000


@dataclass(frozen=True)
class PatternTemplate:
    text: str
    primitive: str
    placeholders: Tuple[str, ...]
    category: str
    template_source: str


def _templates(source: str, category: str, rows) -> List[PatternTemplate]:
    """rows: (text, primitive[, category]); placeholders are read from the text."""
    templates = []
    for row in rows:
        text, primitive = row[0], row[1]
        templates.append(PatternTemplate(
            text=text,
            primitive=primitive,
            placeholders=tuple(re.findall(r"\{(\w+)\}", text)),
            category=row[2] if len(row) > 2 else category,
            template_source=source,
        ))
    return templates


# ==================== Catalogue ====================

CRUD_TEMPLATES = _templates("crud", "data", [
    # create
    ("create new {entity}", "click"),
    ("add {entity}", "click"),
    ("click add {entity} button", "click"),
    ("click create {entity} button", "click"),
    ("open new {entity} form", "click"),
    # read
    ("view {entity} details", "click"),
    ("open {entity}", "click"),
    ("click on {entity}", "click"),
    ("select {entity} from list", "click"),
    ("view {entity} list", "navigate"),
    # update
    ("edit {entity}", "click"),
    ("update {entity}", "click"),
    ("modify {entity}", "click"),
    ("click edit {entity} button", "click"),
    ("save {entity} changes", "click"),
    # delete
    ("delete {entity}", "click"),
    ("remove {entity}", "click"),
    ("click delete {entity} button", "click"),
    ("confirm {entity} deletion", "click"),
    ("cancel {entity} deletion", "click"),
    # search / filter
    ("search for {entity}", "fill"),
    ("filter {entities}", "fill"),
    ("clear {entity} filter", "click"),
])

FORM_TEMPLATES = _templates("form", "data", [
    ("fill {form} form", "fill"),
    ("submit {form} form", "click"),
    ("cancel {form} form", "click"),
    ("reset {form} form", "click"),
    ("clear {form} form", "click"),
    # fields
    ("enter {field} in {form}", "fill"),
    ("fill in {field}", "fill"),
    ("select {field} option", "click"),
    ("check {field} checkbox", "check"),
    ("uncheck {field} checkbox", "uncheck"),
    ("toggle {field}", "click"),
    ("upload file to {field}", "upload"),
    ("clear {field} field", "clear"),
    # validation
    ("verify {field} error message", "assert", "assertion"),
    ("verify {form} validation error", "assert", "assertion"),
    ("verify {field} is required", "assert", "assertion"),
    ("verify {form} submitted successfully", "assert", "assertion"),
])

TABLE_TEMPLATES = _templates("table", "ui-interaction", [
    # rows
    ("click row in {table}", "click"),
    ("select row in {table}", "click"),
    ("double-click row in {table}", "dblclick"),
    ("expand row in {table}", "click"),
    ("collapse row in {table}", "click"),
    ("hover over row in {table}", "hover"),
    # columns
    ("sort {column} column in {table}", "click"),
    ("sort {table} by {column}", "click"),
    ("filter {column} in {table}", "fill"),
    ("resize {column} column", "drag"),
    ("hide {column} column", "click"),
    ("show {column} column", "click"),
    # pagination
    ("go to next page in {table}", "click"),
    ("go to previous page in {table}", "click"),
    ("go to page {page} in {table}", "click"),
    ("change page size in {table}", "click"),
    # cells
    ("edit cell in {table}", "dblclick"),
    ("click cell in {table}", "click"),
    # selection
    ("select all rows in {table}", "click"),
    ("deselect all rows in {table}", "click"),
    # assertions
    ("verify {table} has {count} rows", "assert", "assertion"),
    ("verify {table} contains {text}", "assert", "assertion"),
    ("verify {table} is empty", "assert", "assertion"),
    ("verify {column} is sorted", "assert", "assertion"),
])

MODAL_TEMPLATES = _templates("modal", "ui-interaction", [
    ("open {modal} modal", "click"),
    ("open {modal} dialog", "click"),
    ("close {modal} modal", "click"),
    ("close {modal} dialog", "click"),
    ("dismiss {modal}", "click"),
    # actions
    ("confirm {modal}", "click"),
    ("cancel {modal}", "click"),
    ("click OK in {modal}", "click"),
    ("click Cancel in {modal}", "click"),
    ("click Yes in {modal}", "click"),
    ("click No in {modal}", "click"),
    ("submit {modal}", "click"),
    # other ways to close
    ("press Escape to close {modal}", "keyboard"),
    ("click outside {modal} to close", "click"),
    ("click backdrop to close {modal}", "click"),
    # assertions
    ("verify {modal} is open", "assert", "assertion"),
    ("verify {modal} is closed", "assert", "assertion"),
    ("verify {modal} contains {text}", "assert", "assertion"),
    ("verify {modal} title is {title}", "assert", "assertion"),
])

NAVIGATION_TEMPLATES = _templates("navigation", "navigation", [
    ("navigate to {route}", "navigate"),
    ("go to {route}", "navigate"),
    ("open {route} page", "navigate"),
    ("visit {route}", "navigate"),
    # menus
    ("click {route} in navigation", "click"),
    ("click {route} in sidebar", "click"),
    ("click {route} in menu", "click"),
    ("select {route} from menu", "click"),
    ("expand {route} menu", "click"),
    ("collapse {route} menu", "click"),
    # breadcrumbs
    ("click {route} in breadcrumb", "click"),
    ("navigate via breadcrumb to {route}", "click"),
    # tabs
    ("click {route} tab", "click"),
    ("switch to {route} tab", "click"),
    # header / footer
    ("click {route} in header", "click"),
    ("click {route} in footer", "click"),
    # history
    ("go back", "navigate"),
    ("go forward", "navigate"),
    ("return to {route}", "navigate"),
    # assertions
    ("verify on {route} page", "assert", "assertion"),
    ("verify URL contains {route}", "assert", "assertion"),
    ("verify {route} is active in navigation", "assert", "assertion"),
])

NOTIFICATION_TEMPLATES = _templates("static", "assertion", [
    ("a success notification appears", "assert"),
    ("an error notification appears", "assert"),
    ("a warning notification appears", "assert"),
    ("an info notification appears", "assert"),
    ("a toast message appears", "assert"),
    ("a notification with text {text} appears", "assert"),
    ("verify success message is displayed", "assert"),
    ("verify error message is displayed", "assert"),
    ("verify notification contains {text}", "assert"),
    ("verify toast shows {text}", "assert"),
    ("dismiss notification", "click", "ui-interaction"),
    ("close toast", "click", "ui-interaction"),
    ("dismiss all notifications", "click", "ui-interaction"),
    ("wait for notification to appear", "waitForVisible", "timing"),
    ("wait for toast to disappear", "waitForVisible", "timing"),
    ("wait for notification to close", "waitForVisible", "timing"),
    ("verify alert message contains {text}", "assert"),
    ("accept alert dialog", "click", "ui-interaction"),
    ("dismiss alert dialog", "click", "ui-interaction"),
    ("verify alert is shown", "assert"),
])


# ==================== Expansion ====================

def _from_template(
    template: PatternTemplate,
    text: str,
    entity_name: Optional[str],
    confidence: float,
    hints: Optional[List[SelectorHint]] = None,
) -> DiscoveredPattern:
    return create_pattern(
        text,
        template.primitive,
        min(confidence, MAX_CONFIDENCE),
        category=template.category,
        template_source=template.template_source,
        entity_name=entity_name or None,
        selector_hints=hints,
    )


def _css_hint(value: str, confidence: float) -> SelectorHint:
    return SelectorHint(strategy="css", value=value, confidence=min(confidence, MAX_CONFIDENCE))


def expand_entity_template(template: PatternTemplate, entity: Entity, confidence: float) -> List[DiscoveredPattern]:
    patterns = []
    if "entity" in template.placeholders:
        text = template.text.replace("{entity}", entity.singular)
        patterns.append(_from_template(template, text, entity.singular, confidence))
    if "entities" in template.placeholders:
        text = template.text.replace("{entities}", entity.plural)
        patterns.append(_from_template(template, text, entity.plural, confidence))
    return patterns


def expand_form_template(template: PatternTemplate, form: Form, confidence: float) -> List[DiscoveredPattern]:
    patterns = []

    if "form" in template.placeholders and "field" not in template.placeholders:
        text = template.text.replace("{form}", form.name)
        hints = []
        if form.submit_selector and "submit" in template.text:
            hints.append(_css_hint(form.submit_selector, confidence + SELECTOR_CONFIDENCE_BOOST))
        patterns.append(_from_template(template, text, form.name, confidence, hints))

    if "field" in template.placeholders:
        for form_field in form.fields:
            text = template.text.replace("{field}", form_field.label or form_field.name)
            text = text.replace("{form}", form.name)
            hints = []
            if form_field.selector:
                hints.append(_css_hint(form_field.selector, confidence + SELECTOR_CONFIDENCE_BOOST))
            patterns.append(_from_template(template, text, form_field.name, confidence, hints))

    return patterns


def expand_table_template(template: PatternTemplate, table: Table, confidence: float) -> List[DiscoveredPattern]:
    patterns = []

    if "table" in template.placeholders and "column" not in template.placeholders:
        text = template.text.replace("{table}", table.name)
        hints = []
        if table.selectors.get("table"):
            hints.append(_css_hint(table.selectors["table"], confidence + SELECTOR_CONFIDENCE_BOOST))
        patterns.append(_from_template(template, text, table.name, confidence, hints))

    if "column" in template.placeholders:
        for column in table.columns:
            text = template.text.replace("{column}", column).replace("{table}", table.name)
            hints = []
            if table.selectors.get("header"):
                hints.append(_css_hint(
                    f'{table.selectors["header"]}:has-text("{column}")',
                    confidence + SELECTOR_CONFIDENCE_BOOST * 0.5,
                ))
            patterns.append(_from_template(template, text, column, confidence, hints))

    return patterns


def expand_modal_template(template: PatternTemplate, modal: Modal, confidence: float) -> List[DiscoveredPattern]:
    if "modal" not in template.placeholders:
        return []

    text = template.text.replace("{modal}", modal.name)
    hints = []
    if "open" in template.text and modal.trigger_selector:
        hints.append(_css_hint(modal.trigger_selector, confidence + SELECTOR_CONFIDENCE_BOOST))
    elif "close" in template.text and modal.close_selector:
        hints.append(_css_hint(modal.close_selector, confidence + SELECTOR_CONFIDENCE_BOOST))
    elif any(word in template.text for word in ("confirm", "OK", "Yes")) and modal.confirm_selector:
        hints.append(_css_hint(modal.confirm_selector, confidence + SELECTOR_CONFIDENCE_BOOST))
    return [_from_template(template, text, modal.name, confidence, hints)]


def expand_route_template(template: PatternTemplate, route: Route, confidence: float) -> List[DiscoveredPattern]:
    if "route" not in template.placeholders:
        return []

    text = template.text.replace("{route}", route.name)
    hints = []
    if template.primitive == "navigate":
        hints.append(SelectorHint(strategy="text", value=route.name, confidence=confidence))
    return [_from_template(template, text, route.name, confidence, hints)]


# ==================== Generators ====================

def generate_crud_patterns(entities: List[Entity], confidence: float = DEFAULT_GENERATED_CONFIDENCE) -> List[DiscoveredPattern]:
    return [p for entity in entities for t in CRUD_TEMPLATES for p in expand_entity_template(t, entity, confidence)]


def generate_form_patterns(forms: List[Form], confidence: float = DEFAULT_GENERATED_CONFIDENCE) -> List[DiscoveredPattern]:
    return [p for form in forms for t in FORM_TEMPLATES for p in expand_form_template(t, form, confidence)]


def generate_table_patterns(tables: List[Table], confidence: float = DEFAULT_GENERATED_CONFIDENCE) -> List[DiscoveredPattern]:
    return [p for table in tables for t in TABLE_TEMPLATES for p in expand_table_template(t, table, confidence)]


def generate_modal_patterns(modals: List[Modal], confidence: float = DEFAULT_GENERATED_CONFIDENCE) -> List[DiscoveredPattern]:
    return [p for modal in modals for t in MODAL_TEMPLATES for p in expand_modal_template(t, modal, confidence)]


def generate_navigation_patterns(routes: List[Route], confidence: float = DEFAULT_GENERATED_CONFIDENCE) -> List[DiscoveredPattern]:
    patterns: List[DiscoveredPattern] = []
    added_generic = set()

    for route in routes:
        for template in NAVIGATION_TEMPLATES:
            if not template.placeholders:
                # "go back" / "go forward" once per run
                if template.text not in added_generic:
                    added_generic.add(template.text)
                    patterns.append(_from_template(template, template.text, None, confidence))
            else:
                patterns.extend(expand_route_template(template, route, confidence))

    return patterns


def generate_notification_patterns(confidence: float = DEFAULT_GENERATED_CONFIDENCE) -> List[DiscoveredPattern]:
    return [_from_template(t, t.text, None, confidence) for t in NOTIFICATION_TEMPLATES]


@dataclass
class GenerationResult:
    patterns: List[DiscoveredPattern]
    stats: Dict[str, int]


def generate_all_patterns(elements: MinedElements, confidence: float = DEFAULT_GENERATED_CONFIDENCE) -> GenerationResult:
    """
    Expand every template family. When the total exceeds
    MAX_GENERATED_PATTERNS the highest-confidence patterns are kept.
    """
    crud = generate_crud_patterns(elements.entities, confidence)
    forms = generate_form_patterns(elements.forms, confidence)
    tables = generate_table_patterns(elements.tables, confidence)
    modals = generate_modal_patterns(elements.modals, confidence)
    navigation = generate_navigation_patterns(elements.routes, confidence)
    notifications = generate_notification_patterns(confidence)

    all_patterns = crud + forms + tables + modals + navigation + notifications
    if len(all_patterns) > MAX_GENERATED_PATTERNS:
        logger.info(f"Truncating {len(all_patterns)} generated patterns to {MAX_GENERATED_PATTERNS}")
        all_patterns.sort(key=lambda p: p.confidence, reverse=True)
        all_patterns = all_patterns[:MAX_GENERATED_PATTERNS]

    return GenerationResult(
        patterns=all_patterns,
        stats={
            "crud_patterns": len(crud),
            "form_patterns": len(forms),
            "table_patterns": len(tables),
            "modal_patterns": len(modals),
            "navigation_patterns": len(navigation),
            "notification_patterns": len(notifications),
            "total_patterns": len(all_patterns),
        },
    )


# ==================== Element helpers ====================

def _slug(name: str) -> str:
    return re.sub(r"\s+", "-", name.lower())


def create_entity(name: str) -> Entity:
    singular = singularize(name.lower())
    return Entity(name=name, singular=singular, plural=pluralize(singular))


def create_form(name: str, fields: Optional[List[str]] = None) -> Form:
    return Form(
        id=f"form-{_slug(name)}",
        name=name,
        fields=[
            FormField(name=re.sub(r"\s+", "_", f.lower()), type="text", label=f)
            for f in (fields or [])
        ],
    )


def create_table(name: str, columns: Optional[List[str]] = None) -> Table:
    return Table(id=f"table-{_slug(name)}", name=name, columns=list(columns or []))


def create_modal(name: str) -> Modal:
    return Modal(id=f"modal-{_slug(name)}", name=name)


def create_route(path: str, name: Optional[str] = None) -> Route:
    segments = [s for s in path.split("/") if s]
    route_name = name or (segments[-1] if segments else "home")
    return Route(path=path, name=route_name[:1].upper() + route_name[1:])
