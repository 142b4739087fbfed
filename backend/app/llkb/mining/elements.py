"""
Element Mining - entities, routes, forms, tables and modals

Source files are read once through a MiningCache and passed through one
extractor table per element kind. Results are plain dataclasses consumed
directly by the template generators; nothing here is persisted.
"""

import asyncio
import logging
import os
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..pluralization import pluralize, singularize
from .cache import (
    DEFAULT_MAX_DEPTH,
    DEFAULT_MAX_FILES,
    MiningCache,
    ScannedFile,
    scan_all_source_directories,
)
from .extractors import Extractor, bounded_finditer, field_name_to_label, run_extractors

logger = logging.getLogger(__name__)


# ==================== Element types ====================

@dataclass
class Entity:
    name: str
    singular: str
    plural: str
    source: Optional[str] = None
    endpoint: Optional[str] = None


@dataclass
class Route:
    path: str
    name: str
    params: List[str] = field(default_factory=list)
    component: Optional[str] = None


@dataclass
class FormField:
    name: str
    type: str = "text"
    label: Optional[str] = None
    selector: Optional[str] = None
    required: bool = False


@dataclass
class Form:
    id: str
    name: str
    fields: List[FormField] = field(default_factory=list)
    schema: Optional[str] = None
    submit_selector: Optional[str] = None


@dataclass
class Table:
    id: str
    name: str
    columns: List[str] = field(default_factory=list)
    selectors: Dict[str, str] = field(default_factory=dict)


@dataclass
class Modal:
    id: str
    name: str
    trigger_selector: Optional[str] = None
    close_selector: Optional[str] = None
    confirm_selector: Optional[str] = None


@dataclass
class MinedElements:
    entities: List[Entity] = field(default_factory=list)
    routes: List[Route] = field(default_factory=list)
    forms: List[Form] = field(default_factory=list)
    tables: List[Table] = field(default_factory=list)
    modals: List[Modal] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.entities) + len(self.routes) + len(self.forms) + len(self.tables) + len(self.modals)


@dataclass
class MiningResult:
    elements: MinedElements
    stats: Dict[str, int]
    duration_ms: int


def _stem(source: str) -> str:
    return os.path.splitext(os.path.basename(source))[0]


# ==================== Entities ====================

ENTITY_EXCLUSIONS = {
    # utility types
    "props", "state", "context", "config", "options", "params", "args",
    "request", "response", "result", "error", "data", "payload",
    # react
    "component", "element", "node", "children", "ref", "handler",
    "event", "callback", "dispatch", "action", "reducer", "store",
    # architectural suffixes
    "service", "controller", "repository", "factory", "builder",
    "helper", "util", "utils", "hook", "provider", "consumer",
    # language and generic types
    "string", "number", "boolean", "object", "array", "function",
    "any", "unknown", "void", "null", "undefined", "never",
    "partial", "required", "readonly", "pick", "omit", "record",
    "promise", "async", "await", "import", "export", "default",
}

ENTITY_SUFFIX_RE = re.compile(r"(?:Model|Entity|Schema|Type|Interface|DTO|Input|Output)$", re.I)
UTILITY_NAME_RE = re.compile(
    r"(?:Props|State|Context|Config|Options|Params|Args|Handler|Callback|Service|Controller|Repository)$", re.I
)
PRISMA_MODEL_RE = re.compile(r"model\s+(\w+)\s*\{")


@dataclass
class _EntityRecord:
    name: str
    sources: List[str] = field(default_factory=list)
    endpoints: List[str] = field(default_factory=list)


def _record_entity(entity_map: Dict[str, _EntityRecord], raw_name: Optional[str], source: str, from_api: bool) -> None:
    if not raw_name:
        return
    normalized = ENTITY_SUFFIX_RE.sub("", raw_name).lower()
    if from_api:
        normalized = singularize(normalized)

    if normalized in ENTITY_EXCLUSIONS or len(normalized) < 3:
        return
    if UTILITY_NAME_RE.search(raw_name):
        return

    record = entity_map.setdefault(normalized, _EntityRecord(name=normalized))
    if source not in record.sources:
        record.sources.append(source)
    if from_api:
        endpoint = f"/api/{pluralize(normalized)}"
        if endpoint not in record.endpoints:
            record.endpoints.append(endpoint)


def _declared_entity(match, source, entity_map):
    _record_entity(entity_map, match.group(1), source, from_api=False)


def _api_entity(match, source, entity_map):
    _record_entity(entity_map, match.group(1), source, from_api=True)


ENTITY_EXTRACTORS: List[Extractor] = [
    Extractor("typeInterface", re.compile(r"(?:export\s+)?(?:interface|type)\s+(\w+)(?:\s+extends|\s*[={<])"), _declared_entity),
    Extractor("className", re.compile(r"(?:export\s+)?class\s+(\w+)(?:\s+extends|\s+implements|\s*\{)"), _declared_entity),
    Extractor("prismaModel", PRISMA_MODEL_RE, _declared_entity),
    Extractor("typeormEntity", re.compile(r"@Entity\s*\(\s*['\"]?(\w+)?['\"]?\s*\)"), _declared_entity),
    Extractor(
        "apiFetch",
        re.compile(r"(?:fetch|axios\.(?:get|post|put|delete|patch))\s*\(\s*[`'\"]/?(?:api/)?(\w+)", re.I),
        _api_entity,
    ),
    Extractor("restResource", re.compile(r"/api/(\w+)(?:/|['\"`])", re.I), _api_entity),
    Extractor("graphqlType", re.compile(r"type\s+(\w+)\s*(?:@|\{|implements)"), _declared_entity),
    Extractor("mongooseSchema", re.compile(r"new\s+(?:mongoose\.)?Schema\s*<?\s*(\w+)?"), _declared_entity),
    Extractor("mongooseModel", re.compile(r"mongoose\.model\s*[<(]\s*['\"]?(\w+)"), _declared_entity),
    Extractor("sequelizeModel", re.compile(r"sequelize\.define\s*\(\s*['\"](\w+)"), _declared_entity),
    Extractor("mikroEntity", re.compile(r"@Entity\s*\(\s*\{\s*(?:tableName|collection)\s*:\s*['\"](\w+)"), _declared_entity),
]


def extract_entities_from_content(content: str, source: str, entity_map: Dict[str, _EntityRecord]) -> None:
    run_extractors(ENTITY_EXTRACTORS, content, source, entity_map)


def extract_prisma_entities(prisma_path: str, entity_map: Dict[str, _EntityRecord]) -> None:
    try:
        with open(prisma_path, "r", encoding="utf-8") as f:
            content = f.read()
    except OSError as e:
        logger.debug(f"Cannot read prisma schema {prisma_path}: {e}")
        return

    for match in bounded_finditer(PRISMA_MODEL_RE, content):
        name = match.group(1).lower()
        if name in ENTITY_EXCLUSIONS or len(name) < 3:
            continue
        record = entity_map.setdefault(name, _EntityRecord(name=name, endpoints=[f"/api/{name}"]))
        if prisma_path not in record.sources:
            record.sources.append(prisma_path)


def _entities_from_map(entity_map: Dict[str, _EntityRecord]) -> List[Entity]:
    entities = []
    for record in entity_map.values():
        singular = singularize(record.name)
        entities.append(Entity(
            name=record.name,
            singular=singular,
            plural=pluralize(singular),
            source=record.sources[0] if record.sources else None,
            endpoint=record.endpoints[0] if record.endpoints else None,
        ))
    return entities


# ==================== Routes ====================

ROUTE_PARAM_RE = re.compile(r":(\w+)")


def path_to_name(route_path: str) -> str:
    if route_path == "/":
        return "Home"
    segments = [s for s in route_path.split("/") if s and not s.startswith(":")]
    if not segments:
        return "Home"
    return " ".join(word[:1].upper() + word[1:] for word in segments[-1].split("-"))


def extract_route_params(route_path: str) -> List[str]:
    return [m.group(1) for m in bounded_finditer(ROUTE_PARAM_RE, route_path)]


def _add_route(route_map: Dict[str, Route], route_path: Optional[str], source: str, replace: bool = False) -> None:
    if not route_path or route_path in ("*", "**"):
        return
    normalized = route_path if route_path.startswith("/") else f"/{route_path}"
    # UI routes only
    if normalized.startswith("/api/"):
        return
    if normalized in route_map and not replace:
        return
    route_map[normalized] = Route(
        path=normalized,
        name=path_to_name(normalized),
        params=extract_route_params(normalized),
        component=source,
    )


def _route_path(match, source, route_map):
    _add_route(route_map, match.group(1), source)


def _route_constant(match, source, route_map):
    _add_route(route_map, match.group(2), source)


ROUTE_EXTRACTORS: List[Extractor] = [
    Extractor("reactRouterPath", re.compile(r"<Route\s+[^>]*path\s*=\s*[{'\"]([\w/:.-]+)['\"}\s]", re.I), _route_path),
    Extractor("reactRouterElement", re.compile(r"path:\s*['\"]([^'\"]+)['\"]"), _route_path),
    Extractor("routeConfigPath", re.compile(r"\{\s*path:\s*['\"]([^'\"]+)['\"][^}]*(?:element|component)"), _route_path),
    Extractor("useRoutesPath", re.compile(r"\{\s*path:\s*['\"]([^'\"]+)['\"]"), _route_path),
    Extractor(
        "routeConstants",
        re.compile(r"(?:ROUTES|PATHS|routes|paths)\s*[.:=]\s*\{[^}]*?(\w+)\s*:\s*['\"]([^'\"]+)['\"]", re.I),
        _route_constant,
    ),
    Extractor("angularPath", re.compile(r"path:\s*['\"]([^'\"]+)['\"],?\s*(?:component|loadComponent|children)"), _route_path),
    Extractor("vueRouterPath", re.compile(r"path:\s*['\"]([^'\"]+)['\"],?\s*(?:name|component|components)"), _route_path),
    Extractor(
        "expressRoute",
        re.compile(r"(?:app|router)\.(?:get|post|put|delete|patch|all)\s*\(\s*['\"]([^'\"]+)['\"]", re.I),
        _route_path,
    ),
    Extractor("nestRoute", re.compile(r"@(?:Get|Post|Put|Delete|Patch|All)\s*\(\s*['\"]?([^'\")\s]*)", re.I), _route_path),
]

PAGE_EXTENSIONS = (".tsx", ".ts", ".jsx", ".js")


def extract_routes_from_content(content: str, source: str, route_map: Dict[str, Route]) -> None:
    run_extractors(ROUTE_EXTRACTORS, content, source, route_map)


def extract_nextjs_pages(directory: str, route_map: Dict[str, Route], base_path: str = "") -> None:
    """pages/ router: index files, [param] segments, _private files skipped."""
    try:
        entries = sorted(os.scandir(directory), key=lambda e: e.name)
    except OSError:
        return

    for entry in entries:
        if entry.is_symlink():
            continue
        if entry.is_dir(follow_symlinks=False):
            if entry.name.startswith(("_", ".")):
                continue
            segment = f":{entry.name[1:-1]}" if entry.name.startswith("[") and entry.name.endswith("]") else entry.name
            extract_nextjs_pages(entry.path, route_map, f"{base_path}/{segment}")
        elif entry.is_file(follow_symlinks=False):
            base, ext = os.path.splitext(entry.name)
            if ext not in PAGE_EXTENSIONS or base.startswith("_"):
                continue
            if base == "index":
                route_path = base_path or "/"
            elif base.startswith("[") and base.endswith("]"):
                route_path = f"{base_path}/:{base[1:-1]}"
            else:
                route_path = f"{base_path}/{base}"
            route_map[route_path] = Route(
                path=route_path,
                name=path_to_name(route_path),
                params=extract_route_params(route_path),
                component=entry.path,
            )


def extract_nextjs_app_routes(directory: str, route_map: Dict[str, Route], base_path: str = "") -> None:
    """app/ router: page.* files, (group) folders add no segment."""
    try:
        entries = sorted(os.scandir(directory), key=lambda e: e.name)
    except OSError:
        return

    for entry in entries:
        if entry.is_symlink():
            continue
        if entry.is_dir(follow_symlinks=False):
            if entry.name.startswith(("_", ".")):
                continue
            if entry.name.startswith("(") and entry.name.endswith(")"):
                segment = ""
            elif entry.name.startswith("[") and entry.name.endswith("]"):
                segment = f":{entry.name[1:-1]}"
            else:
                segment = entry.name
            extract_nextjs_app_routes(entry.path, route_map, f"{base_path}/{segment}" if segment else base_path)
        elif entry.name in ("page.tsx", "page.ts", "page.jsx", "page.js"):
            route_path = base_path or "/"
            route_map[route_path] = Route(
                path=route_path,
                name=path_to_name(route_path),
                params=extract_route_params(route_path),
                component=entry.path,
            )


# ==================== Forms ====================

ZOD_TYPE_MAP = {
    "string": "text",
    "email": "email",
    "number": "number",
    "boolean": "checkbox",
    "date": "date",
    "enum": "select",
    "password": "password",
}

YUP_TYPE_MAP = {
    "string": "text",
    "email": "email",
    "number": "number",
    "boolean": "checkbox",
    "date": "date",
    "mixed": "text",
}

# Schema bodies are bounded to 2000 chars
ZOD_FIELD_RE = re.compile(r"(\w+)\s*:\s*z\.(\w+)(?:\([^)]*\))?(?:\.\w+(?:\([^)]*\))?){0,5}")
YUP_FIELD_RE = re.compile(r"(\w+)\s*:\s*(?:yup|Yup)\.(\w+)(?:\([^)]*\))?(?:\.\w+(?:\([^)]*\))?){0,5}")
FORM_NAME_SUFFIX_RE = re.compile(r"(?:Form|Schema|Validation)$", re.I)


def _add_field(fields: List[FormField], name: str, field_type: str) -> None:
    if any(f.name == name for f in fields):
        return
    fields.append(FormField(name=name, type=field_type or "text", label=field_name_to_label(name)))


def _schema_fields(field_re, type_map):
    def handler(match, source, fields):
        for field_match in bounded_finditer(field_re, match.group(1)):
            _add_field(fields, field_match.group(1), type_map.get(field_match.group(2).lower(), "text"))
    return handler


def _register_field(match, source, fields):
    _add_field(fields, match.group(1), "text")


def _input_name_first(match, source, fields):
    _add_field(fields, match.group(1), match.group(2) or "text")


def _input_type_first(match, source, fields):
    _add_field(fields, match.group(2), match.group(1) or "text")


FORM_EXTRACTORS: List[Extractor] = [
    Extractor("zodSchema", re.compile(r"z\.object\s*\(\s*\{([\s\S]{0,2000}?)\}\s*\)"), _schema_fields(ZOD_FIELD_RE, ZOD_TYPE_MAP)),
    Extractor("yupSchema", re.compile(r"(?:yup|Yup)\.object\s*\(\s*\{([\s\S]{0,2000}?)\}\s*\)"), _schema_fields(YUP_FIELD_RE, YUP_TYPE_MAP)),
    Extractor("rhfRegister", re.compile(r"register\s*\(\s*['\"](\w+)['\"]"), _register_field),
    Extractor(
        "htmlInputNameFirst",
        re.compile(r"<input[^>]+name\s*=\s*['\"](\w+)['\"](?:[^>]*?type\s*=\s*['\"](\w+)['\"])?", re.I),
        _input_name_first,
    ),
    Extractor(
        "htmlInputTypeFirst",
        re.compile(r"<input[^>]+type\s*=\s*['\"](\w+)['\"][^>]+name\s*=\s*['\"](\w+)['\"]", re.I),
        _input_type_first,
    ),
]


def extract_forms_from_content(content: str, source: str, form_map: Dict[str, Form]) -> None:
    fields: List[FormField] = []
    run_extractors(FORM_EXTRACTORS, content, source, fields)
    if not fields:
        return

    name_from_file = FORM_NAME_SUFFIX_RE.sub("", _stem(source))
    form_id = name_from_file.lower()
    if form_id and form_id not in form_map:
        form_map[form_id] = Form(
            id=form_id,
            name=field_name_to_label(name_from_file),
            fields=fields,
            schema=source,
        )


# ==================== Tables ====================

TABLE_HINT_RE = re.compile(r"(?:AgGridReact|DataGrid|useReactTable|Table)", re.I)
HTML_TABLE_RE = re.compile(r"<table", re.I)
COLUMN_FIELD_RE = re.compile(r"field:\s*['\"](\w+)['\"]")
TABLE_NAME_SUFFIX_RE = re.compile(r"(?:Table|Grid|List|DataGrid)$", re.I)


def _add_column(columns: List[str], column: str) -> None:
    if column and column not in columns:
        columns.append(column)


def _column_block(match, source, columns):
    for field_match in bounded_finditer(COLUMN_FIELD_RE, match.group(1)):
        _add_column(columns, field_match.group(1))


def _column_key(match, source, columns):
    _add_column(columns, match.group(1))


def _header_cell(match, source, columns):
    _add_column(columns, match.group(1).strip())


TABLE_EXTRACTORS: List[Extractor] = [
    # AG Grid columnDefs and MUI DataGrid columns
    Extractor("agGridColumns", re.compile(r"columnDefs\s*[:=]\s*\[([^\]]+)\]", re.S), _column_block),
    Extractor("muiColumns", re.compile(r"columns\s*[:=]\s*\[([^\]]+)\]", re.S), _column_block),
    Extractor("tanstackColumn", re.compile(r"accessorKey:\s*['\"](\w+)['\"]"), _column_key),
    Extractor("antdDataIndex", re.compile(r"dataIndex:\s*['\"](\w+)['\"]"), _column_key),
    Extractor("htmlTh", re.compile(r"<th[^>]*>([^<]+)</th>", re.I), _header_cell),
]


def extract_tables_from_content(content: str, source: str, table_map: Dict[str, Table]) -> None:
    if not TABLE_HINT_RE.search(content) and not HTML_TABLE_RE.search(content):
        return

    columns: List[str] = []
    run_extractors(TABLE_EXTRACTORS, content, source, columns)
    if not columns:
        return

    name_from_file = TABLE_NAME_SUFFIX_RE.sub("", _stem(source))
    table_id = name_from_file.lower()
    if table_id not in table_map:
        table_map[table_id] = Table(
            id=table_id,
            name=field_name_to_label(name_from_file) or "Data Table",
            columns=columns,
        )


# ==================== Modals ====================

MODAL_DETECTORS = [
    re.compile(r"<Dialog[^>]*(?:open|onClose)[^>]*>", re.I),
    re.compile(r"<DialogTitle[^>]*>([^<]+)</DialogTitle>", re.I),
    re.compile(r"<Dialog\.Root", re.I),
    re.compile(r"<Dialog\.Title[^>]*>([^<]+)</Dialog\.Title>", re.I),
    re.compile(r"<Modal[^>]*(?:isOpen|onRequestClose|onClose|open|visible|onCancel)[^>]*>", re.I),
    re.compile(r"<ModalHeader[^>]*>([^<]+)</ModalHeader>", re.I),
    re.compile(r"title\s*=\s*[{'\"]([\w\s]+)['\"}]", re.I),
    re.compile(r"(?:Modal|Dialog|Popup|Overlay)\s*(?:name|id|title)\s*=\s*['\"](\w+)['\"]", re.I),
    re.compile(r"(?:open|show|toggle)(?:Modal|Dialog)\s*\(\s*['\"]?(\w+)", re.I),
]

# MUI, then Chakra, then Ant Design
MODAL_TITLE_PATTERNS = [
    re.compile(r"<DialogTitle[^>]*>([^<]+)</DialogTitle>", re.I),
    re.compile(r"<ModalHeader[^>]*>([^<]+)</ModalHeader>", re.I),
    re.compile(r"title\s*=\s*[{'\"]([\w\s]+)['\"}]", re.I),
]
MODAL_NAME_SUFFIX_RE = re.compile(r"(?:Modal|Dialog|Popup)$", re.I)


def extract_modals_from_content(content: str, source: str, modal_map: Dict[str, Modal]) -> None:
    if not any(p.search(content) for p in MODAL_DETECTORS):
        return

    title = None
    for pattern in MODAL_TITLE_PATTERNS:
        match = pattern.search(content)
        if match:
            title = match.group(1).strip()
            break

    name_from_file = MODAL_NAME_SUFFIX_RE.sub("", _stem(source))
    modal_id = name_from_file.lower()
    if modal_id and modal_id not in modal_map:
        modal_map[modal_id] = Modal(
            id=modal_id,
            name=title or field_name_to_label(name_from_file) or "Modal",
        )


# ==================== Orchestration ====================

def _within_root(root: str, candidate: str) -> bool:
    resolved = os.path.realpath(candidate)
    return resolved == root or resolved.startswith(root + os.sep)


def extract_elements(files: List[ScannedFile], project_root) -> MinedElements:
    """Run every element extractor over pre-scanned files plus the file-based route trees."""
    root = os.path.realpath(project_root)

    entity_map: Dict[str, _EntityRecord] = {}
    route_map: Dict[str, Route] = {}
    form_map: Dict[str, Form] = {}
    table_map: Dict[str, Table] = {}
    modal_map: Dict[str, Modal] = {}

    for scanned in files:
        extract_entities_from_content(scanned.content, scanned.path, entity_map)
        extract_routes_from_content(scanned.content, scanned.path, route_map)
        extract_forms_from_content(scanned.content, scanned.path, form_map)
        extract_tables_from_content(scanned.content, scanned.path, table_map)
        extract_modals_from_content(scanned.content, scanned.path, modal_map)

    prisma_path = os.path.join(root, "prisma", "schema.prisma")
    if os.path.isfile(prisma_path) and not os.path.islink(prisma_path):
        extract_prisma_entities(prisma_path, entity_map)

    pages_dir = os.path.join(root, "pages")
    if _within_root(root, pages_dir) and os.path.isdir(pages_dir):
        extract_nextjs_pages(pages_dir, route_map)
    app_dir = os.path.join(root, "app")
    if _within_root(root, app_dir) and os.path.isdir(app_dir):
        extract_nextjs_app_routes(app_dir, route_map)

    return MinedElements(
        entities=_entities_from_map(entity_map),
        routes=list(route_map.values()),
        forms=list(form_map.values()),
        tables=list(table_map.values()),
        modals=list(modal_map.values()),
    )


def _mine_sync(project_root, cache: MiningCache, max_depth: int, max_files: int) -> MiningResult:
    started = time.monotonic()
    files = scan_all_source_directories(project_root, cache, max_depth=max_depth, max_files=max_files)
    elements = extract_elements(files, project_root)
    cache_stats = cache.get_stats()

    stats: Dict[str, Any] = {
        "entities_found": len(elements.entities),
        "routes_found": len(elements.routes),
        "forms_found": len(elements.forms),
        "tables_found": len(elements.tables),
        "modals_found": len(elements.modals),
        "total_elements": elements.total,
        "files_scanned": len(files),
        "cache_hits": cache_stats.hits,
        "cache_misses": cache_stats.misses,
        "cache_hit_rate": cache.get_hit_rate(),
    }
    logger.info(
        f"Mined {elements.total} elements from {len(files)} files "
        f"(cache hit rate {stats['cache_hit_rate']}%)"
    )
    return MiningResult(elements=elements, stats=stats, duration_ms=int((time.monotonic() - started) * 1000))


async def mine_elements(
    project_root,
    max_depth: int = DEFAULT_MAX_DEPTH,
    max_files: int = DEFAULT_MAX_FILES,
    cache: Optional[MiningCache] = None,
) -> MiningResult:
    """
    Scan the conventional source directories once and extract all element kinds.

    A cache passed in by the caller is left populated for later passes (the
    caller clears it); otherwise a private cache is created and cleared here.
    """
    owns_cache = cache is None
    cache = cache or MiningCache()
    try:
        return await asyncio.to_thread(_mine_sync, project_root, cache, max_depth, max_files)
    finally:
        if owns_cache:
            cache.clear()
