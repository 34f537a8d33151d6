"""
models.py - Pydantic v2 data models for kg_ingest.

Defines data structures for:
- Graph nodes and relationships (schema-checked property maps)
- Definitions harvested by the parsing pass, with import / call-site records
- Cached per-file parse results
- Diagnostic report returned next to the graph
- Ingestion input contract and engine configuration
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional
import hashlib

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class NodeKind(str, Enum):
    """All node labels that may appear in a KnowledgeGraph."""
    PROJECT = "Project"
    PACKAGE = "Package"        # folder holding an __init__.py
    MODULE = "Module"
    FOLDER = "Folder"
    FILE = "File"
    CLASS = "Class"
    FUNCTION = "Function"
    METHOD = "Method"
    VARIABLE = "Variable"
    INTERFACE = "Interface"
    ENUM = "Enum"
    DECORATOR = "Decorator"
    IMPORT = "Import"
    TYPE = "Type"              # type alias


class RelKind(str, Enum):
    """All relationship types in the graph."""
    CONTAINS = "CONTAINS"      # project/folder -> folder/file
    DEFINES = "DEFINES"        # file -> definition
    IMPORTS = "IMPORTS"        # file -> file
    CALLS = "CALLS"            # caller definition (or file) -> callee definition
    EXTENDS = "EXTENDS"
    IMPLEMENTS = "IMPLEMENTS"
    BELONGS_TO = "BELONGS_TO"  # method -> class


class DefinitionKind(str, Enum):
    FUNCTION = "function"
    CLASS = "class"
    METHOD = "method"
    VARIABLE = "variable"
    INTERFACE = "interface"
    TYPE = "type"
    ENUM = "enum"
    DECORATOR = "decorator"
    IMPORT = "import"


DEFINITION_LABELS: dict[DefinitionKind, NodeKind] = {
    DefinitionKind.FUNCTION:  NodeKind.FUNCTION,
    DefinitionKind.CLASS:     NodeKind.CLASS,
    DefinitionKind.METHOD:    NodeKind.METHOD,
    DefinitionKind.VARIABLE:  NodeKind.VARIABLE,
    DefinitionKind.INTERFACE: NodeKind.INTERFACE,
    DefinitionKind.TYPE:      NodeKind.TYPE,
    DefinitionKind.ENUM:      NodeKind.ENUM,
    DefinitionKind.DECORATOR: NodeKind.DECORATOR,
    DefinitionKind.IMPORT:    NodeKind.IMPORT,
}

# Kinds a call site may legitimately resolve to.
CALLABLE_KINDS: frozenset[DefinitionKind] = frozenset({
    DefinitionKind.FUNCTION, DefinitionKind.METHOD, DefinitionKind.CLASS,
})

# Kinds that can own methods / be the target of EXTENDS and IMPLEMENTS.
TYPE_KINDS: frozenset[DefinitionKind] = frozenset({
    DefinitionKind.CLASS, DefinitionKind.INTERFACE, DefinitionKind.ENUM,
})


class ImportKind(str, Enum):
    NAMED = "named"
    DEFAULT = "default"
    NAMESPACE = "namespace"
    WILDCARD = "wildcard"


class CallClassification(str, Enum):
    """Terminal states of a call site."""
    BUILTIN_IGNORED = "BuiltinIgnored"
    IMPORT_RESOLVED = "ImportResolved"
    LOCAL_RESOLVED = "LocalResolved"
    UNRESOLVED = "Unresolved"


# ---------------------------------------------------------------------------
# Stable identifiers
# ---------------------------------------------------------------------------

def _digest(raw: str) -> str:
    return hashlib.sha256(raw.encode()).hexdigest()[:24]


def make_node_id(kind: str, file_path: str, name: str, start_byte: int, end_byte: int) -> str:
    """Content-derived id for a definition node (kind + path + name + span)."""
    return _digest(f"{kind}:{file_path}:{name}:{start_byte}:{end_byte}")


def make_structure_id(kind: NodeKind, path: str) -> str:
    """Id for Project / Folder / Package / File nodes."""
    return _digest(f"{kind.value}:{path}")


def make_relationship_id(source: str, rel: RelKind, target: str) -> str:
    return _digest(f"{source}:{rel.value}:{target}")


# ---------------------------------------------------------------------------
# Property schemas
# ---------------------------------------------------------------------------

_FILE_PROPS = frozenset({
    "name", "path", "extension", "language", "category", "definitionCount",
    "noDefinitions", "hasContent", "parseError", "parseErrorReason",
    "skipReason", "contentHash", "fileSize", "hasSyntaxErrors",
})
_DEF_PROPS = frozenset({
    "name", "qualifiedName", "filePath", "startLine", "endLine", "language",
    "parentClass",
})
_CALLABLE_PROPS = _DEF_PROPS | {"parameters", "decorators", "isAsync", "isDefaultExport"}
_TYPE_PROPS = _DEF_PROPS | {"extends", "implements", "decorators", "isDefaultExport"}

NODE_PROPERTY_SCHEMA: dict[NodeKind, frozenset[str]] = {
    NodeKind.PROJECT:   frozenset({"name", "path"}),
    NodeKind.PACKAGE:   frozenset({"name", "path", "depth"}),
    NodeKind.FOLDER:    frozenset({"name", "path", "depth"}),
    NodeKind.FILE:      _FILE_PROPS,
    NodeKind.MODULE:    _FILE_PROPS,
    NodeKind.FUNCTION:  _CALLABLE_PROPS,
    NodeKind.METHOD:    _CALLABLE_PROPS,
    NodeKind.CLASS:     _TYPE_PROPS,
    NodeKind.INTERFACE: _TYPE_PROPS,
    NodeKind.ENUM:      _TYPE_PROPS,
    NodeKind.TYPE:      _DEF_PROPS | {"isDefaultExport"},
    NodeKind.VARIABLE:  _DEF_PROPS | {"isDefaultExport"},
    NodeKind.DECORATOR: _DEF_PROPS | {"decoratedTarget"},
    NodeKind.IMPORT:    _DEF_PROPS | {"module", "level", "importedNames", "isReexport"},
}

REL_PROPERTY_SCHEMA: dict[RelKind, frozenset[str]] = {
    RelKind.CONTAINS:   frozenset(),
    RelKind.DEFINES:    frozenset(),
    RelKind.BELONGS_TO: frozenset(),
    RelKind.IMPORTS:    frozenset({"module", "confidence", "strategy", "names"}),
    RelKind.CALLS:      frozenset({"callType", "calledName", "lines", "callCount"}),
    RelKind.EXTENDS:    frozenset({"typeName", "resolution"}),
    RelKind.IMPLEMENTS: frozenset({"typeName", "resolution"}),
}

_SCALARS = (str, int, float, bool, type(None))


def check_properties(owner: str, allowed: frozenset[str], props: dict[str, Any]) -> dict[str, Any]:
    """Validate a property map against its schema; returns a normalised copy.

    Raises ValueError for unknown keys or non-scalar values.
    """
    clean: dict[str, Any] = {}
    for key, value in props.items():
        if key not in allowed:
            raise ValueError(f"Property '{key}' is not allowed on {owner}")
        if isinstance(value, (list, tuple)):
            if not all(isinstance(v, _SCALARS) for v in value):
                raise ValueError(f"Property '{key}' on {owner} must be a list of scalars")
            value = list(value)
        elif not isinstance(value, _SCALARS):
            raise ValueError(f"Property '{key}' on {owner} has unsupported type {type(value).__name__}")
        clean[key] = value
    return clean


# ---------------------------------------------------------------------------
# Graph records
# ---------------------------------------------------------------------------

class GraphNode(BaseModel):
    """A node of the knowledge graph.

    ``properties`` is an explicit schema-checked map: the allowed keys
    depend on ``label`` (see NODE_PROPERTY_SCHEMA).
    """
    id: str
    label: NodeKind
    properties: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_schema(self) -> "GraphNode":
        self.properties = check_properties(
            self.label.value, NODE_PROPERTY_SCHEMA[self.label], self.properties
        )
        return self

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "label": self.label.value, "properties": dict(self.properties)}


class GraphRelationship(BaseModel):
    """A directed relationship. The id is derived from source + type + target."""
    id: str = ""
    type: RelKind
    source: str
    target: str
    properties: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _derive(self) -> "GraphRelationship":
        if not self.id:
            self.id = make_relationship_id(self.source, self.type, self.target)
        self.properties = check_properties(
            self.type.value, REL_PROPERTY_SCHEMA[self.type], self.properties
        )
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "source": self.source,
            "target": self.target,
            "properties": dict(self.properties),
        }


# ---------------------------------------------------------------------------
# Extraction records
# ---------------------------------------------------------------------------

class ImportedName(BaseModel):
    """One binding introduced by an import statement."""
    model_config = ConfigDict(frozen=True)

    local_name: Optional[str] = None     # None for side-effect / wildcard imports
    imported_name: Optional[str] = None  # None for namespace bindings
    kind: ImportKind = ImportKind.NAMED


class ImportSpec(BaseModel):
    """Raw import statement data carried on an import Definition."""
    model_config = ConfigDict(frozen=True)

    module: str
    level: int = 0                       # Python relative-import dots
    names: tuple[ImportedName, ...] = ()
    is_reexport: bool = False
    line: int = 0


class Definition(BaseModel):
    """A named code entity extracted from one file.

    ``node_id`` is derived from kind, file path, name and byte span when not
    supplied, so identical input always produces identical ids.
    """
    model_config = ConfigDict(frozen=True)

    node_id: str = ""
    qualified_name: str
    file_path: str
    name: str
    kind: DefinitionKind
    start_line: int
    end_line: int
    start_byte: int = 0
    end_byte: int = 0
    language: str = ""
    parent_class: Optional[str] = None
    parameters: tuple[str, ...] = ()
    extends: tuple[str, ...] = ()
    implements: tuple[str, ...] = ()
    decorators: tuple[str, ...] = ()
    decorated_target: Optional[str] = None
    is_default_export: bool = False
    is_async: bool = False
    import_spec: Optional[ImportSpec] = None

    @model_validator(mode="before")
    @classmethod
    def _derive_id(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("node_id"):
            kind = data.get("kind")
            kind_value = kind.value if isinstance(kind, DefinitionKind) else str(kind)
            data = dict(data)
            data["node_id"] = make_node_id(
                kind_value,
                data.get("file_path", ""),
                data.get("name", ""),
                data.get("start_byte", 0),
                data.get("end_byte", 0),
            )
        return data

    @property
    def label(self) -> NodeKind:
        return DEFINITION_LABELS[self.kind]

    def to_node_properties(self) -> dict[str, Any]:
        """Flatten into the property map allowed for this definition's label."""
        props: dict[str, Any] = {
            "name": self.name,
            "qualifiedName": self.qualified_name,
            "filePath": self.file_path,
            "startLine": self.start_line,
            "endLine": self.end_line,
            "language": self.language,
        }
        if self.parent_class:
            props["parentClass"] = self.parent_class
        if self.kind in (DefinitionKind.FUNCTION, DefinitionKind.METHOD):
            props["parameters"] = list(self.parameters)
            props["isAsync"] = self.is_async
        if self.decorators and self.kind not in (
            DefinitionKind.VARIABLE, DefinitionKind.TYPE,
            DefinitionKind.DECORATOR, DefinitionKind.IMPORT,
        ):
            props["decorators"] = list(self.decorators)
        if self.kind in TYPE_KINDS:
            if self.extends:
                props["extends"] = list(self.extends)
            if self.implements:
                props["implements"] = list(self.implements)
        if self.is_default_export and self.kind not in (DefinitionKind.DECORATOR, DefinitionKind.IMPORT):
            props["isDefaultExport"] = True
        if self.kind == DefinitionKind.DECORATOR and self.decorated_target:
            props["decoratedTarget"] = self.decorated_target
        if self.kind == DefinitionKind.IMPORT and self.import_spec is not None:
            props["module"] = self.import_spec.module
            props["level"] = self.import_spec.level
            props["importedNames"] = [
                n.imported_name or n.local_name or "*" for n in self.import_spec.names
            ]
            props["isReexport"] = self.import_spec.is_reexport
        return props


class CallSite(BaseModel):
    """One call expression found while parsing a file."""
    model_config = ConfigDict(frozen=True)

    file_path: str
    called_name: str
    receiver: Optional[str] = None
    line: int
    column: int = 0
    caller_id: Optional[str] = None      # None means module level (File node)
    caller_name: Optional[str] = None
    caller_class: Optional[str] = None

    @property
    def receiver_root(self) -> Optional[str]:
        """Leading identifier of a dotted receiver (``a`` for ``a.b``)."""
        if not self.receiver:
            return None
        return self.receiver.split(".", 1)[0]


class ParsedFile(BaseModel):
    """Everything the resolution passes need from one parsed file."""
    model_config = ConfigDict(frozen=True)

    file_path: str
    language: str
    content_hash: str
    file_size: int
    definitions: tuple[Definition, ...] = ()
    call_sites: tuple[CallSite, ...] = ()
    has_syntax_errors: bool = False
    query_errors: tuple[str, ...] = ()

    def imports(self) -> list[Definition]:
        return [d for d in self.definitions if d.kind == DefinitionKind.IMPORT]


class ImportBinding(BaseModel):
    """A resolved import binding visible inside an importing file."""
    model_config = ConfigDict(frozen=True)

    local_name: str
    target_file: str
    imported_name: Optional[str] = None
    kind: ImportKind = ImportKind.NAMED


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------

class FileFailure(BaseModel):
    path: str
    error: str           # exception class name (ParseError, ParseTimeout, ...)
    reason: str


class QueryFailure(BaseModel):
    path: str
    language: str
    query: str
    reason: str


class UnresolvedImport(BaseModel):
    file_path: str
    module: str
    line: int = 0


class UnresolvedCall(BaseModel):
    file_path: str
    line: int
    called_name: str
    receiver: Optional[str] = None
    caller: Optional[str] = None


class IntegrityViolation(BaseModel):
    kind: str = "ReferentialIntegrityViolation"
    relationship_id: str
    rel_type: str
    missing_endpoint: str   # "source" or "target"
    node_id: str


class IntegrityReport(BaseModel):
    violations: list[IntegrityViolation] = Field(default_factory=list)
    unflagged_files: list[str] = Field(default_factory=list)
    isolated_node_counts: dict[str, int] = Field(default_factory=dict)
    node_count: int = 0
    relationship_count: int = 0

    @property
    def ok(self) -> bool:
        return not self.violations and not self.unflagged_files


class DiagnosticReport(BaseModel):
    """The single surface for parsing and resolution shortfalls."""
    files_processed: int = 0
    files_failed: int = 0
    files_skipped: int = 0
    skipped_by_reason: dict[str, int] = Field(default_factory=dict)
    definitions_by_type: dict[str, int] = Field(default_factory=dict)
    duplicate_definitions: int = 0
    imports_total: int = 0
    imports_resolved: int = 0
    import_resolution_rate: float = 0.0
    unresolved_imports: list[UnresolvedImport] = Field(default_factory=list)
    call_resolution_rate: float = 0.0
    call_stats: dict[str, int] = Field(default_factory=dict)
    unresolved_calls: list[UnresolvedCall] = Field(default_factory=list)
    heritage_resolved: int = 0
    heritage_unresolved: int = 0
    parse_failures: list[FileFailure] = Field(default_factory=list)
    query_failures: list[QueryFailure] = Field(default_factory=list)
    integrity_violations: list[IntegrityViolation] = Field(default_factory=list)
    unflagged_files: list[str] = Field(default_factory=list)
    isolated_node_counts: dict[str, int] = Field(default_factory=dict)
    node_counts: dict[str, int] = Field(default_factory=dict)
    relationship_counts: dict[str, int] = Field(default_factory=dict)
    cache_stats: dict[str, Any] = Field(default_factory=dict)
    elapsed_seconds: float = 0.0


# ---------------------------------------------------------------------------
# Input contract
# ---------------------------------------------------------------------------

def normalize_path(path: str) -> str:
    """Forward slashes, no leading './' or '/' and no trailing '/'."""
    path = path.replace("\\", "/")
    while path.startswith("./"):
        path = path[2:]
    return path.strip("/")


class IngestionOptions(BaseModel):
    """User filters. Both accept a comma separated string or a list."""
    directory_filter: Optional[str] = None
    file_extensions: Optional[str] = None

    @field_validator("directory_filter", "file_extensions", mode="before")
    @classmethod
    def _join_lists(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple, set)):
            return ",".join(str(v) for v in value)
        return value


class IngestionInput(BaseModel):
    """What acquisition collaborators hand to the pipeline."""
    file_paths: list[str]
    file_contents: dict[str, str] = Field(default_factory=dict)
    options: IngestionOptions = Field(default_factory=IngestionOptions)
    project_name: str = "project"
    project_root: str = ""

    @model_validator(mode="after")
    def _normalize(self) -> "IngestionInput":
        self.file_paths = [p for p in (normalize_path(p) for p in self.file_paths) if p]
        self.file_contents = {normalize_path(k): v for k, v in self.file_contents.items()}
        return self


# ---------------------------------------------------------------------------
# Configuration model
# ---------------------------------------------------------------------------

class IngestionConfig(BaseModel):
    """Tunable policy knobs for one pipeline instance."""
    batch_size: int = Field(default=10, ge=1)
    max_workers: int = Field(default=1, ge=1)
    parse_timeout_seconds: Optional[float] = 10.0
    # Parsed-file cache bounds; whichever is hit first triggers eviction.
    cache_max_entries: int = Field(default=200, ge=1)
    cache_max_bytes: int = 100 * 1024 * 1024
    query_cache_max_entries: int = Field(default=1000, ge=0)
    grammar_cache_max_entries: int = Field(default=10, ge=1)
    verify_cache_integrity: bool = False
    # Generated / minified detection
    max_file_size: int = 500_000
    max_first_line_length: int = 1000
    bundler_signatures: list[str] = Field(
        default_factory=lambda: [
            "__webpack_require__", "webpackBootstrap",
            "/*! For license information", "System.register(", "parcelRequire",
        ]
    )
    # Directory segments that are never ingested
    ignore_patterns: list[str] = Field(
        default_factory=lambda: [
            ".git", ".svn", ".hg",
            "node_modules", "bower_components", "jspm_packages", "vendor", "deps",
            "venv", "env", ".venv", ".env", "envs", "virtualenv", "__pycache__",
            ".pytest_cache", ".mypy_cache", ".tox",
            "build", "dist", "out", "target", "bin", "obj", ".gradle", "_build",
            ".vs", ".vscode", ".idea", ".eclipse", ".settings",
            "tmp", ".tmp", "temp", "logs", "log",
            "coverage", ".coverage", "htmlcov", ".nyc_output",
            "_site", ".docusaurus",
            ".cache", ".parcel-cache", ".next", ".nuxt",
        ]
    )
    ignored_file_names: list[str] = Field(
        default_factory=lambda: [
            "package-lock.json", "yarn.lock", "pnpm-lock.yaml", "poetry.lock",
            "pipfile.lock", "cargo.lock", "composer.lock", "gemfile.lock",
            ".ds_store", "thumbs.db",
        ]
    )
    ignored_extensions: list[str] = Field(
        default_factory=lambda: [
            ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".ico", ".svg", ".webp",
            ".pdf", ".zip", ".tar", ".gz", ".tgz", ".bz2", ".7z", ".rar", ".jar",
            ".war", ".class", ".pyc", ".pyo", ".so", ".dll", ".dylib", ".exe",
            ".o", ".a", ".lib", ".bin", ".woff", ".woff2", ".ttf", ".eot",
            ".mp3", ".mp4", ".wav", ".avi", ".mov", ".lock", ".map", ".min.js",
        ]
    )
    # Extensions to parse; key = language, value = list of file extensions
    language_extensions: dict[str, list[str]] = Field(
        default_factory=lambda: {
            "python": [".py", ".pyi"],
            "javascript": [".js", ".mjs", ".cjs", ".jsx"],
            "typescript": [".ts", ".mts", ".cts"],
            "tsx": [".tsx"],
            "java": [".java"],
        }
    )
    # Additional names treated as built-ins, per language
    extra_builtins: dict[str, list[str]] = Field(default_factory=dict)
    max_reexport_depth: int = Field(default=5, ge=0)
