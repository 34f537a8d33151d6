"""
ast_parser.py - Tree-sitter based definition and call-site extraction.

Responsibilities:
- Run every named query of a Grammar over a parsed tree.
- Turn matches into Definition records using per-kind naming strategies.
- Derive syntax-level metadata: enclosing class, parameters, heritage,
  decorators, default-export and async markers.
- Parse import / require / re-export statements into ImportSpec records.
- Collect call sites together with their innermost enclosing caller.

Extraction is language agnostic: everything language specific lives in the
query tables and scope node types of language_queries.py, plus the three
small import readers at the bottom of this module.
"""

from __future__ import annotations

import logging
from typing import Optional

from tree_sitter import Node, Tree

from kg_ingest.errors import QueryError
from kg_ingest.grammar import Grammar, Match
from kg_ingest.models import (
    CallSite, Definition, DefinitionKind, ImportedName, ImportKind, ImportSpec,
    ParsedFile,
)
from kg_ingest.registry import qualified_name_for

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Query name -> DefinitionKind
# ---------------------------------------------------------------------------

QUERY_KIND_MAP: dict[str, DefinitionKind] = {
    "functions":            DefinitionKind.FUNCTION,
    "arrow_functions":      DefinitionKind.FUNCTION,
    "function_expressions": DefinitionKind.FUNCTION,
    "classes":              DefinitionKind.CLASS,
    "methods":              DefinitionKind.METHOD,
    "interfaces":           DefinitionKind.INTERFACE,
    "types":                DefinitionKind.TYPE,
    "enums":                DefinitionKind.ENUM,
    "variables":            DefinitionKind.VARIABLE,
    "decorators":           DefinitionKind.DECORATOR,
}

IMPORT_QUERIES: tuple[str, ...] = ("imports", "requires", "reexports")

# Definitions that may act as the caller of a call site
CALLER_KINDS = frozenset({DefinitionKind.FUNCTION, DefinitionKind.METHOD, DefinitionKind.CLASS})

_NAME_NODE_TYPES = frozenset({
    "identifier", "type_identifier", "property_identifier",
    "private_property_identifier", "constant",
})
_PATTERN_NODE_TYPES = frozenset({
    "pattern_list", "tuple_pattern", "list_pattern", "tuple", "list",
    "object_pattern", "array_pattern",
})
_FUNCTION_VALUE_TYPES = frozenset({
    "arrow_function", "function_expression", "function", "generator_function",
})


# ---------------------------------------------------------------------------
# Helper functions (module-private)
# ---------------------------------------------------------------------------

def _node_text(node: Optional[Node], source: bytes) -> str:
    """Extract the UTF-8 text for a tree-sitter node."""
    if node is None:
        return ""
    return source[node.start_byte:node.end_byte].decode("utf-8", errors="replace").strip()


def _first(match: Match, capture: str) -> Optional[Node]:
    nodes = match.get(capture)
    return nodes[0] if nodes else None


def _strip_quotes(text: str) -> str:
    return text.strip().strip("'\"`")


def _type_name(node: Node, source: bytes) -> str:
    """``Base<T>`` -> ``Base``; ``pkg.Base`` stays dotted."""
    return _node_text(node, source).split("<", 1)[0].split("(", 1)[0].strip()


def _pattern_names(node: Node, source: bytes) -> list[str]:
    """Identifiers bound by a destructuring pattern, in source order."""
    if node.type in ("identifier", "shorthand_property_identifier_pattern"):
        return [_node_text(node, source)]
    if node.type == "pair_pattern":
        value = node.child_by_field_name("value")
        return _pattern_names(value, source) if value is not None else []
    if node.type in ("assignment_pattern", "object_assignment_pattern"):
        left = node.child_by_field_name("left")
        return _pattern_names(left, source) if left is not None else []
    names: list[str] = []
    for child in node.named_children:
        names.extend(_pattern_names(child, source))
    return names


def _declared_name(name_node: Optional[Node], source: bytes) -> Optional[str]:
    """Naming strategy for declarations; None means the match is rejected."""
    if name_node is None or name_node.end_byte <= name_node.start_byte:
        return None
    if name_node.type in _PATTERN_NODE_TYPES:
        names = [n for n in _pattern_names(name_node, source) if n]
        return ",".join(names) if names else None
    if name_node.type not in _NAME_NODE_TYPES:
        return None
    text = _node_text(name_node, source)
    if not text or any(ch.isspace() for ch in text):
        return None
    return text


def decorator_name(node: Node, source: bytes) -> Optional[str]:
    """``@app.route("/x")`` -> ``app.route``; ``@Override`` -> ``Override``."""
    text = _node_text(node, source).lstrip("@").split("(", 1)[0].strip()
    return text or None


def _function_node(node: Node) -> Node:
    """The node carrying parameters for a definition (declarator -> its value)."""
    if node.type == "variable_declarator":
        value = node.child_by_field_name("value")
        if value is not None:
            return value
    return node


def _parameters(node: Node, source: bytes) -> tuple[str, ...]:
    fn = _function_node(node)
    params = fn.child_by_field_name("parameters")
    if params is None:
        single = fn.child_by_field_name("parameter")
        return (_node_text(single, source),) if single is not None else ()
    names: list[str] = []
    for child in params.named_children:
        if child.type == "comment":
            continue
        if child.type == "identifier":
            names.append(_node_text(child, source))
            continue
        target = child.child_by_field_name("name") or child.child_by_field_name("pattern")
        if target is None:
            target = next((c for c in child.named_children if c.type == "identifier"), None)
        if target is not None:
            text = _node_text(target, source)
            if text:
                names.append(text)
    return tuple(names)


def _is_async(node: Node) -> bool:
    fn = _function_node(node)
    return any(child.type == "async" for child in fn.children)


def _is_default_export(node: Node) -> bool:
    parent = node.parent
    if parent is not None and parent.type in ("lexical_declaration", "variable_declaration"):
        parent = parent.parent
    if parent is None or parent.type != "export_statement":
        return False
    return any(child.type == "default" for child in parent.children)


def _type_list(node: Node, source: bytes) -> list[str]:
    names: list[str] = []
    for child in node.named_children:
        if child.type == "type_list":
            names.extend(_type_list(child, source))
        elif child.type not in ("type_arguments", "comment"):
            names.append(_type_name(child, source))
    return [n for n in names if n]


def _heritage(node: Node, source: bytes) -> tuple[tuple[str, ...], tuple[str, ...]]:
    """(extends, implements) type names declared on a class-like node."""
    extends: list[str] = []
    implements: list[str] = []

    superclasses = node.child_by_field_name("superclasses")   # python
    if superclasses is not None:
        for child in superclasses.named_children:
            if child.type in ("identifier", "attribute", "subscript"):
                extends.append(_type_name(child, source))
    superclass = node.child_by_field_name("superclass")       # java
    if superclass is not None:
        extends.extend(_type_list(superclass, source))
    interfaces = node.child_by_field_name("interfaces")       # java
    if interfaces is not None:
        implements.extend(_type_list(interfaces, source))

    for child in node.children:
        if child.type == "class_heritage":
            for clause in child.named_children:
                if clause.type == "extends_clause":
                    values = clause.children_by_field_name("value")
                    extends.extend(_type_name(v, source) for v in values)
                    if not values:
                        extends.extend(_type_list(clause, source))
                elif clause.type == "implements_clause":
                    implements.extend(_type_list(clause, source))
                else:
                    extends.append(_type_name(clause, source))
        elif child.type in ("extends_interfaces", "extends_type_clause"):
            extends.extend(_type_list(child, source))

    return tuple(n for n in extends if n), tuple(n for n in implements if n)


def _decorators(node: Node, source: bytes) -> tuple[str, ...]:
    found: list[Node] = []
    parent = node.parent
    if parent is not None and parent.type == "decorated_definition":
        found.extend(c for c in parent.children if c.type == "decorator")
    for child in node.children:
        if child.type == "decorator":
            found.append(child)
        elif child.type == "modifiers":
            found.extend(c for c in child.children if c.type in ("annotation", "marker_annotation"))
    names = [decorator_name(d, source) for d in found]
    return tuple(n for n in names if n)


def _decorated_target(node: Node, source: bytes) -> Optional[str]:
    parent = node.parent
    if parent is None:
        return None
    target: Optional[Node]
    if parent.type == "decorated_definition":
        target = parent.child_by_field_name("definition")
    elif parent.type == "modifiers":
        target = parent.parent
    elif parent.type == "class_body":
        target = node.next_named_sibling
        while target is not None and target.type == "decorator":
            target = target.next_named_sibling
    else:
        target = parent
    if target is None:
        return None
    name = target.child_by_field_name("name")
    if name is None and target.type == "field_declaration":
        declarator = target.child_by_field_name("declarator")
        name = declarator.child_by_field_name("name") if declarator is not None else None
    return _node_text(name, source) or None


# ---------------------------------------------------------------------------
# Import readers
# ---------------------------------------------------------------------------

def _python_imports(node: Node, source: bytes) -> list[ImportSpec]:
    line = node.start_point[0] + 1
    specs: list[ImportSpec] = []
    if node.type == "import_statement":
        for item in node.children_by_field_name("name"):
            if item.type == "aliased_import":
                module = _node_text(item.child_by_field_name("name"), source)
                local = _node_text(item.child_by_field_name("alias"), source)
            else:
                module = _node_text(item, source)
                local = module
            if module:
                specs.append(ImportSpec(
                    module=module, line=line,
                    names=(ImportedName(local_name=local, kind=ImportKind.NAMESPACE),),
                ))
        return specs

    if node.type != "import_from_statement":
        return specs
    module_node = node.child_by_field_name("module_name")
    level = 0
    module = ""
    if module_node is not None and module_node.type == "relative_import":
        for child in module_node.children:
            if child.type == "import_prefix":
                level = _node_text(child, source).count(".")
            elif child.type == "dotted_name":
                module = _node_text(child, source)
    else:
        module = _node_text(module_node, source)

    names: list[ImportedName] = []
    for item in node.children_by_field_name("name"):
        if item.type == "aliased_import":
            imported = _node_text(item.child_by_field_name("name"), source)
            local = _node_text(item.child_by_field_name("alias"), source)
        else:
            imported = _node_text(item, source)
            local = imported
        if imported:
            names.append(ImportedName(local_name=local, imported_name=imported, kind=ImportKind.NAMED))
    if any(child.type == "wildcard_import" for child in node.children):
        names.append(ImportedName(kind=ImportKind.WILDCARD))
    if module or level:
        specs.append(ImportSpec(module=module, level=level, names=tuple(names), line=line))
    return specs


def _js_import_clause(clause: Node, source: bytes) -> list[ImportedName]:
    names: list[ImportedName] = []
    for child in clause.named_children:
        if child.type == "identifier":
            names.append(ImportedName(local_name=_node_text(child, source),
                                      imported_name="default", kind=ImportKind.DEFAULT))
        elif child.type == "namespace_import":
            ident = next((c for c in child.named_children if c.type == "identifier"), None)
            if ident is not None:
                names.append(ImportedName(local_name=_node_text(ident, source),
                                          kind=ImportKind.NAMESPACE))
        elif child.type == "named_imports":
            for spec in child.named_children:
                if spec.type != "import_specifier":
                    continue
                imported = _node_text(spec.child_by_field_name("name"), source)
                alias = _node_text(spec.child_by_field_name("alias"), source)
                if imported:
                    kind = ImportKind.DEFAULT if imported == "default" else ImportKind.NAMED
                    names.append(ImportedName(local_name=alias or imported,
                                              imported_name=imported, kind=kind))
    return names


def _js_imports(node: Node, source: bytes, query_name: str,
                source_node: Optional[Node]) -> list[ImportSpec]:
    line = node.start_point[0] + 1
    module = _strip_quotes(_node_text(source_node, source)) if source_node is not None else ""
    if not module:
        return []

    if query_name == "requires":
        names: list[ImportedName] = []
        declarator = node.parent
        if declarator is not None and declarator.type == "variable_declarator":
            target = declarator.child_by_field_name("name")
            if target is not None and target.type == "identifier":
                names.append(ImportedName(local_name=_node_text(target, source),
                                          kind=ImportKind.NAMESPACE))
            elif target is not None and target.type == "object_pattern":
                for prop in target.named_children:
                    if prop.type == "shorthand_property_identifier_pattern":
                        text = _node_text(prop, source)
                        names.append(ImportedName(local_name=text, imported_name=text))
                    elif prop.type == "pair_pattern":
                        key = _node_text(prop.child_by_field_name("key"), source)
                        value = prop.child_by_field_name("value")
                        local = _node_text(value, source) if value is not None and value.type == "identifier" else key
                        if key:
                            names.append(ImportedName(local_name=local, imported_name=key))
        return [ImportSpec(module=module, names=tuple(names), line=line)]

    if query_name == "reexports":
        names = []
        for child in node.children:
            if child.type == "export_clause":
                for spec in child.named_children:
                    if spec.type != "export_specifier":
                        continue
                    imported = _node_text(spec.child_by_field_name("name"), source)
                    alias = _node_text(spec.child_by_field_name("alias"), source)
                    if imported:
                        names.append(ImportedName(local_name=alias or imported,
                                                  imported_name=imported))
            elif child.type == "namespace_export":
                ident = next((c for c in child.named_children if c.type in ("identifier", "string")), None)
                if ident is not None:
                    names.append(ImportedName(local_name=_strip_quotes(_node_text(ident, source)),
                                              kind=ImportKind.NAMESPACE))
            elif child.type == "*":
                names.append(ImportedName(kind=ImportKind.WILDCARD))
        return [ImportSpec(module=module, names=tuple(names), is_reexport=True, line=line)]

    names = []
    for child in node.named_children:
        if child.type == "import_clause":
            names.extend(_js_import_clause(child, source))
    return [ImportSpec(module=module, names=tuple(names), line=line)]


def _java_imports(node: Node, source: bytes) -> list[ImportSpec]:
    line = node.start_point[0] + 1
    is_static = any(child.type == "static" for child in node.children)
    wildcard = any(child.type == "asterisk" for child in node.children)
    path_node = next(
        (c for c in node.named_children if c.type in ("scoped_identifier", "identifier")), None
    )
    path = _node_text(path_node, source)
    if not path:
        return []
    if wildcard:
        return [ImportSpec(module=path, names=(ImportedName(kind=ImportKind.WILDCARD),), line=line)]
    last = path.rsplit(".", 1)[-1]
    if is_static and "." in path:
        module = path.rsplit(".", 1)[0]
        return [ImportSpec(module=module, line=line,
                           names=(ImportedName(local_name=last, imported_name=last),))]
    return [ImportSpec(module=path, line=line,
                       names=(ImportedName(local_name=last, imported_name=last),))]


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------

class DefinitionExtractor:
    """Extracts Definitions and CallSites from one parsed file.

    Usage::

        extractor = DefinitionExtractor(grammar)
        defs, calls, errors = extractor.extract(tree, source, "pkg/mod.py")
    """

    def __init__(self, grammar: Grammar) -> None:
        self.grammar = grammar
        self.language = grammar.name

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def extract(
        self, tree: Tree, source: bytes, file_path: str,
    ) -> tuple[list[Definition], list[CallSite], list[str]]:
        """Returns (definitions, call_sites, query_errors)."""
        errors: list[str] = []
        definitions: list[Definition] = []
        seen: set[tuple[str, int, int, str]] = set()

        def add(definition: Definition) -> None:
            key = (definition.kind.value, definition.start_byte, definition.end_byte, definition.name)
            if key not in seen:
                seen.add(key)
                definitions.append(definition)

        for query_name in self.grammar.query_names:
            kind = QUERY_KIND_MAP.get(query_name)
            if kind is None and query_name not in IMPORT_QUERIES:
                continue
            matches = self._run(query_name, tree, errors)
            for match in matches:
                if kind is None:
                    for definition in self._import_definitions(query_name, match, source, file_path):
                        add(definition)
                    continue
                definition = self._definition(kind, match, source, file_path)
                if definition is not None:
                    add(definition)

        definitions.sort(key=lambda d: (d.start_byte, d.end_byte, d.kind.value, d.name))

        call_sites: list[CallSite] = []
        if "calls" in self.grammar.query_sources:
            call_sites = self._call_sites(self._run("calls", tree, errors), source, file_path, definitions)
        return definitions, call_sites, errors

    def _run(self, query_name: str, tree: Tree, errors: list[str]) -> list[Match]:
        try:
            return self.grammar.query(query_name, tree)
        except QueryError as exc:
            logger.warning("Query '%s' skipped for %s: %s", query_name, self.language, exc.reason)
            errors.append(f"{query_name}: {exc.reason}")
            return []

    # ------------------------------------------------------------------
    # Definitions
    # ------------------------------------------------------------------

    def _enclosing_class(self, node: Node, source: bytes) -> Optional[str]:
        """Name of the nearest class-like ancestor, unless a function scope comes first."""
        current = node.parent
        while current is not None:
            if current.type in self.grammar.function_node_types:
                return None
            if current.type in self.grammar.class_node_types:
                return _node_text(current.child_by_field_name("name"), source) or None
            current = current.parent
        return None

    def _definition(
        self, kind: DefinitionKind, match: Match, source: bytes, file_path: str,
    ) -> Optional[Definition]:
        node = _first(match, "node")
        if node is None:
            return None

        if kind == DefinitionKind.DECORATOR:
            name = decorator_name(node, source)
        else:
            name = _declared_name(_first(match, "name"), source)
        if not name:
            return None

        if kind == DefinitionKind.VARIABLE and node.type == "variable_declarator":
            value = node.child_by_field_name("value")
            if value is not None and value.type in _FUNCTION_VALUE_TYPES:
                return None

        parent_class = self._enclosing_class(node, source)
        if kind == DefinitionKind.FUNCTION and parent_class and node.type != "variable_declarator":
            kind = DefinitionKind.METHOD
        elif kind == DefinitionKind.METHOD and not parent_class:
            kind = DefinitionKind.FUNCTION

        parameters: tuple[str, ...] = ()
        is_async = False
        if kind in (DefinitionKind.FUNCTION, DefinitionKind.METHOD):
            parameters = _parameters(node, source)
            is_async = _is_async(node)

        extends: tuple[str, ...] = ()
        implements: tuple[str, ...] = ()
        if kind in (DefinitionKind.CLASS, DefinitionKind.INTERFACE, DefinitionKind.ENUM):
            extends, implements = _heritage(node, source)

        decorators: tuple[str, ...] = ()
        decorated_target: Optional[str] = None
        if kind == DefinitionKind.DECORATOR:
            decorated_target = _decorated_target(node, source)
        elif kind not in (DefinitionKind.VARIABLE, DefinitionKind.TYPE):
            decorators = _decorators(node, source)

        return Definition(
            qualified_name=qualified_name_for(file_path, name, parent_class),
            file_path=file_path,
            name=name,
            kind=kind,
            start_line=node.start_point[0] + 1,
            end_line=node.end_point[0] + 1,
            start_byte=node.start_byte,
            end_byte=node.end_byte,
            language=self.language,
            parent_class=parent_class,
            parameters=parameters,
            extends=extends,
            implements=implements,
            decorators=decorators,
            decorated_target=decorated_target,
            is_default_export=_is_default_export(node),
            is_async=is_async,
        )

    def _import_definitions(
        self, query_name: str, match: Match, source: bytes, file_path: str,
    ) -> list[Definition]:
        node = _first(match, "node")
        if node is None:
            return []
        if self.language == "python":
            specs = _python_imports(node, source)
        elif self.language == "java":
            specs = _java_imports(node, source)
        else:
            specs = _js_imports(node, source, query_name, _first(match, "source"))

        definitions = []
        for spec in specs:
            name = "." * spec.level + spec.module
            definitions.append(Definition(
                qualified_name=qualified_name_for(file_path, name.replace(".", "_") or "import"),
                file_path=file_path,
                name=name,
                kind=DefinitionKind.IMPORT,
                start_line=node.start_point[0] + 1,
                end_line=node.end_point[0] + 1,
                start_byte=node.start_byte,
                end_byte=node.end_byte,
                language=self.language,
                import_spec=spec,
            ))
        return definitions

    # ------------------------------------------------------------------
    # Call sites
    # ------------------------------------------------------------------

    def _call_sites(
        self, matches: list[Match], source: bytes, file_path: str,
        definitions: list[Definition],
    ) -> list[CallSite]:
        callers = [d for d in definitions if d.kind in CALLER_KINDS]
        seen: set[tuple[int, str]] = set()
        sites: list[CallSite] = []
        for match in matches:
            node = _first(match, "node")
            callee = _first(match, "callee")
            if node is None or callee is None:
                continue
            called_name = _node_text(callee, source)
            if not called_name:
                continue
            key = (node.start_byte, called_name)
            if key in seen:
                continue
            seen.add(key)

            receiver_node = _first(match, "receiver")
            receiver = _node_text(receiver_node, source) or None
            caller = _innermost(callers, node.start_byte)
            caller_class: Optional[str] = None
            if caller is not None:
                caller_class = caller.name if caller.kind == DefinitionKind.CLASS else caller.parent_class
            sites.append(CallSite(
                file_path=file_path,
                called_name=called_name,
                receiver=receiver,
                line=node.start_point[0] + 1,
                column=node.start_point[1],
                caller_id=caller.node_id if caller is not None else None,
                caller_name=caller.name if caller is not None else None,
                caller_class=caller_class,
            ))
        sites.sort(key=lambda s: (s.line, s.column, s.called_name))
        return sites


def _innermost(candidates: list[Definition], byte: int) -> Optional[Definition]:
    """Smallest definition whose byte range contains *byte*."""
    best: Optional[Definition] = None
    best_size = float("inf")
    for d in candidates:
        if d.start_byte <= byte < d.end_byte:
            size = d.end_byte - d.start_byte
            if size < best_size:
                best, best_size = d, size
    return best


# ---------------------------------------------------------------------------
# Convenience: parse + extract in one call
# ---------------------------------------------------------------------------

def parse_source(
    grammar: Grammar, file_path: str, content: str, content_hash: str,
) -> tuple[ParsedFile, Tree]:
    """Parse *content* and build its ParsedFile. Raises ParseError on failure."""
    source = content.encode("utf-8", errors="surrogatepass")
    tree = grammar.parse(source, path=file_path)
    definitions, call_sites, errors = DefinitionExtractor(grammar).extract(tree, source, file_path)
    parsed = ParsedFile(
        file_path=file_path,
        language=grammar.name,
        content_hash=content_hash,
        file_size=len(content),
        definitions=tuple(definitions),
        call_sites=tuple(call_sites),
        has_syntax_errors=tree.root_node.has_error,
        query_errors=tuple(errors),
    )
    return parsed, tree
