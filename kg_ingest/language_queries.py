"""
language_queries.py - Tree-sitter S-expression query definitions per language.

Each language maps to a dict of query_name -> query_string. All tables share
one capture convention so extraction stays language agnostic:

    @node      whole entity (declaration, call, import statement)
    @name      declared identifier
    @callee    called function / method / constructor name
    @receiver  object a method is called on
    @source    module string of an import / require / re-export

Query names: functions, arrow_functions, function_expressions, classes,
methods, interfaces, types, enums, variables, decorators, imports, requires,
reexports, calls. A language simply omits the names it has no use for.

Node types that might be missing from an older grammar release live in their
own query so a compile failure only loses that query.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# PYTHON
# ---------------------------------------------------------------------------

PYTHON_QUERIES: dict[str, str] = {
    # Methods are functions whose nearest scope is a class; extraction decides.
    "functions": """
(function_definition
  name: (identifier) @name
) @node
""",
    "classes": """
(class_definition
  name: (identifier) @name
) @node
""",
    # Module-level assignments only
    "variables": """
(module
  (expression_statement
    (assignment
      left: (_) @name
    ) @node
  )
)
""",
    "decorators": """
(decorator) @node
""",
    "imports": """
(import_statement) @node
(import_from_statement) @node
""",
    "calls": """
(call
  function: (identifier) @callee
) @node
(call
  function: (attribute
    object: (_) @receiver
    attribute: (identifier) @callee)
) @node
""",
}

# ---------------------------------------------------------------------------
# JAVASCRIPT
# ---------------------------------------------------------------------------

_JS_COMMON: dict[str, str] = {
    "functions": """
(function_declaration
  name: (identifier) @name
) @node
(generator_function_declaration
  name: (identifier) @name
) @node
""",
    "arrow_functions": """
(variable_declarator
  name: (identifier) @name
  value: (arrow_function)
) @node
""",
    "function_expressions": """
(variable_declarator
  name: (identifier) @name
  value: (function_expression)
) @node
""",
    "variables": """
(program
  (lexical_declaration
    (variable_declarator
      name: (_) @name
    ) @node
  )
)
(program
  (variable_declaration
    (variable_declarator
      name: (_) @name
    ) @node
  )
)
(program
  (export_statement
    declaration: (lexical_declaration
      (variable_declarator
        name: (_) @name
      ) @node
    )
  )
)
""",
    "decorators": """
(decorator) @node
""",
    "imports": """
(import_statement
  source: (string) @source
) @node
""",
    "requires": """
(call_expression
  function: (identifier) @fn
  arguments: (arguments (string) @source)
  (#eq? @fn "require")
) @node
""",
    "reexports": """
(export_statement
  source: (string) @source
) @node
""",
    "calls": """
(call_expression
  function: (identifier) @callee
) @node
(call_expression
  function: (member_expression
    object: (_) @receiver
    property: (property_identifier) @callee)
) @node
(new_expression
  constructor: (identifier) @callee
) @node
""",
}

JAVASCRIPT_QUERIES: dict[str, str] = {
    **_JS_COMMON,
    "classes": """
(class_declaration
  name: (identifier) @name
) @node
""",
    "methods": """
(method_definition
  name: (_) @name
) @node
""",
}

# ---------------------------------------------------------------------------
# TYPESCRIPT / TSX
# ---------------------------------------------------------------------------

TYPESCRIPT_QUERIES: dict[str, str] = {
    **_JS_COMMON,
    "classes": """
(class_declaration
  name: (type_identifier) @name
) @node
(abstract_class_declaration
  name: (type_identifier) @name
) @node
""",
    "methods": """
(method_definition
  name: (_) @name
) @node
(method_signature
  name: (_) @name
) @node
""",
    "interfaces": """
(interface_declaration
  name: (type_identifier) @name
) @node
""",
    "types": """
(type_alias_declaration
  name: (type_identifier) @name
) @node
""",
    "enums": """
(enum_declaration
  name: (identifier) @name
) @node
""",
}

# ---------------------------------------------------------------------------
# JAVA
# ---------------------------------------------------------------------------

JAVA_QUERIES: dict[str, str] = {
    "classes": """
(class_declaration
  name: (identifier) @name
) @node
""",
    "interfaces": """
(interface_declaration
  name: (identifier) @name
) @node
""",
    "enums": """
(enum_declaration
  name: (identifier) @name
) @node
""",
    "methods": """
(method_declaration
  name: (identifier) @name
) @node
(constructor_declaration
  name: (identifier) @name
) @node
""",
    "variables": """
(field_declaration
  declarator: (variable_declarator
    name: (identifier) @name
  )
) @node
""",
    "decorators": """
(marker_annotation) @node
(annotation) @node
""",
    "imports": """
(import_declaration) @node
""",
    "calls": """
(method_invocation
  object: (_)? @receiver
  name: (identifier) @callee
) @node
(object_creation_expression
  type: (type_identifier) @callee
) @node
""",
}

# ---------------------------------------------------------------------------
# Scope node types (used by the parent walks in ast_parser.py)
# ---------------------------------------------------------------------------

_JS_FUNCTION_TYPES = frozenset({
    "function_declaration", "generator_function_declaration",
    "function_expression", "function", "generator_function",
    "arrow_function", "method_definition",
})

CLASS_NODE_TYPES: dict[str, frozenset[str]] = {
    "python":     frozenset({"class_definition"}),
    "javascript": frozenset({"class_declaration", "class"}),
    "typescript": frozenset({"class_declaration", "abstract_class_declaration",
                             "class", "interface_declaration"}),
    "tsx":        frozenset({"class_declaration", "abstract_class_declaration",
                             "class", "interface_declaration"}),
    "java":       frozenset({"class_declaration", "interface_declaration",
                             "enum_declaration", "record_declaration"}),
}

FUNCTION_NODE_TYPES: dict[str, frozenset[str]] = {
    "python":     frozenset({"function_definition", "lambda"}),
    "javascript": _JS_FUNCTION_TYPES,
    "typescript": _JS_FUNCTION_TYPES | {"method_signature"},
    "tsx":        _JS_FUNCTION_TYPES | {"method_signature"},
    "java":       frozenset({"method_declaration", "constructor_declaration",
                             "lambda_expression"}),
}

# ---------------------------------------------------------------------------
# Registry (used by grammar.py)
# ---------------------------------------------------------------------------

LANGUAGE_QUERIES: dict[str, dict[str, str]] = {
    "python": PYTHON_QUERIES,
    "javascript": JAVASCRIPT_QUERIES,
    "typescript": TYPESCRIPT_QUERIES,
    "tsx": TYPESCRIPT_QUERIES,
    "java": JAVA_QUERIES,
}
