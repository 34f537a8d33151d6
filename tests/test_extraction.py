"""
test_extraction.py - Definition and call-site extraction per language.

Tests:
    1. Python: functions, methods, classes, decorators, variables, imports, calls.
    2. JavaScript: arrow functions, classes, require / import / re-export.
    3. TypeScript: interfaces, type aliases, enums, implements.
    4. Java: classes, constructors, annotations, static / wildcard imports.
    5. Syntax errors still yield definitions; ids are deterministic.
"""

from __future__ import annotations

from pathlib import Path

import pytest

# Allow running from repo root or from the tests/ sub-directory.
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from kg_ingest.ast_parser import parse_source
from kg_ingest.errors import QueryError
from kg_ingest.grammar import load_grammar, supported_languages
from kg_ingest.models import DefinitionKind, ImportKind
from kg_ingest.parse_cache import ParseCache


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _parse(language: str, path: str, content: str):
    parsed, _tree = parse_source(load_grammar(language), path, content,
                                 ParseCache.hash_content(content))
    return parsed


def _one(parsed, name: str, kind: DefinitionKind):
    found = [d for d in parsed.definitions if d.name == name and d.kind == kind]
    assert len(found) == 1, f"expected one {kind.value} {name!r}, got {found}"
    return found[0]


def _imports(parsed) -> dict[str, object]:
    return {d.name: d.import_spec for d in parsed.imports()}


def _calls(parsed) -> list[tuple]:
    return [(c.receiver, c.called_name, c.caller_name) for c in parsed.call_sites]


PYTHON_SOURCE = '''\
import os
from .utils import helper as h
from pkg.sub import *

CONSTANT = 1


@decorator
def top(a, b=2, *args, **kwargs):
    return h(a)


class Base:
    pass


class Child(Base, mixins.Mixin):
    async def run(self, x):
        self.step()
        return os.path.join(x)

    def step(self):
        pass
'''

JS_SOURCE = '''\
const { readFile } = require('fs');
import Default, { named as alias } from './lib';
import * as ns from './ns';
export { thing } from './things';
export * from './all';

export function main(a, b) {
  helper(a);
  ns.go();
  return new Widget();
}

const helper = (x) => x;
const count = 3;

class Widget extends Base {
  render() {
    this.draw();
  }
}
'''

TS_SOURCE = '''\
import { Base } from './base';

export interface Shape extends Named {
  area(): number;
}

export type Id = string;

export enum Color { Red, Green }

export class Circle extends Base implements Shape, Other {
  area(): number {
    return 1;
  }
}
'''

JAVA_SOURCE = '''\
package com.acme.app;

import com.acme.core.Base;
import com.acme.util.*;
import static com.acme.util.Helpers.format;

@Service
public class App extends Base implements Runnable, Closeable {
    private int count;

    public App() {
        super();
    }

    @Override
    public void run() {
        helper();
        System.out.println("x");
        new Worker();
    }
}
'''


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestGrammar:

    def test_supported_languages(self):
        assert supported_languages() == ["java", "javascript", "python", "tsx", "typescript"]

    def test_all_queries_compile(self):
        for language in supported_languages():
            grammar = load_grammar(language)
            for name in grammar.query_names:
                grammar.compiled_query(name)

    def test_unknown_query(self):
        with pytest.raises(QueryError):
            load_grammar("python").compiled_query("nope")


class TestPythonExtraction:

    @pytest.fixture(scope="class")
    def parsed(self):
        return _parse("python", "pkg/mod.py", PYTHON_SOURCE)

    def test_function_with_parameters_and_decorator(self, parsed):
        top = _one(parsed, "top", DefinitionKind.FUNCTION)
        assert top.parameters == ("a", "b", "args", "kwargs")
        assert top.decorators == ("decorator",)
        assert top.qualified_name == "pkg.mod.top"

    def test_decorator_definition(self, parsed):
        deco = _one(parsed, "decorator", DefinitionKind.DECORATOR)
        assert deco.decorated_target == "top"

    def test_methods_belong_to_class(self, parsed):
        run = _one(parsed, "run", DefinitionKind.METHOD)
        assert run.parent_class == "Child"
        assert run.is_async
        assert run.qualified_name == "pkg.mod.Child.run"
        assert _one(parsed, "step", DefinitionKind.METHOD).parent_class == "Child"

    def test_class_heritage(self, parsed):
        child = _one(parsed, "Child", DefinitionKind.CLASS)
        assert child.extends == ("Base", "mixins.Mixin")
        assert _one(parsed, "Base", DefinitionKind.CLASS).extends == ()

    def test_module_variable(self, parsed):
        _one(parsed, "CONSTANT", DefinitionKind.VARIABLE)

    def test_imports(self, parsed):
        imports = _imports(parsed)
        assert set(imports) == {"os", ".utils", "pkg.sub"}
        rel = imports[".utils"]
        assert rel.level == 1 and rel.module == "utils"
        assert rel.names[0].local_name == "h"
        assert rel.names[0].imported_name == "helper"
        assert imports["pkg.sub"].names[0].kind == ImportKind.WILDCARD
        assert imports["os"].names[0].kind == ImportKind.NAMESPACE

    def test_call_sites(self, parsed):
        calls = _calls(parsed)
        assert (None, "h", "top") in calls
        assert ("self", "step", "run") in calls
        assert ("os.path", "join", "run") in calls
        step_call = next(c for c in parsed.call_sites if c.called_name == "step")
        assert step_call.caller_class == "Child"
        assert step_call.caller_id == _one(parsed, "run", DefinitionKind.METHOD).node_id

    def test_no_syntax_errors(self, parsed):
        assert not parsed.has_syntax_errors
        assert parsed.query_errors == ()


class TestJavaScriptExtraction:

    @pytest.fixture(scope="class")
    def parsed(self):
        return _parse("javascript", "src/app.js", JS_SOURCE)

    def test_functions(self, parsed):
        assert _one(parsed, "main", DefinitionKind.FUNCTION).parameters == ("a", "b")
        assert _one(parsed, "helper", DefinitionKind.FUNCTION).parameters == ("x",)

    def test_function_values_are_not_variables(self, parsed):
        assert not [d for d in parsed.definitions
                    if d.name == "helper" and d.kind == DefinitionKind.VARIABLE]
        _one(parsed, "count", DefinitionKind.VARIABLE)

    def test_class_and_method(self, parsed):
        widget = _one(parsed, "Widget", DefinitionKind.CLASS)
        assert widget.extends == ("Base",)
        assert _one(parsed, "render", DefinitionKind.METHOD).parent_class == "Widget"

    def test_import_forms(self, parsed):
        imports = _imports(parsed)
        assert set(imports) == {"fs", "./lib", "./ns", "./things", "./all"}
        lib = {n.local_name: n for n in imports["./lib"].names}
        assert lib["Default"].kind == ImportKind.DEFAULT
        assert lib["alias"].imported_name == "named"
        assert imports["./ns"].names[0].kind == ImportKind.NAMESPACE
        assert imports["fs"].names[0].imported_name == "readFile"
        assert imports["./things"].is_reexport
        assert imports["./all"].names[0].kind == ImportKind.WILDCARD

    def test_call_sites(self, parsed):
        calls = _calls(parsed)
        assert (None, "helper", "main") in calls
        assert ("ns", "go", "main") in calls
        assert (None, "Widget", "main") in calls
        assert ("this", "draw", "render") in calls
        assert (None, "require", None) in calls


class TestTypeScriptExtraction:

    @pytest.fixture(scope="class")
    def parsed(self):
        return _parse("typescript", "src/shapes.ts", TS_SOURCE)

    def test_interface(self, parsed):
        shape = _one(parsed, "Shape", DefinitionKind.INTERFACE)
        assert shape.extends == ("Named",)

    def test_type_and_enum(self, parsed):
        _one(parsed, "Id", DefinitionKind.TYPE)
        _one(parsed, "Color", DefinitionKind.ENUM)

    def test_class_heritage(self, parsed):
        circle = _one(parsed, "Circle", DefinitionKind.CLASS)
        assert circle.extends == ("Base",)
        assert circle.implements == ("Shape", "Other")

    def test_methods_get_owner(self, parsed):
        owners = sorted(d.parent_class for d in parsed.definitions
                        if d.name == "area" and d.kind == DefinitionKind.METHOD)
        assert owners == ["Circle", "Shape"]

    def test_tsx_grammar(self):
        parsed = _parse("tsx", "ui/App.tsx",
                        "export function App() {\n  return <div>{render()}</div>;\n}\n")
        _one(parsed, "App", DefinitionKind.FUNCTION)
        assert (None, "render", "App") in _calls(parsed)


class TestJavaExtraction:

    @pytest.fixture(scope="class")
    def parsed(self):
        return _parse("java", "src/main/java/com/acme/app/App.java", JAVA_SOURCE)

    def test_class(self, parsed):
        app = _one(parsed, "App", DefinitionKind.CLASS)
        assert app.extends == ("Base",)
        assert app.implements == ("Runnable", "Closeable")
        assert app.decorators == ("Service",)

    def test_members(self, parsed):
        ctor = _one(parsed, "App", DefinitionKind.METHOD)
        assert ctor.parent_class == "App"
        run = _one(parsed, "run", DefinitionKind.METHOD)
        assert run.decorators == ("Override",)
        _one(parsed, "count", DefinitionKind.VARIABLE)

    def test_annotation_definitions(self, parsed):
        assert _one(parsed, "Service", DefinitionKind.DECORATOR).decorated_target == "App"
        assert _one(parsed, "Override", DefinitionKind.DECORATOR).decorated_target == "run"

    def test_imports(self, parsed):
        imports = _imports(parsed)
        assert set(imports) == {"com.acme.core.Base", "com.acme.util", "com.acme.util.Helpers"}
        assert imports["com.acme.util"].names[0].kind == ImportKind.WILDCARD
        assert imports["com.acme.util.Helpers"].names[0].local_name == "format"

    def test_call_sites(self, parsed):
        calls = _calls(parsed)
        assert (None, "helper", "run") in calls
        assert ("System.out", "println", "run") in calls
        assert (None, "Worker", "run") in calls


class TestRobustness:

    def test_syntax_errors_keep_definitions(self):
        parsed = _parse("python", "broken.py", "def ok():\n    pass\n\ndef broken(:\n")
        assert parsed.has_syntax_errors
        _one(parsed, "ok", DefinitionKind.FUNCTION)

    def test_ids_are_deterministic(self):
        a = _parse("python", "m.py", PYTHON_SOURCE)
        b = _parse("python", "m.py", PYTHON_SOURCE)
        assert [d.node_id for d in a.definitions] == [d.node_id for d in b.definitions]

    def test_ids_depend_on_path(self):
        a = _parse("python", "a.py", "def f():\n    pass\n")
        b = _parse("python", "b.py", "def f():\n    pass\n")
        assert a.definitions[0].node_id != b.definitions[0].node_id

    def test_nested_function_is_not_a_method(self):
        src = "class A:\n    def m(self):\n        def inner():\n            pass\n"
        parsed = _parse("python", "n.py", src)
        assert _one(parsed, "inner", DefinitionKind.FUNCTION).parent_class is None
