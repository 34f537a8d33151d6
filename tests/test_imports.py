"""
test_imports.py - Import resolution pass.

Tests:
    1. Python absolute, relative, submodule and basename resolution; names a
       module defines never rebind to a same-named package elsewhere.
    2. JavaScript / TypeScript extension-less, index and emitted-.js specifiers.
    3. Root-relative (alias / src layout) matches carry a lower confidence.
    4. Bare npm specifiers never fall back to basename matching.
    5. Java single-type and wildcard imports.
    6. One IMPORTS edge per (importer, target) with merged names.
"""

from __future__ import annotations

from pathlib import Path

# Allow running from repo root or from the tests/ sub-directory.
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from kg_ingest.models import IngestionConfig, IngestionInput, NodeKind, RelKind
from kg_ingest.pipeline import GraphPipeline


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _ingest(files: dict[str, str], **config):
    return GraphPipeline(IngestionConfig(**config)).run(
        IngestionInput(file_paths=list(files), file_contents=files)
    )


def _import_edges(result) -> dict[tuple[str, str], dict]:
    """(importer path, target path) -> edge properties."""
    paths = {
        n.id: n.properties["path"]
        for n in result.graph.nodes if n.label == NodeKind.FILE
    }
    return {
        (paths[r.source], paths[r.target]): r.properties
        for r in result.graph.relationships if r.type == RelKind.IMPORTS
    }


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestPythonImports:

    def test_absolute_module(self):
        result = _ingest({
            "app/main.py": "from app.models import User\n",
            "app/models.py": "class User:\n    pass\n",
        })
        edge = _import_edges(result)[("app/main.py", "app/models.py")]
        assert edge["confidence"] == 1.0
        assert edge["strategy"] == "exact"
        assert edge["names"] == ["User"]
        assert result.report.import_resolution_rate == 1.0

    def test_relative_module(self):
        result = _ingest({
            "pkg/sub/a.py": "from ..b import thing\nfrom . import c\n",
            "pkg/b.py": "def thing():\n    pass\n",
            "pkg/sub/c.py": "x = 1\n",
        })
        edges = _import_edges(result)
        assert ("pkg/sub/a.py", "pkg/b.py") in edges
        assert ("pkg/sub/a.py", "pkg/sub/c.py") in edges

    def test_package_init(self):
        result = _ingest({
            "main.py": "import lib\n",
            "lib/__init__.py": "VERSION = 1\n",
        })
        assert ("main.py", "lib/__init__.py") in _import_edges(result)

    def test_submodule_import(self):
        result = _ingest({
            "main.py": "from pkg import tools\n",
            "pkg/__init__.py": "X = 1\n",
            "pkg/tools.py": "def run():\n    pass\n",
        })
        assert ("main.py", "pkg/tools.py") in _import_edges(result)

    def test_defined_name_beats_same_named_package_elsewhere(self):
        result = _ingest({
            "a.py": "def foo():\n    pass\n",
            "b.py": "from a import foo\n\n\ndef caller():\n    foo()\n",
            "plugins/foo/__init__.py": "X = 1\n",
        })
        edges = _import_edges(result)
        assert set(edges) == {("b.py", "a.py")}
        assert edges[("b.py", "a.py")]["strategy"] == "exact"
        assert edges[("b.py", "a.py")]["names"] == ["foo"]
        calls = [r for r in result.graph.relationships if r.type == RelKind.CALLS]
        assert len(calls) == 1
        assert result.graph.get_node(calls[0].target).properties["filePath"] == "a.py"

    def test_submodule_of_root_relative_package(self):
        result = _ingest({
            "app/main.py": "from mypkg import tools\n",
            "src/mypkg/__init__.py": "X = 1\n",
            "src/mypkg/tools.py": "def run():\n    pass\n",
            "other/tools.py": "def run():\n    pass\n",
        })
        edges = _import_edges(result)
        assert ("app/main.py", "src/mypkg/tools.py") in edges
        assert ("app/main.py", "other/tools.py") not in edges
        assert edges[("app/main.py", "src/mypkg/tools.py")]["strategy"] == "root_relative"

    def test_basename_fallback(self):
        result = _ingest({
            "app/main.py": "import helpers\n",
            "lib/helpers.py": "def h():\n    pass\n",
        })
        edge = _import_edges(result)[("app/main.py", "lib/helpers.py")]
        assert edge["strategy"] == "basename"
        assert edge["confidence"] == 0.4

    def test_unresolved_stdlib(self):
        result = _ingest({"main.py": "import json\n\nx = json.dumps({})\n"})
        report = result.report
        assert report.imports_total == 1
        assert report.imports_resolved == 0
        assert [u.module for u in report.unresolved_imports] == ["json"]
        assert report.import_resolution_rate == 0.0

    def test_merged_edge(self):
        result = _ingest({
            "main.py": "from util import a\nfrom util import b\n",
            "util.py": "def a():\n    pass\n\ndef b():\n    pass\n",
        })
        edges = _import_edges(result)
        assert len(edges) == 1
        assert edges[("main.py", "util.py")]["names"] == ["a", "b"]


class TestJavaScriptImports:

    def test_extensionless_and_index(self):
        result = _ingest({
            "src/app.ts": "import { a } from './lib';\nimport { B } from './components';\n",
            "src/lib.ts": "export const a = 1;\n",
            "src/components/index.tsx": "export class B {}\n",
        })
        edges = _import_edges(result)
        assert ("src/app.ts", "src/lib.ts") in edges
        assert ("src/app.ts", "src/components/index.tsx") in edges

    def test_emitted_js_name_maps_to_ts(self):
        result = _ingest({
            "src/app.ts": "import { a } from './lib.js';\n",
            "src/lib.ts": "export const a = 1;\n",
        })
        assert ("src/app.ts", "src/lib.ts") in _import_edges(result)

    def test_parent_directory(self):
        result = _ingest({
            "src/pages/home.js": "const api = require('../api/client');\n",
            "src/api/client.js": "module.exports = {};\n",
        })
        assert ("src/pages/home.js", "src/api/client.js") in _import_edges(result)

    def test_root_relative_alias(self):
        result = _ingest({
            "web/app.ts": "import { fmt } from 'utils/format';\n",
            "web/src/utils/format.ts": "export function fmt() {}\n",
        })
        edge = _import_edges(result)[("web/app.ts", "web/src/utils/format.ts")]
        assert edge["strategy"] == "root_relative"
        assert edge["confidence"] == 0.8

    def test_bare_package_is_not_guessed(self):
        result = _ingest({
            "src/app.js": "import _ from 'lodash';\n",
            "src/lodash.js": "export default {};\n",
        })
        assert _import_edges(result) == {}
        assert [u.module for u in result.report.unresolved_imports] == ["lodash"]

    def test_reexport_counts_as_import(self):
        result = _ingest({
            "src/index.js": "export * from './impl';\n",
            "src/impl.js": "export function f() {}\n",
        })
        assert ("src/index.js", "src/impl.js") in _import_edges(result)


class TestJavaImports:

    def test_single_type_import_under_source_root(self):
        result = _ingest({
            "src/main/java/com/acme/app/App.java":
                "package com.acme.app;\nimport com.acme.core.Base;\npublic class App extends Base {}\n",
            "src/main/java/com/acme/core/Base.java":
                "package com.acme.core;\npublic class Base {}\n",
        })
        edge = _import_edges(result)[
            ("src/main/java/com/acme/app/App.java", "src/main/java/com/acme/core/Base.java")
        ]
        assert edge["strategy"] == "root_relative"

    def test_wildcard_import_targets_every_file_in_package(self):
        result = _ingest({
            "src/com/acme/App.java": "import com.acme.util.*;\nclass App {}\n",
            "src/com/acme/util/A.java": "public class A {}\n",
            "src/com/acme/util/B.java": "public class B {}\n",
            "src/com/acme/util/sub/C.java": "public class C {}\n",
        })
        targets = sorted(t for (s, t) in _import_edges(result) if s == "src/com/acme/App.java")
        assert targets == ["src/com/acme/util/A.java", "src/com/acme/util/B.java"]
        assert result.report.imports_total == 1
        assert result.report.imports_resolved == 1
