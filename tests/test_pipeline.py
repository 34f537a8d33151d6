"""
test_pipeline.py - End-to-end GraphPipeline runs.

Tests:
    1. Two-file projects (Python, JavaScript): one IMPORTS and one CALLS edge.
    2. Re-running over unchanged content gives identical ids and hits the cache.
    3. Every file ends processed, failed or skipped; the graph passes validation.
    4. Skip reasons: empty, generated, non-source, ignored, filtered.
    5. Config files that fail to parse are counted as failures.
    6. Fatal errors: no input, filters excluding everything, cancellation.
    7. Worker count never changes the resulting graph.
    8. Parse timeouts are reported per file.
    9. The returned graph is frozen.
    10. Prometheus counters follow each run.
    11. Compiled queries survive batch boundaries when memory is not tight.
    12. Node ids are unique; repeated definitions are counted, not re-added.
"""

from __future__ import annotations

import time
from pathlib import Path

import pytest
from prometheus_client import REGISTRY

# Allow running from repo root or from the tests/ sub-directory.
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from kg_ingest import parsing
from kg_ingest.errors import (
    CancellationToken, GraphFrozenError, IngestionCancelled, IngestionConfigError,
)
from kg_ingest.filters import FileFilter
from kg_ingest.graph import KnowledgeGraph
from kg_ingest.models import (
    Definition, DefinitionKind, GraphNode, IngestionConfig, IngestionInput, IngestionOptions,
    NodeKind, RelKind,
)
from kg_ingest.parse_cache import ParseCache
from kg_ingest.pipeline import GraphPipeline
from kg_ingest.registry import DefinitionRegistry


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _input(files: dict[str, str], **options) -> IngestionInput:
    return IngestionInput(
        file_paths=list(files), file_contents=files,
        options=IngestionOptions(**options), project_name="demo",
    )


def _ingest(files: dict[str, str], config: IngestionConfig | None = None, **options):
    return GraphPipeline(config or IngestionConfig()).run(_input(files, **options))


def _file_node(result, path: str) -> GraphNode:
    for node in result.graph.nodes:
        if node.label == NodeKind.FILE and node.properties.get("path") == path:
            return node
    raise AssertionError(f"no File node for {path}")


def _ids(result) -> tuple[list[str], list[str]]:
    graph = result.graph
    return sorted(n.id for n in graph.nodes), sorted(r.id for r in graph.relationships)


MIXED_PROJECT = {
    "app/__init__.py": "",
    "app/main.py": "from app.util import helper\n\n\ndef run():\n    helper()\n",
    "app/util.py": "def helper():\n    return 1\n",
    "web/index.js": "import { api } from './api';\n\nexport function start() {\n  api();\n}\n",
    "web/api.js": "export function api() {}\n",
    "web/package.json": '{\n  "scripts": {"build": "tsc"}\n}\n',
    "README.md": "# demo\n",
    "node_modules/lib/index.js": "module.exports = 1;\n",
}


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestTwoFileProjects:

    @pytest.mark.parametrize("files, caller, callee", [
        (
            {
                "a.py": "def foo():\n    pass\n",
                "b.py": "from a import foo\n\n\ndef caller():\n    foo()\n",
            },
            "caller", "foo",
        ),
        (
            {
                "a.js": "export function foo() {}\n",
                "b.js": "import { foo } from './a';\n\nfunction caller() {\n  foo();\n}\n",
            },
            "caller", "foo",
        ),
    ])
    def test_one_import_and_one_call(self, files, caller, callee):
        result = _ingest(files)
        graph = result.graph
        imports = [r for r in graph.relationships if r.type == RelKind.IMPORTS]
        calls = [r for r in graph.relationships if r.type == RelKind.CALLS]
        assert len(imports) == 1
        assert graph.get_node(imports[0].source).properties["path"].startswith("b.")
        assert graph.get_node(imports[0].target).properties["path"].startswith("a.")
        assert len(calls) == 1
        assert graph.get_node(calls[0].source).properties["name"] == caller
        assert graph.get_node(calls[0].target).properties["name"] == callee
        assert calls[0].properties["callType"] == "ImportResolved"
        assert result.report.import_resolution_rate == 1.0
        assert result.report.call_resolution_rate == 1.0


class TestIdempotence:

    def test_same_ids_across_runs(self):
        first = _ingest(MIXED_PROJECT)
        second = _ingest(MIXED_PROJECT)
        assert _ids(first) == _ids(second)

    def test_second_run_is_served_from_cache(self):
        cache = ParseCache()
        pipeline = GraphPipeline(IngestionConfig(), cache=cache)
        first = pipeline.run(_input(MIXED_PROJECT))
        second = pipeline.run(_input(MIXED_PROJECT))
        assert first.report.cache_stats["hits"] == 0
        # app/main.py, app/util.py, web/index.js, web/api.js
        assert second.report.cache_stats["hits"] == 4
        assert _ids(first) == _ids(second)

    def test_worker_count_does_not_change_graph(self):
        serial = _ingest(MIXED_PROJECT, IngestionConfig(max_workers=1, batch_size=2))
        threaded = _ingest(MIXED_PROJECT, IngestionConfig(max_workers=4, batch_size=2))
        assert _ids(serial) == _ids(threaded)
        assert serial.report.definitions_by_type == threaded.report.definitions_by_type

    def test_queries_compile_once_across_batches(self):
        files = {f"m{i}.py": f"def f{i}():\n    g{i}()\n" for i in range(12)}

        def query_misses(batch_size):
            cache = ParseCache()
            config = IngestionConfig(max_workers=1, batch_size=batch_size)
            GraphPipeline(config, cache=cache).run(_input(files))
            return cache.stats()["queries"]["misses"]

        assert query_misses(batch_size=2) == query_misses(batch_size=100)


class TestAccounting:

    def test_every_file_is_accounted_for(self):
        report = _ingest(MIXED_PROJECT).report
        total = report.files_processed + report.files_failed + report.files_skipped
        assert total == len(MIXED_PROJECT)
        assert report.skipped_by_reason == {"empty": 1, "non_source": 1, "ignored": 1}
        # four source files plus package.json
        assert report.files_processed == 5

    def test_integrity(self):
        report = _ingest(MIXED_PROJECT).report
        assert report.integrity_violations == []
        assert report.unflagged_files == []

    def test_structure(self):
        result = _ingest(MIXED_PROJECT)
        counts = result.report.node_counts
        assert counts["Project"] == 1
        assert counts["Package"] == 1        # app/ has __init__.py
        assert counts["Folder"] == 1         # web/
        # ignored node_modules file gets no File node
        assert counts["File"] == len(MIXED_PROJECT) - 1

    def test_empty_file_keeps_a_file_node(self):
        result = _ingest({"empty.py": "", "m.py": "x = 1\n"})
        assert result.report.skipped_by_reason == {"empty": 1}
        node = _file_node(result, "empty.py")
        assert node.properties["hasContent"] is False
        assert node.properties["skipReason"] == "empty"

    def test_generated_file_is_skipped(self):
        bundle = "(function(){ __webpack_require__(1); })();\n"
        result = _ingest({"src/bundle.js": bundle, "src/app.js": "function f() {}\n"})
        assert result.report.skipped_by_reason == {"generated": 1}
        assert _file_node(result, "src/bundle.js").properties["noDefinitions"] is True

    def test_unknown_extension_is_non_source(self):
        result = _ingest({"script.rb": "puts 1\n", "m.py": "x = 1\n"})
        assert result.report.skipped_by_reason == {"non_source": 1}
        assert _file_node(result, "script.rb").properties["skipReason"] == "non_source"

    def test_malformed_config_is_a_failure(self):
        result = _ingest({"package.json": "{ nope", "m.py": "x = 1\n"})
        report = result.report
        assert report.files_failed == 1
        assert [f.path for f in report.parse_failures] == ["package.json"]
        props = _file_node(result, "package.json").properties
        assert props["parseError"] is True
        assert props["noDefinitions"] is True

    def test_directory_filter(self):
        report = _ingest(MIXED_PROJECT, directory_filter="WEB").report
        assert report.skipped_by_reason["directory_filter"] == 5
        assert report.files_processed == 3

    def test_directory_entries_are_not_files(self):
        files = {"src/a.py": "x = 1\n"}
        inp = IngestionInput(file_paths=["src", "src/a.py", "src/a.py"], file_contents=files)
        result = GraphPipeline().run(inp)
        assert result.report.files_processed == 1
        assert result.report.node_counts["File"] == 1


class TestFatalErrors:

    def test_no_paths(self):
        with pytest.raises(IngestionConfigError):
            GraphPipeline().run(IngestionInput(file_paths=[]))

    def test_blank_paths_only(self):
        with pytest.raises(IngestionConfigError):
            GraphPipeline().run(IngestionInput(file_paths=["./", "/"]))

    def test_filters_exclude_everything(self):
        with pytest.raises(IngestionConfigError):
            _ingest(MIXED_PROJECT, file_extensions="go,rs")

    def test_cancelled_before_start(self):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(IngestionCancelled) as excinfo:
            GraphPipeline().run(_input(MIXED_PROJECT), cancel_token=token)
        assert excinfo.value.stage == "structure"

    def test_cancelled_between_passes(self, monkeypatch):
        token = CancellationToken()
        real_run = parsing.ParsingPass.run

        def run_then_cancel(self, *args, **kwargs):
            result = real_run(self, *args, **kwargs)
            token.cancel()
            return result

        monkeypatch.setattr(parsing.ParsingPass, "run", run_then_cancel)
        with pytest.raises(IngestionCancelled) as excinfo:
            GraphPipeline().run(_input(MIXED_PROJECT), cancel_token=token)
        assert excinfo.value.stage == "imports"


class TestTimeout:

    def test_slow_parse_is_reported(self, monkeypatch):
        real_parse = parsing.parse_source

        def slow_parse(grammar, path, content, content_hash):
            if path == "slow.py":
                time.sleep(0.5)
            return real_parse(grammar, path, content, content_hash)

        monkeypatch.setattr(parsing, "parse_source", slow_parse)
        config = IngestionConfig(parse_timeout_seconds=0.05)
        result = _ingest({"slow.py": "x = 1\n", "fast.py": "y = 2\n"}, config)
        report = result.report
        assert report.files_failed == 1
        assert report.files_processed == 1
        failure = report.parse_failures[0]
        assert failure.path == "slow.py"
        assert failure.error == "ParseTimeout"
        assert _file_node(result, "slow.py").properties["parseError"] is True


class TestHandOff:

    def test_graph_is_frozen(self):
        result = _ingest({"m.py": "def f():\n    pass\n"})
        assert result.graph.frozen
        with pytest.raises(GraphFrozenError):
            result.graph.add_node(GraphNode(id="x", label=NodeKind.FILE, properties={"path": "x"}))

    def test_to_dict(self):
        data = _ingest({"m.py": "def f():\n    pass\n"}).to_dict()
        assert set(data) == {"graph", "report"}
        assert {n["label"] for n in data["graph"]["nodes"]} == {"Project", "File", "Function"}
        assert data["report"]["files_processed"] == 1


class TestMetrics:

    def test_counters_advance(self):
        def sample(name, labels):
            return REGISTRY.get_sample_value(name, labels) or 0.0

        processed = sample("kg_ingest_files_total", {"status": "processed"})
        unresolved = sample("kg_ingest_call_sites_total", {"classification": "Unresolved"})
        _ingest({"m.py": "def f():\n    nowhere()\n"})
        assert sample("kg_ingest_files_total", {"status": "processed"}) == processed + 1
        assert sample("kg_ingest_call_sites_total", {"classification": "Unresolved"}) == unresolved + 1
        assert sample("kg_ingest_graph_nodes_total", {}) == 3


class TestNoDuplicates:

    def test_node_ids_are_unique(self):
        result = _ingest({
            "m.js": "const f = function() {};\nconst g = () => 1;\nconst n = 3;\n",
            "k.py": "class K:\n    @property\n    def v(self):\n        return 1\n\n\nh = 2\n",
        })
        ids = [n.id for n in result.graph.nodes]
        assert len(set(ids)) == len(ids)
        labels = [(n.label, n.properties.get("name")) for n in result.graph.nodes]
        assert labels.count((NodeKind.FUNCTION, "f")) == 1
        assert labels.count((NodeKind.FUNCTION, "g")) == 1
        assert (NodeKind.VARIABLE, "f") not in labels
        assert (NodeKind.VARIABLE, "g") not in labels
        assert labels.count((NodeKind.VARIABLE, "n")) == 1
        assert labels.count((NodeKind.METHOD, "v")) == 1
        assert result.report.duplicate_definitions == 0

    def test_repeated_definition_is_counted_once(self):
        config = IngestionConfig()
        graph = KnowledgeGraph()
        graph.add_node(GraphNode(id="file:m.py", label=NodeKind.FILE, properties={"path": "m.py"}))
        parsing_pass = parsing.ParsingPass(
            config, ParseCache(), graph, DefinitionRegistry(), FileFilter(config),
        )
        definition = Definition(
            qualified_name="m.f", file_path="m.py", name="f", kind=DefinitionKind.FUNCTION,
            start_line=1, end_line=2, start_byte=0, end_byte=10,
        )
        result = parsing.ParsingResult()
        emitted = parsing_pass._write_definitions((definition, definition), "file:m.py", result)
        assert emitted == 1
        assert result.duplicate_definitions == 1
        assert len([r for r in graph.relationships if r.type == RelKind.DEFINES]) == 1
