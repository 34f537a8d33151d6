"""
test_config_files.py - Unit tests for definitions harvested from config files.

Tests:
    1. package.json scripts and dependencies.
    2. tsconfig compilerOptions and path aliases.
    3. Dockerfile base images, .env variables, requirements names.
    4. pyproject.toml dependencies and scripts.
    5. Malformed JSON / TOML raises ParseError.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

# Allow running from repo root or from the tests/ sub-directory.
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from kg_ingest.config_files import harvest_config_definitions
from kg_ingest.errors import ParseError
from kg_ingest.models import DefinitionKind


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _by_kind(defs) -> dict[str, list[str]]:
    result: dict[str, list[str]] = {}
    for d in defs:
        result.setdefault(d.kind.value, []).append(d.name)
    return result


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestPackageJson:

    def test_scripts_and_dependencies(self):
        content = json.dumps({
            "name": "web",
            "scripts": {"build": "tsc", "test": "jest"},
            "dependencies": {"react": "^18.0.0"},
            "devDependencies": {"typescript": "^5.0.0"},
        }, indent=2)
        defs = harvest_config_definitions("web/package.json", content)
        kinds = _by_kind(defs)
        assert kinds["function"] == ["build", "test"]
        assert sorted(kinds["variable"]) == ["react", "typescript"]
        assert all(d.language == "config" for d in defs)

    def test_line_numbers_point_at_keys(self):
        content = '{\n  "scripts": {\n    "build": "tsc"\n  }\n}\n'
        (build,) = harvest_config_definitions("package.json", content)
        assert build.start_line == 3

    def test_invalid_json_raises(self):
        with pytest.raises(ParseError):
            harvest_config_definitions("package.json", "{ not json")

    def test_non_object_json_raises(self):
        with pytest.raises(ParseError):
            harvest_config_definitions("package.json", "[1, 2]")


class TestTsconfig:

    def test_paths_aliases(self):
        content = json.dumps({
            "compilerOptions": {"baseUrl": ".", "paths": {"@app/*": ["src/app/*"]}},
        }, indent=2)
        names = [d.name for d in harvest_config_definitions("tsconfig.json", content)]
        assert names == ["TypeScriptConfig", "@app/*"]

    def test_without_compiler_options(self):
        assert harvest_config_definitions("tsconfig.base.json", "{}") == []


class TestLineBasedConfigs:

    def test_dockerfile(self):
        content = "FROM python:3.11-slim AS build\nRUN pip install .\nFROM alpine\n"
        defs = harvest_config_definitions("Dockerfile", content)
        assert [(d.name, d.start_line) for d in defs] == [("python:3.11-slim", 1), ("alpine", 3)]

    def test_dotenv(self):
        content = "# comment\nAPI_KEY=abc\nexport DEBUG=1\nnot a var\n"
        defs = harvest_config_definitions(".env.local", content)
        assert [d.name for d in defs] == ["API_KEY", "DEBUG"]
        assert all(d.kind == DefinitionKind.VARIABLE for d in defs)

    def test_requirements(self):
        content = "requests>=2.0\n# pinned\n-r base.txt\npydantic[email]==2.5\n"
        defs = harvest_config_definitions("requirements-dev.txt", content)
        assert [d.name for d in defs] == ["requests", "pydantic"]


class TestPyproject:

    def test_dependencies_and_scripts(self):
        content = (
            '[project]\n'
            'name = "demo"\n'
            'dependencies = ["requests>=2", "rich"]\n'
            '\n'
            '[project.optional-dependencies]\n'
            'test = ["pytest"]\n'
            '\n'
            '[project.scripts]\n'
            'demo-cli = "demo.cli:main"\n'
        )
        kinds = _by_kind(harvest_config_definitions("pyproject.toml", content))
        assert kinds["variable"] == ["requests", "rich", "pytest"]
        assert kinds["function"] == ["demo-cli"]

    def test_invalid_toml_raises(self):
        with pytest.raises(ParseError):
            harvest_config_definitions("pyproject.toml", "[project\nname =")


class TestUnknownFile:

    def test_unknown_config_yields_nothing(self):
        assert harvest_config_definitions("setup.cfg", "[metadata]\n") == []
