"""
test_filters.py - Unit tests for file exclusion and classification.

Tests:
    1. Explicit directory / extension filters.
    2. Ignored directories, lock files and binary extensions.
    3. Empty and whitespace-only content.
    4. Source / config / non-source classification.
    5. Generated and oversized source detection.
"""

from __future__ import annotations

from pathlib import Path

# Allow running from repo root or from the tests/ sub-directory.
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from kg_ingest import filters
from kg_ingest.filters import FileFilter, split_csv
from kg_ingest.models import IngestionConfig, IngestionOptions


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _filter(directory_filter=None, file_extensions=None, **config) -> FileFilter:
    return FileFilter(
        IngestionConfig(**config),
        IngestionOptions(directory_filter=directory_filter, file_extensions=file_extensions),
    )


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestExplicitFilters:

    def test_split_csv(self):
        assert split_csv(" src , lib ,,") == ["src", "lib"]
        assert split_csv(None) == []

    def test_no_filters(self):
        assert not _filter().has_explicit_filters

    def test_directory_filter_matches_substring(self):
        f = _filter(directory_filter="src,Lib")
        assert f.exclusion_reason("project/src/app.py", "x = 1") is None
        assert f.exclusion_reason("vendorlib/a.py", "x = 1") is None
        assert f.exclusion_reason("tests/test_a.py", "x = 1") == filters.DIRECTORY_FILTER

    def test_directory_filter_ignores_file_name(self):
        f = _filter(directory_filter="src")
        assert f.exclusion_reason("src.py", "x = 1") == filters.DIRECTORY_FILTER

    def test_extension_filter_with_or_without_dot(self):
        f = _filter(file_extensions="py,.TS")
        assert f.exclusion_reason("a.py", "x") is None
        assert f.exclusion_reason("b.ts", "x") is None
        assert f.exclusion_reason("c.js", "x") == filters.EXTENSION_FILTER

    def test_list_options_are_joined(self):
        options = IngestionOptions(directory_filter=["src", "lib"], file_extensions=[".py"])
        assert options.directory_filter == "src,lib"
        assert options.file_extensions == ".py"


class TestIgnored:

    def test_dependency_and_build_dirs(self):
        f = _filter()
        for path in ("node_modules/react/index.js", "a/__pycache__/m.py", "build/out.js",
                     ".git/config", "venv/lib/site.py", "lib/python3/site-packages/x.py"):
            assert f.exclusion_reason(path, "x") == filters.IGNORED, path

    def test_github_dir_is_kept(self):
        assert _filter().exclusion_reason(".github/workflows/ci.py", "x") is None

    def test_lock_files_and_binaries(self):
        f = _filter()
        assert f.exclusion_reason("package-lock.json", "{}") == filters.IGNORED
        assert f.exclusion_reason("img/logo.PNG", "x") == filters.IGNORED
        assert f.exclusion_reason("dist.min.js", "x") == filters.IGNORED
        assert f.exclusion_reason("Thumbs.db", "x") == filters.IGNORED

    def test_dotenv_file_is_not_ignored(self):
        assert _filter().exclusion_reason(".env", "A=1") is None

    def test_filters_run_before_ignore(self):
        f = _filter(file_extensions=".py")
        assert f.exclusion_reason("node_modules/x.js", "x") == filters.EXTENSION_FILTER


class TestEmpty:

    def test_empty_and_blank_content(self):
        f = _filter()
        assert f.exclusion_reason("a.py", "") == filters.EMPTY
        assert f.exclusion_reason("a.py", "  \n\t\n") == filters.EMPTY
        assert f.exclusion_reason("a.py", None) == filters.EMPTY


class TestClassification:

    def test_source_languages(self):
        f = _filter()
        assert f.classify("a/b.py") == (filters.SOURCE, "python")
        assert f.classify("a/b.jsx") == (filters.SOURCE, "javascript")
        assert f.classify("a/b.ts") == (filters.SOURCE, "typescript")
        assert f.classify("a/b.tsx") == (filters.SOURCE, "tsx")
        assert f.classify("A.java") == (filters.SOURCE, "java")

    def test_config_files(self):
        f = _filter()
        for path in ("package.json", "web/tsconfig.build.json", "Dockerfile",
                     ".env.local", "requirements-dev.txt", "pyproject.toml"):
            assert f.classify(path) == (filters.CONFIG, None), path

    def test_other_files(self):
        assert _filter().classify("README.md") == (filters.OTHER, None)
        assert _filter().classify("main.rb") == (filters.OTHER, None)

    def test_custom_language_extensions(self):
        f = _filter(language_extensions={"python": [".py3"]})
        assert f.classify("x.py3") == (filters.SOURCE, "python")
        assert f.classify("x.py") == (filters.OTHER, None)


class TestGenerated:

    def test_long_first_line(self):
        f = _filter(max_first_line_length=50)
        assert f.generated_reason("x" * 51 + "\nmore") == filters.GENERATED
        assert f.generated_reason("short\n" + "x" * 100) is None

    def test_bundler_signature(self):
        f = _filter()
        assert f.generated_reason("var a;\n__webpack_require__(1);\n") == filters.GENERATED

    def test_too_large(self):
        f = _filter(max_file_size=10)
        assert f.generated_reason("a = 1\n" * 5) == filters.TOO_LARGE
