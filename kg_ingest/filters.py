"""
filters.py - File selection and classification for the parsing pass.

Exclusion rules run in a fixed order and stop at the first hit; every
exclusion carries a reason code that ends up in the diagnostic report:

    directory_filter   explicit directory filter did not match
    extension_filter   explicit extension filter did not match
    ignored            dependency / build / VCS / IDE paths, lock and binary files
    empty              zero-length or whitespace-only content

Files that survive are classified as ``source`` (a grammar exists for the
extension), ``config`` (known configuration files harvested by
config_files.py) or ``non_source``. Source files that look generated or
minified are demoted with reason ``generated`` or ``too_large``.
"""

from __future__ import annotations

import fnmatch
import posixpath
from typing import Optional

from kg_ingest.models import IngestionConfig, IngestionOptions

# Skip reasons
DIRECTORY_FILTER = "directory_filter"
EXTENSION_FILTER = "extension_filter"
IGNORED = "ignored"
EMPTY = "empty"
GENERATED = "generated"
TOO_LARGE = "too_large"
UNSUPPORTED_LANGUAGE = "unsupported_language"
NON_SOURCE = "non_source"

# File categories
SOURCE = "source"
CONFIG = "config"
OTHER = "non_source"

ALLOWED_HIDDEN_DIRS = frozenset({".github"})

CONFIG_FILE_PATTERNS: tuple[str, ...] = (
    "package.json",
    "tsconfig*.json",
    ".env",
    ".env.*",
    "dockerfile",
    "dockerfile.*",
    "requirements.txt",
    "requirements-*.txt",
    "pyproject.toml",
)


def split_csv(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def file_extension(path: str) -> str:
    return posixpath.splitext(path)[1].lower()


class FileFilter:
    """Applies the exclusion policy and classifies surviving files."""

    def __init__(self, config: IngestionConfig, options: Optional[IngestionOptions] = None) -> None:
        options = options or IngestionOptions()
        self.config = config
        self.directory_filters = [d.lower().strip("/") for d in split_csv(options.directory_filter)]
        self.extension_filters = [
            (e if e.startswith(".") else f".{e}").lower()
            for e in split_csv(options.file_extensions)
        ]
        self._ignored_dirs = {p.lower() for p in config.ignore_patterns}
        self._ignored_names = {n.lower() for n in config.ignored_file_names}
        self._ignored_exts = [e.lower() for e in config.ignored_extensions]
        self._ext_to_lang: dict[str, str] = {}
        for lang, exts in config.language_extensions.items():
            for ext in exts:
                self._ext_to_lang[ext.lower()] = lang

    @property
    def has_explicit_filters(self) -> bool:
        return bool(self.directory_filters or self.extension_filters)

    # ------------------------------------------------------------------
    # Exclusion policy
    # ------------------------------------------------------------------

    def exclusion_reason(self, path: str, content: Optional[str]) -> Optional[str]:
        """First matching exclusion reason for *path*, or None to keep it."""
        if self.directory_filters and not self.matches_directory_filter(path):
            return DIRECTORY_FILTER
        if self.extension_filters and not self.matches_extension_filter(path):
            return EXTENSION_FILTER
        if self.is_ignored(path):
            return IGNORED
        if content is None or not content.strip():
            return EMPTY
        return None

    def matches_directory_filter(self, path: str) -> bool:
        directory = posixpath.dirname(path).lower()
        return any(f in directory for f in self.directory_filters)

    def matches_extension_filter(self, path: str) -> bool:
        lower = path.lower()
        return any(lower.endswith(ext) for ext in self.extension_filters)

    def is_ignored(self, path: str) -> bool:
        lower = path.lower()
        if "site-packages/" in lower or ".egg-info/" in lower:
            return True
        parts = lower.split("/")
        for segment in parts[:-1]:
            if segment in self._ignored_dirs:
                return True
            if segment.startswith(".") and segment not in ALLOWED_HIDDEN_DIRS:
                return True
        name = parts[-1]
        if name in self._ignored_names:
            return True
        return any(name.endswith(ext) for ext in self._ignored_exts)

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def language_for(self, path: str) -> Optional[str]:
        lower = path.lower()
        ext = file_extension(lower)
        return self._ext_to_lang.get(ext)

    @staticmethod
    def is_config_file(path: str) -> bool:
        name = posixpath.basename(path).lower()
        return any(fnmatch.fnmatch(name, pattern) for pattern in CONFIG_FILE_PATTERNS)

    def classify(self, path: str) -> tuple[str, Optional[str]]:
        """Return (category, language) for a file that passed the exclusions."""
        if self.is_config_file(path):
            return CONFIG, None
        language = self.language_for(path)
        if language is not None:
            return SOURCE, language
        return OTHER, None

    def generated_reason(self, content: str) -> Optional[str]:
        """Reason code when *content* looks generated, minified or oversized."""
        if len(content) > self.config.max_file_size:
            return TOO_LARGE
        first_line = content.split("\n", 1)[0]
        if len(first_line) > self.config.max_first_line_length:
            return GENERATED
        if any(sig in content for sig in self.config.bundler_signatures):
            return GENERATED
        return None
