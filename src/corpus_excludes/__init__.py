"""Per-suite test exclusion registry for running a reference test corpus."""

from __future__ import annotations

from corpus_excludes.errors import (
    ConfigError,
    DuplicateExclusionError,
    ExcludesError,
    LoadError,
)
from corpus_excludes.handle import RegistryHandle
from corpus_excludes.loader import LoadResult, load_directory, load_registry
from corpus_excludes.registry import (
    ExclusionEntry,
    ExclusionRegistry,
    SuiteDefinition,
    load,
)
from corpus_excludes.report import RunReport

__all__ = [
    "ConfigError",
    "DuplicateExclusionError",
    "ExcludesError",
    "ExclusionEntry",
    "ExclusionRegistry",
    "LoadError",
    "LoadResult",
    "RegistryHandle",
    "RunReport",
    "SuiteDefinition",
    "load",
    "load_directory",
    "load_registry",
]
