"""
Code units: extraction, caching and swap compatibility.

Public API:
    - CodeUnit: One swappable block of code
    - ContentCache, InMemoryCacheBackend, SqliteCacheBackend: Unit cache
    - UnitSplitter, PythonSourceSplitter, CachedUnitSplitter: Splitters
    - CompatibilityChecker, AlwaysCompatible, PythonStructureChecker
"""

from .models import CodeUnit
from .cache import CacheBackend, ContentCache, InMemoryCacheBackend, SqliteCacheBackend
from .splitter import UnitSplitter, PythonSourceSplitter, CachedUnitSplitter, read_entry
from .compat import CompatibilityChecker, AlwaysCompatible, PythonStructureChecker

__all__ = [
    "CodeUnit",

    # Cache
    "CacheBackend",
    "ContentCache",
    "InMemoryCacheBackend",
    "SqliteCacheBackend",

    # Splitters
    "UnitSplitter",
    "PythonSourceSplitter",
    "CachedUnitSplitter",
    "read_entry",

    # Compatibility
    "CompatibilityChecker",
    "AlwaysCompatible",
    "PythonStructureChecker",
]
