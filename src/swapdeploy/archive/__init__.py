"""
Package archive indexing.

Public API:
    - ArchiveIndex: Parse central directory and signature block
    - PackageArchive, ArchiveEntry: Immutable archive views
"""

from .index import ArchiveIndex, PackageArchive, ArchiveEntry

__all__ = [
    "ArchiveIndex",
    "PackageArchive",
    "ArchiveEntry",
]
