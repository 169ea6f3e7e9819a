"""
Unit splitters - decompose a container entry into individually swappable units.

Splitting means decompressing and parsing the entry, which is the expensive
part of a diff. CachedUnitSplitter consults the ContentCache first so entries
that did not change between deployments cost one lookup.
"""

import ast
import logging
import threading
import zipfile
import zlib
from typing import Callable, Optional, Protocol

from swapdeploy.archive.index import ArchiveEntry
from swapdeploy.exceptions import ArchiveError
from swapdeploy.units.cache import ContentCache
from swapdeploy.units.models import CodeUnit

logger = logging.getLogger(__name__)

KeepFilter = Callable[[CodeUnit], bool]

MODULE_UNIT = "<module>"


class UnitSplitter(Protocol):
    """Extracts code units from container entries."""

    def handles(self, entry: ArchiveEntry) -> bool:
        """Return True when entry is a code container this splitter understands."""
        ...

    def split(self, entry: ArchiveEntry, keep: Optional[KeepFilter] = None) -> list[CodeUnit]:
        """
        Extract the units of entry.

        Args:
            entry: Container entry to split
            keep: Selects the units whose payload must be retained. Units it
                rejects (or every unit, when keep is None) carry only their
                checksum.
        """
        ...


def read_entry(entry: ArchiveEntry) -> bytes:
    """Read and decompress one entry from its archive."""
    try:
        with zipfile.ZipFile(entry.archive_path) as archive:
            return archive.read(entry.name)
    except (OSError, KeyError, zipfile.BadZipFile, zlib.error, NotImplementedError) as e:
        raise ArchiveError(
            ArchiveError.UNREADABLE,
            f"Unable to read entry '{entry.name}': {e}",
            entry.archive_path
        ) from e


def module_name(entry_name: str) -> str:
    """Map an entry path to a dotted module name ("app/views.py" -> "app.views")."""
    stem = entry_name[:-3] if entry_name.endswith('.py') else entry_name
    parts = [part for part in stem.split('/') if part]
    if len(parts) > 1 and parts[-1] == '__init__':
        parts = parts[:-1]
    return '.'.join(parts)


class PythonSourceSplitter:
    """
    Splits Python source modules into top-level classes and functions.

    Unit names are "<module>.<Name>"; the payload is the exact source of the
    definition, decorators included. Statements outside any definition are
    gathered into a "<module>.<module>" unit so that no change goes unseen.
    A module that does not parse becomes a single module unit.
    """

    DEFINITIONS = (ast.ClassDef, ast.FunctionDef, ast.AsyncFunctionDef)

    def __init__(self):
        self.splits = 0
        self._lock = threading.Lock()

    def handles(self, entry: ArchiveEntry) -> bool:
        return entry.name.endswith('.py')

    def split(self, entry: ArchiveEntry, keep: Optional[KeepFilter] = None) -> list[CodeUnit]:
        with self._lock:
            self.splits += 1

        data = read_entry(entry)
        module = module_name(entry.name)
        segments = self._segments(data, module, entry.name)

        units = []
        for name, payload in segments.items():
            unit = CodeUnit(name=name, entry=entry.name, checksum=zlib.crc32(payload), payload=payload)
            if keep is None or not keep(unit):
                unit = unit.without_payload()
            units.append(unit)

        logger.debug(f"Split {entry.name} into {len(units)} unit(s)")
        return units

    def _segments(self, data: bytes, module: str, entry_name: str) -> dict[str, bytes]:
        module_unit = f"{module}.{MODULE_UNIT}"
        try:
            source = data.decode('utf-8')
            tree = ast.parse(source, filename=entry_name)
        except (UnicodeDecodeError, SyntaxError, ValueError) as e:
            logger.debug(f"{entry_name} is not splittable ({e}), using a single unit")
            return {module_unit: data} if data else {}

        lines = source.splitlines(keepends=True)
        segments: dict[str, list[str]] = {}
        for node in tree.body:
            start = node.lineno
            if isinstance(node, self.DEFINITIONS):
                if node.decorator_list:
                    start = min(d.lineno for d in node.decorator_list)
                name = f"{module}.{node.name}"
            else:
                name = module_unit
            # A name defined twice keeps both bodies, so either edit shows up
            segments.setdefault(name, []).append(''.join(lines[start - 1:node.end_lineno]))

        return {name: ''.join(parts).encode('utf-8') for name, parts in segments.items()}


class CachedUnitSplitter:
    """
    Cache-first splitter.

    Policy:
        - keep given, or cache returned nothing: split for real and write back
        - otherwise return the cached units verbatim

    A keep filter always forces a full re-split, even for units it would not
    retain.
    """

    def __init__(self, cache: ContentCache, splitter: UnitSplitter):
        self.cache = cache
        self.splitter = splitter

    def handles(self, entry: ArchiveEntry) -> bool:
        return self.splitter.handles(entry)

    def split(self, entry: ArchiveEntry, keep: Optional[KeepFilter] = None) -> list[CodeUnit]:
        units = self.cache.get(entry)
        if not units or keep is not None:
            units = self.splitter.split(entry, keep)
            self.cache.put(entry, units)
        return units
