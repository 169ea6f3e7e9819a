"""
Content cache mapping an archive entry identity to its extracted code units.

The cache is keyed by (entry name, CRC-32). A stored record is only a hit when
its CRC matches the entry being queried; a new CRC for the same name
supersedes the old record instead of merging with it.

Backends:
    - InMemoryCacheBackend: dict guarded by a lock (tests, one-shot runs)
    - SqliteCacheBackend: durable table that survives process restarts

ContentCache wraps a backend and owns the "storage failure is a miss" policy,
so callers never see CacheError.
"""

import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Protocol, Union

from swapdeploy.archive.index import ArchiveEntry
from swapdeploy.exceptions import CacheError
from swapdeploy.units.models import CodeUnit

logger = logging.getLogger(__name__)


class CacheBackend(Protocol):
    """Key-value storage for code unit sets."""

    def get(self, entry_name: str, crc: int) -> list[CodeUnit]:
        """Return stored units for (entry_name, crc), or [] on miss."""
        ...

    def put(self, entry_name: str, crc: int, units: list[CodeUnit]) -> None:
        """Store units for (entry_name, crc), superseding other CRCs of entry_name."""
        ...

    def clear(self) -> None:
        """Drop every record."""
        ...


class InMemoryCacheBackend:
    """Process-local backend. Writes replace the whole record under a lock."""

    def __init__(self):
        self._records: dict[str, tuple[int, tuple[CodeUnit, ...]]] = {}
        self._lock = threading.Lock()

    def get(self, entry_name: str, crc: int) -> list[CodeUnit]:
        with self._lock:
            record = self._records.get(entry_name)
        if record is None or record[0] != crc:
            return []
        return list(record[1])

    def put(self, entry_name: str, crc: int, units: list[CodeUnit]) -> None:
        with self._lock:
            self._records[entry_name] = (crc, tuple(units))

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def __len__(self) -> int:
        return len(self._records)


class SqliteCacheBackend:
    """
    SQLite backend.

    One connection per thread (WAL mode) so readers never block each other;
    each put is a single transaction, which keeps records atomic per key.
    """

    SCHEMA = (
        "CREATE TABLE IF NOT EXISTS code_units ("
        " entry_name TEXT NOT NULL,"
        " crc INTEGER NOT NULL,"
        " units_json TEXT NOT NULL,"
        " PRIMARY KEY (entry_name, crc))"
    )

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._local = threading.local()
        self._connections: list[sqlite3.Connection] = []
        self._lock = threading.Lock()
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self._connection() as conn:
                conn.execute(self.SCHEMA)
        except (OSError, sqlite3.Error) as e:
            raise CacheError(f"Unable to open unit cache at {self.path}: {e}") from e

    def _connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, 'conn', None)
        if conn is None:
            conn = sqlite3.connect(str(self.path), timeout=30, check_same_thread=False)
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            self._local.conn = conn
            with self._lock:
                self._connections.append(conn)
        return conn

    def get(self, entry_name: str, crc: int) -> list[CodeUnit]:
        try:
            row = self._connection().execute(
                "SELECT units_json FROM code_units WHERE entry_name = ? AND crc = ?",
                (entry_name, crc)
            ).fetchone()
        except sqlite3.Error as e:
            raise CacheError(f"Unit cache read failed for {entry_name}: {e}") from e
        if row is None:
            return []
        try:
            return [CodeUnit.from_dict(item) for item in json.loads(row[0])]
        except (ValueError, KeyError, TypeError) as e:
            raise CacheError(f"Corrupt unit cache record for {entry_name}: {e}") from e

    def put(self, entry_name: str, crc: int, units: list[CodeUnit]) -> None:
        payload = json.dumps([unit.to_dict() for unit in units])
        try:
            conn = self._connection()
            with conn:
                conn.execute(
                    "DELETE FROM code_units WHERE entry_name = ? AND crc != ?",
                    (entry_name, crc)
                )
                conn.execute(
                    "INSERT OR REPLACE INTO code_units (entry_name, crc, units_json) VALUES (?, ?, ?)",
                    (entry_name, crc, payload)
                )
        except sqlite3.Error as e:
            raise CacheError(f"Unit cache write failed for {entry_name}: {e}") from e

    def clear(self) -> None:
        try:
            conn = self._connection()
            with conn:
                conn.execute("DELETE FROM code_units")
        except sqlite3.Error as e:
            raise CacheError(f"Unit cache clear failed: {e}") from e

    def close(self) -> None:
        """Close every connection opened by this backend. Safe to call twice."""
        with self._lock:
            connections, self._connections = self._connections, []
        for conn in connections:
            conn.close()
        self._local = threading.local()


class ContentCache:
    """
    Cache front end used by the splitter.

    Storage failures are logged and reported as misses; they never abort a
    deployment.
    """

    def __init__(self, backend: CacheBackend):
        self.backend = backend
        self.hits = 0
        self.misses = 0
        self._lock = threading.Lock()

    def get(self, entry: ArchiveEntry) -> list[CodeUnit]:
        try:
            units = self.backend.get(entry.name, entry.crc)
        except CacheError as e:
            logger.warning(f"Unit cache unavailable, treating {entry.name} as a miss: {e}")
            units = []
        with self._lock:
            if units:
                self.hits += 1
            else:
                self.misses += 1
        return units

    def put(self, entry: ArchiveEntry, units: list[CodeUnit]) -> None:
        try:
            self.backend.put(entry.name, entry.crc, [unit.without_payload() for unit in units])
        except CacheError as e:
            logger.warning(f"Could not cache units for {entry.name}: {e}")

    def clear(self) -> None:
        self.backend.clear()
