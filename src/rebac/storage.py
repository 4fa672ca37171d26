"""Storage backends for relationship tuples.

This module provides tuple stores implementing the ``TupleStore``
contract: an in-memory index, a JSON file store and a SQLite store.

All stores are thread-safe. Writes are upserts keyed by
``(object, relation, subject)``; deleting a missing tuple is a no-op.
"""

from __future__ import annotations

import json
import logging
import os
import sqlite3
import tempfile
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable

from rebac.core import RelationTuple, TupleQuery, TupleStore, TupleStoreError

logger = logging.getLogger(__name__)


# =============================================================================
# In-Memory Storage
# =============================================================================


class MemoryTupleStore(TupleStore):
    """In-memory tuple storage for testing and development.

    Tuples are indexed by ``(object, relation)``, which is the shape of
    every query the check engine issues.

    Example:
        >>> store = MemoryTupleStore()
        >>> store.write([RelationTuple("doc:1", "viewer", "user:alice")])
        >>> store.query(TupleQuery(object="doc:1", relation="viewer"))
        [RelationTuple(object='doc:1', relation='viewer', subject='user:alice')]
    """

    def __init__(self, tuples: Iterable[RelationTuple] | None = None) -> None:
        # (object, relation) -> subject -> tuple, insertion ordered
        self._index: dict[tuple[str, str], dict[str, RelationTuple]] = {}
        self._lock = threading.RLock()
        if tuples:
            self.write(tuples)

    def write(self, tuples: Iterable[RelationTuple]) -> None:
        with self._lock:
            for t in tuples:
                self._index.setdefault((t.object, t.relation), {})[t.subject] = t

    def delete(self, tuples: Iterable[RelationTuple]) -> None:
        with self._lock:
            for t in tuples:
                bucket = self._index.get((t.object, t.relation))
                if not bucket:
                    continue
                bucket.pop(t.subject, None)
                if not bucket:
                    del self._index[(t.object, t.relation)]

    def query(self, query: TupleQuery) -> list[RelationTuple]:
        with self._lock:
            # Fast path: object + relation (every check-time query)
            if query.object is not None and query.relation is not None:
                bucket = self._index.get((query.object, query.relation), {})
                if query.subject is not None:
                    t = bucket.get(query.subject)
                    return [t] if t is not None else []
                return list(bucket.values())

            return [
                t
                for bucket in self._index.values()
                for t in bucket.values()
                if query.matches(t)
            ]

    def __len__(self) -> int:
        with self._lock:
            return sum(len(b) for b in self._index.values())

    def clear(self) -> None:
        """Clear all tuples (for testing)."""
        with self._lock:
            self._index.clear()


# =============================================================================
# File-Based Storage
# =============================================================================


@dataclass
class FileStorageConfig:
    """Configuration for file-based tuple storage."""

    base_path: str | Path = ".rebac"
    tuples_file: str = "tuples.json"
    create_dirs: bool = True
    pretty_print: bool = True

    @property
    def file_path(self) -> Path:
        return Path(self.base_path) / self.tuples_file


class FileTupleStore(TupleStore):
    """File-based tuple storage.

    Stores tuples as a JSON list of ``{"object", "relation", "subject"}``
    objects. The file is loaded on first access and rewritten atomically
    (temporary file + rename) after every batch.

    Example:
        >>> store = FileTupleStore(config=FileStorageConfig(base_path="/tmp/rebac"))
        >>> store.write([RelationTuple("doc:1", "viewer", "user:alice")])
    """

    def __init__(self, config: FileStorageConfig | None = None) -> None:
        self._config = config or FileStorageConfig()
        self._file_path = self._config.file_path
        self._lock = threading.RLock()
        self._cache: dict[tuple[str, str, str], RelationTuple] = {}
        self._cache_loaded = False

        if self._config.create_dirs:
            self._file_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def file_path(self) -> Path:
        return self._file_path

    def _load_cache(self) -> None:
        """Load tuples from file into cache."""
        if self._cache_loaded:
            return

        if self._file_path.exists():
            try:
                with open(self._file_path, encoding="utf-8") as f:
                    data = json.load(f)
                tuples = [RelationTuple.from_dict(item) for item in data]
            except (json.JSONDecodeError, TypeError, ValueError) as e:
                raise TupleStoreError(f"Corrupted tuple file {self._file_path}: {e}") from e
            except OSError as e:
                raise TupleStoreError(f"Cannot read tuple file {self._file_path}: {e}") from e
            self._cache = {t.key: t for t in tuples}
            logger.debug(f"Loaded {len(self._cache)} tuples from {self._file_path}")

        self._cache_loaded = True

    def _save_cache(self, cache: dict[tuple[str, str, str], RelationTuple]) -> None:
        """Persist a cache snapshot, replacing the file atomically."""
        data = [t.to_dict() for t in cache.values()]
        try:
            fd, tmp_path = tempfile.mkstemp(
                dir=self._file_path.parent, prefix=f".{self._file_path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2 if self._config.pretty_print else None)
                    f.write("\n")
                os.replace(tmp_path, self._file_path)
            except BaseException:
                Path(tmp_path).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise TupleStoreError(f"Cannot write tuple file {self._file_path}: {e}") from e

    def write(self, tuples: Iterable[RelationTuple]) -> None:
        with self._lock:
            self._load_cache()
            updated = dict(self._cache)
            for t in tuples:
                updated[t.key] = t
            self._save_cache(updated)
            self._cache = updated

    def delete(self, tuples: Iterable[RelationTuple]) -> None:
        with self._lock:
            self._load_cache()
            updated = dict(self._cache)
            for t in tuples:
                updated.pop(t.key, None)
            if len(updated) == len(self._cache):
                return
            self._save_cache(updated)
            self._cache = updated

    def query(self, query: TupleQuery) -> list[RelationTuple]:
        with self._lock:
            self._load_cache()
            return [t for t in self._cache.values() if query.matches(t)]

    def reload(self) -> None:
        """Drop the cache so the next access re-reads the file."""
        with self._lock:
            self._cache = {}
            self._cache_loaded = False


# =============================================================================
# SQLite Storage
# =============================================================================


class SQLiteTupleStore(TupleStore):
    """SQLite-based tuple storage.

    Each ``write`` or ``delete`` batch runs in a single transaction.

    Example:
        >>> store = SQLiteTupleStore(db_path="/tmp/rebac.db")
        >>> store.write([RelationTuple("doc:1", "viewer", "user:alice")])
    """

    def __init__(
        self,
        db_path: str | Path = ".rebac/tuples.db",
        create_tables: bool = True,
    ) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        except sqlite3.Error as e:
            raise TupleStoreError(f"Cannot open tuple database {self._db_path}: {e}") from e
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()

        if create_tables:
            self._create_tables()

    def _create_tables(self) -> None:
        """Create the tuples table."""
        with self._lock:
            cursor = self._conn.cursor()
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS relation_tuples (
                    object TEXT NOT NULL,
                    relation TEXT NOT NULL,
                    subject TEXT NOT NULL,
                    PRIMARY KEY (object, relation, subject)
                )
            """)
            cursor.execute(
                "CREATE INDEX IF NOT EXISTS idx_tuples_subject ON relation_tuples(subject)"
            )
            self._conn.commit()

    def write(self, tuples: Iterable[RelationTuple]) -> None:
        rows = [t.key for t in tuples]
        with self._lock:
            try:
                with self._conn:
                    self._conn.executemany(
                        "INSERT OR IGNORE INTO relation_tuples (object, relation, subject) "
                        "VALUES (?, ?, ?)",
                        rows,
                    )
            except sqlite3.Error as e:
                raise TupleStoreError(f"Tuple write failed: {e}") from e

    def delete(self, tuples: Iterable[RelationTuple]) -> None:
        rows = [t.key for t in tuples]
        with self._lock:
            try:
                with self._conn:
                    self._conn.executemany(
                        "DELETE FROM relation_tuples "
                        "WHERE object = ? AND relation = ? AND subject = ?",
                        rows,
                    )
            except sqlite3.Error as e:
                raise TupleStoreError(f"Tuple delete failed: {e}") from e

    def query(self, query: TupleQuery) -> list[RelationTuple]:
        sql = "SELECT object, relation, subject FROM relation_tuples WHERE 1=1"
        params: list[Any] = []

        if query.object is not None:
            sql += " AND object = ?"
            params.append(query.object)
        if query.relation is not None:
            sql += " AND relation = ?"
            params.append(query.relation)
        if query.subject is not None:
            sql += " AND subject = ?"
            params.append(query.subject)

        sql += " ORDER BY rowid"

        with self._lock:
            try:
                cursor = self._conn.execute(sql, params)
                rows = cursor.fetchall()
            except sqlite3.Error as e:
                raise TupleStoreError(f"Tuple query failed: {e}") from e

        return [RelationTuple(row["object"], row["relation"], row["subject"]) for row in rows]

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()


# =============================================================================
# Factory Functions
# =============================================================================


def create_tuple_store(
    backend: str = "memory",
    **kwargs: Any,
) -> TupleStore:
    """Create a tuple store.

    Args:
        backend: Storage backend ("memory", "file", "sqlite")
        **kwargs: Backend-specific configuration

    Returns:
        Configured TupleStore instance.
    """
    if backend == "memory":
        return MemoryTupleStore()
    elif backend == "file":
        config = FileStorageConfig(**kwargs)
        return FileTupleStore(config=config)
    elif backend == "sqlite":
        return SQLiteTupleStore(**kwargs)
    else:
        raise ValueError(f"Unknown backend: {backend}")
