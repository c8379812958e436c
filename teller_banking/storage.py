"""
Storage Backend Module

Provides abstract storage interface and implementations for in-memory (testing)
and SQLite (persistence). Records are JSON documents keyed by id; monetary
values are stored as Decimal strings.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Iterable, Union
from decimal import Decimal
from datetime import datetime, timezone
from enum import Enum
import sqlite3
import json
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager

from .errors import DuplicateRecordError, StorageError


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        for key, value in result.items():
            if isinstance(value, datetime):
                result[key] = value.isoformat()
            elif isinstance(value, Decimal):
                result[key] = str(value)
            elif isinstance(value, Enum):
                result[key] = value.value
        return result


def _matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    for key, value in filters.items():
        if key not in record or record[key] != value:
            return False
    return True


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save (insert or replace) a record"""
        pass

    @abstractmethod
    def insert(self, table: str, record_id: str, data: Dict[str, Any],
               unique_fields: Iterable[str] = ()) -> None:
        """
        Create a record, refusing to overwrite.

        Raises:
            DuplicateRecordError: if the id, or the value of any field named
                in unique_fields, already exists in the table
        """
        pass

    @abstractmethod
    def compare_and_set(self, table: str, record_id: str, field: str,
                        expected: Any, data: Dict[str, Any]) -> bool:
        """
        Replace a record only if its current `field` equals `expected`.

        Returns:
            True if the record was replaced, False if it is missing or the
            precondition no longer holds
        """
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        pass

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from storage"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        """Count records in table"""
        pass

    @abstractmethod
    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    @abstractmethod
    @contextmanager
    def atomic(self):
        """
        Context manager for atomic operations.

        Writes made inside the block are all kept or all discarded, and
        blocks on the same store do not interleave.
        """
        pass


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        # One undo journal per open atomic() block, innermost last
        self._journals: List[Dict[str, Optional[Dict[str, Dict[str, Any]]]]] = []

    def _ensure_table(self, table: str) -> None:
        if table not in self._data:
            self._data[table] = {}

    def _touch(self, table: str) -> None:
        """Record a table's state in the innermost journal before its first write"""
        if not self._journals:
            return
        journal = self._journals[-1]
        if table not in journal:
            current = self._data.get(table)
            # Records are replaced on write, never mutated, so a shallow copy suffices
            journal[table] = dict(current) if current is not None else None

    @staticmethod
    def _copy(data: Dict[str, Any]) -> Dict[str, Any]:
        # Deep copy through JSON to prevent external mutation
        return json.loads(json.dumps(data, default=str))

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._touch(table)
            self._ensure_table(table)
            self._data[table][record_id] = self._copy(data)

    def insert(self, table: str, record_id: str, data: Dict[str, Any],
               unique_fields: Iterable[str] = ()) -> None:
        with self._lock:
            self._ensure_table(table)
            if record_id in self._data[table]:
                raise DuplicateRecordError(table, "id", record_id)
            for field in unique_fields:
                value = data.get(field)
                for record in self._data[table].values():
                    if record.get(field) == value:
                        raise DuplicateRecordError(table, field, value)
            self._touch(table)
            self._data[table][record_id] = self._copy(data)

    def compare_and_set(self, table: str, record_id: str, field: str,
                        expected: Any, data: Dict[str, Any]) -> bool:
        with self._lock:
            self._ensure_table(table)
            current = self._data[table].get(record_id)
            if current is None or current.get(field) != expected:
                return False
            self._touch(table)
            self._data[table][record_id] = self._copy(data)
            return True

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record:
                return self._copy(record)
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            return [self._copy(record) for record in self._data[table].values()]

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            if record_id in self._data[table]:
                self._touch(table)
                del self._data[table][record_id]
                return True
            return False

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            return record_id in self._data[table]

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self._lock:
            self._ensure_table(table)
            return [
                self._copy(record) for record in self._data[table].values()
                if _matches(record, filters)
            ]

    def count(self, table: str) -> int:
        with self._lock:
            self._ensure_table(table)
            return len(self._data[table])

    def clear_table(self, table: str) -> None:
        with self._lock:
            self._touch(table)
            self._data[table] = {}

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass

    @contextmanager
    def atomic(self):
        """Undo only the tables written inside the block"""
        with self._lock:
            self._journals.append({})
            try:
                yield
            except BaseException:
                journal = self._journals.pop()
                for table, previous in journal.items():
                    if previous is None:
                        self._data.pop(table, None)
                    else:
                        self._data[table] = previous
                raise
            else:
                journal = self._journals.pop()
                if self._journals:
                    # Hand the pre-block state up so an outer failure undoes this block too
                    parent = self._journals[-1]
                    for table, previous in journal.items():
                        parent.setdefault(table, previous)


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:", timeout: float = 5.0):
        self.db_path = str(db_path)
        self._lock = threading.RLock()
        self._tables = set()
        self._depth = 0
        try:
            self._connection = sqlite3.connect(
                self.db_path, timeout=timeout,
                check_same_thread=False, isolation_level='DEFERRED'
            )
            self._connection.row_factory = sqlite3.Row

            # Enable WAL mode for better concurrent access
            if self.db_path != ":memory:":
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
                self._connection.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open SQLite database {self.db_path}: {e}") from e

    @contextmanager
    def _guard(self):
        """Translate sqlite3 failures into StorageError"""
        try:
            yield
        except sqlite3.Error as e:
            # Outside atomic() nobody else will end the implicit transaction
            if self._depth == 0 and self._connection is not None and self._connection.in_transaction:
                self._connection.rollback()
            raise StorageError(f"SQLite failure: {e}") from e

    def _commit(self) -> None:
        # Inside atomic() the outermost block commits
        if self._depth == 0:
            self._connection.commit()

    def _ensure_table(self, table: str) -> None:
        if table in self._tables:
            return
        self._connection.execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self._connection.execute(f"""
            CREATE INDEX IF NOT EXISTS idx_{table}_created_at
            ON {table}(created_at)
        """)
        self._tables.add(table)

    def _write(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        now = datetime.now(timezone.utc).isoformat()
        data_json = json.dumps(data, default=str)
        self._connection.execute(f"""
            INSERT OR REPLACE INTO {table} (id, data, created_at, updated_at)
            VALUES (?, ?,
                COALESCE((SELECT created_at FROM {table} WHERE id = ?), ?),
                ?)
        """, (record_id, data_json, record_id, now, now))

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock, self._guard():
            self._ensure_table(table)
            self._write(table, record_id, data)
            self._commit()

    def insert(self, table: str, record_id: str, data: Dict[str, Any],
               unique_fields: Iterable[str] = ()) -> None:
        # The uniqueness scan and the write share one write-locked transaction
        with self.atomic(), self._guard():
            self._ensure_table(table)
            if self._load(table, record_id) is not None:
                raise DuplicateRecordError(table, "id", record_id)
            unique_fields = list(unique_fields)
            if unique_fields:
                for record in self._scan(table):
                    for field in unique_fields:
                        if record.get(field) == data.get(field):
                            raise DuplicateRecordError(table, field, data.get(field))
            self._write(table, record_id, data)

    def compare_and_set(self, table: str, record_id: str, field: str,
                        expected: Any, data: Dict[str, Any]) -> bool:
        """The precondition is evaluated by SQLite inside the UPDATE itself"""
        with self._lock, self._guard():
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                UPDATE {table} SET data = ?, updated_at = ?
                WHERE id = ? AND json_extract(data, ?) = ?
            """, (
                json.dumps(data, default=str),
                datetime.now(timezone.utc).isoformat(),
                record_id,
                f"$.{field}",
                expected
            ))
            self._commit()
            return cursor.rowcount > 0

    def _load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        cursor = self._connection.execute(f"""
            SELECT data FROM {table} WHERE id = ?
        """, (record_id,))
        row = cursor.fetchone()
        if row:
            return json.loads(row['data'])
        return None

    def _scan(self, table: str) -> List[Dict[str, Any]]:
        cursor = self._connection.execute(f"""
            SELECT data FROM {table} ORDER BY created_at
        """)
        return [json.loads(row['data']) for row in cursor.fetchall()]

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock, self._guard():
            self._ensure_table(table)
            return self._load(table, record_id)

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock, self._guard():
            self._ensure_table(table)
            return self._scan(table)

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock, self._guard():
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                DELETE FROM {table} WHERE id = ?
            """, (record_id,))
            self._commit()
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock, self._guard():
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT 1 FROM {table} WHERE id = ? LIMIT 1
            """, (record_id,))
            return cursor.fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters (simple JSON key matching)"""
        with self._lock, self._guard():
            self._ensure_table(table)
            return [record for record in self._scan(table) if _matches(record, filters)]

    def count(self, table: str) -> int:
        with self._lock, self._guard():
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT COUNT(*) as count FROM {table}
            """)
            return cursor.fetchone()['count']

    def clear_table(self, table: str) -> None:
        with self._lock, self._guard():
            self._ensure_table(table)
            self._connection.execute(f"DELETE FROM {table}")
            self._commit()

    @contextmanager
    def atomic(self):
        """
        The outermost block takes SQLite's write lock up front, so it is
        also exclusive against other connections and processes.
        """
        with self._lock:
            if self._depth == 0 and not self._connection.in_transaction:
                with self._guard():
                    self._connection.execute("BEGIN IMMEDIATE")
            self._depth += 1
            try:
                yield
            except BaseException:
                self._depth -= 1
                if self._depth == 0:
                    # DDL issued inside the block was rolled back too
                    self._tables.clear()
                    with self._guard():
                        self._connection.rollback()
                raise
            else:
                self._depth -= 1
                if self._depth == 0:
                    with self._guard():
                        self._connection.commit()

    def close(self) -> None:
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(database_url: str) -> StorageInterface:
    """
    Create a storage backend from a URL.

    Supported URLs:
        memory://              in-process InMemoryStorage
        sqlite:///path/to.db   SQLiteStorage on a file
        sqlite://              SQLiteStorage in memory
    """
    if database_url.startswith("memory://"):
        return InMemoryStorage()
    if database_url.startswith("sqlite://"):
        path = database_url[len("sqlite://"):]
        if path.startswith("/"):
            path = path[1:]
        return SQLiteStorage(path or ":memory:")
    raise ValueError(f"Unsupported database URL: {database_url}")
