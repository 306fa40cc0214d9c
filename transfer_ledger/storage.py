"""
Storage Backend Module

Provides abstract storage interface and implementations for in-memory (testing)
and SQLite (persistence). All monetary values stored as Decimal strings.

Every stored record carries a version number that starts at 1 and increases on
each write. Multi-record changes go through a StorageTransaction: reads inside
it remember the version they saw, writes are staged, and commit applies the
whole batch only if every staged record still has the version it was read at.
A batch is applied completely or not at all.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Tuple, Union
from decimal import Decimal
from datetime import datetime, timezone
import sqlite3
import json
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager

from .errors import ConflictError, StoreUnavailableError
from .logging_config import get_logger


def _copy(data: Dict[str, Any]) -> Dict[str, Any]:
    """Deep copy through JSON so stored data never aliases caller data"""
    return json.loads(json.dumps(data, default=str))


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        result['created_at'] = self.created_at.isoformat()
        result['updated_at'] = self.updated_at.isoformat()
        for key, value in result.items():
            if isinstance(value, Decimal):
                result[key] = str(value)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StorageRecord':
        """Create instance from dictionary"""
        if 'created_at' in data and isinstance(data['created_at'], str):
            data['created_at'] = datetime.fromisoformat(data['created_at'])
        if 'updated_at' in data and isinstance(data['updated_at'], str):
            data['updated_at'] = datetime.fromisoformat(data['updated_at'])

        return cls(**data)


@dataclass(frozen=True)
class VersionedRecord:
    """Stored data together with its current version"""
    data: Dict[str, Any]
    version: int


@dataclass(frozen=True)
class PendingWrite:
    """
    A write staged inside a StorageTransaction.
    expected_version 0 means the record must not exist yet.
    """
    table: str
    record_id: str
    data: Dict[str, Any]
    expected_version: int

    @property
    def key(self) -> Tuple[str, str]:
        return (self.table, self.record_id)


class StorageTransaction:
    """
    Unit of work over a storage backend.

    Reads go to the backend (never to a cache) and remember the version they
    observed. Writes are staged and applied by commit() as one batch through
    StorageInterface.apply_writes, which rejects the batch with ConflictError
    when any record changed since it was read.
    """

    def __init__(self, storage: 'StorageInterface'):
        self._storage = storage
        self._read_versions: Dict[Tuple[str, str], int] = {}
        self._writes: Dict[Tuple[str, str], PendingWrite] = {}
        self._closed = False

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("Storage transaction is already closed")

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Read a record, seeing this transaction's own staged writes"""
        self._check_open()
        key = (table, record_id)
        if key in self._writes:
            return _copy(self._writes[key].data)

        record = self._storage.load_versioned(table, record_id)
        if record is None:
            self._read_versions[key] = 0
            return None
        self._read_versions[key] = record.version
        return record.data

    def version_of(self, table: str, record_id: str) -> int:
        """Version observed by the last read of a record in this transaction"""
        key = (table, record_id)
        if key not in self._read_versions:
            raise ValueError(f"Record {table}/{record_id} was not read in this transaction")
        return self._read_versions[key]

    def save(
        self,
        table: str,
        record_id: str,
        data: Dict[str, Any],
        expected_version: Optional[int] = None
    ) -> None:
        """
        Stage a write. Without expected_version the record must have been read
        in this transaction and is checked against the version seen then.
        """
        self._check_open()
        if expected_version is None:
            expected_version = self.version_of(table, record_id)
        write = PendingWrite(table, record_id, _copy(data), expected_version)
        self._writes[write.key] = write

    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Stage creation of a record that must not exist yet"""
        self.save(table, record_id, data, expected_version=0)

    @property
    def pending_writes(self) -> List[PendingWrite]:
        """Staged writes in the fixed order they are applied"""
        return sorted(self._writes.values(), key=lambda w: w.key)

    @property
    def is_closed(self) -> bool:
        return self._closed

    def commit(self) -> None:
        """Apply all staged writes atomically"""
        self._check_open()
        try:
            writes = self.pending_writes
            if writes:
                self._storage.apply_writes(writes)
        finally:
            self._closed = True

    def rollback(self) -> None:
        """Discard staged writes; nothing has reached the backend yet"""
        self._writes.clear()
        self._closed = True


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record unconditionally, bumping its version"""
        pass

    @abstractmethod
    def load_versioned(self, table: str, record_id: str) -> Optional[VersionedRecord]:
        """Load a record together with its version"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
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
    def apply_writes(self, writes: List[PendingWrite]) -> None:
        """
        Apply a batch of version-checked writes atomically.

        Raises:
            ConflictError: If any record's version differs from the expected
                one; nothing is written in that case
            StoreUnavailableError: If the backend fails
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Close storage connection"""
        pass

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        record = self.load_versioned(table, record_id)
        return record.data if record else None

    def compare_and_swap(
        self,
        table: str,
        record_id: str,
        data: Dict[str, Any],
        expected_version: int
    ) -> int:
        """
        Replace a single record only if it is still at expected_version

        Returns:
            The record's new version
        """
        self.apply_writes([PendingWrite(table, record_id, _copy(data), expected_version)])
        return expected_version + 1

    @contextmanager
    def atomic(self):
        """Context manager yielding a StorageTransaction committed on clean exit"""
        transaction = StorageTransaction(self)
        try:
            yield transaction
        except Exception:
            transaction.rollback()
            raise
        if not transaction.is_closed:
            transaction.commit()


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._versions: Dict[str, Dict[str, int]] = {}
        self._lock = threading.RLock()

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists"""
        if table not in self._data:
            self._data[table] = {}
            self._versions[table] = {}

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        with self._lock:
            self._ensure_table(table)
            self._data[table][record_id] = _copy(data)
            self._versions[table][record_id] = self._versions[table].get(record_id, 0) + 1

    def load_versioned(self, table: str, record_id: str) -> Optional[VersionedRecord]:
        """Load a record and its version from memory"""
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record is None:
                return None
            return VersionedRecord(_copy(record), self._versions[table][record_id])

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            return [_copy(record) for record in self._data[table].values()]

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            return record_id in self._data[table]

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        with self._lock:
            self._ensure_table(table)
            results = []
            for record in self._data[table].values():
                match = True
                for key, value in filters.items():
                    if key not in record or record[key] != value:
                        match = False
                        break
                if match:
                    results.append(_copy(record))
            return results

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            return len(self._data[table])

    def apply_writes(self, writes: List[PendingWrite]) -> None:
        """Check every expected version, then apply the whole batch"""
        with self._lock:
            for write in writes:
                self._ensure_table(write.table)
                current = self._versions[write.table].get(write.record_id, 0)
                if current != write.expected_version:
                    raise ConflictError(details={
                        "table": write.table,
                        "record_id": write.record_id,
                        "expected_version": write.expected_version,
                        "actual_version": current
                    })

            for write in writes:
                self._data[write.table][write.record_id] = _copy(write.data)
                self._versions[write.table][write.record_id] = write.expected_version + 1

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:", busy_timeout: float = 5.0):
        self.db_path = str(db_path)
        self.logger = get_logger("transfer_ledger.storage")
        # Autocommit mode; write batches open their own BEGIN IMMEDIATE transaction
        try:
            self._connection = sqlite3.connect(
                self.db_path,
                check_same_thread=False,
                isolation_level=None,
                timeout=busy_timeout
            )
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Cannot open database {self.db_path}: {e}") from e
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._tables: set = set()

        # Enable WAL mode for better concurrent access
        if self.db_path != ":memory:":
            with self._lock:
                self._execute("PRAGMA journal_mode = WAL")
                self._execute("PRAGMA synchronous = NORMAL")

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        """Execute a statement, wrapping driver errors"""
        if self._connection is None:
            raise StoreUnavailableError("Storage connection is closed")
        try:
            return self._connection.execute(sql, params)
        except sqlite3.Error as e:
            raise StoreUnavailableError(str(e)) from e

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        with self._lock:
            if table in self._tables:
                return
            self._execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    id TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            self._execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{table}_created_at
                ON {table}(created_at)
            """)
            self._tables.add(table)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to SQLite"""
        with self._lock:
            self._ensure_table(table)
            now = datetime.now(timezone.utc).isoformat()
            self._execute(f"""
                INSERT INTO {table} (id, data, version, created_at, updated_at)
                VALUES (?, ?, 1, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    data = excluded.data,
                    version = {table}.version + 1,
                    updated_at = excluded.updated_at
            """, (record_id, json.dumps(data, default=str), now, now))

    def load_versioned(self, table: str, record_id: str) -> Optional[VersionedRecord]:
        """Load a record and its version from SQLite"""
        with self._lock:
            self._ensure_table(table)
            row = self._execute(f"""
                SELECT data, version FROM {table} WHERE id = ?
            """, (record_id,)).fetchone()
            if row:
                return VersionedRecord(json.loads(row['data']), row['version'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._execute(f"""
                SELECT data FROM {table} ORDER BY created_at, rowid
            """)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._execute(f"""
                SELECT 1 FROM {table} WHERE id = ? LIMIT 1
            """, (record_id,))
            return cursor.fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records whose top-level JSON fields equal the filter values"""
        with self._lock:
            self._ensure_table(table)
            conditions = []
            params: List[Any] = []
            for key, value in filters.items():
                conditions.append("json_extract(data, ?) = ?")
                params.extend([f"$.{key}", value])

            where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
            cursor = self._execute(f"""
                SELECT data FROM {table} {where_clause} ORDER BY created_at, rowid
            """, tuple(params))
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._execute(f"""
                SELECT COUNT(*) as count FROM {table}
            """)
            return cursor.fetchone()['count']

    def apply_writes(self, writes: List[PendingWrite]) -> None:
        """Apply a batch inside one BEGIN IMMEDIATE transaction"""
        with self._lock:
            for table in {write.table for write in writes}:
                self._ensure_table(table)

            self._execute("BEGIN IMMEDIATE")
            try:
                now = datetime.now(timezone.utc).isoformat()
                for write in writes:
                    data_json = json.dumps(write.data, default=str)
                    if write.expected_version == 0:
                        try:
                            self._connection.execute(f"""
                                INSERT INTO {write.table} (id, data, version, created_at, updated_at)
                                VALUES (?, ?, 1, ?, ?)
                            """, (write.record_id, data_json, now, now))
                        except sqlite3.IntegrityError:
                            raise ConflictError(details={
                                "table": write.table,
                                "record_id": write.record_id,
                                "expected_version": 0
                            }) from None
                    else:
                        cursor = self._execute(f"""
                            UPDATE {write.table}
                            SET data = ?, version = version + 1, updated_at = ?
                            WHERE id = ? AND version = ?
                        """, (data_json, now, write.record_id, write.expected_version))
                        if cursor.rowcount != 1:
                            raise ConflictError(details={
                                "table": write.table,
                                "record_id": write.record_id,
                                "expected_version": write.expected_version
                            })
                self._execute("COMMIT")
            except sqlite3.Error as e:
                self._rollback()
                raise StoreUnavailableError(str(e)) from e
            except Exception:
                self._rollback()
                raise

    def _rollback(self) -> None:
        try:
            self._connection.execute("ROLLBACK")
        except sqlite3.Error as e:
            # No transaction left to roll back when BEGIN itself failed
            self.logger.warning(f"SQLite rollback failed: {e}")

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(storage_backend: str = "memory",
                   database_path: Optional[str] = None,
                   busy_timeout: float = 5.0) -> StorageInterface:
    """Factory function to create storage instances"""
    if storage_backend.lower() == "sqlite":
        return SQLiteStorage(database_path or ":memory:", busy_timeout=busy_timeout)
    if storage_backend.lower() == "memory":
        return InMemoryStorage()
    raise ValueError(f"Unknown storage backend: {storage_backend}")
