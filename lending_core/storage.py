"""
Storage Backend Module

Record stores for loans, providers and ledger rows: an in-memory backend for
tests and a SQLite file backend. Records are JSON documents; money is kept as
{"amount": "<decimal string>", "currency": "<code>"}.

Every backend serializes units of work: the storage lock is held from
begin_transaction() until the matching commit()/rollback(), so a
check-then-write sequence inside atomic() cannot interleave with another
unit of work. Nested atomic() blocks behave as savepoints.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Union
from decimal import Decimal
from datetime import datetime, date
from enum import Enum
import copy
import sqlite3
import json
import threading
from dataclasses import dataclass, fields
from pathlib import Path
from contextlib import contextmanager

from .currency import Money, Currency
from .errors import TransactionAborted


def serialize_value(value: Any) -> Any:
    """Convert a domain value into a JSON-compatible value"""
    if isinstance(value, Money):
        return value.to_dict()
    if isinstance(value, Currency):
        return value.code
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [serialize_value(v) for v in value]
    if isinstance(value, dict):
        return {k: serialize_value(v) for k, v in value.items()}
    return value


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        return {f.name: serialize_value(getattr(self, f.name)) for f in fields(self)}


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to storage"""
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
    def close(self) -> None:
        """Close storage connection"""
        pass

    @property
    @abstractmethod
    def in_transaction(self) -> bool:
        """True while the calling code is inside atomic()"""
        pass

    @abstractmethod
    def begin_transaction(self) -> None:
        """Start a transaction, or a savepoint when one is already open"""
        pass

    @abstractmethod
    def commit(self) -> None:
        """Commit the innermost transaction or savepoint"""
        pass

    @abstractmethod
    def rollback(self) -> None:
        """Roll back the innermost transaction or savepoint"""
        pass

    @contextmanager
    def atomic(self):
        """
        Unit of work. Yields the storage itself so callers can hand the open
        transaction to mutating operations.
        """
        self.begin_transaction()
        try:
            yield self
        except BaseException:
            self.rollback()
            raise
        else:
            self.commit()


def _matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    for key, value in filters.items():
        if key not in record or record[key] != value:
            return False
    return True


class InMemoryStorage(StorageInterface):
    """In-memory storage implementation for testing"""

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._snapshots: List[Dict[str, Dict[str, Dict[str, Any]]]] = []
        # Thread holding the open transaction
        self._owner: Optional[int] = None

    def _ensure_table(self, table: str) -> None:
        if table not in self._data:
            self._data[table] = {}

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        with self._lock:
            self._ensure_table(table)
            # Deep copy to prevent external mutation
            self._data[table][record_id] = json.loads(json.dumps(data, default=str))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record:
                return json.loads(json.dumps(record))
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            return [json.loads(json.dumps(record)) for record in self._data[table].values()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from memory"""
        with self._lock:
            self._ensure_table(table)
            if record_id in self._data[table]:
                del self._data[table][record_id]
                return True
            return False

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            return record_id in self._data[table]

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        with self._lock:
            self._ensure_table(table)
            return [json.loads(json.dumps(record))
                    for record in self._data[table].values()
                    if _matches(record, filters)]

    def count(self, table: str) -> int:
        with self._lock:
            self._ensure_table(table)
            return len(self._data[table])

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass

    @property
    def in_transaction(self) -> bool:
        return bool(self._snapshots) and self._owner == threading.get_ident()

    def begin_transaction(self) -> None:
        # Held until commit/rollback; re-entrant for savepoints
        self._lock.acquire()
        self._owner = threading.get_ident()
        self._snapshots.append(copy.deepcopy(self._data))

    def commit(self) -> None:
        if not self.in_transaction:
            return
        self._snapshots.pop()
        self._end_scope()

    def rollback(self) -> None:
        if not self.in_transaction:
            return
        self._data = self._snapshots.pop()
        self._end_scope()

    def _end_scope(self) -> None:
        if not self._snapshots:
            self._owner = None
        self._lock.release()


class SQLiteStorage(StorageInterface):
    """SQLite storage implementation for persistence"""

    def __init__(self, db_path: Union[str, Path] = ":memory:", timeout: float = 30.0):
        self.db_path = str(db_path)
        # Autocommit mode; transactions are opened explicitly with BEGIN IMMEDIATE
        self._connection = sqlite3.connect(
            self.db_path, check_same_thread=False, isolation_level=None, timeout=timeout
        )
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0
        self._owner: Optional[int] = None
        self._tables = set()

        if self.db_path != ":memory:":
            with self._lock:
                self._execute("PRAGMA journal_mode = WAL")
                self._execute("PRAGMA synchronous = NORMAL")

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        try:
            return self._connection.execute(sql, params)
        except sqlite3.OperationalError as e:
            raise TransactionAborted(f"SQLite operation failed: {e}") from e

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
        self._execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id TEXT PRIMARY KEY,
                data TEXT NOT NULL,
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
            now = datetime.now().isoformat()
            data_json = json.dumps(data, default=str)
            self._execute(f"""
                INSERT OR REPLACE INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?,
                    COALESCE((SELECT created_at FROM {table} WHERE id = ?), ?),
                    ?)
            """, (record_id, data_json, record_id, now, now))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._lock:
            self._ensure_table(table)
            row = self._execute(f"SELECT data FROM {table} WHERE id = ?", (record_id,)).fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._execute(f"SELECT data FROM {table} ORDER BY created_at, rowid")
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            cursor = self._execute(f"DELETE FROM {table} WHERE id = ?", (record_id,))
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            self._ensure_table(table)
            cursor = self._execute(f"SELECT 1 FROM {table} WHERE id = ? LIMIT 1", (record_id,))
            return cursor.fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters (simple JSON key matching)"""
        return [record for record in self.load_all(table) if _matches(record, filters)]

    def count(self, table: str) -> int:
        with self._lock:
            self._ensure_table(table)
            return self._execute(f"SELECT COUNT(*) AS count FROM {table}").fetchone()['count']

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0 and self._owner == threading.get_ident()

    def begin_transaction(self) -> None:
        self._lock.acquire()
        try:
            if self._depth == 0:
                self._execute("BEGIN IMMEDIATE")
            else:
                self._execute(f"SAVEPOINT sp_{self._depth}")
        except BaseException:
            self._lock.release()
            raise
        self._depth += 1
        self._owner = threading.get_ident()

    def commit(self) -> None:
        if not self.in_transaction:
            return
        self._depth -= 1
        if self._depth == 0:
            self._owner = None
        try:
            if self._depth == 0:
                self._execute("COMMIT")
            else:
                self._execute(f"RELEASE SAVEPOINT sp_{self._depth}")
        finally:
            self._lock.release()

    def rollback(self) -> None:
        if not self.in_transaction:
            return
        self._depth -= 1
        if self._depth == 0:
            self._owner = None
        # Tables created inside the rolled-back scope no longer exist
        self._tables.clear()
        try:
            if self._depth == 0:
                # SQLite may already have rolled back after a failed statement
                if self._connection.in_transaction:
                    self._execute("ROLLBACK")
            else:
                self._execute(f"ROLLBACK TO SAVEPOINT sp_{self._depth}")
                self._execute(f"RELEASE SAVEPOINT sp_{self._depth}")
        finally:
            self._lock.release()

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(database_url: str) -> StorageInterface:
    """
    Build a storage backend from a URL.

    Supported forms: ``memory://`` and ``sqlite:///path/to/file.db``
    (``sqlite://`` alone means an in-memory SQLite database).
    """
    if database_url.startswith("memory://"):
        return InMemoryStorage()
    if database_url.startswith("sqlite://"):
        path = database_url[len("sqlite:///"):] if database_url.startswith("sqlite:///") else ""
        return SQLiteStorage(path or ":memory:")
    raise ValueError(f"Unsupported database URL: {database_url}")
