"""
Ledger Storage Module

Keyed JSON document store behind the chart of accounts, the journal and the
audit trail. Records are plain dicts; amounts travel as Decimal strings.

Both backends return load_all() results in first-write order and support
atomic() blocks, which nest: an inner block joins the outer transaction.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Tuple, Union
from decimal import Decimal
from datetime import date, datetime
from enum import Enum
import sqlite3
import json
import re
import threading
from dataclasses import dataclass, fields
from pathlib import Path
from contextlib import contextmanager

ACCOUNTS_TABLE = "accounts"
JOURNAL_TABLE = "journal_entries"
AUDIT_TABLE = "audit_events"

_TABLE_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def to_plain(value: Any) -> Any:
    """Convert Decimals, dates and enums (recursively) to JSON-safe values"""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_plain(v) for v in value]
    return value


def _encode(data: Dict[str, Any]) -> str:
    return json.dumps(to_plain(data), separators=(',', ':'))


def _check_table(table: str) -> str:
    # Table names are interpolated into SQL
    if not _TABLE_NAME.match(table):
        raise ValueError(f"Invalid table name: {table!r}")
    return table


def _matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    return all(key in record and record[key] == value for key, value in filters.items())


@dataclass
class StorageRecord:
    """Base class for stored records with creation and update stamps"""
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Flat, JSON-safe representation for storage"""
        return {f.name: to_plain(getattr(self, f.name)) for f in fields(self)}


class StorageInterface(ABC):
    """
    Abstract interface for storage backends

    Subclasses implement the record operations and the _begin/_commit/_rollback
    hooks; atomic() takes care of nesting and locking.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._depth = 0

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert or replace a record; a replaced record keeps its position"""

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record, or None"""

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table in first-write order"""

    @abstractmethod
    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record; False if it did not exist"""

    @abstractmethod
    def count(self, table: str) -> int:
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    def exists(self, table: str, record_id: str) -> bool:
        return self.load(table, record_id) is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Records whose top-level keys equal every filter value"""
        return [record for record in self.load_all(table) if _matches(record, filters)]

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    def _begin(self) -> None:
        pass

    def _commit(self) -> None:
        pass

    def _rollback(self) -> None:
        pass

    @contextmanager
    def atomic(self):
        """
        Run a block as one transaction

        Every write in the block is kept on success and discarded if the
        block raises. Other threads are held off until the block ends.
        """
        with self._lock:
            outermost = self._depth == 0
            if outermost:
                self._begin()
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._depth -= 1
                if outermost:
                    self._rollback()
                raise
            self._depth -= 1
            if outermost:
                try:
                    self._commit()
                except BaseException:
                    self._rollback()
                    raise


class InMemoryStorage(StorageInterface):
    """
    In-memory storage for tests and single-process use

    Records are held encoded, so callers always get their own copy back.
    A transaction keeps an undo log of the first prior value of every record
    it touches.
    """

    def __init__(self):
        super().__init__()
        self._tables: Dict[str, Dict[str, str]] = {}
        self._undo: Dict[Tuple[str, str], Optional[str]] = {}

    def _table(self, table: str) -> Dict[str, str]:
        return self._tables.setdefault(_check_table(table), {})

    def _remember(self, table: str, record_id: str) -> None:
        key = (table, record_id)
        if self.in_transaction and key not in self._undo:
            self._undo[key] = self._table(table).get(record_id)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._remember(table, record_id)
            self._table(table)[record_id] = _encode(data)

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            encoded = self._table(table).get(record_id)
        return json.loads(encoded) if encoded is not None else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            encoded = list(self._table(table).values())
        return [json.loads(item) for item in encoded]

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            if record_id not in self._table(table):
                return False
            self._remember(table, record_id)
            del self._tables[table][record_id]
            return True

    def exists(self, table: str, record_id: str) -> bool:
        with self._lock:
            return record_id in self._table(table)

    def count(self, table: str) -> int:
        with self._lock:
            return len(self._table(table))

    def _begin(self) -> None:
        self._undo = {}

    def _commit(self) -> None:
        self._undo = {}

    def _rollback(self) -> None:
        undo, self._undo = self._undo, {}
        for (table, record_id), previous in undo.items():
            records = self._table(table)
            if previous is None:
                records.pop(record_id, None)
            else:
                records[record_id] = previous

    def close(self) -> None:
        pass


class SQLiteStorage(StorageInterface):
    """
    SQLite storage for persistence

    One table per record kind. The seq column fixes first-write order;
    an upsert keeps it.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        super().__init__()
        self.db_path = str(db_path)
        # isolation_level=None: transactions are opened explicitly in _begin
        self._connection = sqlite3.connect(self.db_path, check_same_thread=False,
                                           isolation_level=None)
        self._known_tables = set()

        if self.db_path != ":memory:":
            self._connection.execute("PRAGMA journal_mode = WAL")
            self._connection.execute("PRAGMA synchronous = NORMAL")

    def _table(self, table: str) -> str:
        _check_table(table)
        if table not in self._known_tables:
            self._connection.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    data TEXT NOT NULL
                )
            """)
            self._known_tables.add(table)
        return table

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        with self._lock:
            self._connection.execute(f"""
                INSERT INTO {self._table(table)} (id, data) VALUES (?, ?)
                ON CONFLICT(id) DO UPDATE SET data = excluded.data
            """, (record_id, _encode(data)))

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._connection.execute(
                f"SELECT data FROM {self._table(table)} WHERE id = ?", (record_id,)
            ).fetchone()
        return json.loads(row[0]) if row else None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        with self._lock:
            rows = self._connection.execute(
                f"SELECT data FROM {self._table(table)} ORDER BY seq"
            ).fetchall()
        return [json.loads(row[0]) for row in rows]

    def delete(self, table: str, record_id: str) -> bool:
        with self._lock:
            cursor = self._connection.execute(
                f"DELETE FROM {self._table(table)} WHERE id = ?", (record_id,)
            )
            return cursor.rowcount > 0

    def count(self, table: str) -> int:
        with self._lock:
            return self._connection.execute(
                f"SELECT COUNT(*) FROM {self._table(table)}"
            ).fetchone()[0]

    def _begin(self) -> None:
        self._connection.execute("BEGIN")

    def _commit(self) -> None:
        self._connection.execute("COMMIT")

    def _rollback(self) -> None:
        self._connection.execute("ROLLBACK")
        # Tables created inside the transaction are gone again
        self._known_tables.clear()

    def close(self) -> None:
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None


def create_storage(database_url: str) -> StorageInterface:
    """
    Build a storage backend from a URL

    Supports ``memory://`` and ``sqlite:///<path>`` (``sqlite:///:memory:``
    for a throwaway database).
    """
    if database_url.startswith("memory://"):
        return InMemoryStorage()
    if database_url.startswith("sqlite:///"):
        return SQLiteStorage(database_url[len("sqlite:///"):] or ":memory:")
    raise ValueError(f"Unsupported database URL: {database_url}")
