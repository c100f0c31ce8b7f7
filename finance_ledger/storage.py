"""
Storage Backend Module

Provides the abstract storage interface and implementations for in-memory
(testing), SQLite and PostgreSQL. All monetary values are stored as Decimal
strings.

Every backend supports atomic units of work with exclusive row locks held
until the outermost unit commits or rolls back, plus post-commit hooks.
"""

from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Any, Tuple, Union
from decimal import Decimal
from datetime import datetime, timezone
import sqlite3
import json
import threading
from dataclasses import dataclass, asdict
from pathlib import Path
from contextlib import contextmanager

from .exceptions import LockTimeoutError
from .logging_config import get_logger


DEFAULT_LOCK_TIMEOUT = 30.0

logger = get_logger("finance_ledger.storage")


@dataclass
class StorageRecord:
    """Base class for all stored records"""
    id: str
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result = asdict(self)
        # Convert datetime objects to ISO strings
        result['created_at'] = self.created_at.isoformat()
        result['updated_at'] = self.updated_at.isoformat()
        # Convert Decimal objects to strings
        for key, value in result.items():
            if isinstance(value, Decimal):
                result[key] = str(value)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StorageRecord':
        """Create instance from dictionary"""
        # Convert ISO strings back to datetime objects
        if 'created_at' in data and isinstance(data['created_at'], str):
            data['created_at'] = datetime.fromisoformat(data['created_at'])
        if 'updated_at' in data and isinstance(data['updated_at'], str):
            data['updated_at'] = datetime.fromisoformat(data['updated_at'])

        return cls(**data)


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    def __init__(self, lock_timeout: float = DEFAULT_LOCK_TIMEOUT):
        self.lock_timeout = lock_timeout
        # Unit-of-work state is bound to the calling thread
        self._local = threading.local()

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save (insert or replace) a record"""
        pass

    @abstractmethod
    def create_if_absent(self, table: str, record_id: str, data: Dict[str, Any]) -> bool:
        """Insert a record only if its id is unused; return True if inserted"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    def lock_row(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """
        Take an exclusive lock on a record and return its current data.

        Must be called inside atomic(). The lock is held until the outermost
        unit of work ends. Raises LockTimeoutError when the wait exceeds
        lock_timeout.
        """
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table in creation order"""
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
        """Find records matching filters, in creation order"""
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

    def begin_transaction(self) -> None:
        """Start a database transaction (default no-op)"""
        pass

    def commit(self) -> None:
        """Commit current transaction (default no-op)"""
        pass

    def rollback(self) -> None:
        """Rollback current transaction (default no-op)"""
        pass

    @property
    def in_transaction(self) -> bool:
        """True while the calling thread is inside atomic()"""
        return getattr(self._local, 'depth', 0) > 0

    def on_commit(self, callback: Callable[[], None]) -> None:
        """
        Run callback after the outermost unit of work commits.

        Callbacks registered by a unit of work that rolls back are dropped.
        Outside a unit of work the callback runs immediately.
        """
        if self.in_transaction:
            self._local.hooks.append(callback)
        else:
            callback()

    @contextmanager
    def atomic(self):
        """
        Context manager for atomic operations.

        Nested blocks join the outermost unit of work; only the outermost
        block commits or rolls back.
        """
        depth = getattr(self._local, 'depth', 0)
        if depth:
            self._local.depth = depth + 1
            try:
                yield
            finally:
                self._local.depth -= 1
            return

        self.begin_transaction()
        self._local.depth = 1
        self._local.hooks = []
        try:
            yield
        except BaseException:
            self._local.depth = 0
            self._local.hooks = []
            self.rollback()
            raise

        self._local.depth = 0
        hooks, self._local.hooks = self._local.hooks, []
        self.commit()

        for hook in hooks:
            try:
                hook()
            except Exception as e:
                # The unit of work is already durable
                logger.error(f"Post-commit hook {getattr(hook, '__name__', repr(hook))} failed: {e}")

    def _require_transaction(self, table: str, record_id: str) -> None:
        if not self.in_transaction:
            raise RuntimeError(f"lock_row({table}, {record_id}) called outside atomic()")


class InMemoryStorage(StorageInterface):
    """
    In-memory storage implementation for testing.

    Units of work keep an undo log so rollback restores every row they
    touched. Row locks are real per-row locks, so concurrent units of work
    in different threads serialize exactly like they would on a database.
    """

    def __init__(self, lock_timeout: float = DEFAULT_LOCK_TIMEOUT):
        super().__init__(lock_timeout)
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.RLock()
        self._row_locks: Dict[Tuple[str, str], threading.Lock] = {}

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists"""
        if table not in self._data:
            self._data[table] = {}

    @staticmethod
    def _copy(data: Dict[str, Any]) -> Dict[str, Any]:
        # Deep copy to prevent external mutation
        return json.loads(json.dumps(data, default=str))

    def _record_undo(self, table: str, record_id: str) -> None:
        """Remember a row's prior state the first time a unit of work touches it"""
        if not self.in_transaction:
            return
        undo = self._local.undo
        key = (table, record_id)
        if key in self._local.touched:
            return
        self._local.touched.add(key)
        previous = self._data[table].get(record_id)
        undo.append((table, record_id, self._copy(previous) if previous is not None else None))

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        with self._lock:
            self._ensure_table(table)
            self._record_undo(table, record_id)
            self._data[table][record_id] = self._copy(data)

    def create_if_absent(self, table: str, record_id: str, data: Dict[str, Any]) -> bool:
        """
        Insert a record only if the id is free.

        Inside a unit of work the inserted row stays locked until the unit
        ends, so a concurrent inserter of the same id waits for it to commit
        or roll back.
        """
        acquired = self._acquire_row_lock(table, record_id) if self.in_transaction else False
        with self._lock:
            self._ensure_table(table)
            inserted = record_id not in self._data[table]
            if inserted:
                self._record_undo(table, record_id)
                self._data[table][record_id] = self._copy(data)
        if acquired and not inserted:
            self._release_row_lock(table, record_id)
        return inserted

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        with self._lock:
            self._ensure_table(table)
            record = self._data[table].get(record_id)
            if record:
                return self._copy(record)
            return None

    def lock_row(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Acquire the per-row lock, blocking up to lock_timeout"""
        self._require_transaction(table, record_id)
        self._acquire_row_lock(table, record_id)
        return self.load(table, record_id)

    def _acquire_row_lock(self, table: str, record_id: str) -> bool:
        """Take the row lock for the calling unit of work; False if already held"""
        key = (table, record_id)
        if key in self._local.held:
            return False
        with self._lock:
            row_lock = self._row_locks.setdefault(key, threading.Lock())
        # Wait outside the storage lock so other units can finish
        if not row_lock.acquire(timeout=self.lock_timeout):
            raise LockTimeoutError(table, record_id, self.lock_timeout)
        self._local.held.append(key)
        return True

    def _release_row_lock(self, table: str, record_id: str) -> None:
        key = (table, record_id)
        self._local.held.remove(key)
        with self._lock:
            self._row_locks[key].release()

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            return [self._copy(record) for record in self._data[table].values()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from memory"""
        with self._lock:
            self._ensure_table(table)
            if record_id in self._data[table]:
                self._record_undo(table, record_id)
                del self._data[table][record_id]
                return True
            return False

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
                    results.append(self._copy(record))
            return results

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            return len(self._data[table])

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._ensure_table(table)
            for record_id in list(self._data[table]):
                self._record_undo(table, record_id)
            self._data[table] = {}

    def begin_transaction(self) -> None:
        """Start a unit of work for the calling thread"""
        self._local.undo = []
        self._local.touched = set()
        self._local.held = []

    def commit(self) -> None:
        """Keep all changes and release row locks"""
        self._local.undo = []
        self._local.touched = set()
        self._release_row_locks()

    def rollback(self) -> None:
        """Restore every row touched by the unit of work, then release row locks"""
        with self._lock:
            for table, record_id, previous in reversed(self._local.undo):
                if previous is None:
                    self._data[table].pop(record_id, None)
                else:
                    self._data[table][record_id] = previous
        self._local.undo = []
        self._local.touched = set()
        self._release_row_locks()

    def _release_row_locks(self) -> None:
        held = getattr(self._local, 'held', [])
        with self._lock:
            for key in held:
                self._row_locks[key].release()
        self._local.held = []

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStorage(StorageInterface):
    """
    SQLite storage implementation for persistence.

    SQLite locks at database granularity: a unit of work opens with
    BEGIN IMMEDIATE and owns the connection until it ends, so row locks
    are implied by the unit of work itself.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:", lock_timeout: float = DEFAULT_LOCK_TIMEOUT):
        super().__init__(lock_timeout)
        self.db_path = str(db_path)
        # Autocommit mode; units of work issue explicit BEGIN IMMEDIATE
        self._connection = sqlite3.connect(
            self.db_path,
            check_same_thread=False,
            isolation_level=None,
            timeout=lock_timeout
        )
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._tables: set = set()

        # Enable WAL mode for better concurrent access
        if self.db_path != ":memory:":
            with self._lock:
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
        with self._lock:
            self._connection.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    id TEXT PRIMARY KEY,
                    data TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            # Create index on timestamps for better query performance
            self._connection.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{table}_created_at
                ON {table}(created_at)
            """)
            self._tables.add(table)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to SQLite"""
        with self._lock:
            self._ensure_table(table)

            now = datetime.now(timezone.utc).isoformat()
            data_json = json.dumps(data, default=str)

            # Keep the original created_at (and rowid order) on updates
            self._connection.execute(f"""
                INSERT INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    data = excluded.data,
                    updated_at = excluded.updated_at
            """, (record_id, data_json, now, now))

    def create_if_absent(self, table: str, record_id: str, data: Dict[str, Any]) -> bool:
        """Insert a record only if the id is free"""
        with self._lock:
            self._ensure_table(table)
            now = datetime.now(timezone.utc).isoformat()
            cursor = self._connection.execute(f"""
                INSERT OR IGNORE INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?, ?, ?)
            """, (record_id, json.dumps(data, default=str), now, now))
            return cursor.rowcount > 0

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} WHERE id = ?
            """, (record_id,))
            row = cursor.fetchone()
            if row:
                return json.loads(row['data'])
            return None

    def lock_row(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """The unit of work already holds the database write lock"""
        self._require_transaction(table, record_id)
        return self.load(table, record_id)

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} ORDER BY rowid
            """)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from SQLite"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                DELETE FROM {table} WHERE id = ?
            """, (record_id,))
            return cursor.rowcount > 0

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT 1 FROM {table} WHERE id = ? LIMIT 1
            """, (record_id,))
            return cursor.fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters (simple JSON key matching)"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} ORDER BY rowid
            """)

            results = []
            for row in cursor.fetchall():
                record = json.loads(row['data'])
                match = True
                for key, value in filters.items():
                    if key not in record or record[key] != value:
                        match = False
                        break
                if match:
                    results.append(record)

            return results

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.execute(f"""
                SELECT COUNT(*) as count FROM {table}
            """)
            return cursor.fetchone()['count']

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._ensure_table(table)
            self._connection.execute(f"DELETE FROM {table}")

    def begin_transaction(self) -> None:
        """Take ownership of the connection and the database write lock"""
        if not self._lock.acquire(timeout=self.lock_timeout):
            raise LockTimeoutError("database", self.db_path, self.lock_timeout)
        try:
            self._connection.execute("BEGIN IMMEDIATE")
        except sqlite3.OperationalError as e:
            self._lock.release()
            if "locked" in str(e):
                raise LockTimeoutError("database", self.db_path, self.lock_timeout) from e
            raise

    def commit(self) -> None:
        """Commit current transaction"""
        try:
            self._connection.execute("COMMIT")
        finally:
            self._lock.release()

    def rollback(self) -> None:
        """Rollback current transaction"""
        try:
            self._connection.execute("ROLLBACK")
        finally:
            # Tables created inside the unit of work were rolled back too
            self._tables.clear()
            self._lock.release()

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


class PostgreSQLStorage(StorageInterface):
    """
    PostgreSQL storage backend with ACID transaction support.

    Row locks use SELECT ... FOR UPDATE bounded by SET LOCAL lock_timeout.
    One instance owns one connection; run one instance per worker for
    parallel units of work.
    """

    def __init__(self, connection_string: str, lock_timeout: float = DEFAULT_LOCK_TIMEOUT):
        super().__init__(lock_timeout)
        try:
            import psycopg2
            import psycopg2.errors
            import psycopg2.extras
            self.psycopg2 = psycopg2
            self.extras = psycopg2.extras
        except ImportError:
            raise ImportError("psycopg2 is required for PostgreSQL storage. Install with: pip install psycopg2-binary")

        self.connection_string = connection_string
        self._connection = None
        self._lock = threading.RLock()
        self._tables: set = set()
        self._connect()

    def _connect(self) -> None:
        """Establish database connection"""
        with self._lock:
            if self._connection:
                try:
                    self._connection.close()
                except self.psycopg2.Error:
                    pass

            self._connection = self.psycopg2.connect(
                self.connection_string,
                cursor_factory=self.extras.RealDictCursor
            )
            self._connection.autocommit = False  # We handle transactions manually

    def _finish(self) -> None:
        """Commit single statements issued outside a unit of work"""
        if not self.in_transaction:
            self._connection.commit()

    def _ensure_table(self, table: str) -> None:
        """Ensure table exists with proper schema"""
        if table in self._tables:
            return
        with self._lock:
            cursor = self._connection.cursor()
            try:
                cursor.execute(f"""
                    CREATE TABLE IF NOT EXISTS {table} (
                        seq BIGSERIAL,
                        id TEXT PRIMARY KEY,
                        data JSONB NOT NULL,
                        created_at TIMESTAMP DEFAULT NOW(),
                        updated_at TIMESTAMP DEFAULT NOW()
                    )
                """)
                cursor.execute(f"""
                    CREATE INDEX IF NOT EXISTS idx_{table}_data
                    ON {table} USING gin(data)
                """)
                cursor.execute(f"""
                    CREATE INDEX IF NOT EXISTS idx_{table}_seq
                    ON {table}(seq)
                """)
                self._finish()
                self._tables.add(table)
            finally:
                cursor.close()

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to PostgreSQL using UPSERT"""
        with self._lock:
            self._ensure_table(table)

            now = datetime.now(timezone.utc)
            data_json = json.dumps(data, default=str)

            cursor = self._connection.cursor()
            try:
                cursor.execute(f"""
                    INSERT INTO {table} (id, data, created_at, updated_at)
                    VALUES (%s, %s, %s, %s)
                    ON CONFLICT (id) DO UPDATE SET
                        data = EXCLUDED.data,
                        updated_at = EXCLUDED.updated_at
                """, (record_id, data_json, now, now))
                self._finish()
            finally:
                cursor.close()

    def create_if_absent(self, table: str, record_id: str, data: Dict[str, Any]) -> bool:
        """Insert a record only if the id is free"""
        with self._lock:
            self._ensure_table(table)
            now = datetime.now(timezone.utc)
            cursor = self._connection.cursor()
            try:
                cursor.execute(f"""
                    INSERT INTO {table} (id, data, created_at, updated_at)
                    VALUES (%s, %s, %s, %s)
                    ON CONFLICT (id) DO NOTHING
                """, (record_id, json.dumps(data, default=str), now, now))
                inserted = cursor.rowcount > 0
                self._finish()
                return inserted
            finally:
                cursor.close()

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from PostgreSQL"""
        with self._lock:
            self._ensure_table(table)

            cursor = self._connection.cursor()
            try:
                cursor.execute(f"""
                    SELECT data FROM {table} WHERE id = %s
                """, (record_id,))
                row = cursor.fetchone()
                if row:
                    return dict(row['data'])
                return None
            finally:
                cursor.close()

    def lock_row(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """SELECT ... FOR UPDATE, bounded by the unit of work's lock_timeout"""
        self._require_transaction(table, record_id)
        with self._lock:
            self._ensure_table(table)
            cursor = self._connection.cursor()
            try:
                cursor.execute(f"""
                    SELECT data FROM {table} WHERE id = %s FOR UPDATE
                """, (record_id,))
                row = cursor.fetchone()
                return dict(row['data']) if row else None
            except self.psycopg2.errors.LockNotAvailable as e:
                raise LockTimeoutError(table, record_id, self.lock_timeout) from e
            finally:
                cursor.close()

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        return self.find(table, {})

    def delete(self, table: str, record_id: str) -> bool:
        """Delete a record from PostgreSQL"""
        with self._lock:
            self._ensure_table(table)

            cursor = self._connection.cursor()
            try:
                cursor.execute(f"""
                    DELETE FROM {table} WHERE id = %s
                """, (record_id,))
                self._finish()
                return cursor.rowcount > 0
            finally:
                cursor.close()

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        with self._lock:
            self._ensure_table(table)

            cursor = self._connection.cursor()
            try:
                cursor.execute(f"""
                    SELECT 1 FROM {table} WHERE id = %s LIMIT 1
                """, (record_id,))
                return cursor.fetchone() is not None
            finally:
                cursor.close()

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters using JSONB operators"""
        with self._lock:
            self._ensure_table(table)

            cursor = self._connection.cursor()
            try:
                conditions = []
                params: List[Any] = []
                for key, value in filters.items():
                    if value is None:
                        conditions.append("data ->> %s IS NULL")
                        params.append(key)
                    else:
                        conditions.append("data ->> %s = %s")
                        # JSON booleans come back from ->> as 'true'/'false'
                        params.extend([key, json.dumps(value) if isinstance(value, bool) else str(value)])

                where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""
                cursor.execute(f"""
                    SELECT data FROM {table}
                    {where_clause}
                    ORDER BY seq
                """, params)

                return [dict(row['data']) for row in cursor.fetchall()]
            finally:
                cursor.close()

    def count(self, table: str) -> int:
        """Count records in table"""
        with self._lock:
            self._ensure_table(table)

            cursor = self._connection.cursor()
            try:
                cursor.execute(f"""
                    SELECT COUNT(*) as count FROM {table}
                """)
                return cursor.fetchone()['count']
            finally:
                cursor.close()

    def clear_table(self, table: str) -> None:
        """Clear all records from a table"""
        with self._lock:
            self._ensure_table(table)

            cursor = self._connection.cursor()
            try:
                cursor.execute(f"DELETE FROM {table}")
                self._finish()
            finally:
                cursor.close()

    def begin_transaction(self) -> None:
        """Own the connection and bound lock waits for this transaction"""
        if not self._lock.acquire(timeout=self.lock_timeout):
            raise LockTimeoutError("connection", "postgresql", self.lock_timeout)
        cursor = self._connection.cursor()
        try:
            # PostgreSQL transactions start automatically
            cursor.execute("SET LOCAL lock_timeout = %s", (f"{int(self.lock_timeout * 1000)}ms",))
        except self.psycopg2.Error:
            self._connection.rollback()
            self._lock.release()
            raise
        finally:
            cursor.close()

    def commit(self) -> None:
        """Commit current transaction"""
        try:
            self._connection.commit()
        finally:
            self._lock.release()

    def rollback(self) -> None:
        """Rollback current transaction"""
        try:
            self._connection.rollback()
        finally:
            self._tables.clear()
            self._lock.release()

    def close(self) -> None:
        """Close PostgreSQL connection"""
        with self._lock:
            if self._connection:
                try:
                    self._connection.close()
                except self.psycopg2.Error:
                    pass
                self._connection = None


def create_storage(database_url: str, lock_timeout: float = DEFAULT_LOCK_TIMEOUT) -> StorageInterface:
    """
    Select a storage backend from a database URL.

    memory:// selects InMemoryStorage, sqlite:///path selects SQLiteStorage,
    postgresql:// (or postgres://) selects PostgreSQLStorage.
    """
    if database_url.startswith("memory://"):
        return InMemoryStorage(lock_timeout=lock_timeout)
    if database_url.startswith("sqlite:///"):
        return SQLiteStorage(database_url[len("sqlite:///"):] or ":memory:", lock_timeout=lock_timeout)
    if database_url.startswith(("postgresql://", "postgres://")):
        return PostgreSQLStorage(database_url, lock_timeout=lock_timeout)
    raise ValueError(f"Unsupported database URL: {database_url}")
