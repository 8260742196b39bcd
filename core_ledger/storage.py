"""
Storage Backend Module

Provides abstract storage interface and implementations for in-memory (testing),
SQLite (persistence) and PostgreSQL (production). Records are JSON documents;
all monetary values are stored as Decimal strings.

Tables declare unique fields so the store itself performs an atomic
check-and-insert; callers never rely on a read-then-write for uniqueness.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any, Iterator, Tuple, Union
from datetime import datetime, timezone
from dataclasses import dataclass, field
from pathlib import Path
from contextlib import contextmanager, nullcontext
import sqlite3
import json
import re
import threading

from .exceptions import DuplicateKeyError, StaleRecordError, TransientStoreError


VERSION_FIELD = "version"

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _check_identifier(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid table or field name: {name!r}")
    return name


def _copy(data: Dict[str, Any]) -> Dict[str, Any]:
    """Deep copy through JSON to prevent external mutation"""
    return json.loads(json.dumps(data, default=str))


@dataclass(frozen=True)
class TableSchema:
    """Declared constraints of a document table"""
    name: str
    unique_fields: Tuple[str, ...] = ()
    indexed_fields: Tuple[str, ...] = ()


class StorageInterface(ABC):
    """Abstract interface for storage backends"""

    def __init__(self):
        self._schemas: Dict[str, TableSchema] = {}

    def register_table(self, table: str, unique_fields: Tuple[str, ...] = (),
                       indexed_fields: Tuple[str, ...] = ()) -> None:
        """Declare a table and its unique/indexed JSON fields"""
        _check_identifier(table)
        for name in (*unique_fields, *indexed_fields):
            _check_identifier(name)
        schema = TableSchema(table, tuple(unique_fields), tuple(indexed_fields))
        self._schemas[table] = schema
        self._create_table(schema)

    def _create_table(self, schema: TableSchema) -> None:
        """Create backing structures for a table (default no-op)"""
        pass

    def _schema(self, table: str) -> TableSchema:
        if table not in self._schemas:
            self.register_table(table)
        return self._schemas[table]

    @abstractmethod
    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert a new record; raises DuplicateKeyError on id or unique field conflict"""
        pass

    @abstractmethod
    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert or replace a record"""
        pass

    @abstractmethod
    def update(self, table: str, record_id: str, data: Dict[str, Any],
               expected_version: int) -> None:
        """Replace a record only if its stored version equals expected_version"""
        pass

    @abstractmethod
    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from storage"""
        pass

    @abstractmethod
    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table in insertion order"""
        pass

    @abstractmethod
    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        pass

    @abstractmethod
    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records whose fields equal all filter values"""
        pass

    @abstractmethod
    def count(self, table: str) -> int:
        """Count records in table"""
        pass

    @abstractmethod
    def next_sequence(self, name: str) -> int:
        """Allocate the next value of a named sequence (values are never reused)"""
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

    def _unit_guard(self):
        """Lock held for the whole of a unit of work (default none)"""
        return nullcontext()

    @contextmanager
    def atomic(self):
        """Context manager for atomic operations"""
        with self._unit_guard():
            self.begin_transaction()
            try:
                yield
                self.commit()
            except Exception:
                self.rollback()
                raise


@dataclass
class _UnitOfWork:
    """Writes buffered by one thread until commit"""
    depth: int = 1
    operations: List[Tuple[str, str, str, Dict[str, Any], Optional[int]]] = field(default_factory=list)
    overlay: Dict[str, Dict[str, Dict[str, Any]]] = field(default_factory=dict)


class InMemoryStorage(StorageInterface):
    """
    In-memory storage implementation for testing.

    Each thread gets its own unit of work: writes inside ``atomic()`` are
    buffered, visible only to that thread, and applied under the storage
    lock at commit after every constraint is checked again.
    """

    def __init__(self):
        super().__init__()
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._sequences: Dict[str, int] = {}
        self._lock = threading.RLock()
        self._local = threading.local()

    def _create_table(self, schema: TableSchema) -> None:
        with self._lock:
            self._data.setdefault(schema.name, {})

    def _unit(self) -> Optional[_UnitOfWork]:
        return getattr(self._local, "unit", None)

    def _rows(self, table: str) -> Dict[str, Dict[str, Any]]:
        """Committed rows merged with this thread's pending writes"""
        self._schema(table)
        with self._lock:
            rows = dict(self._data[table])
        unit = self._unit()
        if unit and table in unit.overlay:
            rows.update(unit.overlay[table])
        return rows

    def _check_write(self, rows: Dict[str, Dict[str, Any]], kind: str, table: str,
                     record_id: str, data: Dict[str, Any], expected_version: Optional[int]) -> None:
        if kind == "insert" and record_id in rows:
            raise DuplicateKeyError(table, "id", record_id)

        if kind == "update":
            current = rows.get(record_id)
            if current is None:
                raise StaleRecordError(f"{table}/{record_id} does not exist")
            if current.get(VERSION_FIELD) != expected_version:
                raise StaleRecordError(
                    f"{table}/{record_id} is at version {current.get(VERSION_FIELD)}, expected {expected_version}"
                )

        for name in self._schemas[table].unique_fields:
            value = data.get(name)
            if value is None:
                continue
            for other_id, other in rows.items():
                if other_id != record_id and other.get(name) == value:
                    raise DuplicateKeyError(table, name, value)

    def _write(self, kind: str, table: str, record_id: str, data: Dict[str, Any],
               expected_version: Optional[int] = None) -> None:
        data = _copy(data)
        unit = self._unit()
        if unit is None:
            self._apply([(kind, table, record_id, data, expected_version)])
            return

        # Fail fast against what this thread can see; commit checks again
        self._check_write(self._rows(table), kind, table, record_id, data, expected_version)
        unit.operations.append((kind, table, record_id, data, expected_version))
        unit.overlay.setdefault(table, {})[record_id] = data

    def _apply(self, operations) -> None:
        with self._lock:
            staged: Dict[str, Dict[str, Dict[str, Any]]] = {}
            for kind, table, record_id, data, expected_version in operations:
                self._schema(table)
                if table not in staged:
                    staged[table] = dict(self._data[table])
                self._check_write(staged[table], kind, table, record_id, data, expected_version)
                staged[table][record_id] = data
            self._data.update(staged)

    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert a new record"""
        self._write("insert", table, record_id, data)

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to memory"""
        self._write("save", table, record_id, data)

    def update(self, table: str, record_id: str, data: Dict[str, Any],
               expected_version: int) -> None:
        """Compare-and-swap update on the version field"""
        self._write("update", table, record_id, data, expected_version)

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from memory"""
        record = self._rows(table).get(record_id)
        if record:
            return _copy(record)
        return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        return [_copy(record) for record in self._rows(table).values()]

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        return record_id in self._rows(table)

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters"""
        results = []
        for record in self._rows(table).values():
            if all(record.get(key) == value for key, value in filters.items()):
                results.append(_copy(record))
        return results

    def count(self, table: str) -> int:
        """Count records in table"""
        return len(self._rows(table))

    def next_sequence(self, name: str) -> int:
        """Allocate next sequence value"""
        with self._lock:
            value = self._sequences.get(name, 0) + 1
            self._sequences[name] = value
            return value

    def begin_transaction(self) -> None:
        """Start (or nest into) this thread's unit of work"""
        unit = self._unit()
        if unit is None:
            self._local.unit = _UnitOfWork()
        else:
            unit.depth += 1

    def commit(self) -> None:
        """Apply buffered writes when the outermost unit of work ends"""
        unit = self._unit()
        if unit is None:
            return
        unit.depth -= 1
        if unit.depth > 0:
            return
        self._local.unit = None
        self._apply(unit.operations)

    def rollback(self) -> None:
        """Discard buffered writes"""
        self._local.unit = None

    def close(self) -> None:
        """Close storage (no-op for in-memory)"""
        pass


class SQLiteStorage(StorageInterface):
    """
    SQLite storage implementation for persistence.

    A single connection is shared by all threads; a unit of work holds the
    connection lock from begin to commit, so units of work on one SQLite
    store run one at a time.
    """

    def __init__(self, db_path: Union[str, Path] = ":memory:", timeout: float = 5.0):
        super().__init__()
        self.db_path = str(db_path)
        # Set isolation_level to 'DEFERRED' to enable manual transaction control
        self._connection = sqlite3.connect(
            self.db_path, check_same_thread=False, isolation_level='DEFERRED', timeout=timeout
        )
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0

        with self._lock:
            if self.db_path != ":memory:":
                # Enable WAL mode for better concurrent access
                self._connection.execute("PRAGMA journal_mode = WAL")
                self._connection.execute("PRAGMA synchronous = NORMAL")
            self._connection.execute("""
                CREATE TABLE IF NOT EXISTS _sequences (
                    name TEXT PRIMARY KEY,
                    value INTEGER NOT NULL
                )
            """)
            self._connection.commit()

    @contextmanager
    def _translate_errors(self, table: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.IntegrityError as e:
            raise self._duplicate_from(table, str(e)) from e
        except sqlite3.OperationalError as e:
            message = str(e).lower()
            if "locked" in message or "busy" in message:
                raise TransientStoreError(str(e)) from e
            raise

    @staticmethod
    def _duplicate_from(table: str, message: str) -> DuplicateKeyError:
        match = re.search(r"index '([^']+)'", message)
        prefix = f"ux_{table}_"
        if match and match.group(1).startswith(prefix):
            return DuplicateKeyError(table, match.group(1)[len(prefix):])
        if f"{table}.id" in message:
            return DuplicateKeyError(table, "id")
        return DuplicateKeyError(table, "unknown")

    def _create_table(self, schema: TableSchema) -> None:
        """Ensure table exists with proper schema"""
        table = schema.name
        with self._lock:
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
            for name in schema.unique_fields:
                self._connection.execute(f"""
                    CREATE UNIQUE INDEX IF NOT EXISTS ux_{table}_{name}
                    ON {table}(json_extract(data, '$.{name}'))
                """)
            for name in schema.indexed_fields:
                self._connection.execute(f"""
                    CREATE INDEX IF NOT EXISTS ix_{table}_{name}
                    ON {table}(json_extract(data, '$.{name}'))
                """)
            if not self._depth:
                self._connection.commit()

    def _autocommit(self) -> None:
        # Only commit if not in transaction
        if not self._depth:
            self._connection.commit()

    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert a new record"""
        self._schema(table)
        now = datetime.now(timezone.utc).isoformat()
        with self._lock, self._translate_errors(table):
            self._connection.execute(f"""
                INSERT INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?, ?, ?)
            """, (record_id, json.dumps(data, default=str), now, now))
            self._autocommit()

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to SQLite"""
        self._schema(table)
        now = datetime.now(timezone.utc).isoformat()
        with self._lock, self._translate_errors(table):
            # ON CONFLICT(id) keeps unique indexes enforced; OR REPLACE would delete the other row
            self._connection.execute(f"""
                INSERT INTO {table} (id, data, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    data = excluded.data,
                    updated_at = excluded.updated_at
            """, (record_id, json.dumps(data, default=str), now, now))
            self._autocommit()

    def update(self, table: str, record_id: str, data: Dict[str, Any],
               expected_version: int) -> None:
        """Compare-and-swap update on the version field"""
        self._schema(table)
        now = datetime.now(timezone.utc).isoformat()
        with self._lock, self._translate_errors(table):
            cursor = self._connection.execute(f"""
                UPDATE {table} SET data = ?, updated_at = ?
                WHERE id = ? AND json_extract(data, '$.{VERSION_FIELD}') = ?
            """, (json.dumps(data, default=str), now, record_id, expected_version))
            if cursor.rowcount == 0:
                raise StaleRecordError(f"{table}/{record_id} is not at version {expected_version}")
            self._autocommit()

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from SQLite"""
        self._schema(table)
        with self._lock, self._translate_errors(table):
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} WHERE id = ?
            """, (record_id,))
            row = cursor.fetchone()
        if row:
            return json.loads(row['data'])
        return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        return self.find(table, {})

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        self._schema(table)
        with self._lock, self._translate_errors(table):
            cursor = self._connection.execute(f"""
                SELECT 1 FROM {table} WHERE id = ? LIMIT 1
            """, (record_id,))
            return cursor.fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters using JSON1 field extraction"""
        self._schema(table)
        conditions = []
        params: List[Any] = []
        for key, value in filters.items():
            _check_identifier(key)
            if value is None:
                conditions.append(f"json_extract(data, '$.{key}') IS NULL")
            else:
                conditions.append(f"json_extract(data, '$.{key}') = ?")
                params.append(value)
        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        with self._lock, self._translate_errors(table):
            cursor = self._connection.execute(f"""
                SELECT data FROM {table} {where_clause}
                ORDER BY created_at, rowid
            """, params)
            return [json.loads(row['data']) for row in cursor.fetchall()]

    def count(self, table: str) -> int:
        """Count records in table"""
        self._schema(table)
        with self._lock, self._translate_errors(table):
            cursor = self._connection.execute(f"""
                SELECT COUNT(*) as count FROM {table}
            """)
            return cursor.fetchone()['count']

    def next_sequence(self, name: str) -> int:
        """Allocate next sequence value"""
        with self._lock, self._translate_errors("_sequences"):
            self._connection.execute("""
                INSERT INTO _sequences (name, value) VALUES (?, 1)
                ON CONFLICT(name) DO UPDATE SET value = value + 1
            """, (name,))
            cursor = self._connection.execute("""
                SELECT value FROM _sequences WHERE name = ?
            """, (name,))
            value = cursor.fetchone()['value']
            self._autocommit()
            return value

    def _unit_guard(self):
        return self._lock

    def begin_transaction(self) -> None:
        """Start a database transaction"""
        with self._lock:
            # SQLite with isolation_level='DEFERRED' automatically starts transactions
            # We just need to track the depth
            self._depth += 1

    def commit(self) -> None:
        """Commit current transaction"""
        with self._lock:
            if not self._depth:
                return
            self._depth -= 1
            if not self._depth:
                with self._translate_errors("_commit"):
                    self._connection.commit()

    def rollback(self) -> None:
        """Rollback current transaction"""
        with self._lock:
            self._depth = 0
            self._connection.rollback()

    def close(self) -> None:
        """Close SQLite connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


class PostgreSQLStorage(StorageInterface):
    """PostgreSQL storage backend with ACID transaction support"""

    def __init__(self, connection_string: str, timeout: float = 5.0):
        super().__init__()
        try:
            import psycopg2
            import psycopg2.errors
            import psycopg2.extras
            self.psycopg2 = psycopg2
            self.extras = psycopg2.extras
        except ImportError:
            raise ImportError("psycopg2 is required for PostgreSQL storage. Install with: pip install psycopg2-binary")

        self.connection_string = connection_string
        self.timeout = timeout
        self._connection = None
        self._lock = threading.RLock()
        self._depth = 0
        self._connect()

    def _connect(self) -> None:
        """Establish database connection"""
        with self._lock:
            self._connection = self.psycopg2.connect(
                self.connection_string,
                cursor_factory=self.extras.RealDictCursor,
                connect_timeout=max(1, int(self.timeout)),
                options=f"-c statement_timeout={int(self.timeout * 1000)}"
            )
            self._connection.autocommit = False  # We handle transactions manually

    @contextmanager
    def _cursor(self, table: str) -> Iterator[Any]:
        """Cursor with driver errors mapped onto ledger store errors"""
        errors = self.psycopg2.errors
        cursor = self._connection.cursor()
        try:
            yield cursor
        except errors.UniqueViolation as e:
            raise self._duplicate_from(table, e.diag.constraint_name or "") from e
        except (errors.QueryCanceled, errors.LockNotAvailable,
                self.psycopg2.extensions.TransactionRollbackError,
                self.psycopg2.OperationalError) as e:
            if not self._depth:
                self._connection.rollback()
            raise TransientStoreError(str(e)) from e
        finally:
            cursor.close()

    @staticmethod
    def _duplicate_from(table: str, constraint: str) -> DuplicateKeyError:
        prefix = f"ux_{table}_"
        if constraint.startswith(prefix):
            return DuplicateKeyError(table, constraint[len(prefix):])
        if constraint == f"{table}_pkey":
            return DuplicateKeyError(table, "id")
        return DuplicateKeyError(table, "unknown")

    def _autocommit(self) -> None:
        # Only commit if not in transaction
        if not self._depth:
            self._connection.commit()

    def _create_table(self, schema: TableSchema) -> None:
        """Ensure table exists with proper schema"""
        table = schema.name
        with self._lock, self._cursor(table) as cursor:
            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {table} (
                    id TEXT PRIMARY KEY,
                    data JSONB NOT NULL,
                    created_at TIMESTAMPTZ DEFAULT NOW(),
                    updated_at TIMESTAMPTZ DEFAULT NOW(),
                    seq BIGSERIAL
                )
            """)
            cursor.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{table}_created_at
                ON {table}(created_at)
            """)
            for name in schema.unique_fields:
                cursor.execute(f"""
                    CREATE UNIQUE INDEX IF NOT EXISTS ux_{table}_{name}
                    ON {table} ((data ->> '{name}'))
                """)
            for name in schema.indexed_fields:
                cursor.execute(f"""
                    CREATE INDEX IF NOT EXISTS ix_{table}_{name}
                    ON {table} ((data ->> '{name}'))
                """)
            self._autocommit()

    def insert(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Insert a new record; a savepoint keeps the unit of work usable after a conflict"""
        self._schema(table)
        now = datetime.now(timezone.utc)
        with self._lock, self._cursor(table) as cursor:
            cursor.execute("SAVEPOINT ledger_insert")
            try:
                cursor.execute(f"""
                    INSERT INTO {table} (id, data, created_at, updated_at)
                    VALUES (%s, %s, %s, %s)
                """, (record_id, json.dumps(data, default=str), now, now))
            except self.psycopg2.errors.UniqueViolation:
                cursor.execute("ROLLBACK TO SAVEPOINT ledger_insert")
                self._autocommit()
                raise
            cursor.execute("RELEASE SAVEPOINT ledger_insert")
            self._autocommit()

    def save(self, table: str, record_id: str, data: Dict[str, Any]) -> None:
        """Save a record to PostgreSQL using UPSERT"""
        self._schema(table)
        now = datetime.now(timezone.utc)
        with self._lock, self._cursor(table) as cursor:
            cursor.execute(f"""
                INSERT INTO {table} (id, data, created_at, updated_at)
                VALUES (%s, %s, %s, %s)
                ON CONFLICT (id) DO UPDATE SET
                    data = EXCLUDED.data,
                    updated_at = EXCLUDED.updated_at
            """, (record_id, json.dumps(data, default=str), now, now))
            self._autocommit()

    def update(self, table: str, record_id: str, data: Dict[str, Any],
               expected_version: int) -> None:
        """Compare-and-swap update on the version field"""
        self._schema(table)
        with self._lock, self._cursor(table) as cursor:
            cursor.execute(f"""
                UPDATE {table} SET data = %s, updated_at = NOW()
                WHERE id = %s AND (data ->> '{VERSION_FIELD}')::bigint = %s
            """, (json.dumps(data, default=str), record_id, expected_version))
            if cursor.rowcount == 0:
                raise StaleRecordError(f"{table}/{record_id} is not at version {expected_version}")
            self._autocommit()

    def load(self, table: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Load a record from PostgreSQL"""
        self._schema(table)
        with self._lock, self._cursor(table) as cursor:
            cursor.execute(f"SELECT data FROM {table} WHERE id = %s", (record_id,))
            row = cursor.fetchone()
            if row:
                return dict(row['data'])
            return None

    def load_all(self, table: str) -> List[Dict[str, Any]]:
        """Load all records from a table"""
        return self.find(table, {})

    def exists(self, table: str, record_id: str) -> bool:
        """Check if a record exists"""
        self._schema(table)
        with self._lock, self._cursor(table) as cursor:
            cursor.execute(f"SELECT 1 FROM {table} WHERE id = %s LIMIT 1", (record_id,))
            return cursor.fetchone() is not None

    def find(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Find records matching filters using JSONB operators"""
        self._schema(table)
        conditions = []
        params: List[Any] = []
        for key, value in filters.items():
            _check_identifier(key)
            if value is None:
                conditions.append(f"data ->> '{key}' IS NULL")
            else:
                conditions.append(f"data ->> '{key}' = %s")
                params.append(str(value))
        where_clause = f"WHERE {' AND '.join(conditions)}" if conditions else ""

        with self._lock, self._cursor(table) as cursor:
            cursor.execute(f"""
                SELECT data FROM {table} {where_clause}
                ORDER BY created_at, seq
            """, params)
            return [dict(row['data']) for row in cursor.fetchall()]

    def count(self, table: str) -> int:
        """Count records in table"""
        self._schema(table)
        with self._lock, self._cursor(table) as cursor:
            cursor.execute(f"SELECT COUNT(*) as count FROM {table}")
            return cursor.fetchone()['count']

    def next_sequence(self, name: str) -> int:
        """Allocate next sequence value"""
        _check_identifier(name)
        with self._lock, self._cursor(name) as cursor:
            cursor.execute(f"CREATE SEQUENCE IF NOT EXISTS seq_{name}")
            cursor.execute(f"SELECT nextval('seq_{name}') AS value")
            value = cursor.fetchone()['value']
            self._autocommit()
            return value

    def _unit_guard(self):
        return self._lock

    def begin_transaction(self) -> None:
        """Start a database transaction"""
        with self._lock:
            # PostgreSQL transactions start automatically
            self._depth += 1

    def commit(self) -> None:
        """Commit current transaction"""
        with self._lock:
            if not self._depth:
                return
            self._depth -= 1
            if not self._depth:
                self._connection.commit()

    def rollback(self) -> None:
        """Rollback current transaction"""
        with self._lock:
            self._depth = 0
            self._connection.rollback()

    def close(self) -> None:
        """Close PostgreSQL connection"""
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None


def create_storage(database_url: str, timeout: float = 5.0) -> StorageInterface:
    """
    Select a storage backend from a database URL.

    ``memory://`` gives InMemoryStorage, ``sqlite:///path`` (or
    ``sqlite://`` for an in-memory database) gives SQLiteStorage and
    ``postgresql://...`` gives PostgreSQLStorage.
    """
    if database_url.startswith("memory://"):
        return InMemoryStorage()
    if database_url.startswith("sqlite://"):
        path = database_url[len("sqlite:///"):] if database_url.startswith("sqlite:///") else ""
        return SQLiteStorage(path or ":memory:", timeout=timeout)
    if database_url.startswith(("postgresql://", "postgres://")):
        return PostgreSQLStorage(database_url, timeout=timeout)
    raise ValueError(f"Unsupported database URL: {database_url}")
