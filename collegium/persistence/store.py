"""
Entity store adapters.

The rule engine talks to storage only through ``EntityStore.transaction()``,
which yields a ``StoreSession`` offering exists/get/insert/update/query. A
transaction commits when its block exits normally and rolls back wholly on
any exception, cancellations included.
"""

import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import fields, replace
from typing import Any, Dict, Iterable, List, Optional, Tuple

from ..core.entities import RECORD_TYPES, Record, encode_value
from ..core.enums import IMMUTABLE_ENTITY_TYPES, EntityType
from ..core.exceptions import (
    ConfigurationError, NotFoundError, PersistenceError, StoreUnavailableError, ValidationError,
)
from .database import SQLiteDatabase, translate_sqlite_error

logger = logging.getLogger(__name__)


TABLE_NAMES: Dict[EntityType, str] = {
    EntityType.ROOM: "rooms",
    EntityType.TERM: "terms",
    EntityType.PROGRAM: "programs",
    EntityType.STUDENT: "students",
    EntityType.INSTRUCTOR: "instructors",
    EntityType.COURSE: "courses",
    EntityType.SECTION: "sections",
    EntityType.ENROLLMENT: "enrollments",
    EntityType.SCHEDULE_SLOT: "schedule_slots",
    EntityType.ASSESSMENT: "assessments",
    EntityType.GRADE: "grades",
    EntityType.PAYMENT: "payments",
    EntityType.PAYMENT_LOG: "payment_log",
}

FOREIGN_KEYS: Dict[EntityType, Dict[str, EntityType]] = {
    EntityType.STUDENT: {'program_id': EntityType.PROGRAM},
    EntityType.SECTION: {'course_id': EntityType.COURSE, 'term_id': EntityType.TERM},
    EntityType.ENROLLMENT: {'student_id': EntityType.STUDENT, 'section_id': EntityType.SECTION},
    EntityType.SCHEDULE_SLOT: {
        'section_id': EntityType.SECTION,
        'instructor_id': EntityType.INSTRUCTOR,
        'room_id': EntityType.ROOM,
    },
    EntityType.ASSESSMENT: {'section_id': EntityType.SECTION},
    EntityType.GRADE: {'assessment_id': EntityType.ASSESSMENT, 'student_id': EntityType.STUDENT},
    EntityType.PAYMENT: {'student_id': EntityType.STUDENT, 'term_id': EntityType.TERM},
    EntityType.PAYMENT_LOG: {'payment_id': EntityType.PAYMENT},
}

UNIQUE_KEYS: Dict[EntityType, Tuple[str, ...]] = {
    EntityType.ENROLLMENT: ('student_id', 'section_id'),
    EntityType.GRADE: ('assessment_id', 'student_id'),
}


def _field_names(entity_type: EntityType) -> List[str]:
    return [f.name for f in fields(RECORD_TYPES[entity_type])]


def _check_filters(entity_type: EntityType, filters: Dict[str, Any]) -> None:
    unknown = set(filters) - set(_field_names(entity_type))
    if unknown:
        raise ValidationError(
            f"Unknown filter field(s) for {entity_type.value}: {sorted(unknown)}",
            details={'entity_type': entity_type.value, 'fields': sorted(unknown)},
        )


def _matches(record: Record, filters: Dict[str, Any]) -> bool:
    for key, expected in filters.items():
        actual = getattr(record, key)
        if isinstance(expected, (list, tuple, set, frozenset)):
            if actual not in expected:
                return False
        elif actual != expected:
            return False
    return True


class StoreSession(ABC):
    """Operations available inside one store transaction."""

    def __init__(self, writable: bool):
        self._writable = writable

    @property
    def writable(self) -> bool:
        return self._writable

    def _require_writable(self) -> None:
        if not self._writable:
            raise PersistenceError("Cannot write inside a read-only transaction")

    @abstractmethod
    def exists(self, entity_type: EntityType, entity_id: str) -> bool:
        """Check whether a record exists."""
        pass

    @abstractmethod
    def find(self, entity_type: EntityType, entity_id: str) -> Optional[Record]:
        """Get a record by id, or None."""
        pass

    def get(self, entity_type: EntityType, entity_id: str) -> Record:
        """Get a record by id; raises NotFoundError when absent."""
        record = self.find(entity_type, entity_id)
        if record is None:
            raise NotFoundError(entity_type.value, entity_id)
        return record

    @abstractmethod
    def insert(self, record: Record) -> str:
        """Insert a new record and return its id."""
        pass

    @abstractmethod
    def update(self, entity_type: EntityType, entity_id: str, **changes: Any) -> Record:
        """Update mutable fields of an existing record."""
        pass

    @abstractmethod
    def query(self, entity_type: EntityType, **filters: Any) -> List[Record]:
        """Return records matching equality filters, in insertion order.

        A filter value that is a list, tuple or set matches any of its members.
        """
        pass

    def count(self, entity_type: EntityType, **filters: Any) -> int:
        """Count records matching equality filters."""
        return len(self.query(entity_type, **filters))


class EntityStore(ABC):
    """Transactional entity store used by the rule engine."""

    @abstractmethod
    def transaction(self, write: bool = True):
        """Context manager yielding a StoreSession bound to one transaction."""
        pass

    def snapshot(self):
        """Read-only transaction for aggregation queries."""
        return self.transaction(write=False)

    def insert(self, record: Record) -> str:
        """Insert a single record in its own transaction."""
        with self.transaction() as session:
            return session.insert(record)

    def insert_many(self, records: Iterable[Record]) -> List[str]:
        """Insert several records atomically."""
        with self.transaction() as session:
            return [session.insert(record) for record in records]

    def get(self, entity_type: EntityType, entity_id: str) -> Record:
        with self.snapshot() as session:
            return session.get(entity_type, entity_id)

    def exists(self, entity_type: EntityType, entity_id: str) -> bool:
        with self.snapshot() as session:
            return session.exists(entity_type, entity_id)

    def query(self, entity_type: EntityType, **filters: Any) -> List[Record]:
        with self.snapshot() as session:
            return session.query(entity_type, **filters)

    def close(self) -> None:
        """Release store resources."""
        pass


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------

class _MemorySession(StoreSession):
    """Session over a point-in-time view of the in-memory tables.

    Writes are staged in per-table overlays and published by the store on
    commit, so concurrent readers never observe uncommitted rows.
    """

    def __init__(self, tables: Dict[EntityType, Dict[str, Record]], writable: bool):
        super().__init__(writable)
        self._base = tables
        self._staged: Dict[EntityType, Dict[str, Record]] = {}

    def _table(self, entity_type: EntityType) -> Dict[str, Record]:
        if entity_type in self._staged:
            return self._staged[entity_type]
        return self._base[entity_type]

    def _stage(self, entity_type: EntityType) -> Dict[str, Record]:
        if entity_type not in self._staged:
            self._staged[entity_type] = dict(self._base[entity_type])
        return self._staged[entity_type]

    @property
    def staged_tables(self) -> Dict[EntityType, Dict[str, Record]]:
        return self._staged

    def exists(self, entity_type: EntityType, entity_id: str) -> bool:
        return entity_id in self._table(entity_type)

    def find(self, entity_type: EntityType, entity_id: str) -> Optional[Record]:
        record = self._table(entity_type).get(entity_id)
        return replace(record) if record is not None else None

    def insert(self, record: Record) -> str:
        self._require_writable()
        entity_type = record.entity_type
        if self.exists(entity_type, record.id):
            raise PersistenceError(
                f"{entity_type.value} {record.id!r} already exists", error_code="INTEGRITY_ERROR",
            )
        for column, target in FOREIGN_KEYS.get(entity_type, {}).items():
            value = getattr(record, column)
            if value is not None and not self.exists(target, value):
                raise PersistenceError(
                    f"Foreign key violation: {entity_type.value}.{column} -> {target.value} {value!r}",
                    error_code="INTEGRITY_ERROR",
                )
        unique = UNIQUE_KEYS.get(entity_type)
        if unique:
            key = {column: getattr(record, column) for column in unique}
            if self.query(entity_type, **key):
                raise PersistenceError(
                    f"Unique constraint violated on {entity_type.value}{unique}", error_code="INTEGRITY_ERROR",
                )
        self._stage(entity_type)[record.id] = replace(record)
        return record.id

    def update(self, entity_type: EntityType, entity_id: str, **changes: Any) -> Record:
        self._require_writable()
        if entity_type in IMMUTABLE_ENTITY_TYPES:
            raise PersistenceError(f"{entity_type.value} records are immutable")
        _check_filters(entity_type, changes)
        current = self.get(entity_type, entity_id)
        updated = replace(current, **changes)
        self._stage(entity_type)[entity_id] = updated
        return replace(updated)

    def query(self, entity_type: EntityType, **filters: Any) -> List[Record]:
        _check_filters(entity_type, filters)
        return [replace(record) for record in self._table(entity_type).values() if _matches(record, filters)]


class InMemoryEntityStore(EntityStore):
    """Thread-safe in-memory store.

    Write transactions are serialized by a store-wide lock acquired with a
    timeout; committed tables are replaced, never mutated in place, so a
    read-only snapshot keeps seeing the state it started from.
    """

    def __init__(self, timeout: float = 5.0):
        self._timeout = timeout
        self._tables: Dict[EntityType, Dict[str, Record]] = {entity_type: {} for entity_type in EntityType}
        self._write_lock = threading.Lock()

    @contextmanager
    def transaction(self, write: bool = True):
        if not write:
            yield _MemorySession(dict(self._tables), writable=False)
            return

        if not self._write_lock.acquire(timeout=self._timeout):
            logger.warning("In-memory store write lock not acquired within %ss", self._timeout)
            raise StoreUnavailableError(f"Timed out after {self._timeout}s waiting for the store write lock")
        try:
            session = _MemorySession(dict(self._tables), writable=True)
            try:
                yield session
            except BaseException:
                logger.debug("Rolling back in-memory transaction (%d staged tables)", len(session.staged_tables))
                raise
            tables = dict(self._tables)
            tables.update(session.staged_tables)
            self._tables = tables
        finally:
            self._write_lock.release()


# ---------------------------------------------------------------------------
# SQLite store
# ---------------------------------------------------------------------------

class _SQLiteSession(StoreSession):
    """Session bound to one SQLite connection and transaction."""

    def __init__(self, conn: sqlite3.Connection, writable: bool):
        super().__init__(writable)
        self._conn = conn

    def _execute(self, query: str, params: tuple = ()) -> sqlite3.Cursor:
        try:
            return self._conn.execute(query, params)
        except sqlite3.Error as e:
            raise translate_sqlite_error(e) from e

    def exists(self, entity_type: EntityType, entity_id: str) -> bool:
        cursor = self._execute(f"SELECT 1 FROM {TABLE_NAMES[entity_type]} WHERE id = ?", (entity_id,))
        return cursor.fetchone() is not None

    def find(self, entity_type: EntityType, entity_id: str) -> Optional[Record]:
        cursor = self._execute(f"SELECT * FROM {TABLE_NAMES[entity_type]} WHERE id = ?", (entity_id,))
        row = cursor.fetchone()
        return RECORD_TYPES[entity_type].from_dict(dict(row)) if row is not None else None

    def insert(self, record: Record) -> str:
        self._require_writable()
        data = record.to_dict()
        columns = ", ".join(data)
        placeholders = ", ".join("?" for _ in data)
        self._execute(
            f"INSERT INTO {TABLE_NAMES[record.entity_type]} ({columns}) VALUES ({placeholders})",
            tuple(data.values()),
        )
        return record.id

    def update(self, entity_type: EntityType, entity_id: str, **changes: Any) -> Record:
        self._require_writable()
        if entity_type in IMMUTABLE_ENTITY_TYPES:
            raise PersistenceError(f"{entity_type.value} records are immutable")
        _check_filters(entity_type, changes)
        updated = replace(self.get(entity_type, entity_id), **changes)
        data = updated.to_dict()
        assignments = ", ".join(f"{column} = ?" for column in changes)
        self._execute(
            f"UPDATE {TABLE_NAMES[entity_type]} SET {assignments} WHERE id = ?",
            tuple(data[column] for column in changes) + (entity_id,),
        )
        return updated

    def query(self, entity_type: EntityType, **filters: Any) -> List[Record]:
        _check_filters(entity_type, filters)
        clauses = []
        params: List[Any] = []
        for column, value in filters.items():
            if isinstance(value, (list, tuple, set, frozenset)):
                values = [encode_value(v) for v in value]
                if not values:
                    return []
                clauses.append(f"{column} IN ({', '.join('?' for _ in values)})")
                params.extend(values)
            elif value is None:
                clauses.append(f"{column} IS NULL")
            else:
                clauses.append(f"{column} = ?")
                params.append(encode_value(value))
        query = f"SELECT * FROM {TABLE_NAMES[entity_type]}"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY rowid"
        record_type = RECORD_TYPES[entity_type]
        return [record_type.from_dict(dict(row)) for row in self._execute(query, tuple(params)).fetchall()]


class SQLiteEntityStore(EntityStore):
    """Durable store backed by SQLiteDatabase."""

    def __init__(self, database: SQLiteDatabase):
        self._database = database

    @property
    def database(self) -> SQLiteDatabase:
        return self._database

    @contextmanager
    def transaction(self, write: bool = True):
        with self._database.transaction(write=write) as conn:
            yield _SQLiteSession(conn, writable=write)


class StoreFactory:
    """Factory for creating entity store instances."""

    @staticmethod
    def create_store(backend: str, **kwargs) -> EntityStore:
        """Create an entity store based on backend name."""
        backend = backend.lower()
        if backend == "memory":
            return InMemoryEntityStore(timeout=kwargs.get('timeout', 5.0))
        elif backend == "sqlite":
            database = SQLiteDatabase(
                database_path=kwargs.get('database_path', "collegium.db"),
                timeout=kwargs.get('timeout', 5.0),
            )
            return SQLiteEntityStore(database)
        else:
            raise ConfigurationError(f"Unsupported store backend: {backend}")
