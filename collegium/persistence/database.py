"""
Database management and connection handling.
"""

import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from ..core.exceptions import ConfigurationError, PersistenceError, StoreUnavailableError

logger = logging.getLogger(__name__)


_DAYS = "('Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday')"

SCHEMA: Dict[str, str] = {
    "rooms": """
        CREATE TABLE IF NOT EXISTS rooms (
            id TEXT PRIMARY KEY,
            building TEXT NOT NULL,
            room_number TEXT NOT NULL,
            capacity INTEGER NOT NULL CHECK (capacity > 0),
            room_type TEXT
        )
    """,
    "terms": """
        CREATE TABLE IF NOT EXISTS terms (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            start_date TEXT NOT NULL,
            end_date TEXT NOT NULL
        )
    """,
    "programs": """
        CREATE TABLE IF NOT EXISTS programs (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            credits_required INTEGER NOT NULL CHECK (credits_required > 0),
            degree_level TEXT CHECK (degree_level IN ('Bachelor', 'Master', 'PhD'))
        )
    """,
    "students": """
        CREATE TABLE IF NOT EXISTS students (
            id TEXT PRIMARY KEY,
            program_id TEXT NOT NULL REFERENCES programs(id),
            first_name TEXT NOT NULL,
            last_name TEXT NOT NULL,
            email TEXT NOT NULL,
            status TEXT NOT NULL CHECK (status IN ('active', 'inactive', 'graduated'))
        )
    """,
    "instructors": """
        CREATE TABLE IF NOT EXISTS instructors (
            id TEXT PRIMARY KEY,
            first_name TEXT NOT NULL,
            last_name TEXT NOT NULL,
            email TEXT NOT NULL,
            rank_title TEXT
        )
    """,
    "courses": """
        CREATE TABLE IF NOT EXISTS courses (
            id TEXT PRIMARY KEY,
            title TEXT NOT NULL,
            credits INTEGER NOT NULL CHECK (credits > 0),
            description TEXT
        )
    """,
    "sections": """
        CREATE TABLE IF NOT EXISTS sections (
            id TEXT PRIMARY KEY,
            course_id TEXT NOT NULL REFERENCES courses(id),
            term_id TEXT NOT NULL REFERENCES terms(id),
            section_code TEXT NOT NULL,
            capacity INTEGER NOT NULL CHECK (capacity > 0),
            language TEXT
        )
    """,
    "enrollments": """
        CREATE TABLE IF NOT EXISTS enrollments (
            id TEXT PRIMARY KEY,
            student_id TEXT NOT NULL REFERENCES students(id),
            section_id TEXT NOT NULL REFERENCES sections(id),
            UNIQUE (student_id, section_id)
        )
    """,
    "schedule_slots": f"""
        CREATE TABLE IF NOT EXISTS schedule_slots (
            id TEXT PRIMARY KEY,
            section_id TEXT NOT NULL REFERENCES sections(id),
            instructor_id TEXT NOT NULL REFERENCES instructors(id),
            day_of_week TEXT NOT NULL CHECK (day_of_week IN {_DAYS}),
            start_time TEXT NOT NULL,
            end_time TEXT NOT NULL,
            room_id TEXT REFERENCES rooms(id),
            CHECK (end_time > start_time)
        )
    """,
    "assessments": """
        CREATE TABLE IF NOT EXISTS assessments (
            id TEXT PRIMARY KEY,
            section_id TEXT NOT NULL REFERENCES sections(id),
            kind TEXT NOT NULL CHECK (kind IN ('quiz', 'exam', 'assignment')),
            title TEXT NOT NULL,
            weight_pct TEXT NOT NULL CHECK (CAST(weight_pct AS REAL) BETWEEN 0 AND 100),
            due_date TEXT NOT NULL
        )
    """,
    "grades": """
        CREATE TABLE IF NOT EXISTS grades (
            id TEXT PRIMARY KEY,
            assessment_id TEXT NOT NULL REFERENCES assessments(id),
            student_id TEXT NOT NULL REFERENCES students(id),
            score TEXT NOT NULL CHECK (CAST(score AS REAL) BETWEEN 0 AND 100),
            graded_at TEXT NOT NULL,
            UNIQUE (assessment_id, student_id)
        )
    """,
    "payments": """
        CREATE TABLE IF NOT EXISTS payments (
            id TEXT PRIMARY KEY,
            student_id TEXT NOT NULL REFERENCES students(id),
            term_id TEXT NOT NULL REFERENCES terms(id),
            amount TEXT NOT NULL CHECK (CAST(amount AS REAL) >= 0),
            payment_date TEXT NOT NULL,
            method TEXT,
            invoice_payload TEXT
        )
    """,
    "payment_log": """
        CREATE TABLE IF NOT EXISTS payment_log (
            id TEXT PRIMARY KEY,
            payment_id TEXT NOT NULL REFERENCES payments(id),
            student_id TEXT NOT NULL,
            term_id TEXT NOT NULL,
            amount TEXT NOT NULL,
            payment_date TEXT NOT NULL,
            logged_at TEXT NOT NULL
        )
    """,
}

# Payments and their audit mirror are append-only.
APPEND_ONLY_TRIGGERS: List[str] = [
    f"""
        CREATE TRIGGER IF NOT EXISTS {table}_no_{action.lower()}
        BEFORE {action} ON {table}
        BEGIN
            SELECT RAISE(ABORT, '{table} is append-only');
        END
    """
    for table in ("payments", "payment_log")
    for action in ("UPDATE", "DELETE")
]

INDEXES: List[str] = [
    "CREATE INDEX IF NOT EXISTS idx_students_program ON students(program_id)",
    "CREATE INDEX IF NOT EXISTS idx_enrollments_section ON enrollments(section_id)",
    "CREATE INDEX IF NOT EXISTS idx_slots_instructor_day ON schedule_slots(instructor_id, day_of_week)",
    "CREATE INDEX IF NOT EXISTS idx_slots_room_day ON schedule_slots(room_id, day_of_week)",
    "CREATE INDEX IF NOT EXISTS idx_assessments_section ON assessments(section_id)",
    "CREATE INDEX IF NOT EXISTS idx_grades_student ON grades(student_id)",
    "CREATE INDEX IF NOT EXISTS idx_payments_student_term ON payments(student_id, term_id)",
]


class DatabaseManager(ABC):
    """Abstract base class for database management."""

    @abstractmethod
    def connect(self) -> Any:
        """Create a database connection."""
        pass

    @abstractmethod
    def transaction(self, write: bool = True) -> Iterator[Any]:
        """Context manager yielding a connection inside a transaction."""
        pass

    @abstractmethod
    def execute_query(self, query: str, params: Optional[tuple] = None) -> List[Dict[str, Any]]:
        """Execute a query and return results."""
        pass

    @abstractmethod
    def table_exists(self, table_name: str) -> bool:
        """Check if a table exists."""
        pass


def translate_sqlite_error(error: sqlite3.Error) -> Exception:
    """Map a sqlite3 error onto the Collegium error taxonomy."""
    message = str(error)
    if isinstance(error, sqlite3.OperationalError) and ("locked" in message or "busy" in message):
        return StoreUnavailableError(f"Database unavailable: {message}")
    if isinstance(error, sqlite3.IntegrityError):
        return PersistenceError(f"Integrity constraint violated: {message}", error_code="INTEGRITY_ERROR")
    return PersistenceError(f"Database error: {message}")


class SQLiteDatabase(DatabaseManager):
    """SQLite database implementation.

    Every transaction runs on its own connection. Write transactions start
    with BEGIN IMMEDIATE, so concurrent writers (threads or processes) are
    serialized by the database. WAL mode lets read transactions see a
    consistent snapshot without blocking writers.
    """

    def __init__(self, database_path: str = "collegium.db", timeout: float = 5.0):
        if not database_path or database_path == ":memory:":
            raise ConfigurationError("SQLite store needs a file path; use the memory backend for in-process data")
        self._database_path = database_path
        self._timeout = timeout
        self._lock = threading.RLock()
        self._initialize_database()

    @property
    def database_path(self) -> str:
        return self._database_path

    def _initialize_database(self) -> None:
        """Initialize the database with the engine schema."""
        with self._lock:
            conn = self.connect()
            try:
                conn.execute("PRAGMA journal_mode=WAL")
                for statement in list(SCHEMA.values()) + APPEND_ONLY_TRIGGERS + INDEXES:
                    conn.execute(statement)
            except sqlite3.Error as e:
                raise translate_sqlite_error(e) from e
            finally:
                conn.close()
        logger.info("SQLite database initialized at %s", self._database_path)

    def connect(self) -> sqlite3.Connection:
        """Create a database connection in autocommit mode with foreign keys enforced."""
        conn = sqlite3.connect(
            self._database_path,
            timeout=self._timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextmanager
    def transaction(self, write: bool = True):
        """Run a block inside one transaction; commit on success, roll back on any exit by exception."""
        try:
            conn = self.connect()
        except sqlite3.Error as e:
            raise translate_sqlite_error(e) from e
        try:
            try:
                conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
            except sqlite3.Error as e:
                raise translate_sqlite_error(e) from e
            try:
                yield conn
            except BaseException:
                conn.rollback()
                raise
            try:
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise translate_sqlite_error(e) from e
        finally:
            conn.close()

    def execute_query(self, query: str, params: Optional[tuple] = None) -> List[Dict[str, Any]]:
        """Execute a query and return results."""
        with self.transaction(write=False) as conn:
            try:
                cursor = conn.execute(query, params or ())
                return [dict(row) for row in cursor.fetchall()]
            except sqlite3.Error as e:
                raise translate_sqlite_error(e) from e

    def table_exists(self, table_name: str) -> bool:
        """Check if a table exists."""
        query = "SELECT name FROM sqlite_master WHERE type='table' AND name=?"
        results = self.execute_query(query, (table_name,))
        return len(results) > 0
