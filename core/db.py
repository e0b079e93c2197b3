"""
Database abstraction layer (DB-API 2.0 connection factory).

Provides a thin abstraction over sqlite3 and psycopg2 for database portability.
NOT an ORM, just connection management, transactions and SQL dialect
adaptation for the provisioning tables.

Usage:
    from core.db import DatabaseManager

    dm = DatabaseManager.get_instance()

    # Transaction (auto commit/rollback/release)
    with dm.connect() as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT * FROM tenants WHERE id = ?", (1,))
        row = cursor.fetchone()

The schema itself is owned by Alembic (see alembic/versions).
"""

import logging
import queue
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


def is_postgres(db_url: Optional[str] = None) -> bool:
    """Check if the given URL points to PostgreSQL."""
    if db_url is None:
        return False
    return db_url.startswith("postgresql://") or db_url.startswith("postgres://")


def is_integrity_error(exc: BaseException) -> bool:
    """True for unique/foreign-key violations from either driver."""
    if isinstance(exc, sqlite3.IntegrityError):
        return True
    # psycopg2.IntegrityError and its UniqueViolation subclass
    return any(cls.__name__ in ("IntegrityError", "UniqueViolation") for cls in type(exc).__mro__)


def row_to_dict(row: Any) -> Optional[dict]:
    """Convert a sqlite3.Row / RealDictRow into a plain dict."""
    if row is None:
        return None
    return dict(row)


def _open_sqlite(path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(str(path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON")
    return conn


def get_connection(
    db_url: Optional[str] = None,
    db_path: Optional[str] = None,
):
    """
    Get a DB-API 2.0 connection.

    Args:
        db_url: Database URL (postgresql:// or None)
        db_path: SQLite file path (used when db_url is None)

    Returns:
        DB-API 2.0 connection with dict-like row access.
    """
    if db_url and is_postgres(db_url):
        return _get_postgres_connection(db_url)

    return _open_sqlite(db_path or ":memory:")


def _get_postgres_connection(db_url: str):
    """Get a PostgreSQL connection via psycopg2."""
    import psycopg2

    conn = psycopg2.connect(db_url)
    conn.autocommit = False
    return _CompatConnection(conn)


class _CompatConnection:
    """
    Wraps a psycopg2 connection to provide SQLite-compatible interface.

    - Accepts '?' placeholders and converts to '%s'
    - Returns dict-like rows via RealDictCursor
    - Proxies commit/rollback/close
    """

    def __init__(self, conn):
        self._conn = conn

    def cursor(self):
        import psycopg2.extras
        return _CompatCursor(self._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor))

    def commit(self):
        self._conn.commit()

    def rollback(self):
        self._conn.rollback()

    def close(self):
        self._conn.close()

    def execute(self, sql, params=None):
        return self.cursor().execute(sql, params)


class _CompatCursor:
    """Wraps a psycopg2 cursor to accept '?' placeholders.

    Also injects RETURNING id for INSERT statements so lastrowid works
    on PostgreSQL (psycopg2 cursors don't natively support lastrowid).
    Tables without an ``id`` column (tenant_leases) opt out with an
    explicit RETURNING clause.
    """

    def __init__(self, cursor):
        self._cursor = cursor
        self._last_id = None

    def execute(self, sql, params=None):
        adapted_sql = sql.replace("?", "%s")

        upper = adapted_sql.strip().upper()
        if upper.startswith("INSERT") and "RETURNING" not in upper:
            adapted_sql = adapted_sql.rstrip().rstrip(";") + " RETURNING id"
            self._cursor.execute(adapted_sql, params)
            row = self._cursor.fetchone()
            if row:
                self._last_id = row[0] if isinstance(row, tuple) else row.get("id")
            return self

        self._last_id = None
        self._cursor.execute(adapted_sql, params)
        return self

    def fetchone(self):
        return self._cursor.fetchone()

    def fetchall(self):
        return self._cursor.fetchall()

    @property
    def lastrowid(self):
        if self._last_id is not None:
            return self._last_id
        return getattr(self._cursor, "lastrowid", None)

    @property
    def rowcount(self):
        return self._cursor.rowcount

    def close(self):
        self._cursor.close()


@contextmanager
def connect(
    db_url: Optional[str] = None,
    db_path: Optional[str] = None,
):
    """
    Context manager that yields a connection with auto commit/rollback.

    On success: commits and closes.
    On exception: rolls back and closes.
    """
    conn = get_connection(db_url=db_url, db_path=db_path)
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


# =============================================================================
# DatabaseManager: connection pool singleton
# =============================================================================


class DatabaseManager:
    """
    Singleton connection pool for the provisioning database.

    Uses settings.database.database_url for PostgreSQL; defaults to
    the SQLite file at settings.database.database_path when unset.

    Usage:
        dm = DatabaseManager.get_instance()
        with dm.connect() as conn:
            conn.cursor().execute("SELECT ...")
    """

    _instance: Optional["DatabaseManager"] = None
    _lock = threading.Lock()

    def __init__(
        self,
        db_url: Optional[str] = None,
        db_path: Optional[Path] = None,
        pool_size: int = 10,
    ):
        if db_url is None and db_path is None:
            from config.settings import get_settings
            db_settings = get_settings().database
            db_url = db_settings.database_url
            db_path = db_settings.database_path

        self._db_url = db_url
        self._db_path = Path(db_path) if db_path else None
        self._pool_size = pool_size
        self._use_postgres = is_postgres(self._db_url)

        if not self._use_postgres:
            if self._db_path is None:
                raise ValueError("db_path is required for SQLite")
            self._db_path.parent.mkdir(parents=True, exist_ok=True)

        # Connection pool (SQLite only; PostgreSQL uses psycopg2 pool)
        self._pool: queue.Queue = queue.Queue(maxsize=pool_size)
        self._pg_pool = None

        if self._use_postgres:
            self._init_pg_pool()

    def _init_pg_pool(self):
        """Initialize PostgreSQL connection pool."""
        import psycopg2.pool

        self._pg_pool = psycopg2.pool.ThreadedConnectionPool(
            minconn=2,
            maxconn=self._pool_size,
            dsn=self._db_url,
        )

    @classmethod
    def get_instance(
        cls,
        db_url: Optional[str] = None,
        db_path: Optional[Path] = None,
    ) -> "DatabaseManager":
        """Get or create the singleton instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls(db_url=db_url, db_path=db_path)
        return cls._instance

    @classmethod
    def reset(cls):
        """Reset the singleton and drain the pool. For testing only."""
        with cls._lock:
            if cls._instance is not None:
                cls._instance.close()
                cls._instance = None

    def close(self):
        """Close every pooled connection."""
        while not self._pool.empty():
            try:
                self._pool.get_nowait().close()
            except queue.Empty:
                break
            except sqlite3.Error as e:
                logger.debug(f"Ignoring error closing pooled connection: {e}")
        if self._pg_pool is not None:
            self._pg_pool.closeall()
            self._pg_pool = None

    # ----- connection acquisition / release -----------------------------------

    def get_connection(self):
        """Acquire a connection from the pool."""
        if self._use_postgres:
            raw = self._pg_pool.getconn()
            raw.autocommit = False
            return _CompatConnection(raw)

        # SQLite: try pool first, create new if empty
        try:
            conn = self._pool.get_nowait()
            conn.execute("SELECT 1")
            return conn
        except queue.Empty:
            pass
        except sqlite3.Error:
            pass  # Stale connection, create a new one

        conn = _open_sqlite(str(self._db_path))
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def release_connection(self, conn):
        """Return a connection to the pool."""
        if self._use_postgres:
            raw = conn._conn if isinstance(conn, _CompatConnection) else conn
            self._pg_pool.putconn(raw)
            return

        try:
            self._pool.put_nowait(conn)
        except queue.Full:
            conn.close()

    @contextmanager
    def connect(self):
        """Context manager: acquire → yield → commit/rollback → release.

        Everything executed on the yielded connection is one transaction.
        """
        conn = self.get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            self.release_connection(conn)

    @contextmanager
    def use(self, conn=None):
        """Join the caller's transaction when given a connection, else open one."""
        if conn is not None:
            yield conn
            return
        with self.connect() as own:
            yield own

    @property
    def db_path(self) -> Optional[Path]:
        """Return the SQLite database path."""
        return self._db_path

    @property
    def db_url(self) -> Optional[str]:
        """Return the database URL (None for SQLite)."""
        return self._db_url
