"""
Postgres database connection utility.
Used by every admin service for table reads/writes and stored-procedure calls.
"""
import atexit
import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

import psycopg2
import psycopg2.pool
from psycopg2 import sql
from psycopg2.extensions import register_adapter
from psycopg2.extras import RealDictCursor, Json

from config import POSTGRES_CONNECTION_STRING, POSTGRES_POOL_MIN, POSTGRES_POOL_MAX

# Register adapter to handle dicts as JSON automatically
register_adapter(dict, Json)

logger = logging.getLogger("lesson_admin")

# ---------------------------------------------------------------------------
# Connection pool, shared across all threads / requests
# ---------------------------------------------------------------------------
_pool: Optional[psycopg2.pool.ThreadedConnectionPool] = None
_pool_lock = threading.Lock()


def _get_pool() -> psycopg2.pool.ThreadedConnectionPool:
    """Return the singleton connection pool, creating it lazily on first call."""
    global _pool
    if _pool is not None:
        return _pool
    with _pool_lock:
        if _pool is None:
            _pool = psycopg2.pool.ThreadedConnectionPool(
                POSTGRES_POOL_MIN,
                POSTGRES_POOL_MAX,
                POSTGRES_CONNECTION_STRING,
            )
            atexit.register(_pool.closeall)
            logger.info(f"[db_postgres] Connection pool created (min={POSTGRES_POOL_MIN}, max={POSTGRES_POOL_MAX})")
    return _pool


def get_db_connection():
    """
    Borrow a connection from the pool.

    IMPORTANT: You MUST call `return_db_connection(conn)` (or use the
    execute_query / transaction helpers) when you're done.
    """
    pool = _get_pool()
    try:
        return pool.getconn()
    except psycopg2.pool.PoolError as e:
        logger.error(f"[db_postgres] Pool exhausted: all {POSTGRES_POOL_MAX} connections in use: {e}")
        raise


def return_db_connection(conn, error: bool = False) -> None:
    """Return a borrowed connection to the pool."""
    pool = _get_pool()
    try:
        pool.putconn(conn, close=error)
    except Exception as e:
        logger.warning(f"[db_postgres] Failed to return connection to pool: {e}")


def execute_query(
    query: str,
    params: Optional[tuple] = None,
    fetch: bool = True,
    commit: bool = False,
) -> Optional[List[Dict[str, Any]]]:
    """Execute a query and return rows as dicts. Borrows + auto-returns a pooled connection."""
    conn = get_db_connection()
    error = False
    try:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(query, params)
            result = [dict(row) for row in cur.fetchall()] if fetch else None
            if commit or not fetch:
                conn.commit()
            return result
    except Exception as e:
        error = True
        logger.error(f"[db_postgres] Query failed: {e}")
        try:
            conn.rollback()
        except Exception:
            pass
        raise
    finally:
        return_db_connection(conn, error=error)


def execute_update(query: str, params: Optional[tuple] = None) -> None:
    """Execute an update/insert/delete query."""
    execute_query(query, params, fetch=False)


def call_function(name: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    """
    Call a stored procedure with named arguments and return its rows.

    `call_function("get_user_emails", {"user_ids": ids})` runs
    `SELECT * FROM get_user_emails(user_ids => %s)`.
    """
    params = params or {}
    query = sql.SQL("SELECT * FROM {fn}({args})").format(
        fn=sql.Identifier(name),
        args=sql.SQL(", ").join(
            sql.SQL("{} => {}").format(sql.Identifier(key), sql.Placeholder(key)) for key in params
        ),
    )
    conn = get_db_connection()
    error = False
    try:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(query, params)
            rows = [dict(row) for row in cur.fetchall()]
            conn.commit()
            return rows
    except Exception as e:
        error = True
        logger.error(f"[db_postgres] Function {name} failed: {e}")
        try:
            conn.rollback()
        except Exception:
            pass
        raise
    finally:
        return_db_connection(conn, error=error)


@contextmanager
def transaction() -> Iterator[Any]:
    """
    Yield a dict cursor whose statements commit together or not at all.

        with transaction() as cur:
            cur.execute(...)
            cur.execute(...)
    """
    conn = get_db_connection()
    error = False
    try:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            yield cur
        conn.commit()
    except Exception:
        error = True
        try:
            conn.rollback()
        except Exception:
            pass
        raise
    finally:
        return_db_connection(conn, error=error)


# ---------------------------------------------------------------------------
# Schema initialisation for local development only; production schema is
# managed by the hosted platform's migrations.
# ---------------------------------------------------------------------------

def init_postgres_db():
    """Create the admin tables if they don't exist."""
    statements = [
        """
        CREATE TABLE IF NOT EXISTS user_profiles (
            id UUID PRIMARY KEY,
            user_id UUID,
            email TEXT,
            full_name TEXT,
            role TEXT NOT NULL DEFAULT 'teacher'
                CHECK (role IN ('teacher', 'reviewer', 'admin', 'super_admin')),
            is_active BOOLEAN NOT NULL DEFAULT TRUE,
            school_name TEXT,
            school_borough TEXT,
            grades_taught TEXT[],
            subjects_taught TEXT[],
            notes TEXT,
            password_hash TEXT,
            invited_by UUID,
            invited_at TIMESTAMPTZ,
            accepted_at TIMESTAMPTZ,
            last_login_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );
        """,
        "CREATE INDEX IF NOT EXISTS idx_user_profiles_role ON user_profiles(role);",
        """
        CREATE TABLE IF NOT EXISTS user_invitations (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            email TEXT NOT NULL,
            role TEXT NOT NULL CHECK (role IN ('teacher', 'reviewer', 'admin')),
            invited_by UUID NOT NULL,
            invited_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            expires_at TIMESTAMPTZ NOT NULL DEFAULT NOW() + INTERVAL '7 days',
            accepted_at TIMESTAMPTZ,
            token TEXT UNIQUE NOT NULL,
            metadata JSONB DEFAULT '{}'::jsonb,
            school_name TEXT,
            school_borough TEXT,
            message TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );
        """,
        "CREATE INDEX IF NOT EXISTS idx_user_invitations_email ON user_invitations(email);",
        """
        CREATE TABLE IF NOT EXISTS user_management_audit (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            actor_id UUID NOT NULL,
            action TEXT NOT NULL,
            target_user_id UUID,
            target_email TEXT,
            old_values JSONB,
            new_values JSONB,
            metadata JSONB DEFAULT '{}'::jsonb,
            ip_address INET,
            user_agent TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );
        """,
        """
        CREATE TABLE IF NOT EXISTS duplicate_group_dismissals (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            lesson_ids TEXT[] NOT NULL,
            dismissed_by UUID,
            dismissed_at TIMESTAMPTZ DEFAULT NOW(),
            detection_method TEXT CHECK (detection_method IN ('same_title', 'embedding', 'both')),
            notes TEXT
        );
        """,
        """
        CREATE TABLE IF NOT EXISTS lesson_versions (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            lesson_id TEXT NOT NULL,
            version_number INT NOT NULL DEFAULT 1,
            title TEXT,
            summary TEXT,
            file_link TEXT,
            grade_levels TEXT[],
            metadata JSONB,
            content_text TEXT,
            archived_from_submission_id UUID,
            archived_by UUID,
            archive_reason TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        );
        """,
    ]

    for stmt in statements:
        if stmt.strip():
            execute_update(stmt)

    logger.info("Admin tables initialized successfully")
