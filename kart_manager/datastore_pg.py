"""PostgreSQL storage for the event document and allocation sessions.

The active event is one JSONB row (``events.id = 'current'``) that is read,
replaced and deleted whole.  Allocation sessions are one JSONB row each.
"""

import logging
import os
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import psycopg2
from psycopg2 import pool as pg_pool
from psycopg2.extras import Json, RealDictCursor

logger = logging.getLogger(__name__)

_POOL: Optional[pg_pool.AbstractConnectionPool] = None

EVENT_DOC_ID = "current"

SCHEMA_SQL = (
    """
    CREATE TABLE IF NOT EXISTS events (
        id TEXT PRIMARY KEY,
        state JSONB NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS kart_sessions (
        id TEXT PRIMARY KEY,
        data JSONB NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
)


def _env_int(name: str, default: Optional[int] = None) -> Optional[int]:
    val = os.environ.get(name)
    if val is None:
        return default
    try:
        return int(val)
    except ValueError:
        return default


def _connect_kwargs() -> Dict[str, Any]:
    """Connection kwargs shared by the pool and direct connections.

    ``connect_timeout`` defaults to 10 seconds (DB_CONNECT_TIMEOUT).  TCP
    keepalives are on unless DB_KEEPALIVES is ``0``/``false``; the IDLE,
    INTERVAL and COUNT tunables are passed through only when set.
    """
    kwargs: Dict[str, Any] = {"connect_timeout": _env_int("DB_CONNECT_TIMEOUT", 10)}
    ka_env = os.environ.get("DB_KEEPALIVES")
    kwargs["keepalives"] = 0 if ka_env is not None and ka_env.lower() in ("0", "false") else 1
    for env_name, key in (
        ("DB_KEEPALIVES_IDLE", "keepalives_idle"),
        ("DB_KEEPALIVES_INTERVAL", "keepalives_interval"),
        ("DB_KEEPALIVES_COUNT", "keepalives_count"),
    ):
        value = _env_int(env_name)
        if value is not None:
            kwargs[key] = value
    return kwargs


def init_pool(minconn: int = 1, maxconn: int = 10) -> None:
    """Create the global pool from DATABASE_URL; later calls are no-ops."""
    global _POOL
    if _POOL is not None:
        return
    url = os.environ.get("DATABASE_URL")
    if not url:
        return
    _POOL = pg_pool.ThreadedConnectionPool(minconn, maxconn, dsn=url, **_connect_kwargs())
    logger.info("db_pool_ready min=%s max=%s", minconn, maxconn)


def _is_healthy(conn) -> bool:
    try:
        with conn.cursor() as cur:
            cur.execute("SELECT 1")
        if not getattr(conn, "autocommit", False):
            conn.rollback()
        return True
    except (psycopg2.OperationalError, psycopg2.InterfaceError):
        return False


def _checkout():
    """Take a live connection from the pool, replacing one stale connection."""
    for attempt in range(2):
        conn = _POOL.getconn()
        if _is_healthy(conn):
            return conn
        logger.warning("db_pool_stale_connection attempt=%s", attempt + 1)
        _POOL.putconn(conn, close=True)
    raise psycopg2.OperationalError("Failed to acquire healthy DB connection after retry")


@contextmanager
def _get_conn():
    """Yield a pooled connection when a pool exists, else a direct one.

    The transaction is rolled back if the body raises.
    """
    url = os.environ.get("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL not set; configure a PostgreSQL connection string")
    if _POOL is not None:
        conn = _checkout()
        try:
            yield conn
        except Exception:
            conn.rollback()
            raise
        finally:
            # status 1 = active, 2 = in transaction, 3 = in error
            if getattr(conn, "closed", 0) == 0 and getattr(conn, "status", 0) in (1, 2, 3):
                conn.rollback()
            _POOL.putconn(conn)
        return
    conn = psycopg2.connect(url, **_connect_kwargs())
    try:
        yield conn
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def ensure_schema() -> None:
    with _get_conn() as conn:
        with conn.cursor() as cur:
            for stmt in SCHEMA_SQL:
                cur.execute(stmt)
        conn.commit()


def load_event() -> Optional[Dict[str, Any]]:
    with _get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute("SELECT state FROM events WHERE id = %s", (EVENT_DOC_ID,))
        row = cur.fetchone()
    if not row:
        return None
    return row["state"]


def save_event(state: Dict[str, Any]) -> None:
    """Upsert the whole event document."""
    with _get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO events (id, state, updated_at)
                VALUES (%s, %s, now())
                ON CONFLICT (id) DO UPDATE SET
                    state = EXCLUDED.state,
                    updated_at = EXCLUDED.updated_at
                """,
                (EVENT_DOC_ID, Json(state)),
            )
        conn.commit()
    logger.debug("event_saved round=%s drivers=%s", state.get("current_round"), len(state.get("drivers") or []))


def delete_event() -> None:
    with _get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("DELETE FROM events WHERE id = %s", (EVENT_DOC_ID,))
        conn.commit()


def list_sessions() -> List[Dict[str, Any]]:
    with _get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute("SELECT data FROM kart_sessions ORDER BY created_at DESC, id")
        return [r["data"] for r in cur.fetchall()]


def get_session(session_id: str) -> Optional[Dict[str, Any]]:
    with _get_conn() as conn, conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute("SELECT data FROM kart_sessions WHERE id = %s", (session_id,))
        row = cur.fetchone()
    return row["data"] if row else None


def save_session(session: Dict[str, Any]) -> None:
    with _get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO kart_sessions (id, data)
                VALUES (%s, %s)
                ON CONFLICT (id) DO UPDATE SET data = EXCLUDED.data
                """,
                (session["id"], Json(session)),
            )
        conn.commit()


def delete_session(session_id: str) -> bool:
    with _get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("DELETE FROM kart_sessions WHERE id = %s", (session_id,))
            deleted = cur.rowcount > 0
        conn.commit()
    return deleted


def check_connection() -> Dict[str, Any]:
    """Return basic server information for the health endpoint."""
    with _get_conn() as conn, conn.cursor() as cur:
        cur.execute("SELECT current_user, current_database(), version()")
        user, db, ver = cur.fetchone()
    return {
        "user": user,
        "database": db,
        "server_version": (ver or "").split("\n")[0],
    }
