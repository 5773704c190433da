import logging
from psycopg2 import pool
from contextlib import contextmanager

logger = logging.getLogger(__name__)

dbPool = None


def init_db_pool(database: dict, minconn: int = 1, maxconn: int = 5):
    """Create the connection pool from the ``database`` config section."""
    global dbPool
    if dbPool:
        return dbPool
    dbconfig = {
        "dbname": f"{database.get('name', '')}",
        "user": f"{database.get('user', '')}",
        "password": f"{database.get('password', '')}",
        "host": f"{database.get('host', '')}",
        "port": int(database.get("port") or 5432),
    }
    try:
        dbPool = pool.ThreadedConnectionPool(minconn, maxconn, **dbconfig)
    except Exception:
        logger.exception("Failed to create DB connection pool")
        dbPool = None
        raise
    return dbPool


def getDB():
    """Get a connection from the pool.

    Raises RuntimeError if pool isn't initialized.
    """
    if not dbPool:
        raise RuntimeError("DB pool is not initialized")
    return dbPool.getconn()


def putDB(conn):
    """Return connection back to the pool. Safe no-op if pool missing."""
    if not dbPool:
        return
    try:
        dbPool.putconn(conn)
    except Exception:
        logger.exception("Failed to return connection to pool")


def close_db_pool():
    """Close the connection pool (call at shutdown)."""
    global dbPool
    if not dbPool:
        return
    try:
        dbPool.closeall()
    except Exception:
        logger.exception("Failed to close DB pool")
    finally:
        dbPool = None


@contextmanager
def db_cursor(commit: bool = True):
    """Context manager that yields (conn, cur).

    Usage:
      with db_cursor() as (conn, cur):
          cur.execute(...)

    Commits at exit when no exception; set commit=False for read-only use.
    """
    conn = getDB()
    cur = None
    try:
        cur = conn.cursor()
        yield conn, cur
        if commit:
            conn.commit()
    except Exception:
        try:
            conn.rollback()
        except Exception:
            logger.exception("Rollback failed in db_cursor")
        raise
    finally:
        if cur is not None:
            try:
                cur.close()
            except Exception:
                logger.exception("Failed closing cursor in db_cursor")
        putDB(conn)
