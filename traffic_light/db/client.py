"""MySQL client for rating storage.

Thread-local connection reuse: each thread gets a persistent connection that
reconnects on failure. Rating recomputations for different employers run on
different threads, so they never share a connection.
"""

import logging
import os
import threading
from contextlib import contextmanager
from functools import lru_cache
from typing import Any, Generator

import pymysql
from pymysql.cursors import DictCursor

logger = logging.getLogger(__name__)

_thread_local = threading.local()


@lru_cache(maxsize=1)
def _get_config() -> dict:
    """Get connection configuration.

    Environment variables:
        RATING_DB_HOST: Database host (default: 127.0.0.1)
        RATING_DB_PORT: Database port (default: 3306)
        RATING_DB_USER: Database user (default: root)
        RATING_DB_PASSWORD: Database password (default: empty)
        RATING_DB_DATABASE: Database name (default: traffic_light)

    Returns:
        Connection config dict
    """
    return {
        "host": os.environ.get("RATING_DB_HOST", "127.0.0.1"),
        "port": int(os.environ.get("RATING_DB_PORT", "3306")),
        "user": os.environ.get("RATING_DB_USER", "root"),
        "password": os.environ.get("RATING_DB_PASSWORD", ""),
        "database": os.environ.get("RATING_DB_DATABASE", "traffic_light"),
        "autocommit": True,
        "charset": "utf8mb4",
        "cursorclass": DictCursor,
    }


def get_connection() -> pymysql.Connection:
    """Get a thread-local database connection, reusing if alive.

    Returns:
        PyMySQL connection (reused per thread, reconnects on failure)
    """
    conn = getattr(_thread_local, "conn", None)
    if conn is not None:
        try:
            conn.ping(reconnect=False)
            return conn
        except pymysql.Error:
            logger.debug("Thread-local connection is dead, reconnecting")
            try:
                conn.close()
            except pymysql.Error:
                pass
    conn = pymysql.connect(**_get_config())
    _thread_local.conn = conn
    return conn


@contextmanager
def get_cursor() -> Generator[Any, None, None]:
    """Context manager for a dict cursor on the thread-local connection.

    Example:
        with get_cursor() as cursor:
            cursor.execute("SELECT * FROM employer_ratings WHERE employer_id = %s", (employer_id,))
            row = cursor.fetchone()
    """
    conn = get_connection()
    with conn.cursor() as cursor:
        yield cursor


def execute_query(sql: str, params: tuple | None = None, fetch: str = "all") -> list[dict] | dict | None:
    """Execute a query and return results.

    Args:
        sql: SQL query with %s placeholders
        params: Query parameters
        fetch: 'all' for fetchall(), 'one' for fetchone(), 'none' for no fetch

    Returns:
        Query results as list of dicts, single dict, or None

    Example:
        rows = execute_query("SELECT * FROM assessments WHERE employer_id = %s", (employer_id,))
        execute_query("DELETE FROM employer_ratings WHERE employer_id = %s", (employer_id,), fetch="none")
    """
    with get_cursor() as cursor:
        cursor.execute(sql, params or ())

        if fetch == "all":
            return cursor.fetchall()
        elif fetch == "one":
            return cursor.fetchone()
        return None


def check_connection() -> bool:
    """Test database connectivity.

    Returns:
        True if connection succeeds, False otherwise
    """
    try:
        with get_cursor() as cursor:
            cursor.execute("SELECT 1")
            return True
    except pymysql.Error as e:
        logger.warning(f"Database connection check failed: {e}")
        return False
