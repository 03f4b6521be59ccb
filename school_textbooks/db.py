from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator, Union

import streamlit as st

from school_textbooks.schema import SCHEMA_SQL

logger = logging.getLogger(__name__)


class StoreConnection(sqlite3.Connection):
    """
    sqlite3 connection that knows whether a managed write transaction is open.

    Streamlit shares one cached connection across script threads. Every statement
    issued through `q`, `x`, `rowcount` or `transaction` holds the re-entrant
    `write_lock`, so one thread's open transaction is never joined, committed or
    read by another thread.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.write_lock = threading.RLock()
        self.tx_depth = 0


def connect(db_path: Union[Path, str]) -> StoreConnection:
    conn = sqlite3.connect(
        str(db_path),
        check_same_thread=False,
        isolation_level=None,
        timeout=10.0,
        factory=StoreConnection,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


@st.cache_resource
def get_conn(db_path: Path) -> StoreConnection:
    return connect(db_path)


def _column_exists(conn: sqlite3.Connection, table: str, column: str) -> bool:
    rows = conn.execute(f"PRAGMA table_info({table});").fetchall()
    cols = [r["name"] for r in rows]
    return column in cols


def ensure_schema(conn: StoreConnection) -> None:
    # executescript() commits whatever is open, so keep other writers out.
    with conn.write_lock:
        # Create base schema (for new installs)
        conn.executescript(SCHEMA_SQL)

        # ---- migrations for existing installs ----
        for table in ("distributions", "individual_distributions"):
            # Return notes were added after the first release
            if not _column_exists(conn, table, "return_notes"):
                conn.execute(f"ALTER TABLE {table} ADD COLUMN return_notes TEXT;")

            # Idempotency keys for allocation requests (NULLs never collide)
            if not _column_exists(conn, table, "request_key"):
                conn.execute(f"ALTER TABLE {table} ADD COLUMN request_key TEXT;")
            conn.execute(f"CREATE UNIQUE INDEX IF NOT EXISTS ux_{table}_request_key ON {table}(request_key);")

        if conn.in_transaction:
            conn.commit()


@contextmanager
def transaction(conn: StoreConnection) -> Iterator[StoreConnection]:
    """
    Serializing write transaction.

    Takes the connection's write lock and SQLite's reserved lock (BEGIN IMMEDIATE)
    so check-then-write sequences cannot interleave with other writers. Commits on
    success, rolls back and re-raises on any error. Nested use joins the outer
    transaction.
    """
    with conn.write_lock:
        if conn.tx_depth:
            conn.tx_depth += 1
            try:
                yield conn
            finally:
                conn.tx_depth -= 1
            return

        conn.execute("BEGIN IMMEDIATE;")
        conn.tx_depth = 1
        try:
            yield conn
        except BaseException:
            conn.tx_depth = 0
            conn.rollback()
            logger.debug("Transaction rolled back")
            raise
        else:
            conn.tx_depth = 0
            conn.commit()


def q(conn: StoreConnection, sql: str, params: Iterable[Any] = ()) -> list[sqlite3.Row]:
    # Under the write lock a read never sees another thread's open transaction.
    with conn.write_lock:
        cur = conn.execute(sql, tuple(params))
        rows = cur.fetchall()
        cur.close()
    return rows


def x(conn: StoreConnection, sql: str, params: Iterable[Any] = ()) -> int:
    """Single write; joins the caller's transaction or commits on its own."""
    with transaction(conn):
        cur = conn.execute(sql, tuple(params))
        last = cur.lastrowid
        cur.close()
    return int(last or 0)


def rowcount(conn: StoreConnection, sql: str, params: Iterable[Any] = ()) -> int:
    """Write helper for conditional UPDATE/DELETE where the affected row count matters."""
    with transaction(conn):
        cur = conn.execute(sql, tuple(params))
        n = cur.rowcount
        cur.close()
    return int(n)
