from __future__ import annotations

import functools
import sqlite3
import threading
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, TypeVar

import streamlit as st

from metalerp.errors import MetalErpError, OpResult, classify_db_error
from metalerp.logging_config import get_logger
from metalerp.schema import MIGRATIONS

logger = get_logger("db")

T = TypeVar("T")


class Store:
    """
    Storage session: one SQLite connection, the lock every read and unit of work
    takes, and the durability hook run after each committed transaction.
    """

    def __init__(self, conn: sqlite3.Connection, *, flush: Optional[Callable[[], None]] = None):
        self.conn = conn
        self.lock = threading.RLock()
        self.flush_hook = flush
        self._depth = 0

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    def close(self) -> None:
        self.conn.close()


def _connect(db_path: Path | str) -> sqlite3.Connection:
    # isolation_level=None: no implicit transactions, unit_of_work issues BEGIN itself.
    conn = sqlite3.connect(str(db_path), check_same_thread=False, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def open_store(db_path: Path | str = ":memory:", *, flush: Optional[Callable[[], None]] = None) -> Store:
    conn = _connect(db_path)
    if str(db_path) != ":memory:" and flush is None:
        conn.execute("PRAGMA journal_mode = WAL;")

        def flush() -> None:
            conn.execute("PRAGMA wal_checkpoint(FULL);")

    store = Store(conn, flush=flush)
    ensure_schema(store)
    return store


@st.cache_resource
def get_store(db_path: Path) -> Store:
    return open_store(db_path)


def schema_version(store: Store) -> int:
    with store.lock:
        return int(store.conn.execute("PRAGMA user_version;").fetchone()[0])


def ensure_schema(store: Store) -> int:
    """Apply pending migrations once, in order. Returns the number applied."""
    applied = 0
    with store.lock:
        current = schema_version(store)
        for version, description, sql in MIGRATIONS:
            if version <= current:
                continue
            # executescript commits any open transaction, so each migration
            # carries its own BEGIN/COMMIT.
            try:
                store.conn.executescript(f"BEGIN;\n{sql}\nPRAGMA user_version = {int(version)};\nCOMMIT;")
            except sqlite3.Error:
                if store.conn.in_transaction:
                    store.conn.execute("ROLLBACK;")
                raise
            logger.info("schema_migrated", extra={"version": version, "description": description})
            applied += 1
    return applied


def q(store: Store, sql: str, params: Iterable[Any] = ()) -> list[sqlite3.Row]:
    # Sessions share one connection: a read waits for any open unit of work
    # so it only ever sees committed rows.
    with store.lock:
        cur = store.conn.execute(sql, tuple(params))
        rows = cur.fetchall()
        cur.close()
    return rows


def q1(store: Store, sql: str, params: Iterable[Any] = ()) -> Optional[sqlite3.Row]:
    rows = q(store, sql, params)
    return rows[0] if rows else None


def x(store: Store, sql: str, params: Iterable[Any] = ()) -> int:
    with store.lock:
        cur = store.conn.execute(sql, tuple(params))
        last = cur.lastrowid
        cur.close()
    return int(last or 0)


def xc(store: Store, sql: str, params: Iterable[Any] = ()) -> int:
    """Execute and return the number of affected rows."""
    with store.lock:
        cur = store.conn.execute(sql, tuple(params))
        n = cur.rowcount
        cur.close()
    return int(n)


class unit_of_work:
    """
    Scoped transaction over a Store.

        with unit_of_work(store) as uow:
            ...
        uow.warnings  # flush problems after commit

    Takes the store's write lock, BEGIN IMMEDIATE on entry, COMMIT on normal
    exit, ROLLBACK on any exception. A nested unit of work joins the outer
    transaction; only the outermost commits and flushes.
    """

    def __init__(self, store: Store):
        self.store = store
        self.warnings: list[str] = []
        self._outermost = False

    def __enter__(self) -> "unit_of_work":
        self.store.lock.acquire()
        self._outermost = self.store._depth == 0
        if self._outermost:
            try:
                self.store.conn.execute("BEGIN IMMEDIATE;")
            except BaseException:
                self.store.lock.release()
                raise
        self.store._depth += 1
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        try:
            self.store._depth -= 1
            if not self._outermost:
                return False
            if exc_type is not None:
                if self.store.conn.in_transaction:
                    self.store.conn.execute("ROLLBACK;")
                return False
            try:
                self.store.conn.execute("COMMIT;")
            except BaseException:
                if self.store.conn.in_transaction:
                    self.store.conn.execute("ROLLBACK;")
                raise
        finally:
            self.store.lock.release()

        self._flush()
        return False

    def _flush(self) -> None:
        hook = self.store.flush_hook
        if hook is None:
            return
        # Committed is committed: a failed flush is reported, never rolled back.
        try:
            hook()
        except Exception as e:
            logger.warning("flush_failed", exc_info=True)
            self.warnings.append(f"Changes were saved but could not be flushed to durable storage: {e}")


def operation(context: str) -> Callable[[Callable[..., OpResult]], Callable[..., OpResult]]:
    """
    Wrap a public mutating service so every failure comes back as an OpResult.
    The unit of work inside has already rolled back by the time we get here.
    """

    def deco(fn: Callable[..., OpResult]) -> Callable[..., OpResult]:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> OpResult:
            try:
                return fn(*args, **kwargs)
            except MetalErpError as e:
                logger.info("operation_rejected", extra={"operation": context, "code": e.code, "error": e.message})
                return OpResult.fail(e)
            except Exception as e:
                err = classify_db_error(e)
                logger.exception("operation_failed", extra={"operation": context, "code": err.code})
                return OpResult.fail(err)

        return wrapper

    return deco
