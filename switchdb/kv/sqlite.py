"""
SQLite key-value backend.

This module stores items of every partition in a single SQLite table and
implements conditional transactions with SQLite's own locking: each
transaction runs under BEGIN IMMEDIATE, reads the current items, evaluates
the conditions and applies the writes before COMMIT.

Invariants:
    - One row per (pk, sk); all other attributes live in attrs_json
    - A transaction holds the database write lock from the first read of
      its items until COMMIT or ROLLBACK
    - A cancelled transaction leaves no trace

How to change safely:
    - Schema changes must be backward compatible with existing files
    - Keep condition semantics identical to the in-memory backend
    - Test concurrent writers from several connections

Table schema:
    items:
        - pk TEXT
        - sk TEXT
        - attrs_json TEXT (JSON object without pk/sk)
        - PRIMARY KEY (pk, sk)
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, List, Optional, Sequence

from .base import (
    CONDITION_FAILED,
    NO_FAILURE,
    PARTITION_KEY,
    SORT_KEY,
    BackendConnectionError,
    BackendTimeoutError,
    BackendUnavailableError,
    CancellationReason,
    ConditionCheckFailedError,
    Item,
    Key,
    WriteOp,
    apply_write,
    check_ops,
)

logger = logging.getLogger(__name__)


class SqliteBackend:
    """SQLite implementation of KeyValueBackend.

    Thread safety:
        Each operation opens its own connection. Concurrent writers are
        serialized by SQLite's database lock (BEGIN IMMEDIATE).

    Example:
        >>> backend = SqliteBackend("/var/lib/switchdb/switches.db")
        >>> await backend.connect()
        >>> await backend.get(Key("123", "LATEST_SWITCH"))
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        path: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the backend.

        Args:
            path: SQLite database file
            wal_mode: Enable SQLite WAL journal mode
            busy_timeout_ms: How long to wait for the write lock
        """
        self.path = Path(path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        if not self._connected:
            raise BackendConnectionError("Not connected")

        try:
            conn = sqlite3.connect(
                str(self.path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Autocommit by default, explicit transactions
            )
        except sqlite3.Error as e:
            raise BackendConnectionError(f"Failed to open {self.path}: {e}") from e
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")

            yield conn
        except sqlite3.OperationalError as e:
            if "locked" in str(e) or "busy" in str(e):
                raise BackendTimeoutError(f"SQLite lock timeout: {e}") from e
            raise BackendUnavailableError(f"SQLite error: {e}") from e
        except sqlite3.Error as e:
            raise BackendUnavailableError(f"SQLite error: {e}") from e
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS items (
                pk TEXT NOT NULL,
                sk TEXT NOT NULL,
                attrs_json TEXT NOT NULL DEFAULT '{}',
                PRIMARY KEY (pk, sk)
            );

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)

    async def connect(self) -> None:
        """Create the database file and schema if needed.

        Raises:
            BackendConnectionError: If the file cannot be created
        """
        if self._connected:
            return

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BackendConnectionError(f"Cannot create {self.path.parent}: {e}") from e

        self._connected = True
        try:
            with self._get_connection() as conn:
                self._create_schema(conn)
        except BackendUnavailableError as e:
            self._connected = False
            raise BackendConnectionError(str(e)) from e

        logger.info("SQLite backend ready", extra={"path": str(self.path)})

    async def close(self) -> None:
        self._connected = False
        logger.info("SQLite backend closed", extra={"path": str(self.path)})

    async def get(self, key: Key) -> Optional[Item]:
        with self._get_connection() as conn:
            return self._fetch(conn, key)

    async def transact_write(self, ops: Sequence[WriteOp]) -> None:
        check_ops(ops)

        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                existing = [self._fetch(conn, op.key) for op in ops]

                reasons = []
                failed = False
                for op, current in zip(ops, existing):
                    if op.condition is None or op.condition.evaluate(current):
                        reasons.append(CancellationReason(NO_FAILURE))
                        continue
                    failed = True
                    returned = current if op.return_old_on_failure else None
                    reasons.append(CancellationReason(CONDITION_FAILED, returned))

                if failed:
                    conn.execute("ROLLBACK")
                    raise ConditionCheckFailedError(reasons)

                for op, current in zip(ops, existing):
                    self._store(conn, apply_write(op, current))

                conn.execute("COMMIT")

            except ConditionCheckFailedError:
                raise
            except Exception:
                conn.execute("ROLLBACK")
                raise

        logger.debug(
            "Transaction committed to SQLite",
            extra={"keys": [str(op.key) for op in ops]},
        )

    async def query(
        self,
        partition: str,
        sort_prefix: str = "",
        limit: Optional[int] = None,
        ascending: bool = True,
    ) -> List[Item]:
        order = "ASC" if ascending else "DESC"
        sql = (
            "SELECT pk, sk, attrs_json FROM items "
            "WHERE pk = ? AND substr(sk, 1, ?) = ? "
            f"ORDER BY sk {order}"
        )
        params: List[Any] = [partition, len(sort_prefix), sort_prefix]
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)

        with self._get_connection() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_item(row) for row in rows]

    def _fetch(self, conn: sqlite3.Connection, key: Key) -> Optional[Item]:
        row = conn.execute(
            "SELECT pk, sk, attrs_json FROM items WHERE pk = ? AND sk = ?",
            (key.partition, key.sort),
        ).fetchone()
        return self._row_to_item(row) if row else None

    def _store(self, conn: sqlite3.Connection, item: Item) -> None:
        attrs = {k: v for k, v in item.items() if k not in (PARTITION_KEY, SORT_KEY)}
        conn.execute(
            """
            INSERT INTO items (pk, sk, attrs_json) VALUES (?, ?, ?)
            ON CONFLICT (pk, sk) DO UPDATE SET attrs_json = excluded.attrs_json
            """,
            (item[PARTITION_KEY], item[SORT_KEY], json.dumps(attrs, sort_keys=True)),
        )

    @staticmethod
    def _row_to_item(row: sqlite3.Row) -> Item:
        item: Item = {PARTITION_KEY: row["pk"], SORT_KEY: row["sk"]}
        item.update(json.loads(row["attrs_json"]))
        return item
