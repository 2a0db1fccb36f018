"""Filter-based record access over SQLite with explicit transactions.

Every table touched by the migration is addressed through the same handful of
operations: find by a column filter, insert, update by ``id`` and delete by a
column filter.  Keeping the surface that small lets the migration logic run
against any store that honours the :class:`RecordStore` protocol.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Tuple

LOGGER = logging.getLogger(__name__)

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class TransactionError(RuntimeError):
    """Raised when a transaction is started, committed or rolled back out of turn."""


class Transaction(Protocol):
    def allow_commit(self) -> None:
        ...

    def rollback(self, reason: Optional[BaseException] = None) -> None:
        ...

    def __enter__(self) -> "Transaction":
        ...

    def __exit__(self, exc_type, exc, tb) -> bool:
        ...


class RecordStore(Protocol):
    """Repository operations the migration relies on."""

    def get_record(self, table: str, filters: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        ...

    def get_records(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        order_by: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        ...

    def insert_record(self, table: str, values: Mapping[str, Any]) -> int:
        ...

    def update_record(self, table: str, values: Mapping[str, Any]) -> None:
        ...

    def delete_records(self, table: str, filters: Mapping[str, Any]) -> int:
        ...

    def count_records(self, table: str, filters: Optional[Mapping[str, Any]] = None) -> int:
        ...

    def count_records_sql(self, sql: str, params: Sequence[Any] = ()) -> int:
        ...

    def start_transaction(self) -> Transaction:
        ...


def _check_identifier(name: str) -> str:
    if not isinstance(name, str) or not IDENTIFIER_PATTERN.match(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return name


def _where_clause(filters: Optional[Mapping[str, Any]]) -> Tuple[str, List[Any]]:
    if not filters:
        return "", []
    clauses: List[str] = []
    params: List[Any] = []
    for column, value in filters.items():
        _check_identifier(column)
        if value is None:
            clauses.append(f"{column} IS NULL")
        else:
            clauses.append(f"{column} = ?")
            params.append(value)
    return " WHERE " + " AND ".join(clauses), params


def _order_clause(order_by: Optional[Iterable[str]]) -> str:
    if not order_by:
        return ""
    parts: List[str] = []
    for entry in order_by:
        column, _, direction = entry.partition(" ")
        _check_identifier(column)
        direction = direction.strip().upper() or "ASC"
        if direction not in {"ASC", "DESC"}:
            raise ValueError(f"Invalid sort direction: {direction!r}")
        parts.append(f"{column} {direction}")
    return " ORDER BY " + ", ".join(parts)


def _row_to_dict(row: Any) -> Dict[str, Any]:
    if isinstance(row, sqlite3.Row):
        return {key: row[key] for key in row.keys()}
    return dict(row)


class SqliteTransaction:
    """Single-use transaction handle bound to a :class:`SqliteRecordStore`.

    ``allow_commit`` must be called explicitly.  When the handle is used as a
    context manager, leaving the block without committing rolls back, so an
    exception raised inside the block never leaves partial writes behind.
    """

    def __init__(self, store: "SqliteRecordStore") -> None:
        self._store = store
        self._finished = False

    @property
    def is_active(self) -> bool:
        return not self._finished

    def allow_commit(self) -> None:
        if self._finished:
            raise TransactionError("Transaction has already been finished")
        self._store.connection.commit()
        self._finished = True
        self._store._release(self)

    def rollback(self, reason: Optional[BaseException] = None) -> None:
        """Roll back and, when *reason* is an exception, re-raise it."""
        if not self._finished:
            self._store.connection.rollback()
            self._finished = True
            self._store._release(self)
            if reason is not None:
                LOGGER.warning("Transaction rolled back: %s", reason)
        if reason is not None:
            raise reason

    def __enter__(self) -> "SqliteTransaction":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if not self._finished:
            self._store.connection.rollback()
            self._finished = True
            self._store._release(self)
            if exc is None:
                LOGGER.warning("Transaction left without commit; changes rolled back")
        return False


class SqliteRecordStore:
    """:class:`RecordStore` implementation backed by a ``sqlite3`` connection."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        self.connection = connection
        self._active: Optional[SqliteTransaction] = None

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------
    def start_transaction(self) -> SqliteTransaction:
        if self._active is not None:
            raise TransactionError("A transaction is already in progress")
        if self.connection.in_transaction:
            raise TransactionError("Connection has uncommitted changes")
        self.connection.execute("BEGIN")
        self._active = SqliteTransaction(self)
        return self._active

    def _release(self, transaction: SqliteTransaction) -> None:
        if self._active is transaction:
            self._active = None

    # ------------------------------------------------------------------
    # CRUD helpers
    # ------------------------------------------------------------------
    def get_record(self, table: str, filters: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        where, params = _where_clause(filters)
        cursor = self.connection.execute(
            f"SELECT * FROM {_check_identifier(table)}{where} ORDER BY id LIMIT 1",
            params,
        )
        row = cursor.fetchone()
        return _row_to_dict(row) if row is not None else None

    def get_records(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        order_by: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        where, params = _where_clause(filters)
        order = _order_clause(order_by or ("id",))
        if limit is not None:
            order += " LIMIT ?"
            params.append(int(limit))
        cursor = self.connection.execute(
            f"SELECT * FROM {_check_identifier(table)}{where}{order}",
            params,
        )
        return [_row_to_dict(row) for row in cursor.fetchall()]

    def insert_record(self, table: str, values: Mapping[str, Any]) -> int:
        if not values:
            raise ValueError("Cannot insert an empty record")
        columns = [_check_identifier(column) for column in values.keys()]
        placeholders = ", ".join("?" for _ in columns)
        cursor = self.connection.execute(
            f"INSERT INTO {_check_identifier(table)} ({', '.join(columns)}) VALUES ({placeholders})",
            list(values.values()),
        )
        return int(cursor.lastrowid)

    def update_record(self, table: str, values: Mapping[str, Any]) -> None:
        if "id" not in values:
            raise ValueError("update_record requires an 'id' value")
        assignments = {key: value for key, value in values.items() if key != "id"}
        if not assignments:
            return
        columns = [_check_identifier(column) for column in assignments.keys()]
        set_clause = ", ".join(f"{column} = ?" for column in columns)
        cursor = self.connection.execute(
            f"UPDATE {_check_identifier(table)} SET {set_clause} WHERE id = ?",
            [*assignments.values(), values["id"]],
        )
        if cursor.rowcount == 0:
            raise KeyError(f"Record {table}:{values['id']} not found")

    def delete_records(self, table: str, filters: Mapping[str, Any]) -> int:
        if not filters:
            raise ValueError("delete_records requires at least one filter")
        where, params = _where_clause(filters)
        cursor = self.connection.execute(
            f"DELETE FROM {_check_identifier(table)}{where}",
            params,
        )
        return cursor.rowcount

    def count_records(self, table: str, filters: Optional[Mapping[str, Any]] = None) -> int:
        where, params = _where_clause(filters)
        cursor = self.connection.execute(
            f"SELECT COUNT(*) FROM {_check_identifier(table)}{where}",
            params,
        )
        return int(cursor.fetchone()[0])

    def count_records_sql(self, sql: str, params: Sequence[Any] = ()) -> int:
        cursor = self.connection.execute(sql, list(params))
        row = cursor.fetchone()
        return int(row[0]) if row is not None and row[0] is not None else 0


__all__ = [
    "RecordStore",
    "SqliteRecordStore",
    "SqliteTransaction",
    "Transaction",
    "TransactionError",
]
