"""Relational storage backends used by the recorder and grading services.

Architecture note:
    The core only needs table-level insert, upsert, filtered select and
    filtered update, which is the subset a hosted Postgres REST layer offers.
    ``InMemoryStorage`` backs the tests and the demo server; ``SqliteStorage``
    keeps the same contract on disk. Both raise ``StorageError`` and never
    retry.
"""

from __future__ import annotations

import logging
import os
import re
import sqlite3
from copy import deepcopy
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Mapping, Protocol, Sequence
from uuid import uuid4

from activity_app.constants.activity_constants import (
    TABLE_ACTIVITIES,
    TABLE_ACTIVITY_QUESTIONS,
    TABLE_QUESTIONS,
    TABLE_STUDENT_ANSWERS,
    TABLE_SUBJECTS,
    TABLE_SUBMISSIONS,
)
from activity_app.core.errors import StorageError

logger = logging.getLogger(__name__)

Row = dict[str, Any]

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class StorageBackend(Protocol):
    """Operations the core expects from the relational-storage collaborator."""

    def insert(self, table: str, row: Mapping[str, Any]) -> Row: ...

    def upsert(
        self,
        table: str,
        rows: Sequence[Mapping[str, Any]],
        conflict_keys: Sequence[str],
    ) -> list[Row]: ...

    def select(
        self,
        table: str,
        filters: Mapping[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Row]: ...

    def update(
        self,
        table: str,
        filters: Mapping[str, Any],
        values: Mapping[str, Any],
    ) -> list[Row]: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _apply_defaults(table: str, row: Mapping[str, Any]) -> Row:
    prepared = dict(row)
    prepared.setdefault("id", uuid4().hex)
    if table == TABLE_SUBMISSIONS:
        prepared.setdefault("submitted_at", _utcnow())
        prepared.setdefault("feedback", None)
    elif table == TABLE_ACTIVITIES:
        prepared.setdefault("created_at", _utcnow())
    return prepared


class InMemoryStorage:
    """Dictionary-backed storage with the same semantics as the hosted tables."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._tables: dict[str, list[Row]] = {}

    def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        with self._lock:
            prepared = _apply_defaults(table, row)
            self._tables.setdefault(table, []).append(prepared)
            return deepcopy(prepared)

    def upsert(
        self,
        table: str,
        rows: Sequence[Mapping[str, Any]],
        conflict_keys: Sequence[str],
    ) -> list[Row]:
        with self._lock:
            stored = self._tables.setdefault(table, [])
            written: list[Row] = []
            for row in rows:
                key = tuple(row.get(name) for name in conflict_keys)
                existing = next(
                    (r for r in stored if tuple(r.get(name) for name in conflict_keys) == key),
                    None,
                )
                if existing is None:
                    existing = _apply_defaults(table, row)
                    stored.append(existing)
                else:
                    existing.update(row)
                written.append(deepcopy(existing))
            return written

    def select(
        self,
        table: str,
        filters: Mapping[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Row]:
        with self._lock:
            rows = [r for r in self._tables.get(table, []) if _matches(r, filters)]
            if order_by is not None:
                rows.sort(key=lambda r: (r.get(order_by) is None, r.get(order_by)), reverse=descending)
            if limit is not None:
                rows = rows[:limit]
            return deepcopy(rows)

    def update(
        self,
        table: str,
        filters: Mapping[str, Any],
        values: Mapping[str, Any],
    ) -> list[Row]:
        with self._lock:
            updated: list[Row] = []
            for row in self._tables.get(table, []):
                if _matches(row, filters):
                    row.update(values)
                    updated.append(deepcopy(row))
            return updated


def _matches(row: Mapping[str, Any], filters: Mapping[str, Any] | None) -> bool:
    if not filters:
        return True
    return all(row.get(name) == value for name, value in filters.items())


_SQLITE_SCHEMA = f"""
CREATE TABLE IF NOT EXISTS {TABLE_SUBJECTS} (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS {TABLE_ACTIVITIES} (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    description TEXT,
    subject_id TEXT,
    created_at TEXT DEFAULT CURRENT_TIMESTAMP
);
CREATE TABLE IF NOT EXISTS {TABLE_QUESTIONS} (
    id TEXT PRIMARY KEY,
    subject_id TEXT,
    question_text TEXT NOT NULL,
    option_a TEXT NOT NULL,
    option_b TEXT NOT NULL,
    option_c TEXT NOT NULL,
    option_d TEXT NOT NULL,
    correct_answer TEXT NOT NULL,
    difficulty TEXT
);
CREATE TABLE IF NOT EXISTS {TABLE_ACTIVITY_QUESTIONS} (
    id TEXT PRIMARY KEY,
    activity_id TEXT NOT NULL REFERENCES {TABLE_ACTIVITIES}(id),
    question_id TEXT NOT NULL REFERENCES {TABLE_QUESTIONS}(id),
    position INTEGER
);
CREATE TABLE IF NOT EXISTS {TABLE_SUBMISSIONS} (
    id TEXT PRIMARY KEY,
    activity_id TEXT NOT NULL,
    student_id TEXT NOT NULL,
    submitted_at TEXT NOT NULL,
    status TEXT NOT NULL,
    score REAL,
    feedback TEXT
);
CREATE TABLE IF NOT EXISTS {TABLE_STUDENT_ANSWERS} (
    id TEXT PRIMARY KEY,
    submission_id TEXT NOT NULL REFERENCES {TABLE_SUBMISSIONS}(id),
    question_id TEXT NOT NULL,
    selected_answer TEXT NOT NULL,
    is_correct INTEGER NOT NULL,
    UNIQUE (submission_id, question_id)
);
"""


class SqliteStorage:
    """SQLite-backed storage; one connection per call."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def init_db(self) -> None:
        """Create the database file and tables if they do not exist."""
        directory = os.path.dirname(self._db_path)
        if directory and not os.path.exists(directory):
            os.makedirs(directory, exist_ok=True)
        with self._connect() as conn:
            conn.executescript(_SQLITE_SCHEMA)
        logger.info("SQLite storage ready at %s", self._db_path)

    def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        prepared = _to_sql_values(_apply_defaults(table, row))
        columns = [_identifier(name) for name in prepared]
        sql = (
            f"INSERT INTO {_identifier(table)} ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)})"
        )
        with self._connect() as conn:
            conn.execute(sql, tuple(prepared.values()))
            return self._fetch_by_id(conn, table, prepared["id"])

    def upsert(
        self,
        table: str,
        rows: Sequence[Mapping[str, Any]],
        conflict_keys: Sequence[str],
    ) -> list[Row]:
        conflict = [_identifier(name) for name in conflict_keys]
        written: list[Row] = []
        with self._connect() as conn:
            for row in rows:
                prepared = _to_sql_values(_apply_defaults(table, row))
                columns = [_identifier(name) for name in prepared]
                assignments = [
                    f"{name} = excluded.{name}"
                    for name in columns
                    if name not in conflict and name != "id"
                ]
                sql = (
                    f"INSERT INTO {_identifier(table)} ({', '.join(columns)}) "
                    f"VALUES ({', '.join('?' for _ in columns)}) "
                    f"ON CONFLICT ({', '.join(conflict)}) DO UPDATE SET {', '.join(assignments)}"
                )
                conn.execute(sql, tuple(prepared.values()))
                key_filters = {name: prepared[name] for name in conflict}
                written.extend(self._select(conn, table, key_filters, None, False, None))
        return written

    def select(
        self,
        table: str,
        filters: Mapping[str, Any] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Row]:
        with self._connect() as conn:
            return self._select(conn, table, filters, order_by, descending, limit)

    def update(
        self,
        table: str,
        filters: Mapping[str, Any],
        values: Mapping[str, Any],
    ) -> list[Row]:
        prepared = _to_sql_values(values)
        where, params = _where_clause(filters)
        assignments = ", ".join(f"{_identifier(name)} = ?" for name in prepared)
        with self._connect() as conn:
            matching = self._select(conn, table, filters, None, False, None)
            if not matching:
                return []
            conn.execute(
                f"UPDATE {_identifier(table)} SET {assignments}{where}",
                tuple(prepared.values()) + params,
            )
            ids = [row["id"] for row in matching]
            return [self._fetch_by_id(conn, table, row_id) for row_id in ids]

    def _connect(self) -> "_ManagedConnection":
        try:
            conn = sqlite3.connect(self._db_path)
        except sqlite3.Error as exc:
            raise StorageError(f"Could not open database: {exc}") from exc
        conn.row_factory = sqlite3.Row
        return _ManagedConnection(conn)

    def _select(
        self,
        conn: sqlite3.Connection,
        table: str,
        filters: Mapping[str, Any] | None,
        order_by: str | None,
        descending: bool,
        limit: int | None,
    ) -> list[Row]:
        where, params = _where_clause(filters)
        sql = f"SELECT * FROM {_identifier(table)}{where}"
        if order_by is not None:
            sql += f" ORDER BY {_identifier(order_by)} {'DESC' if descending else 'ASC'}"
        if limit is not None:
            sql += " LIMIT ?"
            params = params + (int(limit),)
        return [_from_sql_row(table, row) for row in conn.execute(sql, params).fetchall()]

    def _fetch_by_id(self, conn: sqlite3.Connection, table: str, row_id: Any) -> Row:
        rows = self._select(conn, table, {"id": row_id}, None, False, None)
        if not rows:
            raise StorageError(f"Row {row_id} vanished from {table}.")
        return rows[0]


class _ManagedConnection:
    """Context manager that commits or rolls back, translates errors and closes."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def __enter__(self) -> sqlite3.Connection:
        return self._conn

    def __exit__(self, exc_type, exc, traceback) -> bool:
        try:
            if exc_type is None:
                self._conn.commit()
            else:
                self._conn.rollback()
        finally:
            self._conn.close()
        if exc_type is not None and issubclass(exc_type, sqlite3.Error):
            raise StorageError(str(exc)) from exc
        return False


def _identifier(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise StorageError(f"Invalid identifier: {name!r}")
    return name


def _where_clause(filters: Mapping[str, Any] | None) -> tuple[str, tuple[Any, ...]]:
    if not filters:
        return "", ()
    prepared = _to_sql_values(filters)
    clause = " AND ".join(f"{_identifier(name)} = ?" for name in prepared)
    return f" WHERE {clause}", tuple(prepared.values())


def _to_sql_values(values: Mapping[str, Any]) -> Row:
    converted: Row = {}
    for name, value in values.items():
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, bool):
            value = int(value)
        converted[name] = value
    return converted


def _from_sql_row(table: str, row: sqlite3.Row) -> Row:
    converted = dict(row)
    if table == TABLE_STUDENT_ANSWERS and "is_correct" in converted:
        converted["is_correct"] = bool(converted["is_correct"])
    if table == TABLE_SUBMISSIONS and isinstance(converted.get("submitted_at"), str):
        converted["submitted_at"] = datetime.fromisoformat(converted["submitted_at"])
    return converted
