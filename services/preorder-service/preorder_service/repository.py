from __future__ import annotations

import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, List, Mapping, Sequence

import psycopg

from .changes import ChangeEvent, ChangeFeed
from .database import get_connection, placeholder_for

logger = logging.getLogger(__name__)

TABLE_COLUMNS: Dict[str, tuple] = {
    "meals": ("id", "name", "description", "image_url", "price", "available", "created_at"),
    "orders": (
        "id",
        "user_name",
        "room_number",
        "pickup_time",
        "status",
        "special_instructions",
        "created_at",
    ),
    "order_items": ("id", "order_id", "meal_id", "quantity", "created_at"),
}

BOOLEAN_COLUMNS = {"meals": {"available"}}


class BackendError(Exception):
    """Raised when the backing database rejects or fails a read or write."""


class RowNotFoundError(Exception):
    """Raised when a row addressed by identifier does not exist."""


class TableStore:
    """Table-level CRUD access that publishes a change event for every written row."""

    def __init__(self, connection_factory=get_connection, feed: ChangeFeed | None = None):
        self._connection_factory = connection_factory
        self.feed = feed or ChangeFeed()

    @contextmanager
    def _connection(self):
        try:
            conn = self._connection_factory()
        except (sqlite3.Error, psycopg.Error) as exc:
            raise BackendError(f"Database unavailable: {exc}") from exc
        try:
            yield conn
        except (sqlite3.Error, psycopg.Error) as exc:
            raise BackendError(str(exc)) from exc
        finally:
            conn.close()

    def select(
        self,
        table: str,
        *,
        filters: Mapping[str, object] | None = None,
        order_by: str | None = None,
        ascending: bool = True,
    ) -> List[dict]:
        columns = _columns(table)
        filters = dict(filters or {})
        for name in filters:
            _check_column(table, name)
        if order_by is not None:
            _check_column(table, order_by)

        with self._connection() as conn:
            placeholder = placeholder_for(conn)
            query = f"SELECT {', '.join(columns)} FROM {table}"
            if filters:
                query += " WHERE " + " AND ".join(f"{name} = {placeholder}" for name in filters)
            if order_by is not None:
                query += f" ORDER BY {order_by} {'ASC' if ascending else 'DESC'}"
            rows = conn.execute(query, tuple(_to_db(table, filters).values())).fetchall()
            return [_from_db(table, row) for row in rows]

    def get(self, table: str, row_id: str) -> dict:
        rows = self.select(table, filters={"id": row_id})
        if not rows:
            raise RowNotFoundError(f"{table} row {row_id} does not exist")
        return rows[0]

    def insert(self, table: str, rows: Sequence[Mapping[str, object]]) -> List[dict]:
        """Insert ``rows`` in one transaction and return them with id and created_at set.

        Either every row of the batch is stored or none is.
        """
        columns = _columns(table)
        if not rows:
            return []
        now = datetime.now(timezone.utc).isoformat()
        records = []
        for row in rows:
            for name in row:
                _check_column(table, name)
            record = {"id": str(uuid.uuid4()), "created_at": now}
            record.update(row)
            records.append(record)

        with self._connection() as conn:
            placeholder = placeholder_for(conn)
            with _transaction(conn):
                for record in records:
                    values = _to_db(table, record)
                    conn.execute(
                        f"INSERT INTO {table} ({', '.join(values)}) "
                        f"VALUES ({', '.join(placeholder for _ in values)})",
                        tuple(values.values()),
                    )
            ids = [record["id"] for record in records]
            rows = conn.execute(
                f"SELECT {', '.join(columns)} FROM {table} "
                f"WHERE id IN ({', '.join(placeholder for _ in ids)})",
                tuple(ids),
            ).fetchall()
            by_id = {row["id"]: _from_db(table, row) for row in rows}

        stored = [by_id[record_id] for record_id in ids]
        logger.debug("Inserted %d row(s) into %s", len(stored), table)
        for record in stored:
            self.feed.publish(ChangeEvent(table, "INSERT", record))
        return stored

    def update(
        self, table: str, values: Mapping[str, object], match: Mapping[str, object]
    ) -> List[dict]:
        """Patch ``values`` on every row equal to ``match`` and return the updated rows."""
        columns = _columns(table)
        if not values or not match:
            raise ValueError("update needs both values and a match predicate")
        for name in (*values, *match):
            _check_column(table, name)

        with self._connection() as conn:
            placeholder = placeholder_for(conn)
            assignments = ", ".join(f"{name} = {placeholder}" for name in values)
            predicate = " AND ".join(f"{name} = {placeholder}" for name in match)
            params = (*_to_db(table, values).values(), *_to_db(table, match).values())
            with _transaction(conn):
                conn.execute(f"UPDATE {table} SET {assignments} WHERE {predicate}", params)
            rows = conn.execute(
                f"SELECT {', '.join(columns)} FROM {table} WHERE {predicate}",
                tuple(_to_db(table, match).values()),
            ).fetchall()
            updated = [_from_db(table, row) for row in rows]

        for record in updated:
            self.feed.publish(ChangeEvent(table, "UPDATE", record))
        return updated

    def fetch_orders_with_items(
        self, order_by: str = "pickup_time", ascending: bool = True
    ) -> List[dict]:
        """Read every order together with its items and each item's meal."""
        _check_column("orders", order_by)
        order_columns = TABLE_COLUMNS["orders"]
        item_columns = TABLE_COLUMNS["order_items"]
        meal_columns = TABLE_COLUMNS["meals"]
        selected = (
            [f"o.{name} AS o_{name}" for name in order_columns]
            + [f"i.{name} AS i_{name}" for name in item_columns]
            + [f"m.{name} AS m_{name}" for name in meal_columns]
        )
        direction = "ASC" if ascending else "DESC"
        query = f"""
            SELECT {', '.join(selected)}
            FROM orders o
            LEFT JOIN order_items i ON i.order_id = o.id
            LEFT JOIN meals m ON m.id = i.meal_id
            ORDER BY o.{order_by} {direction}, o.id, i.created_at, i.id
        """
        with self._connection() as conn:
            rows = conn.execute(query).fetchall()

        orders: Dict[str, dict] = {}
        for row in rows:
            row = dict(row)
            order_id = row["o_id"]
            order = orders.get(order_id)
            if order is None:
                order = _from_db("orders", {name: row[f"o_{name}"] for name in order_columns})
                order["order_items"] = []
                orders[order_id] = order
            if row["i_id"] is None:
                continue
            item = _from_db("order_items", {name: row[f"i_{name}"] for name in item_columns})
            item["meal"] = (
                _from_db("meals", {name: row[f"m_{name}"] for name in meal_columns})
                if row["m_id"] is not None
                else None
            )
            order["order_items"].append(item)
        return list(orders.values())


@contextmanager
def _transaction(conn):
    if hasattr(conn, "transaction"):
        with conn.transaction():
            yield
        return
    try:
        yield
    except Exception:
        conn.rollback()
        raise
    conn.commit()


def _columns(table: str) -> tuple:
    try:
        return TABLE_COLUMNS[table]
    except KeyError:
        raise ValueError(f"Unknown table: {table}") from None


def _check_column(table: str, name: str) -> None:
    if name not in _columns(table):
        raise ValueError(f"Unknown column {name!r} for table {table}")


def _to_db(table: str, values: Mapping[str, object]) -> Dict[str, object]:
    converted = dict(values)
    for name in BOOLEAN_COLUMNS.get(table, ()):
        if name in converted and converted[name] is not None:
            converted[name] = 1 if converted[name] else 0
    return converted


def _from_db(table: str, row) -> dict:
    record = dict(row)
    for name in BOOLEAN_COLUMNS.get(table, ()):
        if name in record and record[name] is not None:
            record[name] = bool(record[name])
    return record
