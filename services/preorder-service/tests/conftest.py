from __future__ import annotations

import sqlite3
from typing import List

import pytest

from preorder_service.database import apply_schema
from preorder_service.repository import BackendError, TableStore


@pytest.fixture()
def connection_factory(tmp_path):
    db_path = tmp_path / "preorder.db"

    def factory() -> sqlite3.Connection:
        conn = sqlite3.connect(db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    conn = factory()
    try:
        apply_schema(conn)
    finally:
        conn.close()
    return factory


@pytest.fixture()
def store(connection_factory) -> TableStore:
    return TableStore(connection_factory=connection_factory)


@pytest.fixture()
def meals(store) -> List[dict]:
    return store.insert(
        "meals",
        [
            {"name": "Pasta", "description": "Tomato and basil", "price": 12.0, "available": True},
            {"name": "Salad", "description": "Green leaves", "price": 8.5, "available": True},
            {"name": "Soup", "description": "Of the day", "price": 5.0, "available": False},
        ],
    )


class FlakyStore(TableStore):
    """TableStore whose reads or writes to chosen tables fail on demand."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.failing_inserts: set = set()
        self.failing_updates: set = set()
        self.fail_reads = False

    def select(self, table, **kwargs):
        if self.fail_reads:
            raise BackendError(f"read of {table} failed")
        return super().select(table, **kwargs)

    def fetch_orders_with_items(self, *args, **kwargs):
        if self.fail_reads:
            raise BackendError("read of orders failed")
        return super().fetch_orders_with_items(*args, **kwargs)

    def insert(self, table, rows):
        if table in self.failing_inserts:
            raise BackendError(f"insert into {table} failed")
        return super().insert(table, rows)

    def update(self, table, values, match):
        if table in self.failing_updates:
            raise BackendError(f"update of {table} failed")
        return super().update(table, values, match)


@pytest.fixture()
def flaky_store(connection_factory) -> FlakyStore:
    return FlakyStore(connection_factory=connection_factory)
