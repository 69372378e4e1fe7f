from __future__ import annotations

import logging
import os
import sqlite3
import time
import uuid
from datetime import datetime, timezone
from typing import Iterable

import psycopg
from psycopg.rows import dict_row

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS meals (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    image_url TEXT NOT NULL DEFAULT '',
    price REAL NOT NULL DEFAULT 0 CHECK (price >= 0),
    available INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS orders (
    id TEXT PRIMARY KEY,
    user_name TEXT NOT NULL,
    room_number TEXT NOT NULL,
    pickup_time TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'preparing', 'ready', 'picked_up')),
    special_instructions TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS order_items (
    id TEXT PRIMARY KEY,
    order_id TEXT NOT NULL,
    meal_id TEXT NOT NULL,
    quantity INTEGER NOT NULL CHECK (quantity >= 1),
    created_at TEXT NOT NULL,
    FOREIGN KEY (order_id) REFERENCES orders (id),
    FOREIGN KEY (meal_id) REFERENCES meals (id)
);
"""

SEED_MEALS = [
    ("Pasta Carbonara", "Spaghetti with pancetta, egg yolk and pecorino", "/images/carbonara.jpg", 12.0),
    ("Garden Salad", "Mixed greens, cherry tomatoes and house vinaigrette", "/images/salad.jpg", 8.5),
    ("Chicken Curry", "Mild coconut curry with basmati rice", "/images/curry.jpg", 11.5),
    ("Veggie Wrap", "Grilled vegetables and hummus in a whole-wheat wrap", "/images/wrap.jpg", 7.0),
    ("Chocolate Brownie", "Warm brownie with a dusting of cocoa", "/images/brownie.jpg", 4.0),
]


def _build_database_url() -> str:
    if url := os.environ.get("DATABASE_URL"):
        return url
    user = os.environ.get("DB_USER", "preorder")
    password = os.environ.get("DB_PASSWORD", "preorder")
    host = os.environ.get("DB_HOST", "preorder-db")
    port = os.environ.get("DB_PORT", "5432")
    name = os.environ.get("DB_NAME", "preorder_service")
    return f"postgresql://{user}:{password}@{host}:{port}/{name}"


DATABASE_URL = _build_database_url()


def get_connection():
    """Return a connection against Postgres (default) or SQLite when configured."""
    retries = int(os.environ.get("DB_CONNECT_MAX_RETRIES", "30"))
    delay = float(os.environ.get("DB_CONNECT_RETRY_DELAY", "2"))
    last_exc: Exception | None = None
    for attempt in range(retries):
        try:
            return _connect_once()
        except Exception as exc:  # pragma: no cover - only hits when DB down
            last_exc = exc
            if attempt == retries - 1:
                raise
            logger.warning(
                "Database not reachable (attempt %d/%d): %s", attempt + 1, retries, exc
            )
            time.sleep(delay)
    raise last_exc  # pragma: no cover


def _connect_once():
    if DATABASE_URL.startswith("sqlite://"):
        path = DATABASE_URL.replace("sqlite:///", "")
        conn = sqlite3.connect(path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    return psycopg.connect(DATABASE_URL, autocommit=True, row_factory=dict_row)


def init_db(connection_factory=get_connection) -> None:
    conn = connection_factory()
    try:
        apply_schema(conn)
        if os.environ.get("SEED_MEALS", "1") != "0":
            seed_if_empty(conn)
    finally:
        conn.close()


def apply_schema(conn) -> None:
    if hasattr(conn, "executescript"):
        conn.executescript(SCHEMA_SQL)
        conn.commit()
        return

    with conn.cursor() as cur:
        for statement in _split_statements(SCHEMA_SQL):
            cur.execute(statement)
    conn.commit()


def _split_statements(sql_blob: str) -> Iterable[str]:
    for statement in sql_blob.split(";"):
        stmt = statement.strip()
        if stmt:
            yield stmt


def seed_if_empty(conn) -> None:
    cursor = conn.execute("SELECT COUNT(1) AS cnt FROM meals;")
    row = cursor.fetchone()
    count = 0
    if row is not None:
        if isinstance(row, dict):
            count = row.get("cnt", 0) or 0
        else:
            count = row[0] or 0
    if count > 0:
        return

    now = datetime.now(timezone.utc).isoformat()
    rows = [
        (str(uuid.uuid4()), name, description, image_url, price, 1, now)
        for name, description, image_url, price in SEED_MEALS
    ]
    placeholder = placeholder_for(conn)
    insert_meals = (
        "INSERT INTO meals (id, name, description, image_url, price, available, created_at)"
        f" VALUES ({', '.join(placeholder for _ in range(7))})"
    )
    cur = conn.cursor()
    try:
        cur.executemany(insert_meals, rows)
    finally:
        cur.close()
    conn.commit()
    logger.info("Seeded %d demo meals", len(rows))


def placeholder_for(conn) -> str:
    module = conn.__class__.__module__
    return "%s" if "psycopg" in module else "?"
