"""Relational schema and default catalog for a fresh database.

Neither function is idempotent: the engine only calls them after it found
no persisted image, so a second call on the same connection raises.
"""

from __future__ import annotations

import sqlite3

from ..logging import get_logger
from .constants import DEFAULT_CATALOG

LOG = get_logger("store-schema")


SCHEMA_SQL = """
CREATE TABLE catalog_items (
  id           TEXT PRIMARY KEY,
  name         TEXT NOT NULL,
  color        TEXT,
  description  TEXT
);

CREATE TABLE events (
  id          TEXT PRIMARY KEY,
  name        TEXT NOT NULL,
  location    TEXT,
  event_date  TEXT,                   -- "YYYY-MM-DD"
  status      TEXT NOT NULL DEFAULT 'planning' CHECK(status IN ('planning', 'active', 'finished'))
);

-- Append-only; total_volume is in milliliters (container_size * quantity)
CREATE TABLE transactions (
  id               TEXT PRIMARY KEY,
  catalog_item_id  TEXT NOT NULL REFERENCES catalog_items(id) ON DELETE RESTRICT,
  container_size   INTEGER NOT NULL CHECK(container_size > 0),
  quantity         INTEGER NOT NULL CHECK(quantity > 0),
  timestamp        TEXT NOT NULL,     -- "YYYY-MM-DDTHH:MM:SS.mmmZ" (UTC)
  total_volume     REAL NOT NULL,
  event_id         TEXT REFERENCES events(id) ON DELETE RESTRICT,
  username         TEXT
);

-- Unit prices per item and size; event_id NULL holds the general price
CREATE TABLE prices (
  catalog_item_id  TEXT NOT NULL REFERENCES catalog_items(id) ON DELETE CASCADE,
  container_size   INTEGER NOT NULL CHECK(container_size > 0),
  event_id         TEXT REFERENCES events(id) ON DELETE CASCADE,
  unit_price       REAL NOT NULL CHECK(unit_price >= 0)
);

-- Liters on hand per item; event_id NULL holds the general stock
CREATE TABLE event_stock (
  catalog_item_id  TEXT NOT NULL REFERENCES catalog_items(id) ON DELETE CASCADE,
  event_id         TEXT REFERENCES events(id) ON DELETE CASCADE,
  liters           REAL NOT NULL CHECK(liters >= 0),
  updated_at       TEXT NOT NULL
);

CREATE TABLE settings (
  key    TEXT PRIMARY KEY,
  value  TEXT
);

CREATE INDEX idx_transactions_timestamp ON transactions(timestamp);
CREATE INDEX idx_transactions_event     ON transactions(event_id);
CREATE UNIQUE INDEX idx_prices_unique   ON prices(catalog_item_id, container_size, COALESCE(event_id, ''));
CREATE UNIQUE INDEX idx_event_stock_unique ON event_stock(catalog_item_id, COALESCE(event_id, ''));
CREATE INDEX idx_events_status ON events(status);
"""


def create_schema(conn: sqlite3.Connection) -> None:
    LOG.info("Creating database schema")
    conn.executescript(SCHEMA_SQL)


def seed_initial_data(conn: sqlite3.Connection) -> int:
    """Insert the default catalog rows; returns how many were inserted."""
    conn.executemany(
        "INSERT INTO catalog_items (id, name, color, description) VALUES (?, ?, ?, ?);",
        DEFAULT_CATALOG,
    )
    LOG.info(f"Seeded {len(DEFAULT_CATALOG)} default catalog item(s)")
    return len(DEFAULT_CATALOG)
