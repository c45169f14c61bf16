from __future__ import annotations

import re
import uuid
from typing import Dict, List, Optional

from ..logging import get_logger
from .constants import (
    DEFAULT_EVENT_STATUS,
    DEFAULT_STOCK_ALERT_MIN_LITERS,
    EVENT_STATUSES,
    ML_PER_LITER,
    STOCK_ALERT_SETTING,
)
from .engine import StoreEngine
from .models import CatalogItem, Event, StockLevel, Transaction
from .timestamps import Instant, iso_now, iso_timestamp


LOG = get_logger("store-service")

RECIPIENTS_SETTING = "report_recipients"

_ID_RE = re.compile(r"[^a-z0-9]+")


def _slug(name: str) -> str:
    return _ID_RE.sub("-", name.strip().lower()).strip("-")


def _check_status(status: str) -> None:
    if status not in EVENT_STATUSES:
        raise ValueError(f"Unknown event status {status!r}; expected one of: {', '.join(EVENT_STATUSES)}")


class SalesService:
    """Write paths sharing the store engine with the report builder.

    Every method that mutates goes through `StoreEngine.execute`, so the
    image is persisted before the method returns.
    """

    def __init__(self, engine: StoreEngine) -> None:
        self.engine = engine

    # --------------- catalog ---------------
    def add_catalog_item(
        self,
        name: str,
        *,
        item_id: Optional[str] = None,
        color: Optional[str] = None,
        description: Optional[str] = None,
    ) -> str:
        name = (name or "").strip()
        if not name:
            raise ValueError("Catalog item name is required.")
        new_id = item_id or _slug(name) or uuid.uuid4().hex
        self.engine.execute(
            "INSERT INTO catalog_items (id, name, color, description) VALUES (?, ?, ?, ?);",
            (new_id, name, color, description),
        )
        LOG.info(f"Added catalog item {new_id!r} ({name})")
        return new_id

    def list_catalog(self) -> List[CatalogItem]:
        rows = self.engine.query("SELECT id, name, color, description FROM catalog_items ORDER BY name ASC;")
        return [CatalogItem(id=r["id"], name=r["name"], color=r["color"], description=r["description"]) for r in rows]

    # --------------- events ---------------
    def create_event(
        self,
        name: str,
        *,
        event_id: Optional[str] = None,
        location: Optional[str] = None,
        event_date: Optional[str] = None,
        status: str = DEFAULT_EVENT_STATUS,
    ) -> str:
        name = (name or "").strip()
        if not name:
            raise ValueError("Event name is required.")
        _check_status(status)
        new_id = event_id or uuid.uuid4().hex
        self.engine.execute(
            "INSERT INTO events (id, name, location, event_date, status) VALUES (?, ?, ?, ?, ?);",
            (new_id, name, location, event_date, status),
        )
        LOG.info(f"Created event {new_id!r} ({name}) [{status}]")
        return new_id

    def list_events(self, status: Optional[str] = None) -> List[Event]:
        """Events newest first, optionally only those in one lifecycle status."""
        params: List[str] = []
        where_sql = ""
        if status is not None:
            _check_status(status)
            where_sql = "WHERE status = ?"
            params.append(status)
        rows = self.engine.query(
            f"SELECT id, name, location, event_date, status FROM events {where_sql} ORDER BY event_date DESC, name ASC;",
            params,
        )
        return [
            Event(id=r["id"], name=r["name"], location=r["location"], event_date=r["event_date"], status=r["status"])
            for r in rows
        ]

    def get_active_events(self) -> List[Event]:
        return self.list_events("active")

    def update_event_status(self, event_id: str, status: str) -> bool:
        """Move an event through its lifecycle; False if the event does not exist."""
        _check_status(status)
        changed = self.engine.execute("UPDATE events SET status = ? WHERE id = ?;", (status, str(event_id)))
        if changed:
            LOG.info(f"Event {event_id!r} is now {status}")
        return changed > 0

    # --------------- prices ---------------
    def set_price(
        self,
        catalog_item_id: str,
        container_size: int,
        unit_price: float,
        *,
        event_id: Optional[str] = None,
    ) -> None:
        if float(unit_price) < 0:
            raise ValueError("Unit price must be >= 0.")
        self.engine.execute_many(
            [
                (
                    """
                    DELETE FROM prices
                    WHERE catalog_item_id = ? AND container_size = ? AND COALESCE(event_id, '') = COALESCE(?, '');
                    """,
                    (catalog_item_id, int(container_size), event_id),
                ),
                (
                    "INSERT INTO prices (catalog_item_id, container_size, event_id, unit_price) VALUES (?, ?, ?, ?);",
                    (catalog_item_id, int(container_size), event_id, float(unit_price)),
                ),
            ]
        )
        LOG.debug(f"Price {catalog_item_id}/{container_size}ml [event={event_id or 'general'}] = {unit_price}")

    # --------------- sales ---------------
    def record_sale(
        self,
        catalog_item_id: str,
        container_size: int,
        quantity: int,
        *,
        timestamp: Optional[Instant] = None,
        event_id: Optional[str] = None,
        username: Optional[str] = None,
    ) -> Transaction:
        """Append one transaction and draw its volume from the matching stock.

        Unknown item or event ids raise IntegrityError. Stock is only drawn
        from when some is on hand for the item in the sale's event (or the
        general stock for sales without event), and never drops below zero.
        """
        size = int(container_size)
        qty = int(quantity)
        if size <= 0:
            raise ValueError("Container size must be > 0.")
        if qty <= 0:
            raise ValueError("Quantity must be > 0.")
        tx = Transaction(
            id=uuid.uuid4().hex,
            catalog_item_id=str(catalog_item_id),
            container_size=size,
            quantity=qty,
            timestamp=iso_timestamp(timestamp) if timestamp is not None else iso_now(),
            total_volume=float(size * qty),
            event_id=event_id,
            username=(username or "").strip() or None,
        )
        changed = self.engine.execute_many(
            [
                (
                    """
                    INSERT INTO transactions (
                        id, catalog_item_id, container_size, quantity,
                        timestamp, total_volume, event_id, username
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?);
                    """,
                    (
                        tx.id,
                        tx.catalog_item_id,
                        tx.container_size,
                        tx.quantity,
                        tx.timestamp,
                        tx.total_volume,
                        tx.event_id,
                        tx.username,
                    ),
                ),
                (
                    """
                    UPDATE event_stock
                    SET liters = MAX(0, liters - ?), updated_at = ?
                    WHERE catalog_item_id = ? AND COALESCE(event_id, '') = COALESCE(?, '') AND liters > 0;
                    """,
                    (tx.total_volume / ML_PER_LITER, iso_now(), tx.catalog_item_id, tx.event_id),
                ),
            ]
        )
        LOG.info(f"Recorded sale {tx.id}: {qty} x {size}ml of {tx.catalog_item_id!r}")
        if changed > 1:
            LOG.debug(f"Drew {tx.total_volume / ML_PER_LITER:.3f} L from stock [event={tx.event_id or 'general'}]")
        return tx

    # --------------- stock ---------------
    def set_event_stock(self, catalog_item_id: str, liters: float, *, event_id: Optional[str] = None) -> None:
        """Set the liters on hand for one item, per event or general (event_id None)."""
        if float(liters) < 0:
            raise ValueError("Stock must be >= 0 liters.")
        self.engine.execute_many(
            [
                (
                    "DELETE FROM event_stock WHERE catalog_item_id = ? AND COALESCE(event_id, '') = COALESCE(?, '');",
                    (catalog_item_id, event_id),
                ),
                (
                    "INSERT INTO event_stock (catalog_item_id, event_id, liters, updated_at) VALUES (?, ?, ?, ?);",
                    (catalog_item_id, event_id, float(liters), iso_now()),
                ),
            ]
        )
        LOG.info(f"Stock {catalog_item_id} [event={event_id or 'general'}] = {float(liters):.2f} L")

    def remove_event_stock(self, catalog_item_id: str, *, event_id: Optional[str] = None) -> bool:
        changed = self.engine.execute(
            "DELETE FROM event_stock WHERE catalog_item_id = ? AND COALESCE(event_id, '') = COALESCE(?, '');",
            (catalog_item_id, event_id),
        )
        return changed > 0

    def get_event_stock(self, event_id: Optional[str] = None) -> List[StockLevel]:
        rows = self.engine.query(
            """
            SELECT s.catalog_item_id, c.name, c.color, s.liters, s.event_id, s.updated_at
            FROM event_stock s
            JOIN catalog_items c ON c.id = s.catalog_item_id
            WHERE COALESCE(s.event_id, '') = COALESCE(?, '')
            ORDER BY c.name ASC;
            """,
            (event_id,),
        )
        return [
            StockLevel(
                catalog_item_id=r[0],
                name=r[1],
                color=r[2],
                liters=float(r[3]),
                event_id=r[4],
                updated_at=r[5],
            )
            for r in rows
        ]

    def get_stock_alert_min_liters(self) -> float:
        raw = self.get_setting(STOCK_ALERT_SETTING)
        try:
            value = float(raw) if raw is not None else DEFAULT_STOCK_ALERT_MIN_LITERS
        except ValueError:
            LOG.warning(f"Ignoring non-numeric {STOCK_ALERT_SETTING}={raw!r}")
            return DEFAULT_STOCK_ALERT_MIN_LITERS
        return value if value > 0 else DEFAULT_STOCK_ALERT_MIN_LITERS

    def set_stock_alert_min_liters(self, min_liters: float) -> None:
        if float(min_liters) <= 0:
            raise ValueError("Alert threshold must be > 0 liters.")
        self.set_setting(STOCK_ALERT_SETTING, repr(float(min_liters)))

    def get_stock_alerts(self, event_id: Optional[str] = None) -> List[StockLevel]:
        """Tracked items running low: more than 0 but under the alert threshold."""
        min_liters = self.get_stock_alert_min_liters()
        return [s for s in self.get_event_stock(event_id) if 0 < s.liters < min_liters]

    # --------------- settings ---------------
    def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        rows = self.engine.query("SELECT value FROM settings WHERE key = ?;", (key,))
        return rows[0]["value"] if rows else default

    def set_setting(self, key: str, value: Optional[str]) -> None:
        self.engine.execute(
            "INSERT INTO settings (key, value) VALUES (?, ?) ON CONFLICT(key) DO UPDATE SET value = excluded.value;",
            (key, value),
        )

    def all_settings(self) -> Dict[str, Optional[str]]:
        return {r["key"]: r["value"] for r in self.engine.query("SELECT key, value FROM settings ORDER BY key;")}

    def get_configured_recipients(self) -> List[str]:
        raw = self.get_setting(RECIPIENTS_SETTING) or ""
        return [e.strip() for e in raw.split(",") if e.strip()]

    def set_configured_recipients(self, recipients: List[str]) -> None:
        self.set_setting(RECIPIENTS_SETTING, ",".join(e.strip() for e in recipients if e.strip()))
