from __future__ import annotations

from typing import Tuple

# Bump the suffix when the schema changes; absence of the new key marks a
# database that still needs migrating.
STORAGE_KEY = "tapstore_sqlite_db_v1"

# Container sizes offered at the counter, in milliliters.
CONTAINER_SIZES: Tuple[int, ...] = (300, 500, 1000)

ML_PER_LITER = 1000.0

UNKNOWN_USERNAME = "Unknown user"

# (id, name, color, description)
DEFAULT_CATALOG: Tuple[Tuple[str, str, str, str], ...] = (
    ("ipa", "India Pale Ale", "#f39c12", "Bitter and aromatic."),
    ("weiss", "Weissbier", "#f1c40f", "Light and fruity."),
    ("porter", "Porter", "#8B4513", "Dark and robust."),
    ("pilsen", "Pilsen", "#f9e79f", "Pale and refreshing."),
)

# Event lifecycle, in order.
EVENT_STATUSES: Tuple[str, ...] = ("planning", "active", "finished")
DEFAULT_EVENT_STATUS = "planning"

# Stock at or above this many liters raises no alert; stock at 0 is "not tracked".
STOCK_ALERT_SETTING = "stock_alert_min_liters"
DEFAULT_STOCK_ALERT_MIN_LITERS = 5.0
