"""Persistent sales store.

Modules:
- storage: key/value media the database image is persisted to
- schema: table definitions and the default catalog seed
- engine: in-memory SQLite engine with explicit lifecycle state
- report: read-only aggregates (summary, sizes, items, breakdowns)
- service: write paths (sales, catalog, events, prices, settings)
"""

from .engine import EngineState, StoreEngine
from .report import ReportBuilder
from .service import SalesService
from .storage import FileKeyValueStorage, MemoryKeyValueStorage

__all__ = [
    "EngineState",
    "StoreEngine",
    "ReportBuilder",
    "SalesService",
    "FileKeyValueStorage",
    "MemoryKeyValueStorage",
]
