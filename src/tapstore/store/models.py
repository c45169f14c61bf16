from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class CatalogItem:
    id: str
    name: str
    color: Optional[str]
    description: Optional[str]


@dataclass
class Transaction:
    id: str
    catalog_item_id: str
    container_size: int      # ml
    quantity: int
    timestamp: str           # YYYY-MM-DDTHH:MM:SS.mmmZ
    total_volume: float      # ml
    event_id: Optional[str] = None
    username: Optional[str] = None


@dataclass
class Event:
    id: str
    name: str
    location: Optional[str]
    event_date: Optional[str]  # YYYY-MM-DD
    status: str = "planning"


@dataclass
class StockLevel:
    catalog_item_id: str
    name: str
    color: Optional[str]
    liters: float
    event_id: Optional[str] = None
    updated_at: Optional[str] = None


# ---------- query row variants ----------

@dataclass
class Summary:
    total_sales: int = 0
    total_volume_liters: float = 0.0


@dataclass
class SizeGroup:
    size: int
    count: int


@dataclass
class ProductGroup:
    id: str
    name: str
    color: Optional[str]
    description: Optional[str]
    total_liters: float
    total_cups: int
    total_revenue: float = 0.0


@dataclass
class DetailRow:
    sale_date: str           # YYYY-MM-DD
    username: str
    sales_count: int
    total_quantity: int
    total_liters: float
    total_revenue: float


@dataclass
class DetailTotals:
    total_sales: int = 0
    total_liters: float = 0.0
    total_revenue: float = 0.0


@dataclass
class EventBreakdown:
    event: Event
    rows: List[DetailRow] = field(default_factory=list)


@dataclass
class ItemStatistics:
    id: str
    name: str
    sales_count: int
    total_quantity: int
    total_liters: float
    total_revenue: float


@dataclass
class EventStatistics:
    event_id: str
    total_sales: int = 0
    total_liters: float = 0.0
    total_revenue: float = 0.0
    by_catalog_item: List[ItemStatistics] = field(default_factory=list)


@dataclass
class Report:
    summary: Summary = field(default_factory=Summary)
    by_container_size: List[SizeGroup] = field(default_factory=list)
    by_catalog_item: List[ProductGroup] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.summary.total_sales == 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
