"""Read-only aggregate queries over the store engine.

All report queries share one predicate built from an optional date range
and an optional event scope. Rows are decoded by column position into the
typed variants from `models`.
"""

from __future__ import annotations

import sqlite3
from typing import Any, List, Optional, Sequence, Tuple

from ..logging import get_logger
from .constants import ML_PER_LITER, UNKNOWN_USERNAME
from .engine import StoreEngine
from .models import (
    DetailRow,
    DetailTotals,
    Event,
    EventBreakdown,
    EventStatistics,
    ItemStatistics,
    ProductGroup,
    Report,
    SizeGroup,
    Summary,
)
from .timestamps import Instant, end_of_day, iso_timestamp, optional_utc


LOG = get_logger("store-report")

# Event-specific price first, general price second, unpriced sales count as 0.
REVENUE_EXPR = """
    t.quantity * COALESCE(
        (SELECT p.unit_price FROM prices p
          WHERE p.catalog_item_id = t.catalog_item_id
            AND p.container_size = t.container_size
            AND p.event_id = t.event_id),
        (SELECT p.unit_price FROM prices p
          WHERE p.catalog_item_id = t.catalog_item_id
            AND p.container_size = t.container_size
            AND p.event_id IS NULL),
        0)
"""


def build_predicate(
    start_date: Optional[Instant] = None,
    end_date: Optional[Instant] = None,
    event_id: Optional[str] = None,
    *,
    without_event: bool = False,
) -> Tuple[str, List[Any]]:
    """Return (`WHERE ...` or "", params) over the `t` transactions alias."""
    clauses: List[str] = []
    params: List[Any] = []
    start = optional_utc(start_date)
    end = optional_utc(end_date)
    if start is not None:
        clauses.append("t.timestamp >= ?")
        params.append(iso_timestamp(start))
    if end is not None:
        clauses.append("t.timestamp <= ?")
        params.append(iso_timestamp(end_of_day(end)))
    if without_event:
        clauses.append("t.event_id IS NULL")
    elif event_id is not None:
        clauses.append("t.event_id = ?")
        params.append(str(event_id))
    where_sql = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    return where_sql, params


# --------------- row decoders ---------------

def _summary(row: Optional[sqlite3.Row]) -> Summary:
    if row is None:
        return Summary()
    return Summary(total_sales=int(row[0] or 0), total_volume_liters=float(row[1] or 0.0))


def _size_group(row: sqlite3.Row) -> SizeGroup:
    return SizeGroup(size=int(row[0]), count=int(row[1] or 0))


def _product_group(row: sqlite3.Row) -> ProductGroup:
    return ProductGroup(
        id=str(row[0]),
        name=str(row[1]),
        color=row[2],
        description=row[3],
        total_liters=float(row[4] or 0.0),
        total_cups=int(row[5] or 0),
        total_revenue=float(row[6] or 0.0),
    )


def _detail_row(row: sqlite3.Row) -> DetailRow:
    return DetailRow(
        sale_date=str(row[0]),
        username=str(row[1]),
        sales_count=int(row[2] or 0),
        total_quantity=int(row[3] or 0),
        total_liters=float(row[4] or 0.0),
        total_revenue=float(row[5] or 0.0),
    )


def sum_detail_rows(rows: Sequence[DetailRow]) -> DetailTotals:
    """Client-side totals for a list of detail rows."""
    totals = DetailTotals()
    for row in rows:
        totals.total_sales += row.sales_count
        totals.total_liters += row.total_liters
        totals.total_revenue += row.total_revenue
    return totals


class ReportBuilder:
    """Aggregates for dashboards and exports; never writes."""

    def __init__(self, engine: StoreEngine) -> None:
        self.engine = engine

    def get_full_report(
        self,
        start_date: Optional[Instant] = None,
        end_date: Optional[Instant] = None,
        event_id: Optional[str] = None,
    ) -> Report:
        if not self.engine.is_ready:
            LOG.debug("Engine not ready; returning empty report")
            return Report()

        where_sql, params = build_predicate(start_date, end_date, event_id)

        summary_rows = self.engine.query(
            f"""
            SELECT
                COUNT(t.id) AS total_sales,
                COALESCE(SUM(t.total_volume), 0) / {ML_PER_LITER} AS total_volume_liters
            FROM transactions t
            {where_sql};
            """,
            params,
        )
        by_size_rows = self.engine.query(
            f"""
            SELECT
                t.container_size AS size,
                COUNT(t.id) AS count
            FROM transactions t
            {where_sql}
            GROUP BY t.container_size
            ORDER BY t.container_size ASC;
            """,
            params,
        )
        by_item_rows = self.engine.query(
            f"""
            SELECT
                c.id,
                c.name,
                c.color,
                c.description,
                COALESCE(SUM(t.total_volume), 0) / {ML_PER_LITER} AS total_liters,
                COALESCE(SUM(t.quantity), 0) AS total_cups,
                COALESCE(SUM({REVENUE_EXPR}), 0) AS total_revenue
            FROM transactions t
            JOIN catalog_items c ON c.id = t.catalog_item_id
            {where_sql}
            GROUP BY c.id, c.name, c.color, c.description
            ORDER BY total_liters DESC;
            """,
            params,
        )

        report = Report(
            summary=_summary(summary_rows[0] if summary_rows else None),
            by_container_size=[_size_group(r) for r in by_size_rows],
            by_catalog_item=[_product_group(r) for r in by_item_rows],
        )
        LOG.debug(
            "Report start=%s end=%s event=%s -> %s sale(s), %.3f L",
            start_date,
            end_date,
            event_id,
            report.summary.total_sales,
            report.summary.total_volume_liters,
        )
        return report

    def get_total_revenue(
        self,
        start_date: Optional[Instant] = None,
        end_date: Optional[Instant] = None,
        event_id: Optional[str] = None,
    ) -> float:
        if not self.engine.is_ready:
            return 0.0
        where_sql, params = build_predicate(start_date, end_date, event_id)
        rows = self.engine.query(
            f"SELECT COALESCE(SUM({REVENUE_EXPR}), 0) AS total_revenue FROM transactions t {where_sql};",
            params,
        )
        return float(rows[0][0] or 0.0) if rows else 0.0

    # --------------- detailed breakdowns ---------------
    def _detail_rows(self, where_sql: str, params: List[Any]) -> List[DetailRow]:
        rows = self.engine.query(
            f"""
            SELECT
                DATE(t.timestamp) AS sale_date,
                COALESCE(t.username, ?) AS seller,
                COUNT(t.id) AS sales_count,
                COALESCE(SUM(t.quantity), 0) AS total_quantity,
                COALESCE(SUM(t.total_volume), 0) / {ML_PER_LITER} AS total_liters,
                COALESCE(SUM({REVENUE_EXPR}), 0) AS total_revenue
            FROM transactions t
            {where_sql}
            GROUP BY sale_date, seller
            ORDER BY sale_date DESC, seller ASC;
            """,
            [UNKNOWN_USERNAME, *params],
        )
        return [_detail_row(r) for r in rows]

    def get_event(self, event_id: str) -> Optional[Event]:
        if not self.engine.is_ready:
            return None
        rows = self.engine.query(
            "SELECT id, name, location, event_date, status FROM events WHERE id = ?;",
            (str(event_id),),
        )
        if not rows:
            return None
        r = rows[0]
        return Event(id=str(r[0]), name=str(r[1]), location=r[2], event_date=r[3], status=str(r[4]))

    def get_detailed_by_event(
        self,
        event_id: str,
        start_date: Optional[Instant] = None,
        end_date: Optional[Instant] = None,
    ) -> Optional[EventBreakdown]:
        """Per-day-per-user rows for one event; None if the event is unknown."""
        event = self.get_event(event_id)
        if event is None:
            return None
        where_sql, params = build_predicate(start_date, end_date, event_id)
        return EventBreakdown(event=event, rows=self._detail_rows(where_sql, params))

    def get_detailed_without_event(
        self,
        start_date: Optional[Instant] = None,
        end_date: Optional[Instant] = None,
    ) -> List[DetailRow]:
        if not self.engine.is_ready:
            return []
        where_sql, params = build_predicate(start_date, end_date, without_event=True)
        return self._detail_rows(where_sql, params)

    def get_event_totals(self, event_id: str) -> DetailTotals:
        """All-time totals of one event, regardless of any date filter."""
        if not self.engine.is_ready:
            return DetailTotals()
        rows = self.engine.query(
            f"""
            SELECT
                COUNT(t.id),
                COALESCE(SUM(t.total_volume), 0) / {ML_PER_LITER},
                COALESCE(SUM({REVENUE_EXPR}), 0)
            FROM transactions t
            WHERE t.event_id = ?;
            """,
            (str(event_id),),
        )
        r = rows[0]
        return DetailTotals(total_sales=int(r[0] or 0), total_liters=float(r[1] or 0.0), total_revenue=float(r[2] or 0.0))

    def get_event_statistics(self, event_id: str) -> EventStatistics:
        """All-time totals of one event plus per-item figures, highest revenue first."""
        totals = self.get_event_totals(event_id)
        stats = EventStatistics(
            event_id=str(event_id),
            total_sales=totals.total_sales,
            total_liters=totals.total_liters,
            total_revenue=totals.total_revenue,
        )
        if not self.engine.is_ready:
            return stats
        rows = self.engine.query(
            f"""
            SELECT
                c.id,
                c.name,
                COUNT(t.id) AS sales_count,
                COALESCE(SUM(t.quantity), 0) AS total_quantity,
                COALESCE(SUM(t.total_volume), 0) / {ML_PER_LITER} AS total_liters,
                COALESCE(SUM({REVENUE_EXPR}), 0) AS total_revenue
            FROM transactions t
            JOIN catalog_items c ON c.id = t.catalog_item_id
            WHERE t.event_id = ?
            GROUP BY c.id, c.name
            ORDER BY total_revenue DESC, c.name ASC;
            """,
            (str(event_id),),
        )
        stats.by_catalog_item = [
            ItemStatistics(
                id=str(r[0]),
                name=str(r[1]),
                sales_count=int(r[2] or 0),
                total_quantity=int(r[3] or 0),
                total_liters=float(r[4] or 0.0),
                total_revenue=float(r[5] or 0.0),
            )
            for r in rows
        ]
        return stats
