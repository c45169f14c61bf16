"""Render a report and its breakdowns as a spreadsheet-friendly CSV.

Output is `;`-delimited with CRLF line ends and a UTF-8 byte order mark so
that spreadsheet tools in comma-decimal locales open it without an import
dialog. Sections always appear in the same order; an empty section keeps its
header and gets a placeholder row instead of being dropped.
"""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from ..logging import get_logger
from ..store.models import DetailRow, DetailTotals, EventBreakdown, Report
from ..store.report import ReportBuilder, sum_detail_rows
from ..store.timestamps import Instant, optional_utc, to_utc


LOG = get_logger("csv-export")

BOM = "\ufeff"
DELIMITER = ";"
LINE_END = "\r\n"
FOOTER = "Report generated automatically by tapstore"

DETAIL_HEADER = ["Date", "User", "Sales", "Volume (Liters)", "Revenue"]
TOTALS_HEADER = ["", "Sales", "Volume (Liters)", "Revenue"]


@dataclass(frozen=True)
class ExportLocale:
    decimal_separator: str = "."
    date_format: str = "%d/%m/%Y"
    datetime_format: str = "%d/%m/%Y %H:%M:%S"


DEFAULT_LOCALE = ExportLocale()


@dataclass
class ExportBreakdowns:
    event: Optional[EventBreakdown] = None
    event_totals: Optional[DetailTotals] = None
    event_selected: bool = False
    without_event: List[DetailRow] = field(default_factory=list)
    start_date: Optional[Instant] = None
    end_date: Optional[Instant] = None


@dataclass(frozen=True)
class ExportDocument:
    filename: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


def export_filename(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"sales-report-{now.strftime('%Y-%m-%d')}.csv"


class _Writer:
    def __init__(self, locale: ExportLocale) -> None:
        self.locale = locale
        self.buf = io.StringIO()
        self.w = csv.writer(self.buf, delimiter=DELIMITER, lineterminator=LINE_END)

    def row(self, *cells: object) -> None:
        self.w.writerow(["" if c is None else c for c in cells])

    def blank(self) -> None:
        self.w.writerow([])

    def num(self, value: Optional[float]) -> str:
        text = f"{float(value or 0.0):.2f}"
        if self.locale.decimal_separator != ".":
            text = text.replace(".", self.locale.decimal_separator)
        return text

    def day(self, value: Optional[Instant]) -> str:
        if value is None or value == "":
            return "N/A"
        try:
            return to_utc(value).strftime(self.locale.date_format)
        except (ValueError, TypeError):
            return str(value)

    def detail_rows(self, rows: Sequence[DetailRow]) -> None:
        for r in rows:
            self.row(self.day(r.sale_date), r.username, r.sales_count, self.num(r.total_liters), self.num(r.total_revenue))

    def totals(self, label: str, totals: DetailTotals) -> None:
        self.blank()
        self.row(label, "", "", "")
        self.row(*TOTALS_HEADER)
        self.row("Total", totals.total_sales, self.num(totals.total_liters), self.num(totals.total_revenue))


def generate_export(
    report: Report,
    total_revenue: float,
    breakdowns: Optional[ExportBreakdowns] = None,
    *,
    generated_at: Optional[datetime] = None,
    locale: ExportLocale = DEFAULT_LOCALE,
) -> bytes:
    breakdowns = breakdowns or ExportBreakdowns()
    generated_at = generated_at or datetime.now(timezone.utc)
    out = _Writer(locale)

    out.row("Sales Report")
    out.row("Generated at", generated_at.strftime(locale.datetime_format))
    out.blank()

    out.row("=== GENERAL SUMMARY ===")
    out.row("Total sales", "Total volume (Liters)", "Total revenue")
    out.row(report.summary.total_sales, out.num(report.summary.total_volume_liters), out.num(total_revenue))
    out.blank()

    out.row("=== SALES BY PRODUCT ===")
    out.row("Product", "Quantity", "Volume (Liters)", "Revenue")
    if report.by_catalog_item:
        for item in report.by_catalog_item:
            out.row(item.name, item.total_cups, out.num(item.total_liters), out.num(item.total_revenue))
    else:
        out.row("No sales recorded", "", "", "")
    out.blank()

    out.row("=== SALES BY CONTAINER SIZE ===")
    out.row("Size (ml)", "Quantity")
    if report.by_container_size:
        for group in sorted(report.by_container_size, key=lambda g: g.size):
            out.row(group.size, group.count)
    else:
        out.row("No sales recorded", "")
    out.blank()

    out.row("=== DETAILED SALES BY EVENT ===")
    out.blank()
    if not breakdowns.event_selected:
        out.row("No event selected for breakdown.")
        out.blank()
    elif breakdowns.event is None:
        out.row("No sales linked to the selected event.")
        out.blank()
    else:
        event = breakdowns.event.event
        out.row(f"EVENT: {event.name}")
        out.row(f"Location: {event.location or 'N/A'}")
        out.row(f"Event date: {out.day(event.event_date)}")
        out.blank()
        out.row(*DETAIL_HEADER)
        out.detail_rows(breakdowns.event.rows)
        if breakdowns.event_totals is not None:
            out.totals("EVENT TOTAL", breakdowns.event_totals)
        out.blank()
        out.row("---")
        out.blank()

    out.row("=== SALES WITHOUT EVENT ===")
    out.blank()
    if breakdowns.without_event:
        out.row(*DETAIL_HEADER)
        out.detail_rows(breakdowns.without_event)
        out.totals("TOTAL WITHOUT EVENT", sum_detail_rows(breakdowns.without_event))
    else:
        out.row("No sales without event in the period.")
    out.blank()

    out.row("=== REPORT PERIOD ===")
    out.row("Description", "Date")
    start = optional_utc(breakdowns.start_date)
    end = optional_utc(breakdowns.end_date)
    if start is not None or end is not None:
        out.row("Period", f"{out.day(start)} to {out.day(end)}")
    else:
        out.row("Period", "All records")
    out.blank()
    out.row(FOOTER)

    content = (BOM + out.buf.getvalue()).encode("utf-8")
    LOG.debug(f"Generated export of {len(content)} bytes ({report.summary.total_sales} sale(s))")
    return content


def build_export_document(
    builder: ReportBuilder,
    start_date: Optional[Instant] = None,
    end_date: Optional[Instant] = None,
    event_id: Optional[str] = None,
    *,
    generated_at: Optional[datetime] = None,
    locale: ExportLocale = DEFAULT_LOCALE,
) -> ExportDocument:
    """Run every query the export needs and render it as a named document."""
    generated_at = generated_at or datetime.now(timezone.utc)
    report = builder.get_full_report(start_date, end_date, event_id)
    revenue = builder.get_total_revenue(start_date, end_date, event_id)
    breakdowns = ExportBreakdowns(
        event_selected=bool(event_id),
        without_event=builder.get_detailed_without_event(start_date, end_date),
        start_date=start_date,
        end_date=end_date,
    )
    if event_id:
        breakdowns.event = builder.get_detailed_by_event(event_id, start_date, end_date)
        if breakdowns.event is not None:
            breakdowns.event_totals = builder.get_event_totals(event_id)
    content = generate_export(report, revenue, breakdowns, generated_at=generated_at, locale=locale)
    return ExportDocument(filename=export_filename(generated_at), content=content)
