import os
import sys
from datetime import date

import pytest

sys.path.insert(0, os.path.abspath("src"))

from tapstore.store import MemoryKeyValueStorage, ReportBuilder, SalesService, StoreEngine
from tapstore.store.constants import UNKNOWN_USERNAME
from tapstore.store.report import build_predicate, sum_detail_rows


@pytest.fixture()
def engine():
    eng = StoreEngine(MemoryKeyValueStorage())
    eng.open()
    yield eng
    eng.close()


@pytest.fixture()
def service(engine):
    return SalesService(engine)


def _seed_sales(service):
    service.create_event("Oktoberfest", event_id="okt", location="Blumenau", event_date="2024-10-05")
    service.set_price("ipa", 500, 10.0)
    service.set_price("ipa", 500, 12.0, event_id="okt")
    service.set_price("weiss", 300, 6.0)
    service.record_sale("ipa", 500, 2, timestamp="2024-10-05T18:00:00Z", event_id="okt", username="bia")
    service.record_sale("ipa", 500, 1, timestamp="2024-10-05T19:30:00Z", event_id="okt")
    service.record_sale("weiss", 300, 3, timestamp="2024-10-06T12:00:00Z", username="ana")
    service.record_sale("ipa", 500, 1, timestamp="2024-10-06T13:00:00Z", username="ana")
    service.record_sale("porter", 1000, 1, timestamp="2024-10-07T10:00:00Z", username="caio")


def test_empty_store_reports_zeros(engine):
    report = ReportBuilder(engine).get_full_report()
    assert report.is_empty
    assert report.summary.total_volume_liters == 0.0
    assert report.by_container_size == []
    assert report.by_catalog_item == []
    assert ReportBuilder(engine).get_total_revenue() == 0.0


def test_not_ready_engine_degrades_to_empty_values():
    builder = ReportBuilder(StoreEngine(MemoryKeyValueStorage()))
    assert builder.get_full_report().is_empty
    assert builder.get_total_revenue() == 0.0
    assert builder.get_detailed_without_event() == []
    assert builder.get_detailed_by_event("okt") is None
    assert builder.get_event_totals("okt").total_sales == 0


@pytest.mark.parametrize(
    "start, end, event_id, expected_sales",
    [
        (None, None, None, 5),
        ("2024-10-05", "2024-10-06", None, 4),
        ("2024-10-06", None, None, 3),
        (None, "2024-10-05", None, 2),
        (None, None, "okt", 2),
        ("2024-10-06", "2024-10-07", "okt", 0),
    ],
)
def test_aggregates_are_consistent(engine, service, start, end, event_id, expected_sales):
    _seed_sales(service)
    report = ReportBuilder(engine).get_full_report(start, end, event_id)

    assert report.summary.total_sales == expected_sales
    assert sum(g.count for g in report.by_container_size) == report.summary.total_sales
    assert sum(p.total_liters for p in report.by_catalog_item) == pytest.approx(report.summary.total_volume_liters)
    sizes = [g.size for g in report.by_container_size]
    assert sizes == sorted(sizes)
    liters = [p.total_liters for p in report.by_catalog_item]
    assert liters == sorted(liters, reverse=True)


def test_unfiltered_report_totals(engine, service):
    _seed_sales(service)
    report = ReportBuilder(engine).get_full_report()

    assert report.summary.total_sales == 5
    assert report.summary.total_volume_liters == pytest.approx(3.9)
    assert [g.size for g in report.by_container_size] == [300, 500, 1000]

    ipa = next(p for p in report.by_catalog_item if p.id == "ipa")
    assert ipa.total_cups == 4
    assert ipa.total_liters == pytest.approx(2.0)
    assert ipa.name == "India Pale Ale"


def test_event_price_wins_over_general_price(engine, service):
    _seed_sales(service)
    builder = ReportBuilder(engine)
    # 3 x 12.0 at the event, 1 x 10.0 outside it, 3 x 6.0 weiss, porter unpriced
    assert builder.get_total_revenue() == pytest.approx(36.0 + 10.0 + 18.0)
    assert builder.get_total_revenue(event_id="okt") == pytest.approx(36.0)
    by_item = {p.id: p.total_revenue for p in builder.get_full_report().by_catalog_item}
    assert by_item["ipa"] == pytest.approx(46.0)
    assert by_item["porter"] == 0.0


def test_end_date_is_inclusive_through_end_of_day(engine, service):
    service.record_sale("ipa", 300, 1, timestamp="2024-03-10T23:59:58Z")
    service.record_sale("ipa", 300, 1, timestamp="2024-03-11T00:00:01Z")
    builder = ReportBuilder(engine)

    assert builder.get_full_report(end_date="2024-03-10").summary.total_sales == 1
    assert builder.get_full_report(start_date=date(2024, 3, 10), end_date=date(2024, 3, 10)).summary.total_sales == 1
    assert builder.get_full_report(start_date="2024-03-11").summary.total_sales == 1
    assert builder.get_full_report(start_date="2024-03-10", end_date="2024-03-11").summary.total_sales == 2


def test_event_filter_restricts_every_aggregate(engine, service):
    _seed_sales(service)
    report = ReportBuilder(engine).get_full_report(event_id="okt")
    assert report.summary.total_sales == 2
    assert [(g.size, g.count) for g in report.by_container_size] == [(500, 2)]
    assert [p.id for p in report.by_catalog_item] == ["ipa"]


def test_repeated_queries_are_identical(engine, service):
    _seed_sales(service)
    builder = ReportBuilder(engine)
    first = builder.get_full_report("2024-10-05", "2024-10-06").to_dict()
    second = builder.get_full_report("2024-10-05", "2024-10-06").to_dict()
    assert first == second
    assert builder.get_total_revenue("2024-10-05") == builder.get_total_revenue("2024-10-05")


def test_detailed_by_event_groups_per_day_and_user(engine, service):
    _seed_sales(service)
    builder = ReportBuilder(engine)

    breakdown = builder.get_detailed_by_event("okt")
    assert breakdown is not None
    assert breakdown.event.name == "Oktoberfest"
    assert breakdown.event.location == "Blumenau"
    rows = [(r.sale_date, r.username, r.sales_count, r.total_quantity) for r in breakdown.rows]
    assert rows == [("2024-10-05", UNKNOWN_USERNAME, 1, 1), ("2024-10-05", "bia", 1, 2)]

    totals = builder.get_event_totals("okt")
    assert totals.total_sales == 2
    assert totals.total_liters == pytest.approx(1.5)
    assert totals.total_revenue == pytest.approx(36.0)

    assert builder.get_detailed_by_event("missing") is None


def test_detailed_without_event_orders_newest_day_first(engine, service):
    _seed_sales(service)
    rows = ReportBuilder(engine).get_detailed_without_event()
    assert [(r.sale_date, r.username) for r in rows] == [("2024-10-07", "caio"), ("2024-10-06", "ana")]
    ana = rows[1]
    assert ana.sales_count == 2
    assert ana.total_quantity == 4
    assert ana.total_revenue == pytest.approx(28.0)

    totals = sum_detail_rows(rows)
    assert totals.total_sales == 3
    assert totals.total_liters == pytest.approx(2.4)


def test_build_predicate_composes_clauses():
    where, params = build_predicate()
    assert (where, params) == ("", [])

    where, params = build_predicate("2024-01-01", "2024-01-31", "okt")
    assert where == "WHERE t.timestamp >= ? AND t.timestamp <= ? AND t.event_id = ?"
    assert params == ["2024-01-01T00:00:00.000Z", "2024-01-31T23:59:59.000Z", "okt"]

    where, params = build_predicate(event_id="okt", without_event=True)
    assert where == "WHERE t.event_id IS NULL"
    assert params == []


def test_bad_date_raises_value_error(engine):
    with pytest.raises(ValueError):
        ReportBuilder(engine).get_full_report(start_date="not-a-date")
