import os
import sys

import pytest
from starlette.testclient import TestClient

sys.path.insert(0, os.path.abspath("src"))

from tapstore.cli.main import main
from tapstore.frontend import create_app
from tapstore.store import MemoryKeyValueStorage, ReportBuilder, SalesService, StoreEngine
from tapstore.store.constants import DEFAULT_STOCK_ALERT_MIN_LITERS


@pytest.fixture()
def engine():
    eng = StoreEngine(MemoryKeyValueStorage())
    eng.open()
    yield eng
    eng.close()


@pytest.fixture()
def service(engine):
    return SalesService(engine)


# ---------- event lifecycle ----------

def test_events_start_in_planning_and_move_through_statuses(service):
    service.create_event("Summer Fest", event_id="summer", event_date="2024-01-20")
    service.create_event("Oktoberfest", event_id="okt", event_date="2024-10-05", status="active")

    assert [e.id for e in service.list_events()] == ["okt", "summer"]
    assert [e.id for e in service.list_events("planning")] == ["summer"]
    assert [e.id for e in service.get_active_events()] == ["okt"]

    assert service.update_event_status("summer", "active") is True
    assert sorted(e.id for e in service.get_active_events()) == ["okt", "summer"]
    assert service.update_event_status("okt", "finished") is True
    assert [e.status for e in service.list_events("finished")] == ["finished"]


def test_unknown_status_or_event(service):
    service.create_event("Summer Fest", event_id="summer")
    with pytest.raises(ValueError):
        service.update_event_status("summer", "cancelled")
    with pytest.raises(ValueError):
        service.create_event("Bad", status="done")
    with pytest.raises(ValueError):
        service.list_events("someday")
    assert service.update_event_status("missing", "active") is False


def test_event_statistics_group_items_by_revenue(engine, service):
    service.create_event("Oktoberfest", event_id="okt", status="active")
    service.set_price("ipa", 500, 12.0, event_id="okt")
    service.set_price("weiss", 300, 20.0)
    service.record_sale("ipa", 500, 2, event_id="okt")
    service.record_sale("weiss", 300, 1, event_id="okt")
    service.record_sale("weiss", 300, 1, event_id="okt")
    service.record_sale("porter", 500, 5)

    stats = ReportBuilder(engine).get_event_statistics("okt")
    assert stats.total_sales == 3
    assert stats.total_liters == pytest.approx(1.6)
    assert stats.total_revenue == pytest.approx(64.0)
    assert [(i.id, i.sales_count, i.total_quantity) for i in stats.by_catalog_item] == [("weiss", 2, 2), ("ipa", 1, 2)]
    assert ReportBuilder(engine).get_event("okt").status == "active"


# ---------- stock ----------

def test_sales_draw_from_the_matching_stock_only(service):
    service.create_event("Oktoberfest", event_id="okt")
    service.set_event_stock("ipa", 10.0)
    service.set_event_stock("ipa", 20.0, event_id="okt")

    service.record_sale("ipa", 500, 3, event_id="okt")
    service.record_sale("ipa", 300, 2)

    assert [s.liters for s in service.get_event_stock("okt")] == [pytest.approx(18.5)]
    assert [s.liters for s in service.get_event_stock()] == [pytest.approx(9.4)]


def test_stock_never_goes_negative_and_untracked_items_are_ignored(service):
    service.set_event_stock("ipa", 0.4)
    service.record_sale("ipa", 1000, 1)
    service.record_sale("weiss", 500, 1)

    stock = service.get_event_stock()
    assert [(s.catalog_item_id, s.liters) for s in stock] == [("ipa", 0.0)]
    assert stock[0].name == "India Pale Ale"
    assert stock[0].color == "#f39c12"


def test_set_stock_replaces_and_remove_drops_tracking(service):
    service.set_event_stock("porter", 5.0)
    service.set_event_stock("porter", 7.5)
    assert [s.liters for s in service.get_event_stock()] == [7.5]
    assert service.remove_event_stock("porter") is True
    assert service.remove_event_stock("porter") is False
    assert service.get_event_stock() == []
    with pytest.raises(ValueError):
        service.set_event_stock("porter", -1)


def test_stock_alerts_use_configured_threshold(service):
    service.set_event_stock("ipa", 3.0)
    service.set_event_stock("weiss", 8.0)
    service.set_event_stock("porter", 0.0)

    assert service.get_stock_alert_min_liters() == DEFAULT_STOCK_ALERT_MIN_LITERS
    assert [s.catalog_item_id for s in service.get_stock_alerts()] == ["ipa"]

    service.set_stock_alert_min_liters(10)
    assert service.get_stock_alert_min_liters() == 10.0
    assert [s.catalog_item_id for s in service.get_stock_alerts()] == ["ipa", "weiss"]

    with pytest.raises(ValueError):
        service.set_stock_alert_min_liters(0)


def test_stock_survives_reopen():
    storage = MemoryKeyValueStorage()
    engine = StoreEngine(storage)
    engine.open()
    SalesService(engine).set_event_stock("pilsen", 12.0)
    SalesService(engine).record_sale("pilsen", 1000, 2)
    engine.close()

    reopened = StoreEngine(storage)
    reopened.open()
    assert [s.liters for s in SalesService(reopened).get_event_stock()] == [10.0]


# ---------- outer surfaces ----------

def test_api_exposes_events_statistics_and_stock(engine, service):
    service.create_event("Oktoberfest", event_id="okt")
    service.set_event_stock("ipa", 2.0, event_id="okt")
    client = TestClient(create_app(engine))

    assert client.get("/api/events", params={"status": "planning"}).json()["items"][0]["id"] == "okt"
    assert client.get("/api/events", params={"status": "bogus"}).status_code == 400

    assert client.post("/api/events/okt/status", json={"status": "active"}).status_code == 200
    assert client.post("/api/events/okt/status", json={"status": "bogus"}).status_code == 400
    assert client.post("/api/events/nope/status", json={"status": "active"}).status_code == 404
    assert client.get("/api/events", params={"status": "active"}).json()["items"][0]["status"] == "active"

    stats = client.get("/api/events/okt/statistics").json()
    assert stats["total_sales"] == 0
    assert client.get("/api/events/nope/statistics").status_code == 404

    assert client.get("/api/stock", params={"event_id": "okt"}).json()["items"][0]["liters"] == 2.0
    alerts = client.get("/api/stock/alerts", params={"event_id": "okt"}).json()
    assert alerts["min_liters"] == DEFAULT_STOCK_ALERT_MIN_LITERS
    assert [a["catalog_item_id"] for a in alerts["items"]] == ["ipa"]


def test_cli_stock_and_event_status(tmp_path, capsys):
    data_dir = str(tmp_path / "data")
    base = ["--data-dir", data_dir, "--env-dir", data_dir]

    assert main([*base, "stock", "--set", "ipa", "--liters", "4"]) == 0
    assert main([*base, "stock", "--alerts"]) == 0
    assert '"catalog_item_id": "ipa"' in capsys.readouterr().out
    assert main([*base, "event-status", "--event", "missing", "--status", "active"]) == 2
