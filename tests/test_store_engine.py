import os
import sqlite3
import sys

import pytest

sys.path.insert(0, os.path.abspath("src"))

from tapstore.errors import InitializationFailure, NotReady, PersistenceFailure
from tapstore.store import EngineState, FileKeyValueStorage, MemoryKeyValueStorage, SalesService, StoreEngine
from tapstore.store.constants import DEFAULT_CATALOG, STORAGE_KEY
from tapstore.store.storage import encode_image


def _open(storage):
    engine = StoreEngine(storage)
    engine.open()
    return engine


def test_fresh_open_creates_seeded_database_and_persists_it():
    storage = MemoryKeyValueStorage()
    engine = _open(storage)

    assert engine.state is EngineState.READY
    ids = [r["id"] for r in engine.query("SELECT id FROM catalog_items ORDER BY id;")]
    assert ids == sorted(row[0] for row in DEFAULT_CATALOG)
    assert engine.stats() == {"transactions": 0, "catalog_items": 4, "settings": 0}
    assert storage.get_item(STORAGE_KEY)


def test_use_before_open_raises_not_ready():
    engine = StoreEngine(MemoryKeyValueStorage())
    with pytest.raises(NotReady):
        engine.query("SELECT 1;")
    with pytest.raises(NotReady):
        engine.execute("DELETE FROM settings;")
    with pytest.raises(NotReady):
        engine.reset()
    assert engine.stats()["transactions"] == 0


def test_writes_survive_reopen(tmp_path):
    storage = FileKeyValueStorage(str(tmp_path))
    engine = _open(storage)
    service = SalesService(engine)
    for qty in (1, 2, 3):
        service.record_sale("ipa", 500, qty, username="ana")
    service.set_setting("theme", "dark")
    engine.close()

    reopened = _open(FileKeyValueStorage(str(tmp_path)))
    rows = reopened.query("SELECT quantity, total_volume FROM transactions ORDER BY quantity;")
    assert [(r["quantity"], r["total_volume"]) for r in rows] == [(1, 500.0), (2, 1000.0), (3, 1500.0)]
    assert SalesService(reopened).get_setting("theme") == "dark"
    assert reopened.stats()["catalog_items"] == 4


def test_export_image_round_trips_through_storage():
    storage = MemoryKeyValueStorage()
    engine = _open(storage)
    SalesService(engine).record_sale("porter", 300, 2)
    assert storage.get_item(STORAGE_KEY) == encode_image(engine.export_image())


@pytest.mark.parametrize(
    "stored",
    [
        "",
        "%%% not base64 %%%",
        encode_image(b"this is not a sqlite database" * 50),
    ],
)
def test_unreadable_image_fails_and_is_left_untouched(stored):
    storage = MemoryKeyValueStorage()
    storage.set_item(STORAGE_KEY, stored)
    engine = StoreEngine(storage)
    seen = []
    engine.subscribe(seen.append)

    with pytest.raises(InitializationFailure):
        engine.open()

    assert engine.state is EngineState.FAILED
    assert seen == [EngineState.FAILED]
    assert storage.get_item(STORAGE_KEY) == stored
    with pytest.raises(NotReady):
        engine.execute("DELETE FROM settings;")


def test_image_without_required_tables_fails():
    conn = sqlite3.connect(":memory:")
    conn.execute("CREATE TABLE other (x INTEGER);")
    conn.commit()
    storage = MemoryKeyValueStorage()
    storage.set_item(STORAGE_KEY, encode_image(conn.serialize()))

    with pytest.raises(InitializationFailure, match="catalog_items"):
        StoreEngine(storage).open()


def test_reset_recovers_from_failed_state():
    storage = MemoryKeyValueStorage()
    storage.set_item(STORAGE_KEY, "garbage!")
    engine = StoreEngine(storage)
    with pytest.raises(InitializationFailure):
        engine.open()

    engine.reset()
    assert engine.is_ready
    assert engine.stats()["catalog_items"] == 4
    assert storage.get_item(STORAGE_KEY) != "garbage!"


def test_reset_drops_data_and_reseeds():
    engine = _open(MemoryKeyValueStorage())
    service = SalesService(engine)
    service.record_sale("ipa", 300, 1)
    service.add_catalog_item("Stout", color="#000000")
    engine.reset()
    assert engine.stats() == {"transactions": 0, "catalog_items": 4, "settings": 0}


def test_quota_failure_keeps_change_in_memory():
    storage = MemoryKeyValueStorage()
    engine = _open(storage)
    before = storage.get_item(STORAGE_KEY)
    storage.quota_bytes = 16

    with pytest.raises(PersistenceFailure):
        SalesService(engine).record_sale("weiss", 500, 1)

    assert engine.stats()["transactions"] == 1
    assert storage.get_item(STORAGE_KEY) == before


def test_unknown_catalog_item_is_rejected_and_rolled_back():
    storage = MemoryKeyValueStorage()
    engine = _open(storage)
    before = storage.get_item(STORAGE_KEY)

    with pytest.raises(sqlite3.IntegrityError):
        SalesService(engine).record_sale("no-such-beer", 500, 1)

    assert engine.stats()["transactions"] == 0
    assert storage.get_item(STORAGE_KEY) == before


def test_subscribe_fires_immediately_when_ready_and_unsubscribes():
    engine = _open(MemoryKeyValueStorage())
    seen = []
    unsubscribe = engine.subscribe(seen.append)
    assert seen == [EngineState.READY]

    unsubscribe()
    engine.close()
    assert seen == [EngineState.READY]
    assert engine.state is EngineState.UNINITIALIZED
