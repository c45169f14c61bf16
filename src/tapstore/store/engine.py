from __future__ import annotations

import enum
import sqlite3
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from ..errors import InitializationFailure, NotReady, PersistenceFailure, StorageError
from ..logging import get_logger
from .constants import STORAGE_KEY
from .schema import create_schema, seed_initial_data
from .storage import KeyValueStorage, decode_image, encode_image


LOG = get_logger("store-engine")

REQUIRED_TABLES = ("catalog_items", "transactions", "settings")

Params = Sequence[Any]
StateListener = Callable[["EngineState"], None]


class EngineState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    FAILED = "failed"


class StoreEngine:
    """In-memory SQLite database persisted as one image in key/value storage.

    - `open()` loads the stored image or creates and seeds a fresh database.
    - `query()` is read only; `execute()` commits and then rewrites the whole
      image before returning, so every successful write is durable.
    - One instance is shared by every consumer (pass it around explicitly).
      A reentrant lock serializes access, which is enough for the single
      writer this engine is built for.
    """

    def __init__(self, storage: KeyValueStorage, *, storage_key: str = STORAGE_KEY) -> None:
        self.storage = storage
        self.storage_key = storage_key
        self._conn: Optional[sqlite3.Connection] = None
        self._state = EngineState.UNINITIALIZED
        self._listeners: List[StateListener] = []
        self._lock = threading.RLock()

    # --------------- state ---------------
    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is EngineState.READY

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a state-change callback; fires at once if already ready.

        Returns a callable that removes the listener again.
        """
        self._listeners.append(listener)
        if self._state is EngineState.READY:
            listener(self._state)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_state(self, state: EngineState) -> None:
        if state is self._state:
            return
        LOG.info(f"Engine state {self._state.value} -> {state.value}")
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                LOG.exception("State listener failed")

    # --------------- lifecycle ---------------
    @staticmethod
    def _connect() -> sqlite3.Connection:
        conn = sqlite3.connect(":memory:", check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    def open(self) -> EngineState:
        with self._lock:
            if self._state is EngineState.READY:
                return self._state

            saved = self.storage.get_item(self.storage_key)
            if saved is None:
                LOG.info(f"No persisted image under {self.storage_key!r}; creating a fresh database")
                self._conn = self._fresh_database()
                self._set_state(EngineState.READY)
                self._persist()
                return self._state

            try:
                self._conn = self._load_image(saved)
            except InitializationFailure:
                self._set_state(EngineState.FAILED)
                raise
            LOG.info(f"Loaded persisted image ({len(saved)} chars) from {self.storage_key!r}")
            self._set_state(EngineState.READY)
            return self._state

    def _fresh_database(self) -> sqlite3.Connection:
        conn = self._connect()
        create_schema(conn)
        seed_initial_data(conn)
        conn.commit()
        return conn

    def _load_image(self, saved: str) -> sqlite3.Connection:
        if not saved:
            raise InitializationFailure(f"Persisted image under {self.storage_key!r} is empty")
        try:
            image = decode_image(saved)
        except ValueError as exc:
            raise InitializationFailure(str(exc)) from exc

        conn = self._connect()
        try:
            conn.deserialize(image)
            conn.execute("PRAGMA foreign_keys = ON;")
            rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table';").fetchall()
        except sqlite3.DatabaseError as exc:
            conn.close()
            raise InitializationFailure(f"Persisted image is not a readable database: {exc}") from exc

        tables = {row[0] for row in rows}
        missing = [t for t in REQUIRED_TABLES if t not in tables]
        if missing:
            conn.close()
            raise InitializationFailure(f"Persisted image lacks required table(s): {', '.join(missing)}")
        return conn

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
            self._set_state(EngineState.UNINITIALIZED)

    def reset(self) -> None:
        """Drop all data and start over from the seeded schema.

        Also the explicit way out of FAILED: the corrupted image is replaced.
        """
        with self._lock:
            if self._state is EngineState.UNINITIALIZED:
                raise NotReady("Engine has not been opened")
            if self._state is EngineState.FAILED:
                LOG.warning(f"Discarding unreadable image under {self.storage_key!r} on explicit reset")
            if self._conn is not None:
                self._conn.close()
            self.storage.remove_item(self.storage_key)
            self._conn = self._fresh_database()
            self._set_state(EngineState.READY)
            self._persist()
            LOG.info("Database reset to its initial state")

    # --------------- primitives ---------------
    def _require_ready(self) -> sqlite3.Connection:
        if self._state is not EngineState.READY or self._conn is None:
            raise NotReady(f"Store engine is {self._state.value}")
        return self._conn

    def query(self, sql: str, params: Params = ()) -> List[sqlite3.Row]:
        with self._lock:
            conn = self._require_ready()
            cur = conn.execute(sql, tuple(params))
            try:
                return cur.fetchall()
            finally:
                cur.close()

    def execute(self, sql: str, params: Params = ()) -> int:
        """Apply one mutation, commit, persist the full image; returns rowcount."""
        return self.execute_many([(sql, params)])

    def execute_many(self, statements: Iterable[Tuple[str, Params]]) -> int:
        """Apply several mutations as one transaction followed by one persist."""
        with self._lock:
            conn = self._require_ready()
            changed = 0
            try:
                for sql, params in statements:
                    cur = conn.execute(sql, tuple(params))
                    changed += max(cur.rowcount, 0)
                    cur.close()
                conn.commit()
            except sqlite3.Error:
                conn.rollback()
                raise
            self._persist()
            return changed

    def _persist(self) -> None:
        conn = self._require_ready()
        image = conn.serialize()
        try:
            self.storage.set_item(self.storage_key, encode_image(image))
        except StorageError as exc:
            LOG.error(f"Image of {len(image)} bytes could not be persisted: {exc}")
            raise PersistenceFailure(
                f"Change applied in memory but not persisted ({exc}); it will be lost on restart"
            ) from exc
        LOG.debug(f"Persisted image of {len(image)} bytes")

    # --------------- helpers ---------------
    def export_image(self) -> bytes:
        with self._lock:
            return self._require_ready().serialize()

    def stats(self) -> Dict[str, int]:
        """Row counts for the main tables (zeros when not ready)."""
        if not self.is_ready:
            return {"transactions": 0, "catalog_items": 0, "settings": 0}
        counts: Dict[str, int] = {}
        for table in ("transactions", "catalog_items", "settings"):
            counts[table] = int(self.query(f"SELECT COUNT(*) AS count FROM {table};")[0]["count"])
        return counts
