"""Error taxonomy shared by the store, the report builder and delivery."""

from __future__ import annotations

from typing import Optional


class TapstoreError(Exception):
    """Base class for all tapstore errors."""


# ---------- store ----------

class InitializationFailure(TapstoreError):
    """A persisted image exists but could not be loaded.

    Fatal: the engine stays FAILED and refuses writes so history is never
    silently replaced by a fresh database.
    """


class NotReady(TapstoreError):
    """The engine was used before `open()` finished successfully."""


class PersistenceFailure(TapstoreError):
    """A mutation was applied in memory but the image could not be stored."""


class StorageError(TapstoreError):
    """The key/value storage medium rejected an operation."""


class StorageQuotaExceeded(StorageError):
    def __init__(self, key: str, size: int, quota: int) -> None:
        super().__init__(f"Storing {size} bytes under {key!r} exceeds the quota of {quota} bytes")
        self.key = key
        self.size = size
        self.quota = quota


# ---------- delivery ----------

class DeliveryError(TapstoreError):
    """Base class for failures surfaced by the delivery adapter."""


class ValidationFailure(DeliveryError):
    """Input rejected before any network activity."""


class TransportFailure(DeliveryError):
    def __init__(self, category: str, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.category = category
        self.status_code = status_code
