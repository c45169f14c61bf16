"""String key/value storage medium and the image <-> text codec.

The engine only needs three operations from its storage, mirroring a
browser-style local store: get, set and remove a string under a key. The
whole database image lives under a single key as base64 text.
"""

from __future__ import annotations

import base64
import binascii
import os
import re
from typing import Dict, Optional, Protocol

from ..errors import StorageError, StorageQuotaExceeded
from ..logging import get_logger

LOG = get_logger("store-storage")

_KEY_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class KeyValueStorage(Protocol):
    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


def encode_image(image: bytes) -> str:
    """Binary database image -> printable text."""
    return base64.b64encode(image).decode("ascii")


def decode_image(text: str) -> bytes:
    """Printable text -> binary database image.

    Raises ValueError for anything that is not strict base64.
    """
    try:
        return base64.b64decode(text.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise ValueError(f"Stored image is not valid base64: {exc}") from exc


def _check_quota(key: str, value: str, others: int, quota: Optional[int]) -> None:
    size = len(value.encode("utf-8"))
    if quota is not None and others + size > quota:
        raise StorageQuotaExceeded(key, others + size, quota)


class MemoryKeyValueStorage:
    """Process-local storage, mostly for tests and throwaway sessions."""

    def __init__(self, quota_bytes: Optional[int] = None) -> None:
        self.quota_bytes = quota_bytes
        self._items: Dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        others = sum(len(v.encode("utf-8")) for k, v in self._items.items() if k != key)
        _check_quota(key, value, others, self.quota_bytes)
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._items)


class FileKeyValueStorage:
    """One UTF-8 text file per key inside a directory.

    Writes go to a temporary sibling and are moved into place with
    `os.replace`, so a crash mid-write leaves the previous value intact.
    `quota_bytes` caps the combined size of all stored values.
    """

    SUFFIX = ".kv"

    def __init__(self, directory: str, *, quota_bytes: Optional[int] = None) -> None:
        self.directory = os.path.abspath(directory)
        self.quota_bytes = quota_bytes
        os.makedirs(self.directory, exist_ok=True)
        LOG.debug(f"File storage at {self.directory} (quota={quota_bytes})")

    def _path(self, key: str) -> str:
        if not _KEY_RE.match(key or ""):
            raise StorageError(f"Invalid storage key: {key!r}")
        return os.path.join(self.directory, key + self.SUFFIX)

    def _used_bytes(self, exclude: str) -> int:
        total = 0
        for name in os.listdir(self.directory):
            if not name.endswith(self.SUFFIX) or name == exclude:
                continue
            total += os.path.getsize(os.path.join(self.directory, name))
        return total

    def get_item(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not os.path.isfile(path):
            return None
        with open(path, "r", encoding="utf-8") as fh:
            return fh.read()

    def set_item(self, key: str, value: str) -> None:
        path = self._path(key)
        _check_quota(key, value, self._used_bytes(os.path.basename(path)), self.quota_bytes)
        tmp = path + ".tmp"
        try:
            with open(tmp, "w", encoding="utf-8") as fh:
                fh.write(value)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, path)
        except OSError as exc:
            try:
                os.remove(tmp)
            except OSError:
                pass
            raise StorageError(f"Could not write {key!r}: {exc}") from exc

    def remove_item(self, key: str) -> None:
        path = self._path(key)
        try:
            os.remove(path)
        except FileNotFoundError:
            pass

    def keys(self) -> list[str]:
        return sorted(n[: -len(self.SUFFIX)] for n in os.listdir(self.directory) if n.endswith(self.SUFFIX))
