from __future__ import annotations

import threading
from typing import Optional

from .base import Data, to_bytes


class MemoryStorage:
    """Dict-backed store for tests and throwaway exchanges."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: dict[str, bytes] = {}

    def put(self, key: str, data: Data) -> None:
        with self._lock:
            self._items[key] = to_bytes(data)

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            return self._items.get(key)

    def list(self, prefix: str) -> list[str]:
        with self._lock:
            return sorted(k for k in self._items if k.startswith(prefix))

    def delete(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)
