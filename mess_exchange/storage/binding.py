from __future__ import annotations

from typing import Any, Optional, Protocol

from ..common.errors import StorageError
from .base import Data, to_bytes


class BucketBinding(Protocol):
    """The shape of an R2-style bucket binding handed to us by the host runtime.

    `get` returns None or an object exposing `read()` (bytes) or `text()`;
    `list` returns an object with `objects` (each with `.key`), `truncated`
    and `cursor`.
    """

    def put(self, key: str, value: bytes) -> Any:
        ...

    def get(self, key: str) -> Any:
        ...

    def list(self, *, prefix: str, cursor: Optional[str] = None) -> Any:
        ...

    def delete(self, key: str) -> Any:
        ...


class BucketBindingStorage:
    """Backend over a bucket binding (no S3 API, no credentials)."""

    def __init__(self, bucket: BucketBinding) -> None:
        self.bucket = bucket

    def put(self, key: str, data: Data) -> None:
        try:
            self.bucket.put(key, to_bytes(data))
        except Exception as exc:  # noqa: BLE001 - binding errors are untyped
            raise StorageError(message=f"put {key} failed: {exc}") from exc

    def get(self, key: str) -> Optional[bytes]:
        try:
            obj = self.bucket.get(key)
            if obj is None:
                return None
            if hasattr(obj, "read"):
                return to_bytes(obj.read())
            return to_bytes(obj.text())
        except Exception as exc:  # noqa: BLE001
            raise StorageError(message=f"get {key} failed: {exc}") from exc

    def list(self, prefix: str) -> list[str]:
        keys: list[str] = []
        cursor: Optional[str] = None
        try:
            while True:
                listed = self.bucket.list(prefix=prefix, cursor=cursor)
                keys.extend(obj.key for obj in listed.objects)
                if not listed.truncated:
                    break
                cursor = listed.cursor
        except Exception as exc:  # noqa: BLE001
            raise StorageError(message=f"list {prefix} failed: {exc}") from exc
        return keys

    def delete(self, key: str) -> None:
        try:
            self.bucket.delete(key)
        except Exception as exc:  # noqa: BLE001
            raise StorageError(message=f"delete {key} failed: {exc}") from exc
