from __future__ import annotations

from typing import Optional, Protocol, Union

Data = Union[bytes, str]


class BlobStorage(Protocol):
    """Minimal blob store contract; every higher layer depends only on this.

    - put: overwrite is fine (idempotent)
    - get: None for a missing key, never raises for it
    - list: every key under `prefix`, recursively
    - delete: no-op when the key is absent
    """

    def put(self, key: str, data: Data) -> None:
        ...

    def get(self, key: str) -> Optional[bytes]:
        ...

    def list(self, prefix: str) -> list[str]:
        ...

    def delete(self, key: str) -> None:
        ...


def to_bytes(data: Data) -> bytes:
    return data.encode("utf-8") if isinstance(data, str) else bytes(data)


class PrefixedStorage:
    """Scopes a backend under a key prefix (e.g. `blobs/` for attachments)."""

    def __init__(self, storage: BlobStorage, prefix: str) -> None:
        self.storage = storage
        self.prefix = prefix

    def put(self, key: str, data: Data) -> None:
        self.storage.put(self.prefix + key, data)

    def get(self, key: str) -> Optional[bytes]:
        return self.storage.get(self.prefix + key)

    def list(self, prefix: str) -> list[str]:
        return [k[len(self.prefix):] for k in self.storage.list(self.prefix + prefix)]

    def delete(self, key: str) -> None:
        self.storage.delete(self.prefix + key)
