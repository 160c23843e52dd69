from __future__ import annotations

from pathlib import Path
from typing import Optional

from ..common.errors import StorageError, ValidationError
from .base import Data, to_bytes


class FilesystemStorage:
    """Local directory backend for self-hosted exchanges."""

    def __init__(self, base_dir: Path | str) -> None:
        self.base_dir = Path(base_dir).resolve()

    def _path(self, key: str) -> Path:
        path = (self.base_dir / key).resolve()
        if path != self.base_dir and self.base_dir not in path.parents:
            raise ValidationError(message=f"Key escapes storage root: {key}")
        return path

    def put(self, key: str, data: Data) -> None:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(to_bytes(data))
        except OSError as exc:
            raise StorageError(message=f"put {key} failed: {exc}") from exc

    def get(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        try:
            return path.read_bytes()
        except (FileNotFoundError, IsADirectoryError):
            return None
        except OSError as exc:
            raise StorageError(message=f"get {key} failed: {exc}") from exc

    def list(self, prefix: str) -> list[str]:
        # prefix may end mid-name ("events/exchange=home/2026"), so walk from the
        # deepest existing directory and filter on the full key.
        head = prefix.rsplit("/", 1)[0] if "/" in prefix else ""
        root = self._path(head) if head else self.base_dir
        if not root.is_dir():
            return []
        try:
            keys = [
                p.relative_to(self.base_dir).as_posix()
                for p in root.rglob("*")
                if p.is_file()
            ]
        except OSError as exc:
            raise StorageError(message=f"list {prefix} failed: {exc}") from exc
        return sorted(k for k in keys if k.startswith(prefix))

    def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise StorageError(message=f"delete {key} failed: {exc}") from exc
