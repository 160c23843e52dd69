from __future__ import annotations

from ..common.errors import ValidationError
from ..core.config import StorageConfig
from .base import BlobStorage
from .filesystem import FilesystemStorage
from .memory import MemoryStorage
from .s3 import S3Storage


def create_storage(cfg: StorageConfig) -> BlobStorage:
    """Build the backend named by `cfg.type`.

    Bucket bindings are handed over by the host runtime, so they are wrapped
    directly with `BucketBindingStorage` rather than built from config.
    """
    if cfg.type == "filesystem":
        return FilesystemStorage(cfg.path)
    if cfg.type == "s3":
        if not cfg.bucket:
            raise ValidationError(message="S3 storage requires a bucket (MESS_S3_BUCKET)")
        return S3Storage(
            cfg.bucket,
            endpoint=cfg.endpoint,
            access_key=cfg.access_key,
            secret_key=cfg.secret_key,
            region=cfg.region,
        )
    if cfg.type == "memory":
        return MemoryStorage()
    raise ValidationError(message=f"Unknown storage type: {cfg.type}")
