from __future__ import annotations

from typing import Any, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..common.errors import StorageError
from .base import Data, to_bytes

_MISSING_CODES = {"NoSuchKey", "404", "NotFound"}


def _content_type(key: str) -> str:
    if key.endswith(".json") or key.endswith(".jsonl"):
        return "application/json"
    if key.endswith(".yaml"):
        return "application/yaml"
    return "application/octet-stream"


class S3Storage:
    """S3-compatible backend (AWS S3, MinIO, R2 through its S3 API)."""

    def __init__(
        self,
        bucket: str,
        *,
        endpoint: Optional[str] = None,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        region: str = "auto",
        client: Any = None,
    ) -> None:
        self.bucket = bucket
        if client is None:
            client = boto3.client(
                "s3",
                endpoint_url=endpoint,
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region,
                # MinIO needs path-style addressing
                config=Config(s3={"addressing_style": "path"}) if endpoint else None,
            )
        self.client = client

    def put(self, key: str, data: Data) -> None:
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=to_bytes(data),
                ContentType=_content_type(key),
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(message=f"put {key} failed: {exc}") from exc

    def get(self, key: str) -> Optional[bytes]:
        try:
            resp = self.client.get_object(Bucket=self.bucket, Key=key)
            return resp["Body"].read()
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in _MISSING_CODES:
                return None
            raise StorageError(message=f"get {key} failed: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(message=f"get {key} failed: {exc}") from exc

    def list(self, prefix: str) -> list[str]:
        keys: list[str] = []
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                keys.extend(obj["Key"] for obj in page.get("Contents", []))
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(message=f"list {prefix} failed: {exc}") from exc
        return keys

    def delete(self, key: str) -> None:
        # S3 DeleteObject is already a no-op for missing keys
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(message=f"delete {key} failed: {exc}") from exc
