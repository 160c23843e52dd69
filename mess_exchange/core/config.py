from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Literal, Optional

import structlog
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

logger = structlog.get_logger()

MAX_FILE_SIZE = 1024 * 1024
MAX_INLINE_SIZE = 768 * 1024


class StorageConfig(BaseModel):
    """Where blobs live.

    `endpoint` is only needed for S3-compatible services other than AWS
    (MinIO, R2 over its S3 API).
    """

    type: Literal["filesystem", "s3", "memory"] = "filesystem"
    path: str = "data"
    endpoint: Optional[str] = None
    bucket: Optional[str] = None
    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    region: str = "auto"


class DocumentConfig(BaseModel):
    layout: Literal["directory", "flat"] = "directory"
    max_file_size: int = MAX_FILE_SIZE
    max_inline_size: int = MAX_INLINE_SIZE


class ExchangeConfig(BaseModel):
    """Exchange runtime configuration loaded from file + env overrides."""

    mode: Literal["event-sourced", "document"] = "event-sourced"
    storage: StorageConfig = Field(default_factory=StorageConfig)
    blob_storage: Optional[StorageConfig] = None
    documents: DocumentConfig = Field(default_factory=DocumentConfig)
    public_url: Optional[str] = None
    notify_timeout_s: float = 10.0
    log_level: str = "INFO"
    log_json: bool = False


def _env_bool(raw: str) -> bool:
    return raw.strip().lower() in ("1", "true", "yes", "on")


# env var -> (section, key, cast)
_ENV_OVERRIDES: dict[str, tuple[Optional[str], str, type]] = {
    "MESS_MODE": (None, "mode", str),
    "MESS_PUBLIC_URL": (None, "public_url", str),
    "MESS_NOTIFY_TIMEOUT_S": (None, "notify_timeout_s", float),
    "MESS_LOG_LEVEL": (None, "log_level", str),
    "MESS_LOG_JSON": (None, "log_json", _env_bool),
    "MESS_STORAGE_TYPE": ("storage", "type", str),
    "MESS_STORAGE_PATH": ("storage", "path", str),
    "MESS_S3_ENDPOINT": ("storage", "endpoint", str),
    "MESS_S3_BUCKET": ("storage", "bucket", str),
    "MESS_S3_ACCESS_KEY": ("storage", "access_key", str),
    "MESS_S3_SECRET_KEY": ("storage", "secret_key", str),
    "MESS_S3_REGION": ("storage", "region", str),
    "MESS_DOCUMENT_LAYOUT": ("documents", "layout", str),
    "MESS_MAX_FILE_SIZE": ("documents", "max_file_size", int),
    "MESS_MAX_INLINE_SIZE": ("documents", "max_inline_size", int),
}


class ConfigManager:
    """Load configuration from a JSON file with environment overrides.

    - default < config file < environment variables (including those loaded from .env)
    - missing file: defaults
    - corrupted file: back it up, log, continue with defaults
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = path

    def _resolve_path(self) -> Optional[Path]:
        if self.path is not None:
            return self.path
        raw = os.getenv("MESS_CONFIG_PATH", "").strip()
        return Path(raw) if raw else None

    def _read_file(self, cfg_path: Path) -> dict:
        try:
            data = json.loads(cfg_path.read_text(encoding="utf-8"))
            if not isinstance(data, dict):
                raise ValueError("config root must be an object")
            return data
        except (OSError, ValueError) as exc:
            ts = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
            backup = cfg_path.with_name(f"{cfg_path.name}.bad-{ts}")
            try:
                cfg_path.replace(backup)
            except OSError:
                backup = None
            logger.warning("config_file_corrupt", path=str(cfg_path), backup=str(backup), error=str(exc))
            return {}

    def _apply_env(self, data: dict) -> None:
        for env_key, (section, key, cast) in _ENV_OVERRIDES.items():
            raw = os.getenv(env_key)
            if raw is None or raw.strip() == "":
                continue
            try:
                value = cast(raw.strip())
            except ValueError:
                logger.warning("config_env_ignored", key=env_key, value=raw)
                continue
            target = data if section is None else data.setdefault(section, {})
            target[key] = value

    def load(self) -> ExchangeConfig:
        data: dict = {}
        cfg_path = self._resolve_path()
        if cfg_path is not None and cfg_path.exists():
            data = self._read_file(cfg_path)

        self._apply_env(data)
        try:
            return ExchangeConfig.model_validate(data)
        except PydanticValidationError as exc:
            logger.warning("config_invalid", error=str(exc))
            return ExchangeConfig()
