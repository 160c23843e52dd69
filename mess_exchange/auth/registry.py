from __future__ import annotations

import json
from typing import Any, Callable, Optional

import structlog
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from ..common.errors import ConflictError, ForbiddenError, NotFoundError, ParseError
from ..common.time_util import utc_now_iso
from ..common.trace import new_id
from ..events.models import Event, ExecutorRegistered, ExecutorRegisteredPayload
from ..models import (
    NotificationTarget,
    Preferences,
    RegisterExecutorBody,
    UpdateExecutorBody,
    validate_exchange_id,
    validate_executor_id,
)
from ..storage.base import BlobStorage
from .tokens import digest, issue

logger = structlog.get_logger()

EXECUTORS_ROOT = "executors"


def executors_prefix(exchange_id: str) -> str:
    return f"{EXECUTORS_ROOT}/exchange={exchange_id}/"


def executor_key(exchange_id: str, executor_id: str) -> str:
    return f"{executors_prefix(exchange_id)}{executor_id}.json"


class ExecutorRecord(BaseModel):
    id: str
    display_name: Optional[str] = None
    capabilities: list[str] = Field(default_factory=list)
    notifications: list[NotificationTarget] = Field(default_factory=list)
    preferences: Preferences = Field(default_factory=Preferences)
    api_key_hash: str
    created_at: str
    last_seen: Optional[str] = None

    def profile(self) -> dict[str, Any]:
        """The executor's own view: everything but the key hash."""
        return self.model_dump(mode="json", exclude={"api_key_hash"})

    def public(self) -> dict[str, Any]:
        """What other executors of the exchange may see."""
        return self.model_dump(mode="json", include={"id", "display_name", "capabilities", "last_seen", "created_at"})


class ExecutorRegistry:
    """Executor profiles of every exchange, one JSON object per executor.

    `on_event` receives the `executor_registered` event of each new executor
    (the exchange points it at its thread repository).
    """

    def __init__(self, storage: BlobStorage, *, on_event: Optional[Callable[[Event], None]] = None) -> None:
        self.storage = storage
        self.on_event = on_event

    def _load(self, key: str) -> ExecutorRecord:
        raw = self.storage.get(key)
        if raw is None:
            raise NotFoundError(message=f"Executor not found: {key}")
        try:
            return ExecutorRecord.model_validate(json.loads(raw))
        except (ValueError, PydanticValidationError) as exc:
            raise ParseError(message=f"Corrupt executor record {key}: {exc}") from exc

    def _save(self, exchange_id: str, record: ExecutorRecord) -> None:
        self.storage.put(executor_key(exchange_id, record.id), record.model_dump_json(indent=2))

    def get(self, exchange_id: str, executor_id: str) -> Optional[ExecutorRecord]:
        key = executor_key(validate_exchange_id(exchange_id), validate_executor_id(executor_id))
        if self.storage.get(key) is None:
            return None
        return self._load(key)

    def records(self, exchange_id: str) -> list[ExecutorRecord]:
        """Every executor of an exchange; corrupt records are logged and skipped."""
        found = []
        for key in self.storage.list(executors_prefix(exchange_id)):
            if not key.endswith(".json"):
                continue
            try:
                found.append(self._load(key))
            except (NotFoundError, ParseError) as exc:
                logger.warning("executor_skipped_corrupt", key=key, error=str(exc))
        return found

    def list(self, exchange_id: str) -> list[dict[str, Any]]:
        return [r.public() for r in self.records(validate_exchange_id(exchange_id))]

    def register(self, exchange_id: str, body: RegisterExecutorBody) -> tuple[ExecutorRecord, str]:
        """Store a new executor and return it with its bearer token (shown once, stored hashed).

        Duplicate ids are rejected with ConflictError.
        """
        validate_exchange_id(exchange_id)
        if self.get(exchange_id, body.executor_id) is not None:
            raise ConflictError(message=f"Executor already registered: {body.executor_id}")

        token = issue(exchange_id)
        now = utc_now_iso()
        record = ExecutorRecord(
            id=body.executor_id,
            display_name=body.display_name or body.executor_id,
            capabilities=list(body.capabilities),
            notifications=list(body.notifications),
            preferences=body.preferences,
            api_key_hash=digest(token),
            created_at=now,
            last_seen=now,
        )
        self._save(exchange_id, record)
        logger.info("executor_registered", exchange_id=exchange_id, executor_id=record.id)

        if self.on_event is not None:
            self.on_event(
                ExecutorRegistered(
                    event_id=new_id(),
                    ts=now,
                    exchange_id=exchange_id,
                    thread_ref=None,
                    actor_id=record.id,
                    payload=ExecutorRegisteredPayload(
                        display_name=record.display_name,
                        capabilities=record.capabilities,
                    ),
                )
            )
        return record, token

    def update_profile(
        self, exchange_id: str, caller_id: str, executor_id: str, body: UpdateExecutorBody
    ) -> ExecutorRecord:
        """Apply profile changes. Only the executor itself may edit its profile."""
        if caller_id != executor_id:
            raise ForbiddenError(message=f"{caller_id} cannot modify executor {executor_id}")
        record = self.get(exchange_id, executor_id)
        if record is None:
            raise NotFoundError(message=f"Executor not found: {executor_id}")

        changes = body.model_dump(exclude_unset=True, exclude_none=True)
        updated = ExecutorRecord.model_validate(
            {**record.model_dump(), **changes, "last_seen": utc_now_iso()}
        )
        self._save(exchange_id, updated)
        return updated
