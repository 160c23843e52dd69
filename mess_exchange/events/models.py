from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from ..common.errors import ParseError
from ..common.time_util import coerce_iso

Timestamp = Annotated[str, BeforeValidator(coerce_iso)]
ContentItem = dict[str, Any]

EventType = Literal["thread_created", "status_changed", "message_added", "executor_registered"]


# -------------------------
# Payloads (one per event_type)
# -------------------------

class ThreadCreatedPayload(BaseModel):
    intent: str
    context: list[Any] = Field(default_factory=list)
    priority: str = "normal"
    requestor_id: Optional[str] = None
    response_hint: list[str] = Field(default_factory=list)
    client_id: Optional[str] = None


class StatusChangedPayload(BaseModel):
    new_status: str
    old_status: Optional[str] = None
    executor_id: Optional[str] = None
    message: Optional[str] = None


class MessageAddedPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content: list[ContentItem] = Field(default_factory=list, alias="mess")


class ExecutorRegisteredPayload(BaseModel):
    display_name: Optional[str] = None
    capabilities: list[str] = Field(default_factory=list)


# -------------------------
# Event records
# -------------------------

class _EventBase(BaseModel):
    """Fields shared by every event record. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    event_id: str
    ts: Timestamp
    exchange_id: str
    thread_ref: Optional[str] = None
    actor_id: str


class ThreadCreated(_EventBase):
    event_type: Literal["thread_created"] = "thread_created"
    payload: ThreadCreatedPayload


class StatusChanged(_EventBase):
    event_type: Literal["status_changed"] = "status_changed"
    payload: StatusChangedPayload


class MessageAdded(_EventBase):
    event_type: Literal["message_added"] = "message_added"
    payload: MessageAddedPayload


class ExecutorRegistered(_EventBase):
    event_type: Literal["executor_registered"] = "executor_registered"
    payload: ExecutorRegisteredPayload


Event = Annotated[
    Union[ThreadCreated, StatusChanged, MessageAdded, ExecutorRegistered],
    Field(discriminator="event_type"),
]

_EVENT_ADAPTER: TypeAdapter[Event] = TypeAdapter(Event)


def decode_event(raw: Union[str, bytes, dict[str, Any]]) -> Event:
    """Decode one event record; the payload is validated against its event_type."""
    try:
        if isinstance(raw, dict):
            return _EVENT_ADAPTER.validate_python(raw)
        return _EVENT_ADAPTER.validate_json(raw)
    except PydanticValidationError as exc:
        raise ParseError(message=f"Malformed event record: {exc.errors()[0]['msg']}") from exc


def encode_event(event: Event) -> str:
    """One JSON line, as stored in an event partition file."""
    return json.dumps(event_to_dict(event), ensure_ascii=False) + "\n"


def event_to_dict(event: Event) -> dict[str, Any]:
    return event.model_dump(mode="json", by_alias=True)
