from __future__ import annotations

import re
from typing import Any, Dict, List, Literal, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from .common.errors import ValidationError
from .core.routing import KNOWN_STATUSES

Priority = Literal["background", "normal", "elevated", "urgent"]
PRIORITIES: tuple[str, ...] = ("background", "normal", "elevated", "urgent")

ChannelType = Literal["ntfy", "slack", "google_chat", "webhook"]

# exchange ids never contain "_" : tokens use it as a separator
EXCHANGE_ID_RE = re.compile(r"^[a-z0-9][a-z0-9-]{0,63}$")
EXECUTOR_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,63}$")
REF_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")


def priority_rank(priority: Optional[str]) -> int:
    """Position in background < normal < elevated < urgent; unknown counts as normal."""
    try:
        return PRIORITIES.index(priority or "normal")
    except ValueError:
        return PRIORITIES.index("normal")


def _check(pattern: re.Pattern[str], value: Any, what: str) -> str:
    if not isinstance(value, str) or not pattern.match(value) or ".." in value:
        raise ValidationError(message=f"Invalid {what}: {value!r}")
    return value


def validate_exchange_id(value: Any) -> str:
    return _check(EXCHANGE_ID_RE, value, "exchange id")


def validate_executor_id(value: Any) -> str:
    return _check(EXECUTOR_ID_RE, value, "executor id")


def validate_ref(value: Any) -> str:
    return _check(REF_RE, value, "thread ref")


B = TypeVar("B", bound=BaseModel)


def parse_body(model: Type[B], data: Any) -> B:
    """Validate a request body, mapping pydantic failures to ValidationError."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data or {})
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        loc = ".".join(str(p) for p in first.get("loc", ()))
        raise ValidationError(
            message=f"{loc}: {first['msg']}" if loc else first["msg"],
            data={"errors": exc.errors(include_url=False, include_context=False)},
        ) from exc


# -------------------------
# Executors
# -------------------------

class NotificationTarget(BaseModel):
    """One delivery channel of an executor.

    ntfy: `server` (default https://ntfy.sh) + `topic`; slack / google_chat:
    `webhook_url`; webhook: `url`, optional `method` and `headers`.
    """

    model_config = ConfigDict(extra="allow")

    type: ChannelType
    server: Optional[str] = None
    topic: Optional[str] = None
    webhook_url: Optional[str] = None
    url: Optional[str] = None
    method: str = "POST"
    headers: Dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _target_present(self) -> "NotificationTarget":
        required = {"ntfy": "topic", "slack": "webhook_url", "google_chat": "webhook_url", "webhook": "url"}[self.type]
        if not getattr(self, required):
            raise ValueError(f"{self.type} channel requires {required}")
        return self


class QuietHours(BaseModel):
    enabled: bool = True
    start: str = Field(default="22:00", pattern=r"^\d{2}:\d{2}$")
    end: str = Field(default="07:00", pattern=r"^\d{2}:\d{2}$")
    timezone: str = "UTC"


class Preferences(BaseModel):
    model_config = ConfigDict(extra="allow")

    min_priority: Optional[Priority] = None
    quiet_hours: Optional[QuietHours] = None


class RegisterExecutorBody(BaseModel):
    model_config = ConfigDict(extra="forbid")

    executor_id: str
    display_name: Optional[str] = None
    capabilities: List[str] = Field(default_factory=list)
    notifications: List[NotificationTarget] = Field(default_factory=list)
    preferences: Preferences = Field(default_factory=Preferences)

    @field_validator("executor_id")
    @classmethod
    def _executor_id(cls, v: str) -> str:
        if not EXECUTOR_ID_RE.match(v):
            raise ValueError("executor_id must be 1-64 chars of [A-Za-z0-9_.-]")
        return v


class UpdateExecutorBody(BaseModel):
    model_config = ConfigDict(extra="forbid")

    display_name: Optional[str] = None
    capabilities: Optional[List[str]] = None
    notifications: Optional[List[NotificationTarget]] = None
    preferences: Optional[Preferences] = None


# -------------------------
# Requests (threads)
# -------------------------

class CreateRequestBody(BaseModel):
    intent: str = Field(min_length=1)
    context: List[Any] = Field(default_factory=list)
    priority: Priority = "normal"
    response_hint: List[str] = Field(default_factory=list)
    id: Optional[str] = None


class UpdateRequestBody(BaseModel):
    """A status transition, an appended message, or both."""

    status: Optional[str] = None
    message: Optional[str] = None
    mess: Optional[List[Dict[str, Any]]] = None

    @field_validator("status")
    @classmethod
    def _known_status(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in KNOWN_STATUSES:
            raise ValueError(f"unknown status {v!r}")
        return v

    @model_validator(mode="after")
    def _not_empty(self) -> "UpdateRequestBody":
        if self.status is None and not self.mess:
            raise ValueError("status or mess is required")
        return self
