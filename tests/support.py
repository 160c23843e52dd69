"""测试共用的事件构造工具。"""

from __future__ import annotations

from typing import Any, Optional

from mess_exchange.events.models import (
    MessageAdded,
    MessageAddedPayload,
    StatusChanged,
    StatusChangedPayload,
    ThreadCreated,
    ThreadCreatedPayload,
)

EXCHANGE = "home"
REF = "2026-10-19-AB12"


def ts(second: int, micro: int = 0) -> str:
    return f"2026-10-19T08:00:{second:02d}.{micro:06d}Z"


def created(at: str = ts(0), *, ref: str = REF, intent: str = "Check the door", actor: str = "phone",
            priority: str = "normal", event_id: str = "e00", **payload: Any) -> ThreadCreated:
    return ThreadCreated(
        event_id=event_id,
        ts=at,
        exchange_id=EXCHANGE,
        thread_ref=ref,
        actor_id=actor,
        payload=ThreadCreatedPayload(intent=intent, priority=priority, requestor_id=actor, **payload),
    )


def status(new: str, at: str, *, actor: str = "laptop", old: Optional[str] = None, executor: Optional[str] = None,
           ref: str = REF, event_id: Optional[str] = None, message: Optional[str] = None) -> StatusChanged:
    return StatusChanged(
        event_id=event_id or f"s-{at}",
        ts=at,
        exchange_id=EXCHANGE,
        thread_ref=ref,
        actor_id=actor,
        payload=StatusChangedPayload(new_status=new, old_status=old, executor_id=executor, message=message),
    )


def message(content: list, at: str, *, actor: str = "laptop", ref: str = REF,
            event_id: Optional[str] = None) -> MessageAdded:
    return MessageAdded(
        event_id=event_id or f"m-{at}",
        ts=at,
        exchange_id=EXCHANGE,
        thread_ref=ref,
        actor_id=actor,
        payload=MessageAddedPayload(content=content),
    )


def lifecycle() -> list:
    """created -> claimed -> request copy -> completed with a response."""
    return [
        created(ts(0)),
        message([{"request": {"intent": "Check the door"}}], ts(0, 1), actor="phone"),
        status("claimed", ts(5), old="pending", executor="laptop"),
        status("completed", ts(9), old="claimed", executor="laptop"),
        message([{"response": {"content": ["Door is locked"]}}], ts(9, 1)),
    ]
