from __future__ import annotations

from typing import Any, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field

from .models import Event, MessageAdded, StatusChanged, ThreadCreated
from .store import ordered


class ThreadMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    sender: str = Field(alias="from")
    ts: str
    content: list[dict[str, Any]] = Field(default_factory=list)


class ThreadView(BaseModel):
    """Materialized state of one thread. Derived, never persisted."""

    ref: Optional[str] = None
    status: str = "pending"
    intent: str = ""
    requestor_id: Optional[str] = None
    executor_id: Optional[str] = None
    priority: str = "normal"
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    messages: list[ThreadMessage] = Field(default_factory=list)

    def summary(self) -> dict[str, Any]:
        """Listing shape: everything but the messages."""
        return self.model_dump(exclude={"messages"})


def reduce(events: Iterable[Event]) -> Optional[ThreadView]:
    """Fold a thread's events into its current view; None for no events.

    Pure and deterministic: the same sequence always yields the same view.
    """
    seq = ordered(list(events))
    if not seq:
        return None

    view = ThreadView()
    for event in seq:
        view.updated_at = event.ts

        if isinstance(event, ThreadCreated):
            p = event.payload
            view.ref = event.thread_ref
            view.intent = p.intent
            view.requestor_id = p.requestor_id or event.actor_id
            view.priority = p.priority or "normal"
            view.created_at = event.ts
        elif isinstance(event, StatusChanged):
            p = event.payload
            view.status = p.new_status
            # first claim wins; later transitions never clear the executor
            if p.executor_id and view.executor_id is None:
                view.executor_id = p.executor_id
        elif isinstance(event, MessageAdded):
            view.messages.append(
                ThreadMessage(sender=event.actor_id, ts=event.ts, content=list(event.payload.content))
            )
    return view
