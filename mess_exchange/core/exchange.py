from __future__ import annotations

from typing import Any, Optional

import structlog

from ..auth.guard import Identity
from ..auth.registry import ExecutorRegistry
from ..common.errors import ConflictError, ExchangeError, NotFoundError
from ..common.time_util import next_timestamp
from ..common.trace import generate_ref, new_id
from ..events.bus import THREAD_CREATED, THREAD_STATUS_CHANGED, InProcessEventBus, ThreadNotice
from ..events.models import (
    MessageAdded,
    MessageAddedPayload,
    StatusChanged,
    StatusChangedPayload,
    ThreadCreated,
    ThreadCreatedPayload,
)
from ..events.reducer import ThreadView, reduce
from ..models import (
    CreateRequestBody,
    RegisterExecutorBody,
    UpdateExecutorBody,
    UpdateRequestBody,
    parse_body,
    validate_exchange_id,
    validate_ref,
)
from .repository import ThreadRepository
from .routing import Partition

logger = structlog.get_logger()

_REF_ATTEMPTS = 5


class Exchange:
    """Request handlers shared by every transport.

    Each handler takes the caller's identity (from AuthGuard) plus a raw or
    parsed body, and returns plain data. Errors are ExchangeError subclasses.
    """

    def __init__(
        self,
        repository: ThreadRepository,
        registry: ExecutorRegistry,
        *,
        bus: Optional[InProcessEventBus] = None,
    ) -> None:
        self.repository = repository
        self.registry = registry
        self.bus = bus or InProcessEventBus()

    def _publish(self, topic: str, notice: ThreadNotice) -> None:
        # the write already succeeded; notification trouble must not undo it
        try:
            self.bus.publish(topic, notice)
        except ExchangeError as exc:
            logger.warning("notify_publish_failed", topic=topic, ref=notice.ref, error=str(exc))

    def _view(self, exchange_id: str, ref: str) -> ThreadView:
        view = reduce(self.repository.thread_events(exchange_id, validate_ref(ref)))
        if view is None:
            raise NotFoundError(message=f"Thread not found: {ref}")
        return view

    def _new_ref(self, exchange_id: str, today: str, client_id: Optional[str]) -> str:
        for _ in range(_REF_ATTEMPTS):
            ref = generate_ref(today, client_id)
            if not self.repository.thread_events(exchange_id, ref):
                return ref
        raise ConflictError(message="Could not allocate a unique thread ref")

    # -------------------------
    # Executors
    # -------------------------

    def register_executor(self, exchange_id: str, body: Any) -> dict[str, Any]:
        parsed = parse_body(RegisterExecutorBody, body)
        record, token = self.registry.register(validate_exchange_id(exchange_id), parsed)
        return {
            "executor_id": record.id,
            "api_key": token,
            "message": "Save this API key - it cannot be retrieved again.",
        }

    def list_executors(self, auth: Identity) -> dict[str, Any]:
        return {"executors": self.registry.list(auth.exchange_id)}

    def update_executor(self, auth: Identity, executor_id: str, body: Any) -> dict[str, Any]:
        parsed = parse_body(UpdateExecutorBody, body)
        record = self.registry.update_profile(auth.exchange_id, auth.executor_id, executor_id, parsed)
        return {"executor": record.profile()}

    # -------------------------
    # Requests
    # -------------------------

    def create_request(self, auth: Identity, body: Any) -> dict[str, Any]:
        parsed = parse_body(CreateRequestBody, body)
        created_at = next_timestamp()
        ref = self._new_ref(auth.exchange_id, created_at[:10], parsed.id)

        self.repository.append(
            ThreadCreated(
                event_id=new_id(),
                ts=created_at,
                exchange_id=auth.exchange_id,
                thread_ref=ref,
                actor_id=auth.executor_id,
                payload=ThreadCreatedPayload(
                    intent=parsed.intent,
                    context=parsed.context,
                    priority=parsed.priority,
                    requestor_id=auth.executor_id,
                    response_hint=parsed.response_hint,
                    client_id=parsed.id,
                ),
            )
        )
        request = {"intent": parsed.intent, "context": parsed.context, "response_hint": parsed.response_hint}
        self.repository.append(
            MessageAdded(
                event_id=new_id(),
                ts=next_timestamp(created_at),
                exchange_id=auth.exchange_id,
                thread_ref=ref,
                actor_id=auth.executor_id,
                payload=MessageAddedPayload(content=[{"request": request}]),
            )
        )
        logger.info("request_created", exchange_id=auth.exchange_id, ref=ref, priority=parsed.priority)

        self._publish(
            THREAD_CREATED,
            ThreadNotice(
                exchange_id=auth.exchange_id,
                ref=ref,
                actor_id=auth.executor_id,
                intent=parsed.intent,
                priority=parsed.priority,
                requestor_id=auth.executor_id,
                context=list(parsed.context),
                response_hint=list(parsed.response_hint),
            ),
        )
        return {"ref": ref, "status": "pending"}

    def update_request(self, auth: Identity, ref: str, body: Any) -> dict[str, Any]:
        """Apply a status transition and/or append a message.

        Repeating the current status writes nothing for the transition.
        """
        parsed = parse_body(UpdateRequestBody, body)
        view = self._view(auth.exchange_id, ref)
        ts = next_timestamp(view.updated_at)

        changed = parsed.status is not None and parsed.status != view.status
        if changed:
            self.repository.append(
                StatusChanged(
                    event_id=new_id(),
                    ts=ts,
                    exchange_id=auth.exchange_id,
                    thread_ref=ref,
                    actor_id=auth.executor_id,
                    payload=StatusChangedPayload(
                        old_status=view.status,
                        new_status=parsed.status,
                        executor_id=auth.executor_id if parsed.status == "claimed" else view.executor_id,
                        message=parsed.message,
                    ),
                )
            )
            ts = next_timestamp(ts)

        if parsed.mess:
            self.repository.append(
                MessageAdded(
                    event_id=new_id(),
                    ts=ts,
                    exchange_id=auth.exchange_id,
                    thread_ref=ref,
                    actor_id=auth.executor_id,
                    payload=MessageAddedPayload(content=parsed.mess),
                )
            )

        status = parsed.status if changed else view.status
        if changed:
            logger.info("request_status_changed", exchange_id=auth.exchange_id, ref=ref, old=view.status, new=status)
            self._publish(
                THREAD_STATUS_CHANGED,
                ThreadNotice(
                    exchange_id=auth.exchange_id,
                    ref=ref,
                    actor_id=auth.executor_id,
                    intent=view.intent,
                    priority=view.priority,
                    status=status,
                    requestor_id=view.requestor_id,
                    old_status=view.status,
                ),
            )
        return {"ref": ref, "status": status}

    def get_thread(self, auth: Identity, ref: str) -> dict[str, Any]:
        return {"thread": self._view(auth.exchange_id, ref).model_dump(by_alias=True)}

    def list_threads(self, auth: Identity, status: Optional[str] = None) -> dict[str, Any]:
        """Thread summaries, most recently updated first. Unreadable threads are left out."""
        views = list(self.repository.views(auth.exchange_id, status))
        views.sort(key=lambda v: v.updated_at or "", reverse=True)
        return {"threads": [v.summary() for v in views]}

    def partition_of(self, auth: Identity, ref: str) -> Partition:
        partition = self.repository.partition_of(auth.exchange_id, validate_ref(ref))
        if partition is None:
            raise NotFoundError(message=f"Thread not found: {ref}")
        return partition
