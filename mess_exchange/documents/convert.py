from __future__ import annotations

from typing import Any, Optional, Sequence

from ..common.errors import ValidationError
from ..events.models import (
    Event,
    MessageAdded,
    MessageAddedPayload,
    StatusChanged,
    StatusChangedPayload,
    ThreadCreated,
    ThreadCreatedPayload,
)
from ..events.store import ordered
from .models import FORMAT_VERSION, Envelope, HistoryEntry, Message

EXCHANGE_ACTOR = "exchange"
API_CHANNEL = "api"


def start_document(event: ThreadCreated) -> tuple[Envelope, list[Message]]:
    """Envelope plus the two synthetic opening messages (request, exchange ack)."""
    p = event.payload
    ref = event.thread_ref
    if not ref:
        raise ValidationError(message="thread_created event has no thread_ref")
    requestor = p.requestor_id or event.actor_id

    envelope = Envelope(
        ref=ref,
        requestor=requestor,
        executor=None,
        status="pending",
        created=event.ts,
        updated=event.ts,
        intent=p.intent,
        priority=p.priority or "normal",
        history=[HistoryEntry(action="created", at=event.ts, by=requestor)],
    )

    request: dict[str, Any] = {}
    if p.client_id:
        request["id"] = p.client_id
    request.update(intent=p.intent, context=list(p.context), response_hint=list(p.response_hint))

    messages = [
        Message(
            sender=requestor,
            received=event.ts,
            channel=API_CHANNEL,
            content=[{"v": FORMAT_VERSION}, {"request": request}],
        ),
        Message(
            sender=EXCHANGE_ACTOR,
            received=event.ts,
            content=[{"ack": {"re": p.client_id or "last", "ref": ref}}],
        ),
    ]
    return envelope, messages


def apply_event(envelope: Envelope, messages: list[Message], event: Event) -> None:
    """Fold one post-creation event into a document, in place.

    A transition to the status the thread already has only advances `updated`.
    """
    envelope.updated = event.ts

    if isinstance(event, StatusChanged):
        p = event.payload
        if p.executor_id and envelope.executor is None:
            envelope.executor = p.executor_id
        if p.new_status == envelope.status:
            return
        envelope.status = p.new_status
        envelope.history.append(HistoryEntry(action=p.new_status, at=event.ts, by=event.actor_id))
        status: dict[str, Any] = {"code": p.new_status}
        if p.message:
            status["message"] = p.message
        messages.append(
            Message(
                sender=event.actor_id,
                received=event.ts,
                channel=API_CHANNEL,
                reply_to=envelope.ref,
                content=[{"status": status}],
            )
        )
    elif isinstance(event, MessageAdded):
        messages.append(
            Message(
                sender=event.actor_id,
                received=event.ts,
                channel=API_CHANNEL,
                reply_to=envelope.ref,
                content=list(event.payload.content),
            )
        )


def events_to_document(events: Sequence[Event]) -> tuple[Envelope, list[Message]]:
    """Render a thread's event log as an envelope and its messages."""
    seq = ordered(list(events))
    created = next((e for e in seq if isinstance(e, ThreadCreated)), None)
    if created is None:
        raise ValidationError(message="No thread_created event found")

    envelope, messages = start_document(created)
    for event in seq:
        if event is created:
            continue
        apply_event(envelope, messages, event)
    return envelope, messages


# -------------------------
# Document -> events
# -------------------------

def _is_status_only(msg: Message) -> bool:
    kinds = msg.kinds()
    return bool(kinds) and all(k == "status" for k in kinds)


class _EventIds:
    """Deterministic ids `{ref}-{seq:04d}`; re-importing the same document yields the same ids."""

    def __init__(self, ref: str) -> None:
        self.ref = ref
        self.seq = 0

    def next(self) -> str:
        event_id = f"{self.ref}-{self.seq:04d}"
        self.seq += 1
        return event_id


def document_to_events(envelope: Envelope, messages: Sequence[Message], exchange_id: str) -> list[Event]:
    """Rebuild an event log from a document (used to import external documents).

    - the first request-bearing message is folded into `thread_created`
    - exchange acks are synthetic and skipped
    - status-only messages that match a transition in `history` become
      `status_changed`; when the document has no history at all, every
      status-only message is read as a transition
    - every other message becomes `message_added`
    - a final `status_changed` covers an envelope status no message explains
    """
    ref = envelope.ref
    ids = _EventIds(ref)
    events: list[Event] = []

    request_msg = next((m for m in messages if m.find("request") is not None), None)
    request = request_msg.find("request") if request_msg is not None else None
    request = request if isinstance(request, dict) else {}
    requestor = envelope.requestor or (request_msg.sender if request_msg else None) or "unknown"
    created_at = envelope.created or (request_msg.received if request_msg else None) or envelope.updated
    if not created_at:
        raise ValidationError(message=f"Document {ref} has no creation time")

    events.append(
        ThreadCreated(
            event_id=ids.next(),
            ts=created_at,
            exchange_id=exchange_id,
            thread_ref=ref,
            actor_id=requestor,
            payload=ThreadCreatedPayload(
                intent=envelope.intent or request.get("intent") or "",
                context=list(request.get("context") or []),
                priority=envelope.priority or "normal",
                requestor_id=requestor,
                response_hint=list(request.get("response_hint") or []),
                client_id=request.get("id"),
            ),
        )
    )

    transitions = [h for h in envelope.history if h.action != "created"]
    history_keys = {(h.action, h.at) for h in transitions}
    external = not envelope.history
    last_status = "pending"

    def status_event(ts: str, actor: str, new_status: str, message: Optional[str]) -> StatusChanged:
        # the envelope records the winning executor; bare documents fall back to the claimer
        executor_id = envelope.executor
        if executor_id is None and external and new_status == "claimed":
            executor_id = actor
        return StatusChanged(
            event_id=ids.next(),
            ts=ts,
            exchange_id=exchange_id,
            thread_ref=ref,
            actor_id=actor,
            payload=StatusChangedPayload(
                old_status=last_status,
                new_status=new_status,
                executor_id=executor_id,
                message=message,
            ),
        )

    for msg in messages:
        if msg is request_msg or msg.sender == EXCHANGE_ACTOR:
            continue

        if _is_status_only(msg):
            status = msg.find("status") or {}
            code = status.get("code") if isinstance(status, dict) else None
            key = (code, msg.received)
            if code and (external or key in history_keys):
                history_keys.discard(key)
                if code != last_status:
                    events.append(status_event(msg.received, msg.sender, code, status.get("message")))
                    last_status = code
                continue

        events.append(
            MessageAdded(
                event_id=ids.next(),
                ts=msg.received,
                exchange_id=exchange_id,
                thread_ref=ref,
                actor_id=msg.sender,
                payload=MessageAddedPayload(content=list(msg.content)),
            )
        )

    if envelope.status != last_status:
        entry = next((h for h in reversed(transitions) if h.action == envelope.status), None)
        events.append(
            status_event(
                entry.at if entry else (envelope.updated or created_at),
                (entry.by if entry else None) or envelope.executor or "system",
                envelope.status,
                None,
            )
        )
    return events
