from __future__ import annotations

from typing import Iterator, Optional

import structlog

from ..common.errors import ParseError
from ..common.time_util import date_path, parse_iso
from ..storage.base import BlobStorage
from .models import Event, decode_event, encode_event

logger = structlog.get_logger()

EVENTS_ROOT = "events"


def exchange_prefix(exchange_id: str) -> str:
    return f"{EVENTS_ROOT}/exchange={exchange_id}/"


def event_key(event: Event) -> str:
    """`events/exchange={id}/{yyyy}/{mm}/{dd}/{event_id}.jsonl`, dated by the event's own timestamp."""
    return f"{exchange_prefix(event.exchange_id)}{date_path(event.ts)}/{event.event_id}.jsonl"


def ordered(events: list[Event]) -> list[Event]:
    """Timestamp order; the sort is stable so the incoming order breaks ties."""
    return sorted(events, key=lambda e: parse_iso(e.ts))


class EventStore:
    """Append-only event log over any blob backend.

    One event per partition file. No caching: every listing rescans the
    exchange prefix.
    """

    def __init__(self, storage: BlobStorage) -> None:
        self.storage = storage

    def _existing_key(self, event: Event) -> Optional[str]:
        key = event_key(event)
        if self.storage.get(key) is not None:
            return key
        # the same id may have been written under another day
        suffix = f"/{event.event_id}.jsonl"
        return next((k for k in self.storage.list(exchange_prefix(event.exchange_id)) if k.endswith(suffix)), None)

    def append(self, event: Event) -> bool:
        """Persist one event. Returns False (and writes nothing) if its id already exists in the exchange."""
        existing = self._existing_key(event)
        if existing is not None:
            logger.debug("event_exists", event_id=event.event_id, key=existing)
            return False
        key = event_key(event)
        self.storage.put(key, encode_event(event))
        logger.debug("event_appended", event_id=event.event_id, event_type=event.event_type, ref=event.thread_ref)
        return True

    def list_for_exchange(self, exchange_id: str) -> Iterator[Event]:
        """Lazily yield every event of an exchange, in no particular order.

        Malformed lines are skipped so a single bad record cannot hide the log.
        """
        for key in self.storage.list(exchange_prefix(exchange_id)):
            data = self.storage.get(key)
            if data is None:
                continue
            for line in data.decode("utf-8").splitlines():
                if not line.strip():
                    continue
                try:
                    yield decode_event(line)
                except ParseError as exc:
                    logger.warning("event_skipped_malformed", key=key, error=str(exc))

    def list_for_thread(self, exchange_id: str, ref: str) -> list[Event]:
        """Events of one thread, sorted by (timestamp, event_id)."""
        events = [e for e in self.list_for_exchange(exchange_id) if e.thread_ref == ref]
        events.sort(key=lambda e: e.event_id)
        return ordered(events)

    def group_by_thread(self, exchange_id: str) -> dict[str, list[Event]]:
        """All thread events of an exchange grouped by ref (single scan)."""
        grouped: dict[str, list[Event]] = {}
        for event in self.list_for_exchange(exchange_id):
            if event.thread_ref is None:
                continue
            grouped.setdefault(event.thread_ref, []).append(event)
        for ref, events in grouped.items():
            events.sort(key=lambda e: e.event_id)
            grouped[ref] = ordered(events)
        return grouped
