from __future__ import annotations

from typing import Iterator, Optional, Protocol

from ..documents.store import DocumentStore
from ..events.models import Event
from ..events.reducer import ThreadView, reduce
from ..events.store import EventStore
from .routing import Partition, status_to_partition


class ThreadRepository(Protocol):
    """Where threads live: an event log or a set of documents. Reads always re-derive the view."""

    def append(self, event: Event) -> None:
        ...

    def thread_events(self, exchange_id: str, ref: str) -> list[Event]:
        ...

    def views(self, exchange_id: str, status: Optional[str] = None) -> Iterator[ThreadView]:
        ...

    def partition_of(self, exchange_id: str, ref: str) -> Optional[Partition]:
        ...


class EventLogRepository:
    def __init__(self, store: EventStore) -> None:
        self.store = store

    def append(self, event: Event) -> None:
        self.store.append(event)

    def thread_events(self, exchange_id: str, ref: str) -> list[Event]:
        return self.store.list_for_thread(exchange_id, ref)

    def views(self, exchange_id: str, status: Optional[str] = None) -> Iterator[ThreadView]:
        for events in self.store.group_by_thread(exchange_id).values():
            view = reduce(events)
            if view is None or view.ref is None:
                continue
            if status and view.status != status:
                continue
            yield view

    def partition_of(self, exchange_id: str, ref: str) -> Optional[Partition]:
        # the log has no physical partitions; report the one the status maps to
        view = reduce(self.thread_events(exchange_id, ref))
        return status_to_partition(view.status) if view else None


class DocumentRepository:
    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    def append(self, event: Event) -> None:
        self.store.apply(event)

    def thread_events(self, exchange_id: str, ref: str) -> list[Event]:
        return self.store.thread_events(exchange_id, ref)

    def views(self, exchange_id: str, status: Optional[str] = None) -> Iterator[ThreadView]:
        return self.store.list_views(exchange_id, status)

    def partition_of(self, exchange_id: str, ref: str) -> Optional[Partition]:
        thread = self.store.find(exchange_id, ref)
        return thread.partition if thread else None
