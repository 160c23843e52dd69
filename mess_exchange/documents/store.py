from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Literal, Optional, Sequence, Union

import structlog

from ..common.errors import ConflictError, NotFoundError, ParseError
from ..core.config import DocumentConfig
from ..core.routing import PARTITIONS, Partition, status_to_partition
from ..events.models import Event, ThreadCreated
from ..events.reducer import ThreadView, reduce
from ..events.store import EventStore
from ..models import validate_ref
from ..storage.base import BlobStorage
from .codec import parse_document, parse_flat_document, serialize_document, serialize_flat_document
from .convert import apply_event, document_to_events, start_document
from .models import (
    ATTACHMENT_NAME_RE,
    DOCUMENT_NAME_RE,
    DOCUMENT_SUFFIX,
    Attachment,
    DocumentFile,
    Envelope,
    Message,
)

logger = structlog.get_logger()

Layout = Literal["directory", "flat"]


@dataclass
class StoredThread:
    envelope: Envelope
    messages: list[Message]
    attachments: list[Attachment]
    partition: Partition
    layout: Layout


def partition_prefix(exchange_id: str, partition: str) -> str:
    return f"exchange={exchange_id}/state={partition}/"


def thread_dir(exchange_id: str, partition: str, ref: str) -> str:
    return f"{partition_prefix(exchange_id, partition)}{ref}/"


def flat_key(exchange_id: str, partition: str, ref: str) -> str:
    return f"{partition_prefix(exchange_id, partition)}{ref}{DOCUMENT_SUFFIX}"


def _basename(key: str) -> str:
    return key.rsplit("/", 1)[-1]


class DocumentStore:
    """Threads stored as MESSE-AF documents, partitioned by lifecycle status.

    Layout under the main backend:
        exchange={id}/state={partition}/{ref}/000-{ref}.messe-af.yaml   (directory)
        exchange={id}/state={partition}/{ref}.messe-af.yaml             (flat, legacy)
    Attachments go to `blobs` (defaults to the main backend) under the
    thread directory. Events without a thread document (executor
    registrations, orphans) fall through to the plain event log.
    """

    def __init__(
        self,
        storage: BlobStorage,
        *,
        blobs: Optional[BlobStorage] = None,
        config: Optional[DocumentConfig] = None,
    ) -> None:
        self.storage = storage
        self.blobs = blobs if blobs is not None else storage
        self.config = config or DocumentConfig()
        self.events = EventStore(storage)

    # -------------------------
    # Reading
    # -------------------------

    def _read_directory(self, exchange_id: str, partition: Partition, ref: str) -> Optional[StoredThread]:
        prefix = thread_dir(exchange_id, partition, ref)
        keys = self.storage.list(prefix)
        if self.blobs is not self.storage:
            keys += self.blobs.list(prefix)
        if not keys:
            return None

        files = []
        for key in keys:
            name = _basename(key)
            source = self.blobs if ATTACHMENT_NAME_RE.match(name) else self.storage
            content = source.get(key)
            if content is not None:
                files.append(DocumentFile(name=name, content=content))
        if not any(DOCUMENT_NAME_RE.match(f.name) for f in files):
            return None

        parsed = parse_document(files)
        return StoredThread(parsed.envelope, parsed.messages, parsed.attachments, partition, "directory")

    def _read_flat(self, exchange_id: str, partition: Partition, ref: str) -> Optional[StoredThread]:
        content = self.storage.get(flat_key(exchange_id, partition, ref))
        if content is None:
            return None
        parsed = parse_flat_document(content)
        return StoredThread(parsed.envelope, parsed.messages, [], partition, "flat")

    def find(self, exchange_id: str, ref: str) -> Optional[StoredThread]:
        """Locate a thread in any partition.

        If an interrupted relocation left copies in two partitions, the copy
        with the latest `updated` wins. Raises ParseError for a corrupt thread.
        """
        found: list[StoredThread] = []
        for partition in PARTITIONS:
            thread = self._read_directory(exchange_id, partition, ref) or self._read_flat(exchange_id, partition, ref)
            if thread is not None:
                found.append(thread)
        if not found:
            return None
        return max(found, key=lambda t: t.envelope.updated or "")

    def thread_events(self, exchange_id: str, ref: str) -> list[Event]:
        thread = self.find(exchange_id, ref)
        if thread is None:
            return []
        return document_to_events(thread.envelope, thread.messages, exchange_id)

    def view(self, exchange_id: str, ref: str) -> Optional[ThreadView]:
        return reduce(self.thread_events(exchange_id, ref))

    def refs(self, exchange_id: str, partitions: Sequence[Partition] = PARTITIONS) -> list[str]:
        """Refs present in the given partitions (from key names only, nothing parsed)."""
        seen: dict[str, None] = {}
        for partition in partitions:
            prefix = partition_prefix(exchange_id, partition)
            for key in self.storage.list(prefix):
                rest = key[len(prefix):]
                if "/" in rest:
                    ref = rest.split("/", 1)[0]
                elif rest.endswith(DOCUMENT_SUFFIX):
                    ref = rest[: -len(DOCUMENT_SUFFIX)]
                else:
                    continue
                seen.setdefault(ref, None)
        return list(seen)

    def list_views(self, exchange_id: str, status: Optional[str] = None) -> Iterator[ThreadView]:
        """Current view of every thread; a corrupt thread is logged and skipped."""
        partitions = (status_to_partition(status),) if status else PARTITIONS
        for ref in self.refs(exchange_id, partitions):
            try:
                view = self.view(exchange_id, ref)
            except ParseError as exc:
                logger.warning("thread_skipped_corrupt", exchange_id=exchange_id, ref=ref, error=str(exc))
                continue
            if view is None or (status and view.status != status):
                continue
            yield view

    # -------------------------
    # Writing
    # -------------------------

    def _write(
        self,
        exchange_id: str,
        envelope: Envelope,
        messages: list[Message],
        attachments: list[Attachment],
        layout: Layout,
    ) -> Partition:
        partition = status_to_partition(envelope.status)
        ref = envelope.ref
        if layout == "flat":
            self.storage.put(flat_key(exchange_id, partition, ref), serialize_flat_document(envelope, messages))
            return partition

        prefix = thread_dir(exchange_id, partition, ref)
        files = serialize_document(
            envelope,
            messages,
            attachments,
            max_file_size=self.config.max_file_size,
            max_inline_size=self.config.max_inline_size,
        )
        written = set()
        for f in files:
            (self.blobs if f.binary else self.storage).put(prefix + f.name, f.content)
            written.add(prefix + f.name)
        # a rewrite can produce fewer numbered files than before
        for key in self.storage.list(prefix):
            if key not in written and DOCUMENT_NAME_RE.match(_basename(key)):
                self.storage.delete(key)
        return partition

    def _remove(self, exchange_id: str, thread: StoredThread) -> None:
        ref = thread.envelope.ref
        if thread.layout == "flat":
            self.storage.delete(flat_key(exchange_id, thread.partition, ref))
            return
        prefix = thread_dir(exchange_id, thread.partition, ref)
        for key in self.storage.list(prefix):
            self.storage.delete(key)
        if self.blobs is not self.storage:
            for key in self.blobs.list(prefix):
                self.blobs.delete(key)

    def save(self, exchange_id: str, thread: StoredThread) -> Partition:
        """Write a thread to the partition its status maps to.

        When that differs from where it was read (or the layout changes), the
        new copy is fully written before the old one is deleted.
        """
        layout: Layout = self.config.layout
        partition = self._write(exchange_id, thread.envelope, thread.messages, thread.attachments, layout)
        if partition != thread.partition or layout != thread.layout:
            self._remove(exchange_id, thread)
            logger.info(
                "thread_relocated",
                exchange_id=exchange_id,
                ref=thread.envelope.ref,
                from_partition=thread.partition,
                to_partition=partition,
            )
        return partition

    def apply(self, event: Event) -> None:
        """Record one event by rewriting the thread document it belongs to."""
        exchange_id = event.exchange_id
        if event.thread_ref is None:
            self.events.append(event)
            return

        existing = self.find(exchange_id, event.thread_ref)
        if existing is None:
            if isinstance(event, ThreadCreated):
                envelope, messages = start_document(event)
                self._write(exchange_id, envelope, messages, [], self.config.layout)
            else:
                logger.warning("event_orphaned", exchange_id=exchange_id, ref=event.thread_ref, event_id=event.event_id)
                self.events.append(event)
            return

        if isinstance(event, ThreadCreated):
            raise ConflictError(message=f"Thread {event.thread_ref} already exists")
        apply_event(existing.envelope, existing.messages, event)
        self.save(exchange_id, existing)

    # -------------------------
    # Import / export
    # -------------------------

    def import_thread(self, exchange_id: str, source: Union[Sequence[DocumentFile], str, bytes]) -> tuple[str, str]:
        """Store an externally authored document; returns (ref, status)."""
        if isinstance(source, (str, bytes)):
            parsed = parse_flat_document(source)
        else:
            parsed = parse_document(source)
        envelope = parsed.envelope
        validate_ref(envelope.ref)

        existing = self.find(exchange_id, envelope.ref)
        thread = StoredThread(
            envelope,
            parsed.messages,
            parsed.attachments,
            existing.partition if existing else status_to_partition(envelope.status),
            existing.layout if existing else self.config.layout,
        )
        self.save(exchange_id, thread)
        return envelope.ref, envelope.status

    def export_thread(self, exchange_id: str, ref: str, layout: Layout = "directory") -> Union[list[DocumentFile], str]:
        thread = self.find(exchange_id, ref)
        if thread is None:
            raise NotFoundError(message=f"Thread not found: {ref}")
        if layout == "flat":
            return serialize_flat_document(thread.envelope, thread.messages)
        return serialize_document(
            thread.envelope,
            thread.messages,
            thread.attachments,
            max_file_size=self.config.max_file_size,
            max_inline_size=self.config.max_inline_size,
        )
