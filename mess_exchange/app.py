from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import structlog

from .auth.guard import AuthGuard
from .auth.http import BearerAuth
from .auth.registry import ExecutorRegistry
from .common.dotenv import load_dotenv_auto
from .common.logs import configure_logging
from .core.config import ConfigManager, ExchangeConfig
from .core.exchange import Exchange
from .core.repository import DocumentRepository, EventLogRepository, ThreadRepository
from .documents.store import DocumentStore
from .events.bus import InProcessEventBus
from .events.store import EventStore
from .notify.dispatcher import NotificationDispatcher
from .storage.base import BlobStorage, PrefixedStorage
from .storage.factory import create_storage

logger = structlog.get_logger()

BLOB_PREFIX = "blobs/"


@dataclass
class ExchangeRuntime:
    """Everything a transport adapter needs, built from one configuration value."""

    config: ExchangeConfig
    storage: BlobStorage
    exchange: Exchange
    registry: ExecutorRegistry
    guard: AuthGuard
    bearer: BearerAuth
    bus: InProcessEventBus
    dispatcher: NotificationDispatcher
    documents: Optional[DocumentStore] = None

    def close(self) -> None:
        self.dispatcher.close()


def build_repository(
    cfg: ExchangeConfig, storage: BlobStorage
) -> tuple[ThreadRepository, Optional[DocumentStore]]:
    """Thread repository for `cfg.mode`; the document store is returned too when one is used."""
    if cfg.mode == "document":
        blobs = create_storage(cfg.blob_storage) if cfg.blob_storage else PrefixedStorage(storage, BLOB_PREFIX)
        documents = DocumentStore(storage, blobs=blobs, config=cfg.documents)
        return DocumentRepository(documents), documents
    return EventLogRepository(EventStore(storage)), None


def create_runtime(
    cfg: Optional[ExchangeConfig] = None,
    *,
    storage: Optional[BlobStorage] = None,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> ExchangeRuntime:
    """Wire an exchange from configuration.

    `storage` replaces the configured backend (bucket bindings, tests);
    `dispatcher` replaces the default httpx-backed notification dispatcher.
    """
    if cfg is None:
        # .env first; variables already set in the process take precedence
        load_dotenv_auto(override=False)
        cfg = ConfigManager().load()
        configure_logging(cfg.log_level, json=cfg.log_json)

    storage = storage if storage is not None else create_storage(cfg.storage)
    repository, documents = build_repository(cfg, storage)

    registry = ExecutorRegistry(storage, on_event=repository.append)
    guard = AuthGuard(registry)
    bus = InProcessEventBus()
    if dispatcher is None:
        dispatcher = NotificationDispatcher(registry, public_url=cfg.public_url, timeout_s=cfg.notify_timeout_s)
    dispatcher.attach(bus)

    logger.info("exchange_ready", mode=cfg.mode, storage=cfg.storage.type, layout=cfg.documents.layout)
    return ExchangeRuntime(
        config=cfg,
        storage=storage,
        exchange=Exchange(repository, registry, bus=bus),
        registry=registry,
        guard=guard,
        bearer=BearerAuth(guard),
        bus=bus,
        dispatcher=dispatcher,
        documents=documents,
    )
