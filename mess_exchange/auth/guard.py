from __future__ import annotations

import hmac
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog

from .registry import ExecutorRegistry
from .tokens import digest, parse_token

logger = structlog.get_logger()


@dataclass(frozen=True)
class Identity:
    """An authenticated executor: its public profile plus the exchange it belongs to."""

    exchange_id: str
    executor_id: str
    profile: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {**self.profile, "exchange_id": self.exchange_id}


class AuthGuard:
    def __init__(self, registry: ExecutorRegistry) -> None:
        self.registry = registry

    def authenticate(self, token: Optional[str]) -> Optional[Identity]:
        """Resolve a bearer token to an identity, or None.

        Every registered digest of the exchange is compared in constant time.
        """
        exchange_id = parse_token(token)
        if exchange_id is None:
            logger.info("auth_rejected", reason="malformed_token")
            return None

        hashed = digest(token or "").encode("ascii")
        matched = None
        for record in self.registry.records(exchange_id):
            if hmac.compare_digest(record.api_key_hash.encode("ascii"), hashed):
                matched = record
        if matched is None:
            logger.info("auth_rejected", reason="unknown_token", exchange_id=exchange_id)
            return None
        return Identity(exchange_id=exchange_id, executor_id=matched.id, profile=matched.profile())
