from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class ExchangeError(Exception):
    """Base business error; carries the code/status a transport layer maps to a response."""
    message: str
    code: str = "INTERNAL"
    http_status: int = 500
    data: Optional[dict[str, Any]] = None

    def __str__(self) -> str:
        return self.message


@dataclass
class ValidationError(ExchangeError):
    """Malformed ref/status/id or missing required field. Raised before any write."""
    code: str = "VALIDATION"
    http_status: int = 400


@dataclass
class UnauthorizedError(ExchangeError):
    code: str = "UNAUTHORIZED"
    http_status: int = 401


@dataclass
class NotFoundError(ExchangeError):
    code: str = "NOT_FOUND"
    http_status: int = 404


@dataclass
class ConflictError(ExchangeError):
    """Duplicate registration and similar rejected mutations."""
    code: str = "CONFLICT"
    http_status: int = 409


@dataclass
class ForbiddenError(ConflictError):
    """An identity tried to mutate something owned by another identity."""
    code: str = "FORBIDDEN"
    http_status: int = 403


@dataclass
class StorageError(ExchangeError):
    """Backend I/O failure. Fatal to the current operation, never retried."""
    code: str = "STORAGE"
    http_status: int = 503


@dataclass
class ParseError(ExchangeError):
    """Malformed document or event content."""
    code: str = "PARSE"
    http_status: int = 422
