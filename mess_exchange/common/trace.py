from __future__ import annotations

import re
import secrets
from typing import Optional

import ulid

_REF_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


def new_id() -> str:
    """Generate a sortable identifier (ULID, 26 chars)."""
    return str(ulid.new())


def tokenize_id(value: Optional[str]) -> str:
    """Lowercase, hyphenated, at most 32 chars; used to embed client ids in refs."""
    if not value:
        return ""
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")[:32]


def generate_ref(today: str, client_id: Optional[str] = None) -> str:
    """Thread reference: `YYYY-MM-DD-XXXX[-client-id]` with a random base36 part."""
    suffix = "".join(secrets.choice(_REF_ALPHABET) for _ in range(4))
    ref = f"{today}-{suffix}"
    token = tokenize_id(client_id)
    if token:
        ref = f"{ref}-{token}"
    return ref
