from __future__ import annotations

import base64
import hashlib
import re
import uuid
from typing import Optional

TOKEN_PREFIX = "mess"
# mess_{exchange_id}_{32 hex}
_TOKEN_RE = re.compile(r"^mess_([a-z0-9][a-z0-9-]{0,63})_([0-9a-f]{32})$")


def issue(exchange_id: str) -> str:
    """New opaque bearer token bound to an exchange."""
    return f"{TOKEN_PREFIX}_{exchange_id}_{uuid.uuid4().hex}"


def digest(token: str) -> str:
    """One-way hash stored in place of the token (sha256, base64)."""
    return base64.b64encode(hashlib.sha256(token.encode("utf-8")).digest()).decode("ascii")


def parse_token(token: Optional[str]) -> Optional[str]:
    """Exchange id embedded in a well-formed token, else None."""
    if not token:
        return None
    m = _TOKEN_RE.match(token)
    return m.group(1) if m else None
