from __future__ import annotations

from typing import Any, Optional

from ..events.bus import ThreadNotice


def wants_photo(response_hint: list[str]) -> bool:
    return "image" in (response_hint or [])


def build_payload(notice: ThreadNotice, public_url: Optional[str] = None) -> dict[str, Any]:
    """`{ref, intent, priority, requestor, context, wants_photo, url}` as every sink receives it."""
    return {
        "ref": notice.ref,
        "intent": notice.intent or "New request",
        "priority": notice.priority or "normal",
        "requestor": notice.requestor_id,
        "context": list(notice.context),
        "wants_photo": wants_photo(notice.response_hint),
        "url": public_url or "",
    }
