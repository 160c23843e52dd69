from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional


def _format(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


def utc_now_iso() -> str:
    """返回 UTC 时间的 ISO-8601 字符串（微秒精度，带 Z）。"""
    return _format(datetime.now(timezone.utc))


def parse_iso(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def next_timestamp(after: Optional[str] = None) -> str:
    """Current time, bumped to stay strictly after `after`.

    Two events written by one operation must never share a timestamp.
    """
    now = datetime.now(timezone.utc)
    if after:
        floor = parse_iso(after) + timedelta(microseconds=1)
        if now < floor:
            now = floor
    return _format(now)


def date_path(value: str) -> str:
    """`yyyy/mm/dd` of a timestamp, in UTC."""
    dt = parse_iso(value).astimezone(timezone.utc)
    return f"{dt.year:04d}/{dt.month:02d}/{dt.day:02d}"


def coerce_iso(value: Any) -> Any:
    """YAML loaders turn unquoted timestamps into datetimes; keep them as strings."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return _format(value)
    return value
