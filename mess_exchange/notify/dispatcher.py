from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx
import structlog

from ..auth.registry import ExecutorRecord, ExecutorRegistry
from ..events.bus import THREAD_CREATED, THREAD_STATUS_CHANGED, InProcessEventBus, ThreadNotice
from ..models import QuietHours, priority_rank
from .payload import build_payload
from .senders import SENDERS

logger = structlog.get_logger()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def in_quiet_hours(quiet: QuietHours, now: datetime) -> bool:
    """Whether `now` falls inside the window; windows may wrap midnight (22:00-07:00)."""
    if not quiet.enabled:
        return False
    try:
        tz = ZoneInfo(quiet.timezone)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("quiet_hours_bad_timezone", timezone=quiet.timezone)
        tz = ZoneInfo("UTC")
    current = now.astimezone(tz).strftime("%H:%M")
    if quiet.start > quiet.end:
        return current >= quiet.start or current < quiet.end
    return quiet.start <= current < quiet.end


class NotificationDispatcher:
    """Fans thread notices out to the notification channels of an exchange's executors.

    Delivery is fire-and-forget: a failing channel is logged and the rest
    still get their notification.
    """

    def __init__(
        self,
        registry: ExecutorRegistry,
        *,
        public_url: Optional[str] = None,
        timeout_s: float = 10.0,
        client: Optional[httpx.Client] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.registry = registry
        self.public_url = public_url
        self.client = client or httpx.Client(timeout=httpx.Timeout(timeout_s))
        self.clock = clock

    def attach(self, bus: InProcessEventBus) -> None:
        bus.subscribe(THREAD_CREATED, self.dispatch)
        bus.subscribe(THREAD_STATUS_CHANGED, self.dispatch)

    def should_notify(self, executor: ExecutorRecord, notice: ThreadNotice) -> bool:
        # nobody is told about their own action (covers the requestor of a new thread)
        if executor.id == notice.actor_id:
            return False
        prefs = executor.preferences
        if priority_rank(notice.priority) < priority_rank(prefs.min_priority or "normal"):
            return False
        if prefs.quiet_hours and notice.priority != "urgent" and in_quiet_hours(prefs.quiet_hours, self.clock()):
            return False
        return True

    def dispatch(self, topic: str, notice: ThreadNotice) -> int:
        """Deliver one notice; returns how many channels accepted it."""
        payload = build_payload(notice, self.public_url)
        if topic == THREAD_CREATED:
            headline = f"MESS: {payload['intent']}"
        else:
            headline = f"MESS Update: {notice.status}"

        delivered = 0
        for executor in self.registry.records(notice.exchange_id):
            if not self.should_notify(executor, notice):
                continue
            for target in executor.notifications:
                sender = SENDERS.get(target.type)
                if sender is None:
                    logger.warning("notification_unknown_channel", channel=target.type, executor_id=executor.id)
                    continue
                try:
                    sender(self.client, target, payload, headline)
                except Exception as exc:  # noqa: BLE001
                    logger.warning(
                        "notification_failed",
                        channel=target.type,
                        executor_id=executor.id,
                        ref=notice.ref,
                        error=str(exc),
                    )
                    continue
                delivered += 1
                logger.debug("notification_sent", channel=target.type, executor_id=executor.id, ref=notice.ref)
        return delivered

    def close(self) -> None:
        self.client.close()
