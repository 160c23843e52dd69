from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, DefaultDict, List, Optional

THREAD_CREATED = "thread.created"
THREAD_STATUS_CHANGED = "thread.status_changed"


@dataclass(frozen=True)
class ThreadNotice:
    """What subscribers learn about a thread change (published after the write succeeded)."""

    exchange_id: str
    ref: str
    actor_id: str
    intent: str = ""
    priority: str = "normal"
    status: str = "pending"
    requestor_id: Optional[str] = None
    context: List[Any] = field(default_factory=list)
    response_hint: List[str] = field(default_factory=list)
    old_status: Optional[str] = None


Subscriber = Callable[[str, ThreadNotice], None]


@dataclass
class InProcessEventBus:
    """进程内发布/订阅事件总线。"""

    _subs: DefaultDict[str, List[Subscriber]] = field(default_factory=lambda: defaultdict(list))

    def subscribe(self, topic: str, fn: Subscriber) -> None:
        self._subs[topic].append(fn)

    def publish(self, topic: str, notice: ThreadNotice) -> None:
        for fn in self._subs.get(topic, []):
            fn(topic, notice)
