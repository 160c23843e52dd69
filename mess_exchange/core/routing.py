from __future__ import annotations

from typing import Literal

Partition = Literal["received", "executing", "finished", "canceled"]

PARTITIONS: tuple[Partition, ...] = ("received", "executing", "finished", "canceled")

STATUS_PARTITIONS: dict[str, Partition] = {
    "pending": "received",
    "claimed": "executing",
    "in-progress": "executing",
    "waiting": "executing",
    "held": "executing",
    "needs_input": "executing",
    "needs_confirmation": "executing",
    "completed": "finished",
    "partial": "finished",
    "failed": "canceled",
    "declined": "canceled",
    "cancelled": "canceled",
    "expired": "canceled",
    "delegated": "canceled",
    "superseded": "canceled",
}

KNOWN_STATUSES = frozenset(STATUS_PARTITIONS)

TERMINAL_STATUSES = frozenset(
    {"completed", "failed", "declined", "cancelled", "expired", "delegated", "superseded"}
)


def status_to_partition(status: object) -> Partition:
    """Partition for a lifecycle status. Unknown statuses land in `received`."""
    if isinstance(status, str):
        return STATUS_PARTITIONS.get(status, "received")
    return "received"


def needs_relocation(old_status: object, new_status: object) -> bool:
    return status_to_partition(old_status) != status_to_partition(new_status)
