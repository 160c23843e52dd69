from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Annotated, Any, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

from ..common.time_util import coerce_iso

Timestamp = Annotated[str, BeforeValidator(coerce_iso)]

DOCUMENT_SUFFIX = ".messe-af.yaml"
FORMAT_VERSION = "1.0.0"

# 000-2026-10-19-AB12.messe-af.yaml
DOCUMENT_NAME_RE = re.compile(r"^(\d+)-.+" + re.escape(DOCUMENT_SUFFIX) + r"$")
# att-001-image-photo.jpg
ATTACHMENT_NAME_RE = re.compile(r"^att-(\d+)-([a-z]+)-(.+)\.([A-Za-z0-9]+)$")


class HistoryEntry(BaseModel):
    model_config = ConfigDict(extra="allow")

    action: str
    at: Timestamp
    by: Optional[str] = None

    def to_document(self) -> dict[str, Any]:
        data = self.model_dump()
        if data.get("by") is None:
            data.pop("by")
        return data


class Envelope(BaseModel):
    """Header document: current status and metadata of a thread."""

    model_config = ConfigDict(extra="allow")

    ref: str
    requestor: Optional[str] = None
    executor: Optional[str] = None
    status: str = "pending"
    created: Optional[Timestamp] = None
    updated: Optional[Timestamp] = None
    intent: str = ""
    priority: str = "normal"
    history: list[HistoryEntry] = Field(default_factory=list)

    def to_document(self) -> dict[str, Any]:
        data = self.model_dump(exclude={"history"})
        data["history"] = [h.to_document() for h in self.history]
        return data


class Message(BaseModel):
    """One timestamped entry of a thread. `content` is written as `MESS`."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    sender: str = Field(alias="from")
    received: Timestamp
    channel: Optional[str] = None
    reply_to: Optional[str] = Field(default=None, alias="re")
    content: list[dict[str, Any]] = Field(default_factory=list, alias="MESS")

    def to_document(self) -> dict[str, Any]:
        data = self.model_dump(by_alias=True)
        for key in ("channel", "re"):
            if data.get(key) is None:
                data.pop(key, None)
        return data

    def kinds(self) -> list[str]:
        """Content item kinds present, in order (`v` version markers skipped)."""
        found = []
        for item in self.content:
            for key in item:
                if key != "v":
                    found.append(key)
        return found

    def find(self, kind: str) -> Optional[Any]:
        for item in self.content:
            if kind in item:
                return item[kind]
        return None


@dataclass
class Attachment:
    """Binary content externalized out of a message."""
    name: str
    content: bytes
    binary: bool = True

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def serial(self) -> int:
        m = ATTACHMENT_NAME_RE.match(self.name)
        return int(m.group(1)) if m else 0


@dataclass
class DocumentFile:
    """A named blob produced or consumed by the codec."""
    name: str
    content: bytes
    binary: bool = False


@dataclass
class ParsedDocument:
    envelope: Envelope
    messages: list[Message]
    attachments: list[Attachment]
