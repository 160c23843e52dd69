"""MESSE-AF document codec.

A thread is a YAML multi-document stream: the envelope first, then one
document per message. The directory layout spreads the stream over numbered
files (`000-{ref}.messe-af.yaml`, `001-...`) bounded by a byte cap, with large
inline media moved into `att-NNN-{type}-{label}.{ext}` files. The flat layout
is the legacy single-file form.
"""

from __future__ import annotations

import base64
import binascii
import copy
import re
from typing import Any, Iterable, Sequence, Union

import yaml
from pydantic import ValidationError as PydanticValidationError

from ..common.errors import ParseError
from ..core.config import MAX_FILE_SIZE, MAX_INLINE_SIZE
from .models import (
    ATTACHMENT_NAME_RE,
    DOCUMENT_NAME_RE,
    DOCUMENT_SUFFIX,
    Attachment,
    DocumentFile,
    Envelope,
    Message,
    ParsedDocument,
)

SEPARATOR = "---\n"

_DATA_URL_RE = re.compile(r"^data:([^;,]+);base64,(.+)$", re.DOTALL)
_MEDIA_KEYS = ("image", "audio", "video", "file")
_NESTED_LISTS = ("content", "context")

_MIME_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "audio/mpeg": "mp3",
    "audio/wav": "wav",
    "audio/mp4": "m4a",
    "video/mp4": "mp4",
    "video/quicktime": "mov",
    "video/webm": "webm",
    "application/pdf": "pdf",
    "text/plain": "txt",
}


def attachment_type(mime: str) -> str:
    for prefix in ("image", "audio", "video"):
        if mime.startswith(prefix + "/"):
            return prefix
    return "file"


def extension_for(mime: str) -> str:
    return _MIME_EXTENSIONS.get(mime, "bin")


def sanitize_filename(name: str) -> str:
    return re.sub(r"_+", "_", re.sub(r"[^a-zA-Z0-9._-]", "_", name))


def document_filename(seq: int, ref: str) -> str:
    return f"{seq:03d}-{ref}{DOCUMENT_SUFFIX}"


# -------------------------
# YAML helpers
# -------------------------

def _dump(doc: dict[str, Any]) -> str:
    return yaml.safe_dump(
        doc,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
        width=float("inf"),
    )


def _load_all(text: Union[str, bytes], source: str) -> list[Any]:
    if isinstance(text, bytes):
        try:
            text = text.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ParseError(message=f"{source}: not UTF-8") from exc
    try:
        return [doc for doc in yaml.safe_load_all(text) if doc is not None]
    except yaml.YAMLError as exc:
        raise ParseError(message=f"{source}: invalid YAML: {exc}") from exc


def _build(docs: list[Any], source: str) -> tuple[Envelope, list[Message]]:
    if not docs:
        raise ParseError(message=f"{source}: no documents")
    try:
        envelope = Envelope.model_validate(docs[0])
        messages = [Message.model_validate(d) for d in docs[1:]]
    except PydanticValidationError as exc:
        raise ParseError(message=f"{source}: {exc.errors()[0]['msg']}") from exc
    return envelope, messages


# -------------------------
# Parsing
# -------------------------

def parse_document(files: Iterable[DocumentFile]) -> ParsedDocument:
    """Parse a directory-layout thread from its files.

    Numbered YAML files are read in numeric order and their streams
    concatenated; attachment files are collected as-is; anything else is
    ignored.
    """
    numbered: list[tuple[int, DocumentFile]] = []
    attachments: list[Attachment] = []
    for f in files:
        m = DOCUMENT_NAME_RE.match(f.name)
        if m:
            numbered.append((int(m.group(1)), f))
        elif ATTACHMENT_NAME_RE.match(f.name):
            attachments.append(Attachment(name=f.name, content=f.content))

    if not numbered:
        raise ParseError(message="No document files found in thread directory")

    numbered.sort(key=lambda pair: pair[0])
    docs: list[Any] = []
    for _, f in numbered:
        docs.extend(_load_all(f.content, f.name))

    envelope, messages = _build(docs, numbered[0][1].name)
    return ParsedDocument(envelope=envelope, messages=messages, attachments=attachments)


def parse_flat_document(content: Union[str, bytes]) -> ParsedDocument:
    """Parse the legacy single-file layout. Never yields attachments."""
    envelope, messages = _build(_load_all(content, "flat document"), "flat document")
    return ParsedDocument(envelope=envelope, messages=messages, attachments=[])


# -------------------------
# Attachment externalization
# -------------------------

def _externalize_element(element: Any, serial: int, threshold: int) -> tuple[Any, list[Attachment]]:
    if not isinstance(element, dict):
        return element, []
    for key in _MEDIA_KEYS:
        value = element.get(key)
        if not isinstance(value, str) or len(value.encode("utf-8")) < threshold:
            continue
        m = _DATA_URL_RE.match(value)
        if not m:
            continue
        mime, payload = m.group(1), m.group(2)
        try:
            raw = base64.b64decode(payload, validate=False)
        except (binascii.Error, ValueError):
            continue
        name = f"att-{serial:03d}-{attachment_type(mime)}-{sanitize_filename(key)}.{extension_for(mime)}"
        ref = {"file": {"name": name, "mime": mime, "size": len(raw)}}
        return ref, [Attachment(name=name, content=raw)]
    return element, []


def externalize_message(message: Message, next_serial: int, threshold: int) -> tuple[Message, list[Attachment]]:
    """Swap inline media at or above `threshold` bytes for file references.

    Returns a new message; the input is left untouched.
    """
    content = copy.deepcopy(message.content)
    created: list[Attachment] = []
    for item in content:
        for body in item.values():
            if not isinstance(body, dict):
                continue
            for list_key in _NESTED_LISTS:
                elements = body.get(list_key)
                if not isinstance(elements, list):
                    continue
                for i, element in enumerate(elements):
                    replaced, new = _externalize_element(element, next_serial + len(created), threshold)
                    if new:
                        elements[i] = replaced
                        created.extend(new)
    if not created:
        return message, []
    return message.model_copy(update={"content": content}), created


# -------------------------
# Serialization
# -------------------------

def serialize_document(
    envelope: Envelope,
    messages: Sequence[Message],
    existing_attachments: Sequence[Attachment] = (),
    *,
    max_file_size: int = MAX_FILE_SIZE,
    max_inline_size: int = MAX_INLINE_SIZE,
) -> list[DocumentFile]:
    """Render a thread in the directory layout.

    Messages are packed greedily, in order, into numbered files of at most
    `max_file_size` bytes. A message is never split: one that is larger than
    the cap on its own gets a file to itself and exceeds the cap.
    New attachment serials continue after the highest existing one.
    """
    attachments = list(existing_attachments)
    next_serial = max((a.serial for a in attachments), default=0) + 1

    chunks: list[list[str]] = []
    current = [_dump(envelope.to_document())]
    current_size = len(current[0].encode("utf-8"))

    for msg in messages:
        processed, new = externalize_message(msg, next_serial, max_inline_size)
        attachments.extend(new)
        next_serial += len(new)

        text = _dump(processed.to_document())
        size = len(text.encode("utf-8"))
        if current and current_size + len(SEPARATOR) + size > max_file_size:
            chunks.append(current)
            current, current_size = [], 0
        if current:
            current_size += len(SEPARATOR)
        current.append(text)
        current_size += size

    if current:
        chunks.append(current)

    files = [
        DocumentFile(name=document_filename(i, envelope.ref), content=SEPARATOR.join(docs).encode("utf-8"))
        for i, docs in enumerate(chunks)
    ]
    files.extend(DocumentFile(name=a.name, content=a.content, binary=True) for a in attachments)
    return files


def serialize_flat_document(envelope: Envelope, messages: Sequence[Message]) -> str:
    """Legacy single-file rendering; no size cap, no externalization."""
    docs = [envelope.to_document()] + [m.to_document() for m in messages]
    return SEPARATOR.join(_dump(d) for d in docs)
