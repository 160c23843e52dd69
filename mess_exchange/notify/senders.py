"""Channel senders. Each posts one notification and raises on HTTP failure."""

from __future__ import annotations

from typing import Any, Callable

import httpx

from ..models import NotificationTarget

DEFAULT_NTFY_SERVER = "https://ntfy.sh"
NTFY_PRIORITY = {"background": "2", "normal": "3", "elevated": "4", "urgent": "5"}

Sender = Callable[[httpx.Client, NotificationTarget, dict[str, Any], str], None]


def _context_lines(payload: dict[str, Any]) -> list[str]:
    return [str(c) for c in payload.get("context") or []]


def send_ntfy(client: httpx.Client, target: NotificationTarget, payload: dict[str, Any], headline: str) -> None:
    url = f"{(target.server or DEFAULT_NTFY_SERVER).rstrip('/')}/{target.topic}"
    headers = {
        "Content-Type": "text/plain",
        # header values may be non-ASCII (intent text)
        "Title": headline.encode("utf-8"),
        "Priority": NTFY_PRIORITY.get(payload["priority"], "3"),
        "Tags": "camera,incoming_envelope" if payload["wants_photo"] else "incoming_envelope",
    }
    if payload.get("url"):
        headers["Click"] = payload["url"]
    body = f"{payload['priority'].upper()}: {payload['intent']}\nFrom: {payload['requestor']}\nRef: {payload['ref']}"
    resp = client.post(url, headers=headers, content=body.encode("utf-8"))
    resp.raise_for_status()


def send_slack(client: httpx.Client, target: NotificationTarget, payload: dict[str, Any], headline: str) -> None:
    blocks: list[dict[str, Any]] = [
        {"type": "header", "text": {"type": "plain_text", "text": payload["intent"]}},
        {
            "type": "section",
            "fields": [
                {"type": "mrkdwn", "text": f"*Priority:* {payload['priority']}"},
                {"type": "mrkdwn", "text": f"*From:* {payload['requestor']}"},
                {"type": "mrkdwn", "text": f"*Ref:* {payload['ref']}"},
                {"type": "mrkdwn", "text": f"*Photo:* {'Yes' if payload['wants_photo'] else 'No'}"},
            ],
        },
    ]
    lines = _context_lines(payload)
    if lines:
        text = "*Context:*\n" + "\n".join(f"• {c}" for c in lines)
        blocks.append({"type": "section", "text": {"type": "mrkdwn", "text": text}})
    if payload.get("url"):
        blocks.append(
            {
                "type": "actions",
                "elements": [
                    {"type": "button", "text": {"type": "plain_text", "text": "View Request"}, "url": payload["url"]}
                ],
            }
        )
    resp = client.post(target.webhook_url or "", json={"text": headline, "blocks": blocks})
    resp.raise_for_status()


def send_google_chat(client: httpx.Client, target: NotificationTarget, payload: dict[str, Any], headline: str) -> None:
    widgets: list[dict[str, Any]] = [
        {"decoratedText": {"topLabel": "From", "text": payload["requestor"] or ""}},
        {"decoratedText": {"topLabel": "Reference", "text": payload["ref"]}},
    ]
    if payload["wants_photo"]:
        widgets.append({"decoratedText": {"topLabel": "Photo", "text": "Requested"}})
    lines = _context_lines(payload)
    if lines:
        widgets.append({"decoratedText": {"topLabel": "Context", "text": "\n".join(lines)}})

    sections: list[dict[str, Any]] = [{"header": payload["intent"], "widgets": widgets}]
    if payload.get("url"):
        button = {"text": "View Request", "onClick": {"openLink": {"url": payload["url"]}}}
        sections.append({"widgets": [{"buttonList": {"buttons": [button]}}]})

    card = {
        "cardId": payload["ref"],
        "card": {
            "header": {"title": headline, "subtitle": payload["priority"].upper()},
            "sections": sections,
        },
    }
    resp = client.post(target.webhook_url or "", json={"cardsV2": [card]})
    resp.raise_for_status()


def send_webhook(client: httpx.Client, target: NotificationTarget, payload: dict[str, Any], headline: str) -> None:
    headers = {"Content-Type": "application/json", **target.headers}
    resp = client.request(target.method, target.url or "", headers=headers, json={**payload, "title": headline})
    resp.raise_for_status()


SENDERS: dict[str, Sender] = {
    "ntfy": send_ntfy,
    "slack": send_slack,
    "google_chat": send_google_chat,
    "webhook": send_webhook,
}
