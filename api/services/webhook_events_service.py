"""Turn verified webhook bodies into vendor events.

Only called after signature verification has passed on the raw bytes.
Domain handling (payments, messages, signatures) is owned by the
respective integrations; this service extracts the event type and records
receipt.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from core.logger import get_logger

logger = get_logger(__name__)


class InvalidWebhookPayload(ValueError):
    """Verified body is not a JSON object."""


@dataclass
class WebhookEvent:
    vendor: str
    event_type: str | None
    payload: dict[str, Any] = field(repr=False)


def _stripe_event_type(payload: dict[str, Any]) -> str | None:
    return payload.get("type")


def _whatsapp_event_type(payload: dict[str, Any]) -> str | None:
    # {"object": "whatsapp_business_account", "entry": [{"changes": [{"field": ...}]}]}
    for entry in payload.get("entry") or []:
        for change in (entry or {}).get("changes") or []:
            if isinstance(change, dict) and change.get("field"):
                return change["field"]
    return payload.get("object")


def _clicksign_event_type(payload: dict[str, Any]) -> str | None:
    event = payload.get("event")
    if isinstance(event, dict):
        return event.get("name")
    return None


_EVENT_TYPE_EXTRACTORS = {
    "stripe": _stripe_event_type,
    "whatsapp": _whatsapp_event_type,
    "clicksign": _clicksign_event_type,
}


def parse_webhook_event(vendor: str, raw_body: bytes) -> WebhookEvent:
    """Parse a verified body.

    Raises:
        InvalidWebhookPayload: Body is not valid JSON or not an object.
    """
    try:
        payload = json.loads(raw_body)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise InvalidWebhookPayload("Webhook body is not valid JSON") from e

    if not isinstance(payload, dict):
        raise InvalidWebhookPayload("Webhook body must be a JSON object")

    extractor = _EVENT_TYPE_EXTRACTORS.get(vendor)
    event_type = extractor(payload) if extractor else payload.get("type")
    if event_type is not None and not isinstance(event_type, str):
        event_type = str(event_type)

    return WebhookEvent(vendor=vendor, event_type=event_type, payload=payload)


def handle_webhook_event(event: WebhookEvent) -> None:
    logger.info("webhook.received", vendor=event.vendor, event_type=event.event_type)
