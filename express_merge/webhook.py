"""
Webhook entry point, independent of the HTTP framework.

handle_webhook() turns (method, headers, raw body) into a WebhookResponse:
  405 anything but POST
  401 missing or wrong X-Shopify-Hmac-Sha256
  400 body is not a JSON object
  200 everything else, including events that failed while being handled,
      so Shopify does not start a redelivery storm. Failures go to the logs.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

from .classifier import handle_order_paid
from .config import Settings
from .errors import AuthenticationError, MalformedInputError
from .merge import handle_fulfillment_created
from .results import HandlerResult, Outcome

log = logging.getLogger(__name__)

TOPIC_ORDER_PAID = "orders/paid"
TOPIC_FULFILLMENT_CREATED = "fulfillments/create"

HMAC_HEADER = "x-shopify-hmac-sha256"
TOPIC_HEADER = "x-shopify-topic"


@dataclass
class InboundEvent:
    topic: str
    payload: Dict[str, Any]


@dataclass
class WebhookResponse:
    status: int
    text: str


def compute_signature(body: bytes, secret: str) -> str:
    return base64.b64encode(hmac.new(secret.encode("utf-8"), body, hashlib.sha256).digest()).decode()


def verify_signature(body: bytes, header_hmac: Optional[str], secret: str) -> None:
    if not header_hmac:
        raise AuthenticationError("Missing HMAC header")
    if not secret:
        raise AuthenticationError("No webhook secret configured")
    # Compared as bytes: compare_digest refuses non-ASCII str, and headers arrive latin-1 decoded.
    expected = compute_signature(body, secret).encode("ascii")
    if not hmac.compare_digest(expected, header_hmac.strip().encode("utf-8", "surrogateescape")):
        raise AuthenticationError("HMAC validation failed")


def parse_body(body: bytes) -> Dict[str, Any]:
    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedInputError(f"Body is not valid JSON: {e}")
    if not isinstance(payload, dict):
        raise MalformedInputError(f"Expected a JSON object, got {type(payload).__name__}")
    return payload


def dispatch(event: InboundEvent, gateway, settings: Settings) -> HandlerResult:
    if event.topic == TOPIC_ORDER_PAID:
        return handle_order_paid(gateway, settings, event.payload)
    if event.topic == TOPIC_FULFILLMENT_CREATED:
        return handle_fulfillment_created(gateway, settings, event.payload)
    log.info(f"Topic {event.topic!r} not handled, acknowledged")
    return HandlerResult(Outcome.UNKNOWN_TOPIC)


def handle_webhook(
    method: str,
    headers: Mapping[str, str],
    body: bytes,
    gateway,
    settings: Settings,
    dispatcher: Callable[[InboundEvent, Any, Settings], HandlerResult] = dispatch,
) -> WebhookResponse:
    if method.upper() != "POST":
        return WebhookResponse(405, "Method not allowed")

    lowered = {k.lower(): v for k, v in headers.items()}
    try:
        verify_signature(body, lowered.get(HMAC_HEADER), settings.api_secret)
    except AuthenticationError as e:
        log.warning(f"Webhook rejected: {e}")
        return WebhookResponse(401, str(e))

    try:
        payload = parse_body(body)
    except MalformedInputError as e:
        log.warning(f"Webhook rejected: {e}")
        return WebhookResponse(400, str(e))

    event = InboundEvent(topic=str(lowered.get(TOPIC_HEADER) or "").strip(), payload=payload)
    log.info(f"Webhook received: topic={event.topic!r} id={payload.get('id')}")
    try:
        result = dispatcher(event, gateway, settings)
    except Exception:
        log.exception(f"Webhook {event.topic!r} failed, acknowledged to avoid redelivery")
        return WebhookResponse(200, "Webhook received (handled with errors)")

    log.info(f"Webhook {event.topic!r} outcome: {result.outcome.value}")
    return WebhookResponse(200, f"Webhook received: {result.outcome.value}")
