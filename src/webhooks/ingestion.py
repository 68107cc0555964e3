"""Verify, deduplicate, process and record webhook deliveries."""

import hashlib
import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Mapping, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.config import WebhookSettings
from src.errors import AuthenticationError, InvalidPayloadError, PayloadProcessingError
from src.storage.events import event_exists, insert_event
from src.storage.models import Event
from src.webhooks.payloads import WebhookPayload, parse_payload
from src.webhooks.signature import verify

logger = logging.getLogger(__name__)

PayloadProcessor = Callable[[str, WebhookPayload], Awaitable[None]]


class Outcome(str, Enum):
    PROCESSED = "processed"
    ALREADY_PROCESSED = "already_processed"


_processors: dict[str, PayloadProcessor] = {}


def register_processor(event_type: str):
    """Decorator registering the processor for one event type."""

    def decorator(func: PayloadProcessor) -> PayloadProcessor:
        _processors[event_type] = func
        return func

    return decorator


async def log_payload(event_id: str, payload: WebhookPayload) -> None:
    logger.info("Received %s event %s: %s", payload.event_type, event_id, payload.title)


def get_processor(event_type: str) -> PayloadProcessor:
    return _processors.get(event_type, log_payload)


def derive_event_id(event_type: str, raw_body: bytes, delivery_id: Optional[str] = None) -> str:
    """Idempotency key for a delivery.

    The sender's delivery id when provided, otherwise a digest of the event
    type and body so an identical redelivery maps to the same key.
    """
    if delivery_id and delivery_id.strip():
        return delivery_id.strip()
    digest = hashlib.sha256()
    digest.update(event_type.encode())
    digest.update(b"\n")
    digest.update(raw_body)
    return digest.hexdigest()


def build_event(
    event_id: str,
    event_type: str,
    payload: WebhookPayload,
    raw_payload: Optional[str] = None,
) -> Event:
    occurred = payload.occurred_at or datetime.now(timezone.utc)
    if occurred.tzinfo is None:
        occurred = occurred.replace(tzinfo=timezone.utc)

    return Event(
        id=event_id,
        type=event_type,
        action=payload.action,
        title=payload.title,
        description=payload.description,
        url=payload.url,
        actor=payload.actor,
        payload=raw_payload if raw_payload is not None else payload.model_dump_json(),
        timestamp=occurred,
    )


async def handle_event(
    session: AsyncSession,
    event_id: str,
    event_type: str,
    payload: WebhookPayload,
    processor: Optional[PayloadProcessor] = None,
    raw_payload: Optional[str] = None,
) -> Outcome:
    """Process one delivery at most once per ``event_id``.

    The event row is written only after processing succeeds. A failed
    delivery raises PayloadProcessingError and leaves no row, so a retry is
    processed from scratch. The primary key decides races between concurrent
    deliveries; the existence check only saves work.
    """
    if await event_exists(session, event_id):
        logger.info("Event %s already processed, skipping", event_id)
        return Outcome.ALREADY_PROCESSED

    processor = processor or get_processor(event_type)
    try:
        await processor(event_id, payload)
    except Exception as e:
        logger.error("Failed to process %s event %s: %s", event_type, event_id, e)
        raise PayloadProcessingError(event_id, e) from e

    event = build_event(event_id, event_type, payload, raw_payload)
    if not await insert_event(session, event):
        return Outcome.ALREADY_PROCESSED

    logger.info("Processed %s event %s", event_type, event_id)
    return Outcome.PROCESSED


async def receive_webhook(
    session: AsyncSession,
    raw_body: bytes,
    headers: Mapping[str, str],
    settings: WebhookSettings,
    processor: Optional[PayloadProcessor] = None,
) -> Outcome:
    """Authenticate and ingest one raw webhook request."""
    if not verify(raw_body, headers.get(settings.signature_header), settings.secret):
        logger.warning("Rejected webhook with invalid signature")
        raise AuthenticationError("Invalid signature")

    event_type = headers.get(settings.event_type_header) or "generic"

    try:
        data = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvalidPayloadError(f"Webhook body is not valid JSON: {e}") from e

    payload = parse_payload(event_type, data)
    event_id = derive_event_id(event_type, raw_body, headers.get(settings.delivery_id_header))

    return await handle_event(
        session,
        event_id,
        event_type,
        payload,
        processor=processor,
        raw_payload=raw_body.decode("utf-8", errors="replace"),
    )
