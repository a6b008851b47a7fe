"""Stripe webhook endpoint."""
import logging

from fastapi import APIRouter, Depends, Header, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session
from starlette.requests import ClientDisconnect

from coffee_commerce.config import Settings, get_settings
from coffee_commerce.database import get_db
from coffee_commerce.dependencies import get_event_bus
from coffee_commerce.errors import ServiceUnavailableError, ValidationError
from coffee_commerce.events import EventBus
from coffee_commerce.services.webhook_ingestor import (
    MAX_BODY_BYTES,
    WebhookIngestor,
    WebhookSignatureError,
    verify_signature,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def read_body(request: Request, limit: int = MAX_BODY_BYTES) -> bytes:
    """Read the request body, refusing anything over `limit` bytes."""
    body = bytearray()
    try:
        async for chunk in request.stream():
            body.extend(chunk)
            if len(body) > limit:
                raise ServiceUnavailableError(f"Webhook body exceeds {limit} bytes")
    except ClientDisconnect as e:
        raise ServiceUnavailableError("Could not read webhook body") from e
    return bytes(body)


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(None, alias="Stripe-Signature"),
    db: Session = Depends(get_db),
    bus: EventBus = Depends(get_event_bus),
    settings: Settings = Depends(get_settings),
):
    """Handle Stripe catalog events. Always 200 once the signature checks out."""
    if not settings.stripe_webhook_secret:
        raise ServiceUnavailableError("Webhook not configured")

    payload = await read_body(request)

    if not stripe_signature:
        raise ValidationError("Missing Stripe signature")

    try:
        text = verify_signature(
            payload, stripe_signature, settings.stripe_webhook_secret, settings.stripe_webhook_tolerance
        )
    except WebhookSignatureError as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        raise ValidationError("Invalid signature")

    ingestor = WebhookIngestor(db, bus)
    await run_in_threadpool(ingestor.process, text)

    return {"status": "success"}
