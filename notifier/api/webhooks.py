"""Signed webhook endpoints."""

import logging

from fastapi import APIRouter, HTTPException, Request, status
from starlette.concurrency import run_in_threadpool

from notifier.api.deps import AppSettings, DBSession
from notifier.errors import WebhookPayloadError, WebhookSignatureError
from notifier.services.communications import email_event_handlers
from notifier.services.payment_effects import PAYMENT_HANDLERS
from notifier.services.webhooks import (
    EmailWebhookIngestor,
    PaymentWebhookIngestor,
    WebhookIngestor,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["Webhooks"])


async def _ingest(ingestor: WebhookIngestor, session, request: Request) -> dict:
    raw_body = await request.body()
    try:
        ack = await run_in_threadpool(ingestor.ingest, session, raw_body, request.headers)
    except WebhookSignatureError as e:
        logger.warning(f"Rejected {ingestor.source} webhook: {e}")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Webhook signature verification failed: {e}",
        )
    except WebhookPayloadError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )
    return ack.to_dict()


@router.post("/payments")
async def payment_webhook_endpoint(
    request: Request,
    session: DBSession,
    settings: AppSettings,
) -> dict:
    """Payment processor events. Always 200 once the signature verifies."""
    ingestor = PaymentWebhookIngestor(settings, PAYMENT_HANDLERS)
    return await _ingest(ingestor, session, request)


@router.post("/email")
async def email_webhook_endpoint(
    request: Request,
    session: DBSession,
    settings: AppSettings,
) -> dict:
    """Email provider delivery feedback."""
    ingestor = EmailWebhookIngestor(settings, email_event_handlers())
    return await _ingest(ingestor, session, request)
