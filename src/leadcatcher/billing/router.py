"""
Stripe webhook route.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from leadcatcher.billing.service import PaymentEventProcessor
from leadcatcher.billing.signature import StripeSignatureError, construct_event
from leadcatcher.billing.stripe_client import StripeClient
from leadcatcher.config import Settings, get_settings
from leadcatcher.shared.database import get_db_session
from leadcatcher.shared.exceptions import ConfigurationError, LedgerUnavailableError
from leadcatcher.shared.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["billing"])


def get_stripe_client(settings: Annotated[Settings, Depends(get_settings)]) -> StripeClient:
    return StripeClient(settings.stripe_secret_key)


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    session: Annotated[AsyncSession, Depends(get_db_session)],
    settings: Annotated[Settings, Depends(get_settings)],
    stripe_client: Annotated[StripeClient, Depends(get_stripe_client)],
    stripe_signature: Annotated[str | None, Header(alias="Stripe-Signature")] = None,
) -> dict[str, object]:
    if not stripe_signature:
        logger.warning("Missing Stripe-Signature header")
        raise StripeSignatureError("Missing signature")

    if not settings.stripe_webhook_secret:
        logger.error("STRIPE_WEBHOOK_SECRET not configured")
        raise ConfigurationError("Webhook not configured")

    payload = await request.body()
    try:
        event = construct_event(
            payload,
            stripe_signature,
            settings.stripe_webhook_secret,
            tolerance_seconds=settings.stripe_signature_tolerance_seconds,
        )
    except StripeSignatureError:
        logger.warning("Stripe signature verification failed")
        raise

    processor = PaymentEventProcessor(session, stripe_client, settings.stripe_pro_price_id)
    try:
        result = await processor.process(event)
    except LedgerUnavailableError:
        raise
    except Exception as exc:
        logger.exception(
            "Stripe webhook handler error",
            extra={"event_id": event.id, "type": event.type},
        )
        raise HTTPException(status_code=500, detail="Webhook handler error") from exc
    return {"received": True, "outcome": result.outcome.value}
