"""
Billing-provider event handling with an ordering guard.

Stripe may redeliver events out of order. Subscription updates carry the
event's creation time; an update older than one already applied for the same
business is discarded as a stale replay.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from leadcatcher.billing.signature import StripeEvent
from leadcatcher.billing.stripe_client import StripeClient
from leadcatcher.businesses.models import BusinessProfile, SubscriptionStatus
from leadcatcher.businesses.repository import BusinessRepository
from leadcatcher.ledger.models import EventType
from leadcatcher.ledger.service import IdempotencyLedger, LedgerClaim
from leadcatcher.shared.logging import get_logger

logger = get_logger(__name__)

DEFAULT_PLAN = "starter"
PRO_PLAN = "pro"


class PaymentOutcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    STALE = "stale"
    IGNORED = "ignored"


@dataclass(frozen=True)
class PaymentEventResult:
    event_id: str
    outcome: PaymentOutcome
    business_id: UUID | None = None


def _from_epoch(value: Any) -> datetime | None:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _subscription_fields(subscription: dict[str, Any]) -> dict[str, Any]:
    items = (subscription.get("items") or {}).get("data") or []
    first = items[0] if items else {}
    return {
        "stripe_status": subscription.get("status"),
        "stripe_trial_ends_at": _from_epoch(subscription.get("trial_end")),
        "stripe_current_period_end": _from_epoch(
            first.get("current_period_end") or subscription.get("current_period_end")
        ),
    }


class PaymentEventProcessor:
    """Applies verified Stripe events to business subscription state."""

    def __init__(
        self,
        session: AsyncSession,
        stripe_client: StripeClient,
        pro_price_id: str = "",
    ) -> None:
        self._session = session
        self._ledger = IdempotencyLedger(session)
        self._businesses = BusinessRepository(session)
        self._stripe = stripe_client
        self._pro_price_id = pro_price_id

    async def process(self, event: StripeEvent) -> PaymentEventResult:
        """Claim and apply ``event``.

        Raises:
            LedgerUnavailableError: If the claim could not be recorded.
            Exception: Handler failures propagate after the ledger is marked failed.
        """
        logger.info("Stripe event received", extra={"event_id": event.id, "type": event.type})

        async with self._ledger.claimed(event.id, EventType.PAYMENT, created_at=event.created_at) as claim:
            if claim.duplicate:
                return PaymentEventResult(event.id, PaymentOutcome.DUPLICATE)

            match event.type:
                case "checkout.session.completed":
                    result = await self._checkout_completed(event, claim)
                case "customer.subscription.updated":
                    result = await self._subscription_updated(event, claim)
                case "customer.subscription.deleted":
                    result = await self._subscription_deleted(event, claim)
                case "invoice.payment_failed":
                    result = await self._payment_failed(event, claim)
                case _:
                    logger.info("Unhandled Stripe event type", extra={"type": event.type})
                    result = PaymentEventResult(event.id, PaymentOutcome.IGNORED)

            await self._session.commit()
            claim.succeed()
            return result

    async def _business_for_customer(self, event: StripeEvent, claim: LedgerClaim) -> BusinessProfile | None:
        customer_id = event.obj.get("customer")
        business = await self._businesses.get_by_stripe_customer(customer_id) if customer_id else None
        if business is None:
            logger.warning("No business for Stripe customer", extra={"customer_id": customer_id})
            return None
        await self._ledger.attach_business(claim.event_id, business.id)
        return business

    async def _checkout_completed(self, event: StripeEvent, claim: LedgerClaim) -> PaymentEventResult:
        session_obj = event.obj
        metadata = session_obj.get("metadata") or {}
        raw_business_id = metadata.get("business_id")
        subscription_id = session_obj.get("subscription")

        if not raw_business_id or not subscription_id:
            logger.warning("Checkout session missing metadata", extra={"session_id": session_obj.get("id")})
            return PaymentEventResult(event.id, PaymentOutcome.IGNORED)

        try:
            business_id = UUID(raw_business_id)
        except ValueError:
            logger.warning("Checkout session carries a malformed business id", extra={"session_id": session_obj.get("id")})
            return PaymentEventResult(event.id, PaymentOutcome.IGNORED)
        await self._ledger.attach_business(claim.event_id, business_id)

        subscription = await self._stripe.retrieve_subscription(subscription_id)
        values = {
            "stripe_subscription_id": subscription_id,
            "stripe_plan": metadata.get("plan_id") or DEFAULT_PLAN,
            **_subscription_fields(subscription),
        }
        if session_obj.get("customer"):
            values["stripe_customer_id"] = session_obj["customer"]

        await self._businesses.update_subscription(business_id, values)
        logger.info(
            "Checkout completed",
            extra={"business_id": str(business_id), "plan": values["stripe_plan"], "status": values["stripe_status"]},
        )
        return PaymentEventResult(event.id, PaymentOutcome.APPLIED, business_id)

    async def _subscription_updated(self, event: StripeEvent, claim: LedgerClaim) -> PaymentEventResult:
        business = await self._business_for_customer(event, claim)
        if business is None:
            return PaymentEventResult(event.id, PaymentOutcome.IGNORED)

        if await self._ledger.newer_event_processed(
            business.id, EventType.PAYMENT, event.created_at, event.id
        ):
            logger.warning(
                "Discarding stale subscription update",
                extra={"event_id": event.id, "business_id": str(business.id)},
            )
            return PaymentEventResult(event.id, PaymentOutcome.STALE, business.id)

        subscription = event.obj
        items = (subscription.get("items") or {}).get("data") or []
        price_id = ((items[0] if items else {}).get("price") or {}).get("id")
        plan = PRO_PLAN if self._pro_price_id and price_id == self._pro_price_id else DEFAULT_PLAN

        applied = await self._businesses.update_subscription(
            business.id,
            {"stripe_plan": plan, **_subscription_fields(subscription)},
            event_time=event.created_at,
        )
        if not applied:
            logger.warning(
                "Subscription update lost to a newer event",
                extra={"event_id": event.id, "business_id": str(business.id)},
            )
            return PaymentEventResult(event.id, PaymentOutcome.STALE, business.id)

        logger.info(
            "Subscription updated",
            extra={"business_id": str(business.id), "status": subscription.get("status"), "plan": plan},
        )
        return PaymentEventResult(event.id, PaymentOutcome.APPLIED, business.id)

    async def _subscription_deleted(self, event: StripeEvent, claim: LedgerClaim) -> PaymentEventResult:
        business = await self._business_for_customer(event, claim)
        if business is None:
            return PaymentEventResult(event.id, PaymentOutcome.IGNORED)

        await self._businesses.update_subscription(
            business.id,
            {"stripe_status": SubscriptionStatus.CANCELED.value, "stripe_subscription_id": None},
        )
        logger.info("Subscription canceled", extra={"business_id": str(business.id)})
        return PaymentEventResult(event.id, PaymentOutcome.APPLIED, business.id)

    async def _payment_failed(self, event: StripeEvent, claim: LedgerClaim) -> PaymentEventResult:
        business = await self._business_for_customer(event, claim)
        if business is None:
            return PaymentEventResult(event.id, PaymentOutcome.IGNORED)

        await self._businesses.update_subscription(
            business.id, {"stripe_status": SubscriptionStatus.PAST_DUE.value}
        )
        logger.warning(
            "Payment failed",
            extra={"business_id": str(business.id), "invoice_id": event.obj.get("id")},
        )
        return PaymentEventResult(event.id, PaymentOutcome.APPLIED, business.id)
