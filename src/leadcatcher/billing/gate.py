"""
Subscription billing gate.

Lookups fail open: a storage error must not stop texting for customers in
good standing, so the send is allowed and the failure logged.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from leadcatcher.businesses.models import SubscriptionStatus
from leadcatcher.businesses.repository import BusinessRepository
from leadcatcher.shared.logging import get_logger

logger = get_logger(__name__)

ALLOWED_STATUSES = frozenset({SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value})


@dataclass(frozen=True)
class BillingDecision:
    allowed: bool
    reason: str | None = None


class BillingGate:
    """Answers whether a business may send automated SMS."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._businesses = BusinessRepository(session)

    async def is_send_allowed(self, business_id: UUID) -> BillingDecision:
        try:
            found, status = await self._businesses.get_subscription_status(business_id)
        except SQLAlchemyError:
            await self._session.rollback()
            logger.exception(
                "Billing lookup failed; allowing send",
                extra={"business_id": str(business_id)},
            )
            return BillingDecision(allowed=True)

        if not found:
            logger.warning("Billing lookup found no business; allowing send", extra={"business_id": str(business_id)})
            return BillingDecision(allowed=True)

        if status in ALLOWED_STATUSES:
            return BillingDecision(allowed=True)

        if status:
            reason = f'Subscription status is "{status}". Please update your billing to continue sending SMS.'
        else:
            reason = "No active subscription. Please subscribe to start sending SMS."
        logger.info(
            "Billing gate blocked send",
            extra={"business_id": str(business_id), "status": status, "reason": reason},
        )
        return BillingDecision(allowed=False, reason=reason)
