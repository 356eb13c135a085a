"""
Repository for business lookups and the few conditioned writes the
orchestrators make to business rows.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import Select, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from leadcatcher.businesses.models import Business, BusinessProfile


class BusinessRepository:
    """Data access for the ``businesses`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, business_id: UUID) -> BusinessProfile | None:
        return await self._first(select(Business).where(Business.id == business_id))

    async def get_by_forwarding_number(self, number: str) -> BusinessProfile | None:
        return await self._first(select(Business).where(Business.forwarding_number == number))

    async def get_by_stripe_customer(self, customer_id: str) -> BusinessProfile | None:
        return await self._first(select(Business).where(Business.stripe_customer_id == customer_id))

    async def list_with_repairdesk(self) -> list[BusinessProfile]:
        result = await self._session.execute(
            select(Business)
            .where(Business.repairdesk_api_key.is_not(None))
            .order_by(Business.created_at)
        )
        return [BusinessProfile.from_model(b) for b in result.scalars().all()]

    async def _first(self, stmt: Select[tuple[Business]]) -> BusinessProfile | None:
        business = (await self._session.execute(stmt)).scalars().first()
        return BusinessProfile.from_model(business) if business is not None else None

    async def get_subscription_status(self, business_id: UUID) -> tuple[bool, str | None]:
        """Return ``(found, stripe_status)`` without loading the whole row."""
        result = await self._session.execute(
            select(Business.stripe_status).where(Business.id == business_id)
        )
        row = result.first()
        if row is None:
            return False, None
        return True, row[0]

    async def confirm_verification(self, business_id: UUID) -> bool:
        """Consume a pending verification token.

        Returns:
            True if a token was pending and has now been cleared.
        """
        result = await self._session.execute(
            update(Business)
            .execution_options(synchronize_session="fetch")
            .where(Business.id == business_id, Business.verification_token.is_not(None))
            .values(verification_token=None, verified=True)
            .returning(Business.id)
        )
        return result.scalar_one_or_none() is not None

    async def set_last_poll(self, business_id: UUID, polled_at: datetime) -> None:
        await self._session.execute(
            update(Business)
            .execution_options(synchronize_session="fetch")
            .where(Business.id == business_id)
            .values(repairdesk_last_poll_at=polled_at)
        )

    async def update_subscription(
        self,
        business_id: UUID,
        values: dict[str, Any],
        event_time: datetime | None = None,
    ) -> bool:
        """Write subscription fields.

        With ``event_time`` the write only lands if no newer subscription
        update has been applied, and ``stripe_event_at`` advances to it.

        Returns:
            True if the row was updated.
        """
        stmt = (
            update(Business)
            .where(Business.id == business_id)
            .execution_options(synchronize_session="fetch")
        )
        if event_time is not None:
            stmt = stmt.where(
                or_(Business.stripe_event_at.is_(None), Business.stripe_event_at < event_time)
            )
            values = {**values, "stripe_event_at": event_time}
        result = await self._session.execute(stmt.values(**values).returning(Business.id))
        return result.scalar_one_or_none() is not None
