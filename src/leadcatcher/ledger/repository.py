"""
Repository for webhook ledger rows.

Every write here is a single conditioned statement; callers never read a row
and then write it back.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import exists, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from leadcatcher.ledger.models import EventStatus, EventType, WebhookEvent
from leadcatcher.shared.clock import utcnow
from leadcatcher.shared.database import upsert_insert


class WebhookEventRepository:
    """Data access for the ``webhook_events`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def insert_if_absent(
        self,
        event_id: str,
        event_type: EventType,
        created_at: datetime | None = None,
    ) -> bool:
        """Insert a ``processing`` row unless ``event_id`` already exists.

        Returns:
            True if this call created the row.
        """
        values: dict[str, object] = {
            "event_id": event_id,
            "event_type": event_type,
            "status": EventStatus.PROCESSING,
        }
        if created_at is not None:
            values["created_at"] = created_at

        stmt = (
            upsert_insert(self._session, WebhookEvent)
            .values(**values)
            .on_conflict_do_nothing(index_elements=[WebhookEvent.event_id])
            .returning(WebhookEvent.id)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def finish(self, event_id: str, status: EventStatus) -> bool:
        """Move a ``processing`` row to a terminal state.

        Returns:
            False if the row was already terminal (or missing).
        """
        stmt = (
            update(WebhookEvent)
            .execution_options(synchronize_session="fetch")
            .where(
                WebhookEvent.event_id == event_id,
                WebhookEvent.status == EventStatus.PROCESSING,
            )
            .values(status=status, processed_at=utcnow())
            .returning(WebhookEvent.id)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def set_business(self, event_id: str, business_id: UUID) -> None:
        await self._session.execute(
            update(WebhookEvent)
            .execution_options(synchronize_session="fetch")
            .where(WebhookEvent.event_id == event_id)
            .values(business_id=business_id)
        )

    async def get(self, event_id: str) -> WebhookEvent | None:
        result = await self._session.execute(
            select(WebhookEvent).where(WebhookEvent.event_id == event_id)
        )
        return result.scalar_one_or_none()

    async def processed_after(
        self,
        business_id: UUID,
        event_type: EventType,
        after: datetime,
        exclude_event_id: str,
    ) -> bool:
        """True if a processed event of ``event_type`` for the business is newer than ``after``."""
        stmt = select(
            exists().where(
                WebhookEvent.business_id == business_id,
                WebhookEvent.event_type == event_type,
                WebhookEvent.status == EventStatus.PROCESSED,
                WebhookEvent.created_at > after,
                WebhookEvent.event_id != exclude_event_id,
            )
        )
        result = await self._session.execute(stmt)
        return bool(result.scalar())
