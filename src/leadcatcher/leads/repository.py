"""
Repository for leads and messages.

Status transitions are conditional updates on the current status so two
overlapping invocations can never both move the same lead.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from leadcatcher.leads.models import (
    DIRECT_SOURCE_PREDICATE,
    Lead,
    LeadSource,
    LeadStatus,
    Message,
    MessageDirection,
)
from leadcatcher.shared.clock import as_utc
from leadcatcher.shared.database import upsert_insert


@dataclass(frozen=True)
class ClaimedLead:
    """A lead moved to ``Processing`` by the grace poll."""

    id: UUID
    caller_phone: str
    caller_name: str | None
    created_at: datetime


class LeadRepository:
    """Data access for ``leads`` and ``messages``."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def find_for_caller(self, business_id: UUID, caller_phone: str) -> Lead | None:
        result = await self._session.execute(
            select(Lead)
            .where(Lead.business_id == business_id, Lead.caller_phone == caller_phone)
            .order_by(Lead.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def create_if_absent(
        self,
        business_id: UUID,
        caller_phone: str,
        source: LeadSource,
    ) -> UUID | None:
        """Insert a New lead for a call/SMS caller unless one exists.

        Returns:
            The new lead id, or None if a lead already existed.
        """
        stmt = (
            upsert_insert(self._session, Lead)
            .values(
                business_id=business_id,
                caller_phone=caller_phone,
                source=source,
                status=LeadStatus.NEW,
            )
            .on_conflict_do_nothing(
                index_elements=[Lead.business_id, Lead.caller_phone],
                index_where=DIRECT_SOURCE_PREDICATE,
            )
            .returning(Lead.id)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_or_create(
        self,
        business_id: UUID,
        caller_phone: str,
        source: LeadSource,
    ) -> Lead | None:
        existing = await self.find_for_caller(business_id, caller_phone)
        if existing is not None:
            return existing
        await self.create_if_absent(business_id, caller_phone, source)
        return await self.find_for_caller(business_id, caller_phone)

    async def import_record(
        self,
        business_id: UUID,
        caller_phone: str,
        caller_name: str | None,
        source: LeadSource,
        external_id: str,
        hold_until: datetime,
    ) -> bool:
        """Insert an imported missed call with a grace hold.

        Returns:
            True if inserted, False if ``external_id`` was already imported.
        """
        stmt = (
            upsert_insert(self._session, Lead)
            .values(
                business_id=business_id,
                caller_phone=caller_phone,
                caller_name=caller_name,
                source=source,
                external_id=external_id,
                status=LeadStatus.NEW,
                sms_hold_until=hold_until,
            )
            .on_conflict_do_nothing(
                index_elements=[Lead.business_id, Lead.source, Lead.external_id],
            )
            .returning(Lead.id)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def claim_expired_holds(self, business_id: UUID, now: datetime) -> list[ClaimedLead]:
        """Move every New lead whose hold expired to Processing in one statement."""
        stmt = (
            update(Lead)
            .execution_options(synchronize_session="fetch")
            .where(
                Lead.business_id == business_id,
                Lead.status == LeadStatus.NEW,
                Lead.sms_hold_until.is_not(None),
                Lead.sms_hold_until < now,
            )
            .values(status=LeadStatus.PROCESSING)
            .returning(Lead.id, Lead.caller_phone, Lead.caller_name, Lead.created_at)
        )
        result = await self._session.execute(stmt)
        return [
            ClaimedLead(
                id=row.id,
                caller_phone=row.caller_phone,
                caller_name=row.caller_name,
                created_at=as_utc(row.created_at),
            )
            for row in result.all()
        ]

    async def mark_contacted(self, lead_id: UUID) -> bool:
        return await self._transition(
            lead_id,
            LeadStatus.PROCESSING,
            status=LeadStatus.CONTACTED,
            sms_hold_until=None,
        )

    async def release(self, lead_id: UUID, retry_at: datetime | None) -> bool:
        """Revert a claimed lead to New so a later poll retries it."""
        return await self._transition(
            lead_id,
            LeadStatus.PROCESSING,
            status=LeadStatus.NEW,
            sms_hold_until=retry_at,
        )

    async def _transition(self, lead_id: UUID, expected: LeadStatus, **values: object) -> bool:
        result = await self._session.execute(
            update(Lead)
            .execution_options(synchronize_session="fetch")
            .where(Lead.id == lead_id, Lead.status == expected)
            .values(**values)
            .returning(Lead.id)
        )
        return result.scalar_one_or_none() is not None

    async def record_analysis(self, lead_id: UUID, intent: str, summary: str) -> None:
        await self._session.execute(
            update(Lead)
            .execution_options(synchronize_session="fetch")
            .where(Lead.id == lead_id)
            .values(intent=intent, ai_summary=summary)
        )

    async def append_message(
        self,
        lead_id: UUID,
        direction: MessageDirection,
        body: str,
        is_ai_generated: bool = False,
    ) -> Message:
        message = Message(
            lead_id=lead_id,
            direction=direction,
            body=body,
            is_ai_generated=is_ai_generated,
        )
        self._session.add(message)
        await self._session.flush()
        return message
