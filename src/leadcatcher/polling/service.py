"""
Grace-period poll orchestrator.

Each run walks every business with RepairDesk configured:

1. Ingest new missed calls as leads held for the grace window.
2. Claim expired holds in one UPDATE ... RETURNING, so overlapping runs never
   share a lead, then either record the store's callback or send the
   follow-up SMS.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Protocol
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from leadcatcher.billing.gate import BillingGate
from leadcatcher.businesses.hours import build_acknowledgment, is_business_hours
from leadcatcher.businesses.models import BusinessProfile
from leadcatcher.businesses.repository import BusinessRepository
from leadcatcher.compliance.service import ComplianceGate
from leadcatcher.config import Settings
from leadcatcher.leads.models import LeadSource, MessageDirection
from leadcatcher.leads.repository import ClaimedLead, LeadRepository
from leadcatcher.repairdesk.client import RepairDeskClient
from leadcatcher.repairdesk.models import CallLogPage, RepairDeskError
from leadcatcher.shared.clock import utcnow
from leadcatcher.shared.exceptions import InvalidPhoneNumberError
from leadcatcher.shared.logging import get_logger
from leadcatcher.shared.phone import normalize_phone_number
from leadcatcher.telephony.interface import MessagingProvider
from leadcatcher.telephony.sender import send_sms

logger = get_logger(__name__)

GRACE_PERIOD_MINUTES = 3


class CallLogSource(Protocol):
    async def get_missed_calls(self, since: datetime | None = None, page: int = 1) -> CallLogPage: ...

    async def get_outbound_calls_to(self, phone: str, since: datetime) -> CallLogPage: ...


def repairdesk_client_for(business: BusinessProfile) -> CallLogSource:
    return RepairDeskClient(business.repairdesk_api_key or "", business.repairdesk_store_url)


@dataclass(frozen=True)
class PollConfig:
    grace_period: timedelta = timedelta(minutes=GRACE_PERIOD_MINUTES)
    retry_backoff: timedelta = timedelta(minutes=GRACE_PERIOD_MINUTES)

    @classmethod
    def from_settings(cls, settings: Settings) -> "PollConfig":
        return cls(
            grace_period=timedelta(minutes=settings.grace_period_minutes),
            retry_backoff=timedelta(minutes=settings.poll_retry_backoff_minutes),
        )


@dataclass
class BusinessPollResult:
    business_id: UUID
    new_missed_calls: int = 0
    callbacks_detected: int = 0
    sms_sent: int = 0
    reverted: int = 0
    errors: list[str] = field(default_factory=list)


class GracePeriodPoller:
    """One poll pass over all RepairDesk-connected businesses."""

    def __init__(
        self,
        session: AsyncSession,
        provider: MessagingProvider,
        config: PollConfig | None = None,
        client_factory: Callable[[BusinessProfile], CallLogSource] = repairdesk_client_for,
    ) -> None:
        self._session = session
        self._provider = provider
        self._config = config or PollConfig()
        self._client_factory = client_factory
        self._businesses = BusinessRepository(session)
        self._leads = LeadRepository(session)
        self._billing = BillingGate(session)
        self._compliance = ComplianceGate(session)

    async def run_once(self, now: datetime | None = None) -> list[BusinessPollResult]:
        now = now or utcnow()
        businesses = await self._businesses.list_with_repairdesk()
        results: list[BusinessPollResult] = []

        for business in businesses:
            result = BusinessPollResult(business_id=business.id)
            try:
                await self.poll_business(business, now, result)
            except Exception:
                await self._session.rollback()
                logger.exception("Poll failed for business", extra={"business_id": str(business.id)})
                result.errors.append("Poll failed")
            results.append(result)

        logger.info("Grace poll completed", extra={"business_count": len(businesses)})
        return results

    async def poll_business(
        self,
        business: BusinessProfile,
        now: datetime,
        result: BusinessPollResult,
    ) -> None:
        """Ingest then resolve one business, accumulating counts into ``result``."""
        client = self._client_factory(business)
        await self.ingest(business, client, now, result)
        await self.resolve(business, client, now, result)

    async def ingest(
        self,
        business: BusinessProfile,
        client: CallLogSource,
        now: datetime,
        result: BusinessPollResult,
    ) -> None:
        """Import missed calls since the last successful poll as held leads."""
        try:
            page = await client.get_missed_calls(since=business.repairdesk_last_poll_at)
        except RepairDeskError:
            logger.exception("Failed to fetch missed calls", extra={"business_id": str(business.id)})
            result.errors.append("Ingest failed")
            return

        hold_until = now + self._config.grace_period
        for call in page.data:
            if not call.phone:
                continue
            try:
                phone = normalize_phone_number(call.phone)
            except InvalidPhoneNumberError:
                logger.warning("Skipping call with invalid phone", extra={"call_id": call.id})
                continue

            try:
                inserted = await self._leads.import_record(
                    business.id,
                    phone,
                    call.customer_name or None,
                    LeadSource.REPAIRDESK,
                    f"rd-call-{call.id}",
                    hold_until,
                )
                await self._session.commit()
            except SQLAlchemyError:
                await self._session.rollback()
                logger.exception("Failed to import missed call", extra={"call_id": call.id})
                continue
            if inserted:
                result.new_missed_calls += 1

        await self._businesses.set_last_poll(business.id, now)
        await self._session.commit()

    async def resolve(
        self,
        business: BusinessProfile,
        client: CallLogSource,
        now: datetime,
        result: BusinessPollResult,
    ) -> None:
        """Claim every expired hold and settle each claimed lead."""
        claimed = await self._leads.claim_expired_holds(business.id, now)
        await self._session.commit()
        if claimed:
            logger.info(
                "Claimed expired holds",
                extra={"business_id": str(business.id), "count": len(claimed)},
            )

        for lead in claimed:
            try:
                await self._resolve_lead(business, client, lead, now, result)
            except Exception:
                await self._session.rollback()
                logger.exception("Failed to resolve lead", extra={"lead_id": str(lead.id)})
                result.errors.append("Resolve failed")
                await self._release(lead, now, result)

    async def _resolve_lead(
        self,
        business: BusinessProfile,
        client: CallLogSource,
        lead: ClaimedLead,
        now: datetime,
        result: BusinessPollResult,
    ) -> None:
        if await self._callback_detected(client, lead):
            await self._leads.mark_contacted(lead.id)
            await self._session.commit()
            result.callbacks_detected += 1
            logger.info("Callback detected; no SMS needed", extra={"lead_id": str(lead.id)})
            return

        billing = await self._billing.is_send_allowed(business.id)
        if not billing.allowed:
            logger.info(
                "Follow-up held by billing",
                extra={"lead_id": str(lead.id), "reason": billing.reason},
            )
            await self._release(lead, now, result)
            return

        compliance = await self._compliance.check(business.id, lead.caller_phone)
        if not compliance.may_send:
            logger.info(
                "Follow-up suppressed by opt-out",
                extra={"lead_id": str(lead.id), "lookup_failed": compliance.lookup_failed},
            )
            await self._release(lead, now, result)
            return

        body = build_acknowledgment(business, is_business_hours(business.business_hours, business.timezone, now))
        if not await send_sms(self._provider, lead.caller_phone, business.forwarding_number, body, purpose="follow_up"):
            await self._release(lead, now, result)
            return

        result.sms_sent += 1
        await self._record_follow_up(lead, body)

    async def _record_follow_up(self, lead: ClaimedLead, body: str) -> None:
        """Settle a lead whose follow-up was sent. It must never go back to New."""
        try:
            await self._leads.append_message(lead.id, MessageDirection.OUTBOUND, body)
            await self._leads.mark_contacted(lead.id)
            await self._session.commit()
            return
        except SQLAlchemyError:
            await self._session.rollback()
            logger.exception("Could not log follow-up; retrying status only", extra={"lead_id": str(lead.id)})

        try:
            await self._leads.mark_contacted(lead.id)
            await self._session.commit()
        except SQLAlchemyError:
            await self._session.rollback()
            logger.exception(
                "Follow-up sent but lead left in Processing; needs manual follow-up",
                extra={"lead_id": str(lead.id)},
            )

    async def _callback_detected(self, client: CallLogSource, lead: ClaimedLead) -> bool:
        """Any outbound call to the caller since the lead was created counts."""
        try:
            page = await client.get_outbound_calls_to(lead.caller_phone, since=lead.created_at)
        except RepairDeskError:
            logger.warning(
                "Callback check failed; treating as no callback",
                extra={"lead_id": str(lead.id)},
            )
            return False
        return bool(page.data)

    async def _release(self, lead: ClaimedLead, now: datetime, result: BusinessPollResult) -> None:
        try:
            await self._leads.release(lead.id, now + self._config.retry_backoff)
            await self._session.commit()
        except SQLAlchemyError:
            await self._session.rollback()
            logger.exception("Could not revert lead to New", extra={"lead_id": str(lead.id)})
            return
        result.reverted += 1
