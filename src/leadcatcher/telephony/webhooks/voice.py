"""
Missed-call intake: the inbound voice webhook.

Each step after the claim is independently fault tolerant; only an unknown
forwarding number (or an unusable caller id) ends the flow early.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from leadcatcher.billing.gate import BillingGate
from leadcatcher.businesses.hours import (
    DEFAULT_OPEN_TEMPLATE,
    build_acknowledgment,
    is_business_hours,
    render_template,
)
from leadcatcher.businesses.models import BusinessProfile
from leadcatcher.businesses.repository import BusinessRepository
from leadcatcher.compliance.service import ComplianceGate
from leadcatcher.leads.models import LeadSource, MessageDirection
from leadcatcher.leads.repository import LeadRepository
from leadcatcher.ledger.models import EventType
from leadcatcher.ledger.service import IdempotencyLedger
from leadcatcher.shared.clock import utcnow
from leadcatcher.shared.logging import get_logger
from leadcatcher.shared.phone import is_valid_e164
from leadcatcher.telephony import twiml
from leadcatcher.telephony.interface import MessagingProvider
from leadcatcher.telephony.sender import send_sms

logger = get_logger(__name__)


@dataclass(frozen=True)
class InboundCall:
    call_sid: str
    caller: str
    called: str


class MissedCallOrchestrator:
    """Turns an unanswered call into an acknowledgment SMS, a lead and a voicemail prompt."""

    def __init__(
        self,
        session: AsyncSession,
        provider: MessagingProvider,
        public_base_url: str,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session = session
        self._provider = provider
        self._public_base_url = public_base_url
        self._clock = clock
        self._ledger = IdempotencyLedger(session)
        self._businesses = BusinessRepository(session)
        self._leads = LeadRepository(session)
        self._billing = BillingGate(session)
        self._compliance = ComplianceGate(session)

    async def handle(self, call: InboundCall) -> str:
        """Process one inbound call and return the TwiML to answer it with."""
        async with self._ledger.claimed(call.call_sid, EventType.CALL) as claim:
            if claim.duplicate:
                return twiml.empty_response()

            business = await self._businesses.get_by_forwarding_number(call.called)
            if business is None:
                logger.warning("No business for forwarding number", extra={"called": call.called})
                claim.fail()
                return twiml.say_and_hangup(twiml.NOT_CONFIGURED)

            await self._ledger.attach_business(call.call_sid, business.id)
            await self._confirm_verification(business)

            if not is_valid_e164(call.caller):
                logger.warning(
                    "Caller id unusable; skipping acknowledgment and lead",
                    extra={"call_sid": call.call_sid, "business_id": str(business.id)},
                )
                claim.fail()
                return twiml.empty_response()

            ack_body = await self._send_acknowledgment(business, call)
            await self._ensure_lead(business, call, ack_body)

            if not self._public_base_url:
                logger.error("PUBLIC_BASE_URL not configured; cannot set transcription callback")
                claim.fail()
                return twiml.say_and_hangup(twiml.TECHNICAL_DIFFICULTIES)

            callback = twiml.transcription_callback_url(
                self._public_base_url, business.id, call.caller, call.called
            )
            response = twiml.record_voicemail(business.name, callback)
            claim.succeed()
            return response

    async def _confirm_verification(self, business: BusinessProfile) -> None:
        if not business.verification_token:
            return
        try:
            confirmed = await self._businesses.confirm_verification(business.id)
            await self._session.commit()
        except SQLAlchemyError:
            await self._session.rollback()
            logger.exception("Verification confirmation failed", extra={"business_id": str(business.id)})
            return
        if confirmed:
            logger.info("Call forwarding verified", extra={"business_id": str(business.id)})

    def _acknowledgment_text(self, business: BusinessProfile) -> str:
        try:
            is_open = is_business_hours(business.business_hours, business.timezone, self._clock())
            return build_acknowledgment(business, is_open)
        except (AttributeError, TypeError, ValueError):
            logger.exception("Template evaluation failed; using default", extra={"business_id": str(business.id)})
            return render_template(DEFAULT_OPEN_TEMPLATE, {"business_name": business.name})

    async def _send_acknowledgment(self, business: BusinessProfile, call: InboundCall) -> str | None:
        """Send the immediate SMS if billing and compliance allow. Returns the sent body."""
        billing = await self._billing.is_send_allowed(business.id)
        if not billing.allowed:
            logger.info(
                "Acknowledgment suppressed by billing",
                extra={"business_id": str(business.id), "reason": billing.reason},
            )
            return None

        compliance = await self._compliance.check(business.id, call.caller)
        if not compliance.may_send:
            logger.info(
                "Acknowledgment suppressed by opt-out",
                extra={"business_id": str(business.id), "lookup_failed": compliance.lookup_failed},
            )
            return None

        body = self._acknowledgment_text(business)
        sent = await send_sms(self._provider, call.caller, call.called, body, purpose="acknowledgment")
        return body if sent else None

    async def _ensure_lead(self, business: BusinessProfile, call: InboundCall, ack_body: str | None) -> None:
        try:
            lead_id = await self._leads.create_if_absent(business.id, call.caller, LeadSource.PHONE)
            if lead_id is None:
                existing = await self._leads.find_for_caller(business.id, call.caller)
                lead_id = existing.id if existing else None
            else:
                logger.info("Lead created", extra={"lead_id": str(lead_id), "business_id": str(business.id)})
            if lead_id is not None and ack_body:
                await self._leads.append_message(lead_id, MessageDirection.OUTBOUND, ack_body)
            await self._session.commit()
        except SQLAlchemyError:
            await self._session.rollback()
            logger.exception("Lead upsert failed", extra={"business_id": str(business.id)})
