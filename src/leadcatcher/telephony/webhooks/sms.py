"""
Inbound message router: the SMS webhook.
"""

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from leadcatcher.analysis.models import (
    AnalysisContext,
    Intent,
    IntentAnalysis,
    IntentClassificationError,
    IntentClassifier,
)
from leadcatcher.billing.gate import BillingGate
from leadcatcher.businesses.models import BusinessProfile
from leadcatcher.businesses.repository import BusinessRepository
from leadcatcher.compliance.service import ComplianceGate, KeywordAction, parse_keyword
from leadcatcher.leads.models import LeadSource, MessageDirection
from leadcatcher.leads.repository import LeadRepository
from leadcatcher.ledger.models import EventType
from leadcatcher.ledger.service import IdempotencyLedger
from leadcatcher.shared.logging import get_logger
from leadcatcher.telephony.interface import MessagingProvider
from leadcatcher.telephony.sender import send_sms

logger = get_logger(__name__)

OPT_OUT_CONFIRMATION = (
    "You have been unsubscribed. You will no longer receive messages from {name}. "
    "Reply START to resubscribe."
)
OPT_IN_CONFIRMATION = (
    "You have been resubscribed. You will now receive messages from {name}. "
    "Reply STOP to unsubscribe."
)


@dataclass(frozen=True)
class InboundSms:
    message_sid: str
    from_number: str
    to_number: str
    body: str


def owner_relay_text(sender: str, body: str, analysis: IntentAnalysis | None) -> str:
    text = f'Reply from {sender}: "{body}"'
    if analysis is not None and analysis.summary:
        text += f"\nSummary: {analysis.summary}"
    return text


class InboundMessageRouter:
    """Handles opt-out keywords and routes ordinary replies to the owner."""

    def __init__(
        self,
        session: AsyncSession,
        provider: MessagingProvider,
        classifier: IntentClassifier,
    ) -> None:
        self._session = session
        self._provider = provider
        self._classifier = classifier
        self._ledger = IdempotencyLedger(session)
        self._businesses = BusinessRepository(session)
        self._leads = LeadRepository(session)
        self._compliance = ComplianceGate(session)
        self._billing = BillingGate(session)

    async def handle(self, sms: InboundSms) -> None:
        async with self._ledger.claimed(sms.message_sid, EventType.MESSAGE) as claim:
            if claim.duplicate:
                return

            business = await self._businesses.get_by_forwarding_number(sms.to_number)
            if business is None:
                logger.warning("No business for SMS number", extra={"to": sms.to_number})
                claim.fail()
                return
            await self._ledger.attach_business(sms.message_sid, business.id)

            keyword = parse_keyword(sms.body)
            if keyword is not None:
                action, word = keyword
                await self._handle_keyword(business, sms, action, word)
                claim.succeed()
                return

            compliance = await self._compliance.check(business.id, sms.from_number)
            if compliance.opted_out and not compliance.lookup_failed:
                logger.info(
                    "Message from opted-out contact ignored",
                    extra={"business_id": str(business.id), "from": sms.from_number},
                )
                claim.succeed()
                return
            if compliance.lookup_failed:
                logger.warning(
                    "Opt-out status unknown; recording message without texting the contact",
                    extra={"business_id": str(business.id)},
                )

            lead = await self._leads.find_or_create(business.id, sms.from_number, LeadSource.SMS)
            if lead is None:
                logger.error("Could not resolve lead for SMS", extra={"business_id": str(business.id)})
                claim.fail()
                return
            lead_id = lead.id
            await self._leads.append_message(lead_id, MessageDirection.INBOUND, sms.body)
            await self._session.commit()

            analysis = await self._analyze(sms.body)
            if analysis is not None and analysis.intent is not Intent.OTHER:
                await self._leads.record_analysis(lead_id, analysis.intent.value, analysis.summary)
                await self._session.commit()

            await self._relay_to_owner(business, sms, analysis)
            claim.succeed()

    async def _handle_keyword(
        self,
        business: BusinessProfile,
        sms: InboundSms,
        action: KeywordAction,
        keyword: str,
    ) -> None:
        if action is KeywordAction.OPT_OUT:
            await self._compliance.opt_out(business.id, sms.from_number, keyword)
            confirmation = OPT_OUT_CONFIRMATION.format(name=business.name)
        else:
            await self._compliance.opt_in(business.id, sms.from_number)
            confirmation = OPT_IN_CONFIRMATION.format(name=business.name)
        await self._session.commit()

        await send_sms(
            self._provider,
            sms.from_number,
            sms.to_number,
            confirmation,
            purpose=f"{action.value}_confirmation",
        )

    async def _analyze(self, body: str) -> IntentAnalysis | None:
        try:
            return await self._classifier.classify(body, AnalysisContext.SMS)
        except IntentClassificationError:
            logger.exception("SMS analysis failed; continuing without summary")
            return None

    async def _relay_to_owner(
        self,
        business: BusinessProfile,
        sms: InboundSms,
        analysis: IntentAnalysis | None,
    ) -> None:
        if not business.owner_phone:
            return

        billing = await self._billing.is_send_allowed(business.id)
        if not billing.allowed:
            logger.info(
                "Owner relay suppressed by billing",
                extra={"business_id": str(business.id), "reason": billing.reason},
            )
            return

        await send_sms(
            self._provider,
            business.owner_phone,
            sms.to_number,
            owner_relay_text(sms.from_number, sms.body, analysis),
            purpose="owner_relay",
        )
