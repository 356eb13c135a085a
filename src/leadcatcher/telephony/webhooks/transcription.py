"""
Voicemail analyzer/responder: the transcription-ready callback.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from leadcatcher.analysis.models import (
    AnalysisContext,
    IntentAnalysis,
    IntentClassificationError,
    IntentClassifier,
)
from leadcatcher.businesses.models import BusinessProfile
from leadcatcher.businesses.repository import BusinessRepository
from leadcatcher.compliance.service import ComplianceGate
from leadcatcher.leads.models import MessageDirection
from leadcatcher.leads.repository import LeadRepository
from leadcatcher.ledger.models import EventType
from leadcatcher.ledger.service import IdempotencyLedger
from leadcatcher.shared.logging import get_logger
from leadcatcher.telephony.interface import MessagingProvider
from leadcatcher.telephony.sender import send_sms

logger = get_logger(__name__)

COMPLETED = "completed"


@dataclass(frozen=True)
class TranscriptionEvent:
    """A transcription callback whose query parameters already passed validation."""

    event_id: str
    business_id: UUID
    caller: str
    called: str
    text: str | None
    status: str | None

    @property
    def usable(self) -> bool:
        return (self.status or "").lower() == COMPLETED and bool((self.text or "").strip())


def owner_voicemail_notice(caller: str, analysis: IntentAnalysis) -> str:
    return (
        f"New Voicemail from {caller}.\n"
        f"Summary: {analysis.summary}\n"
        f"Intent: {analysis.intent.value}"
    )


class VoicemailResponder:
    """Classifies a voicemail, updates the lead, replies and tells the owner."""

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

    async def handle(self, event: TranscriptionEvent) -> None:
        async with self._ledger.claimed(event.event_id, EventType.TRANSCRIPTION) as claim:
            if claim.duplicate:
                return

            if not event.usable:
                logger.info(
                    "Transcription not usable; acknowledging",
                    extra={"event_id": event.event_id, "status": event.status},
                )
                claim.succeed()
                return

            business = await self._businesses.get_by_id(event.business_id)
            if business is None:
                logger.warning("Transcription for unknown business", extra={"business_id": str(event.business_id)})
                claim.fail()
                return
            await self._ledger.attach_business(event.event_id, business.id)

            text = (event.text or "").strip()
            analysis = await self._analyze(text)
            lead_id = await self._record_voicemail(business, event, text, analysis)
            await self._auto_reply(business, event, analysis, lead_id)
            await self._notify_owner(business, event, analysis)
            claim.succeed()

    async def _notify_owner(
        self,
        business: BusinessProfile,
        event: TranscriptionEvent,
        analysis: IntentAnalysis,
    ) -> None:
        if not business.owner_phone:
            logger.info("No owner phone; skipping voicemail notice", extra={"business_id": str(business.id)})
            return
        await send_sms(
            self._provider,
            business.owner_phone,
            event.called,
            owner_voicemail_notice(event.caller, analysis),
            purpose="owner_voicemail_notice",
        )

    async def _analyze(self, text: str) -> IntentAnalysis:
        try:
            return await self._classifier.classify(text, AnalysisContext.VOICEMAIL)
        except IntentClassificationError:
            logger.exception("Voicemail analysis failed")
            return IntentAnalysis.unavailable("Analysis failed")

    async def _record_voicemail(
        self,
        business: BusinessProfile,
        event: TranscriptionEvent,
        text: str,
        analysis: IntentAnalysis,
    ) -> UUID | None:
        try:
            lead = await self._leads.find_for_caller(business.id, event.caller)
            if lead is None:
                logger.warning("No lead for voicemail caller", extra={"business_id": str(business.id)})
                return None
            lead_id = lead.id
            await self._leads.record_analysis(lead_id, analysis.intent.value, f"Voicemail: {analysis.summary}")
            await self._leads.append_message(lead_id, MessageDirection.INBOUND, f"[Voicemail]: {text}")
            await self._session.commit()
        except SQLAlchemyError:
            await self._session.rollback()
            logger.exception("Could not record voicemail on lead", extra={"business_id": str(business.id)})
            return None
        return lead_id

    async def _auto_reply(
        self,
        business: BusinessProfile,
        event: TranscriptionEvent,
        analysis: IntentAnalysis,
        lead_id: UUID | None,
    ) -> None:
        if not analysis.suggested_reply:
            return

        compliance = await self._compliance.check(business.id, event.caller)
        if not compliance.may_send:
            logger.info(
                "Auto-reply suppressed by opt-out",
                extra={"business_id": str(business.id), "lookup_failed": compliance.lookup_failed},
            )
            return

        sent = await send_sms(
            self._provider, event.caller, event.called, analysis.suggested_reply, purpose="voicemail_auto_reply"
        )
        if not sent or lead_id is None:
            return
        try:
            await self._leads.append_message(
                lead_id, MessageDirection.OUTBOUND, analysis.suggested_reply, is_ai_generated=True
            )
            await self._session.commit()
        except SQLAlchemyError:
            await self._session.rollback()
            logger.exception("Could not log auto-reply", extra={"lead_id": str(lead_id)})
