"""
Twilio webhook routes: voice, transcription, SMS and the verification call.

Every handler answers the provider with a success-shaped body once the event
is claimed, even if processing failed, so the provider does not retry-storm.
Malformed input, bad signatures and ledger outages are the exceptions.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from leadcatcher.analysis.factory import get_intent_classifier
from leadcatcher.analysis.models import IntentClassifier
from leadcatcher.config import Settings, get_settings
from leadcatcher.shared.database import get_db_session
from leadcatcher.shared.exceptions import InvalidPhoneNumberError, LedgerUnavailableError, ValidationError
from leadcatcher.shared.logging import get_logger
from leadcatcher.shared.phone import is_valid_e164, is_valid_uuid, normalize_phone_number
from leadcatcher.telephony import twiml
from leadcatcher.telephony.factory import get_messaging_provider
from leadcatcher.telephony.interface import MessagingProvider
from leadcatcher.telephony.webhooks.security import verified_twilio_form
from leadcatcher.telephony.webhooks.sms import InboundMessageRouter, InboundSms
from leadcatcher.telephony.webhooks.transcription import TranscriptionEvent, VoicemailResponder
from leadcatcher.telephony.webhooks.voice import InboundCall, MissedCallOrchestrator

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks/twilio", tags=["twilio-webhooks"])

TwilioForm = Annotated[dict[str, str], Depends(verified_twilio_form)]
Session = Annotated[AsyncSession, Depends(get_db_session)]
Provider = Annotated[MessagingProvider, Depends(get_messaging_provider)]
Classifier = Annotated[IntentClassifier, Depends(get_intent_classifier)]


def _xml(body: str) -> Response:
    return Response(content=body, media_type="application/xml")


def _normalized(value: str | None) -> str:
    """Normalize a provider phone field; unusable values pass through for the handler to judge."""
    if not value:
        return ""
    try:
        return normalize_phone_number(value)
    except InvalidPhoneNumberError:
        return value


@router.post("/voice")
async def voice_webhook(
    params: TwilioForm,
    session: Session,
    provider: Provider,
    settings: Annotated[Settings, Depends(get_settings)],
) -> Response:
    call_sid = params.get("CallSid", "")
    called = _normalized(params.get("To") or params.get("Called"))
    caller = _normalized(params.get("From") or params.get("Caller"))
    if not call_sid or not called:
        raise ValidationError("Missing CallSid or called number")

    logger.info("Inbound call", extra={"call_sid": call_sid, "caller": caller, "called": called})
    orchestrator = MissedCallOrchestrator(session, provider, settings.public_base_url)
    try:
        return _xml(await orchestrator.handle(InboundCall(call_sid=call_sid, caller=caller, called=called)))
    except LedgerUnavailableError:
        raise
    except Exception:
        logger.exception("Voice webhook failed", extra={"call_sid": call_sid})
        return _xml(twiml.empty_response())


@router.post("/transcription")
async def transcription_webhook(
    params: TwilioForm,
    session: Session,
    provider: Provider,
    classifier: Classifier,
    business_id: Annotated[str | None, Query(alias="businessId")] = None,
    caller: Annotated[str | None, Query()] = None,
    called: Annotated[str | None, Query()] = None,
) -> PlainTextResponse:
    if not is_valid_uuid(business_id):
        raise ValidationError("Invalid businessId", field="businessId")
    if not is_valid_e164(caller):
        raise ValidationError("Invalid caller", field="caller")
    if not is_valid_e164(called):
        raise ValidationError("Invalid called", field="called")

    event_id = (
        params.get("TranscriptionSid")
        or params.get("RecordingSid")
        or (f"{params['CallSid']}:transcription" if params.get("CallSid") else "")
    )
    if not event_id:
        raise ValidationError("Missing transcription identifier")

    event = TranscriptionEvent(
        event_id=event_id,
        business_id=UUID(business_id),
        caller=caller,
        called=called,
        text=params.get("TranscriptionText"),
        status=params.get("TranscriptionStatus"),
    )
    responder = VoicemailResponder(session, provider, classifier)
    try:
        await responder.handle(event)
    except LedgerUnavailableError:
        raise
    except Exception:
        logger.exception("Transcription webhook failed", extra={"event_id": event_id})
    return PlainTextResponse("OK")


@router.post("/sms")
async def sms_webhook(
    params: TwilioForm,
    session: Session,
    provider: Provider,
    classifier: Classifier,
) -> Response:
    message_sid = params.get("MessageSid") or params.get("SmsSid") or ""
    sender = _normalized(params.get("From"))
    to_number = _normalized(params.get("To"))
    body = params.get("Body") or ""
    if not message_sid or not sender or not body:
        raise ValidationError("Missing MessageSid, From or Body")

    logger.info("Inbound SMS", extra={"message_sid": message_sid, "from": sender, "body_length": len(body)})
    inbound = InboundMessageRouter(session, provider, classifier)
    try:
        await inbound.handle(
            InboundSms(message_sid=message_sid, from_number=sender, to_number=to_number, body=body)
        )
    except LedgerUnavailableError:
        raise
    except Exception:
        logger.exception("SMS webhook failed", extra={"message_sid": message_sid})
    return _xml(twiml.empty_response())


@router.post("/verify")
async def verification_call_webhook(params: TwilioForm) -> Response:
    """Answer the outbound test call placed to confirm forwarding setup."""
    logger.info("Verification call answered", extra={"call_sid": params.get("CallSid")})
    return _xml(twiml.say_and_hangup(twiml.VERIFICATION_CONFIRMED))
