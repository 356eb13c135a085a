"""Tests for the inbound voice webhook (missed-call intake)."""

from collections.abc import Sequence
from unittest.mock import MagicMock

import httpx
import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from conftest import CALLER, FORWARDING_NUMBER, PUBLIC_BASE_URL, break_opt_out_lookup, create_business
from leadcatcher.businesses.hours import DEFAULT_OPEN_TEMPLATE
from leadcatcher.businesses.models import Business, BusinessProfile
from leadcatcher.compliance.service import ComplianceGate
from leadcatcher.leads.models import Lead, LeadSource, LeadStatus, Message, MessageDirection
from leadcatcher.ledger.models import EventStatus
from leadcatcher.ledger.repository import WebhookEventRepository
from leadcatcher.telephony import twiml
from leadcatcher.telephony.config import ProviderType, TelephonyConfig
from leadcatcher.telephony.factory import get_messaging_provider
from leadcatcher.telephony.mock_adapter import MockMessagingProvider
from leadcatcher.telephony.twilio_adapter import TwilioAdapter

VOICE_URL = "/webhooks/twilio/voice"


def _call(sid: str = "CA_missed_1", caller: str = CALLER, called: str = FORWARDING_NUMBER) -> dict[str, str]:
    return {"CallSid": sid, "From": caller, "To": called, "CallStatus": "ringing"}


async def _leads(session_factory: async_sessionmaker[AsyncSession]) -> Sequence[Lead]:
    async with session_factory() as session:
        return (await session.execute(select(Lead))).scalars().all()


async def _messages(session_factory: async_sessionmaker[AsyncSession]) -> Sequence[Message]:
    async with session_factory() as session:
        return (await session.execute(select(Message))).scalars().all()


async def _ledger_status(session_factory: async_sessionmaker[AsyncSession], event_id: str) -> EventStatus | None:
    async with session_factory() as session:
        row = await WebhookEventRepository(session).get(event_id)
        return row.status if row else None


class TestMissedCall:
    @pytest.mark.asyncio
    async def test_acknowledges_creates_lead_and_prompts_voicemail(
        self,
        async_client: AsyncClient,
        provider: MockMessagingProvider,
        business: BusinessProfile,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        response = await async_client.post(VOICE_URL, data=_call())

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/xml")
        assert "<Record" in response.text
        assert 'transcribe="true"' in response.text
        assert f"{PUBLIC_BASE_URL}/webhooks/twilio/transcription?businessId={business.id}" in response.text
        assert "Fix-It Phones" in response.text

        sent = provider.sent_to(CALLER)
        assert len(sent) == 1
        assert sent[0].from_number == FORWARDING_NUMBER
        assert sent[0].body == DEFAULT_OPEN_TEMPLATE

        leads = await _leads(session_factory)
        assert len(leads) == 1
        assert leads[0].caller_phone == CALLER
        assert leads[0].source is LeadSource.PHONE
        assert leads[0].status is LeadStatus.NEW

        messages = await _messages(session_factory)
        assert [(m.direction, m.body) for m in messages] == [(MessageDirection.OUTBOUND, DEFAULT_OPEN_TEMPLATE)]

        assert await _ledger_status(session_factory, "CA_missed_1") is EventStatus.PROCESSED

    @pytest.mark.asyncio
    async def test_duplicate_delivery_is_a_no_op(
        self,
        async_client: AsyncClient,
        provider: MockMessagingProvider,
        business: BusinessProfile,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        await async_client.post(VOICE_URL, data=_call())
        response = await async_client.post(VOICE_URL, data=_call())

        assert response.status_code == 200
        assert response.text == twiml.empty_response()
        assert len(provider.sent) == 1
        assert len(await _leads(session_factory)) == 1

    @pytest.mark.asyncio
    async def test_repeat_caller_reuses_lead(
        self,
        async_client: AsyncClient,
        provider: MockMessagingProvider,
        business: BusinessProfile,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        await async_client.post(VOICE_URL, data=_call(sid="CA_first"))
        await async_client.post(VOICE_URL, data=_call(sid="CA_second"))

        assert len(provider.sent) == 2
        assert len(await _leads(session_factory)) == 1
        assert len(await _messages(session_factory)) == 2

    @pytest.mark.asyncio
    async def test_normalizes_provider_numbers(
        self,
        async_client: AsyncClient,
        provider: MockMessagingProvider,
        business: BusinessProfile,
    ) -> None:
        response = await async_client.post(
            VOICE_URL, data=_call(caller="(555) 765-4321", called="555-000-1111")
        )

        assert "<Record" in response.text
        assert len(provider.sent_to(CALLER)) == 1


class TestMissedCallEdges:
    @pytest.mark.asyncio
    async def test_unknown_forwarding_number(
        self,
        async_client: AsyncClient,
        provider: MockMessagingProvider,
        business: BusinessProfile,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        response = await async_client.post(VOICE_URL, data=_call(sid="CA_unknown", called="+15559990000"))

        assert response.status_code == 200
        assert "not configured correctly" in response.text
        assert "<Hangup/>" in response.text
        assert provider.sent == []
        assert await _ledger_status(session_factory, "CA_unknown") is EventStatus.FAILED

    @pytest.mark.asyncio
    async def test_unusable_caller_id(
        self,
        async_client: AsyncClient,
        provider: MockMessagingProvider,
        business: BusinessProfile,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        response = await async_client.post(VOICE_URL, data=_call(sid="CA_anon", caller="anonymous"))

        assert response.status_code == 200
        assert response.text == twiml.empty_response()
        assert provider.sent == []
        assert await _leads(session_factory) == []
        assert await _ledger_status(session_factory, "CA_anon") is EventStatus.FAILED

    @pytest.mark.asyncio
    async def test_opted_out_caller_gets_no_sms(
        self,
        async_client: AsyncClient,
        provider: MockMessagingProvider,
        business: BusinessProfile,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        async with session_factory() as session:
            await ComplianceGate(session).opt_out(business.id, CALLER, "STOP")
            await session.commit()

        response = await async_client.post(VOICE_URL, data=_call())

        assert "<Record" in response.text
        assert provider.sent == []
        assert len(await _leads(session_factory)) == 1
        assert await _messages(session_factory) == []

    @pytest.mark.asyncio
    async def test_lapsed_billing_skips_sms_but_keeps_lead(
        self,
        async_client: AsyncClient,
        provider: MockMessagingProvider,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        await create_business(session_factory, stripe_status="past_due")

        response = await async_client.post(VOICE_URL, data=_call())

        assert "<Record" in response.text
        assert provider.sent == []
        assert len(await _leads(session_factory)) == 1

    @pytest.mark.asyncio
    async def test_send_failure_still_records_lead(
        self,
        async_client: AsyncClient,
        provider: MockMessagingProvider,
        business: BusinessProfile,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        provider.configure_failure()

        response = await async_client.post(VOICE_URL, data=_call())

        assert "<Record" in response.text
        assert len(await _leads(session_factory)) == 1
        assert await _messages(session_factory) == []
        assert await _ledger_status(session_factory, "CA_missed_1") is EventStatus.PROCESSED

    @pytest.mark.asyncio
    async def test_provider_error_page_still_records_lead(
        self,
        async_client: AsyncClient,
        business: BusinessProfile,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        from leadcatcher.main import app

        http_client = MagicMock(spec=httpx.Client)
        http_client.post.return_value = httpx.Response(status_code=502, text="<html>Bad Gateway</html>")
        twilio = TwilioAdapter(
            config=TelephonyConfig(
                provider_type=ProviderType.TWILIO,
                twilio_account_sid="AC_TEST",
                twilio_auth_token="token",
            ),
            http_client=http_client,
        )
        app.dependency_overrides[get_messaging_provider] = lambda: twilio

        response = await async_client.post(VOICE_URL, data=_call())

        assert response.status_code == 200
        assert "<Record" in response.text
        http_client.post.assert_called_once()
        assert len(await _leads(session_factory)) == 1
        assert await _messages(session_factory) == []
        assert await _ledger_status(session_factory, "CA_missed_1") is EventStatus.PROCESSED

    @pytest.mark.asyncio
    async def test_opt_out_lookup_error_suppresses_sms(
        self,
        async_client: AsyncClient,
        provider: MockMessagingProvider,
        business: BusinessProfile,
        db_engine: AsyncEngine,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        await break_opt_out_lookup(db_engine)

        response = await async_client.post(VOICE_URL, data=_call())

        assert response.status_code == 200
        assert "<Record" in response.text
        assert provider.sent == []
        assert len(await _leads(session_factory)) == 1
        assert await _ledger_status(session_factory, "CA_missed_1") is EventStatus.PROCESSED

    @pytest.mark.asyncio
    async def test_missing_public_base_url(
        self,
        async_client: AsyncClient,
        business: BusinessProfile,
        session_factory: async_sessionmaker[AsyncSession],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setenv("PUBLIC_BASE_URL", "")

        response = await async_client.post(VOICE_URL, data=_call())

        assert "technical difficulties" in response.text
        assert await _ledger_status(session_factory, "CA_missed_1") is EventStatus.FAILED

    @pytest.mark.asyncio
    async def test_missing_call_sid_is_rejected(self, async_client: AsyncClient) -> None:
        response = await async_client.post(VOICE_URL, data={"From": CALLER, "To": FORWARDING_NUMBER})

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"


class TestForwardingVerification:
    @pytest.mark.asyncio
    async def test_pending_token_is_consumed(
        self,
        async_client: AsyncClient,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        business = await create_business(session_factory, verification_token="tok_123")

        await async_client.post(VOICE_URL, data=_call())

        async with session_factory() as session:
            row = await session.get(Business, business.id)
            assert row is not None
            assert row.verified is True
            assert row.verification_token is None

    @pytest.mark.asyncio
    async def test_verify_route_answers_with_confirmation(self, async_client: AsyncClient) -> None:
        response = await async_client.post("/webhooks/twilio/verify", data={"CallSid": "CA_verify"})

        assert response.status_code == 200
        assert "verification call" in response.text
        assert "<Hangup/>" in response.text
