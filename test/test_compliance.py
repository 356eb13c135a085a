"""Tests for opt-out keyword parsing and the compliance gate."""

from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from leadcatcher.businesses.models import BusinessProfile
from leadcatcher.compliance.service import ComplianceGate, KeywordAction, parse_keyword

CONTACT = "+15553334444"


class TestParseKeyword:
    @pytest.mark.parametrize(
        "body",
        ["STOP", "stop", "  Stop  ", "STOPALL", "unsubscribe", "CANCEL", "end", "QUIT", "quitall"],
    )
    def test_opt_out_keywords(self, body: str) -> None:
        parsed = parse_keyword(body)

        assert parsed is not None
        assert parsed[0] is KeywordAction.OPT_OUT

    def test_stopall_records_base_keyword(self) -> None:
        assert parse_keyword("stopall") == (KeywordAction.OPT_OUT, "STOP")

    def test_start(self) -> None:
        assert parse_keyword(" start ") == (KeywordAction.OPT_IN, "START")

    @pytest.mark.parametrize("body", ["", None, "please stop", "STOP IT", "stopping", "START NOW"])
    def test_ordinary_messages(self, body: str | None) -> None:
        assert parse_keyword(body) is None


class TestComplianceGate:
    @pytest.mark.asyncio
    async def test_unknown_contact_may_receive(
        self,
        db_session: AsyncSession,
        business: BusinessProfile,
    ) -> None:
        check = await ComplianceGate(db_session).check(business.id, CONTACT)

        assert not check.opted_out
        assert check.may_send

    @pytest.mark.asyncio
    async def test_opt_out_then_opt_in(
        self,
        db_session: AsyncSession,
        business: BusinessProfile,
    ) -> None:
        gate = ComplianceGate(db_session)

        await gate.opt_out(business.id, CONTACT, "STOP")
        await db_session.commit()
        assert not (await gate.check(business.id, CONTACT)).may_send

        assert await gate.opt_in(business.id, CONTACT) is True
        await db_session.commit()
        assert (await gate.check(business.id, CONTACT)).may_send

    @pytest.mark.asyncio
    async def test_repeated_opt_out_keeps_one_row(
        self,
        db_session: AsyncSession,
        business: BusinessProfile,
    ) -> None:
        gate = ComplianceGate(db_session)

        await gate.opt_out(business.id, CONTACT, "STOP")
        await gate.opt_out(business.id, CONTACT, "QUIT")
        await db_session.commit()

        assert await gate.opt_in(business.id, CONTACT) is True
        assert await gate.opt_in(business.id, CONTACT) is False

    @pytest.mark.asyncio
    async def test_opt_out_is_per_business(
        self,
        db_session: AsyncSession,
        business: BusinessProfile,
    ) -> None:
        gate = ComplianceGate(db_session)
        await gate.opt_out(business.id, CONTACT, "STOP")
        await db_session.commit()

        assert (await gate.check(uuid4(), CONTACT)).may_send

    @pytest.mark.asyncio
    async def test_lookup_failure_fails_closed(self) -> None:
        session = AsyncMock(spec=AsyncSession)
        session.execute.side_effect = OperationalError("SELECT", {}, Exception("db down"))

        check = await ComplianceGate(session).check(uuid4(), CONTACT)

        assert check.opted_out
        assert check.lookup_failed
        assert not check.may_send
