"""
Opt-out compliance gate.

Lookups fail closed: if the opt-out table cannot be read, callers treat the
contact as opted out and do not text them.
"""

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from sqlalchemy import delete, exists, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from leadcatcher.compliance.models import OptOut
from leadcatcher.shared.clock import utcnow
from leadcatcher.shared.database import upsert_insert
from leadcatcher.shared.logging import get_logger

logger = get_logger(__name__)

STOP_KEYWORDS = ("STOP", "UNSUBSCRIBE", "CANCEL", "END", "QUIT")
START_KEYWORD = "START"


class KeywordAction(str, Enum):
    OPT_OUT = "opt_out"
    OPT_IN = "opt_in"


def parse_keyword(body: str | None) -> tuple[KeywordAction, str] | None:
    """Classify an inbound SMS body as a compliance keyword.

    Returns:
        ``(action, keyword)`` or None for an ordinary message.
    """
    keyword = (body or "").strip().upper()
    for stop in STOP_KEYWORDS:
        if keyword in (stop, f"{stop}ALL"):
            return KeywordAction.OPT_OUT, stop
    if keyword == START_KEYWORD:
        return KeywordAction.OPT_IN, keyword
    return None


@dataclass(frozen=True)
class OptOutCheck:
    opted_out: bool
    lookup_failed: bool = False

    @property
    def may_send(self) -> bool:
        return not self.opted_out and not self.lookup_failed


class ComplianceGate:
    """Reads and writes the opt-out list for one session."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def check(self, business_id: UUID, phone: str) -> OptOutCheck:
        """Look up whether ``phone`` opted out of ``business_id``.

        Args:
            business_id: Business UUID.
            phone: E.164 phone number.

        Returns:
            OptOutCheck; ``lookup_failed`` is set when storage errored.
        """
        try:
            result = await self._session.execute(
                select(
                    exists().where(
                        OptOut.business_id == business_id,
                        OptOut.phone_number == phone,
                    )
                )
            )
        except SQLAlchemyError:
            await self._session.rollback()
            logger.exception(
                "Opt-out lookup failed; suppressing outbound SMS",
                extra={"business_id": str(business_id), "phone": phone},
            )
            return OptOutCheck(opted_out=True, lookup_failed=True)
        return OptOutCheck(opted_out=bool(result.scalar()))

    async def opt_out(self, business_id: UUID, phone: str, keyword: str) -> None:
        """Record (or refresh) an opt-out in one statement."""
        now = utcnow()
        stmt = upsert_insert(self._session, OptOut).values(
            business_id=business_id,
            phone_number=phone,
            keyword=keyword,
            opted_out_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[OptOut.business_id, OptOut.phone_number],
            set_={"keyword": keyword, "opted_out_at": now},
        )
        await self._session.execute(stmt)
        logger.info(
            "Contact opted out",
            extra={"business_id": str(business_id), "phone": phone, "keyword": keyword},
        )

    async def opt_in(self, business_id: UUID, phone: str) -> bool:
        """Remove an opt-out. Returns True if one existed."""
        result = await self._session.execute(
            delete(OptOut)
            .where(OptOut.business_id == business_id, OptOut.phone_number == phone)
            .returning(OptOut.id)
        )
        removed = result.scalar_one_or_none() is not None
        logger.info(
            "Contact opted back in",
            extra={"business_id": str(business_id), "phone": phone, "had_opt_out": removed},
        )
        return removed
