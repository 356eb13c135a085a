"""
Idempotency ledger: at-most-once processing of provider events.

A claim is a uniqueness-guarded insert. Whoever inserts the row owns the event;
everybody else sees a duplicate. The row is then driven to exactly one terminal
state by ``IdempotencyLedger.claimed``, which every webhook handler wraps its
work in.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from leadcatcher.ledger.models import EventStatus, EventType
from leadcatcher.ledger.repository import WebhookEventRepository
from leadcatcher.shared.exceptions import LedgerUnavailableError
from leadcatcher.shared.logging import get_logger

logger = get_logger(__name__)


class ClaimResult(str, Enum):
    CLAIMED = "claimed"
    DUPLICATE = "duplicate"


@dataclass
class LedgerClaim:
    """Handle given to a handler for the duration of a claimed event."""

    event_id: str
    event_type: EventType
    result: ClaimResult
    outcome: EventStatus | None = None

    @property
    def duplicate(self) -> bool:
        return self.result is ClaimResult.DUPLICATE

    def succeed(self) -> None:
        self.outcome = EventStatus.PROCESSED

    def fail(self) -> None:
        self.outcome = EventStatus.FAILED


class IdempotencyLedger:
    """Claim, enrich and commit ledger rows."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._repository = WebhookEventRepository(session)

    async def claim(
        self,
        event_id: str,
        event_type: EventType,
        created_at: datetime | None = None,
    ) -> ClaimResult:
        """Atomically claim ``event_id``.

        Args:
            event_id: Provider-assigned event identifier.
            event_type: Event category.
            created_at: Authoritative event time (payment events); defaults to now.

        Returns:
            CLAIMED for the first caller, DUPLICATE for everyone after.

        Raises:
            LedgerUnavailableError: If storage failed; the event must not be processed.
        """
        try:
            inserted = await self._repository.insert_if_absent(event_id, event_type, created_at)
            await self._session.commit()
        except IntegrityError:
            await self._session.rollback()
            inserted = False
        except SQLAlchemyError as exc:
            await self._session.rollback()
            logger.exception(
                "Ledger claim failed",
                extra={"event_id": event_id, "event_type": event_type.value},
            )
            raise LedgerUnavailableError(event_id) from exc

        result = ClaimResult.CLAIMED if inserted else ClaimResult.DUPLICATE
        logger.info(
            "Ledger claim",
            extra={"event_id": event_id, "event_type": event_type.value, "result": result.value},
        )
        return result

    async def commit(self, event_id: str, outcome: EventStatus) -> bool:
        """Write the terminal state. Storage errors are logged, never raised."""
        try:
            updated = await self._repository.finish(event_id, outcome)
            await self._session.commit()
        except SQLAlchemyError:
            await self._session.rollback()
            logger.exception(
                "Ledger commit failed; event needs manual follow-up",
                extra={"event_id": event_id, "outcome": outcome.value},
            )
            return False

        if not updated:
            logger.warning(
                "Ledger row already terminal",
                extra={"event_id": event_id, "outcome": outcome.value},
            )
        return updated

    async def attach_business(self, event_id: str, business_id: UUID) -> None:
        """Best-effort enrichment of the ledger row with its business."""
        try:
            await self._repository.set_business(event_id, business_id)
            await self._session.commit()
        except SQLAlchemyError:
            await self._session.rollback()
            logger.warning(
                "Could not attach business to ledger row",
                extra={"event_id": event_id, "business_id": str(business_id)},
            )

    async def newer_event_processed(
        self,
        business_id: UUID,
        event_type: EventType,
        event_time: datetime,
        event_id: str,
    ) -> bool:
        return await self._repository.processed_after(business_id, event_type, event_time, event_id)

    @asynccontextmanager
    async def claimed(
        self,
        event_id: str,
        event_type: EventType,
        created_at: datetime | None = None,
    ) -> AsyncIterator[LedgerClaim]:
        """Claim ``event_id`` and guarantee a terminal ledger state on exit.

        Usage::

            async with ledger.claimed(sid, EventType.CALL) as claim:
                if claim.duplicate:
                    return ack
                ...
                claim.succeed()

        Leaving the block without ``succeed()`` or by raising marks the row failed.
        """
        claim = LedgerClaim(
            event_id=event_id,
            event_type=event_type,
            result=await self.claim(event_id, event_type, created_at),
        )
        if claim.duplicate:
            yield claim
            return

        try:
            yield claim
        except Exception:
            await self._session.rollback()
            await self.commit(event_id, EventStatus.FAILED)
            raise

        if claim.outcome is None:
            logger.warning(
                "Handler exited without an outcome; marking failed",
                extra={"event_id": event_id},
            )
        await self.commit(event_id, claim.outcome or EventStatus.FAILED)
