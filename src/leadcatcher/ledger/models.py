"""
SQLAlchemy model for the webhook idempotency ledger.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Enum as SQLEnum, Index, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from leadcatcher.shared.clock import utcnow
from leadcatcher.shared.database import Base


class EventType(str, Enum):
    """Source category of an externally delivered event."""

    CALL = "call"
    MESSAGE = "message"
    TRANSCRIPTION = "transcription"
    PAYMENT = "payment"
    POLL = "poll"


class EventStatus(str, Enum):
    """Ledger row state. ``processing`` is the only non-terminal value."""

    PROCESSING = "processing"
    PROCESSED = "processed"
    FAILED = "failed"


def _values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class WebhookEvent(Base):
    """One row per provider event id; its existence is the claim."""

    __tablename__ = "webhook_events"
    __table_args__ = (
        Index("ix_webhook_events_business_type_created", "business_id", "event_type", "created_at"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    event_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    event_type: Mapped[EventType] = mapped_column(
        SQLEnum(EventType, name="webhook_event_type", native_enum=False, values_callable=_values),
        nullable=False,
    )
    status: Mapped[EventStatus] = mapped_column(
        SQLEnum(EventStatus, name="webhook_event_status", native_enum=False, values_callable=_values),
        nullable=False,
        default=EventStatus.PROCESSING,
    )
    business_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<WebhookEvent(event_id={self.event_id}, status={self.status})>"
