"""
SQLAlchemy models for leads and their message log.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from leadcatcher.shared.clock import utcnow
from leadcatcher.shared.database import Base


class LeadStatus(str, Enum):
    """Lead lifecycle. ``Processing`` is the transient grace-poll claim."""

    NEW = "New"
    PROCESSING = "Processing"
    CONTACTED = "Contacted"
    CLOSED = "Closed"
    BOOKED = "Booked"


class LeadSource(str, Enum):
    PHONE = "phone"
    SMS = "sms"
    REPAIRDESK = "repairdesk"


class MessageDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


def _values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


# Call and SMS paths keep one lead per caller; imported records dedup on external_id.
DIRECT_SOURCE_PREDICATE = text("source IN ('phone', 'sms')")


class Lead(Base):
    """A potential customer contact for one business."""

    __tablename__ = "leads"
    __table_args__ = (
        UniqueConstraint("business_id", "source", "external_id", name="uq_leads_business_source_external"),
        Index(
            "uq_leads_direct_caller",
            "business_id",
            "caller_phone",
            unique=True,
            postgresql_where=DIRECT_SOURCE_PREDICATE,
            sqlite_where=DIRECT_SOURCE_PREDICATE,
        ),
        Index("ix_leads_hold", "business_id", "status", "sms_hold_until"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    business_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("businesses.id", ondelete="CASCADE"),
        nullable=False,
    )
    caller_phone: Mapped[str] = mapped_column(String(20), nullable=False)
    caller_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    source: Mapped[LeadSource] = mapped_column(
        SQLEnum(LeadSource, name="lead_source", native_enum=False, values_callable=_values),
        nullable=False,
        default=LeadSource.PHONE,
    )
    external_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[LeadStatus] = mapped_column(
        SQLEnum(LeadStatus, name="lead_status", native_enum=False, values_callable=_values),
        nullable=False,
        default=LeadStatus.NEW,
    )
    sms_hold_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    intent: Mapped[str | None] = mapped_column(String(32), nullable=True)
    ai_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<Lead(id={self.id}, status={self.status}, source={self.source})>"


class Message(Base):
    """Append-only SMS log row."""

    __tablename__ = "messages"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    lead_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("leads.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    direction: Mapped[MessageDirection] = mapped_column(
        SQLEnum(MessageDirection, name="message_direction", native_enum=False, values_callable=_values),
        nullable=False,
    )
    body: Mapped[str] = mapped_column(Text, nullable=False)
    is_ai_generated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
