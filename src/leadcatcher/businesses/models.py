"""
SQLAlchemy model for businesses.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, DateTime, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from leadcatcher.shared.clock import as_utc, utcnow
from leadcatcher.shared.database import Base

DEFAULT_TIMEZONE = "America/New_York"


class SubscriptionStatus(str, Enum):
    """Billing-provider subscription status values."""

    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"


class Business(Base):
    """A subscribing business and the configuration the orchestrators read."""

    __tablename__ = "businesses"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    owner_phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    forwarding_number: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)

    sms_template: Mapped[str | None] = mapped_column(Text, nullable=True)
    sms_template_closed: Mapped[str | None] = mapped_column(Text, nullable=True)
    business_hours: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default=DEFAULT_TIMEZONE)

    verification_token: Mapped[str | None] = mapped_column(String(64), nullable=True)
    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    stripe_plan: Mapped[str | None] = mapped_column(String(32), nullable=True)
    stripe_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    stripe_trial_ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    stripe_current_period_end: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    # Creation time of the newest subscription-updated event applied.
    stripe_event_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    repairdesk_api_key: Mapped[str | None] = mapped_column(String(255), nullable=True)
    repairdesk_store_url: Mapped[str | None] = mapped_column(String(255), nullable=True)
    repairdesk_last_poll_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<Business(id={self.id}, name={self.name})>"


@dataclass(frozen=True)
class BusinessProfile:
    """Detached, immutable view of a business row.

    Handlers keep this instead of the ORM instance so a rollback inside a
    fail-open/fail-closed branch cannot expire what they are holding.
    """

    id: UUID
    name: str
    forwarding_number: str
    owner_phone: str | None = None
    sms_template: str | None = None
    sms_template_closed: str | None = None
    business_hours: dict[str, Any] | None = None
    timezone: str = DEFAULT_TIMEZONE
    verification_token: str | None = None
    stripe_status: str | None = None
    repairdesk_api_key: str | None = None
    repairdesk_store_url: str | None = None
    repairdesk_last_poll_at: datetime | None = None

    @classmethod
    def from_model(cls, business: Business) -> "BusinessProfile":
        return cls(
            id=business.id,
            name=business.name,
            forwarding_number=business.forwarding_number,
            owner_phone=business.owner_phone,
            sms_template=business.sms_template,
            sms_template_closed=business.sms_template_closed,
            business_hours=business.business_hours,
            timezone=business.timezone or DEFAULT_TIMEZONE,
            verification_token=business.verification_token,
            stripe_status=business.stripe_status,
            repairdesk_api_key=business.repairdesk_api_key,
            repairdesk_store_url=business.repairdesk_store_url,
            repairdesk_last_poll_at=as_utc(business.repairdesk_last_poll_at),
        )
