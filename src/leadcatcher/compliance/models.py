"""
SQLAlchemy model for SMS opt-outs.
"""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from leadcatcher.shared.clock import utcnow
from leadcatcher.shared.database import Base


class OptOut(Base):
    """Presence of a row means the number must not be texted by the business."""

    __tablename__ = "opt_outs"
    __table_args__ = (
        UniqueConstraint("business_id", "phone_number", name="uq_opt_outs_business_phone"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    business_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("businesses.id", ondelete="CASCADE"),
        nullable=False,
    )
    phone_number: Mapped[str] = mapped_column(String(20), nullable=False)
    keyword: Mapped[str] = mapped_column(String(32), nullable=False, default="STOP")
    opted_out_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )
