"""ProcessedEvent model - webhook idempotency ledger."""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment.database import Base
from fulfillment.utils import utc_now


class ProcessedEvent(Base):
    """
    One row per gateway event that has been handled.
    The primary key is the idempotency guard: a second insert of the same
    event_id fails with an IntegrityError.
    """

    __tablename__ = "processed_events"

    event_id: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
    )

    gateway: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )

    # Provider event name, for diagnostics
    event_type: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
    )

    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<ProcessedEvent {self.gateway}:{self.event_id}>"
