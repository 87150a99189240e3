"""DownloadGrant model - time and usage limited access to one purchased file."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fulfillment.database import Base
from fulfillment.models.order import OrderItem
from fulfillment.models.product import Product
from fulfillment.utils import as_utc, utc_now


class DownloadGrant(Base):
    """
    Grant created at order completion (or on a support resend).
    download_count is only changed by the redemption compare-and-increment.
    """

    __tablename__ = "download_grants"
    __table_args__ = (
        CheckConstraint("download_count >= 0", name="ck_download_grants_count_non_negative"),
        CheckConstraint(
            "download_count <= max_downloads",
            name="ck_download_grants_count_within_cap",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    order_item_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("order_items.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    customer_email: Mapped[str] = mapped_column(
        String(320),
        nullable=False,
        index=True,
    )

    product_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
    )

    download_url: Mapped[str] = mapped_column(
        String(1000),
        nullable=False,
    )

    download_count: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )

    # Fixed at creation
    max_downloads: Mapped[int] = mapped_column(
        Integer,
        default=5,
        nullable=False,
    )

    # Fixed at creation: created_at + TTL
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )

    last_downloaded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    order_item: Mapped[OrderItem] = relationship(lazy="selectin")

    product: Mapped[Product] = relationship(lazy="selectin")

    def __repr__(self) -> str:
        return f"<DownloadGrant {self.order_item_id} {self.download_count}/{self.max_downloads}>"

    def is_expired(self, now: datetime) -> bool:
        return as_utc(now) > as_utc(self.expires_at)

    @property
    def remaining_downloads(self) -> int:
        return max(self.max_downloads - self.download_count, 0)
