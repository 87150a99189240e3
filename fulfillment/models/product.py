"""Product and ProductFile models - read-side view of the catalog."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import BigInteger, String, DateTime, ForeignKey, Numeric
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fulfillment.database import Base
from fulfillment.fsm.states import FileType
from fulfillment.utils import utc_now


class ProductFile(Base):
    """
    A file held in object storage for a product.
    file_size is the declared size used to decide attachment eligibility.
    """

    __tablename__ = "product_files"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    # Object storage key (Cloudinary public_id)
    storage_key: Mapped[str] = mapped_column(
        String(500),
        unique=True,
        nullable=False,
    )

    file_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    content_type: Mapped[str] = mapped_column(
        String(100),
        default="application/octet-stream",
        nullable=False,
    )

    # "pdf" or "image"
    file_type: Mapped[str] = mapped_column(
        String(20),
        default=FileType.PDF.value,
        nullable=False,
    )

    # Size in bytes
    file_size: Mapped[int] = mapped_column(
        BigInteger,
        default=0,
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<ProductFile {self.file_name} ({self.file_size} bytes)>"


class Product(Base):
    """
    Catalog product. CRUD lives in the catalog service; fulfillment only
    reads title, price and the deliverable file.
    """

    __tablename__ = "products"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    title: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    # Authoritative unit price
    price: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        nullable=False,
    )

    pdf_file_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("product_files.id", ondelete="SET NULL"),
        nullable=True,
    )

    image_file_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("product_files.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )

    pdf_file: Mapped[Optional[ProductFile]] = relationship(
        foreign_keys=[pdf_file_id],
        lazy="selectin",
    )

    image_file: Mapped[Optional[ProductFile]] = relationship(
        foreign_keys=[image_file_id],
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Product {self.title} {self.price}>"

    @property
    def deliverable_file(self) -> Optional[ProductFile]:
        """The file a buyer receives: PDF preferred over image."""
        if self.pdf_file is not None and self.pdf_file.storage_key:
            return self.pdf_file
        if self.image_file is not None and self.image_file.storage_key:
            return self.image_file
        return None
