"""
Fulfillment Delivery Service - sends purchased files to the customer.

Files below the attachment limit are attached while they fit the
per-message budget; every file is also sent as a grant link. Delivery problems never undo a completed order.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from fulfillment.config import settings
from fulfillment.errors import NotificationError, StorageError
from fulfillment.models.download_grant import DownloadGrant
from fulfillment.models.order import Order
from fulfillment.models.product import Product
from fulfillment.services.email_service import (
    Attachment,
    EmailTransport,
    render_order_confirmation,
)
from fulfillment.services.grant_service import DownloadGrantIssuer
from fulfillment.services.storage_service import ObjectStorage

logger = logging.getLogger(__name__)


@dataclass
class DeliveryReport:
    """Outcome of one delivery attempt."""

    order_id: str
    recipient: str
    attachments: int
    links: int
    sent: bool
    error: Optional[str] = None

    @property
    def method(self) -> str:
        return "attachments" if self.attachments else "links"


class FulfillmentDeliveryService:
    """Service for delivering completed orders by e-mail."""

    def __init__(
        self,
        db: AsyncSession,
        storage: ObjectStorage,
        transport: EmailTransport,
        grants: DownloadGrantIssuer,
        max_attachment_bytes: Optional[int] = None,
        max_total_attachment_bytes: Optional[int] = None,
    ):
        self.db = db
        self.storage = storage
        self.transport = transport
        self.grants = grants
        self.max_attachment_bytes = max_attachment_bytes or settings.attachment_max_bytes
        self.max_total_attachment_bytes = max_total_attachment_bytes or settings.attachment_total_max_bytes

    async def _load_products(self, order: Order) -> Dict[uuid.UUID, Product]:
        product_ids = {item.product_id for item in order.items}
        if not product_ids:
            return {}
        result = await self.db.execute(
            select(Product)
            .where(Product.id.in_(product_ids))
            .options(selectinload(Product.pdf_file), selectinload(Product.image_file))
            .execution_options(populate_existing=True)
        )
        return {product.id: product for product in result.scalars().all()}

    async def gather_attachments(
        self,
        products: Sequence[Product],
    ) -> List[Attachment]:
        """
        Fetch deliverable files small enough to attach.

        A file that is too large, does not fit the remaining message budget
        or fails to download is skipped; the customer still receives its link.
        """
        attachments: List[Attachment] = []
        seen = set()
        used = 0

        for product in products:
            product_file = product.deliverable_file
            if product_file is None or product_file.storage_key in seen:
                continue
            seen.add(product_file.storage_key)

            if product_file.file_size >= self.max_attachment_bytes:
                logger.info(
                    f"{product_file.file_name} is {product_file.file_size} bytes; sending as link only"
                )
                continue

            if used + product_file.file_size > self.max_total_attachment_bytes:
                logger.info(f"{product_file.file_name} does not fit the attachment budget; sending as link only")
                continue

            try:
                content = await self.storage.get_object(product_file.storage_key)
            except Exception as e:
                logger.warning(
                    f"Could not fetch {product_file.storage_key} for attachment: {e}",
                    exc_info=not isinstance(e, StorageError),
                    extra={"context": {"storage_key": product_file.storage_key}},
                )
                continue

            if len(content) >= self.max_attachment_bytes:
                logger.info(f"{product_file.file_name} exceeds the attachment limit once fetched")
                continue

            size = max(product_file.file_size, len(content))
            if used + size > self.max_total_attachment_bytes:
                logger.info(f"{product_file.file_name} does not fit the attachment budget once fetched")
                continue
            used += size

            attachments.append(
                Attachment(
                    filename=product_file.file_name,
                    content_type=product_file.content_type,
                    content=content,
                )
            )

        return attachments

    async def deliver(
        self,
        order: Order,
        grants: Optional[Sequence[DownloadGrant]] = None,
    ) -> DeliveryReport:
        """
        Send the confirmation e-mail for a completed order.

        Without grants (a support resend) a fresh set is issued and
        committed first.
        """
        if grants is None:
            grants = await self.grants.issue(order.items, order.email)
            await self.db.commit()

        products = await self._load_products(order)
        items_by_id = {item.id: item for item in order.items}

        downloads = []
        for grant in grants:
            item = items_by_id.get(grant.order_item_id)
            product = products.get(item.product_id) if item else None
            downloads.append(
                {
                    "title": product.title if product else "Your download",
                    "url": grant.download_url,
                    "expires_at": grant.expires_at,
                }
            )

        attachments = await self.gather_attachments(
            [products[item.product_id] for item in order.items if item.product_id in products]
        )

        message = render_order_confirmation(
            order_id=str(order.id),
            email=order.email,
            total=order.total_amount,
            currency=order.currency,
            downloads=downloads,
            attachment_names=[a.filename for a in attachments],
        )
        message.attachments = attachments

        context = {
            "order_id": str(order.id),
            "recipient": order.email,
            "attachment_count": len(attachments),
            "link_count": len(downloads),
        }

        try:
            result = await self.transport.send(message)
        except Exception as e:
            logger.error(
                f"Email transport raised for order {order.id}: {e}",
                exc_info=True,
                extra={"context": context},
            )
            return DeliveryReport(
                order_id=str(order.id),
                recipient=order.email,
                attachments=len(attachments),
                links=len(downloads),
                sent=False,
                error=str(e),
            )

        if result.success:
            logger.info(
                f"Delivered order {order.id} to {order.email} "
                f"({len(attachments)} attachment(s), {len(downloads)} link(s))",
                extra={"context": context},
            )
        else:
            logger.error(
                f"Failed to deliver order {order.id}: {result.error}",
                extra={"context": context},
            )

        return DeliveryReport(
            order_id=str(order.id),
            recipient=order.email,
            attachments=len(attachments),
            links=len(downloads),
            sent=result.success,
            error=result.error,
        )

    async def resend(self, order: Order) -> DeliveryReport:
        """
        Support resend: mint fresh grants and deliver again.

        Unlike the webhook path, a failed send is reported to the caller.
        """
        report = await self.deliver(order)
        if not report.sent:
            raise NotificationError(report.error or "Email delivery failed")
        return report
