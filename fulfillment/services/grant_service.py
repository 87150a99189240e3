"""
Download Grant Service - issues and redeems time and usage limited grants.

Redemption is a single compare-and-increment UPDATE so concurrent
requests can never push download_count past max_downloads.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence
from urllib.parse import quote

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.config import settings
from fulfillment.errors import RedemptionError
from fulfillment.fsm.states import RedemptionDenial
from fulfillment.models.download_grant import DownloadGrant
from fulfillment.models.order import OrderItem
from fulfillment.utils import normalize_email, utc_now

logger = logging.getLogger(__name__)


class DownloadGrantIssuer:
    """Service for download grant issuance and redemption."""

    def __init__(
        self,
        db: AsyncSession,
        max_downloads: Optional[int] = None,
        ttl: Optional[timedelta] = None,
        site_url: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.max_downloads = max_downloads or settings.download_max_count
        self.ttl = ttl or timedelta(days=settings.download_ttl_days)
        self.site_url = (site_url or settings.site_url).rstrip("/")
        self.clock = clock

    def build_download_url(self, order_item_id: uuid.UUID, email: str) -> str:
        return f"{self.site_url}/download/{order_item_id}?email={quote(email)}"

    async def issue(
        self,
        order_items: Sequence[OrderItem],
        email: str,
    ) -> List[DownloadGrant]:
        """
        Create one grant per order item.

        Rows are flushed, not committed; the caller owns the transaction.
        Calling this twice for the same items creates a second set.
        """
        email = normalize_email(email)
        now = self.clock()
        grants = [
            DownloadGrant(
                order_item_id=item.id,
                customer_email=email,
                product_id=item.product_id,
                download_url=self.build_download_url(item.id, email),
                download_count=0,
                max_downloads=self.max_downloads,
                expires_at=now + self.ttl,
                created_at=now,
            )
            for item in order_items
        ]
        self.db.add_all(grants)
        await self.db.flush()

        logger.info(f"Issued {len(grants)} download grant(s) for {email}")
        return grants

    async def list_active(self, email: str) -> List[DownloadGrant]:
        """Non-expired grants for an e-mail, newest first."""
        result = await self.db.execute(
            select(DownloadGrant)
            .where(
                DownloadGrant.customer_email == normalize_email(email),
                DownloadGrant.expires_at >= self.clock(),
            )
            .order_by(DownloadGrant.created_at.desc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def redeem(self, grant_id: uuid.UUID, email: str) -> DownloadGrant:
        """
        Consume one download from a grant.

        Raises RedemptionError with the first matching reason among
        not_found, email_mismatch, expired, limit_reached. Expiry wins over
        the count check.
        """
        email = normalize_email(email)

        for _attempt in range(2):
            now = self.clock()
            result = await self.db.execute(
                update(DownloadGrant)
                .where(
                    DownloadGrant.id == grant_id,
                    DownloadGrant.customer_email == email,
                    DownloadGrant.expires_at >= now,
                    DownloadGrant.download_count < DownloadGrant.max_downloads,
                )
                .values(
                    download_count=DownloadGrant.download_count + 1,
                    last_downloaded_at=now,
                )
                .execution_options(synchronize_session=False)
            )

            if result.rowcount == 1:
                await self.db.commit()
                grant = await self.db.get(DownloadGrant, grant_id, populate_existing=True)
                logger.info(
                    f"Download {grant.download_count}/{grant.max_downloads} redeemed for grant {grant_id}"
                )
                return grant

            await self.db.rollback()

            denial = await self._classify(grant_id, email)
            if denial is not None:
                logger.info(f"Download denied for grant {grant_id}: {denial.value}")
                raise RedemptionError(denial)

        # Row changed between the update and the re-read twice in a row
        raise RedemptionError(RedemptionDenial.LIMIT_REACHED)

    async def _classify(
        self,
        grant_id: uuid.UUID,
        email: str,
    ) -> Optional[RedemptionDenial]:
        grant = await self.db.get(DownloadGrant, grant_id, populate_existing=True)
        if grant is None:
            return RedemptionDenial.NOT_FOUND
        if grant.customer_email != email:
            return RedemptionDenial.EMAIL_MISMATCH
        if grant.is_expired(self.clock()):
            return RedemptionDenial.EXPIRED
        if grant.download_count >= grant.max_downloads:
            return RedemptionDenial.LIMIT_REACHED
        return None

    async def redeem_for_item(self, order_item_id: uuid.UUID, email: str) -> DownloadGrant:
        """
        Redeem against the newest usable grant for an order item.

        Resends mint extra grants for the same item, so the item id alone
        does not identify a grant.
        """
        email = normalize_email(email)
        result = await self.db.execute(
            select(DownloadGrant)
            .where(DownloadGrant.order_item_id == order_item_id)
            .order_by(DownloadGrant.created_at.desc())
        )
        grants = list(result.scalars().all())

        if not grants:
            raise RedemptionError(RedemptionDenial.NOT_FOUND)

        owned = [g for g in grants if g.customer_email == email]
        if not owned:
            raise RedemptionError(RedemptionDenial.EMAIL_MISMATCH)

        now = self.clock()
        usable = [
            g for g in owned
            if not g.is_expired(now) and g.download_count < g.max_downloads
        ]
        # Fall back to the newest grant so the denial reason reflects it
        target = usable[0] if usable else owned[0]
        return await self.redeem(target.id, email)
