from typing import Dict, Optional

from fastapi import Header, HTTPException, status

from fulfillment.config import settings
from fulfillment.gateways import PaymentGateway, build_gateways
from fulfillment.services.email_service import EmailTransport, SendGridTransport
from fulfillment.services.storage_service import CloudinaryStorage, ObjectStorage


async def get_admin_user(
    x_admin_key: Optional[str] = Header(None, alias="X-Admin-Key"),
) -> str:
    """
    Validate the Admin Key from the X-Admin-Key header.
    Returns the key if valid, raises 401 otherwise.
    """
    valid_key = settings.admin_api_key

    if not x_admin_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing admin key",
        )

    if not valid_key or x_admin_key != valid_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin key",
        )

    return x_admin_key


async def get_gateways() -> Dict[str, PaymentGateway]:
    """All configured payment gateways keyed by provider name."""
    return build_gateways()


async def get_storage() -> ObjectStorage:
    return CloudinaryStorage()


async def get_email_transport() -> EmailTransport:
    return SendGridTransport()
