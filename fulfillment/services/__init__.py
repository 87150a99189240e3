"""Services package."""

from fulfillment.services.catalog_service import CatalogService, CartLine
from fulfillment.services.checkout_service import CheckoutService, CheckoutResult
from fulfillment.services.event_service import EventIngestionService, IngestResult
from fulfillment.services.grant_service import DownloadGrantIssuer
from fulfillment.services.delivery_service import FulfillmentDeliveryService, DeliveryReport
from fulfillment.services.file_service import FileUploadService
from fulfillment.services.storage_service import CloudinaryStorage, ObjectStorage, StoredObject
from fulfillment.services.email_service import SendGridTransport, EmailTransport

__all__ = [
    "CatalogService",
    "CartLine",
    "CheckoutService",
    "CheckoutResult",
    "EventIngestionService",
    "IngestResult",
    "DownloadGrantIssuer",
    "FulfillmentDeliveryService",
    "DeliveryReport",
    "FileUploadService",
    "CloudinaryStorage",
    "ObjectStorage",
    "StoredObject",
    "SendGridTransport",
    "EmailTransport",
]
