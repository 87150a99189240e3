"""Models package for database models."""

from fulfillment.models.product import Product, ProductFile
from fulfillment.models.order import Order, OrderItem
from fulfillment.models.download_grant import DownloadGrant
from fulfillment.models.processed_event import ProcessedEvent

__all__ = [
    "Product",
    "ProductFile",
    "Order",
    "OrderItem",
    "DownloadGrant",
    "ProcessedEvent",
]
