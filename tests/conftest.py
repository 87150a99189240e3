"""
Pytest configuration and fixtures.
"""

import sys
import os
import hashlib
import hmac
import json
import uuid
from decimal import Decimal
from typing import AsyncGenerator, Optional

# Settings are read at import time
os.environ.setdefault("APP_ENV", "development")
os.environ.setdefault("DATABASE_URL", "")
os.environ.setdefault("SITE_URL", "https://shop.test")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("ADMIN_API_KEY", "admin-test-key")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

# Add app to path
sys.path.append(os.getcwd())

from fulfillment.database import Base
from fulfillment.errors import StorageError
from fulfillment.fsm.states import FileType
from fulfillment.models import Product, ProductFile
from fulfillment.services.email_service import EmailMessage, EmailTransport, SendResult
from fulfillment.services.storage_service import ObjectStorage, StoredObject

WEBHOOK_SECRET = "whsec_test"
MB = 1024 * 1024


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """
    File-backed SQLite so concurrent sessions see each other's commits.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for a test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


class InMemoryStorage(ObjectStorage):
    """Object storage double. put_failures makes the next N uploads fail."""

    def __init__(self):
        self.objects = {}
        self.deleted = []
        self.fail_keys = set()
        self.put_failures = 0
        self.put_calls = 0

    async def put_object(self, key: str, data: bytes, content_type: str) -> StoredObject:
        self.put_calls += 1
        if self.put_failures > 0:
            self.put_failures -= 1
            raise StorageError("transient upload failure")
        self.objects[key] = data
        return StoredObject(storage=self, key=key, size=len(data))

    async def get_object(self, key: str) -> bytes:
        if key in self.fail_keys or key not in self.objects:
            raise StorageError(f"cannot fetch {key}")
        return self.objects[key]

    async def delete_object(self, key: str) -> None:
        self.objects.pop(key, None)
        self.deleted.append(key)


class RecordingTransport(EmailTransport):
    """E-mail transport double that records messages."""

    def __init__(self):
        self.sent = []
        self.result: Optional[SendResult] = None
        self.exc: Optional[Exception] = None

    async def send(self, message: EmailMessage) -> SendResult:
        if self.exc is not None:
            raise self.exc
        self.sent.append(message)
        return self.result or SendResult(success=True, message_id=f"msg-{len(self.sent)}")


class FakePaymentLinks:
    def __init__(self):
        self.created = []
        self.error: Optional[Exception] = None

    def create(self, data):
        if self.error is not None:
            raise self.error
        self.created.append(data)
        n = len(self.created)
        return {"id": f"plink_test{n}", "short_url": f"https://rzp.io/i/test{n}"}


class FakeRazorpayClient:
    """Stands in for razorpay.Client; only payment links are used."""

    def __init__(self):
        self.payment_link = FakePaymentLinks()


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def razorpay_client() -> FakeRazorpayClient:
    return FakeRazorpayClient()


@pytest.fixture
def make_product(storage):
    """Factory for a product with one stored deliverable file."""

    async def _make(
        session: AsyncSession,
        title: str = "Sunset Print",
        price: str = "10.00",
        file_size: int = 1 * MB,
        content_type: str = "application/pdf",
        store: bool = True,
    ) -> Product:
        key = f"test/{uuid.uuid4().hex}"
        product_file = ProductFile(
            storage_key=key,
            file_name=f"{title.lower().replace(' ', '-')}.pdf",
            content_type=content_type,
            file_type=FileType.from_content_type(content_type).value,
            file_size=file_size,
        )
        product = Product(title=title, price=Decimal(price))
        if product_file.file_type == FileType.PDF.value:
            product.pdf_file = product_file
        else:
            product.image_file = product_file
        session.add_all([product_file, product])
        await session.commit()

        if store:
            # Small payload regardless of the declared size
            storage.objects[key] = f"%PDF {title}".encode()
        return product

    return _make


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


@pytest.fixture
def razorpay_webhook():
    """Factory returning (body, headers) for a signed Razorpay event."""

    def _build(
        event: str,
        order_id: Optional[str] = None,
        event_id: Optional[str] = None,
        link_id: Optional[str] = None,
        payment_id: Optional[str] = None,
        secret: str = WEBHOOK_SECRET,
    ):
        notes = {"order_id": order_id} if order_id else []
        payload = {
            "entity": "event",
            "event": event,
            "payload": {
                "payment": {
                    "entity": {
                        "id": payment_id or f"pay_{uuid.uuid4().hex[:14]}",
                        "email": "buyer@example.com",
                        "notes": notes,
                    }
                },
            },
        }
        if link_id or order_id:
            payload["payload"]["payment_link"] = {
                "entity": {
                    "id": link_id or f"plink_{uuid.uuid4().hex[:14]}",
                    "reference_id": order_id,
                    "notes": notes,
                }
            }
        body = json.dumps(payload).encode()
        headers = {
            "X-Razorpay-Signature": sign(body, secret),
            "X-Razorpay-Event-Id": event_id or f"evt_{uuid.uuid4().hex[:14]}",
        }
        return body, headers

    return _build
