# tests/conftest.py
import hashlib
import os

# Configuration is read at import time, so the environment goes first
os.environ["SECRET_KEY"] = "test-secret-key-for-vaultdrop-suite"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["PAYMENT_PROVIDER"] = "mock"
os.environ["RATE_LIMIT_PER_MINUTE"] = "100000"
os.environ["CLAIM_RATE_LIMIT_PER_MINUTE"] = "100000"
os.environ.pop("PAYMENT_WEBHOOK_SECRET", None)

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from vaultdrop.core.config import settings
from vaultdrop.core.db import Base, get_db
from vaultdrop.core.security import create_access_token
from vaultdrop.main import app as fastapi_app
from vaultdrop.modules.auth.models import User
from vaultdrop.modules.payments import service as payment_service
from vaultdrop.modules.payments.gateway import MockPaymentGateway, PaymentEvent, get_payment_gateway
from vaultdrop.modules.products.schemas import ProductCreate
from vaultdrop.modules.storage.blob_store import MemoryBlobStore, get_blob_store
from vaultdrop.modules.transfers import service as transfer_service
from vaultdrop.modules.uploads import service as upload_service

TEST_DB_URL = "sqlite+aiosqlite://"

settings.STORE_RETRY_BASE_DELAY = 0

@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()

@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session

@pytest.fixture
def store():
    return MemoryBlobStore()

@pytest.fixture
def gateway():
    return MockPaymentGateway("https://checkout.example.com")

@pytest_asyncio.fixture
async def client(session_factory, store, gateway):
    async def _get_db_override():
        async with session_factory() as session:
            yield session

    fastapi_app.dependency_overrides[get_db] = _get_db_override
    fastapi_app.dependency_overrides[get_blob_store] = lambda: store
    fastapi_app.dependency_overrides[get_payment_gateway] = lambda: gateway
    try:
        async with AsyncClient(transport=ASGITransport(app=fastapi_app), base_url="http://test") as ac:
            yield ac
    finally:
        fastapi_app.dependency_overrides.clear()

async def _create_user(db, email: str) -> User:
    user = User(email=email, display_name=email.split("@")[0], is_active=True)
    db.add(user)
    await db.commit()
    return user

@pytest_asyncio.fixture
async def seller(db):
    return await _create_user(db, "seller@example.com")

@pytest_asyncio.fixture
async def buyer(db):
    return await _create_user(db, "buyer@example.com")

@pytest_asyncio.fixture
async def stranger(db):
    return await _create_user(db, "stranger@example.com")

@pytest.fixture
def auth_headers():
    def _headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}
    return _headers

def sample_content(size: int) -> bytes:
    pattern = bytes(range(256))
    return (pattern * (size // len(pattern) + 1))[:size]

@pytest.fixture
def content_factory():
    return sample_content

@pytest.fixture
def ready_product(db, store):
    """Upload and finalize a product through the upload service."""
    async def _ready(owner, content: bytes = None, chunk_size: int = 1024, price: float = 10.0, required_inputs=None):
        content = content if content is not None else sample_content(2500)
        data = ProductCreate(
            title="Field Guide",
            content_type="application/pdf",
            size=len(content),
            content_hash=hashlib.sha256(content).hexdigest(),
            price=price,
            required_inputs=required_inputs or [],
        )
        session = await upload_service.create_product_upload(db, owner.id, data, chunk_size)
        upload_id = session.upload_id
        for index in range(session.expected_chunks):
            piece = content[index * chunk_size:(index + 1) * chunk_size]
            await upload_service.upload_chunk(db, store, owner.id, upload_id, index, piece)
        return await upload_service.complete_upload(db, store, owner.id, upload_id)
    return _ready

@pytest.fixture
def paid_transfer(db, gateway, ready_product):
    """offer -> invoice -> successful payment event."""
    async def _paid(owner, recipient, product=None, buyer_inputs=None):
        product = product or await ready_product(owner)
        transfer = await transfer_service.create_offer(db, owner.id, product.id, recipient.id)
        await transfer_service.create_invoice(db, gateway, recipient.id, transfer_id=transfer.id, buyer_inputs=buyer_inputs)
        await payment_service.handle_payment_event(
            db, PaymentEvent(event_type="payment.succeeded", transfer_id=transfer.id, payment_ref="pi_test_123")
        )
        return product, transfer
    return _paid
