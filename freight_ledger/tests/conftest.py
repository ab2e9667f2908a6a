"""
Centralized Test Configuration.
"""

import pytest
from datetime import datetime
from decimal import Decimal
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from freight_ledger.app.main import app
from freight_ledger.app.db.session import get_db, Base
from freight_ledger.app.api.v1.deps import get_currency_converter
import freight_ledger.app.core.redis_client as redis_client_module
from freight_ledger.app.models.branch import Branch
from freight_ledger.app.models.customer import Customer
from freight_ledger.app.models.shipment import Shipment
from freight_ledger.app.models.financial_transaction import FinancialTransaction
from freight_ledger.app.models.finance_enums import (
    CustomerStatus,
    PaymentType,
    ShipmentStatus,
    TransactionStatus,
    TransactionType,
)

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Event handler to enable foreign keys for SQLite
from sqlalchemy import event
from sqlalchemy.pool import Pool

@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)).lower():
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}

    async def ping(self):
        return True

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self.store[key] = value
        return True

    async def delete(self, key):
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    async def flushdb(self):
        self.store = {}


@pytest.fixture(scope="session")
def redis_client_session():
    return MockRedis()


@pytest.fixture(scope="session", autouse=True)
def apply_overrides(redis_client_session):
    """Apply overrides once for the session."""
    original_client = redis_client_module.redis_client
    redis_client_module.redis_client = redis_client_session

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield

    app.dependency_overrides = {}
    redis_client_module.redis_client = original_client


@pytest.fixture(autouse=True)
async def setup_database(redis_client_session):
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await redis_client_session.flushdb()
    get_currency_converter.cache_clear()

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


# Factories

@pytest.fixture
def make_branch(db_session):
    counter = {"n": 0}

    async def _make(**kwargs):
        counter["n"] += 1
        branch = Branch(
            name=kwargs.pop("name", f"Branch {counter['n']}"),
            code=kwargs.pop("code", f"BR{counter['n']:03d}"),
            **kwargs
        )
        db_session.add(branch)
        await db_session.commit()
        return branch

    return _make


@pytest.fixture
def make_customer(db_session):
    async def _make(**kwargs):
        customer = Customer(
            name=kwargs.pop("name", "Acme Traders"),
            credit_limit=Decimal(str(kwargs.pop("credit_limit", "0"))),
            current_balance=Decimal(str(kwargs.pop("current_balance", "0"))),
            payment_terms=kwargs.pop("payment_terms", "net30"),
            status=kwargs.pop("status", CustomerStatus.ACTIVE),
            **kwargs
        )
        db_session.add(customer)
        await db_session.commit()
        return customer

    return _make


@pytest.fixture
def make_shipment(db_session):
    counter = {"n": 0}

    async def _make(customer, **kwargs):
        counter["n"] += 1
        amounts = {
            name: Decimal(str(kwargs.pop(name, "0")))
            for name in (
                "price", "base_rate", "weight_charge", "surcharges", "insurance_amount",
                "tax_amount", "shipping_cost", "total_amount", "cod_amount",
            )
        }
        shipment = Shipment(
            tracking_number=kwargs.pop("tracking_number", f"TRK{counter['n']:06d}"),
            customer_id=customer.id,
            status=kwargs.pop("status", ShipmentStatus.PENDING),
            payment_type=kwargs.pop("payment_type", PaymentType.PREPAID),
            **amounts,
            **kwargs
        )
        db_session.add(shipment)
        await db_session.commit()
        return shipment

    return _make


@pytest.fixture
def make_transaction(db_session):
    async def _make(amount, **kwargs):
        transaction = FinancialTransaction(
            transaction_type=kwargs.pop("transaction_type", TransactionType.PAYMENT),
            status=kwargs.pop("status", TransactionStatus.COMPLETED),
            amount=Decimal(str(amount)),
            currency=kwargs.pop("currency", "USD"),
            payment_method=kwargs.pop("payment_method", "cash"),
            completed_at=kwargs.pop("completed_at", datetime(2026, 3, 15, 12, 0)),
            **kwargs
        )
        db_session.add(transaction)
        await db_session.commit()
        return transaction

    return _make


@pytest.fixture
def session_factory():
    """Independent sessions, for simulating separate requests."""
    return TestingSessionLocal
