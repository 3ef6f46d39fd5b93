"""Pytest configuration and fixtures."""

from datetime import date, timedelta
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from app.auth import create_access_token
from app.main import app
from app.models.service import Service
from app.models.user import User, UserRole
from app.models.vehicle import Vehicle
from app.services import database
from app.services.chat_completer import KeywordChatCompleter
from app.services.chat_pipeline import ChatPipeline
from app.services.chat_sessions import InMemorySessionStore
from app.services.database import get_db
from app.services.notifications import NotificationHub
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.pool import StaticPool

TEST_DATABASE_URL = "sqlite+aiosqlite://"


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Fresh in-memory database per test."""
    await database.init_db(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    yield database.engine
    await database.close_db()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with database.get_session_maker()() as session:
        yield session


@pytest.fixture
def hub() -> NotificationHub:
    return NotificationHub()


@pytest.fixture
def session_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def chat_pipeline(session_store, hub) -> ChatPipeline:
    return ChatPipeline(KeywordChatCompleter(), session_store, hub=hub)


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession, hub, chat_pipeline) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.state.hub = hub
    app.state.completer = chat_pipeline.completer
    app.state.chat_pipeline = chat_pipeline

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


async def _add(db: AsyncSession, obj):
    """Persist ``obj`` and detach it so later loads go through the eager loaders."""
    db.add(obj)
    await db.commit()
    db.expunge(obj)
    return obj


@pytest_asyncio.fixture
async def admin_user(db_session: AsyncSession) -> User:
    return await _add(
        db_session, User(email="admin@autocure.net", first_name="Dana", last_name="Reyes", role=UserRole.ADMIN)
    )


@pytest_asyncio.fixture
async def staff_user(db_session: AsyncSession) -> User:
    return await _add(
        db_session, User(email="tech@autocure.net", first_name="Sam", last_name="Okafor", role=UserRole.STAFF)
    )


@pytest_asyncio.fixture
async def customer(db_session: AsyncSession) -> User:
    return await _add(
        db_session,
        User(
            email="alice@example.com",
            phone="+1-905-555-0101",
            first_name="Alice",
            last_name="Martin",
            role=UserRole.CUSTOMER,
        ),
    )


@pytest_asyncio.fixture
async def other_customer(db_session: AsyncSession) -> User:
    return await _add(
        db_session,
        User(email="bob@example.com", first_name="Bob", last_name="Singh", role=UserRole.CUSTOMER),
    )


@pytest_asyncio.fixture
async def vehicle(db_session: AsyncSession, customer: User) -> Vehicle:
    """Customer's Honda, recently serviced."""
    return await _add(
        db_session,
        Vehicle(
            owner_id=customer.id,
            vin="1HGBH41JXMN109186",
            year=2021,
            make="Honda",
            model="Accord",
            mileage=25000,
            license_plate="ABC123",
            last_service_date=date.today() - timedelta(days=30),
        ),
    )


@pytest_asyncio.fixture
async def bmw(db_session: AsyncSession, customer: User) -> Vehicle:
    return await _add(
        db_session,
        Vehicle(
            owner_id=customer.id,
            vin="WBA8E9C50GK123456",
            year=2016,
            make="BMW",
            model="328i",
            mileage=112000,
        ),
    )


@pytest_asyncio.fixture
async def oil_change(db_session: AsyncSession) -> Service:
    return await _add(
        db_session,
        Service(
            name="Synthetic Oil Change",
            category="oil-change",
            description="Full synthetic oil and filter change",
            base_price=Decimal("89.99"),
            estimated_duration=45,
        ),
    )


@pytest_asyncio.fixture
async def ac_recharge(db_session: AsyncSession) -> Service:
    return await _add(
        db_session,
        Service(
            name="A/C Recharge",
            category="air-conditioning",
            description="Evacuate and recharge the A/C system",
            base_price=Decimal("149.99"),
            estimated_duration=60,
        ),
    )


@pytest.fixture
def auth_headers():
    """Build a bearer header for a user."""

    def build(user: User) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}

    return build


@pytest.fixture
def next_week() -> date:
    return date.today() + timedelta(days=7)
