"""
Pytest configuration and shared test fixtures.

This module provides the test settings, an in-memory SQLite database with
tables created from the model metadata for every test, seeded users and a
service, a frozen clock, the order service wired to that database, and an
HTTP client with the API dependencies pointed at the same database.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Awaitable, Callable, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from gigmarket.api.deps import get_session_factory_dep, get_settings_dep
from gigmarket.api.rate_limit import limiter
from gigmarket.core.config import Settings
from gigmarket.database.base import generate_object_id
from gigmarket.database.connection import (
    create_engine,
    create_session_factory,
    init_models,
)
from gigmarket.database.models import Service, User
from gigmarket.database.models.order import Order
from gigmarket.main import create_app
from gigmarket.services.orders.service import OrderService
from gigmarket.services.orders.state_machine import Actor

START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

PACKAGES = [
    {
        "name": "Basic",
        "description": "Logo concept",
        "price": 50,
        "deliveryTime": 3,
        "revisions": 1,
    },
    {
        "name": "Standard",
        "description": "Three logo concepts",
        "price": 120,
        "deliveryTime": 5,
        "revisions": 2,
    },
    {
        "name": "Premium",
        "description": "Full brand kit",
        "price": 300,
        "deliveryTime": 10,
        "revisions": 0,
    },
]


class FrozenClock:
    """Clock returning a fixed instant until advanced."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


def actor_for(user: User) -> Actor:
    return Actor(user_id=user.id, is_admin=user.is_admin, is_seller=user.is_seller)


@pytest.fixture
def settings() -> Settings:
    """Settings for an isolated in-memory database without retry delays."""
    return Settings(
        environment="test",
        database_url="sqlite+aiosqlite:///:memory:",
        log_level="DEBUG",
        side_effect_retry_backoff=0.0,
    )


@pytest.fixture
async def engine(settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_engine(settings)
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(START)


@pytest.fixture
def make_user(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[User]]:
    """Factory committing a user row."""

    async def _make_user(name: str, **fields: Any) -> User:
        user = User(
            id=generate_object_id(),
            email=f"{name}@example.com",
            name=name.title(),
            purchased_services=[],
            **fields,
        )
        async with session_factory() as session, session.begin():
            session.add(user)
        return user

    return _make_user


@pytest.fixture
async def buyer(make_user) -> User:
    return await make_user("buyer")


@pytest.fixture
async def seller(make_user) -> User:
    return await make_user("seller", is_seller=True)


@pytest.fixture
async def admin(make_user) -> User:
    return await make_user("admin", is_admin=True)


@pytest.fixture
async def outsider(make_user) -> User:
    return await make_user("outsider")


@pytest.fixture
async def service(
    session_factory: async_sessionmaker[AsyncSession], seller: User
) -> Service:
    service = Service(
        id=generate_object_id(),
        seller_id=seller.id,
        title="Minimal logo design",
        pricing_packages=[dict(p) for p in PACKAGES],
        reviews=[],
    )
    async with session_factory() as session, session.begin():
        session.add(service)
    return service


@pytest.fixture
def order_service(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    clock: FrozenClock,
) -> OrderService:
    return OrderService(session_factory, settings, clock=clock)


@pytest.fixture
def place_order(
    order_service: OrderService, buyer: User, service: Service
) -> Callable[..., Awaitable[Order]]:
    """Place an order as the buyer, optionally driving it to ``status``."""

    async def _place_order(status: Optional[str] = None, **kwargs: Any) -> Order:
        result = await order_service.create_order(
            actor_for(buyer), service_id=service.id, **kwargs
        )
        order = result.order
        if status is None:
            return order

        seller_actor = Actor(user_id=order.seller_id, is_seller=True)
        buyer_actor = actor_for(buyer)
        steps = {
            "In Progress": [(seller_actor, "In Progress")],
            "Delivered": [
                (seller_actor, "In Progress"),
                (seller_actor, "Delivered"),
            ],
            "Completed": [
                (seller_actor, "In Progress"),
                (seller_actor, "Delivered"),
                (buyer_actor, "Completed"),
            ],
            "Cancelled": [(buyer_actor, "Cancelled")],
        }[status]
        for actor, target in steps:
            order = (await order_service.change_status(order.id, actor, target)).order
        return order

    return _place_order


def make_token(
    settings: Settings,
    user_id: str,
    token_type: str = "access",
    expires_in: timedelta = timedelta(minutes=15),
) -> str:
    """Mint a token the way the identity service does."""
    now = datetime.now(timezone.utc)
    claims = {
        "sub": user_id,
        "type": token_type,
        "iat": now,
        "exp": now + expires_in,
    }
    return jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)


@pytest.fixture
def mint_token(settings: Settings) -> Callable[..., str]:
    def _mint_token(user_id: str, **kwargs: Any) -> str:
        return make_token(settings, user_id, **kwargs)

    return _mint_token


@pytest.fixture
def auth_headers(mint_token) -> Callable[[User], dict[str, str]]:
    def _auth_headers(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {mint_token(user.id)}"}

    return _auth_headers


@pytest.fixture
async def async_client(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncClient, None]:
    """
    Create an asynchronous client for the FastAPI application.

    Settings and the session factory are overridden so requests hit the
    per-test database. Rate limiting is disabled for the duration.
    """
    app = create_app(settings)
    app.dependency_overrides[get_settings_dep] = lambda: settings
    app.dependency_overrides[get_session_factory_dep] = lambda: session_factory

    limiter.enabled = False
    try:
        async with AsyncClient(
            transport=ASGITransport(app=app), base_url="http://test"
        ) as client:
            yield client
    finally:
        limiter.enabled = True
