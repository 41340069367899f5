"""Pytest fixtures for AltQ tests."""

import os

# Must be set before anything imports altq.config / altq.database
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENABLE_BACKGROUND_JOBS"] = "false"

import uuid
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import altq.models  # noqa: F401  (register models on Base.metadata)
from altq.auth.jwt import create_access_token
from altq.config import Settings
from altq.database import Base, get_db
from altq.models import Offer, Salon, Service, User, UserRole
from altq.services.runtime import build_runtime


class FakeClock:
    """Controllable clock returning naive UTC datetimes."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeSocket:
    """Stand-in for a WebSocket: records what is sent to it."""

    def __init__(self, fail: bool = False):
        self.sent: list[dict] = []
        self.closed: tuple[int, str] | None = None
        self.fail = fail

    async def send_json(self, data: dict) -> None:
        if self.fail:
            raise RuntimeError("socket is closed")
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed = (code, reason)

    def types(self) -> list[str]:
        return [m["type"] for m in self.sent]


@pytest.fixture
def settings() -> Settings:
    return Settings(enable_background_jobs=False)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 2, 10, 0, 0))


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def runtime(settings, session_maker, clock):
    return build_runtime(settings, session_maker, clock=clock)


@pytest.fixture
def queue_service(runtime):
    return runtime.queue_service


@pytest.fixture
def sweeper(runtime):
    return runtime.sweeper


# =============================================================================
# Data factories
# =============================================================================

@pytest.fixture
def make_user(db, clock):
    async def _make_user(role: UserRole = UserRole.CUSTOMER, name: str = "Test User", **fields) -> User:
        values = {
            "id": uuid.uuid4(),
            "email": f"{uuid.uuid4().hex[:10]}@example.com",
            "name": name,
            "phone": "+4930000000",
            "role": role.value,
            "loyalty_points": 0,
            "salon_loyalty_points": {},
            "is_active": True,
            "created_at": clock(),
        }
        values.update(fields)
        user = User(**values)
        db.add(user)
        await db.commit()
        return user

    return _make_user


@pytest.fixture
async def owner(make_user) -> User:
    return await make_user(UserRole.SALON_OWNER, name="Olga Owner")


@pytest.fixture
async def customer(make_user) -> User:
    return await make_user(UserRole.CUSTOMER, name="Carl Customer")


@pytest.fixture
async def salon(db, owner, clock) -> Salon:
    salon = Salon(
        id=uuid.uuid4(),
        owner_id=owner.id,
        name="Kiez Cuts",
        address="Oranienstrasse 25, Berlin",
        latitude=52.5013,
        longitude=13.4183,
        salon_type="unisex",
        created_at=clock(),
    )
    db.add(salon)
    await db.commit()
    return salon


@pytest.fixture
def make_service(db, clock):
    async def _make_service(salon: Salon, name: str, duration: int, price: str, is_active: bool = True) -> Service:
        service = Service(
            id=uuid.uuid4(),
            salon_id=salon.id,
            name=name,
            duration=duration,
            price=Decimal(price),
            is_active=is_active,
            created_at=clock(),
        )
        db.add(service)
        await db.commit()
        return service

    return _make_service


@pytest.fixture
async def haircut(make_service, salon) -> Service:
    return await make_service(salon, "Haircut", 30, "25.00")


@pytest.fixture
async def beard_trim(make_service, salon) -> Service:
    return await make_service(salon, "Beard trim", 15, "12.00")


@pytest.fixture
def make_offer(db, clock):
    async def _make_offer(salon: Salon, discount: int, valid_for: timedelta = timedelta(days=1)) -> Offer:
        offer = Offer(
            id=uuid.uuid4(),
            salon_id=salon.id,
            title=f"{discount}% off",
            discount=discount,
            valid_until=clock() + valid_for,
            is_active=True,
            created_at=clock(),
        )
        db.add(offer)
        await db.commit()
        return offer

    return _make_offer


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id, role=user.role)}"}


# =============================================================================
# HTTP client
# =============================================================================

@pytest.fixture
async def client(session_maker, runtime):
    """httpx client against the app, backed by the in-memory database."""
    from altq.main import app

    async def override_get_db():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    previous_runtime = app.state.runtime
    app.dependency_overrides[get_db] = override_get_db
    app.state.runtime = runtime
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
    app.state.runtime = previous_runtime
