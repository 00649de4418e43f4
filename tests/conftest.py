"""Shared fixtures: in-memory database, key service and HTTP client."""

import random
from datetime import datetime, timedelta

import pytest
from cryptography.fernet import Fernet
from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from keypool.core.config import Settings
from keypool.core.keys import build_key_service
from keypool.core.security.encryption import KeyEncryptionService
from keypool.core.storage.database import Base, init_db


class FakeClock:
    """Settable clock for cooldown tests."""

    def __init__(self, now: datetime = datetime(2024, 1, 1, 12, 0, 0)):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
async def engine():
    """In-memory SQLite engine with all tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(engine)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        master_encryption_key=Fernet.generate_key().decode(),
        known_providers="openai,anthropic",
        run_migration_on_startup=False,
    )


@pytest.fixture
def encryption(test_settings):
    return KeyEncryptionService(test_settings.master_encryption_key)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def key_service(session_factory, test_settings, encryption, clock):
    return build_key_service(
        session_factory,
        test_settings,
        encryption=encryption,
        clock=clock,
        rng=random.Random(42),
    )


@pytest.fixture
def app(key_service):
    """FastAPI app with the key routes and the test key service."""
    from keypool.api.routes import keys, settings as settings_routes

    app = FastAPI()
    app.include_router(settings_routes.router, prefix="/api/v1")
    app.include_router(keys.router, prefix="/api/v1")
    app.state.key_service = key_service
    return app


@pytest.fixture
async def client(app):
    """Create async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
