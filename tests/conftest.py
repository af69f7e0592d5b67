"""Shared test fixtures for warden."""

from collections.abc import AsyncIterator

import pytest
from cryptography.fernet import Fernet
from fakeredis import FakeServer
from fakeredis.aioredis import FakeRedis
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from warden.core.app import create_app
from warden.crypto.token_codec import TokenCodec
from warden.db.base import BaseEntity
from warden.db.engine import get_session
from warden.db.models_user import UserEntity
from warden.keys.manager import KeyLifecycleManager
from warden.keys.store import KeyStore
from warden.sessions.lifecycle import SessionLifecycleEngine

FERNET_KEY = Fernet.generate_key().decode()
TEST_ISSUER = "warden-test"
INTERNAL_TOKEN = "internal-test-secret"
ACCESS_TTL = 900
REFRESH_TTL = 604_800
MAX_KEYS = 5
MAX_SESSIONS = 5


@pytest.fixture(autouse=True)
def _set_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Set environment variables for test settings."""
    monkeypatch.setenv("AUTH_ISSUER", TEST_ISSUER)
    monkeypatch.setenv("AUTH_SIGNING_KEY_ENCRYPTION_KEY", FERNET_KEY)
    monkeypatch.setenv("AUTH_INTERNAL_TOKEN", INTERNAL_TOKEN)
    monkeypatch.setenv("AUTH_LOG_JSON", "false")


@pytest.fixture
async def db_session() -> AsyncIterator[AsyncSession]:
    """Create an in-memory SQLite async session for tests."""
    engine = create_async_engine("sqlite+aiosqlite://", echo=False)

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, _rec) -> None:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(BaseEntity.metadata.create_all)

    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session

    await engine.dispose()


@pytest.fixture
def redis_server() -> FakeServer:
    """One isolated in-memory Redis per test."""
    return FakeServer()


@pytest.fixture
async def fake_redis(redis_server: FakeServer) -> AsyncIterator[FakeRedis]:
    client = FakeRedis(server=redis_server, decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def key_store(fake_redis: FakeRedis) -> KeyStore:
    return KeyStore(fake_redis)


@pytest.fixture
def key_manager(key_store: KeyStore) -> KeyLifecycleManager:
    return KeyLifecycleManager(key_store, fernet_key=FERNET_KEY, max_keys=MAX_KEYS)


@pytest.fixture
def token_codec(key_manager: KeyLifecycleManager) -> TokenCodec:
    return TokenCodec(
        key_manager,
        issuer=TEST_ISSUER,
        access_ttl=ACCESS_TTL,
        refresh_ttl=REFRESH_TTL,
    )


@pytest.fixture
def lifecycle(token_codec: TokenCodec) -> SessionLifecycleEngine:
    return SessionLifecycleEngine(token_codec, max_sessions=MAX_SESSIONS)


@pytest.fixture
async def user(db_session: AsyncSession) -> UserEntity:
    """A persisted user that sessions can be issued to."""
    entity = UserEntity(id="user-1", email="ada@example.com", name="Ada")
    db_session.add(entity)
    await db_session.commit()
    return entity


@pytest.fixture
async def client(
    db_session: AsyncSession, key_store: KeyStore
) -> AsyncIterator[AsyncClient]:
    """Create an httpx test client with DB session and key store overrides."""
    app = create_app(key_store=key_store)

    async def _override_session() -> AsyncIterator[AsyncSession]:
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_session] = _override_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def fernet_key() -> str:
    return FERNET_KEY


@pytest.fixture
def internal_headers() -> dict[str, str]:
    """Authorization header carrying the privileged-route secret."""
    return {"Authorization": f"Bearer {INTERNAL_TOKEN}"}
