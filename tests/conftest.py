"""Pytest configuration and fixtures."""

import os
import time
import uuid
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment before importing app
os.environ["TESTING"] = "1"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["DB_AUTO_CREATE"] = "0"
os.environ["STATE_STORE_BACKEND"] = "memory"
os.environ["PROVIDER_RATE_LIMIT_BACKEND"] = "memory"
os.environ["RATE_LIMIT_PER_MINUTE"] = "1000"
os.environ["SUPABASE_JWT_SECRET"] = "test-jwt-secret"
os.environ["TIKTOK_CLIENT_KEY"] = "test-client-key"
os.environ["TIKTOK_CLIENT_SECRET"] = "test-client-secret"
os.environ["API_URL"] = "https://api.weaver.test/"
os.environ["FRONTEND_URL"] = "https://app.weaver.test"

from weaver.db.base import Base
from weaver.db.session import get_db
from weaver.main import app
from weaver.models import ConnectedAccount
from weaver.oauth.state_store import MemoryOAuthStateStore, get_state_store

# Test database URL (in-memory SQLite for speed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TEST_USER_ID = "3f6c1d2e-0000-4000-8000-000000000001"
OTHER_USER_ID = "3f6c1d2e-0000-4000-8000-000000000002"


def make_user_token(user_id: str = TEST_USER_ID, audience: str = "authenticated", **claims) -> str:
    """Create a dashboard session token like the backend-as-a-service issues."""
    payload = {
        "sub": user_id,
        "aud": audience,
        "email": "creator@example.com",
        "exp": int(time.time()) + 3600,
        **claims,
    }
    return jwt.encode(payload, "test-jwt-secret", algorithm="HS256")


@pytest_asyncio.fixture
async def db_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine):
    """Session factory bound to the test engine."""
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def state_store() -> MemoryOAuthStateStore:
    """Fresh OAuth state store per test."""
    return MemoryOAuthStateStore()


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession, state_store: MemoryOAuthStateStore
) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client with test database and state store."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_state_store] = lambda: state_store

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="https://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> dict[str, str]:
    """Authorization header for the test user."""
    return {"Authorization": f"Bearer {make_user_token()}"}


@pytest.fixture
def other_auth_headers() -> dict[str, str]:
    """Authorization header for a second user."""
    return {"Authorization": f"Bearer {make_user_token(OTHER_USER_ID)}"}


@pytest.fixture
def tiktok_user_payload():
    """TikTok /user/info/ response body."""
    return {
        "data": {
            "user": {
                "open_id": "tiktok-open-id-123",
                "union_id": "tiktok-union-id-123",
                "avatar_url": "https://p16.tiktokcdn.com/avatar.jpeg",
                "display_name": "Test Creator",
                "username": "testcreator",
                "is_verified": False,
                "profile_deep_link": "https://vm.tiktok.com/testcreator",
                "follower_count": 1200,
                "following_count": 80,
                "likes_count": 45000,
                "video_count": 37,
            }
        },
        "error": {"code": "ok", "message": "", "log_id": "20261019000000"},
    }


@pytest.fixture
def tiktok_token_payload():
    """TikTok /oauth/token/ response body."""
    return {
        "access_token": "act.test-access-token",
        "expires_in": 86400,
        "open_id": "tiktok-open-id-123",
        "refresh_expires_in": 31536000,
        "refresh_token": "rft.test-refresh-token",
        "scope": "user.info.basic,user.info.profile,user.info.stats,video.list",
        "token_type": "Bearer",
    }


@pytest_asyncio.fixture
async def make_account(db_session: AsyncSession):
    """Insert a connected TikTok account directly."""

    async def _make_account(
        user_id: str = TEST_USER_ID,
        access_token: str | None = None,
        refresh_token: str | None = "rft.stored-refresh-token",
        expires_in: timedelta = timedelta(hours=12),
        platform_user_id: str = "tiktok-open-id-123",
    ) -> ConnectedAccount:
        account = ConnectedAccount(
            user_id=user_id,
            platform="tiktok",
            platform_user_id=platform_user_id,
            platform_username="testcreator",
            display_name="Test Creator",
            access_token=access_token or f"act.{uuid.uuid4().hex}",
            refresh_token=refresh_token,
            token_expires_at=datetime.now(UTC) + expires_in,
            scopes=["user.info.basic", "video.list"],
            account_metadata={"is_verified": False},
        )
        db_session.add(account)
        await db_session.commit()
        return account

    return _make_account
