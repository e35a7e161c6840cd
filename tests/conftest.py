"""Shared test fixtures.

Tests run against an in-memory SQLite database created fresh for every
test, with JWTs signed by a throwaway HS256 secret.
"""

from __future__ import annotations

import os
import tempfile
from collections.abc import AsyncGenerator, Callable, Generator
from datetime import datetime, timedelta, timezone

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

TEST_JWT_SECRET = "bookpost-test-signing-secret-0123456789abcdef"


def _ensure_test_env() -> None:
    """Point settings at SQLite and a generated HS256 key file."""
    key_dir = tempfile.mkdtemp(prefix="bookpost_test_keys_")
    key_path = os.path.join(key_dir, "jwt_secret.key")
    with open(key_path, "w") as fh:
        fh.write(TEST_JWT_SECRET)
    os.environ["BOOKPOST_DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
    os.environ["BOOKPOST_JWT_ALGORITHM"] = "HS256"
    os.environ["BOOKPOST_JWT_PUBLIC_KEY_PATH"] = key_path
    os.environ["BOOKPOST_LOG_FORMAT"] = "console"
    os.environ["BOOKPOST_LOG_LEVEL"] = "WARNING"


_ensure_test_env()

from bookpost.auth.jwt import reset_keys  # noqa: E402
from bookpost.config import get_settings  # noqa: E402
from bookpost.database import close_db, get_engine, get_session, init_db  # noqa: E402
from bookpost.db.base import Base  # noqa: E402
from bookpost.db.models import User, UserFollowing  # noqa: E402
from bookpost.gamification.seed import seed_badges  # noqa: E402
from bookpost.main import create_app  # noqa: E402


@pytest.fixture(autouse=True)
def _fresh_settings() -> Generator[None, None, None]:
    """Drop cached settings and keys so per-test env overrides take effect."""
    get_settings.cache_clear()
    reset_keys()
    yield
    get_settings.cache_clear()
    reset_keys()


@pytest.fixture
def override_settings(monkeypatch: pytest.MonkeyPatch) -> Callable[..., None]:
    """Override settings for one test, e.g. ``override_settings(default_timezone="Asia/Tokyo")``."""

    def _apply(**values: object) -> None:
        for key, value in values.items():
            monkeypatch.setenv(f"BOOKPOST_{key.upper()}", str(value))
        get_settings.cache_clear()

    return _apply


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Fresh schema with the default badge catalog seeded."""
    settings = get_settings()
    await init_db(settings.database_url)
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async for session in get_session():
        await seed_badges(session)
        yield session
        await session.close()
        break

    await close_db()


@pytest_asyncio.fixture
async def make_user(db_session: AsyncSession) -> Callable[..., object]:
    """Create a user mirror row: ``await make_user(1, timezone="Asia/Tokyo")``."""

    async def _make(
        user_id: int,
        timezone_name: str | None = None,
        display_name: str | None = None,
        created_at: datetime | None = None,
    ) -> User:
        user = User(
            id=user_id,
            display_name=display_name or f"reader{user_id}",
            timezone=timezone_name,
            created_at=created_at or datetime(2025, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=user_id),
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _make


@pytest_asyncio.fixture
async def follow(db_session: AsyncSession) -> Callable[..., object]:
    """Record a follow edge: ``await follow(follower_id, following_id)``."""

    async def _follow(follower_id: int, following_id: int) -> None:
        db_session.add(UserFollowing(follower_id=follower_id, following_id=following_id))
        await db_session.commit()

    return _follow


@pytest.fixture
def make_token() -> Callable[..., str]:
    """Sign an access token for a user id the way the auth service does."""

    def _make(user_id: int | str, token_type: str = "access", **claims: object) -> str:
        now = datetime.now(timezone.utc)
        payload: dict[str, object] = {
            "sub": str(user_id),
            "type": token_type,
            "iss": get_settings().jwt_issuer,
            "iat": now,
            "exp": now + timedelta(minutes=15),
        }
        for key, value in claims.items():
            if value is None:
                payload.pop(key, None)
            else:
                payload[key] = value
        return jwt.encode(payload, TEST_JWT_SECRET, algorithm="HS256")

    return _make


@pytest.fixture
def auth_headers(make_token: Callable[..., str]) -> Callable[[int], dict[str, str]]:
    def _headers(user_id: int) -> dict[str, str]:
        return {"Authorization": f"Bearer {make_token(user_id)}"}

    return _headers


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the app, sharing the test database."""
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
