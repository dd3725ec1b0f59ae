"""
Shared fixtures.

Each test gets its own file-backed SQLite database so the real coordinator
runs with real transactions, including concurrent joins on separate
connections.
"""

from __future__ import annotations

import os

os.environ.setdefault("TEAMUP_DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("TEAMUP_PRESENCE_BACKEND", "local")
os.environ.setdefault("TEAMUP_SECRET_KEY", "test-secret-key-0123456789-abcdefghijklmnopqrstuvwxyz")
os.environ.setdefault("TEAMUP_LOG_FORMAT", "text")

from unittest.mock import AsyncMock, patch  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from teamup.core.database import build_engine, init_db  # noqa: E402
from teamup.models.user import User  # noqa: E402
from teamup.services.teams import ensure_teams_seeded  # noqa: E402
from teamup.services.users import register_user  # noqa: E402
from teamup_shared.schemas.common import RoleCategory  # noqa: E402
from teamup_shared.schemas.users import RegisterRequest  # noqa: E402


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "teamup.db"


@pytest.fixture
async def engine(db_path):
    eng = build_engine(f"sqlite+aiosqlite:///{db_path}")
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
async def seeded(session_factory):
    await ensure_teams_seeded(session_factory)
    return session_factory


@pytest.fixture
def make_user(session_factory):
    """Factory: register an attendee and return the committed User."""
    counter = {"n": 0}

    async def _make(name: str | None = None, role: RoleCategory = RoleCategory.RND) -> User:
        counter["n"] += 1
        name = name or f"User {counter['n']}"
        async with session_factory() as s:
            user = await register_user(
                s,
                RegisterRequest(
                    name=name,
                    identifier=f"user{counter['n']}@example.com",
                    role_category=role,
                ),
            )
            await s.commit()
        return user

    return _make


@pytest.fixture
def mock_redis():
    """Redis stand-in for revocation checks."""
    redis = AsyncMock()
    redis.exists.return_value = 0
    return redis


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


def _override_session(factory):
    async def _get_session():
        async with factory() as s:
            try:
                yield s
                await s.commit()
            except Exception:
                await s.rollback()
                raise

    return _get_session


@pytest.fixture
def app(session_factory, mock_redis):
    """The FastAPI app wired to the per-test database and in-process realtime."""
    from teamup.core.database import get_session, get_session_factory
    from teamup.core.fanout import LocalFanout
    from teamup.core.presence import LocalPresenceRegistry, PresenceBroadcaster
    from teamup.main import app as fastapi_app

    fastapi_app.dependency_overrides[get_session] = _override_session(session_factory)
    fastapi_app.dependency_overrides[get_session_factory] = lambda: session_factory
    fastapi_app.state.fanout = LocalFanout()
    fastapi_app.state.presence = PresenceBroadcaster(LocalPresenceRegistry(), ping_interval=3600)

    with patch("teamup.core.auth.get_redis", AsyncMock(return_value=mock_redis)):
        yield fastapi_app

    fastapi_app.dependency_overrides.clear()


@pytest.fixture
async def client(app, seeded):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
        yield ac


@pytest.fixture
def register(client):
    """Factory: register through the API and return (user_json, auth headers)."""
    counter = {"n": 0}

    async def _register(name: str | None = None, role: str = "RND"):
        counter["n"] += 1
        response = await client.post(
            "/auth/register",
            json={
                "name": name or f"Attendee {counter['n']}",
                "identifier": f"attendee{counter['n']}@example.com",
                "role_category": role,
            },
        )
        assert response.status_code == 200, response.text
        body = response.json()
        return body["user"], {"Authorization": f"Bearer {body['token']}"}

    return _register
