import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("HTTPS_ONLY", "false")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from airpurifier.database import Base, enable_sqlite_foreign_keys, get_db
from airpurifier.extensions import limiter
from airpurifier.main import app
from airpurifier.models.user import User
from airpurifier.services.auth import hash_password, issue_tokens

PASSWORD = "secret123"


@pytest.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_foreign_keys(eng)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    limiter.enabled = False
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


async def _make_user(session_factory, username: str, is_admin: bool) -> User:
    async with session_factory() as session:
        user = User(
            username=username,
            password_hash=hash_password(PASSWORD),
            is_admin=is_admin,
            is_active=True,
        )
        session.add(user)
        await session.commit()
        await session.refresh(user)
        return user


def auth_headers(user: User) -> dict:
    access, _ = issue_tokens(user)
    return {"Authorization": f"Bearer {access}"}


@pytest.fixture
async def admin_user(session_factory):
    return await _make_user(session_factory, "admin", True)


@pytest.fixture
async def regular_user(session_factory):
    return await _make_user(session_factory, "alice", False)


@pytest.fixture
async def other_user(session_factory):
    return await _make_user(session_factory, "bob", False)


@pytest.fixture
def admin_headers(admin_user):
    return auth_headers(admin_user)


@pytest.fixture
def user_headers(regular_user):
    return auth_headers(regular_user)


@pytest.fixture
def other_headers(other_user):
    return auth_headers(other_user)


@pytest.fixture
def headers_for():
    return auth_headers
