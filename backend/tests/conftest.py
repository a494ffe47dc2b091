import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("APP_ENV", "test")

import itertools  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

from user_directory.core.database import Base, get_db  # noqa: E402
from user_directory.core.security import create_access_token  # noqa: E402
from user_directory.main import app  # noqa: E402
from user_directory.models.user import User, UserRole  # noqa: E402
from user_directory.schemas.user import UserCreate  # noqa: E402
from user_directory.services.user_service import UserService  # noqa: E402

_counter = itertools.count(1)

DEFAULT_PASSWORD = "Secret#123"


def build_user_create(**overrides) -> UserCreate:
    n = next(_counter)
    data = {
        "username": f"user{n}",
        "email": f"user{n}@example.com",
        "password": DEFAULT_PASSWORD,
        "first_name": "Test",
        "last_name": f"User{n}",
    }
    data.update(overrides)
    return UserCreate(**data)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'directory.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def service(db):
    return UserService(db)


@pytest.fixture
def user_data():
    return build_user_create


@pytest_asyncio.fixture
async def seed(session_factory):
    """Create and commit a user in its own session."""

    async def _seed(**overrides) -> User:
        async with session_factory() as session:
            user = await UserService(session).create_user(build_user_create(**overrides))
            await session.commit()
            return user

    return _seed


@pytest_asyncio.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(user: User) -> dict[str, str]:
        token = create_access_token({"sub": str(user.id), "role": user.role.value})
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest_asyncio.fixture
async def admin(seed):
    return await seed(username="admin", email="admin@example.com", role=UserRole.ADMIN)


@pytest_asyncio.fixture
async def manager(seed):
    return await seed(username="manager", email="manager@example.com", role=UserRole.MANAGER)


@pytest_asyncio.fixture
async def regular(seed):
    return await seed(
        username="jdoe",
        email="john.doe@example.com",
        first_name="John",
        last_name="Doe",
    )
