import os

os.environ.setdefault("JWT_SECRET", "test-secret-key-that-is-long-enough-for-hs256")
os.environ["RATE_LIMIT"] = "100000/minute"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.database.base import Base
from app.core.database.engine import get_db, import_models
from app.features.organizations.service import create_organization
from app.features.users.auth import create_access_token
from app.features.users.models import GlobalRole, User
from app.main import app
from scripts.seed_platform_rbac import seed_plans


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def engine():
    import_models()
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
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def plans(db):
    return await seed_plans(db)


@pytest.fixture
def make_user(db):
    async def _make_user(email: str, global_role: GlobalRole = GlobalRole.USER) -> User:
        user = User(email=email, name=email.split("@")[0], global_role=global_role)
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user

    return _make_user


@pytest.fixture
async def owner(make_user):
    return await make_user("owner@example.com")


@pytest.fixture
async def super_admin(make_user):
    return await make_user("root@example.com", GlobalRole.SUPER_ADMIN)


@pytest.fixture
async def organization(db, plans, owner):
    return await create_organization(db, owner.id, "Acme Corp")


@pytest.fixture
def auth_headers():
    def _auth_headers(user: User, **extra) -> dict:
        token = create_access_token(user.id, user.email, user.global_role)
        return {"Authorization": f"Bearer {token}", **extra}

    return _auth_headers


@pytest.fixture
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
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
