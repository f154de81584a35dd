"""Pytest configuration and fixtures."""
import asyncio
import logging
import os
import tempfile

# Avant tout import de quartier : la configuration est lue à l'import
os.environ["POSTGRES_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ROW_STORE"] = "memory"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="quartier-upload-")
os.environ["GEOCODER_URL"] = ""
os.environ["MAIL_SERVER"] = ""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from quartier.auth import password
from quartier.auth.api import reset_codes
from quartier.auth.models import User
from quartier.auth.services import auth_provider
from quartier.db.backend import MEMORY_UNIQUE, memory_backend, set_backend
from quartier.db.memory import MemoryRowStore
from quartier.db.session import Base, get_db
from quartier.main import app
from quartier.users.services import sync_profile

DEFAULT_PASSWORD = "secret123"


def pytest_configure(config):
    """Ensure asyncio_mode is auto so async fixtures work when pyproject is not in cwd."""
    if hasattr(config.option, "asyncio_mode") and config.option.asyncio_mode is None:
        config.option.asyncio_mode = "auto"
    logging.getLogger("httpcore").setLevel(logging.CRITICAL)


@pytest.fixture(autouse=True)
def backend():
    """Store mémoire neuf pour chaque test."""
    b = memory_backend()
    set_backend(b)
    reset_codes.clear()
    yield b
    set_backend(None)


class YieldingRowStore(MemoryRowStore):
    """Store mémoire qui rend la main à la boucle avant chaque accès, comme un vrai driver."""

    async def get(self, *args, **kwargs):
        await asyncio.sleep(0)
        return await super().get(*args, **kwargs)

    async def insert(self, *args, **kwargs):
        await asyncio.sleep(0)
        return await super().insert(*args, **kwargs)

    async def update(self, *args, **kwargs):
        await asyncio.sleep(0)
        return await super().update(*args, **kwargs)

    async def increment(self, *args, **kwargs):
        await asyncio.sleep(0)
        return await super().increment(*args, **kwargs)


@pytest.fixture
def yielding_rows(backend):
    backend.rows = YieldingRowStore(backend.changes, unique=MEMORY_UNIQUE)
    return backend.rows


@pytest_asyncio.fixture
async def db_session():
    """Create an in-memory test database session."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session_factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with async_session_factory() as session:
        async def override_get_db():
            yield session
        app.dependency_overrides[get_db] = override_get_db
        yield session
        app.dependency_overrides.clear()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def client(db_session):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def community(backend):
    return await backend.rows.insert("communities", {
        "name": "Cocody Riviera",
        "city": "Abidjan",
        "theme_color": "#059669",
        "is_active": True,
    })


@pytest_asyncio.fixture
async def other_community(backend):
    return await backend.rows.insert("communities", {
        "name": "Yopougon Selmer",
        "city": "Abidjan",
        "theme_color": "#2563eb",
        "is_active": True,
    })


@pytest.fixture
def make_user(db_session):
    """Fabrique d'habitants : compte SQL et miroir ``profiles``."""
    counter = {"n": 0}

    async def _make(community_id=None, role="RESIDENT", status="VALIDATED", full_name=None,
                    email=None, family_id=None, is_head_of_family=False):
        counter["n"] += 1
        n = counter["n"]
        user = User(
            email=email or f"habitant{n}@monquartier.ci",
            hashed_password=password.hash_password(DEFAULT_PASSWORD),
            full_name=full_name or f"Habitant {n}",
            community_id=community_id,
            family_id=family_id,
            is_head_of_family=is_head_of_family,
            role=role,
            status=status,
            balance_status="OK",
        )
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        await sync_profile(user)
        return user

    return _make


@pytest_asyncio.fixture
async def resident(make_user, community):
    return await make_user(community_id=community["id"], full_name="Awa Koné")


@pytest_asyncio.fixture
async def admin(make_user, community):
    return await make_user(community_id=community["id"], role="ADMIN", full_name="Moussa Traoré")


@pytest_asyncio.fixture
async def god(make_user):
    return await make_user(role="GOD", full_name="Super Admin")


def bearer(user) -> dict:
    """Headers with a fresh session token for ``user``."""
    return {"Authorization": f"Bearer {auth_provider.open_session(user).token}"}


@pytest.fixture
def headers_for():
    return bearer


@pytest.fixture
def auth_headers(resident):
    return bearer(resident)


@pytest.fixture
def admin_headers(admin):
    return bearer(admin)
