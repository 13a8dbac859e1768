"""Integration test fixtures: in-memory app, async client, seeded accounts."""

import os

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Force test config BEFORE any app imports
os.environ["DEBUG"] = "true"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key-for-integration-tests"
os.environ.pop("SMTP_HOST", None)

import medbank.database as db_mod
import medbank.dependencies as dep_mod

ADMIN_EMAIL = "admin@medbank.test"
ADMIN_PASSWORD = "Admin1234"
STUDENT_PASSWORD = "Student123"

SEED_ACCOUNTS = [
    # (key, email, name, role)
    ("admin", ADMIN_EMAIL, "Admin", "admin"),
    ("student", "student@medbank.test", "Sam Student", "student"),
    ("peer", "peer@medbank.test", "Pat Peer", "student"),
    ("maintainer", "maintainer@medbank.test", "Max Maintainer", "maintainer"),
]


def _reset_singletons():
    """Reset module-level singletons so each test session starts clean."""
    db_mod._engine = None
    db_mod._session_factory = None
    dep_mod._config_instance = None
    dep_mod._email_sender = None


@pytest_asyncio.fixture(scope="session", loop_scope="session")
async def test_app():
    """Create test app with in-memory database (shared via StaticPool)."""
    _reset_singletons()

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    event.listen(engine.sync_engine, "connect", db_mod._enable_sqlite_foreign_keys)

    # Inject into database module BEFORE app import
    db_mod._engine = engine
    factory = async_sessionmaker(engine, expire_on_commit=False)
    db_mod._session_factory = factory

    dep_mod.get_app_config()

    from medbank.main import app
    from medbank.models.base import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    from medbank.models.user import User
    from medbank.utils.security import hash_password

    async with factory() as session:
        for key, email, name, role in SEED_ACCOUNTS:
            session.add(User(
                email=email,
                name=name,
                password_hash=hash_password(ADMIN_PASSWORD if key == "admin" else STUDENT_PASSWORD),
                role=role,
                is_verified=True,
                profile_completed=True,
            ))
        await session.commit()

    yield app

    await engine.dispose()
    _reset_singletons()


@pytest_asyncio.fixture(scope="session", loop_scope="session")
async def accounts(test_app):
    """Seeded account summaries keyed by admin/student/peer/maintainer."""
    from medbank.models.user import User

    async with db_mod._session_factory() as session:
        rows = (await session.execute(select(User))).scalars().all()
    by_email = {u.email: u.summary() for u in rows}
    return {key: by_email[email] for key, email, _, _ in SEED_ACCOUNTS}


@pytest_asyncio.fixture(loop_scope="session")
async def client(test_app):
    """Async HTTP client for testing."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture(loop_scope="session")
async def db_factory(test_app):
    return db_mod._session_factory


@pytest_asyncio.fixture(loop_scope="session")
async def auth_headers(accounts):
    """Build bearer headers for a seeded account without going through /login."""
    from medbank.utils.security import create_access_token

    config = dep_mod.get_app_config()

    def _headers(key: str) -> dict:
        user = accounts[key]
        token = create_access_token(
            {"sub": str(user["id"]), "email": user["email"], "role": user["role"]},
            config.secret_key,
            config.jwt_algorithm,
        )
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest_asyncio.fixture(loop_scope="session")
async def admin_headers(client):
    """Get auth headers for the admin user."""
    resp = await client.post(
        "/api/v1/auth/login",
        json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD},
    )
    assert resp.status_code == 200, f"Login failed: {resp.text}"
    token = resp.json()["access_token"]
    client.cookies.clear()
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture(loop_scope="session")
async def question_id(db_factory, accounts):
    """A fresh question so each test sees an empty discussion."""
    from medbank.models.question import Question

    async with db_factory() as session:
        question = Question(text="Which nerve innervates the deltoid?", specialty="anatomy",
                            created_by=accounts["maintainer"]["id"])
        session.add(question)
        await session.commit()
        return question.id
