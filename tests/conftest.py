"""Shared test fixtures."""

from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient
from software_authenticator import SoftwareAuthenticator
from sqlalchemy.ext.asyncio import create_async_engine
from sqlmodel import SQLModel

from passkeyrp.config.settings import Settings
from passkeyrp.storage.repositories.challenges import DatabaseChallengeStore
from passkeyrp.storage.repositories.credentials import DatabaseCredentialStore
from passkeyrp.storage.repositories.users import DatabaseUserRepository
from passkeyrp.web.app import create_app
from passkeyrp.web.auth.passkey_service import PasskeyService
from passkeyrp.web.auth.session import SessionIssuer

RP_ID = "localhost"
ORIGIN = "http://localhost:3000"


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        secret_key="test-secret",
        rp_id=RP_ID,
        origin=ORIGIN,
        debug=True,
    )


@pytest.fixture()
async def async_engine():
    """In-memory SQLite engine with all tables created."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
async def file_engine(tmp_path):
    """File-backed SQLite engine: each session gets its own connection."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'passkeyrp.sqlite'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def user_repo(async_engine) -> DatabaseUserRepository:
    return DatabaseUserRepository(async_engine)


@pytest.fixture()
def challenge_store(async_engine) -> DatabaseChallengeStore:
    return DatabaseChallengeStore(async_engine, ttl_seconds=300)


@pytest.fixture()
def credential_store(async_engine) -> DatabaseCredentialStore:
    return DatabaseCredentialStore(async_engine)


@pytest.fixture()
def session_issuer() -> SessionIssuer:
    return SessionIssuer(secret_key="test-secret")


@pytest.fixture()
def passkey_service(
    settings, user_repo, challenge_store, credential_store, session_issuer
) -> PasskeyService:
    return PasskeyService(
        settings=settings,
        user_repo=user_repo,
        challenges=challenge_store,
        credentials=credential_store,
        sessions=session_issuer,
    )


@pytest.fixture()
def authenticator() -> SoftwareAuthenticator:
    return SoftwareAuthenticator(rp_id=RP_ID, origin=ORIGIN)


@pytest.fixture()
def app(settings, async_engine):
    """Create a fresh app bound to the test engine."""
    return create_app(settings=settings, engine=async_engine)


@pytest.fixture()
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
