"""
Pytest fixtures shared by unit and integration tests.

The app runs against a throwaway SQLite database and a data directory under
tmp_path. The test client talks https so Secure cookies round-trip.
"""

from collections.abc import AsyncGenerator, Generator
from pathlib import Path

import pytest
import pytest_asyncio
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession

from treelab.config import Settings
from treelab.main import create_app
from treelab.services import auth_service
from treelab.services.encryption_service import EncryptionService
from treelab.services.session_service import SessionStore
from treelab.utils.database import create_tables, make_engine, make_sessionmaker

ENCRYPTION_KEY = "0123456789abcdef0123456789abcdef"
OTHER_ENCRYPTION_KEY = "fedcba9876543210fedcba9876543210"
SESSION_SECRET = "test-session-secret-that-is-long-enough-0001"


# =============================================================================
# Speed
# =============================================================================

@pytest.fixture(autouse=True)
def fast_bcrypt(monkeypatch: pytest.MonkeyPatch) -> None:
    """Cost 12 is needlessly slow for tests."""
    monkeypatch.setattr(auth_service, "BCRYPT_ROUNDS", 4)


# =============================================================================
# Settings & services
# =============================================================================

@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def settings(tmp_path: Path, data_dir: Path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'treelab-test.db'}",
        data_dir=data_dir,
        session_secret=SESSION_SECRET,
        encryption_key=ENCRYPTION_KEY,
        session_max_age_seconds=7 * 24 * 60 * 60,
        cookie_secure=True,
        cors_origins=[],
        log_level="DEBUG",
    )


@pytest.fixture
def encryption() -> EncryptionService:
    return EncryptionService.from_secret(ENCRYPTION_KEY)


@pytest.fixture
def session_store() -> SessionStore:
    return SessionStore(SESSION_SECRET, 7 * 24 * 60 * 60)


# =============================================================================
# Database
# =============================================================================

@pytest_asyncio.fixture
async def db(settings: Settings) -> AsyncGenerator[AsyncSession, None]:
    engine = make_engine(settings.database_url)
    await create_tables(engine)
    sessionmaker = make_sessionmaker(engine)
    async with sessionmaker() as session:
        yield session
    await engine.dispose()


# =============================================================================
# App & client
# =============================================================================

@pytest.fixture
def app(settings: Settings) -> FastAPI:
    return create_app(settings)


@pytest.fixture
def client(app: FastAPI) -> Generator[TestClient, None, None]:
    with TestClient(app, base_url="https://testserver") as c:
        yield c


def register(client: TestClient, username: str, password: str) -> dict:
    """Register through the API; leaves the new user's session cookie on the client."""
    response = client.post("/api/auth/register", json={"username": username, "password": password})
    assert response.status_code == 200, response.text
    return response.json()


def login(client: TestClient, identifier: str, password: str):
    return client.post("/api/auth/login", json={"identifier": identifier, "password": password})


@pytest.fixture
def alice(client: TestClient) -> dict:
    """First registered user (therefore admin), logged in on `client`."""
    return register(client, "alice", "alice-password")
