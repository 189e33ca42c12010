"""Pytest configuration and fixtures for ChatFoundry tests.

Test isolation strategy:
- Every test that touches the database gets its own SQLite file under tmp_path,
  created from the ORM metadata
- Provider secrets come from the process environment (EnvSecretStore); tests
  set them with monkeypatch
- Upstream HTTP is mocked with respx; no live provider calls
- Auth tests mint HS256 session tokens with tests.helpers
"""

import os
from collections.abc import Generator
from pathlib import Path

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["CHATFOUNDRY_ENV"] = "test"
os.environ["SESSION_SECRET"] = "test-session-secret"
os.environ["SESSION_ISSUER"] = "test-issuer"
os.environ["CLOUDFLARE_ACCOUNT_ID"] = "test-account"
os.environ["CLOUDFLARE_API_TOKEN"] = "cf-test-token"
os.environ["LOG_JSON"] = "false"

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from chatfoundry.app import add_request_id_middleware, create_app
from chatfoundry.auth.verifier import SessionTokenVerifier
from chatfoundry.config import clear_settings_cache
from chatfoundry.db import Base, create_db_engine, create_session_factory
from tests.helpers import TEST_ISSUER, TEST_SECRET, create_test_user_id

SECRET_ENV_PREFIX = "CHATFOUNDRY__PROVIDERS__"


@pytest.fixture
def engine(tmp_path: Path) -> Generator[Engine, None, None]:
    """Create a fresh SQLite database for one test."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'chatfoundry_test.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return create_session_factory(engine)


@pytest.fixture
def db_session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """Provide a database session bound to the per-test database."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def app(session_factory: sessionmaker[Session]) -> FastAPI:
    """Provide a FastAPI app with auth and request-id middleware.

    Tokens are verified with the test session secret; see tests.helpers.auth_headers.
    """
    app = create_app(
        token_verifier=SessionTokenVerifier(secret=TEST_SECRET, issuer=TEST_ISSUER),
        session_factory=session_factory,
    )
    add_request_id_middleware(app, log_requests=False)
    return app


@pytest.fixture
def client(app: FastAPI) -> Generator[TestClient, None, None]:
    """Provide a test client; the app lifespan runs for the client's lifetime."""
    with TestClient(app) as client:
        yield client


@pytest.fixture
def test_user_id() -> str:
    return create_test_user_id()


@pytest.fixture(autouse=True)
def isolate_secret_store(monkeypatch):
    """Keep provider secrets and Redis out of tests unless a test sets them."""
    monkeypatch.delenv("REDIS_URL", raising=False)
    for key in list(os.environ):
        if key.startswith(SECRET_ENV_PREFIX):
            monkeypatch.delenv(key)


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Reset the settings cache before each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()
