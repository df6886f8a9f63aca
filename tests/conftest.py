from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from fitsync.api.dependencies.db import get_db_session, get_session_factory
from fitsync.core.config import Settings
from fitsync.main import app
from fitsync.models import activity as activity_models  # noqa: F401 ensure registration
from fitsync.models import connection as connection_models  # noqa: F401 ensure registration
from fitsync.models import user as user_models  # noqa: F401 ensure registration
from fitsync.models.base import Base
from tests.fakes import AUTH0_AUDIENCE, AUTH0_DOMAIN, AUTH0_SECRET, WEBHOOK_VERIFY_TOKEN, build_token


@pytest.fixture(autouse=True)
def _env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("FRONTEND_BASE_URL", "https://frontend.example")

    monkeypatch.setenv("STRAVA_CLIENT_ID", "12345")
    monkeypatch.setenv("STRAVA_CLIENT_SECRET", "secret")
    monkeypatch.setenv("STRAVA_REDIRECT_URI", "https://example.com/strava/callback")
    monkeypatch.setenv("STRAVA_WEBHOOK_VERIFY_TOKEN", WEBHOOK_VERIFY_TOKEN)
    monkeypatch.setenv("SYNC_SCHEDULER_ENABLED", "false")

    monkeypatch.setenv("AUTH0_DOMAIN", AUTH0_DOMAIN)
    monkeypatch.setenv("AUTH0_AUDIENCE", AUTH0_AUDIENCE)
    monkeypatch.setenv("AUTH0_CLIENT_SECRET", AUTH0_SECRET)
    monkeypatch.setenv("AUTH0_ALGORITHMS", '["HS256"]')
    monkeypatch.setenv("DATABASE_URL", "sqlite+pysqlite:///:memory:")


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        app_env="test",
        frontend_base_url="https://frontend.example",
        database_url="sqlite+pysqlite:///:memory:",
        strava_client_id="client",
        strava_client_secret="secret",
        strava_redirect_uri="https://example.com/callback",
        strava_webhook_verify_token=WEBHOOK_VERIFY_TOKEN,
        sync_scheduler_enabled=False,
        auth0_domain=AUTH0_DOMAIN,
        auth0_audience=AUTH0_AUDIENCE,
        auth0_client_secret=AUTH0_SECRET,
        auth0_algorithms=["HS256"],
    )


@pytest.fixture()
def session_factory() -> Iterator[sessionmaker[Session]]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, expire_on_commit=False, class_=Session)
    engine.dispose()


@pytest.fixture()
def session(session_factory: sessionmaker[Session]) -> Iterator[Session]:
    with session_factory() as db_session:
        yield db_session


@pytest.fixture()
def db_override(session_factory: sessionmaker[Session]) -> Iterator[sessionmaker[Session]]:
    def _provide_session():
        with session_factory() as db_session:
            yield db_session

    app.dependency_overrides[get_db_session] = _provide_session
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    try:
        yield session_factory
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def client() -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {build_token('auth0|runner')}"}
