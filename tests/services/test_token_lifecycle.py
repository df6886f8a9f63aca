from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import Session

from fitsync.core.config import Settings
from fitsync.core.errors import CredentialRefreshFailed, TransientNetworkError
from fitsync.repositories.connection import StravaConnectionRepository
from fitsync.services.strava import StravaAuthError
from fitsync.services.tokens import TokenLifecycleManager
from tests.fakes import DummyAuthService, create_user_and_connection, make_exchange


def _manager(session: Session, auth_service: DummyAuthService) -> TokenLifecycleManager:
    return TokenLifecycleManager(
        auth_service=auth_service,
        connection_repo=StravaConnectionRepository(session),
    )


def test_token_expiring_within_buffer_is_refreshed(session: Session, settings: Settings) -> None:
    connection = create_user_and_connection(session, expires_in=timedelta(minutes=30))
    auth_service = DummyAuthService(settings)
    auth_service.queue(make_exchange("access2", "refresh2"))

    refreshed = _manager(session, auth_service).ensure_valid(connection)

    assert auth_service.refresh_calls == ["refresh"]
    assert refreshed.access_token == "access2"
    assert refreshed.refresh_token == "refresh2"
    assert refreshed.expires_at > datetime.now(timezone.utc) + timedelta(hours=1)


def test_token_outside_buffer_is_returned_unchanged(session: Session, settings: Settings) -> None:
    connection = create_user_and_connection(session, expires_in=timedelta(hours=2))
    auth_service = DummyAuthService(settings)

    result = _manager(session, auth_service).ensure_valid(connection)

    assert result is connection
    assert auth_service.refresh_calls == []


def test_refreshed_tokens_are_persisted_immediately(session: Session, session_factory, settings: Settings) -> None:
    connection = create_user_and_connection(session, expires_in=timedelta(minutes=-5))
    auth_service = DummyAuthService(settings)
    auth_service.queue(make_exchange("access2", "refresh2"))

    _manager(session, auth_service).ensure_valid(connection)

    with session_factory() as other_session:
        stored = StravaConnectionRepository(other_session).get_by_user_id(connection.user_id)
        assert stored is not None
        assert stored.access_token == "access2"
        assert stored.refresh_token == "refresh2"


def test_rejected_refresh_flags_reconnect(session: Session, settings: Settings) -> None:
    connection = create_user_and_connection(session, expires_in=timedelta(minutes=5))
    auth_service = DummyAuthService(settings)
    auth_service.queue(StravaAuthError("Strava rejected refresh_token grant"))

    with pytest.raises(CredentialRefreshFailed) as excinfo:
        _manager(session, auth_service).ensure_valid(connection)

    assert excinfo.value.reconnect_required is True
    stored = StravaConnectionRepository(session).get_by_user_id(connection.user_id)
    assert stored.needs_reauth is True
    assert stored.access_token == "access"


def test_transient_refresh_failure_does_not_flag_reconnect(session: Session, settings: Settings) -> None:
    connection = create_user_and_connection(session, expires_in=timedelta(minutes=5))
    auth_service = DummyAuthService(settings)
    auth_service.queue(TransientNetworkError())

    with pytest.raises(CredentialRefreshFailed) as excinfo:
        _manager(session, auth_service).ensure_valid(connection)

    assert excinfo.value.reconnect_required is False
    assert StravaConnectionRepository(session).get_by_user_id(connection.user_id).needs_reauth is False


def test_already_expired_refresh_response_is_rejected(session: Session, settings: Settings) -> None:
    connection = create_user_and_connection(session, expires_in=timedelta(minutes=5))
    auth_service = DummyAuthService(settings)
    auth_service.queue(make_exchange("stale", "refresh2", expires_in_minutes=-1))

    with pytest.raises(CredentialRefreshFailed):
        _manager(session, auth_service).ensure_valid(connection)

    assert StravaConnectionRepository(session).get_by_user_id(connection.user_id).access_token == "access"


def test_buffer_is_configurable(session: Session, settings: Settings) -> None:
    connection = create_user_and_connection(session, expires_in=timedelta(minutes=30))
    auth_service = DummyAuthService(settings)
    manager = TokenLifecycleManager(
        auth_service=auth_service,
        connection_repo=StravaConnectionRepository(session),
        buffer=timedelta(minutes=10),
    )

    assert manager.ensure_valid(connection) is connection
    assert auth_service.refresh_calls == []
