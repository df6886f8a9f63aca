from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable

import structlog

from fitsync.core.errors import CredentialRefreshFailed, ProviderError
from fitsync.models.connection import StravaConnection
from fitsync.repositories.connection import StravaConnectionRepository
from fitsync.services.strava import StravaAuthError, StravaAuthService

logger = structlog.get_logger(__name__)

DEFAULT_REFRESH_BUFFER = timedelta(hours=1)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TokenLifecycleManager:
    """Keeps a connection's access token usable for at least ``buffer``.

    A refreshed token set is committed before ``ensure_valid`` returns, so it
    survives whatever the caller does next. Strava rotates refresh tokens and
    the previous one stops working once a new one is issued.
    """

    auth_service: StravaAuthService
    connection_repo: StravaConnectionRepository
    buffer: timedelta = DEFAULT_REFRESH_BUFFER
    clock: Callable[[], datetime] = field(default=_utcnow)

    def needs_refresh(self, connection: StravaConnection) -> bool:
        return connection.expires_at <= self.clock() + self.buffer

    def ensure_valid(self, connection: StravaConnection) -> StravaConnection:
        if not self.needs_refresh(connection):
            return connection
        return self.refresh(connection)

    def refresh(self, connection: StravaConnection) -> StravaConnection:
        log = logger.bind(user_id=connection.user_id, athlete_id=connection.athlete_id)
        log.info("strava.token.refresh_started", expires_at=connection.expires_at.isoformat())

        try:
            exchange = self.auth_service.refresh_access_token(
                connection.refresh_token,
                athlete_id=connection.athlete_id,
            )
        except StravaAuthError as exc:
            log.warning("strava.token.refresh_rejected", error=str(exc))
            self.connection_repo.mark_needs_reauth(connection)
            raise CredentialRefreshFailed(
                "Strava rejected the refresh token; reconnect required",
                reconnect_required=True,
            ) from exc
        except ProviderError as exc:
            log.warning("strava.token.refresh_failed", error=exc.message, code=exc.code)
            raise CredentialRefreshFailed(f"Strava token refresh failed: {exc.message}") from exc

        if exchange.expires_at <= self.clock():
            log.warning("strava.token.refresh_expired", expires_at=exchange.expires_at.isoformat())
            raise CredentialRefreshFailed("Strava returned an already expired access token")

        connection = self.connection_repo.store_refreshed_tokens(
            connection,
            access_token=exchange.access_token,
            refresh_token=exchange.refresh_token,
            expires_at=exchange.expires_at,
        )
        log.info("strava.token.refreshed", expires_at=connection.expires_at.isoformat())
        return connection
