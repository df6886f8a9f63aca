from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from fitsync.models.connection import StravaConnection


def _ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _normalize(connection: StravaConnection | None) -> StravaConnection | None:
    # SQLite drops tzinfo on the way back out.
    if connection is not None:
        if connection.expires_at is not None:
            connection.expires_at = _ensure_utc(connection.expires_at)
        if connection.last_synced_at is not None:
            connection.last_synced_at = _ensure_utc(connection.last_synced_at)
    return connection


class StravaConnectionRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get_by_user_id(self, user_id: int) -> StravaConnection | None:
        statement = select(StravaConnection).where(StravaConnection.user_id == user_id)
        return _normalize(self._session.scalar(statement))

    def get_by_athlete_id(self, athlete_id: int) -> StravaConnection | None:
        statement = select(StravaConnection).where(StravaConnection.athlete_id == athlete_id)
        return _normalize(self._session.scalar(statement))

    def list_active_user_ids(self) -> list[int]:
        statement = (
            select(StravaConnection.user_id)
            .where(StravaConnection.needs_reauth.is_(False))
            .order_by(StravaConnection.user_id)
        )
        return list(self._session.scalars(statement))

    def upsert_from_token_exchange(
        self,
        *,
        user_id: int,
        athlete_id: int,
        access_token: str,
        refresh_token: str,
        token_type: str,
        scope: list[str] | str,
        expires_at: datetime,
    ) -> StravaConnection:
        scope_value = ",".join(scope) if isinstance(scope, list) else scope

        connection = self.get_by_user_id(user_id)
        if connection is None:
            connection = StravaConnection(user_id=user_id)

        connection.athlete_id = athlete_id
        connection.access_token = access_token
        connection.refresh_token = refresh_token
        connection.token_type = token_type
        connection.scope = scope_value
        connection.expires_at = _ensure_utc(expires_at)
        connection.needs_reauth = False
        return self._save(connection)

    def store_refreshed_tokens(
        self,
        connection: StravaConnection,
        *,
        access_token: str,
        refresh_token: str,
        expires_at: datetime,
    ) -> StravaConnection:
        connection.access_token = access_token
        connection.refresh_token = refresh_token
        connection.expires_at = _ensure_utc(expires_at)
        connection.needs_reauth = False
        return self._save(connection)

    def mark_needs_reauth(self, connection: StravaConnection) -> StravaConnection:
        connection.needs_reauth = True
        return self._save(connection)

    def mark_synced(self, connection: StravaConnection, synced_at: datetime) -> StravaConnection:
        connection.last_synced_at = _ensure_utc(synced_at)
        return self._save(connection)

    def _save(self, connection: StravaConnection) -> StravaConnection:
        self._session.add(connection)
        self._session.commit()
        self._session.refresh(connection)
        return _normalize(connection)
