from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Iterator

import structlog

from fitsync.core.errors import (
    CredentialRefreshFailed,
    DuplicateActivity,
    NotConnected,
    ProviderAuthError,
    ProviderError,
    RateLimited,
    TransientNetworkError,
)
from fitsync.models.activity import ActivityRecord
from fitsync.models.connection import StravaConnection
from fitsync.repositories.activity import ActivityRepository
from fitsync.repositories.connection import StravaConnectionRepository
from fitsync.schemas.sync import SyncItemError, SyncOutcome
from fitsync.services.activity_mapper import UNSUPPORTED, ActivityDraft, map_activity
from fitsync.services.strava_api import StravaActivityClient
from fitsync.services.tokens import TokenLifecycleManager

logger = structlog.get_logger(__name__)

SYNC_IN_PROGRESS = "sync_in_progress"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IngestResult(str, Enum):
    CREATED = "created"
    DUPLICATE = "duplicate"
    UNSUPPORTED = "unsupported"
    FAILED = "failed"


class AccountLockRegistry:
    """Process-local, non-blocking guard against syncing one account twice at once.

    Correctness does not depend on it; the unique (owner_id, external_id)
    constraint is what prevents duplicate rows.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._active: set[int] = set()

    @contextmanager
    def hold(self, user_id: int) -> Iterator[bool]:
        with self._guard:
            acquired = user_id not in self._active
            self._active.add(user_id)
        try:
            yield acquired
        finally:
            if acquired:
                with self._guard:
                    self._active.discard(user_id)


account_locks = AccountLockRegistry()


def refresh_failure_code(exc: CredentialRefreshFailed) -> str:
    """Outcome code for a failed refresh: temporary token endpoint trouble keeps its own code."""
    cause = exc.__cause__
    if not exc.reconnect_required and isinstance(cause, (RateLimited, TransientNetworkError)):
        return cause.code
    return exc.code


def _external_id(payload: Any) -> str:
    activity_id = payload.get("id") if isinstance(payload, dict) else None
    if activity_id is None or isinstance(activity_id, bool) or str(activity_id).strip() == "":
        raise ValueError("Activity payload has no id")
    return str(activity_id)


@dataclass
class ActivityIngestor:
    """Dedup, map and persist one external activity.

    Used for every item of a pull sync and for each webhook delivery, so both
    paths agree on what counts as a duplicate.
    """

    activity_repo: ActivityRepository

    def ingest(
        self,
        owner_id: int,
        payload: Any,
        outcome: SyncOutcome,
        seen: set[str] | None = None,
    ) -> IngestResult:
        seen = seen if seen is not None else set()
        external_id: str | None = None
        try:
            external_id = _external_id(payload)
            if external_id in seen or self.activity_repo.exists(owner_id, external_id):
                outcome.skipped_duplicate += 1
                return IngestResult.DUPLICATE
            seen.add(external_id)

            draft = map_activity(payload)
            if draft is UNSUPPORTED:
                outcome.skipped_unsupported_type += 1
                return IngestResult.UNSUPPORTED

            self.activity_repo.add(_to_record(owner_id, draft))
        except DuplicateActivity:
            # lost a race with a concurrent sync or webhook delivery
            outcome.skipped_duplicate += 1
            return IngestResult.DUPLICATE
        except Exception as exc:
            logger.warning(
                "sync.item_failed",
                user_id=owner_id,
                external_id=external_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            outcome.per_item_errors.append(SyncItemError(external_id=external_id, message=str(exc)))
            return IngestResult.FAILED

        outcome.created += 1
        return IngestResult.CREATED


def _to_record(owner_id: int, draft: ActivityDraft) -> ActivityRecord:
    return ActivityRecord(
        owner_id=owner_id,
        external_id=draft.external_id,
        source="strava",
        kind=draft.kind,
        name=draft.name,
        started_at=draft.started_at,
        moving_duration_seconds=draft.moving_duration_seconds,
        elapsed_duration_seconds=draft.elapsed_duration_seconds,
        distance_meters=draft.distance_meters,
        elevation_gain_meters=draft.elevation_gain_meters,
        avg_heart_rate=draft.avg_heart_rate,
        max_heart_rate=draft.max_heart_rate,
        calories=draft.calories,
        derived_pace_seconds_per_km=draft.derived_pace_seconds_per_km,
        summary_polyline=draft.summary_polyline,
    )


@dataclass
class SyncService:
    connection_repo: StravaConnectionRepository
    token_manager: TokenLifecycleManager
    client: StravaActivityClient
    ingestor: ActivityIngestor
    page_size: int = 50
    max_pages: int = 10
    locks: AccountLockRegistry = field(default_factory=lambda: account_locks)
    clock: Callable[[], datetime] = field(default=_utcnow)

    def sync(self, user_id: int, lookback: timedelta) -> SyncOutcome:
        connection = self.connection_repo.get_by_user_id(user_id)
        if connection is None:
            raise NotConnected(user_id)

        with self.locks.hold(user_id) as acquired:
            if not acquired:
                logger.info("sync.skipped_in_progress", user_id=user_id)
                return SyncOutcome(user_id=user_id, error=SYNC_IN_PROGRESS)
            return self._sync_locked(connection, lookback)

    def _sync_locked(self, connection: StravaConnection, lookback: timedelta) -> SyncOutcome:
        user_id = connection.user_id
        outcome = SyncOutcome(user_id=user_id)
        log = logger.bind(user_id=user_id, athlete_id=connection.athlete_id)

        try:
            connection = self.token_manager.ensure_valid(connection)
        except CredentialRefreshFailed as exc:
            outcome.error = refresh_failure_code(exc)
            log.warning("sync.refresh_failed", reconnect_required=exc.reconnect_required, code=outcome.error)
            return outcome

        started = self.clock()
        after = started - lookback
        seen: set[str] = set()
        retried_auth = False
        page = 1

        while page <= self.max_pages:
            try:
                batch = self.client.list_activities(
                    connection.access_token,
                    after=after,
                    per_page=self.page_size,
                    page=page,
                )
            except ProviderAuthError:
                if retried_auth:
                    log.warning("sync.list_unauthorized", page=page)
                    outcome.error = ProviderAuthError.code
                    return outcome
                retried_auth = True
                try:
                    connection = self.token_manager.refresh(connection)
                except CredentialRefreshFailed as exc:
                    outcome.error = refresh_failure_code(exc)
                    return outcome
                continue
            except ProviderError as exc:
                log.warning("sync.list_failed", page=page, code=exc.code, error=exc.message)
                outcome.error = exc.code
                return outcome

            for payload in batch:
                self.ingestor.ingest(user_id, payload, outcome, seen)

            if len(batch) < self.page_size:
                break
            page += 1

        self.connection_repo.mark_synced(connection, started)
        log.info(
            "sync.completed",
            after=after.isoformat(),
            created=outcome.created,
            skipped_duplicate=outcome.skipped_duplicate,
            skipped_unsupported_type=outcome.skipped_unsupported_type,
            item_errors=len(outcome.per_item_errors),
        )
        return outcome
