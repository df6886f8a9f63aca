from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Callable

import structlog
from sqlalchemy.orm import Session, sessionmaker

from fitsync.core.errors import CredentialRefreshFailed, ProviderError
from fitsync.db.session import session_scope
from fitsync.repositories.connection import StravaConnectionRepository
from fitsync.schemas.strava import StravaWebhookEvent
from fitsync.schemas.sync import SyncOutcome
from fitsync.services.strava_api import StravaActivityClient
from fitsync.services.sync import ActivityIngestor
from fitsync.services.tokens import TokenLifecycleManager

logger = structlog.get_logger(__name__)

SUBSCRIBE_MODE = "subscribe"
ACCEPTED = "accepted"
IGNORED = "ignored"


def verify_subscription(
    mode: str | None,
    verify_token: str | None,
    challenge: str | None,
    *,
    expected_token: str,
) -> str | None:
    """Return the challenge to echo, or ``None`` when the handshake is refused."""
    if mode != SUBSCRIBE_MODE or challenge is None or verify_token is None:
        return None
    if not expected_token:
        return None
    if not hmac.compare_digest(verify_token, expected_token):
        return None
    return challenge


def is_activity_create(event: StravaWebhookEvent) -> bool:
    return event.object_type.lower() == "activity" and event.aspect_type.lower() == "create"


@dataclass
class WebhookIngestionService:
    """Turns Strava push events into stored activities.

    Returns a short status string for every event; nothing here raises for
    conditions the provider could retry on.
    """

    connection_repo: StravaConnectionRepository
    token_manager: TokenLifecycleManager
    client: StravaActivityClient
    ingestor: ActivityIngestor

    def handle_event(self, event: StravaWebhookEvent) -> str:
        log = logger.bind(
            athlete_id=event.owner_id,
            object_type=event.object_type,
            object_id=event.object_id,
            aspect_type=event.aspect_type,
        )
        if not is_activity_create(event):
            log.debug("webhook.ignored")
            return IGNORED

        connection = self.connection_repo.get_by_athlete_id(event.owner_id)
        if connection is None:
            log.info("webhook.unknown_athlete")
            return "unknown-athlete"
        log = log.bind(user_id=connection.user_id)

        try:
            connection = self.token_manager.ensure_valid(connection)
        except CredentialRefreshFailed as exc:
            log.warning("webhook.refresh_failed", reconnect_required=exc.reconnect_required)
            return "credential-refresh-failed"

        try:
            payload = self.client.get_activity(connection.access_token, event.object_id)
        except ProviderError as exc:
            log.warning("webhook.fetch_failed", code=exc.code, error=exc.message)
            return "fetch-failed"

        outcome = SyncOutcome(user_id=connection.user_id)
        result = self.ingestor.ingest(connection.user_id, payload, outcome)
        log.info("webhook.ingested", result=result.value)
        return result.value


@dataclass
class WebhookDispatcher:
    """Runs event handling outside the request, each event in its own session.

    The endpoint acknowledges first and schedules ``process``; token refreshes,
    retries and rate-limit waits never delay the acknowledgement.
    """

    session_factory: sessionmaker[Session]
    service_factory: Callable[[Session], WebhookIngestionService]

    def process(self, event: StravaWebhookEvent) -> str:
        try:
            with session_scope(self.session_factory) as session:
                return self.service_factory(session).handle_event(event)
        except Exception:
            logger.exception(
                "webhook.processing_failed",
                athlete_id=event.owner_id,
                object_id=event.object_id,
                subscription_id=event.subscription_id,
            )
            return "error"
