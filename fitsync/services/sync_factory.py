from __future__ import annotations

from datetime import timedelta

from sqlalchemy.orm import Session

from fitsync.core.config import Settings
from fitsync.repositories.activity import ActivityRepository
from fitsync.repositories.connection import StravaConnectionRepository
from fitsync.services.strava import StravaAuthService
from fitsync.services.strava_api import StravaActivityClient
from fitsync.services.sync import ActivityIngestor, SyncService
from fitsync.services.tokens import TokenLifecycleManager
from fitsync.services.webhook import WebhookIngestionService


def create_token_manager(
    session: Session,
    settings: Settings,
    *,
    auth_service: StravaAuthService | None = None,
) -> TokenLifecycleManager:
    return TokenLifecycleManager(
        auth_service=auth_service or StravaAuthService(settings),
        connection_repo=StravaConnectionRepository(session),
        buffer=timedelta(seconds=settings.token_refresh_buffer_seconds),
    )


def create_sync_service(
    session: Session,
    settings: Settings,
    *,
    client: StravaActivityClient | None = None,
    auth_service: StravaAuthService | None = None,
) -> SyncService:
    return SyncService(
        connection_repo=StravaConnectionRepository(session),
        token_manager=create_token_manager(session, settings, auth_service=auth_service),
        client=client or StravaActivityClient(settings=settings),
        ingestor=ActivityIngestor(ActivityRepository(session)),
        page_size=settings.sync_page_size,
        max_pages=settings.sync_max_pages,
    )


def create_webhook_service(
    session: Session,
    settings: Settings,
    *,
    client: StravaActivityClient | None = None,
    auth_service: StravaAuthService | None = None,
) -> WebhookIngestionService:
    return WebhookIngestionService(
        connection_repo=StravaConnectionRepository(session),
        token_manager=create_token_manager(session, settings, auth_service=auth_service),
        client=client or StravaActivityClient(settings=settings),
        ingestor=ActivityIngestor(ActivityRepository(session)),
    )
