from functools import partial

from fastapi import Depends
from sqlalchemy.orm import Session, sessionmaker

from fitsync.api.dependencies.db import get_db_session, get_session_factory
from fitsync.core.config import Settings, get_settings
from fitsync.services.strava import StravaAuthService
from fitsync.services.sync import SyncService
from fitsync.services.sync_factory import create_sync_service, create_webhook_service
from fitsync.services.webhook import WebhookDispatcher


def get_strava_auth_service(settings: Settings = Depends(get_settings)) -> StravaAuthService:
    return StravaAuthService(settings)


def get_sync_service(
    db: Session = Depends(get_db_session),
    settings: Settings = Depends(get_settings),
) -> SyncService:
    return create_sync_service(db, settings)


def get_webhook_dispatcher(
    session_factory: sessionmaker[Session] = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> WebhookDispatcher:
    return WebhookDispatcher(
        session_factory=session_factory,
        service_factory=partial(create_webhook_service, settings=settings),
    )
