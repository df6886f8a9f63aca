from datetime import timedelta

import structlog
from fastapi import APIRouter, BackgroundTasks, Cookie, Depends, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from fitsync.api.dependencies.auth import get_current_user
from fitsync.api.dependencies.db import get_db_session
from fitsync.api.dependencies.strava import get_strava_auth_service, get_sync_service, get_webhook_dispatcher
from fitsync.core.config import Settings, get_settings
from fitsync.core.errors import NotConnected, ProviderError
from fitsync.models.user import User
from fitsync.repositories.activity import ActivityRepository
from fitsync.repositories.connection import StravaConnectionRepository
from fitsync.schemas.strava import (
    StravaAuthorizeResponse,
    StravaConnectionStatus,
    StravaWebhookAck,
    StravaWebhookChallenge,
    StravaWebhookEvent,
)
from fitsync.schemas.sync import ActivityRecordSchema, SyncOutcome
from fitsync.services.strava import StravaAuthError, StravaAuthService
from fitsync.services.sync import SyncService
from fitsync.services.webhook import ACCEPTED, IGNORED, WebhookDispatcher, is_activity_create, verify_subscription

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/v1/integrations/strava", tags=["strava"])

STATE_COOKIE = "strava_oauth_state"


@router.get("/connect", response_model=StravaAuthorizeResponse)
def connect_strava(
    response: Response,
    settings: Settings = Depends(get_settings),
    auth_service: StravaAuthService = Depends(get_strava_auth_service),
) -> StravaAuthorizeResponse:
    state = auth_service.generate_state()
    response.set_cookie(
        key=STATE_COOKIE,
        value=state,
        max_age=600,
        httponly=True,
        secure=settings.app_env == "production",
        samesite="lax",
    )
    return StravaAuthorizeResponse(authorize_url=auth_service.build_authorize_url(state))


@router.get("/callback", response_model=StravaConnectionStatus)
def strava_callback(
    response: Response,
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    state_cookie: str | None = Cookie(default=None, alias=STATE_COOKIE),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db_session),
    auth_service: StravaAuthService = Depends(get_strava_auth_service),
) -> StravaConnectionStatus:
    if state_cookie is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing state cookie")
    if state is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing state")
    if state != state_cookie:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="State mismatch")
    if code is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing code")

    response.delete_cookie(STATE_COOKIE, path="/")
    try:
        exchange = auth_service.exchange_code_for_tokens(code)
    except (StravaAuthError, ProviderError) as exc:
        logger.warning("strava.callback.exchange_failed", user_id=user.id, error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Strava token exchange failed",
        ) from exc

    if exchange.athlete_id is None:
        logger.warning("strava.callback.missing_athlete", user_id=user.id)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Strava token exchange failed",
        )

    connection = StravaConnectionRepository(db).upsert_from_token_exchange(
        user_id=user.id,
        athlete_id=exchange.athlete_id,
        access_token=exchange.access_token,
        refresh_token=exchange.refresh_token,
        token_type=exchange.token_type,
        scope=exchange.scope,
        expires_at=exchange.expires_at,
    )
    logger.info("strava.callback.connected", user_id=user.id, athlete_id=connection.athlete_id)

    return StravaConnectionStatus(
        connected=True,
        athlete_id=connection.athlete_id,
        expires_at=connection.expires_at,
        needs_reauth=connection.needs_reauth,
        last_synced_at=connection.last_synced_at,
    )


@router.get("/status", response_model=StravaConnectionStatus)
def connection_status(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db_session),
) -> StravaConnectionStatus:
    connection = StravaConnectionRepository(db).get_by_user_id(user.id)
    if connection is None:
        return StravaConnectionStatus(connected=False)
    return StravaConnectionStatus(
        connected=True,
        athlete_id=connection.athlete_id,
        expires_at=connection.expires_at,
        needs_reauth=connection.needs_reauth,
        last_synced_at=connection.last_synced_at,
    )


@router.post("/sync", response_model=SyncOutcome)
def trigger_sync(
    lookback_days: int | None = Query(default=None, ge=1, le=365),
    user: User = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
    sync_service: SyncService = Depends(get_sync_service),
) -> SyncOutcome:
    lookback = timedelta(days=lookback_days or settings.manual_sync_lookback_days)
    try:
        return sync_service.sync(user.id, lookback)
    except NotConnected as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Strava account not linked") from exc


@router.get("/activities", response_model=list[ActivityRecordSchema])
def list_synced_activities(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db_session),
) -> list[ActivityRecordSchema]:
    records = ActivityRepository(db).list_for_owner(user.id, limit=limit, offset=offset)
    return [ActivityRecordSchema.model_validate(record) for record in records]


@router.get("/webhook", response_model=StravaWebhookChallenge)
def verify_webhook_subscription(
    mode: str | None = Query(default=None, alias="hub.mode"),
    verify_token: str | None = Query(default=None, alias="hub.verify_token"),
    challenge: str | None = Query(default=None, alias="hub.challenge"),
    settings: Settings = Depends(get_settings),
) -> StravaWebhookChallenge:
    echoed = verify_subscription(
        mode,
        verify_token,
        challenge,
        expected_token=settings.strava_webhook_verify_token,
    )
    if echoed is None:
        logger.warning("webhook.subscription_refused", mode=mode)
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Verification failed")
    return StravaWebhookChallenge(challenge=echoed)


@router.post("/webhook", response_model=StravaWebhookAck)
def receive_webhook_event(
    event: StravaWebhookEvent,
    background_tasks: BackgroundTasks,
    dispatcher: WebhookDispatcher = Depends(get_webhook_dispatcher),
) -> StravaWebhookAck:
    # Strava retries slow or non-2xx deliveries; acknowledge before any I/O.
    if not is_activity_create(event):
        return StravaWebhookAck(status=IGNORED)
    background_tasks.add_task(dispatcher.process, event)
    logger.info("webhook.accepted", athlete_id=event.owner_id, object_id=event.object_id)
    return StravaWebhookAck(status=ACCEPTED)
