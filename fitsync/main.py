from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from functools import partial

import structlog
from fastapi import FastAPI

from fitsync.api.routes import api_router
from fitsync.core.config import get_settings
from fitsync.core.logging import configure_logging
from fitsync.db.session import init_engine
from fitsync.models import activity, connection, user  # noqa: F401 ensure registration
from fitsync.services.scheduler import SchedulePolicy, SyncSweeper, build_scheduler
from fitsync.services.sync_factory import create_sync_service

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    configure_logging(settings)

    scheduler = None
    if settings.sync_scheduler_enabled:
        sweeper = SyncSweeper(
            session_factory=init_engine(settings),
            sync_service_factory=partial(create_sync_service, settings=settings),
            policy=SchedulePolicy.from_settings(settings),
        )
        scheduler = build_scheduler(sweeper)
        scheduler.start()
        logger.info("scheduler.started", interval_minutes=settings.sync_interval_minutes)

    yield

    if scheduler is not None:
        scheduler.shutdown(wait=False)
        logger.info("scheduler.stopped")


def create_app() -> FastAPI:
    application = FastAPI(title="fitsync", lifespan=lifespan)
    application.include_router(api_router)
    return application


app = create_app()
