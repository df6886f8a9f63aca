"""Recurring incremental sync over every connected account."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable

import structlog
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session, sessionmaker

from fitsync.core.config import Settings
from fitsync.core.errors import RateLimited, TransientNetworkError
from fitsync.db.session import session_scope
from fitsync.repositories.connection import StravaConnectionRepository
from fitsync.services.sync import SYNC_IN_PROGRESS, SyncService

logger = structlog.get_logger(__name__)

SWEEP_JOB_ID = "strava_sync_sweep"
DEFERRED_ERRORS = frozenset({RateLimited.code, TransientNetworkError.code, SYNC_IN_PROGRESS})


@dataclass(frozen=True, slots=True)
class SchedulePolicy:
    interval: timedelta = timedelta(minutes=30)
    lookback: timedelta = timedelta(hours=2)
    jitter: timedelta = timedelta(0)

    @classmethod
    def from_settings(cls, settings: Settings) -> SchedulePolicy:
        return cls(
            interval=timedelta(minutes=settings.sync_interval_minutes),
            lookback=timedelta(hours=settings.sync_lookback_hours),
            jitter=timedelta(seconds=settings.sync_jitter_seconds),
        )


@dataclass(slots=True)
class SweepReport:
    total: int = 0
    succeeded: int = 0
    deferred: int = 0
    failed: int = 0
    created: int = 0
    failed_user_ids: list[int] = field(default_factory=list)


@dataclass
class SyncSweeper:
    """One pass over all active connections.

    Each account gets its own session so a failure (including a broken
    transaction) cannot leak into the next account. A sweep that starts while
    another is still running returns ``None`` without doing anything.
    """

    session_factory: sessionmaker[Session]
    sync_service_factory: Callable[[Session], SyncService]
    policy: SchedulePolicy = field(default_factory=SchedulePolicy)

    def __post_init__(self) -> None:
        self._running = threading.Lock()

    def run_sweep(self) -> SweepReport | None:
        if not self._running.acquire(blocking=False):
            logger.warning("scheduler.sweep_skipped", reason="previous sweep still running")
            return None
        try:
            return self._sweep()
        finally:
            self._running.release()

    def _sweep(self) -> SweepReport:
        report = SweepReport()
        with session_scope(self.session_factory) as session:
            user_ids = StravaConnectionRepository(session).list_active_user_ids()

        logger.info("scheduler.sweep_started", accounts=len(user_ids), lookback=str(self.policy.lookback))
        for user_id in user_ids:
            report.total += 1
            try:
                with session_scope(self.session_factory) as session:
                    outcome = self.sync_service_factory(session).sync(user_id, self.policy.lookback)
            except Exception:
                logger.exception("scheduler.account_failed", user_id=user_id)
                report.failed += 1
                report.failed_user_ids.append(user_id)
                continue

            report.created += outcome.created
            if outcome.ok:
                report.succeeded += 1
            elif outcome.error in DEFERRED_ERRORS:
                report.deferred += 1
            else:
                logger.warning("scheduler.account_unsynced", user_id=user_id, error=outcome.error)
                report.failed += 1
                report.failed_user_ids.append(user_id)

        logger.info(
            "scheduler.sweep_completed",
            total=report.total,
            succeeded=report.succeeded,
            deferred=report.deferred,
            failed=report.failed,
            created=report.created,
        )
        return report


def build_scheduler(sweeper: SyncSweeper, scheduler: BackgroundScheduler | None = None) -> BackgroundScheduler:
    scheduler = scheduler or BackgroundScheduler(timezone="UTC")
    policy = sweeper.policy
    scheduler.add_job(
        sweeper.run_sweep,
        trigger=IntervalTrigger(
            seconds=int(policy.interval.total_seconds()),
            jitter=int(policy.jitter.total_seconds()) or None,
        ),
        id=SWEEP_JOB_ID,
        name="Strava activity sync sweep",
        replace_existing=True,
        coalesce=True,  # collapse missed ticks
        max_instances=1,  # never overlap
    )
    return scheduler
