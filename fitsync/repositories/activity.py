from __future__ import annotations

from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from fitsync.core.errors import DuplicateActivity
from fitsync.models.activity import ActivityRecord


class ActivityRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def exists(self, owner_id: int, external_id: str) -> bool:
        statement = select(
            exists().where(
                ActivityRecord.owner_id == owner_id,
                ActivityRecord.external_id == external_id,
            )
        )
        return bool(self._session.scalar(statement))

    def add(self, record: ActivityRecord) -> ActivityRecord:
        self._session.add(record)
        try:
            self._session.commit()
        except IntegrityError as exc:
            self._session.rollback()
            raise DuplicateActivity(f"Activity {record.external_id} already stored for user {record.owner_id}") from exc
        except SQLAlchemyError:
            self._session.rollback()
            raise
        self._session.refresh(record)
        return record

    def list_for_owner(self, owner_id: int, *, limit: int = 50, offset: int = 0) -> list[ActivityRecord]:
        statement = (
            select(ActivityRecord)
            .where(ActivityRecord.owner_id == owner_id)
            .order_by(ActivityRecord.started_at.desc(), ActivityRecord.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(self._session.scalars(statement))

