from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fitsync.models.base import Base


class StravaConnection(Base):
    __tablename__ = "strava_connections"

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), unique=True)
    athlete_id: Mapped[int] = mapped_column(unique=True, index=True)
    access_token: Mapped[str]
    refresh_token: Mapped[str]
    token_type: Mapped[str] = mapped_column(default="Bearer")
    scope: Mapped[str] = mapped_column(default="")
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    needs_reauth: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    user = relationship("User", backref="strava_connection", lazy="joined")
