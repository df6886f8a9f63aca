from datetime import datetime

from sqlalchemy import func
from sqlalchemy.orm import Mapped, mapped_column

from fitsync.models.base import Base


class User(Base):
    __tablename__ = "users"

    auth0_sub: Mapped[str] = mapped_column(unique=True, index=True)
    email: Mapped[str | None]
    name: Mapped[str | None]
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
