from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from fitsync.models.user import User


class UserRepository:
    def __init__(self, session: Session) -> None:
        self._session = session

    def get_by_auth0_sub(self, sub: str) -> User | None:
        statement = select(User).where(User.auth0_sub == sub)
        return self._session.scalar(statement)

    def create_or_update_from_auth0(self, *, sub: str, email: str | None, name: str | None) -> User:
        existing = self.get_by_auth0_sub(sub)
        if existing:
            if existing.email == email and existing.name == name:
                return existing
            existing.email = email
            existing.name = name
            self._session.add(existing)
            self._session.commit()
            self._session.refresh(existing)
            return existing

        user = User(auth0_sub=sub, email=email, name=name)
        self._session.add(user)
        self._session.commit()
        self._session.refresh(user)
        return user
