from __future__ import annotations

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from fitsync.api.dependencies.db import get_db_session
from fitsync.core.config import Settings, get_settings
from fitsync.models.user import User
from fitsync.repositories.user import UserRepository
from fitsync.security.auth0 import Auth0TokenVerifier, TokenVerificationError


def get_token_verifier(settings: Settings = Depends(get_settings)) -> Auth0TokenVerifier:
    return Auth0TokenVerifier(settings=settings)


def get_current_claims(
    authorization: str | None = Header(default=None, alias="Authorization"),
    verifier: Auth0TokenVerifier = Depends(get_token_verifier),
) -> dict:
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Authorization header",
        )

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header must be 'Bearer <token>'",
        )

    try:
        return verifier.verify(token)
    except TokenVerificationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        ) from exc


def get_current_user(
    claims: dict = Depends(get_current_claims),
    db: Session = Depends(get_db_session),
) -> User:
    return UserRepository(db).create_or_update_from_auth0(
        sub=claims["sub"],
        email=claims.get("email"),
        name=claims.get("name"),
    )
