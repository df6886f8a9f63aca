from __future__ import annotations

import time
from dataclasses import dataclass, field

import httpx
from jose import JWTError, jwt

from fitsync.core.config import Settings


class TokenVerificationError(Exception):
    """Raised when a bearer token cannot be trusted."""


@dataclass(slots=True)
class JWKSCache:
    domain: str
    ttl_seconds: int
    _jwks: dict = field(default_factory=dict)
    _fetched_at: float = 0.0

    def signing_key(self, kid: str) -> dict:
        for key in self._current().get("keys", []):
            if key.get("kid") == kid:
                return {name: key[name] for name in ("kty", "kid", "n", "e")} | {"use": key.get("use", "sig")}
        raise TokenVerificationError("Signing key not found")

    def _current(self) -> dict:
        now = time.monotonic()
        if self._jwks and now - self._fetched_at < self.ttl_seconds:
            return self._jwks
        try:
            response = httpx.get(f"https://{self.domain}/.well-known/jwks.json", timeout=5.0)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise TokenVerificationError("Unable to fetch JWKS") from exc
        self._jwks = response.json()
        self._fetched_at = now
        return self._jwks


class Auth0TokenVerifier:
    """Validate Auth0-issued access tokens for user-facing endpoints."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._jwks = JWKSCache(settings.auth0_domain, settings.auth0_jwks_cache_ttl)

    def verify(self, token: str) -> dict:
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            raise TokenVerificationError("Malformed token header") from exc

        algorithm = header.get("alg")
        if not algorithm or algorithm not in self._settings.auth0_algorithms:
            raise TokenVerificationError("Unsupported signing algorithm")

        if algorithm.startswith("HS"):
            key: str | dict = self._settings.auth0_client_secret
        else:
            kid = header.get("kid")
            if not kid:
                raise TokenVerificationError("Missing key id for asymmetric token")
            key = self._jwks.signing_key(kid)

        try:
            return jwt.decode(
                token,
                key,
                algorithms=[algorithm],
                audience=self._settings.auth0_audience,
                issuer=f"https://{self._settings.auth0_domain}/",
            )
        except JWTError as exc:
            raise TokenVerificationError("JWT validation failure") from exc
