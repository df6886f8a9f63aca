"""Strava OAuth helpers: authorize URL, code exchange and token refresh."""

from __future__ import annotations

import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable
from urllib.parse import urlencode

import httpx
import structlog

from fitsync.core.config import Settings
from fitsync.core.errors import ProviderAPIError, RateLimited, TransientNetworkError
from fitsync.schemas.strava import StravaTokenExchangeResponse

logger = structlog.get_logger(__name__)


class StravaAuthError(Exception):
    """Raised when Strava rejects a code exchange or refresh token."""


@dataclass(slots=True)
class StravaAuthService:
    settings: Settings
    sleep: Callable[[float], None] = time.sleep

    def generate_state(self) -> str:
        """Create a 32-character hex state token for CSRF mitigation."""
        return secrets.token_hex(16)

    def build_authorize_url(self, state: str) -> str:
        query = {
            "client_id": self.settings.strava_client_id,
            "redirect_uri": str(self.settings.strava_redirect_uri),
            "response_type": "code",
            "scope": self.settings.strava_scope,
            "approval_prompt": "auto",
            "state": state,
        }
        return f"{self.settings.strava_authorize_base}?{urlencode(query)}"

    def exchange_code_for_tokens(self, code: str) -> StravaTokenExchangeResponse:
        data = self._post_token(
            {
                "client_id": self.settings.strava_client_id,
                "client_secret": self.settings.strava_client_secret,
                "code": code,
                "grant_type": "authorization_code",
            }
        )
        try:
            return StravaTokenExchangeResponse(
                access_token=data["access_token"],
                refresh_token=data["refresh_token"],
                token_type=data.get("token_type", "Bearer"),
                scope=data.get("scope", self.settings.strava_scope),
                expires_at=_resolve_expires_at(data),
                athlete_id=_extract_athlete_id(data),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise StravaAuthError("Strava token payload malformed") from exc

    def refresh_access_token(self, refresh_token: str, *, athlete_id: int | None = None) -> StravaTokenExchangeResponse:
        data = self._post_token(
            {
                "client_id": self.settings.strava_client_id,
                "client_secret": self.settings.strava_client_secret,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
            }
        )
        try:
            return StravaTokenExchangeResponse(
                access_token=data["access_token"],
                refresh_token=data.get("refresh_token", refresh_token),
                token_type=data.get("token_type", "Bearer"),
                scope=data.get("scope", self.settings.strava_scope),
                expires_at=_resolve_expires_at(data),
                athlete_id=_extract_athlete_id(data, fallback=athlete_id, required=False),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ProviderAPIError("Strava refresh payload malformed") from exc

    def _post_token(self, payload: dict[str, str]) -> dict[str, Any]:
        response = self._send_token_request(payload)

        if response.status_code == 429:
            raise RateLimited("Strava token endpoint rate limited")
        if response.status_code >= 500:
            raise ProviderAPIError(f"Strava token endpoint error {response.status_code}")
        if response.status_code >= 400:
            logger.info(
                "strava.token.rejected",
                grant_type=payload["grant_type"],
                status_code=response.status_code,
            )
            raise StravaAuthError(f"Strava rejected {payload['grant_type']} grant")

        try:
            return response.json()
        except ValueError as exc:
            raise ProviderAPIError("Strava token endpoint returned invalid JSON") from exc

    def _send_token_request(self, payload: dict[str, str]) -> httpx.Response:
        attempts = self.settings.strava_max_attempts
        for attempt in range(1, attempts + 1):
            try:
                return httpx.post(
                    str(self.settings.strava_token_url),
                    data=payload,
                    timeout=self.settings.strava_request_timeout_seconds,
                )
            except httpx.TransportError as exc:
                logger.warning(
                    "strava.token.transport_error",
                    grant_type=payload["grant_type"],
                    attempt=attempt,
                    error=str(exc),
                )
                if attempt == attempts:
                    raise TransientNetworkError(
                        f"Error contacting Strava token endpoint after {attempts} attempts"
                    ) from exc
                self.sleep(float(attempt))
        raise AssertionError("unreachable")


def _resolve_expires_at(data: dict[str, Any]) -> datetime:
    expires_at = data.get("expires_at")
    if isinstance(expires_at, (int, float)):
        return datetime.fromtimestamp(expires_at, tz=timezone.utc)
    if isinstance(expires_at, datetime):
        return expires_at
    raise ValueError("expires_at missing or invalid")


def _extract_athlete_id(data: dict[str, Any], fallback: int | None = None, required: bool = True) -> int | None:
    athlete = data.get("athlete")
    if isinstance(athlete, dict) and isinstance(athlete.get("id"), int):
        return athlete["id"]
    if fallback is not None or not required:
        return fallback
    raise ValueError("Athlete id missing")
