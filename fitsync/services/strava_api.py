from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable
import time

import httpx
import structlog

from fitsync.core.config import Settings
from fitsync.core.errors import ProviderAPIError, ProviderAuthError, RateLimited, TransientNetworkError

logger = structlog.get_logger(__name__)


@dataclass
class StravaActivityClient:
    """Bearer-authenticated calls against the Strava activities API.

    Transport failures are retried up to ``settings.strava_max_attempts`` times.
    A 429 is waited out once when ``Retry-After`` is short enough, otherwise it
    surfaces as ``RateLimited`` so callers can defer the account.
    """

    settings: Settings
    request_func: Callable[..., httpx.Response] | None = None
    sleep: Callable[[float], None] = time.sleep

    def __post_init__(self) -> None:
        if self.request_func is None:
            self.request_func = self._default_request

    def list_activities(
        self,
        access_token: str,
        *,
        after: datetime,
        per_page: int,
        page: int = 1,
    ) -> list[dict[str, Any]]:
        params = {"after": int(after.timestamp()), "per_page": per_page, "page": page}
        result = self._get_json(access_token, "/athlete/activities", params=params)
        if not isinstance(result, list):
            raise ProviderAPIError("Unexpected activity list payload")
        return result

    def get_activity(self, access_token: str, activity_id: int | str) -> dict[str, Any]:
        result = self._get_json(
            access_token,
            f"/activities/{activity_id}",
            params={"include_all_efforts": "false"},
            not_found_message="Strava activity not found",
        )
        if not isinstance(result, dict):
            raise ProviderAPIError("Unexpected activity payload")
        return result

    def _get_json(
        self,
        access_token: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        not_found_message: str = "Strava resource not found",
    ) -> Any:
        url = f"{self.settings.strava_api_base}{path}"
        headers = {"Authorization": f"Bearer {access_token}"}

        response = self._send(url, headers, params or {})
        if response.status_code == 429:
            retry_after = _retry_after(response)
            if retry_after is None or retry_after > self.settings.strava_rate_limit_max_wait_seconds:
                raise RateLimited(retry_after=retry_after)
            logger.info("strava.api.rate_limited", path=path, retry_after=retry_after)
            self.sleep(retry_after)
            response = self._send(url, headers, params or {})
            if response.status_code == 429:
                raise RateLimited(retry_after=_retry_after(response))

        if response.status_code == 200:
            try:
                return response.json()
            except ValueError as exc:
                raise ProviderAPIError("Strava returned invalid JSON") from exc
        if response.status_code == 401:
            raise ProviderAuthError()
        if response.status_code == 404:
            raise ProviderAPIError(not_found_message, status_code=404)

        raise ProviderAPIError(f"Strava API error {response.status_code}", status_code=502)

    def _send(self, url: str, headers: dict[str, str], params: dict[str, Any]) -> httpx.Response:
        attempts = self.settings.strava_max_attempts
        for attempt in range(1, attempts + 1):
            try:
                assert self.request_func is not None
                return self.request_func(
                    "GET",
                    url,
                    headers=headers,
                    params=params,
                    timeout=self.settings.strava_request_timeout_seconds,
                )
            except httpx.TransportError as exc:
                logger.warning("strava.api.transport_error", url=url, attempt=attempt, error=str(exc))
                if attempt == attempts:
                    raise TransientNetworkError(f"Strava request failed after {attempts} attempts") from exc
                self.sleep(float(attempt))
        raise AssertionError("unreachable")

    @staticmethod
    def _default_request(
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        return httpx.request(method, url, headers=headers, params=params, timeout=timeout)


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None
