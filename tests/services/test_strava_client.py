from datetime import datetime, timezone

import httpx
import pytest

from fitsync.core.config import Settings
from fitsync.core.errors import (
    ProviderAPIError,
    ProviderAuthError,
    RateLimited,
    TransientNetworkError,
)
from fitsync.services.strava import StravaAuthError, StravaAuthService
from fitsync.services.strava_api import StravaActivityClient
from tests.fakes import FakeRequester, make_response


def _client(settings: Settings, requester: FakeRequester, sleeps: list[float] | None = None) -> StravaActivityClient:
    recorded = sleeps if sleeps is not None else []
    return StravaActivityClient(settings=settings, request_func=requester, sleep=recorded.append)


def test_list_activities_sends_window_and_bearer(settings: Settings) -> None:
    requester = FakeRequester([make_response(200, json_body=[{"id": 1}])])
    after = datetime(2026, 10, 1, tzinfo=timezone.utc)

    activities = _client(settings, requester).list_activities("tok", after=after, per_page=50, page=2)

    assert activities == [{"id": 1}]
    call = requester.calls[0]
    assert call["url"] == "https://www.strava.com/api/v3/athlete/activities"
    assert call["params"] == {"after": int(after.timestamp()), "per_page": 50, "page": 2}
    assert call["headers"] == {"Authorization": "Bearer tok"}
    assert call["timeout"] == settings.strava_request_timeout_seconds


def test_get_activity_fetches_single_activity(settings: Settings) -> None:
    requester = FakeRequester([make_response(200, json_body={"id": 77, "sport_type": "Run"})])

    activity = _client(settings, requester).get_activity("tok", 77)

    assert activity["id"] == 77
    assert requester.calls[0]["url"].endswith("/activities/77")


def test_unauthorized_is_surfaced_distinctly(settings: Settings) -> None:
    requester = FakeRequester([make_response(401, json_body={"message": "Authorization Error"})])

    with pytest.raises(ProviderAuthError):
        _client(settings, requester).get_activity("tok", 1)


def test_short_rate_limit_is_waited_out_once(settings: Settings) -> None:
    sleeps: list[float] = []
    requester = FakeRequester(
        [
            make_response(429, headers={"Retry-After": "2"}),
            make_response(200, json_body=[]),
        ]
    )

    result = _client(settings, requester, sleeps).list_activities(
        "tok", after=datetime.now(timezone.utc), per_page=10
    )

    assert result == []
    assert sleeps == [2.0]
    assert len(requester.calls) == 2


def test_persistent_rate_limit_raises(settings: Settings) -> None:
    requester = FakeRequester(
        [
            make_response(429, headers={"Retry-After": "1"}),
            make_response(429, headers={"Retry-After": "900"}),
        ]
    )

    with pytest.raises(RateLimited) as excinfo:
        _client(settings, requester).get_activity("tok", 1)

    assert excinfo.value.retry_after == 900.0


def test_long_rate_limit_is_not_slept_on(settings: Settings) -> None:
    sleeps: list[float] = []
    requester = FakeRequester([make_response(429, headers={"Retry-After": "900"})])

    with pytest.raises(RateLimited):
        _client(settings, requester, sleeps).get_activity("tok", 1)

    assert sleeps == []
    assert len(requester.calls) == 1


def test_transport_errors_are_retried_then_surfaced(settings: Settings) -> None:
    sleeps: list[float] = []
    requester = FakeRequester([httpx.ConnectTimeout("timeout")] * settings.strava_max_attempts)

    with pytest.raises(TransientNetworkError):
        _client(settings, requester, sleeps).get_activity("tok", 1)

    assert len(requester.calls) == settings.strava_max_attempts
    assert len(sleeps) == settings.strava_max_attempts - 1


def test_transport_error_then_success(settings: Settings) -> None:
    requester = FakeRequester([httpx.ReadError("reset"), make_response(200, json_body={"id": 3})])

    assert _client(settings, requester).get_activity("tok", 3) == {"id": 3}


def test_not_found_and_server_errors(settings: Settings) -> None:
    requester = FakeRequester([make_response(404), make_response(503)])
    client = _client(settings, requester)

    with pytest.raises(ProviderAPIError) as not_found:
        client.get_activity("tok", 1)
    assert not_found.value.status_code == 404

    with pytest.raises(ProviderAPIError) as server_error:
        client.get_activity("tok", 1)
    assert server_error.value.status_code == 502


def test_refresh_posts_refresh_grant(settings: Settings, monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict = {}

    def fake_post(url: str, data: dict, timeout: float) -> httpx.Response:
        captured.update(url=url, data=data, timeout=timeout)
        return httpx.Response(
            200,
            json={"access_token": "a2", "refresh_token": "r2", "expires_at": 1_900_000_000, "token_type": "Bearer"},
            request=httpx.Request("POST", url),
        )

    monkeypatch.setattr("fitsync.services.strava.httpx.post", fake_post)

    exchange = StravaAuthService(settings).refresh_access_token("r1", athlete_id=4242)

    assert captured["url"] == "https://www.strava.com/oauth/token"
    assert captured["data"]["grant_type"] == "refresh_token"
    assert captured["data"]["refresh_token"] == "r1"
    assert exchange.access_token == "a2"
    assert exchange.refresh_token == "r2"
    assert exchange.athlete_id == 4242
    assert exchange.expires_at == datetime.fromtimestamp(1_900_000_000, tz=timezone.utc)


def test_refresh_rejection_and_outage_are_distinct(settings: Settings, monkeypatch: pytest.MonkeyPatch) -> None:
    statuses = [400, 503]

    def fake_post(url: str, data: dict, timeout: float) -> httpx.Response:
        return httpx.Response(statuses.pop(0), json={"message": "Bad Request"}, request=httpx.Request("POST", url))

    monkeypatch.setattr("fitsync.services.strava.httpx.post", fake_post)
    service = StravaAuthService(settings)

    with pytest.raises(StravaAuthError):
        service.refresh_access_token("revoked")
    with pytest.raises(ProviderAPIError):
        service.refresh_access_token("r1")


def test_refresh_transport_failure_is_retried_then_surfaced(settings: Settings, monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[str] = []
    sleeps: list[float] = []

    def fake_post(url: str, data: dict, timeout: float) -> httpx.Response:
        calls.append(url)
        raise httpx.ConnectError("dns failure")

    monkeypatch.setattr("fitsync.services.strava.httpx.post", fake_post)

    with pytest.raises(TransientNetworkError):
        StravaAuthService(settings, sleep=sleeps.append).refresh_access_token("r1")
    assert len(calls) == settings.strava_max_attempts
    assert sleeps == [1.0, 2.0]


def test_refresh_recovers_after_transport_blip(settings: Settings, monkeypatch: pytest.MonkeyPatch) -> None:
    outcomes: list[Exception | None] = [httpx.ConnectTimeout("timed out"), None]
    sleeps: list[float] = []

    def fake_post(url: str, data: dict, timeout: float) -> httpx.Response:
        failure = outcomes.pop(0)
        if failure is not None:
            raise failure
        return httpx.Response(
            200,
            json={"access_token": "a2", "refresh_token": "r2", "expires_at": 1_900_000_000},
            request=httpx.Request("POST", url),
        )

    monkeypatch.setattr("fitsync.services.strava.httpx.post", fake_post)

    exchange = StravaAuthService(settings, sleep=sleeps.append).refresh_access_token("r1")

    assert exchange.access_token == "a2"
    assert outcomes == []
    assert sleeps == [1.0]


def test_exchange_code_requires_athlete(settings: Settings, monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_post(url: str, data: dict, timeout: float) -> httpx.Response:
        assert data["grant_type"] == "authorization_code"
        return httpx.Response(
            200,
            json={"access_token": "a", "refresh_token": "r", "expires_at": 1_900_000_000},
            request=httpx.Request("POST", url),
        )

    monkeypatch.setattr("fitsync.services.strava.httpx.post", fake_post)

    with pytest.raises(StravaAuthError):
        StravaAuthService(settings).exchange_code_for_tokens("code")
