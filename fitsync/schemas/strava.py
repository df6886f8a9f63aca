from datetime import datetime, timezone
from typing import Any

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, Field, field_validator


class StravaAuthorizeResponse(BaseModel):
    authorize_url: AnyHttpUrl


class StravaTokenExchangeResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str
    scope: list[str]
    expires_at: datetime
    athlete_id: int | None = None

    @field_validator("expires_at", mode="before")
    @classmethod
    def _coerce_expires_at(cls, value: int | float | datetime) -> datetime:
        if isinstance(value, datetime):
            return value
        return datetime.fromtimestamp(value, tz=timezone.utc)

    @field_validator("scope", mode="before")
    @classmethod
    def _coerce_scope(cls, value: list[str] | str) -> list[str]:
        if isinstance(value, list):
            return value
        if isinstance(value, str):
            return [chunk for chunk in value.split(",") if chunk]
        raise TypeError("Invalid scope type")


class StravaActivity(BaseModel):
    """Activity payload as returned by ``/athlete/activities`` and ``/activities/{id}``."""

    model_config = ConfigDict(extra="ignore")

    id: int
    name: str | None = None
    type: str | None = None
    sport_type: str | None = None
    start_date: datetime | None = None
    distance: float | None = None
    moving_time: int | None = None
    elapsed_time: int | None = None
    total_elevation_gain: float | None = None
    average_heartrate: float | None = None
    max_heartrate: float | None = None
    calories: float | None = None
    kilojoules: float | None = None
    map: dict[str, Any] | None = None


class StravaWebhookEvent(BaseModel):
    object_type: str
    object_id: int
    aspect_type: str
    owner_id: int
    subscription_id: int | None = None
    updates: dict[str, Any] = Field(default_factory=dict)
    event_time: int | None = None


class StravaWebhookChallenge(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    challenge: str = Field(alias="hub.challenge")


class StravaWebhookAck(BaseModel):
    status: str


class StravaConnectionStatus(BaseModel):
    connected: bool
    athlete_id: int | None = None
    expires_at: datetime | None = None
    needs_reauth: bool = False
    last_synced_at: datetime | None = None
