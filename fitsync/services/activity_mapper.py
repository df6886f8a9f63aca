"""Normalization of Strava activity payloads into local activity fields.

Everything here is pure: no I/O, no clock, no database access. Unit
conversion and pace derivation are defined in this module only.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

from fitsync.schemas.strava import StravaActivity

SPORT_KIND_MAP: dict[str, str] = {
    "Run": "run",
    "TrailRun": "run",
    "VirtualRun": "run",
    "Ride": "ride",
    "VirtualRide": "ride",
    "MountainBikeRide": "ride",
    "GravelRide": "ride",
    "EBikeRide": "ride",
    "EMountainBikeRide": "ride",
    "Walk": "walk",
    "Hike": "hike",
    "Swim": "swim",
    "Rowing": "row",
    "VirtualRow": "row",
}

METERS_PER_KM = 1000.0
KCAL_PER_KJ = 0.239006


class Unsupported(Enum):
    UNSUPPORTED = "unsupported"


UNSUPPORTED = Unsupported.UNSUPPORTED


@dataclass(frozen=True, slots=True)
class ActivityDraft:
    external_id: str
    kind: str
    name: str | None
    started_at: datetime | None
    moving_duration_seconds: int | None
    elapsed_duration_seconds: int | None
    distance_meters: float | None
    elevation_gain_meters: float | None
    avg_heart_rate: float | None
    max_heart_rate: float | None
    calories: float | None
    derived_pace_seconds_per_km: float | None
    summary_polyline: str | None


def resolve_kind(sport_type: Any) -> str | None:
    if not isinstance(sport_type, str):
        return None
    return SPORT_KIND_MAP.get(sport_type)


def external_type(payload: Mapping[str, Any]) -> Any:
    return payload.get("sport_type") or payload.get("type")


def meters_to_km(meters: float | None) -> float | None:
    if meters is None:
        return None
    return meters / METERS_PER_KM


def derive_pace(moving_seconds: float | None, distance_meters: float | None) -> float | None:
    """Seconds per kilometre, or ``None`` unless both inputs are positive."""
    if not moving_seconds or not distance_meters:
        return None
    if moving_seconds <= 0 or distance_meters <= 0:
        return None
    return moving_seconds / meters_to_km(distance_meters)


def map_activity(payload: Mapping[str, Any]) -> ActivityDraft | Unsupported:
    """Map one Strava activity payload.

    Types outside ``SPORT_KIND_MAP`` return ``UNSUPPORTED`` without looking at
    the rest of the payload. A supported payload that fails validation raises
    ``pydantic.ValidationError``.
    """
    if not isinstance(payload, Mapping):
        raise TypeError(f"Activity payload must be an object, got {type(payload).__name__}")

    kind = resolve_kind(external_type(payload))
    if kind is None:
        return UNSUPPORTED

    activity = StravaActivity.model_validate(payload)

    calories = activity.calories
    if calories is None and activity.kilojoules is not None:
        calories = round(activity.kilojoules * KCAL_PER_KJ, 1)

    polyline = None
    if activity.map:
        polyline = activity.map.get("summary_polyline") or None

    return ActivityDraft(
        external_id=str(activity.id),
        kind=kind,
        name=activity.name,
        started_at=activity.start_date,
        moving_duration_seconds=activity.moving_time,
        elapsed_duration_seconds=activity.elapsed_time,
        distance_meters=activity.distance,
        elevation_gain_meters=activity.total_elevation_gain,
        avg_heart_rate=activity.average_heartrate,
        max_heart_rate=activity.max_heartrate,
        calories=calories,
        derived_pace_seconds_per_km=derive_pace(activity.moving_time, activity.distance),
        summary_polyline=polyline,
    )
