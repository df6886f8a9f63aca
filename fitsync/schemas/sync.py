from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class SyncItemError(BaseModel):
    external_id: str | None = None
    message: str


class SyncOutcome(BaseModel):
    user_id: int
    created: int = 0
    skipped_duplicate: int = 0
    skipped_unsupported_type: int = 0
    per_item_errors: list[SyncItemError] = Field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ActivityRecordSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    external_id: str
    source: str
    kind: str
    name: str | None = None
    started_at: datetime | None = None
    moving_duration_seconds: int | None = None
    elapsed_duration_seconds: int | None = None
    distance_meters: float | None = None
    elevation_gain_meters: float | None = None
    avg_heart_rate: float | None = None
    max_heart_rate: float | None = None
    calories: float | None = None
    derived_pace_seconds_per_km: float | None = None
