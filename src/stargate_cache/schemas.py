from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import StrEnum
from typing import Any, TypeVar

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_serializer,
    model_validator,
)

INDEX_VERSION = 1
TModel = TypeVar("TModel", bound=BaseModel)


def now_utc() -> datetime:
    return datetime.now(tz=timezone.utc)


def _normalize_datetime(value: datetime) -> datetime:
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def coerce_date(value: date | str) -> date:
    """Accept a ``date`` or an ISO ``YYYY-MM-DD`` string, optionally with a ``T...`` time part."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    day = str(value).strip().split("T", 1)[0]
    # fromisoformat also accepts the basic YYYYMMDD form
    if len(day) != 10:
        raise ValueError(f"Invalid date: {value!r}")
    return date.fromisoformat(day)


class DTOBase(BaseModel):
    model_config = ConfigDict(extra="forbid")


class RejectReason(StrEnum):
    TOO_SMALL = "too_small"
    BAD_SIGNATURE = "bad_signature"


class ReferenceStrategy(StrEnum):
    DATA_URL = "data_url"
    STATIC_PATH = "static_path"


class IndexLoadStatus(StrEnum):
    ABSENT = "absent"
    MALFORMED = "malformed"
    VALID = "valid"


class BoundingBox(DTOBase):
    """Geographic rectangle, stored as ``[min_lon, min_lat, max_lon, max_lat]``."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    min_lon: float = Field(ge=-180.0, le=180.0)
    min_lat: float = Field(ge=-90.0, le=90.0)
    max_lon: float = Field(ge=-180.0, le=180.0)
    max_lat: float = Field(ge=-90.0, le=90.0)

    @model_validator(mode="before")
    @classmethod
    def from_sequence(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple)):
            if len(value) != 4:
                raise ValueError("bounding box must have exactly 4 numbers")
            min_lon, min_lat, max_lon, max_lat = value
            return {
                "min_lon": min_lon,
                "min_lat": min_lat,
                "max_lon": max_lon,
                "max_lat": max_lat,
            }
        return value

    @model_validator(mode="after")
    def validate_ordering(self) -> BoundingBox:
        if self.max_lon < self.min_lon:
            raise ValueError("bounding box max_lon must be >= min_lon")
        if self.max_lat < self.min_lat:
            raise ValueError("bounding box max_lat must be >= min_lat")
        return self

    @model_serializer
    def to_list(self) -> list[float]:
        return [self.min_lon, self.min_lat, self.max_lon, self.max_lat]

    @classmethod
    def zero(cls) -> BoundingBox:
        return cls(min_lon=0.0, min_lat=0.0, max_lon=0.0, max_lat=0.0)

    @classmethod
    def parse(cls, raw: str) -> BoundingBox:
        """Parse ``"min_lon,min_lat,max_lon,max_lat"``."""
        parts = [part.strip() for part in raw.split(",")]
        if len(parts) != 4:
            raise ValueError(f"bounding box must have 4 comma-separated numbers: {raw}")
        try:
            numbers = [float(part) for part in parts]
        except ValueError as exc:
            raise ValueError(f"bounding box has a non-numeric value: {raw}") from exc
        return cls.model_validate(numbers)

    def as_tuple(self) -> tuple[float, float, float, float]:
        return (self.min_lon, self.min_lat, self.max_lon, self.max_lat)


class ImageEntry(DTOBase):
    model_config = ConfigDict(extra="forbid", frozen=True)

    date: date
    reference: str
    fetched_at: datetime = Field(default_factory=now_utc)

    @field_validator("date", mode="before")
    @classmethod
    def validate_date(cls, value: Any) -> date:
        return coerce_date(value)

    @field_validator("fetched_at", mode="after")
    @classmethod
    def validate_fetched_at(cls, value: datetime) -> datetime:
        return _normalize_datetime(value)


class IndexDocument(DTOBase):
    version: int = INDEX_VERSION
    bounding_box: BoundingBox = Field(default_factory=BoundingBox.zero)
    entries: list[ImageEntry] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=now_utc)

    @field_validator("version")
    @classmethod
    def validate_version(cls, value: int) -> int:
        if value != INDEX_VERSION:
            raise ValueError(f"unsupported index version: {value}")
        return value

    @field_validator("last_updated", mode="after")
    @classmethod
    def validate_last_updated(cls, value: datetime) -> datetime:
        return _normalize_datetime(value)

    @model_validator(mode="after")
    def validate_unique_dates(self) -> IndexDocument:
        seen: set[date] = set()
        for entry in self.entries:
            if entry.date in seen:
                raise ValueError(f"duplicate index entry for date {entry.date.isoformat()}")
            seen.add(entry.date)
        return self

    def known_dates(self) -> set[date]:
        return {entry.date for entry in self.entries}


@dataclass(slots=True, frozen=True)
class IndexLoadResult:
    status: IndexLoadStatus
    document: IndexDocument | None = None

    @property
    def is_valid(self) -> bool:
        return self.status == IndexLoadStatus.VALID


@dataclass(slots=True, frozen=True)
class ValidationResult:
    accepted: bool
    reason: RejectReason | None = None

    @classmethod
    def ok(cls) -> ValidationResult:
        return cls(accepted=True)

    @classmethod
    def rejected(cls, reason: RejectReason) -> ValidationResult:
        return cls(accepted=False, reason=reason)


def validate_json(model_cls: type[TModel], payload: str | bytes | bytearray) -> TModel:
    return model_cls.model_validate_json(payload)
