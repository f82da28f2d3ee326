"""Data models used across the store, cache, query and ingestion layers."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class CarParkAttributes:
    """One bulk feed row after coordinate transformation."""

    code: str
    address: str
    latitude: float
    longitude: float
    car_park_type: str | None = None
    parking_system: str | None = None
    short_term_parking: str | None = None
    free_parking: str | None = None
    night_parking: str | None = None
    decks: str | None = None
    gantry_height: str | None = None
    basement: str | None = None


@dataclass(frozen=True)
class CarParkRecord:
    code: str
    address: str
    latitude: float | None
    longitude: float | None
    total_lots: int = 0
    available_lots: int = 0
    car_park_type: str | None = None
    parking_system: str | None = None
    short_term_parking: str | None = None
    free_parking: str | None = None
    night_parking: str | None = None
    decks: str | None = None
    gantry_height: str | None = None
    basement: str | None = None
    deleted_at: datetime | None = None
    updated_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.deleted_at is None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        for key in ("deleted_at", "updated_at", "created_at"):
            if payload[key] is not None:
                payload[key] = payload[key].isoformat()
        return payload


@dataclass(frozen=True)
class GeoIndexEntry:
    code: str
    longitude: float
    latitude: float


@dataclass(frozen=True)
class AvailabilitySample:
    """A parsed unit of the live feed; applied, never stored as-is."""

    code: str
    total_lots: int
    available_lots: int
    lot_type: str


@dataclass(frozen=True)
class CarParkView:
    code: str
    address: str
    latitude: float
    longitude: float
    total_lots: int
    available_lots: int
    car_park_type: str | None
    distance_m: float

    @classmethod
    def from_record(cls, record: CarParkRecord, distance_m: float) -> "CarParkView":
        return cls(
            code=record.code,
            address=record.address,
            latitude=float(record.latitude),
            longitude=float(record.longitude),
            total_lots=record.total_lots,
            available_lots=record.available_lots,
            car_park_type=record.car_park_type,
            distance_m=round(distance_m, 2),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class IngestionReport:
    job: str
    run_id: str
    status: str = "running"
    rows_in: int = 0
    processed: int = 0
    written: int = 0
    imported: int = 0
    updated: int = 0
    not_found: int = 0
    errors: int = 0
    error_code: str | None = None
    duration_ms: int | None = None
    error_samples: list[str] = field(default_factory=list)

    def record_error(self, message: str, limit: int = 20) -> None:
        self.errors += 1
        if len(self.error_samples) < limit:
            self.error_samples.append(message)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
