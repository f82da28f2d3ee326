"""Capabilities the rest of the system needs from the backing store.

The availability path only gets ``AvailabilityWriter``, which has no way to
create a record: facilities are originated by the bulk attribute feed alone.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Sequence

from carparks.common.models import AvailabilitySample, CarParkAttributes, CarParkRecord, GeoIndexEntry


@dataclass(frozen=True)
class UpsertResult:
    created: int = 0
    updated: int = 0
    # Positions of written rows that are active, ready for the geo index.
    indexable: tuple[GeoIndexEntry, ...] = ()

    @property
    def written(self) -> int:
        return self.created + self.updated


class PositionReader(Protocol):
    def find_active_positions(self) -> list[GeoIndexEntry]: ...


class CarParkReader(PositionReader, Protocol):
    def find_by_codes(self, codes: Sequence[str]) -> dict[str, CarParkRecord]: ...

    def find_nearest_by_distance(
        self, lat: float, lon: float, limit: int, offset: int
    ) -> list[tuple[CarParkRecord, float]]: ...


class AttributeWriter(PositionReader, Protocol):
    def upsert_attributes(self, batch: Sequence[CarParkAttributes]) -> UpsertResult: ...


class AvailabilityWriter(PositionReader, Protocol):
    def update_availability_batch(self, samples: Sequence[AvailabilitySample]) -> int: ...
