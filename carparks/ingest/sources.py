"""Feed-side capabilities.

An ``AttributeSource`` carries positions and may originate records. An
``AvailabilitySource`` carries lot counts only and is applied as updates.
Both count per-item parse failures on the report they are given and keep
going.
"""

from __future__ import annotations

from typing import Iterable, Iterator, Protocol, Sequence, TypeVar

from carparks.common.models import AvailabilitySample, CarParkAttributes, IngestionReport

T = TypeVar("T")


class AttributeSource(Protocol):
    name: str

    def iter_rows(self, report: IngestionReport) -> Iterator[CarParkAttributes]: ...


class AvailabilitySource(Protocol):
    name: str

    def iter_samples(self, report: IngestionReport) -> Iterator[AvailabilitySample]: ...


def iter_batches(items: Iterable[T], size: int) -> Iterator[Sequence[T]]:
    if size < 1:
        raise ValueError("batch size must be at least 1")
    batch: list[T] = []
    for item in items:
        batch.append(item)
        if len(batch) >= size:
            yield batch
            batch = []
    if batch:
        yield batch
