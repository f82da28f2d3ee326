from __future__ import annotations

import pytest

from carparks.cache.geo_index import GeospatialCache
from carparks.common.errors import StoreError
from carparks.common.models import AvailabilitySample, CarParkAttributes, GeoIndexEntry, IngestionReport
from carparks.ingest.availability_sync import run_availability_sync
from carparks.ingest.bulk_import import run_bulk_import
from carparks.store.interfaces import UpsertResult


class ListSource:
    name = "fake"

    def __init__(self, items):
        self.items = list(items)

    def iter_rows(self, report):
        for item in self.items:
            report.rows_in += 1
            yield item

    iter_samples = iter_rows


class FlakyStore:
    """Commits the first ``good_batches`` batches, then raises."""

    def __init__(self, good_batches: int = 1):
        self.good_batches = good_batches
        self.batches = 0

    def _maybe_fail(self):
        self.batches += 1
        if self.batches > self.good_batches:
            raise StoreError("write failed")

    def upsert_attributes(self, batch):
        self._maybe_fail()
        indexable = tuple(GeoIndexEntry(a.code, a.longitude, a.latitude) for a in batch)
        return UpsertResult(created=len(batch), indexable=indexable)

    def update_availability_batch(self, samples):
        self._maybe_fail()
        return len(samples)

    def find_active_positions(self):
        return []


def _attributes(code: str) -> CarParkAttributes:
    return CarParkAttributes(code=code, address=f"BLK {code}", latitude=1.30, longitude=103.85)


def test_bulk_processed_counts_only_committed_batches():
    report = IngestionReport(job="bulk-import", run_id="run-1")
    cache = GeospatialCache()

    with pytest.raises(StoreError):
        run_bulk_import(
            ListSource([_attributes(f"A{i}") for i in range(5)]),
            FlakyStore(good_batches=1),
            cache,
            report,
            batch_size=2,
        )

    assert report.processed == 2
    assert report.written == 2
    assert report.rows_in == 4
    assert cache.size == 2
    assert cache.rebuild_count == 0


def test_availability_processed_counts_only_committed_batches():
    report = IngestionReport(job="availability-sync", run_id="run-1")
    samples = [AvailabilitySample(f"A{i}", 10, i, "C") for i in range(5)]

    with pytest.raises(StoreError):
        run_availability_sync(ListSource(samples), FlakyStore(good_batches=1), GeospatialCache(), report, batch_size=2)

    assert report.processed == 2
    assert report.written == 2
    assert report.not_found == 0


def test_jobs_refresh_cache_from_store_after_last_batch():
    report = IngestionReport(job="bulk-import", run_id="run-1")
    cache = GeospatialCache()

    run_bulk_import(ListSource([_attributes("A1"), _attributes("A2")]), FlakyStore(good_batches=5), cache, report, batch_size=1)

    assert report.processed == 2
    assert report.imported == 2
    # The store reports no active positions, so the refresh leaves the index empty.
    assert cache.size == 0
    assert cache.rebuild_count == 1
