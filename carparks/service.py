"""Wiring of store, cache, resolver and ingestion jobs from one config mapping."""

from __future__ import annotations

from datetime import datetime
from functools import partial
from pathlib import Path

from carparks.cache.geo_index import GeospatialCache
from carparks.common.config_loader import resolve_api_key
from carparks.common.constants import JOBS
from carparks.common.http import HttpClient, RetryConfig, TimeoutConfig
from carparks.common.models import CarParkRecord, CarParkView, IngestionReport
from carparks.geo.coordinates import PlanarTransformer
from carparks.ingest.availability_feed import LiveAvailabilitySource
from carparks.ingest.availability_sync import run_availability_sync
from carparks.ingest.bulk_import import CsvAttributeSource, run_bulk_import
from carparks.ingest.runner import IngestionRunner, PeriodicScheduler
from carparks.query.resolver import NearestCarParkResolver
from carparks.store.database import create_store_engine, init_schema
from carparks.store.repository import CarParkRepository

BULK_IMPORT_JOB, AVAILABILITY_SYNC_JOB = JOBS


class CarParkService:
    def __init__(
        self,
        config: dict,
        *,
        repository: CarParkRepository | None = None,
        http_client: HttpClient | None = None,
        data_dir: Path | None = None,
    ) -> None:
        self.config = config
        if repository is None:
            engine = create_store_engine(config["database"])
            init_schema(engine)
            repository = CarParkRepository(engine)
        self.repository = repository
        self.cache = GeospatialCache.from_config(config["cache"])
        self.transformer = PlanarTransformer.from_config(config["projection"])
        self.resolver = NearestCarParkResolver.from_config(self.repository, self.cache, config["query"])

        live_cfg = config["live_feed"]
        self.timeout = TimeoutConfig.from_config(live_cfg["timeout"])
        self._owns_http_client = http_client is None
        self.http_client = http_client or HttpClient(
            timeout=self.timeout,
            retry=RetryConfig.from_config(live_cfg.get("retry")),
        )
        self.attribute_source = CsvAttributeSource.from_config(config["bulk_feed"], self.transformer)
        self.availability_source = LiveAvailabilitySource(
            self.http_client,
            live_cfg["url"],
            items_prefix=live_cfg["items_prefix"],
            api_key=resolve_api_key(live_cfg),
            timeout=self.timeout,
        )

        self.runner = IngestionRunner(
            {
                BULK_IMPORT_JOB: partial(
                    run_bulk_import,
                    self.attribute_source,
                    self.repository,
                    self.cache,
                    batch_size=int(config["bulk_feed"]["batch_size"]),
                ),
                AVAILABILITY_SYNC_JOB: partial(
                    run_availability_sync,
                    self.availability_source,
                    self.repository,
                    self.cache,
                    batch_size=int(live_cfg["batch_size"]),
                ),
            },
            data_dir=data_dir,
        )

    def close(self) -> None:
        if self._owns_http_client:
            self.http_client.close()

    def __enter__(self) -> "CarParkService":
        return self

    def __exit__(self, *_exc_info) -> None:
        self.close()

    def find_nearest(self, lat: float, lon: float, page: int = 1, per_page: int | None = None) -> list[CarParkView]:
        if per_page is None:
            per_page = int(self.config["query"].get("default_per_page", 10))
        return self.resolver.find_nearest(lat, lon, page, per_page)

    def import_bulk_data(self, *, run_id: str | None = None, wait: bool = False) -> IngestionReport:
        return self.runner.run(BULK_IMPORT_JOB, run_id=run_id, wait=wait, timeout=self._wait_timeout())

    def sync_availability(self, *, run_id: str | None = None, wait: bool = False) -> IngestionReport:
        return self.runner.run(AVAILABILITY_SYNC_JOB, run_id=run_id, wait=wait, timeout=self._wait_timeout())

    def _wait_timeout(self) -> float | None:
        value = self.config["schedule"].get("wait_timeout_seconds")
        if not value:
            return None
        return float(value)

    def refresh_cache(self) -> int:
        return self.cache.refresh(self.repository.find_active_positions)

    def soft_delete(self, code: str) -> bool:
        deleted = self.repository.soft_delete(code)
        self.cache.remove(code)
        return deleted

    def restore(self, code: str) -> bool:
        restored = self.repository.restore(code)
        if restored:
            record = self.repository.find_by_code(code)
            if record is not None and record.has_coordinates:
                self.cache.upsert(record.code, record.longitude, record.latitude)
        return restored

    def get_car_park(self, code: str) -> CarParkRecord | None:
        return self.repository.find_by_code(code)

    def list_car_parks(
        self,
        *,
        car_park_type: str | None = None,
        parking_system: str | None = None,
        created_since: datetime | None = None,
        updated_since: datetime | None = None,
        available_only: bool = False,
    ) -> list[CarParkRecord]:
        """Active records matching every given filter, ordered by code."""
        queries = []
        if car_park_type is not None:
            queries.append(partial(self.repository.find_by_type, car_park_type))
        if parking_system is not None:
            queries.append(partial(self.repository.find_by_parking_system, parking_system))
        if created_since is not None:
            queries.append(partial(self.repository.find_created_after, created_since))
        if updated_since is not None:
            queries.append(partial(self.repository.find_updated_after, updated_since))
        if available_only:
            queries.append(self.repository.find_active_with_availability)
        if not queries:
            return self.repository.find_active()

        records = queries[0]()
        for query in queries[1:]:
            keep = {record.code for record in query()}
            records = [record for record in records if record.code in keep]
        return records

    def scheduler(self) -> PeriodicScheduler:
        schedule_cfg = self.config["schedule"]
        return PeriodicScheduler(
            self.runner,
            schedule_cfg["jobs"],
            float(schedule_cfg["interval_seconds"]),
        )

    def stats(self) -> dict:
        return {
            "active_car_parks": self.repository.count_active(),
            "car_parks_with_availability": self.repository.count_with_availability(),
            "cache": self.cache.stats(),
            "running_job": self.runner.running_job,
        }
