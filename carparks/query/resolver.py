"""Nearest car park resolution: geo cache first, backing store as fallback."""

from __future__ import annotations

import logging
import math
import time
from typing import Iterable

from carparks.cache.geo_index import GeoHit, GeospatialCache
from carparks.common.errors import (
    InvalidCoordinatesError,
    InvalidPageParametersError,
    LookupFailedError,
    StoreError,
)
from carparks.common.models import CarParkRecord, CarParkView
from carparks.geo.distance import haversine_m, valid_lat_lon
from carparks.store.interfaces import CarParkReader

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_RADIUS_M = 10_000.0
DEFAULT_MAX_PER_PAGE = 100
DEFAULT_FETCH_CHUNK_SIZE = 100


def validate_query(lat: float, lon: float, page: int, per_page: int, max_per_page: int) -> None:
    try:
        lat_f, lon_f = float(lat), float(lon)
    except (TypeError, ValueError) as exc:
        raise InvalidCoordinatesError("Latitude and longitude must be numbers") from exc
    if not valid_lat_lon(lat_f, lon_f):
        raise InvalidCoordinatesError(
            "Latitude must be between -90 and 90 and longitude between -180 and 180"
        )
    if isinstance(page, bool) or not isinstance(page, int) or page < 1:
        raise InvalidPageParametersError("Page must be an integer of at least 1")
    if isinstance(per_page, bool) or not isinstance(per_page, int) or not 1 <= per_page <= max_per_page:
        raise InvalidPageParametersError(f"Page size must be between 1 and {max_per_page}")


def _servable(record: CarParkRecord | None) -> bool:
    return (
        record is not None
        and record.is_active
        and record.has_coordinates
        and record.available_lots > 0
    )


class NearestCarParkResolver:
    def __init__(
        self,
        store: CarParkReader,
        cache: GeospatialCache,
        *,
        search_radius_m: float = DEFAULT_SEARCH_RADIUS_M,
        max_per_page: int = DEFAULT_MAX_PER_PAGE,
        fetch_chunk_size: int = DEFAULT_FETCH_CHUNK_SIZE,
    ) -> None:
        if search_radius_m <= 0:
            raise ValueError("search_radius_m must be positive")
        self.store = store
        self.cache = cache
        self.search_radius_m = float(search_radius_m)
        self.max_per_page = int(max_per_page)
        self.fetch_chunk_size = max(1, int(fetch_chunk_size))

    @classmethod
    def from_config(cls, store: CarParkReader, cache: GeospatialCache, query_config: dict) -> "NearestCarParkResolver":
        return cls(
            store,
            cache,
            search_radius_m=float(query_config["search_radius_m"]),
            max_per_page=int(query_config["max_per_page"]),
            fetch_chunk_size=int(query_config.get("fetch_chunk_size", DEFAULT_FETCH_CHUNK_SIZE)),
        )

    def find_nearest(self, lat: float, lon: float, page: int = 1, per_page: int = 10) -> list[CarParkView]:
        """Nearest servable car parks for one page, closest first.

        An empty list means nothing is in range; a failed lookup raises
        ``LookupFailedError`` instead.
        """
        validate_query(lat, lon, page, per_page, self.max_per_page)
        lat, lon = float(lat), float(lon)
        started = time.monotonic()

        try:
            views = self._from_cache(lat, lon, page, per_page)
            source = "cache"
            if views is None:
                views = self._from_store(lat, lon, page, per_page)
                source = "store"
        except StoreError as exc:
            logger.error(
                "nearest lookup failed",
                extra={"event": "LOOKUP_FAILED", "status": "error", "error_code": exc.error_code},
            )
            raise LookupFailedError(f"Nearest car park lookup failed for ({lat}, {lon})") from exc

        logger.debug(
            "nearest lookup served from %s",
            source,
            extra={
                "event": "LOOKUP",
                "status": "ok",
                "rows_out": len(views),
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return views

    def _cache_hits(self, lat: float, lon: float) -> list[GeoHit]:
        try:
            return self.cache.radius_query(lon, lat, self.search_radius_m)
        except Exception:
            # Losing the cache costs latency, never correctness.
            logger.warning("geo cache query failed, using store", exc_info=True, extra={"event": "CACHE_FAIL"})
            return []

    def _from_cache(self, lat: float, lon: float, page: int, per_page: int) -> list[CarParkView] | None:
        """The requested page from cache candidates, or None if they run short."""
        hits = self._cache_hits(lat, lon)
        needed = page * per_page
        if len(hits) < needed:
            return None

        servable: list[CarParkView] = []
        for chunk in self._hit_chunks(hits):
            records = self.store.find_by_codes([hit.code for hit in chunk])
            for hit in chunk:
                record = records.get(hit.code)
                if not _servable(record):
                    continue
                distance = haversine_m(lat, lon, record.latitude, record.longitude)
                servable.append(CarParkView.from_record(record, distance))

        if len(servable) < needed:
            return None
        # Every in-radius hit is resolved: stored positions win over cached
        # ones, so the order is only known after the last chunk.
        servable.sort(key=lambda view: (view.distance_m, view.code))
        offset = (page - 1) * per_page
        return servable[offset : offset + per_page]

    def _hit_chunks(self, hits: list[GeoHit]) -> Iterable[list[GeoHit]]:
        for start in range(0, len(hits), self.fetch_chunk_size):
            yield hits[start : start + self.fetch_chunk_size]

    def _from_store(self, lat: float, lon: float, page: int, per_page: int) -> list[CarParkView]:
        offset = (page - 1) * per_page
        rows = self.store.find_nearest_by_distance(lat, lon, limit=per_page, offset=offset)
        views = [
            CarParkView.from_record(record, distance)
            for record, distance in rows
            if _servable(record) and math.isfinite(distance)
        ]
        views.sort(key=lambda view: (view.distance_m, view.code))
        return views
