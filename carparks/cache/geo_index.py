"""In-memory geo index of car park positions with swap-on-rebuild semantics."""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Mapping

from carparks.common.models import GeoIndexEntry
from carparks.geo.distance import bounding_box, haversine_m, valid_lat_lon

logger = logging.getLogger(__name__)

DEFAULT_CELL_SIZE_DEGREES = 0.01
# Above this many grid cells a linear scan is cheaper than the cell walk.
MAX_CELLS_PER_QUERY = 10_000


@dataclass(frozen=True)
class GeoHit:
    code: str
    distance_m: float


Cell = tuple[int, int]


class GeoIndex:
    """Immutable snapshot: positions by code plus a lat/lon grid."""

    def __init__(
        self,
        positions: Mapping[str, tuple[float, float]],
        *,
        cell_size: float = DEFAULT_CELL_SIZE_DEGREES,
        built_at: float | None = None,
    ) -> None:
        self.cell_size = cell_size
        self.built_at = time.monotonic() if built_at is None else built_at
        self._positions: dict[str, tuple[float, float]] = dict(positions)
        grid: dict[Cell, list[str]] = {}
        for code, (lon, lat) in self._positions.items():
            grid.setdefault(self._cell(lat, lon), []).append(code)
        self._grid = grid

    @classmethod
    def from_entries(
        cls,
        entries: Iterable[GeoIndexEntry],
        *,
        cell_size: float = DEFAULT_CELL_SIZE_DEGREES,
    ) -> "GeoIndex":
        positions: dict[str, tuple[float, float]] = {}
        for entry in entries:
            if not valid_lat_lon(entry.latitude, entry.longitude):
                continue
            positions[entry.code] = (float(entry.longitude), float(entry.latitude))
        return cls(positions, cell_size=cell_size)

    def _cell(self, lat: float, lon: float) -> Cell:
        return (math.floor(lat / self.cell_size), math.floor(lon / self.cell_size))

    def __len__(self) -> int:
        return len(self._positions)

    def __contains__(self, code: object) -> bool:
        return code in self._positions

    def with_changes(
        self,
        upserts: Mapping[str, tuple[float, float]] | None = None,
        removals: Iterable[str] = (),
    ) -> "GeoIndex":
        positions = dict(self._positions)
        for code in removals:
            positions.pop(code, None)
        if upserts:
            positions.update(upserts)
        return GeoIndex(positions, cell_size=self.cell_size, built_at=self.built_at)

    def _candidates(self, lat: float, lon: float, radius_m: float) -> Iterable[str]:
        box = bounding_box(lat, lon, radius_m)
        if box is None:
            return self._positions.keys()
        min_lat, max_lat, min_lon, max_lon = box
        lat_lo, lon_lo = self._cell(min_lat, min_lon)
        lat_hi, lon_hi = self._cell(max_lat, max_lon)
        n_cells = (lat_hi - lat_lo + 1) * (lon_hi - lon_lo + 1)
        if n_cells > MAX_CELLS_PER_QUERY or n_cells > len(self._grid):
            return self._positions.keys()
        codes: list[str] = []
        for lat_cell in range(lat_lo, lat_hi + 1):
            for lon_cell in range(lon_lo, lon_hi + 1):
                codes.extend(self._grid.get((lat_cell, lon_cell), ()))
        return codes

    def radius_query(self, lon: float, lat: float, radius_m: float, limit: int | None = None) -> list[GeoHit]:
        hits: list[GeoHit] = []
        for code in self._candidates(lat, lon, radius_m):
            point_lon, point_lat = self._positions[code]
            distance = haversine_m(lat, lon, point_lat, point_lon)
            if distance <= radius_m:
                hits.append(GeoHit(code=code, distance_m=distance))
        hits.sort(key=lambda hit: (hit.distance_m, hit.code))
        if limit is not None:
            return hits[:limit]
        return hits


class GeospatialCache:
    """Owned, shared cache component.

    Readers grab the current ``GeoIndex`` reference and never lock. Writers
    build a new snapshot and swap the reference under ``_write_lock``; a
    refresh replays writes that raced it, so none are lost on the swap.
    """

    def __init__(self, *, ttl_seconds: float | None = None, cell_size: float = DEFAULT_CELL_SIZE_DEGREES) -> None:
        self.cell_size = cell_size
        self._ttl_seconds = ttl_seconds
        self._index: GeoIndex | None = None
        self._write_lock = threading.Lock()
        self._refresh_lock = threading.Lock()
        self._journal: list[tuple[dict[str, tuple[float, float]], tuple[str, ...]]] | None = None
        self.rebuild_count = 0

    @classmethod
    def from_config(cls, cache_config: dict) -> "GeospatialCache":
        return cls(
            ttl_seconds=float(cache_config["ttl_seconds"]),
            cell_size=float(cache_config.get("cell_size_degrees", DEFAULT_CELL_SIZE_DEGREES)),
        )

    @property
    def ttl_seconds(self) -> float | None:
        return self._ttl_seconds

    @property
    def size(self) -> int:
        index = self._index
        return 0 if index is None else len(index)

    @property
    def is_warm(self) -> bool:
        return not self.is_expired

    @property
    def is_expired(self) -> bool:
        return self._expired(self._index)

    def _expired(self, index: GeoIndex | None) -> bool:
        if index is None:
            return True
        if self._ttl_seconds is None:
            return False
        return time.monotonic() - index.built_at >= self._ttl_seconds

    def expire(self, ttl_seconds: float | None) -> None:
        """Set the single TTL shared by the whole index; None disables expiry."""
        self._ttl_seconds = ttl_seconds

    def snapshot(self) -> GeoIndex | None:
        return self._index

    def refresh(self, loader: Callable[[], Iterable[GeoIndexEntry]]) -> int:
        """Rebuild from ``loader()`` and swap the new snapshot in.

        ``loader`` runs inside the refresh window, so it must read the store
        then and not earlier. Writes that land while the window is open are
        journalled and replayed onto the new snapshot before the swap.
        Refreshes are serialised by ``_refresh_lock``.
        """
        with self._refresh_lock:
            with self._write_lock:
                self._journal = []
            try:
                fresh = GeoIndex.from_entries(loader(), cell_size=self.cell_size)
            except BaseException:
                with self._write_lock:
                    self._journal = None
                raise
            with self._write_lock:
                for upserts, removals in self._journal:
                    fresh = fresh.with_changes(upserts=upserts, removals=removals)
                replayed = len(self._journal)
                self._journal = None
                self._index = fresh
                self.rebuild_count += 1
        logger.info(
            "geo index rebuilt",
            extra={"event": "CACHE_REBUILD", "rows_out": len(fresh), "rows_in": replayed},
        )
        return len(fresh)

    def rebuild(self, entries: Iterable[GeoIndexEntry]) -> int:
        """Refresh from entries already in hand."""
        return self.refresh(lambda: entries)

    def _apply(self, upserts: dict[str, tuple[float, float]], removals: tuple[str, ...] = ()) -> None:
        # Caller holds _write_lock.
        if self._journal is not None:
            self._journal.append((upserts, removals))
        current = self._index
        if current is None:
            if upserts:
                self._index = GeoIndex(upserts, cell_size=self.cell_size)
            return
        self._index = current.with_changes(upserts=upserts, removals=removals)

    def upsert_many(self, entries: Iterable[GeoIndexEntry]) -> int:
        upserts = {
            entry.code: (float(entry.longitude), float(entry.latitude))
            for entry in entries
            if valid_lat_lon(entry.latitude, entry.longitude)
        }
        if not upserts:
            return 0
        with self._write_lock:
            self._apply(upserts)
        return len(upserts)

    def upsert(self, code: str, lon: float, lat: float) -> None:
        self.upsert_many([GeoIndexEntry(code=code, longitude=lon, latitude=lat)])

    def remove(self, code: str) -> bool:
        with self._write_lock:
            current = self._index
            present = current is not None and code in current
            if present or self._journal is not None:
                self._apply({}, (code,))
        return present

    def clear(self) -> None:
        with self._write_lock:
            self._index = None

    def radius_query(self, lon: float, lat: float, radius_m: float, limit: int | None = None) -> list[GeoHit]:
        """Codes within ``radius_m``, nearest first; empty when cold or expired."""
        index = self._index
        if self._expired(index):
            return []
        return index.radius_query(lon, lat, radius_m, limit=limit)

    def stats(self) -> dict:
        index = self._index
        return {
            "size": 0 if index is None else len(index),
            "warm": self.is_warm,
            "expired": self.is_expired,
            "ttl_seconds": self._ttl_seconds,
            "rebuild_count": self.rebuild_count,
            "age_seconds": None if index is None else round(time.monotonic() - index.built_at, 3),
        }
