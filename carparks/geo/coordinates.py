"""Planar (easting/northing) to WGS84 transformation for the local projection."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from pyproj import CRS, Transformer
from pyproj.exceptions import CRSError, ProjError

from carparks.common.errors import ConfigError, CoordinateConversionError, CoordinateOutOfBoundsError

COORDINATE_DECIMALS = 8


@dataclass(frozen=True)
class ProjectionParams:
    origin_lat: float
    origin_lon: float
    false_easting: float
    false_northing: float
    scale_factor: float
    ellipsoid: str
    bounds: dict
    name: str = "local"

    @classmethod
    def from_config(cls, cfg: dict) -> "ProjectionParams":
        return cls(
            origin_lat=float(cfg["origin_lat"]),
            origin_lon=float(cfg["origin_lon"]),
            false_easting=float(cfg["false_easting"]),
            false_northing=float(cfg["false_northing"]),
            scale_factor=float(cfg["scale_factor"]),
            ellipsoid=str(cfg["ellipsoid"]),
            bounds=dict(cfg["bounds_wgs84"]),
            name=str(cfg.get("name", "local")),
        )

    def proj_string(self) -> str:
        return (
            f"+proj=tmerc +lat_0={self.origin_lat} +lon_0={self.origin_lon} "
            f"+k={self.scale_factor} +x_0={self.false_easting} +y_0={self.false_northing} "
            f"+ellps={self.ellipsoid} +units=m +no_defs"
        )


def _safe_float(value: Any) -> float | None:
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    return parsed if math.isfinite(parsed) else None


def _within_bbox(lat: float, lon: float, bbox: dict) -> bool:
    return (
        bbox["min_lat"] <= lat <= bbox["max_lat"]
        and bbox["min_lon"] <= lon <= bbox["max_lon"]
    )


class PlanarTransformer:
    """Inverse transverse Mercator for one fixed projection, validated against bounds."""

    def __init__(self, params: ProjectionParams) -> None:
        self.params = params
        try:
            source = CRS.from_proj4(params.proj_string())
        except CRSError as exc:
            raise ConfigError(f"Invalid projection parameters for {params.name}") from exc
        self._transformer = Transformer.from_crs(source, CRS.from_epsg(4326), always_xy=True)

    @classmethod
    def from_config(cls, projection_config: dict) -> "PlanarTransformer":
        return cls(ProjectionParams.from_config(projection_config))

    def to_wgs84(self, easting: Any, northing: Any) -> tuple[float, float]:
        x = _safe_float(easting)
        y = _safe_float(northing)
        if x is None or y is None:
            raise CoordinateConversionError(f"Non-numeric planar coordinate: x={easting!r}, y={northing!r}")

        try:
            lon, lat = self._transformer.transform(x, y, errcheck=True)
        except ProjError as exc:
            raise CoordinateConversionError(f"Projection failed for x={x}, y={y}") from exc

        if not (math.isfinite(lat) and math.isfinite(lon)):
            raise CoordinateOutOfBoundsError(f"Non-finite result for x={x}, y={y}")

        lat = round(lat, COORDINATE_DECIMALS)
        lon = round(lon, COORDINATE_DECIMALS)
        if not _within_bbox(lat, lon, self.params.bounds):
            raise CoordinateOutOfBoundsError(
                f"x={x}, y={y} maps to ({lat}, {lon}) outside the {self.params.name} bounds"
            )
        return lat, lon
