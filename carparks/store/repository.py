"""Car park persistence: lookups, spatial ordering, batched writes, soft delete."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Sequence

from sqlalchemy import case, func, literal, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from carparks.common.errors import StoreError
from carparks.common.models import AvailabilitySample, CarParkAttributes, CarParkRecord, GeoIndexEntry
from carparks.common.time_utils import as_utc, utc_now
from carparks.geo.distance import EARTH_RADIUS_M
from carparks.store.database import create_session_factory
from carparks.store.interfaces import UpsertResult
from carparks.store.tables import CarParkRow

logger = logging.getLogger(__name__)

# Keeps IN (...) lists below common driver parameter limits.
MAX_CODES_PER_QUERY = 500


def _chunks(items: Sequence[str], size: int) -> Iterator[Sequence[str]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def _haversine_sql(dialect_name: str, lat: float, lon: float):
    """Distance expression in metres against ``CarParkRow`` coordinates."""
    if dialect_name == "sqlite":
        return func.haversine_m(literal(lat), literal(lon), CarParkRow.latitude, CarParkRow.longitude)

    d_phi = func.radians(CarParkRow.latitude - literal(lat))
    d_lambda = func.radians(CarParkRow.longitude - literal(lon))
    a = func.power(func.sin(d_phi / 2), 2) + func.cos(func.radians(literal(lat))) * func.cos(
        func.radians(CarParkRow.latitude)
    ) * func.power(func.sin(d_lambda / 2), 2)
    return 2 * EARTH_RADIUS_M * func.asin(func.sqrt(a))


class CarParkRepository:
    """Backing store over SQLAlchemy; every driver error surfaces as ``StoreError``."""

    def __init__(self, engine: Engine, session_factory: sessionmaker | None = None) -> None:
        self.engine = engine
        self._sessions = session_factory or create_session_factory(engine)

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        session = self._sessions()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise StoreError(f"{operation} failed: {exc.__class__.__name__}") from exc
        finally:
            session.close()

    @staticmethod
    def _active():
        return CarParkRow.deleted_at.is_(None)

    # Reads

    def find_by_code(self, code: str, *, include_deleted: bool = False) -> CarParkRecord | None:
        stmt = select(CarParkRow).where(CarParkRow.code == code)
        if not include_deleted:
            stmt = stmt.where(self._active())
        with self._session("find_by_code") as session:
            row = session.execute(stmt).scalar_one_or_none()
            return None if row is None else row.to_record()

    def find_by_codes(self, codes: Sequence[str]) -> dict[str, CarParkRecord]:
        """Active records for ``codes``, keyed by code; unknown codes are absent."""
        unique = list(dict.fromkeys(codes))
        found: dict[str, CarParkRecord] = {}
        if not unique:
            return found
        with self._session("find_by_codes") as session:
            for chunk in _chunks(unique, MAX_CODES_PER_QUERY):
                stmt = select(CarParkRow).where(CarParkRow.code.in_(chunk), self._active())
                for row in session.execute(stmt).scalars():
                    found[row.code] = row.to_record()
        return found

    def _find_active_where(self, operation: str, *criteria) -> list[CarParkRecord]:
        stmt = select(CarParkRow).where(self._active(), *criteria).order_by(CarParkRow.code)
        with self._session(operation) as session:
            return [row.to_record() for row in session.execute(stmt).scalars()]

    def find_active(self) -> list[CarParkRecord]:
        return self._find_active_where("find_active")

    def find_active_with_availability(self) -> list[CarParkRecord]:
        return self._find_active_where("find_active_with_availability", CarParkRow.available_lots > 0)

    def find_by_type(self, car_park_type: str) -> list[CarParkRecord]:
        return self._find_active_where("find_by_type", CarParkRow.car_park_type == car_park_type)

    def find_by_parking_system(self, parking_system: str) -> list[CarParkRecord]:
        return self._find_active_where("find_by_parking_system", CarParkRow.parking_system == parking_system)

    def find_created_after(self, since: datetime) -> list[CarParkRecord]:
        """Active records created strictly after ``since``; naive values are read as UTC."""
        return self._find_active_where("find_created_after", CarParkRow.created_at > as_utc(since))

    def find_updated_after(self, since: datetime) -> list[CarParkRecord]:
        return self._find_active_where("find_updated_after", CarParkRow.updated_at > as_utc(since))

    def find_active_positions(self) -> list[GeoIndexEntry]:
        stmt = (
            select(CarParkRow.code, CarParkRow.longitude, CarParkRow.latitude)
            .where(
                self._active(),
                CarParkRow.latitude.is_not(None),
                CarParkRow.longitude.is_not(None),
            )
            .order_by(CarParkRow.code)
        )
        with self._session("find_active_positions") as session:
            return [
                GeoIndexEntry(code=code, longitude=float(lon), latitude=float(lat))
                for code, lon, lat in session.execute(stmt)
            ]

    def find_nearest_by_distance(
        self, lat: float, lon: float, limit: int, offset: int
    ) -> list[tuple[CarParkRecord, float]]:
        """Active, available, located records ordered by distance then code."""
        distance = _haversine_sql(self.engine.dialect.name, lat, lon).label("distance_m")
        stmt = (
            select(CarParkRow, distance)
            .where(
                self._active(),
                CarParkRow.available_lots > 0,
                CarParkRow.latitude.is_not(None),
                CarParkRow.longitude.is_not(None),
            )
            .order_by(distance, CarParkRow.code)
            .limit(limit)
            .offset(offset)
        )
        with self._session("find_nearest_by_distance") as session:
            return [(row.to_record(), float(dist)) for row, dist in session.execute(stmt)]

    def count_active(self) -> int:
        stmt = select(func.count()).select_from(CarParkRow).where(self._active())
        with self._session("count_active") as session:
            return int(session.execute(stmt).scalar_one())

    def count_with_availability(self) -> int:
        stmt = (
            select(func.count())
            .select_from(CarParkRow)
            .where(self._active(), CarParkRow.available_lots > 0)
        )
        with self._session("count_with_availability") as session:
            return int(session.execute(stmt).scalar_one())

    # Writes

    def upsert_attributes(self, batch: Sequence[CarParkAttributes]) -> UpsertResult:
        """Create unseen codes, refresh attributes and position of known ones.

        Lot counts of existing records are left alone, and a soft-deleted
        record keeps its marker.
        """
        latest = {attributes.code: attributes for attributes in batch}
        if not latest:
            return UpsertResult()
        created = updated = 0
        indexable: list[GeoIndexEntry] = []
        with self._session("upsert_attributes") as session:
            existing = {
                row.code: row
                for row in session.execute(
                    select(CarParkRow).where(CarParkRow.code.in_(list(latest)))
                ).scalars()
            }
            for code, attributes in latest.items():
                row = existing.get(code)
                if row is None:
                    session.add(CarParkRow.from_attributes(attributes))
                    created += 1
                else:
                    row.apply_attributes(attributes)
                    updated += 1
                    if row.deleted_at is not None:
                        continue
                indexable.append(
                    GeoIndexEntry(code=code, longitude=attributes.longitude, latitude=attributes.latitude)
                )
        return UpsertResult(created=created, updated=updated, indexable=tuple(indexable))

    def update_availability(self, sample: AvailabilitySample) -> bool:
        return self.update_availability_batch([sample]) > 0

    def update_availability_batch(self, samples: Sequence[AvailabilitySample]) -> int:
        """One multi-row ``UPDATE ... CASE code`` for active records; returns rows matched."""
        latest = {sample.code: sample for sample in samples}
        if not latest:
            return 0
        table = CarParkRow.__table__
        stmt = (
            update(table)
            .where(table.c.code.in_(list(latest)), table.c.deleted_at.is_(None))
            .values(
                total_lots=case({code: s.total_lots for code, s in latest.items()}, value=table.c.code),
                available_lots=case({code: s.available_lots for code, s in latest.items()}, value=table.c.code),
                car_park_type=case({code: s.lot_type for code, s in latest.items()}, value=table.c.code),
                updated_at=utc_now(),
            )
        )
        with self._session("update_availability_batch") as session:
            result = session.execute(stmt)
            return int(result.rowcount or 0)

    def soft_delete(self, code: str) -> bool:
        now = utc_now()
        stmt = (
            update(CarParkRow.__table__)
            .where(CarParkRow.__table__.c.code == code, CarParkRow.__table__.c.deleted_at.is_(None))
            .values(deleted_at=now, updated_at=now)
        )
        with self._session("soft_delete") as session:
            changed = int(session.execute(stmt).rowcount or 0) > 0
        if changed:
            logger.info("car park soft deleted", extra={"event": "SOFT_DELETE", "code": code})
        return changed

    def restore(self, code: str) -> bool:
        stmt = (
            update(CarParkRow.__table__)
            .where(CarParkRow.__table__.c.code == code, CarParkRow.__table__.c.deleted_at.is_not(None))
            .values(deleted_at=None, updated_at=utc_now())
        )
        with self._session("restore") as session:
            changed = int(session.execute(stmt).rowcount or 0) > 0
        if changed:
            logger.info("car park restored", extra={"event": "RESTORE", "code": code})
        return changed
