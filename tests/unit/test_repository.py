from __future__ import annotations

import time
from datetime import timedelta, timezone
from pathlib import Path

import pytest
from sqlalchemy.exc import OperationalError

from carparks.common.errors import StoreError
from carparks.common.models import AvailabilitySample, CarParkAttributes
from carparks.common.time_utils import utc_now
from carparks.store.database import create_store_engine, init_schema
from carparks.store.repository import CarParkRepository


def _repository(tmp_path: Path) -> CarParkRepository:
    engine = create_store_engine({"url": f"sqlite:///{tmp_path / 'carparks.db'}", "busy_timeout_seconds": 1})
    init_schema(engine)
    return CarParkRepository(engine)


def _attributes(code: str, lat: float, lon: float, address: str = "BLK 1") -> CarParkAttributes:
    return CarParkAttributes(code=code, address=address, latitude=lat, longitude=lon, car_park_type="SURFACE CAR PARK")


def test_upsert_creates_then_updates_without_touching_lots(tmp_path: Path):
    repo = _repository(tmp_path)

    first = repo.upsert_attributes([_attributes("A1", 1.30, 103.85)])
    repo.update_availability_batch([AvailabilitySample("A1", 100, 40, "C")])
    second = repo.upsert_attributes([_attributes("A1", 1.31, 103.86, address="BLK 1A")])

    assert (first.created, first.updated) == (1, 0)
    assert (second.created, second.updated) == (0, 1)
    record = repo.find_by_code("A1")
    assert record.address == "BLK 1A"
    assert (record.latitude, record.longitude) == (1.31, 103.86)
    assert (record.total_lots, record.available_lots) == (100, 40)


def test_upsert_keeps_last_duplicate_in_batch(tmp_path: Path):
    repo = _repository(tmp_path)

    result = repo.upsert_attributes([_attributes("A1", 1.30, 103.85, "old"), _attributes("A1", 1.30, 103.85, "new")])

    assert result.written == 1
    assert repo.find_by_code("A1").address == "new"


def test_availability_batch_is_idempotent_and_skips_unknown(tmp_path: Path):
    repo = _repository(tmp_path)
    repo.upsert_attributes([_attributes("A1", 1.30, 103.85), _attributes("A2", 1.31, 103.85)])
    batch = [AvailabilitySample("A1", 100, 40, "C"), AvailabilitySample("NOPE", 10, 5, "C")]

    assert repo.update_availability_batch(batch) == 1
    assert repo.update_availability_batch(batch) == 1

    assert repo.find_by_code("A1").available_lots == 40
    assert repo.find_by_code("NOPE") is None
    assert repo.count_active() == 2


def test_availability_never_touches_soft_deleted(tmp_path: Path):
    repo = _repository(tmp_path)
    repo.upsert_attributes([_attributes("A1", 1.30, 103.85)])
    assert repo.soft_delete("A1") is True

    assert repo.update_availability(AvailabilitySample("A1", 100, 40, "C")) is False

    assert repo.find_by_code("A1") is None
    assert repo.find_by_code("A1", include_deleted=True).available_lots == 0


def test_soft_delete_and_restore(tmp_path: Path):
    repo = _repository(tmp_path)
    repo.upsert_attributes([_attributes("A1", 1.30, 103.85)])

    assert repo.soft_delete("A1") is True
    assert repo.soft_delete("A1") is False
    assert repo.find_active_positions() == []

    assert repo.restore("A1") is True
    assert repo.restore("A1") is False
    assert [entry.code for entry in repo.find_active_positions()] == ["A1"]


def test_bulk_refresh_keeps_soft_delete_marker(tmp_path: Path):
    repo = _repository(tmp_path)
    repo.upsert_attributes([_attributes("A1", 1.30, 103.85)])
    repo.soft_delete("A1")

    result = repo.upsert_attributes([_attributes("A1", 1.30, 103.85, address="renamed")])

    assert result.updated == 1
    assert result.indexable == ()
    assert repo.find_by_code("A1") is None
    assert repo.find_by_code("A1", include_deleted=True).address == "renamed"


def test_find_nearest_by_distance_orders_and_filters(tmp_path: Path):
    repo = _repository(tmp_path)
    repo.upsert_attributes(
        [
            _attributes("FAR", 1.40, 103.85),
            _attributes("NEAR", 1.301, 103.85),
            _attributes("FULL", 1.3005, 103.85),
            _attributes("MID", 1.35, 103.85),
        ]
    )
    repo.update_availability_batch(
        [
            AvailabilitySample("FAR", 10, 1, "C"),
            AvailabilitySample("NEAR", 10, 2, "C"),
            AvailabilitySample("FULL", 10, 0, "C"),
            AvailabilitySample("MID", 10, 3, "C"),
        ]
    )

    rows = repo.find_nearest_by_distance(1.30, 103.85, limit=2, offset=0)
    next_page = repo.find_nearest_by_distance(1.30, 103.85, limit=2, offset=2)

    assert [record.code for record, _ in rows] == ["NEAR", "MID"]
    assert rows[0][1] < rows[1][1]
    assert [record.code for record, _ in next_page] == ["FAR"]


def test_find_by_codes_returns_active_only(tmp_path: Path):
    repo = _repository(tmp_path)
    repo.upsert_attributes([_attributes("A1", 1.30, 103.85), _attributes("A2", 1.31, 103.85)])
    repo.soft_delete("A2")

    found = repo.find_by_codes(["A1", "A2", "A3", "A1"])

    assert list(found) == ["A1"]


def test_driver_errors_surface_as_store_error(tmp_path: Path, monkeypatch):
    repo = _repository(tmp_path)

    def broken_execute(*_args, **_kwargs):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr("sqlalchemy.orm.Session.execute", broken_execute)

    with pytest.raises(StoreError):
        repo.count_active()


def test_active_listings(tmp_path: Path):
    repo = _repository(tmp_path)
    repo.upsert_attributes([_attributes("B1", 1.30, 103.85), _attributes("A1", 1.31, 103.85), _attributes("C1", 1.32, 103.85)])
    repo.update_availability_batch([AvailabilitySample("A1", 10, 0, "C"), AvailabilitySample("B1", 10, 4, "C")])
    repo.soft_delete("C1")

    assert [record.code for record in repo.find_active()] == ["A1", "B1"]
    assert [record.code for record in repo.find_active_with_availability()] == ["B1"]
    assert repo.count_with_availability() == 1


def test_find_by_type_and_parking_system_skip_deleted(tmp_path: Path):
    repo = _repository(tmp_path)
    repo.upsert_attributes(
        [
            CarParkAttributes("B1", "BLK 2", 1.30, 103.85, car_park_type="SURFACE CAR PARK", parking_system="COUPON"),
            CarParkAttributes("A1", "BLK 1", 1.31, 103.85, car_park_type="SURFACE CAR PARK", parking_system="ELECTRONIC PARKING"),
            CarParkAttributes("C1", "BLK 3", 1.32, 103.85, car_park_type="MULTI-STOREY CAR PARK", parking_system="COUPON"),
            CarParkAttributes("D1", "BLK 4", 1.33, 103.85, car_park_type="SURFACE CAR PARK", parking_system="COUPON"),
        ]
    )
    repo.soft_delete("D1")

    assert [record.code for record in repo.find_by_type("SURFACE CAR PARK")] == ["A1", "B1"]
    assert [record.code for record in repo.find_by_parking_system("COUPON")] == ["B1", "C1"]
    assert repo.find_by_type("surface car park") == []


def test_find_created_and_updated_after(tmp_path: Path):
    repo = _repository(tmp_path)
    repo.upsert_attributes([_attributes("A1", 1.30, 103.85)])
    time.sleep(0.01)
    mark = utc_now()
    time.sleep(0.01)
    repo.upsert_attributes([_attributes("B1", 1.31, 103.85), _attributes("C1", 1.32, 103.85)])
    repo.update_availability_batch([AvailabilitySample("A1", 10, 4, "C")])
    repo.soft_delete("C1")

    assert [record.code for record in repo.find_created_after(mark)] == ["B1"]
    assert [record.code for record in repo.find_updated_after(mark)] == ["A1", "B1"]
    assert [record.code for record in repo.find_created_after(mark.replace(tzinfo=None))] == ["B1"]
    assert repo.find_created_after(utc_now()) == []


def test_find_created_after_normalises_offsets(tmp_path: Path):
    repo = _repository(tmp_path)
    repo.upsert_attributes([_attributes("A1", 1.30, 103.85)])
    record = repo.find_by_code("A1")
    earlier = utc_now() - timedelta(hours=1)

    assert record.created_at is not None
    assert [r.code for r in repo.find_created_after(earlier.astimezone(timezone(timedelta(hours=8))))] == ["A1"]
    assert repo.find_created_after(utc_now().astimezone(timezone(timedelta(hours=-5)))) == []
