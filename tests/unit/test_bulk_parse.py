from __future__ import annotations

from pathlib import Path

import pytest

from carparks.common.errors import BulkSourceError, CoordinateOutOfBoundsError, ParseFailure
from carparks.common.models import IngestionReport
from carparks.geo.coordinates import PlanarTransformer
from carparks.ingest.bulk_import import CsvAttributeSource, parse_bulk_row
from carparks.ingest.sources import iter_batches

FIXTURE = Path(__file__).resolve().parents[1] / "fixtures" / "hdb_carparks_sample.csv"

PROJECTION = {
    "name": "SVY21",
    "origin_lat": 1.3666666666666667,
    "origin_lon": 103.83333333333333,
    "false_easting": 28001.642,
    "false_northing": 38744.572,
    "scale_factor": 1.0,
    "ellipsoid": "WGS84",
    "bounds_wgs84": {"min_lat": 1.13, "max_lat": 1.48, "min_lon": 103.55, "max_lon": 104.10},
}

ROW = [
    "ACB",
    "BLK 270/271 ALBERT CENTRE BASEMENT CAR PARK",
    "30314.7936",
    "31490.4942",
    "BASEMENT CAR PARK",
    "ELECTRONIC PARKING",
    "WHOLE DAY",
    "NO",
    "YES",
    "1",
    "1.80",
    "Y",
]


@pytest.fixture(scope="module")
def transformer():
    return PlanarTransformer.from_config(PROJECTION)


def test_parse_bulk_row_maps_columns(transformer):
    attributes = parse_bulk_row(ROW, transformer)

    assert attributes.code == "ACB"
    assert attributes.parking_system == "ELECTRONIC PARKING"
    assert attributes.basement == "Y"
    assert 1.29 < attributes.latitude < 1.31


def test_parse_bulk_row_blank_optional_is_none(transformer):
    row = list(ROW)
    row[10] = "  "

    assert parse_bulk_row(row, transformer).gantry_height is None


def test_parse_bulk_row_rejects_short_rows_and_blank_codes(transformer):
    with pytest.raises(ParseFailure):
        parse_bulk_row(ROW[:5], transformer)
    with pytest.raises(ParseFailure):
        parse_bulk_row(["  ", *ROW[1:]], transformer)


def test_parse_bulk_row_rejects_out_of_bounds(transformer):
    row = list(ROW)
    row[2], row[3] = "900000", "900000"

    with pytest.raises(CoordinateOutOfBoundsError):
        parse_bulk_row(row, transformer)


def test_csv_source_skips_header_and_counts_bad_rows(transformer):
    report = IngestionReport(job="bulk-import", run_id="run-test")

    codes = [attributes.code for attributes in CsvAttributeSource(FIXTURE, transformer).iter_rows(report)]

    assert codes == ["ACB", "ACM", "AH1"]
    assert report.rows_in == 6
    assert report.errors == 3
    assert len(report.error_samples) == 3


def test_csv_source_missing_or_empty_file(tmp_path: Path, transformer):
    report = IngestionReport(job="bulk-import", run_id="run-test")
    with pytest.raises(BulkSourceError):
        list(CsvAttributeSource(tmp_path / "missing.csv", transformer).iter_rows(report))

    empty = tmp_path / "empty.csv"
    empty.write_text("", encoding="utf-8")
    with pytest.raises(BulkSourceError):
        list(CsvAttributeSource(empty, transformer).iter_rows(report))


def test_iter_batches_groups_lazily():
    assert [list(batch) for batch in iter_batches(range(5), 2)] == [[0, 1], [2, 3], [4]]
    assert list(iter_batches([], 3)) == []
