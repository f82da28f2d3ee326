"""Bulk attribute import from the tabular car park information source."""

from __future__ import annotations

import csv
import logging
from contextlib import closing
from pathlib import Path
from typing import Iterator, Sequence

from carparks.cache.geo_index import GeospatialCache
from carparks.common.constants import BULK_COLUMNS
from carparks.common.errors import BulkSourceError, ParseFailure
from carparks.common.models import CarParkAttributes, IngestionReport
from carparks.geo.coordinates import PlanarTransformer
from carparks.ingest.sources import AttributeSource, iter_batches
from carparks.store.interfaces import AttributeWriter

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100


def _optional(value: str) -> str | None:
    value = value.strip()
    return value or None


def parse_bulk_row(row: Sequence[str], transformer: PlanarTransformer) -> CarParkAttributes:
    """Map one positional row to attributes; raises ``ParseFailure`` subclasses."""
    if len(row) < len(BULK_COLUMNS):
        raise ParseFailure(f"Row has {len(row)} columns, expected {len(BULK_COLUMNS)}")

    code = row[0].strip()
    if not code:
        raise ParseFailure("Row has an empty facility code")

    lat, lon = transformer.to_wgs84(row[2], row[3])
    return CarParkAttributes(
        code=code,
        address=row[1].strip(),
        latitude=lat,
        longitude=lon,
        car_park_type=_optional(row[4]),
        parking_system=_optional(row[5]),
        short_term_parking=_optional(row[6]),
        free_parking=_optional(row[7]),
        night_parking=_optional(row[8]),
        decks=_optional(row[9]),
        gantry_height=_optional(row[10]),
        basement=_optional(row[11]),
    )


class CsvAttributeSource:
    """Streams rows from a CSV file; the first row is a header and is skipped."""

    name = "bulk-csv"

    def __init__(self, csv_path: Path, transformer: PlanarTransformer, *, encoding: str = "utf-8-sig") -> None:
        self.csv_path = Path(csv_path)
        self.transformer = transformer
        self.encoding = encoding

    @classmethod
    def from_config(cls, bulk_config: dict, transformer: PlanarTransformer) -> "CsvAttributeSource":
        return cls(
            Path(bulk_config["csv_path"]),
            transformer,
            encoding=bulk_config.get("encoding", "utf-8-sig"),
        )

    def iter_rows(self, report: IngestionReport) -> Iterator[CarParkAttributes]:
        if not self.csv_path.exists():
            raise BulkSourceError(f"Bulk source not found: {self.csv_path}")

        try:
            handle = self.csv_path.open("r", encoding=self.encoding, newline="")
        except OSError as exc:
            raise BulkSourceError(f"Cannot open bulk source {self.csv_path}") from exc

        with handle:
            reader = csv.reader(handle)
            try:
                header = next(reader, None)
            except (csv.Error, UnicodeDecodeError) as exc:
                raise BulkSourceError(f"Unreadable header in {self.csv_path}") from exc
            if header is None:
                raise BulkSourceError(f"Bulk source is empty: {self.csv_path}")

            while True:
                try:
                    row = next(reader)
                except StopIteration:
                    break
                except csv.Error as exc:
                    report.rows_in += 1
                    report.record_error(f"line {reader.line_num}: {exc}")
                    continue
                except UnicodeDecodeError as exc:
                    raise BulkSourceError(f"Undecodable bytes in {self.csv_path}") from exc

                if not any(cell.strip() for cell in row):
                    continue
                report.rows_in += 1
                try:
                    yield parse_bulk_row(row, self.transformer)
                except ParseFailure as exc:
                    report.record_error(f"line {reader.line_num}: {exc}")
                    logger.debug(
                        "bulk row skipped: %s",
                        exc,
                        extra={"event": "ROW_SKIPPED", "error_code": exc.error_code, "code": row[0] if row else None},
                    )


def run_bulk_import(
    source: AttributeSource,
    store: AttributeWriter,
    cache: GeospatialCache,
    report: IngestionReport,
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> IngestionReport:
    """Upsert attributes batch by batch, then rebuild the whole geo index.

    Each batch commits on its own; a store failure stops the run and keeps
    the batches already written.
    """
    with closing(source.iter_rows(report)) as rows:
        for batch in iter_batches(rows, batch_size):
            result = store.upsert_attributes(batch)
            report.processed += len(batch)
            report.written += result.written
            report.imported += result.created
            report.updated += result.updated
            cache.upsert_many(result.indexable)
            logger.info(
                "bulk batch committed from %s",
                source.name,
                extra={
                    "event": "BATCH_COMMIT",
                    "job": report.job,
                    "run_id": report.run_id,
                    "rows_in": len(batch),
                    "rows_out": result.written,
                },
            )

    cache.refresh(store.find_active_positions)
    return report
