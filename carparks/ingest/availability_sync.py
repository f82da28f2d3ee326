"""Apply live availability samples to existing car parks."""

from __future__ import annotations

import logging
from contextlib import closing

from carparks.cache.geo_index import GeospatialCache
from carparks.common.models import IngestionReport
from carparks.ingest.sources import AvailabilitySource, iter_batches
from carparks.store.interfaces import AvailabilityWriter

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100


def run_availability_sync(
    source: AvailabilitySource,
    store: AvailabilityWriter,
    cache: GeospatialCache,
    report: IngestionReport,
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> IngestionReport:
    """Update lot counts in coalesced batches; codes the store lacks are ignored.

    The feed has no coordinates, so nothing here can create a car park.
    """
    with closing(source.iter_samples(report)) as samples:
        for batch in iter_batches(samples, batch_size):
            matched = store.update_availability_batch(batch)
            report.processed += len(batch)
            distinct = len({sample.code for sample in batch})
            report.written += matched
            report.not_found += max(0, distinct - matched)
            logger.debug(
                "availability batch applied from %s",
                source.name,
                extra={
                    "event": "BATCH_COMMIT",
                    "job": report.job,
                    "run_id": report.run_id,
                    "rows_in": len(batch),
                    "rows_out": matched,
                },
            )

    cache.refresh(store.find_active_positions)
    return report
