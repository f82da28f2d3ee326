"""Live availability feed: streamed fetch and incremental JSON parsing."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Iterator

import ijson

from carparks.common.constants import API_KEY_HEADER
from carparks.common.errors import ParseFailure, UpstreamUnavailableError
from carparks.common.http import HttpClient, TimeoutConfig
from carparks.common.models import AvailabilitySample, IngestionReport

logger = logging.getLogger(__name__)

DEFAULT_ITEMS_PREFIX = "items.item.carpark_data.item"


def _parse_count(value: Any, field: str) -> int:
    if isinstance(value, bool) or value is None:
        raise ParseFailure(f"{field} is missing or not a number")
    if isinstance(value, int):
        count = value
    elif isinstance(value, (Decimal, float)):
        if value != int(value):
            raise ParseFailure(f"{field} is not a whole number: {value}")
        count = int(value)
    else:
        text = str(value).strip()
        try:
            count = int(text)
        except ValueError as exc:
            raise ParseFailure(f"{field} is not a number: {text!r}") from exc
    if count < 0:
        raise ParseFailure(f"{field} is negative: {count}")
    return count


def parse_availability_item(item: Any) -> AvailabilitySample:
    """One per-facility object -> sample, using the first ``carpark_info`` entry."""
    if not isinstance(item, dict):
        raise ParseFailure("Feed item is not an object")

    code = str(item.get("carpark_number") or "").strip()
    if not code:
        raise ParseFailure("Feed item has no carpark_number")

    info_list = item.get("carpark_info")
    if not isinstance(info_list, list) or not info_list or not isinstance(info_list[0], dict):
        raise ParseFailure(f"Feed item {code} has no carpark_info")
    info = info_list[0]

    lot_type = str(info.get("lot_type") or "").strip()
    if not lot_type:
        raise ParseFailure(f"Feed item {code} has no lot_type")

    total = _parse_count(info.get("total_lots"), "total_lots")
    available = _parse_count(info.get("lots_available"), "lots_available")
    if available > total:
        # Upstream glitches are stored as reported; the next pass usually corrects them.
        logger.debug(
            "available lots exceed total",
            extra={"event": "AVAILABILITY_ANOMALY", "code": code},
        )
    return AvailabilitySample(code=code, total_lots=total, available_lots=available, lot_type=lot_type)


class LiveAvailabilitySource:
    name = "live-feed"

    def __init__(
        self,
        http_client: HttpClient,
        url: str,
        *,
        items_prefix: str = DEFAULT_ITEMS_PREFIX,
        api_key: str | None = None,
        timeout: TimeoutConfig | None = None,
    ) -> None:
        self.http_client = http_client
        self.url = url
        self.items_prefix = items_prefix
        self.api_key = api_key
        self.timeout = timeout

    def _headers(self) -> dict[str, str] | None:
        if not self.api_key:
            return None
        return {API_KEY_HEADER: self.api_key}

    def iter_samples(self, report: IngestionReport) -> Iterator[AvailabilitySample]:
        with self.http_client.stream(self.url, headers=self._headers(), timeout=self.timeout) as body:
            items = ijson.items(body, self.items_prefix)
            while True:
                try:
                    item = next(items)
                except StopIteration:
                    break
                except ijson.JSONError as exc:
                    raise UpstreamUnavailableError(f"Malformed payload from {self.url}") from exc

                report.rows_in += 1
                try:
                    sample = parse_availability_item(item)
                except ParseFailure as exc:
                    report.record_error(str(exc))
                    continue
                yield sample

            logger.info(
                "live feed consumed",
                extra={"event": "FEED_READ", "job": report.job, "rows_in": report.rows_in},
            )
