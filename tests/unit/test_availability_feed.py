from __future__ import annotations

import io
from contextlib import contextmanager
from decimal import Decimal
from pathlib import Path

import pytest

from carparks.common.errors import ParseFailure, UpstreamUnavailableError
from carparks.common.models import AvailabilitySample, IngestionReport
from carparks.ingest.availability_feed import LiveAvailabilitySource, parse_availability_item

FIXTURE = Path(__file__).resolve().parents[1] / "fixtures" / "carpark_availability_sample.json"


class FakeHttpClient:
    def __init__(self, body: bytes):
        self.body = body
        self.calls = []

    @contextmanager
    def stream(self, url, *, headers=None, timeout=None):
        self.calls.append({"url": url, "headers": headers, "timeout": timeout})
        yield io.BytesIO(self.body)


def _item(total="10", available="3", code="ACB", lot_type="C"):
    return {
        "carpark_number": code,
        "carpark_info": [{"total_lots": total, "lots_available": available, "lot_type": lot_type}],
    }


def test_parse_item_reads_first_info_entry():
    item = _item()
    item["carpark_info"].append({"total_lots": "99", "lots_available": "99", "lot_type": "Y"})

    sample = parse_availability_item(item)

    assert sample == AvailabilitySample(code="ACB", total_lots=10, available_lots=3, lot_type="C")


def test_parse_item_accepts_numbers_from_ijson():
    sample = parse_availability_item(_item(total=Decimal("10"), available=4))
    assert (sample.total_lots, sample.available_lots) == (10, 4)


def test_parse_item_tolerates_available_above_total():
    sample = parse_availability_item(_item(total="5", available="7"))
    assert sample.available_lots == 7


@pytest.mark.parametrize(
    "item",
    [
        _item(total="x"),
        _item(available="-1"),
        _item(total=Decimal("1.5")),
        _item(total=True),
        _item(code=""),
        _item(lot_type=""),
        {"carpark_number": "ACB", "carpark_info": []},
        "not an object",
    ],
)
def test_parse_item_rejects_malformed(item):
    with pytest.raises(ParseFailure):
        parse_availability_item(item)


def test_live_source_streams_samples_and_counts_bad_items():
    client = FakeHttpClient(FIXTURE.read_bytes())
    source = LiveAvailabilitySource(client, "https://example.com/feed", api_key="secret")
    report = IngestionReport(job="availability-sync", run_id="run-test")

    samples = list(source.iter_samples(report))

    assert [sample.code for sample in samples] == ["ACB", "ACM", "AH1", "ZZZ9"]
    assert report.rows_in == 5
    assert report.errors == 1
    assert client.calls[0]["headers"] == {"X-Api-Key": "secret"}


def test_live_source_omits_key_header_without_key():
    client = FakeHttpClient(b'{"items": []}')
    source = LiveAvailabilitySource(client, "https://example.com/feed")

    assert list(source.iter_samples(IngestionReport(job="availability-sync", run_id="run-test"))) == []
    assert client.calls[0]["headers"] is None


def test_live_source_truncated_payload_is_upstream_failure():
    client = FakeHttpClient(b'{"items": [{"carpark_data": [{"carpark_number": "A"')
    source = LiveAvailabilitySource(client, "https://example.com/feed")

    with pytest.raises(UpstreamUnavailableError):
        list(source.iter_samples(IngestionReport(job="availability-sync", run_id="run-test")))
