from __future__ import annotations

import copy
import io
import threading
from contextlib import contextmanager
from pathlib import Path

import pytest

from carparks.common.errors import IngestionInProgressError
from carparks.common.fs import read_yaml
from carparks.service import CarParkService

FIXTURES = Path(__file__).resolve().parents[1] / "fixtures"


class BlockingHttpClient:
    """Holds the live feed open until the test releases it."""

    def __init__(self, body: bytes):
        self.body = body
        self.entered = threading.Event()
        self.release = threading.Event()

    @contextmanager
    def stream(self, url, *, headers=None, timeout=None):
        self.entered.set()
        self.release.wait(5)
        yield io.BytesIO(self.body)

    def close(self):
        pass


@pytest.mark.integration
def test_second_ingestion_is_rejected_while_sync_runs(tmp_path: Path):
    cfg = copy.deepcopy(read_yaml(Path("config") / "carparks.yml"))
    cfg["database"]["url"] = f"sqlite:///{tmp_path / 'carparks.db'}"
    cfg["bulk_feed"]["csv_path"] = str(FIXTURES / "hdb_carparks_sample.csv")
    client = BlockingHttpClient((FIXTURES / "carpark_availability_sample.json").read_bytes())
    service = CarParkService(cfg, http_client=client)
    service.import_bulk_data()

    results = {}
    worker = threading.Thread(target=lambda: results.update(report=service.sync_availability()))
    worker.start()
    try:
        assert client.entered.wait(5)
        with pytest.raises(IngestionInProgressError):
            service.import_bulk_data()
        with pytest.raises(IngestionInProgressError):
            service.sync_availability()
        # Queries keep working while ingestion holds the guard.
        acb = service.repository.find_by_code("ACB")
        service.find_nearest(acb.latitude, acb.longitude)
    finally:
        client.release.set()
        worker.join(5)

    assert results["report"].written == 3
    assert service.import_bulk_data().status == "partial"
