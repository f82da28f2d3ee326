"""Ingestion run report persistence."""

from __future__ import annotations

from pathlib import Path

from carparks.common.fs import write_json
from carparks.common.models import IngestionReport


def report_path(data_dir: Path, report: IngestionReport) -> Path:
    return data_dir / "run_meta" / f"{report.run_id}.{report.job}.json"


def write_run_report(data_dir: Path, report: IngestionReport) -> Path:
    path = report_path(data_dir, report)
    write_json(path, report.to_dict())
    return path


def final_status(report: IngestionReport) -> str:
    if report.errors > 0:
        return "partial"
    return "success"
