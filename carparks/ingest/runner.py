"""Ingestion orchestration: one run at a time, plus a periodic scheduler."""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Callable, Iterable

from carparks.common.errors import CarParkError, IngestionInProgressError
from carparks.common.ids import generate_run_id
from carparks.common.logging import log_event
from carparks.common.models import IngestionReport
from carparks.ingest.reports import final_status, write_run_report

logger = logging.getLogger(__name__)

JobFn = Callable[[IngestionReport], IngestionReport]


class IngestionRunner:
    """Serialises ingestion runs behind a single guard shared by every job."""

    def __init__(self, jobs: dict[str, JobFn], *, data_dir: Path | None = None) -> None:
        self.jobs = dict(jobs)
        self.data_dir = data_dir
        self._guard = threading.Lock()
        self._current: str | None = None
        self.last_reports: dict[str, IngestionReport] = {}

    @property
    def running_job(self) -> str | None:
        return self._current

    def _acquire(self, wait: bool, timeout: float | None) -> bool:
        if not wait:
            return self._guard.acquire(blocking=False)
        return self._guard.acquire(timeout=-1 if timeout is None else timeout)

    def _mark_failed(self, report: IngestionReport, started: float, error_code: str, message: str) -> None:
        report.status = "failed"
        report.error_code = error_code
        report.duration_ms = int((time.monotonic() - started) * 1000)
        log_event(
            logger,
            f"ingestion failed: {message}",
            level=logging.ERROR,
            run_id=report.run_id,
            job=report.job,
            event="RUN_FAIL",
            status="error",
            error_code=error_code,
            rows_in=report.rows_in,
            rows_out=report.written,
            duration_ms=report.duration_ms,
        )

    def run(
        self,
        job: str,
        *,
        run_id: str | None = None,
        wait: bool = False,
        timeout: float | None = None,
    ) -> IngestionReport:
        """Run ``job`` to completion; a concurrent call is rejected or waits."""
        if job not in self.jobs:
            raise ValueError(f"Unknown ingestion job: {job}")
        if not self._acquire(wait, timeout):
            raise IngestionInProgressError(f"Cannot start {job}: {self._current or 'another run'} is in progress")

        report = IngestionReport(job=job, run_id=run_id or generate_run_id())
        started = time.monotonic()
        self._current = job
        try:
            log_event(logger, "ingestion start", run_id=report.run_id, job=job, event="RUN_START", status="ok")
            try:
                self.jobs[job](report)
            except CarParkError as exc:
                self._mark_failed(report, started, exc.error_code, str(exc))
                raise
            except Exception as exc:
                self._mark_failed(report, started, "UNEXPECTED_ERROR", repr(exc))
                raise

            report.status = final_status(report)
            report.duration_ms = int((time.monotonic() - started) * 1000)
            log_event(
                logger,
                "ingestion end",
                run_id=report.run_id,
                job=job,
                event="RUN_END",
                status=report.status,
                rows_in=report.rows_in,
                rows_out=report.written,
                duration_ms=report.duration_ms,
            )
            return report
        finally:
            self.last_reports[job] = report
            if self.data_dir is not None:
                write_run_report(self.data_dir, report)
            self._current = None
            self._guard.release()


class PeriodicScheduler:
    """Runs the configured jobs every ``interval_seconds`` on a daemon thread."""

    def __init__(
        self,
        runner: IngestionRunner,
        jobs: Iterable[str],
        interval_seconds: float,
        *,
        run_immediately: bool = True,
    ) -> None:
        self.runner = runner
        self.jobs = tuple(jobs)
        self.interval_seconds = float(interval_seconds)
        self.run_immediately = run_immediately
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def run_once(self) -> list[IngestionReport]:
        reports: list[IngestionReport] = []
        for job in self.jobs:
            try:
                reports.append(self.runner.run(job))
            except IngestionInProgressError:
                log_event(logger, f"skipped {job}, a run is in progress", job=job, event="RUN_SKIPPED", status="skipped")
            except CarParkError:
                # Already logged and reported by the runner; the next tick retries.
                continue
            except Exception:
                logger.exception("unexpected ingestion failure", extra={"job": job, "event": "RUN_FAIL", "error_code": "UNEXPECTED_ERROR"})
        return reports

    def _loop(self) -> None:
        if not self.run_immediately and self._stop.wait(self.interval_seconds):
            return
        while not self._stop.is_set():
            self.run_once()
            if self._stop.wait(self.interval_seconds):
                break

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="carparks-ingestion", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
