"""CLI entrypoint for the car park locator."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from datetime import datetime
from pathlib import Path

from carparks.common.config_loader import DEFAULT_CONFIG_PATH, load_config
from carparks.common.constants import EXIT_HARD_FAIL, EXIT_PARTIAL, EXIT_SUCCESS
from carparks.common.errors import CarParkError, ValidationError
from carparks.common.ids import generate_run_id
from carparks.common.logging import ROOT_LOGGER_NAME, build_logger, log_event
from carparks.common.models import IngestionReport
from carparks.common.time_utils import parse_utc_datetime
from carparks.service import CarParkService

COMMANDS = (
    "import",
    "sync",
    "nearest",
    "list",
    "show",
    "refresh-cache",
    "soft-delete",
    "restore",
    "schedule",
    "stats",
)


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("command", choices=COMMANDS)
    parser.add_argument("code", nargs="?", default=None, help="car park code for show/soft-delete/restore")
    parser.add_argument("--lat", type=float, default=None)
    parser.add_argument("--lon", type=float, default=None)
    parser.add_argument("--page", type=int, default=1)
    parser.add_argument("--per-page", type=int, default=None)
    parser.add_argument("--type", dest="car_park_type", default=None, help="list: exact car park type")
    parser.add_argument("--system", dest="parking_system", default=None, help="list: exact parking system")
    parser.add_argument("--created-since", default=None, help="list: ISO-8601, naive values are UTC")
    parser.add_argument("--updated-since", default=None, help="list: ISO-8601, naive values are UTC")
    parser.add_argument("--available", action="store_true", help="list: only car parks with free lots")
    parser.add_argument("--run-id", default=None)
    parser.add_argument("--config", default=str(DEFAULT_CONFIG_PATH))
    parser.add_argument("--overlay-config", default=None)
    parser.add_argument("--data-dir", default=None)
    parser.add_argument("--log-level", default=None, choices=["DEBUG", "INFO", "WARN", "ERROR"])
    parser.add_argument("--wait", action="store_true", help="wait for a running ingestion instead of failing")
    parser.add_argument("--strict", action="store_true")
    return parser.parse_args(argv)


def _emit(payload) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _report_exit(report: IngestionReport, strict: bool) -> int:
    _emit(report.to_dict())
    if report.status == "partial":
        return EXIT_HARD_FAIL if strict else EXIT_PARTIAL
    return EXIT_SUCCESS


def _since(value: str | None, flag: str) -> datetime | None:
    if value is None:
        return None
    try:
        return parse_utc_datetime(value)
    except ValueError as exc:
        raise ValidationError(f"{flag} is not an ISO-8601 datetime: {value!r}") from exc


def _list_car_parks(args: argparse.Namespace, service: CarParkService) -> int:
    records = service.list_car_parks(
        car_park_type=args.car_park_type,
        parking_system=args.parking_system,
        created_since=_since(args.created_since, "--created-since"),
        updated_since=_since(args.updated_since, "--updated-since"),
        available_only=args.available,
    )
    _emit([record.to_dict() for record in records])
    return EXIT_SUCCESS


def _run_scheduler(service: CarParkService) -> int:
    scheduler = service.scheduler()
    scheduler.start()
    try:
        while scheduler.is_running:
            time.sleep(1.0)
    except KeyboardInterrupt:
        pass
    finally:
        scheduler.stop(timeout=5.0)
    return EXIT_SUCCESS


def execute_command(args: argparse.Namespace, service: CarParkService, run_id: str) -> int:
    if args.command == "import":
        return _report_exit(service.import_bulk_data(run_id=run_id, wait=args.wait), args.strict)
    if args.command == "sync":
        return _report_exit(service.sync_availability(run_id=run_id, wait=args.wait), args.strict)
    if args.command == "nearest":
        if args.lat is None or args.lon is None:
            raise ValidationError("nearest needs --lat and --lon")
        service.refresh_cache()
        views = service.find_nearest(args.lat, args.lon, page=args.page, per_page=args.per_page)
        _emit([view.to_dict() for view in views])
        return EXIT_SUCCESS
    if args.command == "list":
        return _list_car_parks(args, service)
    if args.command == "show":
        if not args.code:
            raise ValidationError("show needs a car park code")
        record = service.get_car_park(args.code)
        _emit(None if record is None else record.to_dict())
        return EXIT_SUCCESS if record is not None or not args.strict else EXIT_HARD_FAIL
    if args.command == "refresh-cache":
        _emit({"indexed": service.refresh_cache()})
        return EXIT_SUCCESS
    if args.command in ("soft-delete", "restore"):
        if not args.code:
            raise ValidationError(f"{args.command} needs a car park code")
        action = service.soft_delete if args.command == "soft-delete" else service.restore
        changed = action(args.code)
        _emit({"code": args.code, "changed": changed})
        return EXIT_SUCCESS if changed or not args.strict else EXIT_HARD_FAIL
    if args.command == "schedule":
        return _run_scheduler(service)
    if args.command == "stats":
        _emit(service.stats())
        return EXIT_SUCCESS
    raise ValueError(f"Unknown command: {args.command}")


def run_command(args: argparse.Namespace) -> int:
    run_id = args.run_id or generate_run_id()
    overlay_path = Path(args.overlay_config) if args.overlay_config else None
    cfg = load_config(Path(args.config), overlay_path=overlay_path)

    logging_cfg = cfg.get("logging", {})
    data_dir = Path(args.data_dir or logging_cfg.get("data_dir", "data"))
    level = args.log_level or logging_cfg.get("level", "INFO")
    logger = build_logger(run_id, data_dir=data_dir, level=level)

    log_event(logger, "command start", run_id=run_id, event="COMMAND_START", status="ok", job=args.command)
    with CarParkService(cfg, data_dir=data_dir) as service:
        try:
            exit_code = execute_command(args, service, run_id)
        except CarParkError as exc:
            log_event(
                logger,
                f"command failed: {exc}",
                run_id=run_id,
                job=args.command,
                event="COMMAND_FAIL",
                status="error",
                error_code=exc.error_code,
            )
            return EXIT_HARD_FAIL
    log_event(logger, "command end", run_id=run_id, event="COMMAND_END", status="ok", job=args.command)
    return exit_code


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    try:
        return run_command(args)
    except CarParkError as exc:
        print(f"{exc.error_code}: {exc}", file=sys.stderr)
        return EXIT_HARD_FAIL
    except Exception:
        logging.getLogger(ROOT_LOGGER_NAME).exception(
            "unexpected failure", extra={"event": "COMMAND_FAIL", "error_code": "UNEXPECTED_ERROR"}
        )
        return EXIT_HARD_FAIL


if __name__ == "__main__":
    raise SystemExit(main())
