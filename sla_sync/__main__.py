from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TYPE_CHECKING

from sla_sync.common.db import dispose_engines, ping, run_alembic_upgrade
from sla_sync.common.json_logger import JsonLogger, get_logger, log_event, new_run_id
from sla_sync.errors import ConfigError, DatabaseUnavailableError, InvalidTatConfigError

if TYPE_CHECKING:  # pragma: no cover - import cycles avoided at runtime
    from sla_sync.config import Config

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_SETUP = 2

Outcome = Tuple[Any, int]


def _emit(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str), flush=True)


def _install_stop_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Some environments (e.g. Windows) do not support custom signal handlers.
            pass


async def _discover(args: argparse.Namespace, cfg: Config, logger: JsonLogger, _: asyncio.Event) -> Outcome:
    from sla_sync.catalog.discovery import discover

    await ping(cfg.source_database_url, label="source")
    await ping(cfg.database_url, label="analytics")
    discoveries = await discover(
        source_database_url=cfg.source_database_url,
        database_url=cfg.database_url,
        logger=logger,
        settings=cfg.catalog_settings,
        brand_filter=args.brand,
        country_filter=args.country,
    )
    return {"tables": [discovery.as_dict() for discovery in discoveries], "total": len(discoveries)}, EXIT_OK


async def _sync(args: argparse.Namespace, cfg: Config, logger: JsonLogger, stop_event: asyncio.Event) -> Outcome:
    from datetime import datetime, timezone

    from sla_sync.sync.engine import run_sync
    from sla_sync.sync.window import resolve_sync_options

    try:
        options = resolve_sync_options(
            sync_config=cfg.sync_config(),
            batch_size=args.batch_size,
            max_records=args.max_records,
            strategy=args.strategy,
            window_days=args.window_days,
            concurrency=args.concurrency,
            stop_event=stop_event,
        )
    except ValueError as exc:
        log_event(logger=logger, phase="prereq", status="error", message=str(exc))
        return {"error": str(exc)}, EXIT_SETUP

    summary = await run_sync(
        source_database_url=cfg.source_database_url,
        database_url=cfg.database_url,
        logger=logger,
        options=options,
        catalog_settings=cfg.catalog_settings,
        time_settings=cfg.time_settings,
        brand_filter=args.brand,
        country_filter=args.country,
        run_env=cfg.run_env,
    )
    record = summary.build_record(finished_at=datetime.now(timezone.utc))
    return record, EXIT_FAILED if summary.failed_jobs else EXIT_OK


async def _generate_summary(
    args: argparse.Namespace, cfg: Config, logger: JsonLogger, _: asyncio.Event
) -> Outcome:
    from sla_sync.sync.summary import generate_summaries

    await ping(cfg.database_url, label="analytics")
    results = await generate_summaries(
        database_url=cfg.database_url,
        logger=logger,
        brand_filter=args.brand,
        country_filter=args.country,
        force=args.force,
        settings=cfg.time_settings,
        aliases=cfg.brand_aliases,
    )
    failed = any(result.status == "error" for result in results)
    return {"results": [result.as_dict() for result in results]}, EXIT_FAILED if failed else EXIT_OK


async def _validate(args: argparse.Namespace, cfg: Config, logger: JsonLogger, _: asyncio.Event) -> Outcome:
    from sla_sync.integrity.validator import validate

    report = await validate(
        database_url=cfg.database_url,
        source_database_url=cfg.source_database_url,
        logger=logger,
        settings=cfg.catalog_settings,
    )
    return report.as_dict(), EXIT_FAILED if report.total_issues else EXIT_OK


async def _cleanup(args: argparse.Namespace, cfg: Config, logger: JsonLogger, _: asyncio.Event) -> Outcome:
    from sla_sync.integrity.validator import cleanup

    report = await cleanup(database_url=cfg.database_url, logger=logger)
    return report.as_dict(), EXIT_FAILED if report.failed else EXIT_OK


async def _status(args: argparse.Namespace, cfg: Config, logger: JsonLogger, _: asyncio.Event) -> Outcome:
    from sla_sync.integrity.status import HEALTHY, system_status

    report = await system_status(
        source_database_url=cfg.source_database_url,
        database_url=cfg.database_url,
        logger=logger,
        settings=cfg.catalog_settings,
    )
    return report.as_dict(), EXIT_OK if report.health == HEALTHY else EXIT_FAILED


async def _order(args: argparse.Namespace, cfg: Config, logger: JsonLogger, _: asyncio.Event) -> Outcome:
    from sla_sync.sla.order_detail import find_order

    await ping(cfg.database_url, label="analytics")
    detail = await find_order(
        args.order_no,
        database_url=cfg.database_url,
        logger=logger,
        brand_filter=args.brand,
        country_filter=args.country,
        settings=cfg.time_settings,
        aliases=cfg.brand_aliases,
    )
    if detail is None:
        return {"error": "Order not found", "order_no": args.order_no}, EXIT_FAILED
    return {"order": detail.as_dict()}, EXIT_OK


async def _tat(args: argparse.Namespace, cfg: Config, logger: JsonLogger, _: asyncio.Event) -> Outcome:
    from sla_sync.sla.tat_config import list_tat_configs, upsert_tat_config

    await ping(cfg.database_url, label="analytics")
    if args.tat_command == "list":
        configs = await list_tat_configs(cfg.database_url)
        return {"tat_config": [config.as_dict() for config in configs]}, EXIT_OK

    payload: Dict[str, Any] = {
        "brand_name": args.brand_name,
        "brand_code": args.brand_code,
        "country_code": args.country,
        "processed_tat": args.processed_tat,
        "shipped_tat": args.shipped_tat,
        "delivered_tat": args.delivered_tat,
    }
    for key in ("risk_pct", "urgent_pct", "critical_pct"):
        if getattr(args, key) is not None:
            payload[key] = getattr(args, key)
    try:
        saved = await upsert_tat_config(cfg.database_url, payload)
    except InvalidTatConfigError as exc:
        log_event(logger=logger, phase="tat_config", status="error", message="Rejected TAT configuration", error=str(exc))
        return {"error": str(exc)}, EXIT_SETUP
    log_event(
        logger=logger,
        phase="tat_config",
        message="Saved TAT configuration",
        brand=saved.brand_name,
        country=saved.country_code,
    )
    return {"tat_config": saved.as_dict()}, EXIT_OK


Handler = Callable[[argparse.Namespace, "Config", JsonLogger, asyncio.Event], Awaitable[Outcome]]

HANDLERS: Dict[str, Handler] = {
    "discover": _discover,
    "sync": _sync,
    "generate-summary": _generate_summary,
    "validate": _validate,
    "cleanup": _cleanup,
    "status": _status,
    "order": _order,
    "tat": _tat,
}


async def _run_async(args: argparse.Namespace, cfg: Config) -> int:
    run_id = args.run_id or new_run_id()
    logger = get_logger(run_id=run_id, log_file_path=cfg.json_log_file)
    stop_event = asyncio.Event()
    _install_stop_handlers(stop_event)

    try:
        payload, exit_code = await HANDLERS[args.command](args, cfg, logger, stop_event)
    except DatabaseUnavailableError as exc:
        log_event(logger=logger, phase="prereq", status="error", message=str(exc), database=exc.label)
        _emit({"error": str(exc)})
        return EXIT_SETUP
    finally:
        await dispose_engines()
        logger.close()

    _emit(payload)
    return exit_code


def _add_filters(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--brand", default=None, help="Brand code or source prefix (e.g. vs, victoriasecret)")
    parser.add_argument("--country", default=None, help="Two-letter country code")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sla_sync", description="Order sync and SLA compliance pipeline")
    parser.add_argument("--run-id", dest="run_id", type=str, default=None, help="Override generated run id")
    subparsers = parser.add_subparsers(dest="command", required=True)

    discover_parser = subparsers.add_parser("discover", help="List source order tables and their targets")
    _add_filters(discover_parser)

    sync_parser = subparsers.add_parser("sync", help="Sync source orders and regenerate summaries")
    _add_filters(sync_parser)
    sync_parser.add_argument("--batch-size", dest="batch_size", type=int, default=None)
    sync_parser.add_argument("--max-records", dest="max_records", type=int, default=None, help="Cap per job")
    sync_parser.add_argument("--strategy", choices=("full", "incremental"), default=None)
    sync_parser.add_argument("--window-days", dest="window_days", type=int, default=None)
    sync_parser.add_argument("--concurrency", type=int, default=None, help="Jobs in flight")
    sync_parser.add_argument(
        "--run-migrations",
        action="store_true",
        dest="run_migrations",
        help="Run Alembic migrations before syncing",
    )

    summary_parser = subparsers.add_parser("generate-summary", help="Regenerate SLA daily summaries only")
    _add_filters(summary_parser)
    summary_parser.add_argument("--force", action="store_true", help="Rebuild partitions that already have rows")

    subparsers.add_parser("validate", help="Report data integrity issues (read-only)")
    subparsers.add_parser("cleanup", help="Delete orphaned summary partitions")
    subparsers.add_parser("status", help="Overall health with recommendations")

    order_parser = subparsers.add_parser("order", help="Show one order with its SLA analysis")
    order_parser.add_argument("order_no")
    _add_filters(order_parser)

    tat_parser = subparsers.add_parser("tat", help="TAT configuration")
    tat_sub = tat_parser.add_subparsers(dest="tat_command", required=True)
    tat_sub.add_parser("list", help="List configured TATs")
    tat_set = tat_sub.add_parser("set", help="Create or update a brand/country TAT")
    tat_set.add_argument("--brand-name", dest="brand_name", required=True)
    tat_set.add_argument("--brand-code", dest="brand_code", required=True)
    tat_set.add_argument("--country", required=True)
    tat_set.add_argument("--processed", dest="processed_tat", required=True, help="e.g. 2h")
    tat_set.add_argument("--shipped", dest="shipped_tat", required=True, help="e.g. 2d")
    tat_set.add_argument("--delivered", dest="delivered_tat", required=True, help="e.g. 7d")
    tat_set.add_argument("--risk-pct", dest="risk_pct", type=int, default=None)
    tat_set.add_argument("--urgent-pct", dest="urgent_pct", type=int, default=None)
    tat_set.add_argument("--critical-pct", dest="critical_pct", type=int, default=None)

    db_parser = subparsers.add_parser("db", help="Database operations")
    db_sub = db_parser.add_subparsers(dest="db_command", required=True)
    upgrade_parser = db_sub.add_parser("upgrade", help="Run Alembic upgrade")
    upgrade_parser.add_argument("--revision", default="head")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    from sla_sync.config import get_config

    try:
        cfg = get_config()
    except ConfigError as exc:
        _emit({"error": str(exc)})
        return EXIT_SETUP

    if args.command == "db" and args.db_command == "upgrade":
        run_alembic_upgrade(args.revision, database_url=cfg.database_url, alembic_config=cfg.alembic_config)
        _emit({"upgraded_to": args.revision})
        return EXIT_OK

    if getattr(args, "run_migrations", False):
        run_alembic_upgrade("head", database_url=cfg.database_url, alembic_config=cfg.alembic_config)

    return asyncio.run(_run_async(args, cfg))


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
