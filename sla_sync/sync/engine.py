"""Batched, idempotent copy of source orders into per brand/country targets."""

from __future__ import annotations

import asyncio
import math
import time
from datetime import datetime, timezone
from typing import Any, Dict, List

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError

from sla_sync.catalog.discovery import Discovery, discover
from sla_sync.catalog.naming import DEFAULT_CATALOG_SETTINGS, CatalogSettings
from sla_sync.catalog.tables import target_orders_table
from sla_sync.common.db import dialect_name, get_engine, list_tables, ping, session_scope, table_exists
from sla_sync.common.json_logger import JsonLogger, log_event, timed_event
from sla_sync.common.locks import hold_partition
from sla_sync.common.upsert import make_upsert
from sla_sync.errors import JobError, SlaSyncError
from sla_sync.sla.local_time import DEFAULT_TIME_SETTINGS, TimeSettings
from sla_sync.sync.records import JobQueryPlan, map_source_row
from sla_sync.sync.result import Pagination, SyncJobResult, SyncRunSummary
from sla_sync.sync.summary import regenerate_partition_summary
from sla_sync.sync.window import SyncOptions, resolve_created_since

ROW_ERRORS = (SQLAlchemyError, ValueError, TypeError, ArithmeticError)


async def ensure_target_table(database_url: str, table_name: str) -> sa.Table:
    """Create the target table and its indexes unless they already exist."""

    metadata = sa.MetaData()
    table = target_orders_table(table_name, metadata)
    try:
        async with get_engine(database_url).begin() as conn:
            await conn.run_sync(metadata.create_all)
    except SQLAlchemyError:
        # Another process may have created it between the check and the DDL.
        if not await table_exists(database_url, table_name):
            raise
    return table


async def _probe_source(source_database_url: str, discovery: Discovery) -> tuple[bool, bool]:
    names = set(await list_tables(source_database_url))
    if discovery.source_table not in names:
        raise JobError(f"Source table {discovery.source_table} not found")
    return discovery.source.payments_table in names, discovery.source.shipments_table in names


async def _upsert_batch(
    *,
    database_url: str,
    table: sa.Table,
    rows: List[Dict[str, Any]],
    discovery: Discovery,
    settings: TimeSettings,
    logger: JsonLogger,
) -> tuple[int, int]:
    """Upsert rows one transaction each; return ``(processed, errors)``."""

    dialect = dialect_name(database_url)
    synced_at = datetime.now(timezone.utc).replace(tzinfo=None)
    processed = 0
    errors = 0
    async with session_scope(database_url) as session:
        for row in rows:
            try:
                values = map_source_row(row, source=discovery.source, synced_at=synced_at, settings=settings)
                await session.execute(make_upsert(table, values, dialect=dialect))
                await session.commit()
            except ROW_ERRORS as exc:
                await session.rollback()
                errors += 1
                log_event(
                    logger=logger,
                    phase="sync_row",
                    status="warn",
                    message="Failed to upsert order",
                    order_no=row.get("order_no"),
                    error=str(exc),
                )
                continue
            processed += 1
    return processed, errors


async def sync_job(
    discovery: Discovery,
    *,
    source_database_url: str,
    database_url: str,
    logger: JsonLogger,
    options: SyncOptions = SyncOptions(),
    settings: TimeSettings = DEFAULT_TIME_SETTINGS,
    now: datetime | None = None,
) -> SyncJobResult:
    """Sync one brand/country table, then rebuild its summary partition.

    Row failures are counted and logged; anything else that goes wrong marks
    only this job as failed.
    """

    brand_name, country = discovery.source.partition
    job_logger = logger.bind(
        brand=brand_name,
        country=country,
        source_table=discovery.source_table,
        target_table=discovery.target_table,
    )
    result = SyncJobResult(
        brand_name=brand_name,
        brand_code=discovery.brand_code,
        country_code=country,
        source_table=discovery.source_table,
        target_table=discovery.target_table,
    )
    started = time.perf_counter()
    current_time = now or datetime.now(timezone.utc).replace(tzinfo=None)

    async with hold_partition(brand_name, country):
        try:
            table = await ensure_target_table(database_url, discovery.target_table)
            has_payments, has_shipments = await _probe_source(source_database_url, discovery)
            watermark = discovery.last_sync if discovery.exists_in_target else None
            plan = JobQueryPlan(
                source=discovery.source,
                has_payments=has_payments,
                has_shipments=has_shipments,
                created_since=resolve_created_since(options=options, watermark=watermark, now=current_time),
            )

            async with session_scope(source_database_url) as session:
                total = int((await session.execute(plan.count_statement())).scalar_one())
            to_process = min(total, options.max_records) if options.max_records else total
            result.pagination = Pagination(total_batches=math.ceil(to_process / options.batch_size))

            log_event(
                logger=job_logger,
                phase="sync_job",
                message="Starting job",
                source_rows=total,
                to_process=to_process,
                batches=result.pagination.total_batches,
                payments_join=has_payments,
                shipments_join=has_shipments,
                created_since=plan.created_since,
                strategy=options.strategy,
            )

            offset = 0
            while offset < to_process:
                if options.stop_requested:
                    result.cancelled = True
                    log_event(
                        logger=job_logger,
                        phase="sync_job",
                        status="warn",
                        message="Stop requested; not fetching further batches",
                        offset=offset,
                    )
                    break
                limit = min(options.batch_size, to_process - offset)
                async with session_scope(source_database_url) as session:
                    batch = await session.execute(plan.batch_statement(offset=offset, limit=limit))
                    rows = [dict(row) for row in batch.mappings()]
                if not rows:
                    break

                processed, errors = await _upsert_batch(
                    database_url=database_url,
                    table=table,
                    rows=rows,
                    discovery=discovery,
                    settings=settings,
                    logger=job_logger,
                )
                offset += len(rows)
                result.processed += processed
                result.errors += errors
                result.pagination.current_batch += 1
                result.pagination.records_processed = offset
                log_event(
                    logger=job_logger,
                    phase="sync_batch",
                    message="Batch complete",
                    batch=result.pagination.current_batch,
                    total_batches=result.pagination.total_batches,
                    processed=processed,
                    errors=errors,
                )
            result.pagination.has_more = offset < total

            partition = await regenerate_partition_summary(
                database_url=database_url,
                target_table=discovery.target_table,
                brand_name=brand_name,
                brand_code=discovery.brand_code,
                country_code=country,
                logger=job_logger,
                settings=settings,
                now=now,
            )
            result.summary_rows = len(partition.buckets)
            result.success = True
        except (SQLAlchemyError, SlaSyncError) as exc:
            result.success = False
            result.error_message = str(exc)
            log_event(
                logger=job_logger,
                phase="sync_job",
                status="error",
                message="Job failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
        except Exception as exc:
            # Unexpected failures are confined to this job.
            result.success = False
            result.error_message = f"{type(exc).__name__}: {exc}"
            log_event(
                logger=job_logger,
                phase="sync_job",
                status="error",
                message="Job failed unexpectedly",
                error=str(exc),
                error_type=type(exc).__name__,
            )

    result.duration_seconds = round(time.perf_counter() - started, 3)
    if result.success:
        log_event(
            logger=job_logger,
            phase="sync_job",
            status="warn" if result.errors or result.cancelled else "ok",
            message="Job finished",
            processed=result.processed,
            errors=result.errors,
            summary_rows=result.summary_rows,
            duration_seconds=result.duration_seconds,
        )
    return result


def _cancelled_result(discovery: Discovery) -> SyncJobResult:
    brand_name, country = discovery.source.partition
    return SyncJobResult(
        brand_name=brand_name,
        brand_code=discovery.brand_code,
        country_code=country,
        source_table=discovery.source_table,
        target_table=discovery.target_table,
        success=True,
        cancelled=True,
        pagination=Pagination(has_more=True),
    )


async def run_sync(
    *,
    source_database_url: str,
    database_url: str,
    logger: JsonLogger,
    options: SyncOptions = SyncOptions(),
    catalog_settings: CatalogSettings = DEFAULT_CATALOG_SETTINGS,
    time_settings: TimeSettings = DEFAULT_TIME_SETTINGS,
    brand_filter: str | None = None,
    country_filter: str | None = None,
    run_env: str = "",
) -> SyncRunSummary:
    """Discover matching source tables and sync each one as an independent job.

    Raises DatabaseUnavailableError if either database is unreachable;
    every other failure is reported per job in the returned summary.
    """

    await ping(source_database_url, label="source")
    await ping(database_url, label="analytics")

    summary = SyncRunSummary(run_id=logger.run_id, run_env=run_env)
    with timed_event(logger=logger, phase="discover", message="Source catalog scan"):
        discoveries = await discover(
            source_database_url=source_database_url,
            database_url=database_url,
            logger=logger,
            settings=catalog_settings,
            brand_filter=brand_filter,
            country_filter=country_filter,
        )
    summary.mark_phase("discover", "ok")
    if not discoveries:
        summary.notes.append("No source tables matched")
        log_event(logger=logger, phase="sync", status="warn", message="No source tables matched the filters")

    semaphore = asyncio.Semaphore(options.concurrency)

    async def _run(discovery: Discovery) -> SyncJobResult:
        async with semaphore:
            if options.stop_requested:
                log_event(
                    logger=logger,
                    phase="sync_job",
                    status="warn",
                    message="Stop requested; job not started",
                    source_table=discovery.source_table,
                )
                return _cancelled_result(discovery)
            return await sync_job(
                discovery,
                source_database_url=source_database_url,
                database_url=database_url,
                logger=logger,
                options=options,
                settings=time_settings,
            )

    for job_result in await asyncio.gather(*(_run(discovery) for discovery in discoveries)):
        summary.record_job(job_result)

    log_event(
        logger=logger,
        phase="sync",
        status={"ok": "ok", "partial": "warn", "failed": "error"}[summary.overall_status()],
        message=summary.summary_text(),
        total_jobs=summary.total_jobs,
        successful_jobs=summary.successful_jobs,
        failed_jobs=summary.failed_jobs,
        total_processed=summary.total_processed,
        cancelled=summary.cancelled,
    )
    return summary
