"""Integrity checks over sla_daily_summary and orphan cleanup.

validate() only reads. cleanup() is the single mutating path and removes
summary partitions whose backing order table no longer exists.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List

import sqlalchemy as sa

from sla_sync.catalog.naming import (
    DEFAULT_CATALOG_SETTINGS,
    CatalogSettings,
    parse_source_table,
    target_table_name,
)
from sla_sync.catalog.tables import sla_daily_summary
from sla_sync.common.db import list_tables, ping, session_scope, table_exists
from sla_sync.common.json_logger import JsonLogger, log_event
from sla_sync.common.locks import hold_partition
from sla_sync.errors import InvalidIdentifierError
from sla_sync.sla.tat_config import configured_partitions

MISSING_TAT_ISSUE = "Missing TAT configuration - will use fallback defaults"
MISSING_TARGET_ISSUE = "Source table discovered but order table has not been synced"


@dataclass(frozen=True)
class TatIssue:
    brand_name: str
    country_code: str
    issue: str = MISSING_TAT_ISSUE


@dataclass(frozen=True)
class OrphanedPartition:
    brand_name: str
    brand_code: str
    country_code: str
    missing_table: str
    record_count: int


@dataclass(frozen=True)
class MissingTable:
    expected_table: str
    source_table: str
    issue: str = MISSING_TARGET_ISSUE


@dataclass
class ValidationReport:
    tat_issues: List[TatIssue] = field(default_factory=list)
    orphaned: List[OrphanedPartition] = field(default_factory=list)
    missing_tables: List[MissingTable] = field(default_factory=list)

    @property
    def orphaned_records(self) -> int:
        return sum(partition.record_count for partition in self.orphaned)

    @property
    def total_issues(self) -> int:
        return len(self.tat_issues) + len(self.orphaned) + len(self.missing_tables)

    @property
    def summary(self) -> Dict[str, int]:
        return {
            "total_issues": self.total_issues,
            "tat_issues": len(self.tat_issues),
            "orphaned_partitions": len(self.orphaned),
            "orphaned_records": self.orphaned_records,
            "missing_tables": len(self.missing_tables),
        }

    def as_dict(self) -> Dict[str, Any]:
        return {
            "tat_issues": [asdict(issue) for issue in self.tat_issues],
            "orphaned": [asdict(partition) for partition in self.orphaned],
            "missing_tables": [asdict(table) for table in self.missing_tables],
            "summary": self.summary,
        }


@dataclass
class CleanupReport:
    orphaned_records: List[OrphanedPartition] = field(default_factory=list)
    total_orphaned: int = 0
    cleanup_performed: bool = False
    failed: List[Dict[str, str]] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "orphaned_records": [asdict(partition) for partition in self.orphaned_records],
            "total_orphaned": self.total_orphaned,
            "cleanup_performed": self.cleanup_performed,
            "failed": list(self.failed),
        }


async def _summary_partitions(database_url: str) -> List[tuple[str, str, str]]:
    stmt = (
        sa.select(sla_daily_summary.c.brand_name, sla_daily_summary.c.country_code, sla_daily_summary.c.brand_code)
        .distinct()
        .order_by(sla_daily_summary.c.brand_name, sla_daily_summary.c.country_code)
    )
    async with session_scope(database_url) as session:
        return [tuple(row) for row in (await session.execute(stmt)).all()]


async def _count_partition_rows(database_url: str, brand_name: str, country_code: str) -> int:
    stmt = (
        sa.select(sa.func.count())
        .select_from(sla_daily_summary)
        .where(sla_daily_summary.c.brand_name == brand_name)
        .where(sla_daily_summary.c.country_code == country_code)
    )
    async with session_scope(database_url) as session:
        return int((await session.execute(stmt)).scalar_one())


async def find_orphaned_partitions(database_url: str) -> List[OrphanedPartition]:
    """Summary partitions whose ``orders_<brand_code>_<country>`` table is gone."""

    existing = set(await list_tables(database_url))
    orphaned: List[OrphanedPartition] = []
    seen: set[tuple[str, str]] = set()
    for brand_name, country_code, brand_code in await _summary_partitions(database_url):
        if (brand_name, country_code) in seen:
            continue
        try:
            expected = target_table_name(brand_code, country_code)
        except InvalidIdentifierError:
            # No table can carry this name, so the partition has no backing table.
            expected = f"orders_{brand_code}_{country_code}".lower()
        if expected in existing:
            continue
        seen.add((brand_name, country_code))
        orphaned.append(
            OrphanedPartition(
                brand_name=brand_name,
                brand_code=brand_code,
                country_code=country_code,
                missing_table=expected,
                record_count=await _count_partition_rows(database_url, brand_name, country_code),
            )
        )
    return orphaned


async def find_missing_tables(
    *, source_database_url: str, database_url: str, settings: CatalogSettings, logger: JsonLogger
) -> List[MissingTable]:
    existing = set(await list_tables(database_url))
    missing: List[MissingTable] = []
    for name in sorted(await list_tables(source_database_url)):
        source = parse_source_table(name, settings.brand_aliases)
        if source is None:
            continue
        try:
            expected = source.target_table
        except InvalidIdentifierError as exc:
            log_event(
                logger=logger,
                phase="validate",
                status="warn",
                message="Skipping source table with an invalid target name",
                source_table=name,
                error=str(exc),
            )
            continue
        if expected not in existing:
            missing.append(MissingTable(expected_table=expected, source_table=name))
    return missing


async def validate(
    *,
    database_url: str,
    logger: JsonLogger,
    source_database_url: str | None = None,
    settings: CatalogSettings = DEFAULT_CATALOG_SETTINGS,
) -> ValidationReport:
    """Report TAT gaps, orphaned summary partitions and unsynced source tables.

    Findings are returned, never raised. Missing tables are only checked when
    a source database is given.
    """

    await ping(database_url, label="analytics")
    report = ValidationReport()

    configured = await configured_partitions(database_url)
    seen: set[tuple[str, str]] = set()
    for brand_name, country_code, _ in await _summary_partitions(database_url):
        key = (brand_name, str(country_code).upper())
        if key in seen or key in configured:
            continue
        seen.add(key)
        report.tat_issues.append(TatIssue(brand_name=brand_name, country_code=country_code))

    report.orphaned = await find_orphaned_partitions(database_url)

    if source_database_url:
        await ping(source_database_url, label="source")
        report.missing_tables = await find_missing_tables(
            source_database_url=source_database_url, database_url=database_url, settings=settings, logger=logger
        )

    log_event(
        logger=logger,
        phase="validate",
        status="warn" if report.total_issues else "ok",
        message="Data integrity validation complete",
        **report.summary,
    )
    return report


async def cleanup(*, database_url: str, logger: JsonLogger) -> CleanupReport:
    """Delete orphaned summary partitions, one transaction per partition.

    Each partition is re-checked under its partition lock so a sync that has
    just recreated the order table keeps its summaries.
    """

    await ping(database_url, label="analytics")
    orphaned = await find_orphaned_partitions(database_url)
    report = CleanupReport(orphaned_records=orphaned, total_orphaned=sum(p.record_count for p in orphaned))
    if not orphaned:
        log_event(logger=logger, phase="cleanup", message="No orphaned summary data found")
        return report

    for partition in orphaned:
        async with hold_partition(partition.brand_name, partition.country_code):
            if await table_exists(database_url, partition.missing_table):
                log_event(
                    logger=logger,
                    phase="cleanup",
                    status="warn",
                    message="Order table reappeared; partition kept",
                    brand=partition.brand_name,
                    country=partition.country_code,
                    table=partition.missing_table,
                )
                continue
            try:
                async with session_scope(database_url) as session:
                    await session.execute(
                        sa.delete(sla_daily_summary)
                        .where(sla_daily_summary.c.brand_name == partition.brand_name)
                        .where(sla_daily_summary.c.country_code == partition.country_code)
                    )
                    await session.commit()
            except sa.exc.SQLAlchemyError as exc:
                report.failed.append(
                    {"brand_name": partition.brand_name, "country_code": partition.country_code, "error": str(exc)}
                )
                log_event(
                    logger=logger,
                    phase="cleanup",
                    status="error",
                    message="Failed to delete orphaned summary partition",
                    brand=partition.brand_name,
                    country=partition.country_code,
                    error=str(exc),
                )
                continue
        report.cleanup_performed = True
        log_event(
            logger=logger,
            phase="cleanup",
            message="Deleted orphaned summary partition",
            brand=partition.brand_name,
            country=partition.country_code,
            missing_table=partition.missing_table,
            record_count=partition.record_count,
        )
    return report
