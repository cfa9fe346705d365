"""Per-partition SLA daily summaries.

A partition's rows are always rebuilt from the full target table in one
delete-then-insert transaction. They are never patched incrementally, so a
summary can always be reproduced by recomputing it from the orders.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Tuple

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError

from sla_sync.catalog.discovery import discover_target_tables
from sla_sync.catalog.naming import DEFAULT_BRAND_ALIASES, BrandAlias, brand_name_for_code
from sla_sync.catalog.tables import SUMMARY_STAGES, sla_daily_summary, target_orders_table
from sla_sync.common.db import session_scope
from sla_sync.common.json_logger import JsonLogger, log_event
from sla_sync.common.locks import hold_partition
from sla_sync.errors import SlaSyncError
from sla_sync.sla.classifier import (
    AT_RISK,
    BREACHED,
    ON_TIME,
    STAGE_DELIVERED,
    STAGE_NOT_PROCESSED,
    STAGE_PROCESSED,
    STAGE_SHIPPED,
    OrderMilestones,
    classify_stage,
    current_stage,
)
from sla_sync.sla.local_time import DEFAULT_TIME_SETTINGS, LocalTimeError, TimeSettings
from sla_sync.sla.tat_config import TatConfig, get_tat_config

FETCH_SIZE = 1000


@dataclass
class StageBucket:
    orders_total: int = 0
    orders_on_time: int = 0
    orders_on_risk: int = 0
    orders_breached: int = 0
    delay_seconds: int = 0

    def add(self, status: str, exceeded_minutes: int) -> None:
        self.orders_total += 1
        if status == ON_TIME:
            self.orders_on_time += 1
        elif status == AT_RISK:
            self.orders_on_risk += 1
        elif status == BREACHED:
            self.orders_breached += 1
            self.delay_seconds += exceeded_minutes * 60

    @property
    def avg_delay_sec(self) -> int:
        if not self.orders_breached:
            return 0
        return int(self.delay_seconds / self.orders_breached)


@dataclass
class PartitionSummary:
    brand_name: str
    brand_code: str
    country_code: str
    buckets: Dict[Tuple[date, str], StageBucket] = field(default_factory=dict)
    skipped_orders: int = 0

    @property
    def orders_counted(self) -> int:
        return sum(bucket.orders_total for bucket in self.buckets.values())

    def rows(self, *, refreshed_at: datetime) -> List[Dict[str, Any]]:
        return [
            {
                "summary_date": summary_date,
                "brand_name": self.brand_name,
                "brand_code": self.brand_code,
                "country_code": self.country_code,
                "stage": stage,
                "orders_total": bucket.orders_total,
                "orders_on_time": bucket.orders_on_time,
                "orders_on_risk": bucket.orders_on_risk,
                "orders_breached": bucket.orders_breached,
                "avg_delay_sec": bucket.avg_delay_sec,
                "refreshed_at": refreshed_at,
            }
            for (summary_date, stage), bucket in sorted(
                self.buckets.items(), key=lambda item: (item[0][0], SUMMARY_STAGES.index(item[0][1]))
            )
        ]


_STAGE_MILESTONE = {
    STAGE_DELIVERED: ("delivered_time", "delivered_tat"),
    STAGE_SHIPPED: ("shipped_time", "shipped_tat"),
    STAGE_PROCESSED: ("processed_time", "processed_tat"),
    STAGE_NOT_PROCESSED: (None, "processed_tat"),
}


def accumulate_orders(
    partition: PartitionSummary,
    rows: Iterable[Mapping[str, Any]],
    tat: TatConfig,
    *,
    settings: TimeSettings = DEFAULT_TIME_SETTINGS,
    now: datetime | None = None,
    logger: JsonLogger | None = None,
) -> None:
    """Count each order once, in its current stage, keyed by placement date.

    Completed stages are judged placed to milestone; Not Processed orders are
    judged as pending against the processing SLA. Orders whose timestamps
    cannot be rendered as local time are skipped.
    """

    for row in rows:
        order = OrderMilestones.from_row(row)
        if order.placed_time is None:
            partition.skipped_orders += 1
            continue
        stage = current_stage(order)
        milestone_attr, sla_attr = _STAGE_MILESTONE[stage]
        milestone = getattr(order, milestone_attr) if milestone_attr else None
        try:
            result = classify_stage(
                order.placed_time,
                milestone,
                getattr(tat, sla_attr),
                tat.risk_pct,
                country_code=partition.country_code,
                settings=settings,
                now=now,
            )
        except (LocalTimeError, OverflowError, ValueError) as exc:
            partition.skipped_orders += 1
            if logger is not None:
                log_event(
                    logger=logger,
                    phase="summary",
                    status="warn",
                    message="Skipped order with unrenderable timestamps",
                    order_no=row.get("order_no"),
                    placed_time=order.placed_time,
                    error=str(exc),
                )
            continue
        key = (order.placed_time.date(), stage)
        partition.buckets.setdefault(key, StageBucket()).add(result.status, result.exceeded_minutes)


async def regenerate_partition_summary(
    *,
    database_url: str,
    target_table: str,
    brand_name: str,
    brand_code: str,
    country_code: str,
    logger: JsonLogger,
    settings: TimeSettings = DEFAULT_TIME_SETTINGS,
    now: datetime | None = None,
) -> PartitionSummary:
    """Rebuild sla_daily_summary rows for one (brand_name, country_code).

    Raises InvalidTatConfigError when the partition's TAT values are unusable.
    The caller is expected to hold the partition lock.
    """

    country = country_code.upper()
    tat = await get_tat_config(database_url, brand_name, country, logger=logger, brand_code=brand_code)
    tat.ensure_usable()

    partition = PartitionSummary(brand_name=brand_name, brand_code=brand_code, country_code=country)
    table = target_orders_table(target_table)
    stmt = sa.select(
        table.c.order_no,
        table.c.placed_time,
        table.c.processed_time,
        table.c.shipped_time,
        table.c.delivered_time,
    ).execution_options(yield_per=FETCH_SIZE)

    async with session_scope(database_url) as session:
        result = await session.stream(stmt)
        async for chunk in result.mappings().partitions(FETCH_SIZE):
            accumulate_orders(partition, chunk, tat, settings=settings, now=now, logger=logger)

    refreshed_at = datetime.now(timezone.utc)
    rows = partition.rows(refreshed_at=refreshed_at)
    async with session_scope(database_url) as session:
        await session.execute(
            sa.delete(sla_daily_summary)
            .where(sla_daily_summary.c.brand_name == brand_name)
            .where(sla_daily_summary.c.country_code == country)
        )
        if rows:
            await session.execute(sa.insert(sla_daily_summary), rows)
        await session.commit()

    log_event(
        logger=logger,
        phase="summary",
        message="Regenerated SLA daily summary",
        brand=brand_name,
        country=country,
        target_table=target_table,
        summary_rows=len(rows),
        orders_counted=partition.orders_counted,
        skipped_orders=partition.skipped_orders,
        fallback_tat=tat.is_fallback,
    )
    return partition


@dataclass
class SummaryGenerationResult:
    target_table: str
    brand_name: str
    brand_code: str
    country_code: str
    status: str
    summary_rows: int = 0
    orders_counted: int = 0
    message: str = ""

    def as_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


async def _partition_brand_name(database_url: str, target_table: str, brand_code: str, aliases) -> str:
    table = target_orders_table(target_table)
    stmt = sa.select(table.c.brand_name).where(table.c.brand_name.is_not(None)).limit(1)
    async with session_scope(database_url) as session:
        brand_name = (await session.execute(stmt)).scalar_one_or_none()
    return brand_name or brand_name_for_code(brand_code, aliases)


async def _has_summary_rows(database_url: str, brand_name: str, country_code: str) -> bool:
    stmt = (
        sa.select(sa.func.count())
        .select_from(sla_daily_summary)
        .where(sla_daily_summary.c.brand_name == brand_name)
        .where(sla_daily_summary.c.country_code == country_code)
    )
    async with session_scope(database_url) as session:
        return int((await session.execute(stmt)).scalar_one()) > 0


async def generate_summaries(
    *,
    database_url: str,
    logger: JsonLogger,
    brand_filter: str | None = None,
    country_filter: str | None = None,
    force: bool = False,
    settings: TimeSettings = DEFAULT_TIME_SETTINGS,
    aliases: Mapping[str, BrandAlias] = DEFAULT_BRAND_ALIASES,
    now: datetime | None = None,
) -> List[SummaryGenerationResult]:
    """Regenerate summaries for existing target tables without syncing.

    Partitions that already have summary rows are skipped unless ``force``.
    """

    results: List[SummaryGenerationResult] = []
    refs = await discover_target_tables(
        database_url=database_url, brand_filter=brand_filter, country_filter=country_filter
    )
    for ref in refs:
        country = ref.country_code.upper()
        brand_name = brand_name_for_code(ref.brand_code, aliases)
        try:
            brand_name = await _partition_brand_name(database_url, ref.name, ref.brand_code, aliases)
            async with hold_partition(brand_name, country):
                if not force and await _has_summary_rows(database_url, brand_name, country):
                    log_event(
                        logger=logger,
                        phase="summary",
                        message="Summary already present; skipping (use force to rebuild)",
                        brand=brand_name,
                        country=country,
                        target_table=ref.name,
                    )
                    results.append(
                        SummaryGenerationResult(
                            ref.name, brand_name, ref.brand_code, country, "skipped", message="summary exists"
                        )
                    )
                    continue
                partition = await regenerate_partition_summary(
                    database_url=database_url,
                    target_table=ref.name,
                    brand_name=brand_name,
                    brand_code=ref.brand_code,
                    country_code=country,
                    logger=logger,
                    settings=settings,
                    now=now,
                )
        except (SQLAlchemyError, SlaSyncError) as exc:
            log_event(
                logger=logger,
                phase="summary",
                status="error",
                message="Summary generation failed",
                brand=brand_name,
                country=country,
                target_table=ref.name,
                error=str(exc),
            )
            results.append(
                SummaryGenerationResult(ref.name, brand_name, ref.brand_code, country, "error", message=str(exc))
            )
            continue

        results.append(
            SummaryGenerationResult(
                ref.name,
                brand_name,
                ref.brand_code,
                country,
                "ok",
                summary_rows=len(partition.buckets),
                orders_counted=partition.orders_counted,
            )
        )
    return results
