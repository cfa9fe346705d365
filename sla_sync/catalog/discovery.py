"""Find brand/country order tables in the master catalog and pair them with targets."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError

from sla_sync.catalog.naming import (
    DEFAULT_CATALOG_SETTINGS,
    CatalogSettings,
    SourceTable,
    parse_source_table,
    parse_target_table,
)
from sla_sync.catalog.tables import source_orders_table, target_orders_table
from sla_sync.common.db import list_tables, session_scope
from sla_sync.common.json_logger import JsonLogger, log_event
from sla_sync.errors import SlaSyncError


@dataclass(frozen=True)
class Discovery:
    source: SourceTable
    source_count: int
    exists_in_target: bool
    target_count: int = 0
    last_sync: datetime | None = None

    @property
    def source_table(self) -> str:
        return self.source.name

    @property
    def target_table(self) -> str:
        return self.source.target_table

    @property
    def brand_name(self) -> str:
        return self.source.brand_name

    @property
    def brand_code(self) -> str:
        return self.source.brand_code

    @property
    def country_code(self) -> str:
        return self.source.country_code

    def as_dict(self) -> Dict[str, Any]:
        return {
            "source_table": self.source_table,
            "target_table": self.target_table,
            "brand_prefix": self.source.brand_prefix,
            "brand_code": self.brand_code,
            "brand_name": self.brand_name,
            "country_code": self.country_code.upper(),
            "source_count": self.source_count,
            "exists_in_target": self.exists_in_target,
            "target_count": self.target_count,
            "last_sync": self.last_sync.isoformat() if self.last_sync else None,
        }


@dataclass(frozen=True)
class TargetTableRef:
    name: str
    brand_code: str
    country_code: str


def matches_filters(
    *, brand_code: str, brand_prefix: str | None, country_code: str, brand_filter: str | None, country_filter: str | None
) -> bool:
    if brand_filter:
        wanted = brand_filter.strip().lower()
        if wanted not in {brand_code.lower(), (brand_prefix or "").lower()}:
            return False
    if country_filter and country_filter.strip().lower() != country_code.lower():
        return False
    return True


async def count_source_rows(
    source_database_url: str,
    table_name: str,
    *,
    confirmed_only: bool,
) -> int:
    orders = source_orders_table(table_name)
    stmt = sa.select(sa.func.count()).select_from(orders)
    if confirmed_only:
        stmt = stmt.where(orders.c.confirmation_status == "CONFIRMED")
    async with session_scope(source_database_url) as session:
        return int((await session.execute(stmt)).scalar_one())


async def fetch_target_stats(database_url: str, table_name: str) -> tuple[int, datetime | None]:
    """Return ``(row_count, max(updated_at))`` for a target table."""

    table = target_orders_table(table_name)
    stmt = sa.select(sa.func.count(), sa.func.max(table.c.updated_at)).select_from(table)
    async with session_scope(database_url) as session:
        count, last_sync = (await session.execute(stmt)).one()
    return int(count or 0), last_sync


async def discover(
    *,
    source_database_url: str,
    database_url: str,
    logger: JsonLogger,
    settings: CatalogSettings = DEFAULT_CATALOG_SETTINGS,
    brand_filter: str | None = None,
    country_filter: str | None = None,
) -> List[Discovery]:
    """Scan the master catalog for ``<prefix>_<cc>_orders`` tables.

    A table that fails to inspect is logged and skipped; the rest of the scan
    continues.
    """

    source_names = sorted(await list_tables(source_database_url))
    target_names = set(await list_tables(database_url))

    discoveries: List[Discovery] = []
    for name in source_names:
        source = parse_source_table(name, settings.brand_aliases)
        if source is None:
            continue
        if not matches_filters(
            brand_code=source.brand_code,
            brand_prefix=source.brand_prefix,
            country_code=source.country_code,
            brand_filter=brand_filter,
            country_filter=country_filter,
        ):
            continue
        try:
            source_count = await count_source_rows(
                source_database_url, name, confirmed_only=settings.confirmed_only_counts
            )
            exists = source.target_table in target_names
            target_count, last_sync = 0, None
            if exists:
                target_count, last_sync = await fetch_target_stats(database_url, source.target_table)
        except (SQLAlchemyError, SlaSyncError) as exc:
            log_event(
                logger=logger,
                phase="discover",
                status="warn",
                message="Skipping source table that could not be inspected",
                source_table=name,
                error=str(exc),
            )
            continue

        discovery = Discovery(
            source=source,
            source_count=source_count,
            exists_in_target=exists,
            target_count=target_count,
            last_sync=last_sync,
        )
        discoveries.append(discovery)
        log_event(
            logger=logger,
            phase="discover",
            message="Discovered source table",
            source_table=name,
            target_table=discovery.target_table,
            brand=discovery.brand_name,
            country=discovery.country_code.upper(),
            source_count=source_count,
            exists_in_target=exists,
        )

    log_event(
        logger=logger,
        phase="discover",
        message="Discovery complete",
        tables=len(discoveries),
    )
    return discoveries


async def discover_target_tables(
    *,
    database_url: str,
    brand_filter: str | None = None,
    country_filter: str | None = None,
) -> List[TargetTableRef]:
    refs: List[TargetTableRef] = []
    for name in sorted(await list_tables(database_url)):
        parsed = parse_target_table(name)
        if parsed is None:
            continue
        brand_code, country_code = parsed
        if not matches_filters(
            brand_code=brand_code,
            brand_prefix=None,
            country_code=country_code,
            brand_filter=brand_filter,
            country_filter=country_filter,
        ):
            continue
        refs.append(TargetTableRef(name=name, brand_code=brand_code, country_code=country_code))
    return refs
