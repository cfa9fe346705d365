from __future__ import annotations

from datetime import datetime

import pytest
import sqlalchemy as sa

from sla_sync.catalog.discovery import discover, discover_target_tables
from sla_sync.catalog.naming import CatalogSettings
from sla_sync.catalog.tables import target_orders_table

PLACED = datetime(2025, 5, 10, 0, 0)


@pytest.fixture
def master(source_url, make_source_tables, make_order):
    make_source_tables(
        source_url,
        "victoriasecret",
        "my",
        [
            make_order("VS1", PLACED),
            make_order("VS2", PLACED),
            make_order("VS3", PLACED, confirmed=False),
        ],
        payments=[],
    )
    make_source_tables(source_url, "bbw", "sg", [make_order("BB1", PLACED)])
    return source_url


@pytest.mark.asyncio
async def test_discover_lists_order_tables_only(master, analytics_url, logger) -> None:
    found = await discover(source_database_url=master, database_url=analytics_url, logger=logger)

    assert [item.source_table for item in found] == ["bbw_sg_orders", "victoriasecret_my_orders"]
    vs = found[1]
    assert vs.target_table == "orders_vs_my"
    assert vs.source_count == 2
    assert vs.exists_in_target is False
    assert vs.last_sync is None
    assert vs.as_dict()["country_code"] == "MY"


@pytest.mark.asyncio
async def test_discover_counts_all_rows_when_not_confirmed_only(master, analytics_url, logger) -> None:
    settings = CatalogSettings(confirmed_only_counts=False)

    found = await discover(
        source_database_url=master, database_url=analytics_url, logger=logger, settings=settings, brand_filter="vs"
    )

    assert len(found) == 1
    assert found[0].source_count == 3


@pytest.mark.asyncio
async def test_discover_filters_by_brand_prefix_and_country(master, analytics_url, logger) -> None:
    by_prefix = await discover(
        source_database_url=master, database_url=analytics_url, logger=logger, brand_filter="victoriasecret"
    )
    by_country = await discover(
        source_database_url=master, database_url=analytics_url, logger=logger, country_filter="SG"
    )

    assert [item.source_table for item in by_prefix] == ["victoriasecret_my_orders"]
    assert [item.source_table for item in by_country] == ["bbw_sg_orders"]


@pytest.mark.asyncio
async def test_discover_reports_existing_target_watermark(master, analytics_url, logger, run_sql) -> None:
    synced_at = datetime(2025, 5, 11, 3, 0)

    def _create_target(connection: sa.Connection) -> None:
        metadata = sa.MetaData()
        table = target_orders_table("orders_vs_my", metadata)
        metadata.create_all(connection)
        connection.execute(sa.insert(table).values(order_no="VS1", placed_time=PLACED, updated_at=synced_at))

    run_sql(analytics_url, _create_target)

    found = await discover(
        source_database_url=master, database_url=analytics_url, logger=logger, brand_filter="vs"
    )

    assert found[0].exists_in_target is True
    assert found[0].target_count == 1
    assert found[0].last_sync == synced_at

    targets = await discover_target_tables(database_url=analytics_url)
    assert [(ref.name, ref.brand_code, ref.country_code) for ref in targets] == [("orders_vs_my", "vs", "my")]
