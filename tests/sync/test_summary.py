from __future__ import annotations

from datetime import date, datetime, timedelta

import pytest
import sqlalchemy as sa

from sla_sync.catalog.tables import sla_daily_summary, target_orders_table
from sla_sync.errors import InvalidTatConfigError
from sla_sync.sla.tat_config import TatConfig, fallback_tat
from sla_sync.sync.summary import PartitionSummary, accumulate_orders, generate_summaries, regenerate_partition_summary

PLACED = datetime(2025, 5, 10, 0, 0)
NOW = PLACED + timedelta(hours=12)
TAT = fallback_tat("Victoria's Secret", "MY", "vs")


def _order(placed, processed=None, shipped=None, delivered=None) -> dict:
    return {"placed_time": placed, "processed_time": processed, "shipped_time": shipped, "delivered_time": delivered}


def test_each_order_counts_once_in_current_stage() -> None:
    partition = PartitionSummary(brand_name="Victoria's Secret", brand_code="vs", country_code="MY")
    rows = [
        _order(PLACED, processed=PLACED + timedelta(minutes=90)),
        _order(PLACED, processed=PLACED + timedelta(minutes=130)),
        _order(PLACED, processed=PLACED + timedelta(hours=1), shipped=PLACED + timedelta(days=1), delivered=PLACED + timedelta(days=3)),
        _order(PLACED),
        _order(None, processed=PLACED),
        _order(PLACED + timedelta(days=1), shipped=PLACED + timedelta(days=1, hours=1)),
    ]

    accumulate_orders(partition, rows, TAT, now=NOW)

    buckets = partition.buckets
    processed = buckets[(date(2025, 5, 10), "Processed")]
    assert (processed.orders_total, processed.orders_on_time, processed.orders_breached) == (2, 1, 1)
    assert processed.avg_delay_sec == 600
    assert buckets[(date(2025, 5, 10), "Delivered")].orders_on_time == 1

    # Twelve stored hours minus the eight hour ingestion lag: four hours pending.
    not_processed = buckets[(date(2025, 5, 10), "Not Processed")]
    assert not_processed.orders_breached == 1
    assert not_processed.avg_delay_sec == 2 * 3600

    assert buckets[(date(2025, 5, 11), "Shipped")].orders_on_time == 1
    assert partition.skipped_orders == 1
    assert partition.orders_counted == 5


def test_unrenderable_orders_are_skipped_and_logged(logger) -> None:
    partition = PartitionSummary(brand_name="Rituals", brand_code="rituals", country_code="MY")
    rows = [
        {**_order(datetime(9999, 12, 31, 23, 0)), "order_no": "RT-FAR"},
        {**_order(datetime(999, 1, 1)), "order_no": "RT-OLD"},
        {**_order(PLACED, processed=PLACED + timedelta(minutes=30)), "order_no": "RT1"},
    ]

    accumulate_orders(partition, rows, TAT, now=NOW, logger=logger)

    assert partition.skipped_orders == 2
    assert partition.orders_counted == 1
    assert logger.counts["warn"] == 2


def test_rows_are_ordered_by_date_then_stage() -> None:
    partition = PartitionSummary(brand_name="Rituals", brand_code="rituals", country_code="SG")
    accumulate_orders(
        partition,
        [_order(PLACED, delivered=PLACED + timedelta(days=1)), _order(PLACED)],
        TAT,
        now=NOW,
    )

    rows = partition.rows(refreshed_at=NOW)

    assert [row["stage"] for row in rows] == ["Not Processed", "Delivered"]
    assert all(row["brand_code"] == "rituals" for row in rows)


def _create_target(run_sql, url: str, name: str, orders: list[dict]) -> None:
    def _load(connection: sa.Connection) -> None:
        metadata = sa.MetaData()
        table = target_orders_table(name, metadata)
        metadata.create_all(connection)
        if orders:
            connection.execute(sa.insert(table), orders)

    run_sql(url, _load)


def _summary_rows(run_sql, url: str) -> list[dict]:
    captured: list[dict] = []
    run_sql(url, lambda conn: captured.extend(dict(row) for row in conn.execute(sa.select(sla_daily_summary)).mappings()))
    return captured


@pytest.mark.asyncio
async def test_regeneration_replaces_partition(analytics_url, logger, run_sql) -> None:
    _create_target(
        run_sql,
        analytics_url,
        "orders_vs_my",
        [{"order_no": "VS1", "placed_time": PLACED, "processed_time": PLACED + timedelta(minutes=30), "brand_name": "Victoria's Secret"}],
    )

    for _ in range(2):
        await regenerate_partition_summary(
            database_url=analytics_url,
            target_table="orders_vs_my",
            brand_name="Victoria's Secret",
            brand_code="vs",
            country_code="my",
            logger=logger,
            now=NOW,
        )

    rows = _summary_rows(run_sql, analytics_url)
    assert len(rows) == 1
    assert rows[0]["country_code"] == "MY"
    assert rows[0]["stage"] == "Processed"
    assert rows[0]["orders_on_time"] == 1


@pytest.mark.asyncio
async def test_empty_target_clears_partition(analytics_url, logger, run_sql) -> None:
    _create_target(run_sql, analytics_url, "orders_vs_my", [{"order_no": "VS1", "placed_time": PLACED}])
    await regenerate_partition_summary(
        database_url=analytics_url,
        target_table="orders_vs_my",
        brand_name="Victoria's Secret",
        brand_code="vs",
        country_code="MY",
        logger=logger,
        now=NOW,
    )
    run_sql(analytics_url, lambda conn: conn.execute(sa.delete(target_orders_table("orders_vs_my"))))

    partition = await regenerate_partition_summary(
        database_url=analytics_url,
        target_table="orders_vs_my",
        brand_name="Victoria's Secret",
        brand_code="vs",
        country_code="MY",
        logger=logger,
        now=NOW,
    )

    assert partition.orders_counted == 0
    assert _summary_rows(run_sql, analytics_url) == []


@pytest.mark.asyncio
async def test_unusable_tat_raises(analytics_url, logger, run_sql) -> None:
    from sla_sync.catalog.tables import tat_config

    _create_target(run_sql, analytics_url, "orders_vs_my", [])
    run_sql(
        analytics_url,
        lambda conn: conn.execute(
            sa.insert(tat_config).values(
                brand_name="Victoria's Secret",
                country_code="MY",
                brand_code="vs",
                processed_tat="0h",
                shipped_tat="2d",
                delivered_tat="7d",
            )
        ),
    )

    with pytest.raises(InvalidTatConfigError):
        await regenerate_partition_summary(
            database_url=analytics_url,
            target_table="orders_vs_my",
            brand_name="Victoria's Secret",
            brand_code="vs",
            country_code="MY",
            logger=logger,
        )


@pytest.mark.asyncio
async def test_generate_summaries_skips_existing_unless_forced(analytics_url, logger, run_sql) -> None:
    _create_target(
        run_sql,
        analytics_url,
        "orders_vs_my",
        [{"order_no": "VS1", "placed_time": PLACED, "brand_name": "Victoria's Secret"}],
    )
    _create_target(run_sql, analytics_url, "orders_bbw_sg", [{"order_no": "BB1", "placed_time": PLACED}])

    first = await generate_summaries(database_url=analytics_url, logger=logger, now=NOW)
    assert [(result.target_table, result.status) for result in first] == [
        ("orders_bbw_sg", "ok"),
        ("orders_vs_my", "ok"),
    ]
    assert first[0].brand_name == "Bath & Body Works"

    second = await generate_summaries(database_url=analytics_url, logger=logger, country_filter="my", now=NOW)
    assert [(result.target_table, result.status) for result in second] == [("orders_vs_my", "skipped")]

    forced = await generate_summaries(database_url=analytics_url, logger=logger, brand_filter="vs", force=True, now=NOW)
    assert [result.status for result in forced] == ["ok"]
    assert forced[0].orders_counted == 1
