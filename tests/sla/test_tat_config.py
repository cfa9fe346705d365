from __future__ import annotations

import pytest
import sqlalchemy as sa

from sla_sync.catalog.tables import tat_config
from sla_sync.errors import InvalidTatConfigError
from sla_sync.sla.tat_config import (
    TatConfigInput,
    configured_partitions,
    fallback_tat,
    get_tat_config,
    list_tat_configs,
    upsert_tat_config,
)

VALID = {
    "brand_name": "Victoria's Secret",
    "brand_code": "VS",
    "country_code": "my",
    "processed_tat": "2h",
    "shipped_tat": "2d",
    "delivered_tat": "7d",
}


def test_input_normalises_codes() -> None:
    parsed = TatConfigInput.model_validate(VALID)

    assert parsed.country_code == "MY"
    assert parsed.brand_code == "vs"
    assert (parsed.risk_pct, parsed.urgent_pct, parsed.critical_pct) == (80, 100, 150)


@pytest.mark.parametrize(
    "override",
    [
        {"processed_tat": "0m"},
        {"shipped_tat": "soon"},
        {"risk_pct": 0},
        {"risk_pct": 101},
        {"urgent_pct": 49},
        {"critical_pct": 301},
        {"country_code": "M1"},
        {"country_code": "MALAYSIA"},
    ],
)
def test_input_rejects_out_of_range_values(override) -> None:
    with pytest.raises(ValueError):
        TatConfigInput.model_validate({**VALID, **override})


def test_fallback_defaults() -> None:
    tat = fallback_tat("BrandX", "zz")

    assert tat.is_fallback is True
    assert tat.country_code == "ZZ"
    assert (tat.processed_tat, tat.shipped_tat, tat.delivered_tat) == ("2h", "2d", "7d")
    assert (tat.risk_pct, tat.urgent_pct, tat.critical_pct) == (80, 100, 150)


def test_ensure_usable_rejects_zero_minutes() -> None:
    tat = fallback_tat("BrandX", "ZZ")
    tat.ensure_usable()

    broken = type(tat)(brand_name="BrandX", country_code="ZZ", processed_tat="n/a", shipped_tat="2d", delivered_tat="7d")
    with pytest.raises(InvalidTatConfigError):
        broken.ensure_usable()


@pytest.mark.asyncio
async def test_upsert_then_lookup(analytics_url, logger) -> None:
    saved = await upsert_tat_config(analytics_url, VALID)
    assert saved.country_code == "MY"

    await upsert_tat_config(analytics_url, {**VALID, "processed_tat": "3h", "risk_pct": 75})

    found = await get_tat_config(analytics_url, "Victoria's Secret", "my", logger=logger)
    assert found.is_fallback is False
    assert found.processed_tat == "3h"
    assert found.risk_pct == 75
    assert len(await list_tat_configs(analytics_url)) == 1
    assert await configured_partitions(analytics_url) == {("Victoria's Secret", "MY")}
    assert logger.counts["warn"] == 0


@pytest.mark.asyncio
async def test_missing_config_falls_back_with_warning(analytics_url, logger) -> None:
    found = await get_tat_config(analytics_url, "BrandX", "ZZ", logger=logger, brand_code="bx")

    assert found.is_fallback is True
    assert found.brand_code == "bx"
    assert logger.counts["warn"] == 1


@pytest.mark.asyncio
async def test_upsert_rejects_invalid_payload(analytics_url) -> None:
    with pytest.raises(InvalidTatConfigError):
        await upsert_tat_config(analytics_url, {**VALID, "delivered_tat": ""})


@pytest.mark.asyncio
async def test_stored_rows_keep_server_defaults(analytics_url, run_sql) -> None:
    run_sql(
        analytics_url,
        lambda conn: conn.execute(
            sa.insert(tat_config).values(
                brand_name="Rituals",
                country_code="SG",
                brand_code="rituals",
                processed_tat="4h",
                shipped_tat="1d",
                delivered_tat="5d",
            )
        ),
    )

    found = await get_tat_config(analytics_url, "Rituals", "SG")

    assert (found.risk_pct, found.urgent_pct, found.critical_pct) == (80, 100, 150)
