"""TAT configuration lookups keyed by (brand_name, country_code)."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, List, Mapping, Set, Tuple

import sqlalchemy as sa
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from sla_sync.catalog.tables import tat_config
from sla_sync.common.db import dialect_name, session_scope
from sla_sync.common.json_logger import JsonLogger, log_event
from sla_sync.common.upsert import make_upsert
from sla_sync.errors import InvalidTatConfigError
from sla_sync.sla.durations import parse_duration

FALLBACK_PROCESSED_TAT = "2h"
FALLBACK_SHIPPED_TAT = "2d"
FALLBACK_DELIVERED_TAT = "7d"
DEFAULT_RISK_PCT = 80
DEFAULT_URGENT_PCT = 100
DEFAULT_CRITICAL_PCT = 150


@dataclass(frozen=True)
class TatConfig:
    brand_name: str
    country_code: str
    processed_tat: str
    shipped_tat: str
    delivered_tat: str
    risk_pct: int = DEFAULT_RISK_PCT
    urgent_pct: int = DEFAULT_URGENT_PCT
    critical_pct: int = DEFAULT_CRITICAL_PCT
    brand_code: str | None = None
    is_fallback: bool = False

    @property
    def processed_minutes(self) -> int:
        return parse_duration(self.processed_tat)

    @property
    def shipped_minutes(self) -> int:
        return parse_duration(self.shipped_tat)

    @property
    def delivered_minutes(self) -> int:
        return parse_duration(self.delivered_tat)

    def ensure_usable(self) -> None:
        """Raise when any stage SLA is unconfigured (parses to 0 minutes)."""

        invalid = [
            name
            for name, minutes in (
                ("processed_tat", self.processed_minutes),
                ("shipped_tat", self.shipped_minutes),
                ("delivered_tat", self.delivered_minutes),
            )
            if minutes <= 0
        ]
        if invalid:
            raise InvalidTatConfigError(
                f"Invalid TAT values for {self.brand_name}/{self.country_code}: {', '.join(invalid)}"
            )

    def as_dict(self) -> dict[str, Any]:
        return {
            "brand_name": self.brand_name,
            "brand_code": self.brand_code,
            "country_code": self.country_code,
            "processed_tat": self.processed_tat,
            "shipped_tat": self.shipped_tat,
            "delivered_tat": self.delivered_tat,
            "risk_pct": self.risk_pct,
            "urgent_pct": self.urgent_pct,
            "critical_pct": self.critical_pct,
            "is_fallback": self.is_fallback,
        }


def fallback_tat(brand_name: str, country_code: str, brand_code: str | None = None) -> TatConfig:
    return TatConfig(
        brand_name=brand_name,
        country_code=country_code.upper(),
        processed_tat=FALLBACK_PROCESSED_TAT,
        shipped_tat=FALLBACK_SHIPPED_TAT,
        delivered_tat=FALLBACK_DELIVERED_TAT,
        brand_code=brand_code,
        is_fallback=True,
    )


class TatConfigInput(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")

    brand_name: str = Field(min_length=1, max_length=50)
    brand_code: str = Field(min_length=1, max_length=10)
    country_code: str = Field(min_length=2, max_length=3)
    processed_tat: str
    shipped_tat: str
    delivered_tat: str
    risk_pct: int = Field(default=DEFAULT_RISK_PCT, ge=1, le=100)
    urgent_pct: int = Field(default=DEFAULT_URGENT_PCT, ge=50, le=200)
    critical_pct: int = Field(default=DEFAULT_CRITICAL_PCT, ge=50, le=300)

    @field_validator("processed_tat", "shipped_tat", "delivered_tat")
    @classmethod
    def _positive_duration(cls, value: str) -> str:
        if parse_duration(value) <= 0:
            raise ValueError(f"duration {value!r} must look like '2h', '1d 4h' or '30m'")
        return value

    @field_validator("country_code")
    @classmethod
    def _alpha_country(cls, value: str) -> str:
        if not value.isalpha():
            raise ValueError("country_code must contain letters only")
        return value.upper()

    @field_validator("brand_code")
    @classmethod
    def _lower_code(cls, value: str) -> str:
        return value.lower()


def _from_row(row: Mapping[str, Any]) -> TatConfig:
    return TatConfig(
        brand_name=row["brand_name"],
        country_code=str(row["country_code"]).upper(),
        processed_tat=str(row["processed_tat"]),
        shipped_tat=str(row["shipped_tat"]),
        delivered_tat=str(row["delivered_tat"]),
        risk_pct=int(row["risk_pct"] if row["risk_pct"] is not None else DEFAULT_RISK_PCT),
        urgent_pct=int(row["urgent_pct"] if row["urgent_pct"] is not None else DEFAULT_URGENT_PCT),
        critical_pct=int(row["critical_pct"] if row["critical_pct"] is not None else DEFAULT_CRITICAL_PCT),
        brand_code=row.get("brand_code"),
    )


async def find_tat_config(database_url: str, brand_name: str, country_code: str) -> TatConfig | None:
    stmt = (
        sa.select(tat_config)
        .where(tat_config.c.brand_name == brand_name)
        .where(sa.func.upper(tat_config.c.country_code) == country_code.upper())
    )
    async with session_scope(database_url) as session:
        row = (await session.execute(stmt)).mappings().first()
    return _from_row(row) if row else None


async def get_tat_config(
    database_url: str,
    brand_name: str,
    country_code: str,
    *,
    logger: JsonLogger | None = None,
    brand_code: str | None = None,
) -> TatConfig:
    """Return the configured TAT or the fallback defaults (logged as a warning)."""

    found = await find_tat_config(database_url, brand_name, country_code)
    if found is not None:
        return found
    if logger is not None:
        log_event(
            logger=logger,
            phase="tat_config",
            status="warn",
            message="No TAT configuration found; using fallback defaults",
            brand=brand_name,
            country=country_code.upper(),
            fallback={
                "processed_tat": FALLBACK_PROCESSED_TAT,
                "shipped_tat": FALLBACK_SHIPPED_TAT,
                "delivered_tat": FALLBACK_DELIVERED_TAT,
                "risk_pct": DEFAULT_RISK_PCT,
            },
        )
    return fallback_tat(brand_name, country_code, brand_code)


async def list_tat_configs(database_url: str) -> List[TatConfig]:
    stmt = sa.select(tat_config).order_by(tat_config.c.brand_name, tat_config.c.country_code)
    async with session_scope(database_url) as session:
        rows = (await session.execute(stmt)).mappings().all()
    return [_from_row(row) for row in rows]


async def configured_partitions(database_url: str) -> Set[Tuple[str, str]]:
    stmt = sa.select(tat_config.c.brand_name, tat_config.c.country_code)
    async with session_scope(database_url) as session:
        rows = (await session.execute(stmt)).all()
    return {(brand_name, str(country_code).upper()) for brand_name, country_code in rows}


async def upsert_tat_config(database_url: str, payload: Mapping[str, Any] | TatConfigInput) -> TatConfig:
    try:
        validated = payload if isinstance(payload, TatConfigInput) else TatConfigInput.model_validate(payload)
    except ValidationError as exc:
        raise InvalidTatConfigError(str(exc)) from exc

    values = {**validated.model_dump(), "updated_at": datetime.now(timezone.utc)}
    stmt = make_upsert(tat_config, values, dialect=dialect_name(database_url))
    async with session_scope(database_url) as session:
        await session.execute(stmt)
        await session.commit()
    return _from_row(values)
