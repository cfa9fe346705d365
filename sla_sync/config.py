"""
CONFIG.PY - SINGLE SOURCE OF TRUTH (SSOT)

This module is the ONLY place allowed to:
- Read environment variables
- Query the system_config table

Env-only keys are required and must not be blank. Tunables live in the
system_config table of the analytics database; keys missing there fall back
to DB_DEFAULTS (the same values the seed migration writes).

Config is loaded ONCE per process through get_config() and cached.
Domain functions never call get_config() themselves; they receive the
settings objects built here (CatalogSettings, TimeSettings, sync options).
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import threading
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, Mapping, TypeVar
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import sqlalchemy as sa
from dotenv import load_dotenv
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from sla_sync.catalog.naming import BRAND_CODE_RE, DEFAULT_BRAND_ALIASES, BrandAlias, CatalogSettings
from sla_sync.catalog.tables import system_config
from sla_sync.errors import ConfigError
from sla_sync.sla.local_time import DEFAULT_COUNTRY_ZONES, CountryZone, TimeSettings

PROJECT_ROOT = Path(__file__).resolve().parents[1]

load_dotenv(PROJECT_ROOT / ".env")

logger = logging.getLogger(__name__)

ENV_ONLY_KEYS = [
    "RUN_ENV",
    "SOURCE_DATABASE_URL",
    "DATABASE_URL",
    "ALEMBIC_CONFIG",
]

OPTIONAL_ENV_KEYS = [
    "JSON_LOG_FILE",
]

DB_DEFAULTS: Dict[str, str] = {
    "SYNC_BATCH_SIZE": "1000",
    "SYNC_STRATEGY": "incremental",
    "SYNC_WINDOW_DAYS": "",
    "SYNC_MAX_RECORDS": "",
    "SYNC_OVERLAP_DAYS": "7",
    "SYNC_CONCURRENCY": "1",
    "CONFIRMED_ONLY_COUNTS": "true",
    "INGESTION_OFFSET_HOURS": "8",
    "BRAND_ALIASES": "",
    "COUNTRY_TIMEZONES": "",
}

SYNC_STRATEGIES = ("full", "incremental")

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off"}


def _fail(message: str) -> ConfigError:
    logger.error(message)
    return ConfigError(message)


def _require_env(key: str) -> str:
    value = os.getenv(key)
    if value is None:
        raise _fail(f"Missing required environment variable: {key}")
    stripped = value.strip()
    if not stripped:
        raise _fail(f"Environment variable {key} cannot be blank")
    return stripped


def load_env_values() -> Dict[str, str]:
    values = {key: _require_env(key) for key in ENV_ONLY_KEYS}
    for key in OPTIONAL_ENV_KEYS:
        values[key] = (os.getenv(key) or "").strip()
    return values


def _parse_bool(value: str, *, key: str) -> bool:
    normalized = value.strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    raise _fail(f"Config key {key} must be a boolean string; got {value!r}")


def _parse_int(value: str, *, key: str, minimum: int | None = None) -> int:
    try:
        parsed = int(value.strip())
    except (AttributeError, TypeError, ValueError):
        raise _fail(f"Config key {key} must be an integer; got {value!r}")
    if minimum is not None and parsed < minimum:
        raise _fail(f"Config key {key} must be >= {minimum}; got {parsed}")
    return parsed


def _parse_optional_int(value: str, *, key: str) -> int | None:
    if not value or not value.strip():
        return None
    return _parse_int(value, key=key, minimum=1)


def _parse_json_object(value: str, *, key: str) -> Dict[str, Any]:
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as exc:
        raise _fail(f"Config key {key} must be a JSON object: {exc}")
    if not isinstance(parsed, dict):
        raise _fail(f"Config key {key} must be a JSON object; got {type(parsed).__name__}")
    return parsed


def parse_brand_aliases(value: str, *, key: str = "BRAND_ALIASES") -> Mapping[str, BrandAlias]:
    if not value.strip():
        return DEFAULT_BRAND_ALIASES
    aliases: Dict[str, BrandAlias] = {}
    for prefix, entry in _parse_json_object(value, key=key).items():
        if not isinstance(entry, dict) or not entry.get("code") or not entry.get("name"):
            raise _fail(f"Config key {key} entry {prefix!r} needs 'code' and 'name'")
        code = str(entry["code"]).strip().lower()
        if not BRAND_CODE_RE.match(code):
            raise _fail(
                f"Config key {key} entry {prefix!r} has code {code!r}; codes must be lowercase letters and digits"
            )
        aliases[prefix.strip().lower()] = BrandAlias(code=code, name=str(entry["name"]))
    return MappingProxyType(aliases)


def parse_country_zones(value: str, *, key: str = "COUNTRY_TIMEZONES") -> Mapping[str, CountryZone]:
    if not value.strip():
        return DEFAULT_COUNTRY_ZONES
    zones: Dict[str, CountryZone] = {}
    for country, entry in _parse_json_object(value, key=key).items():
        if not isinstance(entry, dict) or "zone" not in entry or "offset_hours" not in entry:
            raise _fail(f"Config key {key} entry {country!r} needs 'zone' and 'offset_hours'")
        try:
            ZoneInfo(str(entry["zone"]))
        except (ZoneInfoNotFoundError, ValueError):
            raise _fail(f"Config key {key} entry {country!r} has unknown zone {entry['zone']!r}")
        offset = _parse_int(str(entry["offset_hours"]), key=f"{key}.{country}.offset_hours")
        zones[country.strip().upper()] = CountryZone(zone=str(entry["zone"]), offset_hours=offset)
    return MappingProxyType(zones)


T = TypeVar("T")


def _run_async_blocking(task_factory: Callable[[], Awaitable[T]]) -> T:
    result: dict[str, Any] = {}

    def _runner() -> None:
        try:
            result["value"] = asyncio.run(task_factory())
        except BaseException as exc:  # pragma: no cover - re-raised in caller
            result["error"] = exc

    thread = threading.Thread(target=_runner, name="config-db-loader", daemon=True)
    thread.start()
    thread.join()

    if "error" in result:
        raise result["error"]
    return result["value"]


def active_config_query() -> sa.Select:
    return sa.select(system_config.c.key, system_config.c.value).where(system_config.c.is_active.is_(True))


async def _fetch_system_config_async(database_url: str) -> Dict[str, str]:
    engine: AsyncEngine | None = None
    try:
        engine = create_async_engine(database_url, future=True)
        async with engine.connect() as connection:
            has_table = await connection.run_sync(lambda conn: sa.inspect(conn).has_table("system_config"))
            if not has_table:
                logger.warning("system_config table not found; using built-in defaults")
                return {}
            rows = await connection.execute(active_config_query())
            return {row.key: row.value for row in rows}
    except SQLAlchemyError as exc:
        message = "Unable to load configuration from system_config"
        logger.exception(message)
        raise ConfigError(message) from exc
    finally:
        if engine is not None:
            await engine.dispose()


def _load_system_config(database_url: str) -> Dict[str, str]:
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(_fetch_system_config_async(database_url))
    else:
        return _run_async_blocking(lambda: _fetch_system_config_async(database_url))


@dataclass(slots=True, frozen=True)
class Config:
    run_env: str
    source_database_url: str
    database_url: str
    alembic_config: str
    json_log_file: str

    sync_batch_size: int
    sync_strategy: str
    sync_window_days: int | None
    sync_max_records: int | None
    sync_overlap_days: int
    sync_concurrency: int
    confirmed_only_counts: bool
    ingestion_offset_hours: int
    brand_aliases: Mapping[str, BrandAlias]
    country_zones: Mapping[str, CountryZone]

    @property
    def catalog_settings(self) -> CatalogSettings:
        return CatalogSettings(brand_aliases=self.brand_aliases, confirmed_only_counts=self.confirmed_only_counts)

    @property
    def time_settings(self) -> TimeSettings:
        return TimeSettings(country_zones=self.country_zones, ingestion_offset_hours=self.ingestion_offset_hours)

    def sync_config(self) -> Dict[str, Any]:
        return {
            "sync_batch_size": self.sync_batch_size,
            "sync_max_records": self.sync_max_records,
            "sync_strategy": self.sync_strategy,
            "sync_window_days": self.sync_window_days,
            "sync_overlap_days": self.sync_overlap_days,
            "sync_concurrency": self.sync_concurrency,
        }

    @classmethod
    def from_values(cls, env_values: Mapping[str, str], db_values: Mapping[str, str]) -> Config:
        merged = {**DB_DEFAULTS, **{key: value for key, value in db_values.items() if value is not None}}

        strategy = merged["SYNC_STRATEGY"].strip().lower()
        if strategy not in SYNC_STRATEGIES:
            raise _fail(f"Config key SYNC_STRATEGY must be one of {SYNC_STRATEGIES}; got {strategy!r}")

        return cls(
            run_env=env_values["RUN_ENV"],
            source_database_url=env_values["SOURCE_DATABASE_URL"],
            database_url=env_values["DATABASE_URL"],
            alembic_config=env_values["ALEMBIC_CONFIG"],
            json_log_file=env_values.get("JSON_LOG_FILE", ""),
            sync_batch_size=_parse_int(merged["SYNC_BATCH_SIZE"], key="SYNC_BATCH_SIZE", minimum=1),
            sync_strategy=strategy,
            sync_window_days=_parse_optional_int(merged["SYNC_WINDOW_DAYS"], key="SYNC_WINDOW_DAYS"),
            sync_max_records=_parse_optional_int(merged["SYNC_MAX_RECORDS"], key="SYNC_MAX_RECORDS"),
            sync_overlap_days=_parse_int(merged["SYNC_OVERLAP_DAYS"], key="SYNC_OVERLAP_DAYS", minimum=0),
            sync_concurrency=_parse_int(merged["SYNC_CONCURRENCY"], key="SYNC_CONCURRENCY", minimum=1),
            confirmed_only_counts=_parse_bool(merged["CONFIRMED_ONLY_COUNTS"], key="CONFIRMED_ONLY_COUNTS"),
            ingestion_offset_hours=_parse_int(merged["INGESTION_OFFSET_HOURS"], key="INGESTION_OFFSET_HOURS"),
            brand_aliases=parse_brand_aliases(merged["BRAND_ALIASES"]),
            country_zones=parse_country_zones(merged["COUNTRY_TIMEZONES"]),
        )

    @classmethod
    def load_from_env_and_db(cls) -> Config:
        env_values = load_env_values()
        db_values = _load_system_config(env_values["DATABASE_URL"])
        return cls.from_values(env_values, db_values)


@lru_cache(maxsize=1)
def get_config() -> Config:
    return Config.load_from_env_and_db()
