from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

import sqlalchemy as sa
from alembic import command
from alembic.config import Config as AlembicConfig
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from sla_sync.errors import DatabaseUnavailableError

_engine_cache: dict[str, AsyncEngine] = {}
_session_factory_cache: dict[str, async_sessionmaker[AsyncSession]] = {}


def _ensure_async_engine(database_url: str) -> AsyncEngine:
    if database_url not in _engine_cache:
        _engine_cache[database_url] = create_async_engine(database_url, future=True)
    return _engine_cache[database_url]


def _ensure_sessionmaker(database_url: str) -> async_sessionmaker[AsyncSession]:
    if database_url not in _session_factory_cache:
        engine = _ensure_async_engine(database_url)
        _session_factory_cache[database_url] = async_sessionmaker(engine, expire_on_commit=False)
    return _session_factory_cache[database_url]


def get_engine(database_url: str) -> AsyncEngine:
    return _ensure_async_engine(database_url)


@asynccontextmanager
async def session_scope(database_url: str) -> AsyncIterator[AsyncSession]:
    factory = _ensure_sessionmaker(database_url)
    async with factory() as session:
        yield session


@asynccontextmanager
async def connection_scope(database_url: str) -> AsyncIterator[AsyncConnection]:
    engine = _ensure_async_engine(database_url)
    async with engine.connect() as connection:
        yield connection


async def list_tables(database_url: str) -> list[str]:
    async with connection_scope(database_url) as connection:
        return await connection.run_sync(lambda conn: sa.inspect(conn).get_table_names())


async def table_exists(database_url: str, table_name: str) -> bool:
    async with connection_scope(database_url) as connection:
        return await connection.run_sync(lambda conn: sa.inspect(conn).has_table(table_name))


async def ping(database_url: str, *, label: str) -> None:
    """Fail fast when a database cannot be reached."""

    try:
        async with connection_scope(database_url) as connection:
            await connection.execute(sa.text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        raise DatabaseUnavailableError(label, str(exc)) from exc


async def dispose_engines() -> None:
    for engine in list(_engine_cache.values()):
        await engine.dispose()
    _engine_cache.clear()
    _session_factory_cache.clear()


def dialect_name(database_url: str) -> str:
    return sa.engine.make_url(database_url).get_backend_name()


def run_alembic_upgrade(revision: str, *, database_url: str, alembic_config: str) -> None:
    alembic_cfg = AlembicConfig(alembic_config)
    alembic_cfg.set_main_option("sqlalchemy.url", database_url.replace("%", "%%"))
    command.upgrade(alembic_cfg, revision)
