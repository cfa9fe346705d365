"""In-process locks keyed by (brand_name, country_code) summary partition.

Sync jobs and orphan cleanup both write a partition's summary rows; holding
the partition lock keeps them from interleaving.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

_locks: dict[tuple[str, str], asyncio.Lock] = {}


def partition_key(brand_name: str, country_code: str) -> tuple[str, str]:
    return brand_name, country_code.upper()


def partition_lock(brand_name: str, country_code: str) -> asyncio.Lock:
    key = partition_key(brand_name, country_code)
    lock = _locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _locks[key] = lock
    return lock


@asynccontextmanager
async def hold_partition(brand_name: str, country_code: str) -> AsyncIterator[None]:
    async with partition_lock(brand_name, country_code):
        yield


def reset_locks() -> None:
    _locks.clear()
