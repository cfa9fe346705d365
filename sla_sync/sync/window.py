from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Mapping

DEFAULT_BATCH_SIZE = 1000
DEFAULT_OVERLAP_DAYS = 7
DEFAULT_CONCURRENCY = 1

STRATEGY_FULL = "full"
STRATEGY_INCREMENTAL = "incremental"
STRATEGIES = (STRATEGY_FULL, STRATEGY_INCREMENTAL)


@dataclass(frozen=True)
class SyncOptions:
    batch_size: int = DEFAULT_BATCH_SIZE
    max_records: int | None = None
    strategy: str = STRATEGY_FULL
    window_days: int | None = None
    overlap_days: int = DEFAULT_OVERLAP_DAYS
    concurrency: int = DEFAULT_CONCURRENCY
    stop_event: asyncio.Event | None = None

    @property
    def stop_requested(self) -> bool:
        return self.stop_event is not None and self.stop_event.is_set()


def resolve_sync_options(
    *,
    sync_config: Mapping[str, Any],
    batch_size: int | None = None,
    max_records: int | None = None,
    strategy: str | None = None,
    window_days: int | None = None,
    overlap_days: int | None = None,
    concurrency: int | None = None,
    stop_event: asyncio.Event | None = None,
) -> SyncOptions:
    """Merge explicit overrides over configured values and defaults."""

    resolved_batch = int(batch_size or sync_config.get("sync_batch_size") or DEFAULT_BATCH_SIZE)
    resolved_max = max_records or sync_config.get("sync_max_records")
    resolved_strategy = (strategy or sync_config.get("sync_strategy") or STRATEGY_FULL).lower()
    if resolved_strategy not in STRATEGIES:
        raise ValueError(f"Unknown sync strategy {resolved_strategy!r}; expected one of {STRATEGIES}")
    resolved_window = window_days or sync_config.get("sync_window_days")
    resolved_overlap = overlap_days if overlap_days is not None else sync_config.get("sync_overlap_days")
    if resolved_overlap is None:
        resolved_overlap = DEFAULT_OVERLAP_DAYS
    resolved_concurrency = int(concurrency or sync_config.get("sync_concurrency") or DEFAULT_CONCURRENCY)

    return SyncOptions(
        batch_size=max(1, resolved_batch),
        max_records=int(resolved_max) if resolved_max else None,
        strategy=resolved_strategy,
        window_days=int(resolved_window) if resolved_window else None,
        overlap_days=max(0, int(resolved_overlap)),
        concurrency=max(1, resolved_concurrency),
        stop_event=stop_event,
    )


def resolve_created_since(
    *,
    options: SyncOptions,
    watermark: datetime | None,
    now: datetime,
) -> datetime | None:
    """Earliest order creation time a job should read, or None for everything.

    The window cap keeps orders created within ``window_days`` of ``now``.
    Incremental runs also start ``overlap_days`` before the target watermark
    so orders still moving through fulfilment are refreshed. The later of
    the two bounds wins.
    """

    candidates: list[datetime] = []
    if options.window_days:
        candidates.append(now - timedelta(days=options.window_days))
    if options.strategy == STRATEGY_INCREMENTAL and watermark is not None:
        candidates.append(watermark - timedelta(days=options.overlap_days))
    if not candidates:
        return None
    return max(candidates)
