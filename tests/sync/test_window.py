from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

import pytest

from sla_sync.sync.window import (
    STRATEGY_FULL,
    STRATEGY_INCREMENTAL,
    SyncOptions,
    resolve_created_since,
    resolve_sync_options,
)

NOW = datetime(2025, 6, 1, 12, 0)


def test_overrides_win_over_config() -> None:
    config = {"sync_batch_size": 500, "sync_strategy": "incremental", "sync_overlap_days": 3, "sync_concurrency": 2}

    options = resolve_sync_options(sync_config=config, batch_size=50, strategy="full")

    assert options.batch_size == 50
    assert options.strategy == STRATEGY_FULL
    assert options.overlap_days == 3
    assert options.concurrency == 2
    assert options.max_records is None


def test_defaults_when_config_is_empty() -> None:
    options = resolve_sync_options(sync_config={})

    assert options.batch_size == 1000
    assert options.overlap_days == 7
    assert options.concurrency == 1
    assert options.stop_requested is False


def test_unknown_strategy_is_rejected() -> None:
    with pytest.raises(ValueError):
        resolve_sync_options(sync_config={"sync_strategy": "nightly"})


def test_stop_requested_follows_event() -> None:
    event = asyncio.Event()
    options = SyncOptions(stop_event=event)

    assert options.stop_requested is False
    event.set()
    assert options.stop_requested is True


def test_full_sync_reads_everything() -> None:
    assert resolve_created_since(options=SyncOptions(), watermark=NOW, now=NOW) is None


def test_incremental_subtracts_overlap_from_watermark() -> None:
    options = SyncOptions(strategy=STRATEGY_INCREMENTAL, overlap_days=7)
    watermark = datetime(2025, 5, 30, 0, 0)

    assert resolve_created_since(options=options, watermark=watermark, now=NOW) == watermark - timedelta(days=7)
    assert resolve_created_since(options=options, watermark=None, now=NOW) is None


def test_window_and_watermark_take_the_later_bound() -> None:
    options = SyncOptions(strategy=STRATEGY_INCREMENTAL, overlap_days=7, window_days=3)
    watermark = datetime(2025, 5, 30, 0, 0)

    assert resolve_created_since(options=options, watermark=watermark, now=NOW) == NOW - timedelta(days=3)
