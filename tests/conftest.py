import io
import sys
from pathlib import Path
from typing import Callable, Iterable

import pytest
import pytest_asyncio
import sqlalchemy as sa

ROOT = Path(__file__).resolve().parents[1]
PROJECT_PARENT = ROOT.parent

for path in (ROOT, PROJECT_PARENT):
    path_str = str(path)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)

from sla_sync.catalog.tables import metadata as analytics_metadata
from sla_sync.common.db import dispose_engines
from sla_sync.common.json_logger import JsonLogger
from sla_sync.common.locks import reset_locks


def sync_url(async_url: str) -> str:
    return async_url.replace("sqlite+aiosqlite", "sqlite")


@pytest.fixture(autouse=True)
def _fresh_locks():
    reset_locks()
    yield
    reset_locks()


@pytest_asyncio.fixture(autouse=True)
async def _dispose_cached_engines():
    yield
    await dispose_engines()


@pytest.fixture
def logger() -> JsonLogger:
    return JsonLogger(run_id="test", stream=io.StringIO(), log_file_path=None)


@pytest.fixture
def source_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'master.sqlite'}"


@pytest.fixture
def analytics_url(tmp_path: Path) -> str:
    url = f"sqlite+aiosqlite:///{tmp_path / 'analytics.sqlite'}"
    engine = sa.create_engine(sync_url(url))
    analytics_metadata.create_all(engine)
    engine.dispose()
    return url


def _execute(url: str, fn: Callable[[sa.Connection], None]) -> None:
    engine = sa.create_engine(sync_url(url))
    try:
        with engine.begin() as connection:
            fn(connection)
    finally:
        engine.dispose()


@pytest.fixture
def run_sql() -> Callable[[str, Callable[[sa.Connection], None]], None]:
    """Run a callback against a database on a throwaway sync engine."""

    return _execute


@pytest.fixture
def make_source_tables():
    """Create ``<prefix>_<cc>_orders`` (plus optional payments/shipments) and load rows."""

    def _make(
        url: str,
        prefix: str,
        country: str,
        orders: Iterable[dict],
        *,
        payments: Iterable[dict] | None = None,
        shipments: Iterable[dict] | None = None,
    ) -> None:
        metadata = sa.MetaData()
        orders_table = sa.Table(
            f"{prefix}_{country}_orders",
            metadata,
            sa.Column("order_no", sa.String(50)),
            sa.Column("order_status", sa.String(20)),
            sa.Column("shipping_status", sa.String(20)),
            sa.Column("confirmation_status", sa.String(20)),
            sa.Column("order_created_date_time", sa.DateTime()),
            sa.Column("processed_time", sa.DateTime()),
            sa.Column("shipped_time", sa.DateTime()),
            sa.Column("delivered_time", sa.DateTime()),
            sa.Column("currency", sa.String(10)),
            sa.Column("invoice_no", sa.String(50)),
        )
        payments_table = None
        if payments is not None:
            payments_table = sa.Table(
                f"{prefix}_{country}_payments",
                metadata,
                sa.Column("order_no", sa.String(50)),
                sa.Column("card_type", sa.String(50)),
                sa.Column("amount", sa.Numeric(10, 2)),
                sa.Column("transactionid", sa.String(50)),
            )
        shipments_table = None
        if shipments is not None:
            shipments_table = sa.Table(
                f"{prefix}_{country}_shipments",
                metadata,
                sa.Column("order_no", sa.String(50)),
                sa.Column("shipmentid", sa.String(50)),
                sa.Column("shipping_method", sa.String(100)),
                sa.Column("carrier", sa.String(100)),
                sa.Column("tracking_url", sa.Text()),
            )

        def _load(connection: sa.Connection) -> None:
            metadata.create_all(connection)
            order_rows = list(orders)
            if order_rows:
                connection.execute(sa.insert(orders_table), order_rows)
            for table, rows in ((payments_table, payments), (shipments_table, shipments)):
                rows = list(rows or [])
                if table is not None and rows:
                    connection.execute(sa.insert(table), rows)

        _execute(url, _load)

    return _make


def order_row(order_no: str, placed, *, processed=None, shipped=None, delivered=None, confirmed: bool = True) -> dict:
    return {
        "order_no": order_no,
        "order_status": "COMPLETE" if delivered else "NEW",
        "shipping_status": "DELIVERED" if delivered else None,
        "confirmation_status": "CONFIRMED" if confirmed else "PENDING",
        "order_created_date_time": placed,
        "processed_time": processed,
        "shipped_time": shipped,
        "delivered_time": delivered,
        "currency": "MYR",
        "invoice_no": f"INV-{order_no}",
    }


@pytest.fixture
def make_order():
    return order_row
