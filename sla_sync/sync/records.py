"""Source query plans and source-row to OrderRecord mapping."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Mapping

import sqlalchemy as sa
from dateutil import parser

from sla_sync.catalog.naming import SourceTable
from sla_sync.catalog.tables import (
    PAYMENT_COLUMNS,
    SHIPMENT_COLUMNS,
    source_orders_table,
    source_payments_table,
    source_shipments_table,
)
from sla_sync.sla.durations import format_duration
from sla_sync.sla.local_time import DEFAULT_TIME_SETTINGS, LocalTimeError, TimeSettings, elapsed_between, parse_local, to_local


@dataclass(frozen=True)
class JobQueryPlan:
    """Fixed select for one job.

    Auxiliary tables are probed once; present ones are LEFT JOINed on
    order_no and absent ones contribute NULL columns.
    """

    source: SourceTable
    has_payments: bool
    has_shipments: bool
    created_since: datetime | None = None

    def _base_select(self) -> sa.Select:
        orders = source_orders_table(self.source.name).alias("o")
        from_clause: sa.FromClause = orders
        columns: list[Any] = [
            orders.c.order_no,
            orders.c.order_status,
            orders.c.shipping_status,
            orders.c.confirmation_status,
            orders.c.order_created_date_time.label("placed_time"),
            orders.c.processed_time,
            orders.c.shipped_time,
            orders.c.delivered_time,
            orders.c.currency,
            orders.c.invoice_no,
        ]

        if self.has_payments:
            payments = source_payments_table(self.source.payments_table).alias("p")
            from_clause = from_clause.outerjoin(payments, payments.c.order_no == orders.c.order_no)
            columns.extend(payments.c[name] for name in PAYMENT_COLUMNS)
        else:
            columns.extend(sa.null().label(name) for name in PAYMENT_COLUMNS)

        if self.has_shipments:
            shipments = source_shipments_table(self.source.shipments_table).alias("s")
            from_clause = from_clause.outerjoin(shipments, shipments.c.order_no == orders.c.order_no)
            columns.extend(shipments.c[name] for name in SHIPMENT_COLUMNS)
        else:
            columns.extend(sa.null().label(name) for name in SHIPMENT_COLUMNS)

        stmt = sa.select(*columns).select_from(from_clause)
        if self.created_since is not None:
            stmt = stmt.where(orders.c.order_created_date_time >= self.created_since)
        return stmt.order_by(orders.c.order_created_date_time.desc(), orders.c.order_no)

    def count_statement(self) -> sa.Select:
        return sa.select(sa.func.count()).select_from(self._base_select().order_by(None).subquery())

    def batch_statement(self, *, offset: int, limit: int) -> sa.Select:
        return self._base_select().limit(limit).offset(offset)


def coerce_datetime(value: Any) -> datetime | None:
    """Normalise a source timestamp to a naive datetime."""

    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        raw = str(value).strip()
        if not raw or raw.startswith("0000-00-00"):
            return None
        parsed = parser.parse(raw)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def coerce_amount(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value).replace(",", "").strip()).quantize(Decimal("0.01"))


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def ensure_renderable(
    value: datetime | None,
    field: str,
    country_code: str,
    settings: TimeSettings = DEFAULT_TIME_SETTINGS,
) -> datetime | None:
    """Reject timestamps that cannot round-trip through country local time."""

    if value is None:
        return None
    try:
        parse_local(to_local(value, country_code, settings), settings)
    except (LocalTimeError, OverflowError) as exc:
        raise ValueError(f"{field} {value!r} cannot be rendered as local time") from exc
    return value


def stage_tat(
    start: datetime | None,
    end: datetime | None,
    country_code: str,
    settings: TimeSettings = DEFAULT_TIME_SETTINGS,
) -> str | None:
    """Duration between two consecutive milestones, or None until both exist."""

    if start is None or end is None:
        return None
    minutes, _ = elapsed_between(start, end, country_code, settings)
    return format_duration(minutes)


def map_source_row(
    row: Mapping[str, Any],
    *,
    source: SourceTable,
    synced_at: datetime,
    settings: TimeSettings = DEFAULT_TIME_SETTINGS,
) -> Dict[str, Any]:
    order_no = _text(row.get("order_no"))
    if not order_no:
        raise ValueError("Source row is missing order_no")

    country_code = source.country_code.upper()
    placed, processed, shipped, delivered = (
        ensure_renderable(coerce_datetime(row.get(name)), name, country_code, settings)
        for name in ("placed_time", "processed_time", "shipped_time", "delivered_time")
    )

    return {
        "order_no": order_no,
        "order_status": _text(row.get("order_status")),
        "shipping_status": _text(row.get("shipping_status")),
        "confirmation_status": _text(row.get("confirmation_status")),
        "placed_time": placed,
        "processed_time": processed,
        "shipped_time": shipped,
        "delivered_time": delivered,
        "processed_tat": stage_tat(placed, processed, country_code, settings),
        "shipped_tat": stage_tat(processed, shipped, country_code, settings),
        "delivered_tat": stage_tat(shipped, delivered, country_code, settings),
        "currency": _text(row.get("currency")),
        "invoice_no": _text(row.get("invoice_no")),
        "brand_name": source.brand_name,
        "country_code": country_code,
        "card_type": _text(row.get("card_type")),
        "amount": coerce_amount(row.get("amount")),
        "transactionid": _text(row.get("transactionid")),
        "shipmentid": _text(row.get("shipmentid")),
        "shipping_method": _text(row.get("shipping_method")),
        "carrier": _text(row.get("carrier")),
        "tracking_url": _text(row.get("tracking_url")),
        "updated_at": synced_at,
    }
