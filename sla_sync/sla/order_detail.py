"""Single-order lookup across target tables with its SLA analysis."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Mapping

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError

from sla_sync.catalog.discovery import discover_target_tables
from sla_sync.catalog.naming import DEFAULT_BRAND_ALIASES, BrandAlias, brand_name_for_code
from sla_sync.catalog.tables import target_orders_table
from sla_sync.common.db import session_scope
from sla_sync.common.json_logger import JsonLogger, log_event
from sla_sync.sla.classifier import OrderAnalysis, OrderMilestones, analyze_order
from sla_sync.sla.local_time import DEFAULT_TIME_SETTINGS, TimeSettings, to_local
from sla_sync.sla.tat_config import TatConfig, get_tat_config

_TIME_FIELDS = ("placed_time", "processed_time", "shipped_time", "delivered_time")


def _iso(value: datetime | None) -> str | None:
    return value.isoformat(sep=" ") if value is not None else None


@dataclass(frozen=True)
class OrderDetail:
    table: str
    order: Mapping[str, Any]
    tat: TatConfig
    analysis: OrderAnalysis
    local_times: Mapping[str, str | None]

    def as_dict(self) -> Dict[str, Any]:
        row = self.order
        amount = row.get("amount")
        payload: Dict[str, Any] = {
            "table": self.table,
            "order_no": row.get("order_no"),
            "order_status": row.get("order_status"),
            "shipping_status": row.get("shipping_status"),
            "confirmation_status": row.get("confirmation_status"),
            "brand_name": row.get("brand_name"),
            "country_code": row.get("country_code"),
            "currency": row.get("currency"),
            "invoice_no": row.get("invoice_no"),
            "processed_tat": row.get("processed_tat"),
            "shipped_tat": row.get("shipped_tat"),
            "delivered_tat": row.get("delivered_tat"),
            "payment": {
                "card_type": row.get("card_type"),
                "amount": str(amount) if isinstance(amount, Decimal) else amount,
                "transaction_id": row.get("transactionid"),
            },
            "shipping": {
                "shipment_id": row.get("shipmentid"),
                "shipping_method": row.get("shipping_method"),
                "carrier": row.get("carrier"),
                "tracking_url": row.get("tracking_url"),
            },
            "updated_at": _iso(row.get("updated_at")),
            "tat_config": self.tat.as_dict(),
        }
        for name in _TIME_FIELDS:
            payload[name] = _iso(row.get(name))
            payload[f"{name}_local"] = self.local_times.get(name)
        payload.update(self.analysis.as_dict())
        return payload


async def find_order(
    order_no: str,
    *,
    database_url: str,
    logger: JsonLogger,
    brand_filter: str | None = None,
    country_filter: str | None = None,
    settings: TimeSettings = DEFAULT_TIME_SETTINGS,
    aliases: Mapping[str, BrandAlias] = DEFAULT_BRAND_ALIASES,
    now: datetime | None = None,
) -> OrderDetail | None:
    """Search target tables in name order and analyse the first match.

    Tables that cannot be queried are logged and skipped. Returns None when no
    table holds the order.
    """

    refs = await discover_target_tables(
        database_url=database_url, brand_filter=brand_filter, country_filter=country_filter
    )
    for ref in refs:
        table = target_orders_table(ref.name)
        try:
            async with session_scope(database_url) as session:
                row = (
                    (await session.execute(sa.select(table).where(table.c.order_no == order_no).limit(1)))
                    .mappings()
                    .first()
                )
        except SQLAlchemyError as exc:
            log_event(
                logger=logger,
                phase="order_lookup",
                status="warn",
                message="Could not search order table",
                table=ref.name,
                error=str(exc),
            )
            continue
        if row is None:
            continue

        order = dict(row)
        country = str(order.get("country_code") or ref.country_code).upper()
        brand_name = order.get("brand_name") or brand_name_for_code(ref.brand_code, aliases)
        tat = await get_tat_config(database_url, brand_name, country, logger=logger, brand_code=ref.brand_code)
        analysis = analyze_order(
            OrderMilestones.from_row(order), tat, country_code=country, settings=settings, now=now
        )
        return OrderDetail(
            table=ref.name,
            order=order,
            tat=tat,
            analysis=analysis,
            local_times={name: to_local(order.get(name), country, settings) for name in _TIME_FIELDS},
        )

    log_event(logger=logger, phase="order_lookup", status="warn", message="Order not found", order_no=order_no)
    return None
