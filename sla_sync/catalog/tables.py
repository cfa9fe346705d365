from __future__ import annotations

import sqlalchemy as sa

from sla_sync.catalog.naming import (
    AUXILIARY_TABLE_RE,
    SOURCE_TABLE_RE,
    TARGET_TABLE_RE,
    ensure_identifier,
)

SUMMARY_STAGES = ("Not Processed", "Processed", "Shipped", "Delivered")

SOURCE_ORDER_COLUMNS = (
    "order_no",
    "order_status",
    "shipping_status",
    "confirmation_status",
    "order_created_date_time",
    "processed_time",
    "shipped_time",
    "delivered_time",
    "currency",
    "invoice_no",
)
PAYMENT_COLUMNS = ("card_type", "amount", "transactionid")
SHIPMENT_COLUMNS = ("shipmentid", "shipping_method", "carrier", "tracking_url")

ORDER_RECORD_COLUMNS = (
    "order_no",
    "order_status",
    "shipping_status",
    "confirmation_status",
    "placed_time",
    "processed_time",
    "shipped_time",
    "delivered_time",
    "processed_tat",
    "shipped_tat",
    "delivered_tat",
    "currency",
    "invoice_no",
    "brand_name",
    "country_code",
    *PAYMENT_COLUMNS,
    *SHIPMENT_COLUMNS,
    "updated_at",
)


def _tat_config_table(metadata: sa.MetaData) -> sa.Table:
    return sa.Table(
        "tat_config",
        metadata,
        sa.Column("brand_name", sa.String(length=50), primary_key=True),
        sa.Column("country_code", sa.String(length=3), primary_key=True),
        sa.Column("brand_code", sa.String(length=10), nullable=False),
        sa.Column("processed_tat", sa.String(length=20), nullable=False),
        sa.Column("shipped_tat", sa.String(length=20), nullable=False),
        sa.Column("delivered_tat", sa.String(length=20), nullable=False),
        sa.Column("risk_pct", sa.Integer(), nullable=False, server_default=sa.text("80")),
        sa.Column("urgent_pct", sa.Integer(), nullable=False, server_default=sa.text("100")),
        sa.Column("critical_pct", sa.Integer(), nullable=False, server_default=sa.text("150")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def _sla_daily_summary_table(metadata: sa.MetaData) -> sa.Table:
    return sa.Table(
        "sla_daily_summary",
        metadata,
        sa.Column("summary_date", sa.Date(), primary_key=True),
        sa.Column("brand_name", sa.String(length=50), primary_key=True),
        sa.Column("country_code", sa.String(length=3), primary_key=True),
        sa.Column("stage", sa.String(length=20), primary_key=True),
        sa.Column("brand_code", sa.String(length=10), nullable=False),
        sa.Column("orders_total", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("orders_on_time", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("orders_on_risk", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("orders_breached", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("avg_delay_sec", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("refreshed_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Index("ix_sla_daily_summary_summary_date", "summary_date"),
        sa.Index("ix_sla_daily_summary_brand_country", "brand_name", "country_code"),
    )


def _system_config_table(metadata: sa.MetaData) -> sa.Table:
    return sa.Table(
        "system_config",
        metadata,
        sa.Column("id", sa.BigInteger().with_variant(sa.Integer(), "sqlite"), primary_key=True, autoincrement=True),
        sa.Column("key", sa.Text(), nullable=False),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("key", name="uq_system_config_key"),
    )


metadata = sa.MetaData()
tat_config = _tat_config_table(metadata)
sla_daily_summary = _sla_daily_summary_table(metadata)
system_config = _system_config_table(metadata)


def target_orders_table(name: str, metadata: sa.MetaData | None = None) -> sa.Table:
    """Per brand/country order table in the analytics database."""

    ensure_identifier(name, TARGET_TABLE_RE)
    return sa.Table(
        name,
        metadata if metadata is not None else sa.MetaData(),
        sa.Column("order_no", sa.String(length=50), primary_key=True),
        sa.Column("order_status", sa.String(length=20)),
        sa.Column("shipping_status", sa.String(length=20)),
        sa.Column("confirmation_status", sa.String(length=20)),
        sa.Column("placed_time", sa.DateTime()),
        sa.Column("processed_time", sa.DateTime()),
        sa.Column("shipped_time", sa.DateTime()),
        sa.Column("delivered_time", sa.DateTime()),
        sa.Column("processed_tat", sa.String(length=50)),
        sa.Column("shipped_tat", sa.String(length=50)),
        sa.Column("delivered_tat", sa.String(length=50)),
        sa.Column("currency", sa.String(length=10)),
        sa.Column("invoice_no", sa.String(length=50)),
        sa.Column("brand_name", sa.String(length=100)),
        sa.Column("country_code", sa.String(length=10)),
        sa.Column("card_type", sa.String(length=50)),
        sa.Column("amount", sa.Numeric(10, 2)),
        sa.Column("transactionid", sa.String(length=50)),
        sa.Column("shipmentid", sa.String(length=50)),
        sa.Column("shipping_method", sa.String(length=100)),
        sa.Column("carrier", sa.String(length=100)),
        sa.Column("tracking_url", sa.Text()),
        sa.Column("updated_at", sa.DateTime()),
        sa.Index(f"ix_{name}_placed_time", "placed_time"),
        sa.Index(f"ix_{name}_brand_country", "brand_name", "country_code"),
        sa.Index(f"ix_{name}_processed_time", "processed_time"),
        sa.Index(f"ix_{name}_shipped_time", "shipped_time"),
        sa.Index(f"ix_{name}_delivered_time", "delivered_time"),
    )


_SOURCE_COLUMN_TYPES = {
    "order_created_date_time": sa.DateTime(),
    "processed_time": sa.DateTime(),
    "shipped_time": sa.DateTime(),
    "delivered_time": sa.DateTime(),
    "amount": sa.Numeric(10, 2),
}


def _source_column(name: str) -> sa.ColumnClause:
    return sa.column(name, _SOURCE_COLUMN_TYPES.get(name))


def source_orders_table(name: str) -> sa.TableClause:
    ensure_identifier(name, SOURCE_TABLE_RE)
    return sa.table(name, *(_source_column(column) for column in SOURCE_ORDER_COLUMNS))


def source_payments_table(name: str) -> sa.TableClause:
    ensure_identifier(name, AUXILIARY_TABLE_RE)
    return sa.table(name, sa.column("order_no"), *(_source_column(column) for column in PAYMENT_COLUMNS))


def source_shipments_table(name: str) -> sa.TableClause:
    ensure_identifier(name, AUXILIARY_TABLE_RE)
    return sa.table(name, sa.column("order_no"), *(_source_column(column) for column in SHIPMENT_COLUMNS))
