"""Create tat_config, sla_daily_summary and system_config"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "0001_create_sla_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.current_timestamp()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.current_timestamp()),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not inspector.has_table("tat_config"):
        op.create_table(
            "tat_config",
            sa.Column("brand_name", sa.String(length=50), nullable=False),
            sa.Column("country_code", sa.String(length=3), nullable=False),
            sa.Column("brand_code", sa.String(length=10), nullable=False),
            sa.Column("processed_tat", sa.String(length=20), nullable=False),
            sa.Column("shipped_tat", sa.String(length=20), nullable=False),
            sa.Column("delivered_tat", sa.String(length=20), nullable=False),
            sa.Column("risk_pct", sa.Integer(), nullable=False, server_default=sa.text("80")),
            sa.Column("urgent_pct", sa.Integer(), nullable=False, server_default=sa.text("100")),
            sa.Column("critical_pct", sa.Integer(), nullable=False, server_default=sa.text("150")),
            *_timestamps(),
            sa.PrimaryKeyConstraint("brand_name", "country_code", name="pk_tat_config"),
        )

    if not inspector.has_table("sla_daily_summary"):
        op.create_table(
            "sla_daily_summary",
            sa.Column("summary_date", sa.Date(), nullable=False),
            sa.Column("brand_name", sa.String(length=50), nullable=False),
            sa.Column("country_code", sa.String(length=3), nullable=False),
            sa.Column("stage", sa.String(length=20), nullable=False),
            sa.Column("brand_code", sa.String(length=10), nullable=False),
            sa.Column("orders_total", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("orders_on_time", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("orders_on_risk", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("orders_breached", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("avg_delay_sec", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("refreshed_at", sa.DateTime(timezone=True), server_default=sa.func.current_timestamp()),
            sa.PrimaryKeyConstraint(
                "summary_date", "brand_name", "country_code", "stage", name="pk_sla_daily_summary"
            ),
        )
        op.create_index("ix_sla_daily_summary_summary_date", "sla_daily_summary", ["summary_date"])
        op.create_index(
            "ix_sla_daily_summary_brand_country", "sla_daily_summary", ["brand_name", "country_code"]
        )

    if not inspector.has_table("system_config"):
        op.create_table(
            "system_config",
            sa.Column(
                "id", sa.BigInteger().with_variant(sa.Integer(), "sqlite"), primary_key=True, autoincrement=True
            ),
            sa.Column("key", sa.Text(), nullable=False),
            sa.Column("value", sa.Text(), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            *_timestamps(),
            sa.UniqueConstraint("key", name="uq_system_config_key"),
        )


def downgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    if inspector.has_table("system_config"):
        op.drop_table("system_config")
    if inspector.has_table("sla_daily_summary"):
        op.drop_index("ix_sla_daily_summary_brand_country", table_name="sla_daily_summary")
        op.drop_index("ix_sla_daily_summary_summary_date", table_name="sla_daily_summary")
        op.drop_table("sla_daily_summary")
    if inspector.has_table("tat_config"):
        op.drop_table("tat_config")
