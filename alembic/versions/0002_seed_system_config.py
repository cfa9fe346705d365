"""Seed system_config with sync tunables"""

from __future__ import annotations

import json

from alembic import op
import sqlalchemy as sa


revision = "0002_seed_system_config"
down_revision = "0001_create_sla_schema"
branch_labels = None
depends_on = None


BRAND_ALIASES = {
    "victoriasecret": {"code": "vs", "name": "Victoria's Secret"},
    "bbw": {"code": "bbw", "name": "Bath & Body Works"},
    "rituals": {"code": "rituals", "name": "Rituals"},
}

COUNTRY_TIMEZONES = {
    "MY": {"zone": "Asia/Kuala_Lumpur", "offset_hours": 8},
    "SG": {"zone": "Asia/Singapore", "offset_hours": 8},
    "TH": {"zone": "Asia/Bangkok", "offset_hours": 7},
    "ID": {"zone": "Asia/Jakarta", "offset_hours": 7},
    "PH": {"zone": "Asia/Manila", "offset_hours": 8},
    "HK": {"zone": "Asia/Hong_Kong", "offset_hours": 8},
    "AU": {"zone": "Australia/Sydney", "offset_hours": 10},
    "NZ": {"zone": "Pacific/Auckland", "offset_hours": 12},
    "VN": {"zone": "Asia/Ho_Chi_Minh", "offset_hours": 7},
}

VALUES = [
    ("SYNC_BATCH_SIZE", "1000", "Source rows fetched per batch"),
    ("SYNC_STRATEGY", "incremental", "full or incremental"),
    ("SYNC_WINDOW_DAYS", "", "Only sync orders created within N days (blank = no cap)"),
    ("SYNC_MAX_RECORDS", "", "Per-job record cap (blank = no cap)"),
    ("SYNC_OVERLAP_DAYS", "7", "Days re-read before the target watermark on incremental runs"),
    ("SYNC_CONCURRENCY", "1", "Brand/country jobs in flight"),
    ("CONFIRMED_ONLY_COUNTS", "true", "Discovery counts only CONFIRMED source orders"),
    ("INGESTION_OFFSET_HOURS", "8", "Hours stored timestamps lag the upstream clock"),
    ("BRAND_ALIASES", json.dumps(BRAND_ALIASES), "Source prefix to brand code and display name"),
    ("COUNTRY_TIMEZONES", json.dumps(COUNTRY_TIMEZONES), "Country zone and fixed UTC offset"),
]

system_config = sa.table(
    "system_config",
    sa.column("key", sa.Text()),
    sa.column("value", sa.Text()),
    sa.column("description", sa.Text()),
    sa.column("is_active", sa.Boolean()),
)


def _upsert(connection, *, key: str, value: str, description: str) -> None:
    existing = connection.execute(
        sa.select(system_config.c.key).where(system_config.c.key == key)
    ).first()
    if existing:
        # Keep the operator's value; only refresh metadata.
        connection.execute(
            sa.update(system_config)
            .where(system_config.c.key == key)
            .values(description=description, is_active=True)
        )
    else:
        connection.execute(
            sa.insert(system_config).values(key=key, value=value, description=description, is_active=True)
        )


def upgrade() -> None:
    connection = op.get_bind()
    for key, value, description in VALUES:
        _upsert(connection, key=key, value=value, description=description)


def downgrade() -> None:
    connection = op.get_bind()
    for key, _, _ in VALUES:
        connection.execute(sa.delete(system_config).where(system_config.c.key == key))
