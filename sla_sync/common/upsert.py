from __future__ import annotations

from typing import Any, Mapping, Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.mysql import insert as mysql_insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert


def _conflict_columns(table: sa.Table) -> list[str]:
    conflict_cols = [col.name for col in table.primary_key.columns] if table.primary_key else []
    for constraint in table.constraints:
        if isinstance(constraint, sa.UniqueConstraint):
            conflict_cols = [col.name for col in constraint.columns]
            break
    return conflict_cols


def make_upsert(
    table: sa.Table,
    values: Mapping[str, Any],
    *,
    dialect: str,
    update_columns: Sequence[str] | None = None,
) -> sa.sql.dml.Insert:
    """Insert ``values``; on key conflict update every non-key column."""

    conflict_cols = _conflict_columns(table)
    if update_columns is None:
        update_columns = [key for key in values if key not in conflict_cols]

    if dialect in {"mysql", "mariadb"}:
        insert = mysql_insert(table).values(**values)
        if not update_columns:
            return insert.prefix_with("IGNORE")
        return insert.on_duplicate_key_update({key: insert.inserted[key] for key in update_columns})

    if dialect == "postgresql":
        insert = pg_insert(table).values(**values)
    elif dialect == "sqlite":
        insert = sqlite_insert(table).values(**values)
    else:
        raise ValueError(f"Upsert is not supported for dialect {dialect!r}")

    if not conflict_cols:
        return insert
    if not update_columns:
        return insert.on_conflict_do_nothing(index_elements=conflict_cols)
    return insert.on_conflict_do_update(
        index_elements=conflict_cols,
        set_={key: insert.excluded[key] for key in update_columns},
    )
