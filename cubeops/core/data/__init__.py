"""
Seed data for the test databases.

Schema DDL lives in ``seeds/<dialect>.sql``; sample rows live once in
``seeds/rows.yml`` and are rendered into dialect-specific INSERT
statements so re-running a seed never fails on duplicate keys:

    postgres  INSERT ... ON CONFLICT (id) DO NOTHING
    mysql     INSERT IGNORE ...
    doris     INSERT ...   (unique-key tables overwrite by id)

Usage::

    from cubeops.core.data import seed_sql

    sql = seed_sql("postgres")   # DDL + inserts, ready for psql
"""

from __future__ import annotations

import logging
from functools import cache
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

_DATA_DIR = Path(__file__).parent / "seeds"

DIALECTS = ("postgres", "mysql", "doris")

# Insert order respects the foreign keys from order_items
SEED_TABLES = ("products", "orders", "order_items")


def schema_sql(dialect: str) -> str:
    """CREATE TABLE statements for one dialect."""
    if dialect not in DIALECTS:
        raise ValueError(f"Unknown SQL dialect: {dialect}")
    return (_DATA_DIR / f"{dialect}.sql").read_text(encoding="utf-8")


@cache
def seed_rows() -> dict[str, dict[str, Any]]:
    """Table name → {"columns": [...], "rows": [[...], ...]}."""
    with open(_DATA_DIR / "rows.yml", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    logger.debug(
        "Loaded seed rows: %s",
        ", ".join(f"{t}={len(data[t]['rows'])}" for t in SEED_TABLES),
    )
    return data


def _literal(value: Any) -> str:
    if isinstance(value, str):
        return "'" + value.replace("'", "''") + "'"
    return str(value)


def insert_sql(dialect: str, table: str) -> str:
    """One multi-row INSERT for ``table`` in ``dialect``."""
    seed = seed_rows()[table]
    columns = ", ".join(seed["columns"])
    values = ",\n".join(
        "    (" + ", ".join(_literal(v) for v in row) + ")" for row in seed["rows"]
    )

    if dialect == "postgres":
        return f"INSERT INTO {table} ({columns})\nVALUES\n{values}\nON CONFLICT (id) DO NOTHING;"
    if dialect == "mysql":
        return f"INSERT IGNORE INTO {table} ({columns})\nVALUES\n{values};"
    if dialect == "doris":
        return f"INSERT INTO {table} ({columns})\nVALUES\n{values};"
    raise ValueError(f"Unknown SQL dialect: {dialect}")


def seed_sql(dialect: str) -> str:
    """Full seed script: schema followed by every table's rows."""
    parts = [schema_sql(dialect).rstrip()]
    parts.extend(insert_sql(dialect, table) for table in SEED_TABLES)
    return "\n\n".join(parts) + "\n"
