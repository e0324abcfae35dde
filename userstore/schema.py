"""
User Store — ClickHouse Schema

DDL for the three tables the store reads and writes. Statements are
idempotent (IF NOT EXISTS) so create_tables() is safe to run on every start.

  - user: plain MergeTree keyed by id. Each create/update appends a
    possibly partial row; columns a row leaves out are NULL. The read query
    collapses every column to its latest non-NULL value, ordered by
    (updated_at, inserted_at). inserted_at orders writes that share an
    updated_at second.
  - user_alias: plain MergeTree, one row per alias.
  - user_property_time: plain MergeTree; timestamp is filled on insert with
    millisecond precision so writes within the same second still order.

Open-schema user properties are added with ALTER TABLE (see add_user_column).
They must be Nullable so that an update which leaves them out does not
overwrite them.
"""

from __future__ import annotations

import re

import structlog

from userstore.user import USER_ALIAS_TABLE, USER_PROPERTY_TIME_TABLE, USER_TABLE

logger = structlog.get_logger(__name__)

CREATE_USER_TABLE = f"""
    CREATE TABLE IF NOT EXISTS `{USER_TABLE}`
    (
        id UUID,
        created_at Nullable(UInt32),
        updated_at UInt32 DEFAULT toUnixTimestamp(now()),
        inserted_at DateTime64(6) DEFAULT now64(6),
        is_deleted Nullable(UInt8),
        sign Int8 DEFAULT 1
    )
    ENGINE = MergeTree
    ORDER BY (id, updated_at, inserted_at)
"""

CREATE_USER_ALIAS_TABLE = f"""
    CREATE TABLE IF NOT EXISTS `{USER_ALIAS_TABLE}`
    (
        id UUID DEFAULT generateUUIDv4(),
        user_id UUID,
        alias String
    )
    ENGINE = MergeTree
    ORDER BY (alias, user_id)
"""

CREATE_USER_PROPERTY_TIME_TABLE = f"""
    CREATE TABLE IF NOT EXISTS `{USER_PROPERTY_TIME_TABLE}`
    (
        user_id UUID,
        property String,
        timestamp DateTime64(3) DEFAULT now64(3)
    )
    ENGINE = MergeTree
    ORDER BY (user_id, property, timestamp)
"""

TABLE_DDL = {
    USER_TABLE: CREATE_USER_TABLE,
    USER_ALIAS_TABLE: CREATE_USER_ALIAS_TABLE,
    USER_PROPERTY_TIME_TABLE: CREATE_USER_PROPERTY_TIME_TABLE,
}

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_COLUMN_TYPE = re.compile(r"^[A-Za-z0-9_(), ']+$")


async def create_tables(client) -> None:
    """Create the user, user_alias and user_property_time tables if missing."""
    for table, ddl in TABLE_DDL.items():
        await client.command(ddl)
        logger.info("schema_table_ready", table=table)


async def add_user_column(client, name: str, column_type: str = "Nullable(String)") -> None:
    """
    Add an open-schema property column to the user table.

    Column names and types cannot be bound as query parameters, so both are
    checked against a conservative pattern before being placed in the DDL.

    Raises:
        ValueError: name or type contains characters outside the allowed set.
    """
    if not _IDENTIFIER.match(name):
        raise ValueError(f"Invalid column name: {name!r}")
    if not _COLUMN_TYPE.match(column_type):
        raise ValueError(f"Invalid column type: {column_type!r}")

    await client.command(
        f"ALTER TABLE `{USER_TABLE}` ADD COLUMN IF NOT EXISTS `{name}` {column_type}"
    )
    logger.info("schema_user_column_added", column=name, column_type=column_type)
