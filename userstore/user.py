"""
User Store — User Data Access

Reads and appends user records in ClickHouse. The ``user`` table is
append-only: every write is a new, possibly partial, row version and reads
collapse each column to its latest written value per id. Nothing here reads
before writing, caches, or retries; storage errors propagate to the caller
untouched.

Tables:
  - user                (id, created_at, updated_at, inserted_at, is_deleted, sign, ...open columns)
  - user_alias          (id, user_id, alias)
  - user_property_time  (user_id, property, timestamp)
"""

from __future__ import annotations

import time
import uuid
from typing import Any, Mapping, Protocol, Sequence

import structlog

from userstore.models import UserPropertyWinner, UserRecord

logger = structlog.get_logger(__name__)

USER_TABLE = "user"
USER_ALIAS_TABLE = "user_alias"
USER_PROPERTY_TIME_TABLE = "user_property_time"

# Columns the read query derives itself rather than reducing per column.
# inserted_at is the engine's insert time and only breaks updated_at ties.
_UNREDUCED_COLUMNS = ("id", "updated_at", "inserted_at")

# Ids and aliases share one String array: aliases need not look like UUIDs,
# so the id side is compared as text. Every column is reduced to its latest
# non-NULL value per id, ordered by (updated_at, inserted_at), so a partial
# update only changes the columns it carries. is_deleted is reduced before
# the tombstone filter, otherwise a deleted user would resurface through an
# older row. When a user has several aliases, the row for the alias that was
# actually requested wins.
GET_USERS_QUERY = """
    SELECT
        latest.*,
        user_alias.id AS alias_id
    FROM
    (
        SELECT
            u.id AS id,
            max(u.updated_at) AS updated_at{reduced_columns}
        FROM user AS u
        WHERE
            has({{ids: Array(String)}}, toString(u.id))
            OR u.id IN (
                SELECT user_id
                FROM user_alias
                WHERE has({{ids: Array(String)}}, alias)
            )
        GROUP BY u.id
    ) AS latest
    LEFT JOIN user_alias ON user_alias.user_id = latest.id
    WHERE latest.is_deleted = 0
    ORDER BY
        latest.updated_at DESC,
        has({{ids: Array(String)}}, user_alias.alias) DESC
    LIMIT 1 BY latest.id
    SETTINGS join_use_nulls = 1, prefer_column_name_to_alias = 1
"""

DESCRIBE_USER_QUERY = "DESCRIBE TABLE user"

MOST_RECENT_PROPERTIES_QUERY = """
    SELECT
        user_id,
        property
    FROM user_property_time
    WHERE user_id IN ({user_id_a: UUID}, {user_id_b: UUID})
    ORDER BY timestamp DESC
    LIMIT 1 BY property
"""


class StorageClient(Protocol):
    """The two storage calls the store relies on (see ClickHouseClient)."""

    async def query(
        self,
        query: str,
        query_params: Mapping[str, Any] | None = None,
        fmt: str = ...,
    ) -> list[dict[str, Any]]: ...

    async def insert(
        self,
        table: str,
        values: Sequence[Mapping[str, Any]],
        fmt: str = ...,
    ) -> None: ...


def _now() -> int:
    return round(time.time())


def quote_identifier(name: str) -> str:
    """Backtick-quote a column name read back from DESCRIBE."""
    return "`" + name.replace("\\", "\\\\").replace("`", "\\`") + "`"


def build_get_users_query(columns: Sequence[str]) -> str:
    """
    Render GET_USERS_QUERY for the current set of user columns.

    Each column becomes ``argMaxIf(col, (updated_at, inserted_at), col IS NOT
    NULL)``: rows that left the column out (NULL) never win it.
    """
    reduced = []
    for column in columns:
        if column in _UNREDUCED_COLUMNS:
            continue
        quoted = quote_identifier(column)
        value = f"argMaxIf(u.{quoted}, (u.updated_at, u.inserted_at), u.{quoted} IS NOT NULL)"
        if column == "is_deleted":
            value = f"ifNull({value}, 0)"
        reduced.append(f",\n            {value} AS {quoted}")
    return GET_USERS_QUERY.format(reduced_columns="".join(reduced))


class UserStore:
    """
    Data access for user records, aliases and property write times.

    The storage client is injected and shared; the store keeps no state of
    its own, so one instance can serve any number of concurrent callers.

    Usage:
        async with ClickHouseClient() as client:
            users = UserStore(client)
            user_id = await users.create()
            await users.update([{"id": user_id, "email": "a@example.com"}])
            record = await users.get_one(user_id)
    """

    RESERVED_COLUMNS = ("id", "created_at", "updated_at", "is_deleted")

    def __init__(self, client: StorageClient):
        self._client = client

    # -----------------------------------------------------------------------
    # Lookup
    # -----------------------------------------------------------------------

    async def get(self, ids: Sequence[str]) -> list[UserRecord]:
        """
        Get user records by id or alias.

        Returns at most one record per distinct user. Each column holds the
        latest value written for it, so partial updates accumulate; columns
        are discovered with get_columns() on every call. ``alias_id`` comes
        from the alias join. Deleted users are never returned.

        Args:
            ids: Mix of user ids and alias strings.

        Returns:
            Matching records, most recently updated first. Empty when nothing
            matches or ``ids`` is empty.
        """
        ids = [str(i) for i in ids]
        if not ids:
            return []

        columns = await self.get_columns()
        rows = await self._client.query(
            build_get_users_query(columns),
            query_params={"ids": ids},
        )

        logger.debug("user_store_get", requested=len(ids), found=len(rows))
        return [UserRecord.model_validate(row) for row in rows]

    async def get_one(self, id: str) -> UserRecord | None:
        """Get a user by id or alias, or None when not found."""
        records = await self.get([id])
        return records[0] if records else None

    # -----------------------------------------------------------------------
    # Mutation
    # -----------------------------------------------------------------------

    async def create(self) -> str:
        """
        Create a new user record and return its id.

        The row carries only the id, the +1 sign marker and the creation
        time; properties are added later with update().
        """
        user_id = str(uuid.uuid4())
        now = _now()

        await self._client.insert(
            USER_TABLE,
            [{"id": user_id, "sign": 1, "created_at": now, "updated_at": now}],
        )

        logger.info("user_store_create", user_id=user_id)
        return user_id

    async def update(self, data: Sequence[Mapping[str, Any]]) -> None:
        """
        Append new versions of user records.

        Each record must contain ``id`` and only the columns to change;
        columns left out keep their previous values on read. ``updated_at``
        is always stamped with the current time (a caller-supplied value is
        replaced); ``created_at`` is passed through unchanged. All rows go
        out in a single insert.

        A property cannot be cleared back to NULL this way, since a NULL
        column reads as "not written by this version".
        """
        now = _now()
        rows = [{**dict(item), "updated_at": now} for item in data]
        if not rows:
            return

        await self._client.insert(USER_TABLE, rows)

        logger.info(
            "user_store_update",
            rows=len(rows),
            user_ids=[row.get("id") for row in rows],
            updated_at=now,
        )

    async def add_aliases(self, user_id: str, aliases: Sequence[str]) -> None:
        """Register alias identifiers that resolve to ``user_id`` in get()."""
        rows = [
            {"id": str(uuid.uuid4()), "user_id": user_id, "alias": alias}
            for alias in aliases
        ]
        if not rows:
            return

        await self._client.insert(USER_ALIAS_TABLE, rows)
        logger.info("user_store_aliases_added", user_id=user_id, count=len(rows))

    # -----------------------------------------------------------------------
    # Schema
    # -----------------------------------------------------------------------

    async def get_columns(self) -> list[str]:
        """Column names of the user table, read fresh on every call."""
        rows = await self._client.query(DESCRIBE_USER_QUERY)
        return [row["name"] for row in rows]

    # -----------------------------------------------------------------------
    # Property write times
    # -----------------------------------------------------------------------

    async def set_property_times(self, user_id: str, properties: Sequence[str]) -> None:
        """
        Record that ``properties`` were just written for ``user_id``.

        The timestamp column is filled by the table default at insert time.
        An empty list is a no-op.
        """
        rows = [{"user_id": user_id, "property": prop} for prop in properties]
        if not rows:
            return

        await self._client.insert(USER_PROPERTY_TIME_TABLE, rows)
        logger.debug("user_store_property_times_set", user_id=user_id, properties=list(properties))

    async def most_recent_user_properties(
        self,
        user_id_a: str,
        user_id_b: str,
    ) -> list[UserPropertyWinner]:
        """
        For each property recorded for either user, return the user that
        wrote it last.

        Used when merging two user records. A property never recorded for
        either user is simply absent from the result.
        """
        rows = await self._client.query(
            MOST_RECENT_PROPERTIES_QUERY,
            query_params={"user_id_a": user_id_a, "user_id_b": user_id_b},
        )

        winners = [UserPropertyWinner.model_validate(row) for row in rows]
        winners.sort(key=lambda w: w.property)

        logger.debug(
            "user_store_most_recent_properties",
            user_id_a=user_id_a,
            user_id_b=user_id_b,
            properties=len(winners),
        )
        return winners
