"""
User Store — Shared pytest Fixtures & Configuration

Provides common fixtures for all test modules:
- Recording storage client (asserts on the exact queries/inserts issued)
- In-memory fake ClickHouse that evaluates the store's queries
- Async test support via pytest-asyncio
"""

from __future__ import annotations

import itertools
from typing import Any, Mapping, Sequence
from unittest.mock import AsyncMock

import pytest

from userstore.user import (
    DESCRIBE_USER_QUERY,
    MOST_RECENT_PROPERTIES_QUERY,
    USER_ALIAS_TABLE,
    USER_PROPERTY_TIME_TABLE,
    USER_TABLE,
    UserStore,
    build_get_users_query,
)


# ---------------------------------------------------------------------------
# Fake ClickHouse
# ---------------------------------------------------------------------------


class FakeClickHouse:
    """
    In-memory stand-in for the ClickHouse tables the store uses.

    Rows are appended exactly as the engine would store them (missing columns
    take the DDL defaults: NULL for nullable columns, an insert-time stamp
    for inserted_at) and each of the store's queries is evaluated with the
    same semantics as its SQL: latest non-NULL value per column and id,
    tombstone filter, left alias join, latest property write per property.
    """

    # Non-nullable columns with a DEFAULT in CREATE_USER_TABLE. updated_at's
    # default is never reached because the store always stamps it.
    USER_DEFAULTS: dict[str, Any] = {
        "updated_at": 0,
        "sign": 1,
    }

    def __init__(self) -> None:
        self.user_columns = ["id", "created_at", "updated_at", "inserted_at", "is_deleted", "sign"]
        self.tables: dict[str, list[dict[str, Any]]] = {
            USER_TABLE: [],
            USER_ALIAS_TABLE: [],
            USER_PROPERTY_TIME_TABLE: [],
        }
        # Monotonic clock standing in for now64() on inserted_at and timestamp.
        self._clock = itertools.count(1)

    def add_column(self, name: str) -> None:
        self.user_columns.append(name)

    async def insert(
        self,
        table: str,
        values: Sequence[Mapping[str, Any]],
        fmt: str = "JSONEachRow",
    ) -> None:
        # One insert is one engine call: now64() is the same for the whole batch.
        tick = next(self._clock)
        for value in values:
            row = dict(value)
            if table == USER_TABLE:
                unknown = set(row) - set(self.user_columns)
                if unknown:
                    raise ValueError(f"Unknown user columns: {sorted(unknown)}")
                row.setdefault("inserted_at", tick)
                row = {
                    col: row.get(col, self.USER_DEFAULTS.get(col))
                    for col in self.user_columns
                }
            elif table == USER_PROPERTY_TIME_TABLE:
                row.setdefault("timestamp", tick)
            self.tables[table].append(row)

    async def query(
        self,
        query: str,
        query_params: Mapping[str, Any] | None = None,
        fmt: str = "JSONEachRow",
    ) -> list[dict[str, Any]]:
        params = dict(query_params or {})
        if query == build_get_users_query(self.user_columns):
            return self._get_users(params["ids"])
        if query == DESCRIBE_USER_QUERY:
            return [{"name": col, "type": "String"} for col in self.user_columns]
        if query == MOST_RECENT_PROPERTIES_QUERY:
            return self._most_recent(params["user_id_a"], params["user_id_b"])
        raise AssertionError(f"Unexpected query: {query}")

    def _get_users(self, ids: list[str]) -> list[dict[str, Any]]:
        aliases = self.tables[USER_ALIAS_TABLE]
        aliased_ids = {a["user_id"] for a in aliases if a["alias"] in ids}

        versions: dict[str, list[dict[str, Any]]] = {}
        for row in self.tables[USER_TABLE]:
            if row["id"] in ids or row["id"] in aliased_ids:
                versions.setdefault(row["id"], []).append(row)

        latest = []
        for user_id, rows in versions.items():
            rows = sorted(rows, key=lambda r: (r["updated_at"], r["inserted_at"]))
            record: dict[str, Any] = {
                "id": user_id,
                "updated_at": max(r["updated_at"] for r in rows),
            }
            for col in self.user_columns:
                if col in ("id", "updated_at", "inserted_at"):
                    continue
                written = [r[col] for r in rows if r[col] is not None]
                record[col] = written[-1] if written else None
            if record["is_deleted"] is None:
                record["is_deleted"] = 0
            latest.append(record)

        results = []
        for record in sorted(latest, key=lambda r: r["updated_at"], reverse=True):
            if record["is_deleted"] != 0:
                continue
            joined = [a for a in aliases if a["user_id"] == record["id"]]
            joined.sort(key=lambda a: a["alias"] in ids, reverse=True)
            alias_id = joined[0]["id"] if joined else None
            results.append({**record, "alias_id": alias_id})
        return results

    def _most_recent(self, user_id_a: str, user_id_b: str) -> list[dict[str, Any]]:
        rows = [
            r for r in self.tables[USER_PROPERTY_TIME_TABLE]
            if r["user_id"] in (user_id_a, user_id_b)
        ]
        rows.sort(key=lambda r: r["timestamp"], reverse=True)
        winners: dict[str, dict[str, Any]] = {}
        for r in rows:
            winners.setdefault(r["property"], {"user_id": r["user_id"], "property": r["property"]})
        return list(winners.values())


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_clickhouse() -> FakeClickHouse:
    """Fresh in-memory tables for each test."""
    return FakeClickHouse()


@pytest.fixture
def store(fake_clickhouse: FakeClickHouse) -> UserStore:
    """UserStore wired to the in-memory fake."""
    return UserStore(fake_clickhouse)


@pytest.fixture
def recording_client() -> AsyncMock:
    """
    Storage client double that records calls.

    query() returns [] unless a test sets ``recording_client.query.return_value``.
    """
    client = AsyncMock()
    client.query.return_value = []
    client.insert.return_value = None
    return client
