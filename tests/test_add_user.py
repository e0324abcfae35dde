"""Tests for the admin user creation script (scripts/add_user.py)."""

from __future__ import annotations

import argparse
import importlib.util
from pathlib import Path

import pytest

from userstore.user import UserStore

_SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "add_user.py"
_spec = importlib.util.spec_from_file_location("add_user", _SCRIPT)
add_user = importlib.util.module_from_spec(_spec)
_spec.loader.exec_module(add_user)


@pytest.fixture
def fake_clickhouse(fake_clickhouse):
    fake_clickhouse.add_column("email")
    return fake_clickhouse


def test_parse_args() -> None:
    args = add_user.parse_args(["--alias", "c-1", "--alias", "c-2", "--set", "email=a@example.com"])

    assert args.alias == ["c-1", "c-2"]
    assert args.properties == [("email", "a@example.com")]


def test_parse_property_requires_equals() -> None:
    with pytest.raises(argparse.ArgumentTypeError):
        add_user._parse_property("email")


@pytest.mark.asyncio
async def test_create_user_with_aliases_and_properties(store: UserStore) -> None:
    user_id = await add_user.create_user(store, ["c-1"], {"email": "a@example.com"})

    record = await store.get_one("c-1")
    assert record is not None
    assert record.id == user_id
    assert record.email == "a@example.com"

    winners = await store.most_recent_user_properties(user_id, user_id)
    assert [(w.user_id, w.property) for w in winners] == [(user_id, "email")]


@pytest.mark.asyncio
async def test_create_user_rejects_unknown_columns(store: UserStore, fake_clickhouse) -> None:
    with pytest.raises(ValueError, match="nickname"):
        await add_user.create_user(store, [], {"nickname": "ada"})

    assert fake_clickhouse.tables["user"] == []


@pytest.mark.asyncio
async def test_create_user_rejects_reserved_columns(store: UserStore) -> None:
    with pytest.raises(ValueError, match="is_deleted"):
        await add_user.create_user(store, [], {"is_deleted": "1"})
