"""
User Store — Admin User Creation Script

Creates a user row, optionally registers aliases for it, and writes initial
properties (recording their write times so later merges see them).

Usage:
    python scripts/add_user.py --alias customer-42 --alias ext:abc
    python scripts/add_user.py --alias a@example.com --set email=a@example.com --set plan=pro
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Resolve project root so this script can be run from any working directory
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from userstore.clickhouse import ClickHouseClient
from userstore.log import configure_logging
from userstore.user import UserStore


def _parse_property(raw: str) -> tuple[str, str]:
    name, sep, value = raw.partition("=")
    if not sep or not name:
        raise argparse.ArgumentTypeError(f"expected NAME=VALUE, got {raw!r}")
    return name, value


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Create a user record, with optional aliases and properties.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/add_user.py
  python scripts/add_user.py --alias customer-42
  python scripts/add_user.py --alias a@example.com --set email=a@example.com
""",
    )
    parser.add_argument(
        "--alias",
        action="append",
        default=[],
        help="Alias identifier that should resolve to the new user (repeatable).",
    )
    parser.add_argument(
        "--set",
        dest="properties",
        action="append",
        default=[],
        type=_parse_property,
        metavar="NAME=VALUE",
        help="Initial property value; the column must already exist (repeatable).",
    )
    return parser.parse_args(argv)


async def create_user(
    store: UserStore,
    aliases: list[str],
    properties: dict[str, str],
) -> str:
    """
    Create the user, then attach aliases and properties.

    Property names are checked against the live user table before anything
    is written, so a typo fails the whole call.
    """
    if properties:
        columns = set(await store.get_columns())
        reserved = set(UserStore.RESERVED_COLUMNS)
        unknown = sorted(name for name in properties if name not in columns or name in reserved)
        if unknown:
            raise ValueError(f"Unknown or reserved user columns: {', '.join(unknown)}")

    user_id = await store.create()
    await store.add_aliases(user_id, aliases)

    if properties:
        await store.update([{"id": user_id, **properties}])
        await store.set_property_times(user_id, list(properties))

    return user_id


async def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    configure_logging("WARNING")
    properties = dict(args.properties)

    try:
        async with ClickHouseClient() as client:
            user_id = await create_user(UserStore(client), args.alias, properties)
    except Exception as e:
        print(f"Failed to create user: {e}", file=sys.stderr)
        sys.exit(1)

    print("User created successfully.")
    print(f"  user.id     = {user_id}")
    for alias in args.alias:
        print(f"  alias       = {alias}")
    for name, value in properties.items():
        print(f"  {name:<11} = {value}")


if __name__ == "__main__":
    asyncio.run(main())
