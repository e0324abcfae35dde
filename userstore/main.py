"""
User Store — Bootstrap Entrypoint

Configures structlog, checks that ClickHouse answers, and creates the user
tables if they are missing. Host applications embed UserStore directly; this
entrypoint only prepares the database.

Run via:
    python -m userstore.main
"""

from __future__ import annotations

import asyncio

import structlog

from userstore.clickhouse import ClickHouseClient
from userstore.config import settings
from userstore.log import configure_logging
from userstore.schema import create_tables
from userstore.user import UserStore


async def main() -> None:
    """
    Prepare the database for the user store.

    Execution order:
    1. Configure logging (structlog JSON)
    2. Verify the ClickHouse connection (health check)
    3. Create missing tables
    4. Report the current user table columns
    """
    configure_logging(log_level=settings.LOG_LEVEL)
    logger = structlog.get_logger(__name__)

    logger.info(
        "user_store_bootstrap_begin",
        clickhouse_url=settings.CLICKHOUSE_URL,
        database=settings.CLICKHOUSE_DATABASE,
    )

    async with ClickHouseClient() as client:
        if not await client.ping():
            logger.error("clickhouse_health_check_failed", clickhouse_url=settings.CLICKHOUSE_URL)
            raise ConnectionError(f"ClickHouse not reachable at {settings.CLICKHOUSE_URL}")
        logger.info("clickhouse_health_check_passed")

        try:
            await create_tables(client)
            columns = await UserStore(client).get_columns()
        except Exception as e:
            logger.error(
                "user_store_bootstrap_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

    logger.info("user_store_bootstrap_complete", user_columns=columns)


if __name__ == "__main__":
    asyncio.run(main())
