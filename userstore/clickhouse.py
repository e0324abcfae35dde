"""
User Store — ClickHouse HTTP Client

Thin async client for the ClickHouse HTTP interface. Two operations cover
everything the store needs:

- query(): parameterized SELECT / DESCRIBE, rows returned one dict per record
- insert(): batched append of JSON rows into a table

Query parameters use ClickHouse's server-side binding: the SQL declares
``{name: Type}`` placeholders and each value travels as a ``param_<name>``
URL argument, so values are never spliced into SQL text.

No retries: a failed request raises and the caller decides what to do.
"""

from __future__ import annotations

import json
from typing import Any, Iterable, Mapping, Sequence
from uuid import UUID

import httpx
import structlog

from userstore.config import settings

logger = structlog.get_logger(__name__)

DEFAULT_FORMAT = "JSONEachRow"


class ClickHouseError(Exception):
    """Raised when the server rejects a request (non-2xx response)."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message.strip()
        super().__init__(f"ClickHouse error {status_code}: {self.message}")


# ---------------------------------------------------------------------------
# Parameter rendering
# ---------------------------------------------------------------------------


def _escape_scalar(value: str) -> str:
    # Top-level parameter values are parsed in TSV-escaped form.
    return (
        value.replace("\\", "\\\\")
        .replace("\t", "\\t")
        .replace("\n", "\\n")
    )


def _quote_element(value: Any) -> str:
    """Render one element of an array literal."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_quote_element(v) for v in value) + "]"
    text = str(value).replace("\\", "\\\\").replace("'", "\\'")
    return f"'{text}'"


def format_query_param(value: Any) -> str:
    """
    Render a Python value as a ClickHouse HTTP query parameter.

    Examples:
        >>> format_query_param(["a", "b"])
        "['a','b']"
        >>> format_query_param(42)
        '42'
    """
    if value is None:
        return "\\N"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (list, tuple, set, frozenset)):
        return "[" + ",".join(_quote_element(v) for v in value) + "]"
    return _escape_scalar(str(value))


def _parse_json_each_row(body: str) -> list[dict[str, Any]]:
    return [json.loads(line) for line in body.splitlines() if line.strip()]


def _json_default(value: Any) -> Any:
    if isinstance(value, UUID):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class ClickHouseClient:
    """
    Async client for the ClickHouse HTTP interface.

    Usage:
        async with ClickHouseClient() as client:
            rows = await client.query(
                "SELECT * FROM user WHERE id IN {ids: Array(UUID)}",
                query_params={"ids": ["..."]},
            )
            await client.insert("user", [{"id": "...", "sign": 1}])
    """

    def __init__(
        self,
        url: str | None = None,
        database: str | None = None,
        user: str | None = None,
        password: str | None = None,
        timeout: float | None = None,
    ):
        self._url = url or settings.CLICKHOUSE_URL
        self._database = database or settings.CLICKHOUSE_DATABASE
        self._user = user or settings.CLICKHOUSE_USER
        self._password = password if password is not None else settings.CLICKHOUSE_PASSWORD
        self._timeout = timeout or settings.CLICKHOUSE_TIMEOUT_SECONDS
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> ClickHouseClient:
        self._client = httpx.AsyncClient(
            base_url=self._url,
            headers={
                "X-ClickHouse-User": self._user,
                "X-ClickHouse-Key": self._password,
            },
            timeout=self._timeout,
        )
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _post(
        self,
        content: str,
        params: dict[str, str],
        statement: str,
    ) -> httpx.Response:
        assert self._client is not None, "Client not initialized. Use 'async with'."

        params = {"database": self._database, **params}
        try:
            response = await self._client.post("/", params=params, content=content.encode("utf-8"))
        except httpx.RequestError as e:
            logger.error(
                "clickhouse_request_error",
                error=str(e),
                error_type=type(e).__name__,
                statement=statement,
            )
            raise

        if response.is_error:
            logger.error(
                "clickhouse_query_failed",
                status_code=response.status_code,
                statement=statement,
                error=response.text[:500],
            )
            raise ClickHouseError(response.status_code, response.text)

        return response

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    async def query(
        self,
        query: str,
        query_params: Mapping[str, Any] | None = None,
        fmt: str = DEFAULT_FORMAT,
    ) -> list[dict[str, Any]]:
        """
        Execute a read query and return its rows.

        Args:
            query: SQL text with ``{name: Type}`` placeholders.
            query_params: Values for the placeholders, keyed by name.
            fmt: Output format; only JSONEachRow is parsed into dicts.

        Returns:
            One dict per result row.
        """
        params = {
            f"param_{name}": format_query_param(value)
            for name, value in (query_params or {}).items()
        }
        sql = f"{query.strip()}\nFORMAT {fmt}"

        response = await self._post(sql, params, statement="query")
        rows = _parse_json_each_row(response.text)

        logger.debug("clickhouse_query_complete", rows=len(rows))
        return rows

    async def insert(
        self,
        table: str,
        values: Iterable[Mapping[str, Any]],
        fmt: str = DEFAULT_FORMAT,
    ) -> None:
        """
        Append a batch of rows to a table.

        The batch is sent as one request, so it lands entirely or not at all.
        An empty batch sends nothing.
        """
        rows: Sequence[Mapping[str, Any]] = list(values)
        if not rows:
            logger.debug("clickhouse_insert_skipped_empty", table=table)
            return

        body = "\n".join(json.dumps(dict(row), default=_json_default) for row in rows)
        params = {"query": f"INSERT INTO `{table}` FORMAT {fmt}"}

        await self._post(body, params, statement=f"insert:{table}")
        logger.debug("clickhouse_insert_complete", table=table, rows=len(rows))

    async def command(self, sql: str) -> None:
        """Run a statement that returns no rows (DDL, ALTER, ...)."""
        await self._post(sql.strip(), {}, statement="command")

    async def ping(self) -> bool:
        """Return True when the server answers /ping."""
        assert self._client is not None, "Client not initialized. Use 'async with'."

        try:
            response = await self._client.get("/ping")
        except httpx.RequestError as e:
            logger.warning("clickhouse_ping_failed", error=str(e))
            return False
        return response.status_code == 200
