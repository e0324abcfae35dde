from userstore.clickhouse import ClickHouseClient, ClickHouseError
from userstore.models import UserPropertyWinner, UserRecord
from userstore.user import UserStore

__all__ = [
    "ClickHouseClient",
    "ClickHouseError",
    "UserPropertyWinner",
    "UserRecord",
    "UserStore",
]
