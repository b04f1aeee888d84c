"""Fetch Redash query results, optionally split into pages or date ranges."""

from .client import (
    ApiMessage,
    HttpError,
    InvalidInput,
    InvalidResponse,
    JobFailed,
    QueryRequest,
    QueryTimeout,
    RedashClient,
    RedashError,
    ResultTable,
    TransportError,
)
from .dispatch import direct_query, paginated_query, period_query
from .results import assemble, write_csv

__all__ = [
    "ApiMessage",
    "HttpError",
    "InvalidInput",
    "InvalidResponse",
    "JobFailed",
    "QueryRequest",
    "QueryTimeout",
    "RedashClient",
    "RedashError",
    "ResultTable",
    "TransportError",
    "assemble",
    "direct_query",
    "paginated_query",
    "period_query",
    "write_csv",
]

__version__ = "0.1.0"
