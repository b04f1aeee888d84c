"""Redash API client: submit a query, poll its job, fetch the result set."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

import requests
from requests.adapters import HTTPAdapter

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60
DEFAULT_QUERY_TIMEOUT_SECONDS = 300
DEFAULT_POLL_INTERVAL_SECONDS = 1.0
MAX_CONCURRENCY = 5
GATEWAY_UNAVAILABLE = 502


class RedashError(Exception):
    """Base class for every error raised while talking to Redash."""


class TransportError(RedashError):
    pass


class HttpError(RedashError):
    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"HTTP error ({status_code}): {body}")
        self.status_code = status_code
        self.body = body


class ApiMessage(RedashError):
    pass


class JobFailed(RedashError):
    pass


class QueryTimeout(RedashError):
    pass


class InvalidResponse(RedashError):
    def __init__(self, message: str = "Invalid response") -> None:
        super().__init__(message)


class InvalidInput(RedashError, ValueError):
    pass


class QueryAborted(RedashError):
    """Raised when a wait is abandoned because the surrounding run stopped."""


class JobStatus(IntEnum):
    PENDING = 1
    STARTED = 2
    SUCCESS = 3
    FAILURE = 4
    CANCELLED = 5


@dataclass
class ResultTable:
    headers: List[str] = field(default_factory=list)
    rows: List[List[str]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.rows)


@dataclass(frozen=True)
class QueryRequest:
    query_id: int
    parameters: Mapping[str, str] = field(default_factory=dict)
    max_age: int = 0

    def with_parameters(self, extra: Mapping[str, str]) -> "QueryRequest":
        merged = dict(self.parameters)
        merged.update(extra)
        return QueryRequest(query_id=self.query_id, parameters=merged, max_age=self.max_age)


@dataclass(frozen=True)
class JobHandle:
    job_id: str
    query_id: int


@dataclass(frozen=True)
class ImmediateResult:
    table: ResultTable


@dataclass(frozen=True)
class PendingJob:
    handle: JobHandle


Submission = Union[ImmediateResult, PendingJob]


def render_value(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    return str(value)


def _coerce_identifier(value: object) -> Optional[str]:
    # bool is an int subclass; a JSON true/false is never a valid id.
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, str)):
        text = str(value).strip()
        return text or None
    return None


def parse_result_payload(payload: object) -> ResultTable:
    """Turn a ``query_result`` object into a ResultTable.

    Columns keep their declared order; each row is projected onto the column
    names so that every row has exactly ``len(headers)`` cells.
    """
    if not isinstance(payload, dict):
        raise InvalidResponse("Invalid response: query_result is not an object")
    data = payload.get("data")
    if not isinstance(data, dict):
        raise InvalidResponse("Invalid response: query_result has no data")
    columns = data.get("columns")
    rows = data.get("rows")
    if not isinstance(columns, list) or not isinstance(rows, list):
        raise InvalidResponse("Invalid response: data must carry columns and rows lists")
    headers: List[str] = []
    for column in columns:
        if not isinstance(column, dict):
            raise InvalidResponse("Invalid response: column entry is not an object")
        name = column.get("name")
        if isinstance(name, str):
            headers.append(name)
    table_rows: List[List[str]] = []
    for row in rows:
        if not isinstance(row, dict):
            raise InvalidResponse("Invalid response: row entry is not an object")
        table_rows.append([render_value(row.get(name)) for name in headers])
    return ResultTable(headers=headers, rows=table_rows)


class RedashClient:
    def __init__(
        self,
        endpoint: str,
        api_key: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        query_timeout_seconds: float = DEFAULT_QUERY_TIMEOUT_SECONDS,
        poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
    ) -> None:
        self.endpoint = endpoint.strip().rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.query_timeout_seconds = query_timeout_seconds
        self.poll_interval_seconds = max(0.0, poll_interval_seconds)
        self.session = requests.Session()
        # One pooled connection per concurrent segment worker.
        adapter = HTTPAdapter(pool_connections=MAX_CONCURRENCY, pool_maxsize=MAX_CONCURRENCY)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)
        self.session.headers.update(
            {
                "Authorization": f"Key {api_key}",
                "Accept": "application/json",
            }
        )

    def _url(self, path: str) -> str:
        return f"{self.endpoint}/api/{path.lstrip('/')}"

    def _request(self, method: str, path: str, **kwargs: Any) -> Tuple[int, str]:
        url = self._url(path)
        logger.debug("%s %s", method, url)
        try:
            response = self.session.request(method, url, timeout=self.timeout_seconds, **kwargs)
        except requests.RequestException as exc:
            raise TransportError(f"{method} {url} failed: {exc}") from exc
        with response:
            return response.status_code, response.text

    @staticmethod
    def _decode(body: str) -> Dict[str, Any]:
        try:
            payload = json.loads(body)
        except ValueError as exc:
            raise InvalidResponse("Invalid response: body is not JSON") from exc
        if not isinstance(payload, dict):
            raise InvalidResponse("Invalid response: body is not a JSON object")
        return payload

    def submit(self, request: QueryRequest) -> Submission:
        status, body = self._request(
            "POST",
            f"queries/{request.query_id}/results",
            json={"parameters": dict(request.parameters), "max_age": request.max_age},
        )
        if status >= 400:
            raise HttpError(status, body)
        payload = self._decode(body)
        message = payload.get("message")
        if isinstance(message, str):
            raise ApiMessage(message)
        if "query_result" in payload:
            logger.debug("Query %s answered from cache", request.query_id)
            return ImmediateResult(parse_result_payload(payload["query_result"]))
        job = payload.get("job")
        if not isinstance(job, dict):
            raise InvalidResponse("Invalid response: missing job")
        job_id = _coerce_identifier(job.get("id"))
        if job_id is None:
            raise InvalidResponse("Invalid response: job has no id")
        logger.info("Submitted query %s as job %s", request.query_id, job_id)
        return PendingJob(JobHandle(job_id=job_id, query_id=request.query_id))

    def wait_for_job(
        self,
        handle: JobHandle,
        cancelled: Optional[Callable[[], bool]] = None,
    ) -> ResultTable:
        started = time.monotonic()
        while True:
            if time.monotonic() - started > self.query_timeout_seconds:
                raise QueryTimeout(
                    f"Query wait time exceeded {int(self.query_timeout_seconds)} seconds"
                )
            if cancelled is not None and cancelled():
                raise QueryAborted(f"Stopped waiting for job {handle.job_id}")
            status, body = self._request("GET", f"jobs/{handle.job_id}")
            if status == GATEWAY_UNAVAILABLE:
                logger.warning("Job %s poll returned 502; treating as empty result", handle.job_id)
                return ResultTable()
            if status >= 400:
                raise HttpError(status, body)
            job = self._decode(body).get("job")
            if not isinstance(job, dict):
                raise InvalidResponse("Invalid response: missing job")
            try:
                job_status = JobStatus(job.get("status"))
            except ValueError as exc:
                raise InvalidResponse(f"Invalid response: unknown job status {job.get('status')!r}") from exc

            if job_status in (JobStatus.PENDING, JobStatus.STARTED):
                logger.debug("Job %s is %s", handle.job_id, job_status.name.lower())
                time.sleep(self.poll_interval_seconds)
                continue
            if job_status is JobStatus.FAILURE:
                raise JobFailed(job.get("error") or "Query failed")
            if job_status is JobStatus.CANCELLED:
                raise JobFailed(job.get("error") or "Query cancelled")

            result_id = _coerce_identifier(job.get("query_result_id"))
            if result_id is None:
                raise InvalidResponse("Invalid response: job has no query_result_id")
            return self.fetch_result(result_id)

    def fetch_result(self, result_id: str) -> ResultTable:
        status, body = self._request("GET", f"query_results/{result_id}")
        if status == GATEWAY_UNAVAILABLE:
            raise HttpError(status, "Gateway error (502)")
        if status >= 400:
            raise HttpError(status, body)
        return parse_result_payload(self._decode(body).get("query_result"))

    def execute(
        self,
        request: QueryRequest,
        cancelled: Optional[Callable[[], bool]] = None,
    ) -> ResultTable:
        submission = self.submit(request)
        if isinstance(submission, ImmediateResult):
            return submission.table
        return self.wait_for_job(submission.handle, cancelled=cancelled)

    def query(
        self,
        query_id: int,
        params: Optional[Mapping[str, str]] = None,
        max_age: int = 0,
    ) -> ResultTable:
        return self.execute(QueryRequest(query_id=query_id, parameters=dict(params or {}), max_age=max_age))

    def close(self) -> None:
        self.session.close()
