"""Shared fixtures: a fake requests session that speaks the Redash job protocol."""

import json
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from redash_dl.client import RedashClient

ENDPOINT = "https://redash.example.com"

Handler = Callable[[str, str, Optional[Dict[str, Any]]], Tuple[int, Any]]


class FakeResponse:
    def __init__(self, status_code: int, payload: Any) -> None:
        self.status_code = status_code
        self.text = payload if isinstance(payload, str) else json.dumps(payload)

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc_info: object) -> None:
        return None


class FakeSession:
    """Routes requests to ``handler(method, path, json_body)``.

    ``path`` is the URL with the ``{ENDPOINT}/api/`` prefix removed.
    """

    def __init__(self, handler: Handler) -> None:
        self.handler = handler
        self.calls: List[Tuple[str, str, Optional[Dict[str, Any]]]] = []
        self.headers: Dict[str, str] = {}
        self.closed = False
        self._lock = threading.Lock()

    def request(self, method: str, url: str, timeout: float = 0, **kwargs: Any) -> FakeResponse:
        prefix = f"{ENDPOINT}/api/"
        assert url.startswith(prefix), url
        path = url[len(prefix) :]
        body = kwargs.get("json")
        with self._lock:
            self.calls.append((method, path, body))
        status, payload = self.handler(method, path, body)
        return FakeResponse(status, payload)

    def close(self) -> None:
        self.closed = True

    def paths(self, method: Optional[str] = None) -> List[str]:
        return [path for m, path, _ in self.calls if method is None or m == method]


def result_payload(headers: List[str], rows: List[List[Any]]) -> Dict[str, Any]:
    return {
        "query_result": {
            "data": {
                "columns": [{"name": name, "type": "string"} for name in headers],
                "rows": [dict(zip(headers, row)) for row in rows],
            }
        }
    }


def job_payload(status: int, **fields: Any) -> Dict[str, Any]:
    job = {"id": "job-1", "status": status}
    job.update(fields)
    return {"job": job}


def make_client(handler: Handler, **kwargs: Any) -> Tuple[RedashClient, FakeSession]:
    kwargs.setdefault("poll_interval_seconds", 0)
    client = RedashClient(ENDPOINT, "secret-key", **kwargs)
    session = FakeSession(handler)
    client.session = session  # type: ignore[assignment]
    return client, session


class PagedServer:
    """Serves ``rows_per_page[i]`` rows for the page at ``offset_rows = i * limit``.

    Every submission goes through one poll and one fetch. ``delays`` holds
    per-page sleeps applied while polling, to shuffle completion order.
    ``failures`` maps a page index to the error text its job reports.
    """

    def __init__(
        self,
        limit: int,
        rows_per_page: List[int],
        delays: Optional[Dict[int, float]] = None,
        failures: Optional[Dict[int, str]] = None,
    ) -> None:
        self.limit = limit
        self.rows_per_page = rows_per_page
        self.delays = delays or {}
        self.failures = failures or {}
        self.submitted: List[int] = []
        self._lock = threading.Lock()

    def page_rows(self, page: int) -> List[List[Any]]:
        count = self.rows_per_page[page] if page < len(self.rows_per_page) else 0
        return [[f"p{page}r{i}", page * self.limit + i] for i in range(count)]

    def __call__(self, method: str, path: str, body: Optional[Dict[str, Any]]) -> Tuple[int, Any]:
        if method == "POST":
            page = int(body["parameters"]["offset_rows"]) // self.limit
            with self._lock:
                self.submitted.append(page)
            return 200, {"job": {"id": f"job-{page}", "status": 1}}
        if path.startswith("jobs/"):
            page = int(path.split("-")[-1])
            if page in self.delays:
                time.sleep(self.delays[page])
            if page in self.failures:
                return 200, {"job": {"id": f"job-{page}", "status": 4, "error": self.failures[page]}}
            return 200, {"job": {"id": f"job-{page}", "status": 3, "query_result_id": page}}
        if path.startswith("query_results/"):
            page = int(path.split("/")[-1])
            return 200, result_payload(["name", "row"], self.page_rows(page))
        return 404, "not found"


@pytest.fixture
def cache_dir(tmp_path, monkeypatch):
    directory = tmp_path / "cache"
    monkeypatch.setenv("REDASH_DL_CACHE_DIR", str(directory))
    monkeypatch.delenv("REDASH_ENDPOINT", raising=False)
    monkeypatch.delenv("REDASH_API_KEY", raising=False)
    return directory
