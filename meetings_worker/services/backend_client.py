from __future__ import annotations

import asyncio
import http.client
import json
import ssl
from collections.abc import Mapping
from typing import Any, Dict, List, Optional
from urllib import error, parse, request

from .coerce import ensure_array

USER_AGENT = "meetings-worker/0.3 python-urllib"


class BackendError(RuntimeError):
    """Transport, HTTP status or decoding failure talking to a backend."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


def _ssl_context(no_verify: bool) -> ssl.SSLContext:
    if no_verify:
        return ssl._create_unverified_context()  # type: ignore[attr-defined]
    return ssl.create_default_context()


def _error_message(code: int, payload: str) -> str:
    try:
        body = json.loads(payload)
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return f"HTTP {code}: {payload}"


def _http_json(
    method: str,
    url: str,
    headers: Dict[str, str],
    data: Optional[Dict[str, Any]] = None,
    timeout: float = 30,
    no_verify: bool = False,
) -> Any:
    body = json.dumps(data).encode("utf-8") if data is not None else None
    hdrs = {"User-Agent": USER_AGENT, "Accept": "application/json", **headers}
    if body is not None:
        hdrs.setdefault("Content-Type", "application/json")
    try:
        req = request.Request(url, data=body, headers=hdrs, method=method)
    except ValueError as e:
        raise BackendError(f"bad backend URL {url!r}: {e}") from e
    try:
        with request.urlopen(req, context=_ssl_context(no_verify), timeout=timeout) as resp:
            raw = resp.read()
    except error.HTTPError as e:
        try:
            payload = e.read().decode("utf-8")
        except Exception:
            payload = str(e)
        raise BackendError(_error_message(e.code, payload), status=e.code) from e
    except (error.URLError, http.client.HTTPException, OSError, ValueError) as e:
        raise BackendError(f"request to {url} failed: {e!r}") from e
    try:
        return json.loads(raw.decode("utf-8")) if raw else None
    except ValueError as e:
        raise BackendError(f"invalid JSON from {url}: {e}") from e


def with_query(url: str, **params: str) -> str:
    """Add or replace query parameters on ``url``."""
    parts = parse.urlsplit(url)
    query = [(k, v) for k, v in parse.parse_qsl(parts.query, keep_blank_values=True) if k not in params]
    query.extend(params.items())
    return parse.urlunsplit(parts._replace(query=parse.urlencode(query)))


class BackendClient:
    """Async facade over the aggregation job endpoints and proxy sources."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 30,
        start_path: str = "/engagement-summary",
        status_path: str = "/engagement-status",
        no_verify: bool = False,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.start_path = start_path
        self.status_path = status_path
        self.no_verify = no_verify

    def _headers(self) -> Dict[str, str]:
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}

    def _call(self, method: str, url: str, data: Optional[Dict[str, Any]] = None) -> Any:
        return _http_json(method, url, self._headers(), data, timeout=self.timeout, no_verify=self.no_verify)

    async def start(self, domain: str) -> Any:
        url = self.base_url + self.start_path
        return await asyncio.to_thread(self._call, "POST", url, {"domain": domain})

    async def status(self, domain: str, run_id: str) -> Any:
        query = parse.urlencode({"domain": domain, "run_id": run_id})
        url = f"{self.base_url}{self.status_path}?{query}"
        return await asyncio.to_thread(self._call, "GET", url)

    def fetch_json(self, url: str) -> Any:
        return self._call("GET", url)

    def fetch_pages(self, url: str) -> List[Any]:
        """GET every page of a proxy source, following ``nextPageToken``.

        Each page's records are unwrapped with ``ensure_array``; the token is
        sent back as ``pageToken`` until the proxy stops returning one.
        """
        records: List[Any] = []
        seen = set()
        token: Optional[str] = None
        while True:
            page = self.fetch_json(with_query(url, pageToken=token) if token else url)
            records.extend(ensure_array(page))
            token = page.get("nextPageToken") if isinstance(page, Mapping) else None
            if not token:
                return records
            token = str(token)
            if token in seen:
                raise BackendError(f"pagination loop at {url}: token {token!r} repeated")
            seen.add(token)
