"""HTTP transport for the source adapters.

Wraps httpx and maps transport failures and upstream status codes onto the
error taxonomy in :mod:`leadscout.errors`.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from leadscout.errors import (
    EnrichmentError,
    FetchError,
    NotFoundError,
    RateLimitedError,
    TransientError,
    UnauthorizedError,
)

log = logging.getLogger(__name__)

_USER_AGENT = "Mozilla/5.0 (compatible; LeadScout/1.0; +https://leadscout.local)"
_TIMEOUT = 10.0

GITHUB_API = "https://api.github.com"


@dataclass
class Page:
    """A fetched HTML page with lower-cased response headers."""
    url: str
    html: str
    headers: dict[str, str] = field(default_factory=dict)
    status_code: int = 200


def error_for_status(status: int, headers: httpx.Headers | dict[str, str], what: str) -> EnrichmentError | None:
    """Map an HTTP status to an :class:`EnrichmentError`, or ``None`` if OK."""
    if status < 400:
        return None
    if status == 401:
        return UnauthorizedError(f"{what}: unauthorized (401)")
    if status == 429 or (status == 403 and str(headers.get("x-ratelimit-remaining", "")) == "0"):
        return RateLimitedError(f"{what}: rate limit exceeded ({status})")
    if status == 403:
        return UnauthorizedError(f"{what}: forbidden (403)")
    if status in (404, 410):
        return NotFoundError(f"{what}: not found ({status})")
    if status >= 500:
        return TransientError(f"{what}: upstream error ({status})")
    return EnrichmentError(f"{what}: HTTP {status}", retryable=False)


class PageFetcher:
    """Fetch a page once and return its HTML and headers."""

    def __init__(
        self,
        timeout: float = _TIMEOUT,
        user_agent: str = _USER_AGENT,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = timeout
        self.user_agent = user_agent
        self._transport = transport

    async def fetch(self, url: str) -> Page:
        async with httpx.AsyncClient(
            follow_redirects=True,
            timeout=httpx.Timeout(self.timeout),
            headers={"User-Agent": self.user_agent},
            transport=self._transport,
        ) as client:
            try:
                resp = await client.get(url)
            except httpx.TimeoutException as exc:
                raise FetchError(f"Timed out fetching {url}") from exc
            except httpx.HTTPError as exc:
                raise FetchError(f"Failed to fetch {url}: {exc}") from exc
        err = error_for_status(resp.status_code, resp.headers, url)
        if err is not None:
            raise err
        return Page(
            url=str(resp.url),
            html=resp.text,
            headers={k.lower(): v for k, v in resp.headers.items()},
            status_code=resp.status_code,
        )


class GitHubClient:
    """Minimal async client for the GitHub REST API."""

    def __init__(
        self,
        token: str = "",
        timeout: float = _TIMEOUT,
        base_url: str = GITHUB_API,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._headers: dict[str, str] = {
            "Accept": "application/vnd.github+json",
            "User-Agent": _USER_AGENT,
        }
        if token:
            self._headers["Authorization"] = f"Bearer {token}"

    async def get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            headers=self._headers,
            transport=self._transport,
        ) as client:
            try:
                resp = await client.get(f"{self.base_url}{path}", params=params)
            except httpx.TimeoutException as exc:
                raise TransientError(f"GitHub request timed out: {path}") from exc
            except httpx.HTTPError as exc:
                raise TransientError(f"GitHub request failed for {path}: {exc}") from exc
        err = error_for_status(resp.status_code, resp.headers, f"GitHub {path}")
        if err is not None:
            raise err
        try:
            return resp.json()
        except ValueError as exc:
            raise TransientError(f"GitHub returned invalid JSON for {path}") from exc
