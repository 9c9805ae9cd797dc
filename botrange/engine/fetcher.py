"""HTTP fetching routed through the concurrency limiter and retry policy."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Dict

import httpx
import structlog

from ..config import BrowserSettings, EngineConfig
from ..config.models import validate_url
from ..errors import (
    FetchTimeoutError,
    NetworkError,
    RateLimitedError,
    SourceParseError,
    UpstreamStatusError,
)
from .limiter import ConcurrencyLimiter
from .retry import RetryPolicy


@dataclass(slots=True)
class FetchResponse:
    """Standardised response wrapper."""

    url: str
    status_code: int
    text: str
    headers: Dict[str, str]
    raw: httpx.Response | None = field(repr=False, default=None)

    def json(self) -> Any:
        try:
            return json.loads(self.text)
        except json.JSONDecodeError as exc:
            raise SourceParseError(f"Invalid JSON payload from {self.url}") from exc


class Fetcher:
    """Issue GET requests, each attempt gated by the limiter.

    The retry policy wraps the limiter, so every re-attempt queues again and
    a transient failure widens the limiter's spacing before the next dispatch.
    """

    def __init__(
        self,
        config: EngineConfig,
        limiter: ConcurrencyLimiter,
        retry_policy: RetryPolicy,
        client: httpx.AsyncClient | None = None,
        logger: structlog.BoundLogger | None = None,
    ) -> None:
        self.config = config
        self.limiter = limiter
        self.retry_policy = retry_policy
        self.logger = logger or structlog.get_logger("botrange.fetcher")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            follow_redirects=True,
            timeout=config.request_timeout,
            headers={
                "User-Agent": config.user_agent,
                "Accept": "application/json, text/plain, */*",
                "Cache-Control": "no-cache",
            },
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "Fetcher":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    async def get(
        self, url: str, *, headers: dict[str, str] | None = None, retry_policy: RetryPolicy | None = None
    ) -> FetchResponse:
        validate_url(url)
        policy = retry_policy or self.retry_policy
        return await policy.run(
            lambda: self.limiter.execute(lambda: self._request(url, headers)),
            label=url,
        )

    async def get_text(self, url: str) -> str:
        response = await self.get(url)
        return response.text

    async def get_json(self, url: str, *, retry_policy: RetryPolicy | None = None) -> Any:
        response = await self.get(
            url, headers={"Accept": "application/json"}, retry_policy=retry_policy
        )
        return response.json()

    async def _request(self, url: str, headers: dict[str, str] | None) -> FetchResponse:
        timeout = self.config.request_timeout
        try:
            response = await self._client.get(url, headers=headers, timeout=timeout)
        except httpx.TimeoutException as exc:
            self.logger.warning("fetch_timeout", url=url, timeout=timeout)
            raise FetchTimeoutError(f"Timed out after {timeout}s: {url}", timeout, exc) from exc
        except httpx.TransportError as exc:
            self.logger.warning("fetch_error", url=url, error=str(exc))
            raise NetworkError(f"Request failed: {url}: {exc}", exc) from exc
        if response.status_code == 429:
            raise RateLimitedError(response.status_code, url)
        if self._is_failure(response):
            raise UpstreamStatusError(response.status_code, url)
        return FetchResponse(
            url=str(response.url),
            status_code=response.status_code,
            text=response.text,
            headers=dict(response.headers),
            raw=response,
        )

    @staticmethod
    def _is_failure(response: Any) -> bool:
        status_code = getattr(response, "status_code", 0)
        return status_code >= 400


class BrowserRenderer:
    """Render pages with Playwright for sources that expose no API."""

    def __init__(self, settings: BrowserSettings, user_agent: str | None = None) -> None:
        self.settings = settings
        self._user_agent = user_agent
        self._lock = asyncio.Lock()
        self._playwright = None
        self._browser = None

    async def _ensure_started(self) -> None:
        if self._playwright is not None:
            return
        try:
            from playwright.async_api import async_playwright
        except ImportError as exc:  # pragma: no cover
            raise RuntimeError(
                "Page scraping requires installing the 'playwright' package."
            ) from exc
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(headless=self.settings.headless)

    async def render(self, url: str) -> str:
        """Return the rendered HTML of ``url``."""

        validate_url(url)
        timeout_ms = int(self.settings.timeout * 1000)
        async with self._lock:
            await self._ensure_started()
            width, height = self.settings.viewport_size
            context = await self._browser.new_context(
                user_agent=self._user_agent,
                viewport={"width": width, "height": height},
            )
            try:
                page = await context.new_page()
                await page.goto(url, wait_until="networkidle", timeout=timeout_ms)
                return await page.content()
            finally:
                await context.close()

    async def aclose(self) -> None:
        async with self._lock:
            if self._browser is not None:
                await self._browser.close()
                self._browser = None
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None


__all__ = ["BrowserRenderer", "FetchResponse", "Fetcher"]
