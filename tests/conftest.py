"""Shared fixtures: zero-delay engine settings, descriptor builders, mock HTTP."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Iterable

import httpx
import pytest

from botrange.config import (
    ConfigLocator,
    ConfigRepository,
    EngineConfig,
    LimiterSettings,
    RetrySettings,
    RoutingSettings,
    SourceDescriptor,
    WhoisSettings,
)
from botrange.engine import ConcurrencyLimiter, Fetcher, RetryPolicy

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture
def engine_config(tmp_path: Path) -> EngineConfig:
    custom_dir = tmp_path / "custom"
    custom_dir.mkdir()
    return EngineConfig(
        request_timeout=5.0,
        source_concurrency=4,
        limiter=LimiterSettings(max_concurrent=4, spacing_seconds=0),
        retry=RetrySettings(retries=1, base_delay=0, backoff_multiplier=1),
        routing=RoutingSettings(
            initial_delay_range=(0, 0),
            subsequent_delay_range=(0, 0),
            rate_limit_base_delay=0,
        ),
        whois=WhoisSettings(hosts=[], timeout=2.0),
        custom_dir=custom_dir,
    )


@pytest.fixture
def make_descriptor() -> Callable[..., SourceDescriptor]:
    def _builder(**overrides: Any) -> SourceDescriptor:
        base: dict[str, Any] = {
            "name": "Example Bot",
            "id": "example",
            "type": "text",
            "url": "https://example.com/ips.txt",
        }
        base.update(overrides)
        return SourceDescriptor.model_validate(base)

    return _builder


@pytest.fixture
def make_fetcher(engine_config: EngineConfig) -> Callable[..., Fetcher]:
    """Build a fetcher whose client answers from ``handler``."""

    def _builder(handler: Handler, **policy: Any) -> Fetcher:
        limiter = ConcurrencyLimiter(max_concurrent=4, spacing=0)
        retry_policy = RetryPolicy(
            retries=policy.get("retries", engine_config.retry.retries),
            base_delay=0,
            backoff_multiplier=1,
        )
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return Fetcher(engine_config, limiter, retry_policy, client=client)

    return _builder


def _route_table(routes: dict[str, Any]) -> Handler:
    def handler(request: httpx.Request) -> httpx.Response:
        body = routes.get(str(request.url))
        if body is None:
            return httpx.Response(404, text="not found")
        if isinstance(body, int):
            return httpx.Response(body, text="status")
        if isinstance(body, (dict, list)):
            return httpx.Response(200, json=body)
        return httpx.Response(200, text=body)

    return handler


@pytest.fixture
def route_table() -> Callable[[dict[str, Any]], Handler]:
    """Handler factory mapping URL -> body (text, JSON payload or a bare status code)."""

    return _route_table


@pytest.fixture
def temp_config_repository(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> Iterable[ConfigRepository]:
    monkeypatch.delenv("BOTRANGE_HOME", raising=False)
    locator = ConfigLocator(project_root=tmp_path)
    yield ConfigRepository(locator)
