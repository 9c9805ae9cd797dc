"""Pydantic models describing sources and engine settings."""

from __future__ import annotations

import re
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Any, Literal
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..errors import SecurityError

_ASN_PATTERN = re.compile(r"^(?:AS)?(\d{1,10})$", re.IGNORECASE)


class SourceShape(str, Enum):
    """Adapter selector for a source descriptor."""

    TEXT = "text"
    TEXT_MULTI = "text_multi"
    JSON_PREFIXES = "json_prefixes"
    JSON_IPS = "json_ips"
    JSON_ADDRESSES = "json_addresses"
    MD_LIST = "md_list"
    WHOIS = "whois"
    FILE = "file"
    SCRAPE = "scrape"


SINGLE_URL_SHAPES = frozenset(
    {
        SourceShape.TEXT,
        SourceShape.JSON_PREFIXES,
        SourceShape.JSON_IPS,
        SourceShape.JSON_ADDRESSES,
        SourceShape.MD_LIST,
        SourceShape.SCRAPE,
    }
)


def validate_url(url: str) -> str:
    """Reject anything that is not an absolute http(s) URL."""

    if not isinstance(url, str) or not url:
        raise SecurityError(f"Invalid URL: {url!r}")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise SecurityError(f"Invalid URL: {url}")
    return url


def validate_local_file(name: str) -> str:
    path = PurePosixPath(name.replace("\\", "/"))
    if not name or path.is_absolute() or ".." in path.parts:
        raise SecurityError(f"Local file must stay inside the custom directory: {name}")
    return path.as_posix()


class SourceDescriptor(BaseModel):
    """Immutable description of one address source."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    name: str
    id: str
    shape: SourceShape = Field(alias="type")
    url: str | list[str] | None = None
    asn: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    accept_ambiguous: bool = False
    # WHOIS routes skip keyword filtering unless this is set
    whois_keyword_filter: bool = False
    file: str | None = None
    extra_files: list[str] = Field(default_factory=list)
    selector: str = "span"

    @field_validator("name", "id")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value.strip()

    @field_validator("url")
    @classmethod
    def _check_urls(cls, value: Any) -> Any:
        if value is None:
            return value
        if isinstance(value, list):
            return [validate_url(item) for item in value]
        return validate_url(value)

    @field_validator("asn", mode="before")
    @classmethod
    def _coerce_asn(cls, value: Any) -> list[str]:
        if value in (None, ""):
            return []
        items = value if isinstance(value, (list, tuple)) else [value]
        normalised: list[str] = []
        for item in items:
            match = _ASN_PATTERN.match(str(item).strip())
            if not match:
                raise ValueError(f"Invalid ASN: {item}")
            normalised.append(f"AS{int(match.group(1))}")
        return normalised

    @field_validator("keywords", mode="before")
    @classmethod
    def _coerce_keywords(cls, value: Any) -> list[str]:
        if value in (None, ""):
            return []
        if isinstance(value, str):
            value = [value]
        return [str(item).strip().lower() for item in value if str(item).strip()]

    @field_validator("file")
    @classmethod
    def _check_file(cls, value: str | None) -> str | None:
        return validate_local_file(value) if value is not None else None

    @field_validator("extra_files")
    @classmethod
    def _check_extra_files(cls, value: list[str]) -> list[str]:
        return [validate_local_file(item) for item in value]

    @model_validator(mode="after")
    def _validate_shape(self) -> "SourceDescriptor":
        shape = self.shape
        has_url = bool(self.endpoints)
        if shape in SINGLE_URL_SHAPES:
            if not isinstance(self.url, str):
                raise ValueError(f"Shape '{shape.value}' requires a single url")
        elif shape is SourceShape.TEXT_MULTI:
            if not isinstance(self.url, list) or not self.url:
                raise ValueError("Shape 'text_multi' requires a non-empty url list")
        elif shape is SourceShape.WHOIS:
            if not self.asn:
                raise ValueError(f"Missing ASN for {self.name}")
            if has_url:
                raise ValueError("Shape 'whois' does not accept url")
        elif shape is SourceShape.FILE:
            if not self.file:
                raise ValueError(f"Missing file for {self.name}")
            if has_url:
                raise ValueError("Shape 'file' does not accept url")
        if self.asn and shape is not SourceShape.WHOIS:
            raise ValueError("asn is only valid for shape 'whois'")
        if self.file and shape is not SourceShape.FILE:
            raise ValueError("file is only valid for shape 'file'")
        return self

    @property
    def endpoints(self) -> list[str]:
        if self.url is None:
            return []
        if isinstance(self.url, str):
            return [self.url]
        return list(self.url)


class LimiterSettings(BaseModel):
    max_concurrent: int = 3
    spacing_seconds: float = 1.0

    @model_validator(mode="after")
    def _validate(self) -> "LimiterSettings":
        if self.max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        if self.spacing_seconds < 0:
            raise ValueError("spacing_seconds must be >= 0")
        return self


class RetrySettings(BaseModel):
    retries: int = 2
    base_delay: float = 1.0
    backoff_multiplier: float = 2.0

    @model_validator(mode="after")
    def _validate(self) -> "RetrySettings":
        if self.retries < 0 or self.base_delay < 0 or self.backoff_multiplier < 1:
            raise ValueError("retries/base_delay must be >= 0 and backoff_multiplier >= 1")
        return self


class WhoisSettings(BaseModel):
    """Registry-query protocol endpoints and safety bounds."""

    hosts: list[str] = Field(default_factory=lambda: ["whois.radb.net", "whois.arin.net"])
    port: int = 43
    timeout: float = 30.0
    max_response_bytes: int = 8 * 1024 * 1024


class RoutingSettings(BaseModel):
    """REST routing-data service pacing and 429 backoff."""

    providers: list[Literal["ripestat", "bgpview"]] = Field(default_factory=lambda: ["ripestat"])
    initial_delay_range: tuple[float, float] = (5.0, 10.0)
    subsequent_delay_range: tuple[float, float] = (3.0, 5.0)
    rate_limit_retries: int = 3
    rate_limit_base_delay: float = 10.0

    @field_validator("initial_delay_range", "subsequent_delay_range", mode="before")
    @classmethod
    def _coerce_delay(cls, value: Any) -> tuple[float, float]:
        if value in (None, ""):
            return (0.0, 0.0)
        if isinstance(value, (int, float)):
            return (float(value), float(value))
        if isinstance(value, (list, tuple)) and len(value) == 2:
            low, high = float(value[0]), float(value[1])
            if low < 0 or high < 0:
                raise ValueError("Delay range values must be non-negative")
            if high < low:
                raise ValueError("Delay range upper bound must be >= lower bound")
            return (low, high)
        raise ValueError("Delay range expects a two-item list or tuple")


class BrowserSettings(BaseModel):
    headless: bool = True
    timeout: float = 30.0
    viewport_size: tuple[int, int] = (1920, 1080)


class EngineConfig(BaseModel):
    """Global controls shared across sources."""

    user_agent: str = "Mozilla/5.0 (compatible; botrange/0.3; known-good bot IP ranges)"
    request_timeout: float = 60.0
    source_concurrency: int = 4
    limiter: LimiterSettings = Field(default_factory=LimiterSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    whois: WhoisSettings = Field(default_factory=WhoisSettings)
    routing: RoutingSettings = Field(default_factory=RoutingSettings)
    browser: BrowserSettings = Field(default_factory=BrowserSettings)
    custom_dir: Path = Field(default=Path("custom"))
    local_origin_base: str = "custom"
    exclude_private: bool = True

    @field_validator("custom_dir", mode="before")
    @classmethod
    def _coerce_dir(cls, value: Any) -> Path:
        return Path(value)

    @model_validator(mode="after")
    def _validate(self) -> "EngineConfig":
        if self.source_concurrency < 1:
            raise ValueError("source_concurrency must be >= 1")
        if self.request_timeout <= 0:
            raise ValueError("request_timeout must be > 0")
        return self


__all__ = [
    "BrowserSettings",
    "EngineConfig",
    "LimiterSettings",
    "RetrySettings",
    "RoutingSettings",
    "SINGLE_URL_SHAPES",
    "SourceDescriptor",
    "SourceShape",
    "WhoisSettings",
    "validate_local_file",
    "validate_url",
]
