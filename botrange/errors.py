"""Error taxonomy shared by the aggregation engine."""

from __future__ import annotations

import errno

import httpx

# errno values treated as transient socket faults
TRANSIENT_ERRNOS = frozenset(
    {
        errno.ECONNRESET,
        errno.ETIMEDOUT,
        errno.ECONNABORTED,
        errno.ECONNREFUSED,
        errno.ENETUNREACH,
        errno.EHOSTUNREACH,
        errno.EPIPE,
    }
)


class BotRangeError(Exception):
    """Base class for every error raised by botrange."""


class ConfigValidationError(BotRangeError):
    """Malformed configuration; aborts startup."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class SecurityError(BotRangeError):
    """Configuration that would make the engine reach somewhere it must not."""


class NetworkError(BotRangeError):
    """Connection, DNS or transport fault."""

    def __init__(self, message: str, original: BaseException | None = None) -> None:
        super().__init__(message)
        self.original = original
        self.code = getattr(original, "errno", None)


class FetchTimeoutError(NetworkError):
    """An outbound operation exceeded its deadline."""

    def __init__(
        self, message: str, timeout: float | None = None, original: BaseException | None = None
    ) -> None:
        super().__init__(message, original)
        self.timeout = timeout


class UpstreamStatusError(BotRangeError):
    """Upstream answered with a non-success HTTP status."""

    def __init__(self, status_code: int, url: str) -> None:
        super().__init__(f"Unexpected status {status_code} from {url}")
        self.status_code = status_code
        self.url = url


class RateLimitedError(UpstreamStatusError):
    """Upstream answered 429 Too Many Requests."""


class SourceParseError(BotRangeError):
    """A source payload lacks the structure its shape promises."""


def is_transient_network_error(error: BaseException) -> bool:
    """True for connection-level faults that warrant self-throttling."""

    if isinstance(error, NetworkError):
        return True
    if isinstance(error, (httpx.TransportError, TimeoutError)):
        return True
    if isinstance(error, OSError) and error.errno in TRANSIENT_ERRNOS:
        return True
    return False


def is_retryable_error(error: BaseException) -> bool:
    """Classify failures the generic retry policy may re-attempt.

    Network faults, timeouts and upstream 5xx answers are retryable. Client
    errors (4xx), parse failures and configuration problems are fatal.
    """

    if isinstance(error, UpstreamStatusError):
        return 500 <= error.status_code < 600
    return is_transient_network_error(error)


def is_rate_limited(error: BaseException) -> bool:
    return isinstance(error, RateLimitedError)


__all__ = [
    "BotRangeError",
    "ConfigValidationError",
    "FetchTimeoutError",
    "NetworkError",
    "RateLimitedError",
    "SecurityError",
    "SourceParseError",
    "UpstreamStatusError",
    "is_rate_limited",
    "is_retryable_error",
    "is_transient_network_error",
]
