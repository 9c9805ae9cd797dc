"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository, parse_sources
from .models import (
    BrowserSettings,
    EngineConfig,
    LimiterSettings,
    RetrySettings,
    RoutingSettings,
    SourceDescriptor,
    SourceShape,
    WhoisSettings,
)

__all__ = [
    "BrowserSettings",
    "ConfigLocator",
    "ConfigRepository",
    "EngineConfig",
    "LimiterSettings",
    "RetrySettings",
    "RoutingSettings",
    "SourceDescriptor",
    "SourceShape",
    "WhoisSettings",
    "parse_sources",
]
