"""Aggregate IP ranges of known-good automated clients."""

from .config import EngineConfig, SourceDescriptor, SourceShape
from .orchestrator import Dispatcher, RunReport, run_sources

__version__ = "0.3.0"

__all__ = [
    "Dispatcher",
    "EngineConfig",
    "RunReport",
    "SourceDescriptor",
    "SourceShape",
    "__version__",
    "run_sources",
]
