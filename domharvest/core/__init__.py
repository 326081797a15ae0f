"""Core infrastructure for domharvest."""

from .config import (
    HarvesterConfig,
    LimitSpec,
    RateLimitConfig,
    get_config,
)
from .errors import (
    ErrorKind,
    ErrorReporter,
    ExtractionError,
    HarvestError,
    HarvestTimeoutError,
    NavigationError,
    classify_error,
)
from .logging_setup import configure_logging

__all__ = [
    # Config
    "get_config",
    "HarvesterConfig",
    "LimitSpec",
    "RateLimitConfig",
    # Errors
    "ErrorKind",
    "ErrorReporter",
    "HarvestError",
    "HarvestTimeoutError",
    "NavigationError",
    "ExtractionError",
    "classify_error",
    # Logging
    "configure_logging",
]
