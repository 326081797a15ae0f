"""domharvest - structured data harvesting from rendered web pages."""

__version__ = "0.1.0"

from .core.errors import (
    ErrorKind,
    ExtractionError,
    HarvestError,
    HarvestTimeoutError,
    NavigationError,
)
from .core.config import HarvesterConfig, RateLimitConfig, get_config
from .harvester import Harvester, harvest
from .types.options import BatchItem, HarvestOptions, ScreenshotOptions, WaitForSelectorOptions
from .types.results import BatchSummary, HarvestRecord, summarize
from .types.schema import (
    array,
    attr,
    count,
    custom,
    exists,
    html,
    obj,
    schema_from_dict,
    text,
)

__all__ = [
    "__version__",
    # Engine
    "Harvester",
    "harvest",
    "HarvesterConfig",
    "RateLimitConfig",
    "get_config",
    # Errors
    "ErrorKind",
    "HarvestError",
    "HarvestTimeoutError",
    "NavigationError",
    "ExtractionError",
    # Schema DSL
    "text",
    "attr",
    "html",
    "exists",
    "count",
    "array",
    "obj",
    "custom",
    "schema_from_dict",
    # Options and results
    "HarvestOptions",
    "WaitForSelectorOptions",
    "ScreenshotOptions",
    "BatchItem",
    "HarvestRecord",
    "BatchSummary",
    "summarize",
]
