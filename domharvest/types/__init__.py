"""Schema, option and result types."""

from .options import (
    BatchItem,
    HarvestOptions,
    ScreenshotOptions,
    WaitForSelectorOptions,
)
from .results import BatchSummary, HarvestRecord, summarize
from .schema import (
    ArrayNode,
    CustomNode,
    ExtractionNode,
    Leaf,
    LeafKind,
    ObjectNode,
    SchemaError,
    array,
    attr,
    compile_schema,
    count,
    custom,
    exists,
    html,
    obj,
    schema_from_dict,
    text,
)

__all__ = [
    # Schema
    "ExtractionNode",
    "Leaf",
    "LeafKind",
    "ArrayNode",
    "ObjectNode",
    "CustomNode",
    "SchemaError",
    "text",
    "attr",
    "html",
    "exists",
    "count",
    "array",
    "obj",
    "custom",
    "compile_schema",
    "schema_from_dict",
    # Options
    "HarvestOptions",
    "WaitForSelectorOptions",
    "ScreenshotOptions",
    "BatchItem",
    # Results
    "HarvestRecord",
    "BatchSummary",
    "summarize",
]
