"""Declarative extraction schema.

An extraction schema is a tree of immutable nodes:

- Leaf: text, attr, html, exists or count of a selector match
- ArrayNode: maps an item node over every match of a selector
- ObjectNode: named fields resolved independently, in declaration order
- CustomNode: a host-side function applied to the native element

Example:
    schema = obj({
        "title": text("h1"),
        "tags": array(".tag", text()),
        "link": attr("a", "href"),
    })

Nodes compare and hash by identity so compiled plans can be cached per
schema object.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional, Union


class SchemaError(ValueError):
    """Raised when a schema definition is malformed."""


class LeafKind(str, Enum):
    """Built-in leaf extractors."""

    TEXT = "text"
    ATTR = "attr"
    HTML = "html"
    EXISTS = "exists"
    COUNT = "count"


@dataclass(frozen=True, eq=False)
class Leaf:
    """A built-in value read relative to the current element."""

    kind: LeafKind
    selector: str = ""
    name: Optional[str] = None  # Attribute name for ATTR
    default: Any = None
    trim: bool = True


@dataclass(frozen=True, eq=False)
class ArrayNode:
    """Resolve `item` against every match of `selector`, in document order."""

    selector: str
    item: "ExtractionNode"


@dataclass(frozen=True, eq=False)
class ObjectNode:
    """Named child nodes; results keep declaration order."""

    fields: Mapping[str, "ExtractionNode"] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))


@dataclass(frozen=True, eq=False)
class CustomNode:
    """Host function called with the native element handle.

    The function may be sync or async and returns any value.
    """

    fn: Callable[[Any], Any]


ExtractionNode = Union[Leaf, ArrayNode, ObjectNode, CustomNode]

SchemaLike = Union[ExtractionNode, Mapping[str, Any], Callable[[Any], Any]]


# --- DSL builders ---


def text(selector: str = "", *, default: Any = None, trim: bool = True) -> Leaf:
    """Text content of the first match (or the current element)."""
    return Leaf(LeafKind.TEXT, selector, default=default, trim=trim)


def attr(selector: str, name: str, *, default: Any = None) -> Leaf:
    """Attribute `name` of the first match (or the current element)."""
    if not name:
        raise SchemaError("attr() requires an attribute name")
    return Leaf(LeafKind.ATTR, selector, name=name, default=default)


def html(selector: str = "", *, default: Any = None) -> Leaf:
    """innerHTML of the first match (or the current element)."""
    return Leaf(LeafKind.HTML, selector, default=default)


def exists(selector: str) -> Leaf:
    """True when the selector matches inside the current element."""
    return Leaf(LeafKind.EXISTS, selector, default=False)


def count(selector: str) -> Leaf:
    """Number of matches inside the current element."""
    if not selector:
        raise SchemaError("count() requires a selector")
    return Leaf(LeafKind.COUNT, selector, default=0)


def array(selector: str, item: SchemaLike) -> ArrayNode:
    """Resolve `item` for every match of `selector`."""
    if not selector:
        raise SchemaError("array() requires a selector")
    return ArrayNode(selector, compile_schema(item))


def obj(fields: Mapping[str, SchemaLike]) -> ObjectNode:
    """Object with one entry per field, in the given order."""
    return ObjectNode({name: compile_schema(value) for name, value in fields.items()})


def custom(fn: Callable[[Any], Any]) -> CustomNode:
    """Run `fn` on the host with the native element handle."""
    if not callable(fn):
        raise SchemaError("custom() requires a callable")
    return CustomNode(fn)


def compile_schema(schema: SchemaLike) -> ExtractionNode:
    """Normalize a schema: dicts become objects, callables become custom nodes."""
    if isinstance(schema, (Leaf, ArrayNode, ObjectNode, CustomNode)):
        return schema
    if isinstance(schema, Mapping):
        return obj(schema)
    if callable(schema):
        return CustomNode(schema)
    raise SchemaError(f"Unsupported schema node: {schema!r}")


# --- JSON form ---

TYPE_KEY = "$type"


def schema_from_dict(data: Any) -> ExtractionNode:
    """Build a schema from JSON data.

    - "h1" is shorthand for text("h1")
    - {"$type": "attr", "selector": "a", "name": "href"} is a leaf
    - {"$type": "array", "selector": ".tag", "item": ...} is an array
    - any other mapping is an object of named fields
    """
    if isinstance(data, str):
        return text(data)

    if not isinstance(data, Mapping):
        raise SchemaError(f"Schema nodes must be strings or objects, got {type(data).__name__}")

    if TYPE_KEY not in data:
        return ObjectNode({name: schema_from_dict(value) for name, value in data.items()})

    node_type = data[TYPE_KEY]
    selector = data.get("selector", "")

    if node_type == "array":
        if "item" not in data:
            raise SchemaError("array nodes require an 'item'")
        return array(selector, schema_from_dict(data["item"]))
    if node_type == "object":
        return schema_from_dict(data.get("fields", {}))
    if node_type == LeafKind.TEXT.value:
        return text(selector, default=data.get("default"), trim=data.get("trim", True))
    if node_type == LeafKind.ATTR.value:
        return attr(selector, data.get("name", ""), default=data.get("default"))
    if node_type == LeafKind.HTML.value:
        return html(selector, default=data.get("default"))
    if node_type == LeafKind.EXISTS.value:
        return exists(selector)
    if node_type == LeafKind.COUNT.value:
        return count(selector)

    raise SchemaError(f"Unknown schema node type: {node_type}")
