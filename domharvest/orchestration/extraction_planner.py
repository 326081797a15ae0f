"""Extraction planner for schema execution.

Compiles an extraction schema into an execution plan and runs it against a
live page:

- PURE schemas (built-in nodes only) are serialized into a data program and
  resolved by a fixed in-browser interpreter in a single round trip for all
  root elements.
- MIXED schemas (at least one custom node) are walked on the host element by
  element; custom nodes receive the native element handle and pure subtrees
  are resolved in-browser per node.

The browser only ever runs the fixed resolver scripts below; host functions
never cross into the page.
"""

import inspect
import logging
import weakref
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from ..clients.browser import PageDriver
from ..types.schema import (
    ArrayNode,
    CustomNode,
    ExtractionNode,
    Leaf,
    ObjectNode,
    SchemaLike,
    compile_schema,
)

logger = logging.getLogger(__name__)

# Object nodes resolve to positional value lists; the host rebuilds mappings
# so key order never depends on JS property ordering.
_RESOLVER_JS = """
function resolveNode(el, node) {
  switch (node.kind) {
    case "text": {
      const target = node.selector ? el.querySelector(node.selector) : el;
      if (!target || target.textContent === null) return node.default;
      return node.trim ? target.textContent.trim() : target.textContent;
    }
    case "attr": {
      const target = node.selector ? el.querySelector(node.selector) : el;
      if (!target) return node.default;
      const value = target.getAttribute(node.name);
      return value === null ? node.default : value;
    }
    case "html": {
      const target = node.selector ? el.querySelector(node.selector) : el;
      return target ? target.innerHTML : node.default;
    }
    case "exists":
      return node.selector ? el.querySelector(node.selector) !== null : true;
    case "count":
      return el.querySelectorAll(node.selector).length;
    case "array":
      return Array.from(el.querySelectorAll(node.selector), (child) => resolveNode(child, node.item));
    case "object":
      return node.fields.map((child) => resolveNode(el, child));
  }
  throw new Error("Unknown extraction node kind: " + node.kind);
}
"""

RESOLVE_ALL_SCRIPT = (
    "(elements, program) => {"
    + _RESOLVER_JS
    + "return elements.map((el) => resolveNode(el, program)); }"
)

RESOLVE_ONE_SCRIPT = (
    "(element, program) => {"
    + _RESOLVER_JS
    + "return resolveNode(element, program); }"
)


class ExecutionMode(str, Enum):
    """How a schema is executed."""

    PURE = "pure"
    MIXED = "mixed"


def classify(node: ExtractionNode, purity: Optional[dict[int, bool]] = None) -> ExecutionMode:
    """Classify a schema tree as pure or mixed.

    Args:
        node: Root of the schema tree.
        purity: Optional mapping filled with the purity of every visited node,
            keyed by id(node).

    Returns:
        PURE when no custom node appears at any depth, MIXED otherwise.
    """
    purity = {} if purity is None else purity
    return ExecutionMode.PURE if _mark_purity(node, purity) else ExecutionMode.MIXED


def _mark_purity(node: ExtractionNode, purity: dict[int, bool]) -> bool:
    if isinstance(node, Leaf):
        pure = True
    elif isinstance(node, CustomNode):
        pure = False
    elif isinstance(node, ArrayNode):
        pure = _mark_purity(node.item, purity)
    elif isinstance(node, ObjectNode):
        # Visit every child so the purity map is complete
        children = [_mark_purity(child, purity) for child in node.fields.values()]
        pure = all(children)
    else:
        raise TypeError(f"Not an extraction node: {node!r}")

    purity[id(node)] = pure
    return pure


def serialize_program(node: ExtractionNode) -> dict[str, Any]:
    """Serialize a pure subtree into the resolver's program format."""
    if isinstance(node, Leaf):
        return {
            "kind": node.kind.value,
            "selector": node.selector,
            "name": node.name,
            "default": node.default,
            "trim": node.trim,
        }
    if isinstance(node, ArrayNode):
        return {
            "kind": "array",
            "selector": node.selector,
            "item": serialize_program(node.item),
        }
    if isinstance(node, ObjectNode):
        return {
            "kind": "object",
            "fields": [serialize_program(child) for child in node.fields.values()],
        }
    raise TypeError(f"Custom nodes cannot run in the browser: {node!r}")


def compose_result(node: ExtractionNode, raw: Any) -> Any:
    """Rebuild host values from resolver output for a pure subtree."""
    if isinstance(node, Leaf):
        if raw is None and node.default is not None:
            return node.default
        return raw
    if isinstance(node, ArrayNode):
        return [compose_result(node.item, value) for value in raw or []]
    if isinstance(node, ObjectNode):
        values = raw or [None] * len(node.fields)
        return {
            name: compose_result(child, value)
            for (name, child), value in zip(node.fields.items(), values)
        }
    raise TypeError(f"Cannot compose result for {node!r}")


@dataclass
class ExecutionPlan:
    """Compiled schema with its execution mode.

    `purity` and `programs` are keyed by id() of nodes in `root`, which keeps
    them valid for as long as the root tree is alive.
    """

    root: ExtractionNode
    mode: ExecutionMode
    purity: dict[int, bool] = field(default_factory=dict, repr=False)
    programs: dict[int, dict[str, Any]] = field(default_factory=dict, repr=False)

    @property
    def is_pure(self) -> bool:
        return self.mode == ExecutionMode.PURE

    def is_pure_node(self, node: ExtractionNode) -> bool:
        return self.purity.get(id(node), False)

    def program_for(self, node: ExtractionNode) -> dict[str, Any]:
        """Serialized program for a pure node, computed once."""
        key = id(node)
        if key not in self.programs:
            self.programs[key] = serialize_program(node)
        return self.programs[key]

    @property
    def program(self) -> Optional[dict[str, Any]]:
        """Whole-tree program for pure plans."""
        return self.program_for(self.root) if self.is_pure else None


@dataclass
class _CompiledTree:
    """Cached compilation state of one schema tree, without the tree itself."""

    mode: ExecutionMode
    purity: dict[int, bool]
    programs: dict[int, dict[str, Any]]


class ExtractionPlanner:
    """Compiles schemas into cached execution plans and runs them.

    Compilations are cached per schema node, weakly: a schema that is no
    longer referenced elsewhere releases its cache entry.
    """

    def __init__(self) -> None:
        self._plans: "weakref.WeakKeyDictionary[ExtractionNode, _CompiledTree]" = (
            weakref.WeakKeyDictionary()
        )

    def plan_for(self, schema: SchemaLike) -> ExecutionPlan:
        """Get or compile the plan for a schema.

        Args:
            schema: Extraction node, field mapping or custom callable.

        Returns:
            ExecutionPlan for the normalized schema.
        """
        # Mappings and bare callables are wrapped in a new node on every call
        if not isinstance(schema, (Leaf, ArrayNode, ObjectNode, CustomNode)):
            return compile_plan(schema)

        compiled = self._plans.get(schema)
        if compiled is None:
            plan = compile_plan(schema)
            self._plans[schema] = _CompiledTree(plan.mode, plan.purity, plan.programs)
            logger.debug(f"Compiled {plan.mode.value} extraction plan ({len(plan.purity)} nodes)")
            return plan
        return ExecutionPlan(schema, compiled.mode, compiled.purity, compiled.programs)

    @property
    def cached_plans(self) -> int:
        return len(self._plans)

    def clear_cache(self) -> None:
        self._plans.clear()

    async def execute(self, plan: ExecutionPlan, page: PageDriver, selector: str) -> list[Any]:
        """Run a plan against every element matching `selector`.

        Args:
            plan: Compiled execution plan.
            page: Page to evaluate against.
            selector: Root selector; one result per match, in document order.

        Returns:
            List of results (empty when nothing matches).
        """
        if plan.is_pure:
            raw = await page.evaluate_all(selector, RESOLVE_ALL_SCRIPT, plan.program)
            return [compose_result(plan.root, value) for value in raw or []]

        roots = await page.query_all(selector)
        logger.debug(f"Mixed plan over {len(roots)} root elements")
        results = []
        for element in roots:
            results.append(await self._resolve_mixed(plan, page, element, plan.root))
        return results

    async def _resolve_mixed(
        self,
        plan: ExecutionPlan,
        page: PageDriver,
        element: Any,
        node: ExtractionNode,
    ) -> Any:
        if isinstance(node, CustomNode):
            value = node.fn(element)
            if inspect.isawaitable(value):
                value = await value
            return value

        if plan.is_pure_node(node):
            raw = await page.evaluate_on(element, RESOLVE_ONE_SCRIPT, plan.program_for(node))
            return compose_result(node, raw)

        if isinstance(node, ArrayNode):
            children = await page.query_all(node.selector, root=element)
            return [
                await self._resolve_mixed(plan, page, child, node.item)
                for child in children
            ]

        if isinstance(node, ObjectNode):
            result = {}
            for name, child in node.fields.items():
                result[name] = await self._resolve_mixed(plan, page, element, child)
            return result

        raise TypeError(f"Not an extraction node: {node!r}")


def compile_plan(schema: SchemaLike) -> ExecutionPlan:
    """Compile a schema into a plan without caching."""
    root = compile_schema(schema)
    purity: dict[int, bool] = {}
    mode = classify(root, purity)
    return ExecutionPlan(root=root, mode=mode, purity=purity)
