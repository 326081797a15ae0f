"""In-memory DOM and PageDriver used by the engine tests.

The fake page interprets the resolver program in Python with the same
semantics as the in-browser script, over a tiny element tree supporting
tag, .class and #id selectors joined by descendant combinators.
"""

import asyncio
import re
from dataclasses import dataclass, field
from typing import Any, Optional

from domharvest.clients.browser import PageDriver

_SIMPLE = re.compile(r"^([a-zA-Z][\w-]*)?((?:[.#][\w-]+)*)$")


@dataclass(eq=False)
class FakeElement:
    tag: str
    text: str = ""
    attrs: dict[str, str] = field(default_factory=dict)
    children: list["FakeElement"] = field(default_factory=list)
    parent: Optional["FakeElement"] = None

    def __post_init__(self) -> None:
        for child in self.children:
            child.parent = self

    @property
    def text_content(self) -> str:
        return self.text + "".join(child.text_content for child in self.children)

    @property
    def inner_html(self) -> str:
        return self.text + "".join(child.outer_html for child in self.children)

    @property
    def outer_html(self) -> str:
        attrs = "".join(f' {key}="{value}"' for key, value in self.attrs.items())
        return f"<{self.tag}{attrs}>{self.inner_html}</{self.tag}>"

    def descendants(self):
        for child in self.children:
            yield child
            yield from child.descendants()

    def matches_simple(self, simple: str) -> bool:
        match = _SIMPLE.match(simple)
        if not match:
            raise ValueError(f"Unsupported selector: {simple}")
        tag, qualifiers = match.groups()
        if tag and tag.lower() != self.tag:
            return False
        classes = self.attrs.get("class", "").split()
        for qualifier in re.findall(r"[.#][\w-]+", qualifiers or ""):
            if qualifier[0] == "." and qualifier[1:] not in classes:
                return False
            if qualifier[0] == "#" and self.attrs.get("id") != qualifier[1:]:
                return False
        return True

    def matches(self, selector: str) -> bool:
        parts = selector.split()
        if not self.matches_simple(parts[-1]):
            return False
        remaining = parts[:-1]
        ancestor = self.parent
        while remaining and ancestor is not None:
            if ancestor.matches_simple(remaining[-1]):
                remaining.pop()
            ancestor = ancestor.parent
        return not remaining

    def query_all(self, selector: str) -> list["FakeElement"]:
        return [node for node in self.descendants() if node.matches(selector)]

    def query(self, selector: str) -> Optional["FakeElement"]:
        found = self.query_all(selector)
        return found[0] if found else None


def el(tag: str, text: str = "", cls: str = "", children: Optional[list] = None, **attrs: str) -> FakeElement:
    """Build a fake element: el("span", "A", cls="tag")."""
    if cls:
        attrs["class"] = cls
    return FakeElement(tag, text=text, attrs=attrs, children=children or [])


def document(*body_children: FakeElement) -> FakeElement:
    return el("html", children=[el("body", children=list(body_children))])


def resolve(element: FakeElement, node: dict[str, Any]) -> Any:
    """Python twin of the in-browser resolver."""
    kind = node["kind"]
    selector = node.get("selector")

    if kind in ("text", "attr", "html"):
        target = element.query(selector) if selector else element
        if target is None:
            return node["default"]
        if kind == "text":
            return target.text_content.strip() if node["trim"] else target.text_content
        if kind == "attr":
            value = target.attrs.get(node["name"])
            return node["default"] if value is None else value
        return target.inner_html
    if kind == "exists":
        return element.query(selector) is not None if selector else True
    if kind == "count":
        return len(element.query_all(selector))
    if kind == "array":
        return [resolve(child, node["item"]) for child in element.query_all(selector)]
    if kind == "object":
        return [resolve(element, child) for child in node["fields"]]
    raise ValueError(f"Unknown node kind: {kind}")


class FakeBrowser:
    """Shared state behind every FakePage: routes, failures and counters."""

    def __init__(self, pages: Optional[dict[str, FakeElement]] = None, delay: float = 0.0):
        self.pages = dict(pages or {})
        self.delay = delay
        self.navigation_failures: dict[str, list[BaseException]] = {}
        self.extraction_failures: dict[str, list[BaseException]] = {}
        self.selector_failures: dict[str, list[BaseException]] = {}
        self.screenshot_failure: Optional[BaseException] = None
        self.factory_failure: Optional[BaseException] = None
        self.navigations: list[str] = []
        self.evaluate_all_calls = 0
        self.evaluate_on_calls = 0
        self.opened = 0
        self.closed = 0
        self.in_flight = 0
        self.max_in_flight = 0

    def fail_navigation(self, url: str, *errors: BaseException) -> None:
        self.navigation_failures.setdefault(url, []).extend(errors)

    def fail_extraction(self, url: str, *errors: BaseException) -> None:
        self.extraction_failures.setdefault(url, []).extend(errors)

    def fail_selector_wait(self, selector: str, *errors: BaseException) -> None:
        self.selector_failures.setdefault(selector, []).extend(errors)

    async def factory(self) -> "FakePage":
        if self.factory_failure is not None:
            raise self.factory_failure
        self.opened += 1
        return FakePage(self)


class FakePage(PageDriver):
    def __init__(self, browser: FakeBrowser):
        self.browser = browser
        self.url: Optional[str] = None
        self.document: Optional[FakeElement] = None
        self.screenshots: list[dict[str, Any]] = []
        self.is_closed = False
        self._counted = False

    async def navigate(self, url: str, *, timeout: float, wait_until: str) -> None:
        self.browser.navigations.append(url)
        self.browser.in_flight += 1
        self._counted = True
        self.browser.max_in_flight = max(self.browser.max_in_flight, self.browser.in_flight)
        if self.browser.delay:
            await asyncio.sleep(self.browser.delay)

        failures = self.browser.navigation_failures.get(url)
        if failures:
            raise failures.pop(0)
        if url not in self.browser.pages:
            raise RuntimeError(f"net::ERR_NAME_NOT_RESOLVED at {url}")
        self.url = url
        self.document = self.browser.pages[url]

    async def wait_for_selector(self, selector: str, *, state: str, timeout: float) -> None:
        failures = self.browser.selector_failures.get(selector)
        if failures:
            raise failures.pop(0)
        if self.document.query(selector) is None:
            raise TimeoutError(f"Timeout {timeout}s exceeded waiting for {selector}")

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        if script == "document.title":
            title = self.document.query("title")
            return title.text_content if title else ""
        return arg

    def _check_extraction_failure(self) -> None:
        failures = self.browser.extraction_failures.get(self.url)
        if failures:
            raise failures.pop(0)

    async def evaluate_all(self, selector: str, script: str, arg: Any = None) -> Any:
        self.browser.evaluate_all_calls += 1
        self._check_extraction_failure()
        return [resolve(root, arg) for root in self.document.query_all(selector)]

    async def query_all(self, selector: str, root: Any = None) -> list[Any]:
        self._check_extraction_failure()
        scope = root if root is not None else self.document
        return scope.query_all(selector)

    async def evaluate_on(self, element: Any, script: str, arg: Any = None) -> Any:
        self.browser.evaluate_on_calls += 1
        return resolve(element, arg)

    async def screenshot(self, *, path: Optional[str] = None, type: str = "png", full_page: bool = False) -> bytes:
        if self.browser.screenshot_failure is not None:
            raise self.browser.screenshot_failure
        self.screenshots.append({"path": path, "type": type, "full_page": full_page})
        return b"\x89PNG fake"

    async def close(self) -> None:
        self.is_closed = True
        self.browser.closed += 1
        if self._counted:
            self.browser.in_flight -= 1
            self._counted = False


def tags_page() -> FakeElement:
    """<h1>Hello</h1><span class="tag">A</span><span class="tag">B</span>"""
    return document(
        el("h1", "Hello"),
        el("span", "A", cls="tag"),
        el("span", "B", cls="tag"),
    )


def products_page() -> FakeElement:
    return document(
        el("div", cls="product", children=[
            el("h2", "  Widget  "),
            el("a", "details", href="/p/1"),
            el("span", "red", cls="color"),
            el("span", "blue", cls="color"),
        ]),
        el("div", cls="product", children=[
            el("h2", "Gadget"),
            el("span", "sale", cls="badge"),
        ]),
    )
