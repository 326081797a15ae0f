"""Browser page adapter.

The harvest engine talks to pages only through `PageDriver`. The Playwright
implementation converts second-based timeouts to milliseconds and re-raises
Playwright's timeout as the builtin TimeoutError so error classification
stays driver-agnostic.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional, TypeVar

from playwright.async_api import Browser, BrowserContext, ElementHandle, Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PageDriver(ABC):
    """One browser context + page, exclusively owned by one request."""

    @abstractmethod
    async def navigate(self, url: str, *, timeout: float, wait_until: str) -> None:
        """Navigate and wait for the given load state."""

    @abstractmethod
    async def wait_for_selector(self, selector: str, *, state: str, timeout: float) -> None:
        """Wait until `selector` reaches `state`."""

    @abstractmethod
    async def evaluate(self, script: str, arg: Any = None) -> Any:
        """Evaluate a function in the page."""

    @abstractmethod
    async def evaluate_all(self, selector: str, script: str, arg: Any = None) -> Any:
        """Evaluate a function receiving every element matching `selector`."""

    @abstractmethod
    async def query_all(self, selector: str, root: Any = None) -> list[Any]:
        """Element handles matching `selector`, relative to `root` if given."""

    @abstractmethod
    async def evaluate_on(self, element: Any, script: str, arg: Any = None) -> Any:
        """Evaluate a function receiving `element` as its first argument."""

    @abstractmethod
    async def screenshot(
        self,
        *,
        path: Optional[str] = None,
        type: str = "png",
        full_page: bool = False,
    ) -> bytes:
        """Capture the current page."""

    @abstractmethod
    async def close(self) -> None:
        """Release the page and its browser context."""


PageFactory = Callable[[], Awaitable[PageDriver]]


def _ms(seconds: float) -> float:
    return seconds * 1000.0


async def _translate_timeout(awaitable: Awaitable[T]) -> T:
    try:
        return await awaitable
    except PlaywrightTimeoutError as e:
        raise TimeoutError(str(e)) from e


class PlaywrightPage(PageDriver):
    """PageDriver backed by a Playwright context and page."""

    def __init__(self, context: BrowserContext, page: Page):
        self._context = context
        self._page = page

    @property
    def page(self) -> Page:
        """The underlying Playwright page."""
        return self._page

    async def navigate(self, url: str, *, timeout: float, wait_until: str) -> None:
        await _translate_timeout(
            self._page.goto(url, timeout=_ms(timeout), wait_until=wait_until)
        )

    async def wait_for_selector(self, selector: str, *, state: str, timeout: float) -> None:
        await _translate_timeout(
            self._page.wait_for_selector(selector, state=state, timeout=_ms(timeout))
        )

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        return await _translate_timeout(self._page.evaluate(script, arg))

    async def evaluate_all(self, selector: str, script: str, arg: Any = None) -> Any:
        return await _translate_timeout(self._page.eval_on_selector_all(selector, script, arg))

    async def query_all(self, selector: str, root: Any = None) -> list[ElementHandle]:
        scope = root if root is not None else self._page
        return await _translate_timeout(scope.query_selector_all(selector))

    async def evaluate_on(self, element: ElementHandle, script: str, arg: Any = None) -> Any:
        return await _translate_timeout(element.evaluate(script, arg))

    async def screenshot(
        self,
        *,
        path: Optional[str] = None,
        type: str = "png",
        full_page: bool = False,
    ) -> bytes:
        return await _translate_timeout(
            self._page.screenshot(path=path, type=type, full_page=full_page)
        )

    async def close(self) -> None:
        await self._context.close()


class PlaywrightPageFactory:
    """Creates a fresh context + page per session from a running browser.

    The browser itself is launched and closed by the caller.
    """

    def __init__(
        self,
        browser: Browser,
        user_agent: Optional[str] = None,
        viewport: Optional[dict[str, int]] = None,
        extra_headers: Optional[dict[str, str]] = None,
    ):
        self._browser = browser
        self._context_options: dict[str, Any] = {}
        if user_agent:
            self._context_options["user_agent"] = user_agent
        if viewport:
            self._context_options["viewport"] = viewport
        if extra_headers:
            self._context_options["extra_http_headers"] = extra_headers

    async def __call__(self) -> PlaywrightPage:
        context = await self._browser.new_context(**self._context_options)
        try:
            page = await context.new_page()
        except Exception:
            await context.close()
            raise
        logger.debug(f"Opened browser context ({len(self._browser.contexts)} open)")
        return PlaywrightPage(context, page)
