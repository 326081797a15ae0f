"""Harvest session: one page, one request attempt.

State machine per attempt:

    IDLE -> NAVIGATING -> WAITING -> EXTRACTING -> DONE
                 \\            \\            \\
                  +------------+------------+--> FAILED

Each phase classifies its own failures at the raising site and reports them
exactly once before re-raising.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from ..clients.browser import PageDriver, PageFactory
from ..core.errors import ErrorKind, ErrorReporter, HarvestError, classify_error
from ..types.options import HarvestOptions
from .extraction_planner import ExecutionPlan, ExtractionPlanner

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SessionState(str, Enum):
    """Lifecycle states of a harvest attempt."""

    IDLE = "idle"
    NAVIGATING = "navigating"
    WAITING = "waiting"
    EXTRACTING = "extracting"
    DONE = "done"
    FAILED = "failed"


@dataclass
class HarvestRequest:
    """A single harvest call: target, root selector and compiled plan."""

    url: str
    selector: str = ""
    plan: Optional[ExecutionPlan] = None
    options: HarvestOptions = field(default_factory=HarvestOptions)


class HarvestSession:
    """Owns one page for the duration of one request attempt."""

    def __init__(
        self,
        page: PageDriver,
        planner: ExtractionPlanner,
        reporter: ErrorReporter,
        timeout: float = 30.0,
    ):
        """Initialize the session.

        Args:
            page: Page exclusively owned by this session.
            planner: Planner used to execute extraction plans.
            reporter: Destination for classified errors.
            timeout: Default per-phase timeout in seconds.
        """
        self._page = page
        self._planner = planner
        self._reporter = reporter
        self._timeout = timeout
        self.state = SessionState.IDLE
        self.history: list[SessionState] = [SessionState.IDLE]
        self.screenshot: Optional[bytes] = None
        self.error: Optional[HarvestError] = None

    @classmethod
    async def open(
        cls,
        page_factory: PageFactory,
        request: HarvestRequest,
        planner: ExtractionPlanner,
        reporter: ErrorReporter,
        timeout: float = 30.0,
        attempt: int = 1,
    ) -> "HarvestSession":
        """Create a page and wrap it in a session.

        Page creation failures are classified as NavigationError.
        """
        try:
            page = await page_factory()
        except Exception as e:
            error = classify_error(
                e, ErrorKind.NAVIGATION, request.url, "initialize", attempt=attempt
            )
            reporter.report(error)
            raise error from e
        return cls(page, planner, reporter, timeout)

    @property
    def page(self) -> PageDriver:
        return self._page

    async def __aenter__(self) -> "HarvestSession":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Release the page; close failures are logged only."""
        try:
            await self._page.close()
        except Exception as e:
            logger.warning(f"Failed to close page: {e}")

    def _transition(self, state: SessionState) -> None:
        self.state = state
        self.history.append(state)

    def _timeout_for(self, request: HarvestRequest) -> float:
        return request.options.timeout or self._timeout

    async def _phase(
        self,
        awaitable: Awaitable[T],
        request: HarvestRequest,
        operation: str,
        kind: ErrorKind,
        attempt: int,
        selector: Optional[str] = None,
        deadline: Optional[float] = None,
    ) -> T:
        """Await one phase step, classifying and reporting its failure."""
        try:
            if deadline is not None:
                return await asyncio.wait_for(awaitable, deadline)
            return await awaitable
        except Exception as e:
            error = classify_error(e, kind, request.url, operation, selector, attempt)
            self.error = error
            self._transition(SessionState.FAILED)
            self._reporter.report(error)
            if error is e:
                raise
            raise error from e

    # --- phases ---

    async def navigate(self, request: HarvestRequest, attempt: int = 1) -> None:
        """IDLE -> NAVIGATING: load the target with the configured load state."""
        self._transition(SessionState.NAVIGATING)
        logger.debug(f"Navigating to {request.url} (attempt {attempt})")
        await self._phase(
            self._page.navigate(
                request.url,
                timeout=self._timeout_for(request),
                wait_until=request.options.wait_until,
            ),
            request,
            "navigate",
            ErrorKind.NAVIGATION,
            attempt,
        )

    async def wait(self, request: HarvestRequest, attempt: int = 1) -> None:
        """NAVIGATING -> WAITING: optional explicit selector wait."""
        self._transition(SessionState.WAITING)
        wait_options = request.options.wait_for_selector
        if wait_options is None:
            return

        selector = wait_options.selector or request.selector
        if not selector:
            return

        await self._phase(
            self._page.wait_for_selector(
                selector,
                state=wait_options.state,
                timeout=wait_options.timeout or self._timeout_for(request),
            ),
            request,
            "waitForSelector",
            ErrorKind.NAVIGATION,
            attempt,
            selector=selector,
        )

    async def extract(self, request: HarvestRequest, attempt: int = 1) -> list[Any]:
        """WAITING -> EXTRACTING: execute the plan against the root selector."""
        if request.plan is None:
            raise ValueError("extract() needs a request with a compiled plan")

        self._transition(SessionState.EXTRACTING)
        return await self._phase(
            self._planner.execute(request.plan, self._page, request.selector),
            request,
            "extract",
            ErrorKind.EXTRACTION,
            attempt,
            selector=request.selector,
            deadline=self._timeout_for(request),
        )

    async def capture(self, request: HarvestRequest, attempt: int = 1) -> bytes:
        """Take the configured screenshot; failures are NavigationError."""
        options = request.options.screenshot
        kwargs: dict[str, Any] = {}
        if options is not None:
            kwargs = {"path": options.path, "type": options.type, "full_page": options.full_page}

        self.screenshot = await self._phase(
            self._page.screenshot(**kwargs),
            request,
            "screenshot",
            ErrorKind.NAVIGATION,
            attempt,
        )
        if options is not None and options.path:
            logger.debug(f"Saved screenshot of {request.url} to {options.path}")
        return self.screenshot

    def _done(self) -> None:
        self._transition(SessionState.DONE)

    # --- full runs ---

    async def harvest(self, request: HarvestRequest, attempt: int = 1) -> list[Any]:
        """Run navigate -> wait -> extract (with optional screenshot)."""
        await self.navigate(request, attempt)
        await self.wait(request, attempt)

        screenshot = request.options.screenshot
        if screenshot is not None and screenshot.when == "before":
            await self.capture(request, attempt)

        results = await self.extract(request, attempt)

        if screenshot is not None and screenshot.when == "after":
            await self.capture(request, attempt)

        self._done()
        logger.debug(f"Extracted {len(results)} results from {request.url}")
        return results

    async def run_custom(
        self,
        request: HarvestRequest,
        fn: Callable[[PageDriver], Any],
        attempt: int = 1,
    ) -> Any:
        """Navigate, wait, then hand the page to a host function."""
        await self.navigate(request, attempt)
        await self.wait(request, attempt)
        self._transition(SessionState.EXTRACTING)

        async def call() -> Any:
            value = fn(self._page)
            if inspect.isawaitable(value):
                value = await value
            return value

        result = await self._phase(
            call(),
            request,
            "harvestCustom",
            ErrorKind.EXTRACTION,
            attempt,
            deadline=self._timeout_for(request),
        )
        self._done()
        return result

    async def take_screenshot(self, request: HarvestRequest, attempt: int = 1) -> bytes:
        """Navigate, wait, then capture a screenshot."""
        await self.navigate(request, attempt)
        await self.wait(request, attempt)
        data = await self.capture(request, attempt)
        self._done()
        return data
