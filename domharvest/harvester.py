"""Harvest engine.

`Harvester` owns the engine-wide state (plan cache, rate-limit buckets,
error reporter) between construction and `close()`. Each call runs:

    retry controller -> rate limiter -> session (navigate, wait, extract)
"""

import logging
from dataclasses import replace
from typing import Any, Awaitable, Callable, Iterable, Optional, TypeVar

from .clients.browser import PageDriver, PageFactory
from .core.config import HarvesterConfig, RateLimitConfig
from .core.errors import ErrorCallback, ErrorReporter
from .core.logging_setup import configure_logging
from .orchestration.batch_runner import BatchRunner, ProgressCallback
from .orchestration.extraction_planner import ExtractionPlanner
from .orchestration.harvest_session import HarvestRequest, HarvestSession
from .orchestration.rate_limiter import RateLimiter
from .orchestration.retry import RetryPolicy, RetryState, run_with_retry
from .types.options import BatchItem, HarvestOptions
from .types.results import HarvestRecord
from .types.schema import SchemaLike

logger = logging.getLogger(__name__)

T = TypeVar("T")

OptionsLike = Optional["HarvestOptions | dict[str, Any]"]


class Harvester:
    """Browser harvesting engine.

    Example:
        async with Harvester(PlaywrightPageFactory(browser)) as harvester:
            rows = await harvester.harvest(
                "https://example.com", "article",
                {"title": text("h1"), "tags": array(".tag", text())},
                retries=2,
            )
    """

    def __init__(
        self,
        page_factory: PageFactory,
        config: Optional[HarvesterConfig] = None,
        on_error: Optional[ErrorCallback] = None,
        rate_limit: "RateLimitConfig | dict[str, Any] | None" = None,
    ):
        """Initialize the engine.

        Args:
            page_factory: Async callable returning a fresh PageDriver.
            config: Engine configuration. Defaults are used if None.
            on_error: Callback for every classified error (overrides config).
            rate_limit: Rate limit configuration (overrides config).

        Raises:
            ValueError: If the configuration is invalid.
        """
        # Overrides below apply to a copy, never to the caller's config
        self._config = replace(config) if config is not None else HarvesterConfig()
        if rate_limit is not None:
            self._config.rate_limit = rate_limit
        if isinstance(self._config.rate_limit, dict):
            self._config.rate_limit = RateLimitConfig.from_dict(self._config.rate_limit)

        errors = self._config.validate()
        if errors:
            raise ValueError(f"Invalid harvester configuration: {'; '.join(errors)}")

        configure_logging(self._config.log_level)

        self._page_factory = page_factory
        self._planner = ExtractionPlanner()
        self._rate_limiter = RateLimiter.from_config(self._config.rate_limit)
        self._reporter = ErrorReporter(on_error or self._config.on_error)
        self._batch_runner = BatchRunner(self)
        self._closed = False

    @property
    def config(self) -> HarvesterConfig:
        return self._config

    @property
    def planner(self) -> ExtractionPlanner:
        return self._planner

    @property
    def rate_limiter(self) -> RateLimiter:
        return self._rate_limiter

    @property
    def closed(self) -> bool:
        return self._closed

    async def __aenter__(self) -> "Harvester":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Release engine state; later calls raise RuntimeError."""
        if self._closed:
            return
        self._closed = True
        await self._reporter.drain()
        self._planner.clear_cache()
        self._rate_limiter.reset()
        logger.debug("Harvester closed")

    # --- public operations ---

    async def harvest(
        self,
        url: str,
        selector: str,
        schema: SchemaLike,
        options: OptionsLike = None,
        **overrides: Any,
    ) -> list[Any]:
        """Extract one result per element matching `selector`.

        Args:
            url: Page to load.
            selector: Root selector.
            schema: Extraction schema (node, field mapping or custom callable).
            options: HarvestOptions or dict; keyword overrides win.

        Returns:
            One extracted value per matched root element.

        Raises:
            HarvestError: The classified error of the last attempt.
        """
        self._ensure_open()
        request = HarvestRequest(
            url=url,
            selector=selector,
            plan=self._planner.plan_for(schema),
            options=self._options(options, overrides),
        )
        logger.info(f"Harvesting {url} ({request.plan.mode.value} plan)")
        return await self._run(request, lambda session, attempt: session.harvest(request, attempt))

    async def harvest_custom(
        self,
        url: str,
        fn: Callable[[PageDriver], Any],
        options: OptionsLike = None,
        **overrides: Any,
    ) -> Any:
        """Load `url` and run a host function against the page.

        Args:
            url: Page to load.
            fn: Sync or async function receiving the PageDriver.
            options: HarvestOptions or dict; keyword overrides win.

        Returns:
            Whatever `fn` returns.
        """
        request = HarvestRequest(url=url, options=self._options(options, overrides))
        return await self._run(
            request, lambda session, attempt: session.run_custom(request, fn, attempt)
        )

    async def screenshot(self, url: str, options: OptionsLike = None, **overrides: Any) -> bytes:
        """Load `url` and capture a screenshot."""
        request = HarvestRequest(url=url, options=self._options(options, overrides))
        return await self._run(
            request, lambda session, attempt: session.take_screenshot(request, attempt)
        )

    async def harvest_batch(
        self,
        items: Iterable["BatchItem | dict[str, Any]"],
        concurrency: Optional[int] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> list[HarvestRecord]:
        """Harvest many items with bounded concurrency.

        Never raises for per-item failures; see BatchRunner.run.
        """
        self._ensure_open()
        return await self._batch_runner.run(
            items,
            concurrency=concurrency if concurrency is not None else self._config.default_concurrency,
            on_progress=on_progress,
        )

    # --- internals ---

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("Harvester is closed")

    @staticmethod
    def _options(options: OptionsLike, overrides: dict[str, Any]) -> HarvestOptions:
        if options is None or isinstance(options, dict):
            merged = dict(options or {})
            merged.update(overrides)
            return HarvestOptions.from_dict(merged)
        return options.merged(**overrides) if overrides else options

    @staticmethod
    def _retry_policy(options: HarvestOptions) -> RetryPolicy:
        return RetryPolicy(
            retries=options.retries,
            backoff=options.backoff,
            base_delay=options.base_delay,
            max_backoff=options.max_backoff,
            retry_on=options.retry_on,
        )

    async def _run(
        self,
        request: HarvestRequest,
        action: Callable[[HarvestSession, int], Awaitable[T]],
    ) -> T:
        """Run an action in a fresh session per attempt, with retry."""
        self._ensure_open()
        state = RetryState(policy=self._retry_policy(request.options))

        async def attempt() -> T:
            await self._rate_limiter.acquire(request.url)
            session = await HarvestSession.open(
                self._page_factory,
                request,
                self._planner,
                self._reporter,
                timeout=self._config.timeout,
                attempt=state.attempt,
            )
            async with session:
                return await action(session, state.attempt)

        return await run_with_retry(attempt, state)


async def harvest(
    page_factory: PageFactory,
    url: str,
    selector: str,
    schema: SchemaLike,
    options: OptionsLike = None,
    config: Optional[HarvesterConfig] = None,
    **overrides: Any,
) -> list[Any]:
    """Convenience function: one harvest with a throwaway engine.

    Args:
        page_factory: Async callable returning a fresh PageDriver.
        url: Page to load.
        selector: Root selector.
        schema: Extraction schema.
        options: HarvestOptions or dict.
        config: Optional engine configuration.

    Returns:
        One extracted value per matched root element.
    """
    async with Harvester(page_factory, config) as harvester:
        return await harvester.harvest(url, selector, schema, options, **overrides)
