"""Batch runner for concurrent harvest requests.

Provides bounded-concurrency execution with progress reporting and
per-item failure isolation: every input item yields exactly one record,
returned in input order.
"""

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any, Callable, Iterable, Optional

from ..core.errors import HarvestError
from ..types.options import BatchItem
from ..types.results import HarvestRecord

if TYPE_CHECKING:
    from ..harvester import Harvester

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 5

ProgressCallback = Callable[[int, int], Any]


class BatchRunner:
    """Runs many harvest requests against one engine.

    Features:
    - At most `concurrency` items in flight
    - Rate limiting still gates each navigation inside the engine
    - Progress reporting in completion order
    - Error collection without abort
    """

    def __init__(self, harvester: "Harvester"):
        """Initialize the runner.

        Args:
            harvester: Engine executing each item.
        """
        self._harvester = harvester

    async def run(
        self,
        items: Iterable["BatchItem | dict[str, Any]"],
        concurrency: int = DEFAULT_CONCURRENCY,
        on_progress: Optional[ProgressCallback] = None,
    ) -> list[HarvestRecord]:
        """Run all items and collect one record per item.

        Args:
            items: Batch items (or dicts with url, selector, schema, options).
            concurrency: Maximum number of items in flight.
            on_progress: Called with (completed, total) after each item.

        Returns:
            Records aligned with the input order.

        Raises:
            ValueError: On invalid concurrency or malformed items.
        """
        if not isinstance(concurrency, int) or concurrency < 1:
            raise ValueError(f"concurrency must be a positive integer, got {concurrency!r}")

        try:
            batch = [BatchItem.coerce(item) for item in items]
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Malformed batch item: {e}") from e

        total = len(batch)
        completed = 0
        semaphore = asyncio.Semaphore(concurrency)
        logger.info(f"Starting batch of {total} items (concurrency {concurrency})")

        async def run_single(index: int, item: BatchItem) -> HarvestRecord:
            nonlocal completed
            async with semaphore:
                record = await self._run_item(index, item)

            completed += 1
            self._report_progress(on_progress, completed, total)
            return record

        records = await asyncio.gather(
            *(run_single(index, item) for index, item in enumerate(batch))
        )

        failed = sum(1 for record in records if not record.success)
        logger.info(f"Batch finished: {total - failed} succeeded, {failed} failed")
        return list(records)

    async def _run_item(self, index: int, item: BatchItem) -> HarvestRecord:
        """Harvest one item, converting any failure into a record."""
        started = time.perf_counter()

        try:
            data = await self._harvester.harvest(
                item.url, item.selector, item.schema, item.options
            )
            return HarvestRecord(
                index=index,
                url=item.url,
                success=True,
                duration=time.perf_counter() - started,
                data=data,
            )

        except HarvestError as e:
            logger.debug(f"Batch item {index} failed: {e}")
            return HarvestRecord(
                index=index,
                url=item.url,
                success=False,
                duration=time.perf_counter() - started,
                error=e.message,
                error_kind=e.kind.value,
            )

        except Exception as e:
            logger.exception(f"Batch item {index} ({item.url}) failed with exception")
            return HarvestRecord(
                index=index,
                url=item.url,
                success=False,
                duration=time.perf_counter() - started,
                error=str(e),
                error_kind=e.__class__.__name__,
            )

    @staticmethod
    def _report_progress(
        callback: Optional[ProgressCallback], completed: int, total: int
    ) -> None:
        """Report progress via callback; callback failures are swallowed."""
        if callback is None:
            return
        try:
            callback(completed, total)
        except Exception as e:
            logger.warning(f"Progress callback raised {e.__class__.__name__}: {e}")
