"""Tests for bounded-concurrency batch execution."""

import pytest

from domharvest import Harvester
from domharvest.types.options import BatchItem, HarvestOptions
from domharvest.types.results import summarize
from domharvest.types.schema import obj, text

from fakes import FakeBrowser, document, el


def numbered_site(n: int, delay: float = 0.0) -> FakeBrowser:
    pages = {
        f"https://site{i}.example/": document(el("h1", f"Page {i}"))
        for i in range(n)
    }
    return FakeBrowser(pages, delay=delay)


def items_for(n: int, failing=()) -> list[dict]:
    schema = obj({"title": text("h1")})
    items = []
    for i in range(n):
        url = f"https://site{i}.example/"
        if i in failing:
            url = f"https://missing{i}.example/"
        items.append({"url": url, "selector": "body", "schema": schema})
    return items


class TestBatchRunner:
    """Test batch isolation, ordering and progress."""

    @pytest.mark.asyncio
    async def test_failures_are_isolated_and_order_preserved(self):
        browser = numbered_site(10)
        progress = []

        async with Harvester(browser.factory) as harvester:
            records = await harvester.harvest_batch(
                items_for(10, failing={2, 5, 8}),
                concurrency=3,
                on_progress=lambda done, total: progress.append((done, total)),
            )

        assert len(records) == 10
        assert [r.index for r in records] == list(range(10))
        assert [i for i, r in enumerate(records) if not r.success] == [2, 5, 8]
        assert records[0].data == [{"title": "Page 0"}]
        assert records[2].error_kind == "NavigationError"
        assert records[2].url == "https://missing2.example/"

        summary = summarize(records)
        assert (summary.succeeded, summary.failed) == (7, 3)
        assert summary.errors_by_kind == {"NavigationError": 3}

        assert [done for done, _ in progress] == list(range(1, 11))
        assert all(total == 10 for _, total in progress)

    @pytest.mark.asyncio
    async def test_concurrency_bound_is_respected(self):
        browser = numbered_site(8, delay=0.02)

        async with Harvester(browser.factory) as harvester:
            records = await harvester.harvest_batch(items_for(8), concurrency=2)

        assert all(r.success for r in records)
        assert browser.max_in_flight <= 2
        assert browser.max_in_flight == 2

    @pytest.mark.asyncio
    async def test_default_concurrency_comes_from_config(self):
        browser = numbered_site(6, delay=0.02)

        async with Harvester(browser.factory) as harvester:
            harvester.config.default_concurrency = 1
            await harvester.harvest_batch(items_for(6))

        assert browser.max_in_flight == 1

    @pytest.mark.asyncio
    async def test_progress_callback_errors_are_swallowed(self):
        browser = numbered_site(3)

        def explode(done, total):
            raise RuntimeError("progress bar crashed")

        async with Harvester(browser.factory) as harvester:
            records = await harvester.harvest_batch(items_for(3), on_progress=explode)

        assert all(r.success for r in records)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("concurrency", [0, -1, 1.5, "2"])
    async def test_invalid_concurrency(self, concurrency):
        async with Harvester(numbered_site(1).factory) as harvester:
            with pytest.raises(ValueError):
                await harvester.harvest_batch(items_for(1), concurrency=concurrency)

    @pytest.mark.asyncio
    async def test_malformed_item(self):
        async with Harvester(numbered_site(1).factory) as harvester:
            with pytest.raises(ValueError, match="Malformed batch item"):
                await harvester.harvest_batch([{"url": "https://site0.example/"}])

    @pytest.mark.asyncio
    async def test_custom_extractor_failure_becomes_record(self):
        browser = numbered_site(2)

        def broken_schema(element):
            raise ZeroDivisionError("bad math")

        items = [
            BatchItem("https://site0.example/", "h1", broken_schema),
            BatchItem("https://site1.example/", "h1", text()),
        ]

        async with Harvester(browser.factory) as harvester:
            records = await harvester.harvest_batch(items)

        assert records[0].success is False
        assert records[0].error_kind == "ExtractionError"
        assert records[1].data == ["Page 1"]

    @pytest.mark.asyncio
    async def test_per_item_options_apply(self):
        browser = numbered_site(1)
        browser.fail_navigation("https://site0.example/", RuntimeError("reset"))
        items = [
            BatchItem(
                "https://site0.example/",
                "h1",
                text(),
                HarvestOptions(retries=1, base_delay=0.01),
            )
        ]

        async with Harvester(browser.factory) as harvester:
            [record] = await harvester.harvest_batch(items)

        assert record.success
        assert browser.navigations == ["https://site0.example/"] * 2

    @pytest.mark.asyncio
    async def test_empty_batch(self):
        async with Harvester(numbered_site(0).factory) as harvester:
            assert await harvester.harvest_batch([]) == []

    @pytest.mark.asyncio
    async def test_unexpected_exception_becomes_record(self):
        items = [BatchItem("https://site0.example/", "h1", 42)]

        async with Harvester(numbered_site(1).factory) as harvester:
            [record] = await harvester.harvest_batch(items)

        assert record.success is False
        assert record.error_kind == "SchemaError"

    @pytest.mark.asyncio
    async def test_camel_case_item_options_enable_retry(self):
        browser = numbered_site(1)
        browser.fail_navigation("https://site0.example/", RuntimeError("reset"))
        items = [{
            "url": "https://site0.example/",
            "selector": "h1",
            "schema": text(),
            "options": {"retries": 2, "retryOn": ["NavigationError"], "baseDelay": 0.01},
        }]

        async with Harvester(browser.factory) as harvester:
            [record] = await harvester.harvest_batch(items)

        assert record.success
        assert len(browser.navigations) == 2

    @pytest.mark.asyncio
    async def test_misspelled_item_option_is_rejected(self):
        items = [{
            "url": "https://site0.example/",
            "selector": "h1",
            "schema": text(),
            "options": {"retires": 2},
        }]

        async with Harvester(numbered_site(1).factory) as harvester:
            with pytest.raises(ValueError, match="retires"):
                await harvester.harvest_batch(items)
