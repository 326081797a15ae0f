"""End-to-end tests for the Harvester engine over the fake page driver."""

import asyncio
import time

import pytest

from domharvest import Harvester, harvest
from domharvest.core.config import HarvesterConfig
from domharvest.core.errors import ExtractionError, HarvestTimeoutError, NavigationError
from domharvest.types.options import HarvestOptions
from domharvest.types.schema import array, obj, text

from fakes import FakeBrowser, tags_page

URL = "https://example.com/post"
SCHEMA = obj({"title": text("h1"), "tags": array(".tag", text())})


class Recorder:
    def __init__(self):
        self.calls = []

    def __call__(self, error, context):
        self.calls.append((error, context))


class TestHarvest:
    """Test single-page harvesting through the engine."""

    @pytest.mark.asyncio
    async def test_basic_harvest(self):
        browser = FakeBrowser({URL: tags_page()})

        async with Harvester(browser.factory) as harvester:
            results = await harvester.harvest(URL, "body", SCHEMA)

        assert results == [{"title": "Hello", "tags": ["A", "B"]}]
        assert browser.opened == browser.closed == 1

    @pytest.mark.asyncio
    async def test_module_level_harvest(self):
        browser = FakeBrowser({URL: tags_page()})
        results = await harvest(browser.factory, URL, ".tag", text())
        assert results == ["A", "B"]

    @pytest.mark.asyncio
    async def test_dict_schema_and_options(self):
        browser = FakeBrowser({URL: tags_page()})

        async with Harvester(browser.factory) as harvester:
            results = await harvester.harvest(
                URL, "body", {"title": text("h1")}, {"wait_until": "load", "retries": 0}
            )

        assert results == [{"title": "Hello"}]

    @pytest.mark.asyncio
    async def test_retries_until_success_with_fresh_page_per_attempt(self):
        browser = FakeBrowser({URL: tags_page()})
        browser.fail_navigation(URL, RuntimeError("reset 1"), RuntimeError("reset 2"))
        recorder = Recorder()

        async with Harvester(browser.factory, on_error=recorder) as harvester:
            results = await harvester.harvest(URL, "body", SCHEMA, retries=3, base_delay=0.01)

        assert results == [{"title": "Hello", "tags": ["A", "B"]}]
        assert len(browser.navigations) == 3
        assert browser.opened == browser.closed == 3
        assert [context["attempt"] for _, context in recorder.calls] == [1, 2]

    @pytest.mark.asyncio
    async def test_exhausted_retries_reraise_last_error(self):
        browser = FakeBrowser({URL: tags_page()})
        browser.fail_navigation(URL, RuntimeError("first"), RuntimeError("second"))
        recorder = Recorder()

        async with Harvester(browser.factory, on_error=recorder) as harvester:
            with pytest.raises(NavigationError) as exc_info:
                await harvester.harvest(URL, "body", SCHEMA, retries=1, base_delay=0.01)

        assert exc_info.value.message == "second"
        assert exc_info.value.attempt == 2
        assert exc_info.value is recorder.calls[-1][0]

    @pytest.mark.asyncio
    async def test_retry_on_skips_ineligible_kinds(self):
        browser = FakeBrowser({URL: tags_page()})
        browser.fail_navigation(URL, RuntimeError("refused"))

        async with Harvester(browser.factory) as harvester:
            with pytest.raises(NavigationError):
                await harvester.harvest(
                    URL, "body", SCHEMA, retries=3, retry_on=["TimeoutError"], base_delay=0.01
                )

        assert len(browser.navigations) == 1

    @pytest.mark.asyncio
    async def test_timeouts_are_retried_when_listed(self):
        browser = FakeBrowser({URL: tags_page()})
        browser.fail_navigation(URL, TimeoutError("slow"))

        async with Harvester(browser.factory) as harvester:
            results = await harvester.harvest(
                URL, "body", SCHEMA, retries=1, retry_on=["TimeoutError"], base_delay=0.01
            )

        assert results[0]["title"] == "Hello"

    @pytest.mark.asyncio
    async def test_extraction_error_surfaces(self):
        browser = FakeBrowser({URL: tags_page()})
        browser.fail_extraction(URL, RuntimeError("Evaluation failed"))

        async with Harvester(browser.factory) as harvester:
            with pytest.raises(ExtractionError):
                await harvester.harvest(URL, "body", SCHEMA)

    @pytest.mark.asyncio
    async def test_wait_for_selector_timeout(self):
        browser = FakeBrowser({URL: tags_page()})
        options = HarvestOptions(wait_for_selector={"selector": ".late"})

        async with Harvester(browser.factory) as harvester:
            with pytest.raises(HarvestTimeoutError) as exc_info:
                await harvester.harvest(URL, "body", SCHEMA, options)

        assert exc_info.value.selector == ".late"

    @pytest.mark.asyncio
    async def test_error_callback_failure_does_not_mask_error(self):
        browser = FakeBrowser({})

        def broken_callback(error, context):
            raise RuntimeError("callback bug")

        async with Harvester(browser.factory, on_error=broken_callback) as harvester:
            with pytest.raises(NavigationError):
                await harvester.harvest(URL, "body", SCHEMA)

    @pytest.mark.asyncio
    async def test_plan_is_cached_across_calls(self):
        browser = FakeBrowser({URL: tags_page()})

        async with Harvester(browser.factory) as harvester:
            await harvester.harvest(URL, "body", SCHEMA)
            await harvester.harvest(URL, "body", SCHEMA)
            assert harvester.planner.cached_plans == 1

        assert harvester.planner.cached_plans == 0


class TestOtherOperations:
    """Test harvest_custom, screenshot and lifecycle."""

    @pytest.mark.asyncio
    async def test_harvest_custom(self):
        browser = FakeBrowser({URL: tags_page()})

        async with Harvester(browser.factory) as harvester:
            count = await harvester.harvest_custom(
                URL, lambda page: len(page.document.query_all(".tag"))
            )

        assert count == 2

    @pytest.mark.asyncio
    async def test_screenshot(self):
        browser = FakeBrowser({URL: tags_page()})

        async with Harvester(browser.factory) as harvester:
            data = await harvester.screenshot(URL, screenshot={"full_page": True})

        assert data == b"\x89PNG fake"

    @pytest.mark.asyncio
    async def test_closed_engine_rejects_calls(self):
        browser = FakeBrowser({URL: tags_page()})
        harvester = Harvester(browser.factory)
        await harvester.close()

        assert harvester.closed
        with pytest.raises(RuntimeError):
            await harvester.harvest(URL, "body", SCHEMA)
        with pytest.raises(RuntimeError):
            await harvester.harvest_batch([])

    @pytest.mark.asyncio
    async def test_closed_engine_does_not_compile_plans(self):
        harvester = Harvester(FakeBrowser({URL: tags_page()}).factory)
        await harvester.close()

        with pytest.raises(RuntimeError):
            await harvester.harvest(URL, "body", SCHEMA)
        assert harvester.planner.cached_plans == 0

    def test_shared_config_is_not_mutated(self):
        config = HarvesterConfig(timeout=10.0)

        limited = Harvester(FakeBrowser().factory, config, rate_limit={"requests": 1, "per": 1})
        plain = Harvester(FakeBrowser().factory, config)

        assert config.rate_limit is None
        assert limited.config is not config
        assert limited.rate_limiter.enabled
        assert not plain.rate_limiter.enabled
        assert plain.config.timeout == 10.0

    @pytest.mark.asyncio
    async def test_async_error_callback_is_awaited(self):
        browser = FakeBrowser({})
        seen = []

        async def on_error(error, context):
            await asyncio.sleep(0)
            seen.append((context["kind"], context["attempt"]))

        async with Harvester(browser.factory, on_error=on_error) as harvester:
            with pytest.raises(NavigationError):
                await harvester.harvest(URL, "body", SCHEMA, retries=1, base_delay=0.01)

        assert seen == [("NavigationError", 1), ("NavigationError", 2)]

    @pytest.mark.asyncio
    async def test_failing_async_error_callback_is_contained(self):
        async def on_error(error, context):
            raise RuntimeError("callback bug")

        async with Harvester(FakeBrowser({}).factory, on_error=on_error) as harvester:
            with pytest.raises(NavigationError):
                await harvester.harvest(URL, "body", SCHEMA)

    def test_invalid_config(self):
        with pytest.raises(ValueError, match="timeout must be positive"):
            Harvester(FakeBrowser().factory, HarvesterConfig(timeout=0))

    def test_dict_rate_limit(self):
        harvester = Harvester(FakeBrowser().factory, rate_limit={"requests": 2, "per": 1})
        assert harvester.rate_limiter.enabled
        assert harvester.config.rate_limit.global_limit.requests == 2

    @pytest.mark.asyncio
    async def test_per_domain_rate_limit_gates_navigation(self):
        browser = FakeBrowser({URL: tags_page()})

        async with Harvester(
            browser.factory, rate_limit={"per_domain": {"requests": 1, "per": 0.1}}
        ) as harvester:
            started = time.monotonic()
            await harvester.harvest(URL, "body", SCHEMA)
            await harvester.harvest(URL, "body", SCHEMA)
            elapsed = time.monotonic() - started

            status = harvester.rate_limiter.get_status()

        assert elapsed >= 0.08
        assert status["domains"]["example.com"]["total_acquired"] == 2
