"""Tests for the task control surface."""

import asyncio

import pytest
from conftest import KIB, FakeFetcherFactory, make_page

from prodcrawl.control import TaskController
from prodcrawl.frontier import open_frontier
from prodcrawl.models import TaskStatus
from prodcrawl.task_store import ConfigStore


@pytest.fixture
def config_store(crawl_settings):
    return ConfigStore(crawl_settings.tasks_dir)


def site(host: str, products: int = 0):
    """Pages for a small site whose home page links to ``products`` product pages."""
    links = [f"/p{i}" for i in range(products)]
    pages = {f"https://{host}/": make_page(links=links)}
    for link in links:
        pages[f"https://{host}{link}"] = make_page('<div class="product"></div>', size=60 * KIB)
    return pages


class TestTaskController:
    """Test cases for TaskController."""

    @pytest.mark.asyncio
    async def test_runs_tasks_concurrently(self, config_store, crawl_settings):
        config_store.create("https://a.example/", selector_rules=[".product"], escalation_threshold=0)
        config_store.create("https://b.example/", selector_rules=[".product"], escalation_threshold=0)
        factory = FakeFetcherFactory({**site("a.example", products=2), **site("b.example", products=1)})
        controller = TaskController(config_store, crawl_settings, fetcher_factory=factory)

        outcomes = await controller.start(["a.example", "b.example"])

        assert list(outcomes) == ["a.example", "b.example"]
        assert outcomes["a.example"].accepted == 2
        assert outcomes["b.example"].accepted == 1
        assert all(outcome.status == TaskStatus.COMPLETED for outcome in outcomes.values())
        assert controller.running_tasks == []

    @pytest.mark.asyncio
    async def test_failure_is_isolated(self, config_store, crawl_settings):
        """A broken task definition does not affect a healthy task."""
        config_store.create("https://good.example/", escalation_threshold=0)
        broken = config_store.task_path("bad.example")
        broken.parent.mkdir(parents=True)
        broken.write_text("{broken")

        controller = TaskController(config_store, crawl_settings, fetcher_factory=FakeFetcherFactory({}))
        outcomes = await controller.start(["good.example", "bad.example", "missing.example"])

        assert outcomes["good.example"].status == TaskStatus.COMPLETED
        assert outcomes["bad.example"].status == TaskStatus.FAILED
        assert outcomes["missing.example"].status == TaskStatus.FAILED
        assert "not found" in outcomes["missing.example"].message

    @pytest.mark.asyncio
    async def test_fetcher_startup_failure_fails_task(self, config_store, crawl_settings):
        config_store.create("https://a.example/")

        def broken_factory(strategy, task, settings):
            raise RuntimeError("browser binary missing")

        controller = TaskController(config_store, crawl_settings, fetcher_factory=broken_factory)
        outcomes = await controller.start(["a.example"])

        assert outcomes["a.example"].status == TaskStatus.FAILED
        assert "browser binary missing" in outcomes["a.example"].error

    @pytest.mark.asyncio
    async def test_duplicate_ids_run_once(self, config_store, crawl_settings):
        config_store.create("https://a.example/", escalation_threshold=0)
        factory = FakeFetcherFactory({})
        controller = TaskController(config_store, crawl_settings, fetcher_factory=factory)

        outcomes = await controller.start(["a.example", "a.example"])

        assert list(outcomes) == ["a.example"]
        assert factory.calls == ["https://a.example/"]

    @pytest.mark.asyncio
    async def test_start_refused_while_running(self, config_store, crawl_settings):
        config_store.create("https://a.example/", escalation_threshold=0)
        controller = TaskController(
            config_store,
            crawl_settings,
            fetcher_factory=FakeFetcherFactory({}, delays={"https://a.example/": [0.2]}),
        )

        first = asyncio.create_task(controller.start(["a.example"]))
        await asyncio.sleep(0.05)
        assert controller.running_tasks == ["a.example"]

        second = await controller.start(["a.example"])
        assert second["a.example"].status == TaskStatus.FAILED
        assert "already running" in second["a.example"].error

        outcomes = await first
        assert outcomes["a.example"].status == TaskStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_stop_cancels_running_task(self, config_store, crawl_settings):
        config_store.create("https://a.example/", concurrency=1)
        factory = FakeFetcherFactory(site("a.example", products=3), delays={"https://a.example/": [0.2]})
        controller = TaskController(config_store, crawl_settings, fetcher_factory=factory)

        running = asyncio.create_task(controller.start(["a.example"]))
        await asyncio.sleep(0.05)
        assert controller.stop("a.example") is True

        outcomes = await running
        assert outcomes["a.example"].status == TaskStatus.CANCELLED
        assert outcomes["a.example"].message == "stopped, resumable"
        # Links found by the in-flight page stay pending for the next run
        assert controller.status("a.example")["status"] == "cancelled"
        store = open_frontier("a.example", crawl_settings.tasks_dir)
        try:
            assert store.counts()["pending"] == 3
        finally:
            store.close()

    def test_stop_unknown_task(self, config_store, crawl_settings):
        controller = TaskController(config_store, crawl_settings)
        assert controller.stop("nothing.example") is False

    @pytest.mark.asyncio
    async def test_stop_all_before_start(self, config_store, crawl_settings):
        config_store.create("https://a.example/")
        factory = FakeFetcherFactory({})
        controller = TaskController(config_store, crawl_settings, fetcher_factory=factory)

        controller.stop_all()
        outcomes = await controller.start(["a.example"])

        assert outcomes["a.example"].status == TaskStatus.CANCELLED
        assert factory.calls == []

    def test_status_of_idle_task(self, config_store, crawl_settings):
        config_store.create("https://a.example/")
        store = open_frontier("a.example", crawl_settings.tasks_dir)
        store.enqueue("https://a.example/")
        store.close()

        status = TaskController(config_store, crawl_settings).status("a.example")

        assert status["status"] == "idle"
        assert status["strategy"] == "static"
        assert status["pending"] == 1
        assert status["accepted"] == 0
