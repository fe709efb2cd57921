# File: tests/test_engine.py
# Crawl engine over in-memory link graphs
from __future__ import annotations

import asyncio
from contextlib import aclosing

import pytest

from conftest import ROOT, GraphRenderer, u
from site_mirror.crawler.engine import CrawlAborted, CrawlEngine
from site_mirror.crawler.models import FailureKind, RenderedPage, Termination
from site_mirror.crawler.renderer import RenderFatal, RenderPermanent, RenderTransient
from site_mirror.crawler.robots import RobotsTxtRules
from site_mirror.crawler.urls import normalize_url


def assert_consistent(engine: CrawlEngine, report) -> None:
    """Frontier and visited never overlap; every capture was visited once."""
    state = engine.state
    frontier = {e.url for e in state.frontier}
    assert not frontier & state.visited
    urls = [c.url for c in report.captures]
    assert len(urls) == len(set(urls))
    assert set(urls) <= state.visited
    assert {f.url for f in report.failures} <= state.visited


@pytest.mark.asyncio()
async def test_fifo_discovery_order(make_config):
    graph = {
        u("/"): ["/a", "/b"],
        u("/a"): ["/", "/c"],
        u("/b"): [],
        u("/c"): [],
    }
    engine = CrawlEngine(GraphRenderer(graph), make_config())
    report = await engine.crawl(ROOT)

    assert [c.url for c in report.captures] == [u("/"), u("/a"), u("/b"), u("/c")]
    assert report.termination is Termination.EXHAUSTED
    assert report.failures == []
    assert_consistent(engine, report)


@pytest.mark.asyncio()
async def test_cycles_render_each_page_once(make_config):
    pages = ["/", "/one", "/two", "/three", "/four"]
    # every page links to every other page, including the seed
    graph = {u(p): [q for q in pages if q != p] for p in pages}
    renderer = GraphRenderer(graph)
    engine = CrawlEngine(renderer, make_config())
    report = await engine.crawl(ROOT)

    assert sorted(c.url for c in report.captures) == sorted(u(p) for p in pages)
    assert sorted(renderer.calls) == sorted(u(p) for p in pages)
    assert_consistent(engine, report)


@pytest.mark.asyncio()
async def test_equivalent_links_are_deduplicated(make_config):
    graph = {
        u("/"): ["/a", "/a/", "/a#top", "HTTPS://EXAMPLE.COM/a", "https://example.com:443/a"],
        u("/a"): ["./", "../"],
    }
    renderer = GraphRenderer(graph)
    report = await CrawlEngine(renderer, make_config()).crawl("https://Example.com")

    assert [c.url for c in report.captures] == [u("/"), u("/a")]
    assert renderer.calls == [u("/"), u("/a")]


@pytest.mark.asyncio()
async def test_seed_permanent_failure_yields_empty_result(make_config):
    renderer = GraphRenderer({}, failures={ROOT: [RenderPermanent(ROOT, "HTTP 404")]})
    report = await CrawlEngine(renderer, make_config()).crawl(ROOT)

    assert report.captures == []
    assert report.error is None
    assert report.termination is Termination.EXHAUSTED
    assert [(f.url, f.kind) for f in report.failures] == [(ROOT, FailureKind.PERMANENT)]
    assert renderer.calls == [ROOT]


@pytest.mark.asyncio()
async def test_transient_failure_is_retried(make_config):
    flaky = u("/flaky")
    graph = {u("/"): ["/flaky"], flaky: []}
    renderer = GraphRenderer(
        graph,
        failures={flaky: [RenderTransient(flaky, "timeout"), RenderTransient(flaky, "HTTP 503")]},
    )
    report = await CrawlEngine(renderer, make_config(retry_times=2)).crawl(ROOT)

    assert flaky in {c.url for c in report.captures}
    assert renderer.calls.count(flaky) == 3
    assert report.failures == []


@pytest.mark.asyncio()
async def test_transient_exhaustion_degrades_single_page(make_config):
    flaky = u("/flaky")
    graph = {u("/"): ["/flaky", "/ok"], flaky: [], u("/ok"): []}
    renderer = GraphRenderer(
        graph, failures={flaky: [RenderTransient(flaky, "timeout") for _ in range(5)]}
    )
    report = await CrawlEngine(renderer, make_config(retry_times=1)).crawl(ROOT)

    assert [c.url for c in report.captures] == [u("/"), u("/ok")]
    assert renderer.calls.count(flaky) == 2
    (failure,) = report.failures
    assert failure.url == flaky
    assert failure.kind is FailureKind.TRANSIENT
    assert failure.attempts == 2
    assert report.termination is Termination.EXHAUSTED


@pytest.mark.asyncio()
async def test_permanent_failure_is_not_retried(make_config):
    gone = u("/gone")
    graph = {u("/"): ["/gone", "/b"], u("/b"): []}
    renderer = GraphRenderer(graph)
    report = await CrawlEngine(renderer, make_config(retry_times=3)).crawl(ROOT)

    assert renderer.calls.count(gone) == 1
    assert [c.url for c in report.captures] == [u("/"), u("/b")]
    assert report.failures[0].reason == "HTTP 404"


@pytest.mark.asyncio()
async def test_fatal_failure_aborts_with_partial_result(make_config):
    broken = u("/a")
    graph = {u("/"): ["/a", "/b"], u("/b"): []}
    renderer = GraphRenderer(graph, failures={broken: [RenderFatal(broken, "browser crashed")]})
    engine = CrawlEngine(renderer, make_config())
    report = await engine.crawl(ROOT)

    assert [c.url for c in report.captures] == [u("/")]
    assert report.termination is Termination.FATAL
    assert "browser crashed" in report.error
    assert report.failures[-1].kind is FailureKind.FATAL
    assert u("/b") not in renderer.calls
    assert_consistent(engine, report)


@pytest.mark.asyncio()
async def test_iter_captures_raises_after_delivering_pages(make_config):
    broken = u("/a")
    graph = {u("/"): ["/a"]}
    renderer = GraphRenderer(graph, failures={broken: [RenderFatal(broken, "gone away")]})
    engine = CrawlEngine(renderer, make_config())

    seen = []
    with pytest.raises(CrawlAborted) as exc_info:
        async for capture in engine.iter_captures(ROOT):
            seen.append(capture.url)

    assert seen == [u("/")]
    assert exc_info.value.captured == 1


@pytest.mark.asyncio()
async def test_unexpected_renderer_error_is_fatal(make_config):
    class Exploding(GraphRenderer):
        async def render(self, url):
            if url == u("/a"):
                raise OSError("renderer process died")
            return await super().render(url)

    report = await CrawlEngine(Exploding({u("/"): ["/a"]}), make_config()).crawl(ROOT)

    assert report.termination is Termination.FATAL
    assert [c.url for c in report.captures] == [u("/")]


@pytest.mark.asyncio()
async def test_max_pages_ceiling(make_config):
    graph = {u("/"): ["/1"], u("/1"): ["/2"], u("/2"): ["/3"], u("/3"): []}
    engine = CrawlEngine(GraphRenderer(graph), make_config(max_pages=2))
    report = await engine.crawl(ROOT)

    assert [c.url for c in report.captures] == [u("/"), u("/1")]
    assert report.termination is Termination.CEILING
    assert [e.url for e in engine.state.frontier] == [u("/2")]
    assert_consistent(engine, report)


@pytest.mark.asyncio()
async def test_max_pages_equal_to_site_size_is_exhaustion(make_config):
    graph = {u("/"): ["/1"], u("/1"): []}
    report = await CrawlEngine(GraphRenderer(graph), make_config(max_pages=2)).crawl(ROOT)

    assert report.pages_captured == 2
    assert report.termination is Termination.EXHAUSTED


@pytest.mark.asyncio()
async def test_max_depth_limits_link_hops(make_config):
    graph = {u("/"): ["/a", "/b"], u("/a"): ["/c"], u("/b"): [], u("/c"): ["/d"], u("/d"): []}
    renderer = GraphRenderer(graph)
    report = await CrawlEngine(renderer, make_config(max_depth=1)).crawl(ROOT)

    assert [c.url for c in report.captures] == [u("/"), u("/a"), u("/b")]
    assert report.termination is Termination.EXHAUSTED


@pytest.mark.asyncio()
async def test_depth_zero_captures_only_seed(make_config):
    graph = {u("/"): ["/a"], u("/a"): []}
    report = await CrawlEngine(GraphRenderer(graph), make_config(max_depth=0)).crawl(ROOT)

    assert [c.url for c in report.captures] == [u("/")]


@pytest.mark.asyncio()
async def test_time_ceiling(make_config):
    renderer = GraphRenderer({u("/"): []})
    report = await CrawlEngine(renderer, make_config(max_seconds=0)).crawl(ROOT)

    assert report.captures == []
    assert report.termination is Termination.CEILING
    assert renderer.calls == []


@pytest.mark.asyncio()
async def test_time_ceiling_interrupts_slow_render(make_config):
    graph = {u("/"): ["/a", "/slow"], u("/a"): [], u("/slow"): []}

    class SlowRenderer(GraphRenderer):
        async def render(self, url):
            if url.endswith("/slow"):
                await asyncio.sleep(5)
            return await super().render(url)

    engine = CrawlEngine(SlowRenderer(graph), make_config(max_seconds=0.3))
    report = await engine.crawl(ROOT)

    assert [c.url for c in report.captures] == [u("/"), u("/a")]
    assert report.termination is Termination.CEILING
    assert report.duration < 5
    (failure,) = report.failures
    assert failure.url == u("/slow")
    assert failure.kind is FailureKind.TRANSIENT
    assert_consistent(engine, report)


@pytest.mark.asyncio()
async def test_seed_redirect_to_other_host_keeps_following_links(make_config):
    moved = "https://www.example.com"
    graph = {
        moved + "/home": ["/a", "https://other.org/x"],
        moved + "/a": [],
    }

    class RedirectingRenderer(GraphRenderer):
        async def render(self, url):
            if normalize_url(url) == ROOT:
                page = await super().render(moved + "/home")
                return RenderedPage(page.title, page.text_content, page.links, final_url=moved + "/home")
            return await super().render(url)

    report = await CrawlEngine(RedirectingRenderer(graph), make_config()).crawl(ROOT)

    assert [c.url for c in report.captures] == [ROOT, moved + "/a"]


@pytest.mark.asyncio()
async def test_same_site_only_toggle(make_config):
    graph = {
        u("/"): ["https://other.org/x", "/local", "mailto:me@example.com"],
        u("/local"): [],
        "https://other.org/x": [],
    }
    same = await CrawlEngine(GraphRenderer(graph), make_config()).crawl(ROOT)
    assert [c.url for c in same.captures] == [u("/"), u("/local")]

    anywhere = await CrawlEngine(GraphRenderer(graph), make_config(same_site_only=False)).crawl(ROOT)
    assert [c.url for c in anywhere.captures] == [u("/"), "https://other.org/x", u("/local")]


@pytest.mark.asyncio()
async def test_robots_rules_filter_links(make_config):
    graph = {u("/"): ["/private/a", "/public"], u("/public"): [], u("/private/a"): []}
    robots = RobotsTxtRules("User-agent: *\nDisallow: /private")
    renderer = GraphRenderer(graph)
    report = await CrawlEngine(renderer, make_config(), robots=robots).crawl(ROOT)

    assert [c.url for c in report.captures] == [u("/"), u("/public")]
    assert report.disallowed == [u("/private/a")]
    assert u("/private/a") not in renderer.calls


@pytest.mark.asyncio()
async def test_cancel_keeps_in_flight_page(make_config):
    graph = {u("/"): ["/a", "/b"], u("/a"): [], u("/b"): []}
    engine = None

    def cancel_on_a(url):
        if url == u("/a"):
            engine.cancel()

    renderer = GraphRenderer(graph, on_render=cancel_on_a)
    engine = CrawlEngine(renderer, make_config())
    report = await engine.crawl(ROOT)

    assert [c.url for c in report.captures] == [u("/"), u("/a")]
    assert report.termination is Termination.CANCELLED
    assert u("/b") not in renderer.calls
    assert_consistent(engine, report)


@pytest.mark.asyncio()
async def test_closing_iterator_early_stops_the_walk(make_config):
    graph = {u("/"): ["/a", "/b"], u("/a"): [], u("/b"): []}
    renderer = GraphRenderer(graph)
    engine = CrawlEngine(renderer, make_config())

    async with aclosing(engine.iter_captures(ROOT)) as captures:
        async for capture in captures:
            first = capture
            break

    assert first.url == u("/")
    assert u("/b") not in renderer.calls


@pytest.mark.asyncio()
async def test_engine_restarts_from_scratch(make_config):
    graph = {u("/"): ["/a"], u("/a"): []}
    engine = CrawlEngine(GraphRenderer(graph), make_config())

    first = await engine.crawl(ROOT)
    second = await engine.crawl(ROOT)

    assert [c.url for c in first.captures] == [c.url for c in second.captures] == [u("/"), u("/a")]


@pytest.mark.asyncio()
async def test_concurrent_workers_never_duplicate(make_config):
    size = 60
    # dense graph: page i links to the next five pages and back to the seed
    graph = {u("/"): [f"/p{i}" for i in range(5)]}
    for i in range(size):
        graph[u(f"/p{i}")] = ["/"] + [f"/p{(i + k) % size}" for k in range(1, 6)]
    renderer = GraphRenderer(graph)
    engine = CrawlEngine(renderer, make_config(concurrency=4))
    report = await engine.crawl(ROOT)

    assert report.pages_captured == size + 1
    assert len(renderer.calls) == len(set(renderer.calls)) == size + 1
    assert_consistent(engine, report)


@pytest.mark.asyncio()
async def test_concurrent_workers_respect_max_pages(make_config):
    graph = {u("/"): [f"/p{i}" for i in range(20)]}
    graph.update({u(f"/p{i}"): [] for i in range(20)})
    engine = CrawlEngine(GraphRenderer(graph), make_config(concurrency=3, max_pages=5))
    report = await engine.crawl(ROOT)

    assert report.pages_captured == 5
    assert report.termination is Termination.CEILING
    assert_consistent(engine, report)
