from __future__ import annotations

import asyncio

import pytest

from browser_capture.context import CLOSE_PAGE_ERROR, SessionContext
from browser_capture.errors import CaptureError, NotFoundError, PageClosedError
from browser_capture.models import CaptureConfig
from browser_capture.traffic import analyze_frames
from fakes import FakeBrowserContext, FakeConsoleMessage


def _config(**kwargs) -> CaptureConfig:
    kwargs.setdefault("collect_issues", False)
    return CaptureConfig(**kwargs)


def test_snapshot_skips_closed_and_devtools_pages() -> None:
    ctx = FakeBrowserContext()
    page = ctx.add_page()
    ctx.add_page("devtools://devtools/bundled/inspector.html")
    closed = ctx.add_page()
    closed.closed = True

    session = SessionContext(ctx, _config())
    assert session.create_pages_snapshot() == [page]
    assert session.get_selected_page() is page

    with_devtools = SessionContext(ctx, _config(include_devtools_pages=True))
    assert len(with_devtools.create_pages_snapshot()) == 2


def test_selected_page_errors() -> None:
    ctx = FakeBrowserContext()
    session = SessionContext(ctx, _config())
    session.create_pages_snapshot()
    with pytest.raises(PageClosedError, match="No page selected"):
        session.get_selected_page()

    page = ctx.add_page()
    session.create_pages_snapshot()
    page.closed = True
    with pytest.raises(PageClosedError, match="has been closed"):
        session.get_selected_page()

    with pytest.raises(CaptureError, match="No page found"):
        session.get_page_by_idx(5)


def test_last_page_cannot_be_closed() -> None:
    async def scenario() -> None:
        ctx = FakeBrowserContext()
        ctx.add_page()
        session = await SessionContext.create(ctx, _config())
        with pytest.raises(CaptureError, match=CLOSE_PAGE_ERROR):
            await session.close_page(0)
        await session.dispose()

    asyncio.run(scenario())


def test_close_page_untracks_and_reselects() -> None:
    async def scenario() -> None:
        ctx = FakeBrowserContext()
        first, second = ctx.add_page(), ctx.add_page("https://two.test/")
        session = await SessionContext.create(ctx, _config())
        session.select_page(second)

        await session.close_page(1)
        assert second.closed
        assert session.get_pages() == [first]
        assert session.is_page_selected(first)
        assert all(not c.is_tracked(second) for c in session.collectors)
        await session.dispose()

    asyncio.run(scenario())


def test_new_page_is_selected_and_tracked() -> None:
    async def scenario() -> None:
        ctx = FakeBrowserContext()
        ctx.add_page()
        session = await SessionContext.create(ctx, _config())
        page = await session.new_page()
        for collector in session.collectors:
            await collector.drain()

        assert session.is_page_selected(page)
        assert page in session.get_pages()
        assert all(c.is_tracked(page) for c in session.collectors)
        assert page.listener_count("console") == 1
        await session.dispose()

    asyncio.run(scenario())


def test_brokers_use_selected_page() -> None:
    async def scenario() -> None:
        ctx = FakeBrowserContext()
        first, second = ctx.add_page(), ctx.add_page()
        session = await SessionContext.create(ctx, _config())

        r1 = first.request("https://a.test/", navigation=True)
        first.navigate()
        r2 = first.request("https://a.test/api")
        msg = FakeConsoleMessage("log", "hi")
        second.emit("console", msg)

        assert session.get_network_requests() == [r1, r2]
        first.request("https://b.test/", navigation=True)
        first.navigate()
        assert session.get_network_requests(include_preserved=True)[:2] == [r1, r2]
        assert session.get_network_request_by_id(2) is r2
        assert session.get_network_request_stable_id(r2) == 2
        assert session.get_console_data() == []

        session.select_page(second)
        assert session.get_console_data() == [msg]
        assert session.get_console_message_by_id(1) is msg
        assert session.get_console_message_stable_id(msg) == 1
        with pytest.raises(NotFoundError):
            session.get_network_request_by_id(1)
        await session.dispose()

    asyncio.run(scenario())


def test_traffic_cache_is_per_page_and_dropped_on_close() -> None:
    async def scenario() -> None:
        ctx = FakeBrowserContext()
        first, second = ctx.add_page(), ctx.add_page()
        session = await SessionContext.create(ctx, _config())
        summary = analyze_frames([], wsid=1, url="wss://a.test")

        session.cache_traffic_summary(1, summary)
        assert session.get_cached_traffic_summary(1) is summary
        session.select_page(second)
        assert session.get_cached_traffic_summary(1) is None

        session.select_page(first)
        await session.close_page(0)
        assert session.is_page_selected(second)
        assert session.get_cached_traffic_summary(1) is None
        assert session._traffic_cache == {}
        await session.dispose()

    asyncio.run(scenario())


def test_dispose_detaches_everything() -> None:
    async def scenario() -> None:
        ctx = FakeBrowserContext()
        page = ctx.add_page()
        session = await SessionContext.create(ctx, _config())
        await session.dispose()
        assert ctx.listener_count("page") == 0
        assert page.listener_count() == 0
        assert all(s.detached for s in page.sessions)

    asyncio.run(scenario())


def test_page_opened_during_dispose_is_not_tracked() -> None:
    async def scenario() -> None:
        ctx = FakeBrowserContext()
        ctx.add_page()
        session = await SessionContext.create(ctx, _config())
        late = ctx.add_page()
        ctx.emit("page", late)
        await session.dispose()
        assert not any(c.is_tracked(late) for c in session.collectors)
        assert late.listener_count() == 0

    asyncio.run(scenario())
