from __future__ import annotations

import asyncio

import pytest

from browser_capture.errors import NotTrackedError
from browser_capture.network import InitiatorTable, NetworkCollector, is_main_frame_navigation
from fakes import FakeBrowserContext, FakeFrame, FakeResponse, ServiceWorkerRequest


def _setup(ctx: FakeBrowserContext):
    page = ctx.add_page()
    collector = NetworkCollector()
    return page, collector


def test_navigation_requests_move_into_new_epoch() -> None:
    async def scenario() -> None:
        ctx = FakeBrowserContext()
        page, collector = _setup(ctx)
        await collector.track(page)

        r1 = page.request("https://a.test/", navigation=True, resource_type="document")
        r2 = page.request("https://a.test/app.js", resource_type="script")
        r3 = page.request("https://b.test/", navigation=True, resource_type="document")
        r4 = page.request("https://b.test/style.css", resource_type="stylesheet")
        r5 = page.request("https://b.test/api")
        page.navigate()

        assert collector.current_items(page) == [r3, r4, r5]
        assert collector.all_items(page) == [r1, r2, r3, r4, r5]
        assert [collector.id_of(r) for r in (r3, r4, r5)] == [3, 4, 5]

    asyncio.run(scenario())


def test_without_navigation_request_new_epoch_starts_empty() -> None:
    async def scenario() -> None:
        ctx = FakeBrowserContext()
        page, collector = _setup(ctx)
        await collector.track(page)
        r1 = page.request("https://a.test/x")
        r2 = page.request("https://a.test/y")
        page.navigate()
        assert collector.current_items(page) == []
        assert collector.all_items(page) == [r1, r2]

    asyncio.run(scenario())


def test_subframe_navigation_request_is_not_a_cut_point() -> None:
    async def scenario() -> None:
        ctx = FakeBrowserContext()
        page, collector = _setup(ctx)
        await collector.track(page)
        page.request("https://ads.test/frame", navigation=True, frame=FakeFrame("child"))
        page.navigate()
        assert collector.current_items(page) == []

    asyncio.run(scenario())


def test_service_worker_requests_are_collected_but_never_cut_points() -> None:
    async def scenario() -> None:
        ctx = FakeBrowserContext()
        page, collector = _setup(ctx)
        await collector.track(page)
        sw = ServiceWorkerRequest("https://a.test/sw-fetch", navigation=True)
        page.emit("request", sw)
        assert not is_main_frame_navigation(sw, page.main_frame)
        page.navigate()
        assert collector.current_items(page) == []
        assert collector.all_items(page) == [sw]

    asyncio.run(scenario())


def test_initiators_resolve_and_clear_on_navigation() -> None:
    async def scenario() -> None:
        ctx = FakeBrowserContext()
        page, collector = _setup(ctx)
        await collector.track(page)
        assert page.sessions[0].sent == ["Network.enable"]

        initiator = {
            "type": "script",
            "stack": {"callFrames": [{"functionName": "load", "url": "https://a.test/app.js"}]},
        }
        page.emit_cdp(
            "Network.requestWillBeSent",
            {"requestId": "42.1", "request": {"url": "https://a.test/api"}, "initiator": initiator},
        )
        req = page.request("https://a.test/api")

        assert collector.initiator_for(page, req) == initiator
        assert collector.initiator_by_request_id(page, "42.1") == initiator
        assert collector.resolve_cdp_request_id(page, "42.1") == collector.id_of(req)
        assert collector.resolve_cdp_request_id(page, "") is None
        assert collector.resolve_cdp_request_id(page, "unknown") is None

        page.navigate()
        assert collector.initiator_for(page, req) is None
        assert collector.initiator_by_request_id(page, "42.1") is None

    asyncio.run(scenario())


def test_initiator_failure_does_not_block_collection() -> None:
    async def scenario() -> None:
        ctx = FakeBrowserContext()
        ctx.fail_cdp = True
        page, collector = _setup(ctx)
        await collector.track(page)
        req = page.request("https://a.test/x")
        assert collector.current_items(page) == [req]
        assert collector.initiator_for(page, req) is None

    asyncio.run(scenario())


def test_response_status_is_recorded() -> None:
    async def scenario() -> None:
        ctx = FakeBrowserContext()
        page, collector = _setup(ctx)
        await collector.track(page)
        req = page.request("https://a.test/missing")
        assert collector.status_of(req) is None
        page.emit("response", FakeResponse(req, 404))
        assert collector.status_of(req) == 404

    asyncio.run(scenario())


def test_initiator_queries_need_tracked_page() -> None:
    ctx = FakeBrowserContext()
    page = ctx.add_page()
    collector = NetworkCollector()
    with pytest.raises(NotTrackedError):
        collector.initiator_by_request_id(page, "1")


def test_initiator_table_keeps_latest_request_per_url() -> None:
    table = InitiatorTable()
    table.record("1", "https://a.test/x", {"type": "parser"})
    table.record("2", "https://a.test/x", None)
    assert table.request_id_for_url("https://a.test/x") == "2"
    assert table.get("1") == {"type": "parser"}
    assert table.get("2") is None
    assert len(table) == 1
    table.clear()
    assert table.url_for("1") is None
