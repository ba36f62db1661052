from __future__ import annotations

import asyncio

from browser_capture.console import ConsoleCollector, IssueAggregator, issue_primary_key
from browser_capture.errors import PageError
from browser_capture.formatters import console_item_type, short_console_description
from browser_capture.models import AggregatedIssue, CaptureConfig
from fakes import FakeBrowserContext, FakeConsoleMessage


def _issue(code: str, **details) -> dict:
    return {"issue": {"code": code, "details": details}}


def test_console_messages_and_page_errors_are_collected() -> None:
    async def scenario() -> None:
        ctx = FakeBrowserContext()
        page = ctx.add_page()
        collector = ConsoleCollector(CaptureConfig(collect_issues=False))
        await collector.track(page)
        assert page.sessions == []

        msg = FakeConsoleMessage("warning", "careful")
        err = ValueError("kaboom")
        page.emit("console", msg)
        page.emit("pageerror", err)
        page.emit("pageerror", "thrown string")

        items = collector.current_items(page)
        assert items[:2] == [msg, err]
        assert isinstance(items[2], PageError)
        assert items[2].message == "thrown string"
        assert [console_item_type(i) for i in items] == ["warning", "pageerror", "pageerror"]
        assert short_console_description(items[2], 3) == "msgid=3 [pageerror] thrown string"

    asyncio.run(scenario())


def test_issues_are_deduplicated_and_aggregated_by_code() -> None:
    async def scenario() -> None:
        ctx = FakeBrowserContext()
        page = ctx.add_page()
        collector = ConsoleCollector()
        await collector.track(page)
        assert page.sessions[0].sent == ["Audits.enable"]

        page.emit_cdp("Audits.issueAdded", _issue("CookieIssue", cookie="a"))
        page.emit_cdp("Audits.issueAdded", _issue("CookieIssue", cookie="a"))
        page.emit_cdp("Audits.issueAdded", _issue("CookieIssue", cookie="b"))
        page.emit_cdp("Audits.issueAdded", _issue("MixedContentIssue", url="http://x"))

        items = collector.current_items(page)
        assert len(items) == 2
        cookie, mixed = items
        assert isinstance(cookie, AggregatedIssue)
        assert cookie.code == "CookieIssue"
        assert cookie.count == 2
        assert mixed.count == 1
        assert console_item_type(cookie) == "issue"
        assert collector.id_of(mixed) == 2

    asyncio.run(scenario())


def test_issue_aggregation_restarts_after_navigation() -> None:
    async def scenario() -> None:
        ctx = FakeBrowserContext()
        page = ctx.add_page()
        collector = ConsoleCollector()
        await collector.track(page)

        page.emit_cdp("Audits.issueAdded", _issue("CookieIssue", cookie="a"))
        page.navigate()
        page.emit_cdp("Audits.issueAdded", _issue("CookieIssue", cookie="a"))

        [current] = collector.current_items(page)
        [first, second] = collector.all_items(page)
        assert current is second
        assert first is not second
        assert first.count == 1 and second.count == 1

    asyncio.run(scenario())


def test_audits_enable_failure_is_not_fatal() -> None:
    async def scenario() -> None:
        ctx = FakeBrowserContext()
        ctx.fail_methods = {"Audits.enable"}
        page = ctx.add_page()
        collector = ConsoleCollector()
        await collector.track(page)
        assert collector.is_tracked(page)
        page.emit("console", FakeConsoleMessage("log", "still here"))
        assert len(collector.current_items(page)) == 1

    asyncio.run(scenario())


def test_untrack_disables_audits() -> None:
    async def scenario() -> None:
        ctx = FakeBrowserContext()
        page = ctx.add_page()
        collector = ConsoleCollector()
        await collector.track(page)
        session = page.sessions[0]
        collector.untrack(page)
        await collector.drain()
        assert "Audits.disable" in session.sent
        assert session.detached

    asyncio.run(scenario())


def test_aggregator_ignores_events_without_code() -> None:
    emitted = []
    aggregator = IssueAggregator(emitted.append)
    aggregator.add({"issue": {"details": {}}})
    aggregator.add({})
    assert emitted == []


def test_issue_primary_key_ignores_detail_order() -> None:
    assert issue_primary_key("X", {"a": 1, "b": 2}) == issue_primary_key("X", {"b": 2, "a": 1})
    assert issue_primary_key("X", {"a": 1}) != issue_primary_key("Y", {"a": 1})
