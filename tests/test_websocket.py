from __future__ import annotations

import asyncio

from browser_capture.websocket import WebSocketCollector
from fakes import FakeBrowserContext


def _frame(request_id: str, timestamp: float, payload: str, opcode: int = 1) -> dict:
    return {
        "requestId": request_id,
        "timestamp": timestamp,
        "response": {"opcode": opcode, "mask": False, "payloadData": payload},
    }


def test_connection_lifecycle() -> None:
    async def scenario() -> None:
        ctx = FakeBrowserContext()
        page = ctx.add_page()
        collector = WebSocketCollector()
        await collector.track(page)
        assert "Network.enable" in page.sessions[0].sent

        page.emit_cdp(
            "Network.webSocketCreated",
            {"requestId": "ws1", "url": "wss://live.test/feed", "initiator": {"type": "script"}},
        )
        page.emit_cdp("Network.webSocketFrameSent", _frame("ws1", 1.5, '{"op":"sub"}'))
        page.emit_cdp("Network.webSocketFrameReceived", _frame("ws1", 1.75, '{"op":"ack"}'))
        page.emit_cdp("Network.webSocketClosed", {"requestId": "ws1", "timestamp": 3.0})

        [ws] = collector.current_items(page)
        assert collector.id_of(ws) == 1
        assert ws.connection.url == "wss://live.test/feed"
        assert ws.connection.initiator == {"type": "script"}
        assert ws.connection.status == "closed"
        assert ws.connection.closed_at == 3000.0
        assert [f.direction for f in ws.frames] == ["sent", "received"]
        assert ws.frames[0].timestamp == 1500.0
        assert ws.frames[1].payload_data == '{"op":"ack"}'
        assert ws.sent_count == 1 and ws.received_count == 1

    asyncio.run(scenario())


def test_new_connection_is_open() -> None:
    async def scenario() -> None:
        ctx = FakeBrowserContext()
        page = ctx.add_page()
        collector = WebSocketCollector()
        await collector.track(page)
        page.emit_cdp("Network.webSocketCreated", {"requestId": "ws1", "url": "wss://a.test"})
        assert collector.connection_for(page, "ws1").connection.status == "open"

    asyncio.run(scenario())


def test_events_for_unknown_connection_are_dropped() -> None:
    async def scenario() -> None:
        ctx = FakeBrowserContext()
        page = ctx.add_page()
        collector = WebSocketCollector()
        await collector.track(page)
        page.emit_cdp("Network.webSocketFrameReceived", _frame("nope", 1.0, "x"))
        page.emit_cdp("Network.webSocketClosed", {"requestId": "nope", "timestamp": 2.0})
        assert collector.current_items(page) == []

    asyncio.run(scenario())


def test_reused_request_id_after_navigation_is_a_new_connection() -> None:
    async def scenario() -> None:
        ctx = FakeBrowserContext()
        page = ctx.add_page()
        collector = WebSocketCollector()
        await collector.track(page)

        page.emit_cdp("Network.webSocketCreated", {"requestId": "ws1", "url": "wss://old.test"})
        page.emit_cdp("Network.webSocketFrameReceived", _frame("ws1", 1.0, "old"))
        page.navigate()
        assert collector.connection_for(page, "ws1") is None

        # Frames of the old connection after navigation are not kept.
        page.emit_cdp("Network.webSocketFrameReceived", _frame("ws1", 2.0, "late"))
        page.emit_cdp("Network.webSocketCreated", {"requestId": "ws1", "url": "wss://new.test"})
        page.emit_cdp("Network.webSocketFrameReceived", _frame("ws1", 3.0, "new"))

        [old] = collector.all_items(page)[:1]
        [new] = collector.current_items(page)
        assert old is not new
        assert [f.payload_data for f in old.frames] == ["old"]
        assert [f.payload_data for f in new.frames] == ["new"]
        assert collector.id_of(old) == 1
        assert collector.id_of(new) == 2

    asyncio.run(scenario())


def test_binary_frames_keep_opcode_and_base64_payload() -> None:
    async def scenario() -> None:
        ctx = FakeBrowserContext()
        page = ctx.add_page()
        collector = WebSocketCollector()
        await collector.track(page)
        page.emit_cdp("Network.webSocketCreated", {"requestId": "ws1", "url": "wss://a.test"})
        page.emit_cdp("Network.webSocketFrameReceived", _frame("ws1", 1.0, "H4sIAA==", opcode=2))
        frame = collector.connection_for(page, "ws1").frames[0]
        assert frame.opcode == 2
        assert frame.payload_data == "H4sIAA=="

    asyncio.run(scenario())
