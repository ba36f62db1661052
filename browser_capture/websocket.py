"""WebSocket connection capture built from CDP Network events."""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional

from playwright.async_api import Page

from .collector import PageCollector, PageState
from .models import CaptureConfig, WebSocketConnection, WebSocketData, WebSocketFrame

logger = logging.getLogger(__name__)


class WebSocketCollector(PageCollector[WebSocketData]):
    """Aggregate created/frame/closed events into one item per connection.

    Connections are looked up by protocol request id in a table that only
    covers the current epoch, so an id reused after navigation never merges
    with a connection from the previous page. Events for unknown ids are
    dropped.
    """

    kind = "WebSocket connection"

    def __init__(self, config: Optional[CaptureConfig] = None):
        super().__init__(config)
        self._connections: Dict[Page, Dict[str, WebSocketData]] = {}

    def connection_for(self, page: Page, request_id: str) -> Optional[WebSocketData]:
        """Live connection of the current epoch with this protocol id."""
        self._require_state(page)
        return self._connections.get(page, {}).get(str(request_id or ""))

    async def _attach(self, state: PageState) -> None:
        page = state.page
        self._connections[page] = {}

        def _table() -> Dict[str, WebSocketData]:
            return self._connections.get(page, {})

        def _on_created(event: Dict[str, Any]) -> None:
            request_id = str(event.get("requestId") or "")
            data = WebSocketData(
                connection=WebSocketConnection(
                    request_id=request_id,
                    url=str(event.get("url") or ""),
                    initiator=event.get("initiator"),
                    status="connecting",
                    created_at=time.time() * 1000,
                )
            )
            self._collect(state, data)
            _table()[request_id] = data
            # CDP has no separate open event for WebSockets.
            data.connection.status = "open"

        def _frame_handler(direction: str):
            def _on_frame(event: Dict[str, Any]) -> None:
                request_id = str(event.get("requestId") or "")
                data = _table().get(request_id)
                if data is None:
                    return
                response = event.get("response") or {}
                data.frames.append(
                    WebSocketFrame(
                        request_id=request_id,
                        direction=direction,
                        timestamp=float(event.get("timestamp") or 0) * 1000,
                        opcode=int(response.get("opcode") or 0),
                        payload_data=str(response.get("payloadData") or ""),
                    )
                )

            return _on_frame

        def _on_closed(event: Dict[str, Any]) -> None:
            data = _table().get(str(event.get("requestId") or ""))
            if data is None:
                return
            data.connection.status = "closed"
            data.connection.closed_at = float(event.get("timestamp") or 0) * 1000

        session = await self._open_session(state)
        self._listen(state, "Network.webSocketCreated", _on_created)
        self._listen(state, "Network.webSocketFrameSent", _frame_handler("sent"))
        self._listen(state, "Network.webSocketFrameReceived", _frame_handler("received"))
        self._listen(state, "Network.webSocketClosed", _on_closed)
        await session.send("Network.enable")

    def _detach(self, state: PageState) -> None:
        if state.page not in self._states:
            self._connections.pop(state.page, None)

    def _on_rotated(self, state: PageState) -> None:
        self._connections[state.page] = {}
