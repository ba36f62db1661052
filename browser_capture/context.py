"""Session-level owner of the collectors for one browser context."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from playwright.async_api import BrowserContext, Page, Request

from .collector import PageCollector
from .console import ConsoleCollector
from .errors import CaptureError, PageClosedError
from .models import CaptureConfig, TrafficSummary, WebSocketData
from .network import NetworkCollector
from .websocket import WebSocketCollector

logger = logging.getLogger(__name__)

CLOSE_PAGE_ERROR = "The last open page cannot be closed."


class SessionContext:
    """Own one collector set per browser context and broker lookups by id."""

    def __init__(self, browser_context: BrowserContext, config: Optional[CaptureConfig] = None):
        self.browser_context = browser_context
        self.config = config or CaptureConfig()
        self.network = NetworkCollector(self.config)
        self.console = ConsoleCollector(self.config)
        self.websocket = WebSocketCollector(self.config)
        self._pages: List[Page] = []
        self._selected_page: Optional[Page] = None
        self._traffic_cache: Dict[Tuple[Page, int], TrafficSummary] = {}
        self._watched: List[Page] = []

    @classmethod
    async def create(
        cls, browser_context: BrowserContext, config: Optional[CaptureConfig] = None
    ) -> "SessionContext":
        context = cls(browser_context, config)
        await context.init()
        return context

    @property
    def collectors(self) -> Tuple[PageCollector, ...]:
        return (self.network, self.console, self.websocket)

    async def init(self) -> None:
        for page in self.create_pages_snapshot():
            self._watch(page)
        for collector in self.collectors:
            await collector.init(self.browser_context)
        self.browser_context.on("page", self._on_page_created)

    async def dispose(self) -> None:
        try:
            self.browser_context.remove_listener("page", self._on_page_created)
        except Exception as e:
            logger.debug("Failed to remove page listener: %s", e)
        for collector in self.collectors:
            collector.dispose()
        for collector in self.collectors:
            await collector.drain()
        for page in self._watched:
            try:
                page.remove_listener("close", self._on_page_closed)
            except Exception as e:
                logger.debug("Failed to remove close listener: %s", e)
        self._watched = []
        self._traffic_cache.clear()

    # Pages.

    def create_pages_snapshot(self) -> List[Page]:
        pages = []
        for page in list(getattr(self.browser_context, "pages", []) or []):
            if self._is_closed(page):
                continue
            if not self.config.include_devtools_pages and self._page_url(page).startswith(
                "devtools://"
            ):
                continue
            pages.append(page)
        self._pages = pages
        if self._selected_page is None or self._selected_page not in pages:
            self._selected_page = pages[0] if pages else None
        return list(pages)

    def get_pages(self) -> List[Page]:
        return list(self._pages)

    def get_page_by_idx(self, idx: int) -> Page:
        try:
            return self._pages[int(idx)]
        except (IndexError, ValueError, TypeError):
            raise CaptureError("No page found") from None

    def select_page(self, page: Page) -> None:
        self._selected_page = page

    def is_page_selected(self, page: Page) -> bool:
        return self._selected_page is page

    def get_selected_page(self) -> Page:
        page = self._selected_page
        if page is None:
            raise PageClosedError("No page selected")
        if self._is_closed(page):
            raise PageClosedError(
                "The selected page has been closed. List pages to see open pages."
            )
        return page

    async def new_page(self) -> Page:
        page = await self.browser_context.new_page()
        self._watch(page)
        self.create_pages_snapshot()
        self.select_page(page)
        for collector in self.collectors:
            await collector.track(page)
        return page

    async def close_page(self, idx: int) -> None:
        if len(self._pages) == 1:
            raise CaptureError(CLOSE_PAGE_ERROR)
        page = self.get_page_by_idx(idx)
        await page.close(run_before_unload=False)

    # Network.

    def get_network_requests(self, include_preserved: bool = False) -> List[Request]:
        page = self.get_selected_page()
        if include_preserved:
            return self.network.all_items(page)
        return self.network.current_items(page)

    def get_network_request_by_id(self, reqid: int) -> Request:
        return self.network.by_id(self.get_selected_page(), reqid)

    def get_network_request_stable_id(self, request: Request) -> int:
        return self.network.id_of(request)

    def get_request_initiator(self, request: Request) -> Optional[Dict[str, Any]]:
        return self.network.initiator_for(self.get_selected_page(), request)

    def get_request_initiator_by_id(self, reqid: int) -> Optional[Dict[str, Any]]:
        page = self.get_selected_page()
        return self.network.initiator_for(page, self.network.by_id(page, reqid))

    def resolve_cdp_request_id(self, cdp_request_id: str) -> Optional[int]:
        return self.network.resolve_cdp_request_id(self.get_selected_page(), cdp_request_id)

    # Console.

    def get_console_data(self, include_preserved: bool = False) -> List[Any]:
        page = self.get_selected_page()
        if include_preserved:
            return self.console.all_items(page)
        return self.console.current_items(page)

    def get_console_message_by_id(self, msgid: int) -> Any:
        return self.console.by_id(self.get_selected_page(), msgid)

    def get_console_message_stable_id(self, message: Any) -> int:
        return self.console.id_of(message)

    # WebSocket.

    def get_websocket_connections(self, include_preserved: bool = False) -> List[WebSocketData]:
        page = self.get_selected_page()
        if include_preserved:
            return self.websocket.all_items(page)
        return self.websocket.current_items(page)

    def get_websocket_by_id(self, wsid: int) -> WebSocketData:
        return self.websocket.by_id(self.get_selected_page(), wsid)

    def get_websocket_stable_id(self, ws: WebSocketData) -> int:
        return self.websocket.id_of(ws)

    def cache_traffic_summary(self, wsid: int, summary: TrafficSummary) -> None:
        self._traffic_cache[(self.get_selected_page(), int(wsid))] = summary

    def get_cached_traffic_summary(self, wsid: int) -> Optional[TrafficSummary]:
        return self._traffic_cache.get((self.get_selected_page(), int(wsid)))

    # Internals.

    def _watch(self, page: Page) -> None:
        if any(p is page for p in self._watched):
            return
        page.on("close", self._on_page_closed)
        self._watched.append(page)

    def _on_page_created(self, page: Page) -> None:
        self._watch(page)
        self.create_pages_snapshot()

    def _on_page_closed(self, page: Page) -> None:
        for key in [k for k in self._traffic_cache if k[0] is page]:
            del self._traffic_cache[key]
        self._watched = [p for p in self._watched if p is not page]
        self.create_pages_snapshot()

    @staticmethod
    def _is_closed(page: Page) -> bool:
        try:
            return bool(page.is_closed())
        except Exception:
            return True

    @staticmethod
    def _page_url(page: Page) -> str:
        try:
            return str(page.url or "")
        except Exception:
            return ""
