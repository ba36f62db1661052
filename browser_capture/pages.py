"""LLM tools for listing, selecting, opening and closing pages."""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from playwright.async_api import Error as PlaywrightError

from .context import SessionContext
from .errors import CaptureError
from .tools import ToolFeature, error_response, mcp_tool

logger = logging.getLogger(__name__)

DEFAULT_NAVIGATION_TIMEOUT_MS = 10000


class PagesFeature(ToolFeature):
    """Pick the page the inspection tools read from."""

    def __init__(self, context: SessionContext):
        super().__init__()
        self.context = context

    def _page_list(self) -> Dict[str, Any]:
        pages = self.context.create_pages_snapshot()
        items: List[Dict[str, Any]] = []
        lines = ["## Pages"]
        for idx, page in enumerate(pages):
            selected = self.context.is_page_selected(page)
            url = str(getattr(page, "url", "") or "")
            items.append({"page_idx": idx, "url": url, "selected": selected})
            lines.append(f"{idx}: {url}{' [selected]' if selected else ''}")
        return {"ok": True, "total": len(pages), "items": items, "text": "\n".join(lines)}

    @mcp_tool(name="list_pages", examples=["list_pages()"])
    async def list_pages(self) -> Dict[str, Any]:
        """
        List open pages. The selected page is the one every network, console
        and WebSocket tool reads from.

        Returns:
            Dict with `ok`, `total`, `items` (page_idx/url/selected) and a
            markdown `text` listing.
        """
        return self._page_list()

    @mcp_tool(name="select_page", examples=["select_page(page_idx=1)"])
    async def select_page(self, page_idx: int) -> Dict[str, Any]:
        """
        Select a page as context for future tool calls and bring it to front.

        Args:
            page_idx: Index of the page from `list_pages`.
        """
        try:
            page = self.context.get_page_by_idx(page_idx)
        except CaptureError as e:
            return error_response(e)
        await page.bring_to_front()
        self.context.select_page(page)
        return self._page_list()

    @mcp_tool(
        name="new_page",
        examples=["new_page(url='https://example.com')", "new_page(url='https://example.com', timeout=30000)"],
    )
    async def new_page(self, url: str = "", timeout: int = DEFAULT_NAVIGATION_TIMEOUT_MS) -> Dict[str, Any]:
        """
        Open a new page, select it and load a URL in it.

        Args:
            url (optional): URL to load. Omit to keep `about:blank`.
            timeout (optional): Navigation timeout in milliseconds. Default: `10000`.
        """
        page = await self.context.new_page()
        response = self._page_list()
        target = str(url or "").strip()
        if not target:
            return response
        try:
            await page.goto(target, timeout=timeout, wait_until="domcontentloaded")
        except PlaywrightError as e:
            logger.debug("navigation to %s failed: %s", target, e)
            response["text"] += f"\nUnable to navigate in the new page: {e}"
            response["navigation_error"] = str(e)
            return response
        return self._page_list()

    @mcp_tool(name="close_page", examples=["close_page(page_idx=1)"])
    async def close_page(self, page_idx: int) -> Dict[str, Any]:
        """
        Close a page by index. The last open page cannot be closed.

        Args:
            page_idx: Index of the page from `list_pages`.
        """
        try:
            await self.context.close_page(page_idx)
        except CaptureError as e:
            return error_response(e)
        return self._page_list()
