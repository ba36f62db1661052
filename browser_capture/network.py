"""Network request collection with navigation-aware epoch cuts."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from playwright.async_api import Frame, Page, Request, Response

from .collector import Collect, ListenerFactory, PageCollector, PageState
from .models import CaptureConfig

logger = logging.getLogger(__name__)


def collect_requests(collect: Collect) -> Dict[str, Callable[..., None]]:
    return {"request": collect}


def is_main_frame_navigation(request: Request, main_frame: Frame) -> bool:
    try:
        frame = request.frame
    except Exception:
        # Service worker requests have no frame.
        return False
    if frame is not main_frame:
        return False
    try:
        return bool(request.is_navigation_request())
    except Exception:
        return False


class InitiatorTable:
    """CDP request id -> initiator, for the current navigation only."""

    def __init__(self) -> None:
        self._initiators: Dict[str, Dict[str, Any]] = {}
        self._urls: Dict[str, str] = {}
        self._latest_by_url: Dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._initiators)

    def record(self, request_id: str, url: str, initiator: Optional[Dict[str, Any]]) -> None:
        if not request_id:
            return
        if url:
            self._urls[request_id] = url
            self._latest_by_url[url] = request_id
        if initiator:
            self._initiators[request_id] = dict(initiator)

    def get(self, request_id: str) -> Optional[Dict[str, Any]]:
        return self._initiators.get(str(request_id or ""))

    def url_for(self, request_id: str) -> Optional[str]:
        return self._urls.get(str(request_id or ""))

    def request_id_for_url(self, url: str) -> Optional[str]:
        return self._latest_by_url.get(str(url or ""))

    def clear(self) -> None:
        self._initiators.clear()
        self._urls.clear()
        self._latest_by_url.clear()


class NetworkCollector(PageCollector[Request]):
    """Collect requests; keep a navigation's own requests in its epoch.

    The navigation request and anything issued alongside it are seen before
    `framenavigated` fires. On rotation everything from the last main-frame
    navigation request onward moves into the new epoch.
    """

    kind = "network request"

    def __init__(
        self,
        config: Optional[CaptureConfig] = None,
        listeners: Optional[ListenerFactory] = None,
    ):
        super().__init__(config, listeners or collect_requests)
        self._initiators: Dict[Page, InitiatorTable] = {}
        self._responses: Dict[int, Response] = {}

    def response_of(self, request: Request) -> Optional[Response]:
        """Response seen for a collected request, else None."""
        return self._responses.get(id(request))

    def status_of(self, request: Request) -> Optional[int]:
        """HTTP status once a response arrived, else None."""
        response = self.response_of(request)
        if response is None:
            return None
        try:
            return int(response.status)
        except (TypeError, ValueError):
            return None

    def initiator_for(self, page: Page, request: Request) -> Optional[Dict[str, Any]]:
        """Call-stack attribution for a collected request, when still known."""
        request_id = self.request_id_for(page, request)
        if request_id is None:
            return None
        return self._initiators[page].get(request_id)

    def initiator_by_request_id(self, page: Page, request_id: str) -> Optional[Dict[str, Any]]:
        self._require_state(page)
        table = self._initiators.get(page)
        return table.get(request_id) if table is not None else None

    def request_id_for(self, page: Page, request: Request) -> Optional[str]:
        self._require_state(page)
        table = self._initiators.get(page)
        if table is None:
            return None
        return table.request_id_for_url(str(getattr(request, "url", "") or ""))

    def resolve_cdp_request_id(self, page: Page, cdp_request_id: str) -> Optional[int]:
        """Stable id of the request the protocol knows as `cdp_request_id`."""
        if not cdp_request_id:
            logger.debug("no network request id to resolve")
            return None
        self._require_state(page)
        table = self._initiators.get(page)
        url = table.url_for(cdp_request_id) if table is not None else None
        if not url:
            logger.debug("no network request for %s", cdp_request_id)
            return None
        request = self.find(page, lambda r: str(getattr(r, "url", "") or "") == url)
        if request is None:
            logger.debug("no network request for %s", cdp_request_id)
            return None
        return self.id_of(request)

    async def _attach(self, state: PageState) -> None:
        table = InitiatorTable()
        self._initiators[state.page] = table

        def _on_response(response: Response) -> None:
            request = getattr(response, "request", None)
            if request is None or self.id_of(request) < 0:
                return
            self._responses[id(request)] = response

        self._subscribe(state, "response", _on_response)

        def _on_request_will_be_sent(event: Dict[str, Any]) -> None:
            request = event.get("request") or {}
            table.record(
                str(event.get("requestId") or ""),
                str(request.get("url") or ""),
                event.get("initiator"),
            )

        # Initiators are a debugging aid; requests are still collected without them.
        try:
            session = await self._open_session(state)
            self._listen(state, "Network.requestWillBeSent", _on_request_will_be_sent)
            await session.send("Network.enable")
        except Exception as e:
            logger.warning("Failed to enable initiator collection: %s", e)

    def _detach(self, state: PageState) -> None:
        if state.page not in self._states:
            self._initiators.pop(state.page, None)

    def _forget(self, item: Any) -> None:
        super()._forget(item)
        self._responses.pop(id(item), None)

    def _split_after_navigation(self, state: PageState) -> List[Request]:
        requests = state.epochs.current()
        main_frame = state.page.main_frame
        for index in range(len(requests) - 1, -1, -1):
            if is_main_frame_navigation(requests[index], main_frame):
                return state.epochs.take_from(index)
        return []

    def _on_rotated(self, state: PageState) -> None:
        table = self._initiators.get(state.page)
        if table is not None:
            table.clear()
