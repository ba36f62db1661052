"""Per-page, navigation-windowed collection with stable ids."""

from __future__ import annotations

import asyncio
import logging
from functools import partial
from typing import (
    Any,
    Callable,
    Dict,
    Generic,
    Iterable,
    Iterator,
    List,
    Optional,
    Set,
    Tuple,
    TypeVar,
)

from playwright.async_api import BrowserContext, CDPSession, Frame, Page
from playwright.async_api import Error as PlaywrightError

from .errors import NotFoundError, NotTrackedError
from .models import CaptureConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_SAFE_INTEGER = 2**53 - 1

Collect = Callable[[Any], None]
ListenerFactory = Callable[[Collect], Dict[str, Callable[..., None]]]


class StableIdGenerator:
    """Monotonic ids starting at 1, wrapping back to 1 after `limit`."""

    def __init__(self, limit: int = MAX_SAFE_INTEGER):
        self._limit = int(limit)
        self._next = 1

    def next(self) -> int:
        value = self._next
        self._next = 1 if value >= self._limit else value + 1
        return value


class EpochStore(Generic[T]):
    """Ordered epochs of items. Index 0 is the current epoch."""

    def __init__(self, max_epochs: int = 3):
        self.max_epochs = max(1, int(max_epochs))
        self._epochs: List[List[T]] = [[]]

    def __len__(self) -> int:
        return len(self._epochs)

    def append(self, item: T) -> None:
        self._epochs[0].append(item)

    def current(self) -> List[T]:
        return list(self._epochs[0])

    def take_from(self, index: int) -> List[T]:
        """Remove and return current[index:]."""
        current = self._epochs[0]
        tail = current[index:]
        del current[index:]
        return tail

    def rotate(self, carried: Iterable[T] = ()) -> List[T]:
        """Start a new current epoch seeded with `carried`; return evicted items."""
        self._epochs.insert(0, list(carried))
        evicted: List[T] = []
        for epoch in self._epochs[self.max_epochs :]:
            evicted.extend(epoch)
        del self._epochs[self.max_epochs :]
        return evicted

    def chronological(self) -> List[T]:
        out: List[T] = []
        for epoch in reversed(self._epochs):
            out.extend(epoch)
        return out

    def recent_first(self) -> Iterator[T]:
        for epoch in self._epochs:
            yield from epoch

    def epochs(self) -> List[List[T]]:
        return [list(epoch) for epoch in self._epochs]


class PageState:
    """Everything one collector owns for one tracked page."""

    def __init__(self, page: Page, max_epochs: int):
        self.page = page
        self.ids = StableIdGenerator()
        self.epochs: EpochStore[Any] = EpochStore(max_epochs)
        self.listeners: List[Tuple[str, Callable[..., None]]] = []
        self.session: Optional[CDPSession] = None
        self.session_listeners: List[Tuple[str, Callable[..., None]]] = []


class PageCollector(Generic[T]):
    """Collect one resource kind per page, split by main-frame navigations."""

    kind = "resource"

    def __init__(
        self,
        config: Optional[CaptureConfig] = None,
        listeners: Optional[ListenerFactory] = None,
    ):
        self.config = config or CaptureConfig()
        self._listeners_factory = listeners
        self._states: Dict[Page, PageState] = {}
        self._item_ids: Dict[int, int] = {}
        self._browser_context: Optional[BrowserContext] = None
        self._tasks: Set[asyncio.Task[Any]] = set()
        self._disposed = False

    async def init(self, browser_context: BrowserContext) -> None:
        """Track every open page and follow pages opened later."""
        self._disposed = False
        self._browser_context = browser_context
        for page in list(getattr(browser_context, "pages", []) or []):
            await self._track_quietly(page)
        browser_context.on("page", self._on_page_created)

    def dispose(self) -> None:
        self._disposed = True
        context = self._browser_context
        if context is not None:
            try:
                context.remove_listener("page", self._on_page_created)
            except Exception as e:
                logger.debug("Failed to remove page listener: %s", e)
        self._browser_context = None
        for page in list(self._states):
            self.untrack(page)

    async def drain(self) -> None:
        """Wait for background track/detach work to settle."""
        tasks = list(self._tasks)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def is_tracked(self, page: Page) -> bool:
        return page in self._states

    def tracked_pages(self) -> List[Page]:
        return list(self._states)

    async def track(self, page: Page) -> None:
        if page in self._states:
            return
        state = PageState(page, self.config.max_epochs)
        self._states[page] = state

        listeners: Dict[str, Callable[..., None]] = {}
        if self._listeners_factory is not None:
            listeners.update(self._listeners_factory(partial(self._collect, state)))
        listeners["framenavigated"] = partial(self._on_frame_navigated, state)
        listeners["close"] = self._on_page_closed

        try:
            for name, handler in listeners.items():
                self._subscribe(state, name, handler)
            await self._attach(state)
        except Exception:
            if self._states.get(page) is state:
                del self._states[page]
            self._release(state)
            raise

        # The page may have closed while protocol setup was awaited.
        if self._states.get(page) is not state:
            self._release(state)

    def untrack(self, page: Page) -> None:
        state = self._states.pop(page, None)
        if state is None:
            return
        self._release(state)
        for item in state.epochs.recent_first():
            self._forget(item)

    def current_items(self, page: Page) -> List[T]:
        return self._require_state(page).epochs.current()

    def all_items(self, page: Page) -> List[T]:
        """Items of every retained epoch, oldest epoch first."""
        return self._require_state(page).epochs.chronological()

    def epoch_count(self, page: Page) -> int:
        return len(self._require_state(page).epochs)

    def id_of(self, item: Any) -> int:
        return self._item_ids.get(id(item), -1)

    def by_id(self, page: Page, stable_id: int) -> T:
        state = self._require_state(page)
        wanted = int(stable_id)
        for item in state.epochs.recent_first():
            if self._item_ids.get(id(item)) == wanted:
                return item
        raise NotFoundError(f"No {self.kind} found for id {wanted}")

    def find(self, page: Page, predicate: Callable[[T], bool]) -> Optional[T]:
        state = self._require_state(page)
        for item in state.epochs.recent_first():
            if predicate(item):
                return item
        return None

    # Hooks for specializations.

    async def _attach(self, state: PageState) -> None:
        """Register protocol sources beyond page events."""

    def _detach(self, state: PageState) -> None:
        """Release what `_attach` set up. Must not raise."""

    def _split_after_navigation(self, state: PageState) -> List[Any]:
        """Items moved from the current epoch into the next one."""
        return []

    def _on_rotated(self, state: PageState) -> None:
        pass

    # Internals.

    def _require_state(self, page: Page) -> PageState:
        state = self._states.get(page)
        if state is None:
            raise NotTrackedError(f"No {self.kind} data for the selected page")
        return state

    def _collect(self, state: PageState, item: Any) -> None:
        if self._states.get(state.page) is not state:
            return
        self._item_ids[id(item)] = state.ids.next()
        state.epochs.append(item)

    def _rotate(self, state: PageState) -> None:
        carried = self._split_after_navigation(state)
        for item in state.epochs.rotate(carried):
            self._forget(item)
        self._on_rotated(state)

    def _on_frame_navigated(self, state: PageState, frame: Frame) -> None:
        if self._states.get(state.page) is not state:
            return
        if frame is not state.page.main_frame:
            return
        self._rotate(state)

    def _on_page_created(self, page: Page) -> None:
        self._spawn(self._track_quietly(page))

    def _on_page_closed(self, page: Page) -> None:
        self.untrack(page)

    async def _track_quietly(self, page: Page) -> None:
        if self._disposed:
            return
        try:
            await self.track(page)
        except Exception as e:
            logger.warning("Failed to track page for %s collection: %s", self.kind, e)

    async def _open_session(self, state: PageState) -> CDPSession:
        page = state.page
        session = await page.context.new_cdp_session(page)
        state.session = session
        return session

    def _subscribe(self, state: PageState, event: str, handler: Callable[..., None]) -> None:
        state.page.on(event, handler)
        state.listeners.append((event, handler))

    def _forget(self, item: Any) -> None:
        self._item_ids.pop(id(item), None)

    def _listen(self, state: PageState, event: str, handler: Callable[..., None]) -> None:
        state.session.on(event, handler)
        state.session_listeners.append((event, handler))

    def _release(self, state: PageState) -> None:
        page = state.page
        for name, handler in state.listeners:
            try:
                page.remove_listener(name, handler)
            except Exception as e:
                logger.debug("Failed to remove %s listener: %s", name, e)
        state.listeners.clear()

        session = state.session
        if session is not None:
            for name, handler in state.session_listeners:
                try:
                    session.remove_listener(name, handler)
                except Exception as e:
                    logger.debug("Failed to remove %s listener: %s", name, e)
        state.session_listeners.clear()

        self._detach(state)

        if session is not None:
            state.session = None
            self._spawn(self._detach_session(session))

    async def _detach_session(self, session: CDPSession) -> None:
        try:
            await session.detach()
        except PlaywrightError as e:
            # Page might already be closed.
            logger.debug("Failed to detach CDP session: %s", e)

    def _spawn(self, coro: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            return
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
