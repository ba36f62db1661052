"""Console message, page error and DevTools issue collection."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Optional, Set

from playwright.async_api import CDPSession, ConsoleMessage, Page
from playwright.async_api import Error as PlaywrightError

from .collector import Collect, ListenerFactory, PageCollector, PageState
from .errors import PageError
from .models import AggregatedIssue, CaptureConfig

logger = logging.getLogger(__name__)


def collect_console(collect: Collect) -> Dict[str, Callable[..., None]]:
    def _on_console(message: ConsoleMessage) -> None:
        collect(message)

    def _on_page_error(error: Any) -> None:
        if isinstance(error, BaseException):
            collect(error)
        else:
            collect(PageError(str(error)))

    return {"console": _on_console, "pageerror": _on_page_error}


def issue_primary_key(code: str, details: Dict[str, Any]) -> str:
    try:
        body = json.dumps(details, sort_keys=True, ensure_ascii=False, default=str)
    except Exception:
        body = str(details)
    return f"{code}:{body}"


class IssueAggregator:
    """Dedupe `Audits.issueAdded` events and fold them into one item per code."""

    def __init__(self, emit: Collect):
        self._emit = emit
        self._seen_keys: Set[str] = set()
        self._aggregates: Dict[str, AggregatedIssue] = {}

    def add(self, event: Dict[str, Any]) -> None:
        issue = (event or {}).get("issue") or {}
        code = str(issue.get("code") or "")
        if not code:
            logger.debug("No issue mapping for the issue: %s", issue)
            return
        details = issue.get("details") or {}
        key = issue_primary_key(code, details)
        if key in self._seen_keys:
            return
        self._seen_keys.add(key)

        aggregate = self._aggregates.get(code)
        if aggregate is not None:
            aggregate.instances.append(details)
            return
        aggregate = AggregatedIssue(code=code, instances=[details])
        self._aggregates[code] = aggregate
        self._emit(aggregate)

    def reset(self) -> None:
        self._seen_keys.clear()
        self._aggregates.clear()


class ConsoleCollector(PageCollector[Any]):
    kind = "console message"

    def __init__(
        self,
        config: Optional[CaptureConfig] = None,
        listeners: Optional[ListenerFactory] = None,
    ):
        super().__init__(config, listeners or collect_console)
        self._issues: Dict[Page, IssueAggregator] = {}

    async def _attach(self, state: PageState) -> None:
        if not self.config.collect_issues:
            return
        try:
            session = await self._open_session(state)
        except Exception as e:
            logger.warning("Error subscribing to issues: %s", e)
            return

        def _emit(issue: AggregatedIssue) -> None:
            self._collect(state, issue)

        aggregator = IssueAggregator(_emit)
        self._issues[state.page] = aggregator
        self._listen(state, "Audits.issueAdded", aggregator.add)
        try:
            await session.send("Audits.enable")
        except Exception as e:
            logger.warning("Error subscribing to issues: %s", e)

    def _detach(self, state: PageState) -> None:
        if state.page in self._states:
            return
        aggregator = self._issues.pop(state.page, None)
        if aggregator is not None:
            aggregator.reset()
        if state.session is not None:
            self._spawn(self._disable_audits(state.session))

    def _on_rotated(self, state: PageState) -> None:
        aggregator = self._issues.get(state.page)
        if aggregator is not None:
            aggregator.reset()

    async def _disable_audits(self, session: CDPSession) -> None:
        try:
            await session.send("Audits.disable")
        except PlaywrightError as e:
            # Might fail once the page is gone.
            logger.debug("Failed to disable audits: %s", e)
