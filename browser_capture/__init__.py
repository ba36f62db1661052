"""Navigation-aware network, console and WebSocket capture for Playwright pages."""

from .collector import EpochStore, PageCollector, StableIdGenerator
from .console import ConsoleCollector, IssueAggregator
from .context import SessionContext
from .errors import CaptureError, NotFoundError, NotTrackedError, PageClosedError, PageError
from .inspector import TrafficInspectorFeature
from .models import (
    AggregatedIssue,
    CaptureConfig,
    TrafficGroup,
    TrafficSummary,
    WebSocketConnection,
    WebSocketData,
    WebSocketFrame,
)
from .network import NetworkCollector
from .pages import PagesFeature
from .traffic import analyze_frames
from .websocket import WebSocketCollector

__all__ = [
    "AggregatedIssue",
    "CaptureConfig",
    "CaptureError",
    "ConsoleCollector",
    "EpochStore",
    "IssueAggregator",
    "NetworkCollector",
    "NotFoundError",
    "NotTrackedError",
    "PageClosedError",
    "PageCollector",
    "PageError",
    "PagesFeature",
    "SessionContext",
    "StableIdGenerator",
    "TrafficGroup",
    "TrafficInspectorFeature",
    "TrafficSummary",
    "WebSocketCollector",
    "WebSocketConnection",
    "WebSocketData",
    "WebSocketFrame",
    "analyze_frames",
]
