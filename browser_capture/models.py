"""Shared models for the browser capture layer."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

SIZE_CATEGORIES = ("tiny", "small", "medium", "large", "xlarge")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return str(raw).strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class CaptureConfig:
    """Immutable capture configuration."""

    # Epochs kept per page and collector kind, current epoch included.
    max_epochs: int = 3
    # Exclusive upper bounds of tiny/small/medium/large payloads.
    size_buckets: Tuple[int, int, int, int] = (32, 128, 512, 2048)
    sample_size: int = 3
    collect_issues: bool = True
    include_devtools_pages: bool = False
    payload_size_limit: int = 5000
    body_size_limit: int = 10000

    def __post_init__(self) -> None:
        if int(self.max_epochs) < 1:
            raise ValueError("max_epochs must be >= 1")
        bounds = tuple(self.size_buckets)
        if len(bounds) != len(SIZE_CATEGORIES) - 1:
            raise ValueError("size_buckets needs exactly four bounds")
        if any(b <= a for a, b in zip(bounds, bounds[1:])):
            raise ValueError("size_buckets must be strictly increasing")

    @classmethod
    def from_env(cls) -> "CaptureConfig":
        max_epochs = os.environ.get("BROWSER_CAPTURE_MAX_EPOCHS")
        return cls(
            max_epochs=int(max_epochs) if max_epochs else cls.max_epochs,
            collect_issues=_env_bool("BROWSER_CAPTURE_COLLECT_ISSUES", cls.collect_issues),
            include_devtools_pages=_env_bool(
                "BROWSER_CAPTURE_INCLUDE_DEVTOOLS", cls.include_devtools_pages
            ),
        )


@dataclass
class WebSocketConnection:
    """Lifecycle record of one WebSocket connection."""

    request_id: str
    url: str
    created_at: float
    initiator: Optional[Dict[str, Any]] = None
    status: str = "connecting"
    closed_at: Optional[float] = None


@dataclass(frozen=True)
class WebSocketFrame:
    """One WebSocket message. Binary payloads are base64 text."""

    request_id: str
    direction: str
    timestamp: float
    opcode: int
    payload_data: str


@dataclass(eq=False)
class WebSocketData:
    """Connection plus its append-only frame list."""

    connection: WebSocketConnection
    frames: List[WebSocketFrame] = field(default_factory=list)

    @property
    def sent_count(self) -> int:
        return sum(1 for f in self.frames if f.direction == "sent")

    @property
    def received_count(self) -> int:
        return sum(1 for f in self.frames if f.direction == "received")


@dataclass(eq=False)
class AggregatedIssue:
    """DevTools issues of one code, collapsed into a single console item."""

    code: str
    instances: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.instances)


@dataclass(frozen=True)
class TrafficGroup:
    """Frames sharing (direction, head4b, size category)."""

    id: str
    direction: str
    head4b: str
    size_category: str
    count: int
    min_size: int
    max_size: int
    hint: str
    sample_indices: Tuple[int, ...] = ()


@dataclass(frozen=True)
class TrafficSummary:
    """Fingerprint analysis of one connection's frames."""

    wsid: int
    url: str
    duration_ms: float
    total_frames: int
    sent_count: int
    received_count: int
    groups: Tuple[TrafficGroup, ...] = ()
    group_to_indices: Dict[str, List[int]] = field(default_factory=dict)

    def group(self, group_id: str) -> Optional[TrafficGroup]:
        wanted = str(group_id or "").strip().upper()
        for group in self.groups:
            if group.id == wanted:
                return group
        return None
