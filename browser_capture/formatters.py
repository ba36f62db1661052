"""Markdown rendering of captured traffic for tool responses."""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Request, Response

from .models import TrafficSummary, WebSocketData, WebSocketFrame
from .traffic import BINARY_OPCODE, head4b, payload_size

PAYLOAD_SIZE_LIMIT = 5000
BODY_SIZE_LIMIT = 10000
BODY_FETCH_TIMEOUT = 5.0

_OPCODE_LABELS = {1: "text", 2: "binary", 8: "close", 9: "ping", 10: "pong"}


def format_timestamp(timestamp_ms: float) -> str:
    dt = datetime.fromtimestamp(float(timestamp_ms) / 1000, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def format_monotonic(timestamp_ms: float) -> str:
    """Protocol frame and close times run on a monotonic clock, not wall time."""
    return f"{float(timestamp_ms) / 1000:.3f}s (monotonic)"


def format_duration(ms: float) -> str:
    ms = int(ms)
    if ms < 1000:
        return f"{ms}ms"
    if ms < 60000:
        return f"{ms / 1000:.1f}s"
    return f"{ms // 60000}m {(ms % 60000) // 1000}s"


def format_time_delta(delta_ms: float) -> str:
    delta_ms = int(delta_ms)
    if delta_ms < 1000:
        return f"+{delta_ms}ms"
    if delta_ms < 60000:
        return f"+{delta_ms / 1000:.1f}s"
    return f"+{delta_ms // 60000}m{(delta_ms % 60000) // 1000}s"


def format_size(size: int) -> str:
    if size < 1024:
        return f"{size}B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f}KB"
    return f"{size / (1024 * 1024):.1f}MB"


def status_badge(status: str) -> str:
    if status in {"connecting", "open", "closed"}:
        return f"[{status}]"
    return "[unknown]"


def opcode_label(opcode: int) -> str:
    return _OPCODE_LABELS.get(opcode, f"opcode:{opcode}")


def format_payload(payload: str, opcode: int, size_limit: int = PAYLOAD_SIZE_LIMIT) -> str:
    payload = payload or ""
    if opcode == BINARY_OPCODE:
        truncated = len(payload) > size_limit
        shown = payload[:size_limit] if truncated else payload
        suffix = " (truncated)" if truncated else ""
        return f"<binary: {len(payload)} bytes>{suffix}\n{shown}"

    formatted = payload
    try:
        formatted = json.dumps(json.loads(payload), indent=2, ensure_ascii=False)
    except (TypeError, ValueError):
        pass
    if len(formatted) > size_limit:
        return formatted[:size_limit] + "... <truncated>"
    return formatted


def format_connection_short(ws: WebSocketData, wsid: int) -> str:
    has_binary = any(f.opcode == BINARY_OPCODE for f in ws.frames)
    return (
        f"wsid={wsid} {ws.connection.url} {status_badge(ws.connection.status)} "
        f"({len(ws.frames)} frames: ↑{ws.sent_count} ↓{ws.received_count})"
        f"{' [binary]' if has_binary else ''}"
    )


def format_connection_verbose(ws: WebSocketData, wsid: int) -> List[str]:
    conn = ws.connection
    lines = [
        f"## WebSocket Connection (wsid={wsid})",
        f"URL: {conn.url}",
        f"Status: {status_badge(conn.status)}",
        f"Created: {format_timestamp(conn.created_at)}",
    ]
    if conn.closed_at:
        if ws.frames:
            since_first = max(0.0, conn.closed_at - ws.frames[0].timestamp)
            lines.append(f"Closed: {format_time_delta(since_first)} after first frame")
        else:
            lines.append(f"Closed: {format_monotonic(conn.closed_at)}")
    if conn.initiator:
        lines.extend(format_initiator(conn.initiator))
    lines.append("### Statistics")
    lines.append(f"Total frames: {len(ws.frames)}")
    lines.append(f"Sent: {ws.sent_count}")
    lines.append(f"Received: {ws.received_count}")
    return lines


def format_initiator(initiator: dict) -> List[str]:
    lines = ["### Initiator", f"Type: {initiator.get('type') or 'other'}"]
    if initiator.get("url"):
        lines.append(f"URL: {initiator['url']}")
    call_frames = ((initiator.get("stack") or {}).get("callFrames")) or []
    if call_frames:
        lines.append("Call Stack:")
        for frame in call_frames[:5]:
            name = frame.get("functionName") or "(anonymous)"
            line = int(frame.get("lineNumber") or 0) + 1
            column = int(frame.get("columnNumber") or 0) + 1
            lines.append(f"  - {name} at {frame.get('url') or ''}:{line}:{column}")
    return lines


def format_frame_detail(
    frame: WebSocketFrame, index: int, size_limit: int = PAYLOAD_SIZE_LIMIT
) -> List[str]:
    arrow = "↑" if frame.direction == "sent" else "↓"
    return [
        f"## Frame {index} ({arrow} {frame.direction.upper()})",
        f"Direction: {frame.direction}",
        f"Timestamp: {format_monotonic(frame.timestamp)}",
        f"Opcode: {frame.opcode} ({opcode_label(frame.opcode)})",
        "### Payload",
        format_payload(frame.payload_data, frame.opcode, size_limit * 2),
    ]


def format_traffic_summary(summary: TrafficSummary) -> List[str]:
    lines = [
        f"## WebSocket Traffic Summary (wsid={summary.wsid})",
        (
            f"Duration: {format_duration(summary.duration_ms)} | "
            f"Total: {summary.total_frames} frames "
            f"(↑{summary.sent_count} sent, ↓{summary.received_count} received)"
        ),
        "",
    ]
    if not summary.groups:
        lines.append("<no messages>")
        return lines

    lines.append("| ID | Dir | Count | Head (4B) | Size Range | Hint | Samples |")
    lines.append("|----|-----|-------|-----------|------------|------|---------|")
    for group in summary.groups:
        arrow = "↑" if group.direction == "sent" else "↓"
        head = f"`{group.head4b}`" if group.head4b else "-"
        if group.min_size == group.max_size:
            size_range = format_size(group.min_size)
        else:
            size_range = f"{format_size(group.min_size)}-{format_size(group.max_size)}"
        samples = "[" + ", ".join(str(i) for i in group.sample_indices) + "]"
        lines.append(
            f"| {group.id} | {arrow} | {group.count} | {head} | {size_range} | {group.hint} | {samples} |"
        )
    return lines


def format_group_messages(
    frames: Sequence[WebSocketFrame],
    indices: Sequence[int],
    group: str,
    page_size: int = 20,
    page_idx: int = 0,
) -> List[str]:
    offset = page_idx * page_size
    page = list(indices[offset : offset + page_size])
    lines = [f"## Group {group} Messages ({len(indices)} items)"]
    if not page:
        lines.append("<no messages in this page>")
        return lines

    base = frames[indices[0]].timestamp if indices[0] < len(frames) else 0
    lines.append(f"Base: {format_monotonic(base)}")
    lines.append("")
    lines.append("| Idx | +Time | Size |")
    lines.append("|-----|-------|------|")
    for idx in page:
        if idx >= len(frames):
            continue
        frame = frames[idx]
        lines.append(
            f"| {idx} | {format_time_delta(frame.timestamp - base)} | {format_size(payload_size(frame))} |"
        )
    if len(indices) > offset + page_size:
        lines.append("")
        lines.append(
            f"Showing {offset + 1}-{offset + len(page)} of {len(indices)}. "
            f"Use page_idx={page_idx + 1} for more."
        )
    return lines


def format_recent_messages(
    frames: Sequence[WebSocketFrame],
    page_size: int = 20,
    page_idx: int = 0,
    indices: Optional[Sequence[int]] = None,
) -> List[str]:
    """Page through frames; `indices` maps rows back to full-list positions."""
    positions = list(indices) if indices is not None else list(range(len(frames)))
    offset = page_idx * page_size
    page = positions[offset : offset + page_size]
    lines = [f"Showing {offset + 1}-{offset + len(page)} of {len(positions)} frames"]
    if not page:
        lines.append("<no messages>")
        return lines

    base = frames[positions[0]].timestamp
    lines.append("")
    lines.append("| Idx | Dir | +Time | Size | Head (4B) |")
    lines.append("|-----|-----|-------|------|-----------|")
    for idx in page:
        frame = frames[idx]
        arrow = "↑" if frame.direction == "sent" else "↓"
        head = head4b(frame.payload_data, frame.opcode)
        head_text = f"`{head}`" if head else "-"
        lines.append(
            f"| {idx} | {arrow} | {format_time_delta(frame.timestamp - base)} | "
            f"{format_size(payload_size(frame))} | {head_text} |"
        )
    if len(positions) > offset + page_size:
        lines.append("")
        lines.append(f"Use page_idx={page_idx + 1} for more.")
    return lines


def request_status(status_code: Optional[int] = None, failure: Optional[str] = None) -> str:
    if status_code is not None:
        code = int(status_code)
        return f"[success - {code}]" if 200 <= code <= 299 else f"[failed - {code}]"
    if failure:
        return f"[failed - {failure}]"
    return "[pending]"


def short_request_description(
    request: Any,
    reqid: int,
    status_code: Optional[int] = None,
    failure: Optional[str] = None,
) -> str:
    method = str(getattr(request, "method", "") or "")
    url = str(getattr(request, "url", "") or "")
    return f"reqid={reqid} {method} {url} {request_status(status_code, failure)}"


def console_item_type(item: Any) -> str:
    if isinstance(item, BaseException):
        return "pageerror"
    code = getattr(item, "code", None)
    if code is not None and hasattr(item, "instances"):
        return "issue"
    return str(getattr(item, "type", "") or "log")


def console_item_text(item: Any) -> str:
    if isinstance(item, BaseException):
        return str(getattr(item, "message", "") or item)
    if console_item_type(item) == "issue":
        return f"{item.code} ({item.count} instances)"
    return str(getattr(item, "text", "") or "")


def short_console_description(item: Any, msgid: int) -> str:
    return f"msgid={msgid} [{console_item_type(item)}] {console_item_text(item)}"


def size_limited(text: str, size_limit: int = BODY_SIZE_LIMIT) -> str:
    if len(text) > size_limit:
        return text[:size_limit] + "... <truncated>"
    return text


def format_headers(headers: Optional[Dict[str, str]]) -> List[str]:
    return [f"- {name}:{value}" for name, value in (headers or {}).items()]


def format_request_body(request: Request, size_limit: int = BODY_SIZE_LIMIT) -> Optional[str]:
    try:
        data = request.post_data
    except UnicodeDecodeError:
        return "<binary data>"
    if not data:
        return None
    return size_limited(data, size_limit)


async def format_response_body(
    response: Response,
    size_limit: int = BODY_SIZE_LIMIT,
    timeout: float = BODY_FETCH_TIMEOUT,
) -> str:
    try:
        body = await asyncio.wait_for(response.body(), timeout)
    except (PlaywrightError, asyncio.TimeoutError):
        # Evicted from the browser cache, a redirect, or still streaming.
        return "<not available anymore>"
    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError:
        return "<binary data>"
    if not text:
        return "<empty response>"
    return size_limited(text, size_limit)
