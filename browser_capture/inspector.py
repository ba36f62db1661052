"""LLM tools over captured network, console and WebSocket activity."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple

from playwright.async_api import Request

from .context import SessionContext
from .errors import CaptureError, NotFoundError
from .formatters import (
    console_item_text,
    console_item_type,
    format_connection_short,
    format_connection_verbose,
    format_frame_detail,
    format_group_messages,
    format_headers,
    format_initiator,
    format_recent_messages,
    format_request_body,
    format_response_body,
    format_traffic_summary,
    short_console_description,
    short_request_description,
)
from .models import TrafficSummary
from .tools import ToolFeature, error_response, mcp_tool
from .traffic import analyze_frames

DIRECTIONS = ("sent", "received")


def _paginate(items: Sequence[Any], page_size: Optional[int], page_idx: Optional[int]) -> Tuple[List[Any], int]:
    if page_size is None:
        return list(items), 0
    size = max(1, int(page_size))
    offset = max(0, int(page_idx or 0)) * size
    return list(items[offset : offset + size]), offset


def _check_direction(direction: Optional[str]) -> Optional[str]:
    value = str(direction or "").strip().lower()
    if not value:
        return None
    if value not in DIRECTIONS:
        raise CaptureError(f"direction must be one of {', '.join(DIRECTIONS)}")
    return value


class TrafficInspectorFeature(ToolFeature):
    """Inspect network requests, console messages and WebSocket traffic."""

    def __init__(self, context: SessionContext):
        super().__init__()
        self.context = context

    # Network.

    @mcp_tool(
        name="list_network_requests",
        examples=[
            "list_network_requests()",
            "list_network_requests(resource_types=['xhr', 'fetch'], include_preserved_requests=True)",
        ],
    )
    async def list_network_requests(
        self,
        page_size: Optional[int] = None,
        page_idx: int = 0,
        resource_types: Optional[List[str]] = None,
        include_preserved_requests: bool = False,
    ) -> Dict[str, Any]:
        """
        List requests of the selected page since the last navigation.

        Args:
            page_size (optional): Max requests to return. Omit to return all.
            page_idx (optional): Zero-based page number. Default: `0`.
            resource_types (optional): Playwright resource types to keep
                (e.g. `document`, `script`, `xhr`, `fetch`, `websocket`).
            include_preserved_requests (optional): Also return requests of the
                preserved previous navigations, oldest first.

        Returns:
            Dict with `ok`, `total`, `items` (reqid/method/url/resource_type/status)
            and a markdown `text` listing.
        """
        try:
            requests = self.context.get_network_requests(include_preserved_requests)
        except CaptureError as e:
            return error_response(e)

        wanted = {str(t).strip().lower() for t in (resource_types or []) if str(t).strip()}
        if wanted:
            requests = [
                r for r in requests if str(getattr(r, "resource_type", "") or "").lower() in wanted
            ]

        page, _ = _paginate(requests, page_size, page_idx)
        items = []
        lines = ["## Network requests"]
        for request in page:
            reqid = self.context.get_network_request_stable_id(request)
            status = self.context.network.status_of(request)
            failure = getattr(request, "failure", None)
            items.append(
                {
                    "reqid": reqid,
                    "method": str(getattr(request, "method", "") or ""),
                    "url": str(getattr(request, "url", "") or ""),
                    "resource_type": str(getattr(request, "resource_type", "") or ""),
                    "status_code": status,
                    "failure": failure,
                }
            )
            lines.append(short_request_description(request, reqid, status, failure))
        if not requests:
            lines.append("<no requests found>")
        return {"ok": True, "total": len(requests), "items": items, "text": "\n".join(lines)}

    @mcp_tool(name="get_network_request", examples=["get_network_request(reqid=3)"])
    async def get_network_request(self, reqid: int) -> Dict[str, Any]:
        """
        Get one captured request by its reqid: headers and body of both the
        request and its response, the failure reason, the redirect chain and
        the initiator call stack when known.

        Args:
            reqid: Stable request id from `list_network_requests`.

        Returns:
            Dict with `ok`, `status_code`, `request_headers`, `request_body`,
            `response_headers`, `response_body`, `redirect_chain` and the
            markdown `text`.
        """
        try:
            request = self.context.get_network_request_by_id(reqid)
            initiator = self.context.get_request_initiator(request)
        except CaptureError as e:
            return error_response(e)

        status = self.context.network.status_of(request)
        failure = getattr(request, "failure", None)
        headers = dict(getattr(request, "headers", {}) or {})
        lines = [
            f"## Request {reqid}",
            short_request_description(request, reqid, status, failure),
            "### Request Headers",
        ]
        lines.extend(format_headers(headers))

        request_body = format_request_body(request, self.context.config.body_size_limit)
        if request_body is not None:
            lines.extend(["### Request Body", request_body])

        response = self.context.network.response_of(request)
        response_headers: Optional[Dict[str, str]] = None
        response_body: Optional[str] = None
        if response is not None:
            response_headers = dict(getattr(response, "headers", {}) or {})
            lines.append("### Response Headers")
            lines.extend(format_headers(response_headers))
            response_body = await format_response_body(response, self.context.config.body_size_limit)
            lines.extend(["### Response Body", response_body])

        if failure:
            lines.extend(["### Request failed with", str(failure)])

        chain = self._redirect_chain(request)
        if chain:
            lines.append("### Redirect chain")
            for depth, (previous, previous_id) in enumerate(chain):
                description = short_request_description(
                    previous, previous_id, self.context.network.status_of(previous)
                )
                lines.append("  " * depth + description)

        if initiator:
            lines.extend(format_initiator(initiator))
        return {
            "ok": True,
            "reqid": int(reqid),
            "method": str(getattr(request, "method", "") or ""),
            "url": str(getattr(request, "url", "") or ""),
            "status_code": status,
            "request_headers": headers,
            "request_body": request_body,
            "response_headers": response_headers,
            "response_body": response_body,
            "failure": failure,
            "redirect_chain": [
                {"reqid": previous_id, "url": str(getattr(previous, "url", "") or "")}
                for previous, previous_id in chain
            ],
            "initiator": initiator,
            "text": "\n".join(lines),
        }

    def _redirect_chain(self, request: Request) -> List[Tuple[Request, int]]:
        # Most recent redirect first.
        chain = []
        previous = getattr(request, "redirected_from", None)
        while previous is not None:
            chain.append((previous, self.context.network.id_of(previous)))
            previous = getattr(previous, "redirected_from", None)
        return chain

    # Console.

    @mcp_tool(
        name="list_console_messages",
        examples=["list_console_messages()", "list_console_messages(types=['error', 'pageerror'])"],
    )
    async def list_console_messages(
        self,
        page_size: Optional[int] = None,
        page_idx: int = 0,
        types: Optional[List[str]] = None,
        include_preserved_messages: bool = False,
    ) -> Dict[str, Any]:
        """
        List console messages, page errors and issues of the selected page.

        Args:
            page_size (optional): Max messages to return. Omit to return all.
            page_idx (optional): Zero-based page number. Default: `0`.
            types (optional): Message types to keep, e.g. `log`, `error`,
                `warning`, `pageerror`, `issue`.
            include_preserved_messages (optional): Also return messages of the
                preserved previous navigations, oldest first.
        """
        try:
            messages = self.context.get_console_data(include_preserved_messages)
        except CaptureError as e:
            return error_response(e)

        wanted = {str(t).strip().lower() for t in (types or []) if str(t).strip()}
        if wanted:
            messages = [m for m in messages if console_item_type(m).lower() in wanted]

        page, _ = _paginate(messages, page_size, page_idx)
        items = []
        lines = ["## Console messages"]
        for message in page:
            msgid = self.context.get_console_message_stable_id(message)
            items.append(
                {"msgid": msgid, "type": console_item_type(message), "text": console_item_text(message)}
            )
            lines.append(short_console_description(message, msgid))
        if not messages:
            lines.append("<no console messages found>")
        return {"ok": True, "total": len(messages), "items": items, "text": "\n".join(lines)}

    @mcp_tool(name="get_console_message", examples=["get_console_message(msgid=1)"])
    async def get_console_message(self, msgid: int) -> Dict[str, Any]:
        """Get one console message, page error or issue by its msgid."""
        try:
            message = self.context.get_console_message_by_id(msgid)
        except CaptureError as e:
            return error_response(e)
        return {
            "ok": True,
            "msgid": int(msgid),
            "type": console_item_type(message),
            "text": short_console_description(message, int(msgid)),
        }

    # WebSocket.

    @mcp_tool(
        name="list_websocket_connections",
        examples=["list_websocket_connections()", "list_websocket_connections(url_filter='live')"],
    )
    async def list_websocket_connections(
        self,
        page_size: Optional[int] = None,
        page_idx: int = 0,
        url_filter: str = "",
        include_preserved_connections: bool = False,
    ) -> Dict[str, Any]:
        """
        List WebSocket connections. After getting a wsid, call
        `analyze_websocket_messages(wsid)` first to see message patterns before
        reading individual messages.

        Args:
            page_size (optional): Max connections to return. Omit to return all.
            page_idx (optional): Zero-based page number. Default: `0`.
            url_filter (optional): Keep connections whose URL contains this substring.
            include_preserved_connections (optional): Also return connections of the
                preserved previous navigations, oldest first.
        """
        try:
            connections = self.context.get_websocket_connections(include_preserved_connections)
        except CaptureError as e:
            return error_response(e)

        needle = str(url_filter or "")
        if needle:
            connections = [ws for ws in connections if needle in ws.connection.url]

        page, _ = _paginate(connections, page_size, page_idx)
        items = []
        lines = ["## WebSocket connections"]
        for ws in page:
            wsid = self.context.get_websocket_stable_id(ws)
            items.append(
                {
                    "wsid": wsid,
                    "url": ws.connection.url,
                    "status": ws.connection.status,
                    "frames": len(ws.frames),
                }
            )
            lines.append(format_connection_short(ws, wsid))
        if not connections:
            lines.append("<no WebSocket connections found>")
        return {"ok": True, "total": len(connections), "items": items, "text": "\n".join(lines)}

    @mcp_tool(name="get_websocket_connection", examples=["get_websocket_connection(wsid=1)"])
    async def get_websocket_connection(self, wsid: int) -> Dict[str, Any]:
        """Get status, initiator and frame statistics of one WebSocket connection."""
        try:
            ws = self.context.get_websocket_by_id(wsid)
        except CaptureError as e:
            return error_response(e)
        return {
            "ok": True,
            "wsid": int(wsid),
            "status": ws.connection.status,
            "text": "\n".join(format_connection_verbose(ws, int(wsid))),
        }

    @mcp_tool(
        name="analyze_websocket_messages",
        examples=[
            "analyze_websocket_messages(wsid=1)",
            "analyze_websocket_messages(wsid=1, direction='received')",
        ],
    )
    async def analyze_websocket_messages(self, wsid: int, direction: str = "") -> Dict[str, Any]:
        """
        Group a connection's messages by direction, first 4 bytes and size.
        Use it before reading binary or protobuf streams: each group gets a
        letter id (A, B, ...) usable with `get_websocket_messages(group_id=...)`.

        Args:
            wsid: WebSocket connection id from `list_websocket_connections`.
            direction (optional): Only analyse `sent` or `received` messages.
        """
        try:
            wanted = _check_direction(direction)
            ws = self.context.get_websocket_by_id(wsid)
        except CaptureError as e:
            return error_response(e)

        summary = analyze_frames(
            ws.frames, int(wsid), ws.connection.url, direction=wanted, config=self.context.config
        )
        self.context.cache_traffic_summary(int(wsid), summary)

        lines = format_traffic_summary(summary)
        lines.extend(
            [
                "",
                "### Usage",
                f'- View group: `get_websocket_messages(wsid={int(wsid)}, group_id="A")`',
                f"- View single: `get_websocket_message(wsid={int(wsid)}, frame_index=0)`",
            ]
        )
        return {
            "ok": True,
            "wsid": int(wsid),
            "total_frames": summary.total_frames,
            "groups": [
                {
                    "id": g.id,
                    "direction": g.direction,
                    "head4b": g.head4b,
                    "size_category": g.size_category,
                    "count": g.count,
                    "hint": g.hint,
                }
                for g in summary.groups
            ],
            "text": "\n".join(lines),
        }

    @mcp_tool(
        name="get_websocket_messages",
        examples=[
            "get_websocket_messages(wsid=1)",
            "get_websocket_messages(wsid=1, group_id='A', page_size=20)",
        ],
    )
    async def get_websocket_messages(
        self,
        wsid: int,
        direction: str = "",
        group_id: str = "",
        page_size: int = 10,
        page_idx: int = 0,
    ) -> Dict[str, Any]:
        """
        Page through a connection's messages, summary rows only.

        Args:
            wsid: WebSocket connection id.
            direction (optional): `sent` or `received`.
            group_id (optional): Only messages of this group (A, B, ...) from
                `analyze_websocket_messages`.
            page_size (optional): Messages per page. Default: `10`.
            page_idx (optional): Zero-based page number. Default: `0`.
        """
        try:
            wanted = _check_direction(direction)
            ws = self.context.get_websocket_by_id(wsid)
        except CaptureError as e:
            return error_response(e)

        size = max(1, int(page_size or 10))
        idx = max(0, int(page_idx or 0))

        if group_id:
            gid = str(group_id).strip().upper()
            summary = self._summary_for(int(wsid), ws)
            indices = summary.group_to_indices.get(gid) or []
            if wanted:
                indices = [i for i in indices if i < len(ws.frames) and ws.frames[i].direction == wanted]
            if not indices:
                available = ", ".join(g.id for g in summary.groups)
                text = "\n".join(
                    [f"## Group {gid} Messages", "<group not found or empty>", "", f"Available groups: {available}"]
                )
                return {"ok": True, "wsid": int(wsid), "group_id": gid, "indices": [], "text": text}
            lines = format_group_messages(ws.frames, indices, gid, page_size=size, page_idx=idx)
            return {
                "ok": True,
                "wsid": int(wsid),
                "group_id": gid,
                "indices": list(indices[idx * size : idx * size + size]),
                "text": "\n".join(lines),
            }

        positions = [i for i, f in enumerate(ws.frames) if not wanted or f.direction == wanted]
        lines = [f"## Recent Messages (wsid={int(wsid)})"]
        lines.extend(format_recent_messages(ws.frames, page_size=size, page_idx=idx, indices=positions))
        return {
            "ok": True,
            "wsid": int(wsid),
            "indices": positions[idx * size : idx * size + size],
            "text": "\n".join(lines),
        }

    @mcp_tool(name="get_websocket_message", examples=["get_websocket_message(wsid=1, frame_index=0)"])
    async def get_websocket_message(self, wsid: int, frame_index: int) -> Dict[str, Any]:
        """Get one WebSocket message with its payload by 0-based frame index."""
        try:
            ws = self.context.get_websocket_by_id(wsid)
            index = int(frame_index)
            if index < 0 or index >= len(ws.frames):
                raise NotFoundError(
                    f"Frame index {index} out of range. Total frames: {len(ws.frames)}"
                )
        except CaptureError as e:
            return error_response(e)

        frame = ws.frames[index]
        lines = format_frame_detail(frame, index, self.context.config.payload_size_limit)
        return {
            "ok": True,
            "wsid": int(wsid),
            "frame_index": index,
            "direction": frame.direction,
            "opcode": frame.opcode,
            "text": "\n".join(lines),
        }

    def _summary_for(self, wsid: int, ws: Any) -> TrafficSummary:
        summary = self.context.get_cached_traffic_summary(wsid)
        if summary is None:
            summary = analyze_frames(ws.frames, wsid, ws.connection.url, config=self.context.config)
            self.context.cache_traffic_summary(wsid, summary)
        return summary
