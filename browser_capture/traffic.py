"""Schema-less grouping of WebSocket frames by fingerprint and size."""

from __future__ import annotations

import base64
import binascii
import re
from typing import Any, Dict, List, Optional, Sequence

from .models import SIZE_CATEGORIES, CaptureConfig, TrafficGroup, TrafficSummary, WebSocketFrame

BINARY_OPCODE = 2

_BASE64_RE = re.compile(r"^[A-Za-z0-9+/]+=*$")

# Field 1-4 tags (varint and length-delimited) are the usual first byte.
_PROTOBUF_PREFIXES = ("08", "0a", "10", "12", "18", "1a", "20", "22")


def _decode_base64(payload: str) -> Optional[bytes]:
    # Missing padding is accepted; a length of 1 mod 4 is never valid.
    if len(payload) % 4 == 1:
        return None
    try:
        return base64.b64decode(payload + "=" * (-len(payload) % 4), validate=True)
    except (binascii.Error, ValueError):
        return None


def head4b(payload: str, opcode: int) -> str:
    """First 4 payload bytes as hex; empty when undecodable."""
    payload = payload or ""
    if opcode == BINARY_OPCODE or _BASE64_RE.match(payload):
        raw = _decode_base64(payload)
        if raw is None:
            return ""
        return raw[:4].hex()
    return "".join(format(ord(ch), "02x") for ch in payload[:4])


def payload_size(frame: WebSocketFrame) -> int:
    payload = frame.payload_data or ""
    if frame.opcode == BINARY_OPCODE:
        raw = _decode_base64(payload)
        return len(raw) if raw is not None else len(payload)
    return len(payload.encode("utf-8"))


def size_category(size: int, bounds: Sequence[int] = CaptureConfig.size_buckets) -> str:
    for category, bound in zip(SIZE_CATEGORIES, bounds):
        if size < bound:
            return category
    return SIZE_CATEGORIES[-1]


def guess_hint(head: str) -> str:
    """Display-only guess at the payload format. Never authoritative."""
    if not head:
        return "-"
    if head.startswith("1f8b"):
        return "Gzip"
    if head.startswith(_PROTOBUF_PREFIXES):
        return "Protobuf"
    if head.startswith(("7b", "5b")):
        return "JSON"
    try:
        first = int(head[:2], 16)
    except ValueError:
        first = -1
    if 0x80 <= first <= 0xBF:
        return "MsgPack"
    if head == "28b52ffd":
        return "Zstd"
    if head == "70696e67":
        return "ping"
    if head == "706f6e67":
        return "pong"
    return "-"


def group_id(index: int) -> str:
    """0 -> A, 25 -> Z, 26 -> AA, 27 -> AB, ..."""
    out = ""
    n = int(index)
    while True:
        out = chr(ord("A") + n % 26) + out
        n = n // 26 - 1
        if n < 0:
            return out


def analyze_frames(
    frames: Sequence[WebSocketFrame],
    wsid: int,
    url: str,
    direction: Optional[str] = None,
    config: Optional[CaptureConfig] = None,
) -> TrafficSummary:
    """Group frames by (direction, head4b, size category).

    With `direction`, only frames going that way are analysed; indices keep
    pointing into the full `frames` sequence.
    """
    cfg = config or CaptureConfig()
    selected = [
        (index, frame)
        for index, frame in enumerate(frames)
        if not direction or frame.direction == direction
    ]

    duration_ms = 0.0
    if len(selected) > 1:
        duration_ms = selected[-1][1].timestamp - selected[0][1].timestamp

    buckets: Dict[tuple, Dict[str, Any]] = {}
    for index, frame in selected:
        head = head4b(frame.payload_data, frame.opcode)
        size = payload_size(frame)
        category = size_category(size, cfg.size_buckets)
        key = (frame.direction, head, category)
        bucket = buckets.get(key)
        if bucket is None:
            bucket = {"indices": [], "min": size, "max": size}
            buckets[key] = bucket
        bucket["indices"].append(index)
        bucket["min"] = min(bucket["min"], size)
        bucket["max"] = max(bucket["max"], size)

    # sorted() is stable: equal counts keep first-seen order.
    ordered = sorted(buckets.items(), key=lambda kv: -len(kv[1]["indices"]))

    groups: List[TrafficGroup] = []
    group_to_indices: Dict[str, List[int]] = {}
    for position, ((frame_direction, head, category), bucket) in enumerate(ordered):
        gid = group_id(position)
        indices = bucket["indices"]
        groups.append(
            TrafficGroup(
                id=gid,
                direction=frame_direction,
                head4b=head,
                size_category=category,
                count=len(indices),
                min_size=bucket["min"],
                max_size=bucket["max"],
                hint=guess_hint(head),
                sample_indices=tuple(indices[: cfg.sample_size]),
            )
        )
        group_to_indices[gid] = list(indices)

    return TrafficSummary(
        wsid=int(wsid),
        url=str(url or ""),
        duration_ms=duration_ms,
        total_frames=len(selected),
        sent_count=sum(1 for _, f in selected if f.direction == "sent"),
        received_count=sum(1 for _, f in selected if f.direction == "received"),
        groups=tuple(groups),
        group_to_indices=group_to_indices,
    )
