"""Server-Sent Events framing.

SSE format:
    event: <event_type>
    data: <payload>
    <blank line>
"""

from __future__ import annotations

from typing import Any

from .codec import encode_str


def format_event(event: str, data: str) -> str:
    """Format one SSE event. Multi-line data is split across data fields."""
    lines = data.splitlines() or [""]
    return f"event: {event}\n" + "".join(f"data: {line}\n" for line in lines) + "\n"


def format_json_event(event: str, payload: Any) -> str:
    """Format an SSE event whose data is a JSON document."""
    return format_event(event, encode_str(payload))


def format_comment(text: str = "keepalive") -> str:
    """Comment line; clients ignore it, proxies see traffic."""
    return f": {text}\n\n"
