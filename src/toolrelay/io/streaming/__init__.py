"""Wire-level serialization: orjson codec and SSE framing."""

from .codec import DecodeError, decode, encode, encode_str
from .sse import format_comment, format_event, format_json_event

__all__ = [
    "DecodeError", "decode", "encode", "encode_str",
    "format_comment", "format_event", "format_json_event",
]
