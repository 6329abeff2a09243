"""orjson serialization for wire payloads, tool arguments and tool output.

Usage:
    >>> from toolrelay.io.streaming import encode, decode
    >>> encoded = encode({"key": "value"})
    >>> decoded = decode(encoded)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import orjson
from pydantic import BaseModel

if TYPE_CHECKING:
    from toolrelay.foundation.errors import JsonValue

_OPTIONS = orjson.OPT_NON_STR_KEYS | orjson.OPT_UTC_Z


def _default(obj: Any) -> Any:
    """Fallback for types orjson does not serialize natively."""
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    raise TypeError(f"Type is not JSON serializable: {type(obj).__name__}")


def encode(data: Any) -> bytes:
    """Encode to JSON bytes."""
    return orjson.dumps(data, default=_default, option=_OPTIONS)


def encode_str(data: Any) -> str:
    """Encode to JSON string."""
    return orjson.dumps(data, default=_default, option=_OPTIONS).decode()


def decode(data: bytes | bytearray | str) -> JsonValue:
    """Decode from JSON bytes/str. Raises orjson.JSONDecodeError (a ValueError)."""
    return orjson.loads(data)


DecodeError = orjson.JSONDecodeError
