"""JSON-RPC 2.0 envelope and error codes for the MCP endpoint."""

from __future__ import annotations

from typing import Any, Literal, Self

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from toolrelay.foundation.errors import JsonDict, ProtocolError

JSONRPC_VERSION = "2.0"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
SESSION_NOT_FOUND = -32001


# ═══════════════════════════════════════════════════════════════════════════════
# Errors
# ═══════════════════════════════════════════════════════════════════════════════


class ParseError(ProtocolError):
    code = PARSE_ERROR
    http_status = 400


class InvalidRequest(ProtocolError):
    code = INVALID_REQUEST
    http_status = 400


class MethodNotFound(ProtocolError):
    code = METHOD_NOT_FOUND


class InvalidParams(ProtocolError):
    code = INVALID_PARAMS


class InternalError(ProtocolError):
    code = INTERNAL_ERROR


class SessionRequired(ProtocolError):
    """A non-initialize call arrived without a session header."""

    code = INVALID_REQUEST
    http_status = 400


class SessionNotFound(ProtocolError):
    """Unknown, expired or deleted session id."""

    code = SESSION_NOT_FOUND
    http_status = 404


class SessionStateError(ProtocolError):
    """Call not allowed in the session's current state."""

    code = INVALID_REQUEST


# ═══════════════════════════════════════════════════════════════════════════════
# Envelope
# ═══════════════════════════════════════════════════════════════════════════════


class JsonRpcRequest(BaseModel):
    """Request or notification (``id`` absent)."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    jsonrpc: Literal["2.0"]
    method: str = Field(min_length=1)
    id: int | str | None = None
    params: JsonDict = Field(default_factory=dict)

    @field_validator("id", mode="before")
    @classmethod
    def _no_bool_id(cls, v: Any) -> Any:
        if isinstance(v, bool):
            raise ValueError("id must be a string or integer")
        return v

    @field_validator("params", mode="before")
    @classmethod
    def _params_object(cls, v: Any) -> Any:
        return {} if v is None else v

    @property
    def is_notification(self) -> bool:
        return self.id is None

    @classmethod
    def parse(cls, payload: Any) -> Self:
        """Validate a decoded body, mapping failures to InvalidRequest."""
        if isinstance(payload, list):
            raise InvalidRequest("Batch requests are not supported")
        if not isinstance(payload, dict):
            raise InvalidRequest("Request must be a JSON object")
        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            raise InvalidRequest("Invalid JSON-RPC request", data=_errors(e)) from e


def _errors(exc: ValidationError) -> list[JsonDict]:
    return [
        {"loc": ".".join(str(p) for p in err.get("loc", ())), "msg": err.get("msg", "")}
        for err in exc.errors(include_url=False)
    ]


def result_response(request_id: int | str | None, result: Any) -> JsonDict:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def error_response(request_id: int | str | None, error: ProtocolError) -> JsonDict:
    body: JsonDict = {"code": error.code, "message": error.message}
    if error.data is not None:
        body["data"] = error.data
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": body}


def notification(method: str, params: JsonDict | None = None) -> JsonDict:
    message: JsonDict = {"jsonrpc": JSONRPC_VERSION, "method": method}
    if params is not None:
        message["params"] = params
    return message


# ═══════════════════════════════════════════════════════════════════════════════
# Method params
# ═══════════════════════════════════════════════════════════════════════════════


class InitializeParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    protocol_version: str | None = Field(default=None, alias="protocolVersion")
    client_info: JsonDict = Field(default_factory=dict, alias="clientInfo")
    capabilities: JsonDict = Field(default_factory=dict)


class CallToolParams(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = Field(min_length=1)
    arguments: Any = None


def parse_params(model: type[BaseModel], params: JsonDict) -> Any:
    try:
        return model.model_validate(params)
    except ValidationError as e:
        raise InvalidParams("Invalid params", data=_errors(e)) from e
