"""JSON-RPC 2.0 message types used on the ACP stdio channel.

Field names follow the wire format (camelCase inside params) and must not be
renamed.
"""

from __future__ import annotations

import json
from typing import Any, Literal

from pydantic import BaseModel


class JsonRpcRequest(BaseModel):
    """JSON-RPC 2.0 request."""

    jsonrpc: Literal["2.0"] = "2.0"
    id: int | str
    method: str
    params: dict[str, Any] | None = None


class JsonRpcNotification(BaseModel):
    """JSON-RPC 2.0 notification (no response expected)."""

    jsonrpc: Literal["2.0"] = "2.0"
    method: str
    params: dict[str, Any] | None = None


class JsonRpcError(BaseModel):
    """JSON-RPC 2.0 error object."""

    code: int
    message: str
    data: Any | None = None


class JsonRpcResponse(BaseModel):
    """JSON-RPC 2.0 response."""

    jsonrpc: Literal["2.0"] = "2.0"
    id: int | str | None
    result: Any | None = None
    error: JsonRpcError | None = None

    def to_line(self) -> str:
        """Serialize with exactly one of result/error present."""
        if self.error is not None:
            data = self.model_dump(exclude={"result"}, exclude_none=False)
            if data["error"].get("data") is None:
                data["error"].pop("data")
        else:
            data = self.model_dump(exclude={"error"})
        return _dumps(data)


class JsonRpcErrorCode:
    """Standard JSON-RPC 2.0 error codes."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603


class AcpMethod:
    """Method names on the ACP channel."""

    # client -> agent
    INITIALIZE = "initialize"
    SESSION_NEW = "session/new"
    SESSION_PROMPT = "session/prompt"
    SESSION_CANCEL = "session/cancel"

    # agent -> client
    SESSION_UPDATE = "session/update"
    REQUEST_PERMISSION = "session/request_permission"
    READ_TEXT_FILE = "fs/read_text_file"
    WRITE_TEXT_FILE = "fs/write_text_file"


def _dumps(data: dict[str, Any]) -> str:
    return json.dumps(data, ensure_ascii=False, separators=(",", ":"))


def encode_line(message: JsonRpcRequest | JsonRpcNotification) -> bytes:
    """Newline-delimited UTF-8 frame for one outgoing message."""
    data = message.model_dump()
    if data.get("params") is None:
        data.pop("params", None)
    return (_dumps(data) + "\n").encode("utf-8")


__all__ = [
    "AcpMethod",
    "JsonRpcError",
    "JsonRpcErrorCode",
    "JsonRpcNotification",
    "JsonRpcRequest",
    "JsonRpcResponse",
    "encode_line",
]
