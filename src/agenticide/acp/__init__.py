"""Agent Client Protocol (ACP) client side.

Speaks newline-delimited JSON-RPC 2.0 to a locally spawned agent process:
- session: request/response correlation, timeouts and the ACP handshake
- handlers: callbacks the agent may invoke (updates, permissions, files)
- types: JSON-RPC message records and method names
"""

from .handlers import ClientCallbacks, update_text
from .session import (
    PendingRequest,
    ProtocolSession,
    RequestState,
    extract_content,
)
from .types import (
    AcpMethod,
    JsonRpcError,
    JsonRpcErrorCode,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    encode_line,
)

__all__ = [
    "AcpMethod",
    "ClientCallbacks",
    "JsonRpcError",
    "JsonRpcErrorCode",
    "JsonRpcNotification",
    "JsonRpcRequest",
    "JsonRpcResponse",
    "PendingRequest",
    "ProtocolSession",
    "RequestState",
    "encode_line",
    "extract_content",
    "update_text",
]
