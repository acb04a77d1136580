"""ACP protocol session: request/response correlation over a byte stream.

A ProtocolSession turns the raw stdout of an agent process into a reliable
request/response API:

- Outgoing requests get monotonically increasing integer IDs and are written
  as newline-delimited JSON-RPC.
- Inbound bytes are buffered; every complete line is parsed and routed.
  Incomplete lines stay buffered until the next chunk arrives.
- Responses settle the pending request with the same ID, exactly once.
- Calls initiated by the agent (messages carrying a `method`) are routed by
  name to the client callbacks and answered when they carry an ID.
- Every request has a deadline; expiry rejects only that request.

The session does no I/O of its own beyond the injected writer, which keeps it
independent of how the agent process is run.
"""

from __future__ import annotations

import asyncio
import codecs
import itertools
import json
import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from acp import PROTOCOL_VERSION  # type: ignore[import-untyped]

from ..errors import AgentRpcError, ProtocolTimeoutError, TransportError
from .handlers import ClientCallbacks, Handler
from .types import (
    AcpMethod,
    JsonRpcError,
    JsonRpcErrorCode,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    encode_line,
)

logger = logging.getLogger(__name__)

Writer = Callable[[bytes], Awaitable[None]]

DEFAULT_TIMEOUT = 30.0
CLIENT_INFO = {"name": "agenticide", "version": "1.0.0"}
CLIENT_CAPABILITIES = {
    "fs": {"readTextFile": True, "writeTextFile": True},
    "terminal": False,
}


class RequestState(str, Enum):
    """Lifecycle of a single request."""

    AWAITING = "awaiting-response"
    RESOLVED = "resolved"
    TIMED_OUT = "timed-out"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class PendingRequest:
    """An in-flight request awaiting its correlated response."""

    id: int
    method: str
    future: asyncio.Future[Any]
    submitted_at: float
    timeout: float
    timeout_handle: asyncio.TimerHandle | None = None
    state: RequestState = RequestState.AWAITING

    def settle(self, state: RequestState) -> None:
        self.state = state
        if self.timeout_handle is not None:
            self.timeout_handle.cancel()
            self.timeout_handle = None


def extract_content(result: Any, streamed: str = "") -> str:
    """Normalize a prompt result to plain text.

    Preference: result.content (string, text block, or list of text blocks),
    then text streamed through session updates, then result.text, then the
    whole result serialized.
    """
    if isinstance(result, str):
        return result
    if isinstance(result, dict):
        content = result.get("content")
        if isinstance(content, str):
            return content
        if isinstance(content, dict) and isinstance(content.get("text"), str):
            return content["text"]
        if isinstance(content, list):
            parts = [
                block.get("text", "") if isinstance(block, dict) else str(block)
                for block in content
            ]
            return "".join(parts)
        if streamed:
            return streamed
        if isinstance(result.get("text"), str):
            return result["text"]
        return json.dumps(result, ensure_ascii=False)
    if streamed:
        return streamed
    if result is None:
        return ""
    return json.dumps(result, ensure_ascii=False)


class ProtocolSession:
    """One JSON-RPC conversation with an agent process."""

    def __init__(
        self,
        write: Writer,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        cwd: str | Path | None = None,
        callbacks: ClientCallbacks | None = None,
        handlers: dict[str, Handler] | None = None,
        provider_id: str | None = None,
    ) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self._write = write
        self.timeout = timeout
        self.provider_id = provider_id
        self.cwd = str(Path(cwd or Path.cwd()).resolve())
        self.callbacks = callbacks or ClientCallbacks(self.cwd)
        self._handlers: dict[str, Handler] = {**self.callbacks.method_table(), **(handlers or {})}

        self._ids = itertools.count(1)
        self._pending: dict[int, PendingRequest] = {}
        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._reply_tasks: set[asyncio.Task[None]] = set()

        self._session_id: str | None = None
        self._session_lock = asyncio.Lock()
        self.agent_info: dict[str, Any] = {}
        self.agent_capabilities: dict[str, Any] = {}
        self.initialized = False
        self.closed = False

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def pending(self) -> dict[int, PendingRequest]:
        return dict(self._pending)

    @property
    def buffered(self) -> str:
        return self._buffer

    # =========================================================================
    # Client -> agent
    # =========================================================================

    async def request(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> Any:
        """Send a request and wait for its correlated result.

        Raises:
            ProtocolTimeoutError: No response within the deadline
            AgentRpcError: The agent answered with an error object
            TransportError: The session is closed or the write failed
        """
        if self.closed:
            raise TransportError("Protocol session is closed", provider_id=self.provider_id)

        loop = asyncio.get_running_loop()
        request_id = next(self._ids)
        deadline = timeout if timeout is not None else self.timeout
        entry = PendingRequest(
            id=request_id,
            method=method,
            future=loop.create_future(),
            submitted_at=time.monotonic(),
            timeout=deadline,
        )
        entry.timeout_handle = loop.call_later(deadline, self._expire, request_id)
        self._pending[request_id] = entry

        frame = encode_line(JsonRpcRequest(id=request_id, method=method, params=params))
        try:
            await self._write(frame)
        except Exception as e:
            self._discard(request_id, RequestState.FAILED)
            raise TransportError(
                f"Failed to write {method} request: {e}", provider_id=self.provider_id
            ) from e

        logger.debug(f"-> {method} (id={request_id})")
        try:
            return await entry.future
        finally:
            # Caller cancellation leaves the entry behind; clear it and its timer
            if request_id in self._pending and self._pending[request_id] is entry:
                self._discard(request_id, RequestState.CANCELLED)

    async def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        await self._write(encode_line(JsonRpcNotification(method=method, params=params)))

    def cancel(self, request_id: int) -> bool:
        """Cancel one pending request; its caller sees CancelledError."""
        entry = self._discard(request_id, RequestState.CANCELLED)
        if entry is None:
            return False
        entry.future.cancel()
        return True

    def _discard(self, request_id: int, state: RequestState) -> PendingRequest | None:
        entry = self._pending.pop(request_id, None)
        if entry is not None:
            entry.settle(state)
        return entry

    def _expire(self, request_id: int) -> None:
        entry = self._pending.pop(request_id, None)
        if entry is None or entry.future.done():
            return
        entry.timeout_handle = None
        entry.settle(RequestState.TIMED_OUT)
        logger.warning(f"{entry.method} (id={request_id}) timed out after {entry.timeout:g}s")
        entry.future.set_exception(
            ProtocolTimeoutError(
                request_id, entry.timeout, method=entry.method, provider_id=self.provider_id
            )
        )

    # =========================================================================
    # Handshake and prompts
    # =========================================================================

    async def initialize(self) -> dict[str, Any]:
        """Negotiate protocol version and declare client capabilities."""
        result = await self.request(
            AcpMethod.INITIALIZE,
            {
                "protocolVersion": PROTOCOL_VERSION,
                "clientCapabilities": CLIENT_CAPABILITIES,
                "clientInfo": CLIENT_INFO,
            },
        )
        result = result if isinstance(result, dict) else {}
        self.agent_capabilities = result.get("agentCapabilities") or {}
        self.agent_info = result.get("agentInfo") or {}
        self.initialized = True
        logger.info(
            f"ACP handshake complete (protocol {result.get('protocolVersion', PROTOCOL_VERSION)})"
        )
        return result

    async def ensure_session(self) -> str:
        """Handshake and create the logical session once; reuse it afterwards."""
        async with self._session_lock:
            if self._session_id is not None:
                return self._session_id
            if not self.initialized:
                await self.initialize()

            result = await self.request(
                AcpMethod.SESSION_NEW, {"cwd": self.cwd, "mcpServers": []}
            )
            session_id = result.get("sessionId") if isinstance(result, dict) else None
            if not session_id:
                session_id = f"session-{uuid.uuid4().hex[:12]}"
                logger.warning(f"Agent did not assign a session id, using {session_id}")
            self._session_id = str(session_id)
            logger.info(f"ACP session created: {self._session_id}")
            return self._session_id

    async def prompt(
        self,
        prompt: str,
        context: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> str:
        session_id = await self.ensure_session()
        self.callbacks.start_collecting(session_id)
        try:
            result = await self.request(
                AcpMethod.SESSION_PROMPT,
                {"sessionId": session_id, "prompt": prompt, "context": context or {}},
                timeout=timeout,
            )
        finally:
            streamed = self.callbacks.collected_text(session_id)
        return extract_content(result, streamed)

    async def cancel_prompt(self) -> None:
        """Ask the agent to stop the running prompt turn."""
        if self._session_id is not None:
            await self.notify(AcpMethod.SESSION_CANCEL, {"sessionId": self._session_id})

    # =========================================================================
    # Agent -> client
    # =========================================================================

    def feed(self, data: bytes | str) -> None:
        """Consume a chunk of agent stdout.

        Chunks may split a message anywhere, including inside a multi-byte
        character; parsing waits for the newline.
        """
        if isinstance(data, bytes):
            data = self._decoder.decode(data)
        self._buffer += data

        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            self._handle_line(line)

        # Tolerate a final message that is complete but not newline-terminated
        tail = self._buffer.strip()
        if tail.startswith("{") and tail.endswith("}"):
            try:
                message = json.loads(tail)
            except json.JSONDecodeError:
                return
            if isinstance(message, dict):
                self._buffer = ""
                self._dispatch(message)

    def _handle_line(self, line: str) -> None:
        line = line.strip()
        if not line:
            return
        if not line.startswith("{"):
            logger.debug(f"Skipping non-JSON line: {line[:50]}")
            return
        try:
            message = json.loads(line)
        except json.JSONDecodeError as e:
            logger.debug(f"Dropping malformed line: {e} (line: {line[:50]})")
            return
        if isinstance(message, dict):
            self._dispatch(message)

    def _dispatch(self, message: dict[str, Any]) -> None:
        if "method" in message:
            self._handle_agent_call(message)
        elif "id" in message:
            self._settle(message)
        else:
            logger.debug(f"Ignoring message without id or method: {str(message)[:80]}")

    def _settle(self, message: dict[str, Any]) -> None:
        raw_id = message.get("id")
        request_id = int(raw_id) if isinstance(raw_id, str) and raw_id.isdigit() else raw_id

        entry = self._pending.pop(request_id, None) if isinstance(request_id, int) else None
        if entry is None or entry.future.done():
            logger.debug(f"Ignoring response for unknown or settled request {raw_id}")
            return

        error = message.get("error")
        if error is not None:
            entry.settle(RequestState.FAILED)
            if not isinstance(error, dict):
                error = {"message": str(error)}
            entry.future.set_exception(
                AgentRpcError(
                    int(error.get("code", JsonRpcErrorCode.INTERNAL_ERROR)),
                    str(error.get("message", "Unknown error")),
                    error.get("data"),
                    provider_id=self.provider_id,
                )
            )
            return

        entry.settle(RequestState.RESOLVED)
        entry.future.set_result(message.get("result"))
        logger.debug(
            f"<- {entry.method} (id={request_id}) "
            f"in {time.monotonic() - entry.submitted_at:.2f}s"
        )

    def _handle_agent_call(self, message: dict[str, Any]) -> None:
        method = str(message["method"])
        params = message.get("params")
        call_id = message.get("id")

        handler = self._handlers.get(method)
        if handler is None:
            logger.debug(f"No handler for agent call: {method}")
            if call_id is not None:
                self._reply(
                    call_id,
                    error=JsonRpcError(
                        code=JsonRpcErrorCode.METHOD_NOT_FOUND,
                        message=f"Method not found: {method}",
                    ),
                )
            return

        try:
            result = handler(params if isinstance(params, dict) else {})
        except Exception as e:
            logger.exception(f"Error handling agent call {method}: {e}")
            if call_id is not None:
                self._reply(
                    call_id,
                    error=JsonRpcError(code=JsonRpcErrorCode.INTERNAL_ERROR, message=str(e)),
                )
            return

        if call_id is not None:
            self._reply(call_id, result=result)

    def _reply(
        self,
        call_id: int | str,
        *,
        result: Any = None,
        error: JsonRpcError | None = None,
    ) -> None:
        line = JsonRpcResponse(id=call_id, result=result, error=error).to_line() + "\n"
        task = asyncio.get_running_loop().create_task(self._send_reply(line.encode("utf-8")))
        self._reply_tasks.add(task)
        task.add_done_callback(self._reply_tasks.discard)

    async def _send_reply(self, frame: bytes) -> None:
        try:
            await self._write(frame)
        except Exception as e:
            logger.warning(f"Failed to answer agent call: {e}")

    # =========================================================================
    # Teardown
    # =========================================================================

    def close(self, reason: str = "Protocol session closed") -> None:
        """Reject everything still pending; further requests fail fast."""
        self.closed = True
        for request_id in list(self._pending):
            entry = self._discard(request_id, RequestState.FAILED)
            if entry is not None and not entry.future.done():
                entry.future.set_exception(TransportError(reason, provider_id=self.provider_id))
        for task in list(self._reply_tasks):
            task.cancel()
        self._buffer = ""


__all__ = [
    "CLIENT_CAPABILITIES",
    "CLIENT_INFO",
    "DEFAULT_TIMEOUT",
    "PendingRequest",
    "ProtocolSession",
    "RequestState",
    "Writer",
    "extract_content",
]
